"""
NetPulse agent - LAN discovery, reachability monitoring, diagnostics and
health scoring for small networks.
"""

__version__ = "0.1.0"
