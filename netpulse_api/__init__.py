"""HTTP API over the NetPulse agent services."""
