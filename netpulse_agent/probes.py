"""
Probe collaborators: everything that touches the OS network stack.

The diagnostics core only sees the `Probes` interface. `SystemProbes` is the
implementation backed by `ping`, `ip neigh`/`arp`, the system resolver and
plain TCP sockets. Every probe carries a timeout and reports failure as an
unreachable/None result instead of raising.
"""

import concurrent.futures
import ipaddress
import logging
import math
import re
import shutil
import socket
import subprocess
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .domain import NetworkInfo, ProbeResult
from .oui import BROADCAST_MAC, VendorLookup, normalize_mac

logger = logging.getLogger(__name__)

CMD_TIMEOUT = 15

_PING_TIME_RE = re.compile(r"time[=<]\s*([\d.]+)\s*ms")
_ARP_LINE_RE = re.compile(r"\((\d+\.\d+\.\d+\.\d+)\)\s+at\s+([0-9a-fA-F]{1,2}(?::[0-9a-fA-F]{1,2}){5})")
_DEFAULT_ROUTE_RE = re.compile(r"default via (\d+\.\d+\.\d+\.\d+)(?:.*?\bdev (\S+))?")


def parse_ping_output(output: str) -> List[float]:
    """Round-trip times (ms) of every reply line in `ping` output."""
    samples = []
    for line in output.splitlines():
        match = _PING_TIME_RE.search(line)
        if match:
            samples.append(float(match.group(1)))
    return samples


def _keep_neighbor(ip: str, mac: Optional[str]) -> bool:
    if mac is None or mac == BROADCAST_MAC or mac.startswith("01:00:5e"):
        return False
    # Docker bridge interfaces
    if ip.startswith("172.") and mac.startswith("02:42:"):
        return False
    return True


def parse_ip_neigh(output: str) -> List[Tuple[str, str]]:
    """(ip, mac) pairs from `ip neigh show`, IPv4 only, resolved entries only."""
    entries = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 5 and "lladdr" in parts:
            ip = parts[0]
            if ":" in ip:
                continue
            state = parts[-1]
            if state in ["FAILED", "INCOMPLETE"]:
                continue
            mac = normalize_mac(parts[parts.index("lladdr") + 1])
            if _keep_neighbor(ip, mac):
                entries.append((ip, mac))
    return entries


def parse_arp_output(output: str) -> List[Tuple[str, str]]:
    """(ip, mac) pairs from BSD/Linux `arp -an`. macOS may print single-digit octets."""
    entries = []
    for line in output.splitlines():
        match = _ARP_LINE_RE.search(line)
        if not match:
            continue
        ip = match.group(1)
        mac = normalize_mac(match.group(2))
        if _keep_neighbor(ip, mac):
            entries.append((ip, mac))
    return entries


def parse_default_route(output: str) -> Tuple[Optional[str], Optional[str]]:
    """(gateway ip, interface) from `ip route show default`."""
    for line in output.splitlines():
        match = _DEFAULT_ROUTE_RE.search(line)
        if match:
            return match.group(1), match.group(2)
    return None, None


def _strip_hostname(name: str):
    if not name:
        return None
    name = name.strip()
    if not name:
        return None
    if "." in name:
        name = name.split(".")[0]
    return name or None


def _call_with_timeout(fn, timeout_sec: float, *args):
    # Resolver calls can block well past any socket timeout; run them in a
    # throwaway thread and stop waiting after timeout_sec.
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(fn, *args)
        return future.result(timeout=timeout_sec)
    finally:
        executor.shutdown(wait=False)


class Probes(ABC):
    """Contract every probe implementation satisfies."""

    @abstractmethod
    def probe_reachability(self, address: str, count: int = 3, timeout: float = 2.0) -> ProbeResult:
        """Send `count` echo requests; never raises, failures yield no samples."""

    @abstractmethod
    def read_neighbor_table(self) -> List[Tuple[str, str]]:
        """Snapshot of the ARP/neighbor cache as (ip, normalized mac) pairs."""

    @abstractmethod
    def reverse_resolve(self, ip: str) -> Optional[str]:
        pass

    @abstractmethod
    def resolve_vendor(self, mac: str) -> Optional[str]:
        pass

    @abstractmethod
    def measure_dns_latency(self, domain: str) -> Optional[float]:
        """Milliseconds to resolve `domain`, None when resolution fails."""

    @abstractmethod
    def probe_tcp_port(self, address: str, port: int, timeout: float = 1.0) -> bool:
        pass

    @abstractmethod
    def detect_network(self) -> Optional[NetworkInfo]:
        """Local address, subnet and default gateway, None if undeterminable."""


class SystemProbes(Probes):
    def __init__(
        self,
        vendors: Optional[VendorLookup] = None,
        lan_cidr: str = "",
        resolve_hostnames: bool = True,
        resolve_timeout: float = 1.0,
        dns_timeout: float = 5.0,
    ):
        self.vendors = vendors or VendorLookup()
        self.lan_cidr = lan_cidr
        self.resolve_hostnames = resolve_hostnames
        self.resolve_timeout = resolve_timeout
        self.dns_timeout = dns_timeout

    def probe_reachability(self, address: str, count: int = 3, timeout: float = 2.0) -> ProbeResult:
        wait = str(max(1, int(math.ceil(timeout))))
        cmd = ["ping", "-n", "-c", str(count), "-W", wait, "-i", "0.2", address]
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=count * (timeout + 0.2) + 2,
            )
        except subprocess.TimeoutExpired:
            logger.debug(f"ping {address} timed out")
            return ProbeResult(samples=[], count=count)
        except OSError as e:
            logger.error(f"ping {address} failed: {e}")
            return ProbeResult(samples=[], count=count)
        return ProbeResult(samples=parse_ping_output(completed.stdout)[:count], count=count)

    def read_neighbor_table(self) -> List[Tuple[str, str]]:
        if shutil.which("ip"):
            output = self._run(["ip", "neigh", "show"])
            if output is not None:
                return parse_ip_neigh(output)
        if shutil.which("arp"):
            output = self._run(["arp", "-an"])
            if output is not None:
                return parse_arp_output(output)
        logger.error("No usable neighbor table command (ip, arp)")
        return []

    def reverse_resolve(self, ip: str) -> Optional[str]:
        if not self.resolve_hostnames:
            return None
        try:
            name = _call_with_timeout(socket.gethostbyaddr, self.resolve_timeout, ip)[0]
        except (concurrent.futures.TimeoutError, OSError):
            return None
        return _strip_hostname(name)

    def resolve_vendor(self, mac: str) -> Optional[str]:
        return self.vendors.lookup(mac)

    def measure_dns_latency(self, domain: str) -> Optional[float]:
        start = time.perf_counter()
        try:
            _call_with_timeout(socket.gethostbyname, self.dns_timeout, domain)
        except (concurrent.futures.TimeoutError, OSError) as e:
            logger.warning(f"DNS resolution of {domain} failed: {e!r}")
            return None
        return round((time.perf_counter() - start) * 1000, 2)

    def probe_tcp_port(self, address: str, port: int, timeout: float = 1.0) -> bool:
        try:
            with socket.create_connection((address, port), timeout=timeout):
                return True
        except OSError:
            return False

    def detect_network(self) -> Optional[NetworkInfo]:
        gateway, interface = None, None
        output = self._run(["ip", "route", "show", "default"]) if shutil.which("ip") else None
        if output:
            gateway, interface = parse_default_route(output)

        local_ip = self._local_ip(gateway or "8.8.8.8")

        if self.lan_cidr:
            subnet = ipaddress.ip_network(self.lan_cidr, strict=False)
        elif local_ip:
            subnet = ipaddress.ip_network(f"{local_ip}/24", strict=False)
        else:
            return None

        return NetworkInfo(local_ip=local_ip or "", subnet=subnet, gateway_ip=gateway, interface=interface)

    @staticmethod
    def _local_ip(target: str) -> Optional[str]:
        # Connecting a UDP socket sends nothing; it only selects the outbound interface.
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
                s.connect((target, 80))
                ip = s.getsockname()[0]
        except OSError:
            return None
        if ip.startswith("127.") or ip == "0.0.0.0":
            return None
        return ip

    @staticmethod
    def _run(cmd) -> Optional[str]:
        try:
            return subprocess.check_output(cmd, stderr=subprocess.DEVNULL, timeout=CMD_TIMEOUT).decode(errors="ignore")
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            logger.error(f"{' '.join(cmd)} failed: {e}")
            return None
