"""
Shared fixtures: an in-memory database, scripted probes and a clock the
tests move by hand.
"""

import ipaddress
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from netpulse_agent.config import AgentConfig
from netpulse_agent.database import init_db, make_engine, make_session_factory
from netpulse_agent.domain import NetworkInfo, ProbeResult
from netpulse_agent.events import RecordingEventSink
from netpulse_agent.probes import Probes
from netpulse_agent.repositories import Repositories
from netpulse_agent.services import build_services

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProbes(Probes):
    """Scripted probe results keyed by address."""

    def __init__(self):
        self.network = NetworkInfo(
            local_ip="192.168.1.10",
            subnet=ipaddress.ip_network("192.168.1.0/29"),
            gateway_ip="192.168.1.1",
            interface="eth0",
        )
        self.latencies = {}  # ip -> list of samples
        self.failing = set()  # ips whose reachability probe raises
        self.neighbor_reads = [[]]
        self.hostnames = {}
        self.vendors = {}
        self.open_ports = {}
        self.dns_ms = 20.0
        self.probed = []
        self.delay = 0.0  # seconds each reachability check holds its slot
        self.in_flight = 0
        self.peak_in_flight = 0
        self._reads = 0
        self._lock = threading.Lock()

    def probe_reachability(self, address, count=3, timeout=2.0):
        with self._lock:
            self.probed.append(address)
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if address in self.failing:
                raise RuntimeError(f"probe of {address} exploded")
            samples = list(self.latencies.get(address, []))[:count]
            return ProbeResult(samples=samples, count=count)
        finally:
            with self._lock:
                self.in_flight -= 1

    def read_neighbor_table(self):
        index = min(self._reads, len(self.neighbor_reads) - 1)
        self._reads += 1
        return list(self.neighbor_reads[index])

    def reverse_resolve(self, ip):
        return self.hostnames.get(ip)

    def resolve_vendor(self, mac):
        return self.vendors.get(mac)

    def measure_dns_latency(self, domain):
        return self.dns_ms

    def probe_tcp_port(self, address, port, timeout=1.0):
        return port in self.open_ports.get(address, set())

    def detect_network(self):
        return self.network


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repos(session_factory):
    return Repositories.from_session_factory(session_factory)


@pytest.fixture
def probes():
    return FakeProbes()


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def config():
    return AgentConfig(database_url="sqlite://", arp_settle_sec=0)


@pytest.fixture
def services(config, session_factory, probes, events, clock):
    return build_services(config, session_factory=session_factory, probes=probes, events=events, clock=clock)


@pytest.fixture
def add_device(repos, clock):
    """Register a device directly in the repository."""
    counter = {"n": 0}

    def _add(ip=None, mac=None, age_minutes=60, **fields):
        counter["n"] += 1
        n = counter["n"]
        device = repos.devices.create(
            ip_address=ip or f"192.168.1.{100 + n}",
            mac_address=mac or f"aa:bb:cc:00:00:{n:02x}",
            is_gateway=fields.pop("is_gateway", False),
            device_type=fields.pop("device_type", "unknown"),
            vendor=fields.pop("vendor", None),
            hostname=fields.pop("hostname", None),
            seen_at=clock() - timedelta(minutes=age_minutes),
        )
        if fields:
            device = repos.devices.update(device.id, **fields)
        return device

    return _add


@pytest.fixture
def add_metrics(repos, clock):
    """Store one metric per latency value, oldest first, one minute apart."""

    def _add(device_id, latencies, packet_loss=0.0, jitter=None):
        start = clock() - timedelta(minutes=len(latencies))
        for i, latency in enumerate(latencies):
            repos.metrics.create(
                device_id=device_id,
                latency_ms=latency,
                packet_loss=100.0 if latency is None else packet_loss,
                jitter=jitter,
                is_reachable=latency is not None,
                timestamp=start + timedelta(minutes=i),
            )

    return _add
