"""
Domain types shared by the discovery, collection, diagnostics and health
components. Repositories convert database rows into these dataclasses.
"""

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def now_utc():
    return datetime.now(timezone.utc)


class DeviceType(str, Enum):
    ROUTER = "router"
    SWITCH = "switch"
    ACCESS_POINT = "access-point"
    SERVER = "server"
    DESKTOP = "desktop"
    LAPTOP = "laptop"
    PRINTER = "printer"
    PHONE = "phone"
    TABLET = "tablet"
    IOT = "iot"
    CAMERA = "camera"
    NAS = "nas"
    UNKNOWN = "unknown"


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    DEGRADED = "degraded"


class ProblemSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ProblemCategory(str, Enum):
    LATENCY = "latency"
    PACKET_LOSS = "packet-loss"
    AVAILABILITY = "availability"
    SPEED = "speed"
    DNS = "dns"
    SECURITY = "security"
    INFRASTRUCTURE = "infrastructure"
    CONFIGURATION = "configuration"


class AlertType(str, Enum):
    PROBLEM_DETECTED = "problem-detected"
    PROBLEM_RESOLVED = "problem-resolved"


class HealthCategory(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    CRITICAL = "critical"


class HealthTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class ScanStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Device:
    """A device seen on the LAN. The MAC address is the identity key."""
    id: str
    ip_address: str
    mac_address: str
    hostname: Optional[str] = None
    custom_name: Optional[str] = None
    vendor: Optional[str] = None
    device_type: DeviceType = DeviceType.UNKNOWN
    status: DeviceStatus = DeviceStatus.ONLINE
    is_gateway: bool = False
    is_monitored: bool = True
    first_seen: datetime = field(default_factory=now_utc)
    last_seen: datetime = field(default_factory=now_utc)
    latency_ms: Optional[float] = None
    packet_loss: Optional[float] = None
    open_ports: List[int] = field(default_factory=list)
    notes: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.custom_name or self.hostname or self.ip_address


@dataclass(frozen=True)
class Metric:
    """One reachability sample for a device."""
    id: int
    device_id: str
    timestamp: datetime
    latency_ms: Optional[float]
    packet_loss: float
    jitter: Optional[float]
    is_reachable: bool


@dataclass(frozen=True)
class SpeedTestResult:
    id: int
    timestamp: datetime
    download_mbps: float
    upload_mbps: float
    ping_ms: float
    jitter: Optional[float] = None
    isp: Optional[str] = None
    server_info: Optional[str] = None
    contracted_download_mbps: Optional[float] = None
    contracted_upload_mbps: Optional[float] = None
    download_percent: Optional[float] = None
    upload_percent: Optional[float] = None
    triggered_by: str = "manual"


@dataclass
class Problem:
    id: str
    rule_id: str
    severity: ProblemSeverity
    category: ProblemCategory
    title: str
    description: str
    impact: str
    recommendation: str
    affected_devices: List[str] = field(default_factory=list)
    is_active: bool = True
    detected_at: datetime = field(default_factory=now_utc)
    resolved_at: Optional[datetime] = None


@dataclass
class Alert:
    id: str
    type: AlertType
    severity: ProblemSeverity
    title: str
    message: str
    device_id: Optional[str] = None
    problem_id: Optional[str] = None
    created_at: datetime = field(default_factory=now_utc)
    read_at: Optional[datetime] = None


@dataclass(frozen=True)
class HealthFactorResult:
    name: str
    score: int
    weight: float
    description: str


@dataclass(frozen=True)
class HealthScore:
    id: int
    score: int
    category: HealthCategory
    factors: List[HealthFactorResult]
    trend: HealthTrend
    calculated_at: datetime


@dataclass
class ScanRecord:
    id: str
    scan_type: str
    triggered_by: str
    status: ScanStatus = ScanStatus.RUNNING
    started_at: datetime = field(default_factory=now_utc)
    completed_at: Optional[datetime] = None
    devices_found: int = 0
    new_devices: int = 0
    error_message: Optional[str] = None


@dataclass
class DiscoveryResult:
    devices_found: int
    new_devices: int
    devices: List[Device] = field(default_factory=list)


@dataclass(frozen=True)
class NetworkInfo:
    local_ip: str
    subnet: ipaddress.IPv4Network
    gateway_ip: Optional[str] = None
    interface: Optional[str] = None


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of `count` reachability probes against one address."""
    samples: List[float]
    count: int

    @property
    def success_count(self) -> int:
        return len(self.samples)

    @property
    def is_reachable(self) -> bool:
        return bool(self.samples)
