from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from netpulse_agent.domain import (
    AlertType,
    DeviceStatus,
    DeviceType,
    HealthCategory,
    HealthTrend,
    ProblemCategory,
    ProblemSeverity,
    ScanStatus,
)


class DeviceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ip_address: str
    mac_address: str
    hostname: Optional[str] = None
    custom_name: Optional[str] = None
    display_name: str
    vendor: Optional[str] = None
    device_type: DeviceType
    status: DeviceStatus
    is_gateway: bool
    is_monitored: bool
    first_seen: datetime
    last_seen: datetime
    latency_ms: Optional[float] = None
    packet_loss: Optional[float] = None
    open_ports: List[int] = Field(default_factory=list)
    notes: Optional[str] = None


class DeviceSummaryOut(BaseModel):
    total: int
    online: int
    offline: int
    degraded: int
    by_type: Dict[str, int] = Field(default_factory=dict)


class DeviceUpdate(BaseModel):
    custom_name: Optional[str] = None
    notes: Optional[str] = None
    is_monitored: Optional[bool] = None
    is_gateway: Optional[bool] = None
    device_type: Optional[DeviceType] = None

    @field_validator("custom_name")
    @classmethod
    def custom_name_clean(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None


class PortScanRequest(BaseModel):
    ports: Optional[List[int]] = None

    @field_validator("ports")
    @classmethod
    def ports_in_range(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        for port in v:
            if not 1 <= port <= 65535:
                raise ValueError(f"port {port} out of range")
        return v


class MetricOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: str
    timestamp: datetime
    latency_ms: Optional[float] = None
    packet_loss: float
    jitter: Optional[float] = None
    is_reachable: bool


class ScanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    scan_type: str
    triggered_by: str
    status: ScanStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    devices_found: int
    new_devices: int
    error_message: Optional[str] = None


class DiscoveryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    devices_found: int
    new_devices: int
    devices: List[DeviceOut]


class ProblemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    rule_id: str
    severity: ProblemSeverity
    category: ProblemCategory
    title: str
    description: str
    impact: str
    recommendation: str
    affected_devices: List[str]
    is_active: bool
    detected_at: datetime
    resolved_at: Optional[datetime] = None


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: AlertType
    severity: ProblemSeverity
    title: str
    message: str
    device_id: Optional[str] = None
    problem_id: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None


class HealthFactorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    score: int
    weight: float
    description: str


class HealthScoreOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    score: int
    category: HealthCategory
    factors: List[HealthFactorOut]
    trend: HealthTrend
    calculated_at: datetime


class SpeedTestCreate(BaseModel):
    download_mbps: float = Field(ge=0)
    upload_mbps: float = Field(ge=0)
    ping_ms: float = Field(ge=0)
    jitter: Optional[float] = Field(default=None, ge=0)
    isp: Optional[str] = None
    server_info: Optional[str] = None


class SpeedTestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
    triggered_by: str
