from sqlalchemy import Column, String, Boolean, DateTime, Integer, Float, ForeignKey, JSON, Index, Text, text

from .database import Base
from .domain import now_utc


class Device(Base):
    __tablename__ = "devices"
    id = Column(String, primary_key=True)
    mac_address = Column(String, nullable=False, unique=True, index=True)
    ip_address = Column(String, nullable=False)
    hostname = Column(String, nullable=True)
    custom_name = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    device_type = Column(String, nullable=False, default="unknown")
    status = Column(String, nullable=False, default="online")
    is_gateway = Column(Boolean, default=False)
    is_monitored = Column(Boolean, default=True)
    first_seen = Column(DateTime(timezone=True), default=now_utc)
    last_seen = Column(DateTime(timezone=True), default=now_utc)
    latest_latency_ms = Column(Float, nullable=True)
    latest_packet_loss = Column(Float, nullable=True)
    open_ports = Column(JSON, default=list)
    notes = Column(String, nullable=True)


class Metric(Base):
    __tablename__ = "metrics"
    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime(timezone=True), default=now_utc, index=True)
    latency_ms = Column(Float, nullable=True)  # Null if unreachable
    packet_loss = Column(Float, nullable=False, default=0)
    jitter = Column(Float, nullable=True)
    is_reachable = Column(Boolean, nullable=False)

    __table_args__ = (Index("ix_metrics_device_ts", "device_id", "timestamp"),)


class SpeedTest(Base):
    __tablename__ = "speed_tests"
    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), default=now_utc, index=True)
    download_mbps = Column(Float, nullable=False)
    upload_mbps = Column(Float, nullable=False)
    ping_ms = Column(Float, nullable=False)
    jitter = Column(Float, nullable=True)
    isp = Column(String, nullable=True)
    server_info = Column(String, nullable=True)
    contracted_download_mbps = Column(Float, nullable=True)
    contracted_upload_mbps = Column(Float, nullable=True)
    download_percent = Column(Float, nullable=True)
    upload_percent = Column(Float, nullable=True)
    triggered_by = Column(String, default="manual")


class Problem(Base):
    __tablename__ = "problems"
    id = Column(String, primary_key=True)
    rule_id = Column(String, nullable=False, index=True)
    severity = Column(String, nullable=False)  # critical, warning, info
    category = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    impact = Column(Text, nullable=False, default="")
    recommendation = Column(Text, nullable=False, default="")
    affected_devices = Column(JSON, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    detected_at = Column(DateTime(timezone=True), default=now_utc)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # One active problem per rule id
    __table_args__ = (
        Index(
            "uq_problems_active_rule",
            "rule_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )


class Alert(Base):
    __tablename__ = "alerts"
    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)  # problem-detected, problem-resolved
    severity = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    device_id = Column(String, nullable=True)
    problem_id = Column(String, ForeignKey("problems.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)


class HealthScore(Base):
    __tablename__ = "health_scores"
    id = Column(Integer, primary_key=True, autoincrement=True)
    score = Column(Integer, nullable=False)
    category = Column(String, nullable=False)
    factors = Column(JSON, default=list)
    trend = Column(String, nullable=False)
    calculated_at = Column(DateTime(timezone=True), default=now_utc, index=True)


class Scan(Base):
    __tablename__ = "scans"
    id = Column(String, primary_key=True)
    scan_type = Column(String, nullable=False)  # discovery, ports
    triggered_by = Column(String, nullable=False)  # scheduled, manual
    status = Column(String, nullable=False)  # running, completed, failed
    started_at = Column(DateTime(timezone=True), default=now_utc)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    devices_found = Column(Integer, default=0)
    new_devices = Column(Integer, default=0)
    error_message = Column(String, nullable=True)
