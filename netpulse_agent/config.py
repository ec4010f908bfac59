import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class Thresholds:
    high_latency_ms: float = 100
    packet_loss_percent: float = 5
    speed_degraded_percent: float = 50


@dataclass
class AgentConfig:
    database_url: str = "sqlite:///netpulse.db"
    lan_cidr: str = ""

    scan_interval_sec: int = 1800
    ping_interval_sec: int = 60
    diagnostics_interval_sec: int = 300
    retention_interval_sec: int = 86400

    ping_count: int = 3
    ping_timeout_sec: float = 2
    ping_batch_size: int = 10

    sweep_concurrency: int = 32
    sweep_timeout_sec: float = 1
    max_sweep_hosts: int = 1024
    arp_settle_sec: float = 2

    port_scan_concurrency: int = 20
    port_timeout_sec: float = 1

    thresholds: Thresholds = field(default_factory=Thresholds)
    contracted_download_mbps: float = 0
    contracted_upload_mbps: float = 0

    alert_cooldown_min: int = 30
    metrics_lookback_min: int = 60
    metrics_retention_days: int = 30

    dns_test_domain: str = "google.com"
    enable_hostname_resolve: bool = True
    resolve_timeout_sec: float = 1
    oui_path: str = "/usr/share/ieee-data/oui.txt"

    event_webhook_url: str = ""
    log_level: str = "INFO"


def load_config() -> AgentConfig:
    """Build the agent configuration from environment variables."""
    return AgentConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///netpulse.db"),
        lan_cidr=os.getenv("LAN_CIDR", "").strip(),
        scan_interval_sec=_env_int("SCAN_INTERVAL_SEC", 1800),
        ping_interval_sec=_env_int("PING_INTERVAL_SEC", 60),
        diagnostics_interval_sec=_env_int("DIAGNOSTICS_INTERVAL_SEC", 300),
        retention_interval_sec=_env_int("RETENTION_INTERVAL_SEC", 86400),
        ping_count=_env_int("PING_COUNT", 3),
        ping_timeout_sec=_env_float("PING_TIMEOUT_SEC", 2),
        ping_batch_size=_env_int("PING_BATCH_SIZE", 10),
        sweep_concurrency=_env_int("SWEEP_CONCURRENCY", 32),
        sweep_timeout_sec=_env_float("SWEEP_TIMEOUT_SEC", 1),
        max_sweep_hosts=_env_int("MAX_SWEEP_HOSTS", 1024),
        arp_settle_sec=_env_float("ARP_SETTLE_SEC", 2),
        port_scan_concurrency=_env_int("PORT_SCAN_CONCURRENCY", 20),
        port_timeout_sec=_env_float("PORT_TIMEOUT_SEC", 1),
        thresholds=Thresholds(
            high_latency_ms=_env_float("HIGH_LATENCY_MS", 100),
            packet_loss_percent=_env_float("PACKET_LOSS_PERCENT", 5),
            speed_degraded_percent=_env_float("SPEED_DEGRADED_PERCENT", 50),
        ),
        contracted_download_mbps=_env_float("CONTRACTED_DOWNLOAD_MBPS", 0),
        contracted_upload_mbps=_env_float("CONTRACTED_UPLOAD_MBPS", 0),
        alert_cooldown_min=_env_int("ALERT_COOLDOWN_MIN", 30),
        metrics_lookback_min=_env_int("METRICS_LOOKBACK_MIN", 60),
        metrics_retention_days=_env_int("METRICS_RETENTION_DAYS", 30),
        dns_test_domain=os.getenv("DNS_TEST_DOMAIN", "google.com"),
        enable_hostname_resolve=_env_bool("ENABLE_HOSTNAME_RESOLVE", True),
        resolve_timeout_sec=_env_float("RESOLVE_TIMEOUT_SEC", 1),
        oui_path=os.getenv("OUI_PATH", "/usr/share/ieee-data/oui.txt"),
        event_webhook_url=os.getenv("EVENT_WEBHOOK_URL", "").strip(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
