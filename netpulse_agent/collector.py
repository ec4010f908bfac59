import concurrent.futures
import logging
from typing import List, Optional, Tuple

from .config import AgentConfig, Thresholds
from .domain import Device, DeviceStatus, Metric, ProbeResult, now_utc

logger = logging.getLogger(__name__)


def summarize_probe(result: ProbeResult) -> Tuple[Optional[float], float, Optional[float]]:
    """(latency ms, packet loss %, jitter ms) of one probe round, rounded to 2 decimals."""
    samples = result.samples
    count = max(result.count, 1)
    loss = round((count - len(samples)) / count * 100, 2)
    if not samples:
        return None, 100.0, None

    latency = round(sum(samples) / len(samples), 2)
    jitter = None
    if len(samples) >= 2:
        diffs = [abs(b - a) for a, b in zip(samples, samples[1:])]
        jitter = round(sum(diffs) / len(diffs), 2)
    return latency, max(0.0, loss), jitter


def determine_status(is_reachable: bool, latency_ms: Optional[float], packet_loss: float,
                     thresholds: Thresholds) -> DeviceStatus:
    if not is_reachable:
        return DeviceStatus.OFFLINE
    if (latency_ms is not None and latency_ms > thresholds.high_latency_ms) \
            or packet_loss > thresholds.packet_loss_percent:
        return DeviceStatus.DEGRADED
    return DeviceStatus.ONLINE


class MetricsCollector:
    """Pings monitored devices and records one Metric per device per round."""

    def __init__(self, repos, probes, config: Optional[AgentConfig] = None, clock=now_utc):
        self.repos = repos
        self.probes = probes
        self.config = config or AgentConfig()
        self.clock = clock

    def _probe(self, device: Device) -> ProbeResult:
        return self.probes.probe_reachability(
            device.ip_address, self.config.ping_count, self.config.ping_timeout_sec
        )

    def _record(self, device: Device, result: ProbeResult) -> Metric:
        latency, loss, jitter = summarize_probe(result)
        now = self.clock()
        metric = self.repos.metrics.create(
            device_id=device.id,
            latency_ms=latency,
            packet_loss=loss,
            jitter=jitter,
            is_reachable=result.is_reachable,
            timestamp=now,
        )

        fields = {
            "status": determine_status(result.is_reachable, latency, loss, self.config.thresholds),
            "latency_ms": latency,
            "packet_loss": loss,
        }
        if result.is_reachable:
            fields["last_seen"] = now
        self.repos.devices.update(device.id, **fields)
        return metric

    def probe_one(self, device: Device) -> Metric:
        return self._record(device, self._probe(device))

    def probe_all(self) -> List[Metric]:
        devices = self.repos.devices.find_monitored()
        if not devices:
            return []

        metrics = []
        workers = max(1, min(self.config.ping_batch_size, len(devices)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._probe, device): device for device in devices}
            for future in concurrent.futures.as_completed(futures):
                device = futures[future]
                try:
                    metrics.append(self._record(device, future.result()))
                except Exception as e:
                    logger.error(f"Probe of {device.ip_address} ({device.id}) failed: {e}")

        offline = sum(1 for m in metrics if not m.is_reachable)
        logger.info(f"Probed {len(metrics)}/{len(devices)} devices, {offline} unreachable")
        return metrics
