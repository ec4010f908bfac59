from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..config import Thresholds
from ..domain import Device, Metric, ProblemCategory, ProblemSeverity, SpeedTestResult


@dataclass(frozen=True)
class RuleResult:
    rule_id: str
    severity: ProblemSeverity
    category: ProblemCategory
    title: str
    description: str
    impact: str
    recommendation: str
    affected_devices: List[str] = field(default_factory=list)

    def as_problem_fields(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "impact": self.impact,
            "recommendation": self.recommendation,
            "affected_devices": list(self.affected_devices),
        }


@dataclass(frozen=True)
class DiagnosticContext:
    """Read-only snapshot of the network that every rule in a pass sees."""
    devices: Tuple[Device, ...]
    metrics_by_device: Mapping[str, Sequence[Metric]]
    latest_speed_test: Optional[SpeedTestResult]
    recent_speed_tests: Tuple[SpeedTestResult, ...]
    dns_resolution_ms: Optional[float]
    contracted_download_mbps: float
    contracted_upload_mbps: float
    thresholds: Thresholds
    now: datetime

    def __post_init__(self):
        metrics = MappingProxyType({k: tuple(v) for k, v in self.metrics_by_device.items()})
        object.__setattr__(self, "metrics_by_device", metrics)
        object.__setattr__(self, "devices", tuple(self.devices))
        object.__setattr__(self, "recent_speed_tests", tuple(self.recent_speed_tests))

    def metrics_for(self, device_id: str) -> Sequence[Metric]:
        return self.metrics_by_device.get(device_id, ())

    @property
    def gateway(self) -> Optional[Device]:
        return next((d for d in self.devices if d.is_gateway), None)

    @property
    def monitored(self) -> List[Device]:
        return [d for d in self.devices if d.is_monitored]


@dataclass(frozen=True)
class Rule:
    """A named diagnostic check. `check` yields one RuleResult per finding."""
    rule_id: str
    name: str
    category: ProblemCategory
    check: Callable[[DiagnosticContext], Iterator[RuleResult]]

    def evaluate(self, ctx: DiagnosticContext) -> List[RuleResult]:
        return list(self.check(ctx))


def reachable_latencies(metrics: Sequence[Metric]) -> List[float]:
    return [m.latency_ms for m in metrics if m.is_reachable and m.latency_ms is not None]


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def mean_jitter(latencies: Sequence[float]) -> Optional[float]:
    """Mean absolute difference between consecutive latency readings."""
    if len(latencies) < 2:
        return None
    diffs = [abs(b - a) for a, b in zip(latencies, latencies[1:])]
    return sum(diffs) / len(diffs)


def mean_packet_loss(metrics: Sequence[Metric]) -> Optional[float]:
    return mean([m.packet_loss for m in metrics])


def count_transitions(metrics: Sequence[Metric]) -> int:
    """Number of reachable/unreachable flips between consecutive samples."""
    return sum(1 for a, b in zip(metrics, metrics[1:]) if a.is_reachable != b.is_reachable)
