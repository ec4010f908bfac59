import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional

from .config import AgentConfig
from .domain import (
    DeviceStatus,
    HealthCategory,
    HealthFactorResult,
    HealthScore,
    HealthTrend,
    now_utc,
)
from .events import HEALTH_UPDATED, EventSink
from .rules.base import mean, mean_packet_loss, reachable_latencies

logger = logging.getLogger(__name__)

FACTOR_FALLBACK_SCORE = 50
TREND_DELTA = 5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_to_category(score: int) -> HealthCategory:
    if score >= 80:
        return HealthCategory.EXCELLENT
    if score >= 60:
        return HealthCategory.GOOD
    if score >= 40:
        return HealthCategory.FAIR
    return HealthCategory.CRITICAL


def calculate_trend(current: int, previous: Optional[int]) -> HealthTrend:
    if previous is None:
        return HealthTrend.STABLE
    diff = current - previous
    if diff > TREND_DELTA:
        return HealthTrend.IMPROVING
    if diff < -TREND_DELTA:
        return HealthTrend.DECLINING
    return HealthTrend.STABLE


def gateway_latency_score(avg_latency_ms: float) -> int:
    if avg_latency_ms < 5:
        return 100
    if avg_latency_ms < 20:
        return 80
    if avg_latency_ms < 50:
        return 60
    if avg_latency_ms < 200:
        return 40
    return 0


def packet_loss_score(avg_loss: float) -> int:
    if avg_loss == 0:
        return 100
    if avg_loss < 1:
        return 90
    if avg_loss < 3:
        return 70
    if avg_loss < 5:
        return 50
    if avg_loss < 10:
        return 30
    return 0


def speed_percent_score(percent: float) -> int:
    if percent > 90:
        return 100
    if percent > 70:
        return 80
    if percent > 50:
        return 60
    if percent > 30:
        return 40
    return 10


def absolute_speed_score(download_mbps: float) -> int:
    if download_mbps > 50:
        return 90
    if download_mbps > 20:
        return 70
    if download_mbps > 5:
        return 50
    return 30


@dataclass(frozen=True)
class HealthFactor:
    name: str
    weight: float
    description: str
    calculate: Callable[["HealthScoreAggregator"], float]


class HealthScoreAggregator:
    """Weighted 0-100 network health score built from five factors."""

    def __init__(self, repos, events: Optional[EventSink] = None, config: Optional[AgentConfig] = None,
                 clock=now_utc):
        self.repos = repos
        self.events = events or EventSink()
        self.config = config or AgentConfig()
        self.clock = clock
        self.factors = [
            HealthFactor("Gateway latency", 0.25, "How fast your main router responds",
                         HealthScoreAggregator.gateway_latency),
            HealthFactor("Packet loss", 0.25, "How much data is lost on your network",
                         HealthScoreAggregator.packet_loss),
            HealthFactor("Internet speed", 0.20, "How much of your contracted speed you actually get",
                         HealthScoreAggregator.internet_speed),
            HealthFactor("Device availability", 0.15, "How many of your devices are up",
                         HealthScoreAggregator.device_availability),
            HealthFactor("Active problems", 0.15, "Number and severity of detected problems",
                         HealthScoreAggregator.active_problems),
        ]

    def _since(self):
        return self.clock() - timedelta(minutes=self.config.metrics_lookback_min)

    def gateway_latency(self) -> float:
        gateway = self.repos.devices.find_gateway()
        if gateway is None:
            return 50
        metrics = self.repos.metrics.find_by_device(gateway.id, self._since())
        avg = mean(reachable_latencies(metrics))
        if avg is None:
            return 20
        return gateway_latency_score(avg)

    def packet_loss(self) -> float:
        devices = self.repos.devices.find_monitored()
        metrics = self.repos.metrics.find_since(self._since(), [d.id for d in devices])
        losses = [mean_packet_loss(samples) for samples in metrics.values() if samples]
        if not losses:
            return 100
        return packet_loss_score(mean(losses))

    def internet_speed(self) -> float:
        latest = self.repos.speed_tests.latest()
        if latest is None:
            return 50
        contracted = self.config.contracted_download_mbps
        if not contracted or contracted <= 0:
            return absolute_speed_score(latest.download_mbps)
        return speed_percent_score(latest.download_mbps / contracted * 100)

    def device_availability(self) -> float:
        monitored = self.repos.devices.find_monitored()
        if not monitored:
            return 100
        online = sum(1 for d in monitored if d.status == DeviceStatus.ONLINE)
        return online / len(monitored) * 100

    def active_problems(self) -> float:
        counts = self.repos.problems.count_active_by_severity()
        deduction = counts["critical"] * 30 + counts["warning"] * 15 + counts["info"] * 5
        return max(0, 100 - deduction)

    def evaluate_factors(self) -> List[HealthFactorResult]:
        results = []
        for factor in self.factors:
            try:
                score = max(0, min(100, round_half_up(factor.calculate(self))))
            except Exception:
                logger.exception(f'Health factor "{factor.name}" failed')
                score = FACTOR_FALLBACK_SCORE
            logger.debug(f'Factor "{factor.name}": {score}/100 (weight {factor.weight})')
            results.append(HealthFactorResult(
                name=factor.name, score=score, weight=factor.weight, description=factor.description,
            ))
        return results

    def calculate_health_score(self) -> HealthScore:
        logger.info("Calculating health score...")
        factors = self.evaluate_factors()
        score = max(0, min(100, round_half_up(sum(f.score * f.weight for f in factors))))
        category = score_to_category(score)

        previous = self.repos.health_scores.latest()
        trend = calculate_trend(score, previous.score if previous else None)

        stored = self.repos.health_scores.create(
            score=score, category=category, factors=factors, trend=trend, calculated_at=self.clock(),
        )
        self.events.emit(HEALTH_UPDATED, {
            "score": score,
            "category": category.value,
            "trend": trend.value,
            "factors": [{"name": f.name, "score": f.score, "weight": f.weight} for f in factors],
        })
        logger.info(f"Health score: {score}/100 ({category.value}), trend {trend.value}")
        return stored
