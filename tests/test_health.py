"""
Tests for the weighted network health score.
"""

import pytest

from netpulse_agent.domain import (
    DeviceStatus,
    HealthCategory,
    HealthTrend,
    ProblemCategory,
    ProblemSeverity,
)
from netpulse_agent.events import HEALTH_UPDATED
from netpulse_agent.health import (
    absolute_speed_score,
    calculate_trend,
    gateway_latency_score,
    packet_loss_score,
    round_half_up,
    score_to_category,
    speed_percent_score,
)


def _factors(services):
    return {f.name: f.score for f in services.health.evaluate_factors()}


def _open_problem(repos, rule_id, severity):
    return repos.problems.create(
        rule_id=rule_id,
        severity=severity,
        category=ProblemCategory.LATENCY,
        title=rule_id,
        description="description",
    )


class TestScoreBuckets:
    @pytest.mark.parametrize("latency,expected", [
        (1.0, 100), (5.0, 80), (19.9, 80), (20.0, 60), (49.0, 60),
        (50.0, 40), (99.0, 40), (120.0, 40), (199.9, 40), (200.0, 0),
    ])
    def test_gateway_latency(self, latency, expected):
        assert gateway_latency_score(latency) == expected

    @pytest.mark.parametrize("loss,expected", [
        (0, 100), (0.5, 90), (2, 70), (4, 50), (8, 30), (10, 0),
    ])
    def test_packet_loss(self, loss, expected):
        assert packet_loss_score(loss) == expected

    def test_speed_percent(self):
        assert [speed_percent_score(p) for p in (95, 90, 71, 55, 31, 30)] == [100, 80, 80, 60, 40, 10]

    def test_absolute_speed(self):
        assert [absolute_speed_score(d) for d in (100, 50, 25, 10, 5)] == [90, 70, 70, 50, 30]

    @pytest.mark.parametrize("score,expected", [
        (100, HealthCategory.EXCELLENT),
        (80, HealthCategory.EXCELLENT),
        (79, HealthCategory.GOOD),
        (60, HealthCategory.GOOD),
        (40, HealthCategory.FAIR),
        (39, HealthCategory.CRITICAL),
        (0, HealthCategory.CRITICAL),
    ])
    def test_category(self, score, expected):
        assert score_to_category(score) == expected

    def test_trend(self):
        assert calculate_trend(70, None) == HealthTrend.STABLE
        assert calculate_trend(76, 70) == HealthTrend.IMPROVING
        assert calculate_trend(75, 70) == HealthTrend.STABLE
        assert calculate_trend(64, 70) == HealthTrend.DECLINING

    def test_round_half_up(self):
        assert round_half_up(77.5) == 78
        assert round_half_up(62.5) == 63
        assert round_half_up(62.49) == 62


class TestFactors:
    """Each factor against a prepared registry."""

    def test_slow_gateway(self, services, add_device, add_metrics):
        gateway = add_device(is_gateway=True)
        add_metrics(gateway.id, [120.0] * 5)
        assert _factors(services)["Gateway latency"] == 40

    def test_unreachable_gateway(self, services, add_device, add_metrics):
        gateway = add_device(is_gateway=True)
        add_metrics(gateway.id, [None, None])
        assert _factors(services)["Gateway latency"] == 20

    def test_no_gateway(self, services):
        assert _factors(services)["Gateway latency"] == 50

    def test_packet_loss_averages_devices(self, services, add_device, add_metrics):
        a = add_device()
        b = add_device()
        add_metrics(a.id, [1.0, 1.0], packet_loss=0.0)
        add_metrics(b.id, [1.0, 1.0], packet_loss=4.0)
        # mean of per-device averages is 2%
        assert _factors(services)["Packet loss"] == 70

    def test_device_availability(self, services, add_device):
        for i in range(10):
            add_device(status=DeviceStatus.OFFLINE if i < 3 else DeviceStatus.ONLINE)
        assert _factors(services)["Device availability"] == 70

    def test_degraded_devices_are_not_available(self, services, add_device):
        add_device(status=DeviceStatus.DEGRADED)
        add_device()
        assert _factors(services)["Device availability"] == 50

    def test_unmonitored_devices_are_ignored(self, services, add_device):
        add_device(status=DeviceStatus.OFFLINE, is_monitored=False)
        add_device()
        assert _factors(services)["Device availability"] == 100

    def test_active_problems(self, services, repos, clock):
        _open_problem(repos, "a", ProblemSeverity.CRITICAL)
        _open_problem(repos, "b", ProblemSeverity.WARNING)
        resolved = _open_problem(repos, "c", ProblemSeverity.CRITICAL)
        repos.problems.resolve(resolved.id, resolved_at=clock())
        assert _factors(services)["Active problems"] == 55

    def test_problems_floor_at_zero(self, services, repos):
        for i in range(4):
            _open_problem(repos, f"p{i}", ProblemSeverity.CRITICAL)
        assert _factors(services)["Active problems"] == 0

    def test_speed_against_contract(self, services, repos, config):
        config.contracted_download_mbps = 100
        repos.speed_tests.create(60.0, 10.0, 15.0)
        assert _factors(services)["Internet speed"] == 60

    def test_speed_without_contract(self, services, repos):
        repos.speed_tests.create(60.0, 10.0, 15.0)
        assert _factors(services)["Internet speed"] == 90

    def test_no_speed_test(self, services):
        assert _factors(services)["Internet speed"] == 50

    def test_failing_factor_scores_fallback(self, services, monkeypatch):
        def broken():
            raise RuntimeError("database gone")

        monkeypatch.setattr(services.repos.speed_tests, "latest", broken)
        factors = _factors(services)
        assert factors["Internet speed"] == 50
        assert factors["Packet loss"] == 100


class TestCalculateHealthScore:
    """The stored, weighted total."""

    def test_slow_gateway_network(self, services, add_device, add_metrics):
        """A 120ms gateway on an otherwise quiet network scores 75."""
        gateway = add_device(is_gateway=True)
        add_metrics(gateway.id, [120.0] * 5)

        score = services.health.calculate_health_score()

        assert score.score == 75
        assert score.category == HealthCategory.GOOD
        assert score.trend == HealthTrend.STABLE
        assert [f.weight for f in score.factors] == [0.25, 0.25, 0.20, 0.15, 0.15]

    def test_empty_network_rounds_half_up(self, services):
        # 50*0.25 + 100*0.25 + 50*0.20 + 100*0.15 + 100*0.15 = 77.5
        assert services.health.calculate_health_score().score == 78

    def test_score_is_stored(self, services, repos, clock):
        score = services.health.calculate_health_score()
        latest = repos.health_scores.latest()
        assert latest.score == score.score
        assert latest.calculated_at == clock()

    def test_trend_follows_previous_score(self, services, repos, clock):
        services.health.calculate_health_score()

        clock.advance(minutes=5)
        opened = [_open_problem(repos, rule_id, ProblemSeverity.CRITICAL) for rule_id in ("a", "b")]
        declined = services.health.calculate_health_score()
        assert declined.trend == HealthTrend.DECLINING

        clock.advance(minutes=5)
        for problem in opened:
            repos.problems.resolve(problem.id, resolved_at=clock())
        improved = services.health.calculate_health_score()
        assert improved.trend == HealthTrend.IMPROVING
        assert [s.score for s in repos.health_scores.history()] == [improved.score, declined.score, 78]

    def test_score_stays_in_bounds(self, services, repos, add_device, add_metrics):
        gateway = add_device(is_gateway=True, status=DeviceStatus.OFFLINE)
        add_metrics(gateway.id, [500.0] * 3, packet_loss=50.0)
        for i in range(5):
            _open_problem(repos, f"p{i}", ProblemSeverity.CRITICAL)

        score = services.health.calculate_health_score()

        assert 0 <= score.score <= 100
        assert score.category == HealthCategory.CRITICAL

    def test_emits_health_updated(self, services, events):
        score = services.health.calculate_health_score()
        payload = events.of_type(HEALTH_UPDATED)[0]
        assert payload["score"] == score.score
        assert payload["category"] == "excellent"
        assert payload["trend"] == "stable"
        assert [f["name"] for f in payload["factors"]] == [
            "Gateway latency", "Packet loss", "Internet speed", "Device availability", "Active problems",
        ]
