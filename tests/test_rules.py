"""
Tests for the diagnostic rule bank, evaluated against hand-built contexts.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from netpulse_agent.config import Thresholds
from netpulse_agent.domain import Device, DeviceStatus, DeviceType, Metric, ProblemSeverity, SpeedTestResult
from netpulse_agent.rules import DEFAULT_RULES, DiagnosticContext

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

_seq = itertools.count(10)


def device(device_id, **kwargs):
    n = next(_seq)
    kwargs.setdefault("ip_address", f"192.168.1.{n % 250 + 2}")
    kwargs.setdefault("mac_address", f"aa:bb:cc:dd:{n // 256:02x}:{n % 256:02x}")
    kwargs.setdefault("first_seen", START - timedelta(days=1))
    return Device(id=device_id, **kwargs)


def metrics(device_id, latencies, packet_loss=0.0):
    return [
        Metric(
            id=i,
            device_id=device_id,
            timestamp=START - timedelta(minutes=len(latencies) - i),
            latency_ms=latency,
            packet_loss=100.0 if latency is None else packet_loss,
            jitter=None,
            is_reachable=latency is not None,
        )
        for i, latency in enumerate(latencies)
    ]


def speed_test(download, upload=10.0, ping=15.0, minutes_ago=0):
    return SpeedTestResult(
        id=minutes_ago, timestamp=START - timedelta(minutes=minutes_ago),
        download_mbps=download, upload_mbps=upload, ping_ms=ping,
    )


def context(devices=(), metrics_by_device=None, speed_tests=(), dns_ms=None, contracted=0, thresholds=None):
    speed_tests = list(speed_tests)
    return DiagnosticContext(
        devices=tuple(devices),
        metrics_by_device=metrics_by_device or {},
        latest_speed_test=speed_tests[-1] if speed_tests else None,
        recent_speed_tests=tuple(speed_tests),
        dns_resolution_ms=dns_ms,
        contracted_download_mbps=contracted,
        contracted_upload_mbps=0,
        thresholds=thresholds or Thresholds(),
        now=START,
    )


def run(rule_id, ctx):
    rule = next(r for r in DEFAULT_RULES if r.rule_id == rule_id)
    return rule.evaluate(ctx)


class TestRuleBank:
    def test_rule_ids_are_unique(self):
        ids = [r.rule_id for r in DEFAULT_RULES]
        assert len(ids) == len(set(ids)) == 16

    def test_healthy_network_fires_nothing(self):
        gw = device("gw", is_gateway=True, device_type=DeviceType.ROUTER)
        pc = device("pc", device_type=DeviceType.DESKTOP)
        ctx = context(
            [gw, pc],
            {"gw": metrics("gw", [2.0, 3.0, 2.0]), "pc": metrics("pc", [4.0, 5.0, 4.0])},
            speed_tests=[speed_test(95.0, 20.0)],
            dns_ms=30,
            contracted=100,
        )
        assert [r for rule in DEFAULT_RULES for r in rule.evaluate(ctx)] == []

    def test_context_is_read_only(self):
        ctx = context([device("a")], {"a": metrics("a", [1.0])})
        with pytest.raises(TypeError):
            ctx.metrics_by_device["b"] = []


class TestLatencyRules:
    def test_gateway_warning(self):
        gw = device("gw", is_gateway=True)
        results = run("high-latency-gateway", context([gw], {"gw": metrics("gw", [80.0, 90.0, None])}))
        assert len(results) == 1
        assert results[0].severity == ProblemSeverity.WARNING
        assert results[0].affected_devices == ["gw"]

    def test_gateway_critical(self):
        gw = device("gw", is_gateway=True)
        results = run("high-latency-gateway", context([gw], {"gw": metrics("gw", [250.0, 260.0])}))
        assert results[0].severity == ProblemSeverity.CRITICAL

    def test_gateway_at_limit_is_fine(self):
        gw = device("gw", is_gateway=True)
        assert run("high-latency-gateway", context([gw], {"gw": metrics("gw", [50.0, 50.0])})) == []

    def test_per_device_results(self):
        """Each slow non-gateway device gets its own rule id."""
        devices = [device("gw", is_gateway=True), device("a"), device("b"), device("c")]
        ctx = context(devices, {
            "gw": metrics("gw", [500.0]),
            "a": metrics("a", [150.0, 160.0]),
            "b": metrics("b", [300.0]),
            "c": metrics("c", [10.0]),
        })
        results = {r.rule_id: r for r in run("high-latency-device", ctx)}
        assert set(results) == {"high-latency-device:a", "high-latency-device:b"}
        assert results["high-latency-device:a"].severity == ProblemSeverity.WARNING
        assert results["high-latency-device:b"].severity == ProblemSeverity.CRITICAL

    def test_latency_spikes(self):
        ctx = context([device("a"), device("b")], {
            "a": metrics("a", [10.0, 300.0, 20.0, 400.0]),
            "b": metrics("b", [10.0, 300.0]),
        })
        results = run("latency-spikes", ctx)
        assert len(results) == 1
        assert results[0].affected_devices == ["a"]


class TestAvailabilityRules:
    def test_flapping_device(self):
        flapping = [1.0, None, 1.0, None, 1.0, None, 1.0]
        ctx = context([device("a")], {"a": metrics("a", flapping)})
        assert [r.rule_id for r in run("device-frequent-offline", ctx)] == ["device-frequent-offline:a"]

    def test_five_transitions_is_tolerated(self):
        ctx = context([device("a")], {"a": metrics("a", [1.0, None, 1.0, None, 1.0, None])})
        assert run("device-frequent-offline", ctx) == []

    def test_multiple_devices_offline(self):
        devices = [device(f"d{i}", status=DeviceStatus.OFFLINE if i < 4 else DeviceStatus.ONLINE) for i in range(10)]
        results = run("multiple-devices-offline", context(devices))
        assert results[0].severity == ProblemSeverity.CRITICAL
        assert len(results[0].affected_devices) == 4

    def test_offline_ratio_too_low(self):
        devices = [device(f"d{i}", status=DeviceStatus.OFFLINE if i < 4 else DeviceStatus.ONLINE) for i in range(20)]
        assert run("multiple-devices-offline", context(devices)) == []

    def test_packet_loss_severity(self):
        ctx = context([device("a"), device("b")], {
            "a": metrics("a", [1.0, 1.0], packet_loss=10.0),
            "b": metrics("b", [1.0, None], packet_loss=0.0),
        })
        results = {r.rule_id: r.severity for r in run("high-packet-loss", ctx)}
        assert results == {
            "high-packet-loss:a": ProblemSeverity.WARNING,
            "high-packet-loss:b": ProblemSeverity.CRITICAL,
        }


class TestSpeedRules:
    def test_below_contracted(self):
        results = run("speed-below-contracted", context(speed_tests=[speed_test(40.0)], contracted=100))
        assert results[0].severity == ProblemSeverity.WARNING

    def test_far_below_contracted_is_critical(self):
        results = run("speed-below-contracted", context(speed_tests=[speed_test(10.0)], contracted=100))
        assert results[0].severity == ProblemSeverity.CRITICAL

    def test_no_contract_no_problem(self):
        assert run("speed-below-contracted", context(speed_tests=[speed_test(1.0)])) == []

    def test_degrading_trend(self):
        tests = [speed_test(d, minutes_ago=60 - i) for i, d in enumerate([100.0, 100.0, 60.0, 50.0])]
        results = run("speed-degrading-trend", context(speed_tests=tests))
        assert results[0].severity == ProblemSeverity.INFO

    def test_trend_needs_four_tests(self):
        tests = [speed_test(d, minutes_ago=60 - i) for i, d in enumerate([100.0, 10.0, 10.0])]
        assert run("speed-degrading-trend", context(speed_tests=tests)) == []

    def test_upload_slow(self):
        assert len(run("upload-slow", context(speed_tests=[speed_test(100.0, upload=5.0)]))) == 1
        assert run("upload-slow", context(speed_tests=[speed_test(8.0, upload=0.1)])) == []


class TestInfrastructureRules:
    def test_broadcast_storm(self):
        storm = [10.0, 400.0, 5.0, 390.0]
        devices = [device(f"d{i}") for i in range(5)]
        ctx = context(devices, {
            "d0": metrics("d0", storm, packet_loss=40.0),
            "d1": metrics("d1", storm, packet_loss=40.0),
            "d2": metrics("d2", [1.0, 1.0, 1.0]),
        })
        results = run("possible-broadcast-storm", ctx)
        assert results[0].severity == ProblemSeverity.CRITICAL
        assert len(results[0].affected_devices) == 5

    def test_gateway_bottleneck(self):
        gw = device("gw", is_gateway=True)
        ctx = context([gw], {"gw": metrics("gw", [80.0, 90.0])}, speed_tests=[speed_test(50.0, ping=100.0)])
        assert len(run("gateway-is-bottleneck", ctx)) == 1

    def test_external_latency_explains_it(self):
        gw = device("gw", is_gateway=True)
        ctx = context([gw], {"gw": metrics("gw", [80.0, 90.0])}, speed_tests=[speed_test(50.0, ping=300.0)])
        assert run("gateway-is-bottleneck", ctx) == []

    def test_no_gateway(self):
        assert run("no-gateway-detected", context([device("a"), device("b")]))[0].severity == ProblemSeverity.INFO
        assert run("no-gateway-detected", context([device("a")])) == []


class TestSecurityRules:
    def test_new_unknown_device(self):
        established = [device(f"old{i}") for i in range(3)]
        newcomer = device("new", first_seen=START - timedelta(minutes=10))
        known = device("tv", first_seen=START - timedelta(minutes=10), device_type=DeviceType.IOT)
        results = run("new-unknown-device", context(established + [newcomer, known]))
        assert [r.rule_id for r in results] == ["new-unknown-device:new"]

    def test_first_scan_is_quiet(self):
        devices = [device(f"d{i}", first_seen=START - timedelta(minutes=1)) for i in range(6)]
        assert run("new-unknown-device", context(devices)) == []

    def test_many_unknown_devices(self):
        devices = [device(f"u{i}") for i in range(5)] + [device("pc", device_type=DeviceType.DESKTOP)]
        assert len(run("many-unknown-devices", context(devices))[0].affected_devices) == 5

    def test_risky_ports(self):
        ctx = context([device("a", open_ports=[22, 3389]), device("b", open_ports=[80, 443])])
        results = run("open-common-ports", ctx)
        assert [r.rule_id for r in results] == ["open-common-ports:a"]
        assert "3389" in results[0].description


class TestDnsRule:
    @pytest.mark.parametrize("dns_ms,expected", [
        (None, None),
        (150, None),
        (450, ProblemSeverity.INFO),
        (1500, ProblemSeverity.WARNING),
    ])
    def test_slow_dns(self, dns_ms, expected):
        results = run("slow-dns", context(dns_ms=dns_ms))
        assert [r.severity for r in results] == ([expected] if expected else [])
