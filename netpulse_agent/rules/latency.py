from ..domain import ProblemCategory, ProblemSeverity
from .base import Rule, RuleResult, mean, mean_jitter, reachable_latencies

GATEWAY_LATENCY_MS = 50
CRITICAL_LATENCY_MS = 200
SPIKE_JITTER_MS = 100
SPIKE_MIN_LATENCY_MS = 20
SPIKE_MIN_SAMPLES = 3


def check_gateway_latency(ctx):
    gateway = ctx.gateway
    if gateway is None:
        return
    avg = mean(reachable_latencies(ctx.metrics_for(gateway.id)))
    if avg is None or avg <= GATEWAY_LATENCY_MS:
        return

    critical = avg > CRITICAL_LATENCY_MS
    if critical:
        recommendation = (
            "Restart your router now. If the problem persists, check whether too many devices "
            "are connected or whether the router needs to be replaced."
        )
    else:
        recommendation = (
            "Check the cable between your computer and the router. On WiFi, move closer to the "
            "router. With more than 30 connected devices, consider adding a switch to spread the load."
        )

    yield RuleResult(
        rule_id="high-latency-gateway",
        severity=ProblemSeverity.CRITICAL if critical else ProblemSeverity.WARNING,
        category=ProblemCategory.LATENCY,
        title=f"Your router/gateway ({gateway.display_name}) has high latency",
        description=(
            f"Average latency to your router ({gateway.ip_address}) is {round(avg)}ms. "
            "Inside a local network it is normally below 5ms."
        ),
        impact="Every device on the network will be slow to browse, call or reach shared resources.",
        recommendation=recommendation,
        affected_devices=[gateway.id],
    )


def check_device_latency(ctx):
    threshold = ctx.thresholds.high_latency_ms
    for device in ctx.devices:
        if device.is_gateway:
            continue
        avg = mean(reachable_latencies(ctx.metrics_for(device.id)))
        if avg is None or avg <= threshold:
            continue

        yield RuleResult(
            rule_id=f"high-latency-device:{device.id}",
            severity=ProblemSeverity.CRITICAL if avg > CRITICAL_LATENCY_MS else ProblemSeverity.WARNING,
            category=ProblemCategory.LATENCY,
            title=f"{device.display_name} has high latency",
            description=(
                f'"{device.display_name}" ({device.ip_address}) answers with an average latency of '
                f"{round(avg)}ms. Normal would be below {threshold:g}ms."
            ),
            impact="This device may have a slow or intermittent connection.",
            recommendation=(
                "Check the network cable of this device. On WiFi, make sure the signal is good. "
                "The device may also be overloaded (high CPU)."
            ),
            affected_devices=[device.id],
        )


def check_latency_spikes(ctx):
    affected = []
    for device in ctx.devices:
        latencies = reachable_latencies(ctx.metrics_for(device.id))
        if len(latencies) < SPIKE_MIN_SAMPLES:
            continue
        if mean_jitter(latencies) > SPIKE_JITTER_MS and mean(latencies) > SPIKE_MIN_LATENCY_MS:
            affected.append(device.id)

    if not affected:
        return

    yield RuleResult(
        rule_id="latency-spikes",
        severity=ProblemSeverity.WARNING,
        category=ProblemCategory.LATENCY,
        title="Unstable latency detected (possible infrastructure problem)",
        description=(
            f"Latency swings sharply on {len(affected)} device(s). This usually points at a loop "
            "between switches, a broadcast storm or WiFi interference."
        ),
        impact="Users will see an intermittent connection that alternates between fine and very slow.",
        recommendation=(
            "Look for a damaged or redundant cable creating a loop between switches. "
            "On managed switches, make sure Spanning Tree Protocol (STP) is enabled."
        ),
        affected_devices=affected,
    )


LATENCY_RULES = (
    Rule("high-latency-gateway", "High gateway latency", ProblemCategory.LATENCY, check_gateway_latency),
    Rule("high-latency-device", "High device latency", ProblemCategory.LATENCY, check_device_latency),
    Rule("latency-spikes", "Unstable latency (high jitter)", ProblemCategory.LATENCY, check_latency_spikes),
)
