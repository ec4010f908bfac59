from ..domain import ProblemCategory, ProblemSeverity
from .base import Rule, RuleResult, mean, mean_jitter, mean_packet_loss, reachable_latencies

STORM_MIN_DEVICES = 3
STORM_MIN_SAMPLES = 3
STORM_JITTER_MS = 150
STORM_LOSS_PERCENT = 20
STORM_DEVICE_RATIO = 0.4
BOTTLENECK_LATENCY_MS = 50
BOTTLENECK_EXTERNAL_RATIO = 1.5


def _storm_symptoms(metrics) -> bool:
    latencies = reachable_latencies(metrics)
    if len(metrics) < STORM_MIN_SAMPLES or len(latencies) < STORM_MIN_SAMPLES:
        return False
    return (
        mean_jitter(latencies) > STORM_JITTER_MS
        and mean_packet_loss(metrics) > STORM_LOSS_PERCENT
        and any(m.is_reachable for m in metrics)
    )


def check_broadcast_storm(ctx):
    monitored = ctx.monitored
    if len(monitored) < STORM_MIN_DEVICES:
        return

    affected = sum(1 for d in monitored if _storm_symptoms(ctx.metrics_for(d.id)))
    if affected == 0 or affected < len(monitored) * STORM_DEVICE_RATIO:
        return

    yield RuleResult(
        rule_id="possible-broadcast-storm",
        severity=ProblemSeverity.CRITICAL,
        category=ProblemCategory.INFRASTRUCTURE,
        title="Possible broadcast storm detected",
        description=(
            f"{affected} of {len(monitored)} devices show extreme latency and packet loss at the "
            "same time while still answering intermittently, the typical pattern of a broadcast storm."
        ),
        impact="The network is practically unusable.",
        recommendation=(
            "1. Look for a cable connecting two ports of the same switch, or switches linked by "
            "more than one cable, and unplug it.\n"
            "2. On managed switches, make sure STP is enabled.\n"
            "3. As a last resort, disconnect switches one at a time until the loop disappears."
        ),
        affected_devices=[d.id for d in monitored],
    )


def check_gateway_bottleneck(ctx):
    gateway = ctx.gateway
    speed_test = ctx.latest_speed_test
    if gateway is None or speed_test is None:
        return
    gateway_avg = mean(reachable_latencies(ctx.metrics_for(gateway.id)))
    if gateway_avg is None or gateway_avg <= BOTTLENECK_LATENCY_MS:
        return
    if speed_test.ping_ms >= gateway_avg * BOTTLENECK_EXTERNAL_RATIO:
        return

    yield RuleResult(
        rule_id="gateway-is-bottleneck",
        severity=ProblemSeverity.WARNING,
        category=ProblemCategory.INFRASTRUCTURE,
        title="Your router/gateway looks like the bottleneck",
        description=(
            f"Latency inside the LAN is high ({round(gateway_avg)}ms to the gateway) while the "
            f"external ping is comparable ({round(speed_test.ping_ms)}ms). The router is not "
            "forwarding traffic efficiently."
        ),
        impact="The whole network is affected since all traffic goes through this device.",
        recommendation=(
            "1. Restart the router\n"
            "2. Check how many devices are connected\n"
            "3. Look for firmware updates\n"
            "4. Consider replacing equipment older than five years"
        ),
        affected_devices=[gateway.id],
    )


def check_no_gateway(ctx):
    if ctx.gateway is not None or len(ctx.devices) < 2:
        return

    yield RuleResult(
        rule_id="no-gateway-detected",
        severity=ProblemSeverity.INFO,
        category=ProblemCategory.CONFIGURATION,
        title="No gateway/router detected on your network",
        description="The router could not be identified automatically, so some diagnostics are unavailable.",
        impact="Gateway latency and bottleneck checks are skipped.",
        recommendation=(
            "Mark your router as the gateway in the device list. It is usually the device whose "
            "address ends in .1 (for example 192.168.1.1)."
        ),
    )


INFRASTRUCTURE_RULES = (
    Rule("possible-broadcast-storm", "Possible broadcast storm", ProblemCategory.INFRASTRUCTURE,
         check_broadcast_storm),
    Rule("gateway-is-bottleneck", "Gateway is the bottleneck", ProblemCategory.INFRASTRUCTURE,
         check_gateway_bottleneck),
    Rule("no-gateway-detected", "No gateway detected", ProblemCategory.CONFIGURATION, check_no_gateway),
)
