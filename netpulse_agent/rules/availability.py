from ..domain import DeviceStatus, ProblemCategory, ProblemSeverity
from .base import Rule, RuleResult, count_transitions, mean_packet_loss

FLAPPING_MIN_SAMPLES = 5
FLAPPING_TRANSITIONS = 5
OFFLINE_MIN_COUNT = 3
OFFLINE_RATIO = 0.3
CRITICAL_LOSS_PERCENT = 20


def check_frequent_offline(ctx):
    for device in ctx.devices:
        metrics = ctx.metrics_for(device.id)
        if len(metrics) < FLAPPING_MIN_SAMPLES:
            continue
        transitions = count_transitions(metrics)
        if transitions <= FLAPPING_TRANSITIONS:
            continue

        yield RuleResult(
            rule_id=f"device-frequent-offline:{device.id}",
            severity=ProblemSeverity.WARNING,
            category=ProblemCategory.AVAILABILITY,
            title=f"{device.display_name} disconnects frequently",
            description=(
                f'"{device.display_name}" ({device.ip_address}) went offline and back '
                f"{transitions} times in the recent measurements."
            ),
            impact=(
                "If this is a printer, server or access point, the devices that depend on it "
                "are affected too."
            ),
            recommendation=(
                "Frequent disconnects usually come from a damaged or loose cable, a weak WiFi "
                "signal, or a failing device. Check the physical connection first."
            ),
            affected_devices=[device.id],
        )


def check_multiple_offline(ctx):
    monitored = ctx.monitored
    offline = [d for d in monitored if d.status == DeviceStatus.OFFLINE]
    if len(offline) <= OFFLINE_MIN_COUNT or len(offline) <= len(monitored) * OFFLINE_RATIO:
        return

    yield RuleResult(
        rule_id="multiple-devices-offline",
        severity=ProblemSeverity.CRITICAL,
        category=ProblemCategory.AVAILABILITY,
        title="Multiple devices offline",
        description=(
            f"{len(offline)} of {len(monitored)} devices are offline at the same time. "
            "This points at a larger infrastructure failure."
        ),
        impact="A large part of the network is down.",
        recommendation=(
            "When many devices drop together the cause is usually a failed switch, router or "
            "access point. Check that the main router and switches are powered and their link "
            "lights look normal, and whether a recent power cut restarted equipment."
        ),
        affected_devices=[d.id for d in offline],
    )


def check_packet_loss(ctx):
    threshold = ctx.thresholds.packet_loss_percent
    for device in ctx.devices:
        avg_loss = mean_packet_loss(ctx.metrics_for(device.id))
        if avg_loss is None or avg_loss <= threshold:
            continue

        yield RuleResult(
            rule_id=f"high-packet-loss:{device.id}",
            severity=ProblemSeverity.CRITICAL if avg_loss > CRITICAL_LOSS_PERCENT else ProblemSeverity.WARNING,
            category=ProblemCategory.PACKET_LOSS,
            title=f"{device.display_name} has high packet loss",
            description=(
                f'"{device.display_name}" ({device.ip_address}) is losing {round(avg_loss)}% of '
                f"packets on average. Acceptable is below {threshold:g}%."
            ),
            impact="Pages load partially, video calls freeze and file transfers fail.",
            recommendation=(
                "Check the device's physical connection. On a cable, try another cable; on WiFi, "
                "move the device closer to the router or look for interference."
            ),
            affected_devices=[device.id],
        )


AVAILABILITY_RULES = (
    Rule("device-frequent-offline", "Device disconnects frequently", ProblemCategory.AVAILABILITY,
         check_frequent_offline),
    Rule("multiple-devices-offline", "Multiple devices offline", ProblemCategory.AVAILABILITY,
         check_multiple_offline),
    Rule("high-packet-loss", "High packet loss", ProblemCategory.PACKET_LOSS, check_packet_loss),
)
