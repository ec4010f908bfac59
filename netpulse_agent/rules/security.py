from datetime import timedelta

from ..domain import DeviceType, ProblemCategory, ProblemSeverity
from .base import Rule, RuleResult

NEW_DEVICE_WINDOW = timedelta(minutes=30)
ESTABLISHED_AGE = timedelta(minutes=5)
MIN_ESTABLISHED_DEVICES = 3
MANY_UNKNOWN_COUNT = 5
MANY_UNKNOWN_RATIO = 0.5

RISKY_PORTS = {
    23: "Telnet (unencrypted)",
    3389: "RDP (remote desktop)",
    5900: "VNC (remote control)",
    8080: "HTTP proxy (unencrypted)",
    8443: "alternate HTTPS",
}


def check_new_unknown_device(ctx):
    # Skip the first scans, when every device is new.
    established = [d for d in ctx.devices if d.first_seen < ctx.now - ESTABLISHED_AGE]
    if len(established) < MIN_ESTABLISHED_DEVICES:
        return

    for device in ctx.devices:
        if device.first_seen < ctx.now - NEW_DEVICE_WINDOW:
            continue
        if device.device_type != DeviceType.UNKNOWN:
            continue

        vendor = device.vendor or "Unidentified"
        yield RuleResult(
            rule_id=f"new-unknown-device:{device.id}",
            severity=ProblemSeverity.INFO,
            category=ProblemCategory.SECURITY,
            title=f"New device on your network: {vendor}",
            description=(
                "A new device joined your network:\n"
                f"- IP: {device.ip_address}\n"
                f"- MAC: {device.mac_address}\n"
                f"- Vendor: {vendor}\n"
                "If you do not recognize it, someone may be using your network without permission."
            ),
            impact="An unauthorized device can consume bandwidth or be a security risk.",
            recommendation=(
                f"Do you recognize this device? If not, change your WiFi password. The vendor "
                f"({vendor}) can help identify what was connected recently."
            ),
            affected_devices=[device.id],
        )


def check_many_unknown(ctx):
    unknown = [d for d in ctx.devices if d.device_type == DeviceType.UNKNOWN]
    total = len(ctx.devices)
    if len(unknown) < MANY_UNKNOWN_COUNT or len(unknown) < total * MANY_UNKNOWN_RATIO:
        return

    yield RuleResult(
        rule_id="many-unknown-devices",
        severity=ProblemSeverity.INFO,
        category=ProblemCategory.SECURITY,
        title=f"{len(unknown)} unidentified devices on your network",
        description=(
            f"{len(unknown)} of the {total} devices on your network could not be identified "
            "automatically. That is not necessarily a problem, but worth reviewing."
        ),
        impact="Without knowing the devices it is hard to spot unauthorized equipment.",
        recommendation=(
            "Review the device list and name the ones you recognize. If some are unfamiliar, "
            "consider changing your WiFi password."
        ),
        affected_devices=[d.id for d in unknown],
    )


def check_open_risky_ports(ctx):
    for device in ctx.devices:
        risky = [p for p in device.open_ports if p in RISKY_PORTS]
        if not risky:
            continue

        port_list = ", ".join(f"{p} ({RISKY_PORTS[p]})" for p in risky)
        yield RuleResult(
            rule_id=f"open-common-ports:{device.id}",
            severity=ProblemSeverity.WARNING,
            category=ProblemCategory.SECURITY,
            title=f"{device.display_name} has risky ports open",
            description=(
                f'"{device.display_name}" ({device.ip_address}) has ports open that may be a '
                f"security risk: {port_list}."
            ),
            impact=(
                "Telnet, RDP and VNC give remote access to the device. Without a strong password "
                "someone could get in without authorization."
            ),
            recommendation=(
                "If you do not need remote access, close these ports in the device settings. "
                "Otherwise use strong passwords and allow access only from the local network."
            ),
            affected_devices=[device.id],
        )


SECURITY_RULES = (
    Rule("new-unknown-device", "New unknown device", ProblemCategory.SECURITY, check_new_unknown_device),
    Rule("many-unknown-devices", "Many unidentified devices", ProblemCategory.SECURITY, check_many_unknown),
    Rule("open-common-ports", "Risky ports open", ProblemCategory.SECURITY, check_open_risky_ports),
)
