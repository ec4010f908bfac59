from ..domain import ProblemCategory, ProblemSeverity
from .base import Rule, RuleResult, mean

CRITICAL_SPEED_PERCENT = 20
TREND_MIN_TESTS = 4
TREND_RECENT_TESTS = 2
TREND_DEGRADATION_RATIO = 0.7
UPLOAD_MIN_DOWNLOAD_MBPS = 10
UPLOAD_MIN_RATIO = 0.1


def check_below_contracted(ctx):
    latest = ctx.latest_speed_test
    contracted = ctx.contracted_download_mbps
    if latest is None or not contracted or contracted <= 0:
        return

    percent = latest.download_mbps / contracted * 100
    if percent >= ctx.thresholds.speed_degraded_percent:
        return

    isp = latest.isp or "your internet provider"
    critical = percent < CRITICAL_SPEED_PERCENT
    if critical:
        recommendation = (
            f"Contact {isp} now and report that you are getting {round(percent)}% of the contracted "
            "speed. Meanwhile, power-cycle your modem/router for 30 seconds."
        )
    else:
        recommendation = (
            f"Restart your modem/router. If the speed stays low for 24 hours, contact {isp}: "
            f"contracted {contracted:g} Mbps, measured {latest.download_mbps:.1f} Mbps."
        )

    yield RuleResult(
        rule_id="speed-below-contracted",
        severity=ProblemSeverity.CRITICAL if critical else ProblemSeverity.WARNING,
        category=ProblemCategory.SPEED,
        title="Internet speed below the contracted plan",
        description=(
            f"Download speed is {latest.download_mbps:.1f} Mbps but the plan is {contracted:g} Mbps, "
            f"only {round(percent)}% of what you pay for."
        ),
        impact="Slow browsing, choppy video calls and slow downloads.",
        recommendation=recommendation,
    )


def check_degrading_trend(ctx):
    tests = ctx.recent_speed_tests
    if len(tests) < TREND_MIN_TESTS:
        return

    recent_avg = mean([t.download_mbps for t in tests[-TREND_RECENT_TESTS:]])
    previous_avg = mean([t.download_mbps for t in tests[:-TREND_RECENT_TESTS]])
    if not previous_avg or recent_avg >= previous_avg * TREND_DEGRADATION_RATIO:
        return

    degradation = round((1 - recent_avg / previous_avg) * 100)
    yield RuleResult(
        rule_id="speed-degrading-trend",
        severity=ProblemSeverity.INFO,
        category=ProblemCategory.SPEED,
        title="Internet speed is gradually dropping",
        description=(
            f"Over the last {len(tests)} speed tests download speed fell about {degradation}% "
            f"(from {previous_avg:.1f} Mbps to {recent_avg:.1f} Mbps)."
        ),
        impact="Internet experience will keep degrading for every user.",
        recommendation=(
            "Keep monitoring. If it keeps dropping over the next days, contact your provider "
            "with the recorded measurement history."
        ),
    )


def check_upload_slow(ctx):
    latest = ctx.latest_speed_test
    if latest is None or latest.download_mbps < UPLOAD_MIN_DOWNLOAD_MBPS:
        return
    if latest.upload_mbps / latest.download_mbps >= UPLOAD_MIN_RATIO:
        return

    yield RuleResult(
        rule_id="upload-slow",
        severity=ProblemSeverity.INFO,
        category=ProblemCategory.SPEED,
        title="Upload speed is very low compared to download",
        description=(
            f"Upload speed ({latest.upload_mbps:.1f} Mbps) is very low compared to download "
            f"speed ({latest.download_mbps:.1f} Mbps)."
        ),
        impact="Uploads, large attachments and outgoing video in calls will be slow.",
        recommendation=(
            "Many residential plans have a much lower upload speed. If you upload often, ask your "
            "provider for a symmetric plan."
        ),
    )


SPEED_RULES = (
    Rule("speed-below-contracted", "Speed below contracted plan", ProblemCategory.SPEED, check_below_contracted),
    Rule("speed-degrading-trend", "Speed degrading over time", ProblemCategory.SPEED, check_degrading_trend),
    Rule("upload-slow", "Very low upload speed", ProblemCategory.SPEED, check_upload_slow),
)
