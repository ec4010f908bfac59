from ..domain import ProblemCategory, ProblemSeverity
from .base import Rule, RuleResult

SLOW_DNS_MS = 200
VERY_SLOW_DNS_MS = 1000


def check_slow_dns(ctx):
    dns_ms = ctx.dns_resolution_ms
    if dns_ms is None or dns_ms <= SLOW_DNS_MS:
        return

    yield RuleResult(
        rule_id="slow-dns",
        severity=ProblemSeverity.WARNING if dns_ms > VERY_SLOW_DNS_MS else ProblemSeverity.INFO,
        category=ProblemCategory.DNS,
        title="Your DNS is responding slowly",
        description=f"Resolving a domain name takes {round(dns_ms)}ms. Ideally it is below 50ms.",
        impact="Every new page you open starts with an extra delay.",
        recommendation=(
            "Change the DNS servers in your router settings, for example Google (8.8.8.8, 8.8.4.4) "
            "or Cloudflare (1.1.1.1, 1.0.0.1)."
        ),
    )


DNS_RULES = (
    Rule("slow-dns", "Slow DNS", ProblemCategory.DNS, check_slow_dns),
)
