from .availability import AVAILABILITY_RULES
from .base import DiagnosticContext, Rule, RuleResult
from .dns import DNS_RULES
from .infrastructure import INFRASTRUCTURE_RULES
from .latency import LATENCY_RULES
from .security import SECURITY_RULES
from .speed import SPEED_RULES

DEFAULT_RULES = (
    LATENCY_RULES
    + AVAILABILITY_RULES
    + SPEED_RULES
    + INFRASTRUCTURE_RULES
    + SECURITY_RULES
    + DNS_RULES
)

__all__ = ["DEFAULT_RULES", "DiagnosticContext", "Rule", "RuleResult"]
