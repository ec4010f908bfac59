import logging
import threading
from datetime import timedelta
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError

from .config import AgentConfig
from .domain import AlertType, Problem, ProblemSeverity, now_utc
from .events import PROBLEM_CREATED, PROBLEM_RESOLVED, EventSink
from .rules import DEFAULT_RULES, DiagnosticContext, Rule, RuleResult

logger = logging.getLogger(__name__)

RECENT_SPEED_TESTS = 10


class DiagnosticEngine:
    """
    Runs the rule bank against a snapshot of the network and keeps the
    problem list in sync with it: new findings open problems (and alerts),
    repeated findings refresh them, findings that stop firing resolve them.
    """

    def __init__(self, repos, probes, events: Optional[EventSink] = None, config: Optional[AgentConfig] = None,
                 rules: Sequence[Rule] = DEFAULT_RULES, clock=now_utc):
        self.repos = repos
        self.probes = probes
        self.events = events or EventSink()
        self.config = config or AgentConfig()
        self.rules = tuple(rules)
        self.clock = clock
        self._lock = threading.Lock()

    def build_context(self) -> DiagnosticContext:
        now = self.clock()
        devices = self.repos.devices.find_all()
        since = now - timedelta(minutes=self.config.metrics_lookback_min)
        metrics = self.repos.metrics.find_since(since, [d.id for d in devices])
        recent = self.repos.speed_tests.recent(RECENT_SPEED_TESTS)

        return DiagnosticContext(
            devices=tuple(devices),
            metrics_by_device=metrics,
            latest_speed_test=recent[0] if recent else None,
            recent_speed_tests=tuple(reversed(recent)),
            dns_resolution_ms=self.probes.measure_dns_latency(self.config.dns_test_domain),
            contracted_download_mbps=self.config.contracted_download_mbps or 0,
            contracted_upload_mbps=self.config.contracted_upload_mbps or 0,
            thresholds=self.config.thresholds,
            now=now,
        )

    def run_diagnostics(self) -> List[Problem]:
        """One diagnostics pass. Returns the problems created by it."""
        with self._lock:
            logger.info("Running diagnostics...")
            ctx = self.build_context()
            fired = set()
            new_problems = []

            for rule in self.rules:
                try:
                    results = rule.evaluate(ctx)
                except Exception:
                    logger.exception(f"Rule {rule.rule_id} failed")
                    continue

                for result in results:
                    fired.add(result.rule_id)
                    problem = self._record(result, ctx.now)
                    if problem is not None:
                        new_problems.append(problem)

            self._resolve_cleared(fired, ctx.now)

            active = len(self.repos.problems.find_active())
            logger.info(f"Diagnostics completed: {len(new_problems)} new problems, {active} active")
            return new_problems

    def resolve_problem(self, problem_id: str) -> Optional[Problem]:
        """
        Manually close a problem. Returns None for an unknown id; an already
        resolved problem comes back unchanged. If its rule still fires, the
        next pass opens a fresh problem.
        """
        with self._lock:
            problem = self.repos.problems.find_by_id(problem_id)
            if problem is None or not problem.is_active:
                return problem
            return self._resolve(problem, self.clock(), f'The problem "{problem.title}" was resolved manually.')

    def _refresh(self, existing: Problem, result: RuleResult):
        self.repos.problems.update_active(
            existing.id,
            title=result.title,
            description=result.description,
            impact=result.impact,
            recommendation=result.recommendation,
            severity=result.severity,
            affected_devices=result.affected_devices,
        )
        logger.debug(f"Problem updated: {result.rule_id}")

    def _record(self, result: RuleResult, now) -> Optional[Problem]:
        existing = self.repos.problems.find_active_by_rule_id(result.rule_id)
        if existing:
            self._refresh(existing, result)
            return None

        try:
            problem = self.repos.problems.create(detected_at=now, **result.as_problem_fields())
        except IntegrityError:
            # another engine opened it between the lookup and the insert
            existing = self.repos.problems.find_active_by_rule_id(result.rule_id)
            if existing is None:
                raise
            logger.info(f"Problem {result.rule_id} was opened concurrently, updating it instead")
            self._refresh(existing, result)
            return None

        if self._in_cooldown(result.rule_id, now):
            logger.info(f"Alert suppressed for {result.rule_id}, resolved less than "
                        f"{self.config.alert_cooldown_min} min ago")
        else:
            self.repos.alerts.create(
                type=AlertType.PROBLEM_DETECTED,
                severity=result.severity,
                title=result.title,
                message=result.description,
                device_id=_single_device(result.affected_devices),
                problem_id=problem.id,
                created_at=now,
            )

        self.events.emit(PROBLEM_CREATED, {
            "id": problem.id,
            "rule_id": problem.rule_id,
            "severity": problem.severity.value,
            "title": problem.title,
        })
        logger.info(f"New problem detected: [{problem.severity.value}] {problem.title}")
        return problem

    def _in_cooldown(self, rule_id: str, now) -> bool:
        cooldown = self.config.alert_cooldown_min
        if cooldown <= 0:
            return False
        last_resolved = self.repos.problems.last_resolved_at(rule_id)
        return last_resolved is not None and now - last_resolved < timedelta(minutes=cooldown)

    def _resolve_cleared(self, fired, now):
        for problem in self.repos.problems.find_active():
            if problem.rule_id in fired:
                continue
            self._resolve(problem, now, f'The problem "{problem.title}" resolved itself.')

    def _resolve(self, problem: Problem, now, message: str) -> Optional[Problem]:
        resolved = self.repos.problems.resolve(problem.id, resolved_at=now)
        self.repos.alerts.create(
            type=AlertType.PROBLEM_RESOLVED,
            severity=ProblemSeverity.INFO,
            title=f"Resolved: {problem.title}",
            message=message,
            device_id=_single_device(problem.affected_devices),
            problem_id=problem.id,
            created_at=now,
        )
        self.events.emit(PROBLEM_RESOLVED, {"id": problem.id, "rule_id": problem.rule_id, "title": problem.title})
        logger.info(f"Problem resolved: {problem.title}")
        return resolved


def _single_device(device_ids) -> Optional[str]:
    return device_ids[0] if len(device_ids) == 1 else None
