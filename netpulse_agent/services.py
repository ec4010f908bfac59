from dataclasses import dataclass
from typing import Optional

from .collector import MetricsCollector
from .config import AgentConfig
from .database import init_db, make_engine, make_session_factory
from .diagnostics import DiagnosticEngine
from .discovery import DiscoveryEngine
from .domain import now_utc
from .events import EventSink, HttpEventSink
from .health import HealthScoreAggregator
from .oui import VendorLookup
from .probes import Probes, SystemProbes
from .repositories import Repositories


@dataclass
class AgentServices:
    config: AgentConfig
    repos: Repositories
    probes: Probes
    events: EventSink
    discovery: DiscoveryEngine
    collector: MetricsCollector
    diagnostics: DiagnosticEngine
    health: HealthScoreAggregator


def build_events(config: AgentConfig) -> EventSink:
    if config.event_webhook_url:
        return HttpEventSink(config.event_webhook_url)
    return EventSink()


def build_probes(config: AgentConfig) -> Probes:
    return SystemProbes(
        vendors=VendorLookup(config.oui_path),
        lan_cidr=config.lan_cidr,
        resolve_hostnames=config.enable_hostname_resolve,
        resolve_timeout=config.resolve_timeout_sec,
    )


def build_services(
    config: AgentConfig,
    session_factory=None,
    probes: Optional[Probes] = None,
    events: Optional[EventSink] = None,
    clock=now_utc,
) -> AgentServices:
    """Wire repositories, probes and the event sink into every component."""
    if session_factory is None:
        engine = make_engine(config.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)

    repos = Repositories.from_session_factory(session_factory)
    probes = probes or build_probes(config)
    events = events or build_events(config)

    return AgentServices(
        config=config,
        repos=repos,
        probes=probes,
        events=events,
        discovery=DiscoveryEngine(repos, probes, events, config, clock=clock),
        collector=MetricsCollector(repos, probes, config, clock=clock),
        diagnostics=DiagnosticEngine(repos, probes, events, config, clock=clock),
        health=HealthScoreAggregator(repos, events, config, clock=clock),
    )
