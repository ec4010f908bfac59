import logging

import requests

from .domain import now_utc

logger = logging.getLogger(__name__)

SCAN_STARTED = "scan:started"
SCAN_COMPLETED = "scan:completed"
PROBLEM_CREATED = "problem:created"
PROBLEM_RESOLVED = "problem:resolved"
HEALTH_UPDATED = "health:updated"

REQ_TIMEOUT = 2


class EventSink:
    """Fire-and-forget notifications. The base sink only logs them."""

    def emit(self, event_type: str, payload: dict):
        logger.debug(f"event {event_type}: {payload}")


class HttpEventSink(EventSink):
    """POSTs every event as JSON to a webhook. Delivery failures are logged, never raised."""

    def __init__(self, url: str, timeout: float = REQ_TIMEOUT, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def emit(self, event_type: str, payload: dict):
        super().emit(event_type, payload)
        body = {"type": event_type, "payload": payload, "timestamp": now_utc().isoformat()}
        try:
            self.session.post(self.url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"POST {self.url} failed for {event_type}: {e}")


class RecordingEventSink(EventSink):
    """Keeps emitted events in memory, newest last."""

    def __init__(self):
        self.events = []

    def emit(self, event_type: str, payload: dict):
        super().emit(event_type, payload)
        self.events.append((event_type, payload))

    def of_type(self, event_type: str):
        return [payload for kind, payload in self.events if kind == event_type]
