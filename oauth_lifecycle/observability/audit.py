"""Audit event sinks for OAuth operations.

The OAuth handlers report each security-relevant outcome (token exchange
failures, refreshes, validations, revocations, device flow progress) to an
``EventSink``. Sinks are fire-and-forget: ``record_event`` sanitizes the
details and swallows any exception raised by the sink, so auditing can never
break an OAuth flow.

Usage:
    sink = LoggingEventSink()
    manager = OAuthFlowManager(config, event_sink=sink)
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

from ..utils.logging_config import AUDIT_LOGGER_NAME

logger = logging.getLogger(__name__)

Outcome = Literal["success", "failure"]

# Detail keys that must never reach a sink
SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "token",
        "code",
        "code_verifier",
        "device_code",
        "client_secret",
        "secret",
        "password",
        "authorization",
    }
)


@runtime_checkable
class EventSink(Protocol):
    """Receiver for structured audit events."""

    def record(self, action: str, outcome: Outcome, source: str, details: dict[str, Any]) -> None:
        """Record one event. Implementations should not block."""
        ...


class NullEventSink:
    """Sink used when auditing is disabled."""

    def record(self, action: str, outcome: Outcome, source: str, details: dict[str, Any]) -> None:
        return None


class LoggingEventSink:
    """Writes each event as one JSON line on the audit logger."""

    def __init__(self, logger_name: str = AUDIT_LOGGER_NAME, level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    def record(self, action: str, outcome: Outcome, source: str, details: dict[str, Any]) -> None:
        event = {
            "timestamp": time.time(),
            "action": action,
            "outcome": outcome,
            "source": source,
            "details": details,
        }
        self._logger.log(self._level, json.dumps(event, default=str, sort_keys=True))


@dataclass
class AuditEvent:
    """A recorded audit event."""

    action: str
    outcome: Outcome
    source: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class RecordingEventSink:
    """Keeps events in memory, newest last."""

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self.events: list[AuditEvent] = []

    def record(self, action: str, outcome: Outcome, source: str, details: dict[str, Any]) -> None:
        self.events.append(AuditEvent(action=action, outcome=outcome, source=source, details=details))
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]

    def actions(self) -> list[str]:
        """Get recorded action names in order."""
        return [event.action for event in self.events]


def sanitize_details(details: dict[str, Any]) -> dict[str, Any]:
    """Drop keys that carry credentials, recursing into nested dicts."""
    clean: dict[str, Any] = {}
    for key, value in details.items():
        if key.lower() in SENSITIVE_KEYS:
            continue
        if isinstance(value, dict):
            value = sanitize_details(value)
        clean[key] = value
    return clean


def record_event(
    sink: EventSink | None,
    action: str,
    outcome: Outcome,
    source: str = "auth",
    details: dict[str, Any] | None = None,
) -> None:
    """Send an event to ``sink``, ignoring any error the sink raises."""
    if sink is None:
        return
    try:
        sink.record(action, outcome, source, sanitize_details(details or {}))
    except Exception as e:
        logger.debug(f"Audit sink failed for {action}: {e}")
