"""Audit observability for OAuth operations."""

from .audit import (
    AuditEvent,
    EventSink,
    LoggingEventSink,
    NullEventSink,
    RecordingEventSink,
    record_event,
    sanitize_details,
)

__all__ = [
    "AuditEvent",
    "EventSink",
    "LoggingEventSink",
    "NullEventSink",
    "RecordingEventSink",
    "record_event",
    "sanitize_details",
]
