"""Persistence layer — event log and state storage."""

from jobescrow.persistence.event_log import EventLog, EventRecord, EventKind
from jobescrow.persistence.state_store import StateStore

__all__ = ["EventLog", "EventRecord", "EventKind", "StateStore"]
