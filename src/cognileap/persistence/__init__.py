"""Persistence: message/output store and detached turn recording."""

from cognileap.persistence.recorder import TurnRecorder
from cognileap.persistence.store import MessageStore

__all__ = ["MessageStore", "TurnRecorder"]
