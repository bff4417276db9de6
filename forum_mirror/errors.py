"""
Error taxonomy for the forum mirror.

None of these are fatal: the engine catches them per event, logs them and
moves on to the next event.
"""

from typing import Any, Optional


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


class MissingPrecondition(SyncError):
    """An action needs a field the Thread does not have yet."""

    def __init__(self, action: str, reason: str, thread: Optional[Any] = None) -> None:
        self.action = action
        self.reason = reason
        self.thread = thread
        super().__init__(f"{action}: {reason} ({_describe(thread)})")


class RemoteCallFailed(SyncError):
    """A chat or tracker API call raised; the SDK error is the __cause__."""

    def __init__(self, action: str, thread: Optional[Any] = None) -> None:
        self.action = action
        self.thread = thread
        super().__init__(f"{action} failed ({_describe(thread)})")


class MalformedPayload(SyncError):
    """A webhook payload is missing a field the normalizer needs."""


def _describe(thread: Optional[Any]) -> str:
    if thread is None:
        return "no thread"
    number = getattr(thread, "issue_number", None)
    chat_id = getattr(thread, "chat_id", "?")
    if number:
        return f"thread {chat_id}, issue #{number}"
    return f"thread {chat_id}"
