"""
In-memory records for mirrored forum threads and their comments.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import List, Optional, Set, Union


@dataclass(frozen=True)
class ChatOriginated:
    """Comment written on Discord and copied to GitHub."""

    message_id: str


@dataclass(frozen=True)
class TrackerOriginated:
    """Comment written on GitHub and copied to Discord.

    ``message_id`` is the bot's mirror message, or None when the comment was
    found by a resync and the Discord message is not known.
    """

    message_id: Optional[str] = None


CommentOrigin = Union[ChatOriginated, TrackerOriginated]


@dataclass(frozen=True)
class Comment:
    tracker_comment_id: int
    origin: CommentOrigin

    @property
    def chat_message_id(self) -> str:
        if self.origin.message_id is not None:
            return self.origin.message_id
        return f"chat-{self.tracker_comment_id}"

    @property
    def from_chat(self) -> bool:
        return isinstance(self.origin, ChatOriginated)


class GuardState(enum.Enum):
    SETTLED = "settled"
    LOCK_PENDING = "lock-pending"
    ARCHIVE_DEFERRED = "archive-deferred"


@dataclass
class ThreadGuard:
    """Lock/archive settling state for one thread.

    ``lock_guard`` means a lock change made by the bot is still in flight, so
    lock flips reported by Discord are echoes. ``archive_guard`` means the next
    archive flip is a side effect of a lock change and must not reach GitHub.
    ``timer`` is the pending debounce task; it owns no reference to the Thread.
    """

    lock_guard: bool = False
    archive_guard: bool = False
    observed_archived: Optional[bool] = None
    timer: Optional[asyncio.Task] = None

    @property
    def state(self) -> GuardState:
        if self.lock_guard or self.archive_guard:
            return GuardState.LOCK_PENDING
        if self.timer is not None and not self.timer.done():
            return GuardState.ARCHIVE_DEFERRED
        return GuardState.SETTLED

    def hold(self) -> None:
        self.lock_guard = True
        self.archive_guard = True

    def release(self) -> None:
        self.lock_guard = False
        self.archive_guard = False

    def cancel(self) -> None:
        if self.timer is not None and not self.timer.done():
            self.timer.cancel()
        self.timer = None
        self.observed_archived = None
        self.release()


@dataclass
class Thread:
    chat_id: str
    title: str
    issue_number: Optional[int] = None
    issue_node_id: Optional[str] = None
    body: Optional[str] = None
    applied_tags: Set[str] = field(default_factory=set)
    archived: bool = False
    locked: bool = False
    comments: List[Comment] = field(default_factory=list)
    guard: ThreadGuard = field(default_factory=ThreadGuard, repr=False, compare=False)

    @property
    def has_issue(self) -> bool:
        return self.body is not None

    @property
    def lock_guard(self) -> bool:
        return self.guard.lock_guard

    @property
    def archive_guard(self) -> bool:
        return self.guard.archive_guard

    @staticmethod
    def synthetic_id(node_id: str) -> str:
        return f"issue-{node_id}"

    def find_comment_by_message(self, message_id: str) -> Optional[Comment]:
        for comment in self.comments:
            if comment.chat_message_id == message_id:
                return comment
        return None

    def find_comment_by_tracker_id(self, comment_id: int) -> Optional[Comment]:
        for comment in self.comments:
            if comment.tracker_comment_id == comment_id:
                return comment
        return None

    def add_comment(self, comment: Comment) -> bool:
        """Append unless a comment with the same tracker id is already there."""
        if self.find_comment_by_tracker_id(comment.tracker_comment_id):
            return False
        self.comments.append(comment)
        return True

    def remove_comment(self, comment: Comment) -> None:
        self.comments = [c for c in self.comments if c != comment]
