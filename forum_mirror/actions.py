"""
Canonical actions produced by the event normalizers.

Each action names the thread it targets by Discord thread id (``chat_id``) or
by GitHub issue node id (``node_id``) and carries the platform payload the
engine needs to apply it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, FrozenSet, Optional

if TYPE_CHECKING:
    from .chat import ChatMessage
    from .tracker import Issue, IssueComment


class Origin(enum.Enum):
    CHAT = "discord"
    TRACKER = "github"


@dataclass(frozen=True)
class Action:
    origin: Origin
    chat_id: Optional[str] = None
    node_id: Optional[str] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def target(self) -> str:
        return self.chat_id or self.node_id or "?"


@dataclass(frozen=True)
class CreateThread(Action):
    title: str = ""
    applied_tags: FrozenSet[str] = frozenset()
    issue: Optional["Issue"] = None


@dataclass(frozen=True)
class CreateComment(Action):
    message: Optional["ChatMessage"] = None
    comment: Optional["IssueComment"] = None


@dataclass(frozen=True)
class DeleteComment(Action):
    message_id: Optional[str] = None
    comment_id: Optional[int] = None


@dataclass(frozen=True)
class SetLock(Action):
    locked: bool = False


@dataclass(frozen=True)
class SetArchived(Action):
    archived: bool = False


@dataclass(frozen=True)
class DeleteThread(Action):
    pass
