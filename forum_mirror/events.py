"""
Translate platform events into canonical actions.

``ChatEventNormalizer`` takes the plain records built from discord.py events;
``TrackerEventNormalizer`` takes GitHub webhook JSON.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .actions import (
    Action,
    CreateComment,
    CreateThread,
    DeleteComment,
    DeleteThread,
    Origin,
    SetArchived,
    SetLock,
)
from .chat import ChatMessage, ChatThread
from .errors import MalformedPayload
from .tracker import Issue, IssueComment

log = logging.getLogger("red.forum_mirror.events")


class ChatEventNormalizer:
    def __init__(self, forum_id: Optional[str]) -> None:
        self.forum_id = forum_id

    def _monitored(self, thread: ChatThread) -> bool:
        return self.forum_id is not None and thread.parent_id == self.forum_id

    def thread_created(self, thread: ChatThread) -> List[Action]:
        if not self._monitored(thread):
            return []
        return [CreateThread(Origin.CHAT, chat_id=thread.id, title=thread.title, applied_tags=thread.applied_tags)]

    def thread_updated(self, thread: ChatThread) -> List[Action]:
        if not self._monitored(thread):
            return []
        # Lock first: it may mark the archive flip in the same update as a side effect
        return [
            SetLock(Origin.CHAT, chat_id=thread.id, locked=thread.locked),
            SetArchived(Origin.CHAT, chat_id=thread.id, archived=thread.archived),
        ]

    def thread_deleted(self, thread: ChatThread) -> List[Action]:
        if not self._monitored(thread):
            return []
        return [DeleteThread(Origin.CHAT, chat_id=thread.id)]

    def message_created(self, message: ChatMessage) -> List[Action]:
        if message.author_bot:
            return []
        return [CreateComment(Origin.CHAT, chat_id=message.channel_id, message=message)]

    def message_deleted(self, channel_id: str, message_id: str) -> List[Action]:
        return [DeleteComment(Origin.CHAT, chat_id=channel_id, message_id=message_id)]


class TrackerEventNormalizer:
    ISSUE_ACTIONS = {"opened", "closed", "reopened", "locked", "unlocked", "deleted"}
    IGNORED_EVENTS = {"ping", "pull_request", "pull_request_review", "pull_request_review_comment"}

    def normalize(self, payload: Any, event: Optional[str] = None) -> List[Action]:
        """Actions for one webhook delivery.

        ``event`` is the ``X-GitHub-Event`` header when known. Raises
        MalformedPayload when a field needed for a handled action is missing.
        """
        if event in self.IGNORED_EVENTS:
            return []
        if not isinstance(payload, dict):
            raise MalformedPayload("payload is not a JSON object")
        action = payload.get("action")
        if not action:
            raise MalformedPayload("payload has no action")
        if "pull_request" in payload:
            return []

        issue_data = payload.get("issue")
        if not isinstance(issue_data, dict):
            raise MalformedPayload(f"'{action}' payload has no issue")
        if "pull_request" in issue_data:
            return []
        node_id = issue_data.get("node_id")
        if not node_id:
            raise MalformedPayload(f"'{action}' payload issue has no node_id")

        comment = payload.get("comment")
        if comment is not None:
            return self._comment_actions(action, node_id, issue_data, comment)

        if action not in self.ISSUE_ACTIONS:
            log.debug("Ignoring issue action %s", action)
            return []
        if action == "opened":
            issue = self._issue(issue_data)
            return [CreateThread(Origin.TRACKER, node_id=node_id, title=issue.title, issue=issue)]
        if action in ("closed", "reopened"):
            return [SetArchived(Origin.TRACKER, node_id=node_id, archived=action == "closed")]
        if action in ("locked", "unlocked"):
            return [SetLock(Origin.TRACKER, node_id=node_id, locked=action == "locked")]
        return [DeleteThread(Origin.TRACKER, node_id=node_id)]

    @staticmethod
    def _issue(data: Dict[str, Any]) -> Issue:
        try:
            return Issue.from_payload(data)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"issue payload is missing {e}") from e

    @staticmethod
    def _comment_actions(action: str, node_id: str, issue_data: Dict[str, Any], comment: Any) -> List[Action]:
        if not isinstance(comment, dict) or "id" not in comment:
            raise MalformedPayload(f"'{action}' comment payload has no id")
        try:
            if action == "created":
                number = issue_data.get("number")
                parsed = IssueComment.from_payload(comment, int(number) if number is not None else None)
                return [CreateComment(Origin.TRACKER, node_id=node_id, comment=parsed)]
            if action == "deleted":
                return [DeleteComment(Origin.TRACKER, node_id=node_id, comment_id=int(comment["id"]))]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"'{action}' comment payload is invalid: {e}") from e
        log.debug("Ignoring comment action %s", action)
        return []
