"""Shared fixtures and in-memory platform fakes for forum_mirror tests."""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
from typing import Any, Dict, FrozenSet, List, Optional, Set

import pytest

from forum_mirror.chat import ChatMessage, ChatPlatform, CreatedThread
from forum_mirror.engine import SyncEngine
from forum_mirror.models import Thread
from forum_mirror.reconcile import Reconciler
from forum_mirror.store import MirrorStore
from forum_mirror.tracker import CreatedIssue, Issue, IssueComment, IssueTracker

GUILD_ID = "1"
FORUM_ID = "100"
DEBOUNCE = 0.05


class FakeChat(ChatPlatform):
    """Forum channel replacement keeping posts in a dict.

    Every call is recorded in ``calls``; names listed in ``fail`` raise.
    """

    def __init__(self) -> None:
        self.threads: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail: Set[str] = set()
        self.tags: Dict[str, str] = {"11": "bug", "12": "feature"}
        # Seconds create_message waits, to let concurrent calls interleave
        self.delay = 0.0
        self._ids = itertools.count(5000)

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name,) + args)
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def add_thread(self, chat_id: str, title: str, archived: bool = False, locked: bool = False) -> None:
        self.threads[chat_id] = {"title": title, "archived": archived, "locked": locked, "messages": {}}

    async def create_thread(self, title: str, body: str, labels: List[str]) -> CreatedThread:
        self._record("create_thread", title, body, list(labels))
        chat_id = str(next(self._ids))
        self.add_thread(chat_id, title)
        tag_ids = frozenset(tag_id for tag_id, name in self.tags.items() if name in labels)
        return CreatedThread(chat_id=chat_id, applied_tags=tag_ids)

    async def create_message(self, chat_id: str, body: str) -> str:
        self._record("create_message", chat_id, body)
        if self.delay:
            await asyncio.sleep(self.delay)
        message_id = str(next(self._ids))
        self.threads[chat_id]["messages"][message_id] = body
        return message_id

    async def delete_message(self, chat_id: str, message_id: str) -> None:
        self._record("delete_message", chat_id, message_id)
        self.threads[chat_id]["messages"].pop(message_id, None)

    async def archive_thread(self, chat_id: str) -> None:
        self._record("archive_thread", chat_id)
        self.threads[chat_id]["archived"] = True

    async def unarchive_thread(self, chat_id: str) -> None:
        self._record("unarchive_thread", chat_id)
        self.threads[chat_id]["archived"] = False

    async def lock_thread(self, chat_id: str) -> None:
        self._record("lock_thread", chat_id)
        self.threads[chat_id]["locked"] = True

    async def unlock_thread(self, chat_id: str) -> None:
        self._record("unlock_thread", chat_id)
        self.threads[chat_id]["locked"] = False

    async def delete_thread(self, chat_id: str) -> None:
        self._record("delete_thread", chat_id)
        self.threads.pop(chat_id, None)

    async def thread_exists(self, chat_id: str) -> bool:
        return chat_id in self.threads

    async def find_thread_for_issue(self, number: int) -> Optional[str]:
        for chat_id, data in self.threads.items():
            if data["title"].startswith(f"#{number}:"):
                return chat_id
        return None

    def label_names(self, tag_ids: FrozenSet[str]) -> List[str]:
        return [self.tags[t] for t in sorted(tag_ids) if t in self.tags]

    async def announce_issue(self, chat_id: str, number: int, url: str, collaborators: List[str]) -> None:
        self._record("announce_issue", chat_id, number, url, list(collaborators))


class FakeTracker(IssueTracker):
    """GitHub replacement keeping issues and comments in memory."""

    def __init__(self) -> None:
        self.issues: Dict[int, Issue] = {}
        self.comments: List[IssueComment] = []
        self.calls: List[tuple] = []
        self.fail: Set[str] = set()
        self.collaborators = ["alice", "bob"]
        self._numbers = itertools.count(1)
        self._comment_ids = itertools.count(9000)

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name,) + args)
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def add_issue(self, number: int, title: str = "An issue", **kwargs: Any) -> Issue:
        issue = make_issue(number, title, **kwargs)
        self.issues[number] = issue
        return issue

    def add_comment(self, issue_number: int, body: str, comment_id: Optional[int] = None) -> IssueComment:
        comment = IssueComment(
            id=comment_id if comment_id is not None else next(self._comment_ids),
            issue_number=issue_number,
            body=body,
            author_login="octocat",
        )
        self.comments.append(comment)
        return comment

    async def list_issues(self, state: str = "all") -> List[Issue]:
        self._record("list_issues", state)
        return list(self.issues.values())

    async def list_comments(self) -> List[IssueComment]:
        self._record("list_comments")
        return list(self.comments)

    async def create_issue(self, title: str, body: str, labels: List[str]) -> CreatedIssue:
        self._record("create_issue", title, body, list(labels))
        number = next(self._numbers)
        while number in self.issues:
            number = next(self._numbers)
        issue = make_issue(number, title, body=body, labels=list(labels))
        self.issues[number] = issue
        return CreatedIssue(number=number, node_id=issue.node_id, body=body, html_url=self.issue_url(number))

    async def create_comment(self, number: int, body: str) -> int:
        self._record("create_comment", number, body)
        return self.add_comment(number, body).id

    async def delete_comment(self, comment_id: int) -> None:
        self._record("delete_comment", comment_id)
        self.comments = [c for c in self.comments if c.id != comment_id]

    async def delete_issue(self, node_id: str) -> None:
        self._record("delete_issue", node_id)
        self.issues = {n: i for n, i in self.issues.items() if i.node_id != node_id}

    async def set_issue_state(self, number: int, state: str) -> None:
        self._record("set_issue_state", number, state)
        self.issues[number] = dataclasses.replace(self.issues[number], state=state)

    async def lock_issue(self, number: int) -> None:
        self._record("lock_issue", number)
        self.issues[number] = dataclasses.replace(self.issues[number], locked=True)

    async def unlock_issue(self, number: int) -> None:
        self._record("unlock_issue", number)
        self.issues[number] = dataclasses.replace(self.issues[number], locked=False)

    async def list_collaborators(self) -> List[str]:
        self._record("list_collaborators")
        return list(self.collaborators)

    async def assign_issue(self, number: int, login: str) -> None:
        self._record("assign_issue", number, login)

    def issue_url(self, number: int) -> str:
        return f"https://github.com/owner/repo/issues/{number}"


def make_issue(number: int, title: str = "An issue", **kwargs: Any) -> Issue:
    kwargs.setdefault("body", "Something is broken")
    kwargs.setdefault("author_login", "octocat")
    return Issue(number=number, node_id=f"I_{number}", title=title, **kwargs)


def make_message(content: str, message_id: str = "300", channel_id: str = "200", **kwargs: Any) -> ChatMessage:
    kwargs.setdefault("author_name", "Tester")
    return ChatMessage(id=message_id, channel_id=channel_id, guild_id=GUILD_ID, content=content, **kwargs)


def mirrored_thread(chat_id: str = "200", number: int = 1, **kwargs: Any) -> Thread:
    """A thread already linked to issue ``number``."""
    kwargs.setdefault("title", "Mirrored")
    kwargs.setdefault("body", "body")
    return Thread(chat_id=chat_id, issue_number=number, issue_node_id=f"I_{number}", **kwargs)


@pytest.fixture
def chat() -> FakeChat:
    return FakeChat()


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def store() -> MirrorStore:
    return MirrorStore()


@pytest.fixture
def engine(store, chat, tracker) -> SyncEngine:
    return SyncEngine(store, chat, tracker, debounce_seconds=DEBOUNCE)


@pytest.fixture
def reconciler(engine) -> Reconciler:
    return Reconciler(engine)
