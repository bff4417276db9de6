"""
The synchronization engine.

Applies canonical actions from either platform to the mirror store and makes
the matching remote call on the other platform. Every ``apply`` is isolated:
failures are logged and never reach the event loop.

Lock/archive handling lives here too. Discord reports both flags together on
thread update and echoes the bot's own changes back a moment later, while
GitHub sets them independently. The rules:

* A lock change the bot makes on Discord is written to the record first, so
  its echo compares equal and is ignored. If the post is archived, Discord
  also emits an unarchive/archive burst; the thread guard is held so that
  burst never reaches GitHub.
* An archive flip reported by Discord is debounced. When the timer fires
  with the guard held, the guard is released instead of acting.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional

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
from .chat import ChatMessage, ChatPlatform
from .config import DEFAULT_DEBOUNCE_SECONDS
from .correlation import extract
from .errors import MissingPrecondition, RemoteCallFailed, SyncError
from .helpers import format_comment_message, format_forum_title, format_issue_body, format_thread_body
from .models import ChatOriginated, Comment, Thread, TrackerOriginated
from .store import MirrorStore
from .tracker import Issue, IssueComment, IssueTracker

log = logging.getLogger("red.forum_mirror.engine")


def thread_for_issue(issue: Issue, chat_id: Optional[str] = None) -> Thread:
    """Thread record for an issue; ``chat_id`` defaults to the synthetic id."""
    return Thread(
        chat_id=chat_id or Thread.synthetic_id(issue.node_id),
        title=issue.title,
        issue_number=issue.number,
        issue_node_id=issue.node_id,
        body=issue.body or "No Info",
        locked=issue.locked,
        archived=issue.closed,
    )


class SyncEngine:
    def __init__(
        self,
        store: MirrorStore,
        chat: ChatPlatform,
        tracker: IssueTracker,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        announce_issues: bool = True,
    ) -> None:
        self.store = store
        self.chat = chat
        self.tracker = tracker
        self.debounce_seconds = debounce_seconds
        self.announce_issues = announce_issues
        # Serialises message and comment mirroring per thread so the first message alone creates the issue
        self._message_locks: Dict[str, asyncio.Lock] = {}
        self._handlers: Dict[type, Callable[[Action], Awaitable[None]]] = {
            CreateThread: self._create_thread,
            CreateComment: self._create_comment,
            DeleteComment: self._delete_comment,
            SetLock: self._set_lock,
            SetArchived: self._set_archived,
            DeleteThread: self._delete_thread,
        }

    # ----------------------
    # Entry points
    # ----------------------
    async def apply(self, action: Action) -> None:
        """Apply one action. Never raises."""
        handler = self._handlers.get(type(action))
        if handler is None:
            log.warning("No handler for %s", action.name)
            return
        try:
            await handler(action)
        except SyncError as e:
            log.warning("%s | %s | %s", action.origin.value, action.name, e)
        except Exception:
            log.exception("%s | %s | unexpected failure for %s", action.origin.value, action.name, action.target)

    async def dispatch(self, actions: Iterable[Action]) -> None:
        for action in actions:
            await self.apply(action)

    def close(self) -> None:
        """Cancel pending timers and forget every mirror."""
        self.store.clear()
        self._message_locks.clear()

    def _resolve(self, action: Action) -> Optional[Thread]:
        if action.chat_id is not None:
            return self.store.get(action.chat_id)
        if action.node_id is not None:
            return self.store.find_by_issue(action.node_id)
        return None

    def _missing(self, action: Action) -> None:
        log.debug("%s | %s | no mirrored thread for %s", action.origin.value, action.name, action.target)

    @staticmethod
    def _info(origin: Origin, what: str, thread: Thread) -> None:
        log.info("%s | %s | thread %s | issue #%s", origin.value, what, thread.chat_id, thread.issue_number)

    # ----------------------
    # Threads
    # ----------------------
    async def _create_thread(self, action: CreateThread) -> None:
        if action.origin is Origin.CHAT:
            if action.chat_id is None or action.chat_id in self.store:
                log.debug("Thread %s already tracked", action.chat_id)
                return
            self.store.upsert(Thread(chat_id=action.chat_id, title=action.title, applied_tags=set(action.applied_tags)))
            return

        issue = action.issue
        if issue is None:
            return
        ref = extract(issue.body)
        if ref is not None:
            origin = self.store.get(ref.channel_id)
            if origin is not None and origin.issue_node_id in (None, issue.node_id):
                log.debug("Issue #%s was written from Discord, not mirroring it back", issue.number)
                return
        if self.store.find_by_issue(issue.node_id) is not None:
            log.debug("Issue #%s already has a thread", issue.number)
            return
        await self.mirror_issue(issue)

    async def mirror_issue(self, issue: Issue) -> Thread:
        """Create the forum post for ``issue`` and store it.

        Raises RemoteCallFailed when the post cannot be created; the store is
        left untouched in that case.
        """
        url = issue.html_url or self.tracker.issue_url(issue.number)
        try:
            created = await self.chat.create_thread(
                format_forum_title(issue), format_thread_body(issue, url), issue.labels
            )
        except Exception as e:
            raise RemoteCallFailed(f"create thread for issue #{issue.number}") from e

        thread = thread_for_issue(issue, created.chat_id)
        thread.applied_tags = set(created.applied_tags)
        thread.locked = False
        thread.archived = False
        self.store.upsert(thread)
        self._info(Origin.TRACKER, "created thread", thread)

        # New posts start open and unlocked; follow GitHub's state
        try:
            if issue.locked:
                await self._lock_on_chat(thread, True)
            if issue.closed:
                await self._archive_on_chat(thread, True)
        except SyncError as e:
            log.warning("%s | state | %s", Origin.TRACKER.value, e)
        return thread

    async def _delete_thread(self, action: DeleteThread) -> None:
        thread = self._resolve(action)
        if thread is None:
            self._missing(action)
            return
        self._message_locks.pop(thread.chat_id, None)
        try:
            if action.origin is Origin.CHAT:
                if thread.issue_node_id:
                    try:
                        await self.tracker.delete_issue(thread.issue_node_id)
                    except Exception as e:
                        raise RemoteCallFailed("delete issue", thread) from e
                    self._info(Origin.CHAT, "deleted issue", thread)
            else:
                try:
                    await self.chat.delete_thread(thread.chat_id)
                except Exception as e:
                    raise RemoteCallFailed("delete thread", thread) from e
                self._info(Origin.TRACKER, "deleted thread", thread)
        finally:
            # The other side's entity is gone either way
            self.store.remove(thread.chat_id)

    # ----------------------
    # Comments
    # ----------------------
    async def _create_comment(self, action: CreateComment) -> None:
        if action.origin is Origin.CHAT:
            message = action.message
            if message is None or message.author_bot:
                return
            async with self._message_lock(message.channel_id):
                thread = self.store.get(message.channel_id)
                if thread is None:
                    self._missing(action)
                    return
                if not thread.has_issue:
                    await self.create_issue(thread, message)
                else:
                    await self.create_issue_comment(thread, message)
            return

        comment = action.comment
        if comment is None:
            return
        if extract(comment.body) is not None:
            log.debug("Comment %s is an echo of a Discord message, discarding", comment.id)
            return
        thread = self._resolve(action)
        if thread is None:
            self._missing(action)
            return
        async with self._message_lock(thread.chat_id):
            await self.mirror_comment(thread, comment)

    def _message_lock(self, chat_id: str) -> asyncio.Lock:
        return self._message_locks.setdefault(chat_id, asyncio.Lock())

    async def create_issue(self, thread: Thread, message: ChatMessage) -> None:
        if thread.issue_number:
            raise MissingPrecondition("create issue", "thread already has an issue number", thread)

        labels = self.chat.label_names(frozenset(thread.applied_tags))
        try:
            created = await self.tracker.create_issue(thread.title, format_issue_body(message), labels)
        except Exception as e:
            raise RemoteCallFailed("create issue", thread) from e

        thread.issue_number = created.number
        thread.issue_node_id = created.node_id
        thread.body = created.body
        self.store.upsert(thread)
        self._info(Origin.CHAT, "created issue", thread)

        if self.announce_issues:
            await self._announce(thread, created.html_url or self.tracker.issue_url(created.number))

    async def _announce(self, thread: Thread, url: str) -> None:
        try:
            collaborators = await self.tracker.list_collaborators()
            await self.chat.announce_issue(thread.chat_id, thread.issue_number, url, collaborators)
        except Exception:
            log.exception("Failed to announce issue #%s in thread %s", thread.issue_number, thread.chat_id)

    async def create_issue_comment(self, thread: Thread, message: ChatMessage) -> None:
        if not thread.issue_number:
            raise MissingPrecondition("create comment", "thread does not have an issue number", thread)
        if thread.find_comment_by_message(message.id) is not None:
            log.debug("Message %s already mirrored", message.id)
            return

        try:
            comment_id = await self.tracker.create_comment(thread.issue_number, format_issue_body(message))
        except Exception as e:
            raise RemoteCallFailed("create comment", thread) from e

        thread.add_comment(Comment(comment_id, ChatOriginated(message.id)))
        self._info(Origin.CHAT, "commented", thread)

    async def mirror_comment(self, thread: Thread, comment: IssueComment) -> None:
        """Post a GitHub comment into the thread unless it is already there."""
        if thread.find_comment_by_tracker_id(comment.id) is not None:
            log.debug("Comment %s already mirrored", comment.id)
            return
        try:
            message_id = await self.chat.create_message(thread.chat_id, format_comment_message(comment))
        except Exception as e:
            raise RemoteCallFailed("post comment", thread) from e
        thread.add_comment(Comment(comment.id, TrackerOriginated(message_id)))
        self._info(Origin.TRACKER, "commented", thread)

    async def _delete_comment(self, action: DeleteComment) -> None:
        thread = self._resolve(action)
        if thread is None:
            self._missing(action)
            return

        if action.origin is Origin.CHAT:
            comment = thread.find_comment_by_message(action.message_id or "")
            if comment is None:
                return
            try:
                await self.tracker.delete_comment(comment.tracker_comment_id)
            except Exception as e:
                raise RemoteCallFailed("delete comment", thread) from e
            thread.remove_comment(comment)
            self._info(Origin.CHAT, "deleted comment", thread)
            return

        comment = thread.find_comment_by_tracker_id(action.comment_id or 0)
        if comment is None:
            return
        try:
            await self.chat.delete_message(thread.chat_id, comment.chat_message_id)
        except Exception as e:
            raise RemoteCallFailed("delete message", thread) from e
        thread.remove_comment(comment)
        self._info(Origin.TRACKER, "deleted comment", thread)

    # ----------------------
    # Lock / archive
    # ----------------------
    async def _set_lock(self, action: SetLock) -> None:
        thread = self._resolve(action)
        if thread is None:
            self._missing(action)
            return

        if action.origin is Origin.TRACKER:
            await self._lock_on_chat(thread, action.locked)
            return

        if thread.guard.lock_guard:
            log.debug("Ignoring lock echo on thread %s", thread.chat_id)
            return
        if thread.locked == action.locked:
            return
        if not thread.issue_number:
            raise MissingPrecondition("lock issue" if action.locked else "unlock issue", "thread does not have an issue number", thread)

        if thread.archived:
            # Discord will follow up with a spurious unarchive/archive pair
            thread.guard.archive_guard = True
            self._arm_timer(thread)
        thread.locked = action.locked
        try:
            if action.locked:
                await self.tracker.lock_issue(thread.issue_number)
            else:
                await self.tracker.unlock_issue(thread.issue_number)
        except Exception as e:
            thread.locked = not action.locked
            raise RemoteCallFailed("lock issue" if action.locked else "unlock issue", thread) from e
        self._info(Origin.CHAT, "locked" if action.locked else "unlocked", thread)

    async def _lock_on_chat(self, thread: Thread, locked: bool) -> None:
        if thread.locked == locked:
            log.debug("Thread %s already %s", thread.chat_id, "locked" if locked else "unlocked")
            return
        thread.locked = locked
        if thread.archived:
            thread.guard.hold()
            self._arm_timer(thread)
        try:
            if locked:
                await self.chat.lock_thread(thread.chat_id)
            else:
                await self.chat.unlock_thread(thread.chat_id)
        except Exception as e:
            thread.locked = not locked
            raise RemoteCallFailed("lock thread" if locked else "unlock thread", thread) from e
        self._info(Origin.TRACKER, "locked" if locked else "unlocked", thread)

    async def _set_archived(self, action: SetArchived) -> None:
        thread = self._resolve(action)
        if thread is None:
            self._missing(action)
            return

        if action.origin is Origin.TRACKER:
            await self._archive_on_chat(thread, action.archived)
            return

        guard = thread.guard
        guard.observed_archived = action.archived
        pending = guard.timer is not None and not guard.timer.done()
        if action.archived != thread.archived or pending:
            self._arm_timer(thread)

    async def _archive_on_chat(self, thread: Thread, archived: bool) -> None:
        if thread.archived == archived:
            log.debug("Thread %s already %s", thread.chat_id, "archived" if archived else "open")
            return
        thread.archived = archived
        try:
            if archived:
                await self.chat.archive_thread(thread.chat_id)
            else:
                await self.chat.unarchive_thread(thread.chat_id)
        except Exception as e:
            thread.archived = not archived
            raise RemoteCallFailed("archive thread" if archived else "unarchive thread", thread) from e
        self._info(Origin.TRACKER, "closed" if archived else "reopened", thread)

    def _arm_timer(self, thread: Thread) -> None:
        guard = thread.guard
        if guard.timer is not None and not guard.timer.done():
            guard.timer.cancel()
        guard.timer = asyncio.create_task(self._settle_archive(thread.chat_id))

    async def _settle_archive(self, chat_id: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Look the thread up again: it may have been deleted meanwhile
        thread = self.store.get(chat_id)
        if thread is None:
            return
        guard = thread.guard
        guard.timer = None
        archived, guard.observed_archived = guard.observed_archived, None

        if guard.lock_guard or guard.archive_guard:
            log.debug("Archive flip on thread %s came from a lock change, ignoring", chat_id)
            guard.release()
            return
        if archived is None or archived == thread.archived:
            return

        try:
            await self._archive_on_tracker(thread, archived)
        except SyncError as e:
            log.warning("%s | SetArchived | %s", Origin.CHAT.value, e)
        except Exception:
            log.exception("%s | SetArchived | unexpected failure for %s", Origin.CHAT.value, chat_id)

    async def _archive_on_tracker(self, thread: Thread, archived: bool) -> None:
        what = "close issue" if archived else "reopen issue"
        if not thread.issue_number:
            raise MissingPrecondition(what, "thread does not have an issue number", thread)
        thread.archived = archived
        try:
            await self.tracker.set_issue_state(thread.issue_number, "closed" if archived else "open")
        except Exception as e:
            thread.archived = not archived
            raise RemoteCallFailed(what, thread) from e
        self._info(Origin.CHAT, "closed" if archived else "reopened", thread)
