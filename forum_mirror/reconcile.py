"""
Bulk reconciliation between GitHub and the forum.

Run once when the cog starts (the store is empty then) and again on demand
or on the poll interval. Every step is idempotent: a second pass over
unchanged data adds nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Set

from .correlation import extract
from .engine import SyncEngine, thread_for_issue
from .errors import RemoteCallFailed, SyncError
from .models import ChatOriginated, Comment, TrackerOriginated
from .tracker import Issue, IssueComment

log = logging.getLogger("red.forum_mirror.reconcile")


class Reconciler:
    def __init__(self, engine: SyncEngine) -> None:
        self.engine = engine
        self.store = engine.store
        self.chat = engine.chat
        self.tracker = engine.tracker
        self._lock = asyncio.Lock()

    async def reconcile(self) -> int:
        """Bring the store and the forum in line with GitHub.

        Returns how many threads this pass added to the store. Raises
        RemoteCallFailed, with the store untouched, when issues cannot be listed.
        """
        async with self._lock:
            return await self._reconcile()

    async def _reconcile(self) -> int:
        try:
            issues = await self.tracker.list_issues("all")
        except Exception as e:
            raise RemoteCallFailed("list issues") from e

        comments: Optional[List[IssueComment]]
        try:
            comments = await self.tracker.list_comments()
        except Exception:
            log.exception("Failed to load comments, skipping comment reconciliation")
            comments = None

        log.debug("Reconciling %d issues against %d stored threads", len(issues), len(self.store))

        created: Set[str] = set()
        recovered: Set[str] = set()
        # Oldest first: an issue quoting another one's Discord link must not take its thread
        for issue in sorted(issues, key=lambda i: i.number):
            if issue.is_pull_request or self.store.find_by_issue(issue.node_id) is not None:
                continue
            try:
                chat_id = await self._recover_chat_id(issue)
            except Exception:
                log.exception("Failed to look up the thread for issue #%s", issue.number)
                continue

            if chat_id is None:
                try:
                    thread = await self.engine.mirror_issue(issue)
                except SyncError as e:
                    # Still unmirrored, so the next pass retries it
                    log.warning("Skipping issue #%s: %s", issue.number, e)
                    continue
                created.add(thread.chat_id)
                continue

            existing = self.store.get(chat_id)
            if existing is not None:
                # Known thread that has not learnt its issue yet; keep its state
                existing.issue_number = issue.number
                existing.issue_node_id = issue.node_id
                existing.body = existing.body or issue.body or "No Info"
                self.store.upsert(existing)
            else:
                self.store.upsert(thread_for_issue(issue, chat_id))
            recovered.add(chat_id)
            log.debug("Recovered thread %s for issue #%s", chat_id, issue.number)

        if comments is not None:
            await self._reconcile_comments(comments, recovered)

        synced = len(created) + len(recovered)
        log.info("Reconciliation done: %d threads synchronized, %d mirrored in total", synced, len(self.store))
        return synced

    def _unbound(self, chat_id: str) -> bool:
        existing = self.store.get(chat_id)
        return existing is None or existing.issue_node_id is None

    async def _recover_chat_id(self, issue: Issue) -> Optional[str]:
        """Chat id of an existing post for ``issue`` that no other issue owns."""
        ref = extract(issue.body)
        if ref is not None and self._unbound(ref.channel_id) and await self.chat.thread_exists(ref.channel_id):
            return ref.channel_id
        chat_id = await self.chat.find_thread_for_issue(issue.number)
        if chat_id is not None and self._unbound(chat_id):
            return chat_id
        return None

    async def _reconcile_comments(self, comments: List[IssueComment], recovered: Set[str]) -> None:
        for comment in comments:
            ref = extract(comment.body)
            if ref is not None:
                thread = self.store.get(ref.channel_id)
                if thread is not None:
                    thread.add_comment(Comment(comment.id, ChatOriginated(ref.message_id)))
                continue

            if comment.issue_number is None:
                continue
            thread = self.store.find_by_issue(comment.issue_number)
            if thread is None:
                continue
            if thread.chat_id in recovered:
                # Posted by an earlier run; the Discord message id is lost
                thread.add_comment(Comment(comment.id, TrackerOriginated(None)))
                continue
            try:
                await self.engine.mirror_comment(thread, comment)
            except SyncError as e:
                log.warning("Skipping comment %s on issue #%s: %s", comment.id, comment.issue_number, e)
