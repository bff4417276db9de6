"""
Process-wide registry of mirrored threads.

Keyed by Discord thread id with secondary indexes on the GitHub issue node id
and number. Nothing here does I/O; it is rebuilt from GitHub on every start.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .models import Thread

log = logging.getLogger("red.forum_mirror.store")


class MirrorStore:
    def __init__(self) -> None:
        self._threads: Dict[str, Thread] = {}
        self._by_node_id: Dict[str, str] = {}
        self._by_number: Dict[int, str] = {}
        # chat id -> (node id, number) as indexed, since Thread fields change in place
        self._indexed: Dict[str, Tuple[Optional[str], Optional[int]]] = {}

    def __len__(self) -> int:
        return len(self._threads)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._threads

    def __iter__(self) -> Iterator[Thread]:
        return iter(self.all())

    def get(self, chat_id: str) -> Optional[Thread]:
        return self._threads.get(chat_id)

    def find_by_issue(self, key: Union[str, int]) -> Optional[Thread]:
        """Look a thread up by issue node id (str) or issue number (int)."""
        if isinstance(key, int):
            chat_id = self._by_number.get(key)
        else:
            chat_id = self._by_node_id.get(key)
        if chat_id is None:
            return None
        return self._threads.get(chat_id)

    def upsert(self, thread: Thread) -> None:
        """Insert ``thread`` or replace the record with the same chat id.

        Call again after assigning issue fields so the indexes follow.
        """
        if thread.issue_node_id:
            owner = self._by_node_id.get(thread.issue_node_id)
            if owner is not None and owner != thread.chat_id:
                raise ValueError(
                    f"issue {thread.issue_node_id} is already mirrored by thread {owner}"
                )
        previous = self._threads.get(thread.chat_id)
        if previous is not None:
            self._unindex(previous)
            if previous is not thread:
                previous.guard.cancel()
        self._threads[thread.chat_id] = thread
        if thread.issue_node_id:
            self._by_node_id[thread.issue_node_id] = thread.chat_id
        if thread.issue_number is not None:
            self._by_number[thread.issue_number] = thread.chat_id
        self._indexed[thread.chat_id] = (thread.issue_node_id, thread.issue_number)
        log.debug("Stored thread %s (issue #%s)", thread.chat_id, thread.issue_number)

    def remove(self, chat_id: str) -> Optional[Thread]:
        thread = self._threads.pop(chat_id, None)
        if thread is None:
            return None
        self._unindex(thread)
        thread.guard.cancel()
        log.debug("Removed thread %s (issue #%s)", chat_id, thread.issue_number)
        return thread

    def all(self) -> List[Thread]:
        """Snapshot of every thread; safe to iterate while the store changes."""
        return list(self._threads.values())

    def clear(self) -> None:
        for thread in self._threads.values():
            thread.guard.cancel()
        self._threads.clear()
        self._by_node_id.clear()
        self._by_number.clear()
        self._indexed.clear()

    def _unindex(self, thread: Thread) -> None:
        node_id, number = self._indexed.pop(thread.chat_id, (None, None))
        if node_id is not None and self._by_node_id.get(node_id) == thread.chat_id:
            del self._by_node_id[node_id]
        if number is not None and self._by_number.get(number) == thread.chat_id:
            del self._by_number[number]
