"""Lock/archive settling: debounce and suppression of lock side effects."""

import asyncio

import pytest

from conftest import DEBOUNCE, FORUM_ID, mirrored_thread
from forum_mirror.actions import Origin, SetLock
from forum_mirror.chat import ChatThread
from forum_mirror.events import ChatEventNormalizer
from forum_mirror.models import GuardState

events = ChatEventNormalizer(FORUM_ID)


def _update(locked=False, archived=False):
    return events.thread_updated(
        ChatThread(id="200", parent_id=FORUM_ID, title="Mirrored", locked=locked, archived=archived)
    )


async def _settle():
    await asyncio.sleep(DEBOUNCE * 3)


@pytest.fixture
def thread(store, chat, tracker):
    tracker.add_issue(1)
    chat.add_thread("200", "Mirrored")
    t = mirrored_thread()
    store.upsert(t)
    return t


@pytest.mark.asyncio
async def test_user_archive_closes_issue_after_debounce(engine, tracker, thread):
    await engine.dispatch(_update(archived=True))

    assert tracker.calls == []
    assert thread.guard.state is GuardState.ARCHIVE_DEFERRED

    await _settle()
    assert tracker.called("set_issue_state") == [("set_issue_state", 1, "closed")]
    assert thread.archived
    assert thread.guard.state is GuardState.SETTLED


@pytest.mark.asyncio
async def test_archive_flip_flop_collapses(engine, tracker, thread):
    await engine.dispatch(_update(archived=True))
    await engine.dispatch(_update(archived=False))
    await _settle()

    assert tracker.calls == []
    assert not thread.archived


@pytest.mark.asyncio
async def test_user_unarchive_reopens_issue(engine, tracker, thread):
    thread.archived = True
    await engine.dispatch(_update(archived=False))
    await _settle()
    assert tracker.called("set_issue_state") == [("set_issue_state", 1, "open")]


@pytest.mark.asyncio
async def test_user_lock_locks_issue(engine, tracker, thread):
    await engine.dispatch(_update(locked=True))
    await _settle()

    assert tracker.called("lock_issue") == [("lock_issue", 1)]
    assert tracker.called("set_issue_state") == []
    assert thread.locked


@pytest.mark.asyncio
async def test_tracker_lock_on_archived_post_suppresses_unarchive_burst(engine, chat, tracker, thread):
    thread.archived = True
    chat.threads["200"]["archived"] = True

    await engine.apply(SetLock(Origin.TRACKER, node_id="I_1", locked=True))
    assert thread.guard.state is GuardState.LOCK_PENDING

    # Discord reopens the post to change the lock, then archives it again
    await engine.dispatch(_update(locked=True, archived=False))
    await engine.dispatch(_update(locked=True, archived=True))
    await _settle()

    assert tracker.calls == []
    assert thread.archived and thread.locked
    assert thread.guard.state is GuardState.SETTLED


@pytest.mark.asyncio
async def test_guard_released_when_no_burst_arrives(engine, tracker, thread):
    thread.archived = True

    await engine.apply(SetLock(Origin.TRACKER, node_id="I_1", locked=True))
    await _settle()
    assert thread.guard.state is GuardState.SETTLED

    # A later real unarchive goes through
    await engine.dispatch(_update(locked=True, archived=False))
    await _settle()
    assert tracker.called("set_issue_state") == [("set_issue_state", 1, "open")]


@pytest.mark.asyncio
async def test_user_lock_on_archived_post_does_not_reopen_issue(engine, tracker, thread):
    thread.archived = True

    await engine.dispatch(_update(locked=True, archived=True))
    assert tracker.called("lock_issue") == [("lock_issue", 1)]
    assert thread.archive_guard

    await engine.dispatch(_update(locked=True, archived=False))
    await engine.dispatch(_update(locked=True, archived=True))
    await _settle()

    assert tracker.called("set_issue_state") == []
    assert not thread.archive_guard


@pytest.mark.asyncio
async def test_failed_close_is_reverted(engine, tracker, thread):
    tracker.fail.add("set_issue_state")

    await engine.dispatch(_update(archived=True))
    await _settle()

    assert not thread.archived
    assert thread.guard.state is GuardState.SETTLED


@pytest.mark.asyncio
async def test_failed_user_lock_is_reverted(engine, tracker, thread):
    tracker.fail.add("lock_issue")
    await engine.dispatch(_update(locked=True))
    assert not thread.locked
