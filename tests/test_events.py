"""Platform events to canonical actions."""

import pytest

from conftest import FORUM_ID, make_message
from forum_mirror.actions import (
    CreateComment,
    CreateThread,
    DeleteComment,
    DeleteThread,
    Origin,
    SetArchived,
    SetLock,
)
from forum_mirror.chat import ChatThread
from forum_mirror.errors import MalformedPayload
from forum_mirror.events import ChatEventNormalizer, TrackerEventNormalizer

ISSUE = {
    "number": 12,
    "node_id": "I_kwDOabc",
    "title": "Broken thing",
    "body": "It broke",
    "state": "open",
    "locked": False,
    "labels": [{"name": "bug"}],
    "user": {"login": "octocat", "html_url": "https://github.com/octocat"},
    "html_url": "https://github.com/owner/repo/issues/12",
}


def _payload(action, **extra):
    payload = {"action": action, "issue": dict(ISSUE)}
    payload.update(extra)
    return payload


class TestChatEvents:
    normalizer = ChatEventNormalizer(FORUM_ID)

    def test_thread_outside_forum_is_ignored(self):
        thread = ChatThread(id="200", parent_id="999", title="Elsewhere")
        assert self.normalizer.thread_created(thread) == []
        assert self.normalizer.thread_updated(thread) == []
        assert self.normalizer.thread_deleted(thread) == []

    def test_thread_created(self):
        thread = ChatThread(id="200", parent_id=FORUM_ID, title="New", applied_tags=frozenset({"11"}))
        [action] = self.normalizer.thread_created(thread)
        assert action == CreateThread(Origin.CHAT, chat_id="200", title="New", applied_tags=frozenset({"11"}))

    def test_thread_updated_reports_lock_before_archive(self):
        thread = ChatThread(id="200", parent_id=FORUM_ID, title="New", locked=True, archived=True)
        lock, archive = self.normalizer.thread_updated(thread)
        assert lock == SetLock(Origin.CHAT, chat_id="200", locked=True)
        assert archive == SetArchived(Origin.CHAT, chat_id="200", archived=True)

    def test_messages(self):
        message = make_message("hi")
        assert self.normalizer.message_created(message) == [CreateComment(Origin.CHAT, chat_id="200", message=message)]
        assert self.normalizer.message_created(make_message("hi", author_bot=True)) == []
        assert self.normalizer.message_deleted("200", "300") == [
            DeleteComment(Origin.CHAT, chat_id="200", message_id="300")
        ]

    def test_unconfigured_forum_monitors_nothing(self):
        thread = ChatThread(id="200", parent_id=FORUM_ID, title="New")
        assert ChatEventNormalizer(None).thread_created(thread) == []


class TestTrackerEvents:
    normalizer = TrackerEventNormalizer()

    def test_opened(self):
        [action] = self.normalizer.normalize(_payload("opened"), "issues")
        assert isinstance(action, CreateThread)
        assert action.origin is Origin.TRACKER
        assert action.node_id == "I_kwDOabc"
        assert action.issue.number == 12
        assert action.issue.labels == ["bug"]
        assert action.issue.author_login == "octocat"

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("closed", SetArchived(Origin.TRACKER, node_id="I_kwDOabc", archived=True)),
            ("reopened", SetArchived(Origin.TRACKER, node_id="I_kwDOabc", archived=False)),
            ("locked", SetLock(Origin.TRACKER, node_id="I_kwDOabc", locked=True)),
            ("unlocked", SetLock(Origin.TRACKER, node_id="I_kwDOabc", locked=False)),
            ("deleted", DeleteThread(Origin.TRACKER, node_id="I_kwDOabc")),
        ],
    )
    def test_issue_actions(self, name, expected):
        assert self.normalizer.normalize(_payload(name), "issues") == [expected]

    def test_comment_created(self):
        comment = {"id": 55, "body": "Fixed", "user": {"login": "dev"}}
        [action] = self.normalizer.normalize(_payload("created", comment=comment), "issue_comment")
        assert isinstance(action, CreateComment)
        assert action.comment.id == 55
        assert action.comment.issue_number == 12
        assert action.comment.author_login == "dev"

    def test_comment_deleted_only_deletes_the_comment(self):
        comment = {"id": 55, "body": "Fixed"}
        actions = self.normalizer.normalize(_payload("deleted", comment=comment), "issue_comment")
        assert actions == [DeleteComment(Origin.TRACKER, node_id="I_kwDOabc", comment_id=55)]

    def test_unhandled_actions_are_ignored(self):
        assert self.normalizer.normalize(_payload("labeled"), "issues") == []
        assert self.normalizer.normalize(_payload("edited", comment={"id": 1}), "issue_comment") == []
        assert self.normalizer.normalize({"zen": "Keep it simple."}, "ping") == []

    def test_pull_requests_are_ignored(self):
        issue = dict(ISSUE, pull_request={"url": "https://api.github.com/repos/o/r/pulls/12"})
        assert self.normalizer.normalize({"action": "opened", "issue": issue}, "issues") == []
        assert self.normalizer.normalize({"action": "opened", "pull_request": {}}, None) == []

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"issue": ISSUE},
            {"action": "closed"},
            {"action": "closed", "issue": {"number": 12}},
            {"action": "created", "issue": ISSUE, "comment": {"body": "no id"}},
            {"action": "deleted", "issue": ISSUE, "comment": {"id": "abc"}},
            {"action": "created", "issue": ISSUE, "comment": {"id": "abc"}},
            {"action": "created", "issue": dict(ISSUE, number="twelve"), "comment": {"id": 55}},
            {"action": "opened", "issue": {"node_id": "I_x"}},
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(MalformedPayload):
            self.normalizer.normalize(payload, "issues")
