"""
GitHub side of the mirror.

``IssueTracker`` is the capability set the engine calls; ``GitHubTracker``
implements it with PyGithub (REST, run in worker threads) and a small aiohttp
GraphQL call for the one mutation REST does not offer.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp
from github import Auth, Github, GithubException

log = logging.getLogger("red.forum_mirror.tracker")

GRAPHQL_URL = "https://api.github.com/graphql"

DELETE_ISSUE_MUTATION = """
mutation($issueId: ID!) {
  deleteIssue(input: {issueId: $issueId}) {
    clientMutationId
  }
}
"""


@dataclass(frozen=True)
class Issue:
    number: int
    node_id: str
    title: str
    body: Optional[str] = None
    state: str = "open"
    locked: bool = False
    labels: List[str] = field(default_factory=list)
    author_login: str = "GitHub"
    author_url: Optional[str] = None
    html_url: Optional[str] = None
    is_pull_request: bool = False

    @property
    def closed(self) -> bool:
        return self.state == "closed"

    @classmethod
    def from_github(cls, issue: Any) -> "Issue":
        """Build from a PyGithub ``Issue``."""
        user = issue.user
        return cls(
            number=issue.number,
            node_id=issue.node_id,
            title=issue.title,
            body=issue.body,
            state=issue.state,
            locked=bool(issue.locked),
            labels=[label.name for label in issue.labels],
            author_login=user.login if user else "GitHub",
            author_url=user.html_url if user else None,
            html_url=issue.html_url,
            is_pull_request=issue.pull_request is not None,
        )

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Issue":
        """Build from the ``issue`` object of a webhook payload."""
        user = data.get("user") or {}
        return cls(
            number=int(data["number"]),
            node_id=data["node_id"],
            title=data.get("title") or "",
            body=data.get("body"),
            state=data.get("state") or "open",
            locked=bool(data.get("locked")),
            labels=[label["name"] for label in data.get("labels") or [] if "name" in label],
            author_login=user.get("login") or "GitHub",
            author_url=user.get("html_url"),
            html_url=data.get("html_url"),
            is_pull_request="pull_request" in data,
        )


@dataclass(frozen=True)
class IssueComment:
    id: int
    issue_number: Optional[int]
    body: str
    author_login: str = "GitHub"
    author_url: Optional[str] = None
    html_url: Optional[str] = None

    @classmethod
    def from_github(cls, comment: Any) -> "IssueComment":
        """Build from a PyGithub ``IssueComment``; the number comes from ``issue_url``."""
        user = comment.user
        return cls(
            id=comment.id,
            issue_number=_number_from_url(getattr(comment, "issue_url", None)),
            body=comment.body or "",
            author_login=user.login if user else "GitHub",
            author_url=user.html_url if user else None,
            html_url=comment.html_url,
        )

    @classmethod
    def from_payload(cls, data: Dict[str, Any], issue_number: Optional[int] = None) -> "IssueComment":
        user = data.get("user") or {}
        return cls(
            id=int(data["id"]),
            issue_number=issue_number,
            body=data.get("body") or "",
            author_login=user.get("login") or "GitHub",
            author_url=user.get("html_url"),
            html_url=data.get("html_url"),
        )


@dataclass(frozen=True)
class CreatedIssue:
    number: int
    node_id: str
    body: str
    html_url: Optional[str] = None


def _number_from_url(url: Optional[str]) -> Optional[int]:
    if not url:
        return None
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else None


class IssueTracker(abc.ABC):
    """What the sync engine needs from an issue tracker."""

    @abc.abstractmethod
    async def list_issues(self, state: str = "all") -> List[Issue]: ...

    @abc.abstractmethod
    async def list_comments(self) -> List[IssueComment]: ...

    @abc.abstractmethod
    async def create_issue(self, title: str, body: str, labels: List[str]) -> CreatedIssue: ...

    @abc.abstractmethod
    async def create_comment(self, number: int, body: str) -> int: ...

    @abc.abstractmethod
    async def delete_comment(self, comment_id: int) -> None: ...

    @abc.abstractmethod
    async def delete_issue(self, node_id: str) -> None: ...

    @abc.abstractmethod
    async def set_issue_state(self, number: int, state: str) -> None: ...

    @abc.abstractmethod
    async def lock_issue(self, number: int) -> None: ...

    @abc.abstractmethod
    async def unlock_issue(self, number: int) -> None: ...

    @abc.abstractmethod
    async def list_collaborators(self) -> List[str]: ...

    @abc.abstractmethod
    async def assign_issue(self, number: int, login: str) -> None: ...

    @abc.abstractmethod
    def issue_url(self, number: int) -> str: ...


class GitHubTracker(IssueTracker):
    def __init__(self, token: str, owner: str, repo: str) -> None:
        self.token = token
        self.owner = owner
        self.repo_name = repo
        self._gh = Github(auth=Auth.Token(token))
        self._repo = None
        self._repo_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<GitHubTracker {self.owner}/{self.repo_name}>"

    # ----------------------
    # Blocking-to-thread helpers for PyGithub calls
    # ----------------------
    async def _gh_list(self, fn_noargs):
        return await asyncio.to_thread(lambda: list(fn_noargs()))

    async def _gh_call(self, fn_noargs):
        return await asyncio.to_thread(fn_noargs)

    async def _get_repo(self):
        async with self._repo_lock:
            if self._repo is None:
                log.debug("Fetching repo %s/%s", self.owner, self.repo_name)
                self._repo = await self._gh_call(
                    lambda: self._gh.get_repo(f"{self.owner}/{self.repo_name}")
                )
            return self._repo

    async def _get_issue(self, number: int):
        repo = await self._get_repo()
        return await self._gh_call(lambda: repo.get_issue(number=number))

    # ----------------------
    # GraphQL helpers
    # ----------------------
    async def _graphql_request(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        payload = {"query": query, "variables": variables or {}}
        async with aiohttp.ClientSession() as session:
            async with session.post(GRAPHQL_URL, headers=headers, json=payload) as response:
                if response.status != 200:
                    raise GithubException(response.status, await response.text(), None)
                data = await response.json()
        if data.get("errors"):
            messages = [e.get("message", str(e)) for e in data["errors"]]
            raise GithubException(422, {"errors": messages}, None)
        return data.get("data") or {}

    # ----------------------
    # IssueTracker
    # ----------------------
    async def list_issues(self, state: str = "all") -> List[Issue]:
        repo = await self._get_repo()
        raw = await self._gh_list(lambda: repo.get_issues(state=state))
        issues = [Issue.from_github(i) for i in raw]
        log.debug("Fetched %d issues (state=%s) from %r", len(issues), state, self)
        return [i for i in issues if not i.is_pull_request]

    async def list_comments(self) -> List[IssueComment]:
        repo = await self._get_repo()
        raw = await self._gh_list(lambda: repo.get_issues_comments())
        log.debug("Fetched %d issue comments from %r", len(raw), self)
        return [IssueComment.from_github(c) for c in raw]

    async def create_issue(self, title: str, body: str, labels: List[str]) -> CreatedIssue:
        repo = await self._get_repo()
        issue = await self._gh_call(lambda: repo.create_issue(title=title, body=body, labels=labels))
        return CreatedIssue(
            number=issue.number, node_id=issue.node_id, body=issue.body or body, html_url=issue.html_url
        )

    async def create_comment(self, number: int, body: str) -> int:
        issue = await self._get_issue(number)
        comment = await self._gh_call(lambda: issue.create_comment(body))
        return comment.id

    async def delete_comment(self, comment_id: int) -> None:
        repo = await self._get_repo()
        comment = await self._gh_call(lambda: repo.get_issues_comment(comment_id))
        await self._gh_call(comment.delete)

    async def delete_issue(self, node_id: str) -> None:
        # REST cannot delete issues
        await self._graphql_request(DELETE_ISSUE_MUTATION, {"issueId": node_id})

    async def set_issue_state(self, number: int, state: str) -> None:
        issue = await self._get_issue(number)
        await self._gh_call(lambda: issue.edit(state=state))

    async def lock_issue(self, number: int) -> None:
        issue = await self._get_issue(number)
        await self._gh_call(lambda: issue.lock("off-topic"))

    async def unlock_issue(self, number: int) -> None:
        issue = await self._get_issue(number)
        await self._gh_call(issue.unlock)

    async def list_collaborators(self) -> List[str]:
        repo = await self._get_repo()
        users = await self._gh_list(lambda: repo.get_collaborators())
        return [u.login for u in users]

    async def assign_issue(self, number: int, login: str) -> None:
        issue = await self._get_issue(number)
        await self._gh_call(lambda: issue.add_to_assignees(login))

    def issue_url(self, number: int) -> str:
        return f"https://github.com/{self.owner}/{self.repo_name}/issues/{number}"
