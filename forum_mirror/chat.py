"""
Discord side of the mirror.

``ChatPlatform`` is the capability set the engine calls. ``DiscordForum``
implements it for one forum channel with discord.py. Inbound events are
converted to the plain ``ChatThread`` / ``ChatMessage`` records below before
they reach the normalizer.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Tuple

import discord

from .helpers import (
    DISCORD_THREAD_NAME_LIMIT,
    clamp,
    issue_number_from_title,
    map_discord_tags_to_github_labels,
    map_github_labels_to_discord_tags,
)

log = logging.getLogger("red.forum_mirror.chat")


@dataclass(frozen=True)
class Attachment:
    name: str
    url: str
    content_type: Optional[str] = None


@dataclass(frozen=True)
class ChatThread:
    id: str
    parent_id: Optional[str]
    title: str
    applied_tags: FrozenSet[str] = frozenset()
    locked: bool = False
    archived: bool = False

    @classmethod
    def from_discord(cls, thread: discord.Thread) -> "ChatThread":
        return cls(
            id=str(thread.id),
            parent_id=str(thread.parent_id) if thread.parent_id else None,
            title=thread.name,
            applied_tags=frozenset(str(tag.id) for tag in getattr(thread, "applied_tags", []) or []),
            locked=bool(thread.locked),
            archived=bool(thread.archived),
        )


@dataclass(frozen=True)
class ChatMessage:
    id: str
    channel_id: str
    guild_id: str
    content: str
    author_name: str
    author_id: str = ""
    author_avatar_url: Optional[str] = None
    author_bot: bool = False
    attachments: Tuple[Attachment, ...] = field(default_factory=tuple)

    @classmethod
    def from_discord(cls, message: discord.Message) -> "ChatMessage":
        author = message.author
        return cls(
            id=str(message.id),
            channel_id=str(message.channel.id),
            guild_id=str(message.guild.id) if message.guild else "0",
            content=message.content,
            author_name=author.global_name or author.name,
            author_id=str(author.id),
            author_avatar_url=author.display_avatar.url,
            author_bot=author.bot,
            attachments=tuple(
                Attachment(a.filename, a.url, a.content_type) for a in message.attachments
            ),
        )


@dataclass(frozen=True)
class CreatedThread:
    chat_id: str
    applied_tags: FrozenSet[str] = frozenset()


class ChatPlatform(abc.ABC):
    """What the sync engine needs from the chat platform."""

    @abc.abstractmethod
    async def create_thread(self, title: str, body: str, labels: List[str]) -> CreatedThread: ...

    @abc.abstractmethod
    async def create_message(self, chat_id: str, body: str) -> str: ...

    @abc.abstractmethod
    async def delete_message(self, chat_id: str, message_id: str) -> None: ...

    @abc.abstractmethod
    async def archive_thread(self, chat_id: str) -> None: ...

    @abc.abstractmethod
    async def unarchive_thread(self, chat_id: str) -> None: ...

    @abc.abstractmethod
    async def lock_thread(self, chat_id: str) -> None: ...

    @abc.abstractmethod
    async def unlock_thread(self, chat_id: str) -> None: ...

    @abc.abstractmethod
    async def delete_thread(self, chat_id: str) -> None: ...

    @abc.abstractmethod
    async def thread_exists(self, chat_id: str) -> bool: ...

    @abc.abstractmethod
    async def find_thread_for_issue(self, number: int) -> Optional[str]: ...

    @abc.abstractmethod
    def label_names(self, tag_ids: FrozenSet[str]) -> List[str]: ...

    @abc.abstractmethod
    async def announce_issue(self, chat_id: str, number: int, url: str, collaborators: List[str]) -> None: ...


ViewFactory = Callable[[int, List[str]], Optional[discord.ui.View]]


class DiscordForum(ChatPlatform):
    def __init__(self, forum: discord.ForumChannel, view_factory: Optional[ViewFactory] = None) -> None:
        self.forum = forum
        self.view_factory = view_factory

    def __repr__(self) -> str:
        return f"<DiscordForum {self.forum.id}>"

    async def _get_thread(self, chat_id: str) -> Optional[discord.Thread]:
        if not chat_id.isdigit():
            return None
        guild = self.forum.guild
        channel = guild.get_channel_or_thread(int(chat_id))
        if isinstance(channel, discord.Thread):
            return channel
        try:
            channel = await guild.fetch_channel(int(chat_id))
        except discord.NotFound:
            return None
        return channel if isinstance(channel, discord.Thread) else None

    async def _require_thread(self, chat_id: str) -> discord.Thread:
        thread = await self._get_thread(chat_id)
        if thread is None:
            raise LookupError(f"Discord thread {chat_id} not found")
        return thread

    async def create_thread(self, title: str, body: str, labels: List[str]) -> CreatedThread:
        tags = map_github_labels_to_discord_tags(self.forum.available_tags, labels)
        created = await self.forum.create_thread(
            name=clamp(title, DISCORD_THREAD_NAME_LIMIT), content=clamp(body), applied_tags=tags
        )
        thread = created.thread
        log.debug("Created forum post %s in %s: %s", thread.id, self.forum.id, thread.name)
        return CreatedThread(chat_id=str(thread.id), applied_tags=frozenset(str(t.id) for t in tags))

    async def create_message(self, chat_id: str, body: str) -> str:
        thread = await self._require_thread(chat_id)
        message = await thread.send(clamp(body))
        return str(message.id)

    async def delete_message(self, chat_id: str, message_id: str) -> None:
        if not message_id.isdigit():
            log.debug("No Discord message known for %s in thread %s", message_id, chat_id)
            return
        thread = await self._require_thread(chat_id)
        await thread.get_partial_message(int(message_id)).delete()

    async def archive_thread(self, chat_id: str) -> None:
        thread = await self._require_thread(chat_id)
        await thread.edit(archived=True)

    async def unarchive_thread(self, chat_id: str) -> None:
        thread = await self._require_thread(chat_id)
        await thread.edit(archived=False)

    async def _set_locked(self, chat_id: str, locked: bool) -> None:
        thread = await self._require_thread(chat_id)
        # An archived post has to be reopened before its lock can change.
        was_archived = thread.archived
        await thread.edit(archived=False, locked=locked)
        if was_archived:
            await thread.edit(archived=True)

    async def lock_thread(self, chat_id: str) -> None:
        await self._set_locked(chat_id, True)

    async def unlock_thread(self, chat_id: str) -> None:
        await self._set_locked(chat_id, False)

    async def delete_thread(self, chat_id: str) -> None:
        thread = await self._get_thread(chat_id)
        if thread is None:
            log.debug("Thread %s already gone", chat_id)
            return
        await thread.delete()

    async def thread_exists(self, chat_id: str) -> bool:
        return await self._get_thread(chat_id) is not None

    async def find_thread_for_issue(self, number: int) -> Optional[str]:
        for thread in self.forum.threads:
            if issue_number_from_title(thread.name) == number:
                return str(thread.id)
        async for thread in self.forum.archived_threads(limit=None):
            if issue_number_from_title(thread.name) == number:
                return str(thread.id)
        return None

    def label_names(self, tag_ids: FrozenSet[str]) -> List[str]:
        return map_discord_tags_to_github_labels(self.forum.available_tags, sorted(tag_ids))

    async def announce_issue(self, chat_id: str, number: int, url: str, collaborators: List[str]) -> None:
        thread = await self._require_thread(chat_id)
        content = f"Issue #{number} has been created: {url}"
        view = self.view_factory(number, collaborators) if self.view_factory and collaborators else None
        if view is not None:
            content += "\nPlease assign a developer."
            await thread.send(content, view=view)
        else:
            await thread.send(content)
