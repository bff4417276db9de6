from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import discord

from .correlation import ChatReference, embed

if TYPE_CHECKING:
    from .chat import Attachment, ChatMessage
    from .tracker import Issue, IssueComment

DISCORD_MESSAGE_LIMIT = 2000
DISCORD_THREAD_NAME_LIMIT = 100
DISCORD_TAG_LIMIT = 5

IMAGE_CONTENT_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}


def map_discord_tags_to_github_labels(
    discord_tags: Iterable[discord.ForumTag], applied_ids: Iterable[str]
) -> List[str]:
    names = {str(tag.id): tag.name for tag in discord_tags}
    result: List[str] = []
    for tag_id in applied_ids:
        name = names.get(str(tag_id))
        if name:
            result.append(name)
    return result


def map_github_labels_to_discord_tags(
    discord_tags: Iterable[discord.ForumTag], labels: Iterable[str]
) -> List[discord.ForumTag]:
    name_to_tag: Dict[str, discord.ForumTag] = {tag.name: tag for tag in discord_tags}
    return [name_to_tag[label] for label in labels if label in name_to_tag][:DISCORD_TAG_LIMIT]


def build_discord_message_prefix(
    author_name: str, author_url: Optional[str] = None
) -> str:
    if author_url:
        return f"**[{author_name}]({author_url})**\n\n"
    return f"**{author_name}**\n\n"


def clamp(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def attachments_to_markdown(attachments: Iterable["Attachment"]) -> str:
    md = ""
    for attachment in attachments:
        if attachment.content_type in IMAGE_CONTENT_TYPES:
            md += f'![{attachment.name}]({attachment.url} "{attachment.name}")'
    return md


def format_issue_body(message: "ChatMessage") -> str:
    """GitHub body for an issue or comment written on Discord.

    The author link doubles as the correlation fragment pointing back at the
    Discord message.
    """
    ref = ChatReference(message.guild_id, message.channel_id, message.id)
    avatar = f"[![{message.author_name}]({message.author_avatar_url})]({ref.jump_url})" if message.author_avatar_url else ""
    header = f"<kbd>{avatar}</kbd> " if avatar else ""
    return (
        f"{header}{embed(ref, label=message.author_name)}  `BOT`\n\n"
        f"{message.content}\n"
        f"{attachments_to_markdown(message.attachments)}\n"
    )


def format_forum_title(issue: "Issue") -> str:
    return clamp(f"#{issue.number}: {issue.title}", DISCORD_THREAD_NAME_LIMIT)


def issue_number_from_title(title: str) -> Optional[int]:
    if not title.startswith("#"):
        return None
    head = title[1:].split(":", 1)[0]
    return int(head) if head.isdigit() else None


def format_thread_body(issue: "Issue", issue_url: str) -> str:
    """Starter message for a forum post mirroring a GitHub issue."""
    footer = f"\n\nFrom GitHub: {issue_url}"
    prefix = build_discord_message_prefix(issue.author_login, issue.author_url)
    body = clamp(issue.body or "No Info", DISCORD_MESSAGE_LIMIT - len(footer) - len(prefix))
    return prefix + body + footer


def format_comment_message(comment: "IssueComment") -> str:
    prefix = build_discord_message_prefix(comment.author_login, comment.author_url)
    return clamp(prefix + comment.body)
