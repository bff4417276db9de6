"""
Cross-platform references embedded in GitHub bodies.

Every issue or comment written from Discord carries a markdown link to the
Discord message it came from. Finding that link again is how either side
recognises an entity that already has a mirror, without a join table.
"""

from __future__ import annotations

import re
from typing import NamedTuple, Optional

DISCORD_MESSAGE_URL = "https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"

# Only a link target counts: the URL must be wrapped in markdown "(...)".
DISCORD_MESSAGE_LINK_RE = re.compile(
    r"\(https://discord\.com/channels/(?P<guild_id>\d+)/(?P<channel_id>\d+)/(?P<message_id>\d+)\)"
)


class ChatReference(NamedTuple):
    guild_id: str
    channel_id: str
    message_id: str

    @property
    def jump_url(self) -> str:
        return DISCORD_MESSAGE_URL.format(
            guild_id=self.guild_id, channel_id=self.channel_id, message_id=self.message_id
        )


def embed(reference: ChatReference, label: str = "Discord") -> str:
    """Render ``reference`` as a markdown link that ``extract`` will find."""
    return f"[{label}]({reference.jump_url})"


def extract(text: Optional[str]) -> Optional[ChatReference]:
    """Return the first Discord reference in ``text``, or None."""
    if not text:
        return None
    m = DISCORD_MESSAGE_LINK_RE.search(text)
    if not m:
        return None
    return ChatReference(m.group("guild_id"), m.group("channel_id"), m.group("message_id"))

