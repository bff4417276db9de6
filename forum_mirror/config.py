"""
Default configuration for the ForumMirror cog.
Registered with Red's Config in ForumMirror.__init__.
"""

CONFIG_IDENTIFIER = 908039527271104520

# Seconds to wait before reacting to an archive flip reported by Discord.
# Tuned against Discord's unlock/archive event ordering; configurable per guild.
DEFAULT_DEBOUNCE_SECONDS = 0.5

# How long a picked assignee is remembered before Confirm must be re-done.
SELECTION_TTL_SECONDS = 300

MIN_POLL_INTERVAL = 60

# Default guild configuration
DEFAULT_GUILD_CONFIG = {
    "github_token": None,  # GitHub PAT
    "github_owner": None,  # owner or org
    "github_repo": None,  # repo name only
    "forum_channel": None,  # forum channel id mirrored to issues
    "discord_to_github_enabled": True,  # mirror Discord activity to GitHub
    "debounce_seconds": DEFAULT_DEBOUNCE_SECONDS,
    "poll_enabled": False,  # periodic reconciliation
    "poll_interval": 600,  # seconds
}

# Default global configuration (one webhook listener per bot process)
DEFAULT_GLOBAL_CONFIG = {
    "webhook_enabled": False,
    "webhook_host": "0.0.0.0",
    "webhook_port": 3000,
}
