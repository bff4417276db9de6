"""
Discord forum ↔ GitHub issue mirror for Red-DiscordBot.
"""

__red_end_user_data_statement__ = (
    "This cog stores no personal data. Message content and author names are copied to GitHub."
)


async def setup(bot):
    from .forum_mirror import ForumMirror

    await bot.add_cog(ForumMirror(bot))
