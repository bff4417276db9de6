from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import discord
from discord.ext import tasks
from redbot.core import Config, commands
from redbot.core.bot import Red

from .assignment import PendingSelections
from .chat import ChatMessage, ChatThread, DiscordForum
from .config import CONFIG_IDENTIFIER, DEFAULT_GLOBAL_CONFIG, DEFAULT_GUILD_CONFIG, MIN_POLL_INTERVAL
from .engine import SyncEngine
from .errors import MalformedPayload, SyncError
from .events import ChatEventNormalizer, TrackerEventNormalizer
from .reconcile import Reconciler
from .store import MirrorStore
from .tracker import GitHubTracker
from .views import AssigneeView
from .webhook import WebhookServer


@dataclass
class GuildMirror:
    engine: SyncEngine
    reconciler: Reconciler
    chat_events: ChatEventNormalizer
    forum_id: int
    last_reconcile: float = field(default=0.0)


class ForumMirror(commands.Cog):
    """
    Mirror a Discord forum channel with the issues of a GitHub repository.

    - A forum post is an issue, a message in it is a comment
    - Lock/unlock and close/reopen (archive) travel both ways
    - The mirror is rebuilt from GitHub on every start; nothing is persisted
      except configuration
    - GitHub events arrive through the webhook receiver, Discord events
      through the gateway
    """

    def __init__(self, bot: Red) -> None:
        self.bot = bot
        self.config = Config.get_conf(self, identifier=CONFIG_IDENTIFIER, force_registration=True)
        self.config.register_guild(**DEFAULT_GUILD_CONFIG)
        self.config.register_global(**DEFAULT_GLOBAL_CONFIG)
        self.log = logging.getLogger("red.forum_mirror")

        self.selections = PendingSelections()
        self.tracker_events = TrackerEventNormalizer()
        self._mirrors: Dict[int, GuildMirror] = {}
        self._webhook: Optional[WebhookServer] = None
        self._startup_task: Optional[asyncio.Task] = None

    # ----------------------
    # Lifecycle
    # ----------------------
    async def cog_load(self) -> None:
        self._startup_task = asyncio.create_task(self._initialize())
        if not self.mirror_poll_task.is_running():
            self.mirror_poll_task.start()

    async def cog_unload(self) -> None:
        if self.mirror_poll_task.is_running():
            self.mirror_poll_task.cancel()
        if self._startup_task is not None and not self._startup_task.done():
            self._startup_task.cancel()
        await self._stop_webhook()
        for mirror in self._mirrors.values():
            mirror.engine.close()
        self._mirrors.clear()
        self.log.debug("ForumMirror unloaded")

    async def _initialize(self) -> None:
        await self.bot.wait_until_red_ready()
        for guild in self.bot.guilds:
            try:
                await self._start_guild(guild)
            except Exception:
                self.log.exception("Failed to start mirror for guild %s", guild.id)
        if await self.config.webhook_enabled():
            await self._start_webhook()

    async def _build_mirror(self, guild: discord.Guild) -> Optional[GuildMirror]:
        conf = await self.config.guild(guild).all()
        if not all([conf["github_token"], conf["github_owner"], conf["github_repo"], conf["forum_channel"]]):
            return None
        forum = guild.get_channel(conf["forum_channel"])
        if not isinstance(forum, discord.ForumChannel):
            self.log.warning("Configured forum %s is not a forum channel (guild=%s)", conf["forum_channel"], guild.id)
            return None

        tracker = GitHubTracker(conf["github_token"], conf["github_owner"], conf["github_repo"])
        chat = DiscordForum(
            forum,
            view_factory=lambda number, collaborators: AssigneeView(tracker, self.selections, number, collaborators),
        )
        engine = SyncEngine(MirrorStore(), chat, tracker, debounce_seconds=conf["debounce_seconds"])
        return GuildMirror(
            engine=engine,
            reconciler=Reconciler(engine),
            chat_events=ChatEventNormalizer(str(forum.id)),
            forum_id=forum.id,
        )

    async def _start_guild(self, guild: discord.Guild) -> Optional[GuildMirror]:
        """(Re)build the guild's mirror from GitHub."""
        old = self._mirrors.pop(guild.id, None)
        if old is not None:
            old.engine.close()
        mirror = await self._build_mirror(guild)
        if mirror is None:
            self.log.debug("Guild %s is not configured for mirroring", guild.id)
            return None
        self._mirrors[guild.id] = mirror
        await self._reconcile(guild.id, mirror)
        return mirror

    async def _reconcile(self, guild_id: int, mirror: GuildMirror) -> Optional[int]:
        mirror.last_reconcile = time.monotonic()
        try:
            count = await mirror.reconciler.reconcile()
        except SyncError as e:
            self.log.warning("Reconciliation failed for guild %s: %s", guild_id, e)
            return None
        except Exception:
            self.log.exception("Reconciliation failed for guild %s", guild_id)
            return None
        self.log.info("Issues loaded for guild %s: %d threads mirrored", guild_id, len(mirror.engine.store))
        return count

    # ----------------------
    # Webhook receiver
    # ----------------------
    async def _start_webhook(self) -> None:
        await self._stop_webhook()
        host = await self.config.webhook_host()
        port = await self.config.webhook_port()
        server = WebhookServer(self._handle_delivery, host=host, port=port)
        try:
            await server.start()
        except OSError:
            self.log.exception("Failed to start webhook receiver on %s:%s", host, port)
            return
        self._webhook = server

    async def _stop_webhook(self) -> None:
        if self._webhook is not None:
            await self._webhook.stop()
            self._webhook = None

    async def _handle_delivery(self, guild_id: int, payload: Any, event: Optional[str]) -> bool:
        mirror = self._mirrors.get(guild_id)
        if mirror is None:
            return False
        try:
            actions = self.tracker_events.normalize(payload, event)
        except MalformedPayload as e:
            self.log.warning("Dropping webhook delivery for guild %s: %s", guild_id, e)
            return True
        await mirror.engine.dispatch(actions)
        return True

    # ----------------------
    # Discord -> GitHub
    # ----------------------
    async def _chat_mirror(self, guild: Optional[discord.Guild]) -> Optional[GuildMirror]:
        if guild is None:
            return None
        mirror = self._mirrors.get(guild.id)
        if mirror is None:
            return None
        if not await self.config.guild(guild).discord_to_github_enabled():
            self.log.debug("Discord → GitHub sync disabled for guild %s", guild.id)
            return None
        return mirror

    @commands.Cog.listener()
    async def on_thread_create(self, thread: discord.Thread) -> None:
        mirror = await self._chat_mirror(thread.guild)
        if mirror is None:
            return
        await mirror.engine.dispatch(mirror.chat_events.thread_created(ChatThread.from_discord(thread)))

    @commands.Cog.listener()
    async def on_thread_update(self, before: discord.Thread, after: discord.Thread) -> None:
        if before.archived == after.archived and before.locked == after.locked:
            return
        mirror = await self._chat_mirror(after.guild)
        if mirror is None:
            return
        await mirror.engine.dispatch(mirror.chat_events.thread_updated(ChatThread.from_discord(after)))

    @commands.Cog.listener()
    async def on_raw_thread_delete(self, payload: discord.RawThreadDeleteEvent) -> None:
        mirror = await self._chat_mirror(self.bot.get_guild(payload.guild_id))
        if mirror is None:
            return
        deleted = ChatThread(id=str(payload.thread_id), parent_id=str(payload.parent_id), title="")
        await mirror.engine.dispatch(mirror.chat_events.thread_deleted(deleted))

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or not isinstance(message.channel, discord.Thread):
            return
        mirror = await self._chat_mirror(message.guild)
        if mirror is None or message.channel.parent_id != mirror.forum_id:
            return
        await mirror.engine.dispatch(mirror.chat_events.message_created(ChatMessage.from_discord(message)))

    @commands.Cog.listener()
    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        if payload.guild_id is None:
            return
        mirror = await self._chat_mirror(self.bot.get_guild(payload.guild_id))
        if mirror is None:
            return
        actions = mirror.chat_events.message_deleted(str(payload.channel_id), str(payload.message_id))
        await mirror.engine.dispatch(actions)

    # ----------------------
    # Periodic reconciliation
    # ----------------------
    @tasks.loop(seconds=MIN_POLL_INTERVAL)
    async def mirror_poll_task(self) -> None:
        now = time.monotonic()
        for guild_id, mirror in list(self._mirrors.items()):
            guild = self.bot.get_guild(guild_id)
            if guild is None:
                continue
            try:
                conf = await self.config.guild(guild).all()
            except Exception:
                continue
            if not conf["poll_enabled"]:
                continue
            interval = max(MIN_POLL_INTERVAL, conf["poll_interval"])
            if now - mirror.last_reconcile < interval:
                continue
            self.log.debug("Polling tick: reconciling guild %s", guild_id)
            await self._reconcile(guild_id, mirror)

    @mirror_poll_task.before_loop
    async def before_mirror_poll_task(self) -> None:
        await self.bot.wait_until_red_ready()

    # ----------------------
    # Configuration Commands
    # ----------------------
    @commands.group(name="forumsyncset")
    @commands.guild_only()
    @commands.admin_or_permissions(manage_guild=True)
    async def forumsyncset(self, ctx: commands.Context) -> None:
        """Configure the forum ↔ GitHub issue mirror."""

    @forumsyncset.command(name="token")
    async def forumsyncset_token(self, ctx: commands.Context, token: str) -> None:
        """Set the GitHub Personal Access Token (issues read/write)."""
        with contextlib.suppress(discord.HTTPException):
            await ctx.message.delete()
        if len(token) < 40:
            await ctx.send("❌ Token looks invalid.")
            return
        await self.config.guild(ctx.guild).github_token.set(token)
        await ctx.send("✅ GitHub token set.")
        await self._restart_and_report(ctx)

    @forumsyncset.command(name="repo")
    async def forumsyncset_repo(self, ctx: commands.Context, owner: str, repo: str) -> None:
        """Set the GitHub repository as OWNER REPO (space separated)."""
        await self.config.guild(ctx.guild).github_owner.set(owner)
        await self.config.guild(ctx.guild).github_repo.set(repo)
        self.log.debug("Repo configured to %s/%s (guild=%s)", owner, repo, ctx.guild.id)
        await ctx.send(f"✅ Repository set to `{owner}/{repo}`.")
        await self._restart_and_report(ctx)

    @forumsyncset.command(name="forum")
    async def forumsyncset_forum(self, ctx: commands.Context, channel: discord.ForumChannel) -> None:
        """Set the forum channel mirrored to GitHub issues."""
        await self.config.guild(ctx.guild).forum_channel.set(channel.id)
        self.log.debug("Forum set: %s (%s) guild=%s", channel.name, channel.id, ctx.guild.id)
        await ctx.send(f"✅ Forum set to {channel.mention}.")
        await self._restart_and_report(ctx)

    @forumsyncset.command(name="debounce")
    async def forumsyncset_debounce(self, ctx: commands.Context, seconds: float) -> None:
        """Set how long to wait before mirroring a Discord archive change."""
        if not 0 < seconds <= 10:
            await ctx.send("❌ Choose a value between 0 and 10 seconds.")
            return
        await self.config.guild(ctx.guild).debounce_seconds.set(seconds)
        mirror = self._mirrors.get(ctx.guild.id)
        if mirror is not None:
            mirror.engine.debounce_seconds = seconds
        await ctx.send(f"✅ Archive debounce set to {seconds:g}s.")

    @forumsyncset.command(name="poll")
    async def forumsyncset_poll(self, ctx: commands.Context, enabled: Optional[bool] = None, interval: Optional[int] = None) -> None:
        """Enable/disable periodic reconciliation and set its interval in seconds."""
        if enabled is not None:
            await self.config.guild(ctx.guild).poll_enabled.set(enabled)
        if interval is not None:
            if interval < MIN_POLL_INTERVAL:
                await ctx.send(f"❌ Interval must be at least {MIN_POLL_INTERVAL} seconds.")
                return
            await self.config.guild(ctx.guild).poll_interval.set(interval)
        conf = await self.config.guild(ctx.guild).all()
        await ctx.send(f"Polling: {'on' if conf['poll_enabled'] else 'off'}, every {conf['poll_interval']}s.")

    @forumsyncset.command(name="discord_to_github")
    async def forumsyncset_discord_to_github(self, ctx: commands.Context, enabled: Optional[bool] = None) -> None:
        """Toggle mirroring of Discord activity to GitHub."""
        if enabled is None:
            enabled = not await self.config.guild(ctx.guild).discord_to_github_enabled()
        await self.config.guild(ctx.guild).discord_to_github_enabled.set(enabled)
        await ctx.send(f"Discord → GitHub sync {'enabled' if enabled else 'disabled'}.")

    @forumsyncset.command(name="webhook")
    @commands.is_owner()
    async def forumsyncset_webhook(self, ctx: commands.Context, enabled: bool, port: Optional[int] = None, host: Optional[str] = None) -> None:
        """Start or stop the GitHub webhook receiver (bot-wide)."""
        await self.config.webhook_enabled.set(enabled)
        if port is not None:
            await self.config.webhook_port.set(port)
        if host is not None:
            await self.config.webhook_host.set(host)
        if not enabled:
            await self._stop_webhook()
            await ctx.send("Webhook receiver stopped.")
            return
        await self._start_webhook()
        if self._webhook is None:
            await ctx.send("❌ Webhook receiver failed to start, check the logs.")
            return
        await ctx.send(
            f"✅ Listening on {self._webhook.host}:{self._webhook.port}. Point the repository webhook "
            f"(issues and issue comments, JSON) at `/github/{ctx.guild.id}`."
        )

    @forumsyncset.command(name="show")
    async def forumsyncset_show(self, ctx: commands.Context) -> None:
        """Show the current configuration and mirror state."""
        conf = await self.config.guild(ctx.guild).all()
        glob = await self.config.all()
        mirror = self._mirrors.get(ctx.guild.id)
        forum = ctx.guild.get_channel(conf["forum_channel"]) if conf["forum_channel"] else None
        lines: List[str] = [
            f"Repository: `{conf['github_owner']}/{conf['github_repo']}`" if conf["github_repo"] else "Repository: not set",
            f"Token: {'set' if conf['github_token'] else 'not set'}",
            f"Forum: {forum.mention if forum else 'not set'}",
            f"Discord → GitHub: {'on' if conf['discord_to_github_enabled'] else 'off'}",
            f"Archive debounce: {conf['debounce_seconds']:g}s",
            f"Polling: {'on' if conf['poll_enabled'] else 'off'} ({conf['poll_interval']}s)",
            f"Webhook: {'on' if glob['webhook_enabled'] else 'off'} ({glob['webhook_host']}:{glob['webhook_port']}/github/{ctx.guild.id})",
            f"Mirrored threads: {len(mirror.engine.store) if mirror else 'mirror not running'}",
        ]
        await ctx.send("\n".join(lines))

    @forumsyncset.command(name="resync")
    async def forumsyncset_resync(self, ctx: commands.Context) -> None:
        """Run a reconciliation pass against GitHub now."""
        mirror = self._mirrors.get(ctx.guild.id)
        if mirror is None:
            await self._restart_and_report(ctx)
            return
        async with ctx.typing():
            count = await self._reconcile(ctx.guild.id, mirror)
        if count is None:
            await ctx.send("❌ Reconciliation failed, check the logs.")
        else:
            await ctx.send(f"✅ Reconciled: {count} threads synchronized, {len(mirror.engine.store)} mirrored.")

    async def _restart_and_report(self, ctx: commands.Context) -> None:
        async with ctx.typing():
            mirror = await self._start_guild(ctx.guild)
        if mirror is None:
            await ctx.send("Mirror not running yet: token, repo and forum must all be set.")
        else:
            await ctx.send(f"✅ Mirror running: {len(mirror.engine.store)} threads mirrored.")
