"""
Minimal aiohttp receiver for GitHub webhook deliveries.

Point the repository webhook (issues + issue comments, JSON) at
``http://<host>:<port>/github/<guild id>``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

log = logging.getLogger("red.forum_mirror.webhook")

# (guild id, payload, X-GitHub-Event) -> False when the guild is not set up
DeliveryHandler = Callable[[int, Any, Optional[str]], Awaitable[bool]]


class WebhookServer:
    def __init__(self, handler: DeliveryHandler, host: str = "0.0.0.0", port: int = 3000) -> None:
        self.handler = handler
        self.host = host
        self.port = port
        self.app = self.build_app()
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.index)
        app.router.add_post("/github/{guild_id}", self.receive)
        return app

    async def index(self, request: web.Request) -> web.Response:
        return web.json_response({"msg": "github webhooks work"})

    async def receive(self, request: web.Request) -> web.Response:
        guild_id = request.match_info["guild_id"]
        if not guild_id.isdigit():
            return web.json_response({"msg": "unknown guild"}, status=404)
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            log.warning("Dropping non-JSON webhook delivery for guild %s", guild_id)
            return web.json_response({"msg": "invalid json"}, status=400)

        event = request.headers.get("X-GitHub-Event")
        log.debug("Webhook delivery for guild %s: event=%s action=%s", guild_id, event,
                  payload.get("action") if isinstance(payload, dict) else None)
        if not await self.handler(int(guild_id), payload, event):
            return web.json_response({"msg": "unknown guild"}, status=404)
        return web.json_response({"msg": "ok"})

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("Webhook receiver listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            log.info("Webhook receiver stopped")
