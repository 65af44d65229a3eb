# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
WebSocket mirror for scroll commands.

Secondary displays (a presenter monitor, a second browser window) connect
to /ws and receive every scroll command as JSON:
    {"type": "scroll", "offset": ..., "ratio": ..., "seq": ..., "ts": ...}
A newly connected display is sent the most recent command straight away.
"""

import asyncio
import contextlib
import json
import logging

from aiohttp import web

from .layout import ScrollCommand

logger = logging.getLogger(__name__)


def command_message(command: ScrollCommand) -> dict[str, object]:
    return {
        "type": "scroll",
        "offset": command.offset,
        "ratio": command.ratio,
        "seq": command.sequence,
        "ts": command.timestamp,
    }


class WebSocketDisplaySink:
    """ScrollSink that broadcasts commands to connected WebSocket clients."""

    def __init__(self, host: str = "127.0.0.1", port: int = 8765) -> None:
        self.host: str = host
        self.port: int = port
        self.websockets: set[web.WebSocketResponse] = set()
        self.last_message: dict[str, object] | None = None
        self.app: web.Application = web.Application()
        self.app.router.add_get('/ws', self._handle_websocket)
        self.runner: web.AppRunner | None = None
        self._pending: set[asyncio.Task[None]] = set()

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Register a display and keep the socket open until it goes away."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.websockets.add(ws)
        logger.info("Display connected. Total: %d", len(self.websockets))

        try:
            if self.last_message is not None:
                await ws.send_json(self.last_message)
            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    data = json.loads(msg.data)
                    if data.get("type") == "ping":
                        await ws.send_json({"type": "pong"})
                elif msg.type == web.WSMsgType.ERROR:
                    logger.warning("Display WebSocket error: %s", ws.exception())
        finally:
            self.websockets.discard(ws)
            logger.info("Display disconnected. Total: %d", len(self.websockets))

        return ws

    async def broadcast(self, message: dict[str, object]) -> None:
        """Send a message to all connected WebSocket clients."""
        self.last_message = message
        if not self.websockets:
            return

        dead: set[web.WebSocketResponse] = set()
        for ws in self.websockets:
            try:
                await ws.send_json(message)
            except (ConnectionError, ConnectionResetError, RuntimeError) as e:
                logger.warning("Dropping display after send error: %s", e)
                dead.add(ws)

        self.websockets -= dead

    def __call__(self, command: ScrollCommand) -> None:
        """Schedule a broadcast; must be called from within the event loop."""
        task: asyncio.Task[None] = asyncio.get_running_loop().create_task(
            self.broadcast(command_message(command)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def start(self) -> None:
        """Start serving /ws."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site: web.TCPSite = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info("Display mirror listening on ws://%s:%d/ws", self.host, self.port)

    async def stop(self) -> None:
        """Close all displays and stop serving."""
        for ws in list(self.websockets):
            with contextlib.suppress(Exception):
                await ws.close()
        self.websockets.clear()
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
