"""WebSocket fan-out of Redis ``wind/*`` messages to dashboard clients."""

import asyncio
import json
import time

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState

LIVE_PREFIX = "wind/live/"
SUBSCRIBE_PATTERN = "wind/*"


class ConnectionState:
    """Channel prefixes a client follows, and when each live channel last reached it."""

    __slots__ = ("websocket", "prefixes", "live_sent_at")

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.prefixes: set[str] = {"wind/"}
        self.live_sent_at: dict[str, float] = {}

    def follows(self, channel: str) -> bool:
        return any(channel.startswith(prefix) for prefix in self.prefixes)

    def live_due(self, channel: str, now: float, min_gap: float) -> bool:
        """Raw readings are rate limited per channel; summaries never are."""
        if now - self.live_sent_at.get(channel, 0.0) < min_gap:
            return False
        self.live_sent_at[channel] = now
        return True


class WebSocketManager:
    def __init__(self, throttle_ms: int = 100):
        self._clients: dict[WebSocket, ConnectionState] = {}
        self._min_live_gap = throttle_ms / 1000.0
        self.log = structlog.get_logger(component="ws-manager")

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._clients[websocket] = ConnectionState(websocket)
        self.log.info("ws_connected", total=len(self._clients))

    def disconnect(self, websocket: WebSocket):
        if self._clients.pop(websocket, None) is not None:
            self.log.info("ws_disconnected", total=len(self._clients))

    def update_filters(self, websocket: WebSocket, prefixes: list[str]):
        state = self._clients.get(websocket)
        if state is not None:
            state.prefixes = {str(p) for p in prefixes}

    def recipients(self, channel: str, now: float | None = None) -> list[WebSocket]:
        now = time.time() if now is None else now
        live = channel.startswith(LIVE_PREFIX)
        return [
            ws
            for ws, state in list(self._clients.items())
            if state.follows(channel)
            and (not live or state.live_due(channel, now, self._min_live_gap))
        ]

    async def broadcast(self, channel: str, data: dict):
        targets = self.recipients(channel)
        if not targets:
            return
        message = json.dumps({"channel": channel, "data": data})
        await asyncio.gather(*(self._send(ws, message) for ws in targets))

    async def _send(self, ws: WebSocket, message: str):
        try:
            if ws.client_state == WebSocketState.CONNECTED:
                await ws.send_text(message)
        except Exception as e:
            self.log.debug("ws_send_failed", error=str(e))
            self.disconnect(ws)

    @property
    def connection_count(self) -> int:
        return len(self._clients)


class PubSubListener:
    """Pattern-subscribes to ``wind/*`` and hands every message to the WebSocket manager."""

    def __init__(self, redis_client, ws_manager: WebSocketManager):
        self._redis = redis_client
        self._ws_manager = ws_manager
        self.log = structlog.get_logger(component="pubsub-listener")

    async def run(self):
        while True:
            pubsub = None
            try:
                pubsub = self._redis.get_client().pubsub(ignore_subscribe_messages=True)
                pubsub.psubscribe(SUBSCRIBE_PATTERN)
                self.log.info("pubsub_subscribed", pattern=SUBSCRIBE_PATTERN)
                await self._pump(pubsub)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.log.error("pubsub_error", error=str(e))
                await asyncio.sleep(2)  # Reconnect backoff
            finally:
                if pubsub is not None:
                    pubsub.close()

    async def _pump(self, pubsub):
        while True:
            # The sync client blocks, so poll it off the event loop
            message = await asyncio.to_thread(pubsub.get_message, timeout=1.0)
            if message is None or message["type"] != "pmessage":
                continue
            try:
                data = json.loads(message["data"])
            except json.JSONDecodeError:
                self.log.debug("pubsub_message_skipped", channel=message["channel"])
                continue
            await self._ws_manager.broadcast(message["channel"], data)
