"""Route-dispatching websocket client with length-prefixed JSON frames."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import websockets

logger = logging.getLogger(__name__)

QUEUE_SIZE = 100
RECONNECT_DELAY = 3.0

RouteCallback = Callable[[int, str], Awaitable[None]]
RouteBigPayloadCallback = Callable[[int, str, str], Awaitable[None]]

_HEX_PREFIX = re.compile(r"\+?[0-9A-Fa-f]+")
_I16_MIN, _I16_MAX = -(2**15), 2**15 - 1


@dataclass(frozen=True)
class WsResponse:
    """A message from the server: status code, payload and route."""

    code: int
    payload: str
    route: str


def encode_frame(uid: str, route: str, payload: str, big_payload: str = "") -> str:
    """Build a request frame: hex byte length (at least 4 digits), JSON, big payload."""
    body = json.dumps(
        {"t": uid, "r": route, "p": payload}, separators=(",", ":"), ensure_ascii=False
    )
    return f"{len(body.encode('utf-8')):04x}{body}{big_payload}"


def decode_frame(text: str) -> tuple[WsResponse, str] | None:
    """Split a response frame into its parsed header and big payload, or None."""
    if len(text.encode("utf-8")) < 4:
        return None
    prefix = text[:4]
    if not _HEX_PREFIX.fullmatch(prefix):
        return None
    json_len = int(prefix, 16)
    data = text.encode("utf-8")
    json_end = 4 + json_len
    if len(data) < json_end:
        return None
    try:
        obj = json.loads(data[4:json_end].decode("utf-8"))
        big_payload = data[json_end:].decode("utf-8")
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(obj, dict):
        return None
    code, payload, route = obj.get("c"), obj.get("p"), obj.get("r")
    if isinstance(code, bool) or not isinstance(code, int):
        return None
    if not _I16_MIN <= code <= _I16_MAX:
        return None
    if not isinstance(payload, str) or not isinstance(route, str):
        return None
    return WsResponse(code, payload, route), big_payload


class WsClient:
    """Keeps a reconnecting websocket open and dispatches frames by route."""

    def __init__(self, uid: str, url: str, reconnect_delay: float = RECONNECT_DELAY) -> None:
        self.uid = uid
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._lock = threading.Lock()
        self._routes: dict[str, RouteCallback] = {}
        self._routes_big_payload: dict[str, RouteBigPayloadCallback] = {}
        self._queue: asyncio.Queue[str] | None = None

    def route_ws(self, api: str, callback: RouteCallback) -> None:
        """Register a handler for frames on ``api`` without a big payload."""
        with self._lock:
            self._routes[api] = callback

    def route_ws_big_payload(self, api: str, callback: RouteBigPayloadCallback) -> None:
        """Register a handler for frames on ``api`` that carry a big payload."""
        with self._lock:
            self._routes_big_payload[api] = callback

    async def dispatch(self, text: str) -> bool:
        """Decode one incoming frame and run its handler; True if one ran."""
        decoded = decode_frame(text)
        if decoded is None:
            return False
        response, big_payload = decoded
        with self._lock:
            if big_payload:
                big_callback = self._routes_big_payload.get(response.route)
                callback = None
            else:
                callback = self._routes.get(response.route)
                big_callback = None
        if big_callback is not None:
            await big_callback(response.code, response.payload, big_payload)
            return True
        if callback is not None:
            await callback(response.code, response.payload)
            return True
        return False

    def start_ws(self) -> asyncio.Task[None]:
        """Start the connect/reconnect loop on the running event loop."""
        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        return loop.create_task(self._run(self._queue))

    async def send(self, route: str, payload: str) -> None:
        """Queue a frame without a big payload."""
        await self.send_big_payload(route, payload, "")

    async def send_big_payload(self, route: str, payload: str, big_payload: str) -> None:
        """Queue a frame; it is dropped if the connection loop was never started."""
        message = encode_frame(self.uid, route, payload, big_payload)
        if self._queue is not None:
            await self._queue.put(message)

    async def _run(self, outgoing: asyncio.Queue[str]) -> None:
        while True:
            url = self.url
            try:
                async with websockets.connect(url) as ws:
                    logger.info("WebSocket connected to %s", url)
                    await self._session(ws, outgoing)
                logger.error("WebSocket disconnected, will attempt to reconnect...")
            except Exception as exc:
                logger.error("Failed to connect to %s: %s", url, exc)
            await asyncio.sleep(self.reconnect_delay)

    async def _session(self, ws, outgoing: asyncio.Queue[str]) -> None:
        reader = asyncio.create_task(self._read(ws))
        writer = asyncio.create_task(self._write(ws, outgoing))
        try:
            await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, writer):
                task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)

    async def _read(self, ws) -> None:
        try:
            async for message in ws:
                if not isinstance(message, str):
                    continue
                try:
                    await self.dispatch(message)
                except Exception:
                    logger.exception("route handler failed")
        except websockets.exceptions.ConnectionClosed:
            pass

    async def _write(self, ws, outgoing: asyncio.Queue[str]) -> None:
        while True:
            message = await outgoing.get()
            try:
                await ws.send(message)
            except Exception as exc:
                logger.error("Send error: %s", exc)
                try:
                    outgoing.put_nowait(message)
                except asyncio.QueueFull:
                    pass
                return