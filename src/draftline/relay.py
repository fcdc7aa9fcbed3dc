"""Websocket relay that assigns draft ids and routes packets between users."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Tuple

from aiohttp import WSMsgType, web

from . import identifiers
from .config import RelayConfig
from .drafts import Draft
from .hub import AlreadyConnected, Callback, Connection, ConnectionHub
from .packets import (
    Destination,
    DiscardDraft,
    Edit,
    EndDraft,
    NewDraft,
    ProtocolViolation,
    StartDraft,
    Timestamp,
    UnknownDestination,
    UserDestination,
    UserId,
    WebPacket,
    decode_frame,
    encode_frame,
    variant_name,
)

logger = logging.getLogger(__name__)


def _now_us() -> int:
    return int(time.time() * 1_000_000)


class Relay:
    """Routing core of the relay, independent from the websocket plumbing.

    Keeps the live draft of every ``(sender, destination)`` pair so that users
    connecting later are caught up and recipients learn about abandoned drafts.
    """

    def __init__(
        self,
        *,
        now_func: Callable[[], Timestamp] = _now_us,
        id_factory: Callable[[], bytes] = identifiers.new_identifier,
    ) -> None:
        self.hub = ConnectionHub()
        self._now = now_func
        self._new_id = id_factory
        self._drafts: Dict[Tuple[UserId, Destination], Draft] = {}

    def drafts_from(self, sender: UserId) -> Dict[Destination, Draft]:
        return {dest: draft for (owner, dest), draft in self._drafts.items() if owner == sender}

    def connect(self, user_id: UserId, callback: Callback) -> Connection:
        connection = self.hub.connect(user_id, callback)
        inbox = UserDestination(user_id)
        for (sender, destination), draft in self._drafts.items():
            if destination != inbox:
                continue
            logger.info("catching up %s on draft %s from %s", user_id, draft.id, sender)
            connection.deliver(WebPacket(NewDraft(id=draft.id), destination, sender, draft.start_time))
            if draft.content:
                edit = Edit(id=draft.id, content=draft.content)
                connection.deliver(WebPacket(edit, destination, sender, self._now()))
        return connection

    def disconnect(self, connection: Connection) -> None:
        self.hub.disconnect(connection)
        sender = connection.user_id
        now = self._now()
        for destination, draft in self.drafts_from(sender).items():
            del self._drafts[(sender, destination)]
            self._route(WebPacket(DiscardDraft(id=draft.id), destination, sender, now))

    def handle(self, sender: UserId, packet: WebPacket) -> None:
        """Stamp ``packet`` with its sender and the relay clock and route it."""

        destination = packet.destination
        if isinstance(destination, UnknownDestination):
            logger.warning(
                "dropping %s from %s: unknown destination %r", variant_name(packet.content), sender, destination.tag
            )
            return

        now = self._now()
        key = (sender, destination)
        payload = packet.content
        if isinstance(payload, StartDraft):
            draft_id = identifiers.encode(self._new_id())
            self._drafts[key] = Draft(id=draft_id, content="", start_time=now)
            self._route_with_echo(WebPacket(NewDraft(id=draft_id), destination, sender, now))
        elif isinstance(payload, EndDraft):
            draft = self._drafts.pop(key, None)
            if draft is None or draft.id != payload.id:
                logger.debug("EndDraft %s from %s matches no live draft", payload.id, sender)
            self._route_with_echo(packet.stamped(sender, now))
        elif isinstance(payload, Edit):
            draft = self._drafts.get(key)
            if draft is not None and draft.id == payload.id:
                self._drafts[key] = Draft(id=draft.id, content=payload.content, start_time=draft.start_time)
            self._route(packet.stamped(sender, now))
        else:
            self._route(packet.stamped(sender, now))

    def _route_with_echo(self, packet: WebPacket) -> None:
        self._route(packet)
        inbox = UserDestination(packet.sender)
        if packet.destination != inbox:
            self._route(packet.addressed_to(inbox))

    def _route(self, packet: WebPacket) -> None:
        recipient = packet.destination.user
        if not self.hub.deliver(recipient, packet):
            logger.debug("dropping %s for offline user %s", variant_name(packet.content), recipient)


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def create_app(config: RelayConfig | None = None, *, relay: Relay | None = None) -> web.Application:
    config = config or RelayConfig()
    app = web.Application()
    app["relay"] = relay or Relay()
    app["relay_config"] = config
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/updates/{user_id}", updates_handler)
    return app


async def updates_handler(request: web.Request) -> web.WebSocketResponse:
    relay: Relay = request.app["relay"]
    config: RelayConfig = request.app["relay_config"]
    user_id = request.match_info["user_id"]

    ws = web.WebSocketResponse(heartbeat=config.heartbeat_s, max_msg_size=config.max_msg_size)
    await ws.prepare(request)

    outbound: asyncio.Queue[WebPacket | None] = asyncio.Queue(maxsize=config.outbound_queue_size)
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=1011, message=message.encode("utf-8"))

    def enqueue(packet: WebPacket) -> None:
        try:
            outbound.put_nowait(packet)
        except asyncio.QueueFull:
            logger.warning("outbound queue full for %s", user_id)
            asyncio.create_task(close_with_error("backpressure"))

    async def writer() -> None:
        try:
            while True:
                packet = await outbound.get()
                if packet is None:
                    break
                await ws.send_str(encode_frame(packet))
        except asyncio.CancelledError:
            return
        except ConnectionResetError:
            logger.debug("connection for %s reset while writing", user_id)

    try:
        connection = relay.connect(user_id, enqueue)
    except AlreadyConnected:
        logger.warning("refusing second connection for %s", user_id)
        await ws.close(code=4000, message=b"already in use")
        return ws

    logger.info("%s connected", user_id)
    writer_task = asyncio.create_task(writer())
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    packet = decode_frame(msg.data)
                except ProtocolViolation as exc:
                    logger.warning("dropping frame from %s: %s", user_id, exc)
                    continue
                relay.handle(user_id, packet)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("connection for %s closed with error %s", user_id, ws.exception())
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        relay.disconnect(connection)
        logger.info("%s disconnected", user_id)
        try:
            outbound.put_nowait(None)
        except asyncio.QueueFull:
            writer_task.cancel()
        await asyncio.gather(writer_task, return_exceptions=True)

    return ws
