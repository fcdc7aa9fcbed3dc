"""aiohttp websocket session feeding a :class:`ConversationStore`."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

import aiohttp
from aiohttp import WSMsgType

from .config import ClientConfig
from .packets import Destination, ProtocolViolation, UserId, WebPacket, encode_frame
from .store import ConversationStore

logger = logging.getLogger(__name__)


class NotConnected(RuntimeError):
    pass


class ChatClient:
    """One user's connection to the relay.

    Inbound frames are applied to the store in arrival order; the packets a
    transition produces are sent before the next frame is read. When the
    connection closes the store is reset and ``on_closed`` is called.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        store: ConversationStore | None = None,
        session: aiohttp.ClientSession | None = None,
        on_closed: Callable[[Optional[int]], None] | None = None,
    ) -> None:
        if not config.user_id:
            raise ValueError("user_id required")
        self.config = config
        self.store = store or ConversationStore(config.user_id)
        self._session = session
        self._owns_session = session is None
        self._on_closed = on_closed
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self.close_code: Optional[int] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.config.updates_url(), heartbeat=self.config.heartbeat_s)
        self._reader = asyncio.create_task(self._read())
        logger.info("connected to %s as %s", self.config.base_url, self.config.user_id)

    async def _read(self) -> None:
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        outbound = self.store.receive_frame(msg.data)
                    except ProtocolViolation as exc:
                        logger.warning("dropping packet: %s", exc)
                        continue
                    try:
                        await self._send(outbound)
                    except (NotConnected, ConnectionResetError):
                        logger.warning("connection closed before %d packet(s) could be sent", len(outbound))
                        break
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("connection error: %s", ws.exception())
                    break
        finally:
            self.close_code = ws.close_code
            self.store.disconnect()
            logger.info("session ended (close code %s)", self.close_code)
            if self._on_closed is not None:
                self._on_closed(self.close_code)

    async def _send(self, packets: Iterable[WebPacket]) -> None:
        for packet in packets:
            if not self.connected:
                raise NotConnected("connection is closed")
            await self._ws.send_str(encode_frame(packet))

    async def type_text(self, content: str, recipient: UserId | Destination) -> None:
        await self._send(self.store.type_text(content, recipient))

    async def send_draft(self) -> None:
        await self._send(self.store.send_draft(expect_echo=self.config.expect_echo))

    async def send_message(self, content: str, recipient: UserId | Destination) -> None:
        await self._send(self.store.send_message(content, recipient))

    async def wait_closed(self) -> None:
        if self._reader is not None:
            await self._reader

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        await self.wait_closed()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "ChatClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
