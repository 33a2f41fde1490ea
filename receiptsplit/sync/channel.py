"""
Realtime relay channel (client side).

    disconnected → connecting → connected → disconnected
                   connecting → disconnected        (handshake failed)

A channel is open only once the relay's ``connected`` acknowledgement has
arrived.  Each open assigns a new session id that tags every outgoing
update.  ``run`` keeps reconnecting until ``close``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from receiptsplit.config import settings
from receiptsplit.errors import ChannelError
from receiptsplit.schemas import CONNECTED, StateUpdate

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def relay_url_for(base_url: str) -> str:
    """``http(s)://host`` → ``ws(s)://host/api/websocket``"""
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/api/websocket"


def new_session_id() -> str:
    return "user-" + uuid.uuid4().hex[:9]


class RelayChannel:
    def __init__(
        self,
        url: str,
        receipt_id: str,
        *,
        on_message: Optional[Callable[[dict], Any]] = None,
        on_state: Optional[Callable[[ChannelState], Any]] = None,
        reconnect_delay: Optional[float] = None,
        connect: Callable = websockets.connect,
    ):
        self.url = url
        self.receipt_id = receipt_id
        self.on_message = on_message
        self.on_state = on_state
        self.reconnect_delay = (
            settings.RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        )
        self.state = ChannelState.DISCONNECTED
        self.session_id: Optional[str] = None
        self._connect = connect
        self._ws = None
        self._closing = False

    @property
    def endpoint(self) -> str:
        return f"{self.url}?receiptId={quote(self.receipt_id, safe='')}"

    @property
    def is_connected(self) -> bool:
        return self.state is ChannelState.CONNECTED

    def _set_state(self, state: ChannelState) -> None:
        if state is self.state:
            return
        self.state = state
        logger.info("Relay channel for %s: %s", self.receipt_id, state.value)
        if self.on_state is not None:
            self.on_state(state)

    async def _abort(self, ws, reason: str, exc: Optional[BaseException] = None) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException):
            pass
        self._set_state(ChannelState.DISCONNECTED)
        raise ChannelError(reason) from exc

    async def open(self) -> dict:
        """Connect and wait for the relay's acknowledgement."""
        self._set_state(ChannelState.CONNECTING)
        try:
            ws = await self._connect(self.endpoint)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            logger.warning("Relay handshake failed for %s: %s", self.receipt_id, exc)
            self._set_state(ChannelState.DISCONNECTED)
            raise ChannelError("Failed to connect to real-time service") from exc

        try:
            ack = json.loads(await ws.recv())
        except ConnectionClosed as exc:
            await self._abort(ws, "Relay closed the connection during handshake", exc)
        except ValueError as exc:
            await self._abort(ws, "Malformed relay acknowledgement", exc)
        if not isinstance(ack, dict) or ack.get("type") != CONNECTED:
            await self._abort(ws, "Unexpected relay acknowledgement")

        self._ws = ws
        self.session_id = new_session_id()
        self._set_state(ChannelState.CONNECTED)
        return ack

    async def send_update(self, changes: dict) -> bool:
        """Broadcast ``changes``; returns False when not connected."""
        if not self.is_connected or self._ws is None:
            return False
        message = StateUpdate(
            receipt_id=self.receipt_id,
            changes=changes,
            user_id=self.session_id,
        ).to_wire()
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            logger.warning("Relay send failed for %s: %s", self.receipt_id, exc)
            self._set_state(ChannelState.DISCONNECTED)
            return False
        return True

    def _dispatch(self, raw) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw)
        except ValueError as exc:
            logger.error("Error parsing relay message: %s", exc)
            return
        if isinstance(message, dict) and self.on_message is not None:
            self.on_message(message)

    async def listen(self) -> None:
        """Deliver frames until the connection drops."""
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed as exc:
            logger.info("Relay connection for %s closed: %s", self.receipt_id, exc)
        finally:
            self._ws = None
            self._set_state(ChannelState.DISCONNECTED)

    async def run(self) -> None:
        while not self._closing:
            try:
                await self.open()
            except ChannelError as exc:
                logger.warning("%s (receipt %s)", exc, self.receipt_id)
            else:
                await self.listen()
            if self._closing:
                break
            await asyncio.sleep(self.reconnect_delay)

    async def close(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException):
                pass
        self._set_state(ChannelState.DISCONNECTED)
