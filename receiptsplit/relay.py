"""
Realtime relay hub.

Groups open WebSocket connections by receipt id and fans each message out to
every other member of the sender's group.  The hub never interprets message
content.  All group mutation and iteration goes through one ``asyncio.Lock``;
sends happen on a snapshot taken under the lock.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


def is_open(connection: Any) -> bool:
    return (
        connection.client_state == WebSocketState.CONNECTED
        and connection.application_state == WebSocketState.CONNECTED
    )


class RelayHub:
    def __init__(self) -> None:
        self._groups: dict[str, set[Any]] = {}
        self._lock = asyncio.Lock()

    async def join(self, receipt_id: str, connection: Any) -> None:
        async with self._lock:
            self._groups.setdefault(receipt_id, set()).add(connection)
            size = len(self._groups[receipt_id])
        logger.info("Connection joined receipt %s (%d open)", receipt_id, size)

    async def leave(self, receipt_id: str, connection: Any) -> None:
        async with self._lock:
            group = self._groups.get(receipt_id)
            if group is None:
                return
            group.discard(connection)
            if not group:
                del self._groups[receipt_id]
            size = len(group)
        logger.info("Connection left receipt %s (%d open)", receipt_id, size)

    async def broadcast(self, receipt_id: str, sender: Any, message: dict) -> int:
        """Send ``message`` to every open peer of ``sender``; returns the count."""
        async with self._lock:
            peers = [c for c in self._groups.get(receipt_id, ()) if c is not sender]

        payload = json.dumps(message)
        delivered = 0
        for peer in peers:
            if not is_open(peer):
                continue
            try:
                await peer.send_text(payload)
            except Exception as exc:  # peer's own handler runs its cleanup
                logger.warning("Relay send failed for receipt %s: %s", receipt_id, exc)
                continue
            delivered += 1
        return delivered

    async def group_size(self, receipt_id: str) -> int:
        async with self._lock:
            return len(self._groups.get(receipt_id, ()))

    @property
    def group_count(self) -> int:
        return len(self._groups)
