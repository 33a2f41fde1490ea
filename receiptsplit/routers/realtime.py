"""
Realtime relay endpoint.

WS /api/websocket?receiptId=<id>

Every frame a client sends is parsed as JSON, stamped with a server
timestamp and relayed to the other connections of the same receipt.
"""
from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from receiptsplit.config import settings
from receiptsplit.relay import RelayHub, is_open
from receiptsplit.schemas import CONNECTED, PING, server_timestamp

logger = logging.getLogger(__name__)
router = APIRouter()

MISSING_RECEIPT_ID = (1008, "Receipt ID is required")


async def keepalive(websocket: WebSocket, interval: float) -> None:
    """Send a ping frame every ``interval`` seconds while the socket is open."""
    while True:
        await asyncio.sleep(interval)
        if not is_open(websocket):
            return
        try:
            await websocket.send_json({"type": PING, "timestamp": server_timestamp()})
        except Exception as exc:
            logger.debug("Keep-alive stopped: %s", exc)
            return


async def relay_frame(hub: RelayHub, receipt_id: str, sender: WebSocket, raw: str) -> int:
    """Relay one inbound frame; malformed frames are logged and dropped."""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as exc:
        logger.error("Error processing WebSocket message for %s: %s", receipt_id, exc)
        return 0
    if not isinstance(message, dict):
        logger.error("Dropping non-object WebSocket message for %s", receipt_id)
        return 0

    return await hub.broadcast(
        receipt_id,
        sender,
        {**message, "timestamp": server_timestamp()},
    )


# ── WS /api/websocket ────────────────────────────────────────────────────
@router.websocket("/websocket")
async def relay_socket(websocket: WebSocket):
    hub: RelayHub = websocket.app.state.relay
    receipt_id = websocket.query_params.get("receiptId")

    await websocket.accept()
    if not receipt_id:
        logger.warning("WebSocket rejected: no receipt id")
        code, reason = MISSING_RECEIPT_ID
        await websocket.close(code=code, reason=reason)
        return

    logger.info("WebSocket connected for receipt %s", receipt_id)
    await hub.join(receipt_id, websocket)
    pinger = asyncio.create_task(keepalive(websocket, settings.RELAY_PING_INTERVAL))
    try:
        await websocket.send_json(
            {"type": CONNECTED, "receiptId": receipt_id, "timestamp": server_timestamp()}
        )
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None and frame.get("bytes") is not None:
                raw = frame["bytes"].decode("utf-8", errors="replace")
            await relay_frame(hub, receipt_id, websocket, raw)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        # Transport fault: local to this connection
        logger.error("WebSocket error for receipt %s: %s", receipt_id, exc, exc_info=True)
    finally:
        pinger.cancel()
        await hub.leave(receipt_id, websocket)
        logger.info("WebSocket disconnected for receipt %s", receipt_id)
