"""
Realtime relay message envelopes.

The relay itself never interprets message content; these models are what the
sync client puts on the wire and reads back.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

CONNECTED = "connected"
STATE_UPDATE = "state_update"
PING = "ping"


def server_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def timestamp_ms(value: str) -> float:
    """ISO‑8601 timestamp → epoch milliseconds (naive values are UTC)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp() * 1000


class RelayEnvelope(BaseModel):
    """``{type, receiptId, ...fields, timestamp}``"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str
    receipt_id: Optional[str] = Field(default=None, alias="receiptId")
    timestamp: Optional[str] = None


class StateUpdate(RelayEnvelope):
    type: str = STATE_UPDATE
    changes: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = Field(default=None, alias="userId")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
