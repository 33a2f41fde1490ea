"""
Client state synchronizer for one receipt.

Local edits replace the state wholesale, advance ``last_applied`` to now,
go out over the relay when connected and (re)arm the autosave timer.  Remote
edits are merged only when their server timestamp is strictly newer than
``last_applied``: last writer wins, whole fields, no field-level merge.

Autosave failures are reported through ``save_error`` and are not retried;
the next edit arms a new attempt.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from receiptsplit.config import settings
from receiptsplit.errors import BadRequestError, ExtractionFailure, ReceiptError
from receiptsplit.schemas import STATE_UPDATE, Receipt, StateUpdate, timestamp_ms
from receiptsplit.sync import calculator, edits
from receiptsplit.sync.api import ReceiptApiClient
from receiptsplit.sync.channel import ChannelState, RelayChannel, relay_url_for
from receiptsplit.sync.state import BillState
from receiptsplit.sync.text_parser import parse_receipt_text

logger = logging.getLogger(__name__)

OWNER = "owner"
SHARE = "share"
EPHEMERAL = "ephemeral"


def now_ms() -> float:
    return time.time() * 1000


class ReceiptSession:
    def __init__(
        self,
        api: ReceiptApiClient,
        *,
        receipt_id: Optional[str] = None,
        access_token: Optional[str] = None,
        relay_url: Optional[str] = None,
        autosave_delay: Optional[float] = None,
        channel_factory: Callable[..., RelayChannel] = RelayChannel,
    ):
        self.api = api
        self.receipt_id = receipt_id
        self.access_token = access_token
        if access_token:
            self.mode = SHARE
        elif receipt_id:
            self.mode = OWNER
        else:
            self.mode = EPHEMERAL

        self.state = BillState()
        self.last_applied: float = 0.0

        self.is_loading = False
        self.error: Optional[str] = None
        self.save_error: Optional[str] = None
        self.extraction_error: Optional[str] = None

        self.autosave_delay = (
            settings.AUTOSAVE_DELAY if autosave_delay is None else autosave_delay
        )
        self.relay_url = relay_url or relay_url_for(settings.API_BASE_URL)
        self.channel: Optional[RelayChannel] = None
        self._channel_factory = channel_factory
        self._channel_task: Optional[asyncio.Task] = None
        self._pending_save: Optional[asyncio.TimerHandle] = None
        self._save_tasks: set[asyncio.Task] = set()

    # ── status ──────────────────────────────────────────────────────────
    @property
    def persisted(self) -> bool:
        return self.mode != EPHEMERAL

    @property
    def is_connected(self) -> bool:
        return self.channel is not None and self.channel.is_connected

    @property
    def has_pending_save(self) -> bool:
        return self._pending_save is not None

    def share_url(self, origin: str) -> Optional[str]:
        if not self.access_token:
            return None
        return f"{origin.rstrip('/')}/share/{self.access_token}"

    def summary(self) -> calculator.BillSummary:
        return calculator.summarize(self.state)

    # ── lifecycle ───────────────────────────────────────────────────────
    async def load(self) -> Receipt:
        """Fetch the document once and replace local state with it."""
        self.is_loading = True
        self.error = None
        try:
            if self.mode == SHARE:
                receipt = await self.api.fetch_by_token(self.access_token)
            elif self.mode == OWNER:
                receipt = await self.api.fetch(self.receipt_id)
            else:
                raise BadRequestError("No receipt id or access token to load")
        except ReceiptError as exc:
            self.error = exc.message
            logger.error("Loading receipt failed: %s", exc)
            raise
        finally:
            self.is_loading = False

        self.receipt_id = receipt.id
        self.access_token = receipt.access_token
        self.state = BillState.from_receipt(receipt)
        return receipt

    async def connect(self) -> None:
        """Start the relay channel; it reconnects on its own after drops."""
        if not self.receipt_id:
            raise BadRequestError("Cannot join the relay without a receipt id")
        if self._channel_task is not None:
            return
        self.channel = self._channel_factory(
            self.relay_url,
            self.receipt_id,
            on_message=self.handle_message,
            on_state=self._on_channel_state,
        )
        self._channel_task = asyncio.create_task(self.channel.run())

    async def start(self) -> Receipt:
        receipt = await self.load()
        await self.connect()
        return receipt

    async def close(self) -> None:
        # Like leaving the page: a pending autosave is dropped
        if self._pending_save is not None:
            self._pending_save.cancel()
            self._pending_save = None
        if self.channel is not None:
            await self.channel.close()
        if self._channel_task is not None:
            self._channel_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._channel_task
            self._channel_task = None

    def _on_channel_state(self, state: ChannelState) -> None:
        logger.info("Receipt %s realtime %s", self.receipt_id, state.value)

    # ── local edits ─────────────────────────────────────────────────────
    async def update_state(self, changes: Optional[dict[str, Any]]) -> bool:
        if not changes:
            return False
        self.state = self.state.merged(changes)
        self.last_applied = now_ms()

        if self.is_connected:
            dumped = self.state.model_dump(mode="json")
            await self.channel.send_update({k: dumped[k] for k in changes if k in dumped})

        if self.persisted:
            self._schedule_save()
        return True

    def _schedule_save(self) -> None:
        if self._pending_save is not None:
            self._pending_save.cancel()
        loop = asyncio.get_running_loop()
        self._pending_save = loop.call_later(self.autosave_delay, self._fire_autosave)

    def _fire_autosave(self) -> None:
        self._pending_save = None
        task = asyncio.ensure_future(self._autosave())
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    async def _autosave(self) -> None:
        try:
            await self._persist()
        except ReceiptError as exc:
            self.save_error = exc.message
            logger.error("Auto-save failed for receipt %s: %s", self.receipt_id, exc)
            return
        self.save_error = None
        logger.info("Receipt %s auto-saved", self.receipt_id)

    async def _persist(self) -> Receipt:
        payload = self.state.to_payload()
        if self.mode == SHARE:
            return await self.api.save_by_token(self.access_token, payload)
        return await self.api.save(self.receipt_id, payload)

    async def save(self) -> Receipt:
        """Save now; an ephemeral session creates its receipt here."""
        self.save_error = None
        try:
            if self.persisted:
                receipt = await self._persist()
            else:
                if not self.state.name:
                    self.state = self.state.merged(
                        {"name": f"Receipt {datetime.now():%Y-%m-%d %H:%M}"}
                    )
                receipt = await self.api.create(self.state.to_payload())
                self.receipt_id = receipt.id
                self.access_token = receipt.access_token
                self.mode = OWNER
        except ReceiptError as exc:
            self.save_error = exc.message
            raise
        return receipt

    # ── remote edits ────────────────────────────────────────────────────
    def handle_message(self, message: dict) -> bool:
        """Apply a relayed update if it is newer than the last applied one."""
        if message.get("type") != STATE_UPDATE or message.get("receiptId") != self.receipt_id:
            return False
        try:
            update = StateUpdate.model_validate(message)
            stamp = timestamp_ms(update.timestamp) if update.timestamp else None
        except (ValidationError, ValueError) as exc:
            logger.error("Dropping malformed state update: %s", exc)
            return False
        if stamp is None or stamp <= self.last_applied:
            return False

        try:
            new_state = self.state.merged(update.changes)
        except ValidationError as exc:
            logger.error("Dropping invalid state update from %s: %s", update.user_id, exc)
            return False
        self.state = new_state
        self.last_applied = stamp
        return True

    # ── OCR import ──────────────────────────────────────────────────────
    async def import_from_ocr(
        self,
        recognize: Callable[[Any, str], Awaitable[str]],
        source: Any = None,
        language: str = "eng",
    ) -> int:
        """Run the external OCR routine and append the items it found.

        A failed extraction leaves the bill as it was; items can still be
        entered by hand.
        """
        self.extraction_error = None
        try:
            text = await recognize(source, language)
        except ExtractionFailure as exc:
            self.extraction_error = exc.message
            logger.warning("OCR failed for receipt %s: %s", self.receipt_id, exc)
            return 0

        parsed = parse_receipt_text(text or "", self.state.tax_rates)
        await self.update_state(edits.import_items(self.state, parsed.items, parsed.tax_rates))
        logger.info("OCR imported %d items", len(parsed.items))
        return len(parsed.items)

    # ── edit operations ─────────────────────────────────────────────────
    async def add_person(self, name: str) -> bool:
        return await self.update_state(edits.add_person(self.state, name))

    async def remove_person(self, name: str) -> bool:
        return await self.update_state(edits.remove_person(self.state, name))

    async def add_tax_rate(self) -> bool:
        return await self.update_state(edits.add_tax_rate(self.state))

    async def remove_tax_rate(self, tax_id: int) -> bool:
        return await self.update_state(edits.remove_tax_rate(self.state, tax_id))

    async def update_tax_rate(self, tax_id: int, field: str, value: Any) -> bool:
        return await self.update_state(edits.update_tax_rate(self.state, tax_id, field, value))

    async def update_tip_config(self, is_percentage: bool, value: float) -> bool:
        return await self.update_state(edits.update_tip_config(self.state, is_percentage, value))

    async def add_item(self, name: str = "New Item", price: float = 0.0, quantity: int = 1) -> bool:
        return await self.update_state(edits.add_item(self.state, name, price, quantity))

    async def remove_item(self, index: int) -> bool:
        return await self.update_state(edits.remove_item(self.state, index))

    async def update_item(self, index: int, field: str, value: Any) -> bool:
        return await self.update_state(edits.update_item(self.state, index, field, value))

    async def set_item_tax(self, index: int, tax_id: int, checked: bool) -> bool:
        return await self.update_state(edits.set_item_tax(self.state, index, tax_id, checked))

    async def toggle_person_for_item(self, index: int, person: str, checked: bool) -> bool:
        return await self.update_state(
            edits.toggle_person_for_item(self.state, index, person, checked)
        )
