"""
Shared receipt endpoints (token path).

GET /api/receipts/share/{token}   — read receipt by access token
PUT /api/receipts/share/{token}   — overwrite receipt fields by access token

The token is the only credential here; no address restriction applies.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from receiptsplit.errors import NotFoundError
from receiptsplit.schemas import ReceiptResponse, ReceiptUpdate
from receiptsplit.security import require_valid_token
from receiptsplit.store import ReceiptStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter()


# ── GET /api/receipts/share/{token} ──────────────────────────────────────
@router.get("/receipts/share/{token}", response_model=ReceiptResponse)
def get_shared_receipt(
    token: str = Depends(require_valid_token),
    store: ReceiptStore = Depends(get_store),
):
    receipt = store.get_by_token(token)
    if not receipt:
        raise NotFoundError()
    return ReceiptResponse(receipt=receipt)


# ── PUT /api/receipts/share/{token} ──────────────────────────────────────
@router.put("/receipts/share/{token}", response_model=ReceiptResponse)
def update_shared_receipt(
    req: ReceiptUpdate,
    token: str = Depends(require_valid_token),
    store: ReceiptStore = Depends(get_store),
):
    existing = store.get_by_token(token)
    if not existing:
        raise NotFoundError()

    receipt = store.update(existing.id, req)
    if not receipt:
        raise NotFoundError()
    logger.info("Updated shared receipt %s", existing.id)
    return ReceiptResponse(receipt=receipt)
