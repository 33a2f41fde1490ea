"""
Receipt API endpoints (owner path).

GET    /api/receipts        — list receipts, most recently updated first
POST   /api/receipts        — create receipt                    [IP allowlist]
GET    /api/receipts/{id}   — get one receipt                   [IP allowlist]
PUT    /api/receipts/{id}   — overwrite receipt fields          [IP allowlist]
DELETE /api/receipts/{id}   — delete receipt                    [IP allowlist]
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from receiptsplit.config import settings
from receiptsplit.errors import BadRequestError, NotFoundError
from receiptsplit.schemas import (
    DeleteResponse,
    ReceiptCreate,
    ReceiptListResponse,
    ReceiptResponse,
    ReceiptUpdate,
    default_tax_rates,
    default_tip_config,
)
from receiptsplit.security import require_owner_ip
from receiptsplit.store import ReceiptStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter()


# ── GET /api/receipts ────────────────────────────────────────────────────
@router.get("/receipts", response_model=ReceiptListResponse)
def list_receipts(
    limit: int = Query(default=settings.RECEIPT_LIST_LIMIT, ge=1, le=500),
    store: ReceiptStore = Depends(get_store),
):
    receipts = store.list(limit=limit)
    logger.info("Found %d receipts in database", len(receipts))
    return ReceiptListResponse(receipts=receipts)


# ── POST /api/receipts ───────────────────────────────────────────────────
@router.post(
    "/receipts",
    response_model=ReceiptResponse,
    status_code=201,
    dependencies=[Depends(require_owner_ip)],
)
def create_receipt(req: ReceiptCreate, store: ReceiptStore = Depends(get_store)):
    if not req.name:
        raise BadRequestError("Receipt name is required")

    fields = ReceiptCreate(
        name=req.name,
        image_url=req.image_url,
        image_type=req.image_type,
        items=req.items or [],
        people=req.people or [],
        tax_rates=req.tax_rates if req.tax_rates is not None else default_tax_rates(),
        tip_config=req.tip_config or default_tip_config(),
    )
    receipt = store.create(fields)
    return ReceiptResponse(receipt=receipt)


# ── GET /api/receipts/{receipt_id} ───────────────────────────────────────
@router.get(
    "/receipts/{receipt_id}",
    response_model=ReceiptResponse,
    dependencies=[Depends(require_owner_ip)],
)
def get_receipt(receipt_id: str, store: ReceiptStore = Depends(get_store)):
    logger.info("Fetching receipt: %s", receipt_id)
    receipt = store.get_by_id(receipt_id)
    if not receipt:
        logger.warning("Receipt not found: %s", receipt_id)
        raise NotFoundError()
    return ReceiptResponse(receipt=receipt)


# ── PUT /api/receipts/{receipt_id} ───────────────────────────────────────
@router.put(
    "/receipts/{receipt_id}",
    response_model=ReceiptResponse,
    dependencies=[Depends(require_owner_ip)],
)
def update_receipt(
    receipt_id: str,
    req: ReceiptUpdate,
    store: ReceiptStore = Depends(get_store),
):
    receipt = store.update(receipt_id, req)
    if not receipt:
        raise NotFoundError()
    return ReceiptResponse(receipt=receipt)


# ── DELETE /api/receipts/{receipt_id} ────────────────────────────────────
@router.delete(
    "/receipts/{receipt_id}",
    response_model=DeleteResponse,
    dependencies=[Depends(require_owner_ip)],
)
def delete_receipt(receipt_id: str, store: ReceiptStore = Depends(get_store)):
    if not store.delete(receipt_id):
        raise NotFoundError()
    return DeleteResponse(success=True)
