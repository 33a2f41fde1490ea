"""
Receipt persistence store.

Whole-document CRUD over the ``receipts`` table.  Updates are full
overwrites: every mutable field is replaced, omitted ones with their empty
value.  All SQLAlchemy failures surface as ``PersistenceError``.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from receiptsplit.database import Base, get_db
from receiptsplit.errors import PersistenceError
from receiptsplit.models.receipt import ReceiptModel, utcnow
from receiptsplit.schemas import Receipt, ReceiptFields, TipConfig
from receiptsplit.security import generate_access_token

logger = logging.getLogger(__name__)


def ensure_schema(engine) -> None:
    """Create tables and indexes; safe to call on every start."""
    import receiptsplit.models  # noqa: F401  — register models
    Base.metadata.create_all(bind=engine)


def _columns(fields: ReceiptFields) -> dict:
    tip_config = fields.tip_config or TipConfig(is_percentage=True, value=0.0)
    return {
        "name": fields.name or "",
        "image_url": fields.image_url or None,
        "image_type": fields.image_type or None,
        "items": [item.model_dump(mode="json") for item in fields.items or []],
        "people": list(fields.people or []),
        "tax_rates": [tax.model_dump(mode="json") for tax in fields.tax_rates or []],
        "tip_config": tip_config.model_dump(mode="json"),
    }


class ReceiptStore:
    def __init__(self, db: Session):
        self.db = db

    # ── writes ──────────────────────────────────────────────────────────
    def create(self, fields: ReceiptFields) -> Receipt:
        now = utcnow()
        record = ReceiptModel(
            id=str(uuid.uuid4()),
            access_token=generate_access_token(),
            created_at=now,
            updated_at=now,
            **_columns(fields),
        )
        self.db.add(record)
        self._commit("create")
        logger.info("Stored receipt %s", record.id)
        return Receipt.model_validate(record)

    def update(self, receipt_id: str, fields: ReceiptFields) -> Optional[Receipt]:
        record = self._first(ReceiptModel.id == receipt_id)
        if record is None:
            return None
        for column, value in _columns(fields).items():
            setattr(record, column, value)
        record.updated_at = utcnow()
        self._commit("update")
        logger.info("Updated receipt %s", receipt_id)
        return Receipt.model_validate(record)

    def delete(self, receipt_id: str) -> bool:
        record = self._first(ReceiptModel.id == receipt_id)
        if record is None:
            return False
        self.db.delete(record)
        self._commit("delete")
        logger.info("Deleted receipt %s", receipt_id)
        return True

    # ── reads ───────────────────────────────────────────────────────────
    def get_by_id(self, receipt_id: str) -> Optional[Receipt]:
        record = self._first(ReceiptModel.id == receipt_id)
        return Receipt.model_validate(record) if record else None

    def get_by_token(self, access_token: str) -> Optional[Receipt]:
        record = self._first(ReceiptModel.access_token == access_token)
        return Receipt.model_validate(record) if record else None

    def list(self, limit: int = 50) -> list[Receipt]:
        try:
            rows = (
                self.db.query(ReceiptModel)
                .order_by(ReceiptModel.updated_at.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            logger.error("Listing receipts failed: %s", exc, exc_info=True)
            raise PersistenceError() from exc
        return [Receipt.model_validate(r) for r in rows]

    # ── helpers ─────────────────────────────────────────────────────────
    def _first(self, criterion) -> Optional[ReceiptModel]:
        try:
            return self.db.query(ReceiptModel).filter(criterion).first()
        except SQLAlchemyError as exc:
            logger.error("Receipt lookup failed: %s", exc, exc_info=True)
            raise PersistenceError() from exc

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Receipt %s failed: %s", operation, exc, exc_info=True)
            raise PersistenceError() from exc


def get_store(db: Session = Depends(get_db)) -> ReceiptStore:
    """Receipt store dependency"""
    return ReceiptStore(db)
