"""
Receipt document schemas — the shared bill and its API envelopes.

All API handlers, the store and the sync client produce and consume these
Pydantic v2 models.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Document parts
# ---------------------------------------------------------------------------

class TaxRate(BaseModel):
    id: int = Field(..., ge=1, description="Unique within a receipt")
    name: str = ""
    rate: float = Field(0.0, ge=0, le=100, description="Percentage")


class TipConfig(BaseModel):
    """Percentage (0–100) when ``is_percentage`` else an absolute amount."""
    is_percentage: bool = True
    value: float = Field(0.0, ge=0)

    @model_validator(mode="after")
    def _percentage_at_most_100(self) -> "TipConfig":
        if self.is_percentage and self.value > 100:
            raise ValueError("Tip percentage must be between 0 and 100")
        return self


class ReceiptItem(BaseModel):
    """One receipt line. ``price`` is already the line amount."""
    name: str = ""
    price: float = Field(0.0, ge=0)
    quantity: int = Field(1, ge=1, description="Display only")
    applicable_taxes: dict[int, bool] = Field(default_factory=dict)
    assigned_people: list[str] = Field(default_factory=list)


def default_tax_rates() -> list[TaxRate]:
    return [
        TaxRate(id=1, name="GST", rate=5.0),
        TaxRate(id=2, name="PLT", rate=10.0),
    ]


def default_tip_config() -> TipConfig:
    return TipConfig(is_percentage=True, value=20.0)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ReceiptFields(BaseModel):
    """The mutable field set of a receipt.

    Updates overwrite every one of these fields; a field left out is stored
    as its empty value, so callers send the complete set.
    """
    name: Optional[str] = None
    image_url: Optional[str] = None
    image_type: Optional[str] = None
    items: Optional[list[ReceiptItem]] = None
    people: Optional[list[str]] = None
    tax_rates: Optional[list[TaxRate]] = None
    tip_config: Optional[TipConfig] = None


class ReceiptCreate(ReceiptFields):
    pass


class ReceiptUpdate(ReceiptFields):
    pass


# ---------------------------------------------------------------------------
# Stored document + response envelopes
# ---------------------------------------------------------------------------

class Receipt(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    access_token: str
    name: str = ""
    image_url: Optional[str] = None
    image_type: Optional[str] = None
    items: list[ReceiptItem] = Field(default_factory=list)
    people: list[str] = Field(default_factory=list)
    tax_rates: list[TaxRate] = Field(default_factory=list)
    tip_config: TipConfig = Field(default_factory=TipConfig)
    created_at: datetime
    updated_at: datetime


class ReceiptResponse(BaseModel):
    receipt: Receipt


class ReceiptListResponse(BaseModel):
    receipts: list[Receipt]


class DeleteResponse(BaseModel):
    success: bool = True
