"""
Client-side bill state.

A ``BillState`` is treated as immutable: every edit produces a new instance
through ``merged``.  ``next_tax_id`` is kept above every configured tax id,
whatever path the tax list arrived by.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from receiptsplit.schemas import (
    Receipt,
    ReceiptItem,
    ReceiptUpdate,
    TaxRate,
    TipConfig,
    default_tax_rates,
    default_tip_config,
)


def next_tax_id_for(tax_rates: list[TaxRate]) -> int:
    return max((tax.id for tax in tax_rates), default=0) + 1


class BillState(BaseModel):
    name: str = ""
    image_url: Optional[str] = None
    image_type: Optional[str] = None
    items: list[ReceiptItem] = Field(default_factory=list)
    people: list[str] = Field(default_factory=list)
    tax_rates: list[TaxRate] = Field(default_factory=default_tax_rates)
    next_tax_id: int = 3
    tip_config: TipConfig = Field(default_factory=default_tip_config)

    @model_validator(mode="after")
    def _bump_next_tax_id(self) -> "BillState":
        floor = next_tax_id_for(self.tax_rates)
        if self.next_tax_id < floor:
            self.next_tax_id = floor
        return self

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> "BillState":
        return cls(
            name=receipt.name,
            image_url=receipt.image_url,
            image_type=receipt.image_type,
            items=receipt.items,
            people=receipt.people,
            tax_rates=receipt.tax_rates,
            next_tax_id=next_tax_id_for(receipt.tax_rates),
            tip_config=receipt.tip_config,
        )

    def merged(self, changes: dict[str, Any]) -> "BillState":
        """New state with the top-level fields in ``changes`` replaced."""
        known = {k: v for k, v in changes.items() if k in type(self).model_fields}
        return type(self).model_validate({**self.model_dump(), **known})

    def to_payload(self) -> ReceiptUpdate:
        """The complete mutable field set, as an ``update`` expects it."""
        return ReceiptUpdate(
            name=self.name,
            image_url=self.image_url,
            image_type=self.image_type,
            items=self.items,
            people=self.people,
            tax_rates=self.tax_rates,
            tip_config=self.tip_config,
        )
