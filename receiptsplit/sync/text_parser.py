"""
Rule‑based receipt text parser.

Turns OCR output into bill items.  Lines shaped ``[qty] name price`` become
items; ``TAX GST n%`` / ``TAX PLT n%`` lines update the matching rate.  GST
applies to every parsed item, PLT only to alcohol.
"""
from __future__ import annotations

import re

from pydantic import BaseModel, Field

from receiptsplit.schemas import ReceiptItem, TaxRate

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

ITEM_LINE = re.compile(r"^(\d+)?\s*(.+?)\s+(\d+\.?\d*)$")

TAX_RATE_LINES: dict[str, re.Pattern[str]] = {
    "GST": re.compile(r"TAX\s+GST\s+(\d+)%", re.IGNORECASE),
    "PLT": re.compile(r"TAX\s+PLT\s+(\d+)%", re.IGNORECASE),
}

# Register / menu-code prefixes printed before item names
NAME_PREFIX = re.compile(r"^(WED|DB|POP|SPCL|BLACKEND|LETTUC|TRUFFLE|SUSHI)\s*", re.IGNORECASE)
NAME_FILLER = re.compile(r"\s*~~\s*")

NOT_AN_ITEM = ("subtotal", "total", "tax")

ALCOHOL = re.compile(r"amaretto|beer|wine|liquor", re.IGNORECASE)


class ParsedReceipt(BaseModel):
    items: list[ReceiptItem] = Field(default_factory=list)
    tax_rates: list[TaxRate] = Field(default_factory=list)


def _clean_name(name: str) -> str:
    name = NAME_PREFIX.sub("", name.strip())
    return NAME_FILLER.sub(" ", name, count=1).strip()


def _default_taxes(name: str, tax_rates: list[TaxRate]) -> dict[int, bool]:
    is_alcohol = bool(ALCOHOL.search(name))
    taxes: dict[int, bool] = {}
    for tax in tax_rates:
        if tax.name == "GST":
            taxes[tax.id] = True
        elif tax.name == "PLT":
            taxes[tax.id] = is_alcohol
        else:
            taxes[tax.id] = False
    return taxes


def parse_tax_rates(lines: list[str], tax_rates: list[TaxRate]) -> list[TaxRate]:
    updated = [tax.model_copy() for tax in tax_rates]
    for line in lines:
        for tax_name, pattern in TAX_RATE_LINES.items():
            m = pattern.search(line)
            if not m:
                continue
            for i, tax in enumerate(updated):
                if tax.name == tax_name:
                    updated[i] = tax.model_copy(update={"rate": float(m.group(1))})
    return updated


def parse_item_line(line: str, tax_rates: list[TaxRate]) -> ReceiptItem | None:
    m = ITEM_LINE.match(line)
    if not m:
        return None

    quantity = int(m.group(1)) if m.group(1) else 1
    name = _clean_name(m.group(2))
    price = float(m.group(3))

    if not name or price <= 0 or quantity < 1:
        return None
    if any(word in name.lower() for word in NOT_AN_ITEM):
        return None

    return ReceiptItem(
        name=name,
        price=price,
        quantity=quantity,
        applicable_taxes=_default_taxes(name, tax_rates),
        assigned_people=[],
    )


def parse_receipt_text(text: str, tax_rates: list[TaxRate]) -> ParsedReceipt:
    """Parse recognised receipt text against the bill's current tax rates."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    updated_rates = parse_tax_rates(lines, tax_rates)

    items: list[ReceiptItem] = []
    for line in lines:
        item = parse_item_line(line, updated_rates)
        if item is not None:
            items.append(item)

    return ParsedReceipt(items=items, tax_rates=updated_rates)
