"""
Bill edit operations.

Each operation reads a ``BillState`` and returns the top-level fields it
changes (``None`` when the edit is a no-op).  Cross-field references are
kept consistent here:

* removing a tax rate drops its key from every item's ``applicable_taxes``;
* removing a person drops them from every item's ``assigned_people``;
* only known people can be assigned, and never twice.
"""
from __future__ import annotations

from typing import Any, Optional

from receiptsplit.schemas import ReceiptItem, TaxRate, TipConfig
from receiptsplit.sync.state import BillState

Changes = Optional[dict[str, Any]]


def _item_at(state: BillState, index: int) -> ReceiptItem:
    if not 0 <= index < len(state.items):
        raise IndexError(f"No item at index {index}")
    return state.items[index]


def _replace_item(state: BillState, index: int, **updates) -> list[ReceiptItem]:
    _item_at(state, index)
    return [
        item.model_copy(update=updates) if i == index else item
        for i, item in enumerate(state.items)
    ]


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------

def add_person(state: BillState, name: str) -> Changes:
    name = (name or "").strip()
    if not name or name in state.people:
        return None
    return {"people": [*state.people, name]}


def remove_person(state: BillState, name: str) -> Changes:
    if name not in state.people:
        return None
    return {
        "people": [p for p in state.people if p != name],
        "items": [
            item.model_copy(
                update={"assigned_people": [p for p in item.assigned_people if p != name]}
            )
            for item in state.items
        ],
    }


def toggle_person_for_item(state: BillState, index: int, person: str, checked: bool) -> Changes:
    assigned = _item_at(state, index).assigned_people
    if checked:
        if person not in state.people or person in assigned:
            return None
        new_assigned = [*assigned, person]
    else:
        if person not in assigned:
            return None
        new_assigned = [p for p in assigned if p != person]
    return {"items": _replace_item(state, index, assigned_people=new_assigned)}


# ---------------------------------------------------------------------------
# Taxes and tip
# ---------------------------------------------------------------------------

def add_tax_rate(state: BillState) -> Changes:
    tax = TaxRate(id=state.next_tax_id, name=f"Tax {len(state.tax_rates) + 1}", rate=0.0)
    return {
        "tax_rates": [*state.tax_rates, tax],
        "next_tax_id": state.next_tax_id + 1,
        "items": [
            item.model_copy(update={"applicable_taxes": {**item.applicable_taxes, tax.id: False}})
            for item in state.items
        ],
    }


def remove_tax_rate(state: BillState, tax_id: int) -> Changes:
    if all(tax.id != tax_id for tax in state.tax_rates):
        return None
    return {
        "tax_rates": [tax for tax in state.tax_rates if tax.id != tax_id],
        "items": [
            item.model_copy(
                update={
                    "applicable_taxes": {
                        k: v for k, v in item.applicable_taxes.items() if k != tax_id
                    }
                }
            )
            for item in state.items
        ],
    }


def update_tax_rate(state: BillState, tax_id: int, field: str, value: Any) -> Changes:
    if field not in ("name", "rate"):
        raise ValueError(f"Tax rate field {field!r} is not editable")
    if all(tax.id != tax_id for tax in state.tax_rates):
        return None
    return {
        "tax_rates": [
            TaxRate.model_validate({**tax.model_dump(), field: value}) if tax.id == tax_id else tax
            for tax in state.tax_rates
        ]
    }


def update_tip_config(state: BillState, is_percentage: bool, value: float) -> Changes:
    return {"tip_config": TipConfig(is_percentage=is_percentage, value=value)}


def set_item_tax(state: BillState, index: int, tax_id: int, checked: bool) -> Changes:
    if all(tax.id != tax_id for tax in state.tax_rates):
        return None
    taxes = {**_item_at(state, index).applicable_taxes, tax_id: checked}
    return {"items": _replace_item(state, index, applicable_taxes=taxes)}


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

def add_item(state: BillState, name: str = "New Item", price: float = 0.0, quantity: int = 1) -> Changes:
    item = ReceiptItem(
        name=name,
        price=price,
        quantity=quantity,
        applicable_taxes={tax.id: False for tax in state.tax_rates},
        assigned_people=[],
    )
    return {"items": [*state.items, item]}


def remove_item(state: BillState, index: int) -> Changes:
    _item_at(state, index)
    return {"items": [item for i, item in enumerate(state.items) if i != index]}


def update_item(state: BillState, index: int, field: str, value: Any) -> Changes:
    if field not in ("name", "price", "quantity"):
        raise ValueError(f"Item field {field!r} is not editable here")
    item = _item_at(state, index)
    updated = ReceiptItem.model_validate({**item.model_dump(), field: value})
    return {"items": [updated if i == index else it for i, it in enumerate(state.items)]}


def import_items(state: BillState, items: list[ReceiptItem], tax_rates: Optional[list[TaxRate]] = None) -> Changes:
    """Append parsed items; optionally replace the tax list they refer to."""
    if not items and tax_rates is None:
        return None
    changes: dict[str, Any] = {"items": [*state.items, *items]}
    if tax_rates is not None:
        changes["tax_rates"] = tax_rates
    return changes
