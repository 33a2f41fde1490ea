"""
Bill arithmetic — taxes, tip and per-person shares.

Amounts are computed in ``Decimal`` at full precision and rounded half-up to
cents only when reported.  Tip is applied on each line after its taxes; a
fixed-amount tip is converted to the equivalent percentage of the pre-tax
subtotal first.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field

from receiptsplit.schemas import ReceiptItem
from receiptsplit.sync.state import BillState

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def _d(value) -> Decimal:
    return Decimal(str(value))


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class BillSummary(BaseModel):
    subtotal: Decimal
    taxes: dict[str, Decimal] = Field(default_factory=dict)
    total_tax: Decimal
    tip: Decimal
    grand_total: Decimal
    per_person: dict[str, Decimal] = Field(default_factory=dict)
    unassigned: Decimal


def subtotal(state: BillState) -> Decimal:
    return sum((_d(item.price) for item in state.items), Decimal("0"))


def tip_percentage(state: BillState) -> Decimal:
    tip = state.tip_config
    if tip.is_percentage:
        return _d(tip.value)
    base = subtotal(state)
    if base == 0:
        return Decimal("0")
    return _d(tip.value) / base * HUNDRED


def item_tax(state: BillState, item: ReceiptItem) -> Decimal:
    price = _d(item.price)
    total = Decimal("0")
    for tax in state.tax_rates:
        if item.applicable_taxes.get(tax.id):
            total += price * _d(tax.rate) / HUNDRED
    return total


def _item_total(state: BillState, item: ReceiptItem) -> Decimal:
    with_tax = _d(item.price) + item_tax(state, item)
    return with_tax + with_tax * tip_percentage(state) / HUNDRED


def item_total(state: BillState, item: ReceiptItem) -> Decimal:
    """Line price plus its taxes plus tip on both."""
    return to_cents(_item_total(state, item))


def item_total_per_person(state: BillState, item: ReceiptItem) -> Decimal:
    if not item.assigned_people:
        return Decimal("0.00")
    return to_cents(_item_total(state, item) / len(item.assigned_people))


def person_totals(state: BillState) -> dict[str, Decimal]:
    totals = {person: Decimal("0") for person in state.people}
    for item in state.items:
        if not item.assigned_people:
            continue
        share = _item_total(state, item) / len(item.assigned_people)
        for person in item.assigned_people:
            totals[person] = totals.get(person, Decimal("0")) + share
    return {person: to_cents(amount) for person, amount in totals.items()}


def summarize(state: BillState) -> BillSummary:
    base = subtotal(state)

    taxes: dict[str, Decimal] = {}
    for tax in state.tax_rates:
        amount = sum(
            (_d(item.price) * _d(tax.rate) / HUNDRED
             for item in state.items if item.applicable_taxes.get(tax.id)),
            Decimal("0"),
        )
        taxes[tax.name] = taxes.get(tax.name, Decimal("0")) + amount
    total_tax = sum(taxes.values(), Decimal("0"))

    tip = (base + total_tax) * tip_percentage(state) / HUNDRED
    unassigned = sum(
        (_item_total(state, item) for item in state.items if not item.assigned_people),
        Decimal("0"),
    )

    return BillSummary(
        subtotal=to_cents(base),
        taxes={name: to_cents(amount) for name, amount in taxes.items()},
        total_tax=to_cents(total_tax),
        tip=to_cents(tip),
        grand_total=to_cents(base + total_tax + tip),
        per_person=person_totals(state),
        unassigned=to_cents(unassigned),
    )
