"""
Receipt sync client.

Keeps a local copy of one shared receipt in step with the relay and the
receipts API: local edit → relay broadcast + debounced save; remote edit →
last-writer-wins merge.
"""
from receiptsplit.sync.api import ReceiptApiClient
from receiptsplit.sync.channel import ChannelState, RelayChannel
from receiptsplit.sync.session import ReceiptSession
from receiptsplit.sync.state import BillState

__all__ = [
    "BillState",
    "ChannelState",
    "ReceiptApiClient",
    "ReceiptSession",
    "RelayChannel",
]
