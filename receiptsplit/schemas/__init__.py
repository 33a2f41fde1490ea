from receiptsplit.schemas.receipt import (  # noqa: F401
    DeleteResponse,
    Receipt,
    ReceiptCreate,
    ReceiptFields,
    ReceiptItem,
    ReceiptListResponse,
    ReceiptResponse,
    ReceiptUpdate,
    TaxRate,
    TipConfig,
    default_tax_rates,
    default_tip_config,
)
from receiptsplit.schemas.relay import (  # noqa: F401
    CONNECTED,
    PING,
    STATE_UPDATE,
    RelayEnvelope,
    StateUpdate,
    server_timestamp,
    timestamp_ms,
)
