from receiptsplit.models.receipt import ReceiptModel  # noqa: F401
