"""
Error taxonomy shared by the API boundary, the relay and the sync client.

Every error that can reach an HTTP client derives from ``ReceiptError`` and
carries the status code and public message it is rendered with.  Internal
detail belongs in the log, never in ``message``.
"""
from __future__ import annotations

from typing import Optional


class ReceiptError(Exception):
    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class NotFoundError(ReceiptError):
    status_code = 404
    message = "Receipt not found"


class BadRequestError(ReceiptError):
    status_code = 400
    message = "Bad request"


class ForbiddenError(ReceiptError):
    status_code = 403
    message = "Access denied. Receipt access is restricted to authorized IP addresses."
    code = "IP_RESTRICTED"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class PersistenceError(ReceiptError):
    status_code = 500
    message = "Failed to access receipt storage"


class ChannelError(ReceiptError):
    """Realtime transport fault; local to one connection, logged only."""
    message = "Realtime channel error"


class ExtractionFailure(ReceiptError):
    """The OCR collaborator could not produce text; never fatal."""
    status_code = 422
    message = "Text extraction failed"
