"""
HTTP client for the receipts API.

Maps API error responses back onto the shared error taxonomy so callers
handle the same exceptions on both sides of the wire.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from receiptsplit.config import settings
from receiptsplit.errors import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    PersistenceError,
)
from receiptsplit.schemas import Receipt, ReceiptFields

logger = logging.getLogger(__name__)


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("error") if isinstance(body, dict) else None

    status = response.status_code
    if status == 404:
        raise NotFoundError(message)
    if status in (400, 422):
        raise BadRequestError(message)
    if status == 403:
        raise ForbiddenError(message, code=body.get("code") if isinstance(body, dict) else None)
    raise PersistenceError(message)


class ReceiptApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url or settings.API_BASE_URL)

    async def __aenter__(self) -> "ReceiptApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise PersistenceError("Network error talking to the receipts API") from exc
        _raise_for_status(response)
        return response.json()

    # ── owner path ──────────────────────────────────────────────────────
    async def create(self, fields: ReceiptFields) -> Receipt:
        body = await self._request("POST", "/api/receipts", json=fields.model_dump(mode="json"))
        return Receipt.model_validate(body["receipt"])

    async def fetch(self, receipt_id: str) -> Receipt:
        body = await self._request("GET", f"/api/receipts/{receipt_id}")
        return Receipt.model_validate(body["receipt"])

    async def save(self, receipt_id: str, fields: ReceiptFields) -> Receipt:
        body = await self._request(
            "PUT", f"/api/receipts/{receipt_id}", json=fields.model_dump(mode="json")
        )
        return Receipt.model_validate(body["receipt"])

    async def delete(self, receipt_id: str) -> bool:
        body = await self._request("DELETE", f"/api/receipts/{receipt_id}")
        return bool(body.get("success"))

    async def list(self, limit: Optional[int] = None) -> list[Receipt]:
        params = {"limit": limit} if limit else None
        body = await self._request("GET", "/api/receipts", params=params)
        return [Receipt.model_validate(r) for r in body["receipts"]]

    # ── share path ──────────────────────────────────────────────────────
    async def fetch_by_token(self, token: str) -> Receipt:
        body = await self._request("GET", f"/api/receipts/share/{token}")
        return Receipt.model_validate(body["receipt"])

    async def save_by_token(self, token: str, fields: ReceiptFields) -> Receipt:
        body = await self._request(
            "PUT", f"/api/receipts/share/{token}", json=fields.model_dump(mode="json")
        )
        return Receipt.model_validate(body["receipt"])
