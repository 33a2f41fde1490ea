"""
Access policy for the receipts API.

Two independent gates:

* owner path — the caller's address must be on ``settings.ALLOWED_IPS``;
* share path — the access token must look like a UUID v4 before any lookup.

Both paths also get a fixed set of hardening headers on every response.
"""
from __future__ import annotations

import logging
import re
import uuid

from fastapi import Request

from receiptsplit.config import settings
from receiptsplit.errors import BadRequestError, ForbiddenError

logger = logging.getLogger(__name__)

# Checked in order; X-Forwarded-For may carry a chain, the first hop wins
PROXY_IP_HEADERS = ("fly-client-ip", "cf-connecting-ip", "x-real-ip")

ACCESS_TOKEN_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

SECURITY_HEADERS: dict[str, str] = {
    # Keep shared links out of search engines
    "X-Robots-Tag": "noindex, nofollow, noarchive, nosnippet",
    "Referrer-Policy": "no-referrer",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Cache-Control": "private, no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ---------------------------------------------------------------------------
# Owner path
# ---------------------------------------------------------------------------

def get_client_ip(request: Request) -> str:
    for header in PROXY_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def normalize_ip(ip: str) -> str:
    """Strip the IPv4‑mapped IPv6 prefix (``::ffff:127.0.0.1`` → ``127.0.0.1``)."""
    if ip.lower().startswith("::ffff:"):
        return ip[len("::ffff:"):]
    return ip


def is_ip_allowed(ip: str) -> bool:
    clean_ip = normalize_ip(ip)
    allowed = clean_ip in settings.ALLOWED_IPS
    logger.debug("IP %s allowed: %s", clean_ip, allowed)
    return allowed


def require_owner_ip(request: Request) -> str:
    """Dependency: reject callers outside the allowlist with 403."""
    client_ip = get_client_ip(request)
    if not is_ip_allowed(client_ip):
        logger.warning("Owner-path request from %s denied", client_ip)
        raise ForbiddenError()
    return client_ip


# ---------------------------------------------------------------------------
# Share path
# ---------------------------------------------------------------------------

def generate_access_token() -> str:
    return str(uuid.uuid4())


def is_valid_access_token(token: str) -> bool:
    return bool(ACCESS_TOKEN_RE.match(token or ""))


def require_valid_token(token: str) -> str:
    """Dependency: reject malformed tokens with 400 before touching storage."""
    if not is_valid_access_token(token):
        raise BadRequestError("Invalid access token")
    return token


def is_protected_path(path: str) -> bool:
    return path == "/api/receipts" or path.startswith("/api/receipts/")
