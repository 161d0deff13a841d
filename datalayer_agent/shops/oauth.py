"""
Shopify OAuth: authorization URL, callback verification and token exchange.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import requests

from ..config import Settings, settings as default_settings
from ..deployment.validation import is_valid_shop_domain
from ..errors import OAuthError

logger = logging.getLogger(__name__)


def generate_nonce() -> str:
    return secrets.token_hex(16)


def build_authorization_url(shop: str, nonce: str, settings: Optional[Settings] = None) -> str:
    """
    Build the URL the merchant is redirected to for app approval.

    Args:
        shop: Shop domain
        nonce: OAuth state value stored for the callback
        settings: Settings override

    Returns:
        Authorization URL
    """
    settings = settings or default_settings
    params = {
        "client_id": settings.api_key or "",
        "scope": ",".join(settings.scopes),
        "redirect_uri": f"{settings.host.rstrip('/')}/auth/callback",
        "state": nonce,
    }
    return f"https://{shop}/admin/oauth/authorize?{urlencode(params)}"


def compute_query_hmac(query: Mapping[str, str], secret: str) -> str:
    """Hex HMAC-SHA256 over the sorted ``key=value`` pairs, ``hmac`` excluded."""
    message = "&".join(f"{key}={query[key]}" for key in sorted(query) if key != "hmac")
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_oauth_callback(query: Mapping[str, str], nonce: Optional[str], settings: Optional[Settings] = None) -> None:
    """
    Verify an OAuth callback query.

    Raises:
        OAuthError: Missing parameters, state mismatch, bad shop or bad HMAC
    """
    settings = settings or default_settings
    for key in ("code", "hmac", "shop", "state"):
        if not query.get(key):
            raise OAuthError("Missing required OAuth parameters")

    if nonce is None or not hmac.compare_digest(query["state"], nonce):
        raise OAuthError("Invalid OAuth state")

    if not is_valid_shop_domain(query["shop"]):
        raise OAuthError("Invalid shop domain")

    if not settings.api_secret:
        raise OAuthError("SHOPIFY_API_SECRET is not configured")

    expected = compute_query_hmac(query, settings.api_secret)
    if not hmac.compare_digest(expected, query["hmac"]):
        logger.warning(f"OAuth HMAC validation failed for {query['shop']}")
        raise OAuthError("HMAC validation failed")


def exchange_code_for_token(shop: str, code: str, settings: Optional[Settings] = None,
                            session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """
    Exchange an authorization code for an offline access token.

    Returns:
        ``{"access_token": ..., "scope": ...}``

    Raises:
        OAuthError: If the exchange fails or returns no token
    """
    settings = settings or default_settings
    http = session or requests
    try:
        response = http.post(
            f"https://{shop}/admin/oauth/access_token",
            json={"client_id": settings.api_key, "client_secret": settings.api_secret, "code": code},
            timeout=30,
        )
    except requests.exceptions.RequestException as e:
        logger.error(f"Token exchange request failed for {shop}: {e}", exc_info=True)
        raise OAuthError(f"Token exchange failed: {e}") from e

    if not response.ok:
        logger.error(f"Token exchange error for {shop}: {response.status_code} {response.text[:200]}")
        raise OAuthError(f"Token exchange failed: {response.text[:200]}")

    data = response.json()
    if not data.get("access_token"):
        raise OAuthError("No access token in response")

    logger.info(f"Token exchange successful for {shop}")
    return {"access_token": data["access_token"], "scope": data.get("scope", "")}


class NonceStore:
    """Pending OAuth states, one per shop, consumed on callback."""

    def __init__(self):
        self._nonces: Dict[str, str] = {}

    def issue(self, shop: str) -> str:
        nonce = generate_nonce()
        self._nonces[shop] = nonce
        return nonce

    def consume(self, shop: str) -> Optional[str]:
        return self._nonces.pop(shop, None)


nonce_store = NonceStore()
