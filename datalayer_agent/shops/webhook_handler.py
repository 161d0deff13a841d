"""
Shopify webhook handling: signature verification, app uninstall and the
mandatory GDPR topics.
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from ..config import settings
from ..deployment.service import DeploymentService, deployment_service
from .repository import ShopRepository, shop_repository

logger = logging.getLogger(__name__)


def verify_shopify_webhook(data: bytes, hmac_header: str, secret: str) -> bool:
    """
    Verify that webhook request is from Shopify.

    Args:
        data: Raw request body
        hmac_header: X-Shopify-Hmac-SHA256 header value
        secret: App API secret

    Returns:
        True if verification succeeds, False otherwise
    """
    if not secret or not hmac_header:
        return False

    digest = hmac.new(secret.encode("utf-8"), data, hashlib.sha256).digest()
    # Shopify sends the HMAC as base64
    computed_hmac = base64.b64encode(digest).decode()

    is_valid = hmac.compare_digest(computed_hmac, hmac_header)
    if not is_valid:
        logger.warning(f"Webhook signature mismatch (body length: {len(data)} bytes)")
    return is_valid


async def read_verified_webhook(request: Request) -> Dict[str, Any]:
    """
    Read and verify a webhook request.

    Raises:
        HTTPException: 401 on a missing or invalid signature, 500 when no
            secret is configured

    Returns:
        Decoded JSON payload (empty dict when the body is not JSON)
    """
    body = await request.body()
    hmac_header = request.headers.get("x-shopify-hmac-sha256")
    topic = request.headers.get("x-shopify-topic")

    if not settings.api_secret:
        logger.error("SHOPIFY_API_SECRET not configured - webhook verification required!")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    if not hmac_header:
        logger.warning(f"No HMAC signature in {topic} webhook request")
        raise HTTPException(status_code=401, detail="Missing webhook signature")

    if not verify_shopify_webhook(body, hmac_header, settings.api_secret):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        return json.loads(body or b"{}")
    except json.JSONDecodeError:
        return {}


async def handle_app_uninstalled_webhook(
    request: Request,
    repository: Optional[ShopRepository] = None,
    service: Optional[DeploymentService] = None,
) -> Dict[str, Any]:
    """
    Handle ``app/uninstalled``: strip the theme while the token may still work,
    then forget the shop.

    Args:
        request: FastAPI request object

    Returns:
        Response dict
    """
    repository = repository or shop_repository
    service = service or deployment_service

    await read_verified_webhook(request)
    shop = request.headers.get("x-shopify-shop-domain")
    if not shop:
        logger.warning("app/uninstalled webhook without shop domain header")
        return {"status": "ignored"}

    record = repository.get_shop(shop)
    if record is not None:
        # Admin API calls are blocking
        await asyncio.to_thread(service.uninstall, shop, record.access_token)
    repository.delete_shop(shop)

    logger.info(f"App uninstalled from {shop}")
    return {"status": "success", "shop": shop}


async def handle_gdpr_webhook(request: Request) -> Dict[str, Any]:
    """No customer data is stored; acknowledge after verification."""
    await read_verified_webhook(request)
    topic = request.headers.get("x-shopify-topic", "unknown")
    logger.info(f"GDPR webhook {topic} from {request.headers.get('x-shopify-shop-domain')}")
    return {"status": "success"}
