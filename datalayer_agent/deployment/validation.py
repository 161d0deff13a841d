"""
Operator input validation. Everything here runs before any network call.
"""

import re
from typing import Optional

from ..errors import ValidationError

SHOP_DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]*\.myshopify\.com$")
GTM_ID_PATTERN = re.compile(r"^GTM-[A-Za-z0-9_-]+$")
ACCESS_TOKEN_PREFIX = "shpat_"


def is_valid_shop_domain(shop: Optional[str]) -> bool:
    return bool(shop) and SHOP_DOMAIN_PATTERN.match(shop) is not None


def validate_shop(shop: Optional[str]) -> str:
    shop = (shop or "").strip().lower()
    if not shop:
        raise ValidationError("Missing shop")
    if not shop.endswith(".myshopify.com") or not is_valid_shop_domain(shop):
        raise ValidationError(f"Invalid shop domain: {shop} (expected <name>.myshopify.com)")
    return shop


def validate_access_token(token: Optional[str]) -> str:
    token = (token or "").strip()
    if not token:
        raise ValidationError("Missing accessToken")
    if not token.startswith(ACCESS_TOKEN_PREFIX):
        raise ValidationError(f"Invalid accessToken (expected {ACCESS_TOKEN_PREFIX} prefix)")
    return token


def validate_gtm_id(gtm_id: Optional[str], required: bool = True) -> Optional[str]:
    gtm_id = (gtm_id or "").strip()
    if not gtm_id:
        if required:
            raise ValidationError("Missing gtmId")
        return None
    if not GTM_ID_PATTERN.match(gtm_id):
        raise ValidationError(f"Invalid gtmId: {gtm_id} (expected GTM-XXXXXXX)")
    return gtm_id
