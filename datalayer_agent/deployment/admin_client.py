"""
Shopify Admin API client (REST theme assets + GraphQL).
"""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import requests

from ..config import settings
from ..errors import ShopifyAPIError

logger = logging.getLogger(__name__)

# Asset bodies above this many UTF-8 bytes go as a base64 attachment
MAX_INLINE_BYTES = 650 * 1024


def asset_payload(key: str, text: str) -> Dict[str, str]:
    """
    Build the ``asset`` object for a PUT, applying the size policy.

    Args:
        key: Asset key, e.g. ``layout/theme.liquid``
        text: Asset body

    Returns:
        ``{"key", "value"}`` or ``{"key", "attachment"}``
    """
    raw = text.encode("utf-8")
    if len(raw) > MAX_INLINE_BYTES:
        return {"key": key, "attachment": base64.b64encode(raw).decode("ascii")}
    return {"key": key, "value": text}


def asset_text(asset: Dict[str, Any]) -> str:
    """Decode an asset returned by the API, inline ``value`` or base64 ``attachment``."""
    if asset.get("value") is not None:
        return asset["value"]
    if asset.get("attachment"):
        return base64.b64decode(asset["attachment"]).decode("utf-8")
    return ""


class ShopifyAdminClient:
    """Admin API calls for one shop."""

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        """
        Initialize Admin API client.

        Args:
            shop: ``<name>.myshopify.com`` domain
            access_token: Admin API access token
            api_version: API version (defaults to SHOPIFY_API_VERSION)
            session: Optional requests session to reuse
            timeout: Per-request timeout in seconds
        """
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version or settings.api_version
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, url: str, **kwargs) -> Any:
        """
        Make an Admin API request.

        Raises:
            ShopifyAPIError: On transport errors or non-2xx status
        """
        logger.debug(f"{method} {url} ({self.shop})")
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Shopify request failed for {self.shop}: {e}", exc_info=True)
            raise ShopifyAPIError(f"Request failed: {e}") from e

        if not response.ok:
            logger.error(f"Shopify {response.status_code} for {self.shop} {method} {url}: {response.text[:500]}")
            raise ShopifyAPIError(
                f"Shopify {response.status_code} {response.text[:200]}",
                status=response.status_code,
                body=response.text,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    # =========================================================================
    # Themes and assets
    # =========================================================================

    def list_themes(self) -> List[Dict[str, Any]]:
        data = self._request("GET", f"{self.base_url}/themes.json")
        return data.get("themes") or []

    def get_main_theme_id(self) -> int:
        """The published theme (role ``main``), else the first theme."""
        themes = self.list_themes()
        main = next((theme for theme in themes if theme.get("role") == "main"), None) or (themes[0] if themes else None)
        if main is None:
            raise ShopifyAPIError(f"No theme found for {self.shop}")
        return main["id"]

    def get_asset(self, theme_id: int, key: str) -> str:
        data = self._request(
            "GET",
            f"{self.base_url}/themes/{theme_id}/assets.json",
            params={"asset[key]": key},
        )
        return asset_text(data.get("asset") or {})

    def put_asset(self, theme_id: int, key: str, text: str) -> Dict[str, Any]:
        asset = asset_payload(key, text)
        mode = "attachment" if "attachment" in asset else "inline"
        logger.info(f"Writing {key} to theme {theme_id} on {self.shop} ({mode}, {len(text)} chars)")
        return self._request(
            "PUT",
            f"{self.base_url}/themes/{theme_id}/assets.json",
            data=json.dumps({"asset": asset}),
        )

    def delete_asset(self, theme_id: int, key: str) -> None:
        self._request(
            "DELETE",
            f"{self.base_url}/themes/{theme_id}/assets.json",
            params={"asset[key]": key},
        )

    # =========================================================================
    # GraphQL
    # =========================================================================

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute an Admin GraphQL query.

        Args:
            query: GraphQL document
            variables: Query variables

        Returns:
            The ``data`` object

        Raises:
            ShopifyAPIError: On HTTP failure or top-level GraphQL errors
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        data = self._request("POST", f"{self.base_url}/graphql.json", data=json.dumps(payload))
        if data.get("errors"):
            logger.error(f"GraphQL returned errors for {self.shop}: {json.dumps(data['errors'], indent=2)}")
            raise ShopifyAPIError(f"GraphQL errors: {data['errors']}", body=data["errors"])
        return data.get("data") or {}

    def access_scopes(self) -> List[str]:
        data = self._request("GET", f"https://{self.shop}/admin/oauth/access_scopes.json")
        return [scope.get("handle") for scope in data.get("access_scopes") or [] if scope.get("handle")]

    def shop_gid(self) -> str:
        data = self.graphql("query { shop { id } }")
        return data["shop"]["id"]

    def set_metafield(self, namespace: str, key: str, value: str, field_type: str = "single_line_text_field") -> Dict[str, Any]:
        """
        Set a shop-owned metafield.

        Raises:
            ShopifyAPIError: If the mutation reports user errors
        """
        mutation = """
        mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
          metafieldsSet(metafields: $metafields) {
            metafields { namespace key value }
            userErrors { field message }
          }
        }
        """
        data = self.graphql(mutation, {
            "metafields": [{
                "ownerId": self.shop_gid(),
                "namespace": namespace,
                "key": key,
                "type": field_type,
                "value": value,
            }]
        })
        result = data.get("metafieldsSet") or {}
        if result.get("userErrors"):
            raise ShopifyAPIError(f"metafieldsSet failed: {result['userErrors']}", body=result["userErrors"])
        logger.info(f"Metafield {namespace}.{key} set on {self.shop}")
        return result
