"""
Storefront AJAX API client used for the tracker's own follow-up calls.

Every request carries the internal-request marker so the network interceptor
never classifies it.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

import aiohttp

from .config import INTERNAL_REQUEST_HEADER

logger = logging.getLogger(__name__)

PRODUCT_PATH_PATTERN = re.compile(r"(?:/collections/[^/]+)?(/products/[^/?#.]+)")


class StorefrontError(Exception):
    """A storefront follow-up call failed."""
    pass


def canonical_product_path(url: str) -> Optional[str]:
    """
    Reduce any product link to ``/products/<handle>``.

    Collection prefixes, query strings, fragments and ``.js``/``.json``
    suffixes are dropped.

    Args:
        url: Absolute or relative product URL

    Returns:
        Canonical product path, or None if the URL is not a product link
    """
    if not url:
        return None
    path = urlsplit(url).path
    match = PRODUCT_PATH_PATTERN.search(path)
    return match.group(1) if match else None


class StorefrontClient:
    """
    Thin async client for ``/cart.js``, ``/products/<handle>.js`` and
    ``/search/suggest.json``.
    """

    def __init__(self, base_url: str, session: aiohttp.ClientSession):
        """
        Initialize storefront client.

        Args:
            base_url: Storefront origin, e.g. ``https://shop.example.com``
            session: The page's HTTP session
        """
        self.base_url = base_url.rstrip("/") + "/"
        self.session = session

    def url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document with the internal marker set.

        Raises:
            StorefrontError: On transport errors or non-2xx status
        """
        headers = {INTERNAL_REQUEST_HEADER: "1", "Accept": "application/json"}
        try:
            async with self.session.get(self.url(path), params=params, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise StorefrontError(f"Storefront {response.status} for {path}: {body[:200]}")
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise StorefrontError(f"HTTP client error for {path}: {e}") from e

    async def get_cart(self) -> Dict[str, Any]:
        return await self._get_json("/cart.js")

    async def get_product(self, product_url: str) -> Dict[str, Any]:
        """
        Fetch the product JSON behind any product link.

        Args:
            product_url: Product page URL (collection-scoped URLs accepted)

        Returns:
            Product JSON document
        """
        path = canonical_product_path(product_url)
        if not path:
            raise StorefrontError(f"Not a product URL: {product_url}")
        return await self._get_json(f"{path}.js")

    async def search_suggest(self, term: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Query predictive search for products.

        Args:
            term: Search term
            limit: Max suggestions

        Returns:
            Suggested product summaries (each with ``handle`` and ``url``)
        """
        data = await self._get_json(
            "/search/suggest.json",
            params={
                "q": term,
                "resources[type]": "product",
                "resources[limit]": str(limit),
            },
        )
        products = (((data or {}).get("resources") or {}).get("results") or {}).get("products") or []
        logger.debug(f"Search suggest '{term}' returned {len(products)} products")
        return products
