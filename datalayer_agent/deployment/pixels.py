"""
Web pixel installation: create, or update when the app's pixel already exists.
"""

import json
import logging
from typing import Any, Dict, Optional

from ..errors import PixelInstallError, ShopifyAPIError
from .admin_client import ShopifyAdminClient

logger = logging.getLogger(__name__)

REQUIRED_SCOPE = "write_pixels"

CREATE_MUTATION = """
mutation webPixelCreate($webPixel: WebPixelInput!) {
  webPixelCreate(webPixel: $webPixel) {
    userErrors { code field message }
    webPixel { id settings }
  }
}
"""

UPDATE_MUTATION = """
mutation webPixelUpdate($id: ID!, $webPixel: WebPixelInput!) {
  webPixelUpdate(id: $id, webPixel: $webPixel) {
    userErrors { code field message }
    webPixel { id settings }
  }
}
"""

EXISTING_QUERY = """
query { webPixel { id settings } }
"""


class PixelManager:
    """Installs the app's web pixel for one shop."""

    def __init__(self, client: ShopifyAdminClient):
        self.client = client

    def has_pixel_scope(self) -> bool:
        scopes = self.client.access_scopes()
        logger.debug(f"Granted scopes for {self.client.shop}: {', '.join(scopes)}")
        return REQUIRED_SCOPE in scopes

    def install(self, gtm_id: Optional[str] = None, event_prefix: str = "") -> Dict[str, Any]:
        """
        Create the web pixel, falling back to an update when it is taken.

        Args:
            gtm_id: Container id passed to the pixel settings
            event_prefix: Event name prefix passed to the pixel settings

        Returns:
            ``{"status": "created"|"updated", "id": ...}``

        Raises:
            PixelInstallError: Missing scope or rejected mutation
        """
        if not self.has_pixel_scope():
            raise PixelInstallError(
                f"{REQUIRED_SCOPE} scope not granted for {self.client.shop}; reinstall the app "
                "or add the script from /api/pixel-source as a custom pixel"
            )

        web_pixel = {"settings": json.dumps({"accountID": gtm_id or "", "eventPrefix": event_prefix})}

        try:
            data = self.client.graphql(CREATE_MUTATION, {"webPixel": web_pixel})
        except ShopifyAPIError as e:
            raise PixelInstallError(f"webPixelCreate failed: {e}") from e

        result = data.get("webPixelCreate") or {}
        errors = result.get("userErrors") or []
        if not errors:
            pixel_id = (result.get("webPixel") or {}).get("id")
            logger.info(f"Web pixel {pixel_id} created on {self.client.shop}")
            return {"status": "created", "id": pixel_id}

        if not any(error.get("code") == "TAKEN" for error in errors):
            raise PixelInstallError(f"webPixelCreate rejected: {errors}")

        return self._update(web_pixel)

    def _update(self, web_pixel: Dict[str, Any]) -> Dict[str, Any]:
        try:
            existing = self.client.graphql(EXISTING_QUERY).get("webPixel") or {}
            if not existing.get("id"):
                raise PixelInstallError("Pixel reported as taken but no existing pixel was found")

            data = self.client.graphql(UPDATE_MUTATION, {"id": existing["id"], "webPixel": web_pixel})
        except ShopifyAPIError as e:
            raise PixelInstallError(f"webPixelUpdate failed: {e}") from e

        result = data.get("webPixelUpdate") or {}
        if result.get("userErrors"):
            raise PixelInstallError(f"webPixelUpdate rejected: {result['userErrors']}")

        logger.info(f"Web pixel {existing['id']} updated on {self.client.shop}")
        return {"status": "updated", "id": existing["id"]}
