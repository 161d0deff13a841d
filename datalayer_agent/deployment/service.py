"""
Deployment actions: install, update and remove the instrumentation on a shop's
published theme.

Every action validates its input before the first network call. Layout writes
are sequential read-modify-write cycles (last writer wins) and are skipped
when the patched text equals what is already stored.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..config import Settings, settings as default_settings
from ..errors import ShopifyAPIError
from . import blocks
from .admin_client import ShopifyAdminClient
from .pixels import PixelManager
from .validation import validate_access_token, validate_gtm_id, validate_shop

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "analyticscontainer"
METAFIELD_KEY = "gtm_id"

ClientFactory = Callable[[str, str], ShopifyAdminClient]


class DeploymentService:
    """Operator actions against the Admin API."""

    def __init__(self, client_factory: Optional[ClientFactory] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.client_factory = client_factory or (
            lambda shop, token: ShopifyAdminClient(shop, token, api_version=self.settings.api_version)
        )

    def patch_params(self, gtm_id: Optional[str] = None) -> blocks.PatchParams:
        return blocks.PatchParams(
            gtm_id=gtm_id,
            event_prefix=self.settings.event_prefix,
            item_id_format=self.settings.item_id_format,
            item_id_scope=self.settings.item_id_scope,
            search_debounce_ms=self.settings.search_debounce_ms,
        )

    def _client(self, shop: str, access_token: str) -> ShopifyAdminClient:
        return self.client_factory(validate_shop(shop), validate_access_token(access_token))

    # =========================================================================
    # Asset helpers
    # =========================================================================

    @staticmethod
    def _read_optional(client: ShopifyAdminClient, theme_id: int, key: str) -> Optional[str]:
        try:
            return client.get_asset(theme_id, key)
        except ShopifyAPIError as e:
            if e.status == 404:
                return None
            raise

    def _write_if_changed(self, client: ShopifyAdminClient, theme_id: int, key: str,
                          current: Optional[str], updated: str) -> bool:
        if current == updated:
            logger.info(f"{key} unchanged on {client.shop}, skipping write")
            return False
        client.put_asset(theme_id, key, updated)
        return True

    def _install(self, client: ShopifyAdminClient, params: blocks.PatchParams) -> Dict[str, Any]:
        theme_id = client.get_main_theme_id()

        snippet = blocks.render_snippet(params)
        current_snippet = self._read_optional(client, theme_id, blocks.SNIPPET_KEY)
        snippet_written = self._write_if_changed(client, theme_id, blocks.SNIPPET_KEY, current_snippet, snippet)

        layout = client.get_asset(theme_id, blocks.THEME_LAYOUT_KEY)
        patched = blocks.patch(layout, params)
        layout_written = self._write_if_changed(client, theme_id, blocks.THEME_LAYOUT_KEY, layout, patched)

        return {
            "ok": True,
            "themeId": theme_id,
            "snippetUpdated": snippet_written,
            "layoutUpdated": layout_written,
        }

    # =========================================================================
    # Actions
    # =========================================================================

    def enable_tag_manager(self, shop: str, access_token: str, gtm_id: str) -> Dict[str, Any]:
        """
        Store the container id in the shop metafield and install the blocks.

        Args:
            shop: Shop domain
            access_token: Admin API token
            gtm_id: Tag manager container id

        Returns:
            Result dict for the operator
        """
        gtm_id = validate_gtm_id(gtm_id, required=True)
        client = self._client(shop, access_token)

        client.set_metafield(METAFIELD_NAMESPACE, METAFIELD_KEY, gtm_id)
        result = self._install(client, self.patch_params(gtm_id))
        result["gtmId"] = gtm_id
        logger.info(f"Tag manager {gtm_id} enabled on {client.shop}")
        return result

    def enable_datalayer(self, shop: str, access_token: str, gtm_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Install the head/body blocks and the tracker snippet.

        Without a container id the blocks read it from the shop metafield at
        render time.
        """
        gtm_id = validate_gtm_id(gtm_id, required=False)
        client = self._client(shop, access_token)
        result = self._install(client, self.patch_params(gtm_id))
        logger.info(f"DataLayer enabled on {client.shop}")
        return result

    def disable_datalayer(self, shop: str, access_token: str) -> Dict[str, Any]:
        """Strip every block and directive from the layout and delete the snippet."""
        client = self._client(shop, access_token)
        theme_id = client.get_main_theme_id()

        layout = client.get_asset(theme_id, blocks.THEME_LAYOUT_KEY)
        layout_written = self._write_if_changed(client, theme_id, blocks.THEME_LAYOUT_KEY, layout, blocks.strip(layout))

        snippet_deleted = True
        try:
            client.delete_asset(theme_id, blocks.SNIPPET_KEY)
        except ShopifyAPIError as e:
            if e.status != 404:
                raise
            snippet_deleted = False

        logger.info(f"DataLayer disabled on {client.shop}")
        return {"ok": True, "themeId": theme_id, "layoutUpdated": layout_written, "snippetDeleted": snippet_deleted}

    def enable_pixel(self, shop: str, access_token: str, gtm_id: Optional[str] = None) -> Dict[str, Any]:
        gtm_id = validate_gtm_id(gtm_id, required=False)
        client = self._client(shop, access_token)
        result = PixelManager(client).install(gtm_id=gtm_id, event_prefix=self.settings.event_prefix)
        return {"ok": True, **result}

    def pixel_source(self, gtm_id: Optional[str] = None) -> str:
        return blocks.render_pixel_source(self.patch_params(validate_gtm_id(gtm_id, required=False)))

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def granted_scopes(self, shop: str, access_token: str) -> List[str]:
        return self._client(shop, access_token).access_scopes()

    def list_themes(self, shop: str, access_token: str) -> List[Dict[str, Any]]:
        themes = self._client(shop, access_token).list_themes()
        return [{"id": theme.get("id"), "name": theme.get("name"), "role": theme.get("role")} for theme in themes]

    def uninstall(self, shop: str, access_token: str) -> None:
        """
        Best-effort cleanup after ``app/uninstalled``.

        The token may already be revoked, so failures are logged, not raised.
        """
        try:
            self.disable_datalayer(shop, access_token)
        except Exception as e:
            logger.warning(f"Theme cleanup after uninstall failed for {shop}: {e}")


deployment_service = DeploymentService()
