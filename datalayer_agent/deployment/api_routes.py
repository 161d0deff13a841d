"""
FastAPI routes for the operator actions (install, update, remove, pixel).
"""

import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from ..config import settings
from ..errors import (
    DatalayerError,
    PixelInstallError,
    ShopifyAPIError,
    TemplatePatchError,
    ValidationError,
)
from ..shops.repository import ShopRepository
from ..shops.routes import get_deployment_service, get_shop_repository
from .service import DeploymentService

logger = logging.getLogger(__name__)

deployment_router = APIRouter(prefix="/api", tags=["Deployment"])


class ShopRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shop: Optional[str] = None
    access_token: Optional[str] = Field(None, alias="accessToken")
    gtm_id: Optional[str] = Field(None, alias="gtmId")


def resolve_credentials(body: ShopRequest, repository: ShopRepository) -> Tuple[str, str]:
    """
    Shop and token for a request: explicit values first, then the stored
    credential, then the SHOP/ACCESS_TOKEN defaults.

    Raises:
        ValidationError: If no shop or token can be found
    """
    shop = (body.shop or settings.default_shop or "").strip().lower()
    if not shop:
        raise ValidationError("Missing shop or accessToken")

    token = body.access_token
    if not token:
        record = repository.get_shop(shop)
        token = record.access_token if record else settings.default_access_token
    if not token:
        raise ValidationError("Missing shop or accessToken")
    return shop, token


def to_http_error(action: str, e: DatalayerError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, TemplatePatchError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (ShopifyAPIError, PixelInstallError)):
        logger.error(f"{action} failed: {e}")
        return HTTPException(status_code=502, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


@deployment_router.post("/enable-tag-manager")
def enable_tag_manager(
    body: ShopRequest,
    repository: ShopRepository = Depends(get_shop_repository),
    service: DeploymentService = Depends(get_deployment_service),
):
    """
    Store the container id in the shop metafield and install the blocks.

    Body: ``{shop, accessToken, gtmId}``
    """
    try:
        shop, token = resolve_credentials(body, repository)
        return service.enable_tag_manager(shop, token, body.gtm_id)
    except DatalayerError as e:
        raise to_http_error("enable-tag-manager", e)


@deployment_router.post("/enable-datalayer")
def enable_datalayer(
    body: ShopRequest,
    repository: ShopRepository = Depends(get_shop_repository),
    service: DeploymentService = Depends(get_deployment_service),
):
    """Install the head/body blocks and the tracker snippet."""
    try:
        shop, token = resolve_credentials(body, repository)
        return service.enable_datalayer(shop, token, body.gtm_id)
    except DatalayerError as e:
        raise to_http_error("enable-datalayer", e)


@deployment_router.post("/disable-datalayer")
def disable_datalayer(
    body: ShopRequest,
    repository: ShopRepository = Depends(get_shop_repository),
    service: DeploymentService = Depends(get_deployment_service),
):
    try:
        shop, token = resolve_credentials(body, repository)
        return service.disable_datalayer(shop, token)
    except DatalayerError as e:
        raise to_http_error("disable-datalayer", e)


@deployment_router.post("/enable-pixel")
def enable_pixel(
    body: ShopRequest,
    repository: ShopRepository = Depends(get_shop_repository),
    service: DeploymentService = Depends(get_deployment_service),
):
    """
    Create (or update) the web pixel.

    On 502 the operator can add the script from ``/api/pixel-source`` as a
    custom pixel instead.
    """
    try:
        shop, token = resolve_credentials(body, repository)
        return service.enable_pixel(shop, token, body.gtm_id)
    except DatalayerError as e:
        raise to_http_error("enable-pixel", e)


@deployment_router.get("/pixel-source", response_class=PlainTextResponse)
def pixel_source(
    gtm_id: Optional[str] = Query(None, alias="gtmId", description="Container id to bake in"),
    service: DeploymentService = Depends(get_deployment_service),
):
    """Raw installable pixel script."""
    try:
        return PlainTextResponse(service.pixel_source(gtm_id), media_type="text/javascript")
    except DatalayerError as e:
        raise to_http_error("pixel-source", e)


# =========================================================================
# Diagnostics (404 unless DEBUG is set)
# =========================================================================

def require_debug() -> None:
    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not Found")


debug_router = APIRouter(prefix="/debug", tags=["Debug"], dependencies=[Depends(require_debug)])


@debug_router.get("/shops")
def debug_shops(
    shop: Optional[str] = Query(None, description="Limit to one shop domain"),
    repository: ShopRepository = Depends(get_shop_repository),
):
    """Installed shops. Tokens are never returned."""
    records = repository.get_all_shops()
    if shop:
        shop = shop.strip().lower()
        records = [record for record in records if record.shop == shop]
    return {
        "ok": True,
        "shops": [
            {
                "shop": record.shop,
                "scope": record.scope,
                "installedAt": record.installed_at.isoformat() if record.installed_at else None,
                "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
            }
            for record in records
        ],
    }


@debug_router.get("/access_scopes")
def debug_access_scopes(
    shop: str = Query(..., description="Shop domain"),
    repository: ShopRepository = Depends(get_shop_repository),
    service: DeploymentService = Depends(get_deployment_service),
):
    """Scopes actually granted to the stored token."""
    try:
        shop, token = resolve_credentials(ShopRequest(shop=shop), repository)
        return {"ok": True, "shop": shop, "scopes": service.granted_scopes(shop, token)}
    except DatalayerError as e:
        raise to_http_error("debug/access_scopes", e)


@debug_router.get("/themes")
def debug_themes(
    shop: str = Query(..., description="Shop domain"),
    repository: ShopRepository = Depends(get_shop_repository),
    service: DeploymentService = Depends(get_deployment_service),
):
    try:
        shop, token = resolve_credentials(ShopRequest(shop=shop), repository)
        return {"ok": True, "shop": shop, "themes": service.list_themes(shop, token)}
    except DatalayerError as e:
        raise to_http_error("debug/themes", e)
