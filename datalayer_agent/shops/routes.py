"""
FastAPI routes for app installation (OAuth) and platform webhooks.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from ..deployment.service import DeploymentService, deployment_service
from ..deployment.validation import is_valid_shop_domain
from ..errors import OAuthError
from .oauth import build_authorization_url, exchange_code_for_token, nonce_store, verify_oauth_callback
from .repository import ShopRepository, shop_repository
from .webhook_handler import handle_app_uninstalled_webhook, handle_gdpr_webhook

logger = logging.getLogger(__name__)

shops_router = APIRouter(tags=["Shops"])


def get_shop_repository() -> ShopRepository:
    return shop_repository


def get_deployment_service() -> DeploymentService:
    return deployment_service


@shops_router.get("/auth")
async def begin_auth(shop: str = Query(..., description="Shop domain (<name>.myshopify.com)")):
    """Start OAuth: redirect the merchant to the authorization screen."""
    shop = shop.strip().lower()
    if not is_valid_shop_domain(shop):
        raise HTTPException(status_code=400, detail="Invalid shop domain")

    nonce = nonce_store.issue(shop)
    logger.info(f"OAuth started for {shop}")
    return RedirectResponse(build_authorization_url(shop, nonce), status_code=302)


@shops_router.get("/auth/callback")
def auth_callback(request: Request, repository: ShopRepository = Depends(get_shop_repository)):
    """Verify the callback, exchange the code and store the credential."""
    query = dict(request.query_params)
    shop = query.get("shop", "")
    try:
        verify_oauth_callback(query, nonce_store.consume(shop))
        token = exchange_code_for_token(shop, query["code"])
    except OAuthError as e:
        logger.warning(f"OAuth callback rejected for {shop}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    repository.save_shop(shop, token["access_token"], token.get("scope", ""))
    return {"status": "installed", "shop": shop, "scope": token.get("scope", "")}


@shops_router.post("/webhooks/app_uninstalled")
async def app_uninstalled(
    request: Request,
    repository: ShopRepository = Depends(get_shop_repository),
    service: DeploymentService = Depends(get_deployment_service),
):
    return await handle_app_uninstalled_webhook(request, repository=repository, service=service)


@shops_router.post("/webhooks/customers/data_request")
async def customers_data_request(request: Request):
    return await handle_gdpr_webhook(request)


@shops_router.post("/webhooks/customers/redact")
async def customers_redact(request: Request):
    return await handle_gdpr_webhook(request)


@shops_router.post("/webhooks/shop/redact")
async def shop_redact(request: Request):
    return await handle_gdpr_webhook(request)
