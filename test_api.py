"""
Tests for the HTTP surface: operator actions, OAuth install and webhooks.
"""

import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from conftest import THEME_LAYOUT
from datalayer_agent.config import settings
from datalayer_agent.deployment.blocks import HEAD_BEGIN, THEME_LAYOUT_KEY
from datalayer_agent.deployment.service import DeploymentService
from datalayer_agent.errors import ShopifyAPIError
from datalayer_agent.main import app
from datalayer_agent.shops.oauth import compute_query_hmac
from datalayer_agent.shops.routes import get_deployment_service, get_shop_repository

SHOP = "demo.myshopify.com"
TOKEN = "shpat_test"


@pytest.fixture
def client(repository, admin_client, monkeypatch):
    monkeypatch.setattr(settings, "default_shop", None)
    monkeypatch.setattr(settings, "default_access_token", None)
    service = DeploymentService(client_factory=lambda shop, token: admin_client)
    app.dependency_overrides[get_shop_repository] = lambda: repository
    app.dependency_overrides[get_deployment_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def signed(body: dict, topic: str, shop: str = SHOP):
    data = json.dumps(body).encode("utf-8")
    digest = hmac.new(settings.api_secret.encode("utf-8"), data, hashlib.sha256).digest()
    headers = {
        "X-Shopify-Hmac-SHA256": base64.b64encode(digest).decode(),
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "Content-Type": "application/json",
    }
    return data, headers


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["oauth_configured"] is True


def test_enable_datalayer(client, admin_client):
    response = client.post("/api/enable-datalayer", json={"shop": SHOP, "accessToken": TOKEN, "gtmId": "GTM-ABC123"})

    assert response.status_code == 200
    assert response.json()["layoutUpdated"] is True
    assert HEAD_BEGIN in admin_client.assets[THEME_LAYOUT_KEY]


def test_enable_tag_manager_requires_container_id(client, admin_client):
    response = client.post("/api/enable-tag-manager", json={"shop": SHOP, "accessToken": TOKEN})

    assert response.status_code == 400
    assert "gtmId" in response.json()["detail"]
    assert admin_client.writes == []


def test_missing_credentials_is_bad_request(client):
    response = client.post("/api/enable-datalayer", json={"shop": SHOP})

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing shop or accessToken"


def test_invalid_shop_is_bad_request(client):
    response = client.post("/api/disable-datalayer", json={"shop": "example.com", "accessToken": TOKEN})
    assert response.status_code == 400


def test_stored_credential_is_used(client, repository, admin_client):
    repository.save_shop(SHOP, TOKEN, "write_themes")

    response = client.post("/api/enable-datalayer", json={"shop": SHOP})

    assert response.status_code == 200
    assert admin_client.writes


def test_layout_without_anchor_is_unprocessable(client, admin_client):
    admin_client.assets[THEME_LAYOUT_KEY] = "<html></html>"

    response = client.post("/api/enable-datalayer", json={"shop": SHOP, "accessToken": TOKEN})

    assert response.status_code == 422


def test_admin_api_failure_is_bad_gateway(client, admin_client):
    def failing():
        raise ShopifyAPIError("Shopify 401 Unauthorized", status=401)

    admin_client.get_main_theme_id = failing

    response = client.post("/api/enable-datalayer", json={"shop": SHOP, "accessToken": TOKEN})

    assert response.status_code == 502


def test_enable_pixel_without_scope_is_bad_gateway(client, admin_client):
    admin_client.scopes = ["write_themes"]

    response = client.post("/api/enable-pixel", json={"shop": SHOP, "accessToken": TOKEN})

    assert response.status_code == 502
    assert "pixel-source" in response.json()["detail"]


def test_enable_pixel(client):
    response = client.post("/api/enable-pixel", json={"shop": SHOP, "accessToken": TOKEN, "gtmId": "GTM-ABC123"})

    assert response.status_code == 200
    assert response.json()["status"] == "created"


def test_pixel_source_is_plain_javascript(client):
    response = client.get("/api/pixel-source", params={"gtmId": "GTM-ABC123"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/javascript")
    assert "analytics.subscribe(" in response.text


def test_pixel_source_rejects_bad_container_id(client):
    assert client.get("/api/pixel-source", params={"gtmId": "nope"}).status_code == 400


# =========================================================================
# Webhooks
# =========================================================================

def test_uninstall_webhook_requires_signature(client, repository):
    repository.save_shop(SHOP, TOKEN)
    data, headers = signed({"id": 1}, "app/uninstalled")
    headers["X-Shopify-Hmac-SHA256"] = "forged"

    response = client.post("/webhooks/app_uninstalled", content=data, headers=headers)

    assert response.status_code == 401
    assert repository.shop_exists(SHOP)


def test_uninstall_webhook_cleans_up(client, repository, admin_client):
    repository.save_shop(SHOP, TOKEN)
    client.post("/api/enable-datalayer", json={"shop": SHOP})
    data, headers = signed({"id": 1}, "app/uninstalled")

    response = client.post("/webhooks/app_uninstalled", content=data, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"status": "success", "shop": SHOP}
    assert not repository.shop_exists(SHOP)
    assert admin_client.assets[THEME_LAYOUT_KEY] == THEME_LAYOUT


@pytest.mark.parametrize("path,topic", [
    ("/webhooks/customers/data_request", "customers/data_request"),
    ("/webhooks/customers/redact", "customers/redact"),
    ("/webhooks/shop/redact", "shop/redact"),
])
def test_gdpr_webhooks(client, path, topic):
    data, headers = signed({"shop_domain": SHOP}, topic)

    assert client.post(path, content=data, headers=headers).status_code == 200
    assert client.post(path, content=data).status_code == 401


# =========================================================================
# OAuth
# =========================================================================

def test_auth_rejects_invalid_shop(client):
    assert client.get("/auth", params={"shop": "evil.com"}).status_code == 400


def test_oauth_install_flow(client, repository, monkeypatch):
    monkeypatch.setattr(
        "datalayer_agent.shops.routes.exchange_code_for_token",
        lambda shop, code: {"access_token": "shpat_new", "scope": "write_themes"},
    )

    redirect = client.get("/auth", params={"shop": SHOP}, follow_redirects=False)
    assert redirect.status_code == 302
    location = urlparse(redirect.headers["location"])
    assert location.netloc == SHOP
    state = parse_qs(location.query)["state"][0]

    query = {"code": "abc", "shop": SHOP, "state": state, "timestamp": "1700000000"}
    query["hmac"] = compute_query_hmac(query, settings.api_secret)
    response = client.get("/auth/callback", params=query)

    assert response.status_code == 200
    assert response.json()["status"] == "installed"
    assert repository.get_shop(SHOP).access_token == "shpat_new"


def test_oauth_callback_rejects_bad_hmac(client, repository):
    client.get("/auth", params={"shop": SHOP}, follow_redirects=False)

    response = client.get("/auth/callback", params={"code": "abc", "shop": SHOP, "state": "x", "hmac": "0" * 64})

    assert response.status_code == 400
    assert repository.get_shop(SHOP) is None


# =========================================================================
# Diagnostics
# =========================================================================

def test_debug_routes_hidden_by_default(client, repository, monkeypatch):
    monkeypatch.setattr(settings, "debug", False)
    repository.save_shop(SHOP, TOKEN)

    assert client.get("/debug/shops").status_code == 404
    assert client.get("/debug/themes", params={"shop": SHOP}).status_code == 404


def test_debug_shops_never_returns_tokens(client, repository, monkeypatch):
    monkeypatch.setattr(settings, "debug", True)
    repository.save_shop(SHOP, TOKEN, "write_themes")
    repository.save_shop("other.myshopify.com", "shpat_other")

    everything = client.get("/debug/shops").json()
    one = client.get("/debug/shops", params={"shop": SHOP}).json()

    assert {entry["shop"] for entry in everything["shops"]} == {SHOP, "other.myshopify.com"}
    assert [entry["shop"] for entry in one["shops"]] == [SHOP]
    assert one["shops"][0]["scope"] == "write_themes"
    assert TOKEN not in json.dumps(everything)


def test_debug_access_scopes_uses_stored_token(client, repository, monkeypatch):
    monkeypatch.setattr(settings, "debug", True)
    repository.save_shop(SHOP, TOKEN)

    response = client.get("/debug/access_scopes", params={"shop": SHOP})

    assert response.status_code == 200
    assert response.json()["scopes"] == ["read_themes", "write_themes", "write_pixels"]


def test_debug_access_scopes_without_token(client, monkeypatch):
    monkeypatch.setattr(settings, "debug", True)

    response = client.get("/debug/access_scopes", params={"shop": SHOP})

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing shop or accessToken"


def test_debug_themes(client, repository, monkeypatch):
    monkeypatch.setattr(settings, "debug", True)
    repository.save_shop(SHOP, TOKEN)

    response = client.get("/debug/themes", params={"shop": SHOP})

    assert response.status_code == 200
    assert response.json()["themes"][0] == {"id": 1, "name": "Dawn", "role": "main"}
