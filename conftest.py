"""
Shared fixtures: an in-process storefront double, an in-memory credential
store and a fake Admin API client.
"""

import json
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", "")
os.environ.setdefault("SHOPIFY_API_KEY", "test-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-secret")

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from datalayer_agent.deployment.admin_client import asset_payload
from datalayer_agent.errors import ShopifyAPIError
from datalayer_agent.shops.database import DatabaseManager
from datalayer_agent.shops.repository import ShopRepository
from datalayer_agent.tracker.channel import EventChannel
from datalayer_agent.tracker.config import INTERNAL_REQUEST_HEADER, TrackerConfig
from datalayer_agent.tracker.context import TrackerContext
from datalayer_agent.tracker.models import PageState
from datalayer_agent.tracker.normalizer import EventNormalizer

PRODUCTS = {
    "red-shirt": {
        "id": 111,
        "title": "Red Shirt",
        "handle": "red-shirt",
        "vendor": "Acme",
        "type": "Shirts",
        "url": "/products/red-shirt",
        "price": 1299,
        "variants": [
            {"id": 222, "title": "Small", "public_title": "Small", "price": 1299, "sku": "RS-S"},
            {"id": 223, "title": "Large", "public_title": "Large", "price": 1499, "sku": "RS-L"},
        ],
    },
    "blue-hat": {
        "id": 333,
        "title": "Blue Hat",
        "handle": "blue-hat",
        "vendor": "Acme",
        "type": "Hats",
        "url": "/products/blue-hat",
        "price": 550,
        "variants": [
            {"id": 444, "title": "Default Title", "public_title": None, "price": 550, "sku": "BH"},
        ],
    },
}


def cart_line(product: dict, variant: dict, quantity: int) -> dict:
    return {
        "key": f"{variant['id']}:line",
        "id": variant["id"],
        "variant_id": variant["id"],
        "product_id": product["id"],
        "product_title": product["title"],
        "title": product["title"],
        "variant_title": variant.get("public_title"),
        "sku": variant.get("sku"),
        "vendor": product["vendor"],
        "product_type": product["type"],
        "price": variant["price"],
        "quantity": quantity,
        "total_discount": 0,
        "url": product["url"],
    }


def find_variant(variant_id):
    for product in PRODUCTS.values():
        for variant in product["variants"]:
            if str(variant["id"]) == str(variant_id):
                return product, variant
    return None, None


class StorefrontDouble:
    """Minimal storefront AJAX API backed by an in-memory cart."""

    def __init__(self):
        self.lines = []
        self.requests = []
        self.base_url = None

    def cart_json(self) -> dict:
        return {
            "currency": "USD",
            "items": [dict(line) for line in self.lines],
            "total_price": sum(line["price"] * line["quantity"] for line in self.lines),
            "item_count": sum(line["quantity"] for line in self.lines),
        }

    def add(self, variant_id, quantity: int = 1) -> dict:
        product, variant = find_variant(variant_id)
        for line in self.lines:
            if line["variant_id"] == variant["id"]:
                line["quantity"] += quantity
                return dict(line, quantity=quantity)
        line = cart_line(product, variant, quantity)
        self.lines.append(line)
        return dict(line)

    @web.middleware
    async def record(self, request, handler):
        self.requests.append((request.method, request.path, INTERNAL_REQUEST_HEADER in request.headers))
        return await handler(request)

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self.record])
        app.router.add_get("/cart.js", self.get_cart)
        app.router.add_post("/cart/add.js", self.post_add)
        app.router.add_post("/cart/change.js", self.post_change)
        app.router.add_post("/cart/clear.js", self.post_clear)
        app.router.add_get("/products/{handle}.js", self.get_product)
        app.router.add_get("/search/suggest.json", self.get_suggest)
        app.router.add_get("/search", self.get_search)
        app.router.add_get("/broken/cart/add.js", self.get_broken)
        return app

    async def get_cart(self, request):
        return web.json_response(self.cart_json())

    async def post_add(self, request):
        data = await request.json()
        if "items" in data:
            return web.json_response({"items": [self.add(i["id"], int(i.get("quantity", 1))) for i in data["items"]]})
        if find_variant(data.get("id"))[1] is None:
            return web.json_response({"status": 422, "message": "Cannot find variant"}, status=422)
        return web.json_response(self.add(data["id"], int(data.get("quantity", 1))))

    async def post_change(self, request):
        data = await request.json()
        quantity = int(data["quantity"])
        for line in list(self.lines):
            if line["key"] == data["id"]:
                if quantity <= 0:
                    self.lines.remove(line)
                else:
                    line["quantity"] = quantity
        return web.json_response(self.cart_json())

    async def post_clear(self, request):
        self.lines = []
        return web.json_response(self.cart_json())

    async def get_product(self, request):
        product = PRODUCTS.get(request.match_info["handle"])
        if product is None:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response(product)

    async def get_suggest(self, request):
        term = request.query.get("q", "").lower()
        matches = [
            {"id": p["id"], "title": p["title"], "handle": p["handle"], "url": f"{p['url']}?_pos=1"}
            for p in PRODUCTS.values()
            if term and term in p["title"].lower()
        ]
        return web.json_response({"resources": {"results": {"products": matches}}})

    async def get_search(self, request):
        return web.Response(text="<html><body>results</body></html>", content_type="text/html")

    async def get_broken(self, request):
        return web.Response(text="not json", content_type="text/plain")

    def count(self, path: str, internal: bool = None) -> int:
        return sum(
            1 for _, p, flag in self.requests
            if p == path and (internal is None or flag == internal)
        )


@pytest.fixture
async def storefront():
    double = StorefrontDouble()
    server = TestServer(double.app())
    await server.start_server()
    double.base_url = str(server.make_url("/"))
    try:
        yield double
    finally:
        await server.close()


@pytest.fixture
def tracker_config() -> TrackerConfig:
    return TrackerConfig(search_debounce_seconds=0.05)


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel()


@pytest.fixture
def context() -> TrackerContext:
    return TrackerContext.from_page_state(PageState(shop="demo.myshopify.com", currency="USD", country="US"))


@pytest.fixture
def normalizer(channel, tracker_config, context) -> EventNormalizer:
    return EventNormalizer(channel, tracker_config, context)


def page_html(cart: dict = None, collection: dict = None, body: str = "") -> str:
    state = {
        "shop": "demo.myshopify.com",
        "currency": "USD",
        "country": "US",
        "template": "collection",
        "cart": cart,
        "collection": collection,
    }
    return (
        "<html><head>"
        f'<script id="ultimate-datalayer-state" type="application/json">{json.dumps(state)}</script>'
        f"</head><body>{body}</body></html>"
    )


@pytest.fixture
def repository():
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    try:
        yield ShopRepository(manager)
    finally:
        manager.drop_tables()


THEME_LAYOUT = """<!doctype html>
<html lang="{{ request.locale.iso_code }}">
  <head>
    <meta charset="utf-8">
    <title>{{ page_title }}</title>
    {{ content_for_header }}
  </head>
  <body class="template-{{ template.name }}">
    <header class="site-header">Shop</header>
    {{ content_for_layout }}
  </body>
</html>
"""


class FakeAdminClient:
    """In-memory stand-in for ShopifyAdminClient."""

    def __init__(self, shop: str = "demo.myshopify.com", access_token: str = "shpat_test", layout: str = THEME_LAYOUT):
        self.shop = shop
        self.access_token = access_token
        self.assets = {"layout/theme.liquid": layout}
        self.writes = []
        self.deletes = []
        self.metafields = {}
        self.scopes = ["read_themes", "write_themes", "write_pixels"]
        self.pixel = None
        self.graphql_calls = []

    def list_themes(self):
        return [{"id": 1, "name": "Dawn", "role": "main"}, {"id": 2, "name": "Draft", "role": "unpublished"}]

    def get_main_theme_id(self) -> int:
        return 1

    def get_asset(self, theme_id: int, key: str) -> str:
        if key not in self.assets:
            raise ShopifyAPIError("Shopify 404 Not Found", status=404)
        return self.assets[key]

    def put_asset(self, theme_id: int, key: str, text: str) -> dict:
        self.writes.append((key, asset_payload(key, text)))
        self.assets[key] = text
        return {"asset": {"key": key}}

    def delete_asset(self, theme_id: int, key: str) -> None:
        if key not in self.assets:
            raise ShopifyAPIError("Shopify 404 Not Found", status=404)
        self.deletes.append(key)
        del self.assets[key]

    def set_metafield(self, namespace: str, key: str, value: str, field_type: str = "single_line_text_field") -> dict:
        self.metafields[f"{namespace}.{key}"] = value
        return {"metafields": [{"namespace": namespace, "key": key, "value": value}], "userErrors": []}

    def access_scopes(self):
        return list(self.scopes)

    def graphql(self, query: str, variables: dict = None) -> dict:
        self.graphql_calls.append((query, variables))
        if "webPixelCreate" in query:
            if self.pixel is not None:
                return {"webPixelCreate": {"userErrors": [{"code": "TAKEN", "field": None, "message": "taken"}], "webPixel": None}}
            self.pixel = {"id": "gid://shopify/WebPixel/1", "settings": variables["webPixel"]["settings"]}
            return {"webPixelCreate": {"userErrors": [], "webPixel": self.pixel}}
        if "webPixelUpdate" in query:
            self.pixel = {"id": variables["id"], "settings": variables["webPixel"]["settings"]}
            return {"webPixelUpdate": {"userErrors": [], "webPixel": self.pixel}}
        return {"webPixel": self.pixel}


@pytest.fixture
def admin_client() -> FakeAdminClient:
    return FakeAdminClient()
