"""
Tests for selector-driven interaction capture.
"""

import pytest

from conftest import cart_line, page_html, PRODUCTS
from datalayer_agent.tracker.dom_binder import BinderConfig, DomEventBinder, PageDocument, closest
from datalayer_agent.tracker.runtime import PageRuntime

BODY = """
<a href="/cart" id="cart-link"><span class="icon">Cart</span></a>
<div id="grid" data-list-id="summer" data-list-name="Summer Sale">
  <div class="product-card" data-product-handle="red-shirt">
    <a href="/collections/summer/products/red-shirt?variant=222#reviews" class="card-link"><span class="title">Red Shirt</span></a>
    <button class="quick-view-button">Quick view</button>
    <button data-wishlist-add>Wishlist</button>
  </div>
</div>
<div class="quick-view">
  <button data-quick-view-variant data-variant-id="223" id="variant-large">Large</button>
  <button data-quick-view-variant data-variant-id="999" id="variant-unknown">Other</button>
  <button data-quick-view-checkout data-quantity="2" id="buy-now">Buy it now</button>
</div>
<div class="product-card" data-product-handle="missing-product"><button data-wishlist-add id="missing-wish">W</button></div>
<button name="checkout" id="checkout">Checkout</button>
<div id="late"></div>
"""


@pytest.fixture
async def page(storefront, tracker_config):
    shirt = PRODUCTS["red-shirt"]
    cart = {
        "currency": "USD",
        "items": [cart_line(shirt, shirt["variants"][0], 2)],
        "total_price": 2598,
    }
    runtime = PageRuntime(
        page_html(cart=cart, collection={"id": 42, "title": "Summer"}, body=BODY),
        storefront.base_url,
        config=tracker_config,
    )
    await runtime.start()
    try:
        yield runtime
    finally:
        await runtime.close()


def test_one_root_listener_per_trigger(context, normalizer):
    document = PageDocument(page_html(body=BODY))
    binder = DomEventBinder(context, normalizer, None)

    binder.bind(document)
    binder.bind(document)

    assert document.listener_count("click") == 1
    assert document.listener_count("pointerdown") == 1
    assert document.listener_count() == 2


def test_closest_prefers_nearest_match():
    document = PageDocument(page_html(body=BODY))
    span = document.select_one(".card-link .title")

    match = closest(span, ["#grid", ".product-card"])

    assert match.get("data-product-handle") == "red-shirt"
    assert closest(span, ["section.none"]) is None


def test_closest_skips_invalid_selectors():
    document = PageDocument(page_html(body=BODY))
    span = document.select_one(".card-link .title")

    assert closest(span, ["[[broken", ".product-card"]) is not None


async def test_view_cart_uses_held_cart(page):
    await page.document.click("#cart-link .icon")

    events = page.channel.events("view_cart")
    assert len(events) == 1
    assert events[0]["ecommerce"]["value"] == 25.98
    assert events[0]["ecommerce"]["items"][0]["quantity"] == 2


async def test_begin_checkout_uses_held_cart(page):
    await page.document.click("#checkout")

    events = page.channel.events("begin_checkout")
    assert len(events) == 1
    assert events[0]["ecommerce"]["items"][0]["item_id"] == "shopify_US_111_222"


async def test_select_item_fetches_canonical_product(page, storefront):
    target = page.document.select_one(".card-link .title")
    await page.document.dispatch("pointerdown", target)

    events = page.channel.events("select_item")
    assert len(events) == 1
    item = events[0]["ecommerce"]["items"][0]
    assert item["item_name"] == "Red Shirt"
    assert item["item_list_id"] == "summer"
    assert item["item_list_name"] == "Summer Sale"
    assert storefront.count("/products/red-shirt.js", internal=True) == 1


async def test_click_on_product_link_is_not_select_item(page):
    await page.document.click(".card-link .title")

    assert page.channel.events("select_item") == []


async def test_add_to_wishlist(page):
    await page.document.click("[data-wishlist-add]")

    events = page.channel.events("add_to_wishlist")
    assert len(events) == 1
    assert events[0]["ecommerce"]["items"][0]["item_sku"] == "RS-S"


async def test_missing_product_is_contained(page):
    await page.document.click("#missing-wish")

    assert page.channel.events() == []


async def test_elements_inserted_after_bind_are_covered(page):
    listeners = page.document.listener_count()
    page.document.insert_html("#late", '<div class="product-card" data-product-url="/products/blue-hat.js"><button data-wishlist-add id="late-wish">W</button></div>')

    await page.document.click("#late-wish")

    assert page.document.listener_count() == listeners
    events = page.channel.events("add_to_wishlist")
    assert len(events) == 1
    item = events[0]["ecommerce"]["items"][0]
    assert item["item_name"] == "Blue Hat"
    assert "item_variant" not in item


async def test_quick_view_variant_and_direct_checkout(page):
    await page.document.click(".quick-view-button")
    quick_view = page.channel.events("view_item")
    assert len(quick_view) == 1
    assert quick_view[0]["ecommerce"]["items"][0]["item_variant_id"] == "222"
    assert len(page.context.last_quick_viewed_variants) == 2

    await page.document.click("#variant-large")
    variant_view = page.channel.events("view_item")
    assert len(variant_view) == 2
    assert variant_view[1]["ecommerce"]["items"][0]["item_variant_id"] == "223"
    assert variant_view[1]["ecommerce"]["items"][0]["price"] == 14.99

    await page.document.click("#buy-now")
    checkout = page.channel.events("begin_checkout")
    assert len(checkout) == 1
    assert checkout[0]["ecommerce"]["items"][0]["item_variant_id"] == "223"
    assert checkout[0]["ecommerce"]["items"][0]["quantity"] == 2
    assert checkout[0]["ecommerce"]["value"] == 29.98


async def test_unknown_variant_emits_nothing(page):
    await page.document.click(".quick-view-button")
    await page.document.click("#variant-unknown")

    assert len(page.channel.events("view_item")) == 1


async def test_direct_checkout_without_quick_view_emits_nothing(page):
    await page.document.click("#buy-now")

    assert page.channel.events("begin_checkout") == []


async def test_quick_view_overwrites_previous_state(page):
    await page.document.click(".quick-view-button")
    page.document.insert_html("#late", '<div class="product-card" data-product-handle="blue-hat"><button class="quick-view-button" id="qv-hat">Q</button></div>')
    await page.document.click("#qv-hat")

    assert [v.variant_id for v in page.context.last_quick_viewed_variants] == ["444"]
    assert page.context.last_quick_viewed_item.product_id == "333"


async def test_hover_trigger_binding(context, normalizer, channel):
    config = BinderConfig(actions={"view_cart": {"selectors": ["#cart-link"], "trigger": "hover"}})
    document = PageDocument(page_html(body=BODY))
    binder = DomEventBinder(context, normalizer, None, config)
    binder.bind(document)

    await document.click("#cart-link")
    assert channel.events() == []

    await document.dispatch("hover", document.select_one("#cart-link .icon"))
    assert len(channel.events("view_cart")) == 1
