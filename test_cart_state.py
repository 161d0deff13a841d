"""
Tests for cart snapshot diffing and refresh.
"""

from datalayer_agent.tracker.cart_state import CartStateTracker
from datalayer_agent.tracker.models import Cart, CartItem


def item(key: str, quantity: int) -> CartItem:
    return CartItem(identity_key=key, product_id=f"p{key}", variant_id=f"v{key}", title=f"Item {key}",
                    unit_price_minor=1000, quantity=quantity)


def test_quantity_increase_emits_single_add():
    deltas = CartStateTracker.diff(Cart(items=[item("1", 2)]), Cart(items=[item("1", 3)]))

    assert len(deltas) == 1
    assert deltas[0].kind == "add"
    assert deltas[0].event_name == "add_to_cart"
    assert deltas[0].quantity == 1
    assert deltas[0].item.quantity == 3


def test_line_removed_emits_full_quantity():
    deltas = CartStateTracker.diff(Cart(items=[item("1", 2)]), Cart(items=[]))

    assert len(deltas) == 1
    assert deltas[0].event_name == "remove_from_cart"
    assert deltas[0].quantity == 2


def test_only_changed_line_is_reported():
    old = Cart(items=[item("1", 2), item("2", 1)])
    new = Cart(items=[item("1", 2)])

    deltas = CartStateTracker.diff(old, new)

    assert [(d.kind, d.item.identity_key, d.quantity) for d in deltas] == [("remove", "2", 1)]


def test_quantity_decrease_emits_remove_with_delta():
    deltas = CartStateTracker.diff(Cart(items=[item("1", 5)]), Cart(items=[item("1", 2)]))

    assert [(d.kind, d.quantity) for d in deltas] == [("remove", 3)]


def test_lines_only_in_new_cart_are_not_reported():
    deltas = CartStateTracker.diff(Cart(items=[item("1", 1)]), Cart(items=[item("1", 1), item("2", 4)]))

    assert deltas == []


def test_lines_match_by_identity_key_not_variant():
    old = Cart(items=[item("a", 1)])
    # Same variant id, different line key (e.g. different line properties)
    new = Cart(items=[item("b", 1).model_copy(update={"variant_id": "va"})])

    deltas = CartStateTracker.diff(old, new)

    assert [(d.kind, d.item.identity_key) for d in deltas] == [("remove", "a")]


def test_empty_and_malformed_cart_json():
    assert Cart.from_cart_json(None).items == []
    assert Cart.from_cart_json("nope", currency="EUR").currency == "EUR"
    assert Cart.from_cart_json({"items": [None, {"key": "k", "variant_id": 1, "quantity": 2}]}).item_count == 2


async def test_refresh_replaces_snapshot(context):
    async def fetch():
        return {"currency": "USD", "items": [{"key": "1:x", "variant_id": 1, "product_id": 9, "quantity": 2, "price": 500}]}

    tracker = CartStateTracker(context, fetch)
    old = context.cart

    cart = await tracker.refresh()

    assert context.cart is cart
    assert cart is not old
    assert cart.find("1:x").quantity == 2


async def test_refresh_failure_keeps_previous_snapshot(context):
    async def fetch():
        raise RuntimeError("network down")

    context.replace_cart(Cart(items=[item("1", 1)]))
    tracker = CartStateTracker(context, fetch)

    cart = await tracker.refresh()

    assert cart.find("1").quantity == 1
    assert context.cart is cart
