"""
Web pixel subscriptions.

Maps the platform's standard customer events (the ones a web pixel receives
through ``analytics.subscribe``) to normalized events. Pixel payloads carry
money as decimal major units; they are converted to minor units on the way in
so every path shares the normalizer's price handling.
"""

import inspect
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .models import CartItem, RawEventPayload
from .normalizer import EventNormalizer

logger = logging.getLogger(__name__)

SOURCE_EVENTS = (
    "page_viewed",
    "collection_viewed",
    "product_viewed",
    "search_submitted",
    "cart_viewed",
    "cart_updated",
    "product_added_to_cart",
    "checkout_started",
    "checkout_contact_info_submitted",
    "checkout_shipping_info_submitted",
    "payment_info_submitted",
    "checkout_completed",
)

Callback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _minor(amount: Any) -> int:
    if amount is None or amount == "":
        return 0
    try:
        return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return 0


def _float(amount: Any) -> Optional[float]:
    if amount is None or amount == "":
        return None
    try:
        return float(Decimal(str(amount)))
    except InvalidOperation:
        return None


def item_from_variant(variant: Dict[str, Any], quantity: int = 1, key: Optional[str] = None,
                      discount: Any = None) -> CartItem:
    product = variant.get("product") or {}
    title = variant.get("title")
    return CartItem(
        identity_key=str(key or variant.get("id") or ""),
        product_id=str(product.get("id") or ""),
        variant_id=str(variant.get("id") or ""),
        title=product.get("title") or variant.get("displayName") or "",
        variant_title=title if title and title != "Default Title" else None,
        sku=variant.get("sku") or None,
        vendor=product.get("vendor") or None,
        product_type=product.get("type") or None,
        unit_price_minor=_minor(_dig(variant, "price", "amount")),
        quantity=quantity,
        discount_minor=_minor(discount),
    )


def _checkout_line(line: Dict[str, Any]) -> Optional[CartItem]:
    variant = line.get("variant")
    if not isinstance(variant, dict):
        return None
    discount = sum(
        (Decimal(str(_dig(allocation, "amount", "amount") or 0)) for allocation in line.get("discountAllocations") or []),
        Decimal("0"),
    )
    return item_from_variant(variant, int(line.get("quantity") or 1), key=line.get("id"), discount=discount)


def _cart_line(line: Dict[str, Any]) -> Optional[CartItem]:
    merchandise = line.get("merchandise")
    if not isinstance(merchandise, dict):
        return None
    return item_from_variant(merchandise, int(line.get("quantity") or 1), key=line.get("id"))


def payload_from_pixel_event(name: str, event: Dict[str, Any]) -> RawEventPayload:
    """
    Extract the normalizer payload from a standard pixel event.

    Args:
        name: Source event name
        event: Pixel event (``{clientId, context, data, ...}``)

    Returns:
        RawEventPayload
    """
    data = event.get("data") or {}
    checkout = data.get("checkout") or {}
    cart = data.get("cart") or {}

    items: List[CartItem] = []
    if checkout.get("lineItems"):
        items = [i for i in (_checkout_line(line) for line in checkout["lineItems"]) if i]
    elif cart.get("lines"):
        items = [i for i in (_cart_line(line) for line in cart["lines"]) if i]
    elif data.get("cartLine"):
        item = _cart_line(data["cartLine"])
        items = [item] if item else []
    elif data.get("productVariant"):
        items = [item_from_variant(data["productVariant"])]
    elif _dig(data, "collection", "productVariants"):
        items = [item_from_variant(v) for v in data["collection"]["productVariants"]]
    elif _dig(data, "searchResult", "productVariants"):
        items = [item_from_variant(v) for v in data["searchResult"]["productVariants"]]

    currency = (
        checkout.get("currencyCode")
        or _dig(cart, "cost", "totalAmount", "currencyCode")
        or _dig(data, "cartLine", "cost", "totalAmount", "currencyCode")
        or _dig(data, "productVariant", "price", "currencyCode")
    )
    value = _float(_dig(checkout, "totalPrice", "amount"))
    if value is None:
        value = _float(_dig(cart, "cost", "totalAmount", "amount"))

    discounts = checkout.get("discountApplications") or []
    coupon = next((d.get("title") for d in discounts if d.get("type") == "DISCOUNT_CODE"), None)

    collection = data.get("collection") or {}
    return RawEventPayload(
        currency=currency,
        items=items,
        value=value,
        item_list_id=str(collection["id"]) if collection.get("id") else None,
        item_list_name=collection.get("title"),
        search_term=_dig(data, "searchResult", "query"),
        transaction_id=_dig(checkout, "order", "id"),
        tax=_float(_dig(checkout, "totalTax", "amount")),
        shipping=_float(_dig(checkout, "shippingLine", "price", "amount")),
        coupon=coupon,
        email=checkout.get("email"),
        phone=checkout.get("phone") or _dig(checkout, "shippingAddress", "phone"),
        client_id=event.get("clientId"),
        page_location=_dig(event, "context", "document", "location", "href"),
    )


class PixelAnalytics:
    """In-process stand-in for the pixel sandbox's ``analytics`` object."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callback]] = {}

    def subscribe(self, name: str, callback: Callback) -> None:
        self._subscribers.setdefault(name, []).append(callback)

    @property
    def subscribed_events(self) -> List[str]:
        return list(self._subscribers)

    async def publish(self, name: str, event: Dict[str, Any]) -> None:
        for callback in list(self._subscribers.get(name, [])):
            result = callback(event)
            if inspect.isawaitable(result):
                await result


class PixelSubscriber:
    """Subscribes to every source event and funnels it through the normalizer."""

    def __init__(self, normalizer: EventNormalizer):
        self.normalizer = normalizer

    def subscribe_all(self, analytics: PixelAnalytics) -> None:
        for name in SOURCE_EVENTS:
            analytics.subscribe(name, self._callback(name))

    def _callback(self, name: str) -> Callable[[Dict[str, Any]], Awaitable[None]]:
        async def on_event(event: Dict[str, Any]) -> None:
            await self.handle(name, event)
        return on_event

    async def handle(self, name: str, event: Dict[str, Any]) -> None:
        try:
            payload = payload_from_pixel_event(name, event or {})
            await self.normalizer.emit(name, payload)
        except Exception as e:
            logger.error(f"Failed to handle pixel event {name}: {e}", exc_info=True)
