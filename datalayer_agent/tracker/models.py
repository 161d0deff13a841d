"""
Data models for the storefront event pipeline.

Cart snapshots come from the storefront AJAX API (``/cart.js``) where all money
values are integer minor units. Normalized events carry GA4-style ecommerce
items with 2-decimal major-unit prices.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def to_major(minor: Any) -> float:
    """Convert integer minor units (cents) to a 2-decimal major-unit amount."""
    amount = (Decimal(int(minor or 0)) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(amount)


def round_money(amount: float) -> float:
    return float(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class CartItem(BaseModel):
    """A single cart line. Lines are matched by ``identity_key``, never by ids."""

    model_config = ConfigDict(frozen=True)

    identity_key: str
    product_id: str
    variant_id: str
    title: str = ""
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    unit_price_minor: int = 0
    quantity: int = 1
    discount_minor: int = 0
    url: Optional[str] = None

    @classmethod
    def from_cart_json(cls, line: Dict[str, Any]) -> "CartItem":
        """
        Build a cart item from a ``/cart.js`` (or ``/cart/add.js``) line item.

        Args:
            line: Line item dict as returned by the storefront AJAX API

        Returns:
            CartItem
        """
        variant_id = line.get("variant_id", line.get("id"))
        return cls(
            identity_key=str(line.get("key") or variant_id),
            product_id=str(line.get("product_id", "")),
            variant_id=str(variant_id or ""),
            title=line.get("product_title") or line.get("title") or "",
            variant_title=_str_or_none(line.get("variant_title")),
            sku=_str_or_none(line.get("sku")),
            vendor=_str_or_none(line.get("vendor")),
            product_type=_str_or_none(line.get("product_type")),
            unit_price_minor=int(line.get("price") or 0),
            quantity=int(line.get("quantity") or 0),
            discount_minor=int(line.get("total_discount") or 0),
            url=_str_or_none(line.get("url")),
        )

    @classmethod
    def from_product_json(
        cls,
        product: Dict[str, Any],
        variant: Optional[Dict[str, Any]] = None,
        quantity: int = 1,
    ) -> "CartItem":
        """
        Build an item from a ``/products/<handle>.js`` document.

        Args:
            product: Product JSON document
            variant: Variant to use; defaults to the first variant
            quantity: Quantity to attribute

        Returns:
            CartItem keyed by variant id
        """
        variants = product.get("variants") or []
        if variant is None and variants:
            variant = variants[0]
        variant = variant or {}

        variant_id = variant.get("id", "")
        variant_title = variant.get("public_title") or variant.get("title")
        if variant_title == "Default Title":
            variant_title = None

        return cls(
            identity_key=str(variant_id or product.get("id", "")),
            product_id=str(product.get("id", "")),
            variant_id=str(variant_id),
            title=product.get("title") or "",
            variant_title=_str_or_none(variant_title),
            sku=_str_or_none(variant.get("sku")),
            vendor=_str_or_none(product.get("vendor")),
            product_type=_str_or_none(product.get("type") or product.get("product_type")),
            unit_price_minor=int(variant.get("price", product.get("price")) or 0),
            quantity=quantity,
            url=_str_or_none(product.get("url")),
        )

    def with_quantity(self, quantity: int) -> "CartItem":
        return self.model_copy(update={"quantity": quantity})


class Cart(BaseModel):
    """Point-in-time cart snapshot. Replaced wholesale, never merged."""

    model_config = ConfigDict(frozen=True)

    currency: str = "USD"
    items: List[CartItem] = Field(default_factory=list)
    total_price_minor: Optional[int] = None

    @classmethod
    def empty(cls, currency: str = "USD") -> "Cart":
        return cls(currency=currency)

    @classmethod
    def from_cart_json(cls, data: Optional[Dict[str, Any]], currency: str = "USD") -> "Cart":
        """
        Parse a ``/cart.js`` body. Missing or malformed data yields an empty cart.

        Args:
            data: Decoded cart JSON (may be None)
            currency: Fallback currency code

        Returns:
            Cart snapshot
        """
        if not isinstance(data, dict):
            return cls.empty(currency)

        items = [
            CartItem.from_cart_json(line)
            for line in data.get("items") or []
            if isinstance(line, dict)
        ]
        total = data.get("total_price")
        return cls(
            currency=data.get("currency") or currency,
            items=items,
            total_price_minor=int(total) if total is not None else None,
        )

    def find(self, identity_key: str) -> Optional[CartItem]:
        for item in self.items:
            if item.identity_key == identity_key:
                return item
        return None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class EcommerceItem(BaseModel):
    """GA4 ecommerce item. Optional fields are omitted on export, never null."""

    model_config = ConfigDict(frozen=True)

    index: int
    item_id: str
    item_product_id: str
    item_variant_id: str
    item_name: str
    quantity: int
    price: float
    discount: float = 0.0
    item_category: Optional[str] = None
    item_brand: Optional[str] = None
    item_variant: Optional[str] = None
    item_sku: Optional[str] = None
    item_list_id: Optional[str] = None
    item_list_name: Optional[str] = None


class RawEventPayload(BaseModel):
    """Input accepted by the normalizer before ids, prices and totals are derived."""

    currency: Optional[str] = None
    items: List[CartItem] = Field(default_factory=list)
    # Explicit total in major units; wins over the computed sum when present
    value: Optional[float] = None
    item_list_id: Optional[str] = None
    item_list_name: Optional[str] = None
    search_term: Optional[str] = None
    transaction_id: Optional[str] = None
    tax: Optional[float] = None
    shipping: Optional[float] = None
    coupon: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    client_id: Optional[str] = None
    page_location: Optional[str] = None


class NormalizedEvent(BaseModel):
    """Canonical analytics event as published on the event channel."""

    model_config = ConfigDict(frozen=True)

    name: str
    currency: str
    items: List[EcommerceItem] = Field(default_factory=list)
    value: float = 0.0
    item_list_id: Optional[str] = None
    item_list_name: Optional[str] = None
    search_term: Optional[str] = None
    transaction_id: Optional[str] = None
    tax: Optional[float] = None
    shipping: Optional[float] = None
    coupon: Optional[str] = None
    user_data: Optional[Dict[str, str]] = None
    client_id: Optional[str] = None
    page_location: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        """Render the dataLayer record for this event."""
        ecommerce: Dict[str, Any] = {
            "currency": self.currency,
            "value": self.value,
            "items": [item.model_dump(exclude_none=True) for item in self.items],
        }
        for key in ("item_list_id", "item_list_name", "transaction_id", "tax", "shipping", "coupon"):
            value = getattr(self, key)
            if value is not None:
                ecommerce[key] = value

        record: Dict[str, Any] = {"event": self.name, "ecommerce": ecommerce}
        if self.search_term is not None:
            record["search_term"] = self.search_term
        if self.user_data:
            record["user_data"] = dict(self.user_data)
        if self.client_id is not None:
            record["client_id"] = self.client_id
        if self.page_location is not None:
            record["page_location"] = self.page_location
        return record


class PageState(BaseModel):
    """
    Page context serialized by the theme into the ``ultimate-datalayer-state``
    JSON island at render time.
    """

    shop: Optional[str] = None
    currency: str = "USD"
    country: str = "US"
    template: Optional[str] = None
    cart: Optional[Dict[str, Any]] = None
    customer: Optional[Dict[str, Any]] = None
    product: Optional[Dict[str, Any]] = None
    collection: Optional[Dict[str, Any]] = None
