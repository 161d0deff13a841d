"""
Selector-driven interaction capture.

Semantic commerce actions are declared as ``{selectors, trigger}`` pairs. The
binder attaches one delegated listener per distinct trigger at the document
root; matching runs at dispatch time with ``closest()``, so elements inserted
after load are covered without re-binding.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Literal, Optional

from bs4 import BeautifulSoup, Tag
from pydantic import BaseModel, ConfigDict, Field

from .context import TrackerContext
from .models import CartItem, RawEventPayload, to_major
from .normalizer import EventNormalizer
from .storefront import StorefrontClient, canonical_product_path

logger = logging.getLogger(__name__)

Trigger = Literal["click", "pointerdown", "hover"]


@dataclass(frozen=True)
class Interaction:
    """A user interaction delivered to the document root."""
    type: str
    target: Tag


Listener = Callable[[Interaction], Awaitable[None]]


class PageDocument:
    """Parsed page that delivers interactions to root-level listeners."""

    def __init__(self, html: str):
        self.soup = BeautifulSoup(html or "", "html.parser")
        self._listeners: Dict[str, List[Listener]] = {}

    def add_event_listener(self, interaction: str, listener: Listener) -> None:
        self._listeners.setdefault(interaction, []).append(listener)

    def listener_count(self, interaction: Optional[str] = None) -> int:
        if interaction is not None:
            return len(self._listeners.get(interaction, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    def select_one(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    def insert_html(self, parent_selector: str, html: str) -> List[Tag]:
        """
        Append markup under the first element matching ``parent_selector``.

        Returns:
            The inserted top-level tags
        """
        parent = self.soup.select_one(parent_selector)
        if parent is None:
            raise LookupError(f"No element matches {parent_selector}")
        fragment = BeautifulSoup(html, "html.parser")
        inserted = [node for node in list(fragment.contents) if isinstance(node, Tag)]
        for node in list(fragment.contents):
            parent.append(node.extract())
        return inserted

    async def dispatch(self, interaction: str, target: Tag) -> None:
        """Deliver an interaction. Listener failures never reach the caller."""
        event = Interaction(interaction, target)
        for listener in list(self._listeners.get(interaction, [])):
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Listener for {interaction} failed: {e}", exc_info=True)

    async def click(self, selector: str) -> None:
        target = self.select_one(selector)
        if target is None:
            logger.debug(f"click: nothing matches {selector}")
            return
        await self.dispatch("click", target)


class ActionBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    selectors: FrozenSet[str]
    trigger: Trigger = "click"


def _default_actions() -> Dict[str, ActionBinding]:
    return {
        "view_cart": ActionBinding(
            selectors=frozenset({"a[href='/cart']", "[data-cart-toggle]", "#cart-icon-bubble"}),
            trigger="click",
        ),
        "begin_checkout": ActionBinding(
            selectors=frozenset({"button[name='checkout']", "a[href='/checkout']", "[data-checkout-button]"}),
            trigger="click",
        ),
        "add_to_wishlist": ActionBinding(
            selectors=frozenset({"[data-wishlist-add]", ".add-to-wishlist", ".wishlist-button"}),
            trigger="click",
        ),
        "quick_view": ActionBinding(
            selectors=frozenset({"[data-quick-view]", ".quick-view-button"}),
            trigger="click",
        ),
        "select_item": ActionBinding(
            selectors=frozenset({"[data-product-link]", ".product-card a[href*='/products/']", ".card-wrapper a[href*='/products/']"}),
            trigger="pointerdown",
        ),
        "select_variant": ActionBinding(
            selectors=frozenset({"[data-quick-view-variant]", ".quick-view [name='id']"}),
            trigger="click",
        ),
        "quick_view_checkout": ActionBinding(
            selectors=frozenset({"[data-quick-view-checkout]", ".quick-view .shopify-payment-button__button"}),
            trigger="click",
        ),
    }


class BinderConfig(BaseModel):
    """Which elements mean what. Defaults fit Dawn-derived themes."""

    model_config = ConfigDict(frozen=True)

    actions: Dict[str, ActionBinding] = Field(default_factory=_default_actions)
    product_container_selectors: List[str] = Field(
        default_factory=lambda: ["[data-product-url]", "[data-product-handle]", ".product-card", ".card-wrapper", "product-card"]
    )
    list_container_selector: str = "[data-list-id], [data-list-name]"

    @property
    def triggers(self) -> List[str]:
        seen: List[str] = []
        for binding in self.actions.values():
            if binding.trigger not in seen:
                seen.append(binding.trigger)
        return seen


def closest(element: Tag, selectors) -> Optional[Tag]:
    """Nearest ancestor-or-self matching any selector; invalid selectors are skipped."""
    best: Optional[Tag] = None
    best_depth = None
    for selector in selectors:
        try:
            match = element.css.closest(selector)
        except Exception as e:
            logger.warning(f"Bad selector {selector!r}: {e}")
            continue
        if match is None:
            continue
        depth = _distance(element, match)
        if best is None or depth < best_depth:
            best, best_depth = match, depth
    return best


def _distance(element: Tag, ancestor: Tag) -> int:
    if element is ancestor:
        return 0
    for depth, parent in enumerate(element.parents, start=1):
        if parent is ancestor:
            return depth
    return 1 << 30


class DomEventBinder:
    """Maps delegated interactions to commerce events."""

    def __init__(
        self,
        context: TrackerContext,
        normalizer: EventNormalizer,
        storefront: Optional[StorefrontClient],
        config: Optional[BinderConfig] = None,
    ):
        self.context = context
        self.normalizer = normalizer
        self.storefront = storefront
        self.config = config or BinderConfig()
        self._bound: List[int] = []

        self._handlers: Dict[str, Callable[[Tag], Awaitable[None]]] = {
            "view_cart": self._view_cart,
            "begin_checkout": self._begin_checkout,
            "add_to_wishlist": self._add_to_wishlist,
            "quick_view": self._quick_view,
            "select_item": self._select_item,
            "select_variant": self._select_variant,
            "quick_view_checkout": self._quick_view_checkout,
        }

    def bind(self, document: PageDocument) -> None:
        """Attach one root listener per distinct trigger (idempotent per document)."""
        if id(document) in self._bound:
            return
        for trigger in self.config.triggers:
            document.add_event_listener(trigger, self.handle)
        self._bound.append(id(document))
        logger.debug(f"DOM binder attached for triggers: {', '.join(self.config.triggers)}")

    async def handle(self, interaction: Interaction) -> None:
        for action, binding in self.config.actions.items():
            if binding.trigger != interaction.type:
                continue
            element = closest(interaction.target, binding.selectors)
            if element is None:
                continue
            handler = self._handlers.get(action)
            if handler is None:
                logger.warning(f"No handler for configured action {action}")
                continue
            try:
                await handler(element)
            except Exception as e:
                logger.error(f"Action {action} failed: {e}", exc_info=True)

    # =========================================================================
    # Lookups
    # =========================================================================

    def product_url(self, element: Tag) -> Optional[str]:
        """
        Canonical product URL for the interacted element.

        Looks at the element itself when it is a product link, then at the
        nearest product container (``data-product-url``, ``data-product-handle``
        or the first product link inside it).
        """
        if element.name == "a" and canonical_product_path(element.get("href", "")):
            return canonical_product_path(element["href"])

        container = closest(element, self.config.product_container_selectors)
        if container is None:
            return None
        if container.get("data-product-url"):
            return canonical_product_path(container["data-product-url"])
        if container.get("data-product-handle"):
            return f"/products/{container['data-product-handle']}"
        link = container.select_one("a[href*='/products/']")
        if link is not None:
            return canonical_product_path(link.get("href", ""))
        return None

    def list_context(self, element: Tag) -> Dict[str, Optional[str]]:
        container = closest(element, [self.config.list_container_selector])
        if container is not None:
            return {
                "item_list_id": container.get("data-list-id"),
                "item_list_name": container.get("data-list-name"),
            }
        collection = self.context.page.collection or {}
        return {
            "item_list_id": str(collection["id"]) if collection.get("id") else None,
            "item_list_name": collection.get("title"),
        }

    async def _fetch_product(self, element: Tag) -> Optional[Dict[str, Any]]:
        url = self.product_url(element)
        if not url:
            logger.debug("No product container around interacted element")
            return None
        if self.storefront is None:
            return None
        try:
            return await self.storefront.get_product(url)
        except Exception as e:
            logger.warning(f"Product fetch failed for {url}: {e}")
            return None

    @staticmethod
    def _variant_id(element: Tag) -> Optional[str]:
        if element.get("data-variant-id"):
            return element["data-variant-id"]
        if element.name == "select":
            option = element.find("option", selected=True) or element.find("option")
            return option.get("value") if option else None
        return element.get("value")

    def _cart_payload(self) -> RawEventPayload:
        cart = self.context.cart
        value = to_major(cart.total_price_minor) if cart.total_price_minor is not None else None
        return RawEventPayload(currency=cart.currency, items=list(cart.items), value=value)

    # =========================================================================
    # Actions
    # =========================================================================

    async def _view_cart(self, element: Tag) -> None:
        await self.normalizer.emit("view_cart", self._cart_payload())

    async def _begin_checkout(self, element: Tag) -> None:
        await self.normalizer.emit("begin_checkout", self._cart_payload())

    async def _add_to_wishlist(self, element: Tag) -> None:
        product = await self._fetch_product(element)
        if product is None:
            return
        item = CartItem.from_product_json(product)
        await self.normalizer.emit("add_to_wishlist", RawEventPayload(items=[item]))

    async def _quick_view(self, element: Tag) -> None:
        product = await self._fetch_product(element)
        if product is None:
            return
        variants = [CartItem.from_product_json(product, variant) for variant in product.get("variants") or []]
        item = variants[0] if variants else CartItem.from_product_json(product)
        self.context.remember_quick_view(item, variants)
        await self.normalizer.emit("view_item", RawEventPayload(items=[item]))

    async def _select_item(self, element: Tag) -> None:
        product = await self._fetch_product(element)
        if product is None:
            return
        item = CartItem.from_product_json(product)
        await self.normalizer.emit(
            "select_item",
            RawEventPayload(items=[item], **self.list_context(element)),
        )

    async def _select_variant(self, element: Tag) -> None:
        variant_id = self._variant_id(element)
        variant = self.context.resolve_quick_view_variant(variant_id) if variant_id else None
        if variant is None:
            logger.debug(f"Variant {variant_id} does not belong to the last quick-viewed product")
            return
        self.context.remember_quick_view(variant, self.context.last_quick_viewed_variants)
        await self.normalizer.emit("view_item", RawEventPayload(items=[variant]))

    async def _quick_view_checkout(self, element: Tag) -> None:
        item = self.context.last_quick_viewed_item
        if item is None:
            logger.debug("Direct checkout without a quick-viewed item")
            return
        try:
            quantity = max(1, int(element.get("data-quantity") or 1))
        except ValueError:
            quantity = 1
        await self.normalizer.emit("begin_checkout", RawEventPayload(items=[item.with_quantity(quantity)]))
