"""
Cart state tracking: snapshot refresh and quantity diffs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal

from .context import TrackerContext
from .models import Cart, CartItem

logger = logging.getLogger(__name__)

CartFetcher = Callable[[], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class CartDelta:
    """One quantity change between two snapshots."""
    kind: Literal["add", "remove"]
    item: CartItem
    quantity: int

    @property
    def event_name(self) -> str:
        return "add_to_cart" if self.kind == "add" else "remove_from_cart"


class CartStateTracker:
    """Holds the context's cart snapshot in sync with the storefront."""

    def __init__(self, context: TrackerContext, fetch_cart: CartFetcher):
        self.context = context
        self.fetch_cart = fetch_cart

    @property
    def cart(self) -> Cart:
        return self.context.cart

    async def refresh(self) -> Cart:
        """
        Replace the held snapshot with a freshly fetched cart.

        The re-fetched cart is the source of truth; a diff target is never
        trusted over it. On fetch failure the previous snapshot is kept.

        Returns:
            The snapshot now held by the context
        """
        try:
            data = await self.fetch_cart()
        except Exception as e:
            logger.warning(f"Cart refresh failed, keeping previous snapshot: {e}")
            return self.context.cart

        cart = Cart.from_cart_json(data, currency=self.context.currency)
        self.context.replace_cart(cart)
        logger.debug(f"Cart refreshed: {len(cart.items)} lines, {cart.item_count} units")
        return cart

    @staticmethod
    def diff(old_cart: Cart, new_cart: Cart) -> List[CartDelta]:
        """
        Quantity deltas for every line of ``old_cart``.

        Lines only present in ``new_cart`` produce nothing here: additions are
        reported by whoever observed the mutating call.

        Args:
            old_cart: Previous snapshot
            new_cart: New snapshot

        Returns:
            Ordered deltas, following ``old_cart`` line order
        """
        deltas: List[CartDelta] = []
        for old_item in old_cart.items:
            new_item = new_cart.find(old_item.identity_key)
            if new_item is None:
                if old_item.quantity > 0:
                    deltas.append(CartDelta("remove", old_item, old_item.quantity))
                continue

            change = new_item.quantity - old_item.quantity
            if change > 0:
                deltas.append(CartDelta("add", new_item, change))
            elif change < 0:
                deltas.append(CartDelta("remove", new_item, -change))
        return deltas
