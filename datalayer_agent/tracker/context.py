"""
Per-page tracker context.

One ``TrackerContext`` is built when a page loads and discarded on navigation.
It owns the cart snapshot and the transient quick-view state, and is passed by
reference to the interceptor, the DOM binder and the normalizer.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from pydantic import ValidationError as PydanticValidationError

from .models import Cart, CartItem, PageState

logger = logging.getLogger(__name__)

PAGE_STATE_ELEMENT_ID = "ultimate-datalayer-state"


def read_page_state(html: str) -> PageState:
    """
    Extract the JSON page-state island rendered by the theme.

    Args:
        html: Full page HTML

    Returns:
        PageState; defaults when the island is missing or unreadable
    """
    soup = BeautifulSoup(html or "", "html.parser")
    node = soup.find("script", id=PAGE_STATE_ELEMENT_ID)
    if node is None or not node.string:
        logger.debug("Page state island not found, using defaults")
        return PageState()

    try:
        return PageState.model_validate(json.loads(node.string))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        logger.warning(f"Unreadable page state island: {e}")
        return PageState()


@dataclass
class TrackerContext:
    """Mutable page state shared by the tracker components."""
    page: PageState = field(default_factory=PageState)
    cart: Cart = field(default_factory=Cart.empty)

    # Quick-view state is overwritten on every quick view, never merged
    last_quick_viewed_item: Optional[CartItem] = None
    last_quick_viewed_variants: List[CartItem] = field(default_factory=list)

    created_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_page_state(cls, page: PageState) -> "TrackerContext":
        """Build the context, falling back to an empty cart when none was rendered."""
        cart = Cart.from_cart_json(page.cart, currency=page.currency)
        return cls(page=page, cart=cart)

    @property
    def currency(self) -> str:
        return self.cart.currency or self.page.currency

    @property
    def country(self) -> str:
        return self.page.country

    def replace_cart(self, cart: Cart) -> None:
        self.cart = cart

    def remember_quick_view(self, item: CartItem, variants: List[CartItem]) -> None:
        self.last_quick_viewed_item = item
        self.last_quick_viewed_variants = list(variants)

    def resolve_quick_view_variant(self, variant_id: str) -> Optional[CartItem]:
        for variant in self.last_quick_viewed_variants:
            if variant.variant_id == str(variant_id):
                return variant
        return None

    def summary(self) -> Dict[str, Any]:
        return {
            "shop": self.page.shop,
            "template": self.page.template,
            "cart_lines": len(self.cart.items),
            "cart_quantity": self.cart.item_count,
            "quick_view": self.last_quick_viewed_item.variant_id if self.last_quick_viewed_item else None,
        }
