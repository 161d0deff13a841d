"""
Storefront event pipeline: cart tracking, network interception, DOM
interaction capture and event normalization.
"""

from .channel import CLEAR_RECORD, EventChannel
from .config import INTERNAL_REQUEST_HEADER, TrackerConfig
from .context import TrackerContext, read_page_state
from .models import Cart, CartItem, EcommerceItem, NormalizedEvent, PageState, RawEventPayload
from .normalizer import EventNormalizer
from .runtime import PageRuntime

__all__ = [
    "CLEAR_RECORD",
    "EventChannel",
    "INTERNAL_REQUEST_HEADER",
    "TrackerConfig",
    "TrackerContext",
    "read_page_state",
    "Cart",
    "CartItem",
    "EcommerceItem",
    "NormalizedEvent",
    "PageState",
    "RawEventPayload",
    "EventNormalizer",
    "PageRuntime",
]
