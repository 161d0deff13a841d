"""
Event normalizer: the single funnel from detected actions to the event channel.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from .channel import CLEAR_RECORD, EventChannel
from .config import TrackerConfig
from .context import TrackerContext
from .models import (
    CartItem,
    EcommerceItem,
    NormalizedEvent,
    RawEventPayload,
    round_money,
    to_major,
)
from .pii import hash_email, hash_phone

logger = logging.getLogger(__name__)


class EventNormalizer:
    """Builds ``NormalizedEvent`` records and publishes them atomically."""

    def __init__(self, channel: EventChannel, config: TrackerConfig, context: TrackerContext):
        self.channel = channel
        self.config = config
        self.context = context

    def canonical_item_id(self, product_id: str, variant_id: str) -> str:
        """
        Deterministic item id used for cross-event correlation.

        Formatted mode: ``<scope>_<country>_<product>_<variant>``; unformatted
        mode: the bare product id.
        """
        if self.config.item_id_format == "unformatted":
            return str(product_id)
        return f"{self.config.item_id_scope}_{self.context.country}_{product_id}_{variant_id}"

    def to_ecommerce_item(
        self,
        item: CartItem,
        index: int,
        list_id: Optional[str] = None,
        list_name: Optional[str] = None,
    ) -> EcommerceItem:
        return EcommerceItem(
            index=index,
            item_id=self.canonical_item_id(item.product_id, item.variant_id),
            item_product_id=item.product_id,
            item_variant_id=item.variant_id,
            item_name=item.title,
            quantity=item.quantity,
            price=to_major(item.unit_price_minor),
            discount=to_major(item.discount_minor),
            item_category=item.product_type or None,
            item_brand=item.vendor or None,
            item_variant=item.variant_title or None,
            item_sku=item.sku or None,
            item_list_id=list_id,
            item_list_name=list_name,
        )

    @staticmethod
    def compute_value(items: List[EcommerceItem]) -> float:
        return round_money(sum(item.price * item.quantity for item in items))

    async def _user_data(self, payload: RawEventPayload) -> Optional[Dict[str, str]]:
        user_data = {}
        email = await hash_email(payload.email)
        if email:
            user_data["sha256_email_address"] = email
        phone = await hash_phone(payload.phone)
        if phone:
            user_data["sha256_phone_number"] = phone
        return user_data or None

    async def build(self, event_name: str, raw: Union[RawEventPayload, Dict[str, Any]]) -> NormalizedEvent:
        """
        Map a raw payload into a canonical event without publishing it.

        Args:
            event_name: Unprefixed event name (``add_to_cart``, ``search`` ...)
            raw: RawEventPayload or a dict accepted by it

        Returns:
            NormalizedEvent
        """
        payload = raw if isinstance(raw, RawEventPayload) else RawEventPayload.model_validate(raw)

        items = [
            self.to_ecommerce_item(item, index, payload.item_list_id, payload.item_list_name)
            for index, item in enumerate(payload.items)
        ]
        value = round_money(payload.value) if payload.value is not None else self.compute_value(items)

        # Hashes must be complete before the payload is assembled
        user_data = await self._user_data(payload)

        return NormalizedEvent(
            name=f"{self.config.event_prefix}{event_name}",
            currency=payload.currency or self.context.currency,
            items=items,
            value=value,
            item_list_id=payload.item_list_id,
            item_list_name=payload.item_list_name,
            search_term=payload.search_term,
            transaction_id=payload.transaction_id,
            tax=payload.tax,
            shipping=payload.shipping,
            coupon=payload.coupon,
            user_data=user_data,
            client_id=payload.client_id,
            page_location=payload.page_location,
        )

    def publish(self, event: NormalizedEvent) -> None:
        # Clearing record and event go out back-to-back with no await in between
        record = event.to_record()
        self.channel.push(CLEAR_RECORD, record)
        logger.info(f"dataLayer push {event.name}: {json.dumps(record, default=str)}")

    async def emit(self, event_name: str, raw: Union[RawEventPayload, Dict[str, Any]]) -> NormalizedEvent:
        """
        Normalize and publish one event.

        Args:
            event_name: Unprefixed event name
            raw: Raw payload

        Returns:
            The published NormalizedEvent
        """
        event = await self.build(event_name, raw)
        self.publish(event)
        return event
