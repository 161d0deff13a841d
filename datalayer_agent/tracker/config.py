"""
Per-deployment tracker configuration.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict

from ..config import Settings

# Header that marks the tracker's own follow-up requests
INTERNAL_REQUEST_HEADER = "X-Datalayer-Internal"


class TrackerConfig(BaseModel):
    """Values fixed for the whole session; changing them mid-page is not supported."""

    model_config = ConfigDict(frozen=True)

    event_prefix: str = ""
    item_id_format: Literal["formatted", "unformatted"] = "formatted"
    item_id_scope: str = "shopify"
    search_debounce_seconds: float = 0.8
    search_suggest_limit: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrackerConfig":
        return cls(
            event_prefix=settings.event_prefix,
            item_id_format=settings.item_id_format,
            item_id_scope=settings.item_id_scope,
            search_debounce_seconds=settings.search_debounce_ms / 1000.0,
        )
