"""
Environment-driven configuration for the Ultimate DataLayer app.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_SCOPES = (
    "read_themes,write_themes,read_theme_code,write_theme_code,"
    "write_script_tags,write_pixels,write_custom_pixels"
)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Settings:
    """Process-wide settings read from the environment."""

    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    scopes: List[str] = field(default_factory=lambda: DEFAULT_SCOPES.split(","))
    host: str = "https://analyticsgtm.onrender.com"
    api_version: str = "2024-10"
    database_url: str = "sqlite:///data/shops.db"

    # Fallback credentials for single-store deployments
    default_shop: Optional[str] = None
    default_access_token: Optional[str] = None

    # Tracker defaults baked into the installed script
    event_prefix: str = ""
    item_id_format: str = "formatted"
    item_id_scope: str = "shopify"
    search_debounce_ms: int = 800

    log_level: str = "INFO"
    log_dir: str = "logs"
    port: int = 8080
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        Returns:
            Settings populated from the current process environment
        """
        scopes = os.getenv("SCOPES", DEFAULT_SCOPES)
        return cls(
            api_key=os.getenv("SHOPIFY_API_KEY"),
            api_secret=os.getenv("SHOPIFY_API_SECRET"),
            scopes=[s.strip() for s in scopes.split(",") if s.strip()],
            # RENDER_EXTERNAL_URL wins so a localhost HOST never leaks into production OAuth
            host=os.getenv("RENDER_EXTERNAL_URL") or os.getenv("HOST") or cls.host,
            api_version=os.getenv("SHOPIFY_API_VERSION", cls.api_version),
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            default_shop=os.getenv("SHOP") or None,
            default_access_token=os.getenv("ACCESS_TOKEN") or None,
            event_prefix=os.getenv("EVENT_PREFIX", ""),
            item_id_format=os.getenv("ITEM_ID_FORMAT", cls.item_id_format).lower(),
            item_id_scope=os.getenv("ITEM_ID_SCOPE", cls.item_id_scope),
            search_debounce_ms=int(os.getenv("SEARCH_DEBOUNCE_MS", str(cls.search_debounce_ms))),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            log_dir=os.getenv("LOG_DIR", cls.log_dir),
            port=int(os.getenv("PORT", str(cls.port))),
            debug=_env_bool("DEBUG"),
        )


settings = Settings.from_env()
