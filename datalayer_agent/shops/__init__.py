"""
Installed shops: credential store, OAuth and platform webhooks.
"""

from .database import Base, DatabaseManager, Shop, db_manager
from .repository import ShopRecord, ShopRepository, shop_repository

__all__ = [
    "Base",
    "DatabaseManager",
    "Shop",
    "db_manager",
    "ShopRecord",
    "ShopRepository",
    "shop_repository",
]
