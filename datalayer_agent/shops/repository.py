"""
Shop credential repository.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .database import DatabaseManager, Shop, db_manager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShopRecord:
    """Detached copy of a stored credential."""
    id: int
    shop: str
    access_token: str
    scope: Optional[str]
    installed_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Shop) -> "ShopRecord":
        return cls(
            id=row.id,
            shop=row.shop,
            access_token=row.access_token,
            scope=row.scope,
            installed_at=row.installed_at,
            updated_at=row.updated_at,
        )


class ShopRepository:
    """Upsert/lookup/delete of shop credentials."""

    def __init__(self, manager: Optional[DatabaseManager] = None):
        self.db_manager = manager or db_manager

    def get_session(self) -> Session:
        """Get database session."""
        return self.db_manager.get_session()

    def save_shop(self, shop: str, access_token: str, scope: str = "") -> ShopRecord:
        """
        Insert or update a shop's credentials.

        Args:
            shop: Shop domain
            access_token: Offline Admin API token
            scope: Granted scopes (comma separated)

        Returns:
            The stored record
        """
        session = self.get_session()
        try:
            row = session.query(Shop).filter_by(shop=shop).first()
            now = datetime.utcnow()
            if row is None:
                row = Shop(shop=shop, access_token=access_token, scope=scope, installed_at=now, updated_at=now)
                session.add(row)
                logger.info(f"Saved credentials for new shop: {shop}")
            else:
                row.access_token = access_token
                row.scope = scope
                row.updated_at = now
                logger.info(f"Updated credentials for shop: {shop}")
            session.commit()
            return ShopRecord.from_row(row)
        except Exception as e:
            session.rollback()
            logger.error(f"Error saving shop {shop}: {e}")
            raise
        finally:
            session.close()

    def get_shop(self, shop: str) -> Optional[ShopRecord]:
        session = self.get_session()
        try:
            row = session.query(Shop).filter_by(shop=shop).first()
            return ShopRecord.from_row(row) if row else None
        finally:
            session.close()

    def delete_shop(self, shop: str) -> bool:
        """
        Delete a shop's credentials (on uninstall).

        Returns:
            True if a row was deleted
        """
        session = self.get_session()
        try:
            deleted = session.query(Shop).filter_by(shop=shop).delete()
            session.commit()
            if deleted:
                logger.info(f"Deleted credentials for shop: {shop}")
            return deleted > 0
        except Exception as e:
            session.rollback()
            logger.error(f"Error deleting shop {shop}: {e}")
            raise
        finally:
            session.close()

    def get_all_shops(self) -> List[ShopRecord]:
        session = self.get_session()
        try:
            return [ShopRecord.from_row(row) for row in session.query(Shop).order_by(Shop.installed_at).all()]
        finally:
            session.close()

    def shop_exists(self, shop: str) -> bool:
        session = self.get_session()
        try:
            return session.query(Shop.id).filter_by(shop=shop).first() is not None
        finally:
            session.close()


shop_repository = ShopRepository()
