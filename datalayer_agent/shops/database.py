"""
Credential store: one row per installed shop.
"""

import os
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import settings

Base = declarative_base()


class Shop(Base):
    """An installed shop and its offline Admin API token."""
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), unique=True, nullable=False, index=True)
    access_token = Column(Text, nullable=False)
    scope = Column(Text, nullable=True)
    installed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy database URL. If None, uses DATABASE_URL
                (default ``sqlite:///data/shops.db``).
        """
        if database_url is None:
            database_url = settings.database_url

        # Handle postgres:// to postgresql:// for SQLAlchemy 1.4+
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        self.url = make_url(database_url)

        engine_kwargs = {
            "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
            "pool_pre_ping": True,
        }
        if self.url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine)

    def create_tables(self):
        """Create all database tables (and the sqlite data directory)."""
        if self.url.get_backend_name() == "sqlite" and self.url.database not in (None, "", ":memory:"):
            directory = os.path.dirname(self.url.database)
            if directory:
                os.makedirs(directory, exist_ok=True)
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        """Drop all database tables (use with caution!)."""
        Base.metadata.drop_all(bind=self.engine)

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()


# Global database manager instance
db_manager = DatabaseManager()
