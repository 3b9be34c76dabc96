import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import create_engine, Column, String, DateTime, JSON
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # SQLite connections are shared across FastAPI worker threads
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


engine = create_engine(settings.CACHE_DATABASE_URL, connect_args=_connect_args(settings.CACHE_DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


# Database Models
class CacheEntry(Base):
    __tablename__ = "local_cache"

    key = Column(String(100), primary_key=True, index=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


def init_db(bind=None):
    """Create the cache tables if they are missing."""
    Base.metadata.create_all(bind=bind or engine)


class LocalCacheStore:
    """
    Durable key -> JSON mapping that survives restarts.

    One entry per collection or singleton ("products", "auth_keys",
    "admin_creds", ...). Values are replaced whole, never patched.
    Storage failures are logged and never raised: a failed read is
    reported as absent and a failed write is dropped.
    """

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def read(self, key: str) -> Optional[Any]:
        db = self.session_factory()
        try:
            entry = db.get(CacheEntry, key)
            return entry.value if entry is not None else None
        except SQLAlchemyError as e:
            logger.error("Local cache read failed for %r: %s", key, e)
            return None
        finally:
            db.close()

    def write(self, key: str, value: Any) -> None:
        db = self.session_factory()
        try:
            entry = db.get(CacheEntry, key)
            if entry:
                entry.value = value
                entry.updated_at = _utcnow()
            else:
                db.add(CacheEntry(key=key, value=value))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Local cache write failed for %r: %s", key, e)
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self.session_factory()
        try:
            db.query(CacheEntry).filter(CacheEntry.key == key).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Local cache delete failed for %r: %s", key, e)
        finally:
            db.close()
