"""
Key-Value Persistence
Opaque JSON key-value store behind the pipeline's persisted keys, backed by
SQLAlchemy (SQLite or PostgreSQL) or by memory for tests
"""

import asyncio
import copy
import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterable, Optional
from urllib.parse import urlparse

from sqlalchemy import JSON, Column, DateTime, String, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from config import DATABASE_URL

logger = logging.getLogger(__name__)

# Persisted keys
CONFIG_KEY = "stableguard_config"
METRICS_KEY = "stableguard_metrics"
EVENTS_KEY = "stableguard_events"
LAST_UPDATE_KEY = "stableguard_last_update"
RECORD_INDEX_KEY = "stableguard_record_index"

SUPPORTED_SCHEMES = ["postgresql", "postgresql+psycopg2", "sqlite"]


def risk_key(asset_id: str) -> str:
    return f"stableguard_risk_{asset_id}"


def strategy_key(asset_id: str) -> str:
    return f"stableguard_strategy_{asset_id}"


def record_key(record_id: str) -> str:
    return f"stableguard_record_{record_id}"


class StorageError(Exception):
    """Raised when the backing store cannot be read or written"""

    pass


class KeyValueStore(ABC):
    """Async get/set/remove over JSON-compatible values"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Value for key, or None when absent"""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    async def set_many(self, items: Dict[str, Any]) -> None:
        for key, value in items.items():
            await self.set(key, value)

    @abstractmethod
    async def remove(self, *keys: str) -> None:
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "backend": type(self).__name__}

    def close(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    """In-process store; values are deep-copied to mimic serialization"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self.data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = copy.deepcopy(value)

    async def remove(self, *keys: str) -> None:
        for key in keys:
            self.data.pop(key, None)


Base = declarative_base()


class StoreEntry(Base):
    """One persisted key"""

    __tablename__ = "stableguard_entries"

    key = Column(String(200), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True,
    )

    def __repr__(self):
        return f"<StoreEntry(key='{self.key}')>"


def validate_database_url(url: str) -> bool:
    """Validate database URL format"""
    try:
        parsed = urlparse(url)
        if parsed.scheme not in SUPPORTED_SCHEMES:
            logger.error(f"Unsupported database scheme: {parsed.scheme}")
            return False
        return True
    except Exception as e:
        logger.error(f"Invalid database URL format: {e}")
        return False


def create_database_engine(url: str, echo: bool = False) -> Engine:
    """Create engine with pool settings for the database type"""
    if not validate_database_url(url):
        raise StorageError("Invalid database configuration")

    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        # A single shared connection keeps in-memory databases alive
        engine_kwargs: Dict[str, Any] = {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }
    else:
        engine_kwargs = {
            "poolclass": QueuePool,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "connect_args": {"connect_timeout": 10},
        }

    engine_kwargs["echo"] = echo

    try:
        engine = create_engine(url, **engine_kwargs)
    except Exception as e:
        logger.error(f"Failed to create database engine: {e}")
        raise StorageError(f"Failed to create database engine: {e}") from e

    logger.info(f"Database engine created for {parsed.scheme}")
    return engine


class SqlStore(KeyValueStore):
    """Key-value store on a single SQLAlchemy table"""

    def __init__(self, database_url: str = DATABASE_URL, echo: bool = False):
        self.database_url = database_url
        self.engine = create_database_engine(database_url, echo=echo)
        self._sessions = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )
        self._lock = threading.Lock()
        self.create_tables()

    def create_tables(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Database error while creating tables: {e}")
            raise StorageError(f"Failed to create tables: {e}") from e

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Session with automatic commit on success and rollback on error

        Usage:
            with store.session() as session:
                session.add(entry)
        """
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise StorageError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def get(self, key: str) -> Optional[Any]:
        return await self._run(self._get, key)

    async def set(self, key: str, value: Any) -> None:
        await self._run(self._set_many, {key: value})

    async def set_many(self, items: Dict[str, Any]) -> None:
        await self._run(self._set_many, items)

    async def remove(self, *keys: str) -> None:
        if not keys:
            return
        await self._run(self._remove, keys)

    async def _run(self, func, *args) -> Any:
        # Session work runs off the event loop, one call at a time
        return await asyncio.to_thread(self._locked, func, *args)

    def _locked(self, func, *args) -> Any:
        with self._lock:
            return func(*args)

    def _get(self, key: str) -> Optional[Any]:
        with self.session() as session:
            entry = session.get(StoreEntry, key)
            return None if entry is None else entry.value

    def _set_many(self, items: Dict[str, Any]) -> None:
        # One transaction for the whole batch
        with self.session() as session:
            for key, value in items.items():
                self._upsert(session, key, value)

    def _remove(self, keys: Iterable[str]) -> None:
        with self.session() as session:
            session.query(StoreEntry).filter(StoreEntry.key.in_(list(keys))).delete(
                synchronize_session=False
            )

    def keys(self, prefix: str = "") -> Iterable[str]:
        with self._lock, self.session() as session:
            query = session.query(StoreEntry.key)
            if prefix:
                query = query.filter(StoreEntry.key.startswith(prefix))
            return [row[0] for row in query.order_by(StoreEntry.key).all()]

    def health_check(self) -> Dict[str, Any]:
        """Connectivity check with response time"""
        start_time = time.time()
        try:
            with self._lock, self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {
                "healthy": True,
                "backend": "sql",
                "dialect": self.engine.dialect.name,
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "healthy": False,
                "backend": "sql",
                "error": str(e),
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
            }

    def close(self) -> None:
        logger.info("Cleaning up database connections...")
        self.engine.dispose()

    @staticmethod
    def _upsert(session: Session, key: str, value: Any) -> None:
        entry = session.get(StoreEntry, key)
        if entry is None:
            session.add(StoreEntry(key=key, value=value))
        else:
            entry.value = value
