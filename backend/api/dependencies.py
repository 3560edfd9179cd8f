"""
Dependency injection for the API service.
Provides the database, the job store and the dispatcher to route handlers.
"""
from __future__ import annotations

from typing import Optional

from shared.utils.database import DatabaseManager
from shared.utils.redis_manager import RedisManager

from processor.dispatcher import JobDispatcher
from processor.store import JobStore

# Module-level singletons, initialized at startup
_db: DatabaseManager | None = None
_redis: RedisManager | None = None
_store: JobStore | None = None
_dispatcher: JobDispatcher | None = None


def init_dependencies(
    db: DatabaseManager,
    store: JobStore,
    dispatcher: JobDispatcher,
    redis: Optional[RedisManager] = None,
) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _db, _redis, _store, _dispatcher
    _db = db
    _redis = redis
    _store = store
    _dispatcher = dispatcher


def get_db() -> DatabaseManager:
    """FastAPI dependency: returns the shared DatabaseManager."""
    if _db is None:
        raise RuntimeError("DatabaseManager not initialized. Call init_dependencies first.")
    return _db


def get_redis() -> Optional[RedisManager]:
    """FastAPI dependency: the RedisManager, or None when the job lease is disabled."""
    return _redis


def get_store() -> JobStore:
    """FastAPI dependency: returns the shared JobStore."""
    if _store is None:
        raise RuntimeError("JobStore not initialized. Call init_dependencies first.")
    return _store


def get_dispatcher() -> JobDispatcher:
    """FastAPI dependency: returns the process-wide JobDispatcher."""
    if _dispatcher is None:
        raise RuntimeError("JobDispatcher not initialized. Call init_dependencies first.")
    return _dispatcher
