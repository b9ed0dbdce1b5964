"""
Backend selection for the transaction and wallet stores.

The backend is an explicit configuration value (``ESCROW_DB_BACKEND``) read
once; ``get_stores`` caches the result for the life of the process.
"""

import threading
from typing import NamedTuple, Optional

from ..errors import BackendUnavailableError, DatabaseError
from ..utils.production_logger import LoggerFactory
from .memory_store import InMemoryTransactionStore, InMemoryWalletStore
from .stores import TransactionStore, WalletStore

__all__ = [
    'StoreBundle', 'TransactionStore', 'WalletStore',
    'create_stores', 'get_stores', 'reset_stores',
]


class StoreBundle(NamedTuple):
    transactions: TransactionStore
    wallets: WalletStore
    backend: str
    database: Optional[object] = None

    def close(self):
        if self.database is not None:
            self.database.close()


def _memory_bundle() -> StoreBundle:
    return StoreBundle(InMemoryTransactionStore(), InMemoryWalletStore(), 'memory')


def create_stores(config) -> StoreBundle:
    """Open the configured backend, falling back to memory when allowed."""
    logger = LoggerFactory.get_database_logger()
    backend = config.database.backend

    if not config.database.is_durable:
        logger.warning("No durable backend configured; using in-memory stores")
        return _memory_bundle()

    # imported lazily so the memory backend never needs a database driver loaded
    from .production_db import ProductionDatabase
    from .sql_store import SqlTransactionStore, SqlWalletStore

    try:
        database = ProductionDatabase(config)
    except DatabaseError as e:
        if not config.database.allow_fallback:
            raise BackendUnavailableError(f"{backend} backend unavailable: {e}") from e
        logger.error("Durable backend unavailable; falling back to in-memory stores",
                     backend=backend, error=str(e))
        return _memory_bundle()

    logger.info("Using durable stores", backend=backend)
    return StoreBundle(SqlTransactionStore(database), SqlWalletStore(database), backend, database)


_stores: Optional[StoreBundle] = None
_stores_lock = threading.Lock()


def get_stores(config=None) -> StoreBundle:
    """Process-wide stores, created on first use."""
    global _stores

    if _stores is None:
        with _stores_lock:
            if _stores is None:
                if config is None:
                    from ..config.production import get_config
                    config = get_config()
                _stores = create_stores(config)

    return _stores


def reset_stores():
    global _stores
    with _stores_lock:
        if _stores is not None:
            _stores.close()
        _stores = None
