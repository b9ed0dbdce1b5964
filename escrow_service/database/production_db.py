#!/usr/bin/env python3
"""
🗄️ Production Database Manager for the Escrow Service
SQLite file or PostgreSQL connection pool, with versioned schema migrations
"""

import sqlite3
import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor
import threading
import time
import os
from datetime import datetime, timezone
from typing import Dict, List, Any, Union
from contextlib import contextmanager

from ..errors import DatabaseError, ConnectionPoolError
from ..utils.production_logger import LoggerFactory, log_errors
from ..config.production import get_config

LATEST_SCHEMA_VERSION = 1

INITIAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS escrow_transactions (
    id TEXT PRIMARY KEY,
    product_id TEXT,
    product_name TEXT NOT NULL,
    buyer_id TEXT NOT NULL,
    buyer_username TEXT,
    seller_id TEXT NOT NULL,
    seller_username TEXT,
    amount BIGINT NOT NULL CHECK (amount > 0),
    fee BIGINT NOT NULL DEFAULT 0,
    empire_elite_fee BIGINT DEFAULT 0,
    status TEXT DEFAULT 'pending' CHECK (status IN ('pending', 'funded', 'completed', 'disputed', 'cancelled')),
    buyer_address TEXT NOT NULL,
    seller_address TEXT NOT NULL,
    escrow_address TEXT NOT NULL,
    funded_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS escrow_messages (
    id TEXT PRIMARY KEY,
    transaction_id TEXT NOT NULL REFERENCES escrow_transactions (id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    username TEXT,
    content TEXT NOT NULL,
    is_system BOOLEAN DEFAULT FALSE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS fee_settings (
    id TEXT PRIMARY KEY,
    empire_elite_fee DOUBLE PRECISION DEFAULT 0.0,
    verified_vendor_fee DOUBLE PRECISION DEFAULT 3.0,
    regular_vendor_fee DOUBLE PRECISION DEFAULT 7.0,
    updated_at TEXT NOT NULL,
    updated_by TEXT
);

CREATE TABLE IF NOT EXISTS shell_wallets (
    id TEXT PRIMARY KEY,
    address TEXT NOT NULL,
    balance BIGINT NOT NULL DEFAULT 0 CHECK (balance >= 0),
    created_at TEXT NOT NULL,
    last_used_at TEXT NOT NULL,
    is_active BOOLEAN DEFAULT TRUE,
    cycle_number BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS fee_transactions (
    id TEXT PRIMARY KEY,
    source_transaction_id TEXT NOT NULL,
    vendor_id TEXT NOT NULL,
    amount BIGINT NOT NULL CHECK (amount > 0),
    shell_wallet_id TEXT NOT NULL REFERENCES shell_wallets (id),
    status TEXT NOT NULL DEFAULT 'pending',
    mixing_rounds INTEGER NOT NULL,
    delay_minutes INTEGER NOT NULL,
    destination_address TEXT,
    timestamp_ms BIGINT NOT NULL,
    created_at TEXT NOT NULL,
    due_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_escrow_buyer ON escrow_transactions (buyer_id);
CREATE INDEX IF NOT EXISTS idx_escrow_seller ON escrow_transactions (seller_id);
CREATE INDEX IF NOT EXISTS idx_escrow_created_at ON escrow_transactions (created_at);
CREATE INDEX IF NOT EXISTS idx_escrow_messages_transaction ON escrow_messages (transaction_id);
CREATE INDEX IF NOT EXISTS idx_fee_settings_updated_at ON fee_settings (updated_at);
CREATE INDEX IF NOT EXISTS idx_shell_wallets_active ON shell_wallets (is_active, balance);
CREATE INDEX IF NOT EXISTS idx_fee_transactions_vendor ON fee_transactions (vendor_id);
CREATE INDEX IF NOT EXISTS idx_fee_transactions_status ON fee_transactions (status);
"""


class ProductionDatabase:
    """Database manager shared by the SQL-backed stores."""

    def __init__(self, config=None):
        self.config = config or get_config()
        self.logger = LoggerFactory.get_database_logger()
        self._connection_pool = None
        self._sqlite_connection = None
        self._lock = threading.RLock()

        self._initialize_database()

    @property
    def dialect(self) -> str:
        return 'sqlite' if self.config.database.use_sqlite else 'postgresql'

    def _initialize_database(self):
        """Initialize database connection and schema."""
        try:
            if self.config.database.use_sqlite:
                self._initialize_sqlite()
            else:
                self._initialize_postgresql()

            self._ensure_schema()
            self.logger.info("Database initialized successfully", database_type=self.dialect)

        except Exception as e:
            self.logger.error("Failed to initialize database", error=str(e))
            raise DatabaseError(f"Database initialization failed: {e}") from e

    def _initialize_sqlite(self):
        """Initialize SQLite database."""
        sqlite_dir = os.path.dirname(self.config.database.sqlite_path)
        if sqlite_dir:
            os.makedirs(sqlite_dir, exist_ok=True)

        self._sqlite_connection = sqlite3.connect(
            self.config.database.sqlite_path,
            check_same_thread=False,
            timeout=self.config.database.connection_timeout
        )
        self._sqlite_connection.row_factory = sqlite3.Row

        self._sqlite_connection.execute("PRAGMA journal_mode=WAL")
        self._sqlite_connection.execute("PRAGMA synchronous=NORMAL")
        self._sqlite_connection.execute("PRAGMA foreign_keys=ON")
        self._sqlite_connection.commit()

    def _initialize_postgresql(self):
        """Initialize PostgreSQL connection pool."""
        try:
            self._connection_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=self.config.database.max_connections,
                host=self.config.database.host,
                port=self.config.database.port,
                database=self.config.database.name,
                user=self.config.database.user,
                password=self.config.database.password,
                sslmode=self.config.database.ssl_mode,
                connect_timeout=self.config.database.connection_timeout,
                cursor_factory=RealDictCursor
            )
        except Exception as e:
            self.logger.error("Failed to create PostgreSQL connection pool", error=str(e))
            raise ConnectionPoolError(f"Connection pool creation failed: {e}") from e

    @contextmanager
    def get_connection(self):
        """Get database connection with automatic cleanup."""
        if self.config.database.use_sqlite:
            # one shared connection; serialize access to it
            with self._lock:
                yield self._sqlite_connection
            return

        connection = self._connection_pool.getconn()
        try:
            if connection.closed:
                self._connection_pool.putconn(connection, close=True)
                connection = self._connection_pool.getconn()
            yield connection
        except Exception as e:
            connection.rollback()
            self.logger.error("Database connection error", error=str(e))
            raise
        finally:
            self._connection_pool.putconn(connection)

    @contextmanager
    def get_cursor(self, commit=True):
        """Get database cursor with transaction management."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                yield cursor
                if commit:
                    conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error("Database transaction error", error=str(e))
                raise
            finally:
                cursor.close()

    def _adapt_query(self, query: str) -> str:
        """Queries are written with '?' placeholders; psycopg2 expects '%s'."""
        if self.config.database.use_sqlite:
            return query
        return query.replace('?', '%s')

    def _ensure_schema(self):
        """Ensure database schema is up to date."""
        self._run_script(
            "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
        )
        schema_version = self._get_schema_version()

        if schema_version < LATEST_SCHEMA_VERSION:
            self.logger.info("Running database migrations",
                             current_version=schema_version,
                             target_version=LATEST_SCHEMA_VERSION)
            self._run_migrations(schema_version)

    def _get_schema_version(self) -> int:
        """Get current schema version."""
        with self.get_cursor() as cursor:
            cursor.execute("SELECT MAX(version) AS version FROM schema_version")
            result = cursor.fetchone()
            return (result['version'] or 0) if result else 0

    def _get_migrations(self, from_version: int) -> List[Dict]:
        """Get migration scripts newer than ``from_version``."""
        migrations = []

        if from_version < 1:
            migrations.append({'version': 1, 'sql': INITIAL_SCHEMA})

        return migrations

    def _run_migrations(self, from_version: int):
        """Run database migrations."""
        for migration in self._get_migrations(from_version):
            try:
                self.logger.info("Running migration", migration_version=migration['version'])
                self._run_script(migration['sql'])
                self.execute_query(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (migration['version'], datetime.now(timezone.utc).isoformat())
                )
                self.logger.info("Migration completed", migration_version=migration['version'])

            except Exception as e:
                self.logger.error("Migration failed",
                                  migration_version=migration['version'],
                                  error=str(e))
                raise DatabaseError(f"Migration {migration['version']} failed: {e}") from e

    def _run_script(self, sql: str):
        """Execute a multi-statement script."""
        if self.config.database.use_sqlite:
            with self.get_connection() as conn:
                conn.executescript(sql)
                conn.commit()
        else:
            with self.get_cursor() as cursor:
                cursor.execute(sql)

    @log_errors("escrow.database")
    def execute_query(self, query: str, params: tuple = None, fetch_one: bool = False,
                      fetch_all: bool = False) -> Union[Dict[str, Any], List[Dict[str, Any]], int, None]:
        """Execute a database query; rows come back as plain dicts."""
        start_time = time.time()

        try:
            with self.get_cursor() as cursor:
                cursor.execute(self._adapt_query(query), params or ())

                if fetch_one:
                    row = cursor.fetchone()
                    result = dict(row) if row else None
                elif fetch_all:
                    result = [dict(row) for row in cursor.fetchall()]
                else:
                    result = cursor.rowcount

                query_time = time.time() - start_time
                self.logger.debug("Query executed",
                                  query=query[:100],
                                  execution_time_ms=query_time * 1000)

                return result

        except Exception as e:
            query_time = time.time() - start_time
            self.logger.error("Query execution failed",
                              query=query[:100],
                              error=str(e),
                              execution_time_ms=query_time * 1000)
            raise DatabaseError(f"Query execution failed: {e}") from e

    def get_health_status(self) -> Dict[str, Any]:
        """Run a trivial query and report connectivity."""
        try:
            self.execute_query("SELECT 1 AS ok", fetch_one=True)
            return {'db_status': 'healthy', 'database_type': self.dialect,
                    'last_check_at': datetime.now(timezone.utc).isoformat()}
        except DatabaseError as e:
            return {'db_status': 'unhealthy', 'database_type': self.dialect, 'error': str(e)}

    def close(self):
        """Close database connections."""
        if self._connection_pool:
            self._connection_pool.closeall()

        if self._sqlite_connection:
            self._sqlite_connection.close()

        self.logger.info("Database connections closed")
