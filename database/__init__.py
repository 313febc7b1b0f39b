"""Database module for managing connections to PostgreSQL.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
"""

import json
import logging
import ssl
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any, AsyncIterator
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from .exceptions import DatabaseError, DatabaseSchemaError, DatabaseNotInitializedError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

# sslmode values that require an encrypted connection
SSL_MODES = ('require', 'verify-ca', 'verify-full')

def _get_ssl_context(mode: str) -> ssl.SSLContext:
    """Create SSL context for hosted Postgres connections."""
    ssl_context = ssl.create_default_context()
    if mode == 'require':
        # libpq semantics: encrypt but do not verify the server certificate
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
            'application_name': 'marketplace-escrow'
        }
    }

    mode = params.get('sslmode', ['prefer'])[0]
    if mode in SSL_MODES:
        kwargs['ssl'] = _get_ssl_context(mode)

    return kwargs

async def _init_connection(conn) -> None:
    """Decode JSON/JSONB columns to Python objects on every pooled connection."""
    for type_name in ('json', 'jsonb'):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema='pg_catalog'
        )

def _strip_query(db_url: str) -> str:
    """Drop query parameters that asyncpg handles through kwargs."""
    return db_url.split('?', 1)[0]

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
    max_tries=5
)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database if it doesn't exist.

    Args:
        db_url: Database connection URL

    Raises:
        Exception: If database creation fails after retries
    """
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/') or 'postgres'
    if db_name == 'postgres':
        return

    # Connect to the maintenance database
    base_url = parsed._replace(path='/postgres', query='').geturl()
    logger.info(f"Connecting to postgres to create {db_name} if needed")

    try:
        conn = await asyncpg.connect(base_url, **_get_connection_kwargs(db_url))
    except asyncpg.exceptions.InvalidAuthorizationSpecificationError as e:
        # Managed databases often forbid the maintenance database
        logger.warning(f"Skipping database creation check: {e}")
        return

    try:
        exists = await conn.fetchval(
            'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
            db_name
        )

        if not exists:
            await conn.execute(f'CREATE DATABASE "{db_name}"')
            logger.info(f"Created database {db_name}")
    except asyncpg.exceptions.InsufficientPrivilegeError as e:
        logger.warning(f"Cannot create database {db_name}: {e}")
    finally:
        await conn.close()

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If schema migrations fail
    """
    global _pool, _schema_manager

    if _pool:
        return _pool

    try:
        # Import here to avoid circular imports
        from config import settings_conf

        url = db_url or settings_conf.get('db_url')
        if not url:
            raise ValueError("Database URL not provided")

        await create_database_if_not_exists(url)

        _pool = await asyncpg.create_pool(
            _strip_query(url),
            min_size=2,
            max_size=20,
            max_queries=10000,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            init=_init_connection,
            **_get_connection_kwargs(url)
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize()
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        if _pool:
            await _pool.close()
            _pool = None
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Also used as a FastAPI dependency.

    Returns:
        The connection pool

    Raises:
        DatabaseNotInitializedError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise DatabaseNotInitializedError("Failed to initialize database pool")
    return _pool

@asynccontextmanager
async def acquire(pool, conn=None) -> AsyncIterator[asyncpg.Connection]:
    """Yield ``conn`` when given, otherwise a connection from ``pool``.

    Lets manager methods join a transaction that the caller already opened.
    """
    if conn is not None:
        yield conn
        return
    async with pool.acquire() as new_conn:
        yield new_conn

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Export public interface
__all__ = [
    'init_db',
    'get_pool',
    'acquire',
    'close',
    'DatabaseError',
    'DatabaseSchemaError',
    'DatabaseNotInitializedError'
]
