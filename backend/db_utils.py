#!/usr/bin/env python3
"""
Database Utilities
Supports both pooled (Flask backend) and non-pooled (CLI) modes

Configuration:
    Set DB_USE_POOLING=true environment variable to enable pooling (for Flask)
    Leave unset or false for simple connections (for the CLI)
"""

import os
import logging
import time
import threading
from contextlib import contextmanager
from typing import Optional

import psycopg
from psycopg.rows import dict_row

# Pooling support is optional for the CLI
try:
    from psycopg_pool import ConnectionPool
    POOLING_AVAILABLE = True
except ImportError:
    POOLING_AVAILABLE = False
    ConnectionPool = None

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

def use_pooling() -> bool:
    """Pooling mode is read at call time so the app can enable it after import"""
    requested = os.environ.get('DB_USE_POOLING', 'false').lower() == 'true'
    if requested and not POOLING_AVAILABLE:
        logger.warning("Pooling requested but psycopg_pool not available. Falling back to simple mode.")
        return False
    return requested


def get_db_config() -> dict:
    return {
        'host': os.environ.get('DB_HOST', 'localhost'),
        'dbname': os.environ.get('DB_NAME', 'digqueue'),
        'user': os.environ.get('DB_USER', 'postgres'),
        'password': os.environ.get('DB_PASSWORD', ''),
        'port': os.environ.get('DB_PORT', '5432'),
    }


def get_connection_string() -> str:
    config = get_db_config()
    sslmode = os.environ.get('DB_SSLMODE', 'prefer')
    return (
        f"postgresql://{config['user']}:{config['password']}"
        f"@{config['host']}:{config['port']}/{config['dbname']}"
        f"?sslmode={sslmode}"
    )


# ============================================================================
# POOLING MODE (Backend)
# ============================================================================

pool: Optional[ConnectionPool] = None
pool_init_lock = threading.Lock()


def init_connection_pool(max_retries=3, retry_delay=2):
    """
    Initialize the connection pool (only used in pooling mode)

    Returns:
        bool: True if successful, False otherwise
    """
    if not use_pooling():
        logger.debug("Pooling not enabled, skipping pool initialization")
        return True

    global pool

    with pool_init_lock:
        if pool is not None:
            logger.debug("Connection pool already initialized")
            return True

        for attempt in range(max_retries):
            try:
                logger.info(f"Initializing connection pool (attempt {attempt + 1}/{max_retries})...")

                pool = ConnectionPool(
                    get_connection_string(),
                    min_size=1,
                    max_size=int(os.environ.get('DB_POOL_SIZE', '5')),
                    open=True,
                    timeout=30,
                    max_lifetime=1800,
                    max_idle=600,
                    kwargs={
                        'row_factory': dict_row,
                        'connect_timeout': 10,
                        'autocommit': False,
                        'prepare_threshold': None,
                    }
                )

                with pool.connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute("SELECT 1 as test")
                        cur.fetchone()
                logger.info("Connection pool initialized successfully")
                return True

            except Exception as e:
                logger.error(f"Connection pool initialization failed (attempt {attempt + 1}/{max_retries}): {e}")

                if pool is not None:
                    try:
                        pool.close()
                    except Exception as close_error:
                        logger.debug(f"Error closing failed pool: {close_error}")
                    pool = None

                if attempt < max_retries - 1:
                    wait_time = retry_delay * (1.5 ** attempt)
                    logger.info(f"Retrying in {wait_time:.1f} seconds...")
                    time.sleep(wait_time)
                else:
                    logger.error("Failed to initialize connection pool after all retries")
                    return False

        return False


def close_connection_pool():
    """Close the connection pool (only used in pooling mode)"""
    global pool

    with pool_init_lock:
        if pool:
            logger.info("Closing connection pool...")
            try:
                pool.close()
                logger.info("Connection pool closed")
            except Exception as e:
                logger.error(f"Error closing connection pool: {e}")
            pool = None


def get_pool_stats():
    """Get current connection pool statistics (only used in pooling mode)"""
    if pool is None:
        return None

    stats = pool.get_stats()
    return {
        'pool_size': stats.get('pool_size', 0),
        'pool_available': stats.get('pool_available', 0),
        'requests_waiting': stats.get('requests_waiting', 0)
    }


# ============================================================================
# UNIFIED CONNECTION MANAGER
# ============================================================================

def _create_connection():
    """Create a simple database connection (only used in simple mode)"""
    config = get_db_config()
    try:
        return psycopg.connect(
            **config,
            row_factory=dict_row,
            autocommit=False,
            prepare_threshold=None
        )
    except psycopg.OperationalError as e:
        logger.error(f"Failed to connect to database: {e}")
        logger.error(f"Connection details: host={config['host']}, "
                     f"port={config['port']}, database={config['dbname']}, "
                     f"user={config['user']}")
        raise


@contextmanager
def get_db_connection():
    """
    Get a database connection using the appropriate mode

    Returns:
        Database connection (context manager); committed on success,
        rolled back on error
    """
    if use_pooling():
        if pool is None:
            logger.info("Connection pool not initialized, initializing now...")
            if not init_connection_pool():
                raise RuntimeError("Failed to initialize connection pool")

        with pool.connection() as conn:
            yield conn
        return

    conn = _create_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        try:
            conn.rollback()
        except Exception as rollback_error:
            logger.error(f"Error rolling back transaction: {rollback_error}")
        raise
    finally:
        conn.close()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def execute_query(query, params=None, fetch_one=False, fetch_all=True):
    """
    Execute a query with proper error handling

    Args:
        query: SQL query string
        params: Query parameters tuple
        fetch_one: If True, return only first result
        fetch_all: If True, return all results (ignored if fetch_one is True)

    Returns:
        Query results or None
    """
    start_time = time.time()

    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)

                if fetch_one:
                    result = cur.fetchone()
                elif fetch_all:
                    result = cur.fetchall()
                else:
                    result = None

                logger.debug(f"Query executed in {time.time() - start_time:.3f}s")
                return result

    except psycopg.OperationalError as e:
        logger.error(f"Database operational error after {time.time() - start_time:.3f}s: {e}")
        raise
    except psycopg.Error as e:
        logger.error(f"Query error after {time.time() - start_time:.3f}s: {e}")
        raise


def execute_update(query, params=None):
    """
    Execute an INSERT/UPDATE/DELETE query

    Returns:
        Number of affected rows
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.rowcount
    except psycopg.Error as e:
        logger.error(f"Update execution error: {e}")
        raise
