"""
PostgreSQL connection helper for assetflow.

Repositories open a short-lived psycopg connection per operation and commit
explicitly; row-level atomicity (compare-and-swap, ON CONFLICT) is expressed
in SQL rather than with application locks.
"""

import psycopg
from loguru import logger

from assetflow_core.config import settings


def get_db_connection():
    """
    Get a PostgreSQL database connection.

    Usage:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM assets WHERE id = %s", (asset_id,))

    Returns:
        psycopg.Connection: A PostgreSQL connection.
    """
    try:
        conn = psycopg.connect(settings.POSTGRES_DSN)
        logger.debug("Connected to PostgreSQL")
        return conn
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise
