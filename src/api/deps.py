"""
FastAPI Dependency Injection

Provides database connections for API endpoints.
"""

from typing import Generator

import psycopg2
from psycopg2.extras import RealDictCursor

from src.db.connection import get_connection_string


def get_db() -> Generator:
    """
    FastAPI dependency for database connections.

    Yields a connection with RealDictCursor for dict-style row access.
    Commits on success, rolls back on error, and always closes.
    Backfill storage also commits after each write, so a failure late in a
    run never undoes earlier call logs.
    """
    conn = psycopg2.connect(
        get_connection_string(),
        cursor_factory=RealDictCursor
    )
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
