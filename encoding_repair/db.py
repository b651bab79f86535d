"""
Store access for scan and repair passes.
"""

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings

logger = logging.getLogger(__name__)


class StoreUnavailableError(RuntimeError):
    """The store could not be opened; nothing was scanned."""


def make_engine(url: str) -> Engine:
    # Convert postgresql:// to postgresql+psycopg:// for psycopg v3 compatibility
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)

    engine = create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before use
        echo=False,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _keep_undecodable_text)
    return engine


def _text_or_bytes(raw: bytes):
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw


def _keep_undecodable_text(dbapi_connection, connection_record):
    # sqlite3 raises on TEXT that is not UTF-8, which would abort a whole
    # table read; hand such values over as bytes instead
    dbapi_connection.text_factory = _text_or_bytes


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return make_engine(get_settings().database_url)


@contextmanager
def connect(engine: Engine) -> Iterator[Connection]:
    """
    One connection for a whole pass, released on every exit path.

    Failing to open it raises StoreUnavailableError; errors raised while it
    is in use propagate unchanged.
    """
    try:
        conn = engine.connect()
    except SQLAlchemyError as e:
        logger.error(f"Cannot open store {engine.url.render_as_string(hide_password=True)}: {e}")
        raise StoreUnavailableError(f"Cannot open store: {e}") from e

    logger.debug("Store connection opened")
    try:
        yield conn
    finally:
        conn.close()
        logger.debug("Store connection closed")
