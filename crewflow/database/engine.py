"""
crewflow.database.engine — Engine, Store Factory & Async Helper
================================================================

Crewflow's services are **synchronous**: each one takes a
:class:`~crewflow.database.store.DataStore` as its first argument and makes
a short sequence of blocking store and channel calls.  The Discord bot runs
on an ``asyncio`` event loop, so every service call from a cog goes through
:func:`run_db`, which ships the work to a thread pool::

    outcome = await run_db(crew_service.join, store, user_id, code)

The FastAPI layer uses plain ``def`` routes, which Starlette already runs on
its own thread pool.

Store selection (:func:`create_store`):

1. ``DATABASE_URL`` set → :class:`SqlStore` on a SQLAlchemy engine.
2. ``SUPABASE_URL`` + ``SUPABASE_KEY`` set → :class:`RestStore`.
3. Neither → ``RuntimeError``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine

from crewflow.database.models import Base
from crewflow.database.store import DataStore, SqlStore

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    PostgreSQL engines get a small bounded pool (``pool_timeout=10`` so a
    starved pool fails fast instead of hanging).  SQLite URLs are accepted
    for local development and use SQLAlchemy's defaults.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False)
    else:
        engine = create_engine(
            url,
            echo=False,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=10,
            pool_recycle=3600,
        )
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`crewflow.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained as a safety net for dev/test
        environments where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Store factory
# ---------------------------------------------------------------------------
def create_store() -> DataStore:
    """Pick a :class:`DataStore` implementation from the environment."""
    if os.getenv("DATABASE_URL"):
        engine = create_db_engine()
        init_db(engine)
        return SqlStore(engine)

    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_KEY")
    if supabase_url and supabase_key:
        from crewflow.database.rest_store import RestStore

        logger.info("Using PostgREST store → %s", supabase_url)
        return RestStore(supabase_url, supabase_key)

    raise RuntimeError(
        "No data store configured.  Set DATABASE_URL, or SUPABASE_URL and SUPABASE_KEY."
    )


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** service function on a background thread.

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the bot's event loop
    is never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
