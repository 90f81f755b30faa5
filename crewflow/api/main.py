"""
crewflow.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn crewflow.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from crewflow import __version__  # noqa: E402
from crewflow.api.deps import get_store  # noqa: E402
from crewflow.api.routes.checkins import router as checkins_router  # noqa: E402
from crewflow.api.routes.crews import router as crews_router  # noqa: E402
from crewflow.api.routes.events import router as events_router  # noqa: E402
from crewflow.api.routes.flow import router as flow_router  # noqa: E402
from crewflow.api.routes.preferences import router as preferences_router  # noqa: E402
from crewflow.api.routes.tokens import router as tokens_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — open the data store."""
    store = get_store()
    logger.info("Crewflow API started — store ready (%s)", type(store).__name__)
    yield
    logger.info("Crewflow API shutting down")


app = FastAPI(
    title="Crewflow API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(flow_router, prefix="/api")
app.include_router(crews_router, prefix="/api")
app.include_router(checkins_router, prefix="/api")
app.include_router(events_router, prefix="/api")
app.include_router(preferences_router, prefix="/api")
app.include_router(tokens_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
