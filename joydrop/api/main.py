"""
joydrop.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn joydrop.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from joydrop import __version__  # noqa: E402
from joydrop.api.deps import get_engine  # noqa: E402
from joydrop.api.errors import install_error_handlers  # noqa: E402
from joydrop.api.routes.accounts import router as accounts_router  # noqa: E402
from joydrop.api.routes.joydrops import router as joydrops_router  # noqa: E402
from joydrop.api.routes.organizations import router as organizations_router  # noqa: E402
from joydrop.api.routes.public import router as public_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

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
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    logger.info("Joydrop API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Joydrop API shutting down")


app = FastAPI(
    title="Joydrop API",
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

install_error_handlers(app)

# Mount routers
app.include_router(public_router, prefix="/api")
app.include_router(accounts_router, prefix="/api")
app.include_router(joydrops_router, prefix="/api")
app.include_router(organizations_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
