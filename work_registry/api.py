"""
FastAPI application exposing the delivery API.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.base import get_db, init_database
from .delivery import AgentNotFoundError, WorkDeliveryService
from .logging_config import configure_logging
from .pagination import MAX_ORDINAL, InvalidCursorError
from .schemas import WorkItem, WorkPage
from .signing import HmacCredentialIssuer, SigningError
from .url_cache import SignedUrlCache

logger = structlog.get_logger()

settings = get_settings()


def build_url_cache(settings: Settings) -> SignedUrlCache:
    """Create the process-wide signed URL cache from settings."""
    issuer = HmacCredentialIssuer(
        secret_key=settings.secret_key, base_url=settings.storage_base_url
    )
    return SignedUrlCache(
        issuer,
        default_ttl=settings.signed_url_ttl_seconds,
        sweep_probability=settings.signed_url_sweep_probability,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging()
    logger.info("starting_work_registry", environment=settings.environment)

    try:
        init_database()
        logger.info("database_initialized")
    except SQLAlchemyError as e:
        logger.error("database_init_failed", error=str(e))
        raise

    app.state.url_cache = build_url_cache(settings)

    yield

    app.state.url_cache.clear()
    logger.info("shutdown_complete")


app = FastAPI(
    title="Work Registry",
    description="Catalog sync and delivery for agent works",
    version=importlib.metadata.version("work-registry"),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


def get_url_cache(request: Request) -> SignedUrlCache:
    """Return the application's signed URL cache, creating it on first use."""
    cache = getattr(request.app.state, "url_cache", None)
    if cache is None:
        cache = build_url_cache(settings)
        request.app.state.url_cache = cache
    return cache


def get_delivery_service(
    db: Session = Depends(get_db),
    url_cache: SignedUrlCache = Depends(get_url_cache),
) -> WorkDeliveryService:
    return WorkDeliveryService(db, url_cache)


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "message": message})


# Health and Info Endpoints
@app.get("/healthz", tags=["system"])
def healthz(db: Session = Depends(get_db)) -> dict:
    """Health check endpoint; reports whether the catalog is reachable."""
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.warning("healthz_db_check_failed", error=str(e))
        db_ok = False
    return {"ok": db_ok, "db": db_ok}


@app.get("/version", tags=["system"])
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("work-registry")}


# Delivery Endpoints
@app.get(
    "/agents/{handle}/works",
    response_model=WorkPage,
    response_model_by_alias=True,
    tags=["works"],
)
def list_works(
    handle: str,
    cursor: Optional[str] = None,
    limit: Optional[int] = Query(None, description="Clamped to [1, 200]"),
    service: WorkDeliveryService = Depends(get_delivery_service),
) -> WorkPage:
    """List an agent's active public works, newest ordinal first."""
    try:
        return service.list_works(handle, cursor=cursor, limit=limit)
    except InvalidCursorError as e:
        raise _error(400, "invalid_cursor", str(e))
    except AgentNotFoundError as e:
        raise _error(404, "agent_not_found", str(e))
    except SigningError as e:
        logger.error("signing_failed", handle=handle, error=str(e))
        raise _error(502, "signing_failed", "Could not issue retrieval URLs")
    except SQLAlchemyError as e:
        logger.error("catalog_query_failed", handle=handle, error=str(e))
        raise _error(503, "catalog_unavailable", "Work catalog unavailable")


@app.get(
    "/agents/{handle}/works/{ordinal}",
    response_model=WorkItem,
    response_model_by_alias=True,
    tags=["works"],
)
def get_work(
    handle: str,
    ordinal: int,
    service: WorkDeliveryService = Depends(get_delivery_service),
) -> WorkItem:
    """Get one active public work by ordinal."""
    if not 1 <= ordinal <= MAX_ORDINAL:
        raise _error(404, "work_not_found", f"No public work #{ordinal} for {handle}")
    try:
        item = service.get_work(handle, ordinal)
    except AgentNotFoundError as e:
        raise _error(404, "agent_not_found", str(e))
    except SigningError as e:
        logger.error("signing_failed", handle=handle, ordinal=ordinal, error=str(e))
        raise _error(502, "signing_failed", "Could not issue retrieval URL")
    except SQLAlchemyError as e:
        logger.error("catalog_query_failed", handle=handle, error=str(e))
        raise _error(503, "catalog_unavailable", "Work catalog unavailable")

    if item is None:
        raise _error(404, "work_not_found", f"No public work #{ordinal} for {handle}")
    return item
