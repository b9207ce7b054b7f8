"""
Site Cache - Main FastAPI Application
Read-through cache in front of the Airtable REST API, one cache per site
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.cache import (
    CacheManager,
    UpstreamUnavailable,
    get_cache_manager,
    shutdown_cache_manager,
)
from app.routing import resolve_request
from config.settings import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Site Cache"


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Pending refreshes are abandoned; the next start reloads from snapshots
    shutdown_cache_manager(wait=False)


app = FastAPI(
    title=APP_NAME,
    description="Site-scoped stale-while-revalidate cache for a paginated REST API",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Snapshot artifacts are fetched by browsers for preloading
settings.snapshot_directory.mkdir(parents=True, exist_ok=True)
app.mount(
    "/public",
    StaticFiles(directory=str(settings.snapshot_directory)),
    name="public",
)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "upstream": settings.upstream_base_url}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats(manager: CacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return manager.get_stats()


@app.get("/v0/{path:path}")
def proxy_v0(
    path: str,
    request: Request,
    manager: CacheManager = Depends(get_cache_manager),
):
    """
    Serve an upstream GET through the site cache.

    Query parameters are forwarded except ``ref`` (site override) and
    ``refresh`` (``true`` bypasses the cache read).
    """
    resolved = resolve_request(
        path=f"v0/{path}",
        query_items=request.query_params.multi_items(),
        referer=request.headers.get("referer"),
        base_url=settings.upstream_base_url,
        default_site=settings.default_site,
    )

    try:
        result = manager.fetch(
            resolved.site,
            resolved.identifier,
            force_refresh=resolved.force_refresh,
        )
    except UpstreamUnavailable as e:
        logger.error(f"Upstream unavailable for site '{resolved.site}': {e}")
        return JSONResponse(
            {"error": {"type": "UPSTREAM_UNAVAILABLE", "message": str(e)}},
            status_code=e.status_code or 502,
        )

    return JSONResponse(
        result.payload,
        status_code=result.status_code,
        headers={"X-Cache": result.source.value},
    )
