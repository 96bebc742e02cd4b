"""
EPG Proxy - Main FastAPI Application
Channel+date schedule queries and document downloads over a cached EPG source
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from epg_proxy.errors import FetchError
from epg_proxy.lookup import close_lookup, get_lookup
from epg_proxy.schemas import (
    DiypResponse,
    ErrorResponse,
    NotFoundResponse,
    StatusResponse,
)
from config.settings import settings

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger("epg.api")

# Version tracking
APP_VERSION = "v1.0.0"
APP_NAME = "EPG Proxy"

MISSING_PARAMS_MESSAGE = "Missing params: ch (or channel/id) or date"
NOT_CONFIGURED_MESSAGE = "EPG_URL is not configured. Set it in the environment or .env file."


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the fetcher's worker pool and HTTP session on shutdown."""
    yield
    close_lookup()


app = FastAPI(
    title=APP_NAME,
    description="Resilient DIYP / EPG-info proxy for XMLTV schedules",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "HEAD", "OPTIONS"],
    allow_headers=["Content-Type"],
)


def _json(payload, status_code: int = 200, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        content=payload.model_dump(exclude_none=True),
        status_code=status_code,
        headers=headers,
        media_type="application/json; charset=utf-8",
    )


def _not_configured() -> JSONResponse:
    return _json(ErrorResponse(code=503, message=NOT_CONFIGURED_MESSAGE), status_code=503)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"code": 500, "message": f"Server Error: {exc}"},
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/")
@app.get("/status")
def status():
    """Service info and last-update status of the main and backup sources."""
    lookup = get_lookup()
    return StatusResponse(
        name=APP_NAME,
        version=APP_VERSION,
        configured=lookup.settings.is_configured,
        sources=lookup.status_snapshot(),
    )


@app.get("/cache/stats")
def cache_stats():
    """Get cache statistics."""
    return get_lookup().get_stats()


@app.get("/epg/diyp")
@app.get("/epg/diyp/", include_in_schema=False)
@app.get("/epg/epginfo")
@app.get("/epg/epginfo/", include_in_schema=False)
def diyp(
    request: Request,
    ch: Optional[str] = Query(None, description="Channel name"),
    channel: Optional[str] = Query(None, description="Channel name (alias)"),
    channel_alias: Optional[str] = Query(None, alias="id", description="Channel name (alias)"),
    date: Optional[str] = Query(None, description="Date as YYYY-MM-DD"),
):
    """
    DIYP / EPG-info schedule query.

    The channel may be given as `ch`, `channel` or `id`; `date` is YYYY-MM-DD.
    """
    lookup = get_lookup()
    if not lookup.settings.is_configured:
        return _not_configured()

    channel_query = ch or channel or channel_alias
    if not channel_query or not date:
        return _json(ErrorResponse(code=400, message=MISSING_PARAMS_MESSAGE), status_code=400)

    result = lookup.find(channel_query, date)

    if result.is_empty:
        return _json(NotFoundResponse.from_result(result, channel_query), status_code=404)

    self_url = f"{request.url.scheme}://{request.url.netloc}{request.url.path}"
    return _json(
        DiypResponse.from_result(result, self_url),
        headers={"Cache-Control": f"public, max-age={lookup.settings.cache_ttl}"},
    )


def _download(compress: bool):
    lookup = get_lookup()
    if not lookup.settings.is_configured:
        return _not_configured()

    try:
        body = lookup.fetcher.iter_document(lookup.settings.epg_url, compress=compress)
    except FetchError as e:
        logger.error(f"Download failed: {e}")
        return PlainTextResponse(f"Download Error: {e}", status_code=502)

    media_type = "application/gzip" if compress else "application/xml; charset=utf-8"
    return StreamingResponse(
        body,
        media_type=media_type,
        headers={"Cache-Control": f"public, max-age={lookup.settings.cache_ttl}"},
    )


@app.get("/epg/epg.xml")
def download_xml():
    """Download the primary source as plain XML."""
    return _download(compress=False)


@app.get("/epg/epg.xml.gz")
def download_gz():
    """Download the primary source gzip-compressed."""
    return _download(compress=True)
