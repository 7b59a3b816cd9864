"""
FastAPI routes for the member directory.
Reads are served from the cache snapshot and never wait on the forum.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.gzip import GZipMiddleware

from country_directory.api.auth import is_admin_token, require_admin
from country_directory.api.rate_limit import make_limiter, rate_limit_handler
from country_directory.api.schemas import (
    CountriesResponse,
    HealthResponse,
    MemberResponse,
    MembersResponse,
    SaveSettingsRequest,
    SaveSettingsResponse,
    StatusResponse,
    UpdateCacheResponse,
    UsersByCountryResponse,
)
from country_directory.config import Settings, get_settings
from country_directory.errors import AuthorizationError, ConfigurationError, RefreshInProgress
from country_directory.platforms.base import Member
from country_directory.services.cache import AggregationCache
from country_directory.services.credentials import CredentialStore, DirectoryCredentials
from country_directory.services.fetcher import ClientFactory, DirectoryFetcher, discourse_client_factory
from country_directory.services.governor import RequestGovernor
from country_directory.services.query import QueryService
from country_directory.services.scheduler import RefreshScheduler
from country_directory.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Member Directory"])

EMPTY_CACHE_MESSAGE = "Member directory is being loaded, please try again in a few minutes"
LAST_ERROR_REDACTED = "Last refresh failed"


# ===================
# Dependencies
# ===================

async def get_scheduler(request: Request) -> RefreshScheduler:
    return request.app.state.scheduler


async def get_credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


async def fresh_read(request: Request) -> QueryService:
    """Query service for a read; kicks a background refresh when due."""
    request.app.state.scheduler.notify_read()
    return request.app.state.query


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _member_cards(request: Request, members: list[Member]) -> list[MemberResponse]:
    base_url = request.app.state.credentials.current().api_url
    size = request.app.state.settings.avatar_size
    return [MemberResponse.from_member(m, base_url, size) for m in members]


# ===================
# Read Endpoints
# ===================

@router.get("/countries", response_model=CountriesResponse)
async def list_countries(query: QueryService = Depends(fresh_read)):
    """Countries with at least one member, sorted, without the no-country bucket."""
    cache = query.cache
    now = _iso(cache.now())
    if cache.snapshot is None:
        return CountriesResponse(success=False, timestamp=now, message=EMPTY_CACHE_MESSAGE)

    countries = query.countries()
    return CountriesResponse(
        success=True,
        countries=countries,
        total_countries=len(countries),
        cache_updated=_iso(cache.updated_at),
        timestamp=now,
    )


@router.get("/members", response_model=MembersResponse)
async def list_members(
    request: Request,
    country: Optional[str] = Query(None),
    query: QueryService = Depends(fresh_read),
):
    """Members of one country. Unknown countries yield an empty list."""
    if not country:
        raise HTTPException(status_code=400, detail="country parameter is required")

    cache = query.cache
    now = _iso(cache.now())
    if cache.snapshot is None:
        return MembersResponse(success=False, country=country, timestamp=now, message=EMPTY_CACHE_MESSAGE)

    users = _member_cards(request, query.members_of(country))
    return MembersResponse(
        success=True,
        users=users,
        country=country,
        total_users=len(users),
        cache_updated=_iso(cache.updated_at),
        timestamp=now,
    )


@router.get("/users", response_model=UsersByCountryResponse)
async def list_users_by_country(
    request: Request,
    search: Optional[str] = Query(None, max_length=200),
    country: Optional[str] = Query(None),
    query: QueryService = Depends(fresh_read),
):
    """Every member grouped by country, with optional country and text filters."""
    cache = query.cache
    now = _iso(cache.now())
    if cache.snapshot is None:
        return UsersByCountryResponse(success=False, timestamp=now, message=EMPTY_CACHE_MESSAGE)

    grouped = query.users_by_country(search=search, country=country)
    users_by_country = {c: _member_cards(request, members) for c, members in grouped.items()}
    return UsersByCountryResponse(
        success=True,
        users_by_country=users_by_country,
        total_users=sum(len(v) for v in users_by_country.values()),
        total_countries=len(users_by_country),
        cache_updated=_iso(cache.updated_at),
        timestamp=now,
    )


@router.get("/status", response_model=StatusResponse)
async def cache_status(
    request: Request,
    scheduler: RefreshScheduler = Depends(get_scheduler),
    credentials: CredentialStore = Depends(get_credentials),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    """Cache freshness and the outcome of the last refresh.

    Upstream error text is only shown to administrators.
    """
    cache = scheduler.cache
    snapshot = cache.snapshot
    last_error = cache.last_error
    if last_error and not is_admin_token(x_admin_token, request.app.state.settings.admin_api_token):
        last_error = LAST_ERROR_REDACTED
    return StatusResponse(
        state=scheduler.state().value,
        loading=scheduler.in_flight,
        configured=credentials.is_configured,
        cache_updated=_iso(cache.updated_at),
        total_users=snapshot.total_members if snapshot else 0,
        total_countries=len(snapshot.countries()) if snapshot else 0,
        last_error=last_error,
        last_refresh_duration_seconds=cache.last_refresh_duration,
        timestamp=_iso(cache.now()),
    )


# ===================
# Admin Endpoints
# ===================

@router.post("/update_cache", response_model=UpdateCacheResponse, dependencies=[Depends(require_admin)])
async def update_cache(scheduler: RefreshScheduler = Depends(get_scheduler)):
    """Start a background refresh and return immediately."""
    try:
        eta = scheduler.trigger()
    except RefreshInProgress:
        return UpdateCacheResponse(success=False, message="Cache update already in progress")

    return UpdateCacheResponse(
        success=True,
        message="Cache update started in background",
        estimated_completion=_iso(eta),
    )


@router.post("/save_settings", response_model=SaveSettingsResponse, dependencies=[Depends(require_admin)])
async def save_settings(
    body: SaveSettingsRequest,
    credentials: CredentialStore = Depends(get_credentials),
):
    """Store Discourse connection settings for the next refresh."""
    await credentials.save(
        DirectoryCredentials(
            api_url=body.api_url,
            api_key=body.api_key,
            api_username=body.api_username,
            api_limit=body.api_limit,
        )
    )
    return SaveSettingsResponse(success=True)


# ===================
# Application
# ===================

def create_api_app(
    settings: Optional[Settings] = None,
    client_factory: Optional[ClientFactory] = None,
) -> FastAPI:
    """Create the FastAPI application and wire the directory components."""
    settings = settings or get_settings()

    credentials = CredentialStore(settings)
    governor = RequestGovernor(
        delay=settings.request_delay_seconds,
        batch_size=settings.batch_size,
        batch_pause=settings.batch_pause_seconds,
    )
    fetcher = DirectoryFetcher(
        client_factory=client_factory or discourse_client_factory(credentials, settings),
        governor=governor,
        tiers=settings.tiers,
        page_size=credentials.page_size,
    )
    cache = AggregationCache(fetcher, snapshot_path=settings.snapshot_path)
    cache.load()
    scheduler = RefreshScheduler(
        cache,
        ttl_seconds=settings.cache_ttl_seconds,
        timeout_seconds=settings.refresh_timeout_seconds,
        check_interval=settings.scheduler_check_interval_seconds,
        failure_cooldown_seconds=settings.refresh_failure_cooldown_seconds,
        is_configured=lambda: credentials.is_configured,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            await cache.close()

    app = FastAPI(
        title="Member Directory API",
        description="Forum members grouped by country",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.credentials = credentials
    app.state.cache = cache
    app.state.scheduler = scheduler
    app.state.query = QueryService(cache)

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.limiter = make_limiter(settings)
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    # Timing middleware, logs duration and adds X-Response-Time header
    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(elapsed_ms, 1),
        )
        return response

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(request: Request, exc: AuthorizationError):
        return JSONResponse(status_code=401, content={"success": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok")

    app.include_router(router)
    return app


def create_app_from_env() -> FastAPI:
    """Factory for ``uvicorn --factory``: logging first, then the app."""
    settings = get_settings()
    setup_logging(settings.log_level)
    return create_api_app(settings)
