import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .client import SleeperClient
from .config import Settings, configure_logging
from .database import LedgerStore
from .errors import ConfigurationError, ExternalApiError, LeagueLedgerError, NotFoundError, SyncError
from .models.ledger import TransactionFilters
from .services.h2h_service import get_head_to_head
from .services.sync_service import SyncEngine
from .services.transactions_service import (
    PAGE_SIZE_DEFAULT,
    get_league_chain,
    get_transactions_page,
    parse_csv_ints,
    parse_csv_strings,
)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Build the app; ``transport`` replaces the network for the Sleeper client (tests)."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = LedgerStore(settings.database_path)
        await store.open()
        client = SleeperClient(
            base_url=settings.api_url,
            timeout=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_backoff=settings.retry_backoff_seconds,
            transport=transport,
        )
        app.state.settings = settings
        app.state.store = store
        app.state.client = client
        app.state.sync_engine = SyncEngine(client, store, settings)
        try:
            yield
        finally:
            await client.aclose()
            await store.close()

    app = FastAPI(lifespan=lifespan)

    # Configure CORS for frontend integration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",  # Next.js development server
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=400)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=404)

    @app.exception_handler(SyncError)
    async def sync_failed(request: Request, exc: SyncError):
        return JSONResponse(
            {"ok": False, "league_id": exc.league_id, "error": str(exc.cause), "progress": exc.progress},
            status_code=502,
        )

    @app.exception_handler(ExternalApiError)
    async def upstream_failed(request: Request, exc: ExternalApiError):
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=502)

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return JSONResponse({"ok": False, "error": f"Invalid request: {problems}"}, status_code=400)

    @app.exception_handler(LeagueLedgerError)
    async def ledger_error(request: Request, exc: LeagueLedgerError):
        logger.exception("Request failed")
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=500)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"ok": False, "error": "Internal server error"}, status_code=500)

    @app.get("/")
    def read_root():
        return {"ok": True}

    @app.post("/sync")
    async def sync_league_season(request: Request, league_id: Optional[str] = None):
        """Sync one league-season. Safe to run repeatedly."""
        league_id = request.app.state.settings.require_league_id(league_id)
        result = await request.app.state.sync_engine.sync_league_season(league_id)
        return {"ok": True, **result.model_dump()}

    @app.post("/sync-history")
    async def sync_league_history(request: Request, league_id: Optional[str] = None, max_depth: Optional[int] = None):
        """Walk the previous_league_id chain and sync each season, newest -> oldest."""
        league_id = request.app.state.settings.require_league_id(league_id)
        result = await request.app.state.sync_engine.sync_league_chain(league_id, max_depth)
        return JSONResponse(result.model_dump(), status_code=200 if result.ok else 502)

    @app.post("/players/sync")
    async def sync_players(request: Request, force: bool = False):
        result = await request.app.state.sync_engine.sync_players(force=force)
        return {"ok": True, **result.model_dump()}

    @app.get("/league/{league_id}/chain")
    async def league_chain(request: Request, league_id: str):
        state = request.app.state
        chain = await get_league_chain(state.store, league_id, state.settings.read_max_depth)
        return {"ok": True, "root_league_id": league_id, "chain_league_ids": chain}

    @app.get("/h2h")
    async def head_to_head(request: Request, league_id: Optional[str] = None):
        """Head-to-head records between every pair of rosters in one synced league-season."""
        state = request.app.state
        league_id = state.settings.require_league_id(league_id)
        result = await get_head_to_head(state.store, league_id)
        return result.model_dump()

    @app.get("/transactions")
    async def list_transactions(
        request: Request,
        root_league_id: Optional[str] = None,
        seasons: Optional[str] = None,
        types: Optional[str] = None,
        teams: Optional[str] = None,
        player_id: Optional[str] = None,
        page: int = 1,
        page_size: int = PAGE_SIZE_DEFAULT,
    ):
        """Paginated, labelled transactions across the league's season chain, with filter facets."""
        state = request.app.state
        root_league_id = state.settings.require_league_id(root_league_id)
        filters = TransactionFilters(
            seasons=parse_csv_ints(seasons),
            types=parse_csv_strings(types),
            teams=parse_csv_ints(teams),
            player_id=player_id or None,
        )
        result = await get_transactions_page(
            state.store,
            state.settings,
            root_league_id,
            filters,
            page=page,
            page_size=page_size,
            client=state.client,
        )
        return result.model_dump()

    return app


app = create_app()
