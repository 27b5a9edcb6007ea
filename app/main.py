from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

from . import schemas
from .chain.listener import ContractListener
from .core.config import SyncConfig, settings
from .core.logging import configure_logging
from .db import get_db, get_transactional_db, init_db
from .errors import ConflictError, InvalidInputError, NotFoundError, ServiceError
from .services.fiat import FiatService, build_fiat_service
from .services.market_service import MarketQuery, MarketService
from .services.odds_sync import OddsSyncService
from .services.order_service import OrderEventSink, OrderService
from .services.scheduler import PeriodicJob
from .services.sync_service import SyncService
from ingestion.registry import build_adapters_by_id, build_trading_adapters
from ingestion.service import session_scope

app = FastAPI(title="ForecastSync API", version="0.1.0", debug=settings.debug)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_CLIENT_ERRORS = (InvalidInputError, ConflictError, NotFoundError)
_background: list[PeriodicJob | ContractListener] = []


def _error(status_code: int, exc: Exception | str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


@app.exception_handler(ServiceError)
def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Order flows report caller mistakes as 400 and everything else as 500."""

    status_code = 400 if isinstance(exc, _CLIENT_ERRORS) else 500
    if status_code == 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc)
    return _error(status_code, exc)


@app.exception_handler(RequestValidationError)
def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, "; ".join(str(error.get("msg")) for error in exc.errors()))


# ----------------------------------------------------------------------
# Shared runtime components


@lru_cache
def _read_adapters() -> dict:
    return build_adapters_by_id(settings)


@lru_cache
def _trading_adapters() -> dict:
    return build_trading_adapters(settings)


@lru_cache
def _fiat_service() -> FiatService:
    return build_fiat_service(settings)


def _build_order_service(session: Session) -> OrderService:
    return OrderService(
        session,
        trading_adapters=_trading_adapters(),
        live_fetchers=_read_adapters(),
        fiat=_fiat_service(),
        chain=settings.chain,
    )


def _run_odds_sync() -> int:
    with session_scope() as session:
        return OddsSyncService(session, _read_adapters()).run()


def build_odds_job(config: SyncConfig) -> PeriodicJob | None:
    """The live-odds refresh job, or None when it is disabled or has no positive interval."""

    if not config.odds_sync_enabled:
        return None
    if config.odds_sync_interval_sec <= 0:
        logger.warning("Odds sync enabled with interval {}s; not starting it", config.odds_sync_interval_sec)
        return None
    return PeriodicJob("odds-sync", config.odds_sync_interval_sec, _run_odds_sync)


@app.on_event("startup")
def on_startup() -> None:
    """Initialize logging and the database, then start background jobs."""

    configure_logging(settings.log)
    init_db()

    job = build_odds_job(settings.sync)
    if job is not None:
        job.start()
        _background.append(job)

    listener = ContractListener(settings.chain, OrderEventSink(session_scope, _build_order_service))
    listener.start()
    _background.append(listener)


@app.on_event("shutdown")
def on_shutdown() -> None:
    while _background:
        _background.pop().stop()


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


# ----------------------------------------------------------------------
# Dependency providers


def _market_service(db=Depends(get_db)) -> MarketService:
    """Provide the market service wired with a SQLAlchemy session."""

    return MarketService(db)


def _order_service(db=Depends(get_transactional_db)) -> OrderService:
    """Order flows write, so their session commits when the request succeeds."""

    return _build_order_service(db)


def _sync_service() -> SyncService:
    return SyncService()


def _market_query(
    *,
    status: Annotated[str, Query(description="Canonical status filter", example="active")] = "active",
    sport_type: Annotated[str, Query(alias="type", description="Sport type filter")] = "sports",
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1)] = 20,
) -> MarketQuery:
    return MarketQuery(sport_type=sport_type, status=status, page=page, page_size=page_size)


# ----------------------------------------------------------------------
# Sync


@app.post("/sync/platform/{platform}", response_model=schemas.SyncResponse, tags=["sync"])
def sync_platform(
    platform: str,
    event_type: Annotated[str, Query(alias="type")] = "sports",
    service: SyncService = Depends(_sync_service),
):
    """Run one full ingest of ``platform`` followed by aggregation."""

    try:
        summary = service.sync_platform(platform, event_type)
    except (ServiceError, LookupError) as exc:
        logger.error("Sync of {} failed: {}", platform, exc)
        return _error(500, exc)
    return schemas.SyncResponse(
        message=f"synced {summary.events} {event_type} events from {summary.platform} in {summary.batches} batches"
    )


# ----------------------------------------------------------------------
# Markets


@app.get("/api/markets", response_model=schemas.MarketList, tags=["markets"])
def list_markets(
    *,
    query: MarketQuery = Depends(_market_query),
    service: MarketService = Depends(_market_service),
):
    """List canonical matches with their best cross-venue prices."""

    try:
        return service.list_markets(query)
    except ServiceError as exc:
        return _error(500, exc)


@app.get("/api/markets/{market_id}", response_model=schemas.MarketDetail, tags=["markets"])
def get_market(market_id: str, service: MarketService = Depends(_market_service)):
    """Retrieve one match by canonical id or by a member event's uuid."""

    try:
        return service.get_market_detail(market_id)
    except ServiceError as exc:
        return _error(500, exc)


# ----------------------------------------------------------------------
# Orders


@app.get("/api/orders", response_model=schemas.OrderList, tags=["orders"])
def list_orders(
    *,
    wallet: str = "",
    status: str = "",
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1)] = 20,
    service: OrderService = Depends(_order_service),
):
    return service.list_orders(wallet, status=status or None, page=page, page_size=page_size)


@app.post("/api/orders/prepare", response_model=schemas.PrepareOrderResponse, tags=["orders"])
def prepare_order(payload: schemas.PrepareOrderRequest, service: OrderService = Depends(_order_service)):
    """Quote the best live price and return the message the wallet must sign."""

    return service.prepare(payload.contract_order_id, payload.event_uuid, payload.bet_option)


@app.post("/api/orders/place", response_model=schemas.PlaceOrderResponse, tags=["orders"])
def place_order(payload: schemas.PlaceOrderRequest, service: OrderService = Depends(_order_service)):
    return service.place(
        contract_order_id=payload.contract_order_id,
        event_uuid=payload.event_uuid,
        bet_option=payload.bet_option,
        amount=payload.amount,
        locked_odds=payload.locked_odds,
        message=payload.message,
        signature=payload.signature,
    )


@app.post("/api/orders/unfreeze", response_model=schemas.UnfreezeResponse, tags=["orders"])
def unfreeze_order(payload: schemas.UnfreezeRequest, service: OrderService = Depends(_order_service)):
    """Release an unplaced deposit back to the depositor's wallet."""

    tx_hash = service.unfreeze(payload.contract_order_id, payload.wallet)
    return schemas.UnfreezeResponse(tx_hash=tx_hash)


@app.get("/api/orders/contract-order-status", response_model=schemas.ContractOrderStatus, tags=["orders"])
def contract_order_status(contract_order_id: str = "", service: OrderService = Depends(_order_service)):
    return schemas.ContractOrderStatus(status=service.contract_order_status(contract_order_id))


@app.get("/api/orders/{order_uuid}", response_model=schemas.OrderDetail, tags=["orders"])
def get_order(order_uuid: str, service: OrderService = Depends(_order_service)):
    try:
        return service.order_detail(order_uuid)
    except ServiceError as exc:
        return _error(500, exc)


@app.get("/api/orders/{order_uuid}/withdraw-info", response_model=schemas.WithdrawInfo, tags=["orders"])
def withdraw_info(order_uuid: str, service: OrderService = Depends(_order_service)):
    return service.withdraw_info(order_uuid)


@app.post("/api/orders/{order_uuid}/withdraw", response_model=schemas.WithdrawResult, tags=["orders"])
def request_withdraw(order_uuid: str, service: OrderService = Depends(_order_service)):
    return service.request_withdraw(order_uuid)
