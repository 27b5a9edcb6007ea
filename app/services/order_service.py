"""Order workflow: deposit, quote, sign, place, settle, withdraw, or refund."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.orm import Session

from app.chain.escrow import release_funds, usdc_units
from app.chain.signing import verify_order_signature
from app.core.config import ChainConfig
from app.core.times import to_millis
from app.domain import DepositEvent, NormalizedOdds, PlaceOrderRequest
from app.errors import ConflictError, InvalidInputError, NotFoundError, UpstreamVenueError
from app.models import KALSHI_PLATFORM_ID, ContractEvent, Event, EventOdds, EventPlatformLink, Order, OrderStatus
from app.repositories import CanonicalRepository, EventRepository, OrderRepository
from app.schemas import (
    OrderDetail,
    OrderList,
    OrderSummary,
    PlaceOrderResponse,
    PrepareOrderResponse,
    WithdrawInfo,
    WithdrawResult,
)
from ingestion.base import LiveOddsFetcher, TradingAdapter

from .fiat import FiatService, PassthroughFiatService
from .router import clamp_locked_odds, pick_best_odds


PREPARE_EXPIRY_SECONDS = 300
AMOUNT_TOLERANCE = 0.01
KALSHI_FEE_RATE = 0.01
DEFAULT_CURRENCY = "USDC"

ReleaseFunds = Callable[..., str]


@dataclass(slots=True)
class ResolvedEvent:
    event: Event
    event_ids: list[int]
    links: list[EventPlatformLink]


@dataclass(slots=True)
class FetchedOdds:
    event: Event
    rows: list[NormalizedOdds]


class OrderService:
    def __init__(
        self,
        session: Session,
        *,
        trading_adapters: Mapping[int, TradingAdapter] | None = None,
        live_fetchers: Mapping[int, object] | None = None,
        fiat: FiatService | None = None,
        chain: ChainConfig | None = None,
        release: ReleaseFunds = release_funds,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session = session
        self._trading_adapters = trading_adapters or {}
        self._live_fetchers = live_fetchers or {}
        self._fiat = fiat or PassthroughFiatService()
        self._chain = chain or ChainConfig()
        self._release = release
        self._clock = clock
        self._event_repo = EventRepository(session)
        self._canonical_repo = CanonicalRepository(session)
        self._order_repo = OrderRepository(session)

    # ------------------------------------------------------------------
    # Deposits

    def save_deposit(self, deposit: DepositEvent) -> bool:
        saved = self._order_repo.save_deposit(deposit)
        if saved:
            logger.info(
                "Recorded deposit {} of {} {} from {}",
                deposit.contract_order_id,
                deposit.amount,
                deposit.currency,
                deposit.user_wallet,
            )
        return saved

    def _open_deposit(self, contract_order_id: str) -> ContractEvent:
        deposit = self._order_repo.get_deposit(contract_order_id)
        if deposit is None:
            raise NotFoundError(f"no unprocessed deposit for contract_order_id={contract_order_id}")
        if deposit.processed:
            raise ConflictError("contract order already processed")
        if deposit.refunded_at is not None:
            raise ConflictError("contract order already refunded")
        return deposit

    def contract_order_status(self, contract_order_id: str) -> str:
        if not contract_order_id:
            raise InvalidInputError("contract_order_id is required")
        deposit = self._order_repo.get_deposit(contract_order_id)
        if deposit is None:
            return "not_found"
        if deposit.refunded_at is not None:
            return "refunded"
        if deposit.processed:
            return "placed"
        return "unprocessed"

    # ------------------------------------------------------------------
    # Quote and place

    def prepare(self, contract_order_id: str, event_uuid: str, bet_option: str) -> PrepareOrderResponse:
        if not contract_order_id or not event_uuid or not bet_option:
            raise InvalidInputError("contract_order_id, event_uuid and bet_option are required")
        self._open_deposit(contract_order_id)

        resolved = self._resolve_event(event_uuid)
        rows, _ = self._fetch_live_odds(resolved)
        best = pick_best_odds(rows, bet_option)

        locked = clamp_locked_odds(best.price)
        expires_at = int(self._clock()) + PREPARE_EXPIRY_SECONDS
        message = f"PlaceOrder:{contract_order_id}:{event_uuid}:{bet_option}:{locked:.6f}:{expires_at}"
        return PrepareOrderResponse(locked_odds=locked, message_to_sign=message, expires_at_sec=expires_at)

    def place(
        self,
        *,
        contract_order_id: str,
        event_uuid: str,
        bet_option: str,
        amount: float = 0.0,
        locked_odds: float = 0.0,
        message: str = "",
        signature: str = "",
    ) -> PlaceOrderResponse:
        if not contract_order_id or not event_uuid or not bet_option:
            raise InvalidInputError("contract_order_id, event_uuid and bet_option are required")
        deposit = self._open_deposit(contract_order_id)

        if signature:
            verify_order_signature(deposit.user_wallet, message, signature, now=self._clock())

        deposit_amount = float(deposit.deposit_amount or 0)
        if deposit_amount <= 0:
            raise InvalidInputError("deposit amount is invalid")
        if amount > 0 and abs(amount - deposit_amount) > AMOUNT_TOLERANCE:
            raise InvalidInputError(f"amount {amount} does not match deposit {deposit_amount}")
        currency = deposit.fund_currency or DEFAULT_CURRENCY

        resolved = self._resolve_event(event_uuid)
        rows, fetched = self._fetch_live_odds(resolved)
        best = pick_best_odds(rows, bet_option)

        bet_amount = deposit_amount
        if best.platform_id == KALSHI_PLATFORM_ID:
            bet_amount = self._fiat.convert_to_usd(deposit_amount, currency)

        target = self._target_event(resolved, best.platform_id)
        venue_odds = locked_odds if locked_odds > 0 else clamp_locked_odds(best.price)
        platform_order_id = ""
        adapter = self._trading_adapters.get(best.platform_id)
        if adapter is not None:
            try:
                result = adapter.place_order(
                    PlaceOrderRequest(
                        order_uuid=contract_order_id,
                        platform_event_id=target.platform_event_id,
                        bet_option=best.option_name,
                        bet_amount=bet_amount,
                        locked_odds=venue_odds,
                        user_wallet=deposit.user_wallet,
                    )
                )
            except UpstreamVenueError:
                logger.error("Venue {} rejected order {}", best.platform_id, contract_order_id)
                raise
            except (InvalidInputError, NotFoundError):
                raise
            except Exception as exc:
                raise UpstreamVenueError(f"venue {best.platform_id} order failed: {exc}") from exc
            platform_order_id = result.platform_order_id
        else:
            logger.warning("No trading adapter for platform {}; recording order without venue id", best.platform_id)

        expected_profit = deposit_amount * (best.price - 1)
        if expected_profit < 0:
            expected_profit = deposit_amount * (1 / best.price - 1) if best.price > 0 else 0.0

        self._order_repo.create_order(
            order_uuid=contract_order_id,
            user_wallet=deposit.user_wallet,
            event_id=target.id,
            platform_id=best.platform_id,
            platform_order_id=platform_order_id or None,
            bet_option=best.option_name,
            bet_amount=deposit_amount,
            fund_currency=currency,
            locked_odds=best.price,
            expected_profit=expected_profit,
            fund_lock_tx_hash=deposit.tx_hash,
            status=OrderStatus.PLACED.value,
        )
        self._order_repo.mark_deposit_processed(deposit, contract_order_id)
        self._write_back_odds(fetched)

        logger.info(
            "Placed order {} on platform {} at {} ({})",
            contract_order_id,
            best.platform_id,
            venue_odds,
            platform_order_id or "no venue id",
        )
        return PlaceOrderResponse(
            order_uuid=contract_order_id,
            platform_order_id=platform_order_id,
            platform_id=best.platform_id,
            status=OrderStatus.PLACED.value,
        )

    def _resolve_event(self, event_uuid: str) -> ResolvedEvent:
        event = self._event_repo.get_event_by_uuid(event_uuid)
        if event is None:
            if not event_uuid.isdigit():
                raise NotFoundError(f"event {event_uuid} not found")
            links = self._canonical_repo.links_for_canonical(int(event_uuid))
            if not links:
                raise NotFoundError(f"event_uuid or canonical id {event_uuid} is invalid")
            event = self._event_repo.get_event(links[0].event_id)
            if event is None:
                raise NotFoundError(f"event {links[0].event_id} not found")

        links: list[EventPlatformLink] = []
        own_link = self._canonical_repo.link_for_event(event.id)
        if own_link is not None:
            links = self._canonical_repo.links_for_canonical(own_link.canonical_event_id)
        event_ids = [link.event_id for link in links] or [event.id]
        return ResolvedEvent(event=event, event_ids=event_ids, links=links)

    def _fetch_live_odds(self, resolved: ResolvedEvent) -> tuple[list[NormalizedOdds | EventOdds], list[FetchedOdds]]:
        """Live prices per linked venue, falling back to stored odds when none answer."""

        if resolved.links:
            events = self._event_repo.get_events([link.event_id for link in resolved.links])
            targets = [events[link.event_id] for link in resolved.links if link.event_id in events]
        else:
            targets = [resolved.event]

        fetched: list[FetchedOdds] = []
        for event in targets:
            fetcher = self._live_fetchers.get(event.platform_id)
            if not isinstance(fetcher, LiveOddsFetcher):
                continue
            try:
                rows = fetcher.fetch_live_odds(event.platform_event_id)
            except Exception as exc:
                logger.warning(
                    "Live odds unavailable for platform {} event {}: {}",
                    event.platform_id,
                    event.platform_event_id,
                    exc,
                )
                continue
            fetched.append(FetchedOdds(event=event, rows=rows))

        rows: list[NormalizedOdds | EventOdds] = [row for item in fetched for row in item.rows]
        if not rows:
            rows = list(self._event_repo.list_odds_for_events(resolved.event_ids))
        if not rows:
            raise NotFoundError("no odds available")
        return rows, fetched

    def _target_event(self, resolved: ResolvedEvent, platform_id: int) -> Event:
        if resolved.event.platform_id == platform_id:
            return resolved.event
        for link in resolved.links:
            if link.platform_id == platform_id:
                event = self._event_repo.get_event(link.event_id)
                if event is not None:
                    return event
        return resolved.event

    def _write_back_odds(self, fetched: list[FetchedOdds]) -> None:
        for item in fetched:
            if not item.rows:
                continue
            try:
                with self._session.begin_nested():
                    self._event_repo.upsert_odds_for_event(item.event, item.rows)
            except Exception as exc:
                logger.warning("Could not store live odds for event {}: {}", item.event.event_uuid, exc)

    # ------------------------------------------------------------------
    # Refund

    def unfreeze(self, contract_order_id: str, wallet: str = "") -> str:
        if not contract_order_id:
            raise InvalidInputError("contract_order_id is required")
        chain = self._chain
        if not chain.rpc_url or not chain.escrow_address or not chain.executor_private_key:
            raise InvalidInputError(
                "unfreeze needs chain rpc_url, escrow_address and CHAIN_EXECUTOR_PRIVATE_KEY"
            )

        deposit = self._open_deposit(contract_order_id)
        if wallet and deposit.user_wallet.lower() != wallet.lower():
            raise InvalidInputError("wallet does not match the deposit wallet")
        amount = float(deposit.deposit_amount or 0)
        units = usdc_units(amount)
        if units <= 0:
            raise InvalidInputError("deposit amount is invalid")

        tx_hash = self._release(
            rpc_url=chain.rpc_url,
            escrow_address=chain.escrow_address,
            executor_key=chain.executor_private_key,
            bet_id_hex=contract_order_id,
            to_address=deposit.user_wallet,
            amount_units=units,
        )
        self._order_repo.mark_deposit_refunded(deposit)
        logger.info("Released {} units for {} in tx {}", units, contract_order_id, tx_hash)
        return tx_hash

    # ------------------------------------------------------------------
    # Settlement and withdrawal

    def on_settlement_completed(
        self,
        order_uuid: str,
        tx_hash: str,
        settlement_amount: float,
        manage_fee: float,
        gas_fee: float,
    ) -> bool:
        if self._order_repo.settlement_exists(tx_hash):
            logger.info("Settlement tx {} already recorded, ignoring", tx_hash)
            return False
        order = self._order_repo.get_order(order_uuid)
        if order is None:
            raise NotFoundError(f"order {order_uuid} not found")
        self._order_repo.record_settlement(
            order,
            tx_hash=tx_hash,
            settlement_amount=settlement_amount,
            manage_fee=manage_fee,
            gas_fee=gas_fee,
        )
        logger.info("Order {} settled in tx {} (payout {})", order_uuid, tx_hash, settlement_amount)
        return True

    def _settled_order(self, order_uuid: str) -> Order:
        order = self._order_repo.get_order(order_uuid)
        if order is None:
            raise NotFoundError(f"order {order_uuid} not found")
        if order.status != OrderStatus.SETTLED.value:
            raise InvalidInputError(f"order status {order.status} cannot be withdrawn, it must be settled")
        return order

    def _withdraw_info(self, order: Order) -> WithdrawInfo:
        payout = max(float(order.bet_amount) + float(order.actual_profit or 0), 0.0)
        if order.platform_id == KALSHI_PLATFORM_ID:
            fee = max(float(order.actual_profit or 0), 0.0) * KALSHI_FEE_RATE
            return WithdrawInfo(
                order_uuid=order.order_uuid,
                type="kalshi",
                fund_currency=order.fund_currency,
                payout_amount=payout,
                fee=fee,
                user_amount=payout - fee,
                status=order.status,
            )
        return WithdrawInfo(
            order_uuid=order.order_uuid,
            type="chain",
            method="withdraw",
            contract_address=self._chain.escrow_address,
            fund_currency=order.fund_currency,
            payout_amount=payout,
            user_amount=payout,
            status=order.status,
        )

    def withdraw_info(self, order_uuid: str) -> WithdrawInfo:
        return self._withdraw_info(self._settled_order(order_uuid))

    def request_withdraw(self, order_uuid: str) -> WithdrawResult:
        order = self._settled_order(order_uuid)
        info = self._withdraw_info(order)
        if order.platform_id == KALSHI_PLATFORM_ID:
            status = OrderStatus.WITHDRAWN.value
        else:
            status = OrderStatus.WITHDRAW_REQUESTED.value
        self._order_repo.update_order_status(order, status)
        logger.info("Withdrawal for order {} moved to {}", order_uuid, status)
        return WithdrawResult(order_uuid=order_uuid, status=status, withdraw=info.model_copy(update={"status": status}))

    # ------------------------------------------------------------------
    # Queries

    def list_orders(self, wallet: str, *, status: str | None = None, page: int = 1, page_size: int = 20) -> OrderList:
        if not wallet:
            raise InvalidInputError("wallet is required")
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)
        rows, total = self._order_repo.list_orders(
            wallet=wallet,
            status=status or None,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        items = [self._summary(order, title) for order, title in rows]
        return OrderList(total=total, page=page, page_size=page_size, items=items)

    def order_detail(self, order_uuid: str) -> OrderDetail:
        order = self._order_repo.get_order(order_uuid)
        if order is None:
            raise NotFoundError(f"order {order_uuid} not found")
        event = self._event_repo.get_event(order.event_id)
        summary = self._summary(order, event.title if event else None)
        return OrderDetail(
            **summary.model_dump(),
            user_wallet=order.user_wallet,
            event_uuid=event.event_uuid if event else None,
            event_start_time=to_millis(event.start_time) if event else 0,
            event_end_time=to_millis(event.end_time) if event else 0,
            actual_profit=order.actual_profit or 0,
            platform_fee=order.platform_fee or 0,
            manage_fee=order.manage_fee or 0,
            gas_fee=order.gas_fee or 0,
            fund_lock_tx_hash=order.fund_lock_tx_hash,
            settlement_tx_hash=order.settlement_tx_hash,
            updated_at=to_millis(order.updated_at),
        )

    @staticmethod
    def _summary(order: Order, title: str | None) -> OrderSummary:
        return OrderSummary(
            order_uuid=order.order_uuid,
            event_id=order.event_id,
            event_title=title,
            platform_id=order.platform_id,
            platform_order_id=order.platform_order_id,
            bet_option=order.bet_option,
            bet_amount=order.bet_amount,
            fund_currency=order.fund_currency,
            locked_odds=order.locked_odds,
            expected_profit=order.expected_profit or 0,
            status=order.status,
            created_at=to_millis(order.created_at),
        )


class OrderEventSink:
    """Chain listener callbacks, each handled in its own transaction."""

    def __init__(
        self,
        session_factory: Callable[[], AbstractContextManager[Session]],
        service_factory: Callable[[Session], OrderService],
    ) -> None:
        self._session_factory = session_factory
        self._service_factory = service_factory

    def on_deposit_success(self, deposit: DepositEvent) -> None:
        with self._session_factory() as session:
            self._service_factory(session).save_deposit(deposit)

    def on_settlement_completed(
        self,
        order_uuid: str,
        tx_hash: str,
        settlement_amount: float,
        manage_fee: float,
        gas_fee: float,
    ) -> None:
        with self._session_factory() as session:
            self._service_factory(session).on_settlement_completed(
                order_uuid, tx_hash, settlement_amount, manage_fee, gas_fee
            )


__all__ = ["OrderEventSink", "OrderService", "ResolvedEvent"]
