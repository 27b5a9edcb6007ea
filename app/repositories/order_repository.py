"""Deposits (contract events), orders, and settlement records."""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from app.domain import DepositEvent
from app.models import (
    ContractEvent,
    ContractEventType,
    Event,
    Order,
    OrderStatus,
    SettlementRecord,
)

from .sql import dialect_insert


class OrderRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def save_deposit(self, deposit: DepositEvent) -> bool:
        """Insert a DepositSuccess row; returns False when it was already recorded.

        Duplicates are rejected by the tx_hash unique key and by the partial
        unique index on contract_order_id, so concurrent writers cannot both win.
        """

        stmt = dialect_insert(self._session, ContractEvent).values(
            event_type=ContractEventType.DEPOSIT_SUCCESS.value,
            contract_order_id=deposit.contract_order_id,
            user_wallet=deposit.user_wallet,
            deposit_amount=deposit.amount,
            fund_currency=deposit.currency or "USDC",
            tx_hash=deposit.tx_hash,
            block_number=deposit.block_number,
            event_data=deposit.raw_data,
            processed=False,
            created_at=datetime.now(timezone.utc),
        )
        # No conflict target: either unique key counts as "already recorded".
        stmt = stmt.on_conflict_do_nothing()
        result = self._session.execute(stmt)
        if not result.rowcount:
            logger.info(
                "Deposit for contract order {} (tx {}) already recorded, ignoring",
                deposit.contract_order_id,
                deposit.tx_hash,
            )
            return False
        return True

    def mark_deposit_processed(self, deposit: ContractEvent, order_uuid: str) -> None:
        deposit.processed = True
        deposit.order_uuid = order_uuid
        deposit.processed_at = datetime.now(timezone.utc)

    def mark_deposit_refunded(self, deposit: ContractEvent) -> None:
        deposit.refunded_at = datetime.now(timezone.utc)

    def create_order(self, **fields) -> Order:
        order = Order(**fields)
        self._session.add(order)
        self._session.flush()
        return order

    def update_order_status(self, order: Order, status: str) -> None:
        order.status = status
        order.updated_at = datetime.now(timezone.utc)

    def mark_event_orders(self, event_id: int, result: str) -> int:
        """Move placed orders on a decided event to settlable (won) or settled (lost)."""

        orders = self._session.execute(
            select(Order).where(Order.event_id == event_id, Order.status == OrderStatus.PLACED.value)
        ).scalars()
        updated = 0
        wanted = result.strip().lower()
        for order in orders:
            won = bool(wanted) and order.bet_option.strip().lower() == wanted
            self.update_order_status(order, OrderStatus.SETTLABLE.value if won else OrderStatus.SETTLED.value)
            updated += 1
        return updated

    def record_settlement(
        self,
        order: Order,
        *,
        tx_hash: str,
        settlement_amount: float,
        manage_fee: float,
        gas_fee: float,
    ) -> SettlementRecord:
        order.settlement_tx_hash = tx_hash
        self.update_order_status(order, OrderStatus.SETTLED.value)
        record = SettlementRecord(
            order_uuid=order.order_uuid,
            user_wallet=order.user_wallet,
            settlement_amount=settlement_amount,
            manage_fee=manage_fee,
            gas_fee=gas_fee,
            tx_hash=tx_hash,
        )
        self._session.add(record)
        self._session.flush()
        return record

    # ------------------------------------------------------------------
    # Queries

    def get_deposit(self, contract_order_id: str) -> ContractEvent | None:
        query = (
            select(ContractEvent)
            .where(
                ContractEvent.contract_order_id == contract_order_id,
                ContractEvent.event_type == ContractEventType.DEPOSIT_SUCCESS.value,
            )
            .order_by(desc(ContractEvent.id))
            .limit(1)
        )
        return self._session.execute(query).scalar_one_or_none()

    def get_order(self, order_uuid: str) -> Order | None:
        return self._session.execute(
            select(Order).where(Order.order_uuid == order_uuid)
        ).scalar_one_or_none()

    def settlement_exists(self, tx_hash: str) -> bool:
        query = select(func.count(SettlementRecord.id)).where(SettlementRecord.tx_hash == tx_hash)
        return self._session.execute(query).scalar_one() > 0

    def list_orders(
        self,
        *,
        wallet: str,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[tuple[Order, str | None]], int]:
        filters = [func.lower(Order.user_wallet) == wallet.lower()]
        if status:
            filters.append(Order.status == status)

        query = (
            select(Order, Event.title)
            .outerjoin(Event, Event.id == Order.event_id)
            .where(*filters)
            .order_by(desc(Order.created_at), desc(Order.id))
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(Order.id)).where(*filters)

        rows = [(order, title) for order, title in self._session.execute(query).all()]
        total = self._session.execute(total_query).scalar_one()
        return rows, total


__all__ = ["OrderRepository"]
