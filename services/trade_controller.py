"""
Trading Simulator - Trade Lifecycle Controller

Owns the ``Flat -> Open -> Flat`` state machine of each account.

Every mutation:
1. validates its inputs (no lock taken, nothing written on failure)
2. acquires the account's lock
3. reads the account, applies the change to an in-memory copy
4. persists it with a single ``put``
5. updates the open-position index only after the ``put`` succeeded

Storage failures propagate as StorageError; the controller never retries.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from models.account import Account, ClosedTrade, ExitReason, PositionDetails, to_serializable
from models.errors import NoActiveTrade, PositionAlreadyOpen
from models.payloads import normalize_symbol
from services import pnl_engine
from services.account_locks import AccountLockRegistry
from services.account_store import AccountStore
from services.position_index import OpenPositionIndex

logger = logging.getLogger(__name__)


class OpenPolicy(str, Enum):
    """What ``open_position`` does when the account already holds a position"""
    REJECT = "reject"
    OVERWRITE = "overwrite"


@dataclass
class PositionView:
    """Current position of an account, marked to the latest known price"""
    account_id: str
    position: Optional[PositionDetails]
    mark_price: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None
    unrealized_percentage_pnl: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'position': self.position.to_dict() if self.position else None,
            'mark_price': to_serializable(self.mark_price),
            'unrealized_pnl': to_serializable(self.unrealized_pnl),
            'unrealized_percentage_pnl': to_serializable(self.unrealized_percentage_pnl),
        }


class TradeLifecycleController:

    def __init__(
        self,
        store: AccountStore,
        locks: AccountLockRegistry,
        index: OpenPositionIndex,
        default_symbol: str,
        open_policy: OpenPolicy = OpenPolicy.REJECT,
    ):
        self.store = store
        self.locks = locks
        self.index = index
        self.default_symbol = default_symbol
        self.open_policy = OpenPolicy(open_policy)
        logger.info(
            f"TradeLifecycleController initialized (symbol: {default_symbol}, "
            f"open policy: {self.open_policy.value})"
        )

    # ============================================
    # STATE TRANSITIONS
    # ============================================

    async def open_position(
        self,
        account_id: str,
        side: Any,
        margin: Any,
        leverage: Any,
        entry_price: Any,
        stop_loss: Any = None,
        take_profit: Any = None,
        symbol: Optional[str] = None,
    ) -> PositionDetails:
        """
        Open a position on a flat account.

        Raises:
            AccountNotFound: unknown account
            InvalidParameter: bad margin/leverage/entry/levels/side
            PositionAlreadyOpen: account already open (reject policy)
            ConcurrentModification: account lock not acquired in time
            StorageError: persistence failed, account unchanged
        """
        position = pnl_engine.open_position(
            margin_input=margin,
            leverage=leverage,
            entry_price=entry_price,
            side=side,
            stop_loss=stop_loss,
            take_profit=take_profit,
            symbol=symbol or self.default_symbol,
        )

        async with self.locks.hold(account_id):
            account = (await self.store.aget(account_id)).copy()
            if account.position is not None:
                self._resolve_open_conflict(account)
            account.position = position
            await self.store.aput(account)
            self.index.track(account)

        logger.info(
            f"📈 Position opened: {account.name} ({account_id}) {position.side.value.upper()} "
            f"{position.symbol} | margin {position.margin} x{position.leverage} "
            f"@ {position.entry_price} | SL {position.stop_loss} | TP {position.take_profit}"
        )
        return position

    def _resolve_open_conflict(self, account: Account) -> None:
        """Apply the open policy to an account that is already open."""
        if self.open_policy == OpenPolicy.REJECT:
            raise PositionAlreadyOpen(account.id)
        existing = account.position
        logger.warning(
            f"⚠️ Overwriting open {existing.side} position on {account.id} "
            f"(entry {existing.entry_price}) without recording a close"
        )

    async def exit_position(
        self,
        account_id: str,
        exit_price: Any,
        exit_reason: ExitReason = ExitReason.MANUAL,
    ) -> ClosedTrade:
        """
        Close the open position at ``exit_price``.

        Raises:
            AccountNotFound: unknown account
            NoActiveTrade: account is flat
            InvalidParameter: bad exit price or unrecognized stored side
            ConcurrentModification: account lock not acquired in time
            StorageError: persistence failed, account unchanged
        """
        pnl_engine.require_positive(exit_price, "exit_price")

        async with self.locks.hold(account_id):
            account = (await self.store.aget(account_id)).copy()
            if account.position is None:
                raise NoActiveTrade(account_id)
            trade = await self._close(account, exit_price, exit_reason)
        return trade

    async def close_on_trigger(
        self,
        account_id: str,
        price: Any,
        symbol: Optional[str] = None,
    ) -> Optional[ClosedTrade]:
        """
        Close the position if ``price`` crosses its stop-loss or take-profit.

        When ``symbol`` is given, a position on any other symbol is left
        alone (a stale index entry must not close it at a foreign price).

        The check and the close happen under one lock hold, so a position
        closed (or replaced) by another caller in between is never closed
        against stale levels.

        Returns:
            The ClosedTrade, or None when no level is crossed

        Raises:
            NoActiveTrade: account went flat since it was indexed
        """
        async with self.locks.hold(account_id):
            account = (await self.store.aget(account_id)).copy()
            if account.position is None:
                raise NoActiveTrade(account_id)
            if symbol is not None and normalize_symbol(account.position.symbol) != normalize_symbol(symbol):
                logger.info(
                    f"⏭️ {account_id} is open on {account.position.symbol}, not {symbol}; skipping"
                )
                return None
            hits = pnl_engine.detect_threshold_hits(account.position, price)
            if not hits.triggered:
                return None
            trade = await self._close(account, price, hits.exit_reason)
        return trade

    async def _close(self, account: Account, exit_price: Any, exit_reason: ExitReason) -> ClosedTrade:
        # Caller holds the account lock and passes a working copy
        trade = pnl_engine.close_position(account.position, exit_price, exit_reason=exit_reason)
        account.history.append(trade)
        account.balance = pnl_engine.round2(account.balance + trade.pnl)
        account.position = None
        await self.store.aput(account)
        self.index.track(account)

        logger.info(
            f"🚪 Position closed: {account.name} ({account.id}) {trade.side} | {trade.exit_reason.value} "
            f"@ {trade.exit_price} | P&L {trade.pnl} ({trade.percentage_pnl}%) | "
            f"SL hit: {trade.stop_loss_hit} | TP hit: {trade.take_profit_hit} | balance {account.balance}"
        )
        return trade

    # ============================================
    # REPORTING (read-only)
    # ============================================

    async def get_current_position(self, account_id: str, mark_price: Any = None) -> PositionView:
        account = await self.store.aget(account_id)
        view = PositionView(account_id=account.id, position=account.position)
        if account.position is not None and mark_price is not None:
            view.mark_price = pnl_engine.to_decimal(mark_price, "mark_price")
            view.unrealized_pnl, view.unrealized_percentage_pnl = pnl_engine.unrealized_pnl(
                account.position, mark_price
            )
        return view

    async def get_financial_summary(self, account_id: str) -> Dict[str, Any]:
        account = await self.store.aget(account_id)
        stats = pnl_engine.aggregate(account.history)
        summary = {
            'account_id': account.id,
            'starting_balance': to_serializable(account.starting_balance),
            'balance': to_serializable(account.balance),
        }
        summary.update(stats.to_dict())
        return summary

    async def get_cumulative_balance_history(self, account_id: str) -> List[Tuple[Any, Decimal]]:
        account = await self.store.aget(account_id)
        return list(pnl_engine.cumulative_balance_series(
            account.starting_balance, account.creation_time, account.history
        ))
