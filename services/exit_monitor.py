"""
Trading Simulator - Exit Monitor

Watches the live price of one symbol and closes every position whose
stop-loss or take-profit the price crosses.

The feed never waits on the monitor: ``submit_tick`` drops the tick into a
single-slot cell and returns. The processing task always works on the newest
price; ticks that arrive while a tick is being processed replace each other
(prices are last-value-wins, not an event log).
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.account import ClosedTrade
from models.errors import StorageError, TradeSimError
from models.payloads import PriceTick, normalize_symbol
from services.position_index import OpenPositionIndex
from services.trade_controller import TradeLifecycleController
from utils.retry import MaxRetriesExceeded, call_with_backoff

logger = logging.getLogger(__name__)


class LatestPriceCell:
    """Single-slot mailbox holding the most recent unprocessed tick"""

    def __init__(self):
        self._tick: Optional[PriceTick] = None
        self._event = asyncio.Event()
        self.coalesced = 0

    def put(self, tick: PriceTick) -> None:
        if self._tick is not None:
            self.coalesced += 1
        self._tick = tick
        self._event.set()

    def pending(self) -> bool:
        return self._tick is not None

    async def take(self) -> PriceTick:
        await self._event.wait()
        self._event.clear()
        tick, self._tick = self._tick, None
        return tick


class ExitMonitor:
    """
    Stop-loss / take-profit exit engine

    For every processed tick:
    - enumerate accounts open on the symbol (open-position index)
    - let the controller check and close each one under its account lock
    - isolate failures per account: log and move on
    """

    def __init__(
        self,
        controller: TradeLifecycleController,
        index: OpenPositionIndex,
        symbol: str,
        exit_retry_attempts: int = 3,
        exit_retry_initial_delay: float = 0.5,
        exit_retry_max_delay: float = 5.0,
    ):
        self.controller = controller
        self.index = index
        self.symbol = normalize_symbol(symbol)
        self.exit_retry_attempts = exit_retry_attempts
        self.exit_retry_initial_delay = exit_retry_initial_delay
        self.exit_retry_max_delay = exit_retry_max_delay

        self.is_running = False
        self.monitor_task: Optional[asyncio.Task] = None
        self.cell = LatestPriceCell()

        self.last_price: Optional[float] = None
        self.last_tick_time: Optional[datetime] = None
        self.ticks_received = 0
        self.ticks_processed = 0
        self.exits_executed = 0

    # ------------------------------------------------------------------ #
    # Feed side
    # ------------------------------------------------------------------ #

    def submit_tick(self, tick: PriceTick) -> bool:
        """
        Hand a tick to the monitor without waiting.

        Returns:
            False if the tick is for another symbol and was ignored
        """
        if tick.symbol != self.symbol:
            logger.debug(f"Ignoring tick for {tick.symbol} (monitoring {self.symbol})")
            return False
        if tick.price is None or tick.price <= 0:
            logger.warning(f"⚠️ Ignoring non-positive price {tick.price} for {tick.symbol}")
            return False
        self.ticks_received += 1
        self.last_price = tick.price
        self.last_tick_time = tick.timestamp
        self.cell.put(tick)
        return True

    # ------------------------------------------------------------------ #
    # Processing side
    # ------------------------------------------------------------------ #

    async def start_monitoring(self):
        """Start the exit monitoring task"""
        if self.is_running:
            logger.warning("Exit monitor is already running")
            return

        self.is_running = True
        self.monitor_task = asyncio.create_task(self._monitoring_loop())
        logger.info(f"🚀 Exit monitoring started for {self.symbol}")

    async def stop_monitoring(self):
        """Stop the exit monitoring task"""
        if not self.is_running:
            return

        self.is_running = False
        if self.monitor_task:
            self.monitor_task.cancel()
            try:
                await self.monitor_task
            except asyncio.CancelledError:
                pass
            self.monitor_task = None

        logger.info("🛑 Exit monitoring stopped")

    async def _monitoring_loop(self):
        """Process the latest tick whenever one is available"""
        logger.info("🔄 Exit monitoring loop started")

        while self.is_running:
            try:
                tick = await self.cell.take()
                await self.process_tick(tick)
            except asyncio.CancelledError:
                logger.info("Exit monitoring cancelled")
                break
            except Exception as e:
                # Keep monitoring despite errors
                logger.error(f"Error in exit monitoring loop: {e}", exc_info=True)

    async def process_pending(self) -> List[ClosedTrade]:
        """Process the waiting tick inline (monitoring task not running)."""
        if not self.cell.pending():
            return []
        tick = await self.cell.take()
        return await self.process_tick(tick)

    async def process_tick(self, tick: PriceTick) -> List[ClosedTrade]:
        """
        Evaluate every open position on the tick's symbol.

        Returns:
            Trades closed by this tick (order across accounts is unspecified)
        """
        candidates = self.index.accounts_for(tick.symbol)
        if candidates:
            logger.debug(f"🔍 {tick.symbol} @ {tick.price}: checking {len(candidates)} open position(s)")

        results = await asyncio.gather(
            *(self._check_account(account_id, tick) for account_id in candidates)
        )
        self.ticks_processed += 1

        closed = [trade for trade in results if trade is not None]
        self.exits_executed += len(closed)
        return closed

    async def _check_account(self, account_id: str, tick: PriceTick) -> Optional[ClosedTrade]:
        try:
            trade = await call_with_backoff(
                self.controller.close_on_trigger, account_id, tick.price, tick.symbol,
                attempts=self.exit_retry_attempts,
                initial_delay=self.exit_retry_initial_delay,
                max_delay=self.exit_retry_max_delay,
                exceptions=(StorageError,),
            )
        except MaxRetriesExceeded as e:
            logger.error(f"❌ Exit for {account_id} @ {tick.price} not persisted: {e.__cause__}")
            return None
        except TradeSimError as e:
            # Usually a concurrent manual exit won the race
            logger.info(f"⏭️ Skipping {account_id} @ {tick.price}: {e.message}")
            return None
        except Exception as e:
            logger.error(f"❌ Error checking {account_id} @ {tick.price}: {e}", exc_info=True)
            return None

        if trade is not None:
            logger.info(
                f"✅ Exit triggered for {account_id}: {trade.exit_reason.value} @ {tick.price} "
                f"(P&L {trade.pnl})"
            )
        return trade

    def get_monitoring_status(self) -> Dict[str, Any]:
        """Get current monitoring status"""
        return {
            "is_running": self.is_running,
            "symbol": self.symbol,
            "last_price": self.last_price,
            "last_tick_time": self.last_tick_time.isoformat() if self.last_tick_time else None,
            "ticks_received": self.ticks_received,
            "ticks_processed": self.ticks_processed,
            "ticks_coalesced": self.cell.coalesced,
            "exits_executed": self.exits_executed,
            "open_positions": self.index.count(self.symbol),
        }
