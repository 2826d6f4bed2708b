"""
Trading Simulator - Service Wiring

Builds the store, lock registry, open-position index, controller, account
service, exit monitor and (optionally) the live price feed, and runs their
startup/shutdown sequence.
"""

import logging
from typing import Optional

from services.account_locks import AccountLockRegistry
from services.account_service import AccountService
from services.account_store import AccountStore, create_account_store
from services.exit_monitor import ExitMonitor
from services.position_index import OpenPositionIndex
from services.price_feed import BinancePriceFeed
from services.trade_controller import OpenPolicy, TradeLifecycleController

logger = logging.getLogger(__name__)


class TradingRuntime:
    """All long-lived simulator services sharing one store and one lock registry"""

    def __init__(
        self,
        store: AccountStore,
        symbol: str = "BTCUSDT",
        open_policy: str = OpenPolicy.REJECT.value,
        lock_timeout_seconds: float = 5.0,
        default_page_size: int = 10,
        exit_monitor_enabled: bool = True,
        exit_retry_attempts: int = 3,
        exit_retry_initial_delay: float = 0.5,
        exit_retry_max_delay: float = 5.0,
        price_feed_url: Optional[str] = None,
        price_feed_reconnect_initial_delay: float = 1.0,
        price_feed_reconnect_max_delay: float = 60.0,
    ):
        self.store = store
        self.locks = AccountLockRegistry(timeout_seconds=lock_timeout_seconds)
        self.index = OpenPositionIndex()
        self.controller = TradeLifecycleController(
            store, self.locks, self.index,
            default_symbol=symbol,
            open_policy=OpenPolicy(open_policy),
        )
        self.accounts = AccountService(store, self.locks, self.index, default_page_size=default_page_size)
        self.exit_monitor_enabled = exit_monitor_enabled
        self.exit_monitor = ExitMonitor(
            self.controller, self.index, symbol,
            exit_retry_attempts=exit_retry_attempts,
            exit_retry_initial_delay=exit_retry_initial_delay,
            exit_retry_max_delay=exit_retry_max_delay,
        )
        self.price_feed: Optional[BinancePriceFeed] = None
        if price_feed_url:
            self.price_feed = BinancePriceFeed(
                self.exit_monitor, price_feed_url,
                reconnect_initial_delay=price_feed_reconnect_initial_delay,
                reconnect_max_delay=price_feed_reconnect_max_delay,
            )

    @classmethod
    def from_settings(cls, settings) -> "TradingRuntime":
        store = create_account_store(
            settings.STORAGE_BACKEND,
            accounts_dir=settings.ACCOUNTS_DIR,
            firestore_collection=settings.FIRESTORE_COLLECTION,
            default_symbol=settings.SYMBOL,
        )
        return cls(
            store,
            symbol=settings.SYMBOL,
            open_policy=settings.OPEN_POLICY,
            lock_timeout_seconds=settings.LOCK_TIMEOUT_SECONDS,
            default_page_size=settings.DEFAULT_HISTORY_PAGE_SIZE,
            exit_monitor_enabled=settings.EXIT_MONITOR_ENABLED,
            exit_retry_attempts=settings.EXIT_RETRY_ATTEMPTS,
            exit_retry_initial_delay=settings.EXIT_RETRY_INITIAL_DELAY,
            exit_retry_max_delay=settings.EXIT_RETRY_MAX_DELAY,
            price_feed_url=settings.PRICE_FEED_URL if settings.PRICE_FEED_ENABLED else None,
            price_feed_reconnect_initial_delay=settings.PRICE_FEED_RECONNECT_INITIAL_DELAY,
            price_feed_reconnect_max_delay=settings.PRICE_FEED_RECONNECT_MAX_DELAY,
        )

    async def startup(self):
        """Warm the open-position index, then start monitor and feed."""
        accounts = await self.store.alist()
        self.index.rebuild(accounts)
        if self.exit_monitor_enabled:
            await self.exit_monitor.start_monitoring()
        if self.price_feed is not None:
            await self.price_feed.start()

    async def shutdown(self):
        if self.price_feed is not None:
            await self.price_feed.stop()
        await self.exit_monitor.stop_monitoring()
