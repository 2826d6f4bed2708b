"""
Shared pytest fixtures for the trading simulator tests.

Every test gets a fresh in-memory runtime (store, locks, index, controller,
account service, exit monitor) with the monitoring task and live feed off,
so ticks are processed inline and deterministically.
"""

import os
from datetime import datetime, timezone
from decimal import Decimal

import pytest

# Keep the application module offline and off disk when tests import it
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("PRICE_FEED_ENABLED", "false")

from models.account import Account
from models.payloads import PriceTick
from services.account_store import InMemoryAccountStore, JsonFileAccountStore
from services.runtime import TradingRuntime

SYMBOL = "BTCUSDT"
CREATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryAccountStore(default_symbol=SYMBOL)


@pytest.fixture
def json_store(tmp_path):
    """JSON file store rooted in a temporary directory."""
    return JsonFileAccountStore(str(tmp_path / "accounts"), default_symbol=SYMBOL)


@pytest.fixture
def runtime(store):
    return TradingRuntime(
        store,
        symbol=SYMBOL,
        lock_timeout_seconds=1.0,
        exit_monitor_enabled=False,
        exit_retry_attempts=3,
        exit_retry_initial_delay=0.01,
        exit_retry_max_delay=0.02,
    )


@pytest.fixture
def controller(runtime):
    return runtime.controller


@pytest.fixture
def account_service(runtime):
    return runtime.accounts


@pytest.fixture
def monitor(runtime):
    return runtime.exit_monitor


@pytest.fixture
def index(runtime):
    return runtime.index


@pytest.fixture
def new_account(store):
    """Factory storing a flat account and returning it."""
    counter = {"n": 0}

    def _make(balance="1000.00", name=None, account_id=None):
        counter["n"] += 1
        account = Account(
            id=account_id or f"acct-{counter['n']}",
            name=name or f"Account {counter['n']}",
            balance=Decimal(balance),
            starting_balance=Decimal(balance),
            creation_time=CREATED_AT,
        )
        store.put(account)
        return account

    return _make


def tick(price, symbol=SYMBOL):
    return PriceTick(symbol=symbol, price=price)
