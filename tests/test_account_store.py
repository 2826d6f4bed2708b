"""
Tests for the account store backends and the account record codec
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from models.account import Account, ExitReason, Side
from models.errors import AccountNotFound, StorageError
from services import pnl_engine
from services.account_store import InMemoryAccountStore, JsonFileAccountStore, create_account_store

from conftest import SYMBOL

LEGACY_RECORD = {
    "uuid": "0b7f0c1e-legacy",
    "name": "Legacy",
    "balance": 1012.5,
    "creationTime": "2023-05-01T10:00:00.000Z",
    "currentTrade": {
        "leverage": 5,
        "type": "s",
        "margin": 10,
        "positionSize": 50,
        "entryPrice": 100,
        "stopLoss": 105,
        "takeProfit": None,
    },
    "positionHistory": [
        {
            "pnl": 12.5,
            "percentage_pnl": 125,
            "time": "2023-05-02T10:00:00.000Z",
            "position": "l",
            "margin": 10,
            "leverage": 5,
            "entryPrice": 100,
            "exitPrice": 125,
            "sl_hit": False,
            "tp_hit": True,
        }
    ],
}


def sample_account(account_id="acct-1"):
    account = Account(
        id=account_id,
        name="Sample",
        balance=Decimal("1000.00"),
        starting_balance=Decimal("1000.00"),
        creation_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    account.position = pnl_engine.open_position(10, 5, 100, "long", stop_loss=95, symbol=SYMBOL)
    return account


class TestJsonFileAccountStore:

    def test_round_trip(self, json_store):
        account = sample_account()
        json_store.put(account)

        loaded = json_store.get(account.id)
        assert loaded.id == account.id
        assert loaded.balance == Decimal("1000.00")
        assert loaded.position.side == Side.LONG
        assert loaded.position.stop_loss == Decimal("95.00")
        assert loaded.position.take_profit is None
        assert loaded.creation_time == account.creation_time

    def test_money_is_persisted_as_exact_decimal_text(self, json_store):
        account = sample_account()
        account.balance = Decimal("12345678901234567.89")
        json_store.put(account)

        raw = json.loads((json_store.accounts_dir / "acct-1.json").read_text())
        assert raw["balance"] == "12345678901234567.89"
        assert raw["position"]["entry_price"] == "100.00"
        assert json_store.get("acct-1").balance == Decimal("12345678901234567.89")

    def test_missing_account(self, json_store):
        with pytest.raises(AccountNotFound):
            json_store.get("nope")
        with pytest.raises(AccountNotFound):
            json_store.delete("nope")

    @pytest.mark.parametrize("account_id", ["../escape", "a/b", "", ".hidden"])
    def test_rejects_ids_outside_directory(self, json_store, account_id):
        with pytest.raises(AccountNotFound):
            json_store.get(account_id)

    def test_list_and_delete(self, json_store):
        json_store.put(sample_account("a"))
        json_store.put(sample_account("b"))
        assert sorted(a.id for a in json_store.list()) == ["a", "b"]

        json_store.delete("a")
        assert [a.id for a in json_store.list()] == ["b"]

    def test_list_on_missing_directory(self, tmp_path):
        store = JsonFileAccountStore(str(tmp_path / "never-created"))
        assert store.list() == []

    def test_corrupt_file_is_storage_error(self, json_store):
        json_store.put(sample_account())
        (json_store.accounts_dir / "acct-1.json").write_text("{not json")
        with pytest.raises(StorageError):
            json_store.get("acct-1")

    def test_no_temp_files_left_behind(self, json_store):
        json_store.put(sample_account())
        json_store.put(sample_account())
        assert [p.name for p in json_store.accounts_dir.iterdir()] == ["acct-1.json"]

    def test_reads_legacy_file_format(self, json_store):
        json_store.accounts_dir.mkdir(parents=True)
        path = json_store.accounts_dir / f"{LEGACY_RECORD['uuid']}.json"
        path.write_text(json.dumps(LEGACY_RECORD))

        account = json_store.get(LEGACY_RECORD["uuid"])

        assert account.name == "Legacy"
        assert account.balance == Decimal("1012.5")
        # Backed out of the realized history
        assert account.starting_balance == Decimal("1000.0")
        assert account.position.side == Side.SHORT
        assert account.position.symbol == SYMBOL
        assert account.position.position_size == Decimal("50")
        assert account.position.take_profit is None

        trade = account.history[0]
        assert trade.side == Side.LONG
        assert trade.take_profit_hit is True
        assert trade.exit_reason == ExitReason.MANUAL
        assert trade.closed_at == datetime(2023, 5, 2, 10, tzinfo=timezone.utc)

    def test_legacy_empty_current_trade_is_flat(self, json_store):
        record = dict(LEGACY_RECORD, currentTrade={})
        json_store.accounts_dir.mkdir(parents=True)
        (json_store.accounts_dir / "flat.json").write_text(json.dumps(dict(record, uuid="flat")))

        assert json_store.get("flat").position is None


class TestInMemoryAccountStore:

    def test_returned_accounts_are_detached(self, store):
        store.put(sample_account())
        loaded = store.get("acct-1")
        loaded.balance = Decimal("1")
        loaded.history.append("junk")

        fresh = store.get("acct-1")
        assert fresh.balance == Decimal("1000.00")
        assert fresh.history == []

    def test_large_balance_survives_round_trip(self, store):
        account = sample_account()
        account.balance = Decimal("98765432109876543.21")
        store.put(account)
        assert store.get("acct-1").balance == Decimal("98765432109876543.21")

    @pytest.mark.asyncio
    async def test_async_wrappers(self, store):
        await store.aput(sample_account())
        assert (await store.aget("acct-1")).name == "Sample"
        assert len(await store.alist()) == 1
        await store.adelete("acct-1")
        with pytest.raises(AccountNotFound):
            await store.aget("acct-1")


class TestFactory:

    def test_builds_configured_backend(self, tmp_path):
        assert isinstance(create_account_store("memory"), InMemoryAccountStore)
        assert isinstance(create_account_store("JSON", accounts_dir=str(tmp_path)), JsonFileAccountStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_account_store("redis")
