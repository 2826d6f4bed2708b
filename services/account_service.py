"""
Trading Simulator - Account Service

Account administration around the trade lifecycle: creation, listing,
renaming, balance override, deletion and paginated trade history.
Mutations share the trade controller's per-account locks and keep the
open-position index in step with the store.
"""

import logging
import math
import uuid
from typing import Any, Dict, List

from models.account import Account, utc_now
from models.errors import InvalidParameter
from services import pnl_engine
from services.account_locks import AccountLockRegistry
from services.account_store import AccountStore
from services.position_index import OpenPositionIndex

logger = logging.getLogger(__name__)


class AccountService:

    def __init__(
        self,
        store: AccountStore,
        locks: AccountLockRegistry,
        index: OpenPositionIndex,
        default_page_size: int = 10,
    ):
        self.store = store
        self.locks = locks
        self.index = index
        self.default_page_size = default_page_size

    async def create_account(self, name: str, starting_balance: Any) -> Account:
        if not name or not str(name).strip():
            raise InvalidParameter("Missing accountName")
        balance = pnl_engine.round2(pnl_engine.require_positive(starting_balance, "starting_balance"))

        account = Account(
            id=str(uuid.uuid4()),
            name=str(name).strip(),
            balance=balance,
            starting_balance=balance,
            creation_time=utc_now(),
        )
        await self.store.aput(account)
        logger.info(f"✅ Account {account.name} created ({account.id}) with balance {balance}")
        return account

    async def list_accounts(self) -> List[Dict[str, Any]]:
        accounts = await self.store.alist()
        return [account.summary() for account in accounts]

    async def get_account_info(self, account_id: str) -> Dict[str, Any]:
        account = await self.store.aget(account_id)
        return account.to_dict(include_history=False)

    async def rename_account(self, account_id: str, new_name: str) -> Account:
        if not new_name or not str(new_name).strip():
            raise InvalidParameter("Missing newAccountName")
        async with self.locks.hold(account_id):
            account = (await self.store.aget(account_id)).copy()
            account.name = str(new_name).strip()
            await self.store.aput(account)
        logger.info(f"Account {account_id} renamed to {account.name}")
        return account

    async def update_balance(self, account_id: str, new_balance: Any) -> Account:
        """Administrative override of the realized balance."""
        balance = pnl_engine.round2(pnl_engine.require_positive(new_balance, "new_balance"))
        async with self.locks.hold(account_id):
            account = (await self.store.aget(account_id)).copy()
            previous = account.balance
            account.balance = balance
            await self.store.aput(account)
        logger.warning(f"⚠️ Balance override on {account.name} ({account_id}): {previous} -> {balance}")
        return account

    async def delete_account(self, account_id: str) -> None:
        async with self.locks.hold(account_id):
            await self.store.adelete(account_id)
            self.index.remove(account_id)
        logger.info(f"🗑️ Account {account_id} deleted")

    async def get_trade_history(self, account_id: str, page: int = 1, limit: int = None) -> Dict[str, Any]:
        """
        One page of closed trades, oldest first.

        ``page <= 1`` returns the first page and a page past the end returns
        the last page.
        """
        limit = self.default_page_size if limit is None else limit
        if limit <= 0:
            raise InvalidParameter(f"limit must be greater than 0, got: {limit}")

        account = await self.store.aget(account_id)
        history = account.history
        total = len(history)
        max_pages = math.ceil(total / limit)

        if page <= 1:
            start, end = 0, limit
        elif page > max_pages:
            start, end = max(max_pages - 1, 0) * limit, total
        else:
            start, end = (page - 1) * limit, page * limit

        return {
            'trades': [trade.to_dict() for trade in history[start:end]],
            'total_trades': total,
            'max_pages': max_pages,
            'page': page,
            'limit': limit,
        }
