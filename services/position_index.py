"""
Trading Simulator - Open Position Index

Maintained ``symbol -> {account_id}`` index of accounts holding an open
position, so the exit monitor never scans the whole account store per tick.
Only the trade controller and account service update it, after a successful
``put``.
"""

import logging
from typing import Dict, Iterable, List, Set

from models.account import Account

logger = logging.getLogger(__name__)


class OpenPositionIndex:

    def __init__(self):
        self._by_symbol: Dict[str, Set[str]] = {}

    def add(self, symbol: str, account_id: str) -> None:
        self._by_symbol.setdefault(symbol, set()).add(account_id)

    def remove(self, account_id: str) -> None:
        for symbol in list(self._by_symbol):
            accounts = self._by_symbol[symbol]
            accounts.discard(account_id)
            if not accounts:
                del self._by_symbol[symbol]

    def track(self, account: Account) -> None:
        """Index ``account`` according to its current position."""
        self.remove(account.id)
        if account.position is not None:
            self.add(account.position.symbol, account.id)

    def accounts_for(self, symbol: str) -> List[str]:
        """Snapshot of candidate account ids for ``symbol``"""
        return list(self._by_symbol.get(symbol, ()))

    def count(self, symbol: str = None) -> int:
        if symbol is not None:
            return len(self._by_symbol.get(symbol, ()))
        return sum(len(accounts) for accounts in self._by_symbol.values())

    def rebuild(self, accounts: Iterable[Account]) -> int:
        """Reset the index from a full account scan; returns the open count."""
        self._by_symbol.clear()
        for account in accounts:
            if account.position is not None:
                self.add(account.position.symbol, account.id)
        total = self.count()
        logger.info(f"📊 Open position index rebuilt: {total} open position(s)")
        return total
