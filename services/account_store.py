"""
Trading Simulator - Account Store

Keyed persistence for account records. The simulator treats every backend as
a last-writer-wins key-value store without transactions: a mutation is built
on an in-memory copy and persisted with a single ``put``.

Backends:
- InMemoryAccountStore: process-local (tests, throwaway simulations)
- JsonFileAccountStore: one JSON document per account on disk
- FirestoreAccountStore: one Firestore document per account
"""

import asyncio
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from models.account import Account
from models.errors import AccountNotFound, StorageError

logger = logging.getLogger(__name__)


class AccountStore(ABC):
    """
    Abstract base class for account persistence.

    Backends implement the blocking methods; the async wrappers push them to
    a worker thread so storage round trips never stall the event loop.
    """

    def __init__(self, default_symbol: str = ""):
        self.default_symbol = default_symbol

    @abstractmethod
    def get(self, account_id: str) -> Account:
        """
        Load one account.

        Raises:
            AccountNotFound: no record under ``account_id``
            StorageError: backend failure
        """

    @abstractmethod
    def put(self, account: Account) -> None:
        """
        Replace the record stored under ``account.id``.

        Raises:
            StorageError: backend failure; the stored record is unchanged
        """

    @abstractmethod
    def list(self) -> List[Account]:
        """All stored accounts, in no particular order"""

    @abstractmethod
    def delete(self, account_id: str) -> None:
        """
        Raises:
            AccountNotFound: no record under ``account_id``
        """

    def _decode(self, data: Dict[str, Any]) -> Account:
        try:
            return Account.from_dict(data, default_symbol=self.default_symbol)
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise StorageError(f"Corrupt account record: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Async wrappers
    # ------------------------------------------------------------------ #

    async def aget(self, account_id: str) -> Account:
        return await asyncio.to_thread(self.get, account_id)

    async def aput(self, account: Account) -> None:
        await asyncio.to_thread(self.put, account)

    async def alist(self) -> List[Account]:
        return await asyncio.to_thread(self.list)

    async def adelete(self, account_id: str) -> None:
        await asyncio.to_thread(self.delete, account_id)


class InMemoryAccountStore(AccountStore):
    """Stores serialized records so callers never share mutable state with the store."""

    def __init__(self, default_symbol: str = ""):
        super().__init__(default_symbol)
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, account_id: str) -> Account:
        with self._lock:
            record = self._records.get(account_id)
        if record is None:
            raise AccountNotFound(account_id)
        return self._decode(json.loads(record))

    def put(self, account: Account) -> None:
        record = json.dumps(account.to_dict(exact=True))
        with self._lock:
            self._records[account.id] = record

    def list(self) -> List[Account]:
        with self._lock:
            records = list(self._records.values())
        return [self._decode(json.loads(record)) for record in records]

    def delete(self, account_id: str) -> None:
        with self._lock:
            if self._records.pop(account_id, None) is None:
                raise AccountNotFound(account_id)


class JsonFileAccountStore(AccountStore):
    """
    One ``<account_id>.json`` file per account.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a failed write leaves the previous record
    intact.
    """

    def __init__(self, accounts_dir: str, default_symbol: str = ""):
        super().__init__(default_symbol)
        self.accounts_dir = Path(accounts_dir)
        logger.info(f"JsonFileAccountStore: using {self.accounts_dir.resolve()}")

    def _path(self, account_id: str) -> Path:
        # Ids come from callers; refuse anything that could escape the directory
        if not account_id or Path(account_id).name != account_id or account_id.startswith("."):
            raise AccountNotFound(account_id)
        return self.accounts_dir / f"{account_id}.json"

    def _read(self, path: Path) -> Account:
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Invalid JSON in {path.name}: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read {path.name}: {exc}") from exc
        return self._decode(data)

    def get(self, account_id: str) -> Account:
        path = self._path(account_id)
        if not path.exists():
            raise AccountNotFound(account_id)
        return self._read(path)

    def put(self, account: Account) -> None:
        path = self._path(account.id)
        payload = json.dumps(account.to_dict(exact=True), indent=2)
        tmp_name: Optional[str] = None
        try:
            self.accounts_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.accounts_dir, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, 'w') as f:
                f.write(payload)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StorageError(f"Failed to write account {account.id}: {exc}") from exc
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def list(self) -> List[Account]:
        if not self.accounts_dir.exists():
            return []
        return [
            self._read(path)
            for path in sorted(self.accounts_dir.glob("*.json"))
            if not path.name.startswith(".")
        ]

    def delete(self, account_id: str) -> None:
        path = self._path(account_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise AccountNotFound(account_id)
        except OSError as exc:
            raise StorageError(f"Failed to delete account {account_id}: {exc}") from exc


class FirestoreAccountStore(AccountStore):
    """One Firestore document per account in ``collection``"""

    def __init__(self, collection: str, default_symbol: str = "", client: Any = None):
        super().__init__(default_symbol)
        if client is None:
            from google.cloud import firestore

            client = firestore.Client()
        self._client = client
        self.collection = client.collection(collection)
        logger.info(f"FirestoreAccountStore: using collection '{collection}'")

    def get(self, account_id: str) -> Account:
        try:
            doc = self.collection.document(account_id).get()
        except Exception as exc:
            raise StorageError(f"Firestore read failed for {account_id}: {exc}") from exc
        if not doc.exists:
            raise AccountNotFound(account_id)
        return self._decode(doc.to_dict())

    def put(self, account: Account) -> None:
        try:
            self.collection.document(account.id).set(account.to_dict(exact=True))
        except Exception as exc:
            raise StorageError(f"Firestore write failed for {account.id}: {exc}") from exc

    def list(self) -> List[Account]:
        try:
            docs = list(self.collection.stream())
        except Exception as exc:
            raise StorageError(f"Firestore list failed: {exc}") from exc
        return [self._decode(doc.to_dict()) for doc in docs]

    def delete(self, account_id: str) -> None:
        ref = self.collection.document(account_id)
        try:
            exists = ref.get().exists
            if exists:
                ref.delete()
        except Exception as exc:
            raise StorageError(f"Firestore delete failed for {account_id}: {exc}") from exc
        if not exists:
            raise AccountNotFound(account_id)


def create_account_store(backend: str, accounts_dir: str = "accounts",
                         firestore_collection: str = "sim_accounts",
                         default_symbol: str = "") -> AccountStore:
    """Build the configured backend"""
    backend = backend.lower()
    if backend == "memory":
        return InMemoryAccountStore(default_symbol=default_symbol)
    if backend == "json":
        return JsonFileAccountStore(accounts_dir, default_symbol=default_symbol)
    if backend == "firestore":
        return FirestoreAccountStore(firestore_collection, default_symbol=default_symbol)
    raise ValueError(f"Unknown storage backend: {backend}")
