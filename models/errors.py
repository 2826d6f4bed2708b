"""
Trading Simulator - Error Types

Every failure a caller can observe is one of these exceptions. The HTTP layer
maps them to a status code and a stable ``kind`` string.
"""


class TradeSimError(Exception):
    """Base class for all simulator errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class AccountNotFound(TradeSimError):
    kind = "account_not_found"
    status_code = 404

    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class InvalidParameter(TradeSimError):
    """Missing, non-positive or mistyped numeric/enum field."""

    kind = "invalid_parameter"
    status_code = 400


class NoActiveTrade(TradeSimError):
    kind = "no_active_trade"
    status_code = 400

    def __init__(self, account_id: str):
        super().__init__(f"No active trade to exit for account {account_id}")
        self.account_id = account_id


class PositionAlreadyOpen(TradeSimError):
    kind = "position_already_open"
    status_code = 409

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} already holds an open position")
        self.account_id = account_id


class ConcurrentModification(TradeSimError):
    """Per-account lock could not be acquired within the bounded wait."""

    kind = "concurrent_modification"
    status_code = 409


class StorageError(TradeSimError):
    kind = "storage_error"
    status_code = 500
