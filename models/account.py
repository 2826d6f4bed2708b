"""
Trading Simulator - Account Data Model

Account records, the single open position an account may hold, and the
immutable closed-trade entries appended to its history.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class Side(str, Enum):
    """Position direction"""
    LONG = "long"
    SHORT = "short"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Any) -> "Side":
        """
        Normalize a side value.

        Accepts the enum itself, "long"/"short", "buy"/"sell" and the
        single-letter "l"/"s" codes of legacy account files.

        Raises:
            ValueError: if the value is not a recognized side
        """
        if isinstance(value, cls):
            return value
        side_map = {
            'long': cls.LONG,
            'l': cls.LONG,
            'buy': cls.LONG,
            'short': cls.SHORT,
            's': cls.SHORT,
            'sell': cls.SHORT,
        }
        key = str(value).strip().lower() if value is not None else ""
        if key not in side_map:
            raise ValueError(f"Invalid side: {value}. Must be: long, short, l, s, buy or sell")
        return side_map[key]


class ExitReason(str, Enum):
    """Why a position was closed"""
    MANUAL = "MANUAL"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"

    def __str__(self) -> str:
        return self.value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_serializable(value: Any, exact: bool = False) -> Any:
    """
    Recursively convert values to JSON-compatible types.

    Decimals become floats for API responses, or exact strings when
    ``exact`` is set (persisted records).
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value) if exact else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_serializable(v, exact) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_serializable(v, exact) for v in value]
    return value


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    # Firestore/JS ISO strings may end in "Z"
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _side(value: Any) -> Union[Side, str]:
    # Unknown sides are kept verbatim so closing reports them as invalid
    try:
        return Side.parse(value)
    except ValueError:
        return str(value)


@dataclass
class PositionDetails:
    """The open position of an account"""
    side: Union[Side, str]
    symbol: str
    leverage: Decimal
    margin: Decimal
    position_size: Decimal
    entry_price: Decimal
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    opened_at: Optional[datetime] = None

    def to_dict(self, exact: bool = False) -> Dict[str, Any]:
        return to_serializable({
            'side': self.side,
            'symbol': self.symbol,
            'leverage': self.leverage,
            'margin': self.margin,
            'position_size': self.position_size,
            'entry_price': self.entry_price,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'opened_at': self.opened_at,
        }, exact)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_symbol: str = "") -> "PositionDetails":
        return cls(
            side=_side(data.get('side', data.get('type'))),
            symbol=data.get('symbol') or default_symbol,
            leverage=_decimal(data['leverage']),
            margin=_decimal(data['margin']),
            position_size=_decimal(data.get('position_size', data.get('positionSize'))),
            entry_price=_decimal(data.get('entry_price', data.get('entryPrice'))),
            stop_loss=_decimal(data.get('stop_loss', data.get('stopLoss'))),
            take_profit=_decimal(data.get('take_profit', data.get('takeProfit'))),
            opened_at=_timestamp(data.get('opened_at')),
        )


@dataclass(frozen=True)
class ClosedTrade:
    """Immutable record of a completed open -> close cycle"""
    pnl: Decimal
    percentage_pnl: Decimal
    side: Union[Side, str]
    margin: Decimal
    leverage: Decimal
    entry_price: Decimal
    exit_price: Decimal
    closed_at: datetime
    stop_loss_hit: bool = False
    take_profit_hit: bool = False
    exit_reason: ExitReason = ExitReason.MANUAL
    opened_at: Optional[datetime] = None

    def to_dict(self, exact: bool = False) -> Dict[str, Any]:
        return to_serializable({
            'pnl': self.pnl,
            'percentage_pnl': self.percentage_pnl,
            'side': self.side,
            'margin': self.margin,
            'leverage': self.leverage,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'closed_at': self.closed_at,
            'stop_loss_hit': self.stop_loss_hit,
            'take_profit_hit': self.take_profit_hit,
            'exit_reason': self.exit_reason,
            'opened_at': self.opened_at,
        }, exact)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosedTrade":
        return cls(
            pnl=_decimal(data['pnl']),
            percentage_pnl=_decimal(data.get('percentage_pnl')),
            side=_side(data.get('side', data.get('position'))),
            margin=_decimal(data['margin']),
            leverage=_decimal(data['leverage']),
            entry_price=_decimal(data.get('entry_price', data.get('entryPrice'))),
            exit_price=_decimal(data.get('exit_price', data.get('exitPrice'))),
            closed_at=_timestamp(data.get('closed_at', data.get('time'))),
            stop_loss_hit=bool(data.get('stop_loss_hit', data.get('sl_hit', False))),
            take_profit_hit=bool(data.get('take_profit_hit', data.get('tp_hit', False))),
            exit_reason=ExitReason(data.get('exit_reason', ExitReason.MANUAL.value)),
            opened_at=_timestamp(data.get('opened_at')),
        )


@dataclass
class Account:
    """Simulated trading account"""
    id: str
    name: str
    balance: Decimal
    starting_balance: Decimal
    creation_time: datetime
    position: Optional[PositionDetails] = None
    history: List[ClosedTrade] = field(default_factory=list)

    @property
    def has_open_position(self) -> bool:
        return self.position is not None

    def copy(self) -> "Account":
        """Working copy for read-modify-write; history list is not shared."""
        return replace(
            self,
            position=replace(self.position) if self.position else None,
            history=list(self.history),
        )

    def summary(self) -> Dict[str, Any]:
        return to_serializable({
            'id': self.id,
            'name': self.name,
            'balance': self.balance,
            'creation_time': self.creation_time,
            'has_open_position': self.has_open_position,
        })

    def to_dict(self, include_history: bool = True, exact: bool = False) -> Dict[str, Any]:
        """
        Plain-JSON view of the account.

        Stores pass ``exact=True`` so money is persisted as decimal strings
        and never round-trips through binary floats.
        """
        data = {
            'id': self.id,
            'name': self.name,
            'balance': to_serializable(self.balance, exact),
            'starting_balance': to_serializable(self.starting_balance, exact),
            'creation_time': to_serializable(self.creation_time),
            'position': self.position.to_dict(exact) if self.position else None,
        }
        if include_history:
            data['history'] = [trade.to_dict(exact) for trade in self.history]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_symbol: str = "") -> "Account":
        # Legacy files store an empty object for "no trade"
        raw_position = data.get('position', data.get('currentTrade'))
        balance = _decimal(data['balance'])
        history = [
            ClosedTrade.from_dict(item)
            for item in data.get('history', data.get('positionHistory', []))
        ]
        starting_balance = _decimal(data.get('starting_balance'))
        if starting_balance is None:
            # Legacy files never recorded it; back it out of the realized trades
            starting_balance = balance - sum((trade.pnl for trade in history), Decimal("0"))
        return cls(
            id=data.get('id', data.get('uuid')),
            name=data.get('name', ""),
            balance=balance,
            starting_balance=starting_balance,
            creation_time=_timestamp(data.get('creation_time', data.get('creationTime'))),
            position=PositionDetails.from_dict(raw_position, default_symbol) if raw_position else None,
            history=history,
        )
