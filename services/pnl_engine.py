"""
Trading Simulator - PnL Engine

Pure, stateless computations: position sizing, realized/unrealized P&L,
stop-loss/take-profit detection and performance statistics over an account's
trade history.

All money values are Decimals rounded to 2 places, half away from zero.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from models.account import ClosedTrade, ExitReason, PositionDetails, Side, to_serializable, utc_now
from models.errors import InvalidParameter

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round2(value: Decimal) -> Decimal:
    """
    Raises:
        InvalidParameter: value has too many digits to hold at cent precision
    """
    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidParameter(f"Amount out of range: {value}")


def to_decimal(value: Any, field_name: str) -> Decimal:
    """
    Convert a numeric input to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1 rather than its binary
    expansion.

    Raises:
        InvalidParameter: missing, boolean or non-numeric value
    """
    if value is None:
        raise InvalidParameter(f"Missing required field: {field_name}")
    if isinstance(value, bool):
        raise InvalidParameter(f"{field_name} must be a number, got: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidParameter(f"{field_name} must be a number, got: {value!r}")
    if not result.is_finite():
        raise InvalidParameter(f"{field_name} must be finite, got: {value!r}")
    return result


def require_positive(value: Any, field_name: str) -> Decimal:
    result = to_decimal(value, field_name)
    if result <= 0:
        raise InvalidParameter(f"{field_name} must be greater than 0, got: {value}")
    return result


def _optional_level(value: Any, field_name: str) -> Optional[Decimal]:
    # 0 means "not set", same as missing
    if value is None:
        return None
    result = to_decimal(value, field_name)
    if result < 0:
        raise InvalidParameter(f"{field_name} must not be negative, got: {value}")
    if result == 0:
        return None
    return round2(result)


def _parse_side(value: Any) -> Side:
    try:
        return Side.parse(value)
    except ValueError as exc:
        raise InvalidParameter(str(exc))


# ============================================
# POSITION LIFECYCLE
# ============================================

def open_position(
    margin_input: Any,
    leverage: Any,
    entry_price: Any,
    side: Any,
    stop_loss: Any = None,
    take_profit: Any = None,
    symbol: str = "",
    opened_at: Optional[datetime] = None,
) -> PositionDetails:
    """
    Build a new position.

    Args:
        margin_input: Capital committed (need not be covered by the balance)
        leverage: Leverage multiplier
        entry_price: Entry price
        side: long/short
        stop_loss: Optional stop price (0/None = not set)
        take_profit: Optional target price (0/None = not set)

    Returns:
        PositionDetails with ``position_size = round2(margin * leverage)``

    Raises:
        InvalidParameter: non-positive required field, negative level or bad side
    """
    margin_value = require_positive(margin_input, "margin")
    leverage_value = require_positive(leverage, "leverage")
    entry_value = require_positive(entry_price, "entry_price")
    side_value = _parse_side(side)

    return PositionDetails(
        side=side_value,
        symbol=symbol,
        leverage=round2(leverage_value),
        margin=round2(margin_value),
        position_size=round2(margin_value * leverage_value),
        entry_price=round2(entry_value),
        stop_loss=_optional_level(stop_loss, "stop_loss"),
        take_profit=_optional_level(take_profit, "take_profit"),
        opened_at=opened_at or utc_now(),
    )


@dataclass(frozen=True)
class ThresholdHits:
    """Which risk levels a price crosses"""
    stop_loss_hit: bool = False
    take_profit_hit: bool = False

    @property
    def triggered(self) -> bool:
        return self.stop_loss_hit or self.take_profit_hit

    @property
    def exit_reason(self) -> ExitReason:
        # Stop-loss wins when one tick crosses both levels
        if self.stop_loss_hit:
            return ExitReason.STOP_LOSS
        if self.take_profit_hit:
            return ExitReason.TAKE_PROFIT
        return ExitReason.MANUAL


def detect_threshold_hits(position: PositionDetails, price: Any) -> ThresholdHits:
    """
    Evaluate stop-loss and take-profit crossing at ``price``.

    Boundaries are inclusive. Both flags are computed independently, so an
    illogically placed stop and target can both fire on one tick.
    """
    price_value = to_decimal(price, "price")
    stop_loss = position.stop_loss
    take_profit = position.take_profit
    side = position.side

    stop_loss_hit = bool(stop_loss) and (
        (side == Side.LONG and price_value <= stop_loss)
        or (side == Side.SHORT and price_value >= stop_loss)
    )
    take_profit_hit = bool(take_profit) and (
        (side == Side.LONG and price_value >= take_profit)
        or (side == Side.SHORT and price_value <= take_profit)
    )
    return ThresholdHits(stop_loss_hit=stop_loss_hit, take_profit_hit=take_profit_hit)


def _raw_pnl(position: PositionDetails, price: Decimal) -> Decimal:
    if position.side == Side.LONG:
        return (price - position.entry_price) * position.position_size / position.entry_price
    if position.side == Side.SHORT:
        return (position.entry_price - price) * position.position_size / position.entry_price
    raise InvalidParameter(f"Invalid trade type: {position.side}")


def _percentage(pnl: Decimal, margin: Decimal) -> Decimal:
    return round2(pnl / margin * HUNDRED)


def close_position(
    position: PositionDetails,
    exit_price: Any,
    closed_at: Optional[datetime] = None,
    exit_reason: ExitReason = ExitReason.MANUAL,
) -> ClosedTrade:
    """
    Realize a position at ``exit_price``.

    The stored (already rounded) entry price and the raw exit price feed the
    P&L formula; the exit price is rounded only when recorded.

    Raises:
        InvalidParameter: exit price not positive, or unrecognized stored side
    """
    exit_value = require_positive(exit_price, "exit_price")
    pnl = round2(_raw_pnl(position, exit_value))
    hits = detect_threshold_hits(position, exit_value)

    return ClosedTrade(
        pnl=pnl,
        percentage_pnl=_percentage(pnl, position.margin),
        side=position.side,
        margin=position.margin,
        leverage=position.leverage,
        entry_price=round2(position.entry_price),
        exit_price=round2(exit_value),
        closed_at=closed_at or utc_now(),
        stop_loss_hit=hits.stop_loss_hit,
        take_profit_hit=hits.take_profit_hit,
        exit_reason=exit_reason,
        opened_at=position.opened_at,
    )


def unrealized_pnl(position: PositionDetails, mark_price: Any) -> Tuple[Decimal, Decimal]:
    """P&L the position would realize if closed at ``mark_price``"""
    mark_value = require_positive(mark_price, "mark_price")
    pnl = round2(_raw_pnl(position, mark_value))
    return pnl, _percentage(pnl, position.margin)


# ============================================
# REPORTING
# ============================================

@dataclass(frozen=True)
class TradeStatistics:
    """Aggregate performance over a trade history"""
    total_net_profit: Decimal
    gross_profit: Decimal
    gross_loss: Decimal
    total_trades: int
    winning_trades: int
    losing_trades: int
    average_winning_trade: Decimal
    average_losing_trade: Decimal
    largest_winning_trade: Decimal
    largest_losing_trade: Decimal
    percent_profitable: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(asdict(self))


def aggregate(history: Iterable[ClosedTrade]) -> TradeStatistics:
    """
    Fold a trade history into performance statistics.

    A trade with zero P&L counts as a losing trade. ``average_losing_trade``
    and ``largest_losing_trade`` keep their sign; ``gross_loss`` is the
    absolute sum of losing trades.
    """
    total = 0
    winners = 0
    losers = 0
    net = ZERO
    gross_profit = ZERO
    losing_sum = ZERO
    largest_win = ZERO
    largest_loss = ZERO

    for trade in history:
        total += 1
        pnl = trade.pnl
        net += pnl
        if pnl > 0:
            winners += 1
            gross_profit += pnl
            largest_win = max(largest_win, pnl)
        else:
            losers += 1
            losing_sum += pnl
            largest_loss = min(largest_loss, pnl)

    return TradeStatistics(
        total_net_profit=round2(net),
        gross_profit=round2(gross_profit),
        gross_loss=round2(abs(losing_sum)),
        total_trades=total,
        winning_trades=winners,
        losing_trades=losers,
        average_winning_trade=round2(gross_profit / winners) if winners else round2(ZERO),
        average_losing_trade=round2(losing_sum / losers) if losers else round2(ZERO),
        largest_winning_trade=round2(largest_win),
        largest_losing_trade=round2(largest_loss),
        percent_profitable=round2(Decimal(winners) / Decimal(total) * HUNDRED) if total else round2(ZERO),
    )


def cumulative_balance_series(
    starting_balance: Decimal,
    creation_time: Optional[datetime],
    history: Iterable[ClosedTrade],
) -> Iterator[Tuple[Optional[datetime], Decimal]]:
    """
    Yield ``(timestamp, balance)`` points: the creation point first, then one
    point per closed trade in append order. Each step rounds like the live
    balance update does.
    """
    balance = round2(starting_balance)
    yield creation_time, balance
    for trade in history:
        balance = round2(balance + trade.pnl)
        yield trade.closed_at, balance
