"""
Trading Simulator - Request Payload Models

Validated parameter structs for every caller-facing operation, plus the
price tick consumed by the exit monitor. Validation happens here, once, at the
boundary; the PnL engine repeats its numeric checks for direct core callers.
"""

from pydantic import BaseModel, Field, validator
from typing import Optional
from datetime import datetime

from models.account import Side, utc_now


def normalize_symbol(symbol: str) -> str:
    """BTC/USDT, btc-usdt and BTCUSDT all map to BTCUSDT"""
    return symbol.strip().upper().replace("/", "").replace("-", "")


class OpenPositionRequest(BaseModel):
    """
    Open a leveraged position.

    Example:
    {
      "side": "long",
      "margin": 100.0,
      "leverage": 5,
      "entry_price": 65000.00,
      "stop_loss": 64000.00,
      "take_profit": 68000.00
    }

    ``margin`` is the capital committed to the trade; it is not checked
    against the account balance.
    """

    side: str = Field(..., description="Side: long/short (l/s, buy/sell accepted)")
    margin: float = Field(..., gt=0, description="Capital committed to the position")
    leverage: float = Field(..., gt=0, description="Leverage multiplier")
    entry_price: float = Field(..., gt=0, description="Entry price")
    stop_loss: Optional[float] = Field(None, ge=0, description="Stop loss price (0 = not set)")
    take_profit: Optional[float] = Field(None, ge=0, description="Take profit price (0 = not set)")
    symbol: Optional[str] = Field(None, description="Traded symbol (defaults to the configured market)")

    class Config:
        extra = "ignore"

    @validator('side')
    def validate_side(cls, v):
        return Side.parse(v).value

    @validator('symbol')
    def validate_symbol(cls, v):
        return normalize_symbol(v) if v else v


class ExitPositionRequest(BaseModel):
    """Close the open position at ``exit_price``"""

    exit_price: float = Field(..., gt=0, description="Exit price")

    class Config:
        extra = "ignore"


class CreateAccountRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Display name")
    starting_balance: float = Field(..., gt=0, description="Initial balance")

    @validator('name')
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class RenameAccountRequest(BaseModel):
    name: str = Field(..., min_length=1, description="New display name")

    @validator('name')
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class UpdateBalanceRequest(BaseModel):
    """Administrative balance override"""

    balance: float = Field(..., gt=0, description="New balance")


class PriceTick(BaseModel):
    """One price update from the feed"""

    symbol: str
    price: float = Field(..., gt=0)
    timestamp: datetime = Field(default_factory=utc_now)

    @validator('symbol')
    def validate_symbol(cls, v):
        return normalize_symbol(v)
