"""
Trading Simulator - Main Application
Leveraged spot trading simulator with automatic stop-loss / take-profit exits

Features:
- YAML configuration (config.yaml)
- Paper accounts with one open position each
- Live price feed driving the exit monitor
- JSON file, Firestore or in-memory account storage
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging
from datetime import datetime
from typing import Optional

# Local imports
from config import settings
from models.account import to_serializable
from models.errors import TradeSimError, InvalidParameter
from models.payloads import (
    OpenPositionRequest,
    ExitPositionRequest,
    CreateAccountRequest,
    RenameAccountRequest,
    UpdateBalanceRequest,
    PriceTick,
)
from services.runtime import TradingRuntime

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Initialize FastAPI app
app = FastAPI(
    title="Trading Simulator",
    description="Leveraged spot trading simulator with automatic SL/TP exits",
    version=VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services
runtime = TradingRuntime.from_settings(settings)


# ============================================
# ERROR HANDLING
# ============================================

@app.exception_handler(TradeSimError)
async def trade_sim_error_handler(request: Request, exc: TradeSimError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{field}: {error.get('msg')}" if field else error.get("msg"))
    return JSONResponse(
        status_code=InvalidParameter.status_code,
        content=InvalidParameter("; ".join(details) or "Invalid request").to_dict()
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"❌ Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": str(exc)}
    )


# ============================================
# SERVICE INFO
# ============================================

@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "Trading Simulator",
        "version": VERSION,
        "symbol": runtime.exit_monitor.symbol,
        "timestamp": datetime.utcnow().isoformat()
    }


@app.get("/health")
async def health_check():
    """
    Detailed health check for monitoring

    Degraded when the exit monitor is enabled but not running, or the price
    feed is enabled but disconnected.
    """
    monitor_status = runtime.exit_monitor.get_monitoring_status()
    feed_status = runtime.price_feed.get_status() if runtime.price_feed else None

    healthy = True
    if runtime.exit_monitor_enabled and not monitor_status["is_running"]:
        healthy = False
    if feed_status is not None and not feed_status["connected"]:
        healthy = False

    return {
        "status": "healthy" if healthy else "degraded",
        "version": VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "storage": type(runtime.store).__name__,
        "open_policy": runtime.controller.open_policy.value,
        "exit_monitor": monitor_status,
        "price_feed": feed_status,
    }


# ============================================
# ACCOUNTS
# ============================================

@app.post("/accounts", status_code=201)
async def create_account(payload: CreateAccountRequest):
    account = await runtime.accounts.create_account(payload.name, payload.starting_balance)
    return {
        "success": True,
        "message": f"Account {account.name} created",
        "account": account.to_dict(include_history=False)
    }


@app.get("/accounts")
async def list_accounts():
    accounts = await runtime.accounts.list_accounts()
    return {
        "success": True,
        "message": f"{len(accounts)} account(s)",
        "accounts": to_serializable(accounts)
    }


@app.get("/accounts/{account_id}")
async def get_account(account_id: str):
    info = await runtime.accounts.get_account_info(account_id)
    return {"success": True, "message": "Account info", "account": info}


@app.put("/accounts/{account_id}/name")
async def rename_account(account_id: str, payload: RenameAccountRequest):
    account = await runtime.accounts.rename_account(account_id, payload.name)
    return {
        "success": True,
        "message": f"Account renamed to {account.name}",
        "account": account.summary()
    }


@app.put("/accounts/{account_id}/balance")
async def update_balance(account_id: str, payload: UpdateBalanceRequest):
    """Administrative balance override"""
    account = await runtime.accounts.update_balance(account_id, payload.balance)
    return {
        "success": True,
        "message": "Balance updated",
        "account_id": account.id,
        "balance": to_serializable(account.balance)
    }


@app.delete("/accounts/{account_id}")
async def delete_account(account_id: str):
    await runtime.accounts.delete_account(account_id)
    return {"success": True, "message": f"Account {account_id} deleted"}


# ============================================
# POSITIONS
# ============================================

@app.post("/accounts/{account_id}/position")
async def open_position(account_id: str, payload: OpenPositionRequest):
    """
    Open a position on a flat account

    Example payload:
    {
      "side": "long",
      "margin": 100,
      "leverage": 5,
      "entry_price": 65000,
      "stop_loss": 64000,
      "take_profit": 68000
    }
    """
    position = await runtime.controller.open_position(
        account_id,
        side=payload.side,
        margin=payload.margin,
        leverage=payload.leverage,
        entry_price=payload.entry_price,
        stop_loss=payload.stop_loss,
        take_profit=payload.take_profit,
        symbol=payload.symbol,
    )
    return {"success": True, "message": "Position opened", "position": position.to_dict()}


@app.get("/accounts/{account_id}/position")
async def get_position(account_id: str):
    """Current position, marked to the last price seen by the exit monitor"""
    view = await runtime.controller.get_current_position(
        account_id, mark_price=runtime.exit_monitor.last_price
    )
    message = "Open position" if view.position else "No open position"
    return {"success": True, "message": message, **view.to_dict()}


@app.post("/accounts/{account_id}/position/exit")
async def exit_position(account_id: str, payload: ExitPositionRequest):
    trade = await runtime.controller.exit_position(account_id, payload.exit_price)
    return {"success": True, "message": "Position closed", "trade": trade.to_dict()}


# ============================================
# REPORTING
# ============================================

@app.get("/accounts/{account_id}/history")
async def get_history(account_id: str, page: int = 1, limit: Optional[int] = None):
    history = await runtime.accounts.get_trade_history(account_id, page=page, limit=limit)
    return {"success": True, "message": "Trade history", **history}


@app.get("/accounts/{account_id}/summary")
async def get_summary(account_id: str):
    summary = await runtime.controller.get_financial_summary(account_id)
    return {"success": True, "message": "Financial summary", "summary": summary}


@app.get("/accounts/{account_id}/balance-history")
async def get_balance_history(account_id: str):
    series = await runtime.controller.get_cumulative_balance_history(account_id)
    return {
        "success": True,
        "message": "Cumulative balance history",
        "account_id": account_id,
        "points": [
            {"time": to_serializable(timestamp), "balance": to_serializable(balance)}
            for timestamp, balance in series
        ]
    }


# ============================================
# PRICE TICKS & MONITOR
# ============================================

@app.post("/ticks")
async def push_tick(tick: PriceTick):
    """
    Push a price tick into the exit monitor

    With the monitoring task running the tick is queued and the call returns
    immediately; otherwise it is processed before responding.
    """
    monitor = runtime.exit_monitor
    accepted = monitor.submit_tick(tick)
    exits = []
    if accepted and not monitor.is_running:
        exits = await monitor.process_pending()
    return {
        "success": True,
        "message": "Tick accepted" if accepted else f"Ignored: not monitoring {tick.symbol}",
        "accepted": accepted,
        "exits": [trade.to_dict() for trade in exits],
    }


@app.get("/monitor/status")
async def get_monitor_status():
    """Get exit monitoring status"""
    return {
        "success": True,
        "message": "Exit monitor status",
        **runtime.exit_monitor.get_monitoring_status(),
        "timestamp": datetime.utcnow().isoformat()
    }


# ============================================
# LIFECYCLE
# ============================================

@app.on_event("startup")
async def startup_event():
    """
    Run on application startup
    Warm the open-position index, then start monitor and feed
    """
    logger.info("🚀 Trading Simulator starting up...")
    await runtime.startup()
    logger.info(
        f"✅ Startup complete: {runtime.index.count()} open position(s) indexed, "
        f"monitor {'running' if runtime.exit_monitor.is_running else 'disabled'}, "
        f"price feed {'enabled' if runtime.price_feed else 'disabled'}"
    )


@app.on_event("shutdown")
async def shutdown_event():
    await runtime.shutdown()
    logger.info("🛑 Trading Simulator stopped")


# Run application
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.PORT,
        log_level="info",
        access_log=True
    )
