"""
Trading Simulator - Live Price Feed

Streams trades for one symbol from the Binance public websocket
(``<symbol>@trade``) and hands each price to the exit monitor. Reconnects with
exponential backoff whenever the stream drops.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from models.payloads import PriceTick
from services.exit_monitor import ExitMonitor
from utils.retry import backoff_delay

logger = logging.getLogger(__name__)


def parse_trade_message(raw: str, default_symbol: str) -> Optional[PriceTick]:
    """
    Convert a Binance trade event into a PriceTick.

    Example event:
    {"e": "trade", "E": 1718000000123, "s": "BTCUSDT", "t": 12345,
     "p": "65001.25", "q": "0.010", "T": 1718000000120, "m": true}

    Returns:
        None for messages that are not usable trades
    """
    try:
        data: Dict[str, Any] = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-JSON feed message: {raw!r}")
        return None
    if not isinstance(data, dict) or 'p' not in data:
        return None

    trade_time = data.get('T') or data.get('E')
    timestamp = (
        datetime.fromtimestamp(trade_time / 1000, tz=timezone.utc)
        if isinstance(trade_time, (int, float))
        else datetime.now(timezone.utc)
    )
    try:
        return PriceTick(
            symbol=data.get('s') or default_symbol,
            price=float(data['p']),
            timestamp=timestamp,
        )
    except (ValueError, ValidationError) as e:
        logger.warning(f"Discarding malformed trade event: {e}")
        return None


class BinancePriceFeed:
    """Websocket trade stream feeding an ExitMonitor"""

    def __init__(
        self,
        monitor: ExitMonitor,
        url: str,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
    ):
        self.monitor = monitor
        self.url = url
        self.reconnect_initial_delay = reconnect_initial_delay
        self.reconnect_max_delay = reconnect_max_delay

        self.is_running = False
        self.feed_task: Optional[asyncio.Task] = None
        self.connected = False
        self.reconnects = 0

    async def start(self):
        if self.is_running:
            logger.warning("Price feed is already running")
            return
        self.is_running = True
        self.feed_task = asyncio.create_task(self._run())
        logger.info(f"🚀 Price feed started: {self.url}")

    async def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        if self.feed_task:
            self.feed_task.cancel()
            try:
                await self.feed_task
            except asyncio.CancelledError:
                pass
            self.feed_task = None
        logger.info("🛑 Price feed stopped")

    async def _run(self):
        failures = 0
        while self.is_running:
            try:
                async with aiohttp.ClientSession() as session:
                    await self._consume(session)
                failures = 0
            except asyncio.CancelledError:
                break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                failures += 1
                logger.warning(f"⚠️ Price feed connection error: {e}")
            except Exception as e:
                failures += 1
                logger.error(f"Error in price feed: {e}", exc_info=True)
            finally:
                self.connected = False

            if not self.is_running:
                break
            self.reconnects += 1
            delay = backoff_delay(max(failures, 1), self.reconnect_initial_delay, 2.0, self.reconnect_max_delay)
            logger.info(f"🔄 Reconnecting price feed in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def _consume(self, session: aiohttp.ClientSession):
        async with session.ws_connect(self.url, heartbeat=30) as ws:
            self.connected = True
            logger.info("✅ Connected to price stream")
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    tick = parse_trade_message(msg.data, self.monitor.symbol)
                    if tick is not None:
                        self.monitor.submit_tick(tick)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"⚠️ Price stream error: {ws.exception()}")
                    break
        logger.info("Price stream closed")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "connected": self.connected,
            "url": self.url,
            "reconnects": self.reconnects,
        }
