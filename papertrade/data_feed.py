#!/usr/bin/env python3
"""
================================================================================
                    LIVE DATA FEED - UPBIT WEBSOCKET + REST
================================================================================
Market data for the paper trading system.
  - UpbitRestClient: market list, ticker / order-book snapshots, minute candles
  - UpbitFeedClient: push feed with resubscription, keepalive and reconnect
  - PriceBook: latest price per instrument, fed by either of the above
  - TickerPoller: REST polling fallback when the push feed is turned off
================================================================================
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

import pandas as pd
import requests
import websockets

from .settings import UPBIT_API_URL, UPBIT_WS_URL

logger = logging.getLogger("DataFeed")

CANDLE_UNITS = (1, 3, 5, 10, 15, 30, 60, 240)


@dataclass
class Market:
    code: str
    english_name: str
    korean_name: str
    market_warning: str = "NONE"


class UpbitRestClient:
    """Snapshot endpoints of the Upbit REST API"""

    def __init__(self, base_url: str = UPBIT_API_URL, session: Optional[requests.Session] = None,
                 timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, path: str, params: Optional[Dict] = None):
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_markets(self, quote: Optional[str] = "KRW") -> List[Market]:
        """List tradable markets, optionally only those quoted in ``quote``"""
        markets = []
        for m in self._get("/market/all", {"isDetails": "true"}):
            if quote and not m["market"].startswith(f"{quote}-"):
                continue
            markets.append(Market(
                code=m["market"],
                english_name=m.get("english_name", ""),
                korean_name=m.get("korean_name", ""),
                market_warning=m.get("market_warning") or "NONE",
            ))
        return markets

    def get_tickers(self, codes: Iterable[str]) -> List[Dict]:
        codes = list(codes)
        if not codes:
            return []
        return self._get("/ticker", {"markets": ",".join(codes)})

    def get_orderbooks(self, codes: Iterable[str]) -> List[Dict]:
        codes = list(codes)
        if not codes:
            return []
        return self._get("/orderbook", {"markets": ",".join(codes)})

    def get_candles(self, code: str, unit: int = 1, count: int = 200) -> List[Dict]:
        """Minute candles, oldest first"""
        if unit not in CANDLE_UNITS:
            raise ValueError(f"Unsupported candle unit {unit}, expected one of {CANDLE_UNITS}")
        raw = self._get(f"/candles/minutes/{unit}", {"market": code, "count": min(count, 200)})
        candles = [{
            'timestamp': c['timestamp'],
            'open': float(c['opening_price']),
            'high': float(c['high_price']),
            'low': float(c['low_price']),
            'close': float(c['trade_price']),
            'volume': float(c['candle_acc_trade_volume']),
        } for c in raw]
        # Upbit returns newest first
        candles.sort(key=lambda c: c['timestamp'])
        return candles

    def get_current_prices(self, codes: Iterable[str]) -> Dict[str, float]:
        return {t['market']: float(t['trade_price']) for t in self.get_tickers(codes)}


def candles_to_dataframe(candles: List[Dict]) -> Optional[pd.DataFrame]:
    """Get candles as DataFrame"""
    if not candles:
        return None
    df = pd.DataFrame(candles)
    df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms')
    return df


class PriceBook:
    """Latest known price per instrument.

    Feed callbacks and the REST poller only write here; the signal engine and
    the auto-trader read from it, so no feed code ever touches the ledger.
    """

    def __init__(self):
        self.prices: Dict[str, float] = {}
        self.timestamps: Dict[str, float] = {}
        self.callbacks: List[Callable] = []
        self._lock = threading.Lock()

    def add_callback(self, callback: Callable):
        """Add callback for price updates: cb(instrument, price, timestamp)"""
        self.callbacks.append(callback)

    def remove_callback(self, callback: Callable):
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    def update(self, instrument: str, price: float, timestamp: Optional[float] = None):
        if price is None or price <= 0:
            return
        ts = timestamp if timestamp is not None else time.time()
        with self._lock:
            self.prices[instrument] = float(price)
            self.timestamps[instrument] = ts
        for cb in list(self.callbacks):
            try:
                cb(instrument, float(price), ts)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    def on_ticker(self, ticker: Dict):
        """Feed handler for ticker messages"""
        code = ticker.get('market') or ticker.get('code')
        price = ticker.get('trade_price')
        if not code or price is None:
            return
        trade_ts = ticker.get('trade_timestamp') or ticker.get('timestamp')
        self.update(code, float(price), trade_ts / 1000.0 if trade_ts else None)

    def get(self, instrument: str) -> Optional[float]:
        with self._lock:
            return self.prices.get(instrument)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self.prices)


class TickerPoller:
    """REST polling fallback for when the realtime feed is disabled"""

    def __init__(self, rest: UpbitRestClient, price_book: PriceBook,
                 instruments: Callable[[], List[str]], interval_ms: int = 5000):
        self.rest = rest
        self.price_book = price_book
        self.instruments = instruments
        self.interval_ms = interval_ms
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self):
        codes = self.instruments()
        if not codes:
            return
        prices = await asyncio.to_thread(self.rest.get_current_prices, codes)
        for code, price in prices.items():
            self.price_book.update(code, price)

    async def _run(self):
        logger.info(f"Polling tickers every {self.interval_ms}ms")
        while True:
            try:
                await self.poll_once()
            except requests.RequestException as e:
                logger.error(f"Ticker poll failed: {e}")
            await asyncio.sleep(self.interval_ms / 1000.0)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self._run())
        return self._task

    async def stop(self):
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    EXHAUSTED = "exhausted"


FEED_EVENTS = ("ticker", "orderbook", "connect", "disconnect", "error", "reconnecting", "exhausted", "state")


def _default_connector(url: str):
    return websockets.connect(url, ping_interval=None, open_timeout=10, max_size=2 ** 22)


class UpbitFeedClient:
    """Upbit push feed.

    The subscription sets are the source of truth: the server only supports
    whole-set replacement, so every change re-sends the full set and every
    (re)connect restores it. After ``max_reconnect_attempts`` failed reconnects
    the client settles in EXHAUSTED until ``connect()`` is called again.
    """

    def __init__(self, url: str = UPBIT_WS_URL, reconnect_interval: float = 3.0,
                 max_reconnect_attempts: int = 5, ping_interval: float = 30.0,
                 connector: Optional[Callable] = None, sleep: Optional[Callable] = None):
        self.url = url
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_attempts = max_reconnect_attempts
        self.ping_interval = ping_interval
        self._connector = connector or _default_connector
        self._sleep = sleep or asyncio.sleep

        self.state = ConnectionState.DISCONNECTED
        self.subscriptions: Set[str] = set()
        self.orderbook_subscriptions: Set[str] = set()
        self.reconnect_attempts = 0
        self.connection_id = 0

        self.ws = None
        self._run_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._closing = False
        self._handlers: Dict[str, List[Callable]] = {event: [] for event in FEED_EVENTS}

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Callable) -> Callable:
        """Register a listener; returns the handler so it can be passed to off()"""
        if event not in self._handlers:
            raise ValueError(f"Unknown feed event '{event}'")
        self._handlers[event].append(handler)
        return handler

    def off(self, event: str, handler: Callable):
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event: str, *args):
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Feed handler error ({event}): {e}")

    def _set_state(self, state: ConnectionState):
        if state != self.state:
            self.state = state
            self._emit("state", state)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> Optional[asyncio.Task]:
        """Start the connection loop. No-op while connecting or connected."""
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("Feed already connecting or connected")
            return self._run_task
        if self._run_task is not None and not self._run_task.done():
            # Waiting out a reconnect delay
            return self._run_task

        self._closing = False
        self.reconnect_attempts = 0
        self._run_task = asyncio.ensure_future(self._run())
        return self._run_task

    async def _run(self):
        while True:
            self.connection_id += 1
            self._set_state(ConnectionState.CONNECTING)
            logger.info(f"Connecting to Upbit WebSocket (ID: {self.connection_id})...")

            try:
                ws = await self._connector(self.url)
            except Exception as e:
                logger.error(f"WebSocket connect failed (ID: {self.connection_id}): {e}")
                self._set_state(ConnectionState.DISCONNECTED)
                self._emit("error", e)
                if self._closing or not await self._wait_for_reconnect():
                    return
                continue

            if self._closing:
                await ws.close()
                return

            self.ws = ws
            self.reconnect_attempts = 0
            self._set_state(ConnectionState.CONNECTED)
            logger.info(f"Upbit WebSocket connected! (ID: {self.connection_id})")
            self._emit("connect")
            self._start_keepalive()

            try:
                if self.subscriptions or self.orderbook_subscriptions:
                    logger.info(f"Restoring subscriptions: {sorted(self.subscriptions)}")
                    await self._send_subscriptions()
                async for raw in ws:
                    self._handle_message(raw)
            except Exception as e:
                if not self._closing:
                    logger.error(f"WebSocket error (ID: {self.connection_id}): {e}")
                    self._emit("error", e)
            finally:
                self._stop_keepalive()
                self.ws = None

            if self._closing:
                return
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket (ID: {self.connection_id}): {e}")
            logger.warning(f"Upbit WebSocket closed (ID: {self.connection_id})")
            self._set_state(ConnectionState.DISCONNECTED)
            self._emit("disconnect")
            if not await self._wait_for_reconnect():
                return

    async def _wait_for_reconnect(self) -> bool:
        """Sleep out the backoff for the next attempt; False once attempts run out"""
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(f"Max reconnect attempts ({self.max_reconnect_attempts}) exceeded. Stopping.")
            self._set_state(ConnectionState.EXHAUSTED)
            self._emit("exhausted")
            return False

        self.reconnect_attempts += 1
        delay = self.reconnect_interval * self.reconnect_attempts
        logger.warning(f"Reconnect {self.reconnect_attempts}/{self.max_reconnect_attempts} in {delay:.1f}s...")
        self._emit("reconnecting", self.reconnect_attempts, delay)
        await self._sleep(delay)
        return not self._closing

    def _start_keepalive(self):
        self._stop_keepalive()
        self._keepalive_task = asyncio.ensure_future(self._keepalive(self.ws))

    def _stop_keepalive(self):
        task, self._keepalive_task = self._keepalive_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _keepalive(self, ws):
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await ws.send("PING")
            except Exception as e:
                logger.warning(f"Keepalive ping failed: {e}")
                return

    async def disconnect(self):
        """Tear down the connection and forget all subscriptions. Safe to repeat."""
        was_active = self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED) or (
            self._run_task is not None and not self._run_task.done())
        self._closing = True
        self._stop_keepalive()

        ws, self.ws = self.ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")

        task, self._run_task = self._run_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.subscriptions.clear()
        self.orderbook_subscriptions.clear()
        self.reconnect_attempts = 0
        self._set_state(ConnectionState.DISCONNECTED)
        if was_active:
            logger.info(f"WebSocket disconnected (ID: {self.connection_id})")
            self._emit("disconnect")

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def _subscription_message(self) -> List[Dict]:
        message: List[Dict] = [{"ticket": f"papertrade-{self.connection_id}-{uuid.uuid4().hex[:8]}"}]
        if self.subscriptions:
            message.append({"type": "ticker", "codes": sorted(self.subscriptions), "isOnlyRealtime": True})
        if self.orderbook_subscriptions:
            message.append({"type": "orderbook", "codes": sorted(self.orderbook_subscriptions),
                            "isOnlyRealtime": True})
        return message

    async def _send_subscriptions(self):
        if self.ws is None:
            return
        if not (self.subscriptions or self.orderbook_subscriptions):
            # Nothing left to request; unsubscribed codes are filtered on receipt
            logger.info("Subscription set is empty")
            return
        message = self._subscription_message()
        logger.info(f"Sending subscription: {message[1:]}")
        await self.ws.send(json.dumps(message))

    async def _sync_subscriptions(self, connect_if_needed: bool = True):
        if self.is_connected:
            await self._send_subscriptions()
        elif connect_if_needed:
            logger.info("WebSocket not connected, subscriptions buffered until connect")
            self.connect()

    async def subscribe_to_instruments(self, codes: Iterable[str]):
        self.subscriptions.update(codes)
        await self._sync_subscriptions()

    async def unsubscribe(self, codes: Iterable[str]):
        for code in codes:
            self.subscriptions.discard(code)
        await self._sync_subscriptions(connect_if_needed=False)

    async def subscribe_orderbook(self, codes: Iterable[str]):
        self.orderbook_subscriptions.update(codes)
        await self._sync_subscriptions()

    async def unsubscribe_orderbook(self, codes: Iterable[str]):
        for code in codes:
            self.orderbook_subscriptions.discard(code)
        await self._sync_subscriptions(connect_if_needed=False)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _handle_message(self, raw):
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode('utf-8')
            data = json.loads(raw)
        except (UnicodeDecodeError, ValueError, TypeError):
            logger.warning(f"Unparseable feed message: {raw!r:.120}")
            return
        if not isinstance(data, dict):
            return

        msg_type = data.get('type') or data.get('ty')
        code = data.get('code') or data.get('cd')
        if not isinstance(code, str):
            code = None
        if msg_type == 'ticker':
            if code in self.subscriptions:
                self._emit("ticker", dict(data, market=code))
        elif msg_type == 'orderbook':
            if code in self.orderbook_subscriptions:
                self._emit("orderbook", dict(data, market=code))
        elif data.get('status') == 'UP':
            logger.debug("Keepalive ack")
        elif 'error' in data:
            logger.warning(f"Feed error message: {data['error']}")
        else:
            logger.debug(f"Ignoring feed message type {msg_type!r}")
