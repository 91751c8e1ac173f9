#!/usr/bin/env python3
"""
================================================================================
                    PAPER TRADING RUNNER - UPBIT
================================================================================
Real-time paper trading against Upbit market data.
Prices stream over the Upbit WebSocket (or are polled over REST), feed the
signal engine, and the auto-trader executes on the virtual ledger.

Usage:
    python -m papertrade.run_paper                          # WebSocket, saved auto-trading setting
    python -m papertrade.run_paper --auto                   # Auto-trading on (--no-auto turns it off)
    python -m papertrade.run_paper --no-feed --poll-ms 3000 # REST polling
    python -m papertrade.run_paper --instruments KRW-BTC KRW-SOL --algorithm bollinger
================================================================================
"""

import argparse
import asyncio
import logging
import signal as sig
from typing import List, Optional

import requests

from .alerts import AlertManager
from .auto_trader import AutoTrader
from .data_feed import PriceBook, TickerPoller, UpbitFeedClient, UpbitRestClient
from .paper_trader import PaperTrader
from .settings import (DEFAULT_INSTRUMENTS, STARTING_BALANCE, STORE_DIR, load_feed_settings,
                       save_feed_settings)
from .signal_engine import ALGORITHMS, SignalEngine
from .storage import JsonFileStore

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger("PaperRunner")

SEED_CANDLES = 100


class PaperTradingSystem:
    """Wires market data, signals, ledger, auto-trader and alerts together"""

    def __init__(self, instruments: List[str], balance: float = STARTING_BALANCE,
                 store_dir: str = STORE_DIR, algorithm: Optional[str] = None,
                 auto: Optional[bool] = None, interval: float = 30.0,
                 poll_ms: Optional[int] = None, use_feed: Optional[bool] = None):
        self.instruments = instruments

        logger.info("Initializing paper trading system...")

        self.store = JsonFileStore(store_dir)
        self.feed_settings = load_feed_settings(self.store)
        if use_feed is not None:
            self.feed_settings.use_realtime_feed = use_feed
        if poll_ms is not None:
            self.feed_settings.polling_interval_ms = poll_ms
        save_feed_settings(self.store, self.feed_settings)

        self.rest = UpbitRestClient()
        self.price_book = PriceBook()
        self.signal_engine = SignalEngine()
        self.paper_trader = PaperTrader(store=self.store, starting_balance=balance)
        self.auto_trader = AutoTrader(self.paper_trader, self.price_book.snapshot,
                                      self.signal_engine, interval=interval)
        self.alerts = AlertManager()
        self.feed = UpbitFeedClient()
        self.poller = TickerPoller(self.rest, self.price_book, lambda: self.instruments,
                                   self.feed_settings.polling_interval_ms)

        changes = {"instruments": instruments}
        if algorithm:
            changes["algorithm"] = algorithm
        if auto is not None:
            changes["enabled"] = auto
        self.auto_trader.update_config(**changes)

        self._setup_callbacks()
        self._stop_event: Optional[asyncio.Event] = None

        account = self.paper_trader.get_account()
        logger.info(f"System initialized with {len(instruments)} instruments, balance {account.balance:,.0f}")
        if self.feed_settings.use_realtime_feed:
            logger.info("MODE: WebSocket Real-Time Streaming")
        else:
            logger.info(f"MODE: REST polling every {self.feed_settings.polling_interval_ms}ms")

    def _setup_callbacks(self):
        """Connect component callbacks"""

        # Every price update extends the signal engine's history
        self.price_book.add_callback(
            lambda instrument, price, ts: self.signal_engine.ingest_price(instrument, price, ts))

        self.feed.on("ticker", self.price_book.on_ticker)
        self.feed.on("state", self.alerts.on_feed_state)

        self.signal_engine.add_callback(self.alerts.on_signal)
        self.paper_trader.add_callback(self.alerts.on_ledger_event)
        self.auto_trader.add_callback(self.alerts.on_auto_trade)

    def seed_history(self):
        """Prime price history from recent minute candles"""
        for instrument in self.instruments:
            try:
                candles = self.rest.get_candles(instrument, unit=1, count=SEED_CANDLES)
            except requests.RequestException as e:
                logger.warning(f"Could not fetch candles for {instrument}: {e}")
                continue
            for candle in candles[:-1]:
                self.signal_engine.ingest_candle(instrument, candle)
            if candles:
                last = candles[-1]
                self.price_book.update(instrument, last['close'], last['timestamp'] / 1000.0)
                logger.info(f"Seeded {instrument} with {len(candles)} candles, last close {last['close']:,.2f}")

    async def run_async(self):
        """Run until stop() is called"""
        self._stop_event = asyncio.Event()
        self.alerts.send_startup(self.instruments, self.paper_trader.get_account().balance)

        logger.info("Fetching initial historical data...")
        await asyncio.to_thread(self.seed_history)

        if self.feed_settings.use_realtime_feed:
            logger.info("Connecting to Upbit WebSocket...")
            await self.feed.subscribe_to_instruments(self.instruments)
        else:
            self.poller.start()

        self.auto_trader.start()
        await self._stop_event.wait()
        await self.shutdown()

    def stop(self):
        if self._stop_event is not None:
            self._stop_event.set()

    async def shutdown(self):
        logger.info("Shutting down...")
        await self.auto_trader.stop()
        await self.poller.stop()
        await self.feed.disconnect()

        self.paper_trader.print_summary()
        stats = self.paper_trader.get_trading_stats()
        self.alerts.send_daily_summary(stats, self.paper_trader.get_account().balance)

    def run(self):
        """Run the system (blocking)"""
        async def _main():
            loop = asyncio.get_running_loop()
            for signum in (sig.SIGINT, sig.SIGTERM):
                loop.add_signal_handler(signum, self.stop)
            await self.run_async()

        asyncio.run(_main())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Upbit Paper Trading System")
    parser.add_argument("--instruments", nargs="+", default=DEFAULT_INSTRUMENTS,
                        help="Instrument codes to trade (default: KRW-BTC KRW-ETH KRW-XRP)")
    parser.add_argument("--balance", type=float, default=STARTING_BALANCE,
                        help="Starting balance for a new account (default: 10,000,000 KRW)")
    parser.add_argument("--store-dir", default=STORE_DIR,
                        help="Directory for persisted ledger state")
    parser.add_argument("--algorithm", choices=ALGORITHMS, default=None,
                        help="Signal algorithm (default: keep saved setting)")
    auto = parser.add_mutually_exclusive_group()
    auto.add_argument("--auto", dest="auto", action="store_const", const=True, default=None,
                      help="Enable auto-trading (default: keep saved setting)")
    auto.add_argument("--no-auto", dest="auto", action="store_const", const=False,
                      help="Disable auto-trading")
    parser.add_argument("--interval", type=float, default=30.0,
                        help="Auto-trading interval in seconds (default: 30)")
    parser.add_argument("--poll-ms", type=int, default=None,
                        help="REST polling interval in milliseconds")
    parser.add_argument("--no-feed", action="store_true",
                        help="Use REST polling instead of the WebSocket feed")
    parser.add_argument("--reset", action="store_true",
                        help="Reset the paper account before starting")
    return parser


def main():
    args = build_parser().parse_args()

    system = PaperTradingSystem(
        args.instruments,
        balance=args.balance,
        store_dir=args.store_dir,
        algorithm=args.algorithm,
        auto=args.auto,
        interval=args.interval,
        poll_ms=args.poll_ms,
        use_feed=False if args.no_feed else None,
    )
    if args.reset:
        system.paper_trader.reset_account()

    auto_enabled = system.paper_trader.get_auto_trading_config().enabled
    print("=" * 60)
    print("  UPBIT PAPER TRADING SYSTEM")
    print("=" * 60)
    print(f"  Instruments: {', '.join(args.instruments)}")
    print(f"  Auto-trading: {'ON' if auto_enabled else 'OFF'} (every {args.interval:.0f}s)")
    print(f"  Mode: {'WebSocket (Real-Time)' if system.feed_settings.use_realtime_feed else 'REST polling'}")
    print("=" * 60)
    print()

    system.run()


if __name__ == "__main__":
    main()
