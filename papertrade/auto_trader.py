#!/usr/bin/env python3
"""
================================================================================
                    AUTO TRADER - PERIODIC STRATEGY LOOP
================================================================================
Every ``interval`` seconds, while auto-trading is enabled:
  1. revalue open positions at the latest prices
  2. exit positions that hit stop-loss / take-profit or get a sell signal
  3. enter new positions on buy signals, within the position and cash limits
================================================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .indicators import BUY, SELL
from .paper_trader import AutoTradingConfig, AutoTradingResult, PaperTrader, Position
from .signal_engine import SignalEngine

logger = logging.getLogger("AutoTrader")


class AutoTrader:
    """Drives the ledger from signals.

    ``price_source`` is a callable returning the current {instrument: price}
    map, usually ``PriceBook.snapshot``.
    """

    def __init__(self, trader: PaperTrader, price_source: Callable[[], Dict[str, float]],
                 signal_engine: Optional[SignalEngine] = None, interval: float = 30.0):
        self.trader = trader
        self.price_source = price_source
        self.signal_engine = signal_engine or SignalEngine()
        self.interval = interval
        self.callbacks: List[Callable] = []
        self._task: Optional[asyncio.Task] = None
        self._sync_algorithm(trader.get_auto_trading_config())

    def add_callback(self, callback: Callable):
        """Add callback for executed auto-trades: cb(AutoTradingResult)"""
        self.callbacks.append(callback)

    def _notify_callbacks(self, result: AutoTradingResult):
        for cb in list(self.callbacks):
            try:
                cb(result)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _sync_algorithm(self, config: AutoTradingConfig):
        if self.signal_engine.config.algorithm != config.algorithm:
            self.signal_engine.update_config(algorithm=config.algorithm)

    def set_enabled(self, enabled: bool):
        self.trader.update_auto_trading_config(enabled=bool(enabled))
        logger.info(f"Auto-trading {'enabled' if enabled else 'disabled'}")

    def update_config(self, **changes) -> AutoTradingConfig:
        """Persist config changes; they apply from the next tick"""
        config = self.trader.update_auto_trading_config(**changes)
        self._sync_algorithm(config)
        return config

    # ------------------------------------------------------------------
    # Strategy
    # ------------------------------------------------------------------

    def tick(self) -> List[AutoTradingResult]:
        """Run one pass over the configured instruments; returns the actions taken"""
        config = self.trader.get_auto_trading_config()
        if not config.enabled:
            return []

        self._sync_algorithm(config)
        prices = self.price_source()
        self.trader.update_position_values(prices)

        actions = []
        for instrument in config.instruments:
            try:
                result = self._process_instrument(instrument, prices.get(instrument), config)
            except Exception as e:
                logger.error(f"Auto-trading failed for {instrument}: {e}")
                continue
            if result:
                self.trader.add_auto_trading_result(result)
                self._notify_callbacks(result)
                actions.append(result)
        return actions

    def _process_instrument(self, instrument: str, price: Optional[float],
                            config: AutoTradingConfig) -> Optional[AutoTradingResult]:
        if not price or price <= 0:
            logger.debug(f"No price for {instrument}, skipping")
            return None

        pos = self.trader.get_position(instrument)
        if pos:
            return self._manage_position(pos, price, config)

        if len(self.trader.get_positions()) >= config.max_positions:
            logger.debug(f"Max positions ({config.max_positions}) reached, skipping {instrument}")
            return None
        if self.trader.get_account().balance < config.investment_amount:
            logger.debug(f"Balance below investment amount, skipping {instrument}")
            return None

        signal = self.signal_engine.evaluate(instrument)
        if signal is None or signal.signal != BUY:
            return None

        quantity = config.investment_amount / price
        self.trader.place_buy_order(instrument, price, quantity)
        logger.info(f"AUTO BUY {instrument} {quantity:.8g} @ {price:,.2f} ({signal.reason})")
        return _result(instrument, BUY, signal.confidence, price, signal.reason)

    def _manage_position(self, pos: Position, price: float,
                         config: AutoTradingConfig) -> Optional[AutoTradingResult]:
        rate = pos.profit_loss_rate
        # A zero threshold disables that exit
        if config.stop_loss_pct > 0 and rate <= -config.stop_loss_pct:
            return self._exit(pos, price, 1.0, f"stop-loss hit ({rate:.2f}%)")
        if config.take_profit_pct > 0 and rate >= config.take_profit_pct:
            return self._exit(pos, price, 1.0, f"take-profit hit ({rate:.2f}%)")

        signal = self.signal_engine.evaluate(pos.instrument)
        if signal is not None and signal.signal == SELL:
            return self._exit(pos, price, signal.confidence, signal.reason)
        return None

    def _exit(self, pos: Position, price: float, confidence: float, reason: str) -> AutoTradingResult:
        self.trader.place_sell_order(pos.instrument, price, pos.quantity)
        logger.info(f"AUTO SELL {pos.instrument} {pos.quantity:.8g} @ {price:,.2f} ({reason})")
        return _result(pos.instrument, SELL, confidence, price, reason)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self):
        logger.info(f"Auto-trading loop started (every {self.interval}s)")
        while True:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Auto-trading tick failed: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.ensure_future(self._run())
        return self._task

    async def stop(self):
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Auto-trading loop stopped")


def _result(instrument: str, side: str, confidence: float, price: float, reason: str) -> AutoTradingResult:
    return AutoTradingResult(instrument=instrument, signal=side, confidence=confidence,
                             price=price, timestamp=datetime.now().isoformat(), reason=reason)
