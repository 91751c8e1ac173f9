#!/usr/bin/env python3
"""
================================================================================
                    SIGNAL ENGINE - REAL-TIME SIGNALS
================================================================================
Keeps a rolling price history per instrument and turns it into buy/sell
signals with a confidence score. Three algorithms are available:
MA crossover + RSI, Bollinger Bands and Stochastic.
================================================================================
"""

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Deque, Dict, List, Optional

from .indicators import BUY, HOLD, SELL, IndicatorCalculator, IndicatorResult

logger = logging.getLogger("SignalEngine")

ALGORITHMS = ("ma_rsi", "bollinger", "stochastic")

PRICE_HISTORY_LIMIT = 100
SIGNAL_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class TradingConfig:
    algorithm: str = "ma_rsi"
    short_period: int = 5
    long_period: int = 20
    rsi_period: int = 14
    # 35/65 are looser than the textbook 30/70 and kept as defaults only
    rsi_oversold: float = 35.0
    rsi_overbought: float = 65.0
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    stochastic_k_period: int = 14
    stochastic_d_period: int = 3
    stochastic_oversold: float = 20.0
    stochastic_overbought: float = 80.0
    min_confidence: float = 0.3

    def __post_init__(self):
        if self.algorithm not in ALGORITHMS:
            raise ValueError(f"Unknown algorithm '{self.algorithm}', expected one of {ALGORITHMS}")

    def required_history(self) -> int:
        """Samples needed before the configured algorithm is evaluated"""
        if self.algorithm == "bollinger":
            return self.bollinger_period
        if self.algorithm == "stochastic":
            return self.stochastic_k_period + self.stochastic_d_period
        return max(self.short_period, self.long_period, self.rsi_period)


@dataclass
class TradingSignal:
    timestamp: float
    instrument: str
    signal: str
    confidence: float
    price: float
    reason: str
    indicators: Dict[str, IndicatorResult] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)


class SignalEngine:
    """Real-time signal generation engine"""

    def __init__(self, config: Optional[TradingConfig] = None):
        self.config = config or TradingConfig()
        self.calc = IndicatorCalculator()
        self.price_history: Dict[str, Deque[float]] = {}
        self.signal_history: Dict[str, Deque[TradingSignal]] = {}
        self.last_price_time: Dict[str, float] = {}
        self.callbacks: List[Callable] = []

    def add_callback(self, callback: Callable):
        """Add callback for signal events"""
        self.callbacks.append(callback)

    def remove_callback(self, callback: Callable):
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    def _notify_callbacks(self, signal: TradingSignal):
        for cb in list(self.callbacks):
            try:
                cb(signal)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    def update_config(self, **changes) -> TradingConfig:
        """Swap in a new config; price history is kept so new windows apply immediately"""
        self.config = replace(self.config, **changes)
        logger.info(f"Config updated: {changes}")
        return self.config

    def ingest_price(self, instrument: str, price: float, timestamp: Optional[float] = None):
        """Append a price, dropping the oldest beyond the history cap"""
        history = self.price_history.get(instrument)
        if history is None:
            history = deque(maxlen=PRICE_HISTORY_LIMIT)
            self.price_history[instrument] = history
        history.append(float(price))
        self.last_price_time[instrument] = timestamp if timestamp is not None else time.time()

    def ingest_candle(self, instrument: str, candle: Dict):
        """Add a candle's close price (timestamp in epoch ms, as Upbit sends it)"""
        ts = candle.get('timestamp')
        self.ingest_price(instrument, candle['close'], ts / 1000.0 if ts else None)

    def get_price_history(self, instrument: str) -> List[float]:
        return list(self.price_history.get(instrument, ()))

    def evaluate(self, instrument: str) -> Optional[TradingSignal]:
        """Evaluate one instrument. Returns None while there is not enough history
        or when confidence stays under ``min_confidence``."""
        prices = self.price_history.get(instrument)
        cfg = self.config
        if not prices or len(prices) < cfg.required_history():
            return None

        prices = list(prices)
        if cfg.algorithm == "bollinger":
            result = self.calc.bollinger_signal(prices, cfg.bollinger_period, cfg.bollinger_std_dev)
            direction, confidence = result.signal, result.strength
            breakdown = {"bollinger": result}
            reason = _single_reason(direction, "price below lower Bollinger band",
                                    "price above upper Bollinger band")
        elif cfg.algorithm == "stochastic":
            # Tick prices carry no separate high/low, the close stands in for both
            result = self.calc.stochastic_signal(prices, prices, prices,
                                                 cfg.stochastic_k_period, cfg.stochastic_d_period,
                                                 cfg.stochastic_oversold, cfg.stochastic_overbought)
            direction, confidence = result.signal, result.strength
            breakdown = {"stochastic": result}
            reason = _single_reason(direction, "stochastic oversold / bullish %K-%D cross",
                                    "stochastic overbought / bearish %K-%D cross")
        else:
            ma = self.calc.ma_crossover_signal(prices, cfg.short_period, cfg.long_period)
            rsi = self.calc.rsi_signal(prices, cfg.rsi_period, cfg.rsi_oversold, cfg.rsi_overbought)
            direction, confidence = combine_ma_rsi(ma, rsi)
            breakdown = {"ma": ma, "rsi": rsi}
            reason = _ma_rsi_reason(direction, ma, rsi)

        if confidence < cfg.min_confidence:
            return None

        signal = TradingSignal(
            timestamp=self.last_price_time.get(instrument, time.time()),
            instrument=instrument,
            signal=direction,
            confidence=confidence,
            price=prices[-1],
            reason=reason,
            indicators=breakdown,
        )

        history = self.signal_history.get(instrument)
        if history is None:
            history = deque(maxlen=SIGNAL_HISTORY_LIMIT)
            self.signal_history[instrument] = history
        history.append(signal)

        if signal.signal != HOLD:
            logger.info(f"SIGNAL: {instrument} {signal.signal.upper()} @ {signal.price:,.2f} "
                        f"(confidence: {signal.confidence:.2f}, {cfg.algorithm})")
        self._notify_callbacks(signal)
        return signal

    def evaluate_all(self, instruments: List[str]) -> List[TradingSignal]:
        """Evaluate each instrument independently, keeping input order"""
        signals = []
        for instrument in instruments:
            signal = self.evaluate(instrument)
            if signal:
                signals.append(signal)
        return signals

    def get_signal_history(self, instrument: str) -> List[TradingSignal]:
        return list(self.signal_history.get(instrument, ()))

    def get_all_signal_history(self) -> Dict[str, List[TradingSignal]]:
        return {k: list(v) for k, v in self.signal_history.items()}

    def get_last_signal(self, instrument: str) -> Optional[TradingSignal]:
        history = self.signal_history.get(instrument)
        return history[-1] if history else None

    def analyze_performance(self, instrument: str, days: int = 7) -> Dict:
        """Summary of recent signals for one instrument"""
        history = self.get_signal_history(instrument)
        cutoff = time.time() - days * 24 * 60 * 60
        recent = [s for s in history if s.timestamp >= cutoff]

        return {
            "total_signals": len(recent),
            "buy_signals": sum(1 for s in recent if s.signal == BUY),
            "sell_signals": sum(1 for s in recent if s.signal == SELL),
            "avg_confidence": sum(s.confidence for s in recent) / len(recent) if recent else 0.0,
            "last_signal": history[-1] if history else None,
        }

    def backtest(self, instrument: str, initial_balance: float = 1_000_000) -> Dict:
        """Replay the recorded signals of one instrument as all-in trades.

        A buy signal spends the whole cash balance when flat, a sell signal
        liquidates the holding. A position still open at the end is valued at
        the last signal's price. No fees are charged. A round trip is a win when
        its proceeds exceed the cash committed at entry.
        """
        if initial_balance <= 0:
            raise ValueError("initial_balance must be > 0")

        history = self.get_signal_history(instrument)
        balance = float(initial_balance)
        quantity = 0.0
        entry_cash = 0.0
        trades = 0
        round_trips = 0
        wins = 0

        for signal in history:
            if signal.price <= 0:
                continue
            if signal.signal == BUY and quantity == 0:
                entry_cash = balance
                quantity = balance / signal.price
                balance = 0.0
                trades += 1
            elif signal.signal == SELL and quantity > 0:
                balance = quantity * signal.price
                quantity = 0.0
                trades += 1
                round_trips += 1
                if balance > entry_cash:
                    wins += 1

        if quantity > 0:
            balance = quantity * history[-1].price

        profit = balance - initial_balance
        return {
            "initial_balance": initial_balance,
            "final_balance": balance,
            "profit": profit,
            "profit_rate": profit / initial_balance * 100,
            "trades": trades,
            "round_trips": round_trips,
            "win_rate": wins / round_trips * 100 if round_trips else 0.0,
        }


def combine_ma_rsi(ma: IndicatorResult, rsi: IndicatorResult):
    """Combine MA crossover and RSI results into (signal, confidence).

    Agreement averages both strengths; otherwise a lone MA signal wins at 70%
    and a lone RSI signal at 50%.
    """
    if ma.signal == rsi.signal and ma.signal != HOLD:
        return ma.signal, (ma.strength + rsi.strength) / 2
    if ma.signal != HOLD:
        return ma.signal, ma.strength * 0.7
    if rsi.signal != HOLD:
        return rsi.signal, rsi.strength * 0.5
    return HOLD, 0.0


def _ma_rsi_reason(direction: str, ma: IndicatorResult, rsi: IndicatorResult) -> str:
    if direction == BUY:
        if ma.signal == BUY and rsi.signal == BUY:
            return "bullish MA crossover + RSI oversold"
        return "bullish MA crossover" if ma.signal == BUY else "RSI oversold"
    if direction == SELL:
        if ma.signal == SELL and rsi.signal == SELL:
            return "bearish MA crossover + RSI overbought"
        return "bearish MA crossover" if ma.signal == SELL else "RSI overbought"
    return "no signal"


def _single_reason(direction: str, buy_reason: str, sell_reason: str) -> str:
    if direction == BUY:
        return buy_reason
    if direction == SELL:
        return sell_reason
    return "no signal"
