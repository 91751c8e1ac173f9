#!/usr/bin/env python3
"""
================================================================================
                    INDICATORS - TECHNICAL ANALYSIS LIBRARY
================================================================================
Pure functions over price sequences: SMA, EMA, RSI, MACD, Bollinger Bands and
Stochastic %K/%D, plus the signal wrappers that turn the latest values into a
buy/sell/hold decision with a strength in [0, 1].

Series functions return numpy arrays aligned with the input, NaN where the
indicator is not yet defined. Signal wrappers never raise on short input; they
return a neutral hold result with zero strength instead.
================================================================================
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
import pandas as pd

BUY = "buy"
SELL = "sell"
HOLD = "hold"


@dataclass
class IndicatorResult:
    value: float
    signal: str  # buy, sell or hold
    strength: float  # 0..1


def neutral(value: float = 0.0) -> IndicatorResult:
    return IndicatorResult(value=value, signal=HOLD, strength=0.0)


def _clip01(x: float) -> float:
    return float(min(max(x, 0.0), 1.0))


def _series(data: Sequence[float]) -> pd.Series:
    return pd.Series(list(data), dtype=float)


def _check_period(period: int):
    if period <= 0:
        raise ValueError("period must be > 0")


class IndicatorCalculator:
    """Calculate indicators on price sequences"""

    @staticmethod
    def sma(data: Sequence[float], period: int) -> np.ndarray:
        """Simple moving average of the trailing window"""
        _check_period(period)
        return _series(data).rolling(window=period).mean().to_numpy()

    @staticmethod
    def ema(data: Sequence[float], period: int) -> np.ndarray:
        """Exponential moving average seeded with the first observation"""
        _check_period(period)
        return _series(data).ewm(span=period, adjust=False).mean().to_numpy()

    @staticmethod
    def rsi(data: Sequence[float], period: int = 14) -> np.ndarray:
        """Relative Strength Index with Wilder smoothing.

        The first value sits at index ``period`` and uses the simple average of the
        first ``period`` deltas; later values smooth with
        ``avg = (avg * (period - 1) + x) / period``.
        """
        _check_period(period)
        prices = np.asarray(list(data), dtype=float)
        out = np.full(len(prices), np.nan)
        if len(prices) < period + 1:
            return out

        deltas = np.diff(prices)
        gains = np.clip(deltas, 0.0, None)
        losses = np.clip(-deltas, 0.0, None)

        avg_gain = gains[:period].mean()
        avg_loss = losses[:period].mean()
        out[period] = _rsi_from_averages(avg_gain, avg_loss)

        for i in range(period + 1, len(prices)):
            avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
            out[i] = _rsi_from_averages(avg_gain, avg_loss)
        return out

    @staticmethod
    def macd(data: Sequence[float], fast: int = 12, slow: int = 26,
             signal: int = 9) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Returns (macd_line, signal_line, histogram)"""
        macd_line = IndicatorCalculator.ema(data, fast) - IndicatorCalculator.ema(data, slow)
        signal_line = IndicatorCalculator.ema(macd_line, signal)
        return macd_line, signal_line, macd_line - signal_line

    @staticmethod
    def bollinger_bands(data: Sequence[float], period: int = 20,
                        std_dev: float = 2.0) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Returns (upper, middle, lower) using the population standard deviation"""
        _check_period(period)
        s = _series(data)
        middle = s.rolling(window=period).mean()
        sigma = s.rolling(window=period).std(ddof=0)
        upper = middle + std_dev * sigma
        lower = middle - std_dev * sigma
        return upper.to_numpy(), middle.to_numpy(), lower.to_numpy()

    @staticmethod
    def stochastic(high: Sequence[float], low: Sequence[float], close: Sequence[float],
                   k_period: int = 14, d_period: int = 3) -> Tuple[np.ndarray, np.ndarray]:
        """Returns (%K, %D). A flat window (highest == lowest) reads as %K = 50."""
        _check_period(k_period)
        _check_period(d_period)
        h, l, c = _series(high), _series(low), _series(close)
        if not (len(h) == len(l) == len(c)):
            raise ValueError("high, low and close must have the same length")

        lowest = l.rolling(window=k_period).min()
        highest = h.rolling(window=k_period).max()
        price_range = highest - lowest
        k = ((c - lowest) / price_range.where(price_range != 0)) * 100
        k = k.where(price_range != 0, 50.0).where(lowest.notna())
        d = k.rolling(window=d_period).mean()
        return k.to_numpy(), d.to_numpy()

    # ------------------------------------------------------------------
    # Signal wrappers
    # ------------------------------------------------------------------

    @staticmethod
    def ma_crossover_signal(prices: Sequence[float], short_period: int = 5,
                            long_period: int = 20) -> IndicatorResult:
        """Short/long EMA crossover over the last two samples.

        A fresh crossing is floored at 0.3 strength; a short EMA that simply stays
        above (below) the long EMA is a weaker continuation signal floored at 0.2.
        """
        if len(prices) < max(short_period, long_period, 2):
            return neutral()

        short_ema = IndicatorCalculator.ema(prices, short_period)
        long_ema = IndicatorCalculator.ema(prices, long_period)
        cur_short, prev_short = short_ema[-1], short_ema[-2]
        cur_long, prev_long = long_ema[-1], long_ema[-2]

        distance = abs(cur_short - cur_long) / abs(cur_long) if cur_long else 0.0
        scaled = _clip01(distance * 10)

        if prev_short <= prev_long and cur_short > cur_long:
            return IndicatorResult(cur_short, BUY, max(scaled, 0.3))
        if prev_short >= prev_long and cur_short < cur_long:
            return IndicatorResult(cur_short, SELL, max(scaled, 0.3))
        if cur_short > cur_long:
            return IndicatorResult(cur_short, BUY, max(scaled, 0.2))
        if cur_short < cur_long:
            return IndicatorResult(cur_short, SELL, max(scaled, 0.2))
        return neutral(cur_short)

    @staticmethod
    def rsi_signal(prices: Sequence[float], period: int = 14, oversold: float = 35.0,
                   overbought: float = 65.0) -> IndicatorResult:
        if len(prices) < period + 1:
            return neutral()

        current = IndicatorCalculator.rsi(prices, period)[-1]
        if math.isnan(current):
            return neutral()

        if current <= oversold:
            strength = (oversold - current) / oversold if oversold > 0 else 1.0
            return IndicatorResult(current, BUY, _clip01(strength))
        if current >= overbought:
            strength = (current - overbought) / (100 - overbought) if overbought < 100 else 1.0
            return IndicatorResult(current, SELL, _clip01(strength))
        return neutral(current)

    @staticmethod
    def bollinger_signal(prices: Sequence[float], period: int = 20,
                         std_dev: float = 2.0) -> IndicatorResult:
        """Band touch signal. Value is %B; strength grows with penetration depth.

        Touching a band exactly gives 0.5; a price twice the band's distance from
        the middle line gives 1.0.
        """
        if len(prices) < period:
            return neutral()

        upper, middle, lower = IndicatorCalculator.bollinger_bands(prices, period, std_dev)
        price = float(prices[-1])
        up, mid, low = upper[-1], middle[-1], lower[-1]
        half_width = up - mid
        if math.isnan(half_width) or half_width <= 0:
            return neutral(0.5)

        percent_b = (price - low) / (up - low)
        depth = abs(price - mid) / half_width
        if price <= low:
            return IndicatorResult(percent_b, BUY, _clip01(0.5 * depth))
        if price >= up:
            return IndicatorResult(percent_b, SELL, _clip01(0.5 * depth))
        return neutral(percent_b)

    @staticmethod
    def stochastic_signal(high: Sequence[float], low: Sequence[float], close: Sequence[float],
                          k_period: int = 14, d_period: int = 3, oversold: float = 20.0,
                          overbought: float = 80.0) -> IndicatorResult:
        """Zone signal when %K and %D are both oversold/overbought, otherwise a
        %K/%D crossover on the matching side of the 50 midline (floored at 0.5)."""
        if len(close) < k_period + d_period:
            return neutral()

        k, d = IndicatorCalculator.stochastic(high, low, close, k_period, d_period)
        cur_k, cur_d, prev_k, prev_d = k[-1], d[-1], k[-2], d[-2]
        if any(math.isnan(x) for x in (cur_k, cur_d, prev_k, prev_d)):
            return neutral()

        if cur_k <= oversold and cur_d <= oversold:
            avg = (cur_k + cur_d) / 2
            strength = (oversold - avg) / oversold if oversold > 0 else 1.0
            return IndicatorResult(cur_k, BUY, _clip01(strength))
        if cur_k >= overbought and cur_d >= overbought:
            avg = (cur_k + cur_d) / 2
            strength = (avg - overbought) / (100 - overbought) if overbought < 100 else 1.0
            return IndicatorResult(cur_k, SELL, _clip01(strength))

        crossover_strength = max(_clip01(abs(cur_k - cur_d) / 20), 0.5)
        if prev_k <= prev_d and cur_k > cur_d and cur_k < 50:
            return IndicatorResult(cur_k, BUY, crossover_strength)
        if prev_k >= prev_d and cur_k < cur_d and cur_k > 50:
            return IndicatorResult(cur_k, SELL, crossover_strength)
        return neutral(cur_k)


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)
