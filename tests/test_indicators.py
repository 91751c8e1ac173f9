"""Tests for the indicator library: series functions and signal wrappers."""

import math

import numpy as np
import pytest

from papertrade.indicators import BUY, HOLD, SELL, IndicatorCalculator

calc = IndicatorCalculator()


def test_sma_on_constant_series():
    out = calc.sma([5.0] * 10, 3)
    assert np.isnan(out[:2]).all()
    assert out[2:] == pytest.approx([5.0] * 8)


def test_sma_trailing_window():
    out = calc.sma([1, 2, 3, 4, 5], 5)
    assert out[-1] == pytest.approx(3.0)


def test_ema_on_constant_series():
    assert calc.ema([7.0] * 12, 5) == pytest.approx([7.0] * 12)


def test_period_must_be_positive():
    with pytest.raises(ValueError):
        calc.sma([1.0, 2.0], 0)


def test_rsi_first_value_at_period_index():
    prices = [float(i) for i in range(1, 16)]  # 15 rising samples
    out = calc.rsi(prices, 14)
    assert np.isnan(out[:14]).all()
    assert out[14] == 100.0


def test_rsi_falling_series_is_zero():
    prices = [float(i) for i in range(40, 0, -1)]
    assert calc.rsi(prices, 14)[-1] == pytest.approx(0.0)


def test_rsi_flat_series_is_50():
    assert calc.rsi([10.0] * 30, 14)[-1] == 50.0


def test_rsi_too_short_is_all_nan():
    assert np.isnan(calc.rsi([1.0, 2.0, 3.0], 14)).all()


def test_rsi_matches_manual_initial_window():
    period = 14
    prices = [44.0, 44.0, 45.0, 43.0, 44.0, 45.0, 44.0, 46.0, 45.0, 47.0, 46.0, 46.0, 47.0, 46.0, 48.0]
    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    avg_gain = sum(max(d, 0.0) for d in deltas) / period
    avg_loss = sum(max(-d, 0.0) for d in deltas) / period
    expected = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    assert math.isclose(calc.rsi(prices, period)[-1], expected, rel_tol=1e-9)


def test_macd_on_constant_series_is_zero():
    line, signal, hist = calc.macd([3.0] * 40)
    assert line == pytest.approx([0.0] * 40)
    assert signal == pytest.approx([0.0] * 40)
    assert hist == pytest.approx([0.0] * 40)


def test_bollinger_bands_collapse_on_constant_series():
    upper, middle, lower = calc.bollinger_bands([10.0] * 25, 20, 2.0)
    assert upper[-1] == pytest.approx(10.0)
    assert middle[-1] == pytest.approx(10.0)
    assert lower[-1] == pytest.approx(10.0)
    assert np.isnan(middle[18])


def test_stochastic_k_at_top_of_range():
    prices = [float(i) for i in range(1, 21)]
    k, d = calc.stochastic(prices, prices, prices, 14, 3)
    assert np.isnan(k[:13]).all()
    assert k[-1] == pytest.approx(100.0)
    assert d[-1] == pytest.approx(100.0)


def test_stochastic_flat_range_reads_50():
    k, _ = calc.stochastic([5.0] * 20, [5.0] * 20, [5.0] * 20, 14, 3)
    assert k[-1] == 50.0


def test_stochastic_length_mismatch():
    with pytest.raises(ValueError):
        calc.stochastic([1.0, 2.0], [1.0], [1.0, 2.0])


def test_ma_crossover_short_input_is_neutral():
    result = calc.ma_crossover_signal([1.0, 2.0, 3.0], 5, 20)
    assert result.signal == HOLD
    assert result.strength == 0.0


def test_ma_crossover_uptrend_is_buy():
    result = calc.ma_crossover_signal([float(i) for i in range(1, 31)], 5, 20)
    assert result.signal == BUY
    assert 0.2 <= result.strength <= 1.0


def test_ma_crossover_fresh_cross_floor():
    # Slow downtrend, then a jump that lifts the short EMA over the long one
    prices = [100.0 - i * 0.01 for i in range(25)] + [101.0]
    result = calc.ma_crossover_signal(prices, 5, 20)
    assert result.signal == BUY
    assert result.strength == pytest.approx(0.3)


def test_rsi_signal_thresholds():
    falling = [float(i) for i in range(40, 10, -1)]
    rising = [float(i) for i in range(10, 40)]
    assert calc.rsi_signal(falling).signal == BUY
    assert calc.rsi_signal(rising).signal == SELL
    assert calc.rsi_signal([10.0] * 30).signal == HOLD


def test_bollinger_signal_below_lower_band():
    prices = [100.0] * 19 + [90.0]
    result = calc.bollinger_signal(prices, 20, 2.0)
    assert result.signal == BUY
    assert result.value < 0
    assert 0.5 <= result.strength <= 1.0


def test_bollinger_signal_above_upper_band():
    prices = [100.0] * 19 + [110.0]
    result = calc.bollinger_signal(prices, 20, 2.0)
    assert result.signal == SELL
    assert result.value > 1


def test_bollinger_signal_zero_width_is_neutral():
    result = calc.bollinger_signal([50.0] * 20)
    assert result.signal == HOLD
    assert result.value == pytest.approx(0.5)


def test_stochastic_signal_overbought():
    prices = [float(i) for i in range(1, 21)]
    result = calc.stochastic_signal(prices, prices, prices, 14, 3)
    assert result.signal == SELL
    assert result.strength == pytest.approx(1.0)


def test_stochastic_signal_oversold():
    prices = [float(i) for i in range(40, 20, -1)]
    result = calc.stochastic_signal(prices, prices, prices, 14, 3)
    assert result.signal == BUY
    assert result.strength == pytest.approx(1.0)


def test_stochastic_signal_short_input_is_neutral():
    prices = [1.0] * 10
    assert calc.stochastic_signal(prices, prices, prices, 14, 3).signal == HOLD
