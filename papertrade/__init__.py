"""
Paper Trading Module
====================
Components for simulated trading on Upbit market data.

Modules:
    - indicators: SMA/EMA/RSI/MACD/Bollinger/Stochastic and signal wrappers
    - signal_engine: Real-time signal generation
    - data_feed: Upbit WebSocket feed, REST client, price book
    - paper_trader: Virtual account, orders, trades and positions
    - auto_trader: Periodic auto-trading loop
    - storage: Versioned key-value persistence
    - alerts: Telegram notifications
    - run_paper: Main paper trading runner
"""

from .indicators import IndicatorCalculator, IndicatorResult
from .signal_engine import SignalEngine, TradingConfig, TradingSignal
from .data_feed import ConnectionState, PriceBook, TickerPoller, UpbitFeedClient, UpbitRestClient
from .paper_trader import PaperTrader, Account, Position, Order, Trade, AutoTradingConfig
from .auto_trader import AutoTrader
from .storage import JsonFileStore, MemoryStore
from .alerts import AlertManager, TelegramAlert

__all__ = [
    'IndicatorCalculator',
    'IndicatorResult',
    'SignalEngine',
    'TradingConfig',
    'TradingSignal',
    'ConnectionState',
    'PriceBook',
    'TickerPoller',
    'UpbitFeedClient',
    'UpbitRestClient',
    'PaperTrader',
    'Account',
    'Position',
    'Order',
    'Trade',
    'AutoTradingConfig',
    'AutoTrader',
    'JsonFileStore',
    'MemoryStore',
    'AlertManager',
    'TelegramAlert'
]
