#!/usr/bin/env python3
"""
================================================================================
                    ALERTS - TELEGRAM NOTIFICATIONS
================================================================================
Sends trading alerts to Telegram for real-time monitoring.
Falls back to the log when no bot token / chat ID is configured.
================================================================================
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

import requests

from .data_feed import ConnectionState
from .indicators import HOLD
from .paper_trader import AutoTradingResult
from .settings import TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID
from .signal_engine import TradingSignal

logger = logging.getLogger("Alerts")


class TelegramAlert:
    """Send alerts to Telegram"""

    def __init__(self, bot_token: str = None, chat_id: str = None,
                 session: Optional[requests.Session] = None):
        self.bot_token = bot_token or TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id or TELEGRAM_CHAT_ID
        self.session = session or requests.Session()

        self.enabled = bool(self.bot_token and self.chat_id)

        if not self.enabled:
            logger.info("Telegram alerts disabled - set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID to enable")

    def send(self, message: str) -> bool:
        """Send message to Telegram"""
        if not self.enabled:
            logger.info(f"[ALERT] {message}")
            return False

        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            data = {
                "chat_id": self.chat_id,
                "text": message,
                "parse_mode": "HTML"
            }
            response = self.session.post(url, data=data, timeout=10)

            if response.status_code == 200:
                return True
            logger.error(f"Telegram error: {response.text}")
            return False

        except requests.RequestException as e:
            logger.error(f"Telegram send error: {e}")
            return False


class AlertManager:
    """Manages trading alerts"""

    def __init__(self, telegram: TelegramAlert = None):
        self.telegram = telegram or TelegramAlert()
        self.daily_stats = self._empty_stats()
        self.last_reset = datetime.now().date()

    @staticmethod
    def _empty_stats() -> Dict:
        return {"fills": 0, "buys": 0, "sells": 0, "rejections": 0, "fees": 0.0}

    def _check_day_reset(self):
        """Reset daily stats at midnight"""
        today = datetime.now().date()
        if today != self.last_reset:
            self.daily_stats = self._empty_stats()
            self.last_reset = today

    def on_signal(self, signal: TradingSignal):
        """Alert on new trading signal"""
        if signal.signal == HOLD:
            return
        msg = (
            f"<b>SIGNAL</b>\n"
            f"Instrument: {signal.instrument}\n"
            f"Direction: {signal.signal.upper()}\n"
            f"Price: {signal.price:,.2f}\n"
            f"Confidence: {signal.confidence:.0%}\n"
            f"Reason: {signal.reason}\n"
            f"Time: {datetime.now().strftime('%H:%M:%S')}"
        )
        self.telegram.send(msg)

    def on_ledger_event(self, event_type: str, data: Dict):
        """PaperTrader callback"""
        if event_type == "FILLED":
            self.on_fill(data)
        elif event_type == "REJECTED":
            self.on_rejection(data)
        elif event_type == "RESET":
            self.telegram.send(f"<b>ACCOUNT RESET</b>\nBalance: {data['balance']:,.0f}")

    def on_fill(self, data: Dict):
        """Alert on filled order"""
        self._check_day_reset()
        trade = data['trade']

        self.daily_stats['fills'] += 1
        self.daily_stats['buys' if trade['side'] == 'buy' else 'sells'] += 1
        self.daily_stats['fees'] += trade['fee']

        msg = (
            f"<b>ORDER FILLED - {trade['side'].upper()}</b>\n"
            f"Instrument: {trade['instrument']}\n"
            f"Quantity: {trade['quantity']:.8g}\n"
            f"Price: {trade['price']:,.2f}\n"
            f"Amount: {trade['total_amount']:,.0f}\n"
            f"Fee: {trade['fee']:,.2f}\n"
            f"Balance: {data['balance']:,.0f}\n"
            f"\n"
            f"<b>Daily Stats</b>\n"
            f"Fills: {self.daily_stats['fills']} "
            f"(B/S: {self.daily_stats['buys']}/{self.daily_stats['sells']})\n"
            f"Fees: {self.daily_stats['fees']:,.2f}"
        )
        self.telegram.send(msg)

    def on_rejection(self, data: Dict):
        """Alert on rejected order"""
        self._check_day_reset()
        self.daily_stats['rejections'] += 1
        msg = (
            f"<b>ORDER REJECTED</b>\n"
            f"Instrument: {data['instrument']}\n"
            f"Side: {data['side'].upper()}\n"
            f"Reason: {data['reason']}"
        )
        self.telegram.send(msg)

    def on_auto_trade(self, result: AutoTradingResult):
        """Alert on auto-trading action"""
        msg = (
            f"<b>AUTO {result.signal.upper()}</b>\n"
            f"Instrument: {result.instrument}\n"
            f"Price: {result.price:,.2f}\n"
            f"Reason: {result.reason}"
        )
        self.telegram.send(msg)

    def on_feed_state(self, state: ConnectionState):
        """Alert when the feed drops for good; other transitions are only logged"""
        if state == ConnectionState.EXHAUSTED:
            self.send_error("Upbit feed gave up reconnecting. Restart the feed or switch to polling.")
        else:
            logger.info(f"Feed state: {state.value}")

    def send_daily_summary(self, stats: Dict, balance: float = 0.0):
        """Send daily trading summary"""
        msg = (
            f"<b>DAILY SUMMARY</b>\n"
            f"Date: {datetime.now().strftime('%Y-%m-%d')}\n"
            f"\n"
            f"Total Trades: {stats.get('total_trades', 0)}\n"
            f"Win Rate: {stats.get('win_rate', 0)}%\n"
            f"Net Profit: {stats.get('net_profit', 0):,.0f}\n"
            f"Max Drawdown: {stats.get('max_drawdown', 0):,.0f}\n"
            f"Balance: {balance:,.0f}"
        )
        self.telegram.send(msg)

    def send_error(self, error_msg: str):
        """Send error alert"""
        msg = f"<b>ERROR</b>\n{error_msg}"
        self.telegram.send(msg)

    def send_startup(self, instruments: List[str], balance: float):
        """Send startup notification"""
        msg = (
            f"<b>PAPER TRADING STARTED</b>\n"
            f"Instruments: {', '.join(instruments)}\n"
            f"Balance: {balance:,.0f}\n"
            f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        )
        self.telegram.send(msg)
