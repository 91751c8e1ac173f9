"""Tests for alert formatting and delivery."""

import pytest
import requests

from papertrade.alerts import AlertManager, TelegramAlert
from papertrade.data_feed import ConnectionState
from papertrade.exceptions import InsufficientPositionError
from papertrade.paper_trader import PaperTrader
from papertrade.signal_engine import TradingSignal
from papertrade.storage import MemoryStore


class RecordingTelegram:
    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)
        return True


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, data=None, timeout=None):
        self.posts.append((url, data))
        if self.error:
            raise self.error
        return self.response


def test_telegram_disabled_without_credentials():
    session = FakeSession(FakeResponse(200))
    alert = TelegramAlert(bot_token="", chat_id="", session=session)
    assert not alert.enabled
    assert alert.send("hello") is False
    assert session.posts == []


def test_telegram_send():
    session = FakeSession(FakeResponse(200))
    alert = TelegramAlert(bot_token="token", chat_id="42", session=session)
    assert alert.send("hello") is True
    url, data = session.posts[0]
    assert url == "https://api.telegram.org/bottoken/sendMessage"
    assert data["chat_id"] == "42"


def test_telegram_send_failures_return_false():
    assert TelegramAlert("t", "c", session=FakeSession(FakeResponse(400, "bad"))).send("x") is False
    failing = FakeSession(error=requests.ConnectionError("down"))
    assert TelegramAlert("t", "c", session=failing).send("x") is False


def test_signal_alerts_skip_hold():
    telegram = RecordingTelegram()
    alerts = AlertManager(telegram)
    alerts.on_signal(TradingSignal(0.0, "KRW-BTC", "hold", 0.0, 1.0, "no signal"))
    alerts.on_signal(TradingSignal(0.0, "KRW-BTC", "buy", 0.7, 1.0, "bullish MA crossover"))
    assert len(telegram.messages) == 1
    assert "BUY" in telegram.messages[0]


def test_ledger_events_are_forwarded():
    telegram = RecordingTelegram()
    alerts = AlertManager(telegram)
    trader = PaperTrader(MemoryStore())
    trader.add_callback(alerts.on_ledger_event)

    trader.place_buy_order("KRW-BTC", 1_000, 1)
    with pytest.raises(InsufficientPositionError):
        trader.place_sell_order("KRW-ETH", 1_000, 1)
    trader.reset_account()

    assert "ORDER FILLED - BUY" in telegram.messages[0]
    assert "ORDER REJECTED" in telegram.messages[1]
    assert "ACCOUNT RESET" in telegram.messages[2]
    assert alerts.daily_stats["fills"] == 1
    assert alerts.daily_stats["buys"] == 1
    assert alerts.daily_stats["rejections"] == 1


def test_feed_exhaustion_raises_error_alert():
    telegram = RecordingTelegram()
    alerts = AlertManager(telegram)
    alerts.on_feed_state(ConnectionState.CONNECTED)
    assert telegram.messages == []
    alerts.on_feed_state(ConnectionState.EXHAUSTED)
    assert "ERROR" in telegram.messages[0]
