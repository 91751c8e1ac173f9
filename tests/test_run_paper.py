"""Tests for the runner's wiring, without touching the network."""

import pytest
import requests

from papertrade.run_paper import PaperTradingSystem, build_parser
from papertrade.settings import load_feed_settings


class FakeRest:
    def get_candles(self, code, unit=1, count=200):
        if code == "KRW-ETH":
            raise requests.ConnectionError("offline")
        return [{"timestamp": 1_700_000_000_000 + i * 60_000, "open": float(i), "high": float(i),
                 "low": float(i), "close": float(i), "volume": 1.0} for i in range(1, 31)]


@pytest.fixture
def system(tmp_path):
    return PaperTradingSystem(["KRW-BTC", "KRW-ETH"], store_dir=str(tmp_path), algorithm="ma_rsi",
                              auto=True, poll_ms=2000, use_feed=False)


def test_cli_options_are_persisted(system):
    settings = load_feed_settings(system.store)
    assert settings.use_realtime_feed is False
    assert settings.polling_interval_ms == 2000
    config = system.paper_trader.get_auto_trading_config()
    assert config.enabled is True
    assert config.instruments == ["KRW-BTC", "KRW-ETH"]


def test_seed_history_feeds_engine_and_price_book(system):
    system.rest = FakeRest()
    system.seed_history()

    assert len(system.signal_engine.get_price_history("KRW-BTC")) == 30
    assert system.price_book.get("KRW-BTC") == 30.0
    assert system.price_book.get("KRW-ETH") is None


def test_feed_ticker_reaches_signal_engine(system):
    system.feed._handle_message('{"type": "ticker", "code": "KRW-BTC", "trade_price": 5}')
    assert system.price_book.get("KRW-BTC") is None  # not subscribed yet

    system.feed.subscriptions.add("KRW-BTC")
    system.feed._handle_message('{"type": "ticker", "code": "KRW-BTC", "trade_price": 5}')
    assert system.price_book.get("KRW-BTC") == 5.0
    assert system.signal_engine.get_price_history("KRW-BTC") == [5.0]


def test_seeded_prices_drive_auto_trader(system):
    system.rest = FakeRest()
    system.seed_history()
    actions = system.auto_trader.tick()
    assert [a.instrument for a in actions] == ["KRW-BTC"]
    assert system.paper_trader.has_position("KRW-BTC")


def test_auto_flag_defaults_to_saved_setting():
    parser = build_parser()
    assert parser.parse_args([]).auto is None
    assert parser.parse_args(["--auto"]).auto is True
    assert parser.parse_args(["--no-auto"]).auto is False
    with pytest.raises(SystemExit):
        parser.parse_args(["--auto", "--no-auto"])


def test_restart_without_auto_flag_keeps_saved_config(system, tmp_path):
    restarted = PaperTradingSystem(["KRW-BTC"], store_dir=str(tmp_path), use_feed=False,
                                   auto=build_parser().parse_args([]).auto)
    config = restarted.paper_trader.get_auto_trading_config()
    assert config.enabled is True
    assert config.algorithm == "ma_rsi"
    assert config.instruments == ["KRW-BTC"]

    disabled = PaperTradingSystem(["KRW-BTC"], store_dir=str(tmp_path), use_feed=False, auto=False)
    assert disabled.paper_trader.get_auto_trading_config().enabled is False
