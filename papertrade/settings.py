"""
Runtime configuration.

Process-level values come from environment variables; the feed settings record
(realtime feed on/off, REST polling interval) lives in the key-value store so it
can be changed and saved at runtime.
"""

import logging
import os
from dataclasses import asdict, dataclass

from .storage import FEED_SETTINGS_KEY, KeyValueStore

logger = logging.getLogger("Settings")

UPBIT_API_URL = os.environ.get("UPBIT_API_URL", "https://api.upbit.com/v1")
UPBIT_WS_URL = os.environ.get("UPBIT_WS_URL", "wss://api.upbit.com/websocket/v1")

STORE_DIR = os.environ.get("PAPERTRADE_STORE_DIR", "results/paper_state")
STARTING_BALANCE = float(os.environ.get("PAPERTRADE_STARTING_BALANCE", "10000000"))
FEE_RATE = float(os.environ.get("PAPERTRADE_FEE_RATE", "0.0005"))

TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID", "")

DEFAULT_INSTRUMENTS = ["KRW-BTC", "KRW-ETH", "KRW-XRP"]


@dataclass
class FeedSettings:
    use_realtime_feed: bool = True
    polling_interval_ms: int = 5000


def load_feed_settings(store: KeyValueStore) -> FeedSettings:
    """Read the feed settings record, falling back to defaults when none is saved"""
    stored = store.get(FEED_SETTINGS_KEY)
    if not stored:
        return FeedSettings()
    settings = FeedSettings(
        use_realtime_feed=bool(stored.get("use_realtime_feed", True)),
        polling_interval_ms=int(stored.get("polling_interval_ms", 5000)),
    )
    if settings.polling_interval_ms <= 0:
        logger.warning(f"Ignoring non-positive polling interval {settings.polling_interval_ms}ms")
        settings.polling_interval_ms = FeedSettings.polling_interval_ms
    return settings


def save_feed_settings(store: KeyValueStore, settings: FeedSettings) -> None:
    if settings.polling_interval_ms <= 0:
        raise ValueError("polling_interval_ms must be > 0")
    store.set(FEED_SETTINGS_KEY, asdict(settings))
    logger.info(f"Saved feed settings: realtime={settings.use_realtime_feed} poll={settings.polling_interval_ms}ms")
