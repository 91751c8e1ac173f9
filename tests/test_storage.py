"""Tests for the versioned key-value stores and the feed settings record."""

import json
import os

import pytest

from papertrade.exceptions import StoreVersionError
from papertrade.settings import FeedSettings, load_feed_settings, save_feed_settings
from papertrade.storage import FEED_SETTINGS_KEY, JsonFileStore, MemoryStore


def test_memory_store_round_trip():
    store = MemoryStore()
    assert store.get("missing") is None
    assert store.get("missing", []) == []

    store.set("positions", [{"instrument": "KRW-BTC", "quantity": 1.5}])
    assert store.get("positions") == [{"instrument": "KRW-BTC", "quantity": 1.5}]
    assert json.loads(store._data["positions"])["version"] == 1

    store.delete("positions")
    assert store.keys() == []


def test_memory_store_rejects_unversioned_records():
    store = MemoryStore()
    store._data["account"] = json.dumps({"balance": 1})
    with pytest.raises(StoreVersionError):
        store.get("account")


def test_json_file_store_persists_across_instances(tmp_path):
    directory = str(tmp_path / "state")
    JsonFileStore(directory).set("account", {"balance": 123.0})

    with open(os.path.join(directory, "account.json"), encoding="utf-8") as f:
        assert json.load(f) == {"version": 1, "data": {"balance": 123.0}}

    reopened = JsonFileStore(directory)
    assert reopened.get("account") == {"balance": 123.0}

    reopened.delete("account")
    reopened.delete("account")
    assert reopened.get("account") is None


def test_json_file_store_version_mismatch(tmp_path):
    store = JsonFileStore(str(tmp_path))
    with open(os.path.join(str(tmp_path), "trades.json"), "w", encoding="utf-8") as f:
        json.dump({"version": 2, "data": []}, f)
    with pytest.raises(StoreVersionError) as excinfo:
        store.get("trades")
    assert excinfo.value.found == 2


def test_feed_settings_defaults():
    settings = load_feed_settings(MemoryStore())
    assert settings == FeedSettings(use_realtime_feed=True, polling_interval_ms=5000)


def test_feed_settings_save_and_load():
    store = MemoryStore()
    save_feed_settings(store, FeedSettings(use_realtime_feed=False, polling_interval_ms=2000))
    assert load_feed_settings(store) == FeedSettings(False, 2000)


def test_feed_settings_reject_non_positive_interval():
    store = MemoryStore()
    with pytest.raises(ValueError):
        save_feed_settings(store, FeedSettings(polling_interval_ms=0))

    store.set(FEED_SETTINGS_KEY, {"use_realtime_feed": False, "polling_interval_ms": -5})
    assert load_feed_settings(store).polling_interval_ms == 5000
