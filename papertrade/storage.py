#!/usr/bin/env python3
"""
================================================================================
                    STORAGE - VERSIONED KEY-VALUE STATE
================================================================================
Durable get/set-by-key storage for ledger state and settings.
Every value is wrapped in a {"version", "data"} envelope so that a future
change of record shape is detected instead of silently misread.
================================================================================
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Optional

from .exceptions import StoreVersionError

logger = logging.getLogger("Storage")

SCHEMA_VERSION = 1

ACCOUNT_KEY = "account"
POSITIONS_KEY = "positions"
ORDERS_KEY = "orders"
TRADES_KEY = "trades"
AUTO_TRADING_CONFIG_KEY = "autoTradingConfig"
AUTO_TRADING_RESULTS_KEY = "autoTradingResults"
FEED_SETTINGS_KEY = "feedSettings"


def _unwrap(key: str, envelope: Any) -> Any:
    if not isinstance(envelope, dict) or "version" not in envelope:
        raise StoreVersionError(key, None, SCHEMA_VERSION)
    if envelope["version"] != SCHEMA_VERSION:
        raise StoreVersionError(key, envelope["version"], SCHEMA_VERSION)
    return envelope.get("data")


class KeyValueStore:
    """Base get/set-by-key store. Subclasses implement the raw envelope I/O."""

    def _read(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def _write(self, key: str, envelope: Dict) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        envelope = self._read(key)
        if envelope is None:
            return default
        return _unwrap(key, envelope)

    def set(self, key: str, value: Any) -> None:
        self._write(key, {"version": SCHEMA_VERSION, "data": value})


class MemoryStore(KeyValueStore):
    """In-process store; values are JSON round-tripped so they behave like persisted ones"""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def _read(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def _write(self, key: str, envelope: Dict) -> None:
        self._data[key] = json.dumps(envelope, default=str)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class JsonFileStore(KeyValueStore):
    """One JSON file per key inside a directory"""

    def __init__(self, directory: str = "results/paper_state"):
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def _read(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with self._lock:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)

    def _write(self, key: str, envelope: Dict) -> None:
        path = self._path(key)
        tmp_path = f"{path}.tmp"
        with self._lock:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(envelope, f, indent=2, default=str)
            os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        path = self._path(key)
        with self._lock:
            if os.path.exists(path):
                os.remove(path)
                logger.info(f"Deleted stored key '{key}'")
