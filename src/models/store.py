"""
Key-Value Store - Host storage surfaces consumed by the keystore.

Two scopes:
- persistent: survives restarts (JSON file on disk)
- session: process-local memory only, never written to disk
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from utils import set_secure_permissions

logger = logging.getLogger(__name__)

# Persistent scope keys
WALLETS_ENVELOPE_KEY = "wallets_envelope"
ACTIVE_WALLET_KEY = "active_wallet_id"
NETWORK_NAME_KEY = "network_name"
CUSTOM_NETWORKS_KEY = "custom_networks"
RPC_OVERRIDES_KEY = "rpc_overrides"
AUTH_HASH_KEY = "auth_hash"
RATE_LIMIT_KEY = "rate_limit"
RATE_LIMIT_SECRET_KEY = "rate_limit_secret"
FAILED_LOOKUPS_KEY = "failed_lookups"

# Session scope keys
SESSION_WALLETS_KEY = "session_wallets_json"
SESSION_PASSWORD_KEY = "session_password"


class KeyValueStore:
    """Interface: get(key), set(key, value), remove(keys)."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, keys: Iterable[str] | str) -> None:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError


def _as_key_list(keys: Iterable[str] | str) -> list[str]:
    return [keys] if isinstance(keys, str) else list(keys)


class MemoryStore(KeyValueStore):
    """Process-local store. Used for the session scope and in tests."""

    def __init__(self, initial: Optional[dict] = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, keys: Iterable[str] | str) -> None:
        for key in _as_key_list(keys):
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore(KeyValueStore):
    """
    Persistent store backed by a single JSON file.

    Every write replaces the whole file atomically (temp file + rename) and
    restricts permissions to the owner.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._data = data
            else:
                logger.warning(f"Ignoring store file with unexpected shape: {self.path.name}")
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load store file {self.path.name}: {e}")

    def _save(self) -> None:
        temp_path = self.path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        temp_path.replace(self.path)
        set_secure_permissions(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def remove(self, keys: Iterable[str] | str) -> None:
        changed = False
        for key in _as_key_list(keys):
            if key in self._data:
                del self._data[key]
                changed = True
        if changed:
            self._save()

    def keys(self) -> list[str]:
        return list(self._data.keys())
