"""Persistence helpers for user settings backed by a JSON file."""
from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

API_KEY = "api_key"
THEME = "theme"
THEMES = {"light", "dark"}
DEFAULT_THEME = "dark"

DEFAULT_SETTINGS_FILE = Path.home() / ".highway_charging" / "settings.json"


class SettingsStore:
    """Small key-value store for the API credential and UI preferences.

    Values live in a JSON object on disk. ``env_api_key`` seeds the
    credential when the file does not hold one.
    """

    def __init__(self, path: Path | None = None, env_api_key: str | None = None) -> None:
        self.path = path or DEFAULT_SETTINGS_FILE
        self.env_api_key = env_api_key or None
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> "SettingsStore":
        path_env = os.getenv("HIGHWAY_EV_SETTINGS_FILE")
        return cls(
            Path(path_env) if path_env else None,
            env_api_key=os.getenv("HIGHWAY_EV_API_KEY"),
        )

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable settings file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)
        logger.debug("Saved setting %s", key)

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._read()
            if key not in data:
                return False
            del data[key]
            self._write(data)
        logger.debug("Deleted setting %s", key)
        return True

    def load_api_key(self) -> str | None:
        value = self.get(API_KEY)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return self.env_api_key

    def save_api_key(self, key: str) -> None:
        key = key.strip()
        if not key:
            raise ValueError("API key must not be empty")
        self.set(API_KEY, key)

    def clear_api_key(self) -> None:
        """Forget the stored credential, including the environment seed."""
        self.delete(API_KEY)
        self.env_api_key = None

    def load_theme(self) -> str:
        value = self.get(THEME)
        return value if value in THEMES else DEFAULT_THEME

    def save_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unsupported theme '{theme}'")
        self.set(THEME, theme)
