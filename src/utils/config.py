"""
Configuration loading.

Settings come from a JSON file; credentials and the most common trading
knobs can be overridden from the environment (a ``.env`` file is loaded
first when present).
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from ..engine.config import EngineConfig


DEFAULTS: Dict[str, Any] = {
    "venue": {
        "app_id": "",
        "token": "",
        "history_count": 5000,
    },
    "learning": {},
    "trading": {
        "symbol": "R_100",
        "enable_trading": False,
        "proposal_timeout_seconds": 10.0,
        "dry_run_settle_seconds": 3.0,
    },
    "limits": {},
    "reconnect": {
        "enabled": True,
        "max_attempts": 5,
        "interval_seconds": 5.0,
    },
    "storage": {
        "data_dir": "data",
        "flush_interval_seconds": 300.0,
    },
    "logging": {
        "level": "INFO",
        "log_dir": "logs",
        "format": "json",
        "performance_interval_seconds": 300.0,
    },
    "notifications": {
        "telegram": {
            "bot_token": "",
            "chat_id": "",
        },
    },
}


SECRET_KEYS = ("token", "bot_token")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# Environment variable -> (dotted key, converter)
ENV_OVERRIDES: Dict[str, tuple] = {
    "DERIV_APP_ID": ("venue.app_id", str),
    "DERIV_TOKEN": ("venue.token", str),
    "SYMBOL": ("trading.symbol", str),
    "BASE_STAKE": ("trading.base_stake", float),
    "DURATION": ("trading.duration", int),
    "ENABLE_TRADING": ("trading.enable_trading", _parse_bool),
    "LOG_LEVEL": ("logging.level", str),
    "TELEGRAM_BOT_TOKEN": ("notifications.telegram.bot_token", str),
    "TELEGRAM_CHAT_ID": ("notifications.telegram.chat_id", str),
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Layered configuration: defaults, JSON file, environment."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data = _merge(DEFAULTS, data or {})

    @classmethod
    def load(
        cls,
        config_path: str,
        environ: Optional[Dict[str, str]] = None,
        dotenv: bool = True
    ) -> "Config":
        """
        Load configuration from a JSON file and the environment.

        Args:
            config_path: Path to configuration file
            environ: Environment mapping (defaults to os.environ)
            dotenv: Whether to load a ``.env`` file first

        Raises:
            FileNotFoundError: If the configuration file does not exist
            ValueError: If the file is not valid JSON or an override is malformed
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid configuration file {config_path}: {e}") from e

        if dotenv:
            load_dotenv()

        config = cls(data)
        config.apply_env(os.environ if environ is None else environ)
        return config

    def apply_env(self, environ: Dict[str, str]) -> None:
        """
        Apply environment overrides.

        Raises:
            ValueError: If an override cannot be converted
        """
        for name, (key, convert) in ENV_OVERRIDES.items():
            raw = environ.get(name)
            if raw is None or raw == "":
                continue
            try:
                self.set(key, convert(raw))
            except ValueError as e:
                raise ValueError(f"Invalid value for {name}: {raw!r}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """
        Dotted lookup, e.g. ``get("trading.base_stake")``.
        """
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value

    def section(self, name: str) -> Dict[str, Any]:
        return copy.deepcopy(self._data.get(name) or {})

    def engine_config(self) -> EngineConfig:
        """
        Raises:
            ValueError: If an engine setting is invalid
        """
        return EngineConfig.from_dict(self._data)

    def as_dict(self) -> Dict[str, Any]:
        """Copy of the settings with secrets masked, for logging."""
        def scrub(node: Any) -> Any:
            if isinstance(node, dict):
                return {
                    k: ("***" if k in SECRET_KEYS and v else scrub(v))
                    for k, v in node.items()
                }
            return node

        return scrub(self._data)
