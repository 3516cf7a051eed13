from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from crypto_watcher.errors import ConfigError

INTERVAL_RE = re.compile(r"^(\d+)([smh])$")
UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}

SIGNAL_MODES = ("extended", "simple")
VOLATILITY_MODES = ("weighted", "tick")
STORAGE_BACKENDS = ("memory", "sqlite")


@dataclass(frozen=True)
class WatcherConfig:
    currency: str
    fetch_interval: str
    coins: Dict[str, str]
    cmc_api_key: Optional[str] = None
    signal_mode: str = "extended"
    volatility_mode: str = "weighted"
    retention_minutes: int = 35
    fetch_timeout: float = 10.0
    storage_backend: str = "memory"
    storage_path: Optional[str] = None
    logging: Dict[str, object] = field(default_factory=dict)

    @property
    def interval_seconds(self) -> int:
        return interval_seconds(self.fetch_interval)


def load_config(config_file: str = 'config.yaml') -> dict:
    """Load and return configuration from a YAML file."""
    if not os.path.exists(config_file):
        raise FileNotFoundError(f"Config file {config_file} not found.")
    with open(config_file, 'r') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config file {config_file} is not valid YAML: {exc}") from exc
    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping.")
    return config


def parse_interval(interval: str) -> Tuple[int, str]:
    """Split ``"30s"``/``"5m"``/``"1h"`` into value and unit."""
    match = INTERVAL_RE.match(str(interval))
    if not match:
        raise ConfigError(f'Invalid interval format: {interval}. Use "5m", "1h", or "30s".')
    value = int(match.group(1))
    if value <= 0:
        raise ConfigError(f"Interval must be positive: {interval}.")
    return value, match.group(2)


def interval_seconds(interval: str) -> int:
    value, unit = parse_interval(interval)
    return value * UNIT_SECONDS[unit]


def cron_expression(interval: str) -> str:
    """Six-field cron schedule (seconds first) equivalent to *interval*."""
    value, unit = parse_interval(interval)
    if unit == "s":
        return f"*/{value} * * * * *"
    if unit == "m":
        return f"0 */{value} * * * *"
    return f"0 0 */{value} * * *"


def default_db_path() -> str:
    if os.getenv("WATCHER_ENV", "").lower() == "production":
        return "data/prod_history.sqlite"
    return "data/dev_history.sqlite"


def _choice(raw: dict, key: str, choices: Tuple[str, ...]) -> str:
    value = str(raw.get(key, choices[0])).lower()
    if value not in choices:
        raise ConfigError(f"{key} must be one of {', '.join(choices)}, got {value!r}.")
    return value


def _positive(raw: dict, key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number, got {value!r}.") from exc
    if number <= 0:
        raise ConfigError(f"{key} must be positive, got {value!r}.")
    return number


def parse_config(raw: dict) -> WatcherConfig:
    """Validate a raw config mapping. Raises ConfigError on the first problem."""
    for key in ("currency", "fetch_interval", "coins"):
        if key not in raw or raw[key] in (None, ""):
            raise ConfigError(f"Missing required config field: {key}.")

    currency = raw["currency"]
    if not isinstance(currency, str):
        raise ConfigError("currency must be a string.")

    fetch_interval = str(raw["fetch_interval"])
    parse_interval(fetch_interval)

    coins = raw["coins"]
    if not isinstance(coins, dict) or not coins:
        raise ConfigError("coins must be a non-empty mapping of symbol id to display symbol.")
    coins = {str(k): str(v) for k, v in coins.items()}

    storage = raw.get("storage") or {}
    if not isinstance(storage, dict):
        raise ConfigError("storage must be a mapping.")
    backend = _choice(storage, "backend", STORAGE_BACKENDS)
    storage_path = storage.get("path")
    if backend == "sqlite" and not storage_path:
        storage_path = default_db_path()

    log_cfg = raw.get("logging") or {}
    if not isinstance(log_cfg, dict):
        raise ConfigError("logging must be a mapping.")

    cmc_api_key = os.getenv("CMC_API_KEY") or raw.get("cmc_api_key") or None

    return WatcherConfig(
        currency=currency,
        fetch_interval=fetch_interval,
        coins=coins,
        cmc_api_key=cmc_api_key,
        signal_mode=_choice(raw, "signal_mode", SIGNAL_MODES),
        volatility_mode=_choice(raw, "volatility_mode", VOLATILITY_MODES),
        retention_minutes=int(_positive(raw, "retention_minutes", 35)),
        fetch_timeout=_positive(raw, "fetch_timeout", 10.0),
        storage_backend=backend,
        storage_path=storage_path,
        logging=log_cfg,
    )


def read_config(config_file: str = 'config.yaml') -> WatcherConfig:
    load_dotenv()
    return parse_config(load_config(config_file))
