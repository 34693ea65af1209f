from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached: dict[str, Any] | None = None
_cached_path: str | None = None

MODES = ("development", "production")
ADAPTERS = ("paper", "ccxt")


def _project_root() -> Path:
    # src/utils/config_loader.py -> src/utils -> src -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    return _project_root() / "config" / "config.yaml"


def secrets_path(mode: str) -> Path:
    """Per-mode secrets file (`config/development.env` or `config/production.env`)."""
    name = "development" if mode == "development" else "production"
    return _project_root() / "config" / f"{name}.env"


def load_secrets(mode: str) -> Path | None:
    """
    Load the secrets file for `mode` into the environment.

    `mode` must be the resolved one (YAML value with env override applied) so the
    credentials always match the network the exchange adapter is pointed at.
    Variables already set in the environment win over the file.
    """
    path = secrets_path(mode)
    if not path.exists():
        logger.info("No secrets file at %s", path)
        return None
    load_dotenv(path)
    logger.info("Loaded secrets from %s", path)
    return path


def _require_sections(cfg: dict[str, Any]) -> None:
    required_top = ["exchange", "trading"]
    missing = [k for k in required_top if k not in cfg]
    if missing:
        raise ValueError(f"Missing required config sections: {', '.join(missing)}")
    for key in (*required_top, "paper", "logging"):
        if key in cfg and not isinstance(cfg[key], dict):
            raise ValueError(f"Config section {key!r} must be a mapping; got {type(cfg[key]).__name__}")


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """
    Override selected YAML settings with environment variables.

    This keeps runtime configuration flexible without duplicating config parsing logic.
    Sections must already exist as mappings (see `_require_sections`).
    """
    if os.getenv("PAIRCYCLER_MODE"):
        cfg["mode"] = os.environ["PAIRCYCLER_MODE"]

    exchange = cfg["exchange"]
    if os.getenv("PAIRCYCLER_EXCHANGE_ADAPTER"):
        exchange["adapter"] = os.environ["PAIRCYCLER_EXCHANGE_ADAPTER"]
    if os.getenv("PAIRCYCLER_EXCHANGE_ID"):
        exchange["id"] = os.environ["PAIRCYCLER_EXCHANGE_ID"]
    if os.getenv("PAIRCYCLER_MARKET_ID"):
        exchange["market_id"] = os.environ["PAIRCYCLER_MARKET_ID"]

    trading = cfg["trading"]
    if os.getenv("PAIRCYCLER_LIMIT_PRICE"):
        trading["limit_price"] = float(os.environ["PAIRCYCLER_LIMIT_PRICE"])
    if os.getenv("PAIRCYCLER_POLL_INTERVAL_MS"):
        trading["poll_interval_ms"] = int(os.environ["PAIRCYCLER_POLL_INTERVAL_MS"])


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_config(cfg: dict[str, Any]) -> None:
    """
    Fail fast if the configuration is missing required sections or holds values
    the trading loop cannot run with.
    """
    _require_sections(cfg)

    mode = cfg.get("mode", "development")
    if mode not in MODES:
        raise ValueError(f"mode must be one of {', '.join(MODES)}; got {mode!r}")

    exchange = cfg.get("exchange") or {}
    adapter = exchange.get("adapter", "paper")
    if adapter not in ADAPTERS:
        raise ValueError(f"exchange.adapter must be one of {', '.join(ADAPTERS)}; got {adapter!r}")
    if not str(exchange.get("market_id") or "").strip():
        raise ValueError("Missing exchange.market_id in config")
    if adapter == "ccxt" and not str(exchange.get("id") or "").strip():
        raise ValueError("Missing exchange.id in config (required for the ccxt adapter)")
    if adapter == "paper" and not isinstance((cfg.get("paper") or {}).get("market"), dict):
        raise ValueError("Missing paper.market in config (required for the paper adapter)")

    trading = cfg.get("trading") or {}
    limit_price = trading.get("limit_price", 0.9999)
    if not _is_number(limit_price) or limit_price <= 0:
        raise ValueError(f"trading.limit_price must be a positive number; got {limit_price!r}")
    poll = trading.get("poll_interval_ms", 5000)
    if not _is_number(poll) or poll <= 0:
        raise ValueError(f"trading.poll_interval_ms must be a positive number; got {poll!r}")
    max_wait = trading.get("max_wait_seconds")
    if max_wait is not None and (not _is_number(max_wait) or max_wait <= 0):
        raise ValueError(f"trading.max_wait_seconds must be null or a positive number; got {max_wait!r}")
    backoff = trading.get("failure_backoff_seconds", 5)
    if not _is_number(backoff) or backoff < 0:
        raise ValueError(f"trading.failure_backoff_seconds must be >= 0; got {backoff!r}")


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Load the YAML config once and reuse it across the process.

    - Reads `config/config.yaml` by default.
    - Applies environment overrides for a small set of operational settings.
    - Returns a deep copy so callers can safely mutate local copies.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    path_str = str(path.resolve())

    with _cache_lock:
        if not force_reload and _cached is not None and _cached_path == path_str:
            return deepcopy(_cached)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}

        if not isinstance(cfg, dict):
            raise ValueError(f"Config must be a YAML mapping (dict); got {type(cfg).__name__}")

        _require_sections(cfg)
        _apply_env_overrides(cfg)
        validate_config(cfg)

        _cached = cfg
        _cached_path = path_str
        logger.info("Loaded config from %s", path_str)
        return deepcopy(cfg)
