# PATH: config/__init__.py
"""
Configuration loading for rpcpoll.

Sources, lowest to highest precedence:
1. Built-in defaults (core.constants)
2. YAML file (config/harness.yaml, or the path in HARNESS_CONFIG)
3. Process environment, including a .env file loaded by python-dotenv
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from core.constants import (
    ConcurrencyMode,
    ErrorCode,
    DEFAULT_ATTEMPT_COUNT,
    DEFAULT_PATH_PREFIX,
    DEFAULT_REPETITIONS,
    DEFAULT_RPC_TIMEOUT_SECONDS,
    HIGH_LOAD_REPETITIONS,
)
from core.exceptions import ConfigurationError


CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_FILE = CONFIG_DIR / "harness.yaml"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# env var -> settings key
ENV_KEYS: Dict[str, str] = {
    "SUPPORTED_CHAIN_IDS": "chain_ids",
    "RPC_BASE_HOST": "base_host",
    "RPC_API_KEY": "api_key",
    "RPC_PATH_PREFIX": "path_prefix",
    "ATTEMPT_COUNT": "attempt_count",
    "ATTEMPT_DELAY_MS": "delay_ms",
    "REPETITIONS": "repetitions",
    "CONCURRENCY_MODE": "mode",
    "HIGH_LOAD": "high_load",
    "MAX_CONCURRENCY": "max_concurrency",
    "RPC_TIMEOUT_SECONDS": "timeout_seconds",
    "LOG_LEVEL": "log_level",
    "LOG_JSON": "log_json",
}


@dataclass
class Settings:
    """Resolved harness settings."""
    chain_ids: List[str] = field(default_factory=list)
    base_host: Optional[str] = None
    api_key: Optional[str] = None
    path_prefix: str = DEFAULT_PATH_PREFIX
    attempt_count: int = DEFAULT_ATTEMPT_COUNT
    delay_seconds: Optional[float] = None
    repetitions: int = DEFAULT_REPETITIONS
    mode: ConcurrencyMode = ConcurrencyMode.SEQUENTIAL
    high_load: bool = False
    max_concurrency: Optional[int] = None
    timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS
    log_level: str = "INFO"
    log_json: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Settings safe to log (credential masked)."""
        return {
            "chain_ids": self.chain_ids,
            "base_host": self.base_host,
            "api_key": "***" if self.api_key else None,
            "path_prefix": self.path_prefix,
            "attempt_count": self.attempt_count,
            "delay_seconds": self.delay_seconds,
            "repetitions": self.repetitions,
            "mode": self.mode.value,
            "max_concurrency": self.max_concurrency,
            "timeout_seconds": self.timeout_seconds,
        }


def load_yaml(path: Path) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: File path

    Returns:
        Parsed YAML as dict (empty if the file is empty)
    """
    if not path.exists():
        raise ConfigurationError(
            f"Config file not found: {path}",
            details={"path": str(path)},
        )

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file must contain a mapping: {path}",
            code=ErrorCode.CONFIG_INVALID,
            details={"path": str(path)},
        )
    return data


def parse_chain_ids(value: Any) -> List[str]:
    """
    Parse SUPPORTED_CHAIN_IDS.

    Accepts a comma-separated string or a YAML list. Blank tokens are
    dropped; order and duplicates are kept.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        tokens = [str(v) for v in value]
    else:
        tokens = str(value).split(",")
    return [t.strip() for t in tokens if t.strip()]


def _parse_int(key: str, value: Any, minimum: int) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(
            f"{key} must be an integer, got {value!r}",
            code=ErrorCode.CONFIG_INVALID,
            details={"key": key},
        )
    if parsed < minimum:
        raise ConfigurationError(
            f"{key} must be >= {minimum}, got {parsed}",
            code=ErrorCode.CONFIG_INVALID,
            details={"key": key},
        )
    return parsed


def _parse_float(key: str, value: Any) -> float:
    try:
        parsed = float(str(value).strip())
    except ValueError:
        raise ConfigurationError(
            f"{key} must be a number, got {value!r}",
            code=ErrorCode.CONFIG_INVALID,
            details={"key": key},
        )
    if parsed < 0:
        raise ConfigurationError(
            f"{key} must be non-negative, got {parsed}",
            code=ErrorCode.CONFIG_INVALID,
            details={"key": key},
        )
    return parsed


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"{key} must be a boolean, got {value!r}",
        code=ErrorCode.CONFIG_INVALID,
        details={"key": key},
    )


def _parse_mode(value: Any) -> ConcurrencyMode:
    try:
        return ConcurrencyMode(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in ConcurrencyMode)
        raise ConfigurationError(
            f"CONCURRENCY_MODE must be one of: {allowed}; got {value!r}",
            code=ErrorCode.CONFIG_INVALID,
            details={"key": "mode"},
        )


def _parse_log_level(value: Any) -> str:
    level = str(value).strip().upper()
    if level not in LOG_LEVELS:
        raise ConfigurationError(
            f"LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}; got {value!r}",
            code=ErrorCode.CONFIG_INVALID,
            details={"key": "log_level"},
        )
    return level


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def build_settings(raw: Mapping[str, Any]) -> Settings:
    """
    Build Settings from a flat mapping of settings keys.

    High-load mode switches the defaults to 10 fan-out repetitions;
    explicit REPETITIONS / CONCURRENCY_MODE values still win.
    """
    high_load = _parse_bool("high_load", raw["high_load"]) if not _blank(raw.get("high_load")) else False

    settings = Settings(high_load=high_load)
    settings.chain_ids = parse_chain_ids(raw.get("chain_ids"))

    if not _blank(raw.get("base_host")):
        settings.base_host = str(raw["base_host"]).strip()
    if not _blank(raw.get("api_key")):
        settings.api_key = str(raw["api_key"]).strip()
    if not _blank(raw.get("path_prefix")):
        settings.path_prefix = str(raw["path_prefix"]).strip()

    if not _blank(raw.get("attempt_count")):
        settings.attempt_count = _parse_int("attempt_count", raw["attempt_count"], 1)
    if not _blank(raw.get("delay_ms")):
        settings.delay_seconds = _parse_float("delay_ms", raw["delay_ms"]) / 1000

    if high_load:
        settings.repetitions = HIGH_LOAD_REPETITIONS
        settings.mode = ConcurrencyMode.FAN_OUT
    if not _blank(raw.get("repetitions")):
        settings.repetitions = _parse_int("repetitions", raw["repetitions"], 1)
    if not _blank(raw.get("mode")):
        settings.mode = _parse_mode(raw["mode"])

    if not _blank(raw.get("max_concurrency")):
        settings.max_concurrency = _parse_int("max_concurrency", raw["max_concurrency"], 1)
    if not _blank(raw.get("timeout_seconds")):
        settings.timeout_seconds = _parse_float("timeout_seconds", raw["timeout_seconds"])
        if settings.timeout_seconds == 0:
            raise ConfigurationError(
                "RPC_TIMEOUT_SECONDS must be positive, got 0",
                code=ErrorCode.CONFIG_INVALID,
                details={"key": "timeout_seconds"},
            )
    if not _blank(raw.get("log_level")):
        settings.log_level = _parse_log_level(raw["log_level"])
    if not _blank(raw.get("log_json")):
        settings.log_json = _parse_bool("log_json", raw["log_json"])

    return settings


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
    use_dotenv: bool = True,
) -> Settings:
    """
    Load settings from YAML and environment.

    Args:
        env: Environment mapping (defaults to os.environ)
        config_path: YAML file; falls back to HARNESS_CONFIG, then
            config/harness.yaml if it exists
        use_dotenv: Load a .env file into os.environ first

    Raises:
        ConfigurationError: Malformed values or unreadable config file
    """
    if use_dotenv and env is None:
        load_dotenv()
    if env is None:
        env = os.environ

    raw: Dict[str, Any] = {}

    if config_path is None and env.get("HARNESS_CONFIG"):
        config_path = Path(env["HARNESS_CONFIG"])
    if config_path is not None:
        raw.update(load_yaml(config_path))
    elif DEFAULT_CONFIG_FILE.exists():
        raw.update(load_yaml(DEFAULT_CONFIG_FILE))

    for env_key, settings_key in ENV_KEYS.items():
        if env_key in env:
            raw[settings_key] = env[env_key]

    return build_settings(raw)
