"""
Explorer RPC - Configuration.

============================================================
GATEWAY CONFIGURATION
============================================================

The upstream RPC base is resolved ONCE, from the first source that
provides it:

1. Explicit argument
2. IPPAN_RPC_BASE_URL
3. IPPAN_RPC_URL
4. NEXT_PUBLIC_IPPAN_RPC_URL
5. `rpc_base` in the YAML file named by EXPLORER_RPC_CONFIG
6. http://127.0.0.1:8080

The resulting GatewayConfig is immutable and shared by reference.

Other settings (YAML keys / env overrides):
- allowed_prefixes / EXPLORER_RPC_ALLOWED_PATHS (comma-separated)
- default_timeout_seconds / EXPLORER_RPC_TIMEOUT
- endpoint_timeouts, max_blocks, max_tx_scan, hydration_concurrency

============================================================
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from explorer_rpc.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


DEFAULT_RPC_BASE = "http://127.0.0.1:8080"

RPC_BASE_ENV_VARS: tuple[str, ...] = (
    "IPPAN_RPC_BASE_URL",
    "IPPAN_RPC_URL",
    "NEXT_PUBLIC_IPPAN_RPC_URL",
)

CONFIG_FILE_ENV = "EXPLORER_RPC_CONFIG"
TIMEOUT_ENV = "EXPLORER_RPC_TIMEOUT"
ALLOWED_PATHS_ENV = "EXPLORER_RPC_ALLOWED_PATHS"

DEFAULT_ALLOWED_PREFIXES: tuple[str, ...] = (
    "/status",
    "/health",
    "/blocks",
    "/block",
    "/tx",
    "/round",
    "/rounds",
    "/accounts",
    "/account",
    "/handles",
    "/handle",
    "/files",
    "/file",
    "/ipndht",
    "/peers",
    "/peer",
    "/l2",
    "/ai",
    "/hashtimers",
    "/hashtimer",
    "/debug",
    "/consensus",
    "/network",
    "/metrics",
)

DEFAULT_TIMEOUT_SECONDS = 4.0

# Longest matching prefix wins.
DEFAULT_ENDPOINT_TIMEOUTS: dict[str, float] = {
    "/status": 5.0,
    "/blocks": 5.0,
    "/tx/recent": 8.0,
    "/block": 3.0,
}


def normalize_base_url(value: str) -> str:
    """Trim, drop trailing separators and require an http(s) URL."""
    base = value.strip().rstrip("/")
    parsed = urlparse(base)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(
            f"RPC base must be an http(s) URL, got {value!r}",
            config_key="rpc_base",
        )
    return base


def normalize_prefix(value: str) -> str:
    prefix = value.strip().lower().rstrip("/") if isinstance(value, str) else ""
    if not prefix.startswith("/") or ".." in prefix:
        raise ConfigurationError(
            f"Allowed path prefix must start with '/': {value!r}",
            config_key="allowed_prefixes",
        )
    return prefix


def _positive_float(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"{key} must be a number, got {value!r}",
            config_key=key,
            original_error=e,
        )
    if number <= 0:
        raise ConfigurationError(f"{key} must be positive, got {number}", config_key=key)
    return number


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(
            f"{key} must be a positive integer, got {value!r}",
            config_key=key,
        )
    return value


@dataclass(frozen=True)
class GatewayConfig:
    """
    Immutable gateway configuration.

    Build with GatewayConfig.load() (or the constructor in tests); never
    re-resolved per call.
    """
    rpc_base: str = DEFAULT_RPC_BASE
    rpc_base_source: str = "default"
    allowed_prefixes: tuple[str, ...] = DEFAULT_ALLOWED_PREFIXES
    default_timeout: float = DEFAULT_TIMEOUT_SECONDS
    endpoint_timeouts: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_ENDPOINT_TIMEOUTS)
    )
    max_blocks: int = 25
    max_tx_scan: int = 200
    hydration_concurrency: int = 8
    hydration_timeout: float = 3.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "rpc_base", normalize_base_url(self.rpc_base))
        object.__setattr__(
            self,
            "allowed_prefixes",
            tuple(normalize_prefix(prefix) for prefix in self.allowed_prefixes),
        )
        if not self.allowed_prefixes:
            raise ConfigurationError("Allowlist is empty", config_key="allowed_prefixes")
        object.__setattr__(
            self, "default_timeout", _positive_float(self.default_timeout, "default_timeout")
        )
        object.__setattr__(
            self,
            "endpoint_timeouts",
            {
                normalize_prefix(prefix): _positive_float(seconds, f"endpoint_timeouts[{prefix}]")
                for prefix, seconds in self.endpoint_timeouts.items()
            },
        )
        _positive_float(self.hydration_timeout, "hydration_timeout")
        _positive_int(self.max_blocks, "max_blocks")
        _positive_int(self.max_tx_scan, "max_tx_scan")
        _positive_int(self.hydration_concurrency, "hydration_concurrency")

    def timeout_for(self, path: str) -> float:
        """Timeout in seconds for a logical path (longest matching prefix)."""
        clean = path.split("?", 1)[0].lower().rstrip("/") or "/"
        best: Optional[str] = None
        for prefix in self.endpoint_timeouts:
            if clean == prefix or clean.startswith(prefix + "/"):
                if best is None or len(prefix) > len(best):
                    best = prefix
        return self.endpoint_timeouts[best] if best else self.default_timeout

    def with_rpc_base(self, rpc_base: str) -> "GatewayConfig":
        return replace(self, rpc_base=rpc_base, rpc_base_source="explicit")

    @classmethod
    def load(
        cls,
        rpc_base: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        yaml_path: Optional[Path] = None,
    ) -> "GatewayConfig":
        """
        Resolve configuration from argument, environment and YAML file.

        Raises:
            ConfigurationError: On an invalid value or unreadable config file
        """
        env = os.environ if env is None else env

        if yaml_path is None and env.get(CONFIG_FILE_ENV):
            yaml_path = Path(env[CONFIG_FILE_ENV])
        data = cls._read_yaml(yaml_path) if yaml_path else {}

        base, source = cls._resolve_rpc_base(rpc_base, env, data)

        kwargs: dict[str, Any] = {"rpc_base": base, "rpc_base_source": source}

        if data.get("allowed_prefixes") is not None:
            kwargs["allowed_prefixes"] = tuple(data["allowed_prefixes"])
        if env.get(ALLOWED_PATHS_ENV):
            kwargs["allowed_prefixes"] = tuple(
                item for item in env[ALLOWED_PATHS_ENV].split(",") if item.strip()
            )

        if data.get("default_timeout_seconds") is not None:
            kwargs["default_timeout"] = data["default_timeout_seconds"]
        if env.get(TIMEOUT_ENV):
            kwargs["default_timeout"] = env[TIMEOUT_ENV]

        if data.get("endpoint_timeouts") is not None:
            timeouts = dict(DEFAULT_ENDPOINT_TIMEOUTS)
            timeouts.update(data["endpoint_timeouts"])
            kwargs["endpoint_timeouts"] = timeouts

        for key in ("max_blocks", "max_tx_scan", "hydration_concurrency"):
            if data.get(key) is not None:
                kwargs[key] = data[key]

        config = cls(**kwargs)
        logger.info(f"[config] RPC base {config.rpc_base} (from {config.rpc_base_source})")
        return config

    @staticmethod
    def _resolve_rpc_base(
        explicit: Optional[str],
        env: Mapping[str, str],
        data: Mapping[str, Any],
    ) -> tuple[str, str]:
        if explicit and explicit.strip():
            return explicit, "explicit"
        for name in RPC_BASE_ENV_VARS:
            value = env.get(name)
            if value and value.strip():
                return value, name
        if isinstance(data.get("rpc_base"), str) and data["rpc_base"].strip():
            return data["rpc_base"], "yaml"
        return DEFAULT_RPC_BASE, "default"

    @staticmethod
    def _read_yaml(path: Path) -> dict[str, Any]:
        import yaml

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load YAML config from {path}: {e}",
                config_key=CONFIG_FILE_ENV,
                original_error=e,
            )
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"YAML config {path} must contain a mapping",
                config_key=CONFIG_FILE_ENV,
            )
        return data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rpc_base": self.rpc_base,
            "rpc_base_source": self.rpc_base_source,
            "allowed_prefixes": list(self.allowed_prefixes),
            "default_timeout": self.default_timeout,
            "endpoint_timeouts": dict(self.endpoint_timeouts),
            "max_blocks": self.max_blocks,
            "max_tx_scan": self.max_tx_scan,
            "hydration_concurrency": self.hydration_concurrency,
            "hydration_timeout": self.hydration_timeout,
        }


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[GatewayConfig] = None


def get_config() -> GatewayConfig:
    """Get the process-wide gateway configuration (loads .env on first use)."""
    global _default_config
    if _default_config is None:
        load_dotenv()
        _default_config = GatewayConfig.load()
    return _default_config


def set_config(config: GatewayConfig) -> None:
    """Set the process-wide gateway configuration."""
    global _default_config
    _default_config = config


def reset_config() -> None:
    global _default_config
    _default_config = None
