"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .chains.evm.networks import NetworkProfile, resolve_network
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransportConfig:
    rpc_timeout: int = 30
    receipt_timeout: int = 120
    poll_interval: float = 1.0
    gas_buffer_percent: int = 20


@dataclass(frozen=True)
class LineConfig:
    address: str = ""
    network: str = ""
    rpc_url: str = ""
    private_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class AppConfig:
    line: LineConfig = field(default_factory=LineConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    networks: dict[str, NetworkProfile] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _section(raw: dict[str, Any], key: str, where: str = "") -> dict[str, Any]:
    """Mapping under ``key``; an empty YAML section (``key:``) reads as ``{}``."""
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(
            f"{where}{key} must be a mapping, got {type(value).__name__}"
        )
    return value


def _text(raw: dict[str, Any], key: str, where: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        # PyYAML reads unquoted 0x… values as integers
        raise ConfigurationError(
            f"{where}{key} must be a string, got {type(value).__name__}; "
            "quote hex values in YAML"
        )
    return value


def _build_line(raw: dict[str, Any]) -> LineConfig:
    return LineConfig(
        address=_text(raw, "address", "line."),
        network=_text(raw, "network", "line."),
        rpc_url=_text(raw, "rpc_url", "line."),
        private_key=_text(raw, "private_key", "line."),
    )


def _build_transport(raw: dict[str, Any]) -> TransportConfig:
    try:
        return TransportConfig(
            rpc_timeout=int(raw.get("rpc_timeout", 30)),
            receipt_timeout=int(raw.get("receipt_timeout", 120)),
            poll_interval=float(raw.get("poll_interval", 1.0)),
            gas_buffer_percent=int(raw.get("gas_buffer_percent", 20)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid transport setting: {e}") from e


def _build_networks(raw: dict[str, Any]) -> dict[str, NetworkProfile]:
    networks: dict[str, NetworkProfile] = {}
    for name in raw:
        cfg = _section(raw, name, "networks.")
        if "chain_id" not in cfg:
            raise ConfigurationError(f"Network '{name}' has no chain_id")
        try:
            chain_id = int(cfg["chain_id"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Network '{name}' has an invalid chain_id") from e
        networks[name] = NetworkProfile(
            name=name,
            chain_id=chain_id,
            rpc_url=_text(cfg, "rpc_url", f"networks.{name}."),
        )
    return networks


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate client configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            current working directory.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path.cwd() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    raw = _interpolate_env(raw)

    cfg = AppConfig(
        line=_build_line(_section(raw, "line")),
        transport=_build_transport(_section(raw, "transport")),
        networks=_build_networks(_section(raw, "networks")),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.line.address:
        raise ConfigurationError("line.address is required")
    if not cfg.line.private_key:
        raise ConfigurationError("line.private_key is required")
    if not cfg.line.network:
        raise ConfigurationError("line.network is required")
    profile = resolve_network(cfg.line.network, cfg.networks)
    if not (cfg.line.rpc_url or profile.rpc_url):
        raise ConfigurationError(
            f"No rpc_url configured and network '{profile.name}' has no default"
        )
    if cfg.transport.poll_interval <= 0:
        raise ConfigurationError("transport.poll_interval must be positive")
