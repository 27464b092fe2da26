"""Known EVM network profiles keyed by short name."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ...errors import ConfigurationError


@dataclass(frozen=True)
class NetworkProfile:
    name: str
    chain_id: int
    rpc_url: str = ""


BUILTIN_NETWORKS: dict[str, NetworkProfile] = {
    p.name: p
    for p in (
        NetworkProfile("mainnet", 1, "https://eth.merkle.io"),
        NetworkProfile("sepolia", 11155111, "https://sepolia.drpc.org"),
        NetworkProfile("base", 8453, "https://mainnet.base.org"),
        NetworkProfile("baseSepolia", 84532, "https://sepolia.base.org"),
        NetworkProfile("arbitrum", 42161, "https://arb1.arbitrum.io/rpc"),
        NetworkProfile("optimism", 10, "https://mainnet.optimism.io"),
        NetworkProfile("polygon", 137, "https://polygon-rpc.com"),
        NetworkProfile("hardhat", 31337, "http://127.0.0.1:8545"),
        NetworkProfile("anvil", 31337, "http://127.0.0.1:8545"),
        NetworkProfile("localhost", 1337, "http://127.0.0.1:8545"),
    )
}

_ALIASES = {
    "ethereum": "mainnet",
    "base-sepolia": "baseSepolia",
    "base_sepolia": "baseSepolia",
    "arbitrum-one": "arbitrum",
    "foundry": "anvil",
}


def resolve_network(
    name: str, extra: Mapping[str, NetworkProfile] | None = None
) -> NetworkProfile:
    """Resolve a network name to its profile.

    Profiles in ``extra`` take precedence over the built-in ones.

    Raises:
        ConfigurationError: the name matches no known profile.
    """
    if extra and name in extra:
        return extra[name]
    canonical = _ALIASES.get(name, name)
    profile = BUILTIN_NETWORKS.get(canonical)
    if profile is None:
        known = sorted(set(BUILTIN_NETWORKS) | set(extra or {}))
        raise ConfigurationError(
            f"Unknown network '{name}' (known: {', '.join(known)})"
        )
    return profile
