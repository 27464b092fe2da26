"""EVM chain support."""
from .abi import AbiFunction, ContractInterface, RevertReason
from .client import (
    MALFORMED_RESPONSE_ERRORS,
    TRANSPORT_ERRORS,
    connect,
    error_message,
    revert_data,
)
from .networks import BUILTIN_NETWORKS, NetworkProfile, resolve_network

__all__ = [
    "AbiFunction",
    "BUILTIN_NETWORKS",
    "ContractInterface",
    "MALFORMED_RESPONSE_ERRORS",
    "NetworkProfile",
    "RevertReason",
    "TRANSPORT_ERRORS",
    "connect",
    "error_message",
    "resolve_network",
    "revert_data",
]
