"""Web3 connection to one EVM endpoint, plus node-error helpers."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception, Web3RPCError

logger = logging.getLogger(__name__)

# The request never produced a JSON-RPC answer.
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
)

# The node answered, but not with something web3 could format.
MALFORMED_RESPONSE_ERRORS: tuple[type[BaseException], ...] = (
    Web3Exception,
    ValueError,
    TypeError,
    LookupError,
)


def connect(rpc_url: str, timeout: float = 30) -> AsyncWeb3:
    """Build an ``AsyncWeb3`` bound to ``rpc_url``.

    Each request is attempted once, through ``aiohttp`` with a ``certifi``
    SSL context. No middleware is installed: results stay plain dicts and
    PoA blocks with long ``extraData`` are accepted.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    provider = AsyncHTTPProvider(
        rpc_url,
        request_kwargs={
            "timeout": aiohttp.ClientTimeout(total=timeout),
            "ssl": ssl_context,
        },
        exception_retry_configuration=None,
    )
    logger.debug("Connecting to %s (timeout %ss)", rpc_url, timeout)
    return AsyncWeb3(provider, middleware=[])


def node_error(error: Web3RPCError) -> dict[str, Any]:
    """The JSON-RPC ``error`` object behind ``error``, or ``{}``."""
    response = error.rpc_response or {}
    err = response.get("error")
    return err if isinstance(err, dict) else {}


def error_message(error: Exception) -> str:
    """Human-readable node message for a web3 error."""
    if isinstance(error, Web3RPCError):
        message = node_error(error).get("message")
        if isinstance(message, str) and message:
            return message
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    if isinstance(error, ContractLogicError):
        return "execution reverted"
    return str(error)


def revert_data(error: Exception) -> str | None:
    """Extract the hex revert payload carried by a web3 error, if any.

    Nodes disagree on where it lives: geth and anvil put the hex string in
    ``data``, hardhat nests it under ``data.data``, some providers use
    ``data.result``.
    """
    if isinstance(error, ContractLogicError):
        data = error.data
    elif isinstance(error, Web3RPCError):
        data = node_error(error).get("data")
    else:
        return None
    if isinstance(data, dict):
        data = data.get("data") or data.get("result")
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        return data
    return None
