"""Secured Line gateway: typed reads and confirmed writes against one deployed line.

Example:
    >>> line = SecuredLine(
    ...     address="0x…",
    ...     private_key=os.environ["PRIVATE_KEY"],
    ...     network="base",
    ...     rpc_url="https://base-mainnet.g.alchemy.com/v2/<API_KEY>",
    ... )
    >>> ids = await line.get_open_position_ids()
    >>> # draw 10,000 USDC (6 decimals) from the first open position
    >>> tx_hash = await line.borrow(ids[0], 10_000_000_000)
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_utils import is_address, to_bytes, to_checksum_address
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception, Web3RPCError

from ...chains.evm.abi import ContractInterface
from ...chains.evm.client import (
    MALFORMED_RESPONSE_ERRORS,
    TRANSPORT_ERRORS,
    connect,
    error_message,
    revert_data,
)
from ...chains.evm.networks import NetworkProfile, resolve_network
from ...config import AppConfig, TransportConfig
from ...errors import (
    ConfigurationError,
    InterfaceMismatchError,
    RemoteQueryError,
    SubmissionError,
    WriteRejectedError,
)
from ...models import (
    CreditPosition,
    Fees,
    OpenCounts,
    PositionLiquidity,
    PositionRates,
    Rates,
)
from . import parser

logger = logging.getLogger(__name__)

ABI_PATH = Path(__file__).parent / "abis" / "SecuredLine.json"

# Every contract function this gateway binds; checked at construction.
BOUND_FUNCTIONS = (
    "accrueInterest",
    "admin",
    "available",
    "borrow",
    "borrower",
    "claimableEarlyWithdrawalFees",
    "close",
    "counts",
    "depositAndRepay",
    "escrow",
    "getCreditPosition",
    "getFees",
    "getLineFactory",
    "getRates",
    "ids",
    "interestAccrued",
    "isServicer",
    "mutualConsentProposals",
    "nextInQ",
    "nonce",
    "otcSwapServicer",
    "proposalCount",
    "protocolTreasury",
    "rates",
    "recoveryEnabled",
    "spigot",
    "status",
    "swapTarget",
    "tokenContract",
    "tradeable",
    "unused",
    "withdraw",
)


def _address_arg(value: Any, what: str) -> str:
    if isinstance(value, str) and is_address(value):
        return to_checksum_address(value)
    raise InterfaceMismatchError(f"{what} is not a valid address: {value!r}")


def _quantity(value: Any, what: str) -> int:
    """Reject node answers that are not integer quantities."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{what} returned {value!r}, expected an integer")
    return value


class SecuredLine:
    """Gateway to one Secured Line of Credit contract.

    Bound to exactly one network, one signer and one deployed instance for its
    whole lifetime. Holds no state across calls: every read and write is
    resolved against current remote state.

    Concurrent reads are safe. Concurrent writes from the same signer are not
    sequenced here; nonce ordering is left to the node and the caller.
    """

    def __init__(
        self,
        address: str,
        private_key: str,
        network: str,
        rpc_url: str | None = None,
        *,
        transport: TransportConfig | None = None,
        networks: dict[str, NetworkProfile] | None = None,
        interface: ContractInterface | None = None,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        """
        Args:
            address: Deployed SecuredLine contract address.
            private_key: Hex-encoded ECDSA key; its address becomes
                ``msg.sender`` for every write.
            network: Network name, e.g. ``"mainnet"``, ``"base"``, ``"hardhat"``.
            rpc_url: JSON-RPC endpoint. Defaults to the network's public RPC.
            web3: Pre-built connection to use instead of one made from
                ``rpc_url``.

        Raises:
            ConfigurationError: unknown network, malformed key or address.
            InterfaceMismatchError: the interface lacks a bound function.
        """
        self._transport = transport or TransportConfig()
        self.network = resolve_network(network, networks)

        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            raise ConfigurationError("Malformed private key") from e

        if not isinstance(address, str) or not is_address(address):
            raise ConfigurationError(f"Malformed contract address: {address!r}")

        self.address = to_checksum_address(address)
        self.wallet_address: str = self._account.address

        self._interface = interface or ContractInterface.from_artifact(ABI_PATH)
        self._interface.require(*BOUND_FUNCTIONS)

        self.rpc_url = rpc_url or self.network.rpc_url
        if not self.rpc_url and web3 is None:
            raise ConfigurationError(
                f"No rpc_url given and network '{self.network.name}' has no default"
            )
        self._owns_connection = web3 is None
        self.w3 = web3 or connect(self.rpc_url, self._transport.rpc_timeout)
        self._contract = self.w3.eth.contract(address=self.address, abi=self._interface.abi)

    @classmethod
    def from_config(cls, config: AppConfig) -> SecuredLine:
        return cls(
            config.line.address,
            config.line.private_key,
            config.line.network,
            config.line.rpc_url or None,
            transport=config.transport,
            networks=config.networks,
        )

    async def disconnect(self) -> None:
        """Close the HTTP sessions of a connection this gateway created."""
        if self._owns_connection:
            await self.w3.provider.disconnect()

    def __repr__(self) -> str:
        return (
            f"SecuredLine(address={self.address}, network={self.network.name}, "
            f"signer={self.wallet_address})"
        )

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------

    def _function(self, name: str, args: tuple[Any, ...]) -> Any:
        """Bind ``name(args)``; arguments the ABI cannot encode never leave here."""
        try:
            return self._contract.functions[name](*args)
        except (Web3Exception, TypeError, ValueError) as e:
            signature = self._interface.function(name).signature
            raise InterfaceMismatchError(f"{signature}: invalid arguments {args!r}") from e

    async def _read(self, name: str, *args: Any) -> tuple[Any, ...]:
        fn = self._function(name, args)
        try:
            result = await fn.call()
        except ContractLogicError as e:
            payload = revert_data(e)
            revert = self._interface.decode_revert(payload)
            reason = revert.reason if revert else error_message(e)
            raise RemoteQueryError(
                f"{name} failed: {reason}", method=name, reason=reason, data=payload
            ) from e
        except Web3RPCError as e:
            reason = error_message(e)
            raise RemoteQueryError(f"{name} failed: {reason}", method=name, reason=reason) from e
        except TRANSPORT_ERRORS as e:
            raise RemoteQueryError(f"{name} failed: {e}", method=name) from e
        except MALFORMED_RESPONSE_ERRORS as e:
            raise RemoteQueryError(f"{name} returned malformed data: {e}", method=name) from e

        if len(self._interface.function(name).output_types) == 1:
            return (result,)
        return tuple(result)

    async def _read_one(self, name: str, *args: Any) -> Any:
        (value,) = await self._read(name, *args)
        return value

    def _rejection(
        self, name: str, error: Exception, tx_hash: str | None = None
    ) -> WriteRejectedError:
        payload = revert_data(error)
        revert = self._interface.decode_revert(payload)
        if revert is None:
            return WriteRejectedError(error_message(error), function=name, tx_hash=tx_hash)
        return WriteRejectedError(
            revert.reason,
            function=name,
            error_args=revert.args,
            data=revert.data,
            tx_hash=tx_hash,
        )

    async def _tx_meta(self, gas: int) -> dict[str, Any]:
        """Nonce, gas limit and fee fields for the next transaction."""
        nonce = await self.w3.eth.get_transaction_count(self.wallet_address, "pending")
        meta: dict[str, Any] = {
            "from": self.wallet_address,
            "chainId": self.network.chain_id,
            "nonce": _quantity(nonce, "eth_getTransactionCount"),
            "gas": gas * (100 + self._transport.gas_buffer_percent) // 100,
        }

        block = await self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            meta["gasPrice"] = _quantity(await self.w3.eth.gas_price, "eth_gasPrice")
            return meta

        priority = _quantity(await self.w3.eth.max_priority_fee, "eth_maxPriorityFeePerGas")
        meta["maxPriorityFeePerGas"] = priority
        meta["maxFeePerGas"] = 2 * _quantity(base_fee, "baseFeePerGas") + priority
        return meta

    async def _write(self, name: str, *args: Any) -> str:
        """Sign, submit and await ``name(args)``; returns the mined tx hash.

        Single attempt: a failure is surfaced once and never resubmitted.
        """
        fn = self._function(name, args)

        try:
            gas = _quantity(
                await fn.estimate_gas({"from": self.wallet_address}), "eth_estimateGas"
            )
        except ContractLogicError as e:
            raise self._rejection(name, e) from e
        except Web3RPCError as e:
            reason = error_message(e)
            raise SubmissionError(
                f"{name}: gas estimation refused: {reason}", reason=reason
            ) from e
        except TRANSPORT_ERRORS as e:
            raise SubmissionError(f"{name}: gas estimation failed: {e}") from e
        except MALFORMED_RESPONSE_ERRORS as e:
            raise SubmissionError(f"{name}: malformed gas estimate: {e}") from e

        try:
            tx = await fn.build_transaction(await self._tx_meta(gas))
        except (*TRANSPORT_ERRORS, *MALFORMED_RESPONSE_ERRORS) as e:
            raise SubmissionError(f"{name}: could not prepare transaction: {e}") from e

        try:
            signed = self._account.sign_transaction(tx)
        except Exception as e:
            raise SubmissionError(f"{name}: signing failed: {e}") from e

        try:
            tx_hash = Web3.to_hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except Web3RPCError as e:
            if revert_data(e) is not None:
                raise self._rejection(name, e) from e
            reason = error_message(e)
            raise SubmissionError(
                f"{name}: node refused transaction: {reason}", reason=reason
            ) from e
        except TRANSPORT_ERRORS as e:
            raise SubmissionError(f"{name}: submission failed: {e}") from e
        except MALFORMED_RESPONSE_ERRORS as e:
            raise SubmissionError(f"{name}: malformed submission response: {e}") from e

        logger.info("Submitted %s tx %s (nonce %d)", name, tx_hash, tx["nonce"])

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self._transport.receipt_timeout,
                poll_latency=self._transport.poll_interval,
            )
        except (TimeExhausted, *TRANSPORT_ERRORS, *MALFORMED_RESPONSE_ERRORS) as e:
            raise RemoteQueryError(
                f"{name}: could not confirm {tx_hash}: {e}",
                method="eth_getTransactionReceipt",
                tx_hash=tx_hash,
            ) from e

        status = receipt.get("status")
        if status is None or isinstance(status, bool) or status not in (0, 1):
            raise RemoteQueryError(
                f"{name}: receipt for {tx_hash} has no valid status: {status!r}",
                method="eth_getTransactionReceipt",
                tx_hash=tx_hash,
            )
        if status != 1:
            raise await self._reverted(name, fn, receipt, tx_hash)

        logger.info("Confirmed %s tx %s in block %s", name, tx_hash, receipt.get("blockNumber"))
        return tx_hash

    async def _reverted(
        self, name: str, fn: Any, receipt: dict[str, Any], tx_hash: str
    ) -> WriteRejectedError:
        """Replay a mined-but-reverted call to recover its revert reason."""
        block = receipt.get("blockNumber")
        try:
            await fn.call(
                {"from": self.wallet_address},
                block_identifier=block if block is not None else "latest",
            )
        except ContractLogicError as e:
            return self._rejection(name, e, tx_hash)
        except (*TRANSPORT_ERRORS, *MALFORMED_RESPONSE_ERRORS) as e:
            logger.warning("Could not replay reverted %s tx %s: %s", name, tx_hash, e)
        return WriteRejectedError("execution reverted", function=name, tx_hash=tx_hash)

    # ------------------------------------------------------------------
    # Convenience reads
    # ------------------------------------------------------------------

    async def get_open_position_ids(self) -> list[int]:
        """Return the ids of all open positions, in queue index order.

        Reads the open count, then resolves ``ids(i)`` for every index
        concurrently.
        """
        counts = await self.counts()
        if counts.open == 0:
            return []
        return list(await asyncio.gather(*(self.ids(i) for i in range(counts.open))))

    async def get_position(self, position_id: int) -> CreditPosition:
        """Fetch the credit position identified by ``position_id``."""
        return await self.get_credit_position(position_id)

    async def get_position_liquidity(self, position_id: int) -> PositionLiquidity:
        """Assets still available to borrow and interest claimable by the lender."""
        return parser.parse_liquidity(await self.available(position_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def borrow(self, position_id: int, amount: int, to: str | None = None) -> str:
        """Draw down credit from a position.

        Args:
            position_id: Position to draw from.
            amount: Principal to draw, in the token's smallest unit.
            to: Recipient; defaults to the signer's address.

        Returns:
            The transaction hash once the transaction is mined.

        Raises:
            WriteRejectedError: the line reverted, e.g. ``NoLiquidity`` or
                ``PositionIsClosed``.
            SubmissionError: the transaction could not be dispatched.
        """
        recipient = self.wallet_address if to is None else _address_arg(to, "borrow recipient")
        return await self._write("borrow", position_id, amount, recipient)

    async def deposit_and_repay(self, amount: int) -> str:
        """Repay the first position in the queue; the line must hold an allowance."""
        return await self._write("depositAndRepay", amount)

    async def withdraw(self, position_id: int, amount: int) -> str:
        return await self._write("withdraw", position_id, amount)

    async def close(self, position_id: int) -> str:
        return await self._write("close", position_id)

    async def accrue_interest(self) -> str:
        return await self._write("accrueInterest")

    # ------------------------------------------------------------------
    # Raw reads
    # ------------------------------------------------------------------

    async def admin(self) -> str:
        return to_checksum_address(await self._read_one("admin"))

    async def available(self, position_id: int) -> tuple[int, int]:
        available_assets, claimable_interest = await self._read("available", position_id)
        return available_assets, claimable_interest

    async def borrower(self) -> str:
        return to_checksum_address(await self._read_one("borrower"))

    async def claimable_early_withdrawal_fees(self, token_id: int) -> int:
        return await self._read_one("claimableEarlyWithdrawalFees", token_id)

    async def counts(self) -> OpenCounts:
        return parser.parse_counts(await self._read("counts"))

    async def escrow(self) -> str:
        return to_checksum_address(await self._read_one("escrow"))

    async def get_credit_position(self, token_id: int) -> CreditPosition:
        return parser.parse_credit_position(await self._read_one("getCreditPosition", token_id))

    async def get_fees(self) -> Fees:
        return parser.parse_fees(await self._read_one("getFees"))

    async def get_line_factory(self) -> str:
        return to_checksum_address(await self._read_one("getLineFactory"))

    async def get_rates(self, position_id: int) -> PositionRates:
        return parser.parse_position_rates(await self._read("getRates", position_id))

    async def ids(self, index: int) -> int:
        return await self._read_one("ids", index)

    async def interest_accrued(self, position_id: int) -> int:
        return await self._read_one("interestAccrued", position_id)

    async def is_servicer(self, address: str) -> bool:
        return await self._read_one("isServicer", _address_arg(address, "isServicer address"))

    async def mutual_consent_proposals(self, proposal_id: str | bytes) -> str:
        """Address that registered the mutual-consent proposal ``proposal_id``.

        ``proposal_id`` must be exactly 32 bytes, raw or hex-encoded; shorter
        ids are rejected rather than padded.
        """
        if isinstance(proposal_id, str):
            try:
                proposal_id = to_bytes(hexstr=proposal_id)
            except ValueError as e:
                raise InterfaceMismatchError(
                    f"mutualConsentProposals argument 0 is not valid hex: {proposal_id!r}"
                ) from e
        if not isinstance(proposal_id, bytes) or len(proposal_id) != 32:
            raise InterfaceMismatchError(
                f"mutualConsentProposals argument 0 is not a bytes32: {proposal_id!r}"
            )
        return to_checksum_address(await self._read_one("mutualConsentProposals", proposal_id))

    async def next_in_q(self) -> tuple[Any, ...]:
        """Raw tuple describing the next position in the repayment queue."""
        return await self._read("nextInQ")

    async def nonce(self) -> int:
        return await self._read_one("nonce")

    async def otc_swap_servicer(self) -> str:
        return to_checksum_address(await self._read_one("otcSwapServicer"))

    async def proposal_count(self) -> int:
        return await self._read_one("proposalCount")

    async def protocol_treasury(self) -> str:
        return to_checksum_address(await self._read_one("protocolTreasury"))

    async def rates(self, position_id: int) -> Rates:
        return parser.parse_rates(await self._read("rates", position_id))

    async def recovery_enabled(self) -> bool:
        return await self._read_one("recoveryEnabled")

    async def spigot(self) -> str:
        return to_checksum_address(await self._read_one("spigot"))

    async def status(self) -> int:
        return await self._read_one("status")

    async def swap_target(self) -> str:
        return to_checksum_address(await self._read_one("swapTarget"))

    async def token_contract(self) -> str:
        return to_checksum_address(await self._read_one("tokenContract"))

    async def tradeable(self, token: str) -> int:
        return await self._read_one("tradeable", _address_arg(token, "tradeable token"))

    async def unused(self, token: str) -> int:
        return await self._read_one("unused", _address_arg(token, "unused token"))
