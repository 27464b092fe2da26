"""Shared test fixtures, sample data and an in-memory line ledger."""
from __future__ import annotations

import asyncio
import copy
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import pytest
from eth_abi import decode, encode
from eth_account import Account
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes
from web3 import AsyncBaseProvider, AsyncWeb3

from credit_coop.chains.evm.abi import ContractInterface
from credit_coop.config import AppConfig, LineConfig, TransportConfig
from credit_coop.protocols.secured_line import SecuredLine
from credit_coop.protocols.secured_line.line import ABI_PATH

# Default anvil wallet
TEST_SECRET = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

LINE_ADDRESS = "0xc4a54a88d278c6ade87f295a105df844cf072a50"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
LENDER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
OTHER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Addresses returned by the line's role getters
ROLES = {
    "admin": "0x90f79bf6eb2c4f870365e785982e1f101e93b906",
    "escrow": "0x15d34aaf54267db7d7c367839aaf71a00a2c6a65",
    "getLineFactory": "0x9965507d1a55bcc2695c58ba16fb37d819b0a4dc",
    "otcSwapServicer": "0x976ea74026e726554db657fa54763abd0c3a0aa9",
    "protocolTreasury": "0x14dc79964da2c08b23698b3d3cc7ca32193d9955",
    "spigot": "0x23618e81e3f5cdf7f54c3d65f7fbc0abf5b21e8f",
    "swapTarget": "0xa0ee7a142d267c1f36714e4a8f75612f20a79720",
    "tokenContract": "0xbcd4042de499d14e55001ccbb24a551f3b954096",
}

PROPOSAL_ID = bytes.fromhex("ab" * 32)


def error_data(signature: str, types: list[str] | None = None, args: list[Any] | None = None) -> str:
    """Revert payload for ``signature`` with ABI-encoded ``args``."""
    body = encode(types, args).hex() if types else ""
    return "0x" + keccak(text=signature)[:4].hex() + body


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_transport() -> TransportConfig:
    return TransportConfig(rpc_timeout=5, receipt_timeout=1, poll_interval=0.01)


@pytest.fixture()
def sample_app_config(sample_transport: TransportConfig) -> AppConfig:
    return AppConfig(
        line=LineConfig(
            address=LINE_ADDRESS,
            network="hardhat",
            rpc_url="http://127.0.0.1:8545",
            private_key=TEST_SECRET,
        ),
        transport=sample_transport,
    )


SAMPLE_YAML = textwrap.dedent("""\
    line:
      network: base
      address: "0xc4a54a88d278c6ade87f295a105df844cf072a50"
      rpc_url: "https://rpc.example.com"
      private_key: "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
    transport:
      rpc_timeout: 10
      receipt_timeout: 60
      poll_interval: 0.5
      gas_buffer_percent: 25
    networks:
      fork:
        chain_id: 31337
        rpc_url: "http://127.0.0.1:8545"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------------


class _Revert(Exception):
    def __init__(self, data: str) -> None:
        super().__init__(data)
        self.data = data


class NodeError(Exception):
    """A JSON-RPC error object the fake node answers with."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.payload: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            self.payload["data"] = data


@dataclass
class Credit:
    deposit: int
    principal: int = 0
    interest_accrued: int = 0
    interest_repaid: int = 0
    decimals: int = 6
    token: str = USDC
    lender: str = LENDER
    is_open: bool = True
    is_restricted: bool = False
    early_withdrawal_fee: int = 0
    deadline: int = 1_900_000_000


@dataclass
class FakeLedger:
    """Answers JSON-RPC requests from a small Secured Line model.

    ``borrow`` checks the caller, that the position is open and that it has
    liquidity. ``depositAndRepay`` pays interest then principal of the first
    queued position. ``withdraw`` is lender-only and limited to unborrowed
    deposit. ``close`` requires zero principal. ``accrueInterest`` needs an
    active line.

    ``failures`` makes an RPC method raise (transport errors) or answer with
    an error object (``NodeError``); ``results`` replaces a method's answer
    verbatim.
    """

    interface: ContractInterface
    credits: dict[int, Credit] = field(default_factory=dict)
    queue: list[int] = field(default_factory=list)
    fees: tuple[int, int, int] = (50, 25, 100)
    status: int = 1
    borrower: str = TEST_ADDRESS
    line_nonce: int = 7
    recovery_enabled: bool = False
    servicers: set[str] = field(default_factory=set)
    proposals: dict[bytes, str] = field(default_factory=dict)
    tradeable: dict[str, int] = field(default_factory=dict)
    unused: dict[str, int] = field(default_factory=dict)
    accrual: int = 10

    base_fee: int | None = 1_000_000_000
    ids_delay: float = 0.0
    failures: dict[str, Exception] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    before_mine: Callable[[FakeLedger], None] | None = None
    mutate_receipt: Callable[[dict[str, Any]], None] | None = None
    mine: bool = True

    tx_count: int = 0
    calls: list[str] = field(default_factory=list)
    sent: list[dict[str, Any]] = field(default_factory=list)
    receipts: dict[str, dict[str, Any]] = field(default_factory=dict)
    borrows: list[tuple[int, int, str]] = field(default_factory=list)
    repayments: list[tuple[int, int]] = field(default_factory=list)
    estimates: list[dict[str, Any]] = field(default_factory=list)
    gas_price_calls: int = 0
    block_number: int = 100
    msg_sender: str | None = None

    # -- contract model ------------------------------------------------

    def _credit(self, token_id: int) -> Credit:
        return self.credits.get(token_id, Credit(deposit=0, is_open=False))

    def _open_credit(self, token_id: int) -> Credit:
        c = self.credits.get(token_id)
        if c is None or not c.is_open:
            raise _Revert(error_data("PositionIsClosed()"))
        return c

    def _fn_counts(self) -> tuple[int, int]:
        return len(self.queue), len(self.credits)

    def _fn_ids(self, index: int) -> tuple[int]:
        if index >= len(self.queue):
            raise _Revert(error_data("Panic(uint256)", ["uint256"], [0x32]))
        return (self.queue[index],)

    def _fn_available(self, token_id: int) -> tuple[int, int]:
        c = self._credit(token_id)
        return c.deposit - c.principal, c.interest_repaid

    def _fn_getCreditPosition(self, token_id: int) -> tuple[tuple[Any, ...]]:
        c = self._credit(token_id)
        return ((
            c.deposit, c.principal, c.interest_accrued, c.interest_repaid,
            c.decimals, c.token, token_id, c.is_open, c.is_restricted,
            c.early_withdrawal_fee, c.deadline,
        ),)

    def _fn_getFees(self) -> tuple[tuple[int, int, int]]:
        return (self.fees,)

    def _fn_status(self) -> tuple[int]:
        return (self.status,)

    def _fn_borrower(self) -> tuple[str]:
        return (self.borrower,)

    def _fn_getRates(self, token_id: int) -> tuple[int, int]:
        return 1000, 200

    def _fn_rates(self, token_id: int) -> tuple[int, int, int]:
        return 1000, 200, 1_700_000_000

    def _fn_claimableEarlyWithdrawalFees(self, token_id: int) -> tuple[int]:
        return (self._credit(token_id).early_withdrawal_fee,)

    def _fn_interestAccrued(self, token_id: int) -> tuple[int]:
        return (self._credit(token_id).interest_accrued,)

    def _fn_isServicer(self, address: str) -> tuple[bool]:
        return (to_checksum_address(address) in self.servicers,)

    def _fn_mutualConsentProposals(self, proposal_id: bytes) -> tuple[str]:
        return (self.proposals.get(proposal_id, ZERO_ADDRESS),)

    def _fn_nextInQ(self) -> tuple[Any, ...]:
        if not self.queue:
            raise _Revert(error_data("NoQueue()"))
        token_id = self.queue[0]
        c = self._credit(token_id)
        return (
            token_id, c.principal + c.interest_accrued, c.token,
            c.principal, c.interest_accrued, c.deposit, 1000, 200,
        )

    def _fn_nonce(self) -> tuple[int]:
        return (self.line_nonce,)

    def _fn_proposalCount(self) -> tuple[int]:
        return (len(self.proposals),)

    def _fn_recoveryEnabled(self) -> tuple[bool]:
        return (self.recovery_enabled,)

    def _fn_tradeable(self, token: str) -> tuple[int]:
        return (self.tradeable.get(to_checksum_address(token), 0),)

    def _fn_unused(self, token: str) -> tuple[int]:
        return (self.unused.get(to_checksum_address(token), 0),)

    def _fn_borrow(self, token_id: int, amount: int, to: str) -> tuple[()]:
        if self.msg_sender != self.borrower:
            raise _Revert(error_data("CallerAccessDenied()"))
        c = self._open_credit(token_id)
        if amount > c.deposit - c.principal:
            raise _Revert(error_data("NoLiquidity()"))
        c.principal += amount
        self.borrows.append((token_id, amount, to_checksum_address(to)))
        return ()

    def _fn_depositAndRepay(self, amount: int) -> tuple[()]:
        if not self.queue:
            raise _Revert(error_data("NoQueue()"))
        token_id = self.queue[0]
        c = self._credit(token_id)
        debt = c.principal + c.interest_accrued
        if amount > debt:
            raise _Revert(error_data("RepayAmountExceedsDebt(uint256)", ["uint256"], [debt]))
        interest = min(amount, c.interest_accrued)
        c.interest_accrued -= interest
        c.interest_repaid += interest
        c.principal -= amount - interest
        self.repayments.append((token_id, amount))
        return ()

    def _fn_withdraw(self, token_id: int, amount: int) -> tuple[()]:
        c = self._open_credit(token_id)
        if self.msg_sender != c.lender:
            raise _Revert(error_data("CallerAccessDenied()"))
        if amount > c.deposit - c.principal:
            raise _Revert(error_data(
                "ReservesOverdrawn(address,uint256)",
                ["address", "uint256"],
                [c.lender, c.deposit - c.principal],
            ))
        c.deposit -= amount
        return ()

    def _fn_close(self, token_id: int) -> tuple[()]:
        c = self._open_credit(token_id)
        if self.msg_sender not in (self.borrower, c.lender):
            raise _Revert(error_data("CallerAccessDenied()"))
        if c.principal > 0:
            raise _Revert(error_data("CloseFailedWithPrincipal()"))
        c.is_open = False
        if token_id in self.queue:
            self.queue.remove(token_id)
        return ()

    def _fn_accrueInterest(self) -> tuple[()]:
        if self.status != 1:
            raise _Revert(error_data("NotActive()"))
        for c in self.credits.values():
            if c.is_open and c.principal:
                c.interest_accrued += self.accrual
        return ()

    def _execute(self, data: str, sender: str | None, commit: bool) -> str:
        fn = self.interface.function_by_selector(data[:10])
        if fn is None:
            raise NodeError(3, "execution reverted")
        if fn.name in ROLES:
            return "0x" + encode(["address"], [ROLES[fn.name]]).hex()

        args = decode(list(fn.input_types), bytes.fromhex(data[10:]))
        saved = (copy.deepcopy(self.credits), list(self.queue), list(self.borrows))
        self.msg_sender = to_checksum_address(sender) if sender else None
        try:
            result = getattr(self, f"_fn_{fn.name}")(*args)
        except _Revert as r:
            self.credits, self.queue, self.borrows = saved
            raise NodeError(3, "execution reverted", r.data) from None
        finally:
            self.msg_sender = None
        if not commit:
            self.credits, self.queue, self.borrows = saved
        return "0x" + encode(list(fn.output_types), list(result)).hex()

    # -- JSON-RPC ------------------------------------------------------

    async def answer(self, method: str, params: list[Any]) -> Any:
        self.calls.append(method)
        if method in self.failures:
            if method == "eth_sendRawTransaction":
                self._record_sent(params[0])
            raise self.failures[method]
        if method in self.results:
            return self.results[method]
        handler = getattr(self, f"_rpc_{method}", None)
        if handler is None:
            raise NodeError(-32601, f"the method {method} does not exist/is not available")
        return await handler(*params)

    async def _rpc_eth_chainId(self) -> str:
        return hex(31337)

    async def _rpc_eth_call(self, tx: dict[str, Any], block: Any = "latest") -> str:
        if self.ids_delay and tx["data"].startswith(self.interface.function("ids").selector):
            (index,) = decode(["uint256"], bytes.fromhex(tx["data"][10:]))
            await asyncio.sleep(self.ids_delay * (len(self.queue) - index))
        return self._execute(tx["data"], tx.get("from"), commit=False)

    async def _rpc_eth_estimateGas(self, tx: dict[str, Any], block: Any = None) -> str:
        self.estimates.append(tx)
        self._execute(tx["data"], tx.get("from"), commit=False)
        return hex(100_000)

    async def _rpc_eth_getTransactionCount(self, address: str, block: str) -> str:
        return hex(self.tx_count)

    async def _rpc_eth_getBlockByNumber(self, block: str, full: bool) -> dict[str, Any]:
        header = {"number": hex(self.block_number)}
        if self.base_fee is not None:
            header["baseFeePerGas"] = hex(self.base_fee)
        return header

    async def _rpc_eth_gasPrice(self) -> str:
        self.gas_price_calls += 1
        return hex(2_000_000_000)

    async def _rpc_eth_maxPriorityFeePerGas(self) -> str:
        return hex(1_000_000)

    async def _rpc_eth_getCode(self, address: str, block: Any = "latest") -> str:
        return "0x6080"

    def _record_sent(self, raw: Any) -> bytes:
        raw_tx = bytes(HexBytes(raw))
        self.sent.append({"raw": raw_tx, "sender": Account.recover_transaction(raw_tx)})
        return raw_tx

    async def _rpc_eth_sendRawTransaction(self, raw: Any) -> str:
        raw_tx = self._record_sent(raw)
        tx_hash = "0x" + keccak(raw_tx).hex()
        self.tx_count += 1
        if not self.mine:
            return tx_hash

        self.block_number += 1
        if self.before_mine is not None:
            self.before_mine(self)
        try:
            self._execute(self.estimates[-1]["data"], self.sent[-1]["sender"], commit=True)
            status = "0x1"
        except NodeError:
            status = "0x0"
        receipt = {
            "transactionHash": tx_hash,
            "blockNumber": hex(self.block_number),
            "status": status,
        }
        if self.mutate_receipt is not None:
            self.mutate_receipt(receipt)
        self.receipts[tx_hash] = receipt
        return tx_hash

    async def _rpc_eth_getTransactionReceipt(self, tx_hash: Any) -> dict[str, Any] | None:
        key = tx_hash if isinstance(tx_hash, str) else "0x" + bytes(tx_hash).hex()
        return self.receipts.get(key.lower())


class LedgerProvider(AsyncBaseProvider):
    """web3 provider that serves every request from a ``FakeLedger``."""

    def __init__(self, ledger: FakeLedger) -> None:
        super().__init__()
        self.ledger = ledger
        self._request_id = 0

    async def make_request(self, method: Any, params: Any) -> dict[str, Any]:
        self._request_id += 1
        response: dict[str, Any] = {"jsonrpc": "2.0", "id": self._request_id}
        try:
            response["result"] = await self.ledger.answer(str(method), list(params))
        except NodeError as e:
            response["error"] = e.payload
        return response

    async def is_connected(self, show_traceback: bool = False) -> bool:
        return True


@pytest.fixture()
def line_interface() -> ContractInterface:
    return ContractInterface.from_artifact(ABI_PATH)


@pytest.fixture()
def ledger(line_interface: ContractInterface) -> FakeLedger:
    return FakeLedger(
        interface=line_interface,
        credits={
            8: Credit(deposit=5_000_000_000, principal=1_000_000_000, interest_repaid=1_234),
            9: Credit(deposit=2_000_000_000),
            3: Credit(deposit=1_000_000, principal=1_000_000, is_open=False),
        },
        queue=[8, 9],
    )


@pytest.fixture()
def line(ledger: FakeLedger, sample_transport: TransportConfig) -> SecuredLine:
    return SecuredLine(
        LINE_ADDRESS,
        TEST_SECRET,
        "hardhat",
        transport=sample_transport,
        web3=AsyncWeb3(LedgerProvider(ledger), middleware=[]),
    )
