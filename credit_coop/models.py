"""Data models — all frozen (immutable).

Amounts are integers in the smallest unit of the credit token.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CreditPosition:
    """Point-in-time view of one credit position on the line."""

    deposit: int
    principal: int
    interest_accrued: int
    interest_repaid: int
    decimals: int
    token: str
    token_id: int
    is_open: bool
    is_restricted: bool
    early_withdrawal_fee: int
    deadline: int


@dataclass(frozen=True)
class PositionLiquidity:
    """Assets a position can still lend, and interest its lender can claim."""

    available_assets: int
    claimable_interest: int


@dataclass(frozen=True)
class Fees:
    """Line fees in basis points."""

    origination_fee: int
    swap_fee: int
    servicing_fee: int


@dataclass(frozen=True)
class Rates:
    drawn_rate: int
    facility_rate: int
    last_accrued: int


@dataclass(frozen=True)
class PositionRates:
    drawn_rate: int
    facility_rate: int


@dataclass(frozen=True)
class OpenCounts:
    open: int
    total: int

