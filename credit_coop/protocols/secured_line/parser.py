"""Pure decoding functions for Secured Line call results — no I/O."""
from __future__ import annotations

from typing import Any, Sequence

from eth_utils import to_checksum_address

from ...errors import RemoteQueryError
from ...models import CreditPosition, Fees, OpenCounts, PositionLiquidity, PositionRates, Rates


def _expect(values: Sequence[Any], size: int, what: str) -> Sequence[Any]:
    if not isinstance(values, (tuple, list)) or len(values) != size:
        raise RemoteQueryError(
            f"Malformed {what}: expected {size} fields, got {values!r}", method=what
        )
    return values


def parse_credit_position(raw: Sequence[Any]) -> CreditPosition:
    """Decode the ``ILineOfCredit.Credit`` struct returned by ``getCreditPosition``."""
    (
        deposit,
        principal,
        interest_accrued,
        interest_repaid,
        decimals,
        token,
        token_id,
        is_open,
        is_restricted,
        early_withdrawal_fee,
        deadline,
    ) = _expect(raw, 11, "getCreditPosition")
    return CreditPosition(
        deposit=int(deposit),
        principal=int(principal),
        interest_accrued=int(interest_accrued),
        interest_repaid=int(interest_repaid),
        decimals=int(decimals),
        token=to_checksum_address(token),
        token_id=int(token_id),
        is_open=bool(is_open),
        is_restricted=bool(is_restricted),
        early_withdrawal_fee=int(early_withdrawal_fee),
        deadline=int(deadline),
    )


def parse_liquidity(raw: Sequence[Any]) -> PositionLiquidity:
    """Decode the ``(available, claimableInterest)`` pair from ``available``."""
    available_assets, claimable_interest = _expect(raw, 2, "available")
    return PositionLiquidity(
        available_assets=int(available_assets),
        claimable_interest=int(claimable_interest),
    )


def parse_fees(raw: Sequence[Any]) -> Fees:
    origination_fee, swap_fee, servicing_fee = _expect(raw, 3, "getFees")
    return Fees(
        origination_fee=int(origination_fee),
        swap_fee=int(swap_fee),
        servicing_fee=int(servicing_fee),
    )


def parse_rates(raw: Sequence[Any]) -> Rates:
    drawn_rate, facility_rate, last_accrued = _expect(raw, 3, "rates")
    return Rates(int(drawn_rate), int(facility_rate), int(last_accrued))


def parse_position_rates(raw: Sequence[Any]) -> PositionRates:
    drawn_rate, facility_rate = _expect(raw, 2, "getRates")
    return PositionRates(int(drawn_rate), int(facility_rate))


def parse_counts(raw: Sequence[Any]) -> OpenCounts:
    open_count, total = _expect(raw, 2, "counts")
    return OpenCounts(open=int(open_count), total=int(total))
