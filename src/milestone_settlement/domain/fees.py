"""Integer settlement arithmetic.

All monetary amounts are non-negative Python ints in the ledger's smallest
unit. Nothing here ever touches a float.
"""

from __future__ import annotations

from typing import NamedTuple

BASIS_POINTS_DENOMINATOR = 10_000

# Largest amount the store can hold (signed 64-bit BIGINT column).
MAX_AMOUNT = 2**63 - 1


class ReleaseSplit(NamedTuple):
    fee: int
    payout: int


def split_release(amount: int, fee_basis_points: int) -> ReleaseSplit:
    """Split a milestone amount into (fee, payout).

    The fee truncates toward zero, so ``fee + payout == amount`` always holds.

        >>> split_release(50_000, 50)
        ReleaseSplit(fee=250, payout=49750)
    """
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    if not 0 <= fee_basis_points <= BASIS_POINTS_DENOMINATOR:
        raise ValueError(f"fee_basis_points out of range: {fee_basis_points}")
    fee = amount * fee_basis_points // BASIS_POINTS_DENOMINATOR
    return ReleaseSplit(fee=fee, payout=amount - fee)
