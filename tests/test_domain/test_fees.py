"""Tests for integer release arithmetic."""

from __future__ import annotations

import pytest

from milestone_settlement.domain.fees import split_release


class TestSplitRelease:
    def test_half_percent_fee(self) -> None:
        split = split_release(50_000, 50)
        assert split.fee == 250
        assert split.payout == 49_750

    def test_fee_truncates_toward_zero(self) -> None:
        # 199 * 50 / 10000 = 0.995
        assert split_release(199, 50) == (0, 199)
        assert split_release(30_001, 50) == (150, 29_851)

    def test_conserves_amount_for_large_values(self) -> None:
        amount = 10**30 + 7
        fee, payout = split_release(amount, 75)
        assert fee + payout == amount

    def test_zero_fee(self) -> None:
        assert split_release(1_000, 0) == (0, 1_000)

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            split_release(-1, 50)

    @pytest.mark.parametrize("bps", [-1, 10_001])
    def test_out_of_range_basis_points(self, bps: int) -> None:
        with pytest.raises(ValueError, match="out of range"):
            split_release(100, bps)
