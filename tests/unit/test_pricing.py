"""
联合曲线定价单元测试
"""
import pytest

from src.core.pricing import (
    amount_in_for_exact_out,
    apply_buffer,
    apply_slippage,
    quote_exact_in,
    with_fee,
)
from src.utils.exceptions import DomainError


class TestQuoteExactIn:
    def test_known_quote(self):
        # k = 5e11, 新虚拟原生币 1_100_000, 新虚拟代币 floor(454545.45) = 454545
        assert quote_exact_in(1_000_000, 500_000, 100_000) == 45455

    def test_zero_input_yields_nothing(self):
        assert quote_exact_in(1_000_000, 500_000, 0) == 0

    def test_output_monotonic_in_input(self):
        outputs = [quote_exact_in(10**24, 10**27, amount) for amount in (10**15, 10**17, 10**18, 10**20)]
        assert outputs == sorted(outputs)
        assert len(set(outputs)) == len(outputs)

    def test_output_strictly_below_token_reserve(self):
        assert quote_exact_in(1_000, 500_000, 400_000) < 500_000

    def test_input_draining_reserve_rejected(self):
        # k // (vN + a) 向下取整为0时会返回全部储备
        with pytest.raises(DomainError, match="drain"):
            quote_exact_in(1_000, 500_000, 10**30)

    @pytest.mark.parametrize("native,token", [(0, 500_000), (1_000_000, 0), (-1, 10)])
    def test_rejects_non_positive_reserves(self, native, token):
        with pytest.raises(DomainError):
            quote_exact_in(native, token, 1)

    def test_rejects_negative_input(self):
        with pytest.raises(DomainError):
            quote_exact_in(1_000_000, 500_000, -1)


class TestAmountInForExactOut:
    def test_inverse_covers_requested_output(self):
        vn, vt = 30 * 10**21, 1_073 * 10**24
        tokens_out = 5 * 10**24
        needed = amount_in_for_exact_out(vn, vt, tokens_out)
        # 整数舍入使精确输入略少于目标，5%缓冲足以覆盖
        assert quote_exact_in(vn, vt, needed) <= tokens_out
        assert quote_exact_in(vn, vt, apply_buffer(needed, 500)) >= tokens_out

    @pytest.mark.parametrize(
        "vn,vt,amount",
        [(1_000_000, 500_000, 100_000), (30 * 10**21, 1_073 * 10**24, 10**18), (7, 10**9, 3)],
    )
    def test_round_trip_bound(self, vn, vt, amount):
        out = quote_exact_in(vn, vt, amount)
        back = amount_in_for_exact_out(vn, vt, out)
        total = vn + amount
        assert 0 <= back - amount <= total * total // (vn * vt - total)

    def test_rejects_output_at_or_above_reserve(self):
        with pytest.raises(DomainError):
            amount_in_for_exact_out(1_000_000, 500_000, 500_000)

    def test_small_output(self):
        assert amount_in_for_exact_out(1_000_000, 500_000, 1) == 2


class TestFeeAndTolerances:
    def test_fee_is_added_on_top(self):
        breakdown = with_fee(100_000)
        assert breakdown.fee == 1_000
        assert breakdown.total == 101_000

    def test_fee_rounds_down(self):
        assert with_fee(99).fee == 0

    def test_fee_total_identity(self):
        for amount in (1, 12_345, 10**18 + 7):
            breakdown = with_fee(amount, 250)
            assert breakdown.total == amount + breakdown.fee

    def test_slippage_min_out(self):
        assert apply_slippage(10_000, 50) == 9_950
        assert apply_slippage(10_000, 0) == 10_000

    def test_buffer(self):
        assert apply_buffer(10_000, 500) == 10_500

    @pytest.mark.parametrize("bps", [-1, 10_001])
    def test_bps_out_of_range(self, bps):
        with pytest.raises(DomainError):
            apply_slippage(100, bps)
