"""Unit tests for settlement cost arithmetic."""
import pytest

from trade_escrow.core.config import SettlementRatesConfig
from trade_escrow.core.errors import InvalidPrincipal, ValidationError
from trade_escrow.core.models import UINT64_MAX, ContractState
from trade_escrow.settlement.costs import (
    SettlementRates, box_mbr_cost, calculate_settlement_costs
)


class TestSettlementCosts:
    """Test calculate_settlement_costs."""

    def test_reference_scenario(self):
        """Test 1,000,000 units at 0.25% / 5% / 2%."""
        costs = calculate_settlement_costs(1_000_000, SettlementRates())

        assert costs.principal == 1_000_000
        assert costs.platform_fee == 2_500
        assert costs.escrow_required == 1_002_500
        assert costs.regulator_tax == 50_000
        assert costs.regulator_refund == 20_000
        assert costs.seller_net == 950_000

    def test_floor_division(self):
        """Test fractional results round down."""
        costs = calculate_settlement_costs(399, SettlementRates())

        assert costs.platform_fee == 0
        assert costs.escrow_required == 399
        assert costs.regulator_tax == 19
        assert costs.regulator_refund == 7

    @pytest.mark.parametrize("principal", [1, 3, 401, 10_007, 123_456_789, 2**53 + 1])
    def test_invariants(self, principal):
        """Test escrow = P + fee and tax + refund never exceeds P."""
        costs = calculate_settlement_costs(principal, SettlementRates())

        assert costs.escrow_required == principal + principal * 25 // 10_000
        assert costs.regulator_tax + costs.regulator_refund <= principal
        assert all(isinstance(v, int) for v in (
            costs.platform_fee, costs.escrow_required,
            costs.regulator_tax, costs.regulator_refund,
        ))

    def test_large_principal_is_exact(self):
        """Test no floating point drift near the uint64 range."""
        principal = 2**62 + 12_345
        costs = calculate_settlement_costs(principal, SettlementRates())
        assert costs.platform_fee == principal * 25 // 10_000

    def test_zero_principal(self):
        with pytest.raises(InvalidPrincipal):
            calculate_settlement_costs(0)

    def test_negative_principal(self):
        with pytest.raises(InvalidPrincipal):
            calculate_settlement_costs(-5)

    def test_non_integer_principal(self):
        with pytest.raises(InvalidPrincipal):
            calculate_settlement_costs(100.0)

    def test_overflowing_escrow(self):
        """Test principal plus fee must still fit in uint64."""
        with pytest.raises(InvalidPrincipal):
            calculate_settlement_costs(UINT64_MAX, SettlementRates())
        with pytest.raises(InvalidPrincipal):
            calculate_settlement_costs(UINT64_MAX + 1, SettlementRates())

    def test_default_rates_from_config(self):
        costs = calculate_settlement_costs(1_000_000)
        assert costs.platform_fee == 2_500


class TestSettlementRates:
    """Test rate validation and ledger overrides."""

    def test_from_config(self):
        rates = SettlementRates.from_config(SettlementRatesConfig(
            marketplace_fee_bps=50, regulator_tax_bps=300, regulator_refund_bps=100
        ))
        assert rates == SettlementRates(50, 300, 100)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            SettlementRates(marketplace_fee_bps=-1)
        with pytest.raises(ValidationError):
            SettlementRates(regulator_tax_bps=10_001)

    def test_rejects_tax_plus_refund_over_principal(self):
        with pytest.raises(ValidationError):
            SettlementRates(regulator_tax_bps=6_000, regulator_refund_bps=5_000)

    def test_ledger_overrides(self):
        """Test published rates replace configured ones."""
        state = ContractState(regulator_tax_bps=800, marketplace_fee_bps=None)
        rates = SettlementRates().with_ledger_overrides(state)

        assert rates.regulator_tax_bps == 800
        assert rates.marketplace_fee_bps == 25
        assert rates.regulator_refund_bps == 200

    def test_no_overrides_returns_same(self):
        rates = SettlementRates()
        assert rates.with_ledger_overrides(ContractState()) is rates


class TestBoxMbr:
    """Test box minimum-balance cost."""

    def test_trade_box(self):
        """Test a 208-byte trade record under a 14-byte name."""
        assert box_mbr_cost(14, 208) == 2_500 + 400 * 222

    def test_empty_box(self):
        assert box_mbr_cost(0, 0) == 2_500
