"""Settlement cost arithmetic.

All amounts are integers in settlement units and all rates are basis points,
so every result is exact: ``fee = principal * rate // 10_000``. No floating
point is involved anywhere on this path.
"""
from dataclasses import dataclass, replace
from typing import Optional

import structlog

from trade_escrow.core.config import SettlementRatesConfig, rates_config
from trade_escrow.core.errors import InvalidPrincipal, ValidationError
from trade_escrow.core.models import UINT64_MAX, ContractState, SettlementCostBreakdown

logger = structlog.get_logger(__name__)

BPS_DENOMINATOR = 10_000

# Box minimum-balance requirement: flat part + per byte of name and value
BOX_FLAT_MBR = 2_500
BOX_BYTE_MBR = 400


@dataclass(frozen=True)
class SettlementRates:
    """Basis-point rates applied to a trade principal.

    Attributes:
        marketplace_fee_bps: Platform fee added on top of the escrowed principal
        regulator_tax_bps: Tax the seller pays the regulator on execution
        regulator_refund_bps: Portion of the tax the regulator refunds later
    """
    marketplace_fee_bps: int = 25
    regulator_tax_bps: int = 500
    regulator_refund_bps: int = 200

    def __post_init__(self):
        for name in ("marketplace_fee_bps", "regulator_tax_bps", "regulator_refund_bps"):
            value = getattr(self, name)
            if not 0 <= value <= BPS_DENOMINATOR:
                raise ValidationError(f"{name} must be within 0..{BPS_DENOMINATOR}, got {value}")
        if self.regulator_tax_bps + self.regulator_refund_bps > BPS_DENOMINATOR:
            raise ValidationError("Regulator tax and refund together exceed the principal")

    @classmethod
    def from_config(cls, config: Optional[SettlementRatesConfig] = None) -> "SettlementRates":
        config = config or rates_config
        return cls(
            marketplace_fee_bps=config.marketplace_fee_bps,
            regulator_tax_bps=config.regulator_tax_bps,
            regulator_refund_bps=config.regulator_refund_bps,
        )

    def with_ledger_overrides(self, state: ContractState) -> "SettlementRates":
        """Replace any rate the contract publishes in its global state."""
        overrides = {
            name: getattr(state, name)
            for name in ("marketplace_fee_bps", "regulator_tax_bps", "regulator_refund_bps")
            if getattr(state, name) is not None
        }
        if not overrides:
            return self
        return replace(self, **overrides)


def _portion(principal: int, bps: int) -> int:
    return principal * bps // BPS_DENOMINATOR


def calculate_settlement_costs(
    principal: int,
    rates: Optional[SettlementRates] = None
) -> SettlementCostBreakdown:
    """Derive fee, escrow requirement, regulator tax and refund from a principal.

    Args:
        principal: Trade amount in settlement units
        rates: Rates to apply (defaults to configured rates)

    Returns:
        SettlementCostBreakdown

    Raises:
        InvalidPrincipal: If the principal is zero, negative, or the escrow
            requirement would overflow uint64
    """
    rates = rates or SettlementRates.from_config()

    if isinstance(principal, bool) or not isinstance(principal, int):
        raise InvalidPrincipal(f"Principal must be an integer, got {type(principal).__name__}")
    if principal <= 0:
        raise InvalidPrincipal(f"Principal must be positive, got {principal}")
    if principal > UINT64_MAX:
        raise InvalidPrincipal(f"Principal {principal} does not fit in uint64")

    fee = _portion(principal, rates.marketplace_fee_bps)
    escrow_required = principal + fee
    if escrow_required > UINT64_MAX:
        raise InvalidPrincipal(f"Escrow requirement for {principal} overflows uint64")

    breakdown = SettlementCostBreakdown(
        principal=principal,
        platform_fee=fee,
        escrow_required=escrow_required,
        regulator_tax=_portion(principal, rates.regulator_tax_bps),
        regulator_refund=_portion(principal, rates.regulator_refund_bps),
    )

    logger.debug(
        "settlement.costs_calculated",
        principal=principal,
        fee=breakdown.platform_fee,
        escrow_required=breakdown.escrow_required,
        tax=breakdown.regulator_tax,
        refund=breakdown.regulator_refund,
    )
    return breakdown


def box_mbr_cost(name_size: int, value_size: int) -> int:
    """Minimum balance locked by a box with the given name and value sizes."""
    return BOX_FLAT_MBR + BOX_BYTE_MBR * (name_size + value_size)
