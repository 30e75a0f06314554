"""Settlement arithmetic and the trade lifecycle state machine."""

from trade_escrow.settlement.costs import (
    SettlementRates,
    box_mbr_cost,
    calculate_settlement_costs,
)
from trade_escrow.settlement.state_machine import (
    TRANSITIONS,
    Transition,
    authorize,
    next_state,
)

__all__ = [
    "SettlementRates",
    "box_mbr_cost",
    "calculate_settlement_costs",
    "TRANSITIONS",
    "Transition",
    "authorize",
    "next_state",
]
