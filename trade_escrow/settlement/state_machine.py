"""Trade lifecycle state machine.

    CREATED --fund_escrow--> ESCROWED --execute_trade--> COMPLETED
       |                        |
       +--------cancel----------+-----> CANCELLED

The contract enforces the same table; the client only uses it to avoid
attempting transitions that cannot succeed. A ledger rejection of an
attempted transition is always authoritative.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple

import structlog

from trade_escrow.core.errors import InvalidTransition, UnauthorizedInitiator
from trade_escrow.core.models import Party, Trade, TradeEvent, TradeState

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Transition:
    """One row of the transition table.

    Attributes:
        event: Event that triggers the transition
        from_states: States the transition may start from
        to_state: Resulting state
        initiators: Parties allowed to trigger it
    """
    event: TradeEvent
    from_states: FrozenSet[TradeState]
    to_state: TradeState
    initiators: FrozenSet[Party]


TRANSITIONS: Dict[TradeEvent, Transition] = {
    TradeEvent.FUND_ESCROW: Transition(
        event=TradeEvent.FUND_ESCROW,
        from_states=frozenset({TradeState.CREATED}),
        to_state=TradeState.ESCROWED,
        initiators=frozenset({Party.BUYER, Party.FINANCIER}),
    ),
    TradeEvent.EXECUTE_TRADE: Transition(
        event=TradeEvent.EXECUTE_TRADE,
        from_states=frozenset({TradeState.ESCROWED}),
        to_state=TradeState.COMPLETED,
        initiators=frozenset({Party.SELLER}),
    ),
    TradeEvent.CANCEL: Transition(
        event=TradeEvent.CANCEL,
        from_states=frozenset({TradeState.CREATED, TradeState.ESCROWED}),
        to_state=TradeState.CANCELLED,
        initiators=frozenset({Party.BUYER}),
    ),
}

TERMINAL_STATES = frozenset({TradeState.COMPLETED, TradeState.CANCELLED})


def is_terminal(state: TradeState) -> bool:
    return state in TERMINAL_STATES


def next_state(state: TradeState, event: TradeEvent) -> TradeState:
    """Resulting state for an event, or InvalidTransition."""
    transition = TRANSITIONS[TradeEvent(event)]
    if state not in transition.from_states:
        raise InvalidTransition(
            f"Cannot {transition.event.value} a trade in state {TradeState(state).name}"
        )
    return transition.to_state


def allowed_events(state: TradeState) -> Tuple[TradeEvent, ...]:
    """Events the client may attempt from a state."""
    return tuple(
        event for event, transition in TRANSITIONS.items()
        if state in transition.from_states
    )


def authorize(trade: Trade, event: TradeEvent, initiator: str) -> Transition:
    """Check that an initiator may trigger an event on a trade.

    Args:
        trade: Freshly read trade
        event: Event to trigger
        initiator: Address that will sign the contract call

    Returns:
        The matching Transition

    Raises:
        InvalidTransition: If the trade's state does not allow the event
        UnauthorizedInitiator: If the initiator's role may not trigger it
    """
    transition = TRANSITIONS[TradeEvent(event)]
    next_state(trade.state, event)

    role = trade.role_of(initiator)
    if role not in transition.initiators:
        logger.warning(
            "state_machine.unauthorized_initiator",
            trade_id=trade.trade_id,
            event=transition.event.value,
            role=role.value,
        )
        raise UnauthorizedInitiator(
            f"A {role.value} may not {transition.event.value} trade #{trade.trade_id}"
        )
    return transition
