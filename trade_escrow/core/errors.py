"""Exception hierarchy for the escrow protocol client.

Errors are grouped by when they are raised:

- ValidationError: bad input detected locally, before any network call
- TradeStateError: the trade is not in a state that allows the operation
- SigningIncomplete: the signer did not return a full signature set
- SubmissionError: the ledger rejected the transaction group
- ConfirmationTimeout: the group was accepted but not seen confirmed in time
- CorruptRecord: a box exists but its bytes do not match the expected layout
"""
from typing import Optional


class EscrowProtocolError(Exception):
    """Base class for every error raised by the escrow client."""


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(EscrowProtocolError, ValueError):
    """Input rejected locally. Never reaches the ledger."""


class CodecError(ValidationError):
    """A value cannot be encoded or decoded with the fixed binary layout."""


class InvalidAddress(CodecError):
    """Address does not decode to exactly 32 bytes."""


class StringTooLong(CodecError):
    """String does not fit in a 16-bit length prefix."""


class ShortBuffer(CodecError):
    """Buffer ends before the field being decoded."""


class ValueOutOfRange(CodecError):
    """Integer does not fit in an unsigned 64-bit field."""


class InvalidPrincipal(ValidationError):
    """Principal amount is zero or does not fit the settlement arithmetic."""


class ArgumentsTooLong(ValidationError):
    """Encoded application arguments exceed the ledger's per-call limit."""


class SelfTrade(ValidationError):
    """Buyer and seller are the same account."""


class RecipientNotOptedIn(ValidationError):
    """Instrument recipient has not opted into the instrument asset."""


# =============================================================================
# Trade State Errors
# =============================================================================

class TradeStateError(EscrowProtocolError):
    """Operation is not allowed for the trade's current state."""


class InvalidTransition(TradeStateError):
    """No transition exists for this state and event."""


class UnauthorizedInitiator(TradeStateError):
    """The initiating party may not trigger this transition."""


class StaleTradeState(TradeStateError):
    """A fresh ledger read contradicts the caller's cached trade state."""


class TradeNotFound(TradeStateError):
    """The trade record does not exist on the ledger."""


# =============================================================================
# Signing / Submission / Confirmation Errors
# =============================================================================

class SigningIncomplete(EscrowProtocolError):
    """Signer returned fewer signed transactions than were requested."""

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Signer returned {received} signed transaction(s), expected {expected}"
        )
        self.expected = expected
        self.received = received


class SubmissionError(EscrowProtocolError):
    """Ledger rejected the group. The original message is kept verbatim."""

    def __init__(self, ledger_message: str):
        super().__init__(ledger_message)
        self.ledger_message = ledger_message


class InsufficientBalance(SubmissionError):
    """An account would overspend or drop below its minimum balance."""


class BoxReferenceMissing(SubmissionError):
    """The call touched a box that was not declared in the transaction."""


class ContractLogicRejected(SubmissionError):
    """Contract logic evaluated to a rejection (failed assert, bad state)."""


class Unclassified(SubmissionError):
    """Rejection message did not match any known category."""


class ConfirmationTimeout(EscrowProtocolError):
    """Group not confirmed within the round budget. It may still confirm."""

    def __init__(self, tx_id: str, rounds: int):
        super().__init__(f"Transaction {tx_id} not confirmed after {rounds} rounds")
        self.tx_id = tx_id
        self.rounds = rounds


# =============================================================================
# Decode Errors
# =============================================================================

class CorruptRecord(EscrowProtocolError):
    """Box exists but its contents do not match the expected byte layout."""

    def __init__(self, reason: str, box_name: Optional[bytes] = None):
        where = f" (box {box_name.hex()})" if box_name is not None else ""
        super().__init__(f"Corrupt record{where}: {reason}")
        self.reason = reason
        self.box_name = box_name
