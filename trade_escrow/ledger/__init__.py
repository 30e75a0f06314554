"""Ledger access: algod client, transaction groups, signing and box reads."""

from trade_escrow.ledger.algod_client import (
    AlgodLedgerClient, classify_rejection, create_ledger_client, with_retry
)
from trade_escrow.ledger.box_reader import BoxReader
from trade_escrow.ledger.group_builder import (
    AtomicGroupBuilder, TransactionGroup, sign_group, validate_create_request,
    validate_execute_request
)
from trade_escrow.ledger.signer import KeySigner, Signer

__all__ = [
    "AlgodLedgerClient",
    "AtomicGroupBuilder",
    "BoxReader",
    "KeySigner",
    "Signer",
    "TransactionGroup",
    "classify_rejection",
    "create_ledger_client",
    "sign_group",
    "validate_create_request",
    "validate_execute_request",
    "with_retry",
]
