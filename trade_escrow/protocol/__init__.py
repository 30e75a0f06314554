"""Public trade operations."""

from trade_escrow.protocol.escrow_protocol import EscrowProtocol, create_escrow_protocol

__all__ = ["EscrowProtocol", "create_escrow_protocol"]
