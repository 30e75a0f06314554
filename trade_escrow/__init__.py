"""Client-side protocol layer for ledger-based trade-finance escrow settlement."""

__version__ = "1.0.0"
