"""Typed reads of the escrow contract's boxes and global state.

Every call re-fetches from the ledger. A missing box is reported as None;
a box whose bytes do not match the expected layout raises CorruptRecord.
"""
from typing import Callable, List, Optional, TypeVar

import structlog

from trade_escrow.codec.binary import ADDRESS_SIZE, decode_address
from trade_escrow.codec.boxes import (
    buyer_index_box_name, creation_documents_box_name,
    execution_documents_box_name, metadata_box_name, seller_index_box_name,
    trade_box_name
)
from trade_escrow.codec.records import (
    decode_creation_documents, decode_execution_documents, decode_metadata,
    decode_trade, decode_trade_index
)
from trade_escrow.core.errors import CorruptRecord
from trade_escrow.core.models import (
    ComplianceDocumentSet, ContractState, ExecutionDocumentSet, Trade,
    TradeMetadata
)
from trade_escrow.ledger.algod_client import AlgodLedgerClient

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Global state keys written by the contract
NEXT_TRADE_ID_KEY = "nextTradeId"
SETTLEMENT_CURRENCY_KEY = "settlementCurrency"
PLATFORM_TREASURY_KEY = "platformTreasury"
MARKETPLACE_FEE_RATE_KEY = "marketplaceFeeRate"
REGULATOR_TAX_RATE_KEY = "regulatorTaxRate"
REGULATOR_REFUND_RATE_KEY = "regulatorRefundRate"


class BoxReader:
    """Reads escrow records for one application."""

    def __init__(self, ledger: AlgodLedgerClient, app_id: int):
        self.ledger = ledger
        self.app_id = app_id

    async def _read(
        self, name: bytes, decode: Callable[[bytes, Optional[bytes]], T]
    ) -> Optional[T]:
        raw = await self.ledger.get_box(self.app_id, name)
        if raw is None:
            return None
        try:
            return decode(raw, name)
        except CorruptRecord as e:
            logger.error("box_reader.corrupt_record", box=name.hex(), reason=e.reason)
            raise

    async def read_trade(self, trade_id: int) -> Optional[Trade]:
        """Fetch a trade record, or None if the box does not exist."""
        return await self._read(trade_box_name(trade_id), decode_trade)

    async def read_metadata(self, trade_id: int) -> Optional[TradeMetadata]:
        return await self._read(metadata_box_name(trade_id), decode_metadata)

    async def read_creation_documents(self, trade_id: int) -> Optional[ComplianceDocumentSet]:
        return await self._read(creation_documents_box_name(trade_id), decode_creation_documents)

    async def read_execution_documents(self, trade_id: int) -> Optional[ExecutionDocumentSet]:
        return await self._read(execution_documents_box_name(trade_id), decode_execution_documents)

    async def read_buyer_trades(self, address: str) -> List[int]:
        """Trade ids the account created as buyer. Empty if it never traded."""
        ids = await self._read(buyer_index_box_name(address), decode_trade_index)
        return ids or []

    async def read_seller_trades(self, address: str) -> List[int]:
        ids = await self._read(seller_index_box_name(address), decode_trade_index)
        return ids or []

    # =========================================================================
    # Global State
    # =========================================================================

    async def read_contract_state(self) -> ContractState:
        """Read the application's global state.

        A missing or zero trade counter means no trade has been created yet,
        so the next id is 1.
        """
        state = await self.ledger.get_global_state(self.app_id)

        def uint(key: str) -> Optional[int]:
            value = state.get(key)
            return value if isinstance(value, int) else None

        treasury = state.get(PLATFORM_TREASURY_KEY)
        if isinstance(treasury, bytes) and len(treasury) == ADDRESS_SIZE:
            treasury = decode_address(treasury)
        else:
            treasury = None

        return ContractState(
            next_trade_id=uint(NEXT_TRADE_ID_KEY) or 1,
            settlement_currency=uint(SETTLEMENT_CURRENCY_KEY) or 0,
            platform_treasury=treasury,
            marketplace_fee_bps=uint(MARKETPLACE_FEE_RATE_KEY),
            regulator_tax_bps=uint(REGULATOR_TAX_RATE_KEY),
            regulator_refund_bps=uint(REGULATOR_REFUND_RATE_KEY),
        )

    async def get_next_trade_id(self) -> int:
        """The id the contract will assign to the next created trade."""
        return (await self.read_contract_state()).next_trade_id
