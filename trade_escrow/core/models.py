"""Data models for the trade escrow client.

This module defines the structures exchanged between the protocol layers:
- Trade, TradeMetadata and the two compliance document sets decoded from boxes
- SettlementCostBreakdown derived from a principal amount
- ContractState read from the application's global state
- Request/result objects for the create, fund, execute and cancel operations

All amounts are integers in the ledger's smallest settlement unit.
All addresses are base32 Algorand address strings.
"""

from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

UINT64_MAX = 2**64 - 1


# =============================================================================
# Enums
# =============================================================================

class TradeState(IntEnum):
    """Trade lifecycle state as stored in the trade record."""
    CREATED = 0
    ESCROWED = 1
    COMPLETED = 2                 # Contract "executed": instrument moved, escrow released
    CANCELLED = 4                 # Contract "expired"


class InstrumentType(IntEnum):
    """Title document type backing the instrument asset."""
    BILL_OF_LADING = 0
    WAREHOUSE_RECEIPT = 1


class Party(str, Enum):
    """Role of an account relative to a trade."""
    BUYER = "buyer"
    SELLER = "seller"
    FINANCIER = "financier"


class TradeEvent(str, Enum):
    """Events that move a trade between states."""
    FUND_ESCROW = "fund_escrow"
    EXECUTE_TRADE = "execute_trade"
    CANCEL = "cancel"


# =============================================================================
# Ledger Records
# =============================================================================

class Trade(BaseModel):
    """Trade record decoded from the "trades" box.

    The first six fields form the core record every contract version writes.
    The remaining fields are present only in the extended record and default
    to zero otherwise.

    Attributes:
        trade_id: Ledger-assigned identifier
        buyer: Buyer address (trade initiator)
        seller: Seller address
        escrow_provider: Party whose funds back the trade (buyer if self-funded)
        amount: Principal in settlement units
        state: Lifecycle state
        created_at: Creation timestamp (unix seconds)
        instrument_asset_id: Instrument asset moved on execution
        instrument_type: Title document type
        instrument_value: Value recorded for the instrument on execution
        regulator_wallet: Regulator address recorded on execution
        regulator_tax_paid: Tax paid to the regulator on execution
        regulator_refund_due: Refund owed back by the regulator
        marketplace_fee: Platform fee locked with the escrow
    """
    model_config = ConfigDict(frozen=True)

    trade_id: int = Field(..., ge=0, le=UINT64_MAX)
    buyer: str
    seller: str
    escrow_provider: str
    amount: int = Field(..., ge=0, le=UINT64_MAX)
    state: TradeState

    created_at: int = Field(default=0, ge=0, le=UINT64_MAX)
    instrument_asset_id: int = Field(default=0, ge=0, le=UINT64_MAX)
    instrument_type: InstrumentType = InstrumentType.BILL_OF_LADING
    instrument_value: int = Field(default=0, ge=0, le=UINT64_MAX)
    regulator_wallet: Optional[str] = None
    regulator_tax_paid: int = Field(default=0, ge=0, le=UINT64_MAX)
    regulator_refund_due: int = Field(default=0, ge=0, le=UINT64_MAX)
    marketplace_fee: int = Field(default=0, ge=0, le=UINT64_MAX)

    @property
    def is_terminal(self) -> bool:
        """True once the trade is COMPLETED or CANCELLED."""
        return self.state in (TradeState.COMPLETED, TradeState.CANCELLED)

    @property
    def is_self_funded(self) -> bool:
        """True when the buyer backs its own escrow."""
        return self.escrow_provider == self.buyer

    @property
    def instrument_recipient(self) -> str:
        """Account that receives the instrument on execution."""
        if self.is_self_funded:
            return self.buyer
        return self.escrow_provider

    def role_of(self, address: str) -> Party:
        """Classify an address as buyer, seller or third-party financier."""
        if address == self.buyer:
            return Party.BUYER
        if address == self.seller:
            return Party.SELLER
        return Party.FINANCIER


class TradeMetadata(BaseModel):
    """Immutable descriptive data stored in the "metadata" box."""
    model_config = ConfigDict(frozen=True)

    product_type: str = ""
    description: str = ""
    ipfs_hash: str = ""
    lei_id: str = ""
    lei_name: str = ""
    instrument_number: str = ""


class ComplianceDocumentSet(BaseModel):
    """Creation-phase credentials stored in the "vlei_c" box.

    Each credential payload is an opaque string paired with a content-address
    pointer to the full document. Empty strings mark absent documents.
    """
    model_config = ConfigDict(frozen=True)

    buyer_lei: str = ""
    buyer_lei_ipfs: str = ""
    seller_lei: str = ""
    seller_lei_ipfs: str = ""
    purchase_order_vlei: str = ""
    purchase_order_vlei_ipfs: str = ""
    created_at: int = Field(default=0, ge=0, le=UINT64_MAX)
    created_by: Optional[str] = None

    @property
    def present_documents(self) -> List[str]:
        """Names of the credentials that carry a payload or a pointer."""
        present = []
        if self.buyer_lei or self.buyer_lei_ipfs:
            present.append("buyer_lei")
        if self.seller_lei or self.seller_lei_ipfs:
            present.append("seller_lei")
        if self.purchase_order_vlei or self.purchase_order_vlei_ipfs:
            present.append("purchase_order_vlei")
        return present

    @property
    def is_empty(self) -> bool:
        return not self.present_documents


class ExecutionDocumentSet(BaseModel):
    """Execution-phase documents stored in the "vlei_e" box."""
    model_config = ConfigDict(frozen=True)

    shipping_instruction_vlei: str = ""
    shipping_instruction_vlei_ipfs: str = ""
    commercial_invoice_vlei: str = ""
    commercial_invoice_vlei_ipfs: str = ""
    instrument_lei: str = ""
    instrument_lei_ipfs: str = ""
    shipping_instruction_id: str = ""
    commercial_invoice_id: str = ""
    executed_at: int = Field(default=0, ge=0, le=UINT64_MAX)
    executed_by: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any((
            self.shipping_instruction_vlei, self.shipping_instruction_vlei_ipfs,
            self.commercial_invoice_vlei, self.commercial_invoice_vlei_ipfs,
            self.instrument_lei, self.instrument_lei_ipfs,
        ))


class ContractState(BaseModel):
    """Escrow application global state.

    Rates are None when the contract has not published them.
    """
    next_trade_id: int = 1
    settlement_currency: int = 0  # 0 = native ALGO, otherwise an asset id
    platform_treasury: Optional[str] = None
    marketplace_fee_bps: Optional[int] = None
    regulator_tax_bps: Optional[int] = None
    regulator_refund_bps: Optional[int] = None

    @property
    def is_native_settlement(self) -> bool:
        return self.settlement_currency == 0


# =============================================================================
# Derived Values
# =============================================================================

class SettlementCostBreakdown(BaseModel):
    """Settlement costs derived from a principal. Never stored."""
    model_config = ConfigDict(frozen=True)

    principal: int
    platform_fee: int
    escrow_required: int
    regulator_tax: int
    regulator_refund: int

    @property
    def seller_net(self) -> int:
        """Principal left to the seller after the regulator tax."""
        return self.principal - self.regulator_tax


# =============================================================================
# Requests / Results
# =============================================================================

class CreateTradeRequest(BaseModel):
    """Inputs for the create-trade operation. The buyer is the sender."""
    buyer: str
    seller: str
    amount: int
    product_type: str
    description: str = ""
    ipfs_hash: str = ""
    documents: ComplianceDocumentSet = Field(default_factory=ComplianceDocumentSet)
    instrument_asset_id: Optional[int] = None


class ExecuteTradeRequest(BaseModel):
    """Inputs for the execute-trade operation. The seller is the sender."""
    trade_id: int
    seller: str
    instrument_asset_id: int
    regulator: str
    instrument_type: InstrumentType = InstrumentType.BILL_OF_LADING
    lei_id: str = ""
    lei_name: str = ""
    instrument_number: str = ""
    documents: ExecutionDocumentSet = Field(default_factory=ExecutionDocumentSet)


class TradeResult(BaseModel):
    """Outcome of a confirmed transaction group."""
    trade_id: int
    tx_id: str
    group_id: str
    confirmed_round: int
    explorer_url: str = ""
    trade: Optional[Trade] = None
