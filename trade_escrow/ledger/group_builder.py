"""Atomic transaction group assembly for the escrow contract.

Every builder returns a TransactionGroup whose transactions already share a
group id. Nothing here touches the network: suggested params and any ledger
state a group depends on are passed in by the caller.

Group shapes:
- create trade:  [asset opt-in (buyer)]?, createTrade call
- fund escrow:   payment | asset transfer to the app, escrow call
- execute trade: instrument transfer, regulator tax payment, executeTrade call
- cancel trade:  expireTrade call
"""
import base64
import copy
from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog
from algosdk import encoding, logic, transaction

from trade_escrow.codec.binary import (
    encode_address, encode_string, encode_uint64, method_selector, validate_address
)
from trade_escrow.codec.boxes import (
    buyer_index_box_name, creation_documents_box_name,
    execution_documents_box_name, metadata_box_name, seller_index_box_name,
    trade_box_name
)
from trade_escrow.codec.records import (
    TRADE_EXTENDED_SIZE, encode_creation_documents, encode_metadata
)
from trade_escrow.core.config import TransactionFeeConfig, fee_config
from trade_escrow.core.errors import (
    ArgumentsTooLong, InvalidPrincipal, SelfTrade, SigningIncomplete
)
from trade_escrow.core.models import (
    CreateTradeRequest, ExecuteTradeRequest, Trade, TradeMetadata, TradeState
)
from trade_escrow.ledger.signer import Signer
from trade_escrow.settlement.costs import box_mbr_cost

logger = structlog.get_logger(__name__)

# Ledger limits on a single application call
MAX_APP_ARGS = 16
MAX_APP_ARGS_BYTES = 2048

CREATE_TRADE = (
    "createTrade(address,uint64,string,string,string,"
    "string,string,string,string,string,string)uint64"
)
ESCROW_TRADE = "escrowTrade(pay,uint64)bool"
ESCROW_TRADE_WITH_ASSET = "escrowTradeWithAsset(axfer,uint64)bool"
ESCROW_TRADE_AS_FINANCIER = "escrowTradeAsFinancier(pay,uint64)bool"
ESCROW_TRADE_AS_FINANCIER_WITH_ASSET = "escrowTradeAsFinancierWithAsset(axfer,uint64)bool"
_EXECUTE_ARGS = (
    "uint64,uint64,uint64,string,string,string,address,"
    "string,string,string,string,string,string,string,string"
)
EXECUTE_TRADE = f"executeTrade(axfer,pay,{_EXECUTE_ARGS})bool"
EXECUTE_TRADE_WITH_ASSET = f"executeTradeWithAsset(axfer,axfer,{_EXECUTE_ARGS})bool"
EXPIRE_TRADE = "expireTrade(uint64)bool"

# An index box created by the first trade holds one uint64 element
_NEW_INDEX_SIZE = 2 + 8


@dataclass
class TransactionGroup:
    """An ordered, grouped set of unsigned transactions.

    Attributes:
        transactions: Transactions in submission order
        call_index: Position of the application call
        box_mbr_estimate: Minimum balance the call's new boxes will lock
    """
    transactions: List[transaction.Transaction]
    call_index: int
    box_mbr_estimate: int = 0

    def __len__(self) -> int:
        return len(self.transactions)

    @property
    def group_id(self) -> bytes:
        return self.transactions[0].group

    @property
    def group_id_b64(self) -> str:
        return base64.b64encode(self.group_id).decode("ascii")

    @property
    def call_tx_id(self) -> str:
        return self.transactions[self.call_index].get_txid()

    def encode_unsigned(self) -> List[bytes]:
        """Raw msgpack encodings, the format a signer receives."""
        return [
            base64.b64decode(encoding.msgpack_encode(txn))
            for txn in self.transactions
        ]


async def sign_group(group: TransactionGroup, signer: Signer) -> List[bytes]:
    """Hand a group to a signer and insist on a complete signature set.

    Raises:
        SigningIncomplete: If the signer returns fewer entries than
            transactions, or declines any of them
    """
    signed = await signer(group.encode_unsigned())
    complete = [s for s in signed if s is not None]
    if len(signed) != len(group) or len(complete) != len(group):
        logger.warning(
            "group_builder.signing_incomplete",
            expected=len(group),
            received=len(complete),
        )
        raise SigningIncomplete(len(group), len(complete))
    return complete


def _flat_fee(sp: transaction.SuggestedParams, fee: int) -> transaction.SuggestedParams:
    params = copy.copy(sp)
    params.flat_fee = True
    params.fee = fee
    return params


def _check_app_args(method: str, app_args: Sequence[bytes]) -> None:
    total = sum(len(arg) for arg in app_args)
    if len(app_args) > MAX_APP_ARGS:
        raise ArgumentsTooLong(f"{method} takes {len(app_args)} arguments, limit is {MAX_APP_ARGS}")
    if total > MAX_APP_ARGS_BYTES:
        raise ArgumentsTooLong(
            f"{method} arguments encode to {total} bytes, limit is {MAX_APP_ARGS_BYTES}"
        )


def _unique(addresses: Sequence[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for address in addresses:
        if address and address not in seen:
            seen.append(address)
    return seen


# =============================================================================
# Request Validation
# =============================================================================

def validate_create_request(request: CreateTradeRequest) -> List[bytes]:
    """Check a create-trade request and encode its call arguments.

    Pure: touches no network, so bad input fails before any ledger read.

    Returns:
        Encoded arguments following the method selector

    Raises:
        ValidationError: Bad address, zero amount, self-trade, oversized
            string, or arguments over the per-call limit
    """
    buyer = validate_address(request.buyer)
    seller = validate_address(request.seller)
    if buyer == seller:
        raise SelfTrade("Buyer and seller must be different accounts")
    if request.amount <= 0:
        raise InvalidPrincipal(f"Trade amount must be positive, got {request.amount}")

    docs = request.documents
    args = [
        encode_address(seller),
        encode_uint64(request.amount),
        encode_string(request.product_type),
        encode_string(request.description),
        encode_string(request.ipfs_hash),
        encode_string(docs.buyer_lei),
        encode_string(docs.buyer_lei_ipfs),
        encode_string(docs.seller_lei),
        encode_string(docs.seller_lei_ipfs),
        encode_string(docs.purchase_order_vlei),
        encode_string(docs.purchase_order_vlei_ipfs),
    ]
    _check_app_args("createTrade", [method_selector(CREATE_TRADE)] + args)
    return args


def validate_execute_request(request: ExecuteTradeRequest) -> List[bytes]:
    """Check an execute-trade request and encode its call arguments.

    Both execute variants share the argument list, so the result serves
    native and asset settlement alike.
    """
    validate_address(request.seller)
    regulator = validate_address(request.regulator)

    docs = request.documents
    args = [
        encode_uint64(request.trade_id),
        encode_uint64(request.instrument_asset_id),
        encode_uint64(int(request.instrument_type)),
        encode_string(request.lei_id),
        encode_string(request.lei_name),
        encode_string(request.instrument_number),
        encode_address(regulator),
        encode_string(docs.shipping_instruction_vlei),
        encode_string(docs.shipping_instruction_vlei_ipfs),
        encode_string(docs.commercial_invoice_vlei),
        encode_string(docs.commercial_invoice_vlei_ipfs),
        encode_string(docs.instrument_lei),
        encode_string(docs.instrument_lei_ipfs),
        encode_string(docs.shipping_instruction_id),
        encode_string(docs.commercial_invoice_id),
    ]
    _check_app_args("executeTrade", [method_selector(EXECUTE_TRADE)] + args)
    return args


class AtomicGroupBuilder:
    """Builds the escrow contract's transaction groups.

    Attributes:
        app_id: Escrow application id
        app_address: Escrow application account
        fees: Flat fee schedule per transaction role
    """

    def __init__(self, app_id: int, fees: Optional[TransactionFeeConfig] = None):
        self.app_id = app_id
        self.app_address = logic.get_application_address(app_id)
        self.fees = fees or fee_config

    def _call(
        self,
        sender: str,
        sp: transaction.SuggestedParams,
        fee: int,
        signature: str,
        args: List[bytes],
        boxes: List[bytes],
        accounts: Optional[List[str]] = None,
        foreign_assets: Optional[List[int]] = None,
    ) -> transaction.ApplicationNoOpTxn:
        app_args = [method_selector(signature)] + args
        _check_app_args(signature.split("(")[0], app_args)
        return transaction.ApplicationNoOpTxn(
            sender,
            _flat_fee(sp, fee),
            self.app_id,
            app_args=app_args,
            accounts=accounts or None,
            foreign_assets=foreign_assets or None,
            boxes=[(0, name) for name in boxes],
        )

    # =========================================================================
    # Create Trade
    # =========================================================================

    def build_create_trade(
        self,
        request: CreateTradeRequest,
        trade_id: int,
        sp: transaction.SuggestedParams,
        encoded_args: Optional[List[bytes]] = None,
    ) -> TransactionGroup:
        """Build the create-trade group.

        Args:
            request: Trade inputs; the buyer signs every transaction
            trade_id: Ledger's next trade id, read just before building
            sp: Suggested params
            encoded_args: Result of validate_create_request, if already run

        Raises:
            ValidationError: Bad address, zero amount, self-trade, or the
                arguments exceed the per-call limit
        """
        args = encoded_args if encoded_args is not None else validate_create_request(request)
        buyer = validate_address(request.buyer)
        seller = validate_address(request.seller)
        docs = request.documents
        boxes = [
            trade_box_name(trade_id),
            metadata_box_name(trade_id),
            creation_documents_box_name(trade_id),
            buyer_index_box_name(buyer),
            seller_index_box_name(seller),
        ]

        transactions: List[transaction.Transaction] = []
        if request.instrument_asset_id:
            transactions.append(transaction.AssetOptInTxn(
                buyer, _flat_fee(sp, self.fees.base_fee), request.instrument_asset_id
            ))
        transactions.append(self._call(
            buyer, sp, self.fees.create_trade_min_fee, CREATE_TRADE, args, boxes
        ))
        transaction.assign_group_id(transactions)

        metadata = TradeMetadata(
            product_type=request.product_type,
            description=request.description,
            ipfs_hash=request.ipfs_hash,
        )
        value_sizes = [
            TRADE_EXTENDED_SIZE,
            len(encode_metadata(metadata)),
            len(encode_creation_documents(docs.model_copy(update={"created_by": buyer}))),
            _NEW_INDEX_SIZE,
            _NEW_INDEX_SIZE,
        ]
        mbr = sum(box_mbr_cost(len(name), size) for name, size in zip(boxes, value_sizes))

        group = TransactionGroup(transactions, call_index=len(transactions) - 1, box_mbr_estimate=mbr)
        logger.debug(
            "group_builder.create_trade_built",
            trade_id=trade_id,
            size=len(group),
            group_id=group.group_id_b64,
            box_mbr_estimate=mbr,
        )
        return group

    # =========================================================================
    # Fund Escrow
    # =========================================================================

    def build_fund_escrow(
        self,
        trade: Trade,
        funder: str,
        escrow_required: int,
        sp: transaction.SuggestedParams,
        settlement_currency: int = 0,
    ) -> TransactionGroup:
        """Build the two-transaction escrow group.

        The buyer funds through the buyer method; anyone else funds as a
        financier. A non-zero settlement currency switches both the transfer
        and the method to the asset variant.
        """
        funder = validate_address(funder)
        base = _flat_fee(sp, self.fees.base_fee)

        if settlement_currency:
            transfer = transaction.AssetTransferTxn(
                funder, base, self.app_address, escrow_required, settlement_currency
            )
            method = (
                ESCROW_TRADE_WITH_ASSET if funder == trade.buyer
                else ESCROW_TRADE_AS_FINANCIER_WITH_ASSET
            )
        else:
            transfer = transaction.PaymentTxn(funder, base, self.app_address, escrow_required)
            method = ESCROW_TRADE if funder == trade.buyer else ESCROW_TRADE_AS_FINANCIER

        call = self._call(
            funder, sp, self.fees.base_fee, method,
            [encode_uint64(trade.trade_id)],
            [trade_box_name(trade.trade_id)],
            foreign_assets=[settlement_currency] if settlement_currency else None,
        )
        transactions = transaction.assign_group_id([transfer, call])
        return TransactionGroup(transactions, call_index=1)

    # =========================================================================
    # Execute Trade
    # =========================================================================

    def build_execute_trade(
        self,
        trade: Trade,
        request: ExecuteTradeRequest,
        regulator_tax: int,
        sp: transaction.SuggestedParams,
        settlement_currency: int = 0,
        platform_treasury: Optional[str] = None,
        encoded_args: Optional[List[bytes]] = None,
    ) -> TransactionGroup:
        """Build the three-transaction execute group.

        Order is fixed: instrument transfer to the funding party, regulator
        tax payment, then the executeTrade call.

        Args:
            trade: Freshly read trade in ESCROWED state
            request: Execution inputs; the seller signs every transaction
            regulator_tax: Tax owed to the regulator on the principal
            sp: Suggested params
            settlement_currency: 0 for native payments, else the asset id
            platform_treasury: Treasury receiving the marketplace fee
            encoded_args: Result of validate_execute_request, if already run
        """
        args = encoded_args if encoded_args is not None else validate_execute_request(request)
        seller = validate_address(request.seller)
        regulator = validate_address(request.regulator)
        base = _flat_fee(sp, self.fees.base_fee)

        instrument = transaction.AssetTransferTxn(
            seller, base, trade.instrument_recipient, 1, request.instrument_asset_id
        )
        if settlement_currency:
            tax = transaction.AssetTransferTxn(
                seller, base, regulator, regulator_tax, settlement_currency
            )
            method = EXECUTE_TRADE_WITH_ASSET
        else:
            tax = transaction.PaymentTxn(seller, base, regulator, regulator_tax)
            method = EXECUTE_TRADE

        foreign_assets = [request.instrument_asset_id]
        if settlement_currency:
            foreign_assets.append(settlement_currency)

        call = self._call(
            seller, sp, self.fees.execute_trade_fee, method, args,
            boxes=[
                trade_box_name(request.trade_id),
                metadata_box_name(request.trade_id),
                execution_documents_box_name(request.trade_id),
            ],
            accounts=_unique([trade.buyer, trade.escrow_provider, platform_treasury]),
            foreign_assets=foreign_assets,
        )
        transactions = transaction.assign_group_id([instrument, tax, call])
        group = TransactionGroup(transactions, call_index=2)
        logger.debug(
            "group_builder.execute_trade_built",
            trade_id=request.trade_id,
            recipient=trade.instrument_recipient,
            regulator_tax=regulator_tax,
            group_id=group.group_id_b64,
        )
        return group

    # =========================================================================
    # Cancel Trade
    # =========================================================================

    def build_cancel_trade(
        self,
        trade: Trade,
        sender: str,
        sp: transaction.SuggestedParams,
        settlement_currency: int = 0,
    ) -> TransactionGroup:
        """Build a single-call expireTrade group.

        An escrowed trade is refunded to its escrow provider by an inner
        payment, so the provider is passed as a foreign account.
        """
        sender = validate_address(sender)
        refund_to = [trade.escrow_provider] if trade.state == TradeState.ESCROWED else None
        call = self._call(
            sender, sp, self.fees.cancel_trade_fee, EXPIRE_TRADE,
            [encode_uint64(trade.trade_id)],
            [trade_box_name(trade.trade_id)],
            accounts=refund_to,
            foreign_assets=[settlement_currency] if settlement_currency else None,
        )
        transactions = transaction.assign_group_id([call])
        return TransactionGroup(transactions, call_index=0)
