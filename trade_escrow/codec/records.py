"""Byte layouts of the records the escrow contract keeps in boxes.

Trade record (fixed width, big-endian):

    offset  size  field
         0     8  trade id
         8    32  buyer
        40    32  seller
        72    32  escrow provider
       104     8  amount
       112     8  state
    --- extended record only ---
       120     8  created at
       128     8  instrument asset id
       136     8  instrument type
       144     8  instrument value
       152    32  regulator wallet
       184     8  regulator tax paid
       192     8  regulator refund due
       200     8  marketplace fee

Metadata and the two document sets are tuples of strings with a static tail
(see codec.binary.encode_tuple).
"""
from typing import Optional

from trade_escrow.codec.binary import (
    ADDRESS, STRING, UINT64, ZERO_ADDRESS, decode_address, decode_tuple,
    decode_uint64, decode_uint64_array, encode_address, encode_tuple,
    encode_uint64
)
from trade_escrow.core.errors import CodecError, CorruptRecord
from trade_escrow.core.models import (
    ComplianceDocumentSet, ExecutionDocumentSet, InstrumentType, Trade,
    TradeMetadata, TradeState
)

TRADE_CORE_SIZE = 120
TRADE_EXTENDED_SIZE = 208

# Contract state codes 3 and 5 are post-execution acknowledgement phases
_STATE_CODES = {
    0: TradeState.CREATED,
    1: TradeState.ESCROWED,
    2: TradeState.COMPLETED,
    3: TradeState.COMPLETED,
    4: TradeState.CANCELLED,
    5: TradeState.COMPLETED,
}

METADATA_FIELDS = (STRING,) * 6
CREATION_DOCUMENT_FIELDS = (STRING,) * 6 + (UINT64, ADDRESS)
EXECUTION_DOCUMENT_FIELDS = (STRING,) * 8 + (UINT64, ADDRESS)


def _optional_address(address: Optional[str]) -> str:
    return address if address else ZERO_ADDRESS


def _address_or_none(address: str) -> Optional[str]:
    return None if address == ZERO_ADDRESS else address


# =============================================================================
# Trade
# =============================================================================

def encode_trade(trade: Trade, extended: bool = True) -> bytes:
    """Encode a trade into the core (120-byte) or extended (208-byte) layout."""
    core = b"".join((
        encode_uint64(trade.trade_id),
        encode_address(trade.buyer),
        encode_address(trade.seller),
        encode_address(trade.escrow_provider),
        encode_uint64(trade.amount),
        encode_uint64(int(trade.state)),
    ))
    if not extended:
        return core
    return core + b"".join((
        encode_uint64(trade.created_at),
        encode_uint64(trade.instrument_asset_id),
        encode_uint64(int(trade.instrument_type)),
        encode_uint64(trade.instrument_value),
        encode_address(_optional_address(trade.regulator_wallet)),
        encode_uint64(trade.regulator_tax_paid),
        encode_uint64(trade.regulator_refund_due),
        encode_uint64(trade.marketplace_fee),
    ))


def decode_trade(data: bytes, box_name: Optional[bytes] = None) -> Trade:
    """Decode a trade record.

    Raises:
        CorruptRecord: If the length is neither layout or a field is invalid
    """
    if len(data) not in (TRADE_CORE_SIZE, TRADE_EXTENDED_SIZE):
        raise CorruptRecord(
            f"trade record is {len(data)} bytes, expected "
            f"{TRADE_CORE_SIZE} or {TRADE_EXTENDED_SIZE}",
            box_name,
        )

    state_code = decode_uint64(data, 112)
    if state_code not in _STATE_CODES:
        raise CorruptRecord(f"unknown trade state code {state_code}", box_name)
    state = _STATE_CODES[state_code]

    buyer = decode_address(data, 8)
    escrow_provider = decode_address(data, 72)
    # The contract leaves the provider zeroed until someone funds the escrow,
    # including for trades expired straight from CREATED
    if escrow_provider == ZERO_ADDRESS:
        escrow_provider = buyer

    fields = dict(
        trade_id=decode_uint64(data, 0),
        buyer=buyer,
        seller=decode_address(data, 40),
        escrow_provider=escrow_provider,
        amount=decode_uint64(data, 104),
        state=state,
    )

    if len(data) == TRADE_EXTENDED_SIZE:
        instrument_code = decode_uint64(data, 136)
        try:
            instrument_type = InstrumentType(instrument_code)
        except ValueError:
            raise CorruptRecord(f"unknown instrument type {instrument_code}", box_name)
        fields.update(
            created_at=decode_uint64(data, 120),
            instrument_asset_id=decode_uint64(data, 128),
            instrument_type=instrument_type,
            instrument_value=decode_uint64(data, 144),
            regulator_wallet=_address_or_none(decode_address(data, 152)),
            regulator_tax_paid=decode_uint64(data, 184),
            regulator_refund_due=decode_uint64(data, 192),
            marketplace_fee=decode_uint64(data, 200),
        )

    return Trade(**fields)


# =============================================================================
# Metadata
# =============================================================================

def encode_metadata(metadata: TradeMetadata) -> bytes:
    return encode_tuple(METADATA_FIELDS, [
        metadata.product_type,
        metadata.description,
        metadata.ipfs_hash,
        metadata.lei_id,
        metadata.lei_name,
        metadata.instrument_number,
    ])


def decode_metadata(data: bytes, box_name: Optional[bytes] = None) -> TradeMetadata:
    try:
        values = decode_tuple(data, METADATA_FIELDS)
    except CodecError as e:
        raise CorruptRecord(f"metadata: {e}", box_name)
    product_type, description, ipfs_hash, lei_id, lei_name, instrument_number = values
    return TradeMetadata(
        product_type=product_type,
        description=description,
        ipfs_hash=ipfs_hash,
        lei_id=lei_id,
        lei_name=lei_name,
        instrument_number=instrument_number,
    )


# =============================================================================
# Compliance Documents
# =============================================================================

def encode_creation_documents(documents: ComplianceDocumentSet) -> bytes:
    return encode_tuple(CREATION_DOCUMENT_FIELDS, [
        documents.buyer_lei,
        documents.buyer_lei_ipfs,
        documents.seller_lei,
        documents.seller_lei_ipfs,
        documents.purchase_order_vlei,
        documents.purchase_order_vlei_ipfs,
        documents.created_at,
        _optional_address(documents.created_by),
    ])


def decode_creation_documents(
    data: bytes, box_name: Optional[bytes] = None
) -> ComplianceDocumentSet:
    try:
        values = decode_tuple(data, CREATION_DOCUMENT_FIELDS)
    except CodecError as e:
        raise CorruptRecord(f"creation documents: {e}", box_name)
    return ComplianceDocumentSet(
        buyer_lei=values[0],
        buyer_lei_ipfs=values[1],
        seller_lei=values[2],
        seller_lei_ipfs=values[3],
        purchase_order_vlei=values[4],
        purchase_order_vlei_ipfs=values[5],
        created_at=values[6],
        created_by=_address_or_none(values[7]),
    )


def encode_execution_documents(documents: ExecutionDocumentSet) -> bytes:
    return encode_tuple(EXECUTION_DOCUMENT_FIELDS, [
        documents.shipping_instruction_vlei,
        documents.shipping_instruction_vlei_ipfs,
        documents.commercial_invoice_vlei,
        documents.commercial_invoice_vlei_ipfs,
        documents.instrument_lei,
        documents.instrument_lei_ipfs,
        documents.shipping_instruction_id,
        documents.commercial_invoice_id,
        documents.executed_at,
        _optional_address(documents.executed_by),
    ])


def decode_execution_documents(
    data: bytes, box_name: Optional[bytes] = None
) -> ExecutionDocumentSet:
    try:
        values = decode_tuple(data, EXECUTION_DOCUMENT_FIELDS)
    except CodecError as e:
        raise CorruptRecord(f"execution documents: {e}", box_name)
    return ExecutionDocumentSet(
        shipping_instruction_vlei=values[0],
        shipping_instruction_vlei_ipfs=values[1],
        commercial_invoice_vlei=values[2],
        commercial_invoice_vlei_ipfs=values[3],
        instrument_lei=values[4],
        instrument_lei_ipfs=values[5],
        shipping_instruction_id=values[6],
        commercial_invoice_id=values[7],
        executed_at=values[8],
        executed_by=_address_or_none(values[9]),
    )


# =============================================================================
# Account Indexes
# =============================================================================

def decode_trade_index(data: bytes, box_name: Optional[bytes] = None) -> list:
    """Decode a buyer/seller index box into its list of trade ids."""
    try:
        ids = decode_uint64_array(data)
    except CodecError as e:
        raise CorruptRecord(f"trade index: {e}", box_name)
    if 2 + 8 * len(ids) != len(data):
        raise CorruptRecord("trailing bytes after trade index", box_name)
    return ids
