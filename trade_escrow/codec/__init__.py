"""Binary codec, box naming and record layouts for the escrow contract."""

from trade_escrow.codec.binary import (
    decode_address,
    decode_string,
    decode_uint64,
    encode_address,
    encode_string,
    encode_uint64,
    method_selector,
)
from trade_escrow.codec.boxes import BoxPrefix, box_name, box_name_for, parse_box_name
from trade_escrow.codec.records import (
    decode_creation_documents,
    decode_execution_documents,
    decode_metadata,
    decode_trade,
    encode_trade,
)

__all__ = [
    "encode_uint64",
    "decode_uint64",
    "encode_address",
    "decode_address",
    "encode_string",
    "decode_string",
    "method_selector",
    "BoxPrefix",
    "box_name",
    "box_name_for",
    "parse_box_name",
    "encode_trade",
    "decode_trade",
    "decode_metadata",
    "decode_creation_documents",
    "decode_execution_documents",
]
