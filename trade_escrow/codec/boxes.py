"""Deterministic box names for the escrow contract's storage records.

A box name is the UTF-8 prefix followed by the encoded key: an 8-byte
big-endian trade id for per-trade records, or a 32-byte public key for the
per-account trade indexes.
"""
from enum import Enum
from typing import Tuple, Union

from trade_escrow.codec.binary import (
    ADDRESS_SIZE, UINT64_SIZE, decode_address, decode_uint64, encode_address,
    encode_uint64
)
from trade_escrow.core.errors import CodecError


class BoxPrefix(str, Enum):
    """Key prefixes of the contract's box maps."""
    TRADES = "trades"
    METADATA = "metadata"
    CREATION_DOCUMENTS = "vlei_c"
    EXECUTION_DOCUMENTS = "vlei_e"
    BUYER_INDEX = "buyer"
    SELLER_INDEX = "seller"

    @property
    def key_size(self) -> int:
        """Byte length of the key that follows this prefix."""
        if self in (BoxPrefix.BUYER_INDEX, BoxPrefix.SELLER_INDEX):
            return ADDRESS_SIZE
        return UINT64_SIZE

    @property
    def encoded(self) -> bytes:
        return self.value.encode("utf-8")


BoxKey = Union[int, str]


def box_name(prefix: BoxPrefix, key: bytes) -> bytes:
    """Concatenate a prefix with an already-encoded key."""
    prefix = BoxPrefix(prefix)
    if len(key) != prefix.key_size:
        raise CodecError(
            f"Box prefix '{prefix.value}' takes a {prefix.key_size}-byte key, "
            f"got {len(key)} bytes"
        )
    return prefix.encoded + bytes(key)


def box_name_for(prefix: BoxPrefix, key: BoxKey) -> bytes:
    """Build a box name from a trade id or an address."""
    prefix = BoxPrefix(prefix)
    if prefix.key_size == ADDRESS_SIZE:
        return box_name(prefix, encode_address(key))
    return box_name(prefix, encode_uint64(key))


def trade_box_name(trade_id: int) -> bytes:
    return box_name_for(BoxPrefix.TRADES, trade_id)


def metadata_box_name(trade_id: int) -> bytes:
    return box_name_for(BoxPrefix.METADATA, trade_id)


def creation_documents_box_name(trade_id: int) -> bytes:
    return box_name_for(BoxPrefix.CREATION_DOCUMENTS, trade_id)


def execution_documents_box_name(trade_id: int) -> bytes:
    return box_name_for(BoxPrefix.EXECUTION_DOCUMENTS, trade_id)


def buyer_index_box_name(address: str) -> bytes:
    return box_name_for(BoxPrefix.BUYER_INDEX, address)


def seller_index_box_name(address: str) -> bytes:
    return box_name_for(BoxPrefix.SELLER_INDEX, address)


def parse_box_name(name: bytes) -> Tuple[BoxPrefix, BoxKey]:
    """Split a box name back into its prefix and decoded key.

    Raises:
        CodecError: If no known prefix/key-length pair matches the name
    """
    for prefix in BoxPrefix:
        encoded = prefix.encoded
        if name.startswith(encoded) and len(name) == len(encoded) + prefix.key_size:
            key = name[len(encoded):]
            if prefix.key_size == ADDRESS_SIZE:
                return prefix, decode_address(key)
            return prefix, decode_uint64(key)
    raise CodecError(f"Unrecognised box name: {name!r}")
