"""Fixed-width binary codec for contract arguments and box contents.

Layouts follow the contract's ABI conventions:
- uint64: 8 bytes, big-endian
- address: 32-byte public key (base32 address without checksum)
- string: 2-byte big-endian length prefix + UTF-8 bytes
- tuple: static fields inline, each string replaced by a 2-byte offset into
  the tail section, tails concatenated in field order

Decoders never zero-fill: a buffer that ends early raises ShortBuffer.
"""
from functools import lru_cache
from typing import List, Sequence, Tuple, Union

from algosdk import encoding

from trade_escrow.core.errors import (
    CodecError, InvalidAddress, ShortBuffer, StringTooLong, ValueOutOfRange
)
from trade_escrow.core.models import UINT64_MAX

UINT64_SIZE = 8
ADDRESS_SIZE = 32
LENGTH_PREFIX_SIZE = 2
SELECTOR_SIZE = 4
MAX_STRING_BYTES = 0xFFFF

# Method return values are logged as this prefix followed by the encoded value
ABI_RETURN_PREFIX = bytes.fromhex("151f7c75")

ZERO_ADDRESS = encoding.encode_address(bytes(ADDRESS_SIZE))

UINT64 = "uint64"
ADDRESS = "address"
STRING = "string"

_STATIC_SIZES = {UINT64: UINT64_SIZE, ADDRESS: ADDRESS_SIZE}

FieldValue = Union[int, str]


def _require(data: bytes, offset: int, size: int, what: str) -> None:
    if offset < 0 or offset + size > len(data):
        raise ShortBuffer(
            f"{what} needs {size} bytes at offset {offset}, buffer has {len(data)}"
        )


# =============================================================================
# Primitives
# =============================================================================

def encode_uint64(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as 8 big-endian bytes."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueOutOfRange(f"uint64 expects an int, got {type(value).__name__}")
    if value < 0 or value > UINT64_MAX:
        raise ValueOutOfRange(f"{value} does not fit in uint64")
    return value.to_bytes(UINT64_SIZE, "big")


def decode_uint64(data: bytes, offset: int = 0) -> int:
    _require(data, offset, UINT64_SIZE, "uint64")
    return int.from_bytes(data[offset:offset + UINT64_SIZE], "big")


def validate_address(address: str) -> str:
    """Return the address unchanged or raise InvalidAddress."""
    encode_address(address)
    return address


def encode_address(address: str) -> bytes:
    """Decode a base32 address into its 32-byte public key."""
    if not isinstance(address, str) or not encoding.is_valid_address(address):
        raise InvalidAddress(f"Not a valid address: {address!r}")
    public_key = encoding.decode_address(address)
    if len(public_key) != ADDRESS_SIZE:
        raise InvalidAddress(
            f"Address decodes to {len(public_key)} bytes, expected {ADDRESS_SIZE}"
        )
    return public_key


def decode_address(data: bytes, offset: int = 0) -> str:
    _require(data, offset, ADDRESS_SIZE, "address")
    return encoding.encode_address(bytes(data[offset:offset + ADDRESS_SIZE]))


def encode_string(value: str) -> bytes:
    """Encode a string as a 2-byte length prefix followed by UTF-8 bytes."""
    raw = value.encode("utf-8")
    if len(raw) > MAX_STRING_BYTES:
        raise StringTooLong(
            f"String is {len(raw)} bytes, limit is {MAX_STRING_BYTES}"
        )
    return len(raw).to_bytes(LENGTH_PREFIX_SIZE, "big") + raw


def decode_string(data: bytes, offset: int = 0) -> Tuple[str, int]:
    """Decode a length-prefixed string.

    Returns:
        The string and the offset just past its last byte
    """
    _require(data, offset, LENGTH_PREFIX_SIZE, "string length")
    length = int.from_bytes(data[offset:offset + LENGTH_PREFIX_SIZE], "big")
    start = offset + LENGTH_PREFIX_SIZE
    _require(data, start, length, "string body")
    try:
        value = bytes(data[start:start + length]).decode("utf-8")
    except UnicodeDecodeError as e:
        raise CodecError(f"String at offset {offset} is not valid UTF-8: {e}")
    return value, start + length


def encode_uint64_array(values: Sequence[int]) -> bytes:
    """Encode a dynamic uint64 array: 2-byte count + 8 bytes per element."""
    if len(values) > MAX_STRING_BYTES:
        raise ValueOutOfRange(f"Array of {len(values)} elements is too long")
    return len(values).to_bytes(LENGTH_PREFIX_SIZE, "big") + b"".join(
        encode_uint64(v) for v in values
    )


def decode_uint64_array(data: bytes, offset: int = 0) -> List[int]:
    _require(data, offset, LENGTH_PREFIX_SIZE, "array length")
    count = int.from_bytes(data[offset:offset + LENGTH_PREFIX_SIZE], "big")
    start = offset + LENGTH_PREFIX_SIZE
    _require(data, start, count * UINT64_SIZE, "array body")
    return [decode_uint64(data, start + i * UINT64_SIZE) for i in range(count)]


# =============================================================================
# Method Selectors / Return Values
# =============================================================================

@lru_cache(maxsize=None)
def method_selector(signature: str) -> bytes:
    """First 4 bytes of the SHA-512/256 digest of a method signature.

    Example: ``method_selector("expireTrade(uint64)bool")``
    """
    name, paren, rest = signature.partition("(")
    if not name or not paren or ")" not in rest:
        raise CodecError(f"Malformed method signature: {signature!r}")
    return encoding.checksum(signature.encode("utf-8"))[:SELECTOR_SIZE]


def decode_abi_return_uint64(log: bytes) -> int:
    """Decode a uint64 method return value from its log entry."""
    if not log.startswith(ABI_RETURN_PREFIX):
        raise CodecError(f"Log entry is not a method return value: {log.hex()}")
    value = log[len(ABI_RETURN_PREFIX):]
    if len(value) != UINT64_SIZE:
        raise ShortBuffer(f"Return value is {len(value)} bytes, expected {UINT64_SIZE}")
    return decode_uint64(value)


# =============================================================================
# Tuples
# =============================================================================

def _head_size(kinds: Sequence[str]) -> int:
    size = 0
    for kind in kinds:
        if kind == STRING:
            size += LENGTH_PREFIX_SIZE
        elif kind in _STATIC_SIZES:
            size += _STATIC_SIZES[kind]
        else:
            raise CodecError(f"Unsupported field kind: {kind}")
    return size


def encode_tuple(kinds: Sequence[str], values: Sequence[FieldValue]) -> bytes:
    """Encode a heterogeneous tuple of uint64, address and string fields."""
    if len(kinds) != len(values):
        raise CodecError(f"{len(kinds)} field kinds but {len(values)} values")

    heads: List[bytes] = []
    tails: List[bytes] = []
    tail_offset = _head_size(kinds)

    for kind, value in zip(kinds, values):
        if kind == UINT64:
            heads.append(encode_uint64(value))
        elif kind == ADDRESS:
            heads.append(encode_address(value))
        else:
            if tail_offset > MAX_STRING_BYTES:
                raise StringTooLong("Tuple exceeds 16-bit offset range")
            tail = encode_string(value)
            heads.append(tail_offset.to_bytes(LENGTH_PREFIX_SIZE, "big"))
            tails.append(tail)
            tail_offset += len(tail)

    return b"".join(heads) + b"".join(tails)


def decode_tuple(data: bytes, kinds: Sequence[str]) -> List[FieldValue]:
    """Decode a tuple encoded by encode_tuple.

    String tails must be contiguous, in field order, and end exactly at the
    end of the buffer.
    """
    head_size = _head_size(kinds)
    _require(data, 0, head_size, "tuple head")

    values: List[FieldValue] = []
    string_slots: List[Tuple[int, int]] = []
    offset = 0
    for kind in kinds:
        if kind == UINT64:
            values.append(decode_uint64(data, offset))
            offset += UINT64_SIZE
        elif kind == ADDRESS:
            values.append(decode_address(data, offset))
            offset += ADDRESS_SIZE
        else:
            tail_at = int.from_bytes(data[offset:offset + LENGTH_PREFIX_SIZE], "big")
            string_slots.append((len(values), tail_at))
            values.append("")
            offset += LENGTH_PREFIX_SIZE

    expected = head_size
    for index, tail_at in string_slots:
        if tail_at != expected:
            raise CodecError(
                f"String field {index} starts at {tail_at}, expected {expected}"
            )
        values[index], expected = decode_string(data, tail_at)

    if expected != len(data):
        raise CodecError(f"{len(data) - expected} trailing bytes after tuple")
    return values
