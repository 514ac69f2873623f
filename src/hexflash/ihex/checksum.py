"""
Intel-HEX Record Checksum
=========================

Every Intel-HEX record ends with a one-byte checksum: the two's-complement
negation of the 8-bit sum of all other record bytes (length, address high
byte, address low byte, record type and every payload byte).

A record is therefore valid when all of its bytes, checksum included, add
up to zero modulo 256.

Usage
-----
    from hexflash.ihex.checksum import checksum, verify_checksum

    cc = checksum(3, 0x0000, 0x00, bytes([0x01, 0x02, 0x03]))  # 0xF7
    assert verify_checksum(3, 0x0000, 0x00, bytes([1, 2, 3]), cc)
"""

from typing import Final

from hexflash.errors import RecordError

# Largest payload one record can describe (LL is a single byte)
MAX_RECORD_LENGTH: Final[int] = 0xFF

BYTE_MASK: Final[int] = 0xFF


def _byte_sum(length: int, address: int, record_type: int, payload: bytes) -> int:
    """Sum every record byte except the checksum, modulo 256."""
    total = length
    total = (total + (address >> 8)) & BYTE_MASK
    total = (total + (address & BYTE_MASK)) & BYTE_MASK
    total = (total + record_type) & BYTE_MASK
    for byte in payload:
        total = (total + byte) & BYTE_MASK
    return total


def checksum(length: int, address: int, record_type: int, payload: bytes) -> int:
    """
    Calculate the checksum byte for a record.

    Args:
        length: Payload length as written in the LL field.
        address: 16-bit record address.
        record_type: Record type byte.
        payload: Payload bytes; must hold exactly `length` bytes.

    Returns:
        Checksum byte (0-255).

    Raises:
        RecordError: If the payload does not match `length` or is longer
                     than 255 bytes.
    """
    if length > MAX_RECORD_LENGTH:
        raise RecordError(
            f"Record too long: {length} bytes, max {MAX_RECORD_LENGTH}"
        )
    if len(payload) != length:
        raise RecordError(
            f"Payload length mismatch: LL={length}, payload has {len(payload)} bytes"
        )

    return (~_byte_sum(length, address, record_type, payload) + 1) & BYTE_MASK


def verify_checksum(
    length: int,
    address: int,
    record_type: int,
    payload: bytes,
    expected: int,
) -> bool:
    """Return True if `expected` is the correct checksum for the record."""
    return (_byte_sum(length, address, record_type, payload) + expected) & BYTE_MASK == 0
