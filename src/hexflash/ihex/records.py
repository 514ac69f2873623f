"""
Intel-HEX Record Types
======================

This module defines the hex records produced by the encoder and their
canonical ASCII form.

Record Format
-------------
Each record is one line of upper-case hexadecimal:

    ┌───┬────────┬─────────┬──────┬──────────────┬──────────┐
    │ : │ Length │ Address │ Type │   Payload    │ Checksum │
    │   │   LL   │  AAAA   │  TT  │ DD DD ... DD │    CC    │
    └───┴────────┴─────────┴──────┴──────────────┴──────────┘

Only three record types are supported:

- 00 Data: payload bytes stored at the 16-bit address within the
  current bank
- 01 End Of File: empty record closing the image
- 04 Extended Linear Address: two payload bytes holding the upper 16 bits
  (the "bank") of every following data address

Examples:
    :03000000010203F7   three data bytes at 0x0000
    :020000041234B4     bank 0x1234
    :00000001FF         end of file
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from hexflash.errors import RecordError
from hexflash.ihex.checksum import MAX_RECORD_LENGTH, verify_checksum
from hexflash.ihex.checksum import checksum as compute_checksum

# Configure module logger
logger = logging.getLogger(__name__)

# Start code of every record line
START_CODE: Final[str] = ":"

# Size of one address bank (the span of a 16-bit record address)
BANK_SIZE: Final[int] = 0x10000

# Characters in a record line besides the payload: ":" LL AAAA TT CC
_FIXED_LINE_CHARS: Final[int] = 11


class RecordType(IntEnum):
    """Intel-HEX record types emitted by hexflash."""

    DATA = 0x00
    END_OF_FILE = 0x01
    EXTENDED_ADDRESS = 0x04


@dataclass(frozen=True)
class HexRecord:
    """
    A single immutable Intel-HEX record.

    The checksum is derived from the other fields and cannot be set.

    Attributes:
        record_type: Data, End Of File, or Extended Linear Address
        address: 16-bit address field (0 for non-data records)
        payload: Record payload (at most 255 bytes)

    Example:
        record = HexRecord.data(0x0000, bytes([0x01, 0x02, 0x03]))
        record.to_line()   # ':03000000010203F7'
    """

    record_type: RecordType
    address: int
    payload: bytes = b""

    def __post_init__(self) -> None:
        """Validate record fields after initialization."""
        if not isinstance(self.payload, bytes):
            # Frozen dataclass: bypass __setattr__ to normalise bytearray/list input
            object.__setattr__(self, "payload", bytes(self.payload))

        if not isinstance(self.record_type, RecordType):
            try:
                object.__setattr__(self, "record_type", RecordType(self.record_type))
            except ValueError:
                raise RecordError(f"Unsupported record type: {self.record_type!r}")

        if len(self.payload) > MAX_RECORD_LENGTH:
            raise RecordError(
                f"Payload too large: {len(self.payload)} bytes, max {MAX_RECORD_LENGTH}"
            )

        if not 0 <= self.address <= 0xFFFF:
            raise RecordError(f"Address must be 0-0xFFFF, got {self.address:#x}")

        if self.record_type == RecordType.DATA:
            if self.address + len(self.payload) > BANK_SIZE:
                raise RecordError(
                    f"Data record at {self.address:#06x} with {len(self.payload)} "
                    "bytes crosses a 64 KiB bank boundary"
                )
        elif self.record_type == RecordType.EXTENDED_ADDRESS:
            if self.address != 0 or len(self.payload) != 2:
                raise RecordError(
                    "Extended address record needs address 0 and a 2-byte payload"
                )
        elif self.address != 0 or self.payload:
            raise RecordError("End of file record must be empty at address 0")

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def data(cls, address: int, payload: bytes) -> "HexRecord":
        """Create a data record for `payload` at 16-bit `address`."""
        return cls(RecordType.DATA, address, bytes(payload))

    @classmethod
    def extended_address(cls, bank: int) -> "HexRecord":
        """Create an extended linear address record for `bank` (upper 16 bits)."""
        if not 0 <= bank <= 0xFFFF:
            raise RecordError(f"Bank must be 0-0xFFFF, got {bank:#x}")
        return cls(RecordType.EXTENDED_ADDRESS, 0, bank.to_bytes(2, "big"))

    @classmethod
    def end_of_file(cls) -> "HexRecord":
        """Create the end of file record."""
        return cls(RecordType.END_OF_FILE, 0, b"")

    # -------------------------------------------------------------------------
    # Derived fields
    # -------------------------------------------------------------------------

    @property
    def length(self) -> int:
        """Payload length (the LL field)."""
        return len(self.payload)

    @property
    def checksum(self) -> int:
        """Two's-complement checksum of the record bytes."""
        return compute_checksum(self.length, self.address, self.record_type, self.payload)

    @property
    def bank(self) -> int:
        """Bank carried by an extended address record."""
        if self.record_type != RecordType.EXTENDED_ADDRESS:
            raise RecordError(f"{self.record_type.name} record carries no bank")
        return int.from_bytes(self.payload, "big")

    # -------------------------------------------------------------------------
    # Wire format
    # -------------------------------------------------------------------------

    def to_line(self) -> str:
        """Format the record as its canonical upper-case ASCII line."""
        return (
            f"{START_CODE}{self.length:02X}{self.address:04X}"
            f"{int(self.record_type):02X}{self.payload.hex().upper()}"
            f"{self.checksum:02X}"
        )

    def to_bytes(self) -> bytes:
        """ASCII bytes of the record line, as written to the serial port."""
        return self.to_line().encode("ascii")

    @classmethod
    def from_line(cls, line: str) -> "HexRecord":
        """
        Read back a record line in hexflash's own format.

        Hex digits are accepted in either case and trailing whitespace is
        ignored. Only the three record types hexflash emits are accepted.

        Args:
            line: One record line, e.g. ':00000001FF'.

        Returns:
            The parsed HexRecord.

        Raises:
            RecordError: If the line is malformed, has a bad checksum, or
                         uses an unsupported record type.
        """
        text = line.strip()
        if not text.startswith(START_CODE):
            raise RecordError(f"Record must start with '{START_CODE}': {line!r}")

        try:
            raw = bytes.fromhex(text[1:])
        except ValueError:
            raise RecordError(f"Invalid hex digits in record: {line!r}")

        if len(raw) < 5:
            raise RecordError(f"Record too short: {line!r}")

        length = raw[0]
        if len(text) != _FIXED_LINE_CHARS + 2 * length:
            raise RecordError(
                f"Record length mismatch: LL={length}, line has {len(text)} chars"
            )

        address = (raw[1] << 8) | raw[2]
        record_type = raw[3]
        payload = raw[4:4 + length]
        expected = raw[4 + length]

        if not verify_checksum(length, address, record_type, payload, expected):
            raise RecordError(f"Checksum mismatch in record: {line!r}")

        record = cls(record_type, address, payload)
        logger.debug("Parsed record: %r", record)
        return record

    def __str__(self) -> str:
        return self.to_line()

    def __repr__(self) -> str:
        """Return detailed string representation for debugging."""
        data_repr = (
            self.payload[:16].hex() + "..."
            if len(self.payload) > 16
            else self.payload.hex()
        )
        return (
            f"HexRecord(type={self.record_type.name}, addr={self.address:04X}, "
            f"data[{self.length}]={data_repr})"
        )
