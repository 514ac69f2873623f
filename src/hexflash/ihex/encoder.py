"""
Binary Image to Hex Record Encoder
==================================

This module turns a binary image into the ordered list of hex records
sent to the device:

    file chunks → RecordEncoder → CommandSequence

Bank Handling
-------------
Data records only carry the low 16 bits of their target address. The upper
16 bits (the bank) are set by an Extended Linear Address record, which the
encoder emits:

1. once at the start, for the bank of the base address
2. before the first data record whose address lies in a new bank

A chunk that straddles a 64 KiB boundary is split into two data records
with the bank record between them. A chunk that ends exactly on the
boundary emits no bank record; the change is deferred to the next chunk.

Usage
-----
    from hexflash.ihex import RecordEncoder

    encoder = RecordEncoder.begin(0x0800_0000)
    for chunk in read_chunks("firmware.bin"):
        encoder.push_chunk(chunk)
    sequence = encoder.finish()

    for line in sequence.lines():
        print(line)
"""

import logging
from pathlib import Path
from typing import Callable, Final, Iterable, Iterator, Optional, Union

from hexflash.errors import EncoderError, RecordError, SourceReadError
from hexflash.ihex.checksum import MAX_RECORD_LENGTH
from hexflash.ihex.records import BANK_SIZE, HexRecord, RecordType

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Default chunk size when reading images (one full record per chunk)
DEFAULT_CHUNK_SIZE: Final[int] = MAX_RECORD_LENGTH

# Highest encodable address plus one
ADDRESS_SPACE_END: Final[int] = 0x1_0000_0000

# Type alias for encoder progress callback: (bytes_encoded) -> None
EncodeProgressCallback = Callable[[int], None]


# =============================================================================
# Command Sequence
# =============================================================================

class CommandSequence:
    """
    Immutable, ordered list of hex records for a whole image.

    Order is transmission order. The constructor checks the shape of the
    sequence: it must open with an extended address record and close with
    the only end of file record.

    Attributes:
        records: Tuple of records in transmission order
    """

    def __init__(self, records: Iterable[HexRecord]):
        self._records: tuple[HexRecord, ...] = tuple(records)
        self._validate()

    def _validate(self) -> None:
        if not self._records:
            raise RecordError("Command sequence is empty")

        if self._records[0].record_type != RecordType.EXTENDED_ADDRESS:
            raise RecordError("Command sequence must start with an extended address record")

        if self._records[-1].record_type != RecordType.END_OF_FILE:
            raise RecordError("Command sequence must end with an end of file record")

        eof_count = sum(
            1 for r in self._records if r.record_type == RecordType.END_OF_FILE
        )
        if eof_count != 1:
            raise RecordError(
                f"Command sequence has {eof_count} end of file records, expected 1"
            )

    @property
    def records(self) -> tuple[HexRecord, ...]:
        return self._records

    @property
    def payload_size(self) -> int:
        """Total number of image bytes carried by data records."""
        return sum(r.length for r in self.data_records())

    def data_records(self) -> list[HexRecord]:
        """Return the data records in order."""
        return [r for r in self._records if r.record_type == RecordType.DATA]

    def segments(self) -> Iterator[tuple[int, bytes]]:
        """
        Yield (absolute_address, payload) for every data record.

        Extended address records are followed so that the addresses are
        full 32-bit values. Joining the payloads of consecutive segments
        rebuilds the encoded image.
        """
        bank = 0
        for record in self._records:
            if record.record_type == RecordType.EXTENDED_ADDRESS:
                bank = record.bank
            elif record.record_type == RecordType.DATA:
                yield (bank << 16) | record.address, record.payload

    def lines(self) -> list[str]:
        """Return every record as its ASCII line."""
        return [r.to_line() for r in self._records]

    def to_text(self) -> str:
        """Format the sequence as hex file text, one record per line."""
        return "\n".join(self.lines()) + "\n"

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[HexRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> HexRecord:
        return self._records[index]

    def __repr__(self) -> str:
        return (
            f"CommandSequence(records={len(self._records)}, "
            f"payload={self.payload_size} bytes)"
        )


# =============================================================================
# Record Encoder
# =============================================================================

class RecordEncoder:
    """
    Incremental encoder from binary chunks to hex records.

    The encoder keeps the current bank and the running 32-bit offset. It is
    created with begin(), fed with push_chunk(), and consumed by finish().

    Example:
        encoder = RecordEncoder.begin(0)
        encoder.push_chunk(bytes([0x01, 0x02, 0x03]))
        sequence = encoder.finish()
        sequence.lines()
        # [':020000040000FA', ':03000000010203F7', ':00000001FF']
    """

    def __init__(
        self,
        base_address: int = 0,
        progress: Optional[EncodeProgressCallback] = None,
    ):
        """
        Initialize the encoder and emit the initial bank record.

        Args:
            base_address: 32-bit address of the first image byte.
            progress: Optional callback called with the number of bytes
                      encoded so far after every chunk.

        Raises:
            RecordError: If base_address is outside 0-0xFFFFFFFF.
        """
        if not 0 <= base_address < ADDRESS_SPACE_END:
            raise RecordError(
                f"Base address must be 0-0xFFFFFFFF, got {base_address:#x}"
            )

        self._base_address = base_address
        self._current_bank = base_address >> 16
        self._current_offset = base_address
        self._progress = progress
        self._records: list[HexRecord] = []
        self._finished = False

        self._emit(HexRecord.extended_address(self._current_bank))
        logger.debug("Encoder started at %08X (bank %04X)", base_address, self._current_bank)

    @classmethod
    def begin(
        cls,
        base_address: int = 0,
        progress: Optional[EncodeProgressCallback] = None,
    ) -> "RecordEncoder":
        """Create an encoder for an image starting at `base_address`."""
        return cls(base_address, progress=progress)

    @property
    def current_offset(self) -> int:
        """Absolute address of the next byte to encode."""
        return self._current_offset

    @property
    def bytes_encoded(self) -> int:
        return self._current_offset - self._base_address

    def _emit(self, record: HexRecord) -> None:
        self._records.append(record)
        logger.debug("Emit %s", record.to_line())

    def _check_open(self) -> None:
        if self._finished:
            raise EncoderError("Encoder already finished")

    def push_chunk(self, chunk: bytes) -> None:
        """
        Encode the next chunk of the image.

        Args:
            chunk: Up to 255 bytes following the previous chunk.

        Raises:
            RecordError: If the chunk is longer than 255 bytes or would run
                         past the end of the 32-bit address space.
            EncoderError: If the encoder has already been finished.
        """
        self._check_open()

        if len(chunk) > MAX_RECORD_LENGTH:
            raise RecordError(
                f"Chunk too large: {len(chunk)} bytes, max {MAX_RECORD_LENGTH}"
            )
        if self._current_offset + len(chunk) > ADDRESS_SPACE_END:
            raise RecordError(
                f"Image runs past 0xFFFFFFFF at offset {self._current_offset:#010x}"
            )

        remaining = bytes(chunk)
        while remaining:
            bank = self._current_offset >> 16
            if bank != self._current_bank:
                self._current_bank = bank
                self._emit(HexRecord.extended_address(bank))

            low = self._current_offset & 0xFFFF
            count = min(len(remaining), BANK_SIZE - low)
            self._emit(HexRecord.data(low, remaining[:count]))
            self._current_offset += count
            remaining = remaining[count:]

        if self._progress:
            self._progress(self.bytes_encoded)

    def finish(self) -> CommandSequence:
        """
        Close the image with an end of file record.

        Returns:
            The finished CommandSequence.

        Raises:
            EncoderError: If the encoder has already been finished.
        """
        self._check_open()
        self._emit(HexRecord.end_of_file())
        self._finished = True

        sequence = CommandSequence(self._records)
        self._records = []
        logger.debug(
            "Encoded %d bytes into %d records", self.bytes_encoded, len(sequence)
        )
        return sequence


# =============================================================================
# Chunk Source
# =============================================================================

def read_chunks(
    path: Union[str, Path],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[bytes]:
    """
    Read a binary file as successive chunks.

    Args:
        path: File to read.
        chunk_size: Maximum bytes per chunk (1-255).

    Yields:
        Non-empty chunks of at most chunk_size bytes.

    Raises:
        ValueError: If chunk_size is outside 1-255.
        SourceReadError: If the file cannot be opened or read.
    """
    if not 1 <= chunk_size <= MAX_RECORD_LENGTH:
        raise ValueError(
            f"Chunk size must be 1-{MAX_RECORD_LENGTH}, got {chunk_size}"
        )

    try:
        with open(path, "rb") as f:
            logger.debug("Reading %s in %d-byte chunks", path, chunk_size)
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk
    except OSError as e:
        raise SourceReadError(str(path), f"Cannot read {path}: {e}") from e


def encode_chunks(
    chunks: Iterable[bytes],
    base_address: int = 0,
    progress: Optional[EncodeProgressCallback] = None,
) -> CommandSequence:
    """
    Encode an iterable of chunks into a CommandSequence.

    Args:
        chunks: Successive image chunks (each at most 255 bytes).
        base_address: 32-bit address of the first byte.
        progress: Optional callback, see RecordEncoder.

    Returns:
        The finished CommandSequence.
    """
    encoder = RecordEncoder.begin(base_address, progress=progress)
    for chunk in chunks:
        encoder.push_chunk(chunk)
    return encoder.finish()


def encode_bytes(data: bytes, base_address: int = 0) -> CommandSequence:
    """Encode an in-memory image, split into full-size records."""
    chunks = (
        data[i:i + DEFAULT_CHUNK_SIZE]
        for i in range(0, len(data), DEFAULT_CHUNK_SIZE)
    )
    return encode_chunks(chunks, base_address)


def encode_file(
    path: Union[str, Path],
    base_address: int = 0,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    progress: Optional[EncodeProgressCallback] = None,
) -> CommandSequence:
    """
    Read and encode a binary image file.

    Raises:
        SourceReadError: If the file cannot be read.
        RecordError: If the image does not fit the address space.
    """
    logger.debug("Encoding %s at base %08X", path, base_address)
    return encode_chunks(read_chunks(path, chunk_size), base_address, progress)
