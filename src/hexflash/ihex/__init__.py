"""
Intel-HEX Record Layer
======================

This package converts binary images into Intel-HEX records:

- **checksum**: record checksum calculation and verification
- **records**: RecordType and the immutable HexRecord
- **encoder**: RecordEncoder, CommandSequence and the file chunk source

Quick Start
-----------
    from hexflash.ihex import encode_file

    sequence = encode_file("firmware.bin", base_address=0x0800_0000)
    print(sequence.to_text())
"""

from hexflash.ihex.checksum import (
    MAX_RECORD_LENGTH,
    checksum,
    verify_checksum,
)
from hexflash.ihex.records import (
    BANK_SIZE,
    START_CODE,
    HexRecord,
    RecordType,
)
from hexflash.ihex.encoder import (
    ADDRESS_SPACE_END,
    DEFAULT_CHUNK_SIZE,
    CommandSequence,
    EncodeProgressCallback,
    RecordEncoder,
    encode_bytes,
    encode_chunks,
    encode_file,
    read_chunks,
)

__all__ = [
    # Checksum
    "MAX_RECORD_LENGTH",
    "checksum",
    "verify_checksum",
    # Records
    "BANK_SIZE",
    "START_CODE",
    "HexRecord",
    "RecordType",
    # Encoder
    "ADDRESS_SPACE_END",
    "DEFAULT_CHUNK_SIZE",
    "CommandSequence",
    "EncodeProgressCallback",
    "RecordEncoder",
    "encode_bytes",
    "encode_chunks",
    "encode_file",
    "read_chunks",
]
