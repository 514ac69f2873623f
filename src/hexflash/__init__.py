"""
hexflash - Intel-HEX Serial Flasher
===================================

This package programs embedded devices whose bootloader accepts firmware
as ASCII Intel-HEX records over a serial link.

    binary image → RecordEncoder → CommandSequence → TransmissionSession → device

Main Components
---------------
- **ihex**: record checksum, HexRecord, RecordEncoder, CommandSequence
- **comms**: serial port utilities and the per-record acknowledge/retry
  TransmissionSession
- **config**: FlashConfig defaults and environment overrides
- **cli**: the `hexflash` command

Quick Start
-----------
Encode an image:
    >>> from hexflash import encode_file
    >>> sequence = encode_file("firmware.bin", base_address=0x08000000)
    >>> print(sequence.to_text())

Flash it:
    >>> from hexflash import AckTable, TransmissionSession, open_serial_port
    >>> port = open_serial_port("/dev/ttyUSB0")
    >>> TransmissionSession(port, sequence, AckTable.uniform(".")).run()

Or use the command-line tool:
    $ hexflash flash firmware.bin --base 0x08000000
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from hexflash.errors import (
    HexFlashError,
    RecordError,
    EncoderError,
    SourceReadError,
    CommsError,
    ConnectionError,
    NoTransportAvailable,
    TransferError,
    TransportError,
    RetryExhaustedError,
    TransferCancelled,
)
from hexflash.ihex import (
    CommandSequence,
    HexRecord,
    RecordEncoder,
    RecordType,
    checksum,
    encode_bytes,
    encode_file,
    read_chunks,
)
from hexflash.comms import (
    AckTable,
    RetryPolicy,
    TransferObserver,
    TransmissionSession,
    open_serial_port,
    close_serial_port,
)
from hexflash.config import FlashConfig

__all__ = [
    "__version__",
    # Errors
    "HexFlashError",
    "RecordError",
    "EncoderError",
    "SourceReadError",
    "CommsError",
    "ConnectionError",
    "NoTransportAvailable",
    "TransferError",
    "TransportError",
    "RetryExhaustedError",
    "TransferCancelled",
    # Records
    "CommandSequence",
    "HexRecord",
    "RecordEncoder",
    "RecordType",
    "checksum",
    "encode_bytes",
    "encode_file",
    "read_chunks",
    # Comms
    "AckTable",
    "RetryPolicy",
    "TransferObserver",
    "TransmissionSession",
    "open_serial_port",
    "close_serial_port",
    # Config
    "FlashConfig",
]
