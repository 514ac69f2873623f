"""
hexflash Error Hierarchy
========================

This module defines the exception hierarchy for the entire package.
All exceptions inherit from HexFlashError, allowing callers to catch all
hexflash-related errors with a single except clause if desired.

Exception Hierarchy
-------------------
HexFlashError (base)
├── RecordError - invalid record, chunk or base address
│   └── EncoderError - encoder used after it was finished
├── SourceReadError - the binary image could not be read
└── CommsError (serial communication)
    ├── ConnectionError - cannot open the serial port
    │   └── NoTransportAvailable - no serial device could be found
    └── TransferError - transmission session aborted
        ├── TransportError - write/flush/read failure on the port
        ├── RetryExhaustedError - device kept rejecting a record
        └── TransferCancelled - caller cancelled the transfer

Negative acknowledgements are not exceptions. They are retried locally
and only surface as RetryExhaustedError once the retry budget is spent.
"""

from typing import Optional


# =============================================================================
# Base Exception Class
# =============================================================================

class HexFlashError(Exception):
    """
    Base exception for all hexflash errors.

        try:
            sequence = encode_file("firmware.bin")
        except HexFlashError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Encoding Exceptions
# =============================================================================

class RecordError(HexFlashError):
    """
    A hex record could not be constructed.

    Raised when:
    - A payload exceeds the 255-byte record limit
    - An address does not fit in 16 bits
    - A data record would wrap past the end of its 64 KiB bank
    - A chunk or base address is outside the encodable range
    - A line read back does not hold a valid record
    """
    pass


class EncoderError(RecordError):
    """The record encoder was used after finish() consumed it."""
    pass


class SourceReadError(HexFlashError):
    """
    The binary image could not be read.

    The underlying OSError is chained as __cause__.
    """

    def __init__(self, path: str, message: str = ""):
        self.path = path
        super().__init__(message or f"Cannot read {path}")


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(HexFlashError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot connect to the target device.

    Raised when:
    - Serial port not found
    - Permission denied
    - Port busy
    """
    pass


class NoTransportAvailable(ConnectionError):
    """No serial port was given and none could be auto-detected."""

    def __init__(self, message: str = "No serial port found"):
        super().__init__(message)


class TransferError(CommsError):
    """
    A transmission session was aborted.

    Attributes:
        record_index: Index of the record being delivered when the session
                      stopped (None if no record was in flight)
        records_acked: Number of records the device acknowledged before
                       the session stopped
    """

    def __init__(
        self,
        message: str,
        record_index: Optional[int] = None,
        records_acked: int = 0,
    ):
        self.message = message
        self.record_index = record_index
        self.records_acked = records_acked
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.record_index is None:
            return self.message
        return f"record {self.record_index}: {self.message}"


class TransportError(TransferError):
    """
    Serial I/O failed while delivering a record.

    This is fatal: no retry is attempted and the record in flight is not
    considered acknowledged.
    """
    pass


class RetryExhaustedError(TransferError):
    """
    The device did not acknowledge a record within the retry budget.

    Attributes:
        attempts: Number of times the record was sent
        last_response: Last byte received, or None if the last attempt
                       timed out with no data
    """

    def __init__(
        self,
        record_index: int,
        attempts: int,
        last_response: Optional[int],
        records_acked: int = 0,
    ):
        self.attempts = attempts
        self.last_response = last_response
        if last_response is None:
            detail = "no response"
        else:
            detail = f"last response {last_response:#04x}"
        super().__init__(
            f"not acknowledged after {attempts} attempts ({detail})",
            record_index=record_index,
            records_acked=records_acked,
        )


class TransferCancelled(TransferError):
    """The caller cancelled the transfer between records."""

    def __init__(self, record_index: Optional[int] = None, records_acked: int = 0):
        super().__init__(
            "transfer cancelled",
            record_index=record_index,
            records_acked=records_acked,
        )
