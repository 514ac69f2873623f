"""
Record Transmission Session
===========================

This module delivers a CommandSequence to the device over a serial
transport, one record at a time, with a per-record acknowledgement.

Handshake
---------
For every record, in order:

    ┌─────────┐  write line  ┌──────────────┐  expected byte  ┌───────┐
    │ SENDING │ ───────────▶ │ AWAITING_ACK │ ──────────────▶ │ ACKED │
    └─────────┘              └──────────────┘                 └───────┘
         ▲                          │ other byte / timeout
         │      backoff       ┌──────────┐
         └─────────────────── │ RETRYING │ ── budget spent ──▶ ABORTED
                              └──────────┘

- The record line is written without a terminator and flushed.
- The device answers with one byte. Which byte means "accepted" depends
  on the record type and is given by an AckTable.
- Any other byte is a negative acknowledgement: the input buffer is
  cleared and the same record is sent again.
- A read timeout also counts as a failed attempt.
- Retries are bounded by a RetryPolicy with exponential backoff.
- A serial I/O error aborts the session immediately.

Record i+1 is never written before record i is acknowledged.

Usage
-----
    port = open_serial_port('/dev/ttyUSB0')
    session = TransmissionSession(port, sequence, AckTable.uniform('.'))
    result = session.run()
    print(f"{result.records_acked} records delivered")
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Protocol, Union

import serial

from hexflash.errors import (
    CommsError,
    RetryExhaustedError,
    TransferCancelled,
    TransportError,
)
from hexflash.ihex.encoder import CommandSequence
from hexflash.ihex.records import HexRecord, RecordType

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Transport Contract
# =============================================================================

class SerialTransport(Protocol):
    """
    Byte-level duplex channel used by TransmissionSession.

    The method names follow pyserial, so an open serial.Serial can be
    passed directly. read() blocks up to the port timeout and returns an
    empty bytes object if nothing arrived.

    The device answers each record with exactly one byte. Anything already
    in the input buffer when a record is sent is stale (a late reply to a
    timed-out attempt, trailing line endings) and is discarded.
    """

    def write(self, data: bytes) -> Optional[int]: ...

    def flush(self) -> None: ...

    def read(self, size: int = 1) -> bytes: ...

    def reset_input_buffer(self) -> None: ...


class CancelToken(Protocol):
    """Anything with is_set(), e.g. threading.Event."""

    def is_set(self) -> bool: ...


# =============================================================================
# Acknowledgement Table
# =============================================================================

_ACK_KEYS: dict[str, RecordType] = {
    "data": RecordType.DATA,
    "eof": RecordType.END_OF_FILE,
    "end_of_file": RecordType.END_OF_FILE,
    "ext": RecordType.EXTENDED_ADDRESS,
    "extended": RecordType.EXTENDED_ADDRESS,
    "extended_address": RecordType.EXTENDED_ADDRESS,
}


def _ack_byte(value: Union[str, int]) -> int:
    """Convert a character, '0xNN' string, or int to an acknowledgement byte."""
    if isinstance(value, int):
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Acknowledgement byte must be 0-255, got {value}")
        return value

    if len(value) == 1:
        code = ord(value)
        if code > 0xFF:
            raise ValueError(f"Acknowledgement must be a single byte: {value!r}")
        return code

    if value.lower().startswith("0x"):
        return _ack_byte(int(value, 16))

    raise ValueError(
        f"Acknowledgement must be one character or 0xNN, got {value!r}"
    )


@dataclass(frozen=True)
class AckTable:
    """
    Expected acknowledgement byte for each record type.

    The values are defined by the bootloader being programmed, so they
    are always supplied by the caller.

    Attributes:
        data: Byte acknowledging a data record
        end_of_file: Byte acknowledging the end of file record
        extended_address: Byte acknowledging an extended address record
    """

    data: int
    end_of_file: int
    extended_address: int

    def __post_init__(self) -> None:
        for name in ("data", "end_of_file", "extended_address"):
            object.__setattr__(self, name, _ack_byte(getattr(self, name)))

    @classmethod
    def uniform(cls, ack: Union[str, int]) -> "AckTable":
        """Use the same acknowledgement byte for every record type."""
        return cls(data=ack, end_of_file=ack, extended_address=ack)

    @classmethod
    def parse(cls, spec: str, default: Union[str, int] = ".") -> "AckTable":
        """
        Parse an acknowledgement specification.

        Accepted forms:
            "."                      same byte for every type
            "0x06"                   same byte, given in hex
            "data=.,ext=.,eof=!"     per type; missing types use `default`

        Raises:
            ValueError: If the specification cannot be parsed.
        """
        spec = spec.strip()
        if "=" not in spec:
            return cls.uniform(spec)

        values = {rt: default for rt in RecordType}
        for item in spec.split(","):
            key, sep, value = item.partition("=")
            key = key.strip().lower()
            if not sep or key not in _ACK_KEYS:
                raise ValueError(f"Unknown acknowledgement entry: {item!r}")
            values[_ACK_KEYS[key]] = value.strip()

        return cls(
            data=values[RecordType.DATA],
            end_of_file=values[RecordType.END_OF_FILE],
            extended_address=values[RecordType.EXTENDED_ADDRESS],
        )

    def expected(self, record_type: RecordType) -> int:
        """Return the acknowledgement byte expected for `record_type`."""
        if record_type == RecordType.DATA:
            return self.data
        if record_type == RecordType.END_OF_FILE:
            return self.end_of_file
        return self.extended_address


# =============================================================================
# Retry Policy
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Times a record may be sent before giving up (>= 1)
        initial_delay: Pause after the first failed attempt (seconds)
        backoff_factor: Multiplier applied to the pause after each failure
        max_delay: Upper bound on a single pause (seconds)
    """

    max_attempts: int = 10
    initial_delay: float = 0.05
    backoff_factor: float = 2.0
    max_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must not be negative")
        if self.backoff_factor < 1:
            raise ValueError(f"backoff_factor must be >= 1, got {self.backoff_factor}")

    def delay(self, failed_attempts: int) -> float:
        """Pause before the next attempt after `failed_attempts` failures."""
        return min(
            self.initial_delay * self.backoff_factor ** (failed_attempts - 1),
            self.max_delay,
        )


# =============================================================================
# Observer
# =============================================================================

class RecordState(Enum):
    """States a record passes through during delivery."""

    SENDING = auto()
    AWAITING_ACK = auto()
    ACKED = auto()
    RETRYING = auto()
    ABORTED = auto()


class TransferObserver:
    """
    Receives progress events from a TransmissionSession.

    All hooks do nothing by default; override the ones you need.
    """

    def record_state(self, index: int, record: HexRecord, state: RecordState) -> None:
        pass

    def negative_ack(self, index: int, record: HexRecord, response: int) -> None:
        pass

    def timeout(self, index: int, record: HexRecord) -> None:
        pass

    def progress(self, acked: int, total: int) -> None:
        pass


@dataclass
class TransferResult:
    """Summary of a completed transfer."""

    records_acked: int
    attempts: int
    negative_acks: int
    timeouts: int
    elapsed: float


# =============================================================================
# Transmission Session
# =============================================================================

class TransmissionSession:
    """
    Send/await-ack/retry state machine for one CommandSequence.

    The session owns the transport for the duration of run() and can only
    be run once.

    Usage:
        session = TransmissionSession(port, sequence, AckTable.uniform('.'))
        result = session.run()
    """

    def __init__(
        self,
        transport: SerialTransport,
        sequence: CommandSequence,
        ack_table: AckTable,
        retry_policy: Optional[RetryPolicy] = None,
        observer: Optional[TransferObserver] = None,
        cancel: Optional[CancelToken] = None,
    ):
        """
        Initialize the session.

        Args:
            transport: Open serial port (or any SerialTransport).
            sequence: Records to deliver, in order.
            ack_table: Expected acknowledgement byte per record type.
            retry_policy: Retry bound and backoff (default RetryPolicy()).
            observer: Optional progress observer.
            cancel: Optional token; when set, the session stops before the
                    next write.
        """
        self.transport = transport
        self.sequence = sequence
        self.ack_table = ack_table
        self.retry_policy = retry_policy or RetryPolicy()
        self.observer = observer or TransferObserver()
        self._cancel = cancel

        self._started = False
        self._records_acked = 0
        self._attempts = 0
        self._negative_acks = 0
        self._timeouts = 0

    @property
    def records_acked(self) -> int:
        """Number of records acknowledged so far."""
        return self._records_acked

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def run(self) -> TransferResult:
        """
        Deliver every record in order.

        Returns:
            TransferResult summarising the transfer.

        Raises:
            TransportError: If the serial port fails.
            RetryExhaustedError: If a record is never acknowledged.
            TransferCancelled: If the cancel token was set.
            CommsError: If the session has already been run.
        """
        if self._started:
            raise CommsError("Transmission session already run")
        self._started = True

        total = len(self.sequence)
        start_time = time.monotonic()
        logger.info("Sending %d records", total)

        for index, record in enumerate(self.sequence):
            self._deliver(index, record)
            self._records_acked += 1
            self.observer.progress(self._records_acked, total)

        elapsed = time.monotonic() - start_time
        logger.info(
            "Transfer complete: %d records in %.1fs (%d retries)",
            total, elapsed, self._negative_acks + self._timeouts,
        )

        return TransferResult(
            records_acked=self._records_acked,
            attempts=self._attempts,
            negative_acks=self._negative_acks,
            timeouts=self._timeouts,
            elapsed=elapsed,
        )

    def _deliver(self, index: int, record: HexRecord) -> None:
        """Send one record until it is acknowledged or the budget is spent."""
        line = record.to_bytes()
        expected = self.ack_table.expected(record.record_type)
        attempt = 0

        while True:
            self._check_cancelled(index)
            attempt += 1
            self._attempts += 1

            self._set_state(index, record, RecordState.SENDING)
            logger.debug("Sending record %d (attempt %d): %s", index, attempt, record)
            self._reset_input(index)
            self._write(index, line)

            self._set_state(index, record, RecordState.AWAITING_ACK)
            response = self._read_ack(index)

            if response == expected:
                self._set_state(index, record, RecordState.ACKED)
                logger.debug("Record %d acknowledged", index)
                return

            if response is None:
                self._timeouts += 1
                logger.warning("Record %d: no acknowledgement (timeout)", index)
                self.observer.timeout(index, record)
            else:
                self._negative_acks += 1
                logger.warning(
                    "Record %d: negative acknowledgement %r (expected %r)",
                    index, chr(response), chr(expected),
                )
                self.observer.negative_ack(index, record, response)

            if attempt >= self.retry_policy.max_attempts:
                self._set_state(index, record, RecordState.ABORTED)
                raise RetryExhaustedError(
                    record_index=index,
                    attempts=attempt,
                    last_response=response,
                    records_acked=self._records_acked,
                )

            self._set_state(index, record, RecordState.RETRYING)
            delay = self.retry_policy.delay(attempt)
            if delay > 0:
                time.sleep(delay)

    # -------------------------------------------------------------------------
    # Transport I/O
    # -------------------------------------------------------------------------

    def _write(self, index: int, line: bytes) -> None:
        try:
            written = self.transport.write(line)
            if written is not None and written != len(line):
                raise self._abort(
                    index, f"short write: {written} of {len(line)} bytes"
                )
            self.transport.flush()
        except (serial.SerialException, OSError) as e:
            raise self._abort(index, f"write failed: {e}") from e

    def _read_ack(self, index: int) -> Optional[int]:
        """Read one acknowledgement byte; None on timeout."""
        try:
            data = self.transport.read(1)
        except (serial.SerialException, OSError) as e:
            raise self._abort(index, f"read failed: {e}") from e

        if not data:
            return None
        logger.debug("Record %d: received %s", index, data.hex())
        return data[0]

    def _reset_input(self, index: int) -> None:
        try:
            self.transport.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            raise self._abort(index, f"cannot clear input buffer: {e}") from e

    def _abort(self, index: int, message: str) -> TransportError:
        """Build the fatal error for a transport failure on record `index`."""
        self._set_state(index, self.sequence[index], RecordState.ABORTED)
        logger.error("Record %d: %s", index, message)
        return TransportError(
            message, record_index=index, records_acked=self._records_acked
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _check_cancelled(self, index: int) -> None:
        if self._cancel is not None and self._cancel.is_set():
            logger.info("Transfer cancelled at record %d", index)
            raise TransferCancelled(
                record_index=index, records_acked=self._records_acked
            )

    def _set_state(self, index: int, record: HexRecord, state: RecordState) -> None:
        self.observer.record_state(index, record, state)


# =============================================================================
# Convenience Functions
# =============================================================================

def send_sequence(
    transport: SerialTransport,
    sequence: CommandSequence,
    ack_table: AckTable,
    retry_policy: Optional[RetryPolicy] = None,
    observer: Optional[TransferObserver] = None,
    cancel: Optional[CancelToken] = None,
) -> TransferResult:
    """
    Send a CommandSequence over an already open transport.

    Raises:
        TransferError: If the transfer is aborted.
    """
    session = TransmissionSession(
        transport,
        sequence,
        ack_table,
        retry_policy=retry_policy,
        observer=observer,
        cancel=cancel,
    )
    return session.run()
