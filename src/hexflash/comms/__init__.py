"""
hexflash Communication Module
=============================

This module delivers encoded hex records to a device over a serial link.

Module Structure
----------------
- **serial**: Serial port utilities (detection, configuration)
- **session**: Per-record send/acknowledge/retry state machine

Quick Start
-----------
    from hexflash.comms import (
        AckTable,
        TransmissionSession,
        close_serial_port,
        open_serial_port,
    )
    from hexflash.ihex import encode_file

    sequence = encode_file("firmware.bin")
    port = open_serial_port('/dev/ttyUSB0', baud_rate=115200)
    try:
        TransmissionSession(port, sequence, AckTable.uniform('.')).run()
    finally:
        close_serial_port(port)

Error Handling
--------------
All communication errors inherit from `CommsError`:

- `ConnectionError`: Cannot open the serial port
- `NoTransportAvailable`: No port given and none detected
- `TransportError`: Serial I/O failed mid-transfer
- `RetryExhaustedError`: A record was never acknowledged
- `TransferCancelled`: The caller cancelled the transfer

These exceptions are defined in `hexflash.errors`.

Thread Safety
-------------
A session is NOT thread-safe. Run it from a single thread; other threads
may only set the cancel token.
"""

# Serial port utilities
from hexflash.comms.serial import (
    DEFAULT_BAUD_RATE,
    DEFAULT_TIMEOUT,
    VALID_BAUD_RATES,
    PortInfo,
    close_serial_port,
    find_serial_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
    require_serial_port,
)

# Transmission session
from hexflash.comms.session import (
    AckTable,
    CancelToken,
    RecordState,
    RetryPolicy,
    SerialTransport,
    TransferObserver,
    TransferResult,
    TransmissionSession,
    send_sequence,
)

__all__ = [
    # Serial
    "VALID_BAUD_RATES",
    "DEFAULT_BAUD_RATE",
    "DEFAULT_TIMEOUT",
    "PortInfo",
    "list_serial_ports",
    "find_serial_port",
    "require_serial_port",
    "open_serial_port",
    "close_serial_port",
    "format_port_list",
    # Session
    "AckTable",
    "CancelToken",
    "RecordState",
    "RetryPolicy",
    "SerialTransport",
    "TransferObserver",
    "TransferResult",
    "TransmissionSession",
    "send_sequence",
]
