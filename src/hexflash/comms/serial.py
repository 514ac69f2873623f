"""
Serial Port Utilities
=====================

Finding, opening and closing the UART that leads to the bootloader.

The link is always 8N1 without flow control. The per-record
acknowledgement is the only pacing, so RTS/CTS and XON/XOFF stay off
(an XOFF byte could otherwise be mistaken for a negative acknowledgement).

Port Selection
--------------
When no port is named, candidates are ranked:

1. Known bootloader-friendly bridges (FTDI, then Silicon Labs CP210x)
2. Any other USB-serial adapter
3. Built-in UARTs, in enumeration order
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from hexflash.errors import ConnectionError, NoTransportAvailable

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    9600, 19200, 38400, 57600, 115200, 230400, 460800, 921600,
)

DEFAULT_BAUD_RATE: Final[int] = 115200

# Seconds to wait for each acknowledgement byte
DEFAULT_TIMEOUT: Final[float] = 1.0

USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x0403: "FTDI",
    0x10C4: "Silicon Labs",
    0x067B: "Prolific",
    0x1A86: "QinHeng",    # CH340/CH341
}

# Ranked ahead of other USB adapters, in this order
PREFERRED_VENDOR_IDS: Final[tuple[int, ...]] = (0x0403, 0x10C4)

# Hints for common open() failures: (substrings of the pyserial message, hint)
_OPEN_FAILURE_HINTS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("permission denied",),
     "Permission denied on {device}. Add your user to the 'dialout' group "
     "(sudo usermod -a -G dialout $USER) and log in again."),
    (("no such file", "not found", "cannot find"),
     "Serial port not found: {device}. Run 'hexflash ports' to see what is attached."),
    (("busy", "in use", "access is denied"),
     "Serial port {device} is busy. Close any terminal program holding it."),
)


# =============================================================================
# Port Discovery
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    One serial device as reported by the operating system.

    `vid`/`pid` are only set for USB adapters.
    """

    device: str
    description: str = ""
    vid: Optional[int] = None
    pid: Optional[int] = None
    manufacturer: Optional[str] = None
    serial_number: Optional[str] = None

    @classmethod
    def from_pyserial(cls, port) -> "PortInfo":
        """Build from a serial.tools.list_ports ListPortInfo."""
        return cls(
            device=port.device,
            description=port.description or "",
            vid=port.vid,
            pid=port.pid,
            manufacturer=port.manufacturer,
            serial_number=port.serial_number,
        )

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        return USB_VENDOR_IDS.get(self.vid) if self.vid is not None else None

    @property
    def usb_id(self) -> Optional[str]:
        """'VVVV:PPPP' for USB adapters."""
        if self.vid is None:
            return None
        return f"{self.vid:04X}:{self.pid or 0:04X}"

    def __str__(self) -> str:
        text = self.device
        if self.description:
            text += f" - {self.description}"
        if self.vendor_name:
            text += f" ({self.vendor_name})"
        return text


def list_serial_ports() -> list[PortInfo]:
    """Return every serial port the system reports, in enumeration order."""
    ports = [PortInfo.from_pyserial(p) for p in serial.tools.list_ports.comports()]
    for port in ports:
        logger.debug("Found port: %s [%s]", port.device, port.usb_id or "not USB")
    return ports


def _selection_rank(port: PortInfo) -> int:
    if port.vid in PREFERRED_VENDOR_IDS:
        return PREFERRED_VENDOR_IDS.index(port.vid)
    if port.is_usb:
        return len(PREFERRED_VENDOR_IDS)
    return len(PREFERRED_VENDOR_IDS) + 1


def find_serial_port() -> Optional[str]:
    """
    Pick the most likely bootloader port.

    Returns:
        Device path of the best-ranked port, or None when there are none.
        Ties keep enumeration order.
    """
    ports = list_serial_ports()
    if not ports:
        logger.debug("No serial ports found")
        return None

    best = min(ports, key=_selection_rank)
    logger.info("Auto-detected port: %s", best)
    return best.device


def require_serial_port(explicit: Optional[str] = None) -> str:
    """
    Resolve the port to flash through.

    Raises:
        NoTransportAvailable: No port was named and none was detected.
    """
    if explicit:
        return explicit

    device = find_serial_port()
    if device is None:
        raise NoTransportAvailable(
            "No serial port specified and none could be auto-detected. "
            "Pass --port, or run 'hexflash ports'."
        )
    return device


# =============================================================================
# Opening and Closing
# =============================================================================

def _open_failure(device: str, error: serial.SerialException) -> ConnectionError:
    message = str(error).lower()
    for needles, hint in _OPEN_FAILURE_HINTS:
        if any(needle in message for needle in needles):
            return ConnectionError(hint.format(device=device))
    return ConnectionError(f"Cannot open {device}: {error}")


def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open `device` 8N1 without flow control and discard stale input.

    Args:
        device: Port path such as '/dev/ttyUSB0' or 'COM3'.
        baud_rate: One of VALID_BAUD_RATES.
        timeout: Read timeout in seconds; bounds each acknowledgement wait.

    Returns:
        The open port. Close it with close_serial_port().

    Raises:
        ValueError: Unsupported baud rate.
        ConnectionError: The operating system refused to open the port.
    """
    if baud_rate not in VALID_BAUD_RATES:
        raise ValueError(
            f"Invalid baud rate: {baud_rate}. "
            f"Valid rates: {', '.join(map(str, VALID_BAUD_RATES))}"
        )

    logger.info("Opening %s at %d baud", device, baud_rate)
    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )
    except serial.SerialException as e:
        raise _open_failure(device, e) from e

    # Bytes left over from a previous run would read as acknowledgements
    try:
        port.reset_input_buffer()
    except (serial.SerialException, OSError) as e:
        port.close()
        raise ConnectionError(f"Cannot clear input buffer on {device}: {e}") from e

    logger.debug("%s open (timeout %.2fs)", device, timeout)
    return port


def close_serial_port(port: Optional[serial.Serial]) -> None:
    """Close `port` if it is open. Errors while closing are only logged."""
    if port is None or not port.is_open:
        return
    try:
        port.reset_input_buffer()
        port.close()
    except (serial.SerialException, OSError) as e:
        logger.warning("Error closing serial port: %s", e)
    else:
        logger.debug("Serial port closed")


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """Render ports for `hexflash ports`, one per line (or block if verbose)."""
    if not ports:
        return "No serial ports found."

    if not verbose:
        return "\n".join(f"  {port}" for port in ports)

    blocks = []
    for port in ports:
        details = [
            ("Description", port.description),
            ("Manufacturer", port.manufacturer),
            ("USB VID:PID", port.usb_id),
            ("Vendor", port.vendor_name),
            ("Serial", port.serial_number),
        ]
        lines = [f"  {port.device}"]
        lines += [f"    {label}: {value}" for label, value in details if value]
        blocks.append("\n".join(lines))
    return "\n".join(blocks)
