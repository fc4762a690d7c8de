"""
Byte Channel Adapters
=====================

The protocol core talks to the instrument through a ByteChannel: a
duplex byte stream with a per-read timeout. The core never assumes that
reads preserve message boundaries; frames are reassembled from whatever
chunks arrive.

This module provides:

- The ByteChannel interface consumed by the transaction engine
- SerialChannel, a pyserial-backed implementation
- Port enumeration and detection of likely USB-serial adapters

Serial Port Settings
--------------------
Alti-2 instruments use these settings on the PC cable:
- Baud Rate: 57600
- Data Bits: 8
- Parity: None
- Stop Bits: 1
- Flow Control: RTS/CTS (hardware)
- DTR: asserted (the device powers its interface from it)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from alti2_sdk.config import DEFAULT_BAUD_RATE
from alti2_sdk.errors import TransportError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Default read timeout in seconds for a freshly opened port
DEFAULT_PORT_TIMEOUT: Final[float] = 1.0

# USB Vendor IDs for common USB-serial adapters
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x0403: "FTDI",          # Future Technology Devices International
    0x10C4: "Silicon Labs",  # Silicon Labs CP210x
    0x067B: "Prolific",      # Prolific Technology
    0x1A86: "QinHeng",       # QinHeng Electronics (CH340)
}

# Chipsets used in Alti-2 PC cables, most likely first
CABLE_VENDORS: Final[tuple[int, ...]] = (0x0403, 0x10C4)


# =============================================================================
# Channel Interface
# =============================================================================

class ByteChannel(ABC):
    """
    Duplex byte stream consumed by the protocol core.

    Implementations must not raise on a read timeout; an empty result
    means nothing arrived in time. Failures of the underlying transport
    are reported as TransportError.
    """

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the device."""

    @abstractmethod
    def read_available(self, max_bytes: int, timeout: float) -> bytes:
        """
        Read up to ``max_bytes``, waiting at most ``timeout`` seconds.

        Returns:
            The bytes received, possibly empty on timeout.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the channel. Closing twice is allowed."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Return True until close() has been called."""


class SerialChannel(ByteChannel):
    """
    ByteChannel over a pyserial port.

    Example:
        channel = open_serial_channel('/dev/ttyUSB0')
        try:
            channel.write(b'018080')
            reply = channel.read_available(512, timeout=1.0)
        finally:
            channel.close()
    """

    def __init__(self, port: "serial.Serial"):
        self.port = port

    @property
    def is_open(self) -> bool:
        return bool(self.port is not None and self.port.is_open)

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportError("Serial port is closed")
        try:
            self.port.write(data)
            self.port.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write failed on {self.port.port}: {e}") from e
        logger.debug("Sent %d bytes: %s", len(data), data.hex())

    def read_available(self, max_bytes: int, timeout: float) -> bytes:
        if not self.is_open:
            raise TransportError("Serial port is closed")
        try:
            # Block for the first byte only, then take what is buffered
            self.port.timeout = max(0.0, timeout)
            data = self.port.read(1)
            if not data:
                return b""
            waiting = min(self.port.in_waiting, max_bytes - 1)
            if waiting > 0:
                data += self.port.read(waiting)
        except serial.SerialException as e:
            raise TransportError(f"Read failed on {self.port.port}: {e}") from e
        logger.debug("Received %d bytes: %s", len(data), data.hex())
        return data

    def close(self) -> None:
        close_serial_port(self.port)


# =============================================================================
# Port Discovery
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """A serial port as reported by the operating system."""

    device: str
    description: str = ""
    vid: Optional[int] = None
    pid: Optional[int] = None
    serial_number: Optional[str] = None

    @classmethod
    def from_comport(cls, comport) -> "PortInfo":
        """Build from a pyserial ListPortInfo entry."""
        return cls(
            device=comport.device,
            description=comport.description or "",
            vid=comport.vid,
            pid=comport.pid,
            serial_number=comport.serial_number,
        )

    @property
    def is_usb(self) -> bool:
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        return USB_VENDOR_IDS.get(self.vid) if self.vid is not None else None

    @property
    def cable_rank(self) -> int:
        """Lower is a likelier Alti-2 PC cable; non-USB ports rank last."""
        if self.vid is None:
            return len(CABLE_VENDORS) + 1
        if self.vid in CABLE_VENDORS:
            return CABLE_VENDORS.index(self.vid)
        return len(CABLE_VENDORS)

    def __str__(self) -> str:
        text = self.device
        if self.description:
            text += f" - {self.description}"
        if self.vendor_name:
            text += f" ({self.vendor_name})"
        return text


def list_serial_ports() -> list[PortInfo]:
    """Enumerate the serial ports currently present."""
    ports = [PortInfo.from_comport(p) for p in serial.tools.list_ports.comports()]
    logger.debug("Found %d serial port(s): %s", len(ports), ", ".join(p.device for p in ports))
    return ports


def find_alti2_port(ports: Optional[list[PortInfo]] = None) -> Optional[str]:
    """
    Pick the port most likely to be an Alti-2 PC cable.

    Only USB-serial adapters are considered. Cable chipsets in
    CABLE_VENDORS win over other adapters; ties keep enumeration order.

    Args:
        ports: Ports to choose from; enumerated when omitted.

    Returns:
        Device path, or None when no USB-serial adapter is present.
    """
    if ports is None:
        ports = list_serial_ports()
    candidates = [p for p in ports if p.is_usb]
    if not candidates:
        logger.debug("No USB serial ports found")
        return None

    best = min(candidates, key=lambda p: p.cable_rank)
    logger.info("Auto-detected port: %s (%s)", best.device, best.vendor_name or best.description)
    return best.device


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """Render ports one per line, or as an indented block each when verbose."""
    if not ports:
        return "No serial ports found."
    if not verbose:
        return "\n".join(f"  {p}" for p in ports)

    blocks = []
    for p in ports:
        lines = [f"  {p.device}"]
        if p.description:
            lines.append(f"    Description: {p.description}")
        if p.is_usb:
            usb = f"    USB VID:PID: {p.vid:04X}:{p.pid or 0:04X}"
            if p.vendor_name:
                usb += f" ({p.vendor_name})"
            lines.append(usb)
        if p.serial_number:
            lines.append(f"    Serial: {p.serial_number}")
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


# =============================================================================
# Port Configuration
# =============================================================================

def open_serial_channel(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_PORT_TIMEOUT,
) -> SerialChannel:
    """
    Open and configure a serial port for Alti-2 communication.

    Args:
        device: Serial port device path (e.g., '/dev/ttyUSB0', 'COM3').
        baud_rate: Baud rate, 57600 for every known instrument.
        timeout: Initial read timeout in seconds.

    Returns:
        SerialChannel wrapping the opened port.

    Raises:
        TransportError: If the port cannot be opened or configured.
    """
    logger.info("Opening serial port: %s at %d baud", device, baud_rate)

    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=True,
            dsrdtr=False,
        )
        port.dtr = True
        port.reset_input_buffer()
        port.reset_output_buffer()

    except serial.SerialException as e:
        error_msg = str(e)

        if "Permission denied" in error_msg:
            raise TransportError(
                f"Permission denied accessing {device}. "
                "You may need to add your user to the 'dialout' group: "
                "sudo usermod -a -G dialout $USER"
            ) from e
        elif "No such file" in error_msg or "not found" in error_msg.lower():
            raise TransportError(
                f"Serial port not found: {device}. "
                "Use 'altilink ports' to list available ports."
            ) from e
        elif "busy" in error_msg.lower() or "in use" in error_msg.lower():
            raise TransportError(
                f"Serial port {device} is busy. "
                "Close any other programs using the port."
            ) from e
        else:
            raise TransportError(f"Cannot open {device}: {e}") from e

    logger.debug("Port opened: %s (timeout=%.1f)", device, timeout)
    return SerialChannel(port)


def close_serial_port(port: Optional["serial.Serial"]) -> None:
    """
    Safely close a serial port.

    Errors during close are logged, not raised.
    """
    if port is None or not port.is_open:
        return

    try:
        port.reset_input_buffer()
    except (serial.SerialException, OSError) as e:
        logger.debug("Could not flush input before close: %s", e)

    try:
        port.close()
        logger.debug("Serial port closed")
    except (serial.SerialException, OSError) as e:
        logger.warning("Error closing serial port: %s", e)
