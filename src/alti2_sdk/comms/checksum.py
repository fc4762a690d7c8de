"""
Additive Checksum for the Alti-2 Serial Protocol
================================================

This module implements the 8-bit checksum used by the Alti-2 serial
protocol for frame integrity verification. The same checksum also
protects each record inside a logbook dump.

Technical Details
-----------------
- Algorithm: sum of all bytes, modulo 256
- Initial value: 0x00
- Coverage (frames): message kind + payload; the length byte is excluded
- Coverage (records): every record byte except the trailing checksum

A single flipped bit always changes the sum (it adds or removes a power
of two below 256), so any single-bit corruption is detected. Swapped
bytes are not detected; the protocol relies on the framing structure
for that.

Usage
-----
    from alti2_sdk.comms.checksum import checksum

    checksum(bytes([0x80]))  # Returns 0x80, the GET_INFO command checksum
"""

from typing import Final

# Initial checksum value
CHECKSUM_INITIAL: Final[int] = 0x00

# Mask for 8-bit values
CHECKSUM_MASK: Final[int] = 0xFF


def checksum(data: bytes, initial: int = CHECKSUM_INITIAL) -> int:
    """
    Calculate the 8-bit additive checksum of ``data``.

    Args:
        data: Bytes to sum.
        initial: Starting value, for incremental calculation.

    Returns:
        Checksum value (0x00 to 0xFF).

    Example:
        >>> hex(checksum(bytes([0x80])))
        '0x80'
        >>> hex(checksum(bytes([0xFF, 0x02])))
        '0x1'
    """
    return (initial + sum(data)) & CHECKSUM_MASK


def verify_checksum(data: bytes, expected: int) -> bool:
    """Return True if ``data`` sums to ``expected``."""
    return checksum(data) == expected


def verify_trailing_checksum(data_with_checksum: bytes) -> bool:
    """
    Verify a block whose last byte is the checksum of the bytes before it.

    Example:
        >>> verify_trailing_checksum(bytes([0x01, 0x02, 0x03]))
        True
    """
    if len(data_with_checksum) < 2:
        return False
    return checksum(data_with_checksum[:-1]) == data_with_checksum[-1]
