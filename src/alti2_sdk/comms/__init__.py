"""
Alti-2 Communication Module
===========================

This module provides the link layer for talking to Alti-2 instruments
(Neptune, Wave, Tracker, N3, Atlas, ...) over their serial PC cable.

Protocol Architecture
---------------------
The host drives every exchange; the device only answers:

- The host writes a request frame as compact hex ASCII ("018080")
- The device answers with a spaced hex line ("1E 00 05 ... 38 \\r\\n")
- One request is outstanding at a time (half-duplex)

Module Structure
----------------
- **checksum**: 8-bit additive checksum
- **framing**: frame codec, wire layouts and streaming reader
- **cipher**: session cipher keyed from the Type0 response
- **channel**: byte channel interface and pyserial adapter
- **transaction**: request/response correlation with timeout and retry
- **handshake**: connection state machine and capability negotiation

Quick Start
-----------
    from alti2_sdk.comms import (
        HandshakeStateMachine,
        TransactionEngine,
        open_serial_channel,
    )

    channel = open_serial_channel('/dev/ttyUSB0')
    engine = TransactionEngine(channel)
    handshake = HandshakeStateMachine(engine)
    capabilities = handshake.run()
    print(handshake.device_info)
    channel.close()

Most applications should use alti2_sdk.Session instead, which adds
logbook extraction and cleanup on top of these pieces.

Thread Safety
-------------
The communication classes are NOT thread-safe. Use only from a single
thread, or protect all calls with external synchronization.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Checksum
from alti2_sdk.comms.checksum import (
    CHECKSUM_INITIAL,
    checksum,
    verify_checksum,
    verify_trailing_checksum,
)

# Framing
from alti2_sdk.comms.framing import (
    DEVICE_LAYOUT,
    HOST_LAYOUT,
    MAX_PAYLOAD_SIZE,
    Frame,
    FrameCodec,
    FrameLayout,
    FrameReader,
    Invalid,
    MessageKind,
    NeedMoreData,
)

# Cipher
from alti2_sdk.comms.cipher import SessionCipher

# Channels
from alti2_sdk.comms.channel import (
    ByteChannel,
    PortInfo,
    SerialChannel,
    close_serial_port,
    find_alti2_port,
    format_port_list,
    list_serial_ports,
    open_serial_channel,
)

# Transactions
from alti2_sdk.comms.transaction import (
    Transaction,
    TransactionEngine,
    UnknownMessage,
)

# Handshake
from alti2_sdk.comms.handshake import (
    TRANSITIONS,
    Capabilities,
    DeviceInfo,
    HandshakeEvent,
    HandshakeStateMachine,
    LogbookFormat,
    ProductType,
    SessionState,
    SoftwareVersion,
    negotiate_capabilities,
)

__all__ = [
    # Checksum
    "CHECKSUM_INITIAL",
    "checksum",
    "verify_checksum",
    "verify_trailing_checksum",
    # Framing
    "DEVICE_LAYOUT",
    "HOST_LAYOUT",
    "MAX_PAYLOAD_SIZE",
    "Frame",
    "FrameCodec",
    "FrameLayout",
    "FrameReader",
    "Invalid",
    "MessageKind",
    "NeedMoreData",
    # Cipher
    "SessionCipher",
    # Channels
    "ByteChannel",
    "PortInfo",
    "SerialChannel",
    "close_serial_port",
    "find_alti2_port",
    "format_port_list",
    "list_serial_ports",
    "open_serial_channel",
    # Transactions
    "Transaction",
    "TransactionEngine",
    "UnknownMessage",
    # Handshake
    "TRANSITIONS",
    "Capabilities",
    "DeviceInfo",
    "HandshakeEvent",
    "HandshakeStateMachine",
    "LogbookFormat",
    "ProductType",
    "SessionState",
    "SoftwareVersion",
    "negotiate_capabilities",
]
