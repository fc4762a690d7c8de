"""
Handshake State Machine
=======================

Before the logbook can be read, the host identifies the device and
derives the session capabilities from its answer.

Connection Handshake
--------------------
1. Host sends GET_INFO ("018080")
2. Device answers with its Type0 identification frame
3. Host decodes the device identity (product, serial, software version)
4. Host negotiates capabilities from the identity: logbook format,
   protocol version and the session cipher keyed from the Type0 bytes
5. Session is authenticated

States
------
    DISCONNECTED ──CONNECT──▶ HANDSHAKING_TYPE0 ──TYPE0_ACK──▶
    HANDSHAKING_CAPABILITIES ──NEGOTIATED──▶ AUTHENTICATED

FAULTED is reachable from every non-terminal state. AUTHENTICATED and
FAULTED are terminal for a connection attempt; RESET returns any state
to DISCONNECTED for a fresh attempt.

Every legal move is listed in TRANSITIONS. Anything else raises
IllegalTransition.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Final, Mapping, Optional

from alti2_sdk.comms.cipher import MIN_TYPE0_LENGTH, SessionCipher
from alti2_sdk.comms.framing import MessageKind
from alti2_sdk.comms.transaction import TransactionEngine
from alti2_sdk.errors import CommsError, IllegalTransition, ProtocolError, UnsupportedDevice

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# States and Events
# =============================================================================

class SessionState(Enum):
    """Session states, see the module docstring for the transition diagram."""

    DISCONNECTED = "disconnected"
    HANDSHAKING_TYPE0 = "handshaking(type0)"
    HANDSHAKING_CAPABILITIES = "handshaking(capability-exchange)"
    AUTHENTICATED = "authenticated"
    FAULTED = "faulted"

    @property
    def is_handshaking(self) -> bool:
        return self in (SessionState.HANDSHAKING_TYPE0, SessionState.HANDSHAKING_CAPABILITIES)

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.AUTHENTICATED, SessionState.FAULTED)


class HandshakeEvent(Enum):
    """Inputs that drive the state machine."""

    CONNECT = "connect"
    TYPE0_ACK = "type0-ack"
    NEGOTIATED = "negotiated"
    FAULT = "fault"
    RESET = "reset"


_S = SessionState
_E = HandshakeEvent

TRANSITIONS: Final[Mapping[tuple[SessionState, HandshakeEvent], SessionState]] = {
    (_S.DISCONNECTED, _E.CONNECT): _S.HANDSHAKING_TYPE0,
    (_S.HANDSHAKING_TYPE0, _E.TYPE0_ACK): _S.HANDSHAKING_CAPABILITIES,
    (_S.HANDSHAKING_CAPABILITIES, _E.NEGOTIATED): _S.AUTHENTICATED,
    # Faults from every non-terminal state
    (_S.DISCONNECTED, _E.FAULT): _S.FAULTED,
    (_S.HANDSHAKING_TYPE0, _E.FAULT): _S.FAULTED,
    (_S.HANDSHAKING_CAPABILITIES, _E.FAULT): _S.FAULTED,
    # Fresh attempt from anywhere
    (_S.DISCONNECTED, _E.RESET): _S.DISCONNECTED,
    (_S.HANDSHAKING_TYPE0, _E.RESET): _S.DISCONNECTED,
    (_S.HANDSHAKING_CAPABILITIES, _E.RESET): _S.DISCONNECTED,
    (_S.AUTHENTICATED, _E.RESET): _S.DISCONNECTED,
    (_S.FAULTED, _E.RESET): _S.DISCONNECTED,
}


# =============================================================================
# Device Identity
# =============================================================================

class ProductType(IntEnum):
    """Alti-2 product codes reported at Type0 offset 15."""

    UNKNOWN = 0
    NEPTUNE = 1
    WAVE = 2
    TRACKER = 3
    DATA_LOGGER = 4
    N3 = 5
    N3A = 6
    ATLAS = 7

    @classmethod
    def from_code(cls, code: int) -> "ProductType":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class SoftwareVersion:
    major: int
    minor: int
    revision: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.revision}"


@dataclass(frozen=True)
class DeviceInfo:
    """
    Device identity decoded from the Type0 frame.

    Type0 binary layout (length byte at offset 0, kind at offset 1):
        [2]      interface version
        [3]      software version, major in high nibble, minor in low
        [4]      software revision
        [5:14]   serial number, ASCII, space padded
        [14]     hardware revision
        [15]     product code
    """

    software_version: SoftwareVersion
    serial_number: str
    hardware_revision: int
    product_type: ProductType
    product_code: int
    interface_version: int

    @classmethod
    def from_type0(cls, binary: bytes) -> "DeviceInfo":
        """
        Decode the identity fields of a binary Type0 frame.

        Raises:
            ProtocolError: If the frame is too short or malformed.
        """
        if len(binary) < MIN_TYPE0_LENGTH:
            raise ProtocolError(
                f"Type0 response too short: {len(binary)} bytes, need {MIN_TYPE0_LENGTH}"
            )
        if binary[1] != MessageKind.TYPE0:
            raise ProtocolError(f"Not a Type0 frame: kind 0x{binary[1]:02X}")
        try:
            serial_number = binary[5:14].decode("ascii").strip()
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Type0 serial number is not ASCII: {binary[5:14].hex()}") from e

        return cls(
            software_version=SoftwareVersion(
                major=binary[3] >> 4,
                minor=binary[3] & 0x0F,
                revision=binary[4],
            ),
            serial_number=serial_number,
            hardware_revision=binary[14],
            product_type=ProductType.from_code(binary[15]),
            product_code=binary[15],
            interface_version=binary[2],
        )

    def __str__(self) -> str:
        product = (
            self.product_type.name
            if self.product_type is not ProductType.UNKNOWN
            else f"product 0x{self.product_code:02X}"
        )
        return (
            f"Alti-2 {product} (rev. {self.hardware_revision}, "
            f"S/N {self.serial_number}, S/W {self.software_version})"
        )


# =============================================================================
# Capabilities
# =============================================================================

class LogbookFormat(IntEnum):
    """How record boundaries are found in a logbook dump."""

    FIXED = 1
    LENGTH_PREFIXED = 2


# Logbook format per product. Products without an entry are rejected.
PRODUCT_CAPABILITIES: Final[Mapping[ProductType, LogbookFormat]] = {
    ProductType.NEPTUNE: LogbookFormat.FIXED,
    ProductType.WAVE: LogbookFormat.FIXED,
    ProductType.TRACKER: LogbookFormat.FIXED,
    ProductType.DATA_LOGGER: LogbookFormat.FIXED,
    ProductType.N3: LogbookFormat.LENGTH_PREFIXED,
    ProductType.N3A: LogbookFormat.LENGTH_PREFIXED,
    ProductType.ATLAS: LogbookFormat.LENGTH_PREFIXED,
}

# Message kinds an authenticated session may use
SESSION_MESSAGES: Final[frozenset[int]] = frozenset({
    MessageKind.READ_LOGBOOK,
    MessageKind.LOGBOOK_PAGE,
    MessageKind.DEVICE_ERROR,
})


@dataclass(frozen=True)
class Capabilities:
    """
    Session capabilities negotiated from the device identity.

    Attributes:
        protocol_version: Interface version reported in Type0
        logbook_format: Record boundary scheme of the logbook dump
        message_kinds: Message kinds usable after authentication
        cipher: Session cipher for logbook page data
    """

    protocol_version: int
    logbook_format: LogbookFormat
    message_kinds: frozenset[int] = SESSION_MESSAGES
    cipher: Optional[SessionCipher] = field(default=None, repr=False, compare=False)

    def supports(self, kind: int) -> bool:
        return kind in self.message_kinds


def negotiate_capabilities(info: DeviceInfo, type0: bytes) -> Capabilities:
    """
    Derive session capabilities from the device identity.

    Raises:
        UnsupportedDevice: If the product has no capability entry.
        ProtocolError: If the Type0 bytes cannot key the cipher.
    """
    logbook_format = PRODUCT_CAPABILITIES.get(info.product_type)
    if logbook_format is None:
        raise UnsupportedDevice(
            f"Unsupported Alti-2 product code 0x{info.product_code:02X}"
        )
    try:
        cipher = SessionCipher.from_type0(type0)
    except ValueError as e:
        raise ProtocolError(str(e)) from e

    return Capabilities(
        protocol_version=info.interface_version,
        logbook_format=logbook_format,
        cipher=cipher,
    )


# =============================================================================
# State Machine
# =============================================================================

class HandshakeStateMachine:
    """
    Drives a session from DISCONNECTED to AUTHENTICATED.

    Usage:
        handshake = HandshakeStateMachine(engine)
        capabilities = handshake.run()

    A failed handshake leaves the machine in FAULTED with the cause in
    ``failure``. It is not retried here; the caller decides whether to
    reset and try the whole connection again. A machine reset while the
    exchange is in flight stays DISCONNECTED.
    """

    def __init__(self, engine: TransactionEngine):
        self.engine = engine
        self.state = SessionState.DISCONNECTED
        self.device_info: Optional[DeviceInfo] = None
        self.capabilities: Optional[Capabilities] = None
        self.failure: Optional[Exception] = None

    def fire(self, event: HandshakeEvent) -> SessionState:
        """
        Apply one event through the transition table.

        Raises:
            IllegalTransition: If the event is not legal in the current state.
        """
        target = TRANSITIONS.get((self.state, event))
        if target is None:
            raise IllegalTransition(self.state.value, event.value)
        logger.debug("Handshake: %s --%s--> %s", self.state.value, event.value, target.value)
        self.state = target
        return target

    def run(self) -> Capabilities:
        """
        Perform the full handshake.

        Returns:
            The negotiated capabilities.

        Raises:
            CommsError: Any timeout, transport or protocol failure. The
                machine is FAULTED when this is raised.
        """
        self.fire(HandshakeEvent.CONNECT)

        try:
            request = self.engine.request(MessageKind.GET_INFO)
            response = self.engine.execute(request, {MessageKind.TYPE0})
            type0 = response.binary

            self.device_info = DeviceInfo.from_type0(type0)
            logger.info("Device identified: %s", self.device_info)
            self.fire(HandshakeEvent.TYPE0_ACK)

            self.capabilities = negotiate_capabilities(self.device_info, type0)
            logger.debug(
                "Capabilities: protocol=%d logbook=%s",
                self.capabilities.protocol_version, self.capabilities.logbook_format.name
            )
            self.fire(HandshakeEvent.NEGOTIATED)

        except CommsError as e:
            self.failure = e
            if self.state is SessionState.DISCONNECTED:
                # reset while the exchange was in flight
                logger.info("Handshake abandoned: %s", e)
                raise
            logger.warning("Handshake failed in %s: %s", self.state.value, e)
            self.fire(HandshakeEvent.FAULT)
            raise

        return self.capabilities

    def reset(self) -> None:
        """Return to DISCONNECTED and forget the previous attempt."""
        self.fire(HandshakeEvent.RESET)
        self.device_info = None
        self.capabilities = None
        self.failure = None
