"""Sphero BLE Protocol Package.

  Pure Python package for driving Sphero robots over Bluetooth Low Energy.
  """

from .device import SpheroDevice
from .exceptions import (
    AmbiguousResponseTypeError,
    BLEConnectionError,
    BLETimeoutError,
    BufferOverflowError,
    ChecksumError,
    DecodeError,
    EscapeSequenceError,
    FrameTooShortError,
    FramingError,
    HandshakeStepFailedError,
    InvalidResponseError,
    ProtocolError,
    SpheroError,
    TransportDisconnectedError,
    UnknownResponseTypeError,
)
from .models.enums import (
    ColorLED,
    ConnectionState,
    DriveFlag,
    NonPersistentOptionFlag,
    OptionFlag,
    PowerState,
    ResponseKind,
    RollMode,
    Stance,
)
from .models.events import (
    CollisionEvent,
    CommandAck,
    ConnectionStateChanged,
    Event,
    LocatorEvent,
    PowerStateEvent,
    ProtocolErrorEvent,
    SensorStreamEvent,
    SignalStrengthEvent,
)
from .models.sensors import CollisionData, LocatorData, PowerStatus, SensorStreamSample
from .protocol import V1, V2, Command, PacketCodec, ProtocolVariant, select_variant
from .session import ConnectionSession, ConnectionStateMachine
from .transport import BleakTransport, Transport

__version__ = "0.1.0"

__all__ = [
    # Main API
    "SpheroDevice",
    "ConnectionStateMachine",
    "ConnectionSession",
    "BleakTransport",
    "Transport",
    # Protocol
    "Command",
    "PacketCodec",
    "ProtocolVariant",
    "V1",
    "V2",
    "select_variant",
    # Exceptions
    "SpheroError",
    "BLEConnectionError",
    "BLETimeoutError",
    "HandshakeStepFailedError",
    "TransportDisconnectedError",
    "ProtocolError",
    "DecodeError",
    "FramingError",
    "FrameTooShortError",
    "ChecksumError",
    "EscapeSequenceError",
    "InvalidResponseError",
    "UnknownResponseTypeError",
    "AmbiguousResponseTypeError",
    "BufferOverflowError",
    # Events
    "Event",
    "ConnectionStateChanged",
    "PowerStateEvent",
    "LocatorEvent",
    "SensorStreamEvent",
    "CollisionEvent",
    "SignalStrengthEvent",
    "CommandAck",
    "ProtocolErrorEvent",
    # Models
    "PowerStatus",
    "LocatorData",
    "SensorStreamSample",
    "CollisionData",
    # Enums
    "ConnectionState",
    "ResponseKind",
    "PowerState",
    "RollMode",
    "DriveFlag",
    "ColorLED",
    "Stance",
    "OptionFlag",
    "NonPersistentOptionFlag",
]
