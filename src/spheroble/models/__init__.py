"""Data models for Sphero robots."""

from .enums import (
    ColorLED,
    ConnectionState,
    DriveFlag,
    NonPersistentOptionFlag,
    OptionFlag,
    PowerState,
    ResponseKind,
    RollMode,
    Stance,
    V1DeviceId,
    V1Flag,
    V1NotificationId,
    V1ResponseCode,
    V2ErrorCode,
    V2Flag,
    V2Target,
)
from .events import (
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
from .sensors import (
    Attitude,
    CollisionData,
    LocatorData,
    MotorPair,
    PowerStatus,
    Quaternion,
    SensorStreamSample,
    Vector2,
    Vector3,
)

__all__ = [
    "ColorLED",
    "ConnectionState",
    "DriveFlag",
    "NonPersistentOptionFlag",
    "OptionFlag",
    "PowerState",
    "ResponseKind",
    "RollMode",
    "Stance",
    "V1DeviceId",
    "V1Flag",
    "V1NotificationId",
    "V1ResponseCode",
    "V2ErrorCode",
    "V2Flag",
    "V2Target",
    "CollisionEvent",
    "CommandAck",
    "ConnectionStateChanged",
    "Event",
    "LocatorEvent",
    "PowerStateEvent",
    "ProtocolErrorEvent",
    "SensorStreamEvent",
    "SignalStrengthEvent",
    "Attitude",
    "CollisionData",
    "LocatorData",
    "MotorPair",
    "PowerStatus",
    "Quaternion",
    "SensorStreamSample",
    "Vector2",
    "Vector3",
]
