"""Events delivered to the application, one per decoded frame or state change."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from ..exceptions import ProtocolError, SpheroError
from .enums import ConnectionState
from .sensors import CollisionData, LocatorData, PowerStatus, SensorStreamSample


@dataclass(frozen=True)
class ConnectionStateChanged:
    """Session lifecycle transition.

    A failed session is reported with state DISCONNECTED and the error that
    ended it.
    """

    state: ConnectionState
    previous: ConnectionState
    error: SpheroError | None = None

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.READY


@dataclass(frozen=True)
class PowerStateEvent:
    status: PowerStatus
    sequence_number: int | None = None


@dataclass(frozen=True)
class LocatorEvent:
    locator: LocatorData
    sequence_number: int | None = None


@dataclass(frozen=True)
class SensorStreamEvent:
    sample: SensorStreamSample


@dataclass(frozen=True)
class CollisionEvent:
    collision: CollisionData


@dataclass(frozen=True)
class SignalStrengthEvent:
    """RSSI in dBm as reported by the robot's radio characteristic."""

    rssi: int


@dataclass(frozen=True)
class CommandAck:
    """Acknowledgment without a typed payload decoder.

    code is the v1 response code or the v2 error code; 0 means success.
    """

    sequence_number: int | None
    code: int
    payload: bytes = field(default=b"", repr=False)
    target: int | None = None
    command_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.code == 0


@dataclass(frozen=True)
class ProtocolErrorEvent:
    """Non-fatal decode or framing problem; the frame was dropped."""

    error: ProtocolError
    raw: bytes = field(default=b"", repr=False)


Event = Union[
    ConnectionStateChanged,
    PowerStateEvent,
    LocatorEvent,
    SensorStreamEvent,
    CollisionEvent,
    SignalStrengthEvent,
    CommandAck,
    ProtocolErrorEvent,
]
