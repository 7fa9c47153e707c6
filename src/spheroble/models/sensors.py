"""Typed status and sensor records decoded from response payloads.

All multi-byte fields are big-endian. Values are reported in the device's
raw units; no scaling or unit conversion happens here.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from ..exceptions import InvalidResponseError
from .enums import PowerState


def _check_size(name: str, data: bytes, expected: int) -> None:
    if len(data) != expected:
        raise InvalidResponseError(
            f"{name} payload must be exactly {expected} bytes, got {len(data)}"
        )


def _power_state(raw: int) -> PowerState | int:
    try:
        return PowerState(raw)
    except ValueError:
        return raw


@dataclass(frozen=True, slots=True)
class Vector2:
    x: int
    y: int


@dataclass(frozen=True, slots=True)
class Vector3:
    x: int
    y: int
    z: int


@dataclass(frozen=True, slots=True)
class MotorPair:
    left: int
    right: int


@dataclass(frozen=True, slots=True)
class Attitude:
    """IMU angles in degrees, -179 to 180."""

    pitch: int
    roll: int
    yaw: int


@dataclass(frozen=True, slots=True)
class Quaternion:
    """Orientation quaternion in 1/10000 units."""

    q0: int
    q1: int
    q2: int
    q3: int


@dataclass(frozen=True, slots=True)
class PowerStatus:
    """Battery status.

    The v1 power state record carries every field; v2 battery voltage
    answers only carry the voltage.

    Attributes:
        voltage: Battery voltage in hundredths of a volt
        state: Charge state (raw int if the firmware reports an unknown one)
        record_version: Layout version of the v1 record
        charge_count: Number of recharges over the battery lifetime
        seconds_since_charge: Seconds awake since the last recharge
    """

    voltage: int
    state: PowerState | int | None = None
    record_version: int | None = None
    charge_count: int | None = None
    seconds_since_charge: int | None = None

    SIZE = 8

    @property
    def volts(self) -> float:
        return self.voltage / 100.0

    @classmethod
    def from_bytes(cls, data: bytes) -> PowerStatus:
        """Parse the 8-byte v1 power state record.

        Format: [version:1][state:1][voltage:2][charges:2][seconds:2]
        """
        _check_size("Power state", data, cls.SIZE)
        version, state, voltage, charges, seconds = struct.unpack(">BBHHH", data)
        return cls(
            voltage=voltage,
            state=_power_state(state),
            record_version=version,
            charge_count=charges,
            seconds_since_charge=seconds,
        )

    @classmethod
    def from_voltage(cls, data: bytes) -> PowerStatus:
        """Parse a 2-byte v2 battery voltage answer."""
        _check_size("Battery voltage", data, 2)
        return cls(voltage=struct.unpack(">H", data)[0])

    @classmethod
    def from_notification(cls, data: bytes) -> PowerStatus:
        """Parse a 1-byte v1 power notification (state only, no voltage)."""
        _check_size("Power notification", data, 1)
        return cls(voltage=0, state=_power_state(data[0]))


@dataclass(frozen=True, slots=True)
class LocatorData:
    """Position on the locator plane and tilt against it.

    Format: [flags:1][x:2][y:2][tilt:2], signed 16-bit coordinates.
    """

    flags: int
    position: Vector2
    tilt: int

    SIZE = 7
    CALIBRATED = 0x01  # tilt is corrected automatically

    @property
    def calibrated(self) -> bool:
        return bool(self.flags & self.CALIBRATED)

    @classmethod
    def from_bytes(cls, data: bytes) -> LocatorData:
        _check_size("Locator", data, cls.SIZE)
        flags, x, y, tilt = struct.unpack(">Bhhh", data)
        return cls(flags=flags, position=Vector2(x, y), tilt=tilt)


# 41 signed 16-bit channels with every source mask bit enabled
_SENSOR_STREAM = struct.Struct(">41h")


@dataclass(frozen=True, slots=True)
class SensorStreamSample:
    """One frame of the v1 data streaming notification.

    Raw ranges, as documented: accelerometer_raw/gyro_raw -2048..2047,
    accelerometer 1/4096 G, gyro 0.1 dps, quaternion 1/10000, velocity mm/s.
    """

    accelerometer_raw: Vector3
    gyro_raw: Vector3
    motor_emf_raw: MotorPair
    motor_pwm_raw: MotorPair
    attitude: Attitude
    accelerometer: Vector3
    gyro: Vector3
    motor_emf: MotorPair
    quaternion: Quaternion
    odometer: Vector2
    acceleration: int
    velocity: Vector2

    SIZE = _SENSOR_STREAM.size

    @classmethod
    def from_bytes(cls, data: bytes) -> SensorStreamSample:
        _check_size("Sensor stream", data, cls.SIZE)
        v = _SENSOR_STREAM.unpack(data)
        # channels 6-8, 22-24 and 27-31 are unused
        return cls(
            accelerometer_raw=Vector3(*v[0:3]),
            gyro_raw=Vector3(*v[3:6]),
            motor_emf_raw=MotorPair(*v[9:11]),
            motor_pwm_raw=MotorPair(*v[11:13]),
            attitude=Attitude(*v[13:16]),
            accelerometer=Vector3(*v[16:19]),
            gyro=Vector3(*v[19:22]),
            motor_emf=MotorPair(*v[25:27]),
            quaternion=Quaternion(*v[32:36]),
            odometer=Vector2(*v[36:38]),
            acceleration=v[38],
            velocity=Vector2(*v[39:41]),
        )


@dataclass(frozen=True, slots=True)
class CollisionData:
    """Collision detected by the v1 firmware.

    Format: [x:2][y:2][z:2][axis:1][x_mag:2][y_mag:2][speed:1][timestamp:4]
    """

    impact: Vector3
    axis: int
    magnitude: Vector2
    speed: int
    timestamp: int

    SIZE = 16

    @classmethod
    def from_bytes(cls, data: bytes) -> CollisionData:
        _check_size("Collision", data, cls.SIZE)
        x, y, z, axis, x_mag, y_mag, speed, timestamp = struct.unpack(">hhhBhhBI", data)
        return cls(
            impact=Vector3(x, y, z),
            axis=axis,
            magnitude=Vector2(x_mag, y_mag),
            speed=speed,
            timestamp=timestamp,
        )
