"""Command catalog, payload builders and frame encoder."""

from __future__ import annotations

import logging
import struct
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..exceptions import ProtocolError
from ..models.enums import ColorLED, DriveFlag, RollMode, Stance, V1DeviceId, V2Target
from .framing import Frame, PacketCodec

if TYPE_CHECKING:
    from ..session import ConnectionSession
    from .variants import ProtocolVariant

_LOGGER = logging.getLogger(__name__)


class Command(Enum):
    """Known commands, by name.

    Wire codes live in each variant's :class:`CommandCatalog`; two names
    may share one code there.
    """

    PING = "ping"
    GET_VERSION = "get_version"
    GET_POWER_STATE = "get_power_state"
    SET_POWER_NOTIFY = "set_power_notify"
    SLEEP = "sleep"
    SET_INACTIVE_TIMEOUT = "set_inactive_timeout"
    SET_HEADING = "set_heading"
    SET_STABILIZATION = "set_stabilization"
    SET_ROTATION_RATE = "set_rotation_rate"
    SET_DATA_STREAMING = "set_data_streaming"
    CONFIGURE_COLLISION_DETECTION = "configure_collision_detection"
    CONFIGURE_LOCATOR = "configure_locator"
    GET_LOCATOR_DATA = "get_locator_data"
    SET_RGB_LED = "set_rgb_led"
    SET_BACK_LED = "set_back_led"
    ROLL = "roll"
    BOOST = "boost"
    SET_OPTION_FLAGS = "set_option_flags"
    SET_NON_PERSISTENT_OPTION_FLAGS = "set_non_persistent_option_flags"

    GET_BATTERY_VOLTAGE = "get_battery_voltage"
    WAKE = "wake"
    DRIVE = "drive"
    SET_LED = "set_led"
    PLAY_ANIMATION = "play_animation"
    SET_STANCE = "set_stance"


@dataclass(frozen=True)
class CommandDescriptor:
    """Static wire description of one command.

    Attributes:
        target: Device id (v1) or target (v2) addressed
        command_id: Command id within the target
        synchronous: Whether the robot answers with an acknowledgment
        reset_timeout: Whether the command resets the inactivity timeout
    """

    target: int
    command_id: int
    synchronous: bool = True
    reset_timeout: bool = True


class CommandCatalog:
    """Mapping of command names to descriptors for one variant."""

    def __init__(self, descriptors: Mapping[Command, CommandDescriptor]):
        self._descriptors = dict(descriptors)

    def __contains__(self, command: object) -> bool:
        return command in self._descriptors

    def __iter__(self):
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __getitem__(self, command: Command) -> CommandDescriptor:
        try:
            return self._descriptors[command]
        except KeyError:
            raise ProtocolError(f"Command {command.name} is not supported") from None

    def lookup(self, target: int, command_id: int) -> tuple[Command, ...]:
        """Return every command name sharing one wire code."""
        return tuple(
            command
            for command, descriptor in self._descriptors.items()
            if (descriptor.target, descriptor.command_id) == (target, command_id)
        )

    def conflicts(self) -> dict[tuple[int, int], tuple[Command, ...]]:
        """Wire codes claimed by more than one command name."""
        by_code: dict[tuple[int, int], list[Command]] = {}
        for command, descriptor in self._descriptors.items():
            by_code.setdefault((descriptor.target, descriptor.command_id), []).append(command)
        return {code: tuple(names) for code, names in by_code.items() if len(names) > 1}


_CORE = V1DeviceId.CORE
_SPHERO = V1DeviceId.SPHERO

V1_COMMANDS = CommandCatalog({
    Command.PING: CommandDescriptor(_CORE, 0x01),
    Command.GET_VERSION: CommandDescriptor(_CORE, 0x02),
    Command.GET_POWER_STATE: CommandDescriptor(_CORE, 0x20),
    Command.SET_POWER_NOTIFY: CommandDescriptor(_CORE, 0x21),
    # both documented as 0x22
    Command.SLEEP: CommandDescriptor(_CORE, 0x22),
    Command.SET_INACTIVE_TIMEOUT: CommandDescriptor(_CORE, 0x22),
    Command.SET_HEADING: CommandDescriptor(_SPHERO, 0x01),
    Command.SET_STABILIZATION: CommandDescriptor(_SPHERO, 0x02),
    Command.SET_ROTATION_RATE: CommandDescriptor(_SPHERO, 0x03),
    Command.SET_DATA_STREAMING: CommandDescriptor(_SPHERO, 0x11, synchronous=False),
    Command.CONFIGURE_COLLISION_DETECTION: CommandDescriptor(_SPHERO, 0x12),
    Command.CONFIGURE_LOCATOR: CommandDescriptor(_SPHERO, 0x13),
    Command.GET_LOCATOR_DATA: CommandDescriptor(_SPHERO, 0x15),
    Command.SET_RGB_LED: CommandDescriptor(_SPHERO, 0x20),
    Command.SET_BACK_LED: CommandDescriptor(_SPHERO, 0x21),
    Command.ROLL: CommandDescriptor(_SPHERO, 0x30),
    Command.BOOST: CommandDescriptor(_SPHERO, 0x31),
    Command.SET_OPTION_FLAGS: CommandDescriptor(_SPHERO, 0x35),
    Command.SET_NON_PERSISTENT_OPTION_FLAGS: CommandDescriptor(_SPHERO, 0x37),
})

V2_COMMANDS = CommandCatalog({
    Command.PING: CommandDescriptor(V2Target.PING_PONG, 0x00),
    Command.GET_BATTERY_VOLTAGE: CommandDescriptor(V2Target.POWER, 0x03),
    Command.WAKE: CommandDescriptor(V2Target.POWER, 0x0D),
    Command.DRIVE: CommandDescriptor(V2Target.DRIVING, 0x07),
    Command.PLAY_ANIMATION: CommandDescriptor(V2Target.AV_CONTROL, 0x05),
    Command.SET_STANCE: CommandDescriptor(V2Target.AV_CONTROL, 0x0D),
    Command.SET_LED: CommandDescriptor(V2Target.AV_CONTROL, 0x0E),
})


def _check_u8(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} out of range: {value} (must be 0-255)")


def _check_u16(name: str, value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} out of range: {value} (must be 0-65535)")


def _check_u32(name: str, value: int) -> None:
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f"{name} out of range: {value} (must fit in 32 bits)")


def _check_i16(name: str, value: int) -> None:
    if not -0x8000 <= value <= 0x7FFF:
        raise ValueError(f"{name} out of range: {value} (must be -32768-32767)")


def _check_heading(value: int) -> None:
    if not 0 <= value <= 359:
        raise ValueError(f"heading out of range: {value} (must be 0-359)")


# -- v1 payloads ---------------------------------------------------------

def build_roll_payload(speed: int, heading: int, mode: RollMode = RollMode.ROLL) -> bytes:
    """Build the v1 roll payload.

    Args:
        speed: 0-255
        heading: Degrees, 0-359
        mode: Brake, roll or calibrate

    Returns:
        Payload bytes: [speed:1][heading:2][mode:1]
    """
    _check_u8("speed", speed)
    _check_heading(heading)
    return struct.pack(">BHB", speed, heading, int(mode))


def build_set_heading_payload(heading: int) -> bytes:
    """Build the set heading payload: [heading:2]."""
    _check_heading(heading)
    return struct.pack(">H", heading)


def build_set_rgb_led_payload(red: int, green: int, blue: int, persist: bool = False) -> bytes:
    """Build the v1 main LED payload.

    Format: [r:1][g:1][b:1][set_as_default:1]
    """
    for name, value in (("red", red), ("green", green), ("blue", blue)):
        _check_u8(name, value)
    return struct.pack(">BBBB", red, green, blue, 1 if persist else 0)


def build_set_back_led_payload(brightness: int) -> bytes:
    _check_u8("brightness", brightness)
    return struct.pack(">B", brightness)


def build_set_rotation_rate_payload(rate: int) -> bytes:
    """Build the set rotation rate payload: [rate:1], roughly 0.784 deg/s per unit."""
    _check_u8("rate", rate)
    return struct.pack(">B", rate)


def build_set_data_streaming_payload(
        source_mask: int = 0xFFFFFFFF,
        max_rate_divisor: int = 10,
        frames_per_packet: int = 1,
        packet_count: int = 0,
        source_mask_high: int | None = 0xFFFFFFFF,
) -> bytes:
    """Build the v1 data streaming payload.

    Args:
        source_mask: Sensor channel bitmask
        max_rate_divisor: Divisor of the 400 Hz sampling rate
        frames_per_packet: Samples per notification
        packet_count: Number of packets to send, 0 streams forever
        source_mask_high: Extended channel bitmask (firmware 1.17+),
            None to omit it

    Returns:
        Payload bytes: [divisor:2][frames:2][mask:4][count:1][mask_high:4]
    """
    _check_u16("max_rate_divisor", max_rate_divisor)
    _check_u16("frames_per_packet", frames_per_packet)
    _check_u32("source_mask", source_mask)
    _check_u8("packet_count", packet_count)
    payload = struct.pack(">HHIB", max_rate_divisor, frames_per_packet, source_mask, packet_count)
    if source_mask_high is not None:
        _check_u32("source_mask_high", source_mask_high)
        payload += struct.pack(">I", source_mask_high)
    return payload


def build_configure_collision_detection_payload(
        enabled: bool = True,
        threshold: tuple[int, int] = (100, 100),
        speed_threshold: tuple[int, int] = (1, 1),
        dead_time: int = 10,
) -> bytes:
    """Build the collision detection payload.

    Format: [method:1][xt:1][xs:1][yt:1][ys:1][dead:1]
    """
    values = (1 if enabled else 0, threshold[0], speed_threshold[0],
              threshold[1], speed_threshold[1], dead_time)
    for name, value in zip(("method", "x_threshold", "x_speed", "y_threshold", "y_speed", "dead_time"), values):
        _check_u8(name, value)
    return bytes(values)


def build_configure_locator_payload(flags: int = 0x01, x: int = 0, y: int = 0, yaw_tare: int = 0) -> bytes:
    """Build the configure locator payload: [flags:1][x:2][y:2][yaw_tare:2]."""
    _check_u8("flags", flags)
    for name, value in (("x", x), ("y", y), ("yaw_tare", yaw_tare)):
        _check_i16(name, value)
    return struct.pack(">Bhhh", flags, x, y, yaw_tare)


def build_set_option_flags_payload(flags: int) -> bytes:
    _check_u32("flags", flags)
    return struct.pack(">I", flags)


def build_set_non_persistent_option_flags_payload(flags: int) -> bytes:
    _check_u32("flags", flags)
    return struct.pack(">I", flags)


def build_boost_payload(duration: int, heading: int) -> bytes:
    """Build the boost payload.

    Args:
        duration: Tenths of a second, 0 boosts until stabilization is set
        heading: Degrees, 0-359
    """
    _check_u8("duration", duration)
    _check_heading(heading)
    return struct.pack(">BH", duration, heading)


def build_sleep_payload(wakeup_interval: int = 5, wake_macro: int = 0, script_line: int = 0) -> bytes:
    """Build the v1 go-to-sleep payload: [interval:2][macro:1][line:2].

    A wakeup interval of 0 sleeps until woken by the charger.
    """
    _check_u16("wakeup_interval", wakeup_interval)
    _check_u8("wake_macro", wake_macro)
    _check_u16("script_line", script_line)
    return struct.pack(">HBH", wakeup_interval, wake_macro, script_line)


def build_set_inactive_timeout_payload(seconds: int) -> bytes:
    _check_u16("seconds", seconds)
    return struct.pack(">H", seconds)


def build_set_stabilization_payload(enabled: bool) -> bytes:
    return struct.pack(">B", 1 if enabled else 0)


def build_set_power_notify_payload(enabled: bool) -> bytes:
    return struct.pack(">B", 1 if enabled else 0)


# -- v2 payloads ---------------------------------------------------------

def build_drive_payload(speed: int, heading: int, flags: DriveFlag = DriveFlag.NONE) -> bytes:
    """Build the v2 drive-with-heading payload: [speed:1][heading:2][flags:1]."""
    _check_u8("speed", speed)
    _check_heading(heading)
    return struct.pack(">BHB", speed, heading, int(flags))


def build_set_led_payload(led: ColorLED | int, red: int, green: int, blue: int) -> bytes:
    """Build the v2 LED payload.

    Format: [led_mask:2][r:1][g:1][b:1][pad:1]
    """
    _check_u16("led", int(led))
    for name, value in (("red", red), ("green", green), ("blue", blue)):
        _check_u8(name, value)
    return struct.pack(">HBBBB", int(led), red, green, blue, 0xFF)


def build_play_animation_payload(animation: int) -> bytes:
    _check_u16("animation", animation)
    return struct.pack(">H", animation)


def build_set_stance_payload(stance: Stance) -> bytes:
    return struct.pack(">B", int(stance))


class CommandEncoder:
    """Turns command intents into wire frames for one variant.

    Delivery is at-most-once: no acknowledgment is awaited or tracked here.
    """

    def __init__(self, variant: ProtocolVariant):
        self.variant = variant
        self.codec = PacketCodec(variant)

    def build(
            self,
            session: ConnectionSession,
            target: int,
            command_id: int,
            payload: bytes = b"",
            synchronous: bool = True,
            reset_timeout: bool = True,
    ) -> bytes:
        """Encode one command using the session's next sequence number.

        Args:
            session: Session owning the sequence counter
            target: Device id / target
            command_id: Command id
            payload: Command data
            synchronous: Request an acknowledgment
            reset_timeout: Reset the robot's inactivity timeout

        Returns:
            Encoded frame bytes

        Raises:
            ProtocolError: If the session uses another variant
        """
        if session.variant is not self.variant:
            raise ProtocolError(
                f"Session variant {session.variant.name} does not match encoder variant {self.variant.name}"
            )
        flags = 0
        if synchronous:
            flags |= self.variant.synchronous_flag
        if reset_timeout:
            flags |= self.variant.reset_timeout_flag

        frame = Frame(
            target=target,
            command_id=command_id,
            flags=flags,
            sequence_number=session.next_sequence_number(),
            payload=payload,
        )
        data = self.codec.encode(frame)
        _LOGGER.debug(
            "Encoded command 0x%02x/0x%02x seq=%d: %s",
            target, command_id, frame.sequence_number, data.hex(),
        )
        return data

    def build_command(self, session: ConnectionSession, command: Command, payload: bytes = b"") -> bytes:
        """Encode a catalog command with its declared flags."""
        descriptor = self.variant.commands[command]
        return self.build(
            session,
            descriptor.target,
            descriptor.command_id,
            payload,
            synchronous=descriptor.synchronous,
            reset_timeout=descriptor.reset_timeout,
        )
