"""Per-family protocol configuration.

Everything that differs between the two robot generations lives in a
:class:`ProtocolVariant`; the codec, reassembler, dispatcher and state
machine read these values and never test for a family by name.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from ..models.enums import (
    ResponseKind,
    V1Flag,
    V1NotificationId,
    V1ResponseCode,
    V2ErrorCode,
    V2Flag,
    V2Target,
)
from ..models.sensors import LocatorData, PowerStatus
from .commands import V1_COMMANDS, V2_COMMANDS, Command, CommandCatalog
from .framing import START_OF_PACKET, ResponseFrame
from .responses import (
    DecoderRegistry,
    decode_battery_voltage,
    decode_collision,
    decode_locator,
    decode_power_notification,
    decode_power_state,
    decode_sensor_stream,
)


def _v1_uuid(short: str) -> str:
    return f"22bb746f-{short}-7554-2d6f-726568705327"


def _v2_uuid(short: str) -> str:
    return f"{short}-574f-4f20-5370-6865726f2121"


# v1 radio service (unlock and radio settings)
V1_RADIO_SERVICE_UUID: Final = _v1_uuid("2bb0")
V1_ANTI_DOS_UUID: Final = _v1_uuid("2bbd")
V1_TX_POWER_UUID: Final = _v1_uuid("2bb2")
V1_RSSI_UUID: Final = _v1_uuid("2bb6")
V1_WAKE_UUID: Final = _v1_uuid("2bbf")

# v1 control service
V1_CONTROL_SERVICE_UUID: Final = _v1_uuid("2ba0")
V1_COMMANDS_UUID: Final = _v1_uuid("2ba1")
V1_RESPONSES_UUID: Final = _v1_uuid("2ba6")

# v2 services
V2_API_SERVICE_UUID: Final = _v2_uuid("00010001")
V2_API_CHARACTERISTIC_UUID: Final = _v2_uuid("00010002")
V2_DFU_SERVICE_UUID: Final = _v2_uuid("00020001")
V2_ANTI_DOS_UUID: Final = _v2_uuid("00020005")

V1_UNLOCK_CODE: Final = b"011i3"
V1_TX_POWER: Final = b"\x07"
V1_WAKE: Final = b"\x01"
V2_UNLOCK_CODE: Final = b"usetheforce...band"


@dataclass(frozen=True)
class HandshakeStep:
    """One write of the unlock sequence."""

    service_uuid: str
    characteristic_uuid: str
    payload: bytes
    description: str = ""


ResponseKey = Callable[[ResponseFrame], Hashable]


def v1_response_key(response: ResponseFrame) -> Hashable:
    """Registry key of a v1 response.

    v1 acknowledgments do not echo the command id, so the documented fixed
    payload size selects their layout.
    """
    if response.kind is ResponseKind.ACK:
        return (ResponseKind.ACK, len(response.payload))
    return (ResponseKind.NOTIFICATION, response.code)


def v2_response_key(response: ResponseFrame) -> Hashable:
    return (response.kind, response.target, response.command_id)


@dataclass(frozen=True)
class ProtocolVariant:
    """Wire layout, GATT layout and catalogs of one robot family.

    Attributes:
        name: Family name
        escaped: Frames are byte-stuffed and wrapped in start/end markers
        header_size: Command header bytes before the payload (markers excluded)
        checksum_start: Offset of the first checksummed byte
        magic: Leading byte of plain frames
        flag_prefix: Fixed bits ORed into the plain flags byte
        flag_mask: Flag bits a plain frame may carry
        ack_marker: Second byte of plain acknowledgments
        notification_marker: Second byte of plain notifications
        synchronous_flag: Flag bit requesting an acknowledgment
        reset_timeout_flag: Flag bit resetting the inactivity timeout
        response_flag: Flag bit marking escaped responses
        target_node_flag: Flag bit announcing a target node byte
        source_node_flag: Flag bit announcing a source node byte
        two_byte_flag: Flag bit announcing a second flags byte
        start_markers: Byte sequences that begin an inbound frame
        prompt_artifacts: Non-frame prefixes stripped from chunks
        control_service_uuid: Service holding the command characteristics
        command_characteristic_uuid: Write target for commands
        response_characteristic_uuid: Notification source for responses
        signal_strength_service_uuid: Service holding the RSSI characteristic
        signal_strength_characteristic_uuid: Optional RSSI notification source
        handshake: Ordered unlock writes
        commands: Command catalog
        decoders: Response decoder registry
        response_key: Maps a response to its registry key
        error_codes: Names of the acknowledgment error codes
        baseline_query: Status query sent on entering READY
        power_query: Command asking for battery status
        name_prefixes: Advertised name prefixes of the family
    """

    name: str
    escaped: bool
    header_size: int
    checksum_start: int
    magic: int | None
    flag_prefix: int
    flag_mask: int
    ack_marker: int | None
    notification_marker: int | None
    synchronous_flag: int
    reset_timeout_flag: int
    response_flag: int
    target_node_flag: int
    source_node_flag: int
    two_byte_flag: int
    start_markers: tuple[bytes, ...]
    prompt_artifacts: tuple[bytes, ...]
    control_service_uuid: str
    command_characteristic_uuid: str
    response_characteristic_uuid: str
    signal_strength_service_uuid: str | None
    signal_strength_characteristic_uuid: str | None
    handshake: tuple[HandshakeStep, ...]
    commands: CommandCatalog
    decoders: DecoderRegistry
    response_key: ResponseKey
    error_codes: type[IntEnum]
    baseline_query: Command
    power_query: Command
    name_prefixes: tuple[str, ...]

    @property
    def min_frame_size(self) -> int:
        """Smallest valid frame: header plus checksum (markers excluded)."""
        return self.header_size + 1

    def __repr__(self) -> str:
        return f"ProtocolVariant({self.name!r})"


def _v1_decoders() -> DecoderRegistry:
    # No key here has two names. Codes documented twice (response type 83
    # is both a checksum debug dump and "sensor stuck") are registered under
    # both names, and dispatch then needs context= to pick one.
    registry = DecoderRegistry()
    registry.register((ResponseKind.ACK, PowerStatus.SIZE), "power_state", decode_power_state)
    registry.register((ResponseKind.ACK, LocatorData.SIZE), "locator", decode_locator)
    registry.register((ResponseKind.NOTIFICATION, V1NotificationId.POWER), "power", decode_power_notification)
    registry.register(
        (ResponseKind.NOTIFICATION, V1NotificationId.SENSOR_STREAM), "sensor_stream", decode_sensor_stream
    )
    registry.register((ResponseKind.NOTIFICATION, V1NotificationId.COLLISION), "collision", decode_collision)
    return registry


def _v2_decoders() -> DecoderRegistry:
    registry = DecoderRegistry()
    registry.register((ResponseKind.ACK, V2Target.POWER, 0x03), "battery_voltage", decode_battery_voltage)
    return registry


V1 = ProtocolVariant(
    name="v1",
    escaped=False,
    header_size=6,
    checksum_start=2,
    magic=0xFF,
    flag_prefix=0xFC,
    flag_mask=int(V1Flag.SYNCHRONOUS | V1Flag.RESET_TIMEOUT),
    ack_marker=0xFF,
    notification_marker=0xFE,
    synchronous_flag=int(V1Flag.SYNCHRONOUS),
    reset_timeout_flag=int(V1Flag.RESET_TIMEOUT),
    response_flag=0,
    target_node_flag=0,
    source_node_flag=0,
    two_byte_flag=0,
    start_markers=(b"\xff\xff", b"\xff\xfe"),
    prompt_artifacts=(b"\r\n>",),
    control_service_uuid=V1_CONTROL_SERVICE_UUID,
    command_characteristic_uuid=V1_COMMANDS_UUID,
    response_characteristic_uuid=V1_RESPONSES_UUID,
    signal_strength_service_uuid=V1_RADIO_SERVICE_UUID,
    signal_strength_characteristic_uuid=V1_RSSI_UUID,
    handshake=(
        HandshakeStep(V1_RADIO_SERVICE_UUID, V1_ANTI_DOS_UUID, V1_UNLOCK_CODE, "anti-DoS unlock"),
        HandshakeStep(V1_RADIO_SERVICE_UUID, V1_TX_POWER_UUID, V1_TX_POWER, "TX power"),
        HandshakeStep(V1_RADIO_SERVICE_UUID, V1_WAKE_UUID, V1_WAKE, "wake"),
    ),
    commands=V1_COMMANDS,
    decoders=_v1_decoders(),
    response_key=v1_response_key,
    error_codes=V1ResponseCode,
    baseline_query=Command.GET_LOCATOR_DATA,
    power_query=Command.GET_POWER_STATE,
    name_prefixes=("BB-", "SK-", "2B-"),
)

V2 = ProtocolVariant(
    name="v2",
    escaped=True,
    header_size=4,
    checksum_start=0,
    magic=None,
    flag_prefix=0,
    flag_mask=0x7F,
    ack_marker=None,
    notification_marker=None,
    synchronous_flag=int(V2Flag.SYNCHRONOUS),
    reset_timeout_flag=int(V2Flag.RESET_TIMEOUT),
    response_flag=int(V2Flag.IS_RESPONSE),
    target_node_flag=int(V2Flag.HAS_TARGET_NODE),
    source_node_flag=int(V2Flag.HAS_SOURCE_NODE),
    two_byte_flag=int(V2Flag.TWO_BYTE_FLAGS),
    start_markers=(bytes([START_OF_PACKET]),),
    prompt_artifacts=(),
    control_service_uuid=V2_API_SERVICE_UUID,
    command_characteristic_uuid=V2_API_CHARACTERISTIC_UUID,
    response_characteristic_uuid=V2_API_CHARACTERISTIC_UUID,
    signal_strength_service_uuid=None,
    signal_strength_characteristic_uuid=None,
    handshake=(
        HandshakeStep(V2_DFU_SERVICE_UUID, V2_ANTI_DOS_UUID, V2_UNLOCK_CODE, "anti-DoS unlock"),
    ),
    commands=V2_COMMANDS,
    decoders=_v2_decoders(),
    response_key=v2_response_key,
    error_codes=V2ErrorCode,
    baseline_query=Command.GET_BATTERY_VOLTAGE,
    power_query=Command.GET_BATTERY_VOLTAGE,
    name_prefixes=("SM-", "GB-", "D2-", "SB-", "LM-"),
)

VARIANTS: Final = (V1, V2)


def select_variant(name: str | None) -> ProtocolVariant | None:
    """Pick the variant for an advertised device name.

    Args:
        name: BLE local name, e.g. "BB-1234" or "SM-ABCD"

    Returns:
        Matching variant, or None if the name matches no family
    """
    if not name:
        return None
    for variant in VARIANTS:
        if name.startswith(variant.name_prefixes):
            return variant
    return None
