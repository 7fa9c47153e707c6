"""Test response decoders, the decoder registry and event dispatch."""

import dataclasses
import struct

import pytest

from spheroble.exceptions import (
    AmbiguousResponseTypeError,
    ChecksumError,
    FramingError,
    InvalidResponseError,
    UnknownResponseTypeError,
)
from spheroble.models.enums import PowerState, ResponseKind
from spheroble.models.events import (
    CollisionEvent,
    CommandAck,
    LocatorEvent,
    PowerStateEvent,
    ProtocolErrorEvent,
    SensorStreamEvent,
)
from spheroble.models.sensors import LocatorData, PowerStatus, SensorStreamSample, Vector2
from spheroble.protocol.framing import PacketCodec, ResponseFrame
from spheroble.protocol.responses import DecoderRegistry, ResponseDispatcher, decode_locator
from spheroble.protocol.variants import V1, V2

V1_CODEC = PacketCodec(V1)
V2_CODEC = PacketCodec(V2)


def v1_ack(payload: bytes, code: int = 0, seq: int = 4) -> bytes:
    return V1_CODEC.encode_response(ResponseFrame(ResponseKind.ACK, code, seq, payload))


def v1_notification(notification_id: int, payload: bytes) -> bytes:
    return V1_CODEC.encode_response(ResponseFrame(ResponseKind.NOTIFICATION, notification_id, None, payload))


class TestSensorRecords:
    """Test payload parsing of typed records."""

    def test_power_state(self):
        status = PowerStatus.from_bytes(bytes.fromhex("010202bc0005012c"))

        assert status.record_version == 1
        assert status.state is PowerState.OK
        assert status.voltage == 700
        assert status.volts == pytest.approx(7.0)
        assert status.charge_count == 5
        assert status.seconds_since_charge == 300

    def test_power_state_unknown_state(self):
        status = PowerStatus.from_bytes(bytes.fromhex("010902bc0005012c"))
        assert status.state == 9

    def test_power_state_wrong_size(self):
        with pytest.raises(InvalidResponseError, match="exactly 8 bytes, got 7"):
            PowerStatus.from_bytes(bytes(7))

    def test_locator_signed_coordinates(self):
        locator = LocatorData.from_bytes(b"\x01\xff\xf6\x00\x14\x00\x03")

        assert locator.position == Vector2(-10, 20)
        assert locator.tilt == 3
        assert locator.calibrated is True

    def test_battery_voltage(self):
        assert PowerStatus.from_voltage(b"\x01\x9a").voltage == 410

    def test_sensor_stream_size(self):
        assert SensorStreamSample.SIZE == 82


class TestDecoderRegistry:
    """Test registration and conflict handling."""

    def test_resolve_single(self):
        registry = DecoderRegistry()
        registry.register("key", "locator", decode_locator)

        assert registry.resolve("key").name == "locator"

    def test_resolve_missing(self):
        assert DecoderRegistry().resolve("key") is None

    def test_duplicate_name_rejected(self):
        registry = DecoderRegistry()
        registry.register("key", "locator", decode_locator)

        with pytest.raises(ValueError, match="already registered"):
            registry.register("key", "locator", decode_locator)

    def test_conflict_is_recorded(self):
        """Two names on one code are both kept, never silently replaced."""
        registry = DecoderRegistry()
        registry.register(83, "rival_a", decode_locator)
        registry.register(83, "rival_b", decode_locator)

        assert registry.conflicts() == {83: ("rival_a", "rival_b")}

    def test_conflict_without_context_is_ambiguous(self):
        registry = DecoderRegistry()
        registry.register(83, "rival_a", decode_locator)
        registry.register(83, "rival_b", decode_locator)

        with pytest.raises(AmbiguousResponseTypeError) as excinfo:
            registry.resolve(83)

        assert excinfo.value.candidates == ("rival_a", "rival_b")

    def test_conflict_resolved_by_context(self):
        registry = DecoderRegistry()
        registry.register(83, "rival_a", decode_locator)
        registry.register(83, "rival_b", decode_locator)

        assert registry.resolve(83, context="rival_b").name == "rival_b"

    def test_unmatched_context(self):
        registry = DecoderRegistry()
        registry.register(83, "rival_a", decode_locator)

        with pytest.raises(UnknownResponseTypeError):
            registry.resolve(83, context="rival_c")

    def test_builtin_variants_have_no_conflicts(self):
        assert V1.decoders.conflicts() == {}
        assert V2.decoders.conflicts() == {}


class TestV1Dispatch:
    """Test dispatch of v1 acknowledgments and notifications."""

    def test_locator_ack(self):
        """FF FF 00 04 08 <7 bytes> chk decodes to a locator event."""
        data = bytes.fromhex("ffff00040801001000200005bd")

        event = ResponseDispatcher(V1).dispatch(data)

        assert isinstance(event, LocatorEvent)
        assert event.sequence_number == 4
        assert event.locator.flags == 1
        assert event.locator.position == Vector2(16, 32)
        assert event.locator.tilt == 5

    def test_power_state_ack(self):
        event = ResponseDispatcher(V1).dispatch(v1_ack(bytes.fromhex("010202bc0005012c"), seq=9))

        assert isinstance(event, PowerStateEvent)
        assert event.sequence_number == 9
        assert event.status.voltage == 700

    def test_ack_without_decoder(self):
        event = ResponseDispatcher(V1).dispatch(v1_ack(b"", seq=3))

        assert event == CommandAck(sequence_number=3, code=0)
        assert event.ok

    def test_ack_with_unknown_payload_size(self):
        event = ResponseDispatcher(V1).dispatch(v1_ack(b"\x01\x02", seq=3))

        assert isinstance(event, CommandAck)
        assert event.payload == b"\x01\x02"

    def test_error_code_is_never_decoded(self):
        """A failed ack carries no record even when its size matches one."""
        event = ResponseDispatcher(V1).dispatch(v1_ack(bytes(7), code=0x07))

        assert isinstance(event, CommandAck)
        assert event.code == 0x07
        assert not event.ok

    def test_error_names(self):
        dispatcher = ResponseDispatcher(V1)

        assert dispatcher.error_name(0x07) == "INVALID_PARAMETER"
        assert dispatcher.error_name(0x99) == "0x99"
        assert ResponseDispatcher(V2).error_name(0x05) == "BAD_DATA_LENGTH"

    def test_power_notification(self):
        event = ResponseDispatcher(V1).dispatch(bytes.fromhex("fffe01000202fa"))

        assert isinstance(event, PowerStateEvent)
        assert event.status.state is PowerState.OK
        assert event.sequence_number is None

    def test_sensor_stream_notification(self):
        values = list(range(41))
        values[13:16] = [-90, 45, 180]
        payload = struct.pack(">41h", *values)

        event = ResponseDispatcher(V1).dispatch(v1_notification(0x03, payload))

        assert isinstance(event, SensorStreamEvent)
        assert event.sample.accelerometer_raw.x == 0
        assert event.sample.attitude.pitch == -90
        assert event.sample.attitude.yaw == 180
        assert event.sample.velocity.y == 40

    def test_collision_notification(self):
        payload = struct.pack(">hhhBhhBI", -100, 200, 0, 0x01, 50, -50, 30, 123456)

        event = ResponseDispatcher(V1).dispatch(v1_notification(0x07, payload))

        assert isinstance(event, CollisionEvent)
        assert event.collision.impact.x == -100
        assert event.collision.magnitude == Vector2(50, -50)
        assert event.collision.timestamp == 123456

    def test_unknown_notification(self):
        event = ResponseDispatcher(V1).dispatch(v1_notification(0x0B, b"\x00"))

        assert isinstance(event, ProtocolErrorEvent)
        assert isinstance(event.error, UnknownResponseTypeError)

    def test_invalid_payload_size(self):
        event = ResponseDispatcher(V1).dispatch(v1_notification(0x07, bytes(10)))

        assert isinstance(event, ProtocolErrorEvent)
        assert isinstance(event.error, InvalidResponseError)

    def test_checksum_error(self):
        data = bytearray(bytes.fromhex("ffff00040801001000200005bd"))
        data[-1] ^= 0x01

        event = ResponseDispatcher(V1).dispatch(bytes(data))

        assert isinstance(event, ProtocolErrorEvent)
        assert isinstance(event.error, ChecksumError)
        assert event.raw == bytes(data)

    def test_framing_error(self):
        event = ResponseDispatcher(V1).dispatch(b"\xff\x00\x00\x00\x01\xff")

        assert isinstance(event, ProtocolErrorEvent)
        assert isinstance(event.error, FramingError)

    def test_conflicting_decoders_need_context(self):
        decoders = DecoderRegistry()
        decoders.register((ResponseKind.NOTIFICATION, 83), "rival_a", lambda r: CommandAck(None, 0, r.payload))
        decoders.register((ResponseKind.NOTIFICATION, 83), "rival_b", lambda r: CommandAck(None, 1, r.payload))
        dispatcher = ResponseDispatcher(dataclasses.replace(V1, decoders=decoders))
        data = v1_notification(83, b"\x00")

        ambiguous = dispatcher.dispatch(data)
        resolved = dispatcher.dispatch(data, context="rival_b")

        assert isinstance(ambiguous, ProtocolErrorEvent)
        assert isinstance(ambiguous.error, AmbiguousResponseTypeError)
        assert resolved == CommandAck(None, 1, b"\x00")


class TestV2Dispatch:
    """Test dispatch of escaped v2 responses."""

    def test_battery_voltage(self):
        data = V2_CODEC.encode_response(
            ResponseFrame(ResponseKind.ACK, 0, 1, b"\x01\x9a", target=0x13, command_id=0x03)
        )

        event = ResponseDispatcher(V2).dispatch(data)

        assert isinstance(event, PowerStateEvent)
        assert event.status.voltage == 410
        assert event.sequence_number == 1

    def test_battery_voltage_with_stuffed_payload(self):
        data = V2_CODEC.encode_response(
            ResponseFrame(ResponseKind.ACK, 0, 1, b"\xab\x8d", target=0x13, command_id=0x03)
        )

        event = ResponseDispatcher(V2).dispatch(data)

        assert event.status.voltage == 0xAB8D

    def test_ack_echoes_target_and_command(self):
        data = V2_CODEC.encode_response(
            ResponseFrame(ResponseKind.ACK, 0, 7, b"", target=0x12, command_id=0x07)
        )

        event = ResponseDispatcher(V2).dispatch(data)

        assert event == CommandAck(sequence_number=7, code=0, target=0x12, command_id=0x07)

    def test_error_response(self):
        data = V2_CODEC.encode_response(
            ResponseFrame(ResponseKind.ACK, 0x05, 2, b"", target=0x13, command_id=0x03)
        )

        event = ResponseDispatcher(V2).dispatch(data)

        assert isinstance(event, CommandAck)
        assert event.code == 0x05

    def test_unknown_notification(self):
        data = V2_CODEC.encode_response(
            ResponseFrame(ResponseKind.NOTIFICATION, None, 0, b"\x01", target=0x18, command_id=0x02)
        )

        event = ResponseDispatcher(V2).dispatch(data)

        assert isinstance(event, ProtocolErrorEvent)
        assert isinstance(event.error, UnknownResponseTypeError)

    def test_unterminated_frame(self):
        event = ResponseDispatcher(V2).dispatch(b"\x8d\x01\x13\x03\x01\x00")

        assert isinstance(event, ProtocolErrorEvent)
        assert isinstance(event.error, FramingError)
