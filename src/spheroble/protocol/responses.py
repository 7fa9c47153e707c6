"""Response decoding and dispatch to typed events."""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..exceptions import (
    AmbiguousResponseTypeError,
    DecodeError,
    InvalidResponseError,
    UnknownResponseTypeError,
)
from ..models.enums import ResponseKind
from ..models.events import (
    CollisionEvent,
    CommandAck,
    Event,
    LocatorEvent,
    PowerStateEvent,
    ProtocolErrorEvent,
    SensorStreamEvent,
)
from ..models.sensors import CollisionData, LocatorData, PowerStatus, SensorStreamSample
from .framing import PacketCodec, ResponseFrame

if TYPE_CHECKING:
    from .variants import ProtocolVariant

_LOGGER = logging.getLogger(__name__)

Decoder = Callable[[ResponseFrame], Event]


def decode_power_state(response: ResponseFrame) -> PowerStateEvent:
    """Decode the 8-byte v1 power state answer.

    Raises:
        InvalidResponseError: If the payload has the wrong size
    """
    return PowerStateEvent(PowerStatus.from_bytes(response.payload), response.sequence_number)


def decode_power_notification(response: ResponseFrame) -> PowerStateEvent:
    return PowerStateEvent(PowerStatus.from_notification(response.payload))


def decode_battery_voltage(response: ResponseFrame) -> PowerStateEvent:
    return PowerStateEvent(PowerStatus.from_voltage(response.payload), response.sequence_number)


def decode_locator(response: ResponseFrame) -> LocatorEvent:
    """Decode the 7-byte locator answer (flags, x, y, tilt)."""
    return LocatorEvent(LocatorData.from_bytes(response.payload), response.sequence_number)


def decode_sensor_stream(response: ResponseFrame) -> SensorStreamEvent:
    return SensorStreamEvent(SensorStreamSample.from_bytes(response.payload))


def decode_collision(response: ResponseFrame) -> CollisionEvent:
    return CollisionEvent(CollisionData.from_bytes(response.payload))


@dataclass(frozen=True)
class DecoderEntry:
    name: str
    decoder: Decoder


class DecoderRegistry:
    """Payload decoders keyed by response type.

    Two names registered on one key are kept side by side as a conflict;
    the registry never picks one of them on its own.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, list[DecoderEntry]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, key: Hashable, name: str, decoder: Decoder) -> None:
        """Register a decoder for a response type.

        Args:
            key: Response type key, as produced by the variant
            name: Name of the response type
            decoder: Callable turning a response frame into an event

        Raises:
            ValueError: If the name is already registered on this key
        """
        entries = self._entries.setdefault(key, [])
        if any(entry.name == name for entry in entries):
            raise ValueError(f"Decoder {name} already registered for {key!r}")
        if entries:
            _LOGGER.debug(
                "Response type %r claimed by %s and %s",
                key, ", ".join(entry.name for entry in entries), name,
            )
        entries.append(DecoderEntry(name, decoder))

    def resolve(self, key: Hashable, context: str | None = None) -> DecoderEntry | None:
        """Find the decoder for a response type.

        Args:
            key: Response type key
            context: Name of the expected response type, used to pick
                between conflicting registrations

        Returns:
            The matching entry, or None if nothing is registered on key

        Raises:
            AmbiguousResponseTypeError: Several entries and no context picks one
            UnknownResponseTypeError: Context names no entry on this key
        """
        entries = self._entries.get(key)
        if not entries:
            return None
        if context is not None:
            for entry in entries:
                if entry.name == context:
                    return entry
            raise UnknownResponseTypeError(f"No decoder {context} for response type {key!r}")
        if len(entries) > 1:
            raise AmbiguousResponseTypeError(key, tuple(entry.name for entry in entries))
        return entries[0]

    def conflicts(self) -> dict[Hashable, tuple[str, ...]]:
        """Keys claimed by more than one response type name."""
        return {
            key: tuple(entry.name for entry in entries)
            for key, entries in self._entries.items()
            if len(entries) > 1
        }


class ResponseDispatcher:
    """Validates candidate frames and turns them into events.

    Malformed input never raises out of :meth:`dispatch`; every problem is
    reported as a :class:`ProtocolErrorEvent`.
    """

    def __init__(self, variant: ProtocolVariant):
        self.variant = variant
        self.codec = PacketCodec(variant)

    def dispatch(self, candidate: bytes, context: str | None = None) -> Event:
        """Decode one candidate frame.

        Args:
            candidate: Complete frame from the reassembler
            context: Expected response type name, for conflicting keys

        Returns:
            Typed event, CommandAck or ProtocolErrorEvent
        """
        try:
            response = self.codec.decode_response(candidate)
        except DecodeError as e:
            _LOGGER.warning("Dropping invalid frame %s: %s", candidate.hex(), e)
            return ProtocolErrorEvent(e, candidate)

        _LOGGER.debug("Received %s code=%s seq=%s (%d bytes)",
                      response.kind.value, response.code, response.sequence_number, len(response.payload))

        if response.kind is ResponseKind.ACK and response.code:
            _LOGGER.warning(
                "Command seq=%s failed: %s", response.sequence_number, self.error_name(response.code)
            )
            return self._ack(response)

        key = self.variant.response_key(response)
        try:
            entry = self.variant.decoders.resolve(key, context)
        except (AmbiguousResponseTypeError, UnknownResponseTypeError) as e:
            _LOGGER.warning("Cannot decode response: %s", e)
            return ProtocolErrorEvent(e, candidate)

        if entry is None:
            if response.kind is ResponseKind.ACK:
                return self._ack(response)
            error = UnknownResponseTypeError(f"Unknown response type {key!r}")
            _LOGGER.warning("Dropping notification: %s", error)
            return ProtocolErrorEvent(error, candidate)

        try:
            return entry.decoder(response)
        except InvalidResponseError as e:
            _LOGGER.warning("Invalid %s response: %s", entry.name, e)
            return ProtocolErrorEvent(e, candidate)

    def error_name(self, code: int) -> str:
        """Name of an acknowledgment error code, or its hex value if unknown."""
        try:
            return self.variant.error_codes(code).name
        except ValueError:
            return f"0x{code:02x}"

    @staticmethod
    def _ack(response: ResponseFrame) -> CommandAck:
        return CommandAck(
            sequence_number=response.sequence_number,
            code=response.code or 0,
            payload=response.payload,
            target=response.target,
            command_id=response.command_id,
        )
