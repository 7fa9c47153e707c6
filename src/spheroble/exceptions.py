"""Exceptions raised by the Sphero BLE client."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol.variants import HandshakeStep


class SpheroError(Exception):
    """Base exception for all spheroble errors."""


class BLEConnectionError(SpheroError):
    """BLE link could not be established, or was lost."""


class BLETimeoutError(SpheroError):
    """A BLE operation did not complete in time."""


class HandshakeStepFailedError(BLEConnectionError):
    """A write of the unlock/handshake sequence failed or was refused."""

    def __init__(self, message: str, step: HandshakeStep | None = None, index: int | None = None):
        super().__init__(message)
        self.step = step
        self.index = index


class TransportDisconnectedError(BLEConnectionError):
    """The transport reported a disconnect or a service error."""


class ProtocolError(SpheroError):
    """Wire-level protocol violation or misuse of the protocol engine."""


class DecodeError(ProtocolError):
    """A candidate frame could not be decoded."""


class FramingError(DecodeError):
    """Frame markers or header fields are missing, misplaced or inconsistent."""


class FrameTooShortError(FramingError):
    """Fewer bytes than the minimum header (plus checksum) are present."""


class ChecksumError(DecodeError):
    """Recomputed checksum does not match the transmitted one."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Checksum mismatch: expected 0x{expected:02x}, got 0x{actual:02x}"
        )
        self.expected = expected
        self.actual = actual


class EscapeSequenceError(DecodeError):
    """An escape byte is followed by an unknown code, or dangles at the end."""


class InvalidResponseError(ProtocolError):
    """A decoded response payload does not match its documented layout."""


class UnknownResponseTypeError(ProtocolError):
    """No decoder is registered for a response type tag."""


class AmbiguousResponseTypeError(ProtocolError):
    """Several decoders share one response type tag and no context picks one."""

    def __init__(self, key: tuple, candidates: tuple[str, ...]):
        super().__init__(
            f"Response type {key!r} is ambiguous between {', '.join(candidates)}"
        )
        self.key = key
        self.candidates = candidates


class BufferOverflowError(ProtocolError):
    """The reassembly buffer grew past its ceiling without yielding a frame."""

    def __init__(self, message: str, frames: list[bytes] | None = None):
        super().__init__(message)
        self.frames = frames or []
