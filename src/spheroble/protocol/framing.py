"""Frame codec for the Sphero BLE protocols.

Two wire layouts exist, selected by ``ProtocolVariant.escaped``.

Plain framing (v1), client to robot::

    +------+-------+--------+-----+-----+------+-----------------+-----+
    | 0xFF | flags | target | cid | seq | dlen |  payload        | chk |
    +------+-------+--------+-----+-----+------+-----------------+-----+

- flags: 0xFC | synchronous/reset-timeout bits
- dlen: len(payload) + 1, the checksum counts towards the length
- chk: (sum(target..payload) & 0xFF) ^ 0xFF

Plain framing (v1), robot to client::

    acknowledgment:  FF FF <code> <seq> <dlen>            <payload> <chk>
    notification:    FF FE <id>   <dlen_hi> <dlen_lo>     <payload> <chk>

Escaped framing (v2), both directions::

    0x8D  stuffed( flags [tnode] [snode] target cid seq [err] payload chk )  0xD8

- chk covers every byte from flags to the end of the payload
- 0xAB, 0x8D and 0xD8 inside the frame are sent as 0xAB followed by
  0x23, 0x03 and 0x50 respectively
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from ..exceptions import (
    ChecksumError,
    EscapeSequenceError,
    FrameTooShortError,
    FramingError,
)
from ..models.enums import ResponseKind

if TYPE_CHECKING:
    from .variants import ProtocolVariant

_LOGGER = logging.getLogger(__name__)

START_OF_PACKET: Final = 0x8D
END_OF_PACKET: Final = 0xD8
ESCAPE: Final = 0xAB

ESCAPED_ESCAPE: Final = 0x23
ESCAPED_START_OF_PACKET: Final = 0x03
ESCAPED_END_OF_PACKET: Final = 0x50

_ESCAPE_CODES: Final[dict[int, int]] = {
    ESCAPE: ESCAPED_ESCAPE,
    START_OF_PACKET: ESCAPED_START_OF_PACKET,
    END_OF_PACKET: ESCAPED_END_OF_PACKET,
}
_UNESCAPE_CODES: Final[dict[int, int]] = {code: raw for raw, code in _ESCAPE_CODES.items()}

V1_PLAIN_HEADER_SIZE: Final = 5  # inbound: SOP1 SOP2 code seq/len len


def _check_u8(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} out of range: {value} (must be 0-255)")


def checksum(data: bytes) -> int:
    """Compute the protocol checksum: byte sum modulo 256, inverted."""
    return (sum(data) & 0xFF) ^ 0xFF


def escape(data: bytes) -> bytes:
    """Byte-stuff the reserved delimiter values."""
    out = bytearray()
    for byte in data:
        code = _ESCAPE_CODES.get(byte)
        if code is None:
            out.append(byte)
        else:
            out.append(ESCAPE)
            out.append(code)
    return bytes(out)


def unescape(data: bytes) -> bytes:
    """Reverse :func:`escape`.

    Raises:
        EscapeSequenceError: Unknown escape code, or escape byte at the end
        FramingError: Unescaped start/end marker inside the data
    """
    out = bytearray()
    i = 0
    while i < len(data):
        byte = data[i]
        if byte == ESCAPE:
            if i + 1 >= len(data):
                raise EscapeSequenceError("Escape byte at end of frame")
            code = data[i + 1]
            raw = _UNESCAPE_CODES.get(code)
            if raw is None:
                raise EscapeSequenceError(f"Invalid escape sequence 0x{ESCAPE:02x} 0x{code:02x}")
            out.append(raw)
            i += 2
            continue
        if byte in (START_OF_PACKET, END_OF_PACKET):
            raise FramingError(f"Unexpected frame marker 0x{byte:02x} at offset {i}")
        out.append(byte)
        i += 1
    return bytes(out)


@dataclass(frozen=True)
class Frame:
    """One command frame, independent of its wire layout.

    Attributes:
        target: Device/subsystem id the command is addressed to
        command_id: Command id within the target
        flags: Flag bits of the variant (without the v1 0xFC prefix)
        sequence_number: Session-scoped sequence number (0-255)
        payload: Command data
        error_code: v2 responses only
        target_node: v2 routing byte, present when flagged
        source_node: v2 routing byte, present when flagged
    """

    target: int
    command_id: int
    flags: int
    sequence_number: int
    payload: bytes = b""
    error_code: int | None = None
    target_node: int | None = None
    source_node: int | None = None

    def __post_init__(self) -> None:
        _check_u8("target", self.target)
        _check_u8("command_id", self.command_id)
        _check_u8("flags", self.flags)
        _check_u8("sequence_number", self.sequence_number)
        for name in ("error_code", "target_node", "source_node"):
            value = getattr(self, name)
            if value is not None:
                _check_u8(name, value)
        object.__setattr__(self, "payload", bytes(self.payload))


@dataclass(frozen=True)
class ResponseFrame:
    """A validated frame received from the robot.

    Attributes:
        kind: Acknowledgment or unsolicited notification
        code: v1 response code (acks) or notification id; v2 error code
            (acks), None for v2 notifications
        sequence_number: Echoed sequence number, None for v1 notifications
        payload: Response data
        target: v2 only, the answering target
        command_id: v2 only, the answered/notifying command id
    """

    kind: ResponseKind
    code: int | None
    sequence_number: int | None
    payload: bytes = field(default=b"", repr=False)
    target: int | None = None
    command_id: int | None = None


class PacketCodec:
    """Stateless encoder/decoder for one protocol variant."""

    def __init__(self, variant: ProtocolVariant):
        self.variant = variant

    # -- outbound (command) frames ---------------------------------------

    def encode(self, frame: Frame) -> bytes:
        """Encode a frame to wire bytes.

        Args:
            frame: Frame to encode

        Returns:
            Bytes ready to write to the command characteristic

        Raises:
            ValueError: If a field does not fit the variant's layout
        """
        if self.variant.escaped:
            return self._encode_escaped(frame)
        return self._encode_plain(frame)

    def decode(self, data: bytes) -> Frame:
        """Decode wire bytes produced by :meth:`encode`.

        Raises:
            FramingError: Markers or header inconsistent with the data
            FrameTooShortError: Fewer bytes than the minimum frame
            ChecksumError: Checksum mismatch
            EscapeSequenceError: Invalid byte stuffing (escaped variant)
        """
        if self.variant.escaped:
            return self._decode_escaped(data)
        return self._decode_plain(data)

    def _encode_plain(self, frame: Frame) -> bytes:
        variant = self.variant
        if frame.flags & ~variant.flag_mask:
            raise ValueError(f"Flags 0x{frame.flags:02x} not supported by {variant.name}")
        if frame.error_code is not None or frame.target_node is not None or frame.source_node is not None:
            raise ValueError(f"{variant.name} frames carry no error code or routing bytes")
        if len(frame.payload) > 0xFE:
            raise ValueError(f"Payload too long: {len(frame.payload)} bytes (max 254)")

        raw = bytes([
            variant.magic,
            variant.flag_prefix | frame.flags,
            frame.target,
            frame.command_id,
            frame.sequence_number,
            len(frame.payload) + 1,
        ]) + frame.payload
        return raw + bytes([checksum(raw[variant.checksum_start:])])

    def _decode_plain(self, data: bytes) -> Frame:
        variant = self.variant
        data = bytes(data)
        if len(data) < variant.header_size + 1:
            raise FrameTooShortError(
                f"Frame too short: {len(data)} bytes (need at least {variant.header_size + 1})"
            )
        if data[0] != variant.magic or data[1] & variant.flag_prefix != variant.flag_prefix:
            raise FramingError(f"Invalid start of frame: {data[:2].hex()}")

        self._verify_checksum(data[variant.checksum_start:-1], data[-1])

        declared = data[variant.header_size - 1]
        if variant.header_size + declared != len(data):
            raise FramingError(
                f"Packet size wrong: header declares {declared} bytes, "
                f"got {len(data) - variant.header_size}"
            )

        return Frame(
            target=data[2],
            command_id=data[3],
            flags=data[1] & ~variant.flag_prefix & 0xFF,
            sequence_number=data[4],
            payload=data[variant.header_size:-1],
        )

    def _encode_escaped(self, frame: Frame) -> bytes:
        variant = self.variant
        if frame.flags & variant.two_byte_flag:
            raise ValueError("Two-byte flags are not supported")

        body = bytearray([frame.flags])
        body += self._optional_byte(frame.flags, variant.target_node_flag, frame.target_node, "target_node")
        body += self._optional_byte(frame.flags, variant.source_node_flag, frame.source_node, "source_node")
        body += bytes([frame.target, frame.command_id, frame.sequence_number])
        if frame.flags & variant.response_flag:
            body.append(frame.error_code or 0)
        elif frame.error_code is not None:
            raise ValueError("error_code requires the response flag")
        body += frame.payload
        body.append(checksum(body[variant.checksum_start:]))

        return bytes([START_OF_PACKET]) + escape(bytes(body)) + bytes([END_OF_PACKET])

    @staticmethod
    def _optional_byte(flags: int, bit: int, value: int | None, name: str) -> bytes:
        if flags & bit:
            if value is None:
                raise ValueError(f"{name} required when flag 0x{bit:02x} is set")
            return bytes([value])
        if value is not None:
            raise ValueError(f"{name} given but flag 0x{bit:02x} is not set")
        return b""

    def _decode_escaped(self, data: bytes) -> Frame:
        variant = self.variant
        data = bytes(data)
        if len(data) < 2 or data[0] != START_OF_PACKET or data[-1] != END_OF_PACKET:
            raise FramingError("Invalid start or end of frame")

        body = unescape(data[1:-1])
        if len(body) < variant.header_size + 1:
            raise FrameTooShortError(
                f"Frame too short: {len(body)} bytes (need at least {variant.header_size + 1})"
            )

        self._verify_checksum(body[variant.checksum_start:-1], body[-1])
        body = body[:-1]

        flags = body[0]
        if flags & variant.two_byte_flag:
            raise FramingError("Two-byte flags are not supported")

        offset = 1
        target_node = source_node = error_code = None
        if flags & variant.target_node_flag:
            target_node, offset = self._read_byte(body, offset)
        if flags & variant.source_node_flag:
            source_node, offset = self._read_byte(body, offset)
        target, offset = self._read_byte(body, offset)
        command_id, offset = self._read_byte(body, offset)
        sequence_number, offset = self._read_byte(body, offset)
        if flags & variant.response_flag:
            error_code, offset = self._read_byte(body, offset)

        return Frame(
            target=target,
            command_id=command_id,
            flags=flags,
            sequence_number=sequence_number,
            payload=body[offset:],
            error_code=error_code,
            target_node=target_node,
            source_node=source_node,
        )

    @staticmethod
    def _read_byte(body: bytes, offset: int) -> tuple[int, int]:
        if offset >= len(body):
            raise FrameTooShortError(f"Header truncated at offset {offset}")
        return body[offset], offset + 1

    @staticmethod
    def _verify_checksum(data: bytes, received: int) -> None:
        expected = checksum(data)
        if expected != received:
            raise ChecksumError(expected, received)

    # -- inbound (response) frames ---------------------------------------

    def encode_response(self, response: ResponseFrame) -> bytes:
        """Encode a response frame as the robot would send it."""
        if self.variant.escaped:
            flags = self.variant.response_flag if response.kind is ResponseKind.ACK else 0
            return self._encode_escaped(Frame(
                target=response.target or 0,
                command_id=response.command_id or 0,
                flags=flags,
                sequence_number=response.sequence_number or 0,
                payload=response.payload,
                error_code=response.code if response.kind is ResponseKind.ACK else None,
            ))

        variant = self.variant
        payload = bytes(response.payload)
        code = response.code or 0
        if response.kind is ResponseKind.ACK:
            if len(payload) > 0xFE:
                raise ValueError(f"Payload too long: {len(payload)} bytes (max 254)")
            header = bytes([variant.magic, variant.ack_marker, code, response.sequence_number or 0, len(payload) + 1])
        else:
            if len(payload) > 0xFFFE:
                raise ValueError(f"Payload too long: {len(payload)} bytes (max 65534)")
            header = bytes([variant.magic, variant.notification_marker, code]) + (len(payload) + 1).to_bytes(2, "big")
        raw = header + payload
        return raw + bytes([checksum(raw[variant.checksum_start:])])

    def decode_response(self, data: bytes) -> ResponseFrame:
        """Validate and decode a frame received from the robot.

        Raises:
            DecodeError: See :meth:`decode`
        """
        if self.variant.escaped:
            frame = self._decode_escaped(data)
            if frame.flags & self.variant.response_flag:
                kind, code = ResponseKind.ACK, frame.error_code
            else:
                kind, code = ResponseKind.NOTIFICATION, None
            return ResponseFrame(
                kind=kind,
                code=code,
                sequence_number=frame.sequence_number,
                payload=frame.payload,
                target=frame.target,
                command_id=frame.command_id,
            )

        variant = self.variant
        data = bytes(data)
        if len(data) < V1_PLAIN_HEADER_SIZE + 1:
            raise FrameTooShortError(
                f"Frame too short: {len(data)} bytes (need at least {V1_PLAIN_HEADER_SIZE + 1})"
            )
        if data[0] != variant.magic or data[1] not in (variant.ack_marker, variant.notification_marker):
            raise FramingError(f"Invalid start of frame: {data[:2].hex()}")

        self._verify_checksum(data[variant.checksum_start:-1], data[-1])

        declared = self.declared_length(data)
        if declared is None or V1_PLAIN_HEADER_SIZE + declared != len(data):
            raise FramingError(
                f"Packet size wrong: header declares {declared} bytes, "
                f"got {len(data) - V1_PLAIN_HEADER_SIZE}"
            )

        payload = data[V1_PLAIN_HEADER_SIZE:-1]
        if data[1] == variant.ack_marker:
            return ResponseFrame(ResponseKind.ACK, data[2], data[3], payload)
        return ResponseFrame(ResponseKind.NOTIFICATION, data[2], None, payload)

    def declared_length(self, header: bytes) -> int | None:
        """Length declared by a plain inbound header (checksum included).

        Returns None if the header is incomplete or not an inbound header.
        """
        variant = self.variant
        if len(header) < V1_PLAIN_HEADER_SIZE:
            return None
        if header[1] == variant.ack_marker:
            return header[4]
        if header[1] == variant.notification_marker:
            return (header[3] << 8) | header[4]
        return None

    def frame_length(self, buffer: bytes) -> int | None:
        """Number of leading buffer bytes forming one inbound frame.

        The buffer must start at a frame marker. Returns None while more
        bytes are needed.
        """
        if self.variant.escaped:
            end = buffer.find(END_OF_PACKET, 1)
            return end + 1 if end != -1 else None

        declared = self.declared_length(buffer)
        if declared is None:
            return None
        return V1_PLAIN_HEADER_SIZE + declared
