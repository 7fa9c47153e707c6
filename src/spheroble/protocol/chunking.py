"""Reassembly of notification chunks into candidate frames."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final

from ..exceptions import BufferOverflowError
from .framing import PacketCodec

if TYPE_CHECKING:
    from .variants import ProtocolVariant

_LOGGER = logging.getLogger(__name__)

MAX_BUFFER_SIZE: Final = 10_000


class ResponseReassembler:
    """Accumulates notification chunks until they form complete frames.

    Radio notifications may split one frame across many chunks, or carry
    the tail of one frame and the start of the next. Candidates are only
    delimited here; validation is left to the codec.
    """

    def __init__(self, variant: ProtocolVariant, max_size: int = MAX_BUFFER_SIZE):
        """Initialize reassembler.

        Args:
            variant: Protocol variant providing markers and length rules
            max_size: Buffer ceiling in bytes
        """
        self.variant = variant
        self.max_size = max_size
        self._codec = PacketCodec(variant)
        self._buffer = bytearray()
        self.overflow_count = 0

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for more data."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add one chunk and return every frame it completes.

        Args:
            chunk: Raw notification data

        Returns:
            Complete candidate frames, in order

        Raises:
            BufferOverflowError: If the buffer grew past the ceiling; the
                buffer is cleared and frames completed before the overflow
                are available on the exception
        """
        chunk = bytes(chunk)
        if not chunk:
            return []

        chunk = self._strip_prompt(chunk)
        if self._starts_frame(chunk):
            if self._buffer:
                _LOGGER.debug("Discarding %d byte partial frame", len(self._buffer))
            self._buffer = bytearray(chunk)
        else:
            self._buffer += chunk
            if not self._starts_frame(self._buffer):
                self._resync()

        frames = self._extract()

        if len(self._buffer) > self.max_size:
            size = len(self._buffer)
            self._buffer.clear()
            self.overflow_count += 1
            _LOGGER.warning("Reassembly buffer overflow (%d bytes), cleared", size)
            raise BufferOverflowError(
                f"Buffer exceeded {self.max_size} bytes without a complete frame",
                frames=frames,
            )
        return frames

    def _strip_prompt(self, chunk: bytes) -> bytes:
        for prompt in self.variant.prompt_artifacts:
            if chunk.startswith(prompt):
                _LOGGER.debug("Stripping prompt artifact %r", prompt)
                return chunk[len(prompt):]
        return chunk

    def _starts_frame(self, data: bytes) -> bool:
        return any(data.startswith(marker) for marker in self.variant.start_markers)

    def _marker_index(self) -> int:
        found = [
            index
            for index in (self._buffer.find(marker) for marker in self.variant.start_markers)
            if index != -1
        ]
        return min(found) if found else -1

    def _resync(self) -> None:
        """Drop bytes before the first start marker."""
        index = self._marker_index()
        if index > 0:
            _LOGGER.debug("Dropping %d bytes before start of frame", index)
            del self._buffer[:index]
        elif index == -1:
            keep = self._partial_marker_length()
            if len(self._buffer) > keep:
                _LOGGER.debug("No start of frame in %d bytes, dropping", len(self._buffer) - keep)
            del self._buffer[:len(self._buffer) - keep]

    def _partial_marker_length(self) -> int:
        """Length of a buffer suffix that could begin a start marker."""
        best = 0
        for marker in self.variant.start_markers:
            for size in range(min(len(marker) - 1, len(self._buffer)), 0, -1):
                if self._buffer.endswith(marker[:size]):
                    best = max(best, size)
                    break
        return best

    def _extract(self) -> list[bytes]:
        frames: list[bytes] = []
        while self._buffer and self._starts_frame(self._buffer):
            length = self._codec.frame_length(bytes(self._buffer))
            if length is None or len(self._buffer) < length:
                break
            frames.append(bytes(self._buffer[:length]))
            del self._buffer[:length]
            if self._buffer and not self._starts_frame(self._buffer):
                self._resync()
        return frames
