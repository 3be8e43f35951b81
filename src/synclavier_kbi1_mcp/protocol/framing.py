"""Channel message framer for the inbound MIDI byte stream.

Message layout::

    +-------------+---------+---------+
    |   Status    |  Data 1 |  Data 2 |
    | 1xxx cccc   | 0-127   | 0-127   |
    +-------------+---------+---------+

- Status: message class in the high nibble, logical channel in the low nibble
- Program change (0xCn) and channel pressure (0xDn) carry a single data byte
  and are consumed without being emitted
- System real-time bytes (0xF8-0xFF) are dropped wherever they appear
- System common / exclusive bytes (0xF0-0xF7) abandon the rest of the chunk

The KBI-1 only emits complete three-byte channel messages, so by default a
message cut off at the end of a delivery chunk is dropped. ``FramingMode.BUFFER``
keeps the partial bytes and completes the message with the next chunk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterator

logger = logging.getLogger(__name__)

REALTIME_FIRST = 0xF8
SYSTEM_FIRST = 0xF0


class MessageKind(Enum):
    """Channel message classes the protocol distinguishes."""

    NOTE_ON = "note_on"
    NOTE_OFF = "note_off"
    CONTROL_CHANGE = "control_change"
    OTHER = "other"


class StatusClass(IntEnum):
    """High nibble of a channel status byte."""

    NOTE_OFF = 0x80
    NOTE_ON = 0x90
    POLY_PRESSURE = 0xA0
    CONTROL_CHANGE = 0xB0
    PROGRAM_CHANGE = 0xC0
    CHANNEL_PRESSURE = 0xD0
    PITCH_BEND = 0xE0


_KIND_BY_STATUS = {
    StatusClass.NOTE_OFF: MessageKind.NOTE_OFF,
    StatusClass.NOTE_ON: MessageKind.NOTE_ON,
    StatusClass.CONTROL_CHANGE: MessageKind.CONTROL_CHANGE,
}

# Statuses followed by a single data byte; recognised but never emitted.
_TWO_BYTE_STATUS = (StatusClass.PROGRAM_CHANGE, StatusClass.CHANNEL_PRESSURE)


class FramingMode(Enum):
    """What to do with a message cut off at the end of a delivery chunk."""

    DROP = "drop"
    BUFFER = "buffer"


@dataclass(frozen=True)
class ChannelMessage:
    """A decoded channel voice message."""

    status: int
    data1: int
    data2: int | None = None

    @property
    def channel(self) -> int:
        return self.status & 0x0F

    @property
    def kind(self) -> MessageKind:
        return _KIND_BY_STATUS.get(self.status & 0xF0, MessageKind.OTHER)

    def to_bytes(self) -> bytes:
        if self.data2 is None:
            return bytes([self.status, self.data1])
        return bytes([self.status, self.data1, self.data2])

    def __repr__(self) -> str:
        return (
            f"ChannelMessage(channel={self.channel}, kind={self.kind.value}, "
            f"data1={self.data1}, data2={self.data2})"
        )


def message_length(status: int) -> int:
    """Return the total frame length (status included) for a channel status byte."""
    if status & 0xF0 in _TWO_BYTE_STATUS:
        return 2
    return 3


def _scan(data: bytes, pending: list[int]) -> Iterator[ChannelMessage]:
    """Yield the messages in ``data`` as each one completes.

    ``pending`` holds the bytes of an unfinished message. It is updated in
    place, so after the generator is exhausted it contains the trailing
    partial message (empty when the chunk ended cleanly or was abandoned).
    """
    for byte in data:
        if byte >= REALTIME_FIRST:
            continue

        if byte >= SYSTEM_FIRST:
            # Variable-length system message; the peer never sends these.
            if pending:
                logger.debug("Dropping partial message %s before system byte", pending)
            pending.clear()
            return

        if byte & 0x80:
            if pending:
                logger.debug("Dropping partial message %s, new status 0x%02X", pending, byte)
            pending[:] = [byte]
            continue

        if not pending:
            # Orphan data byte
            continue

        pending.append(byte)
        if len(pending) < message_length(pending[0]):
            continue

        status, data1, *rest = pending
        pending.clear()
        if status & 0xF0 not in _TWO_BYTE_STATUS:
            yield ChannelMessage(status, data1, rest[0])


def iter_messages(data: bytes) -> Iterator[ChannelMessage]:
    """Lazily yield the complete channel messages contained in one chunk.

    Malformed and unsupported bytes are skipped and a trailing partial
    message is discarded.
    """
    return _scan(bytes(data), [])


class MessageFramer:
    """Frames successive delivery chunks according to a ``FramingMode``.

    In ``DROP`` mode every chunk is framed independently. In ``BUFFER``
    mode a trailing partial message is kept and completed by the next chunk.
    """

    def __init__(self, mode: FramingMode = FramingMode.DROP) -> None:
        self._mode = mode
        self._pending: list[int] = []

    @property
    def mode(self) -> FramingMode:
        return self._mode

    @property
    def partial(self) -> bytes:
        return bytes(self._pending)

    def feed(self, data: bytes) -> Iterator[ChannelMessage]:
        """Frame one delivery chunk, yielding messages as they complete.

        The end-of-chunk handling runs once the iterator is exhausted.
        """
        yield from _scan(bytes(data), self._pending)
        if self._mode is FramingMode.DROP and self._pending:
            logger.debug("Dropping truncated message %s", bytes(self._pending).hex(" "))
            self._pending.clear()

    def reset(self) -> None:
        """Discard any buffered partial message."""
        self._pending.clear()
