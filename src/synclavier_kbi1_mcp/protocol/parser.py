"""Decoding of performance messages from the KBI-1.

Besides NRPN exchanges the KBI-1 reports playing and panel activity:

- Notes channel: keys, poly aftertouch (VK only), pitch bend and the
  wheel / pedal / ribbon controllers
- ORK channel: button presses and knob movement (pitch bend)
- VK / VK alt channels: button presses
- Ribbon channel: the ribbon as pitch bend
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from .commands import ButtonChannel, Channel, NRPNController
from .framing import ChannelMessage, MessageKind, StatusClass

BEND_CENTER = 0x2000


class Controller(IntEnum):
    """Controller numbers sent on the notes channel."""

    MOD_WHEEL = 0x01
    BREATH = 0x02
    VOLUME_PEDAL = 0x07
    EFFECTS_PEDAL = 0x0B
    RIBBON = 0x10  # relative movements
    SUSTAIN = 0x40
    PORTAMENTO = 0x41
    HOLD = 0x42
    REPEAT = 0x43
    ARPEGGIATE = 0x44
    PUNCH_IN = 0x45


class Panel(Enum):
    """Button panels, one per button channel."""

    ORK = "ork"
    VK = "vk"
    VK_ALT = "vk_alt"


class BendSource(Enum):
    """Controls that report as pitch bend."""

    KEYBOARD = "keyboard"
    KNOB = "knob"
    RIBBON = "ribbon"


_PANEL_BY_CHANNEL = {
    ButtonChannel.ORK: Panel.ORK,
    ButtonChannel.VK: Panel.VK,
    ButtonChannel.VK_ALT: Panel.VK_ALT,
}

_NRPN_CONTROLLERS = frozenset(int(c) for c in NRPNController)

_BEND_SOURCE_BY_CHANNEL = {
    Channel.NOTES: BendSource.KEYBOARD,
    Channel.NRPN: BendSource.KNOB,  # the ORK knob
    Channel.RIBBON: BendSource.RIBBON,
}


@dataclass(frozen=True)
class KeyEvent:
    """A key went down or up."""

    note: int
    velocity: int
    pressed: bool


@dataclass(frozen=True)
class AftertouchEvent:
    """Polyphonic key pressure."""

    note: int
    pressure: int


@dataclass(frozen=True)
class ControlEvent:
    """A wheel, pedal or ribbon controller moved."""

    controller: int
    value: int

    @property
    def name(self) -> str:
        try:
            return Controller(self.controller).name.lower()
        except ValueError:
            return f"cc{self.controller}"


@dataclass(frozen=True)
class BendEvent:
    """Pitch bend, signed around the centre (-8192..8191)."""

    source: BendSource
    value: int


@dataclass(frozen=True)
class ButtonEvent:
    """A panel button was pressed or released."""

    panel: Panel
    button: int
    pressed: bool


PerformanceEvent = KeyEvent | AftertouchEvent | ControlEvent | BendEvent | ButtonEvent


def _is_press(message: ChannelMessage) -> bool:
    # Note-on with velocity 0 is a release
    return message.kind is MessageKind.NOTE_ON and bool(message.data2)


def parse_bend(message: ChannelMessage) -> int:
    """Return the signed 14-bit value of a pitch bend message."""
    return ((message.data2 << 7) | message.data1) - BEND_CENTER


def parse_message(message: ChannelMessage) -> PerformanceEvent | None:
    """Decode a channel message into a performance event.

    Returns ``None`` for NRPN fragments and for anything the KBI-1 does not
    send on that channel.
    """
    status_class = message.status & 0xF0
    channel = message.channel

    if status_class == StatusClass.PITCH_BEND:
        source = _BEND_SOURCE_BY_CHANNEL.get(channel)
        if source is None:
            return None
        return BendEvent(source=source, value=parse_bend(message))

    if channel == Channel.NOTES:
        if message.kind in (MessageKind.NOTE_ON, MessageKind.NOTE_OFF):
            return KeyEvent(
                note=message.data1,
                velocity=message.data2,
                pressed=_is_press(message),
            )
        if status_class == StatusClass.POLY_PRESSURE:
            return AftertouchEvent(note=message.data1, pressure=message.data2)
        if message.kind is MessageKind.CONTROL_CHANGE:
            return ControlEvent(controller=message.data1, value=message.data2)
        return None

    panel = _PANEL_BY_CHANNEL.get(channel)
    if panel is not None and message.kind in (MessageKind.NOTE_ON, MessageKind.NOTE_OFF):
        return ButtonEvent(panel=panel, button=message.data1, pressed=_is_press(message))

    return None


def is_nrpn_fragment(message: ChannelMessage) -> bool:
    """True for the control changes that make up an NRPN exchange."""
    return (
        message.channel == Channel.NRPN
        and message.kind is MessageKind.CONTROL_CHANGE
        and message.data1 in _NRPN_CONTROLLERS
    )
