"""Protocol constants and outbound command builders.

Every outbound message is a sequence of three-byte channel messages. NRPN
exchanges are four control changes on the NRPN channel; display lines are
note-on characters followed by a committing note-off; button lights are a
single note-on whose velocity selects the light level.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

CONTROL_CHANGE = 0xB0
NOTE_ON = 0x90
NOTE_OFF = 0x80

MAX_14BIT = 0x3FFF
ASK_VALUE = 0x3FFF  # "report the current value" instead of setting one


class Channel(IntEnum):
    """Zero-based MIDI channel assignments."""

    NOTES = 0
    NRPN = 1  # also the ORK buttons and knob
    VK = 2
    VK_ALT = 3
    DISPLAY = 4
    RIBBON = 5


class ButtonChannel(IntEnum):
    """Channels whose notes are panel buttons."""

    ORK = 1
    VK = 2
    VK_ALT = 3


class NRPNController(IntEnum):
    """Controller numbers carrying the four NRPN fragments."""

    PARAM_MSB = 0x63
    PARAM_LSB = 0x62
    DATA_MSB = 0x06
    DATA_LSB = 0x26


class NRPNParam(IntEnum):
    """Reserved NRPN parameter numbers."""

    IDENTITY = 0
    STATUS = 1
    CLEAR = 2
    ECHO = 3
    REFRESH = 4


class Identity(IntEnum):
    """Identity responses to an ``NRPNParam.IDENTITY`` inquiry."""

    KBI1 = 0
    REGEN = 1


class PeripheralStatus(IntEnum):
    """Status responses: which keyboard is attached to the KBI-1."""

    NONE = 0
    ORK = 1
    VK = 2


class ButtonLevel(IntEnum):
    """Note-on velocities for button lights. The VK only shows off, blinking and on."""

    OFF = 0
    HELD = 32
    BLINKING = 64
    ON = 127


class DisplayTarget(IntEnum):
    """Note numbers selecting a display on the display channel."""

    ORK = 0
    VK_LINE0 = 1
    VK_LINE1 = 2


# VK display sections: [line][section] -> note number
VK_CHAR_SECTIONS = ((3, 4), (5, 6))
VK_DECIMAL_SECTIONS = ((7, 8), (9, 10))


def _check_range(name: str, value: int, upper: int) -> None:
    if not 0 <= value <= upper:
        raise ValueError(f"{name} must be 0-{upper}, got {value}")


def build_message(status: int, channel: int, data1: int, data2: int) -> bytes:
    """Build a single three-byte channel message."""
    _check_range("Channel", channel, 15)
    _check_range("Data byte", data1, 127)
    _check_range("Data byte", data2, 127)
    return bytes([status | channel, data1, data2])


def build_control_change(channel: int, controller: int, value: int) -> bytes:
    """Build a control change message."""
    return build_message(CONTROL_CHANGE, channel, controller, value)


def build_note_on(channel: int, note: int, velocity: int) -> bytes:
    """Build a note-on message."""
    return build_message(NOTE_ON, channel, note, velocity)


def build_note_off(channel: int, note: int, velocity: int = 0) -> bytes:
    """Build a note-off message."""
    return build_message(NOTE_OFF, channel, note, velocity)


def build_nrpn(parameter: int, value: int, channel: int = Channel.NRPN) -> list[bytes]:
    """Build the four control changes of an NRPN exchange.

    Parameter and value are 14-bit; each is sent MSB first as two
    7-bit fragments. The receiver acts when the value LSB arrives.

    Args:
        parameter: NRPN parameter number 0-16383.
        value: Parameter value 0-16383, or ``ASK_VALUE`` to query.
        channel: MIDI channel, the NRPN channel by default.
    """
    _check_range("NRPN parameter", parameter, MAX_14BIT)
    _check_range("NRPN value", value, MAX_14BIT)
    return [
        build_control_change(channel, NRPNController.PARAM_MSB, (parameter >> 7) & 0x7F),
        build_control_change(channel, NRPNController.PARAM_LSB, parameter & 0x7F),
        build_control_change(channel, NRPNController.DATA_MSB, (value >> 7) & 0x7F),
        build_control_change(channel, NRPNController.DATA_LSB, value & 0x7F),
    ]


def build_display(target: int, text: str, channel: int = Channel.DISPLAY) -> list[bytes]:
    """Build the messages that write ``text`` to a display.

    Each character is sent as the velocity of a note-on whose note number
    selects the display. The closing note-off makes the device redraw, so
    an empty string produces only the terminator.

    Args:
        target: Display note number (see ``DisplayTarget``).
        text: ASCII text; characters are masked to 7 bits.
        channel: MIDI channel, the display channel by default.
    """
    frames = [build_note_on(channel, target, ord(char) & 0x7F) for char in text]
    frames.append(build_note_off(channel, target, 0))
    return frames


def vk_section_target(line: int, section: int, decimals: bool = False) -> int:
    """Return the display note number for one section of the VK display.

    Args:
        line: Display line, 0 or 1.
        section: Section within the line, 0 or 1.
        decimals: Address the decimal points instead of the characters.
    """
    _check_range("VK display line", line, 1)
    _check_range("VK display section", section, 1)
    table = VK_DECIMAL_SECTIONS if decimals else VK_CHAR_SECTIONS
    return table[line][section]


def build_button(channel: int, button: int, level: int) -> bytes:
    """Build a button light command.

    Args:
        channel: Button channel (see ``ButtonChannel``).
        button: Button index 0-127.
        level: Light level (see ``ButtonLevel``); velocity 0 turns it off.
    """
    return build_note_on(channel, button, level)


@dataclass(frozen=True)
class NRPNCommand:
    """An outbound NRPN exchange."""

    parameter: int
    value: int

    def encode(self) -> list[bytes]:
        return build_nrpn(self.parameter, self.value)


@dataclass(frozen=True)
class DisplayCommand:
    """An outbound display line write."""

    target: int
    text: str

    def encode(self) -> list[bytes]:
        return build_display(self.target, self.text)


@dataclass(frozen=True)
class ButtonCommand:
    """An outbound button light change."""

    channel: int
    button: int
    level: int

    def encode(self) -> list[bytes]:
        return [build_button(self.channel, self.button, self.level)]


OutboundCommand = NRPNCommand | DisplayCommand | ButtonCommand
