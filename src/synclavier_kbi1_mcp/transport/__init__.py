"""Transport layer: MIDI port discovery and I/O."""

from .midi_connection import DEVICE_NAME, MidiConnection, PortInfo, match_port
