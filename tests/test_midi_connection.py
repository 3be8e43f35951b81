"""Tests for the MIDI transport, with the mido backend mocked out."""

from unittest.mock import MagicMock, patch

import pytest

from synclavier_kbi1_mcp.transport.midi_connection import (
    DEVICE_NAME,
    MidiConnection,
    PortInfo,
    match_port,
)

MIDO = "synclavier_kbi1_mcp.transport.midi_connection.mido"


def _backend(inputs=(DEVICE_NAME,), outputs=(DEVICE_NAME,)):
    mido = MagicMock()
    mido.get_input_names.return_value = list(inputs)
    mido.get_output_names.return_value = list(outputs)
    return mido


def test_match_port_prefers_exact_name():
    names = ["Synclavier KBI-1 20:0", "Synclavier KBI-1"]
    assert match_port(names) == "Synclavier KBI-1"


def test_match_port_accepts_decorated_name():
    assert match_port(["Midi Through", "Synclavier KBI-1 20:0"]) == "Synclavier KBI-1 20:0"


def test_match_port_none():
    assert match_port(["Midi Through"]) is None


def test_find_ports_needs_both_directions():
    with patch(MIDO, _backend(outputs=())):
        assert MidiConnection().find_ports() is None


def test_poll_opens_ports():
    mido = _backend()
    with patch(MIDO, mido):
        conn = MidiConnection()
        assert conn.poll_for_device()
        assert conn.connected
        assert conn.input_name == DEVICE_NAME
    mido.open_output.assert_called_once_with(DEVICE_NAME)
    assert mido.open_input.call_args.kwargs["callback"] == conn._on_message


def test_poll_without_device():
    with patch(MIDO, _backend(inputs=(), outputs=())):
        conn = MidiConnection()
        assert not conn.poll_for_device()
        assert conn.input_name is None


def test_open_failure_raises_connection_error():
    mido = _backend()
    mido.open_input.side_effect = OSError("busy")
    with patch(MIDO, mido):
        conn = MidiConnection()
        with pytest.raises(ConnectionError):
            conn.open()
        assert not conn.connected
    mido.open_output.return_value.close.assert_called_once()


def test_open_missing_device_raises():
    with patch(MIDO, _backend(inputs=())):
        with pytest.raises(ConnectionError, match="Could not find"):
            MidiConnection().open()


def test_send_requires_connection():
    with pytest.raises(ConnectionError):
        MidiConnection().send(bytes([0x90, 60, 100]))


def test_send_writes_message():
    mido = _backend()
    with patch(MIDO, mido):
        conn = MidiConnection()
        conn.open()
        conn.send(bytes([0xB1, 0x63, 0x00]))
    mido.Message.from_bytes.assert_called_once_with([0xB1, 0x63, 0x00])
    mido.open_output.return_value.send.assert_called_once_with(
        mido.Message.from_bytes.return_value
    )


def test_send_failure_raises_connection_error():
    mido = _backend()
    mido.open_output.return_value.send.side_effect = OSError("unplugged")
    with patch(MIDO, mido):
        conn = MidiConnection()
        conn.open()
        with pytest.raises(ConnectionError):
            conn.send(bytes([0xB1, 0x63, 0x00]))


def test_inbound_messages_forwarded_with_port_name():
    chunks = []
    conn = MidiConnection(on_chunk=lambda source, data: chunks.append((source, data)))
    with patch(MIDO, _backend()):
        conn.open(PortInfo(input_name="in", output_name="out"))
    message = MagicMock()
    message.bytes.return_value = [0xB1, 0x26, 0x7F]
    conn._on_message(message)
    assert chunks == [("in", bytes([0xB1, 0x26, 0x7F]))]


def test_close_closes_both_ports():
    mido = _backend()
    with patch(MIDO, mido):
        conn = MidiConnection()
        conn.open()
        conn.close()
    assert not conn.connected
    mido.open_input.return_value.close.assert_called_once()
    mido.open_output.return_value.close.assert_called_once()
