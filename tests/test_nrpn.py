"""Tests for NRPN exchange reassembly."""

from synclavier_kbi1_mcp.protocol.commands import build_nrpn
from synclavier_kbi1_mcp.protocol.framing import ChannelMessage, iter_messages
from synclavier_kbi1_mcp.protocol.nrpn import ControllerEvent, ExchangePair, NRPNAssembler


def _cc(controller: int, value: int, channel: int = 1) -> ChannelMessage:
    return ChannelMessage(0xB0 | channel, controller, value)


def _feed(assembler: NRPNAssembler, messages) -> list[ExchangePair]:
    pairs = []
    for message in messages:
        pair = assembler.feed_message(message)
        if pair is not None:
            pairs.append(pair)
    return pairs


def test_in_order_exchange_assembles():
    """63 05 / 62 10 / 06 7F / 26 3F on channel 1 gives parameter 656, value 16319."""
    data = bytes([
        0xB1, 0x63, 0x05,
        0xB1, 0x62, 0x10,
        0xB1, 0x06, 0x7F,
        0xB1, 0x26, 0x3F,
    ])
    pairs = _feed(NRPNAssembler(), iter_messages(data))
    assert pairs == [ExchangePair(parameter=656, value=16319)]


def test_encoded_exchange_assembles():
    """Whatever build_nrpn emits, the assembler reads back."""
    frames = b"".join(build_nrpn(1, 0x3FFF))
    pairs = _feed(NRPNAssembler(), iter_messages(frames))
    assert [(p.parameter, p.value) for p in pairs] == [(1, 0x3FFF)]


def test_unrelated_controller_breaks_exchange():
    """A stray controller between data MSB and LSB suppresses the pair."""
    messages = [
        _cc(0x63, 0), _cc(0x62, 1), _cc(0x06, 0),
        _cc(0x07, 100),
        _cc(0x26, 2),
    ]
    assert _feed(NRPNAssembler(), messages) == []


def test_exchange_retried_after_break():
    """After a broken exchange the next complete one still goes through."""
    messages = [
        _cc(0x63, 0), _cc(0x62, 1), _cc(0x01, 5), _cc(0x06, 0), _cc(0x26, 2),
        _cc(0x63, 0), _cc(0x62, 1), _cc(0x06, 0), _cc(0x26, 2),
    ]
    pairs = _feed(NRPNAssembler(), messages)
    assert [(p.parameter, p.value) for p in pairs] == [(1, 2)]


def test_out_of_order_fragments_rejected():
    """Parameter LSB before MSB is not an exchange."""
    messages = [_cc(0x62, 1), _cc(0x63, 0), _cc(0x06, 0), _cc(0x26, 2)]
    assert _feed(NRPNAssembler(), messages) == []


def test_partial_exchange_at_start_rejected():
    """Three fragments with the parameter MSB missing never complete."""
    messages = [_cc(0x62, 1), _cc(0x06, 0), _cc(0x26, 2)]
    assert _feed(NRPNAssembler(), messages) == []


def test_interleaved_exchanges_not_stitched():
    """Fields from two exchanges losing fragments are never combined."""
    messages = [
        _cc(0x63, 0), _cc(0x62, 1),           # first exchange loses its data
        _cc(0x63, 0), _cc(0x62, 4),           # second exchange loses nothing
        _cc(0x06, 0x7F), _cc(0x26, 0x7F),
    ]
    pairs = _feed(NRPNAssembler(), messages)
    assert [(p.parameter, p.value) for p in pairs] == [(4, 0x3FFF)]


def test_other_channels_ignored():
    """Controllers on other channels neither contribute nor break the run."""
    messages = [
        _cc(0x63, 0), _cc(0x62, 1),
        _cc(0x07, 100, channel=0),
        _cc(0x06, 0), _cc(0x26, 2),
    ]
    pairs = _feed(NRPNAssembler(), messages)
    assert [(p.parameter, p.value) for p in pairs] == [(1, 2)]


def test_notes_on_nrpn_channel_do_not_advance_sequence():
    """ORK button notes share the channel but are not controller events."""
    assembler = NRPNAssembler()
    messages = [
        _cc(0x63, 0), _cc(0x62, 1),
        ChannelMessage(0x91, 10, 127),
        _cc(0x06, 0), _cc(0x26, 2),
    ]
    pairs = _feed(assembler, messages)
    assert [(p.parameter, p.value) for p in pairs] == [(1, 2)]
    assert assembler.sequence == 4


def test_sequence_advances_for_every_controller():
    assembler = NRPNAssembler()
    first = assembler.accept(_cc(0x07, 1))
    second = assembler.accept(_cc(0x63, 0))
    assert (first.sequence, second.sequence) == (0, 1)
    assert assembler.sequence == 2


def test_reset_discards_partial_exchange():
    """Fragments from before a reset cannot complete an exchange after it."""
    assembler = NRPNAssembler()
    _feed(assembler, [_cc(0x63, 0), _cc(0x62, 1), _cc(0x06, 0)])
    assembler.reset()
    assert _feed(assembler, [_cc(0x26, 2)]) == []
    assert assembler.epoch == 1
    assert assembler.sequence == 1


def test_stale_epoch_event_ignored():
    """Events numbered in an earlier epoch are dropped."""
    assembler = NRPNAssembler(epoch=3)
    stale = ControllerEvent(channel=1, controller=0x26, value=0, sequence=3, epoch=2)
    assert assembler.feed(stale) is None


def test_pairs_carry_epoch():
    assembler = NRPNAssembler()
    assembler.reset(7)
    pairs = _feed(assembler, iter_messages(b"".join(build_nrpn(0, 0))))
    assert pairs[0].epoch == 7


def test_pair_repr():
    assert "parameter=1" in repr(ExchangePair(1, 2))
