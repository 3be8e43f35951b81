"""Protocol layer: message framing, NRPN reassembly, command builders, and input decoding."""

from .framing import ChannelMessage, FramingMode, MessageFramer, iter_messages
from .nrpn import ExchangePair, NRPNAssembler
from .commands import NRPNParam, build_nrpn, build_display, build_button
