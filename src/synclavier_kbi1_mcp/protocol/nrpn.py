"""NRPN exchange reassembly.

The KBI-1 reports identity and status as NRPN exchanges: four control
changes on the NRPN channel carrying parameter MSB, parameter LSB, data MSB
and data LSB, in that order. There is no framing or checksum, so the only
protection against a lost or duplicated fragment is ordering: a pair is
accepted only when the four fragments were the last four controller events
received on the channel, in order. Any other controller on the channel in
between breaks the run and the exchange is simply not delivered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .commands import Channel, NRPNController
from .framing import ChannelMessage, MessageKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControllerEvent:
    """A control change on the NRPN channel tagged with its receipt order."""

    channel: int
    controller: int
    value: int
    sequence: int
    epoch: int = 0


@dataclass(frozen=True)
class ExchangePair:
    """A completed NRPN parameter/value exchange."""

    parameter: int
    value: int
    epoch: int = 0

    def __repr__(self) -> str:
        return f"ExchangePair(parameter={self.parameter}, value=0x{self.value:04X})"


@dataclass
class _Fragment:
    value: int = 0
    sequence: int | None = None


class NRPNAssembler:
    """Rebuilds ``ExchangePair`` values from controller events.

    Sequence numbers are scoped to a connection epoch. ``reset`` starts a
    new epoch, forgetting every fragment seen so far.
    """

    def __init__(self, channel: int = Channel.NRPN, epoch: int = 0) -> None:
        self._channel = channel
        self._epoch = epoch
        self._sequence = 0
        self._fragments = {role: _Fragment() for role in NRPNController}

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def sequence(self) -> int:
        """Sequence number the next controller event will receive."""
        return self._sequence

    def reset(self, epoch: int | None = None) -> None:
        """Discard partial exchanges and restart numbering for a new epoch."""
        self._epoch = self._epoch + 1 if epoch is None else epoch
        self._sequence = 0
        self._fragments = {role: _Fragment() for role in NRPNController}

    def accept(self, message: ChannelMessage) -> ControllerEvent | None:
        """Number a control change on the NRPN channel; ignore anything else."""
        if message.channel != self._channel:
            return None
        if message.kind is not MessageKind.CONTROL_CHANGE:
            return None
        event = ControllerEvent(
            channel=message.channel,
            controller=message.data1,
            value=message.data2,
            sequence=self._sequence,
            epoch=self._epoch,
        )
        self._sequence += 1
        return event

    def feed(self, event: ControllerEvent) -> ExchangePair | None:
        """Record one controller event, returning a pair when one completes."""
        if event.epoch != self._epoch:
            logger.debug("Ignoring controller event from epoch %d", event.epoch)
            return None

        try:
            role = NRPNController(event.controller)
        except ValueError:
            return None

        fragment = self._fragments[role]
        fragment.value = event.value
        fragment.sequence = event.sequence

        if role is not NRPNController.DATA_LSB:
            return None

        last = event.sequence
        frags = self._fragments
        if (
            frags[NRPNController.PARAM_MSB].sequence != last - 3
            or frags[NRPNController.PARAM_LSB].sequence != last - 2
            or frags[NRPNController.DATA_MSB].sequence != last - 1
        ):
            logger.debug("Discarding out-of-order NRPN exchange ending at %d", last)
            return None

        return ExchangePair(
            parameter=frags[NRPNController.PARAM_MSB].value << 7
            | frags[NRPNController.PARAM_LSB].value,
            value=frags[NRPNController.DATA_MSB].value << 7
            | frags[NRPNController.DATA_LSB].value,
            epoch=self._epoch,
        )

    def feed_message(self, message: ChannelMessage) -> ExchangePair | None:
        """Number and record a channel message in one step."""
        event = self.accept(message)
        if event is None:
            return None
        return self.feed(event)
