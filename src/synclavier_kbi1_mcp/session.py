"""Connection state machine for the KBI-1.

The host never gets an acknowledgement from the device, so the whole
session is driven by idempotent polling: once a second the host asks the
KBI-1 who it is until it answers, then asks which keyboard is attached.
A keyboard that stops answering status inquiries is presumed gone after
``liveness_timeout`` ticks and the host goes back to identifying.

Transitions never talk to the transport. Each returns a ``Step`` with the
commands to send and the notices to report, which the caller executes on
the same thread that owns the ``DeviceSession``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .models.session import DeviceSession
from .protocol.commands import (
    ASK_VALUE,
    ButtonChannel,
    ButtonCommand,
    ButtonLevel,
    DisplayCommand,
    DisplayTarget,
    Identity,
    NRPNCommand,
    NRPNParam,
    OutboundCommand,
    PeripheralStatus,
)
from .protocol.nrpn import ExchangePair

logger = logging.getLogger(__name__)

DEFAULT_LIVENESS_TIMEOUT = 5

IDENTITY_INQUIRY = NRPNCommand(NRPNParam.IDENTITY, ASK_VALUE)
STATUS_INQUIRY = NRPNCommand(NRPNParam.STATUS, ASK_VALUE)
CLEAR = NRPNCommand(NRPNParam.CLEAR, 0)


class NoticeKind(Enum):
    """Session changes reported to the outside world."""

    ATTACHED = "attached"
    IDENTIFIED = "identified"
    PERIPHERAL_CONNECTED = "peripheral_connected"
    PERIPHERAL_DISCONNECTED = "peripheral_disconnected"
    TIMEOUT = "timeout"
    DETACHED = "detached"
    ECHO = "echo"


@dataclass(frozen=True)
class Notice:
    """A reportable session change."""

    kind: NoticeKind
    sub_peripheral: PeripheralStatus = PeripheralStatus.NONE
    value: int | None = None


@dataclass
class Step:
    """Outcome of one transition."""

    commands: list[OutboundCommand] = field(default_factory=list)
    notices: list[Notice] = field(default_factory=list)
    poll_transport: bool = False

    def encode(self) -> list[bytes]:
        """Flatten the commands into the messages to transmit, in order."""
        return [frame for command in self.commands for frame in command.encode()]


class ConnectionStateMachine:
    """Transition functions over a ``DeviceSession``.

    Args:
        liveness_timeout: Ticks without a status reply before the device
            is considered gone.
        demo_animation: Drive the display counter and button chase of the
            demo tool while a keyboard is connected.
    """

    def __init__(
        self,
        liveness_timeout: int = DEFAULT_LIVENESS_TIMEOUT,
        demo_animation: bool = False,
    ) -> None:
        if liveness_timeout < 1:
            raise ValueError(f"Liveness timeout must be at least 1 tick, got {liveness_timeout}")
        self.liveness_timeout = liveness_timeout
        self.demo_animation = demo_animation

    def attach(self, session: DeviceSession) -> Step:
        """The transport found the device's ports."""
        session.reset()
        session.attached = True
        session.epoch += 1
        logger.info("KBI-1 ports found, identifying (epoch %d)", session.epoch)
        return Step(
            commands=[IDENTITY_INQUIRY],
            notices=[Notice(NoticeKind.ATTACHED)],
        )

    def detach(self, session: DeviceSession) -> Step:
        """The transport lost the device's ports."""
        step = Step()
        if session.attached:
            logger.info("KBI-1 unplugged")
            step.notices.append(Notice(NoticeKind.DETACHED))
        session.reset()
        return step

    def handle_exchange(self, session: DeviceSession, pair: ExchangePair) -> Step:
        """React to a completed NRPN exchange from the device."""
        step = Step()
        if not session.attached:
            return step

        if pair.parameter == NRPNParam.IDENTITY:
            if pair.value == Identity.KBI1:
                if not session.identified:
                    session.identified = True
                    logger.info("KBI-1 connected")
                    step.commands.append(STATUS_INQUIRY)
                    step.notices.append(Notice(NoticeKind.IDENTIFIED))
            else:
                logger.debug("Ignoring identity response %d", pair.value)

        elif pair.parameter == NRPNParam.STATUS:
            session.last_liveness_tick = session.tick
            self._update_status(session, pair.value, step)

        elif pair.parameter == NRPNParam.REFRESH and pair.value == ASK_VALUE:
            # The KBI-1 reconnected to us after a stall; it needs a full redraw.
            if session.sub_peripheral is not PeripheralStatus.NONE:
                step.commands.append(CLEAR)

        elif pair.parameter == NRPNParam.ECHO:
            step.notices.append(Notice(NoticeKind.ECHO, value=pair.value))

        else:
            logger.debug("Ignoring %r", pair)

        return step

    def _update_status(self, session: DeviceSession, value: int, step: Step) -> None:
        try:
            status = PeripheralStatus(value)
        except ValueError:
            logger.debug("Unknown peripheral status %d", value)
            return

        if status is session.sub_peripheral:
            return

        session.sub_peripheral = status
        if status is PeripheralStatus.NONE:
            logger.info("ORK/VK disconnected")
            step.notices.append(Notice(NoticeKind.PERIPHERAL_DISCONNECTED))
            return

        logger.info("%s connected", status.name)
        step.commands.append(CLEAR)
        step.notices.append(Notice(NoticeKind.PERIPHERAL_CONNECTED, sub_peripheral=status))
        session.test_button = -1

    def tick(self, session: DeviceSession) -> Step:
        """Advance the session by one polling period."""
        step = Step()

        if not session.attached:
            step.poll_transport = True
        elif not session.identified:
            step.commands.append(IDENTITY_INQUIRY)
        elif (
            session.sub_peripheral is not PeripheralStatus.NONE
            and session.tick - session.last_liveness_tick > self.liveness_timeout
        ):
            logger.info("KBI-1 timeout")
            session.identified = False
            session.sub_peripheral = PeripheralStatus.NONE
            step.notices.append(Notice(NoticeKind.TIMEOUT))
        else:
            step.commands.append(STATUS_INQUIRY)

        if self.demo_animation and session.attached:
            step.commands.extend(self._animate(session))

        session.tick += 1
        return step

    def _animate(self, session: DeviceSession) -> list[OutboundCommand]:
        if session.sub_peripheral is PeripheralStatus.ORK:
            display = DisplayCommand(DisplayTarget.ORK, f"{session.tick % 1000:4d}")
            channel = ButtonChannel.ORK
        elif session.sub_peripheral is PeripheralStatus.VK:
            display = DisplayCommand(DisplayTarget.VK_LINE0, f"{session.tick:10d}")
            channel = ButtonChannel.VK
        else:
            return []

        commands: list[OutboundCommand] = [display]
        if session.test_button >= 0:
            commands.append(ButtonCommand(channel, session.test_button, ButtonLevel.OFF))
        session.test_button = (session.test_button + 1) & 0x7F
        commands.append(ButtonCommand(channel, session.test_button, ButtonLevel.ON))
        return commands
