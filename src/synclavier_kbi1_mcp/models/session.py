"""Device session model: presence, identity and attached keyboard."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..protocol.commands import PeripheralStatus


class ConnectionState(Enum):
    """Coarse connection state derived from a ``DeviceSession``."""

    DISCONNECTED = "disconnected"
    IDENTIFYING = "identifying"
    CONNECTED = "connected"


@dataclass
class DeviceSession:
    """Everything the host knows about the KBI-1.

    Owned by a single consumer; only ``ConnectionStateMachine`` mutates it.
    """

    attached: bool = False
    identified: bool = False
    sub_peripheral: PeripheralStatus = PeripheralStatus.NONE
    tick: int = 0
    last_liveness_tick: int = 0
    epoch: int = 0
    test_button: int = -1

    @property
    def state(self) -> ConnectionState:
        if not self.attached:
            return ConnectionState.DISCONNECTED
        if self.sub_peripheral is not PeripheralStatus.NONE:
            return ConnectionState.CONNECTED
        return ConnectionState.IDENTIFYING

    def reset(self) -> None:
        """Forget the device. Tick counter and epoch keep counting."""
        self.attached = False
        self.identified = False
        self.sub_peripheral = PeripheralStatus.NONE
        self.last_liveness_tick = 0
        self.test_button = -1

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "attached": self.attached,
            "identified": self.identified,
            "sub_peripheral": self.sub_peripheral.name.lower(),
            "tick": self.tick,
            "last_liveness_tick": self.last_liveness_tick,
            "epoch": self.epoch,
        }
