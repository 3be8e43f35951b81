"""Session runner: hands decoded input to the single thread that owns the session.

Inbound bytes arrive on the MIDI backend's callback thread. They are framed
and reassembled there, and the results are posted to a mailbox. One consumer
thread drains the mailbox, runs the once-per-tick poll, owns the
``DeviceSession`` and performs every send, so events and ticks are handled
strictly one at a time.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from .config import Settings
from .models.session import DeviceSession
from .protocol.commands import OutboundCommand
from .protocol.framing import MessageFramer
from .protocol.nrpn import ExchangePair, NRPNAssembler
from .protocol.parser import PerformanceEvent, is_nrpn_fragment, parse_message
from .session import ConnectionStateMachine, Notice, Step

logger = logging.getLogger(__name__)

RECENT_NOTICES = 32


class Transport(Protocol):
    """What the runner needs from the MIDI transport."""

    @property
    def input_name(self) -> str | None: ...

    def poll_for_device(self) -> bool: ...

    def send(self, data: bytes) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class _Exchange:
    pair: ExchangePair


@dataclass(frozen=True)
class _Input:
    event: PerformanceEvent


@dataclass(frozen=True)
class _Submit:
    command: OutboundCommand


@dataclass(frozen=True)
class _TopologyChanged:
    pass


@dataclass(frozen=True)
class _Wake:
    pass


class SessionRunner:
    """Drives a ``ConnectionStateMachine`` against a transport.

    Args:
        transport: MIDI transport; it must deliver inbound chunks to
            :meth:`handle_chunk`.
        settings: Host settings (tick interval, timeout, framing mode).
        on_notice: Called on the consumer thread for every session notice.
        on_event: Called on the consumer thread for decoded performance input.
    """

    def __init__(
        self,
        transport: Transport,
        settings: Settings | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        on_event: Callable[[PerformanceEvent], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings()
        self.transport = transport
        self.session = DeviceSession()
        self.machine = ConnectionStateMachine(
            liveness_timeout=self.settings.liveness_timeout,
            demo_animation=self.settings.demo_animation,
        )
        self.recent_notices: deque[Notice] = deque(maxlen=RECENT_NOTICES)
        self._on_notice = on_notice
        self._on_event = on_event
        self._clock = clock
        self._mailbox: queue.Queue = queue.Queue()
        self._snapshot: dict[str, Any] = self.session.to_dict()

        # Producer-side state, only touched by handle_chunk
        self._framer = MessageFramer(self.settings.framing)
        self._assembler = NRPNAssembler()

        # Written by the consumer, read by the producer
        self._epoch = self.session.epoch
        self._source: str | None = None

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ─── PRODUCER SIDE ──────────────────────────────────────────────

    def handle_chunk(self, source: str, data: bytes) -> None:
        """Frame and reassemble one inbound chunk. Never blocks."""
        if source != self._source:
            return

        epoch = self._epoch
        if self._assembler.epoch != epoch:
            self._assembler.reset(epoch)
            self._framer.reset()

        for message in self._framer.feed(data):
            pair = self._assembler.feed_message(message)
            if pair is not None:
                self._mailbox.put(_Exchange(pair))
                continue
            if self._on_event is None or is_nrpn_fragment(message):
                continue
            event = parse_message(message)
            if event is not None:
                self._mailbox.put(_Input(event))

    def handle_topology_change(self) -> None:
        """Topology notification from the transport."""
        self._mailbox.put(_TopologyChanged())

    def submit(self, command: OutboundCommand) -> None:
        """Queue a command to be sent from the consumer thread."""
        self._mailbox.put(_Submit(command))

    # ─── CONSUMER SIDE ──────────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        """Latest published copy of the session, safe to read from any thread."""
        return dict(self._snapshot)

    def tick(self) -> None:
        self._execute(self.machine.tick(self.session))

    def drain(self) -> int:
        """Process every queued item without blocking. Returns the count."""
        count = 0
        while True:
            try:
                item = self._mailbox.get_nowait()
            except queue.Empty:
                return count
            self._process(item)
            count += 1

    def _process(self, item: object) -> None:
        if isinstance(item, _Exchange):
            if item.pair.epoch != self.session.epoch:
                logger.debug("Dropping %r from stale epoch %d", item.pair, item.pair.epoch)
                return
            self._execute(self.machine.handle_exchange(self.session, item.pair))
        elif isinstance(item, _Input):
            if self._on_event is not None:
                self._on_event(item.event)
        elif isinstance(item, _Submit):
            if not self.session.attached:
                logger.warning("Not connected, dropping %r", item.command)
                return
            self._send(item.command.encode())
        elif isinstance(item, _TopologyChanged):
            # Ports can return under the same names; reopening starts a new epoch.
            if self.session.attached:
                self._lost()
            self._poll()
        self._publish()

    def _execute(self, step: Step) -> None:
        for notice in step.notices:
            self._report(notice)
        if step.commands:
            self._send(step.encode())
        if step.poll_transport:
            self._poll()
        self._publish()

    def _send(self, frames: list[bytes]) -> None:
        for frame in frames:
            try:
                self.transport.send(frame)
            except ConnectionError as e:
                logger.warning("Send failed, treating KBI-1 as unplugged: %s", e)
                self._lost()
                return

    def _poll(self) -> None:
        if not self.transport.poll_for_device():
            return
        step = self.machine.attach(self.session)
        self._epoch = self.session.epoch
        self._source = self.transport.input_name
        self._execute(step)

    def _lost(self) -> None:
        self._source = None
        step = self.machine.detach(self.session)
        self.transport.close()
        for notice in step.notices:
            self._report(notice)
        self._publish()

    def _report(self, notice: Notice) -> None:
        self.recent_notices.append(notice)
        if self._on_notice is not None:
            self._on_notice(notice)

    def _publish(self) -> None:
        self._snapshot = self.session.to_dict()

    # ─── THREAD ─────────────────────────────────────────────────────

    def run(self) -> None:
        """Consumer loop; returns once :meth:`stop` is called."""
        interval = self.settings.tick_interval
        next_tick = self._clock()
        while not self._stop.is_set():
            timeout = max(0.0, next_tick - self._clock())
            try:
                item = self._mailbox.get(timeout=timeout)
            except queue.Empty:
                item = None
            if item is not None and not isinstance(item, _Wake):
                self._process(item)

            now = self._clock()
            if now >= next_tick:
                self.tick()
                next_tick += interval
                if next_tick < now:
                    next_tick = now + interval

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="kbi1-session", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        self._mailbox.put(_Wake())
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Session thread did not stop within %s s", timeout)
                return
            self._thread = None
        self._lost()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
