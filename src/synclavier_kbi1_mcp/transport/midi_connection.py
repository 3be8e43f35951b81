"""MIDI connection to the Synclavier KBI-1.

Uses ``mido`` with its default ``python-rtmidi`` backend. The KBI-1 is a
class-compliant USB MIDI device whose input and output ports are both named
``Synclavier KBI-1``; some backends decorate port names with a client or
port number, so a name that starts with the device name also matches.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

import mido

logger = logging.getLogger(__name__)

DEVICE_NAME = "Synclavier KBI-1"
TOPOLOGY_POLL_INTERVAL = 1.0

ChunkCallback = Callable[[str, bytes], None]


@dataclass
class PortInfo:
    """Names of the device's MIDI ports as the backend reports them."""

    input_name: str = ""
    output_name: str = ""


def match_port(names: Iterable[str], device_name: str = DEVICE_NAME) -> str | None:
    """Return the port name belonging to the device, preferring an exact match."""
    names = list(names)
    if device_name in names:
        return device_name
    for name in names:
        if name.startswith(device_name):
            return name
    return None


class MidiConnection:
    """Manages the KBI-1's MIDI input and output ports.

    Usage::

        conn = MidiConnection(on_chunk=handle_bytes)
        if conn.poll_for_device():
            conn.send(bytes([0xB1, 0x63, 0x00]))
        conn.close()

    Inbound messages are delivered on the backend's callback thread as
    ``on_chunk(input_port_name, raw_bytes)``.
    """

    def __init__(
        self,
        device_name: str = DEVICE_NAME,
        on_chunk: ChunkCallback | None = None,
    ) -> None:
        self._device_name = device_name
        self._on_chunk = on_chunk
        self._input = None
        self._output = None
        self._connected = False
        self._port_info = PortInfo()
        self._watch_stop: threading.Event | None = None
        self._watch_thread: threading.Thread | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def port_info(self) -> PortInfo:
        return self._port_info

    @property
    def input_name(self) -> str | None:
        return self._port_info.input_name if self._connected else None

    def set_chunk_callback(self, on_chunk: ChunkCallback | None) -> None:
        self._on_chunk = on_chunk

    def find_ports(self) -> PortInfo | None:
        """Look for the device among the available ports without opening them."""
        input_name = match_port(mido.get_input_names(), self._device_name)
        output_name = match_port(mido.get_output_names(), self._device_name)
        if input_name is None or output_name is None:
            return None
        return PortInfo(input_name=input_name, output_name=output_name)

    def poll_for_device(self) -> bool:
        """Open the device if it is available. Returns whether it is connected."""
        if self._connected:
            return True
        info = self.find_ports()
        if info is None:
            return False
        try:
            self.open(info)
        except ConnectionError as e:
            logger.debug("KBI-1 ports listed but could not be opened: %s", e)
            return False
        return True

    def open(self, info: PortInfo | None = None) -> PortInfo:
        """Open the device's input and output ports.

        Raises:
            ConnectionError: If the device cannot be found or opened.
        """
        info = info or self.find_ports()
        if info is None:
            raise ConnectionError(
                f"Could not find MIDI ports named {self._device_name!r}. "
                f"Ensure the device is connected."
            )

        try:
            self._output = mido.open_output(info.output_name)
            self._input = mido.open_input(info.input_name, callback=self._on_message)
        except Exception as e:
            self._close_ports()
            raise ConnectionError(
                f"Could not open MIDI ports for {self._device_name!r}: {e}"
            ) from e

        self._port_info = info
        self._connected = True
        logger.info("KBI-1 input found: %s", info.input_name)
        logger.info("KBI-1 output found: %s", info.output_name)
        return info

    def _close_ports(self) -> None:
        for port in (self._input, self._output):
            if port is None:
                continue
            try:
                port.close()
            except Exception as e:
                logger.warning("Error closing port %s: %s", port, e)
        self._input = None
        self._output = None

    def close(self) -> None:
        """Close both ports."""
        if not self._connected:
            return
        try:
            self._close_ports()
        finally:
            self._connected = False
            logger.info("Disconnected")

    def send(self, data: bytes) -> None:
        """Send one complete MIDI message.

        Raises:
            ConnectionError: If not connected or the backend rejects the write.
            ValueError: If ``data`` is not a valid MIDI message.
        """
        if not self._connected:
            raise ConnectionError("Not connected to device")

        message = mido.Message.from_bytes(list(data))
        try:
            self._output.send(message)
        except (OSError, RuntimeError) as e:
            raise ConnectionError(f"MIDI send failed: {e}") from e

    def _on_message(self, message: mido.Message) -> None:
        if self._on_chunk is None:
            return
        self._on_chunk(self._port_info.input_name, bytes(message.bytes()))

    def watch_topology(
        self,
        callback: Callable[[], None],
        interval: float = TOPOLOGY_POLL_INTERVAL,
    ) -> None:
        """Call ``callback`` from a daemon thread whenever the port list changes."""
        self.stop_watching()
        stop = threading.Event()

        def snapshot() -> tuple[frozenset, frozenset]:
            return frozenset(mido.get_input_names()), frozenset(mido.get_output_names())

        def watch() -> None:
            last = snapshot()
            while not stop.wait(interval):
                try:
                    current = snapshot()
                except Exception as e:
                    logger.debug("Port enumeration failed: %s", e)
                    continue
                if current != last:
                    last = current
                    logger.debug("MIDI topology changed")
                    callback()

        self._watch_stop = stop
        self._watch_thread = threading.Thread(target=watch, name="kbi1-topology", daemon=True)
        self._watch_thread.start()

    def stop_watching(self) -> None:
        if self._watch_stop is not None:
            self._watch_stop.set()
        self._watch_stop = None
        self._watch_thread = None
