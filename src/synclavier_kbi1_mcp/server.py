"""MCP server entry point for the Synclavier KBI-1.

Exposes tools and resources via the Model Context Protocol using the
official Python MCP SDK with stdio transport. The device session runs on a
background thread; tools only read its published snapshot and queue
commands for it.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import asdict
from enum import Enum
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .protocol.commands import (
    ButtonChannel,
    ButtonCommand,
    ButtonLevel,
    Channel,
    DisplayCommand,
    DisplayTarget,
    NRPNCommand,
    NRPNParam,
    OutboundCommand,
    vk_section_target,
)
from .protocol.parser import PerformanceEvent
from .runner import SessionRunner
from .session import Notice
from .transport.midi_connection import MidiConnection

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "synclavier-kbi1",
    instructions="MCP server for the Synclavier KBI-1 keyboard interface",
)

RECENT_INPUT = 64

# Global session state
_runner: SessionRunner | None = None
_recent_input: deque[dict[str, Any]] = deque(maxlen=RECENT_INPUT)

DISPLAY_TARGETS = {
    "ork": DisplayTarget.ORK,
    "vk_line0": DisplayTarget.VK_LINE0,
    "vk_line1": DisplayTarget.VK_LINE1,
}

BUTTON_PANELS = {
    "ork": ButtonChannel.ORK,
    "vk": ButtonChannel.VK,
    "vk_alt": ButtonChannel.VK_ALT,
}

BUTTON_LEVELS = {level.name.lower(): level for level in ButtonLevel}


def _get_runner() -> SessionRunner:
    """Get the running session, raising if not connected."""
    if _runner is None or not _runner.running:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _runner


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value if not isinstance(value.value, int) else value.name.lower()
    return value


def _notice_to_dict(notice: Notice) -> dict[str, Any]:
    return {k: _jsonable(v) for k, v in asdict(notice).items()}


def _record_input(event: PerformanceEvent) -> None:
    entry = {k: _jsonable(v) for k, v in asdict(event).items()}
    entry["type"] = type(event).__name__
    _recent_input.append(entry)


def _submit(command: OutboundCommand) -> dict[str, Any] | None:
    """Validate and queue a command; returns an error dict on failure."""
    try:
        command.encode()
    except ValueError as e:
        return {"error": str(e)}
    try:
        runner = _get_runner()
    except RuntimeError as e:
        return {"error": str(e)}
    if not runner.snapshot()["attached"]:
        return {"error": "KBI-1 not attached"}
    runner.submit(command)
    return None


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    device_name: str | None = None,
    demo_animation: bool | None = None,
) -> dict[str, Any]:
    """Start talking to the KBI-1.

    Looks for MIDI ports named "Synclavier KBI-1" once per second, then
    identifies the device and polls which keyboard (ORK or VK) is attached.

    Args:
        device_name: Override the MIDI port name to look for.
        demo_animation: Run the display counter / button chase demo.
    """
    global _runner
    if _runner is not None and _runner.running:
        return {"connected": True, "message": "Already running", **_runner.snapshot()}

    settings = load_settings(device_name=device_name, demo_animation=demo_animation)
    transport = MidiConnection(device_name=settings.device_name)
    runner = SessionRunner(transport, settings=settings, on_event=_record_input)
    transport.set_chunk_callback(runner.handle_chunk)
    transport.watch_topology(runner.handle_topology_change)
    runner.start()
    _runner = runner

    return {
        "connected": True,
        "device_name": settings.device_name,
        "ports_found": transport.find_ports() is not None,
        **runner.snapshot(),
    }


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Stop the session and close the MIDI ports."""
    global _runner
    if _runner is None:
        return {"disconnected": True}
    transport = _runner.transport
    if isinstance(transport, MidiConnection):
        transport.stop_watching()
    _runner.stop()
    _runner = None
    return {"disconnected": True}


@mcp.tool()
def get_status() -> dict[str, Any]:
    """Report connection state, attached keyboard and recent session changes."""
    if _runner is None:
        return {"state": "disconnected", "running": False}
    status = _runner.snapshot()
    status["running"] = _runner.running
    status["recent_notices"] = [_notice_to_dict(n) for n in list(_runner.recent_notices)]
    return status


@mcp.tool()
def get_recent_input(limit: int = 20) -> dict[str, Any]:
    """Return the most recent key, button, wheel, pedal, knob and ribbon input.

    Args:
        limit: Maximum number of events, newest last.
    """
    events = list(_recent_input)[-limit:] if limit > 0 else []
    return {"events": events}


# ─── DISPLAY & BUTTON TOOLS ──────────────────────────────────────────

@mcp.tool()
def set_display(target: str, text: str) -> dict[str, Any]:
    """Write a line of text to a display.

    Args:
        target: "ork" (4 digits plus unit letter), "vk_line0" or "vk_line1".
        text: ASCII text. On the ORK a decimal point precedes its digit.
    """
    if target not in DISPLAY_TARGETS:
        return {"error": f"Unknown display '{target}'. Valid: {list(DISPLAY_TARGETS)}"}
    error = _submit(DisplayCommand(DISPLAY_TARGETS[target], text))
    if error:
        return error
    return {"target": target, "text": text}


@mcp.tool()
def set_vk_section(line: int, section: int, text: str, decimals: bool = False) -> dict[str, Any]:
    """Write one section of the VK display.

    Args:
        line: Display line (0-1).
        section: Section within the line (0-1).
        text: Characters, or the decimal point pattern when decimals is set.
        decimals: Address the decimal points instead of the characters.
    """
    try:
        target = vk_section_target(line, section, decimals)
    except ValueError as e:
        return {"error": str(e)}
    error = _submit(DisplayCommand(target, text))
    if error:
        return error
    return {"line": line, "section": section, "text": text, "decimals": decimals}


@mcp.tool()
def set_button(panel: str, button: int, level: str = "on") -> dict[str, Any]:
    """Light or clear a panel button.

    Args:
        panel: "ork", "vk" or "vk_alt".
        button: Button index (0-127; the VK alt panel has 32 buttons).
        level: "off", "held", "blinking" or "on". The VK shows only off, blinking and on.
    """
    if panel not in BUTTON_PANELS:
        return {"error": f"Unknown panel '{panel}'. Valid: {list(BUTTON_PANELS)}"}
    if level not in BUTTON_LEVELS:
        return {"error": f"Unknown level '{level}'. Valid: {list(BUTTON_LEVELS)}"}
    error = _submit(ButtonCommand(BUTTON_PANELS[panel], button, BUTTON_LEVELS[level]))
    if error:
        return error
    return {"panel": panel, "button": button, "level": level}


@mcp.tool()
def clear_display() -> dict[str, Any]:
    """Clear the display and turn off every button light."""
    error = _submit(NRPNCommand(NRPNParam.CLEAR, 0))
    if error:
        return error
    return {"cleared": True}


# ─── NRPN TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
def send_nrpn(parameter: int, value: int) -> dict[str, Any]:
    """Send a raw NRPN exchange to the KBI-1.

    Args:
        parameter: NRPN parameter (0 identity, 1 status, 2 clear, 3 echo, 4 refresh).
        value: 14-bit value; 16383 (0x3FFF) asks for the current value.
    """
    error = _submit(NRPNCommand(parameter, value))
    if error:
        return error
    return {"parameter": parameter, "value": value}


@mcp.tool()
def echo(value: int) -> dict[str, Any]:
    """Ask the KBI-1 to echo a value back. The reply shows up in get_status.

    Args:
        value: 14-bit test value.
    """
    error = _submit(NRPNCommand(NRPNParam.ECHO, value))
    if error:
        return error
    return {"sent": value}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("kbi1://device/status")
def resource_device_status() -> str:
    """Connection state and attached keyboard."""
    if _runner is None:
        return json.dumps({"state": "disconnected", "running": False})
    return json.dumps({**_runner.snapshot(), "running": _runner.running})


@mcp.resource("kbi1://protocol/channels")
def resource_channels() -> str:
    """MIDI channel assignments (zero-based)."""
    return json.dumps({
        "notes": int(Channel.NOTES),
        "nrpn": int(Channel.NRPN),
        "ork_buttons_and_knob": int(ButtonChannel.ORK),
        "vk_buttons": int(ButtonChannel.VK),
        "vk_alt_buttons": int(ButtonChannel.VK_ALT),
        "display": int(Channel.DISPLAY),
        "ribbon": int(Channel.RIBBON),
    })


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def show_message(message: str) -> str:
    """Guide the AI to lay out a message on whichever keyboard is attached.

    Args:
        message: Text to show.
    """
    return f"""Show "{message}" on the Synclavier keyboard.
Use get_status to find out whether an ORK or a VK is attached.
- ORK: 4 digits plus a unit letter (m, h, a, v); a decimal point precedes its digit.
- VK: two text lines, "vk_line0" and "vk_line1".
Use set_display to write each line."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
