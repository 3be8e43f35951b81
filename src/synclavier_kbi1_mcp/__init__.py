"""Synclavier KBI-1 host library and MCP server.

Frames the KBI-1's MIDI stream, reassembles its NRPN exchanges, and runs
the identify / status polling session that tracks whether an ORK or VK
keyboard is attached.
"""

from .config import Settings, load_settings
from .models.session import ConnectionState, DeviceSession
from .runner import SessionRunner
from .session import ConnectionStateMachine, Notice, NoticeKind, Step

__version__ = "0.1.0"
__all__ = [
    "Settings",
    "load_settings",
    "ConnectionState",
    "DeviceSession",
    "SessionRunner",
    "ConnectionStateMachine",
    "Notice",
    "NoticeKind",
    "Step",
]
