"""Data models for the device session."""

from .session import ConnectionState, DeviceSession
