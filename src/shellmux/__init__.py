"""Multiplexed PTY-backed shell sessions for terminal widgets."""

__version__ = "0.1.0"
