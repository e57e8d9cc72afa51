"""Peer-to-peer marketplace core for time-locked token positions."""

__version__ = "0.1.0"
