"""
Registry Module - Black Box Interface

Purpose: Track active sessions and enforce the concurrency bound
Interface: try_acquire(), release(), active_count, snapshot()
Hidden: Locking, storage of session identities

Created once per process and passed explicitly to the components that need it.
"""

from .registry import SessionRegistry

__all__ = ["SessionRegistry"]
