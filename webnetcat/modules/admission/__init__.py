"""
Admission Module - Black Box Interface

Purpose: Decide whether a target host/port may be relayed to
Interface: AdmissionPolicy.allows(), parse_port()
Hidden: Address classification, allow-list matching

Pure functions of the request and static rules - no state, no I/O.
"""

from .policy import (
    AdmissionPolicy,
    is_loopback_or_sensitive,
    is_private_ipv4,
    parse_port,
)

__all__ = ["AdmissionPolicy", "is_loopback_or_sensitive", "is_private_ipv4", "parse_port"]
