"""
Host/port admission policy.

Precedence for the host check:
1. allow-any: everything except loopback/sensitive addresses
2. private IPv4 ranges (not loopback/sensitive)
3. exact match on the explicit allow-list
4. deny

Loopback and sensitive addresses are denied even under allow-any.
"""

import ipaddress
import logging
from typing import Any, Optional, Union

from ...config.provider import AdmissionConfig

logger = logging.getLogger("webnetcat.admission")

PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)

LOOPBACK_NETWORK = ipaddress.IPv4Network("127.0.0.0/8")

SENSITIVE_ADDRESSES = frozenset(
    {
        ipaddress.IPv4Address("0.0.0.0"),
        ipaddress.IPv4Address("169.254.169.254"),  # cloud metadata
        ipaddress.IPv6Address("::"),
        ipaddress.IPv6Address("::1"),
    }
)

SENSITIVE_HOSTNAMES = frozenset({"localhost"})


def _parse_ip(host: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        address = ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None
    # Treat ::ffff:a.b.c.d like the embedded IPv4 address
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return address.ipv4_mapped
    return address


def is_private_ipv4(host: str) -> bool:
    """Check whether host is a literal address in 10/8, 172.16/12 or 192.168/16."""
    address = _parse_ip(host)
    if not isinstance(address, ipaddress.IPv4Address):
        return False
    return any(address in network for network in PRIVATE_NETWORKS)


def is_loopback_or_sensitive(host: str) -> bool:
    """Check whether host is loopback, unspecified or the metadata address."""
    if host.strip().lower().rstrip(".") in SENSITIVE_HOSTNAMES:
        return True
    address = _parse_ip(host)
    if address is None:
        return False
    if isinstance(address, ipaddress.IPv4Address) and address in LOOPBACK_NETWORK:
        return True
    return address in SENSITIVE_ADDRESSES


def parse_port(value: Any) -> Optional[int]:
    """
    Parse a handshake port value.

    Returns:
        The port as int, or None when value is not an integer
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not (value.isascii() and value.isdecimal()):
        return None
    return int(value)


class AdmissionPolicy:
    """Pure allow/deny decision over (host, port). Safe to share between sessions."""

    def __init__(self, rules: AdmissionConfig):
        self.rules = rules
        self._allow_hosts = frozenset(rules.allow_hosts)

    def is_port_allowed(self, port: Any) -> bool:
        """Port must be an integer within [min_port, max_port]."""
        if isinstance(port, bool) or not isinstance(port, int):
            return False
        return self.rules.min_port <= port <= self.rules.max_port

    def is_host_allowed(self, host: Any) -> bool:
        if not isinstance(host, str) or not host:
            return False
        if self.rules.allow_any:
            return not is_loopback_or_sensitive(host)
        if is_private_ipv4(host) and not is_loopback_or_sensitive(host):
            return True
        return host in self._allow_hosts

    def allows(self, host: Any, port: Any) -> bool:
        """
        Combined admission decision.

        Args:
            host: Target host string from the handshake
            port: Target port, already parsed to int (see parse_port)

        Returns:
            True if the session may be relayed to host:port
        """
        allowed = self.is_port_allowed(port) and self.is_host_allowed(host)
        if not allowed:
            logger.debug(f"Admission denied for {host!r}:{port!r}")
        return allowed
