"""
IPv4 multicast transport.

The publisher socket is bound to the group port on all interfaces and joined
to the group, so the same host can both send snapshots and hear them (with
loopback enabled). Several local processes may bind the port thanks to
``SO_REUSEADDR``.
"""

from __future__ import annotations

import socket

from loguru import logger

from .network_utils import WILDCARD_ADDRESS, is_multicast_address

DEFAULT_MULTICAST_GROUP = "239.255.42.98"
DEFAULT_PORT = 50692

# 65535 minus the IPv4 and UDP headers
MAX_DATAGRAM_SIZE = 65507


class PublisherError(Exception):
    """Raised when the multicast socket cannot be set up."""


class TransportError(Exception):
    """Raised when a single datagram cannot be sent."""


def _membership_request(group: str, interface: str) -> bytes:
    return socket.inet_aton(group) + socket.inet_aton(interface)


def bind_multicast(
    group: str,
    port: int,
    interface: str = WILDCARD_ADDRESS,
    ttl: int = 1,
    loopback: bool = True,
    timeout: float | None = None,
) -> socket.socket:
    """
    Create a UDP socket bound to ``port`` and joined to ``group``.

    Args:
        group: IPv4 multicast group
        port: UDP port, bound on all local interfaces
        interface: Local interface address used for membership and sending
        ttl: Multicast hop limit for outgoing datagrams
        loopback: Deliver our own datagrams to local listeners
        timeout: Optional socket timeout in seconds

    Raises:
        PublisherError: If the group is not multicast or a socket call fails
    """
    if not is_multicast_address(group):
        raise PublisherError(f"Address must be multicast, got {group!r}")

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((WILDCARD_ADDRESS, port))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1 if loopback else 0)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
        if interface != WILDCARD_ADDRESS:
            sock.setsockopt(
                socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(interface)
            )
        sock.setsockopt(
            socket.IPPROTO_IP,
            socket.IP_ADD_MEMBERSHIP,
            _membership_request(group, interface),
        )
        if timeout is not None:
            sock.settimeout(timeout)
    except OSError as e:
        sock.close()
        raise PublisherError(
            f"Failed to bind multicast socket {group}:{port} on {interface}: {e}"
        ) from e

    return sock


class MulticastPublisher:
    """
    Sends snapshot datagrams to a multicast group.

    Usage:
        with MulticastPublisher("239.255.42.98", 50692) as publisher:
            publisher.broadcast(b"...")
    """

    def __init__(
        self,
        group: str = DEFAULT_MULTICAST_GROUP,
        port: int = DEFAULT_PORT,
        interface: str = WILDCARD_ADDRESS,
        ttl: int = 1,
        loopback: bool = True,
    ):
        self.group = group
        self.port = port
        self.interface = interface
        self._socket: socket.socket | None = bind_multicast(
            group, port, interface=interface, ttl=ttl, loopback=loopback
        )
        logger.info(
            f"Multicast publisher joined {group}:{port} "
            f"(interface {interface}, ttl {ttl}, loopback {'on' if loopback else 'off'})"
        )

    @property
    def destination(self) -> tuple[str, int]:
        return (self.group, self.port)

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def broadcast(self, payload: bytes) -> int:
        """
        Send ``payload`` as a single datagram.

        Returns:
            Number of bytes sent

        Raises:
            TransportError: If the payload does not fit a datagram, the
                publisher is closed or the send fails
        """
        if self._socket is None:
            raise TransportError("Publisher is closed")
        if len(payload) > MAX_DATAGRAM_SIZE:
            raise TransportError(
                f"Payload of {len(payload)} bytes exceeds the {MAX_DATAGRAM_SIZE} byte datagram limit"
            )
        try:
            return self._socket.sendto(payload, self.destination)
        except OSError as e:
            raise TransportError(f"Send to {self.group}:{self.port} failed: {e}") from e

    def close(self) -> None:
        """Leave the group and close the socket."""
        if self._socket is None:
            return
        sock, self._socket = self._socket, None
        try:
            sock.setsockopt(
                socket.IPPROTO_IP,
                socket.IP_DROP_MEMBERSHIP,
                _membership_request(self.group, self.interface),
            )
        except OSError as e:
            logger.debug(f"Leaving multicast group failed: {e}")
        sock.close()
        logger.info(f"Multicast publisher closed ({self.group}:{self.port})")

    def __enter__(self) -> MulticastPublisher:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
