"""Network utility functions for vrcast."""

import ipaddress
import logging
import socket

import psutil

logger = logging.getLogger(__name__)

WILDCARD_ADDRESS = "0.0.0.0"

# Patterns to exclude virtual/bridge interfaces
VIRTUAL_PREFIXES = (
    "bridge",  # VMware, Parallels bridges
    "docker",  # Docker interfaces
    "veth",  # Virtual Ethernet (Docker, LXC)
    "vmnet",  # VMware network
    "vboxnet",  # VirtualBox network
    "virbr",  # libvirt bridge
    "tun",  # VPN tunnels
    "tap",  # Virtual network tap
    "utun",  # macOS VPN tunnels
    "vnic",  # Virtual NIC
    "ppp",  # Point-to-Point Protocol (VPN)
)


def get_local_ip_addresses() -> list[str]:
    """
    Get the IPv4 addresses of physical network interfaces.

    Virtual interfaces (bridges, VPNs, Docker, etc.), loopback and APIPA
    addresses (169.254.x.x) are skipped, leaving the addresses a listener on
    another machine would share a LAN with.

    Returns:
        list: List of IP addresses as strings

    Example:
        >>> get_local_ip_addresses()
        ['192.168.1.100', '10.0.0.50']
    """
    ip_addresses = []
    try:
        for interface_name, interface_addresses in psutil.net_if_addrs().items():
            if interface_name.lower().startswith(VIRTUAL_PREFIXES):
                continue

            for address in interface_addresses:
                if address.family == socket.AF_INET:
                    ip = address.address
                    if ip != "127.0.0.1" and not ip.startswith("169.254."):
                        ip_addresses.append(ip)
    except Exception as e:
        logger.warning(f"Failed to get local IP addresses: {e}")

    return ip_addresses


def is_multicast_address(host: str) -> bool:
    """True when ``host`` is an IPv4 multicast address (224.0.0.0/4)."""
    try:
        return ipaddress.IPv4Address(host).is_multicast
    except ValueError:
        return False


def parse_socket_address(value: str) -> tuple[str, int]:
    """
    Parse ``"host:port"`` into a tuple.

    Raises:
        ValueError: If the host is not an IPv4 address or the port is out of range
    """
    raw = value.strip()
    if ":" not in raw:
        raise ValueError(f"expected host:port, got {value!r}")

    host, port_str = raw.rsplit(":", 1)
    host = host.strip()
    try:
        ipaddress.IPv4Address(host)
    except ValueError:
        raise ValueError(f"host must be an IPv4 address, got {host!r}") from None

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"port must be an integer, got {port_str!r}") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"port must be between 1 and 65535, got {port}")

    return host, port


def resolve_interface_address(interface: str) -> str:
    """
    Turn an interface name (e.g. ``eth0``) or IPv4 address into an address.

    Addresses, including the wildcard ``0.0.0.0``, pass through unchanged.

    Raises:
        ValueError: If no interface with that name has an IPv4 address
    """
    try:
        ipaddress.IPv4Address(interface)
        return interface
    except ValueError:
        pass

    for address in psutil.net_if_addrs().get(interface, []):
        if address.family == socket.AF_INET:
            return address.address

    raise ValueError(f"interface {interface!r} has no IPv4 address")
