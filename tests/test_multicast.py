"""Tests for the multicast transport."""

from __future__ import annotations

import socket

import pytest

from vrcast import multicast
from vrcast.multicast import (
    MAX_DATAGRAM_SIZE,
    MulticastPublisher,
    PublisherError,
    TransportError,
    bind_multicast,
)


class FakeSocket:
    """Records socket calls instead of touching the network."""

    instances: list[FakeSocket] = []
    fail_on_option: int | None = None

    def __init__(self, family, kind, proto=0):
        self.family = family
        self.kind = kind
        self.proto = proto
        self.options: list[tuple[int, int, object]] = []
        self.bound_to = None
        self.timeout = None
        self.sent: list[tuple[bytes, tuple[str, int]]] = []
        self.closed = False
        self.fail_send = False
        FakeSocket.instances.append(self)

    def setsockopt(self, level, option, value):
        if option == self.fail_on_option:
            raise OSError(99, "Cannot assign requested address")
        self.options.append((level, option, value))

    def bind(self, address):
        self.bound_to = address

    def settimeout(self, timeout):
        self.timeout = timeout

    def sendto(self, payload, address):
        if self.fail_send:
            raise OSError(101, "Network is unreachable")
        self.sent.append((payload, address))
        return len(payload)

    def close(self):
        self.closed = True

    def option_names(self) -> list[int]:
        return [option for _, option, _ in self.options]


@pytest.fixture
def fake_socket(monkeypatch):
    FakeSocket.instances = []
    monkeypatch.setattr(multicast.socket, "socket", FakeSocket)
    return FakeSocket


class TestBindMulticast:
    """Tests for socket setup."""

    def test_option_sequence_default_interface(self, fake_socket):
        sock = bind_multicast("239.255.42.98", 50692)

        assert sock.family == socket.AF_INET
        assert sock.kind == socket.SOCK_DGRAM
        assert sock.bound_to == ("0.0.0.0", 50692)
        assert sock.option_names() == [
            socket.SO_REUSEADDR,
            socket.IP_MULTICAST_LOOP,
            socket.IP_MULTICAST_TTL,
            socket.IP_ADD_MEMBERSHIP,
        ]
        membership = sock.options[-1][2]
        assert membership == socket.inet_aton("239.255.42.98") + socket.inet_aton("0.0.0.0")
        assert sock.timeout is None

    def test_reuse_set_before_bind(self, fake_socket, monkeypatch):
        order = []
        original_bind = FakeSocket.bind
        original_setsockopt = FakeSocket.setsockopt

        def bind(self, address):
            order.append("bind")
            original_bind(self, address)

        def setsockopt(self, level, option, value):
            order.append(option)
            original_setsockopt(self, level, option, value)

        monkeypatch.setattr(FakeSocket, "bind", bind)
        monkeypatch.setattr(FakeSocket, "setsockopt", setsockopt)

        bind_multicast("239.255.42.98", 50692)
        assert order.index(socket.SO_REUSEADDR) < order.index("bind")

    def test_explicit_interface(self, fake_socket):
        sock = bind_multicast("239.1.2.3", 6000, interface="192.168.1.20", ttl=4, loopback=False)

        options = {option: value for _, option, value in sock.options}
        assert options[socket.IP_MULTICAST_LOOP] == 0
        assert options[socket.IP_MULTICAST_TTL] == 4
        assert options[socket.IP_MULTICAST_IF] == socket.inet_aton("192.168.1.20")
        assert options[socket.IP_ADD_MEMBERSHIP] == socket.inet_aton("239.1.2.3") + socket.inet_aton(
            "192.168.1.20"
        )

    def test_timeout(self, fake_socket):
        sock = bind_multicast("239.255.42.98", 50692, timeout=0.5)
        assert sock.timeout == 0.5

    @pytest.mark.parametrize("group", ["192.168.1.1", "255.255.255.255", "localhost", "224.0.0"])
    def test_non_multicast_group(self, fake_socket, group):
        with pytest.raises(PublisherError, match="multicast"):
            bind_multicast(group, 50692)
        assert fake_socket.instances == []

    def test_membership_failure_closes_socket(self, fake_socket, monkeypatch):
        monkeypatch.setattr(FakeSocket, "fail_on_option", socket.IP_ADD_MEMBERSHIP, raising=False)
        with pytest.raises(PublisherError, match="239.255.42.98:50692"):
            bind_multicast("239.255.42.98", 50692)
        assert fake_socket.instances[0].closed is True


class TestMulticastPublisher:
    """Tests for MulticastPublisher."""

    def test_broadcast_sends_to_group(self, fake_socket):
        publisher = MulticastPublisher("239.255.42.98", 50692)
        assert publisher.broadcast(b'{"ts":1,"trackers":[]}') == 22

        sock = fake_socket.instances[0]
        assert sock.sent == [(b'{"ts":1,"trackers":[]}', ("239.255.42.98", 50692))]
        assert publisher.destination == ("239.255.42.98", 50692)

    def test_oversize_payload(self, fake_socket):
        publisher = MulticastPublisher()
        with pytest.raises(TransportError, match="datagram limit"):
            publisher.broadcast(b"x" * (MAX_DATAGRAM_SIZE + 1))
        assert fake_socket.instances[0].sent == []

    def test_largest_payload_is_sent(self, fake_socket):
        publisher = MulticastPublisher()
        assert publisher.broadcast(b"x" * MAX_DATAGRAM_SIZE) == MAX_DATAGRAM_SIZE

    def test_send_failure(self, fake_socket):
        publisher = MulticastPublisher()
        fake_socket.instances[0].fail_send = True
        with pytest.raises(TransportError, match="unreachable"):
            publisher.broadcast(b"{}")

        # Later sends are unaffected
        fake_socket.instances[0].fail_send = False
        assert publisher.broadcast(b"{}") == 2

    def test_close_leaves_group(self, fake_socket):
        with MulticastPublisher("239.255.42.98", 50692) as publisher:
            assert publisher.is_open

        sock = fake_socket.instances[0]
        assert sock.closed is True
        assert sock.option_names()[-1] == socket.IP_DROP_MEMBERSHIP
        assert not publisher.is_open

    def test_close_is_idempotent(self, fake_socket):
        publisher = MulticastPublisher()
        publisher.close()
        publisher.close()
        assert fake_socket.instances[0].option_names().count(socket.IP_DROP_MEMBERSHIP) == 1

    def test_broadcast_after_close(self, fake_socket):
        publisher = MulticastPublisher()
        publisher.close()
        with pytest.raises(TransportError, match="closed"):
            publisher.broadcast(b"{}")

    def test_drop_membership_failure_still_closes(self, fake_socket):
        publisher = MulticastPublisher()
        fake_socket.instances[0].fail_on_option = socket.IP_DROP_MEMBERSHIP
        publisher.close()
        assert fake_socket.instances[0].closed is True


def test_loopback_delivery():
    """A listener joined to the group on this host hears a published datagram."""
    group, port = "239.255.42.98", 50699
    try:
        receiver = bind_multicast(group, port, timeout=1.0)
    except PublisherError as e:
        pytest.skip(f"multicast not available: {e}")

    try:
        with MulticastPublisher(group, port, loopback=True) as publisher:
            publisher.broadcast(b'{"ts":1,"trackers":[]}')
            try:
                data, _ = receiver.recvfrom(65536)
            except OSError as e:
                pytest.skip(f"multicast loopback not delivered: {e}")
    except (PublisherError, TransportError) as e:
        pytest.skip(f"multicast not available: {e}")
    finally:
        receiver.close()

    assert data == b'{"ts":1,"trackers":[]}'
