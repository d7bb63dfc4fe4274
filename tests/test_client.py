"""Tests for the snapshot listener."""

import threading

import pytest

from vrcast.client import SnapshotListener, format_snapshot
from vrcast.devices import Device, DeviceCategory
from vrcast.events import EventHandler
from vrcast.multicast import PublisherError
from vrcast.pose import Quaternion
from vrcast.serializer import serialize_snapshot


def datagram(ts, *devices):
    return serialize_snapshot(ts, list(devices)).encode("utf-8")


def device(dev_id, tracked, category=DeviceCategory.TRACKER):
    return Device(dev_id, tracked, True, (0.0, 1.0, 0.0), Quaternion.identity(), category)


@pytest.fixture
def listener():
    # process_datagram works without a socket
    return SnapshotListener()


class TestProcessDatagram:
    """Tests for decoding and tracking transitions."""

    def test_latest_snapshot(self, listener):
        assert listener.get_latest_snapshot() is None
        listener.process_datagram(datagram(1, device(0, True, DeviceCategory.HMD)))
        listener.process_datagram(datagram(2, device(0, True, DeviceCategory.HMD)))

        snapshot = listener.get_latest_snapshot()
        assert snapshot.timestamp == 2
        assert snapshot.devices[0].category is DeviceCategory.HMD
        assert listener.stats["snapshots_received"] == 2

    def test_tracked_and_lost_events(self, listener):
        tracked, lost = [], []
        listener.on_device_tracked.add_listener(lambda d: tracked.append(d.id))
        listener.on_device_lost.add_listener(lambda d: lost.append(d.id))

        listener.process_datagram(datagram(1, device(0, True), device(1, True)))
        listener.process_datagram(datagram(2, device(0, True), device(1, False)))
        listener.process_datagram(datagram(3, device(1, True)))

        assert tracked == [0, 1, 1]
        assert lost == [1, 0]

    def test_lost_reports_latest_state(self, listener):
        lost = []
        listener.on_device_lost.add_listener(lost.append)
        listener.process_datagram(datagram(1, device(4, True)))
        listener.process_datagram(datagram(2, device(4, False)))
        assert lost[0].tracked is False

    def test_on_snapshot_fires_after_device_events(self, listener):
        order = []
        listener.on_device_tracked.add_listener(lambda d: order.append("tracked"))
        listener.on_snapshot.add_listener(lambda s: order.append("snapshot"))
        listener.process_datagram(datagram(1, device(0, True)))
        assert order == ["tracked", "snapshot"]

    def test_undecodable_datagram(self, listener):
        snapshots = []
        listener.on_snapshot.add_listener(snapshots.append)

        assert listener.process_datagram(b"\x00\x01garbage") is None
        assert listener.process_datagram(b'{"ts":1}') is None

        assert snapshots == []
        assert listener.get_latest_snapshot() is None
        assert listener.stats["decode_errors"] == 2
        assert listener.stats["datagrams_received"] == 2

    def test_failing_callback_does_not_block_others(self, listener):
        seen = []

        def broken(snapshot):
            raise RuntimeError("boom")

        listener.on_snapshot.add_listener(broken)
        listener.on_snapshot.add_listener(lambda s: seen.append(s.timestamp))
        listener.process_datagram(datagram(5))
        assert seen == [5]


class TestWaitForSnapshot:
    """Tests for blocking snapshot retrieval."""

    def test_times_out(self, listener):
        assert listener.wait_for_snapshot(timeout=0.05) is None

    def test_wakes_on_new_snapshot(self, listener):
        result = {}

        def waiter():
            result["snapshot"] = listener.wait_for_snapshot(timeout=5.0)

        thread = threading.Thread(target=waiter)
        thread.start()
        # Keep feeding until the waiter has registered and picked one up
        ts = 0
        while thread.is_alive() and ts < 500:
            ts += 1
            listener.process_datagram(datagram(ts))
            thread.join(timeout=0.01)
        thread.join(timeout=5.0)

        assert result["snapshot"] is not None
        assert result["snapshot"].timestamp >= 1


class TestEventHandler:
    """Tests for EventHandler."""

    def test_add_and_unsubscribe(self):
        handler = EventHandler("test")
        calls = []
        unsubscribe = handler.add_listener(calls.append)
        assert len(handler) == 1

        handler.invoke(1)
        unsubscribe()
        handler.invoke(2)

        assert calls == [1]
        assert len(handler) == 0

    def test_remove_unknown_listener_is_noop(self):
        handler = EventHandler()
        handler.remove_listener(print)
        assert len(handler) == 0

    def test_listener_removing_itself_during_invoke(self):
        handler = EventHandler()
        calls = []
        unsubscribe = None

        def once(value):
            calls.append(value)
            unsubscribe()

        unsubscribe = handler.add_listener(once)
        handler.add_listener(lambda value: calls.append(value * 10))
        handler.invoke(1)
        handler.invoke(2)
        assert calls == [1, 10, 20]


def test_format_snapshot(listener):
    snapshot = listener.process_datagram(datagram(42, device(0, True, DeviceCategory.HMD), device(3, False)))
    text = format_snapshot(snapshot)
    lines = text.splitlines()
    assert lines[0] == "ts=42 devices=2"
    assert "HMD" in lines[1] and "tracked" in lines[1]
    assert "Tracker" in lines[2] and "lost" in lines[2]


def test_listener_receives_published_snapshot():
    """End to end over the loopback multicast path."""
    from vrcast.multicast import MulticastPublisher, TransportError

    group, port = "239.255.42.98", 50698
    listener = SnapshotListener(group=group, port=port)
    try:
        listener.start()
    except PublisherError as e:
        pytest.skip(f"multicast not available: {e}")

    try:
        with MulticastPublisher(group, port, loopback=True) as publisher:
            snapshot = None
            for ts in range(1, 21):
                publisher.broadcast(datagram(ts, device(0, True, DeviceCategory.HMD)))
                snapshot = listener.wait_for_snapshot(timeout=0.1)
                if snapshot is not None:
                    break
    except (PublisherError, TransportError) as e:
        pytest.skip(f"multicast not available: {e}")
    finally:
        listener.stop()

    if snapshot is None:
        pytest.skip("multicast loopback not delivered on this host")
    assert snapshot.devices[0].category is DeviceCategory.HMD
