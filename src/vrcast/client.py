"""
Snapshot listener.

Joins the publisher's multicast group and keeps the most recent snapshot for
pull-based consumption, with optional callbacks for new snapshots and for
devices that start or stop being tracked.
"""

from __future__ import annotations

import argparse
import socket
import threading

from loguru import logger

from .devices import Device
from .events import EventHandler
from .logging_utils import configure_logging
from .multicast import DEFAULT_MULTICAST_GROUP, DEFAULT_PORT, bind_multicast
from .network_utils import WILDCARD_ADDRESS, parse_socket_address, resolve_interface_address
from .serializer import SerializationError, TrackedSnapshot, deserialize_snapshot

RECEIVE_BUFFER_SIZE = 65536
RECEIVE_TIMEOUT = 0.5  # lets the receive thread notice stop()


class SnapshotListener:
    """
    Receives snapshots published by :class:`vrcast.server.TrackingServer`.

    Usage:
        listener = SnapshotListener()
        listener.on_device_lost.add_listener(lambda device: print(device.id))
        listener.start()
        snapshot = listener.get_latest_snapshot()
        listener.stop()

    Events:
        on_snapshot(snapshot): every decoded snapshot
        on_device_tracked(device): a device became tracked
        on_device_lost(device): a tracked device is no longer tracked or was
            dropped from the snapshot
    """

    def __init__(
        self,
        group: str = DEFAULT_MULTICAST_GROUP,
        port: int = DEFAULT_PORT,
        interface: str = WILDCARD_ADDRESS,
    ):
        self.group = group
        self.port = port
        self.interface = interface

        self._socket: socket.socket | None = None
        self._running = False
        self._receive_thread: threading.Thread | None = None

        self._snapshot_cond = threading.Condition()
        self._latest_snapshot: TrackedSnapshot | None = None
        self._sequence = 0
        self._tracked: dict[int, Device] = {}

        self.on_snapshot = EventHandler("on_snapshot")
        self.on_device_tracked = EventHandler("on_device_tracked")
        self.on_device_lost = EventHandler("on_device_lost")

        self._stats = {
            "datagrams_received": 0,
            "snapshots_received": 0,
            "decode_errors": 0,
            "receive_errors": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def start(self) -> SnapshotListener:
        """Join the group and start the receive thread."""
        if self._running:
            return self

        self._socket = bind_multicast(
            self.group, self.port, interface=self.interface, timeout=RECEIVE_TIMEOUT
        )
        self._running = True
        self._receive_thread = threading.Thread(
            target=self._receive_loop, name="SnapshotListener", daemon=True
        )
        self._receive_thread.start()
        logger.info(f"Listening for snapshots on {self.group}:{self.port}")
        return self

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._receive_thread:
            self._receive_thread.join(timeout=2 * RECEIVE_TIMEOUT + 1.0)
            self._receive_thread = None
        if self._socket:
            self._socket.close()
            self._socket = None
        logger.info("Snapshot listener stopped")

    def __enter__(self) -> SnapshotListener:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def get_latest_snapshot(self) -> TrackedSnapshot | None:
        with self._snapshot_cond:
            return self._latest_snapshot

    def wait_for_snapshot(self, timeout: float | None = None) -> TrackedSnapshot | None:
        """Block until a snapshot newer than the call arrives, or time out."""
        with self._snapshot_cond:
            start = self._sequence
            if not self._snapshot_cond.wait_for(lambda: self._sequence > start, timeout):
                return None
            return self._latest_snapshot

    def _receive_loop(self) -> None:
        while self._running:
            try:
                data, _addr = self._socket.recvfrom(RECEIVE_BUFFER_SIZE)
            except TimeoutError:
                continue
            except OSError as e:
                if self._running:
                    self._stats["receive_errors"] += 1
                    logger.error(f"Error in receive loop: {e}")
                continue
            self.process_datagram(data)

    def process_datagram(self, data: bytes) -> TrackedSnapshot | None:
        """Decode one datagram, update state and fire events."""
        self._stats["datagrams_received"] += 1
        try:
            snapshot = deserialize_snapshot(data)
        except SerializationError as e:
            self._stats["decode_errors"] += 1
            logger.warning(f"Ignoring undecodable datagram ({len(data)} bytes): {e}")
            return None

        tracked_now = {device.id: device for device in snapshot.devices if device.tracked}
        gained = [device for dev_id, device in tracked_now.items() if dev_id not in self._tracked]
        by_id = {device.id: device for device in snapshot.devices}
        lost = [
            by_id.get(dev_id, previous)
            for dev_id, previous in self._tracked.items()
            if dev_id not in tracked_now
        ]
        self._tracked = tracked_now

        with self._snapshot_cond:
            self._latest_snapshot = snapshot
            self._sequence += 1
            self._snapshot_cond.notify_all()
        self._stats["snapshots_received"] += 1

        for device in gained:
            self.on_device_tracked.invoke(device)
        for device in lost:
            self.on_device_lost.invoke(device)
        self.on_snapshot.invoke(snapshot)
        return snapshot


def format_snapshot(snapshot: TrackedSnapshot) -> str:
    """Multi-line human readable rendering of a snapshot."""
    lines = [f"ts={snapshot.timestamp} devices={len(snapshot.devices)}"]
    for device in snapshot.devices:
        x, y, z = device.position
        r = device.rotation
        lines.append(
            f"  {device.id:>2} {device.category.value:<16} "
            f"{'tracked' if device.tracked else 'lost   '} "
            f"pos=[{x:+8.4f}, {y:+8.4f}, {z:+8.4f}] "
            f"rot=[{r.x:+6.3f}, {r.y:+6.3f}, {r.z:+6.3f}, {r.w:+6.3f}]"
        )
    return "\n".join(lines)


def listen_main() -> None:
    parser = argparse.ArgumentParser(description="Print vrcast snapshots from the network")
    parser.add_argument(
        "--address",
        default=f"{DEFAULT_MULTICAST_GROUP}:{DEFAULT_PORT}",
        help="Multicast group as GROUP:PORT (default: %(default)s)",
    )
    parser.add_argument(
        "--interface", default=WILDCARD_ADDRESS, help="Local interface address or name"
    )
    parser.add_argument(
        "--count", type=int, default=0, help="Exit after N snapshots (default: run forever)"
    )
    parser.add_argument(
        "--log-level-console",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    args = parser.parse_args()

    try:
        group, port = parse_socket_address(args.address)
        interface = resolve_interface_address(args.interface)
    except ValueError as e:
        parser.error(str(e))

    configure_logging(log_dir=None, console_level=args.log_level_console)

    listener = SnapshotListener(group=group, port=port, interface=interface)
    received = 0
    with listener:
        while args.count <= 0 or received < args.count:
            snapshot = listener.wait_for_snapshot(timeout=1.0)
            if snapshot is None:
                continue
            received += 1
            print(format_snapshot(snapshot), flush=True)
