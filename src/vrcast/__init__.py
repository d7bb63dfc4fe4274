"""
vrcast

Polls OpenVR tracked devices at a fixed cadence and multicasts a timestamped
JSON snapshot of every device (position, rotation, tracked/seen state and
category) to any number of listeners on the network.

Main Classes:
    TrackingServer: Poll loop driving source, registry and publisher
    DeviceRegistry: Per-slot device state with seen/tracked lifecycle
    MulticastPublisher: UDP multicast sender
    SnapshotListener: Receiving side, keeps the latest snapshot

Examples:
    # Run via CLI (after installation)
    vrcast-server --simulate
    vrcast-listen --count 5

    # Use programmatically
    from vrcast import MulticastPublisher, SimulatedSource, TrackingServer
    with SimulatedSource() as source, MulticastPublisher() as publisher:
        TrackingServer(source, publisher).run(max_cycles=100)
"""

from .client import SnapshotListener
from .devices import Device, DeviceCategory, DeviceRegistry, classify
from .multicast import MulticastPublisher, PublisherError, TransportError
from .pose import MatrixPose, Quaternion, to_position, to_rotation
from .serializer import (
    SerializationError,
    TrackedSnapshot,
    deserialize_snapshot,
    serialize_snapshot,
)
from .server import TrackingServer, get_version
from .simulator import SimulatedSource
from .sources import ControllerRole, HardwareError, RawPose, TrackedDeviceClass

__all__ = [
    # Loop
    "TrackingServer",
    "get_version",
    # Devices
    "Device",
    "DeviceCategory",
    "DeviceRegistry",
    "classify",
    # Pose math
    "MatrixPose",
    "Quaternion",
    "to_position",
    "to_rotation",
    # Sources
    "RawPose",
    "TrackedDeviceClass",
    "ControllerRole",
    "HardwareError",
    "SimulatedSource",
    # Transport
    "MulticastPublisher",
    "PublisherError",
    "TransportError",
    "SnapshotListener",
    # Wire format
    "TrackedSnapshot",
    "SerializationError",
    "serialize_snapshot",
    "deserialize_snapshot",
]

__version__ = get_version()
