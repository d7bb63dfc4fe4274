"""
Device classification and the per-slot device registry.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum

from .pose import MatrixPose, Quaternion, Vec3, remap_position, remap_rotation
from .sources import ControllerRole, RawPose, TrackedDeviceClass

MISSING_SLOT_POLICIES = ("untracked", "unchanged")


class DeviceCategory(str, Enum):
    """Simplified device category published on the wire."""

    CONTROLLER = "Controller"
    LEFT_CONTROLLER = "LeftController"
    RIGHT_CONTROLLER = "RightController"
    TRACKER = "Tracker"
    HMD = "HMD"
    SENSOR = "Sensor"
    OTHER = "Other"


# Console colours used by the status view
CATEGORY_COLORS: dict[DeviceCategory, str] = {
    DeviceCategory.LEFT_CONTROLLER: "green",
    DeviceCategory.RIGHT_CONTROLLER: "blue",
    DeviceCategory.CONTROLLER: "yellow",
    DeviceCategory.TRACKER: "aqua",
    DeviceCategory.HMD: "purple",
}


def classify(
    device_class: TrackedDeviceClass, controller_role: ControllerRole | None = None
) -> DeviceCategory:
    """Map a hardware device class and controller role to a category."""
    if device_class == TrackedDeviceClass.HMD:
        return DeviceCategory.HMD
    if device_class == TrackedDeviceClass.CONTROLLER:
        if controller_role == ControllerRole.LEFT_HAND:
            return DeviceCategory.LEFT_CONTROLLER
        if controller_role == ControllerRole.RIGHT_HAND:
            return DeviceCategory.RIGHT_CONTROLLER
        return DeviceCategory.CONTROLLER
    if device_class == TrackedDeviceClass.GENERIC_TRACKER:
        return DeviceCategory.TRACKER
    if device_class == TrackedDeviceClass.TRACKING_REFERENCE:
        return DeviceCategory.SENSOR
    return DeviceCategory.OTHER


@dataclass
class Device:
    """State of one hardware slot."""

    id: int
    tracked: bool = False
    seen: bool = False
    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Quaternion = field(default_factory=Quaternion.identity)
    category: DeviceCategory = DeviceCategory.OTHER

    def update(self, raw: RawPose, axis_order: str = "xyz") -> None:
        """Apply one poll result. Invalid poses leave pose and category stale."""
        if not raw.valid:
            self.tracked = False
            return

        pose = MatrixPose(raw.matrix)
        position = remap_position(pose.to_position(), axis_order)
        rotation = remap_rotation(pose.to_rotation(), axis_order)
        category = classify(raw.device_class, raw.controller_role)

        self.tracked = True
        self.seen = True
        self.position = position
        self.rotation = rotation
        self.category = category


class DeviceRegistry:
    """
    Registry of every device slot observed since start-up.

    Entries are created on the first poll that mentions a slot and are never
    removed. A device that drops out keeps its last pose with
    ``tracked=False``.

    Args:
        missing_slot_policy: What happens to known slots absent from a poll:
            "untracked" clears ``tracked`` for that cycle, "unchanged" leaves
            the entry as it was.
        axis_order: Axis permutation applied to positions and rotations
    """

    def __init__(self, missing_slot_policy: str = "untracked", axis_order: str = "xyz"):
        if missing_slot_policy not in MISSING_SLOT_POLICIES:
            raise ValueError(
                f"missing_slot_policy must be one of {MISSING_SLOT_POLICIES}, "
                f"got {missing_slot_policy!r}"
            )
        # Raises ValueError for an unknown order
        remap_position((0.0, 0.0, 0.0), axis_order)

        self.missing_slot_policy = missing_slot_policy
        self.axis_order = axis_order
        self._devices: dict[int, Device] = {}

    def ingest(self, entries: Iterable[RawPose]) -> None:
        """Update the registry from one poll."""
        reported: set[int] = set()
        for raw in entries:
            device = self._devices.get(raw.slot)
            if device is None:
                device = self._devices[raw.slot] = Device(id=raw.slot)
            device.update(raw, self.axis_order)
            reported.add(raw.slot)

        if self.missing_slot_policy == "untracked":
            for slot, device in self._devices.items():
                if slot not in reported:
                    device.tracked = False

    def snapshot(self, seen_only: bool = False) -> list[Device]:
        """Return copies of the devices in ascending id order."""
        return [
            replace(device)
            for device in self
            if device.seen or not seen_only
        ]

    def get(self, slot: int) -> Device | None:
        device = self._devices.get(slot)
        return replace(device) if device is not None else None

    def status_lines(self) -> list[str]:
        """One ``"<id> -> <category> -> <colour>"`` line per tracked device."""
        return [
            f"{device.id} -> {device.category.value} -> "
            f"{CATEGORY_COLORS.get(device.category, 'red')}"
            for device in self
            if device.tracked
        ]

    @property
    def tracked_count(self) -> int:
        return sum(1 for device in self._devices.values() if device.tracked)

    @property
    def seen_count(self) -> int:
        return sum(1 for device in self._devices.values() if device.seen)

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        for slot in sorted(self._devices):
            yield self._devices[slot]
