"""
Pose math for OpenVR style 3x4 device-to-origin matrices.

The matrix is row-major: columns 0-2 hold the rotation basis, column 3 holds
the translation. Positions are returned as ``(x, y, z)`` tuples and rotations
as unit :class:`Quaternion` values in ``(x, y, z, w)`` order.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import NamedTuple, Protocol

Matrix34 = Sequence[Sequence[float]]
Vec3 = tuple[float, float, float]

# Cyclic permutations only; they are proper rotations of the frame and the
# remapped quaternion stays a valid rotation.
AXIS_ORDERS: dict[str, tuple[int, int, int]] = {
    "xyz": (0, 1, 2),
    "yzx": (1, 2, 0),
    "zxy": (2, 0, 1),
}


class Quaternion(NamedTuple):
    """Rotation quaternion, imaginary part first (x, y, z, w)."""

    x: float
    y: float
    z: float
    w: float

    @classmethod
    def identity(cls) -> Quaternion:
        return cls(0.0, 0.0, 0.0, 1.0)

    @property
    def norm(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2 + self.w**2)


class Pose(Protocol):
    """Anything that can report a position and an orientation."""

    def to_position(self) -> Vec3: ...

    def to_rotation(self) -> Quaternion: ...


def to_position(m: Matrix34) -> Vec3:
    """Return the translation column of a 3x4 pose matrix."""
    return (float(m[0][3]), float(m[1][3]), float(m[2][3]))


def to_rotation(m: Matrix34) -> Quaternion:
    """
    Extract a unit quaternion from the rotation part of a 3x4 pose matrix.

    Each component comes from the matrix diagonal; the imaginary components
    take their sign from the anti-symmetric off-diagonal differences. The
    radicands are clamped at zero so round-off on near-degenerate matrices
    cannot produce a domain error.

    Args:
        m: 3x4 row-major matrix

    Returns:
        Normalised quaternion in (x, y, z, w) order, or all-NaN components
        when the matrix is not finite
    """
    m00, m11, m22 = m[0][0], m[1][1], m[2][2]

    w = math.sqrt(max(0.0, 1.0 + m00 + m11 + m22)) / 2.0
    x = math.sqrt(max(0.0, 1.0 + m00 - m11 - m22)) / 2.0
    y = math.sqrt(max(0.0, 1.0 - m00 + m11 - m22)) / 2.0
    z = math.sqrt(max(0.0, 1.0 - m00 - m11 + m22)) / 2.0

    x = math.copysign(x, m[2][1] - m[1][2])
    y = math.copysign(y, m[0][2] - m[2][0])
    z = math.copysign(z, m[1][0] - m[0][1])

    # The radicands sum to 4 for a finite matrix. A NaN diagonal clamps them
    # all to zero; the NaN result is rejected when the snapshot is encoded.
    norm = math.sqrt(w * w + x * x + y * y + z * z)
    if norm == 0.0 or not math.isfinite(norm):
        return Quaternion(math.nan, math.nan, math.nan, math.nan)
    return Quaternion(x / norm, y / norm, z / norm, w / norm)


class MatrixPose:
    """:class:`Pose` backed by a single 3x4 matrix."""

    __slots__ = ("matrix",)

    def __init__(self, matrix: Matrix34):
        self.matrix = matrix

    def to_position(self) -> Vec3:
        return to_position(self.matrix)

    def to_rotation(self) -> Quaternion:
        return to_rotation(self.matrix)


def _axis_indices(order: str) -> tuple[int, int, int]:
    try:
        return AXIS_ORDERS[order]
    except KeyError:
        raise ValueError(
            f"axis order must be one of {sorted(AXIS_ORDERS)}, got {order!r}"
        ) from None


def remap_position(position: Vec3, order: str = "xyz") -> Vec3:
    """Reorder position axes, e.g. ``"zxy"`` yields ``(z, x, y)``."""
    a, b, c = _axis_indices(order)
    return (position[a], position[b], position[c])


def remap_rotation(rotation: Quaternion, order: str = "xyz") -> Quaternion:
    """Apply the same axis permutation as :func:`remap_position` to a rotation."""
    a, b, c = _axis_indices(order)
    imaginary = (rotation.x, rotation.y, rotation.z)
    return Quaternion(imaginary[a], imaginary[b], imaginary[c], rotation.w)
