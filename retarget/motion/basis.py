"""
Orthonormal coordinate frames and spherical-coordinate conversions.

A Basis is an immutable triple of axes. Bases are left-handed in the sense
used by the renderer: cross(x, y) points along z. Any operation that yields an
inconsistent frame raises GeometryError.
"""

from typing import Optional, Sequence, Tuple
import numpy as np

from retarget.core.errors import ConfigurationError, GeometryError
from .quaternion import (
    Axis,
    axis_components,
    normalize,
    plane_normal_from_points,
    quat_from_axes,
    quat_from_axis_angle,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    rotate_vector,
    vectors_same_dir_within_eps,
)


class Basis:
    """Immutable three-axis coordinate frame with handedness validation."""

    def __init__(
        self,
        axes: Optional[Sequence[np.ndarray]] = None,
        left_handed: bool = True,
        eps: float = 1e-6,
    ):
        self.left_handed = left_handed
        self.eps = eps

        if axes is None:
            data = np.eye(3, dtype=np.float64)
        else:
            data = np.array([np.asarray(a, dtype=np.float64) for a in axes], dtype=np.float64)
            if data.shape != (3, 3):
                raise GeometryError(f"Basis needs three 3D axes, got shape {data.shape}")
            if not np.all(np.isfinite(data)):
                raise GeometryError("Basis axes must be finite")

        data.setflags(write=False)
        self._data = data

        if axes is not None:
            self.verify()

    @property
    def x(self) -> np.ndarray:
        return self._data[0]

    @property
    def y(self) -> np.ndarray:
        return self._data[1]

    @property
    def z(self) -> np.ndarray:
        return self._data[2]

    @property
    def axes(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self._data[0], self._data[1], self._data[2]

    def verify(self):
        """Raise GeometryError unless cross(x, y) points along z (or -z when right-handed)."""
        z = self.z if self.left_handed else -self.z
        if not vectors_same_dir_within_eps(np.cross(self.x, self.y), z, self.eps):
            raise GeometryError(f"Basis is not correct: {self._data.tolist()}")

    def rotate(self, q: np.ndarray) -> "Basis":
        """New basis with every axis rotated by q."""
        return Basis([rotate_vector(v, q) for v in self._data], self.left_handed, self.eps)

    def negate_axes(self, axis: Axis) -> "Basis":
        """
        New basis with the selected axes negated.

        The result is not verified, callers fix handedness (e.g. with transpose).
        """
        data = self._data.copy()
        for i in axis_components(axis):
            data[i] = -data[i]
        return Basis._unverified(data, self.left_handed, self.eps)

    def transpose(self, order: Sequence[int]) -> "Basis":
        """New (verified) basis with the axes permuted by `order`."""
        if sorted(order) != [0, 1, 2]:
            raise ConfigurationError(f"Basis transpose order must permute (0, 1, 2), got {order!r}")
        return Basis([self._data[i] for i in order], self.left_handed, self.eps)

    def to_quaternion(self) -> np.ndarray:
        """Quaternion rotating the canonical axes onto this basis."""
        return quat_from_axes(self.x, self.y, self.z)

    @classmethod
    def _unverified(cls, data: np.ndarray, left_handed: bool, eps: float) -> "Basis":
        basis = cls.__new__(cls)
        basis.left_handed = left_handed
        basis.eps = eps
        data = np.array(data, dtype=np.float64)
        data.setflags(write=False)
        basis._data = data
        return basis

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Basis):
            return NotImplemented
        return np.allclose(self._data, other._data, atol=self.eps)

    def __repr__(self) -> str:
        return f"Basis(x={self.x.tolist()}, y={self.y.tolist()}, z={self.z.tolist()})"


def quaternion_between_bases(
    basis1: Basis,
    basis2: Basis,
    prev_quaternion: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Quaternion that maps basis1's orientation onto basis2's.

    Args:
        basis1: Source frame
        basis2: Target frame
        prev_quaternion: When given, undone from both frames first

    Returns:
        q2 * inverse(q1) of the frames' axis quaternions
    """
    if prev_quaternion is not None:
        undo = quat_inverse(prev_quaternion)
        basis1 = basis1.rotate(undo)
        basis2 = basis2.rotate(undo)

    q1 = quat_normalize(basis1.to_quaternion())
    q2 = quat_normalize(basis2.to_quaternion())
    return quat_multiply(q2, quat_inverse(q1))


def get_basis(points: Sequence[np.ndarray]) -> Basis:
    """
    Basis from three points.

    a is the origin, b lies on +x and a, b, c span the XY half-plane containing c.
    """
    a, b, c = (np.asarray(p, dtype=np.float64) for p in points)
    axis_z = plane_normal_from_points(a, b, c)
    axis_x = normalize(b - a)
    x_len_sq = float(np.dot(axis_x, axis_x))
    if x_len_sq == 0.0:
        raise GeometryError("Basis points coincide, x axis has zero length")

    # Project c onto ab
    cp = a + axis_x * (np.dot(c - a, axis_x) / x_len_sq)
    axis_y = normalize(c - cp)
    return Basis([axis_x, axis_y, axis_z])


def calc_avg_plane(points: Sequence[np.ndarray], normal: np.ndarray) -> list:
    """Project points onto the plane through their centroid with the given normal."""
    if len(points) == 0:
        return [np.zeros(3)]
    pts = np.array(points, dtype=np.float64)
    centroid = pts.mean(axis=0)
    normal = np.asarray(normal, dtype=np.float64)
    return [p - normal * np.dot(normal, p - centroid) for p in pts]


# =============================================================================
# SPHERICAL COORDINATES
# =============================================================================

def _to_local(pos: np.ndarray, basis: Basis) -> np.ndarray:
    to_world = quat_normalize(quat_inverse(basis.to_quaternion()))
    return normalize(rotate_vector(pos, to_world))


def calc_spherical_coord_iso(pos: np.ndarray, basis: Basis) -> Tuple[float, float]:
    """
    Spherical coordinates of a direction in the local frame of `basis`.

    ISO 80000-2 convention on the unit sphere: theta is the polar angle from
    +z and phi the azimuth from +x.

    Returns:
        (theta, phi) in radians
    """
    x, y, z = _to_local(pos, basis)
    theta = float(np.arccos(np.clip(z, -1.0, 1.0)))
    phi = float(np.arctan2(y, x))
    return theta, phi


def calc_spherical_coord(pos: np.ndarray, basis: Basis, is_finger: bool = True) -> Tuple[float, float]:
    """
    Limb-oriented spherical coordinates of a direction relative to `basis`.

    Theta carries the sign of the local x (or y) component so phi stays within
    [-pi/2, pi/2]. For fingers, theta below -pi/6 is wrapped to pi/2 - theta.

    Returns:
        (theta, phi) in radians
    """
    x, y, z = _to_local(pos, basis)
    polar = float(np.arccos(np.clip(z, -1.0, 1.0)))

    if x != 0:
        theta = float(np.sign(x)) * polar
        phi = float(np.arctan(y / x))
    elif y != 0:
        theta = float(np.sign(y)) * polar
        phi = np.pi / 2
    else:
        theta = polar
        phi = 0.0

    # Irregular landmarks
    if is_finger and theta < -np.pi / 6:
        theta = np.pi / 2 - theta

    return theta, phi


def spherical_to_quaternion(basis: Basis, theta: float, phi: float) -> np.ndarray:
    """
    Quaternion turning the local +x of `basis` to the direction (theta, phi).

    Roll about the new direction is fixed by rebuilding y and z against the
    basis XZ plane, so the result faces front.
    """
    x_to_z = quat_from_axis_angle(basis.y, -np.pi / 2)
    q1 = quat_from_axis_angle(basis.x, phi)
    q2 = quat_from_axis_angle(basis.y, theta)

    interm = basis.rotate(quat_multiply(quat_multiply(x_to_z, q1), q2))
    new_z = np.cross(interm.x, basis.y)
    new_y = np.cross(new_z, interm.x)
    if np.linalg.norm(new_z) < 1e-12:
        raise GeometryError("Direction is parallel to the basis y axis")
    new_basis = Basis([interm.x, new_y, new_z])

    return quaternion_between_bases(basis, new_basis)
