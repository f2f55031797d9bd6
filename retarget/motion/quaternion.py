"""
Quaternion and Euler-angle utilities.

Quaternions are numpy arrays in (x, y, z, w) order. Euler angles follow the
yaw (Y), pitch (X), roll (Z) convention: a quaternion built from angles
(x, y, z) is qY(y) * qX(x) * qZ(z), and `quat_to_euler` returns (x, y, z).
"""

from enum import IntEnum
from typing import Optional, Sequence, Tuple, Union
import numpy as np

from retarget.core.errors import ConfigurationError, GeometryError
from retarget.pose.filters import GAUSSIAN_WINDOW_SIZE, GaussianVectorFilter, KalmanParams, KalmanVectorFilter


def normalize(v: np.ndarray) -> np.ndarray:
    """Normalize vector, return zero vector if length is zero."""
    v = np.asarray(v, dtype=np.float64)
    length = np.linalg.norm(v)
    if length < 1e-12:
        return np.zeros_like(v)
    return v / length


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return np.array([x, y, z], dtype=np.float64)


# =============================================================================
# QUATERNION BASICS
# =============================================================================

def quat_identity() -> np.ndarray:
    return np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)


def quat_normalize(q: np.ndarray) -> np.ndarray:
    """Unit quaternion. A zero quaternion is returned unchanged."""
    q = np.asarray(q, dtype=np.float64)
    length = np.linalg.norm(q)
    if length == 0.0:
        return q.copy()
    return q / length


def quat_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """Hamilton product q1 * q2 (q2 is applied first)."""
    x1, y1, z1, w1 = q1
    x2, y2, z2, w2 = q2
    return np.array([
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2,
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
    ], dtype=np.float64)


def quat_conjugate(q: np.ndarray) -> np.ndarray:
    return np.array([-q[0], -q[1], -q[2], q[3]], dtype=np.float64)


def quat_inverse(q: np.ndarray) -> np.ndarray:
    """Inverse of a quaternion (conjugate over squared norm)."""
    norm_sq = float(np.dot(q, q))
    if norm_sq == 0.0:
        raise GeometryError("Cannot invert a zero quaternion")
    return quat_conjugate(q) / norm_sq


def rotate_vector(v: np.ndarray, q: np.ndarray) -> np.ndarray:
    """Rotate vector v by quaternion q (q v q^-1)."""
    v = np.asarray(v, dtype=np.float64)
    u = np.asarray(q[:3], dtype=np.float64)
    w = float(q[3])
    # Expanded sandwich product for a unit quaternion
    t = 2.0 * np.cross(u, v)
    return v + w * t + np.cross(u, t)


def quat_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    """Create quaternion from axis and angle (axis is normalized)."""
    axis = normalize(axis)
    half_angle = angle / 2
    s = np.sin(half_angle)
    return np.array([axis[0] * s, axis[1] * s, axis[2] * s, np.cos(half_angle)], dtype=np.float64)


def quat_from_yaw_pitch_roll(yaw: float, pitch: float, roll: float) -> np.ndarray:
    """Rotation about Y by yaw, then X by pitch, then Z by roll (qY * qX * qZ)."""
    hr, hp, hy = roll * 0.5, pitch * 0.5, yaw * 0.5
    sr, cr = np.sin(hr), np.cos(hr)
    sp, cp = np.sin(hp), np.cos(hp)
    sy, cy = np.sin(hy), np.cos(hy)
    return np.array([
        cy * sp * cr + sy * cp * sr,
        sy * cp * cr - cy * sp * sr,
        cy * cp * sr - sy * sp * cr,
        cy * cp * cr + sy * sp * sr,
    ], dtype=np.float64)


def quat_from_euler(x: float, y: float, z: float) -> np.ndarray:
    """Quaternion from Euler angles in radians (pitch x, yaw y, roll z)."""
    return quat_from_yaw_pitch_roll(y, x, z)


def quat_from_euler_vector(angles: Sequence[float]) -> np.ndarray:
    return quat_from_yaw_pitch_roll(angles[1], angles[0], angles[2])


def quat_to_euler(q: np.ndarray) -> np.ndarray:
    """
    Convert quaternion to Euler angles in radians.

    Returns:
        (x, y, z) such that quat_from_euler(x, y, z) reproduces the rotation
    """
    qx, qy, qz, qw = (float(c) for c in q)
    z_axis_y = qy * qz - qx * qw
    limit = 0.4999999

    # Gimbal lock
    if z_axis_y < -limit:
        return np.array([np.pi / 2, 2 * np.arctan2(qy, qw), 0.0], dtype=np.float64)
    if z_axis_y > limit:
        return np.array([-np.pi / 2, 2 * np.arctan2(qy, qw), 0.0], dtype=np.float64)

    sqw, sqz, sqx, sqy = qw * qw, qz * qz, qx * qx, qy * qy
    roll = np.arctan2(2.0 * (qx * qy + qz * qw), -sqz - sqx + sqy + sqw)
    pitch = np.arcsin(np.clip(-2.0 * z_axis_y, -1.0, 1.0))
    yaw = np.arctan2(2.0 * (qz * qx + qy * qw), sqz - sqx - sqy + sqw)
    return np.array([pitch, yaw, roll], dtype=np.float64)


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix (column vectors) to quaternion."""
    trace = R[0, 0] + R[1, 1] + R[2, 2]

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2, 1] - R[1, 2]) * s
        y = (R[0, 2] - R[2, 0]) * s
        z = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        w = (R[2, 1] - R[1, 2]) / s
        x = 0.25 * s
        y = (R[0, 1] + R[1, 0]) / s
        z = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        w = (R[0, 2] - R[2, 0]) / s
        x = (R[0, 1] + R[1, 0]) / s
        y = 0.25 * s
        z = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        w = (R[1, 0] - R[0, 1]) / s
        x = (R[0, 2] + R[2, 0]) / s
        y = (R[1, 2] + R[2, 1]) / s
        z = 0.25 * s

    return np.array([x, y, z, w], dtype=np.float64)


def quat_from_axes(x_axis: np.ndarray, y_axis: np.ndarray, z_axis: np.ndarray) -> np.ndarray:
    """Quaternion rotating the unit X, Y, Z axes onto the given (normalized) axes."""
    R = np.column_stack([normalize(x_axis), normalize(y_axis), normalize(z_axis)])
    return rotation_matrix_to_quaternion(R)


def check_quaternion(q: np.ndarray) -> bool:
    """True when every component is finite."""
    return bool(np.all(np.isfinite(q)))


# =============================================================================
# AXES
# =============================================================================

class Axis(IntEnum):
    """Axis selections for Euler-angle manipulation."""
    X = 0
    Y = 1
    Z = 2
    XY = 3
    YZ = 4
    XZ = 5
    XYZ = 6
    NONE = 10


AXIS_COMPONENTS = {
    Axis.X: (0,),
    Axis.Y: (1,),
    Axis.Z: (2,),
    Axis.XY: (0, 1),
    Axis.YZ: (1, 2),
    Axis.XZ: (0, 2),
    Axis.XYZ: (0, 1, 2),
    Axis.NONE: (),
}


def axis_components(axis: Union[Axis, int]) -> Tuple[int, ...]:
    """Vector component indices selected by an axis value."""
    try:
        return AXIS_COMPONENTS[Axis(axis)]
    except (ValueError, KeyError):
        raise GeometryError(f"Unknown axis: {axis!r}") from None


def _single_axis(axis: Union[Axis, int]) -> int:
    components = axis_components(axis)
    if len(components) != 1:
        raise GeometryError(f"Expected a single axis, got {axis!r}")
    return components[0]


# =============================================================================
# SCALAR RANGES
# =============================================================================

def range_cap(v: float, low: float, high: float) -> float:
    """Clamp v to [low, high], swapping the bounds if low > high."""
    if low > high:
        low, high = high, low
    return max(min(v, high), low)


def remap_range(v: float, src_low: float, src_high: float, dst_low: float, dst_high: float) -> float:
    return dst_low + (v - src_low) * (dst_high - dst_low) / (src_high - src_low)


def remap_range_with_cap(
    v: float, src_low: float, src_high: float, dst_low: float, dst_high: float
) -> float:
    """Linear remap with v first clamped to the source range."""
    v = range_cap(v, src_low, src_high)
    return dst_low + (v - src_low) * (dst_high - dst_low) / (src_high - src_low)


def remap_degree_with_cap(deg: float) -> float:
    """Wrap an angle in degrees into [-180, 180)."""
    return (deg + 180.0) % 360.0 - 180.0


# =============================================================================
# VECTORS AND PLANES
# =============================================================================

def plane_normal_from_points(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    """Unit normal of the plane through a, b, c. Zero for collinear points."""
    return normalize(np.cross(np.asarray(b) - a, np.asarray(c) - a))


def project_vector_on_plane(normal: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Project v onto the plane through the origin with the given unit normal."""
    normal = np.asarray(normal, dtype=np.float64)
    return np.asarray(v, dtype=np.float64) - normal * np.dot(v, normal)


def angle_between_vectors(v0: np.ndarray, v1: np.ndarray, normal: np.ndarray) -> float:
    """
    Signed angle from v0 to v1.

    Positive when cross(v0, v1) points along `normal`, negative otherwise.
    """
    dot = float(np.clip(np.dot(normalize(v0), normalize(v1)), -1.0, 1.0))
    angle = float(np.arccos(dot))
    if np.dot(np.cross(v0, v1), normal) > 0:
        return angle
    return -angle


def vectors_same_dir_within_eps(v1: np.ndarray, v2: np.ndarray, eps: float = 1e-6) -> bool:
    """True when v1 and v2 are parallel within eps and point the same way."""
    return bool(np.linalg.norm(np.cross(v1, v2)) < eps and np.dot(v1, v2) > 0)


# =============================================================================
# ROTATIONS BETWEEN DIRECTIONS
# =============================================================================

def quaternion_between_vectors(v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
    """
    Create quaternion that rotates v1 to v2.
    """
    v1 = normalize(v1)
    v2 = normalize(v2)

    axis = np.cross(v1, v2)
    sin_angle = np.linalg.norm(axis)
    cos_angle = float(np.dot(v1, v2))

    if sin_angle < 1e-12:
        if cos_angle >= 0:
            return quat_identity()
        # Opposite directions, any orthogonal axis works
        ortho = vec3(1, 0, 0)
        if abs(v1[0]) > 0.9:
            ortho = vec3(0, 1, 0)
        return quat_from_axis_angle(np.cross(v1, ortho), np.pi)

    return quat_from_axis_angle(axis / sin_angle, np.arctan2(sin_angle, cos_angle))


def quaternion_to_degrees(q: np.ndarray, remap_degree: bool = False) -> np.ndarray:
    """Euler angles of q in degrees, optionally wrapped into [-180, 180)."""
    angles = np.degrees(quat_to_euler(q))
    if remap_degree:
        angles = np.array([remap_degree_with_cap(a) for a in angles], dtype=np.float64)
    return angles


def degree_between_vectors(v1: np.ndarray, v2: np.ndarray, remap_degree: bool = False) -> np.ndarray:
    return quaternion_to_degrees(quaternion_between_vectors(v1, v2), remap_degree)


def quaternions_equal_by_vector(q1: np.ndarray, q2: np.ndarray) -> bool:
    """True when q1 and q2 rotate the vector (1, 1, 1) to the same direction."""
    reference = vec3(1, 1, 1)
    return vectors_same_dir_within_eps(rotate_vector(reference, q1), rotate_vector(reference, q2))


def degrees_equal_in_quaternion(d1: Sequence[float], d2: Sequence[float]) -> bool:
    q1 = quat_from_euler(*np.radians(d1))
    q2 = quat_from_euler(*np.radians(d2))
    return quaternions_equal_by_vector(q1, q2)


# =============================================================================
# EULER-ANGLE CONSTRAINTS
# =============================================================================

def reverse_rotation(q: np.ndarray, axis: Union[Axis, int]) -> np.ndarray:
    """Negate the Euler angles of q on the given axes."""
    components = axis_components(axis)
    if not components:
        return np.array(q, dtype=np.float64)
    angles = quat_to_euler(q)
    for i in components:
        angles[i] = -angles[i]
    return quat_from_euler_vector(angles)


def remove_rotation_axis_with_cap(
    q: np.ndarray,
    axis: Union[Axis, int],
    cap_axis1: Optional[Axis] = None,
    cap_low1: Optional[float] = None,
    cap_high1: Optional[float] = None,
    cap_axis2: Optional[Axis] = None,
    cap_low2: Optional[float] = None,
    cap_high2: Optional[float] = None,
) -> np.ndarray:
    """
    Zero the Euler angles on `axis`, then clamp up to two single axes.

    Works on wrapped degrees, caps are given in degrees.

    Args:
        q: Input quaternion
        axis: Axes to remove
        cap_axis1, cap_low1, cap_high1: First clamp, skipped if any is None
        cap_axis2, cap_low2, cap_high2: Second clamp, skipped if any is None

    Returns:
        Constrained quaternion
    """
    angles = quaternion_to_degrees(q, remap_degree=True)
    for i in axis_components(axis):
        angles[i] = 0.0

    for cap_axis, low, high in (
        (cap_axis1, cap_low1, cap_high1),
        (cap_axis2, cap_low2, cap_high2),
    ):
        if cap_axis is None or low is None or high is None:
            continue
        i = _single_axis(cap_axis)
        angles[i] = range_cap(angles[i], low, high)

    return quat_from_euler_vector(np.radians(angles))


def exchange_rotation_axis(q: np.ndarray, axis1: Union[Axis, int], axis2: Union[Axis, int]) -> np.ndarray:
    """Swap the Euler angles of two single axes."""
    i, j = _single_axis(axis1), _single_axis(axis2)
    angles = quat_to_euler(q)
    angles[i], angles[j] = angles[j], angles[i]
    return quat_from_euler_vector(angles)


def scale_rotation(q: np.ndarray, scale: float) -> np.ndarray:
    """Scale every Euler angle of q by `scale`."""
    return quat_from_euler_vector(quat_to_euler(q) * scale)


# =============================================================================
# FILTERED ROTATION
# =============================================================================

class FilteredQuaternion:
    """Rotation smoothed through a Kalman filter over its Euler angles."""

    def __init__(self, params: Optional[KalmanParams] = None):
        params = params if params is not None else KalmanParams(r=1.0, q=1.0)
        if not isinstance(params, KalmanParams):
            raise ConfigurationError(f"Rotation filter must be Kalman, got {params!r}")
        self.params = params
        self.t = 0
        self._rot = quat_identity()
        self._main_filter = KalmanVectorFilter(params.r, params.q)
        self._gaussian: Optional[GaussianVectorFilter] = None
        if params.gaussian_sigma:
            self._gaussian = GaussianVectorFilter(GAUSSIAN_WINDOW_SIZE, params.gaussian_sigma)

    @property
    def rot(self) -> np.ndarray:
        return self._rot

    def update_rotation(self, rot: np.ndarray):
        self.t += 1
        angles = self._main_filter.next(self.t, quat_to_euler(rot))

        if self._gaussian is not None:
            self._gaussian.push(angles)
            angles = self._gaussian.apply()

        self._rot = quat_from_euler_vector(angles)

    def reset(self):
        self.t = 0
        self._rot = quat_identity()
        self._main_filter.reset()
        if self._gaussian is not None:
            self._gaussian.reset()
