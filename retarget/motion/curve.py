"""Catmull-Rom splines for calibration envelopes and rotation tracks"""

from typing import List, Optional, Sequence
import numpy as np

from retarget.core.logging import get_logger


def catmull_rom(p0: np.ndarray, p1: np.ndarray, p2: np.ndarray, p3: np.ndarray, t: float) -> np.ndarray:
    """Uniform Catmull-Rom point between p1 and p2 at parameter t."""
    t2 = t * t
    t3 = t2 * t
    return 0.5 * (
        2.0 * p1
        + (-p0 + p2) * t
        + (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t2
        + (-p0 + 3.0 * p1 - 3.0 * p2 + p3) * t3
    )


def catmull_rom_spline(points: Sequence[Sequence[float]], nb_points: int, closed: bool = False) -> np.ndarray:
    """
    Sample a Catmull-Rom spline through control points.

    Open curves duplicate the end points so the spline passes through every
    control point; each segment yields `nb_points` samples and the last
    control point is appended.

    Args:
        points: Control points, shape (N, D)
        nb_points: Samples per segment
        closed: Wrap around to the first point

    Returns:
        Sampled points, shape (M, D)
    """
    pts = [np.asarray(p, dtype=np.float64) for p in points]
    step = 1.0 / nb_points
    samples: List[np.ndarray] = []

    if closed:
        n = len(pts)
        for i in range(n):
            amount = 0.0
            for _ in range(nb_points):
                samples.append(catmull_rom(
                    pts[i % n], pts[(i + 1) % n], pts[(i + 2) % n], pts[(i + 3) % n], amount
                ))
                amount += step
        samples.append(samples[0].copy())
        return np.array(samples)

    total = [pts[0].copy()] + pts + [pts[-1].copy()]
    amount = 0.0
    i = 0
    for i in range(len(total) - 3):
        amount = 0.0
        for _ in range(nb_points):
            samples.append(catmull_rom(total[i], total[i + 1], total[i + 2], total[i + 3], amount))
            amount += step
    samples.append(catmull_rom(total[i], total[i + 1], total[i + 2], total[i + 3], amount))
    return np.array(samples)


def find_point(curve: np.ndarray, x: float, eps: float = 0.001) -> float:
    """
    Look up y for x on a curve sampled with decreasing x.

    Values beyond either end clamp to the end point. Otherwise the first
    sample within eps of x wins; 0 when none is close enough.
    """
    if x > curve[0, 0]:
        return float(curve[0, 1])
    if x < curve[-1, 0]:
        return float(curve[-1, 1])
    for px, py in curve[:, :2]:
        if abs(x - px) < eps:
            return float(py)
    return 0.0


class RotationAngleCurve:
    """
    Catmull-Rom interpolated Euler-angle tracks.

    Each angle component becomes a (time, angle) curve so unevenly timed
    frames can be resampled.
    """

    def __init__(self, curve_length: int):
        self.logger = get_logger("motion.curve")
        if int(curve_length) != curve_length:
            self.logger.warning(f"Curve length {curve_length} is not an integer")
        self.curve_length = int(curve_length)
        self._points: Optional[List[np.ndarray]] = None

    def create_curve_points(self, angles: Sequence[Sequence[float]], times: Sequence[float]) -> bool:
        """
        Build the x/y/z angle curves.

        Args:
            angles: Euler angles per frame, shape (N, 3)
            times: Strictly increasing timestamps, N >= 4

        Returns:
            False (curves unchanged) when the input is rejected
        """
        times = list(times)
        if len(angles) != len(times) or len(times) < 4:
            return False
        if any(b <= a for a, b in zip(times, times[1:])):
            return False

        angles = np.asarray(angles, dtype=np.float64)
        self._points = [
            catmull_rom_spline(
                [(t, a, 0.0) for t, a in zip(times, angles[:, axis])],
                self.curve_length,
            )
            for axis in range(3)
        ]
        return True

    @property
    def points_x(self) -> Optional[np.ndarray]:
        return None if self._points is None else self._points[0]

    @property
    def points_y(self) -> Optional[np.ndarray]:
        return None if self._points is None else self._points[1]

    @property
    def points_z(self) -> Optional[np.ndarray]:
        return None if self._points is None else self._points[2]

    def sample(self, t: float) -> Optional[np.ndarray]:
        """Angles at time t, taken from the nearest curve sample."""
        if self._points is None:
            return None
        values = []
        for pts in self._points:
            nearest = int(np.argmin(np.abs(pts[:, 0] - t)))
            values.append(pts[nearest, 1])
        return np.array(values, dtype=np.float64)
