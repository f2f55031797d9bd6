"""
Temporal vector filters for landmark smoothing.

Filters operate on 3D numpy vectors and are driven with a logical timestamp
(a frame counter, not wall time):
- One Euro: adaptive low-pass, less lag when moving fast
- Kalman: three independent scalar Kalman filters, one per axis
- Gaussian window: kernel-weighted average of the last N samples
- Euclidean high-pass: hysteresis, ignores moves below a threshold

Reference: https://cristal.univ-lille.fr/~casiez/1euro/
"""

import math
from collections import deque
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import numpy as np

from retarget.core.errors import ConfigurationError
from retarget.core.logging import get_logger


# Landmarks at or below this visibility never reach a filter
VISIBILITY_THRESHOLD = 0.65

# Window size of the optional Gaussian stage
GAUSSIAN_WINDOW_SIZE = 5


def gaussian_kernel_1d(size: int, sigma: float) -> np.ndarray:
    """
    Normalized 1D Gaussian kernel.

    Args:
        size: Requested size, the kernel has 2 * (size // 2) + 1 taps
        sigma: Standard deviation in taps

    Returns:
        Kernel whose values sum to 1
    """
    width = int(size) // 2
    x = np.arange(-width, width + 1, dtype=np.float64)
    kernel = np.exp(-x * x / (2.0 * sigma * sigma))
    return kernel / kernel.sum()


# =============================================================================
# FILTER PARAMETERS
# =============================================================================

class FilterKind(Enum):
    """Primary filter of a landmark."""
    KALMAN = "Kalman"
    ONE_EURO = "OneEuro"

    @classmethod
    def parse(cls, value: Union[str, "FilterKind"]) -> "FilterKind":
        if isinstance(value, FilterKind):
            return value
        for kind in cls:
            if kind.value.lower() == str(value).lower():
                return kind
        raise ConfigurationError(f"Wrong filter type: {value!r}")


@dataclass(frozen=True)
class KalmanParams:
    """Parameters for the per-axis Kalman filter."""
    r: float = 0.1                          # Process noise
    q: float = 3.0                          # Measurement noise
    gaussian_sigma: Optional[float] = None  # Enables the Gaussian stage

    kind = FilterKind.KALMAN

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, **asdict(self)}


@dataclass(frozen=True)
class OneEuroParams:
    """Parameters for the One Euro filter."""
    min_cutoff: float = 0.01     # Minimum cutoff frequency - lower = more smoothing
    beta: float = 0.0            # Speed coefficient - higher = less lag when moving
    d_cutoff: float = 1.0        # Derivative cutoff frequency
    gaussian_sigma: Optional[float] = None

    kind = FilterKind.ONE_EURO

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, **asdict(self)}


FilterParams = Union[KalmanParams, OneEuroParams]


def filter_params_from_dict(data: Dict[str, Any]) -> FilterParams:
    """
    Build filter parameters from a config mapping.

    Accepts the `filters.*` entries of config.yaml:
    {type, R, Q, one_euro_cutoff, one_euro_beta, d_cutoff, gaussian_sigma}
    """
    kind = FilterKind.parse(data.get("type", FilterKind.ONE_EURO.value))
    sigma = data.get("gaussian_sigma")
    sigma = float(sigma) if sigma else None

    if kind is FilterKind.KALMAN:
        return KalmanParams(
            r=float(data.get("R", data.get("r", 0.1))),
            q=float(data.get("Q", data.get("q", 3.0))),
            gaussian_sigma=sigma,
        )
    return OneEuroParams(
        min_cutoff=float(data.get("one_euro_cutoff", data.get("min_cutoff", 0.01))),
        beta=float(data.get("one_euro_beta", data.get("beta", 0.0))),
        d_cutoff=float(data.get("d_cutoff", 1.0)),
        gaussian_sigma=sigma,
    )


# Preset configurations for the landmark sets
FILTER_PRESETS: Dict[str, FilterParams] = {
    "pose": KalmanParams(r=1.0, q=1.0),
    "world_pose": KalmanParams(r=1.0, q=1.0),
    "face": KalmanParams(r=1.0, q=10.0, gaussian_sigma=2.0),
    "hand": KalmanParams(r=1.0, q=10.0),
    "wrist_offset": KalmanParams(r=0.1, q=2.0),
    "default": OneEuroParams(min_cutoff=0.01, beta=0.0),
    "rotation": KalmanParams(r=1.0, q=1.0),
}


# =============================================================================
# FILTERS
# =============================================================================

class OneEuroVectorFilter:
    """
    One Euro Filter over a 3D vector.

    The caller guarantees strictly increasing timestamps. State is updated on
    every call.
    """

    def __init__(
        self,
        t0: float = 0.0,
        x0: Optional[np.ndarray] = None,
        dx0: Optional[np.ndarray] = None,
        min_cutoff: float = 1.0,
        beta: float = 0.0,
        d_cutoff: float = 1.0,
    ):
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.d_cutoff = d_cutoff
        self._t0 = t0
        self._x0 = np.zeros(3) if x0 is None else np.asarray(x0, dtype=np.float64).copy()
        self._dx0 = np.zeros(3) if dx0 is None else np.asarray(dx0, dtype=np.float64).copy()
        self.reset()

    def reset(self):
        self.t_prev = self._t0
        self.x_prev = self._x0.copy()
        self.dx_prev = self._dx0.copy()

    @staticmethod
    def _smoothing_factor(t_e: float, cutoff: float) -> float:
        r = 2.0 * math.pi * cutoff * t_e
        return r / (r + 1.0)

    @staticmethod
    def _exponential_smoothing(a: float, x: np.ndarray, x_prev: np.ndarray) -> np.ndarray:
        return a * x + (1.0 - a) * x_prev

    def next(self, t: float, x: np.ndarray) -> np.ndarray:
        """
        Filter one sample.

        Args:
            t: Timestamp, must be greater than the previous one
            x: Raw vector

        Returns:
            Smoothed vector
        """
        x = np.asarray(x, dtype=np.float64)
        t_e = t - self.t_prev

        # Filtered derivative of the signal
        a_d = self._smoothing_factor(t_e, self.d_cutoff)
        dx = (x - self.x_prev) / t_e
        dx_hat = self._exponential_smoothing(a_d, dx, self.dx_prev)

        # Filtered signal
        cutoff = self.min_cutoff + self.beta * float(np.linalg.norm(dx_hat))
        a = self._smoothing_factor(t_e, cutoff)
        x_hat = self._exponential_smoothing(a, x, self.x_prev)

        self.x_prev = x_hat
        self.dx_prev = dx_hat
        self.t_prev = t

        return x_hat.copy()


class ScalarKalmanFilter:
    """
    One-dimensional Kalman filter with a constant state model.

    State transition A=1, no control input, measurement C=1. The first sample
    initializes the estimate.
    """

    def __init__(self, r: float = 1.0, q: float = 1.0):
        self.r = r  # Process noise
        self.q = q  # Measurement noise
        self.reset()

    def reset(self):
        self.x: Optional[float] = None
        self.cov: Optional[float] = None

    def filter(self, z: float) -> float:
        if self.x is None:
            self.x = float(z)
            self.cov = self.q
            return self.x

        # Prediction
        pred_x = self.x
        pred_cov = self.cov + self.r

        # Correction
        k = pred_cov / (pred_cov + self.q)
        self.x = pred_x + k * (float(z) - pred_x)
        self.cov = pred_cov - k * pred_cov
        return self.x

    @property
    def last_measurement(self) -> Optional[float]:
        return self.x


class KalmanVectorFilter:
    """Independent scalar Kalman filters on x, y and z."""

    def __init__(self, r: float = 0.1, q: float = 3.0):
        self.r = r
        self.q = q
        self._axes = [ScalarKalmanFilter(r, q) for _ in range(3)]

    def reset(self):
        for f in self._axes:
            f.reset()

    def next(self, t: float, vec: np.ndarray) -> np.ndarray:
        return np.array(
            [f.filter(v) for f, v in zip(self._axes, vec)], dtype=np.float64
        )


class GaussianVectorFilter:
    """
    Gaussian-weighted window over the last `size` samples.

    `apply()` returns the zero vector until the window is full.
    """

    def __init__(self, size: int, sigma: float):
        if size < 2:
            raise ConfigurationError(f"Gaussian filter size too short: {size}")
        self.size = int(size)
        self.sigma = sigma
        self.kernel = gaussian_kernel_1d(self.size, sigma)
        self._values: deque = deque(maxlen=self.size)

    @property
    def values(self) -> List[np.ndarray]:
        return list(self._values)

    def push(self, v: np.ndarray):
        self._values.append(np.asarray(v, dtype=np.float64).copy())

    def reset(self):
        self._values.clear()

    def apply(self) -> np.ndarray:
        if len(self._values) != self.size:
            return np.zeros(3)

        ret = self._values[0].copy()
        len0 = np.linalg.norm(ret)
        for weight, v in zip(self.kernel, self._values):
            ret += weight * v

        # Keep the magnitude of the oldest sample
        len1 = np.linalg.norm(ret)
        if len1 == 0.0:
            return ret
        return ret * (len0 / len1)


class EuclideanHighPassFilter:
    """Keeps the last accepted vector until a sample moves past `threshold`."""

    def __init__(self, threshold: float):
        self.threshold = threshold
        self._value = np.zeros(3)

    @property
    def value(self) -> np.ndarray:
        return self._value

    def update(self, v: np.ndarray):
        v = np.asarray(v, dtype=np.float64)
        if np.linalg.norm(self._value - v) > self.threshold:
            self._value = v.copy()

    def reset(self):
        self._value = np.zeros(3)


VectorFilter = Union[OneEuroVectorFilter, KalmanVectorFilter]


def create_vector_filter(
    params: FilterParams,
    t0: float = 0.0,
    x0: Optional[np.ndarray] = None,
) -> VectorFilter:
    """
    Instantiate the primary filter for a parameter variant.

    Args:
        params: KalmanParams or OneEuroParams
        t0: Initial timestamp (One Euro only)
        x0: Initial value (One Euro only)

    Returns:
        A filter exposing next(t, x) and reset()
    """
    if isinstance(params, KalmanParams):
        return KalmanVectorFilter(params.r, params.q)
    if isinstance(params, OneEuroParams):
        return OneEuroVectorFilter(
            t0, x0, None,
            min_cutoff=params.min_cutoff,
            beta=params.beta,
            d_cutoff=params.d_cutoff,
        )
    raise ConfigurationError(f"Unsupported filter parameters: {params!r}")


def load_filter_presets(config) -> Dict[str, FilterParams]:
    """
    Filter parameters per landmark set, config entries over built-in presets.

    Args:
        config: Config instance

    Returns:
        Mapping of landmark set name to parameters
    """
    logger = get_logger("pose.filters")
    presets = dict(FILTER_PRESETS)
    for name, entry in (config.filters or {}).items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"filters.{name} must be a mapping")
        presets[name] = filter_params_from_dict(entry)
        logger.debug(f"Filter preset {name}: {presets[name]}")
    return presets
