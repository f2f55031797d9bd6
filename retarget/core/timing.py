"""Frame timing for the processing loop and recording replay"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional


@dataclass
class FrameStamp:
    """Index and replay time of one frame."""
    frame_number: int
    timestamp: float  # seconds since the clock started
    late: bool = False


class FrameTimer:
    """Sliding window of per-frame processing durations."""

    def __init__(self, window_size: int = 60):
        self._durations: Deque[float] = deque(maxlen=window_size)
        self._started: Optional[float] = None

    def start(self) -> None:
        self._started = time.perf_counter()

    def stop(self) -> float:
        """Record the running measurement and return its duration."""
        if self._started is None:
            return 0.0
        duration = time.perf_counter() - self._started
        self._started = None
        self._durations.append(duration)
        return duration

    def cancel(self) -> None:
        """Drop the running measurement, e.g. for a frame that was rolled back."""
        self._started = None

    @property
    def samples(self) -> int:
        return len(self._durations)

    @property
    def average_frame_time(self) -> float:
        if not self._durations:
            return 0.0
        return sum(self._durations) / len(self._durations)

    @property
    def max_frame_time(self) -> float:
        return max(self._durations, default=0.0)

    @property
    def fps(self) -> float:
        """Throughput implied by the average duration."""
        avg = self.average_frame_time
        return 1.0 / avg if avg > 0 else 0.0

    def reset(self) -> None:
        self._durations.clear()
        self._started = None


class FrameClock:
    """
    Paces recording replay at a fixed frame rate.

    Deadlines are anchored to the start time (frame n is due at n / target_fps),
    so a slow frame does not push every later frame back.
    """

    def __init__(self, target_fps: float = 30.0):
        if target_fps <= 0:
            raise ValueError(f"target_fps must be positive, got {target_fps}")
        self.target_fps = target_fps
        self._origin: Optional[float] = None
        self._frame_count = 0
        self.late_frames = 0

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def frame_duration(self) -> float:
        return 1.0 / self.target_fps

    def start(self) -> None:
        self._origin = time.perf_counter()
        self._frame_count = 0
        self.late_frames = 0

    def _elapsed(self) -> float:
        if self._origin is None:
            self.start()
        return time.perf_counter() - self._origin

    def wait_for_next_frame(self) -> float:
        """
        Sleep until the next frame is due.

        Returns:
            Seconds slept, 0.0 when already behind schedule
        """
        remaining = self._frame_count * self.frame_duration - self._elapsed()
        if remaining > 0:
            time.sleep(remaining)
            return remaining
        return 0.0

    def tick(self) -> FrameStamp:
        """Stamp the current frame and advance the counter."""
        now = self._elapsed()
        late = now > (self._frame_count + 1) * self.frame_duration
        if late:
            self.late_frames += 1
        stamp = FrameStamp(frame_number=self._frame_count, timestamp=now, late=late)
        self._frame_count += 1
        return stamp
