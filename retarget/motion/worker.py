"""Background frame worker - runs the frame processor off the caller's thread"""

import threading
from queue import Queue, Empty, Full
from typing import Callable, Optional

from retarget.core import Config, get_logger
from retarget.pose.landmark import FrameResults
from .processor import FrameOutput, FrameProcessor


class PoseWorker:
    """
    Processes frames on a daemon thread, latest frame wins.

    Features:
    - One pending slot: submitting while a frame waits replaces it
    - Frames run one at a time, in submission order
    - Newest output kept for polling, optional callback per output

    Usage:
        with PoseWorker(processor) as worker:
            worker.submit(results)
            output = worker.get_result(timeout=0.5)
    """

    def __init__(
        self,
        processor: FrameProcessor,
        on_result: Optional[Callable[[FrameOutput], None]] = None,
        config: Optional[Config] = None,
    ):
        self.logger = get_logger("motion.worker")
        self.config = config or Config()
        self.processor = processor
        self.on_result = on_result

        self._poll_timeout = float(self.config.get("worker.poll_timeout", 0.1))

        self._pending: Queue = Queue(maxsize=1)
        self._results: Queue = Queue(maxsize=1)
        self._latest: Optional[FrameOutput] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

        self.submitted_frames = 0
        self.processed_frames = 0
        self.dropped_frames = 0
        self.failed_frames = 0

        self.logger.debug("Initialized PoseWorker")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="pose-worker", daemon=True)
        self._thread.start()
        self.logger.info("Started pose worker")

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the thread. A frame in progress finishes first."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.logger.info(
            f"Stopped pose worker ({self.processed_frames} processed, {self.dropped_frames} dropped)"
        )

    def submit(self, results: FrameResults) -> bool:
        """
        Queue a frame, replacing any frame still waiting.

        Returns:
            False if a waiting frame was dropped to make room
        """
        dropped = False
        with self._lock:
            self.submitted_frames += 1
            try:
                self._pending.get_nowait()
                self._pending.task_done()
                self.dropped_frames += 1
                dropped = True
            except Empty:
                pass
            self._pending.put_nowait(results)
        if dropped:
            self.logger.debug("Dropped a pending frame")
        return not dropped

    def latest(self) -> Optional[FrameOutput]:
        """Newest output without consuming it."""
        return self._latest

    def get_result(self, timeout: Optional[float] = None) -> Optional[FrameOutput]:
        """
        Wait for an output not returned by a previous call.

        Args:
            timeout: Seconds to wait, None blocks

        Returns:
            FrameOutput or None on timeout
        """
        try:
            return self._results.get(timeout=timeout)
        except Empty:
            return None

    def join(self) -> None:
        """Block until every submitted frame was processed or dropped."""
        self._pending.join()

    def _publish(self, output: FrameOutput) -> None:
        self._latest = output
        try:
            self._results.get_nowait()
        except Empty:
            pass
        try:
            self._results.put_nowait(output)
        except Full:
            self.logger.debug("Result slot taken, newer output kept")

        if self.on_result is not None:
            self.on_result(output)

    def _run(self) -> None:
        """Worker loop."""
        while not self._stop_event.is_set():
            try:
                results = self._pending.get(timeout=self._poll_timeout)
            except Empty:
                continue

            try:
                output = self.processor.process(results)
                if output is None:
                    self.failed_frames += 1
                else:
                    self.processed_frames += 1
                    self._publish(output)
            except Exception:
                self.failed_frames += 1
                self.logger.exception("Unexpected error in pose worker")
            finally:
                self._pending.task_done()

    def __enter__(self) -> "PoseWorker":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
