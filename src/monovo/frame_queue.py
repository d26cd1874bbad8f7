"""Serializes asynchronous frame arrivals into the single-frame pipeline.

Frames may arrive from a camera callback thread at any time, but the
odometry must finish one frame before starting the next because every
frame starts from the previous frame's pose. FrameQueue buffers arrivals
in a bounded queue and drops the oldest frame when it is full, keeping
latency bounded when processing falls behind.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import Callable

import numpy as np

from .odometry import MonocularVisualOdometry, OdometryFrame
from .tracking import Features

logger = logging.getLogger(__name__)


@dataclass
class QueuedFrame:
    """A frame waiting to be processed.

    Exactly one of ``features`` and ``image`` is set.
    """

    timestamp_ns: int
    features: Features | None = None
    image: np.ndarray | None = None


class FrameQueue:
    """Bounded drop-oldest queue feeding a MonocularVisualOdometry.

    Frames are processed strictly one at a time, either on the caller's
    thread with ``process_pending`` or on one background worker started
    with ``start``.
    """

    def __init__(
        self,
        odometry: MonocularVisualOdometry,
        maxsize: int | None = None,
        on_frame: Callable[[OdometryFrame], None] | None = None,
    ) -> None:
        """Initialize frame queue.

        Args:
            odometry: Pipeline that processes the frames
            maxsize: Frames kept waiting before the oldest is dropped
                (default: ``odometry.config.queue_size``)
            on_frame: Optional callback receiving every OdometryFrame
        """
        self._odometry = odometry
        self._maxsize = maxsize or odometry.config.queue_size
        self._queue: Queue[QueuedFrame] = Queue(maxsize=self._maxsize)
        self._on_frame = on_frame
        self._submit_lock = threading.Lock()
        self._process_lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._num_dropped = 0
        self._num_processed = 0
        self._num_failed = 0

    def submit_features(self, features: Features, timestamp_ns: int) -> None:
        """Queue a frame of already detected features."""
        self._put(QueuedFrame(timestamp_ns=timestamp_ns, features=features))

    def submit_image(self, image: np.ndarray, timestamp_ns: int) -> None:
        """Queue a raw image; features are detected when it is processed."""
        self._put(QueuedFrame(timestamp_ns=timestamp_ns, image=image))

    def _put(self, frame: QueuedFrame) -> None:
        # Serialize producers so drop-then-put stays atomic
        with self._submit_lock:
            while True:
                try:
                    self._queue.put_nowait(frame)
                    return
                except Full:
                    try:
                        dropped = self._queue.get_nowait()
                    except Empty:
                        continue
                    self._num_dropped += 1
                    logger.debug(
                        "Dropped frame at %d ns (queue full)", dropped.timestamp_ns
                    )

    def _process(self, frame: QueuedFrame) -> OdometryFrame:
        with self._process_lock:
            if frame.features is not None:
                result = self._odometry.process_frame(frame.features, frame.timestamp_ns)
            else:
                result = self._odometry.process_image(frame.image, frame.timestamp_ns)
            self._num_processed += 1

        if self._on_frame is not None:
            self._on_frame(result)
        return result

    def process_pending(self) -> list[OdometryFrame]:
        """Process every queued frame on the calling thread, oldest first."""
        results = []
        while True:
            try:
                frame = self._queue.get_nowait()
            except Empty:
                return results
            results.append(self._process(frame))

    def start(self) -> None:
        """Start a background worker that processes frames as they arrive.

        A frame whose processing raises is logged, counted in
        ``num_failed`` and skipped; the worker keeps running.
        """
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._run, name="monovo-frame-worker", daemon=True
        )
        self._worker.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the background worker (queued frames stay queued)."""
        if self._worker is None:
            return
        self._stop_event.set()
        self._worker.join(timeout=timeout)
        self._worker = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                frame = self._queue.get(timeout=0.1)
            except Empty:
                continue
            try:
                self._process(frame)
            except Exception:
                # One bad frame must not stop the worker
                self._num_failed += 1
                logger.exception("Frame at %d ns failed, skipping", frame.timestamp_ns)

    @property
    def num_dropped(self) -> int:
        """Return number of frames dropped because the queue was full."""
        return self._num_dropped

    @property
    def num_processed(self) -> int:
        return self._num_processed

    @property
    def num_failed(self) -> int:
        """Return number of frames the worker skipped after an exception."""
        return self._num_failed

    @property
    def num_pending(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()
