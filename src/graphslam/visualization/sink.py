"""Snapshot sinks that observe the engine without blocking it."""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Union

from matplotlib.figure import Figure

from ..pose_graph import GraphSnapshot
from .plotter import plot_snapshot

logger = logging.getLogger(__name__)

_STOP = object()


class VisualizationSink(ABC):
    """Receives read-only graph snapshots from the engine."""

    @abstractmethod
    def push(self, snapshot: GraphSnapshot) -> None:
        """Hand over a snapshot; must return promptly."""

    def close(self) -> None:
        """Flush pending work and release resources."""


class ThreadedVisualizer(VisualizationSink):
    """Renders snapshots on a daemon thread fed through a bounded queue.

    ``push`` never blocks: when the queue is full the oldest pending snapshot is
    dropped in favour of the new one.
    """

    def __init__(
        self, renderer: Callable[[GraphSnapshot], None], max_pending: int = 4
    ) -> None:
        """Initialize and start the worker thread.

        Args:
            renderer: Callable invoked with each snapshot on the worker thread.
            max_pending: Capacity of the snapshot queue.
        """
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.renderer = renderer
        self.rendered = 0
        self.dropped = 0
        self.failures = 0
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._closed = False
        self._thread = threading.Thread(target=self._worker, name="graphslam-viz", daemon=True)
        self._thread.start()

    def push(self, snapshot: GraphSnapshot) -> None:
        if self._closed:
            return
        self._put(snapshot)

    def close(self, timeout: Optional[float] = None) -> None:
        """Render what is still queued, then stop the worker thread."""
        if self._closed:
            return
        self._closed = True
        self._put(_STOP)
        self._thread.join(timeout)

    def _put(self, item: object) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            try:
                self.renderer(item)
                self.rendered += 1
            except Exception:
                self.failures += 1
                logger.exception("Rendering snapshot failed")


class MatplotlibRenderer:
    """Writes one PNG frame per snapshot."""

    def __init__(
        self,
        output_dir: Union[str, Path],
        prefix: str = "graph",
        every_n: int = 1,
        dpi: int = 100,
    ) -> None:
        """Initialize the renderer.

        Args:
            output_dir: Directory receiving the frames (created if missing).
            prefix: File name prefix of the frames.
            every_n: Only render snapshots whose step is a multiple of this.
            dpi: Resolution of the frames.
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.every_n = max(int(every_n), 1)
        self.dpi = dpi

    def frame_path(self, step: int) -> Path:
        return self.output_dir / f"{self.prefix}_{step:06d}.png"

    def __call__(self, snapshot: GraphSnapshot) -> None:
        if snapshot.step % self.every_n != 0:
            return
        # Figure without pyplot so rendering is safe off the main thread
        fig = Figure(figsize=(10, 8))
        ax = fig.add_subplot(1, 1, 1)
        plot_snapshot(snapshot, show=False, ax=ax)
        fig.savefig(self.frame_path(snapshot.step), dpi=self.dpi)
