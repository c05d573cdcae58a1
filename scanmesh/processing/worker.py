"""
Serialized update worker.

All reconstruction work runs on one dedicated thread, off the event loop
that receives fragments. Commands are queued in submission order and run
one at a time; in-flight work is never cancelled. The session (and so the
ceiling polygon) is only ever touched from that thread.
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

from scanmesh.config import ReconstructionConfig
from scanmesh.processing.geometry import Snapshot
from scanmesh.processing.planar_extractor import PolygonUpdate
from scanmesh.processing.session import CycleResult, ReconstructionSession

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SnapshotWorker:
    """Async front end for a ReconstructionSession on a single thread"""

    def __init__(
        self,
        config: Optional[ReconstructionConfig] = None,
        max_pending: int = 4
    ):
        """
        Initialize worker.

        Args:
            config: Reconstruction settings passed to the session
            max_pending: Pending command count above which a backlog warning is logged
        """
        self.session = ReconstructionSession(config)
        self.max_pending = max_pending

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='scanmesh-worker')
        self._lock = threading.Lock()
        self._pending = 0
        self._peak_pending = 0
        self._completed = 0
        self._closed = False

        logger.info(f"SnapshotWorker initialized: max_pending={max_pending}")

    @property
    def pending(self) -> int:
        """Commands submitted but not finished"""
        with self._lock:
            return self._pending

    async def _submit(self, func: Callable[..., T], *args) -> T:
        if self._closed:
            raise RuntimeError("SnapshotWorker is closed")

        with self._lock:
            self._pending += 1
            pending = self._pending
            self._peak_pending = max(self._peak_pending, pending)

        if pending > self.max_pending:
            # Snapshots are neither coalesced nor dropped, so a fast producer grows this queue
            logger.warning(
                f"Update backlog: {pending} commands pending (limit {self.max_pending})"
            )

        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(self._executor, func, *args)
        except RuntimeError:
            with self._lock:
                self._pending -= 1
            raise
        # Count the job as pending until it finishes, even if the caller is cancelled
        future.add_done_callback(self._job_done)
        return await asyncio.shield(future)

    def _job_done(self, future: asyncio.Future) -> None:
        with self._lock:
            self._pending -= 1
            self._completed += 1
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.debug(f"Worker job failed: {error!r}")

    async def ingest_snapshot(self, snapshot: Snapshot) -> CycleResult:
        """
        Process one snapshot on the worker thread.

        Args:
            snapshot: Fragments for this cycle

        Returns:
            Immutable CycleResult
        """
        return await self._submit(self.session.process_snapshot, snapshot)

    async def current_polygon(self) -> Optional[PolygonUpdate]:
        """Read the polygon through the same queue as the updates"""
        return await self._submit(self.session.current_polygon)

    async def last_fragments(self) -> tuple:
        """Fragments of the most recently processed snapshot"""
        return await self._submit(lambda: self.session.last_fragments)

    async def statistics(self) -> dict:
        stats = await self._submit(self.session.get_statistics)
        with self._lock:
            stats.update({
                'pending_commands': self._pending,
                'peak_pending_commands': self._peak_pending,
                'completed_commands': self._completed,
            })
        return stats

    async def reset(self) -> None:
        await self._submit(self.session.reset)

    def close(self) -> None:
        """Stop accepting commands; queued work still runs to completion"""
        self._closed = True
        self._executor.shutdown(wait=True)
        logger.info("SnapshotWorker stopped")


class SceneState:
    """
    Render-side state, owned by the event loop.

    Holds the latest mesh result and the latest polygon. Results are swapped
    in whole; whichever completes last wins.
    """

    def __init__(self):
        self.result: Optional[CycleResult] = None
        self.polygon: Optional[PolygonUpdate] = None
        self.applied = 0

    def apply(self, result: CycleResult) -> bool:
        """
        Swap in a finished cycle.

        Returns:
            True if the polygon changed
        """
        self.result = result
        self.applied += 1
        if result.polygon is not None:
            self.polygon = result.polygon
            return True
        return False

    def clear(self) -> None:
        self.result = None
        self.polygon = None
