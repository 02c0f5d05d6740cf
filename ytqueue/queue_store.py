"""
Defines the QueueStore, the ordered collection of jobs waiting to be downloaded.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Iterable, Iterator, List, Optional

from .config import Settings
from .exceptions import DuplicateJobError, EmptyQueueError, IndexOutOfRangeError
from .jobs import Job
from .persistence import QueuePersistence


class QueueSnapshot(Sequence):
    """
    A read-only view of the queue at the time it was taken.

    Iterating it more than once is allowed. Each access hands out a copy, so
    callers can never reach the jobs held by the store.
    """
    def __init__(self, jobs: Iterable[Job]):
        self._jobs = tuple(jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return QueueSnapshot(self._jobs[index])
        return self._jobs[index].copy()

    def __iter__(self) -> Iterator[Job]:
        for job in self._jobs:
            yield job.copy()

    def urls(self) -> List[str]:
        return [job.url for job in self._jobs]


class QueueStore:
    """
    Holds queued jobs in FIFO order and keeps the persisted record in sync.

    Every mutation takes effect in memory first. Writing the record is gated by
    the `remember_queue` setting, and a failed write is logged, never raised.
    Writes are serialized, and each one snapshots the queue once it holds the
    lock, so the record on disk always ends up matching the latest contents.
    """

    def __init__(self, settings: Settings, persistence: Optional[QueuePersistence] = None):
        """
        Initializes the QueueStore.

        Args:
            settings: The live settings object; `remember_queue` is read on every write.
            persistence: The adapter used to store the queue, if any.
        """
        self.settings = settings
        self.persistence = persistence
        self.logger = logging.getLogger(__name__)
        self._jobs: List[Job] = []
        self._record_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    def contains_url(self, url: str) -> bool:
        return any(job.url == url for job in self._jobs)

    def get(self, index: int) -> Job:
        """Returns a copy of the job at `index`."""
        self._check_index(index)
        return self._jobs[index].copy()

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(self._jobs)

    async def append(self, job: Job):
        """
        Adds a job to the tail of the queue.

        Raises:
            DuplicateJobError: If a job with the same URL is already queued.
        """
        if self.contains_url(job.url):
            raise DuplicateJobError(job.url)
        self._jobs.append(job)
        self.logger.info(f"Added to queue: {job.url}")
        await self.persist()

    async def remove_at(self, indices: Iterable[int]) -> List[Job]:
        """
        Removes the jobs at the given indices in a single pass.

        Indices are processed from highest to lowest so earlier removals do not
        shift later ones. Negative and out-of-range indices are ignored.

        Returns:
            The removed jobs, in queue order.
        """
        removed: List[Job] = []
        for index in sorted(set(indices), reverse=True):
            if 0 <= index < len(self._jobs):
                removed.append(self._jobs.pop(index))
        removed.reverse()
        if removed:
            self.logger.info(f"Removed {len(removed)} item(s) from the queue.")
        await self.persist()
        return removed

    async def update_at(self, index: int, job: Job):
        """
        Replaces the job at `index`. Uniqueness is not re-checked.

        Raises:
            IndexOutOfRangeError: If `index` does not point at a queued job.
        """
        self._check_index(index)
        self._jobs[index] = job
        self.logger.info(f"Updated queue item {index + 1}: {job.url}")
        await self.persist()

    def dequeue_front(self) -> Job:
        """
        Removes and returns the job at the head of the queue.

        Raises:
            EmptyQueueError: If the queue is empty.
        """
        if not self._jobs:
            raise EmptyQueueError("The queue is empty.")
        return self._jobs.pop(0)

    async def clear(self):
        """Empties the queue and erases the persisted record whatever the settings say."""
        self._jobs.clear()
        await self.erase_record()

    async def erase_record(self):
        """Removes the persisted record without touching the queued jobs."""
        if self.persistence is None:
            return
        async with self._record_lock:
            try:
                await self.persistence.clear_queue_record()
            except OSError as e:
                self.logger.error(f"Failed to clear the saved queue: {e}")

    async def persist(self):
        """Writes the current contents to the persisted record when remembering is enabled."""
        if self.persistence is None:
            return
        async with self._record_lock:
            if not self.settings.remember_queue:
                return
            try:
                await self.persistence.write_queue_record(self.snapshot())
            except OSError as e:
                self.logger.error(f"Failed to save the queue: {e}")

    async def load(self) -> int:
        """
        Restores jobs from the persisted record when remembering is enabled.

        Jobs whose URL is already queued are skipped.

        Returns:
            The number of jobs restored.
        """
        if self.persistence is None or not self.settings.remember_queue:
            return 0
        restored = 0
        for job in await self.persistence.read_queue_record():
            if self.contains_url(job.url):
                continue
            self._jobs.append(job)
            restored += 1
        if restored:
            self.logger.info(f"Restored {restored} item(s) from the saved queue.")
        return restored

    def _check_index(self, index: int):
        if not 0 <= index < len(self._jobs):
            raise IndexOutOfRangeError(f"No queued job at index {index}.")
