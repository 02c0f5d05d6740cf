"""
Drains the download queue one job at a time through the worker gateway.

Worker signals carry no job identifier, so they are attributed to whatever job
is in flight. That only works while at most one job runs at a time: the
processor never starts a job before the previous one received its terminal
signal. Running jobs in parallel would require signals tagged with a job id.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, List, Optional

from .exceptions import EmptyQueueError, WorkerStartError
from .gateway import WorkerGateway
from .jobs import Job
from .queue_store import QueueStore


class ProcessorStatus(Enum):
    IDLE = "idle"
    DRAINING = "draining"


@dataclass
class JobResult:
    """Outcome of one job run."""
    job: Job
    success: bool
    message: str = ""
    exit_code: Optional[int] = None


@dataclass
class ProcessorState:
    """
    State shared by the processor and the event correlator.

    The processor owns it; the correlator keeps a reference to the same object.

    Attributes:
        current_job: The job handed to the worker, or None between jobs.
        status_line: A one-line summary of what is happening.
        log: Every log line received, in arrival order.
    """
    current_job: Optional[Job] = None
    status_line: str = "Ready"
    log: List[str] = field(default_factory=list)
    _terminal: Optional["asyncio.Future[JobResult]"] = field(default=None, repr=False)

    def begin_job(self, job: Job) -> "asyncio.Future[JobResult]":
        """Marks `job` as in flight and returns the future its terminal signal resolves."""
        if self.current_job is not None:
            raise RuntimeError(f"A job is already in flight: {self.current_job.url}")
        self.current_job = job
        self._terminal = asyncio.get_running_loop().create_future()
        return self._terminal

    def finish(self, result: JobResult) -> bool:
        """Resolves the in-flight job. Returns False if it was already resolved."""
        if self._terminal is None or self._terminal.done():
            return False
        self._terminal.set_result(result)
        return True

    def end_job(self):
        self.current_job = None
        self._terminal = None

    def append_log(self, line: str):
        self.log.append(line)


class SequentialProcessor:
    """Runs queued jobs strictly one after another, in queue order."""

    def __init__(
        self,
        store: QueueStore,
        gateway: WorkerGateway,
        state: ProcessorState,
        listener: Optional[Callable[[], Coroutine[Any, Any, None]]] = None,
    ):
        """
        Initializes the SequentialProcessor.

        The gateway must not be shared with another processor: its signals are
        correlated on the assumption that this processor has the only job in flight.

        Args:
            store: The queue to drain.
            gateway: Launches jobs and reports their signals to the correlator.
            state: The state object shared with the event correlator.
            listener: Async callback invoked whenever observable state changes.
        """
        self.store = store
        self.gateway = gateway
        self.state = state
        self.listener = listener
        self.logger = logging.getLogger(__name__)
        self.status = ProcessorStatus.IDLE
        self.results: List[JobResult] = []
        self._drain_task: Optional[asyncio.Task] = None
        self._stop_requested = False

    @property
    def is_draining(self) -> bool:
        return self.status is ProcessorStatus.DRAINING

    def start(self) -> bool:
        """
        Starts draining the queue in the background.

        Returns:
            True if draining started, False if a drain is already in progress.
        """
        if self.is_draining:
            self.logger.info("A download is already in progress.")
            self.state.append_log("A download is already in progress")
            return False
        self._stop_requested = False
        self.status = ProcessorStatus.DRAINING
        self.state.append_log("Starting download...")
        self._drain_task = asyncio.create_task(self._drain(), name="queue-drain")
        self._drain_task.add_done_callback(self._handle_task_exception)
        return True

    async def wait_until_idle(self):
        """Waits for the current drain, if any, to finish."""
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)

    async def stop(self, reason: str = "Stopped"):
        """
        Ends the drain after the in-flight job, which is failed immediately.

        Used when the worker was shut down and will never send a terminal signal.
        Jobs still queued stay in the queue.
        """
        if not self.is_draining:
            return
        self._stop_requested = True
        if self.state.current_job is not None:
            self.state.finish(JobResult(self.state.current_job, False, reason))
        await self.wait_until_idle()

    def _handle_task_exception(self, task: asyncio.Task) -> None:
        """Callback to log exceptions from the drain task."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception:
            self.logger.exception(f"Exception in background task {task.get_name()}:")

    async def _drain(self):
        try:
            while not self._stop_requested:
                try:
                    job = self.store.dequeue_front()
                except EmptyQueueError:
                    break
                await self._run_job(job)
            if self._stop_requested:
                self.logger.info("Queue processing stopped.")
            else:
                self.logger.info("--- All queued downloads are complete! ---")
        finally:
            self.state.end_job()
            self.status = ProcessorStatus.IDLE
            self.state.status_line = "Ready"
            await self._notify()

    async def _run_job(self, job: Job):
        terminal = self.state.begin_job(job)
        job.status, job.progress_percent = "Downloading", 0
        self.state.status_line = f"Downloading {job.title}"
        self.state.append_log(f"Processing {job.url}...")
        self.logger.info(f"Starting download: {job.url}")
        await self._notify()

        try:
            await self.gateway.start_job(
                job.url,
                job.destination_path,
                job.format_only_audio,
                job.expand_playlist,
                job.strip_sponsor_segments,
            )
        except WorkerStartError as e:
            self.state.finish(JobResult(job, False, str(e)))
        except Exception as e:
            self.logger.exception(f"Unexpected error starting download for {job.url}")
            self.state.finish(JobResult(job, False, f"Unexpected error: {e}"))

        result = await terminal
        self.results.append(result)
        if result.success:
            self.state.append_log(f"Finished {job.url}")
            self.logger.info(f"Finished {job.url} (exit code {result.exit_code})")
        else:
            job.status = f"Failed: {result.message}"
            self.state.append_log(f"Failed to download {job.url}: {result.message}")
            self.logger.warning(f"Download failed for {job.url}: {result.message}")

        await self.store.persist()
        self.state.end_job()
        await self._notify()

    async def _notify(self):
        if self.listener is not None:
            await self.listener()
