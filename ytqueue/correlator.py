"""
Attributes untagged worker signals to the job currently being processed.
"""

import logging
from typing import Any, Callable, Coroutine, Optional, Tuple

from .processor import JobResult, ProcessorState

UNKNOWN_JOB = "unknown"


class EventCorrelator:
    """
    Consumes the worker's progress, log, error and complete signals.

    None of the signals name a job. Each is applied to `state.current_job`; a
    signal that arrives with no job in flight only reaches the log, prefixed
    with the "unknown" placeholder.
    """

    def __init__(self, state: ProcessorState, listener: Optional[Callable[[], Coroutine[Any, Any, None]]] = None):
        """
        Initializes the EventCorrelator.

        Args:
            state: The processor's shared state. Held by reference.
            listener: Async callback invoked whenever observable state changes.
        """
        self.state = state
        self.listener = listener
        self.logger = logging.getLogger(__name__)

    async def handle_event(self, event: Tuple[str, Any]):
        """
        Dispatches one worker signal. Used as the gateway's event callback.
        """
        msg_type, value = event
        handler_map = {
            'progress': self._handle_progress,
            'log': self._handle_log,
            'error': self._handle_error,
            'complete': self._handle_complete,
        }
        handler = handler_map.get(msg_type)
        if handler:
            handler(value)
            if self.listener is not None:
                await self.listener()
        else:
            self.logger.warning(f"Unhandled worker event type: {msg_type}")

    def _handle_progress(self, value: Any):
        job = self.state.current_job
        try:
            percent = max(0, min(100, int(value)))
        except (TypeError, ValueError):
            self.logger.debug(f"Ignoring malformed progress value: {value!r}")
            return
        if job is None:
            self.state.append_log(f"[{UNKNOWN_JOB}] Progress: {percent}%")
            return
        job.progress_percent = percent
        self.state.status_line = f"Downloading {job.title}: {percent}%"

    def _handle_log(self, value: Any):
        line = str(value)
        job = self.state.current_job
        if job is None:
            self.state.append_log(f"[{UNKNOWN_JOB}] {line}")
            return
        self.logger.debug(f"[{job.url}] {line}")
        self.state.append_log(line)

    def _handle_error(self, value: Any):
        message = str(value)
        job = self.state.current_job
        self.state.append_log(f"ERROR: {message}" if job else f"[{UNKNOWN_JOB}] ERROR: {message}")
        if job is None:
            return
        self.logger.error(f"Worker reported an error for {job.url}: {message}")
        if self.state.finish(JobResult(job, False, message)):
            job.status = f"Failed: {message[:60]}"

    def _handle_complete(self, value: Any):
        job = self.state.current_job
        self.state.append_log(f"Download completed with code {value}" if job else f"[{UNKNOWN_JOB}] Download completed with code {value}")
        if job is None:
            return
        exit_code = value if isinstance(value, int) else None
        if self.state.finish(JobResult(job, True, f"Exit code {value}", exit_code)):
            job.status = f"Completed (exit code {value})"
            self.state.status_line = f"Finished {job.title}"
