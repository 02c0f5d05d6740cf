"""
Runs yt-dlp for queued jobs and reports its output as worker signals.

The gateway emits four kinds of events through its async callback:
('progress', int), ('log', str), ('error', str) and ('complete', int). None of
them identify the job; they describe whatever job was started last.
"""

import os
import re
import sys
import signal
import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, List, Optional, Protocol, Tuple

from .constants import SUBPROCESS_CREATION_FLAGS, OUTPUT_TEMPLATE
from .exceptions import URLExtractionError, DownloadCancelledError, WorkerStartError

EventCallback = Callable[[Tuple[str, Any]], Coroutine[Any, Any, None]]

PROGRESS_PREFIX = 'PROGRESS::'
DOWNLOAD_PERCENT_RE = re.compile(r'\[download\]\s+(\d+(?:\.\d+)?)%')


class WorkerGateway(Protocol):
    """The operations the processor needs from a worker."""

    async def start_job(self, url: str, destination_path: str, format_only_audio: bool,
                        expand_playlist: bool, strip_sponsor_segments: bool) -> None: ...

    async def resolve_title(self, url: str) -> str: ...


def parse_progress(line: str) -> Optional[int]:
    """
    Extracts a download percentage from a line of yt-dlp output.

    Returns:
        The percentage as an int, or None if the line carries no progress.
    """
    percentage = None
    if line.startswith(PROGRESS_PREFIX):
        try: percentage = float(line.split('::', 1)[1].strip().rstrip('%'))
        except (IndexError, ValueError): pass
    elif match := DOWNLOAD_PERCENT_RE.search(line):
        try: percentage = float(match.group(1))
        except ValueError: pass
    if percentage is None:
        return None
    return max(0, min(100, int(percentage)))


def parse_yt_dlp_error(stderr: str) -> str:
    """
    Parses stderr from yt-dlp to find a concise error message.

    Args:
        stderr: The standard error string from the yt-dlp process.

    Returns:
        A concise error message, or the last line of stderr as a fallback.
    """
    if not stderr.strip():
        return "yt-dlp returned an error with no output."

    for line in stderr.strip().splitlines():
        if line.lower().startswith('error:'):
            error_msg = line[6:].strip()
            return error_msg[:200] + "..." if len(error_msg) > 200 else error_msg

    return stderr.strip().splitlines()[-1]


class YtDlpGateway:
    """Launches one yt-dlp process per job and streams its output as events."""

    def __init__(self, event_callback: EventCallback):
        """
        Initializes the YtDlpGateway.

        Args:
            event_callback: The async function to call with worker events.
        """
        self.event_callback = event_callback
        self.logger = logging.getLogger(__name__)
        self.yt_dlp_path: Optional[Path] = None
        self.ffmpeg_path: Optional[Path] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        self.reader_task: Optional[asyncio.Task] = None

    def set_binaries(self, yt_dlp_path: Optional[Path], ffmpeg_path: Optional[Path]):
        """Sets the executables used for downloads and lookups."""
        self.yt_dlp_path = yt_dlp_path
        self.ffmpeg_path = ffmpeg_path

    def build_command(self, url: str, destination_path: str, format_only_audio: bool,
                      expand_playlist: bool, strip_sponsor_segments: bool) -> List[str]:
        """Builds the full yt-dlp command list for one job."""
        assert self.yt_dlp_path is not None
        command = [str(self.yt_dlp_path), '--newline', '--progress-template', f'{PROGRESS_PREFIX}%(progress._percent_str)s',
                   '-P', destination_path, '-o', OUTPUT_TEMPLATE]
        if self.ffmpeg_path: command.extend(['--ffmpeg-location', str(self.ffmpeg_path.parent)])
        if format_only_audio: command.extend(['-x', '--audio-format', 'mp3'])
        command.append('--yes-playlist' if expand_playlist else '--no-playlist')
        if strip_sponsor_segments: command.extend(['--sponsorblock-remove', 'all'])
        command.append(url)
        return command

    async def start_job(self, url: str, destination_path: str, format_only_audio: bool,
                        expand_playlist: bool, strip_sponsor_segments: bool) -> None:
        """
        Launches yt-dlp for a job and returns once the process is running.

        Output is streamed to the event callback by a background task that ends
        with a 'complete' event (or 'error' if the output stream fails).

        Raises:
            WorkerStartError: If yt-dlp is unavailable, could not be launched, or
                another job is still running.
        """
        if not self.yt_dlp_path:
            raise WorkerStartError("yt-dlp is not available.")
        if self.reader_task is not None and not self.reader_task.done():
            raise WorkerStartError("Another download is still running.")

        command = self.build_command(url, destination_path, format_only_audio, expand_playlist, strip_sponsor_segments)
        self.logger.debug(f"Running: {' '.join(command)}")

        kwargs: Dict[str, Any] = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS | subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs['preexec_fn'] = os.setsid

        try:
            self.process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                **kwargs
            )
        except FileNotFoundError:
            raise WorkerStartError(f"yt-dlp executable not found at: {self.yt_dlp_path}")
        except OSError as e:
            raise WorkerStartError(f"OS error launching yt-dlp: {e}")

        self.reader_task = asyncio.create_task(self._pump_output(self.process), name="yt-dlp-output")

    async def _pump_output(self, process: asyncio.subprocess.Process):
        """Forwards the output of a running process and reports how it ended."""
        assert process.stdout is not None
        try:
            while True:
                line_bytes = await process.stdout.readline()
                if not line_bytes: break
                clean_line = line_bytes.decode('utf-8', 'replace').strip()
                if not clean_line: continue

                percentage = parse_progress(clean_line)
                if percentage is not None:
                    await self.event_callback(('progress', percentage))
                if not clean_line.startswith(PROGRESS_PREFIX):
                    await self.event_callback(('log', clean_line))

            return_code = await process.wait()
        except asyncio.CancelledError:
            self._kill(process)
            raise
        except (OSError, ValueError) as e:
            self.logger.error(f"Lost output of yt-dlp process {process.pid}: {e}")
            self._kill(process)
            await self.event_callback(('error', f"Lost connection to yt-dlp: {e}"))
            return
        finally:
            if self.process is process:
                self.process = None

        await self.event_callback(('complete', return_code))

    def _kill(self, process: asyncio.subprocess.Process):
        if process.returncode is not None:
            return
        try:
            if sys.platform == 'win32':
                process.kill()
            else:
                os.killpg(os.getpgid(process.pid), signal.SIGTERM)
        except (ProcessLookupError, OSError):
            pass  # Already gone

    async def shutdown(self):
        """Terminates a running download. Used when the application closes."""
        if self.reader_task is None or self.reader_task.done():
            return
        self.logger.info("Terminating running yt-dlp process...")
        process = self.process
        self.reader_task.cancel()
        await asyncio.gather(self.reader_task, return_exceptions=True)
        if process is not None:
            # The reader may have been cancelled before it ever ran.
            self._kill(process)
            self.process = None

    async def _run_query(self, command: List[str], timeout: int) -> str:
        """
        Runs a short yt-dlp query and returns its stdout.

        Raises:
            URLExtractionError: On any failure (e.g., timeout, non-zero exit code).
            DownloadCancelledError: If the task is cancelled.
        """
        kwargs = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs
            )
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except FileNotFoundError:
            raise URLExtractionError("yt-dlp executable not found.")
        except asyncio.TimeoutError:
            if process: process.kill()
            raise URLExtractionError("URL lookup timed out.")
        except OSError as e:
            raise URLExtractionError(f"OS error: {e}")
        except asyncio.CancelledError:
            if process: process.kill()
            raise DownloadCancelledError("URL lookup cancelled.")

        if process.returncode != 0:
            raise URLExtractionError(parse_yt_dlp_error(stderr_bytes.decode('utf-8', 'replace')))
        return stdout_bytes.decode('utf-8', 'replace')

    async def resolve_title(self, url: str) -> str:
        """
        Looks up the title of a URL.

        Raises:
            URLExtractionError: If yt-dlp is unavailable or the lookup fails.
        """
        if not self.yt_dlp_path:
            raise URLExtractionError("yt-dlp is not available.")
        command = [str(self.yt_dlp_path), '--get-title', '--no-warnings', '--no-playlist', url]
        stdout = await self._run_query(command, timeout=30)
        lines = [line.strip() for line in stdout.splitlines() if line.strip()]
        if not lines:
            raise URLExtractionError("Title not found.")
        return lines[0]
