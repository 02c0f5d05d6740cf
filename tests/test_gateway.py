import stat
import sys
from pathlib import Path

import pytest

from ytqueue.exceptions import URLExtractionError, WorkerStartError
from ytqueue.gateway import YtDlpGateway, parse_progress, parse_yt_dlp_error


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


def write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body, encoding='utf-8')
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return path


@pytest.mark.parametrize("line, expected", [
    ("PROGRESS:: 42.7%", 42),
    ("PROGRESS::100.0%", 100),
    ("[download]  57.3% of 10.00MiB at 1.00MiB/s ETA 00:04", 57),
    ("PROGRESS::  N/A", None),
    ("[youtube] abc: Downloading webpage", None),
])
def test_parse_progress(line, expected):
    assert parse_progress(line) == expected


def test_parse_yt_dlp_error_prefers_error_line():
    stderr = "WARNING: something\nERROR: Video unavailable\nmore"
    assert parse_yt_dlp_error(stderr) == "Video unavailable"
    assert parse_yt_dlp_error("just noise\nlast") == "last"
    assert parse_yt_dlp_error("") == "yt-dlp returned an error with no output."


def test_build_command_reflects_job_options():
    gateway = YtDlpGateway(Recorder())
    gateway.set_binaries(Path("/bin/yt-dlp"), Path("/opt/ffmpeg/bin/ffmpeg"))
    command = gateway.build_command("https://v/1", "/music", True, False, True)

    assert command[0] == "/bin/yt-dlp"
    assert command[-1] == "https://v/1"
    assert command[command.index('-P') + 1] == "/music"
    assert command[command.index('--ffmpeg-location') + 1] == str(Path("/opt/ffmpeg/bin"))
    assert ['-x', '--audio-format', 'mp3'] == command[command.index('-x'):command.index('-x') + 3]
    assert '--no-playlist' in command
    assert command[command.index('--sponsorblock-remove') + 1] == 'all'


def test_build_command_video_playlist_without_ffmpeg():
    gateway = YtDlpGateway(Recorder())
    gateway.set_binaries(Path("/bin/yt-dlp"), None)
    command = gateway.build_command("https://v/list", "/videos", False, True, False)
    assert '--yes-playlist' in command
    assert '-x' not in command
    assert '--ffmpeg-location' not in command
    assert '--sponsorblock-remove' not in command


async def test_start_without_binary_raises():
    gateway = YtDlpGateway(Recorder())
    with pytest.raises(WorkerStartError):
        await gateway.start_job("https://v/1", "/d", False, False, False)


async def test_start_with_missing_executable_raises(tmp_path):
    gateway = YtDlpGateway(Recorder())
    gateway.set_binaries(tmp_path / "does-not-exist", None)
    with pytest.raises(WorkerStartError):
        await gateway.start_job("https://v/1", str(tmp_path), False, False, False)


async def test_resolve_title_without_binary_raises():
    gateway = YtDlpGateway(Recorder())
    with pytest.raises(URLExtractionError):
        await gateway.resolve_title("https://v/1")


@pytest.mark.skipif(sys.platform == 'win32', reason="uses a POSIX shell script as yt-dlp")
async def test_output_is_streamed_as_signals(tmp_path):
    script = write_script(tmp_path / "yt-dlp", (
        'echo "[download] Destination: clip.mp4"\n'
        'echo "PROGRESS:: 50.0%"\n'
        'echo "ERROR: something odd" 1>&2\n'
        'exit 3\n'
    ))
    recorder = Recorder()
    gateway = YtDlpGateway(recorder)
    gateway.set_binaries(script, None)

    await gateway.start_job("https://v/1", str(tmp_path), False, False, False)
    await gateway.reader_task

    assert ('log', '[download] Destination: clip.mp4') in recorder.events
    assert ('progress', 50) in recorder.events
    assert ('log', 'ERROR: something odd') in recorder.events
    assert not any(kind == 'log' and payload.startswith('PROGRESS::') for kind, payload in recorder.events)
    assert recorder.events[-1] == ('complete', 3)
    assert gateway.process is None


@pytest.mark.skipif(sys.platform == 'win32', reason="uses a POSIX shell script as yt-dlp")
async def test_resolve_title_reads_first_line(tmp_path):
    script = write_script(tmp_path / "yt-dlp", 'echo "My Title"\necho "Other"\n')
    gateway = YtDlpGateway(Recorder())
    gateway.set_binaries(script, None)
    assert await gateway.resolve_title("https://v/1") == "My Title"


@pytest.mark.skipif(sys.platform == 'win32', reason="uses a POSIX shell script as yt-dlp")
async def test_resolve_title_failure_raises(tmp_path):
    script = write_script(tmp_path / "yt-dlp", 'echo "ERROR: Unsupported URL" 1>&2\nexit 1\n')
    gateway = YtDlpGateway(Recorder())
    gateway.set_binaries(script, None)
    with pytest.raises(URLExtractionError, match="Unsupported URL"):
        await gateway.resolve_title("https://v/1")


@pytest.mark.skipif(sys.platform == 'win32', reason="uses a POSIX shell script as yt-dlp")
async def test_shutdown_stops_running_process(tmp_path):
    script = write_script(tmp_path / "yt-dlp", 'echo started\nsleep 30\n')
    recorder = Recorder()
    gateway = YtDlpGateway(recorder)
    gateway.set_binaries(script, None)

    await gateway.start_job("https://v/1", str(tmp_path), False, False, False)
    await gateway.shutdown()
    assert gateway.reader_task.done()
    assert not any(kind == 'complete' for kind, _ in recorder.events)
