import pytest

from ytqueue.correlator import EventCorrelator, UNKNOWN_JOB

from conftest import make_job


@pytest.fixture
def running(state):
    """Puts a job in flight and returns (job, terminal future)."""
    job = make_job("https://v/1", title="Clip")

    async def begin():
        return job, state.begin_job(job)
    return begin


async def test_progress_updates_current_job_and_status(correlator, state, running):
    job, terminal = await running()
    await correlator.handle_event(('progress', 42))
    assert job.progress_percent == 42
    assert state.status_line == "Downloading Clip: 42%"
    assert not terminal.done()


async def test_progress_is_clamped(correlator, running):
    job, _ = await running()
    await correlator.handle_event(('progress', 150))
    assert job.progress_percent == 100
    await correlator.handle_event(('progress', -3))
    assert job.progress_percent == 0


async def test_log_appends_without_finishing(correlator, state, running):
    _, terminal = await running()
    await correlator.handle_event(('log', '[download] Destination: clip.mp4'))
    await correlator.handle_event(('log', 'second'))
    assert state.log[-2:] == ['[download] Destination: clip.mp4', 'second']
    assert not terminal.done()


async def test_error_resolves_terminal_as_failure(correlator, state, running):
    job, terminal = await running()
    await correlator.handle_event(('error', 'network'))
    result = terminal.result()
    assert result.success is False
    assert result.message == 'network'
    assert result.job is job
    assert 'ERROR: network' in state.log


async def test_complete_resolves_terminal_with_exit_code(correlator, state, running):
    job, terminal = await running()
    await correlator.handle_event(('complete', 2))
    result = terminal.result()
    assert result.success is True
    assert result.exit_code == 2
    assert 'Download completed with code 2' in state.log
    assert job.status == "Completed (exit code 2)"


async def test_only_first_terminal_signal_counts(correlator, running):
    _, terminal = await running()
    await correlator.handle_event(('complete', 0))
    await correlator.handle_event(('error', 'late'))
    assert terminal.result().success is True


async def test_signals_without_current_job_only_reach_log(correlator, state):
    await correlator.handle_event(('progress', 10))
    await correlator.handle_event(('log', 'stray'))
    await correlator.handle_event(('error', 'boom'))
    await correlator.handle_event(('complete', 0))
    assert state.current_job is None
    assert state.status_line == "Ready"
    assert all(line.startswith(f"[{UNKNOWN_JOB}]") for line in state.log)
    assert len(state.log) == 4


async def test_correlator_reads_shared_state_by_reference(state):
    correlator = EventCorrelator(state)
    job = make_job("A")
    state.begin_job(job)
    await correlator.handle_event(('progress', 5))
    assert job.progress_percent == 5
    state.end_job()
    second = make_job("B")
    state.begin_job(second)
    await correlator.handle_event(('progress', 7))
    assert second.progress_percent == 7
    assert job.progress_percent == 5


async def test_unknown_event_type_is_ignored(correlator, state):
    await correlator.handle_event(('resize', None))
    assert state.log == []


async def test_listener_called_for_each_signal(state):
    calls = []

    async def listener():
        calls.append(state.status_line)

    correlator = EventCorrelator(state, listener)
    await correlator.handle_event(('log', 'x'))
    await correlator.handle_event(('progress', 3))
    assert len(calls) == 2


async def test_late_error_leaves_completed_status(correlator, state, running):
    job, terminal = await running()
    await correlator.handle_event(('complete', 0))
    await correlator.handle_event(('error', 'late'))
    assert job.status == "Completed (exit code 0)"
    assert state.status_line == "Finished Clip"
    assert terminal.result().success is True
    assert state.log[-1] == "ERROR: late"


async def test_late_complete_leaves_failed_status(correlator, state, running):
    job, terminal = await running()
    await correlator.handle_event(('error', 'network'))
    await correlator.handle_event(('complete', 0))
    assert job.status == "Failed: network"
    assert terminal.result().success is False
