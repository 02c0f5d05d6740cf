import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from ytqueue.config import Settings
from ytqueue.correlator import EventCorrelator
from ytqueue.exceptions import URLExtractionError, WorkerStartError
from ytqueue.jobs import Job
from ytqueue.persistence import QueuePersistence
from ytqueue.processor import ProcessorState, SequentialProcessor
from ytqueue.queue_store import QueueStore


class FakeGateway:
    """
    Stands in for yt-dlp. Each started job replays a scripted list of signals
    (default: a single complete(0)) from a background task, like the real worker.
    """

    def __init__(self):
        self.event_callback = None
        self.calls: List[Tuple[str, str, bool, bool, bool]] = []
        self.timeline: List[Tuple[str, str]] = []
        self.scripts: Dict[str, List[Tuple[str, Any]]] = {}
        self.fail_start: Set[str] = set()
        self.titles: Dict[str, str] = {}
        self.in_flight: Optional[str] = None
        self.overlapped = False

    async def start_job(self, url, destination_path, format_only_audio, expand_playlist, strip_sponsor_segments):
        self.calls.append((url, destination_path, format_only_audio, expand_playlist, strip_sponsor_segments))
        self.timeline.append(('start', url))
        if url in self.fail_start:
            raise WorkerStartError(f"cannot launch {url}")
        if self.in_flight is not None:
            self.overlapped = True
        self.in_flight = url
        asyncio.get_running_loop().create_task(self._replay(url))

    async def _replay(self, url):
        for kind, payload in self.scripts.get(url, [('complete', 0)]):
            await asyncio.sleep(0)
            if kind in ('error', 'complete'):
                self.in_flight = None
                self.timeline.append(('terminal', url))
            await self.event_callback((kind, payload))

    async def resolve_title(self, url):
        if url in self.titles:
            return self.titles[url]
        raise URLExtractionError("no title")


def make_job(url: str, destination_path: str = "/d", **kwargs) -> Job:
    return Job(url=url, destination_path=destination_path, **kwargs)


@pytest.fixture
def settings():
    return Settings(remember_queue=True)


@pytest.fixture
def persistence(tmp_path):
    return QueuePersistence(tmp_path / 'queue.json')


@pytest.fixture
def store(settings, persistence):
    return QueueStore(settings, persistence)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def state():
    return ProcessorState()


@pytest.fixture
def correlator(state, gateway):
    correlator = EventCorrelator(state)
    gateway.event_callback = correlator.handle_event
    return correlator


@pytest.fixture
def processor(store, gateway, state, correlator):
    return SequentialProcessor(store, gateway, state)
