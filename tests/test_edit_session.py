import asyncio

import pytest

from ytqueue.edit_session import EditSession, NO_EDIT
from ytqueue.exceptions import DuplicateJobError, IndexOutOfRangeError, ValidationError
from ytqueue.jobs import JobForm

from conftest import make_job


@pytest.fixture
def session(store, gateway):
    return EditSession(store, gateway.resolve_title, lambda: "/downloads")


async def fill(store, *urls):
    for url in urls:
        await store.append(make_job(url))


async def test_add_uses_resolved_title(session, store, gateway):
    gateway.titles["https://v/1"] = "A Video"
    job = await session.commit(JobForm(url="https://v/1", destination_path="/d"))
    assert job.title == "A Video"
    assert store.get(0).title == "A Video"


async def test_add_falls_back_to_url_when_title_lookup_fails(session, store):
    await session.commit(JobForm(url="https://v/2", destination_path="/d"))
    assert store.get(0).title == "https://v/2"


async def test_add_strips_whitespace(session, store):
    await session.commit(JobForm(url="  https://v/3 ", destination_path=" /d "))
    assert store.get(0).url == "https://v/3"
    assert store.get(0).destination_path == "/d"


@pytest.mark.parametrize("form, field", [
    (JobForm(url="", destination_path="/d"), "url"),
    (JobForm(url="   ", destination_path="/d"), "url"),
    (JobForm(url="A", destination_path=""), "destination_path"),
])
async def test_validation_errors_name_the_field(session, store, form, field):
    with pytest.raises(ValidationError) as excinfo:
        await session.commit(form)
    assert excinfo.value.field == field
    assert len(store) == 0


async def test_duplicate_add_keeps_add_mode_and_store(session, store):
    await fill(store, "A")
    with pytest.raises(DuplicateJobError):
        await session.commit(JobForm(url="A", destination_path="/d"))
    assert len(store) == 1
    assert not session.is_editing


async def test_begin_edit_loads_form_and_switches_label(session, store):
    await store.append(make_job("A", destination_path="/x", format_only_audio=True))
    assert session.submit_label == "Add to Queue"
    form = session.begin_edit(0)
    assert form == JobForm(url="A", destination_path="/x", format_only_audio=True)
    assert session.editing_index == 0
    assert session.original_url == "A"
    assert session.submit_label == "Update"


async def test_begin_edit_invalid_index(session, store):
    await fill(store, "A")
    with pytest.raises(IndexOutOfRangeError):
        session.begin_edit(3)
    assert session.editing_index == NO_EDIT


async def test_begin_edit_then_cancel_leaves_store_unchanged(session, store):
    await fill(store, "A", "B")
    before = list(store.snapshot())
    session.begin_edit(1)
    session.cancel()
    assert session.editing_index == NO_EDIT
    assert session.original_url is None
    assert list(store.snapshot()) == before


async def test_begin_edit_then_commit_replaces_in_place(session, store):
    await fill(store, "A", "B", "C")
    session.begin_edit(1)
    new_values = JobForm(url="B2", destination_path="/new", expand_playlist=True, strip_sponsor_segments=True)
    await session.commit(new_values)
    assert len(store) == 3
    assert JobForm.from_job(store.get(1)) == new_values
    assert session.editing_index == NO_EDIT


async def test_commit_keeps_title_when_url_unchanged(session, store):
    await store.append(make_job("A", title="Known Title"))
    session.begin_edit(0)
    await session.commit(JobForm(url="A", destination_path="/other"))
    assert store.get(0).title == "Known Title"
    assert store.get(0).destination_path == "/other"


async def test_update_may_duplicate_another_queued_url(session, store):
    await fill(store, "A", "B")
    session.begin_edit(1)
    await session.commit(JobForm(url="A", destination_path="/d"))
    assert store.snapshot().urls() == ["A", "A"]


async def test_url_change_exits_edit_mode(session, store):
    await fill(store, "A")
    session.begin_edit(0)
    session.on_url_changed("A")
    assert session.is_editing
    session.on_url_changed("Ab")
    assert not session.is_editing
    assert list(store.snapshot())[0].url == "A"


async def test_commit_after_url_change_adds_new_job(session, store):
    await fill(store, "A")
    session.begin_edit(0)
    session.on_url_changed("B")
    await session.commit(JobForm(url="B", destination_path="/d"))
    assert store.snapshot().urls() == ["A", "B"]


async def test_commit_follows_job_when_queue_shifts(session, store):
    await fill(store, "A", "B", "C")
    session.begin_edit(2)
    store.dequeue_front()
    await session.commit(JobForm(url="C", destination_path="/moved"))
    assert store.snapshot().urls() == ["B", "C"]
    assert store.get(1).destination_path == "/moved"


async def test_commit_fails_when_bound_job_left_queue(session, store):
    await fill(store, "A", "B")
    session.begin_edit(0)
    store.dequeue_front()
    with pytest.raises(IndexOutOfRangeError):
        await session.commit(JobForm(url="A", destination_path="/d"))
    assert store.snapshot().urls() == ["B"]


def test_new_form_prefills_destination(session):
    form = session.new_form()
    assert form.url == ""
    assert form.destination_path == "/downloads"


async def test_commit_targets_bound_job_when_queue_shifts_during_title_lookup(store):
    for url in "ABC":
        await store.append(make_job(url))

    async def resolver_that_lets_processor_run(url):
        store.dequeue_front()
        await asyncio.sleep(0)
        return "New Title"

    session = EditSession(store, resolver_that_lets_processor_run)
    session.begin_edit(1)
    await session.commit(JobForm(url="B2", destination_path="/d"))

    assert store.snapshot().urls() == ["B2", "C"]
    assert store.get(0).title == "New Title"
    assert store.get(1).destination_path == "/d"
    assert not session.is_editing


async def test_commit_fails_when_bound_job_starts_during_title_lookup(store):
    for url in "AB":
        await store.append(make_job(url))

    async def resolver(url):
        store.dequeue_front()
        return "Title"

    session = EditSession(store, resolver)
    session.begin_edit(0)
    with pytest.raises(IndexOutOfRangeError):
        await session.commit(JobForm(url="A2", destination_path="/d"))
    assert store.snapshot().urls() == ["B"]
