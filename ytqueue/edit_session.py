"""
Tracks whether the input form is adding a new job or editing a queued one.
"""

import logging
from typing import Awaitable, Callable, Optional

from .exceptions import DuplicateJobError, IndexOutOfRangeError, ValidationError, URLExtractionError
from .jobs import Job, JobForm
from .queue_store import QueueStore

NO_EDIT = -1


class EditSession:
    """
    State machine behind the add/update form.

    In add mode `commit` appends a new job. After `begin_edit` the form is bound
    to a queued job and `commit` replaces that job in place. Changing the URL
    input while bound drops the binding, so an edit is never merged silently.
    """

    def __init__(
        self,
        store: QueueStore,
        title_resolver: Optional[Callable[[str], Awaitable[str]]] = None,
        default_destination: Optional[Callable[[], str]] = None,
    ):
        """
        Initializes the EditSession.

        Args:
            store: The queue the form writes to.
            title_resolver: Async lookup of a video title; failures fall back to the URL.
            default_destination: Returns the folder suggested for new jobs.
        """
        self.store = store
        self.title_resolver = title_resolver
        self.default_destination = default_destination
        self.logger = logging.getLogger(__name__)
        self.editing_index: int = NO_EDIT
        self.original_url: Optional[str] = None

    @property
    def is_editing(self) -> bool:
        return self.editing_index >= 0

    @property
    def submit_label(self) -> str:
        return "Update" if self.is_editing else "Add to Queue"

    def new_form(self) -> JobForm:
        """Returns a blank form with the default download folder filled in."""
        destination = self.default_destination() if self.default_destination else ""
        return JobForm(destination_path=str(destination))

    def begin_edit(self, index: int) -> JobForm:
        """
        Binds the form to the queued job at `index`.

        Returns:
            The job's values, to be loaded into the form.

        Raises:
            IndexOutOfRangeError: If `index` does not point at a queued job.
        """
        job = self.store.get(index)
        self.editing_index = index
        self.original_url = job.url
        self.logger.debug(f"Editing queue item {index + 1}: {job.url}")
        return JobForm.from_job(job)

    def cancel(self):
        """Leaves edit mode without touching the queue."""
        if self.is_editing:
            self.logger.debug("Edit cancelled.")
        self.editing_index = NO_EDIT
        self.original_url = None

    def on_url_changed(self, value: str):
        """Handles a change of the URL input. Any change while editing exits edit mode."""
        if self.is_editing and value != self.original_url:
            self.cancel()

    async def commit(self, form: JobForm) -> Job:
        """
        Submits the form, updating the bound job or appending a new one.

        Returns:
            The job that was stored.

        Raises:
            ValidationError: If the URL or destination folder is empty.
            DuplicateJobError: If adding a URL that is already queued.
            IndexOutOfRangeError: If the bound job is no longer in the queue.
        """
        self.validate(form)
        url = form.url.strip()

        if self.is_editing:
            title = None if url == self.original_url else await self._resolve_title(url)
            # No await between locating the bound job and replacing it.
            index = self._bound_index()
            if title is None:
                title = self.store.get(index).title
            job = form.to_job(title)
            await self.store.update_at(index, job)
            self.cancel()
            return job

        if self.store.contains_url(url):
            raise DuplicateJobError(url)
        job = form.to_job(await self._resolve_title(url))
        await self.store.append(job)
        return job

    def _bound_index(self) -> int:
        """
        Returns the current index of the bound job.

        The processor removes jobs from the front while a form is open, so the
        job is looked up by its original URL when the recorded index has moved.
        """
        urls = self.store.snapshot().urls()
        if self.editing_index < len(urls) and urls[self.editing_index] == self.original_url:
            return self.editing_index
        if self.original_url in urls:
            self.editing_index = urls.index(self.original_url)
            return self.editing_index
        raise IndexOutOfRangeError(f"{self.original_url} is no longer queued.")

    @staticmethod
    def validate(form: JobForm):
        if not form.url.strip():
            raise ValidationError('url', "Please enter a URL.")
        if not form.destination_path.strip():
            raise ValidationError('destination_path', "Please select a download folder.")

    async def _resolve_title(self, url: str) -> str:
        if self.title_resolver is None:
            return url
        try:
            return await self.title_resolver(url) or url
        except URLExtractionError as e:
            self.logger.warning(f"Could not resolve title for {url}: {e}")
            return url
