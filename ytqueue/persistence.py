"""
Stores the download queue on disk so it survives application restarts.

The record is a JSON object holding a single list of jobs under a fixed key.
Entries are shape-checked with Pydantic on the way back in; malformed entries
are dropped without rejecting the rest of the record.
"""

import os
import json
import asyncio
import logging
from pathlib import Path
from typing import Iterable, List

import aiofiles
from pydantic import BaseModel, Field, ValidationError

from .constants import QUEUE_STORAGE_KEY
from .jobs import Job


class JobRecord(BaseModel):
    """Schema of one persisted queue entry."""
    url: str = Field(min_length=1)
    destination_path: str = Field(min_length=1)
    title: str = ''
    format_only_audio: bool = False
    expand_playlist: bool = False
    strip_sponsor_segments: bool = False

    def to_job(self) -> Job:
        return Job(**self.model_dump())


class QueuePersistence:
    """Reads and writes the persisted queue record."""

    def __init__(self, queue_path: Path, storage_key: str = QUEUE_STORAGE_KEY):
        """
        Initializes the QueuePersistence adapter.

        Args:
            queue_path: The JSON file holding the record.
            storage_key: The key the job list is stored under.
        """
        self.queue_path = queue_path
        self.storage_key = storage_key
        self.logger = logging.getLogger(__name__)

    async def read_queue_record(self) -> List[Job]:
        """
        Loads the persisted jobs in their stored order.

        Returns:
            The valid jobs from the record, or an empty list when the record is
            missing or unreadable.
        """
        if not await asyncio.to_thread(self.queue_path.exists):
            return []
        try:
            async with aiofiles.open(self.queue_path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
        except (OSError, ValueError) as e:
            self.logger.error(f"Could not read queue record {self.queue_path}: {e}")
            return []

        entries = data.get(self.storage_key) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            return []

        jobs: List[Job] = []
        for entry in entries:
            try:
                jobs.append(JobRecord.model_validate(entry).to_job())
            except ValidationError:
                continue
        if len(jobs) != len(entries):
            self.logger.debug(f"Dropped {len(entries) - len(jobs)} malformed queue entr(ies).")
        return jobs

    async def write_queue_record(self, jobs: Iterable[Job]):
        """
        Replaces the persisted record with the given jobs.

        Raises:
            OSError: If the record could not be written.
        """
        payload = json.dumps({self.storage_key: [job.to_record() for job in jobs]}, indent=2)
        await asyncio.to_thread(self.queue_path.parent.mkdir, parents=True, exist_ok=True)
        tmp_path = self.queue_path.with_suffix('.tmp')
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(payload)
        await asyncio.to_thread(os.replace, tmp_path, self.queue_path)

    async def clear_queue_record(self):
        """
        Removes the persisted record.

        Raises:
            OSError: If an existing record could not be removed.
        """
        await asyncio.to_thread(self.queue_path.unlink, missing_ok=True)
