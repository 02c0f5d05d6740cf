"""
Defines the data classes for a queued download job and its form values.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Any


@dataclass
class Job:
    """
    Represents a single download task waiting in, or taken from, the queue.

    Attributes:
        url: The URL provided by the user (can be a playlist).
        destination_path: The folder the download is written to.
        title: The video title, fetched from yt-dlp. Falls back to the URL.
        format_only_audio: Extract audio only and convert it to mp3.
        expand_playlist: Download every entry when the URL is a playlist.
        strip_sponsor_segments: Cut SponsorBlock segments from the result.
        progress_percent: Progress of the running download (0-100).
        status: The current status of the download (e.g., "Queued", "Downloading").
    """
    url: str
    destination_path: str
    title: str = ""
    format_only_audio: bool = False
    expand_playlist: bool = False
    strip_sponsor_segments: bool = False
    progress_percent: int = field(default=0, compare=False)
    status: str = field(default="Queued", compare=False)

    def __post_init__(self):
        if not self.title:
            self.title = self.url

    def to_record(self) -> Dict[str, Any]:
        """Returns the durable fields used for the persisted queue record."""
        return {
            'url': self.url,
            'title': self.title,
            'destination_path': self.destination_path,
            'format_only_audio': self.format_only_audio,
            'expand_playlist': self.expand_playlist,
            'strip_sponsor_segments': self.strip_sponsor_segments,
        }

    def copy(self) -> "Job":
        return replace(self)


@dataclass
class JobForm:
    """The editable values of the add/update form."""
    url: str = ""
    destination_path: str = ""
    format_only_audio: bool = False
    expand_playlist: bool = False
    strip_sponsor_segments: bool = False

    @classmethod
    def from_job(cls, job: Job) -> "JobForm":
        return cls(
            url=job.url,
            destination_path=job.destination_path,
            format_only_audio=job.format_only_audio,
            expand_playlist=job.expand_playlist,
            strip_sponsor_segments=job.strip_sponsor_segments,
        )

    def to_job(self, title: str = "") -> Job:
        return Job(
            url=self.url.strip(),
            destination_path=self.destination_path.strip(),
            title=title,
            format_only_audio=self.format_only_audio,
            expand_playlist=self.expand_playlist,
            strip_sponsor_segments=self.strip_sponsor_segments,
        )
