"""
Defines the main AppController class, which orchestrates the application's logic.
"""
import asyncio
import logging
import os
import sys
import subprocess
from pydantic import ValidationError as SettingsValidationError
from typing import Dict, Any, Iterable, Optional, Tuple
from pathlib import Path

from .config import ConfigManager, Settings, resolve_download_dir
from .constants import QUEUE_FILE
from .correlator import EventCorrelator
from .dependencies import DependencyManager
from .edit_session import EditSession
from .exceptions import DuplicateJobError, IndexOutOfRangeError, ValidationError
from .gateway import YtDlpGateway, WorkerGateway
from .jobs import JobForm
from .persistence import QueuePersistence
from .processor import ProcessorState, SequentialProcessor
from .queue_store import QueueStore


class AppController:
    """The central controller for the application's business logic."""

    def __init__(self, config_manager: ConfigManager, config: Settings,
                 persistence: Optional[QueuePersistence] = None,
                 gateway: Optional[WorkerGateway] = None):
        """
        Initializes the AppController.

        Args:
            config_manager: The manager for handling configuration persistence.
            config: The loaded application settings.
            persistence: Storage for the queue; defaults to the user data directory.
            gateway: The worker used for downloads; defaults to yt-dlp.
        """
        self.config_manager = config_manager
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.gui = None  # Will be set by the GUI application

        # Application State
        self.state = ProcessorState()
        self.correlator = EventCorrelator(self.state, self._refresh_view)
        self.gateway = gateway if gateway is not None else YtDlpGateway(self.correlator.handle_event)
        self.store = QueueStore(self.config, persistence if persistence is not None else QueuePersistence(QUEUE_FILE))
        self.edit_session = EditSession(self.store, self.gateway.resolve_title, self.default_download_dir)
        self.processor = SequentialProcessor(self.store, self.gateway, self.state, self._refresh_view)

        # Backend Managers
        self.dep_manager = DependencyManager(self.config.use_system_binaries)

    def set_gui(self, gui):
        """Sets the GUI instance for direct callbacks."""
        self.gui = gui

    @property
    def is_downloading(self) -> bool:
        return self.processor.is_draining

    def default_download_dir(self) -> str:
        try:
            return str(resolve_download_dir(self.config))
        except OSError as e:
            self.logger.warning(f"Could not prepare the default download folder: {e}")
            return ""

    async def run_startup_checks(self):
        """Finds the binaries and restores the saved queue after the event loop has started."""
        await self._locate_binaries()
        restored = await self.store.load()
        if restored:
            self.state.append_log(f"Restored {restored} item(s) from the previous session.")
        await self._refresh_view()
        if not self.dep_manager.yt_dlp_path:
            await self._show_message('error', 'yt-dlp Not Found', "yt-dlp was not found. Install it or enable system binaries in Settings.")

    async def _locate_binaries(self):
        self.dep_manager.use_system_binaries = self.config.use_system_binaries
        await self.dep_manager.initialize()
        if isinstance(self.gateway, YtDlpGateway):
            self.gateway.set_binaries(self.dep_manager.yt_dlp_path, self.dep_manager.ffmpeg_path)

    async def _refresh_view(self):
        """Sends the current queue and progress state to the GUI."""
        if self.gui is None:
            return
        await self.gui.update_queue_view({
            'jobs': list(self.store.snapshot()),
            'current': self.state.current_job,
            'status': self.state.status_line,
            'log': self.state.log,
            'is_downloading': self.processor.is_draining,
            'submit_label': self.edit_session.submit_label,
        })

    async def _show_message(self, msg_type: str, title: str, message: str):
        if self.gui is not None:
            await self.gui.show_message({'type': msg_type, 'title': title, 'message': message})

    def new_form(self) -> JobForm:
        return self.edit_session.new_form()

    async def submit_form(self, form: JobForm) -> bool:
        """
        Adds the form as a new job, or updates the job being edited.

        Returns:
            True if the queue was changed and the form can be reset.
        """
        was_editing = self.edit_session.is_editing
        try:
            job = await self.edit_session.commit(form)
        except ValidationError as e:
            await self._show_message('warning', 'Input Error', str(e))
            return False
        except DuplicateJobError as e:
            self.state.append_log(f"{e} Skipping...")
            await self._show_message('warning', 'Duplicate URL', f"{e} Skipping...")
            return False
        except IndexOutOfRangeError:
            self.edit_session.cancel()
            await self._show_message('error', 'Error', "The item being edited is no longer in the queue.")
            await self._refresh_view()
            return False

        self.state.append_log(f"{'Updated' if was_editing else 'Added to queue'}: {job.url}")
        await self._refresh_view()
        return True

    async def begin_edit(self, index: int) -> Optional[JobForm]:
        """Loads a queued job into the form. Returns None if the index is invalid."""
        try:
            form = self.edit_session.begin_edit(index)
        except IndexOutOfRangeError as e:
            await self._show_message('error', 'Error', str(e))
            return None
        await self._refresh_view()
        return form

    async def cancel_edit(self):
        self.edit_session.cancel()
        await self._refresh_view()

    async def on_url_input_changed(self, value: str):
        """Leaves edit mode when the bound URL field is modified."""
        was_editing = self.edit_session.is_editing
        self.edit_session.on_url_changed(value)
        if was_editing and not self.edit_session.is_editing:
            await self._refresh_view()

    async def remove_jobs(self, indices: Iterable[int]):
        """Removes the selected queue items."""
        # A bound edit index is stale once indices shift.
        self.edit_session.cancel()
        removed = await self.store.remove_at(indices)
        for job in removed:
            self.state.append_log(f"Removed from queue: {job.url}")
        await self._refresh_view()

    async def clear_queue(self):
        """Empties the queue and erases the saved copy."""
        self.edit_session.cancel()
        await self.store.clear()
        self.state.append_log("Queue cleared.")
        await self._refresh_view()

    async def start_downloads(self) -> bool:
        """Starts draining the queue. Returns False if nothing was started."""
        if isinstance(self.gateway, YtDlpGateway) and not self.gateway.yt_dlp_path:
            await self._show_message('error', 'Error', 'Cannot start: yt-dlp is not available.')
            return False
        started = self.processor.start()
        await self._refresh_view()
        return started

    async def wait_until_idle(self):
        await self.processor.wait_until_idle()

    async def on_app_closing(self):
        """Handles application shutdown logic."""
        self.logger.info("Application closing.")
        await self.processor.stop("Application closed")
        if isinstance(self.gateway, YtDlpGateway):
            await self.gateway.shutdown()
        await self.store.persist()
        self.config_manager.save(self.config)

    def get_settings(self) -> Settings:
        """Returns the live settings object shared with the queue store."""
        return self.config

    async def save_settings(self, new_settings_data: Dict[str, Any]) -> Tuple[bool, str]:
        """Validates and saves new settings."""
        try:
            new_settings = Settings.model_validate({**self.config.model_dump(), **new_settings_data})
        except SettingsValidationError as e:
            error_details = e.errors()[0]
            field, msg = error_details['loc'][0], error_details['msg']
            return False, f"Error in field '{field}': {msg}"

        remember_changed = new_settings.remember_queue != self.config.remember_queue
        binaries_changed = new_settings.use_system_binaries != self.config.use_system_binaries
        self.config_manager.save(new_settings)
        # The store and edit session read this object, so update it in place.
        self.config.__dict__.update(new_settings.model_dump())

        if remember_changed:
            if self.config.remember_queue:
                await self.store.persist()
            else:
                await self.store.erase_record()
        if binaries_changed:
            await self._locate_binaries()
        return True, "Settings have been saved."

    async def get_dependency_versions(self) -> Dict[str, str]:
        """Fetches dependency versions for display."""
        yt_dlp_version, ffmpeg_version = await asyncio.gather(
            self.dep_manager.get_version(self.dep_manager.yt_dlp_path),
            self.dep_manager.get_version(self.dep_manager.ffmpeg_path)
        )
        return {'yt-dlp': yt_dlp_version, 'ffmpeg': ffmpeg_version}

    async def open_folder(self, path_str: str):
        """Opens the specified folder in the system's file explorer."""
        path = Path(path_str)
        if not await asyncio.to_thread(path.is_dir):
            await self._show_message('error', 'Error', f"Folder does not exist:\n{path}")
            return
        try:
            if sys.platform == 'win32':
                await asyncio.to_thread(os.startfile, str(path))
            elif sys.platform == 'darwin':
                await asyncio.to_thread(subprocess.run, ['open', str(path)], check=True)
            else:
                await asyncio.to_thread(subprocess.run, ['xdg-open', str(path)], check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            await self._show_message('error', 'Error', f"Failed to open folder:\n{e}")
