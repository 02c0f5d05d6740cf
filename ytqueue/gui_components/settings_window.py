"""
Defines the Toplevel window for application settings.
"""

import tkinter as tk
from tkinter import ttk, filedialog, messagebox
import asyncio
import logging
from typing import Callable, Optional

from ..constants import resource_path, FONT_SIZE_MIN, FONT_SIZE_MAX
from ..config import Settings
from ..controller import AppController


class SettingsWindow(tk.Toplevel):
    """A Toplevel window for managing application settings."""

    def __init__(self, master: tk.Tk, app_controller: AppController, config: Settings, loop: asyncio.AbstractEventLoop, on_saved: Optional[Callable[[], None]] = None):
        """
        Initializes the Settings window.

        Args:
            master: The parent window.
            app_controller: The central application controller.
            config: The current application Settings object.
            loop: The asyncio event loop.
            on_saved: Called after settings were saved successfully.
        """
        super().__init__(master)
        self.app_controller = app_controller
        self.config = config
        self.loop = loop
        self.on_saved = on_saved
        self.logger = logging.getLogger(__name__)

        self.title("Settings")
        self.geometry("560x330")
        self.resizable(False, False)
        self.transient(master)
        try: self.iconbitmap(resource_path('icon.ico'))
        except tk.TclError: pass

        self.yt_dlp_version_var = tk.StringVar(value="Checking...")
        self.ffmpeg_version_var = tk.StringVar(value="Checking...")

        self._create_widgets()
        self.protocol("WM_DELETE_WINDOW", self.destroy)

        task = self.loop.create_task(self.check_dependency_versions())
        task.add_done_callback(self._handle_task_exception)

    def _handle_task_exception(self, task: asyncio.Task) -> None:
        """Callback to log exceptions from background tasks."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception:
            self.logger.exception(f"Exception in settings window task {task.get_name()}:")

    def _create_widgets(self):
        """Creates and lays out all widgets for the settings window."""
        settings_frame = ttk.Frame(self, padding="10"); settings_frame.pack(fill=tk.BOTH, expand=True); settings_frame.columnconfigure(1, weight=1)

        self.download_dir_var = tk.StringVar(value=str(self.config.download_dir or ''))
        ttk.Label(settings_frame, text="Download Folder:").grid(row=0, column=0, padx=5, pady=5, sticky=tk.W)
        ttk.Entry(settings_frame, textvariable=self.download_dir_var).grid(row=0, column=1, padx=5, pady=5, sticky=tk.EW)
        dir_buttons = ttk.Frame(settings_frame); dir_buttons.grid(row=0, column=2, padx=5, pady=5)
        ttk.Button(dir_buttons, text="Browse...", command=self.browse_download_dir).pack(side=tk.LEFT)
        ttk.Button(dir_buttons, text="Reset", command=lambda: self.download_dir_var.set('')).pack(side=tk.LEFT, padx=(5, 0))

        self.font_size_var = tk.IntVar(value=self.config.font_size)
        ttk.Label(settings_frame, text="Font Size:").grid(row=1, column=0, padx=5, pady=5, sticky=tk.W)
        ttk.Spinbox(settings_frame, from_=FONT_SIZE_MIN, to=FONT_SIZE_MAX, textvariable=self.font_size_var, width=5).grid(row=1, column=1, padx=5, pady=5, sticky=tk.W)

        self.remember_queue_var = tk.BooleanVar(value=self.config.remember_queue)
        ttk.Checkbutton(settings_frame, text="Remember queue between sessions", variable=self.remember_queue_var).grid(row=2, column=0, columnspan=3, sticky=tk.W, padx=5, pady=5)
        self.system_binaries_var = tk.BooleanVar(value=self.config.use_system_binaries)
        ttk.Checkbutton(settings_frame, text="Prefer yt-dlp/FFmpeg from the system PATH", variable=self.system_binaries_var).grid(row=3, column=0, columnspan=3, sticky=tk.W, padx=5, pady=5)

        log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        self.log_level_var = tk.StringVar(value=self.config.log_level)
        ttk.Label(settings_frame, text="File Log Level:").grid(row=4, column=0, padx=5, pady=5, sticky=tk.W)
        ttk.Combobox(settings_frame, textvariable=self.log_level_var, values=log_levels, state="readonly", width=15).grid(row=4, column=1, padx=5, pady=5, sticky=tk.W)

        versions_frame = ttk.LabelFrame(settings_frame, text="Dependencies", padding="5"); versions_frame.grid(row=5, column=0, columnspan=3, sticky=tk.EW, padx=5, pady=10)
        ttk.Label(versions_frame, text="yt-dlp:").grid(row=0, column=0, sticky=tk.W); ttk.Label(versions_frame, textvariable=self.yt_dlp_version_var).grid(row=0, column=1, sticky=tk.W, padx=5)
        ttk.Label(versions_frame, text="FFmpeg:").grid(row=1, column=0, sticky=tk.W); ttk.Label(versions_frame, textvariable=self.ffmpeg_version_var).grid(row=1, column=1, sticky=tk.W, padx=5)

        button_frame = ttk.Frame(settings_frame); button_frame.grid(row=6, column=0, columnspan=3, sticky=tk.E, pady=(10, 0))
        ttk.Button(button_frame, text="Save", command=self.save_settings).pack(side=tk.LEFT, padx=5)
        ttk.Button(button_frame, text="Cancel", command=self.destroy).pack(side=tk.LEFT)

    async def check_dependency_versions(self):
        versions = await self.app_controller.get_dependency_versions()
        if not self.winfo_exists(): return
        self.yt_dlp_version_var.set(versions['yt-dlp'])
        self.ffmpeg_version_var.set(versions['ffmpeg'])

    def browse_download_dir(self):
        path = filedialog.askdirectory(parent=self, initialdir=self.download_dir_var.get() or None, title="Select Download Folder")
        if path:
            self.download_dir_var.set(path)

    def save_settings(self):
        try:
            font_size = self.font_size_var.get()
        except tk.TclError:
            font_size = self.config.font_size
        new_settings = {
            'download_dir': self.download_dir_var.get().strip() or None,
            'font_size': font_size,
            'remember_queue': self.remember_queue_var.get(),
            'use_system_binaries': self.system_binaries_var.get(),
            'log_level': self.log_level_var.get(),
        }
        task = self.loop.create_task(self._save_async(new_settings))
        task.add_done_callback(self._handle_task_exception)

    async def _save_async(self, new_settings: dict):
        success, message = await self.app_controller.save_settings(new_settings)
        if not success:
            messagebox.showerror("Invalid Settings", message, parent=self)
            return
        if self.on_saved:
            self.on_saved()
        self.destroy()
