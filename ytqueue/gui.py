"""The main application class, handling the Tkinter GUI and event loop."""

import tkinter as tk
from tkinter import ttk, filedialog, messagebox, scrolledtext, font as tkfont
import queue
import logging
import asyncio
from typing import Dict, Any, List, Optional

from ._version import __version__
from .constants import resource_path
from .controller import AppController
from .config import Settings
from .jobs import Job, JobForm
from .gui_components.settings_window import SettingsWindow


class QueueDownloaderApp:
    """The main application class, handling the Tkinter GUI and event loop."""
    MAX_LOG_LINES = 2000

    def __init__(self, root: tk.Tk, gui_queue: queue.Queue, app_controller: AppController, config: Settings, loop: asyncio.AbstractEventLoop):
        """
        Initializes the main application GUI.

        Args:
            root: The root Tkinter window.
            gui_queue: The queue for cross-thread GUI communication (for logging).
            app_controller: The central application controller.
            config: The loaded application settings.
            loop: The asyncio event loop.
        """
        self.root = root
        self.root.title(f"ytqueue v{__version__}"); self.root.geometry("800x500")
        self.logger = logging.getLogger(__name__)
        try: self.root.iconbitmap(resource_path('icon.ico'))
        except tk.TclError: self.logger.warning("Could not load 'icon.ico'.")

        self.gui_queue = gui_queue
        self.log_formatter = logging.Formatter('%(levelname)s - %(message)s')
        self.app_controller = app_controller
        self.config = config
        self.loop = loop
        self.app_controller.set_gui(self)

        self.settings_win: Optional[SettingsWindow] = None
        self.is_destroyed = False
        self.is_log_visible = False
        self.log_cursor = 0

        self.create_widgets()
        self.apply_font_size(self.config.font_size)
        self.load_form(self.app_controller.new_form())

        self.root.protocol("WM_DELETE_WINDOW", self.on_closing)
        self.spawn(self.app_controller.run_startup_checks())
        self.root.after(50, self._run_async_loop)

    def spawn(self, coro) -> asyncio.Task:
        """Schedules a coroutine on the asyncio loop and logs its failure."""
        task = self.loop.create_task(coro)
        task.add_done_callback(self._handle_task_exception)
        return task

    def _handle_task_exception(self, task: asyncio.Task) -> None:
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception:
            self.logger.exception(f"Exception in GUI task {task.get_name()}:")

    def on_closing(self):
        """Synchronous wrapper for the async closing logic."""
        self.spawn(self.handle_closing_async())

    def _run_async_loop(self):
        """
        Drives the asyncio event loop and reschedules itself.
        This function is called periodically by the Tkinter main loop.
        """
        if self.is_destroyed:
            return
        self.loop.call_soon(self.loop.stop)
        self.loop.run_forever()
        self.process_log_queue()
        self.root.after(50, self._run_async_loop)

    async def handle_closing_async(self):
        """Handles the application window closing event."""
        if self.app_controller.is_downloading:
            should_close = await asyncio.to_thread(
                messagebox.askyesno,
                "Confirm Exit",
                "A download is in progress. Are you sure you want to exit?"
            )
            if not should_close:
                return
        await self.app_controller.on_app_closing()
        self.is_destroyed = True
        self.root.destroy()

    def create_widgets(self):
        """Creates and lays out all the main GUI widgets."""
        main_frame = ttk.Frame(self.root, padding="10"); main_frame.pack(fill=tk.BOTH, expand=True)
        input_frame = ttk.LabelFrame(main_frame, text="Add Download", padding="10"); input_frame.pack(fill=tk.X, pady=5); input_frame.columnconfigure(1, weight=1)

        ttk.Label(input_frame, text="URL:").grid(row=0, column=0, padx=5, pady=5, sticky=tk.W)
        self.url_var = tk.StringVar()
        self.url_var.trace_add("write", self._on_url_var_changed)
        ttk.Entry(input_frame, textvariable=self.url_var).grid(row=0, column=1, columnspan=2, padx=5, pady=5, sticky=tk.EW)

        ttk.Label(input_frame, text="Download Folder:").grid(row=1, column=0, padx=5, pady=5, sticky=tk.W)
        self.folder_var = tk.StringVar()
        ttk.Entry(input_frame, textvariable=self.folder_var).grid(row=1, column=1, padx=5, pady=5, sticky=tk.EW)
        self.browse_button = ttk.Button(input_frame, text="Browse...", command=self.browse_output_path); self.browse_button.grid(row=1, column=2, padx=5, pady=5)

        options_frame = ttk.Frame(input_frame); options_frame.grid(row=2, column=0, columnspan=3, sticky=tk.W, pady=(5, 0))
        self.audio_only_var = tk.BooleanVar(); ttk.Checkbutton(options_frame, text="MP3 Only", variable=self.audio_only_var).pack(side=tk.LEFT, padx=5)
        self.playlist_var = tk.BooleanVar(); ttk.Checkbutton(options_frame, text="Download Playlist", variable=self.playlist_var).pack(side=tk.LEFT, padx=5)
        self.sponsorblock_var = tk.BooleanVar(); ttk.Checkbutton(options_frame, text="Remove Sponsor Segments", variable=self.sponsorblock_var).pack(side=tk.LEFT, padx=5)

        form_buttons = ttk.Frame(input_frame); form_buttons.grid(row=3, column=0, columnspan=3, sticky=tk.EW, pady=(10, 0)); form_buttons.columnconfigure(0, weight=1)
        self.submit_button = ttk.Button(form_buttons, text="Add to Queue", command=lambda: self.spawn(self.submit_form())); self.submit_button.grid(row=0, column=0, sticky=tk.EW)
        self.cancel_edit_button = ttk.Button(form_buttons, text="Cancel Edit", command=lambda: self.spawn(self.cancel_edit()), state='disabled'); self.cancel_edit_button.grid(row=0, column=1, padx=(5, 0))

        queue_frame = ttk.LabelFrame(main_frame, text="Queue (double-click to edit)", padding="10"); queue_frame.pack(fill=tk.BOTH, expand=True, pady=5)
        self.queue_list = tk.Listbox(queue_frame, selectmode=tk.EXTENDED, height=6, exportselection=False)
        queue_scrollbar = ttk.Scrollbar(queue_frame, orient="vertical", command=self.queue_list.yview); self.queue_list.configure(yscrollcommand=queue_scrollbar.set)
        queue_scrollbar.pack(side=tk.RIGHT, fill=tk.Y); self.queue_list.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)
        self.queue_list.bind("<Double-Button-1>", lambda _e: self.spawn(self.edit_selected()))

        action_frame = ttk.Frame(main_frame); action_frame.pack(fill=tk.X, pady=5); action_frame.columnconfigure(0, weight=1)
        self.download_button = ttk.Button(action_frame, text="Start Download", command=lambda: self.spawn(self.app_controller.start_downloads())); self.download_button.grid(row=0, column=0, sticky=tk.EW)
        self.remove_button = ttk.Button(action_frame, text="Remove Selected", command=lambda: self.spawn(self.remove_selected())); self.remove_button.grid(row=0, column=1, padx=5)
        self.clear_button = ttk.Button(action_frame, text="Clear Queue", command=lambda: self.spawn(self.app_controller.clear_queue())); self.clear_button.grid(row=0, column=2, padx=5)
        self.settings_button = ttk.Button(action_frame, text="Settings", command=self.open_settings_window); self.settings_button.grid(row=0, column=3, padx=(5, 0))

        progress_frame = ttk.Frame(main_frame); progress_frame.pack(fill=tk.X, pady=5)
        self.progress_bar = ttk.Progressbar(progress_frame, maximum=100); self.progress_bar.pack(fill=tk.X)
        self.toggle_log_button = ttk.Button(progress_frame, text="▼ Show Log", command=self.toggle_log); self.toggle_log_button.pack(anchor=tk.W, pady=(5, 0))
        self.log_text = scrolledtext.ScrolledText(main_frame, wrap=tk.WORD, height=10, state='disabled')

        status_bar_frame = ttk.Frame(self.root, relief=tk.SUNKEN); status_bar_frame.pack(side=tk.BOTTOM, fill=tk.X, padx=2, pady=2)
        self.status_label = ttk.Label(status_bar_frame, text="Ready"); self.status_label.pack(side=tk.LEFT, padx=5)

    def apply_font_size(self, size: int):
        for name in ("TkDefaultFont", "TkTextFont", "TkFixedFont"):
            try: tkfont.nametofont(name).configure(size=size)
            except tk.TclError: pass

    def toggle_log(self):
        self.is_log_visible = not self.is_log_visible
        if self.is_log_visible:
            self.log_text.pack(fill=tk.BOTH, expand=True, pady=5)
            self.toggle_log_button.config(text="▲ Hide Log"); self.root.geometry("800x720")
        else:
            self.log_text.pack_forget()
            self.toggle_log_button.config(text="▼ Show Log"); self.root.geometry("800x500")

    def read_form(self) -> JobForm:
        return JobForm(
            url=self.url_var.get(),
            destination_path=self.folder_var.get(),
            format_only_audio=self.audio_only_var.get(),
            expand_playlist=self.playlist_var.get(),
            strip_sponsor_segments=self.sponsorblock_var.get(),
        )

    def load_form(self, form: JobForm):
        self.url_var.set(form.url)
        self.folder_var.set(form.destination_path)
        self.audio_only_var.set(form.format_only_audio)
        self.playlist_var.set(form.expand_playlist)
        self.sponsorblock_var.set(form.strip_sponsor_segments)

    def _on_url_var_changed(self, *args):
        self.spawn(self.app_controller.on_url_input_changed(self.url_var.get()))

    async def submit_form(self):
        if await self.app_controller.submit_form(self.read_form()):
            self.url_var.set('')

    async def edit_selected(self):
        selection = self.queue_list.curselection()
        if not selection: return
        form = await self.app_controller.begin_edit(selection[0])
        if form is not None:
            self.load_form(form)

    async def cancel_edit(self):
        await self.app_controller.cancel_edit()
        self.url_var.set('')

    async def remove_selected(self):
        selected = [int(i) for i in self.queue_list.curselection()]
        if selected:
            await self.app_controller.remove_jobs(selected)

    def process_log_queue(self):
        """Shows warnings and errors from the logging queue."""
        try:
            while True:
                record = self.gui_queue.get_nowait()
                if record.levelno >= logging.WARNING:
                    self.update_log_display(self.log_formatter.format(record))
        except queue.Empty:
            pass

    async def update_queue_view(self, data: Dict[str, Any]):
        if self.is_destroyed: return
        jobs: List[Job] = data.get('jobs', [])
        self.queue_list.delete(0, tk.END)
        for job in jobs:
            label = job.url if job.title == job.url else f"{job.title}  ({job.url})"
            self.queue_list.insert(tk.END, label)

        current: Optional[Job] = data.get('current')
        self.progress_bar['value'] = current.progress_percent if current else 0
        self.status_label.config(text=data.get('status', 'Ready'))

        log_lines: List[str] = data.get('log', [])
        for line in log_lines[self.log_cursor:]:
            self.update_log_display(line)
        self.log_cursor = len(log_lines)

        is_downloading = data.get('is_downloading', False)
        self.download_button.config(state='disabled' if is_downloading else 'normal')
        self.settings_button.config(state='disabled' if is_downloading else 'normal')
        submit_label = data.get('submit_label', 'Add to Queue')
        self.submit_button.config(text=submit_label)
        self.cancel_edit_button.config(state='normal' if self.app_controller.edit_session.is_editing else 'disabled')

    async def show_message(self, data: Dict[str, str]):
        handler = getattr(messagebox, f"show{data['type']}", messagebox.showinfo)
        await asyncio.to_thread(handler, data['title'], data['message'])

    def open_settings_window(self):
        if self.settings_win and self.settings_win.winfo_exists():
            self.settings_win.lift(); return
        self.settings_win = SettingsWindow(master=self.root, app_controller=self.app_controller, config=self.app_controller.get_settings(), loop=self.loop, on_saved=self.on_settings_saved)

    def on_settings_saved(self):
        self.apply_font_size(self.config.font_size)
        if not self.app_controller.edit_session.is_editing:
            self.folder_var.set(self.app_controller.default_download_dir())

    def browse_output_path(self):
        """Runs the blocking file dialog in a separate thread and schedules the result handler."""

        def _run_dialog_in_thread():
            """Blocking function to be executed in the thread pool."""
            path = filedialog.askdirectory(
                initialdir=self.folder_var.get(),
                title="Select Download Folder"
            )
            if path:
                # Safely schedule the GUI update on the main event loop's thread
                self.loop.call_soon_threadsafe(self.folder_var.set, path)

        self.loop.run_in_executor(None, _run_dialog_in_thread)

    def update_log_display(self, message: str):
        if self.is_destroyed: return
        self.log_text.config(state='normal')
        self.log_text.insert(tk.END, message + '\n')
        num_lines = int(self.log_text.index('end-1c').split('.')[0])
        if num_lines > self.MAX_LOG_LINES: self.log_text.delete('1.0', f'{num_lines - self.MAX_LOG_LINES + 1}.0')
        self.log_text.see(tk.END)
        self.log_text.config(state='disabled')
