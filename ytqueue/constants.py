"""
Defines application-wide constants, paths, and utility functions.

This module centralizes configuration for paths and subprocess behavior,
adapting to whether the application is running from source or as a frozen executable.
"""

import sys
import subprocess
from pathlib import Path

# --- Application Path and Configuration Setup ---
if getattr(sys, 'frozen', False):
    # If the application is run as a bundle, the PyInstaller bootloader
    # sets the app path to the executable's directory.
    APP_PATH = Path(sys.executable).parent
else:
    # In development, the app path is the project root (parent of 'ytqueue').
    APP_PATH = Path(__file__).resolve().parent.parent

# Use a user-specific directory for configuration to avoid permission issues.
USER_DATA_DIR: Path = Path.home() / '.ytqueue'
CONFIG_FILE: Path = USER_DATA_DIR / 'config.json'
QUEUE_FILE: Path = USER_DATA_DIR / 'queue.json'
LOG_DIR: Path = USER_DATA_DIR / 'logs'
BINARIES_DIR: Path = USER_DATA_DIR / 'binaries'

# Key under which the queue is stored inside QUEUE_FILE.
QUEUE_STORAGE_KEY = 'download_queue'

# Centralize subprocess creation flags to avoid console windows on Windows.
SUBPROCESS_CREATION_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == 'win32' else 0

OUTPUT_TEMPLATE = '%(title)s.%(ext)s'
FONT_SIZE_MIN, FONT_SIZE_MAX, FONT_SIZE_DEFAULT = 8, 20, 14

def resource_path(relative_path: str) -> Path:
    """
    Get absolute path to resource, works for dev and for PyInstaller.

    Args:
        relative_path: The path to the resource relative to the application root.

    Returns:
        An absolute Path object to the resource.
    """
    try:
        # PyInstaller creates a temp folder and stores path in _MEIPASS
        base_path = Path(sys._MEIPASS)  # type: ignore
    except AttributeError:
        base_path = APP_PATH
    return base_path / relative_path
