"""Locates the yt-dlp and FFmpeg executables and reports their versions."""
import sys
import shutil
import asyncio
import logging
from pathlib import Path
from typing import Optional, List

from .constants import APP_PATH, BINARIES_DIR, SUBPROCESS_CREATION_FLAGS


class DependencyManager:
    """Finds yt-dlp and FFmpeg, either app-managed copies or those on the system PATH."""

    def __init__(self, use_system_binaries: bool = False, binaries_dirs: Optional[List[Path]] = None):
        """
        Initializes the DependencyManager.

        Args:
            use_system_binaries: Look on the system PATH before the app-managed directories.
            binaries_dirs: Directories holding app-managed executables.
        """
        self.logger = logging.getLogger(__name__)
        self.use_system_binaries = use_system_binaries
        self.binaries_dirs = binaries_dirs if binaries_dirs is not None else [BINARIES_DIR, APP_PATH]
        self.yt_dlp_path: Optional[Path] = None
        self.ffmpeg_path: Optional[Path] = None

    async def initialize(self):
        """Asynchronously finds paths to dependencies to avoid blocking the event loop."""
        self.logger.info("Initializing dependency paths...")
        self.yt_dlp_path, self.ffmpeg_path = await asyncio.gather(
            asyncio.to_thread(self.find_yt_dlp),
            asyncio.to_thread(self.find_ffmpeg)
        )
        self.logger.info(f"yt-dlp path: {self.yt_dlp_path}")
        self.logger.info(f"FFmpeg path: {self.ffmpeg_path}")

    def find_yt_dlp(self) -> Optional[Path]:
        """Finds the yt-dlp executable."""
        self.yt_dlp_path = self._find_executable('yt-dlp')
        return self.yt_dlp_path

    def find_ffmpeg(self) -> Optional[Path]:
        """Finds the ffmpeg executable."""
        self.ffmpeg_path = self._find_executable('ffmpeg')
        return self.ffmpeg_path

    def _find_executable(self, name: str) -> Optional[Path]:
        """Finds an executable, honouring the system-binaries preference."""
        file_name = f'{name}.exe' if sys.platform == 'win32' else name
        local_paths = [directory / file_name for directory in self.binaries_dirs]
        path_in_system = shutil.which(name)
        system_paths = [Path(path_in_system)] if path_in_system else []

        candidates = system_paths + local_paths if self.use_system_binaries else local_paths + system_paths
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    async def get_version(self, executable_path: Optional[Path]) -> str:
        """Asynchronously returns the version of an executable by running it with '--version'."""
        if not executable_path or not executable_path.exists():
            return "Not found"
        try:
            command: List[str] = [str(executable_path)]
            if 'ffmpeg' in executable_path.name.lower():
                command.append('-version')
            else:
                command.append('--version')

            kwargs = {'stdout': asyncio.subprocess.PIPE, 'stderr': asyncio.subprocess.PIPE}
            if sys.platform == 'win32':
                kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

            process = await asyncio.create_subprocess_exec(*command, **kwargs)
            stdout_bytes, _ = await asyncio.wait_for(process.communicate(), timeout=15)

            if process.returncode != 0:
                return "Cannot execute"

            return stdout_bytes.decode('utf-8', 'replace').strip().split('\n')[0]
        except FileNotFoundError:
            return "Not found or no permission"
        except asyncio.TimeoutError:
            return "Version check timed out"
        except OSError:
            return "Cannot execute"
        except Exception:
            self.logger.exception(f"Error checking version for {executable_path}")
            return "Error checking version"
