"""
Workspace file listing and async file reading.

Lists candidate files for relevance scoring and reads their content.

Performance Optimizations:
- Async file I/O with aiofiles (non-blocking)
- Symlink loop detection while walking
- Directory pruning by name pattern before descending
- Encoding fallbacks (utf-8, latin-1, cp1252)
- Timeout for file reads (network mount safety)
"""

import asyncio
import fnmatch
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import aiofiles

from .config import AnalyzerConfig
from .exceptions import FileAccessError


logger = logging.getLogger(__name__)

# Constants for performance tuning
FILE_READ_TIMEOUT_SECONDS = 30  # Timeout for slow/network files
# latin-1 maps every byte, so it goes last and always decodes
READ_ENCODINGS = ("utf-8", "cp1252", "latin-1")


@dataclass
class FileListing:
    """Result of listing a workspace."""

    paths: list[str] = field(default_factory=list)  # relative, forward slashes
    truncated: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.paths)


def to_relative(path: str | Path, root: str | Path) -> str:
    """Workspace-relative path with forward slashes."""
    try:
        rel = os.path.relpath(str(path), str(root))
    except ValueError:
        rel = str(path)
    return rel.replace(os.sep, "/")


async def _read_with_encoding(path: str | Path, encoding: str) -> str:
    try:
        async with aiofiles.open(path, mode="r", encoding=encoding) as f:
            return await asyncio.wait_for(f.read(), timeout=FILE_READ_TIMEOUT_SECONDS)
    except FileNotFoundError:
        raise FileAccessError(str(path), "file not found")
    except PermissionError:
        raise FileAccessError(str(path), "permission denied")
    except asyncio.TimeoutError:
        raise FileAccessError(str(path), "read timeout")
    except OSError as e:
        raise FileAccessError(str(path), f"{type(e).__name__}: {e}")


async def read_text_file(path: str | Path) -> str:
    """
    Read a text file, trying each fallback encoding in turn.

    Raises:
        FileAccessError: if the file is missing or unreadable
    """
    for encoding in READ_ENCODINGS[:-1]:
        try:
            return await _read_with_encoding(path, encoding)
        except UnicodeDecodeError:
            continue  # Expected - try next encoding
    return await _read_with_encoding(path, READ_ENCODINGS[-1])


class FileLister:
    """
    Lists workspace files for scoring.

    Features:
    - Filters by extension
    - Skips common non-code directories
    - Stops at a maximum count and reports truncation
    - Symlink loop detection
    """

    def __init__(self, config: AnalyzerConfig | None = None):
        self.config = config or AnalyzerConfig()

    def should_skip_directory(self, dir_name: str) -> bool:
        """Check if a directory should be skipped."""
        for pattern in self.config.skipped_directories:
            if fnmatch.fnmatch(dir_name, pattern):
                return True
        return False

    def should_include_file(self, file_path: Path) -> bool:
        """Check if a file should be included based on extension."""
        if file_path.name.lower() in ("dockerfile", "makefile"):
            return True
        return file_path.suffix.lower() in self.config.included_extensions

    def list_files(
        self,
        root: str | Path,
        recursive: bool = True,
        max_count: int | None = None,
    ) -> FileListing:
        """
        List files under root.

        Args:
            root: Workspace directory
            recursive: Descend into subdirectories
            max_count: Stop after this many files (config default when None)

        Returns:
            FileListing with workspace-relative paths and a truncation flag
        """
        listing = FileListing()
        limit = max_count if max_count is not None else self.config.max_listed_files
        root_path = Path(root).resolve()

        if not root_path.is_dir():
            listing.errors.append(f"Not a directory: {root}")
            return listing

        visited: set[str] = set()
        try:
            for file_path in self._walk_directory_sync(root_path, visited, recursive):
                if len(listing.paths) >= limit:
                    listing.truncated = True
                    break
                listing.paths.append(to_relative(file_path, root_path))
        except OSError as e:
            listing.errors.append(f"Error walking {root_path}: {e}")
            logger.warning(f"File listing stopped early: {e}")

        listing.paths.sort()
        return listing

    async def list_files_async(
        self,
        root: str | Path,
        recursive: bool = True,
        max_count: int | None = None,
    ) -> FileListing:
        """List files without blocking the event loop."""
        return await asyncio.to_thread(self.list_files, root, recursive, max_count)

    def _walk_directory_sync(
        self,
        directory: Path,
        visited: set[str],
        recursive: bool,
    ) -> Iterator[Path]:
        """
        Walk directory tree synchronously, with symlink loop detection.

        Entries are visited in sorted order so truncation is deterministic.
        """
        try:
            resolved = str(directory.resolve())
            if resolved in visited:
                return  # Symlink loop detected
            visited.add(resolved)

            for item in sorted(directory.iterdir()):
                try:
                    if item.is_dir():
                        if recursive and not self.should_skip_directory(item.name):
                            yield from self._walk_directory_sync(item, visited, recursive)
                    elif item.is_file():
                        if self.should_include_file(item):
                            yield item
                except PermissionError:
                    pass  # Skip files/dirs we can't access
                except OSError:
                    pass  # Handle other OS errors (e.g., too long paths on Windows)
        except PermissionError:
            pass  # Skip directories we can't access
