"""
Search provider abstraction.

A search provider finds pattern matches across workspace files. Concrete
providers:
- FileSystemSearchProvider: pure in-process scanner (this module)
- RipgrepSearchProvider: delegates to ripgrep (ripgrep_tools.py)
- HybridSearchProvider: ripgrep first, scanner on failure (hybrid_search.py)

All result paths are workspace-relative with forward slashes.
"""

import asyncio
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Literal

from .cache_manager import FileCacheManager
from .exceptions import FileAccessError
from .file_lister import read_text_file, to_relative


logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 100
DEFAULT_CONTEXT_LINES = 2


@dataclass
class SearchMatch:
    """A single matching line."""
    line: int
    text: str
    is_match: bool = True
    context_before: list[str] = field(default_factory=list)
    context_after: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {"line": self.line, "text": self.text, "is_match": self.is_match}
        if self.context_before or self.context_after:
            result["context"] = {"before": self.context_before, "after": self.context_after}
        return result


@dataclass
class FileMatch:
    file: str
    matches: list[SearchMatch] = field(default_factory=list)
    score: float = 0.0


@dataclass
class SearchResult:
    """Matches for one keyword. Ephemeral, never persisted."""
    keyword: str
    results: str = ""  # human readable summary
    file_matches: list[FileMatch] = field(default_factory=list)
    total_matches: int = 0
    search_time: float = 0.0  # seconds
    provider: str = ""

    @property
    def files(self) -> list[str]:
        return [fm.file for fm in self.file_matches]


@dataclass
class SearchOptions:
    case_sensitive: bool = False
    whole_word: bool = False
    regex: bool = False
    max_results: int = DEFAULT_MAX_RESULTS
    include_context: bool = False
    context_lines: int = DEFAULT_CONTEXT_LINES
    file_pattern: str | None = None
    exclude_pattern: str | None = None
    timeout: float | None = None  # seconds


@dataclass
class SearchFilter:
    extensions: list[str] = field(default_factory=list)  # without leading dot
    exclude_directories: list[str] = field(default_factory=list)
    include_directories: list[str] = field(default_factory=list)
    max_file_size: int | None = None  # bytes
    modified_after: float | None = None  # epoch seconds
    modified_before: float | None = None


@dataclass
class SearchCapabilities:
    supports_regex: bool = True
    supports_context_lines: bool = True
    supports_parallel_search: bool = False
    supports_file_filtering: bool = True
    max_concurrent_searches: int = 1
    estimated_performance: Literal["fast", "medium", "slow"] = "medium"


def build_pattern_regex(pattern: str, options: SearchOptions) -> re.Pattern:
    """Compile the regex the scanner matches lines against."""
    source = pattern if options.regex else re.escape(pattern)
    if options.whole_word:
        source = rf"\b(?:{source})\b"
    flags = 0 if options.case_sensitive else re.IGNORECASE
    return re.compile(source, flags)


def context_lines(lines: list[str], index: int, offset: int) -> list[str]:
    """Lines around index: offset < 0 looks back, offset > 0 looks ahead."""
    if offset < 0:
        return lines[max(0, index + offset):index]
    return lines[index + 1:index + 1 + offset]


class SearchProvider(ABC):
    """Base class for search backends."""

    name = "base"

    def __init__(self, workspace_path: str | Path, cache: FileCacheManager | None = None):
        self.workspace_path = str(Path(workspace_path).resolve())
        self.cache = cache

    @abstractmethod
    async def search(
        self,
        pattern: str,
        files: list[str],
        options: SearchOptions | None = None,
    ) -> SearchResult:
        """Search for pattern within the given files."""

    @abstractmethod
    async def search_in_directory(
        self,
        pattern: str,
        directory: str,
        search_filter: SearchFilter | None = None,
        options: SearchOptions | None = None,
    ) -> SearchResult:
        """Search for pattern across a directory tree."""

    @abstractmethod
    async def is_available(self) -> bool:
        """True if this backend can currently serve searches."""

    @abstractmethod
    def get_capabilities(self) -> SearchCapabilities:
        ...

    async def search_multiple(
        self,
        patterns: list[str],
        files: list[str],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Search each pattern in turn; a failing pattern yields an empty result."""
        results = []
        for pattern in patterns:
            try:
                results.append(await self.search(pattern, files, options))
            except Exception as e:
                logger.warning(f"Search failed for pattern {pattern!r}: {e}")
                results.append(self.create_search_result(pattern, [], 0.0))
        return results

    async def _search_batched(
        self,
        patterns: list[str],
        files: list[str],
        options: SearchOptions | None,
        batch_size: int,
    ) -> list[SearchResult]:
        """Run searches in batches; each batch completes before the next starts."""
        results: list[SearchResult] = []
        for i in range(0, len(patterns), batch_size):
            batch = patterns[i:i + batch_size]
            batch_results = await asyncio.gather(
                *(self.search(p, files, options) for p in batch), return_exceptions=True
            )
            for pattern, result in zip(batch, batch_results):
                if isinstance(result, BaseException):
                    logger.warning(f"Search failed for pattern {pattern!r}: {result}")
                    results.append(self.create_search_result(pattern, [], 0.0))
                else:
                    results.append(result)
        return results

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    def resolve(self, file_path: str) -> str:
        if os.path.isabs(file_path):
            return file_path
        return os.path.join(self.workspace_path, file_path)

    def relative(self, file_path: str) -> str:
        return to_relative(file_path, self.workspace_path)

    def filter_files(self, files: list[str], search_filter: SearchFilter | None = None) -> list[str]:
        """Apply extension, directory, size and mtime filters."""
        if search_filter is None:
            return files

        extensions = {e.lower().lstrip(".") for e in search_filter.extensions}
        kept = []
        for file_path in files:
            if extensions:
                ext = file_path.rsplit(".", 1)[-1].lower() if "." in file_path else ""
                if ext not in extensions:
                    continue

            if any(d in file_path for d in search_filter.exclude_directories):
                continue

            if search_filter.include_directories and not any(
                d in file_path for d in search_filter.include_directories
            ):
                continue

            needs_stat = (
                search_filter.max_file_size is not None
                or search_filter.modified_after is not None
                or search_filter.modified_before is not None
            )
            if needs_stat:
                try:
                    st = os.stat(self.resolve(file_path))
                except OSError:
                    continue
                if search_filter.max_file_size is not None and st.st_size > search_filter.max_file_size:
                    continue
                if search_filter.modified_after is not None and st.st_mtime < search_filter.modified_after:
                    continue
                if search_filter.modified_before is not None and st.st_mtime > search_filter.modified_before:
                    continue

            kept.append(file_path)
        return kept

    @staticmethod
    def calculate_search_score(matches: list[SearchMatch]) -> float:
        """Match count plus a half-point per exact match, normalized to [0, 1]."""
        if not matches:
            return 0.0
        score = len(matches) + 0.5 * sum(1 for m in matches if m.is_match)
        return min(score / 10, 1.0)

    @staticmethod
    def escape_regex(text: str) -> str:
        return re.escape(text)

    def create_search_result(
        self,
        keyword: str,
        file_matches: list[FileMatch],
        search_time: float,
        results: str | None = None,
    ) -> SearchResult:
        total = sum(len(fm.matches) for fm in file_matches)
        return SearchResult(
            keyword=keyword,
            results=results or f"Found {total} matches in {len(file_matches)} files",
            file_matches=file_matches,
            total_matches=total,
            search_time=search_time,
            provider=self.name,
        )

    async def load_file_content(self, file_path: str) -> str | None:
        """Read through the file cache when one is attached."""
        full_path = self.resolve(file_path)
        if self.cache is not None:
            return await self.cache.get_file_content(full_path)
        try:
            return await read_text_file(full_path)
        except FileAccessError as e:
            logger.debug(f"Skipping unreadable file: {e}")
            return None

    async def scan_files(
        self,
        pattern: str,
        files: list[str],
        options: SearchOptions | None = None,
        max_file_size: int | None = None,
    ) -> SearchResult:
        """
        In-process line scan of the given files.

        Stops once max_results matches have been collected across all files.
        """
        options = options or SearchOptions()
        start = time.perf_counter()
        regex = build_pattern_regex(pattern, options)
        exclude = re.compile(options.exclude_pattern) if options.exclude_pattern else None

        file_matches: list[FileMatch] = []
        total = 0
        for file_path in files:
            if total >= options.max_results:
                break
            if exclude and exclude.search(file_path):
                continue
            if max_file_size is not None:
                try:
                    if os.path.getsize(self.resolve(file_path)) > max_file_size:
                        continue
                except OSError:
                    continue

            content = await self.load_file_content(file_path)
            if not content:
                continue

            lines = content.split("\n")
            matches: list[SearchMatch] = []
            for i, line in enumerate(lines):
                if not regex.search(line):
                    continue
                match = SearchMatch(line=i + 1, text=line)
                if options.include_context:
                    match.context_before = context_lines(lines, i, -options.context_lines)
                    match.context_after = context_lines(lines, i, options.context_lines)
                matches.append(match)
                total += 1
                if total >= options.max_results:
                    break

            if matches:
                file_matches.append(FileMatch(
                    file=self.relative(self.resolve(file_path)),
                    matches=matches,
                    score=self.calculate_search_score(matches),
                ))

        return self.create_search_result(pattern, file_matches, time.perf_counter() - start)


# Directories the in-process scanner never descends into
DEFAULT_EXCLUDED_DIRECTORIES = frozenset({
    "node_modules", ".git", "dist", "build", ".next", "coverage", ".nyc_output",
    "__pycache__", ".pytest_cache", ".cache", "target",
})

DEFAULT_SEARCH_EXTENSIONS = (
    "ts", "js", "tsx", "jsx", "py", "java", "go", "rs", "cpp", "c", "h", "cs",
    "php", "rb", "md", "json", "yaml", "yml", "toml", "ini", "cfg", "conf",
)

MAX_SCAN_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_WALK_DEPTH = 10


class FileSystemSearchProvider(SearchProvider):
    """
    Pure in-process scanner.

    Slower than ripgrep, but has no external dependency, so it is the
    fallback that always works.
    """

    name = "filesystem"
    MULTI_SEARCH_BATCH_SIZE = 5

    async def search(
        self,
        pattern: str,
        files: list[str],
        options: SearchOptions | None = None,
    ) -> SearchResult:
        return await self.scan_files(pattern, files, options, max_file_size=MAX_SCAN_FILE_SIZE)

    async def search_in_directory(
        self,
        pattern: str,
        directory: str,
        search_filter: SearchFilter | None = None,
        options: SearchOptions | None = None,
    ) -> SearchResult:
        search_filter = search_filter or SearchFilter()
        extensions = search_filter.extensions or list(DEFAULT_SEARCH_EXTENSIONS)
        excluded = set(DEFAULT_EXCLUDED_DIRECTORIES) | set(search_filter.exclude_directories)

        root = self.resolve(directory)
        files = await asyncio.to_thread(lambda: list(self._walk(root, extensions, excluded)))
        files = self.filter_files(files, SearchFilter(
            include_directories=search_filter.include_directories,
            max_file_size=search_filter.max_file_size,
            modified_after=search_filter.modified_after,
            modified_before=search_filter.modified_before,
        ))
        return await self.search(pattern, files, options)

    def _walk(self, root: str, extensions: list[str], excluded: set[str]) -> Iterator[str]:
        wanted = {e.lower().lstrip(".") for e in extensions}
        root_depth = root.rstrip(os.sep).count(os.sep)
        for dirpath, dirnames, filenames in os.walk(root):
            depth = dirpath.rstrip(os.sep).count(os.sep) - root_depth
            if depth >= MAX_WALK_DEPTH:
                dirnames[:] = []
            else:
                dirnames[:] = sorted(
                    d for d in dirnames if d not in excluded and not d.startswith(".")
                )
            for name in sorted(filenames):
                if "." in name and name.rsplit(".", 1)[-1].lower() in wanted:
                    yield self.relative(os.path.join(dirpath, name))

    async def search_multiple(
        self,
        patterns: list[str],
        files: list[str],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        return await self._search_batched(patterns, files, options, self.MULTI_SEARCH_BATCH_SIZE)

    async def is_available(self) -> bool:
        return True

    def get_capabilities(self) -> SearchCapabilities:
        return SearchCapabilities(
            supports_regex=True,
            supports_context_lines=True,
            supports_parallel_search=False,
            supports_file_filtering=True,
            max_concurrent_searches=2,
            estimated_performance="slow",
        )
