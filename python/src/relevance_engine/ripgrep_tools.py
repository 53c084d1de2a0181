"""
Ripgrep integration for fast search.

regex_search_files() runs ripgrep over a directory and renders its JSON
stream as grouped text:

    Found 3 results.

    # src/services/UserService.ts
     12 | async login(user) {
    ----

parse_ripgrep_results() turns that text back into FileMatch objects, and
RipgrepSearchProvider uses both for large candidate sets. Small candidate
sets are scanned in-process, which is cheaper than spawning a process.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import SearchError, SearchUnavailableError
from .search_provider import (
    FileMatch,
    SearchCapabilities,
    SearchFilter,
    SearchMatch,
    SearchOptions,
    SearchProvider,
    SearchResult,
)


logger = logging.getLogger(__name__)

NO_RESULTS = "No results found"
MAX_RESULTS = 300
MAX_LINE_LENGTH = 500
MAX_OUTPUT_CHARS = 50_000
IN_PROCESS_FILE_LIMIT = 100  # at or below this many files, scan in-process
AVAILABILITY_PROBE_PATTERN = "test_pattern_that_should_not_exist_12345"

_MATCH_LINE_RE = re.compile(r"^\s*(\d+)\s*\|\s?(.*)$")

# Check if ripgrep is available (cached after the first lookup)
_RG_AVAILABLE_CACHED: Optional[bool] = None


def _check_rg_available() -> bool:
    """Dynamic ripgrep availability check (checked at call time)."""
    global _RG_AVAILABLE_CACHED
    if _RG_AVAILABLE_CACHED is None:
        _RG_AVAILABLE_CACHED = shutil.which("rg") is not None
    return _RG_AVAILABLE_CACHED


def truncate_line(line: str, max_length: int = MAX_LINE_LENGTH) -> str:
    return line[:max_length] + " [truncated...]" if len(line) > max_length else line


@dataclass
class _LineHit:
    line: int
    text: str


@dataclass
class _FileHits:
    file: str
    blocks: list[list[_LineHit]] = field(default_factory=list)

    def add(self, hit: _LineHit) -> None:
        # Contiguous lines share a block; a gap starts a new one
        if self.blocks and self.blocks[-1] and hit.line <= self.blocks[-1][-1].line + 1:
            self.blocks[-1].append(hit)
        else:
            self.blocks.append([hit])


def _parse_rg_json(output: str) -> list[_FileHits]:
    """Group ripgrep --json match events by file."""
    results: list[_FileHits] = []
    current: _FileHits | None = None

    for line in output.split("\n"):
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Unparsable ripgrep line: {line[:80]}")
            continue

        msg_type = data.get("type")
        payload = data.get("data", {})
        if msg_type == "begin":
            current = _FileHits(file=payload.get("path", {}).get("text", ""))
        elif msg_type == "end":
            if current is not None and current.blocks:
                results.append(current)
            current = None
        elif msg_type == "match" and current is not None:
            text = payload.get("lines", {}).get("text", "").rstrip("\n")
            current.add(_LineHit(line=payload.get("line_number", 0), text=truncate_line(text)))

    return results


def format_ripgrep_results(file_hits: list[_FileHits], cwd: str) -> str:
    """Render grouped hits as '# file' headers and 'N | text' lines."""
    total = sum(len(fh.blocks) for fh in file_hits)
    if total >= MAX_RESULTS:
        output = f"Showing first {MAX_RESULTS} of {MAX_RESULTS}+ results. Use a more specific search if necessary.\n\n"
    else:
        output = f"Found {'1 result' if total == 1 else f'{total:,} results'}.\n\n"

    for fh in file_hits[:MAX_RESULTS]:
        rel = os.path.normpath(os.path.relpath(fh.file, cwd)).replace(os.sep, "/")
        chunk = f"# {rel}\n"
        for block in fh.blocks:
            for hit in block:
                chunk += f"{hit.line:>3} | {hit.text.rstrip()}\n"
            chunk += "----\n"
        chunk += "\n"
        if len(output) + len(chunk) > MAX_OUTPUT_CHARS:
            break
        output += chunk

    return output.rstrip("\n")


async def regex_search_files(
    cwd: str,
    directory: str,
    pattern: str,
    include_ignored: bool = False,
    file_pattern: str | None = None,
    case_insensitive: bool = True,
    timeout: float = 60,
) -> str:
    """
    Run ripgrep over directory and return formatted text.

    Returns NO_RESULTS when nothing matched.

    Raises:
        SearchUnavailableError: ripgrep is not installed
        SearchError: ripgrep failed or timed out
    """
    if not _check_rg_available():
        raise SearchUnavailableError("ripgrep (rg) not found on PATH")

    cmd = ["rg", "--json", "--glob", file_pattern or "*"]
    if case_insensitive:
        cmd.append("-i")
    if not include_ignored:
        cmd.extend(["--glob", "!node_modules/**"])
    cmd.extend(["-e", pattern, directory])

    try:
        result = await asyncio.to_thread(
            subprocess.run, cmd, capture_output=True, text=True, timeout=timeout
        )
    except subprocess.TimeoutExpired:
        raise SearchError(f"ripgrep search timed out after {timeout} seconds")
    except OSError as e:
        raise SearchUnavailableError(f"could not start ripgrep: {e}")

    # Exit status 1 means "no match"; 2 means an error occurred
    if result.returncode == 1:
        return NO_RESULTS
    if result.returncode != 0:
        raise SearchError(f"ripgrep exited with {result.returncode}: {result.stderr.strip()[:200]}")

    file_hits = _parse_rg_json(result.stdout)
    if not file_hits:
        return NO_RESULTS
    return format_ripgrep_results(file_hits, cwd)


def parse_ripgrep_results(text: str) -> list[FileMatch]:
    """Parse formatted ripgrep text into FileMatch objects."""
    file_matches: list[FileMatch] = []
    current_file: str | None = None
    current: list[SearchMatch] = []

    def flush() -> None:
        if current_file and current:
            file_matches.append(FileMatch(
                file=current_file,
                matches=list(current),
                score=SearchProvider.calculate_search_score(current),
            ))

    for line in text.split("\n"):
        if line.startswith("# "):
            flush()
            current_file = line[2:].strip()
            current = []
            continue
        if current_file is None:
            continue
        m = _MATCH_LINE_RE.match(line)
        if m:
            current.append(SearchMatch(line=int(m.group(1)), text=m.group(2)))

    flush()
    return file_matches


class RipgrepSearchProvider(SearchProvider):
    """Search backend delegating to the ripgrep binary."""

    name = "ripgrep"
    MULTI_SEARCH_BATCH_SIZE = 5

    def __init__(self, workspace_path, cache=None, timeout: float = 60):
        super().__init__(workspace_path, cache)
        self.timeout = timeout

    async def search(
        self,
        pattern: str,
        files: list[str],
        options: SearchOptions | None = None,
    ) -> SearchResult:
        options = options or SearchOptions()
        if len(files) <= IN_PROCESS_FILE_LIMIT:
            return await self.scan_files(pattern, files, options)

        # Large candidate sets: one directory-wide run restricted afterwards
        wanted = {self.relative(self.resolve(f)) for f in files}
        extensions = sorted({f.rsplit(".", 1)[-1] for f in wanted if "." in f.rsplit("/", 1)[-1]})
        result = await self.search_in_directory(
            pattern, self.workspace_path, SearchFilter(extensions=extensions), options
        )
        result.file_matches = [fm for fm in result.file_matches if fm.file in wanted]
        return self.create_search_result(pattern, result.file_matches, result.search_time)

    async def search_in_directory(
        self,
        pattern: str,
        directory: str,
        search_filter: SearchFilter | None = None,
        options: SearchOptions | None = None,
    ) -> SearchResult:
        options = options or SearchOptions()
        start = time.perf_counter()

        file_pattern = options.file_pattern
        if file_pattern is None and search_filter and search_filter.extensions:
            exts = ",".join(e.lstrip(".") for e in search_filter.extensions)
            file_pattern = f"*.{{{exts}}}" if len(search_filter.extensions) > 1 else f"*.{exts}"

        text = await regex_search_files(
            self.workspace_path,
            self.resolve(directory),
            pattern if options.regex else self.escape_regex(pattern),
            file_pattern=file_pattern,
            case_insensitive=not options.case_sensitive,
            timeout=options.timeout or self.timeout,
        )
        elapsed = time.perf_counter() - start
        if not text or text == NO_RESULTS:
            return self.create_search_result(pattern, [], elapsed)

        file_matches = self.filter_files_matches(parse_ripgrep_results(text), search_filter)
        return self.create_search_result(pattern, file_matches, elapsed, text)

    def filter_files_matches(
        self, file_matches: list[FileMatch], search_filter: SearchFilter | None
    ) -> list[FileMatch]:
        if search_filter is None:
            return file_matches
        kept = set(self.filter_files([fm.file for fm in file_matches], search_filter))
        return [fm for fm in file_matches if fm.file in kept]

    async def search_multiple(
        self,
        patterns: list[str],
        files: list[str],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        return await self._search_batched(patterns, files, options, self.MULTI_SEARCH_BATCH_SIZE)

    async def is_available(self) -> bool:
        try:
            await regex_search_files(
                self.workspace_path, self.workspace_path, AVAILABILITY_PROBE_PATTERN, timeout=10
            )
            return True
        except SearchError as e:
            logger.debug(f"ripgrep unavailable: {e}")
            return False

    def get_capabilities(self) -> SearchCapabilities:
        return SearchCapabilities(
            supports_regex=True,
            supports_context_lines=True,
            supports_parallel_search=True,
            supports_file_filtering=True,
            max_concurrent_searches=10,
            estimated_performance="fast",
        )
