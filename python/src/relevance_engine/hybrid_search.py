"""
Hybrid search provider and provider factory.

HybridSearchProvider tries ripgrep first and falls back to the in-process
scanner on any failure. If the scanner fails as well, the pattern simply
contributes no matches.
"""

import logging
from pathlib import Path

from .cache_manager import FileCacheManager
from .ripgrep_tools import RipgrepSearchProvider
from .search_provider import (
    FileSystemSearchProvider,
    SearchCapabilities,
    SearchFilter,
    SearchOptions,
    SearchProvider,
    SearchResult,
)


logger = logging.getLogger(__name__)


class HybridSearchProvider(SearchProvider):
    """Ripgrep with an always-available in-process fallback."""

    name = "hybrid"
    MULTI_SEARCH_BATCH_SIZE = 5

    def __init__(
        self,
        workspace_path: str | Path,
        cache: FileCacheManager | None = None,
        primary: SearchProvider | None = None,
        fallback: SearchProvider | None = None,
        ripgrep_timeout: float = 60,
    ):
        super().__init__(workspace_path, cache)
        self.primary = primary or RipgrepSearchProvider(workspace_path, cache, timeout=ripgrep_timeout)
        self.fallback = fallback or FileSystemSearchProvider(workspace_path, cache)

    async def search(
        self,
        pattern: str,
        files: list[str],
        options: SearchOptions | None = None,
    ) -> SearchResult:
        try:
            result = await self.primary.search(pattern, files, options)
        except Exception as e:
            logger.debug(f"{self.primary.name} search failed for {pattern!r}, using {self.fallback.name}: {e}")
        else:
            result.provider = self.primary.name
            return result

        try:
            result = await self.fallback.search(pattern, files, options)
        except Exception as e:
            logger.warning(f"All search backends failed for {pattern!r}: {e}")
            return self.create_search_result(pattern, [], 0.0)
        result.provider = self.fallback.name
        return result

    async def search_in_directory(
        self,
        pattern: str,
        directory: str,
        search_filter: SearchFilter | None = None,
        options: SearchOptions | None = None,
    ) -> SearchResult:
        try:
            return await self.primary.search_in_directory(pattern, directory, search_filter, options)
        except Exception as e:
            logger.debug(f"{self.primary.name} directory search failed for {pattern!r}: {e}")

        try:
            return await self.fallback.search_in_directory(pattern, directory, search_filter, options)
        except Exception as e:
            logger.warning(f"All search backends failed for {pattern!r}: {e}")
            return self.create_search_result(pattern, [], 0.0)

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
        return self.primary.get_capabilities()


def create_search_provider(
    kind: str,
    workspace_path: str | Path,
    cache: FileCacheManager | None = None,
    ripgrep_timeout: float = 60,
) -> SearchProvider:
    """Build the search backend named by kind (ripgrep, filesystem or hybrid)."""
    if kind == "ripgrep":
        return RipgrepSearchProvider(workspace_path, cache, timeout=ripgrep_timeout)
    if kind == "filesystem":
        return FileSystemSearchProvider(workspace_path, cache)
    if kind == "hybrid":
        return HybridSearchProvider(workspace_path, cache, ripgrep_timeout=ripgrep_timeout)
    raise ValueError(f"Unknown search provider: {kind}")
