"""
Relevance Orchestrator.

RelevanceAnalyzer is the public entry point: given a description and a
workspace, it returns ranked files, symbols and API endpoints.

Per call it:
1. Serves a cached result for the same (workspace, scope, description)
2. Lists workspace files (unless the caller supplies them)
3. Selects a strategy once (auto: oracle when available, else hybrid)
4. Runs keywords -> file scoring -> priority filtering -> symbols/APIs
5. Falls back to the rule-based ranking when nothing survives
6. Computes confidence and suggestions, then caches the result

No exception from a collaborator (oracle, search backend, filesystem)
escapes analyze(); an empty result is the only visible failure mode.
"""

import logging
from pathlib import Path
from typing import Any

from .cache_manager import CacheKeyGenerator, FileCacheManager, copy_on_read
from .candidate_scoring import CandidateScorer
from .common_types import (
    AnalysisResult,
    FileCandidate,
    FilePriority,
    IssueDescription,
    SearchKeywords,
    Suggestion,
    SymbolInfo,
)
from .config import VALID_SEARCH_PROVIDERS, AnalyzerConfig, get_config
from .fallback_analyzer import FallbackAnalyzer
from .file_lister import FileLister
from .hybrid_search import create_search_provider
from .keyword_extraction import extract_keywords
from .oracle_client import RelevanceOracle
from .search_provider import SearchProvider
from .strategies import (
    AnalysisContext,
    AnalysisStrategy,
    HybridStrategy,
    OracleStrategy,
    RuleBasedStrategy,
)


logger = logging.getLogger(__name__)

ANALYSIS_TAG = "analysis"
FILE_LIST_TAG = "filelist"

# Files matching no hint are judged by relevance_score * 10 on the same scale
MIN_PRIORITY_SCORE = 4
RULE_FALLBACK_FILE_COUNT = 5

MAX_SUGGESTIONS = 8
SUGGESTED_FILES = 3
SUGGESTED_SYMBOLS = 3
SUGGESTED_APIS = 2
SYMBOL_SUGGESTION_CONFIDENCE = 0.7
API_SUGGESTION_CONFIDENCE = 0.6


def merge_priorities(*groups: list[FilePriority]) -> list[FilePriority]:
    """Concatenate hint lists, first occurrence of a pattern wins."""
    merged: dict[str, FilePriority] = {}
    for group in groups:
        for priority in group:
            merged.setdefault(priority.pattern.lower(), priority)
    return list(merged.values())


def apply_priority_filter(
    files: list[FileCandidate],
    priorities: list[FilePriority],
) -> list[FileCandidate]:
    """
    Drop candidates whose effective priority is below MIN_PRIORITY_SCORE.

    A file matching one or more hints takes the best matching hint score; a
    file matching none is judged by its own relevance on the 1-10 scale.
    When every file would be dropped, the unfiltered list is returned.
    """
    if not priorities or not files:
        return files

    kept = []
    for file in files:
        matched = [p.score for p in priorities if p.matches(file.path)]
        effective = max(matched) if matched else file.relevance_score * 10
        if effective >= MIN_PRIORITY_SCORE:
            kept.append(file)
        else:
            logger.debug(f"Priority filter dropped {file.path} ({effective:.1f})")

    if not kept:
        logger.debug("Priority filter would drop every file, keeping unfiltered list")
        return files
    return kept


def generate_suggestions(result: AnalysisResult) -> list[Suggestion]:
    """Short next-step pointers for the top files, symbols and APIs."""
    suggestions = []

    for file in result.files[:SUGGESTED_FILES]:
        description = f"Examine {file.path} - it appears to be relevant to this issue"
        if file.reason:
            description = f"Examine {file.path} - {file.reason}"
        suggestions.append(Suggestion(
            type="file",
            description=description,
            location=file.path,
            confidence=file.relevance_score,
        ))

    for symbol in result.symbols[:SUGGESTED_SYMBOLS]:
        suggestions.append(Suggestion(
            type="symbol",
            description=f'Review {symbol.type.lower()} "{symbol.name}" - it might be related to this issue',
            location=f"{symbol.location.file}:{symbol.location.line}",
            confidence=SYMBOL_SUGGESTION_CONFIDENCE,
        ))

    for api in result.apis[:SUGGESTED_APIS]:
        suggestions.append(Suggestion(
            type="api",
            description=f"Check the {api.method} endpoint in {api.path}",
            location=api.path,
            confidence=API_SUGGESTION_CONFIDENCE,
        ))

    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:MAX_SUGGESTIONS]


class RelevanceAnalyzer:
    """
    Finds the files, symbols and APIs relevant to a description.

    The analyzer owns its file cache (created here, destroyed by close())
    unless one is injected. Use it as an async context manager:

        async with RelevanceAnalyzer() as analyzer:
            result = await analyzer.analyze("Login fails after reset", "/repo")
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        cache: FileCacheManager | None = None,
        oracle: RelevanceOracle | None = None,
        search_provider: SearchProvider | None = None,
    ):
        self.config = config or get_config()
        for error in self.config.validate():
            logger.warning(f"Config: {error}")

        self._owns_cache = cache is None
        self.cache = cache if cache is not None else FileCacheManager(self.config.cache)
        self._owns_oracle = oracle is None
        self.oracle = oracle if oracle is not None else RelevanceOracle(self.config, cache=self.cache)
        self.search_provider = search_provider
        self.file_lister = FileLister(self.config)
        self.fallback = FallbackAnalyzer()
        self._closed = False

    async def __aenter__(self) -> "RelevanceAnalyzer":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the oracle transport and destroy the owned cache."""
        if self._closed:
            return
        self._closed = True
        if self._owns_oracle:
            await self.oracle.close()
        if self._owns_cache:
            self.cache.destroy()

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Analysis caches cleared")

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.get_stats().to_dict()

    async def select_strategy(self) -> AnalysisStrategy:
        """Pick the strategy for one call from config and oracle availability."""
        kind = self.config.strategy
        if kind == "rule":
            strategy: AnalysisStrategy = RuleBasedStrategy()
        elif kind == "oracle":
            strategy = OracleStrategy(self.oracle, self.config)
        elif kind == "hybrid":
            strategy = HybridStrategy(self.oracle, self.config, self.fallback)
        else:
            if kind != "auto":
                logger.warning(f"Unknown strategy {kind!r}, using auto")
            oracle_strategy = OracleStrategy(self.oracle, self.config)
            if await oracle_strategy.is_available():
                strategy = oracle_strategy
            else:
                strategy = HybridStrategy(self.oracle, self.config, self.fallback)

        logger.info(f"Using {strategy.name} strategy")
        return strategy

    def _search_provider_for(self, workspace_root: str) -> SearchProvider:
        if self.search_provider is not None:
            return self.search_provider
        kind = self.config.search_provider
        if kind not in VALID_SEARCH_PROVIDERS:
            logger.warning(f"Unknown search provider {kind!r}, using hybrid")
            kind = "hybrid"
        return create_search_provider(
            kind,
            workspace_root,
            self.cache,
            ripgrep_timeout=self.config.ripgrep_timeout_seconds,
        )

    async def _list_files(self, workspace_root: str) -> list[str]:
        cache_key = CacheKeyGenerator.file_list(workspace_root)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        listing = await self.file_lister.list_files_async(workspace_root)
        for error in listing.errors:
            logger.warning(f"File listing: {error}")
        if listing.truncated:
            logger.info(f"File listing truncated at {listing.file_count} files")

        self.cache.set(cache_key, list(listing.paths), tags=[FILE_LIST_TAG])
        return listing.paths

    @staticmethod
    def _cache_text(
        description: IssueDescription,
        priority_hints: list[FilePriority],
        files: list[str] | None,
        symbols: list[SymbolInfo],
    ) -> str:
        """Everything that can change the result; a listed workspace is '*'."""
        hints = ",".join(f"{p.pattern}={p.score}" for p in priority_hints)
        file_part = "*" if files is None else CacheKeyGenerator.short_hash("\n".join(files))
        symbol_part = CacheKeyGenerator.short_hash(repr(symbols))
        return f"{description.to_text()}|{hints}|{file_part}|{symbol_part}"

    async def analyze(
        self,
        description: str | IssueDescription,
        workspace_root: str | Path,
        files: list[str] | None = None,
        symbols: list[SymbolInfo | dict] | None = None,
        scope: str = "default",
        priority_hints: list[FilePriority] | None = None,
    ) -> AnalysisResult:
        """
        Rank the workspace for a description.

        Args:
            description: Free text or a structured IssueDescription
            workspace_root: Repository root directory
            files: Workspace-relative candidate paths (listed from disk when None)
            symbols: Precomputed symbol table entries (SymbolInfo or raw dicts)
            scope: Cache scope, so unrelated callers do not share results
            priority_hints: Caller-supplied (pattern, score, reason) hints

        Returns:
            AnalysisResult with files sorted by descending relevance
        """
        if isinstance(description, str):
            description = IssueDescription.from_text(description)
        root = str(Path(workspace_root).resolve())
        hints = list(priority_hints or [])
        symbol_table = [s if isinstance(s, SymbolInfo) else SymbolInfo.from_dict(s) for s in symbols or []]

        cache_key = CacheKeyGenerator.analysis(
            root, scope, self._cache_text(description, hints, files, symbol_table)
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info("Using cached analysis")
            return copy_on_read(cached)

        if files is None:
            files = await self._list_files(root)

        strategy = await self.select_strategy()
        context = AnalysisContext(
            workspace_root=root,
            description=description,
            files=files,
            scorer=CandidateScorer(
                root,
                self.cache,
                self._search_provider_for(root),
                max_files=self.config.max_files_to_analyze,
            ),
            symbols=symbol_table,
        )

        result = await self._run(strategy, context, hints)
        self.cache.set(
            cache_key,
            copy_on_read(result),
            ttl=self.config.analysis_cache_ttl_seconds,
            tags=[ANALYSIS_TAG],
        )
        logger.info(
            f"Found {len(result.files)} files, {len(result.symbols)} symbols, "
            f"{len(result.apis)} APIs (strategy={result.strategy_name}, "
            f"confidence={result.confidence:.2f})"
        )
        return result

    async def _generate_keywords(
        self,
        strategy: AnalysisStrategy,
        description: IssueDescription,
        hints: list[FilePriority],
    ) -> SearchKeywords:
        try:
            keywords = await strategy.generate_keywords(description)
        except Exception as e:
            logger.warning(f"{strategy.name} keyword generation failed, using rule-based: {e}")
            keywords = extract_keywords(description.to_text())
        keywords.priorities = merge_priorities(hints, keywords.priorities)
        return keywords

    async def _rule_fallback_files(
        self, context: AnalysisContext, hints: list[FilePriority]
    ) -> list[FileCandidate]:
        rule_strategy = RuleBasedStrategy()
        keywords = await self._generate_keywords(rule_strategy, context.description, hints)
        try:
            files = await rule_strategy.find_relevant_files(context, keywords)
        except Exception as e:
            logger.warning(f"Rule-based file ranking failed: {e}")
            return []
        return files[:RULE_FALLBACK_FILE_COUNT]

    async def _run(
        self,
        strategy: AnalysisStrategy,
        context: AnalysisContext,
        hints: list[FilePriority],
    ) -> AnalysisResult:
        keywords = await self._generate_keywords(strategy, context.description, hints)

        try:
            files = await strategy.find_relevant_files(context, keywords)
        except Exception as e:
            logger.warning(f"{strategy.name} file analysis failed: {e}")
            files = []
        files = apply_priority_filter(files, keywords.priorities)

        if not files and strategy.name != RuleBasedStrategy.name:
            logger.info("No relevant files found, falling back to rule-based ranking")
            files = await self._rule_fallback_files(context, hints)

        try:
            symbols = await strategy.find_relevant_symbols(context, keywords)
        except Exception as e:
            logger.warning(f"{strategy.name} symbol analysis failed: {e}")
            symbols = []

        try:
            apis = await strategy.find_relevant_apis(context, keywords)
        except Exception as e:
            logger.warning(f"{strategy.name} API analysis failed: {e}")
            apis = []

        files = sorted(files, key=lambda f: f.relevance_score, reverse=True)
        result = AnalysisResult(
            files=files,
            symbols=symbols,
            apis=apis,
            strategy_name=strategy.name,
            keywords=keywords,
        )
        result.confidence = strategy.calculate_confidence(result)
        result.suggestions = generate_suggestions(result)
        return result
