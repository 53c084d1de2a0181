"""
Candidate Scoring Pipeline.

Ranks workspace files against extracted keywords in two phases so that
expensive work only happens for a shortlist:

1. Path phase (no I/O): basename/dirname keyword hits, priority hints,
   bonuses for code files and well-known file/directory names, and a heavy
   penalty for build output, vendored code, lock files and binary assets.
   Files above PATH_SCORE_THRESHOLD are sorted and the top 2N kept.
2. Content phase (I/O through the file cache): per-keyword occurrence
   counts with diminishing returns, normalized by content length. Files
   above CONTENT_SCORE_THRESHOLD are kept, the top N returned.

Also hosts the symbol and API discovery scoring used by the strategies,
and the basic-relevance pre-check that gates per-file oracle calls.
"""

import asyncio
import logging
import posixpath
import re
from pathlib import Path

from .cache_manager import CacheKeyGenerator, FileCacheManager
from .common_types import (
    ApiCandidate,
    FileCandidate,
    SearchKeywords,
    SymbolCandidate,
    SymbolInfo,
    SymbolKind,
    SymbolLocation,
    symbol_kind_name,
)
from .file_lister import to_relative
from .keyword_extraction import extract_key_terms
from .search_provider import SearchProvider


logger = logging.getLogger(__name__)


# Phase thresholds and limits
PATH_SCORE_THRESHOLD = 0.2
CONTENT_SCORE_THRESHOLD = 0.3
SCORE_NORMALIZER = 10
MAX_CANDIDATE_CONTENT_CHARS = 4000
CONTENT_LOAD_BATCH_SIZE = 5

# Search-backed recall for files the path phase missed
SEARCH_RECALL_KEYWORDS = 3
SEARCH_RECALL_FILE_LIMIT = 100
SEARCH_TAG = "search"

# Path phase weights
PRIMARY_BASENAME_WEIGHT = 3.0
PRIMARY_DIRNAME_WEIGHT = 1.5
SECONDARY_BASENAME_WEIGHT = 2.0
SECONDARY_DIRNAME_WEIGHT = 1.0
TECHNICAL_PATH_WEIGHT = 1.0
CONTEXTUAL_PATH_WEIGHT = 0.5
PRIORITY_HINT_FACTOR = 0.5
PRIORITY_HINT_CAP = 5.0
CODE_FILE_BONUS = 1.0
IMPORTANT_FILE_BONUS = 1.5
IMPORTANT_DIR_BONUS = 0.8
EXCLUDED_PATH_PENALTY = 0.1

# Content phase
CONTENT_HIT_WEIGHT = 0.1
CONTENT_HIT_CAP = 2.0
CONTENT_LENGTH_UNIT = 1000

CODE_FILE_PATTERNS = [
    re.compile(r"\.(ts|js|tsx|jsx|py|java|cpp|c|h|cs|php|rb|go|rs|kt|swift)$"),
    re.compile(r"\.(json|yaml|yml|toml|xml|config)$"),
    re.compile(r"\.(md|txt|rst)$", re.IGNORECASE),
]

IMPORTANT_FILE_PATTERNS = [
    re.compile(r"(^|/)index\."),
    re.compile(r"(^|/)main\."),
    re.compile(r"(^|/)app\."),
    re.compile(r"(^|/)server\."),
    re.compile(r"(^|/)client\."),
    re.compile(r"(^|/)api\."),
    re.compile(r"(^|/)package\.json$"),
    re.compile(r"(^|/)readme\.md$", re.IGNORECASE),
    re.compile(r"(^|/)config\."),
    re.compile(r"(^|/)setup\."),
    re.compile(r"(^|/)init\."),
]

# Matched against "/" + path so top-level directories count too
IMPORTANT_DIR_PATTERNS = [
    re.compile(
        r"/(src|lib|core|api|routes|controllers|services|components|utils|helpers|models|types|interfaces)/"
    ),
    re.compile(r"/(test|tests|spec|specs)/"),
    re.compile(r"/(config|configs|settings)/"),
    re.compile(r"/(docs|documentation|doc)/"),
]

EXCLUDED_PATH_PATTERNS = [
    re.compile(
        r"(^|/)(node_modules|\.git|dist|build|coverage|\.next|\.nuxt|vendor|target|bin|obj|\.vscode|\.idea)(/|$)"
    ),
    re.compile(r"\.(log|tmp|cache|lock)$"),
    re.compile(r"\.(png|jpg|jpeg|gif|svg|ico|woff|woff2|ttf|eot)$"),
]

HIGH_PRIORITY_PATH_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        "auth", "prisma", "database", "config", "api", "server", "client",
        "error", "exception", "handler", "middleware", "service",
    )
]

CODE_EXTENSIONS = (
    ".ts", ".js", ".tsx", ".jsx", ".py", ".java", ".cpp", ".c", ".h",
    ".cs", ".php", ".rb", ".go", ".rs", ".kt", ".swift", ".scala", ".clj",
)


def is_code_file(file_path: str) -> bool:
    return file_path.lower().endswith(CODE_EXTENSIONS)


def calculate_path_score(file_path: str, keywords: SearchKeywords) -> float:
    """
    Score a workspace-relative path against the keyword tiers.

    Args:
        file_path: Forward-slash relative path
        keywords: Extracted keyword tiers and priority hints

    Returns:
        Unbounded non-negative score (normalized later)
    """
    full_path = file_path.lower()
    file_name = posixpath.basename(full_path)
    dir_name = posixpath.dirname(full_path)
    score = 0.0

    for priority in keywords.priorities:
        if priority.matches(file_path):
            score += min(priority.score * PRIORITY_HINT_FACTOR, PRIORITY_HINT_CAP)

    for keyword in keywords.primary:
        kw = keyword.lower()
        if kw in file_name:
            score += PRIMARY_BASENAME_WEIGHT
        elif kw in dir_name:
            score += PRIMARY_DIRNAME_WEIGHT

    for keyword in keywords.secondary:
        kw = keyword.lower()
        if kw in file_name:
            score += SECONDARY_BASENAME_WEIGHT
        elif kw in dir_name:
            score += SECONDARY_DIRNAME_WEIGHT

    for keyword in keywords.technical:
        if keyword.lower() in full_path:
            score += TECHNICAL_PATH_WEIGHT

    for keyword in keywords.contextual:
        if keyword.lower() in full_path:
            score += CONTEXTUAL_PATH_WEIGHT

    if any(p.search(file_path) for p in CODE_FILE_PATTERNS):
        score += CODE_FILE_BONUS
    if any(p.search(file_path) for p in IMPORTANT_FILE_PATTERNS):
        score += IMPORTANT_FILE_BONUS
    if any(p.search("/" + file_path) for p in IMPORTANT_DIR_PATTERNS):
        score += IMPORTANT_DIR_BONUS

    if any(p.search(file_path) for p in EXCLUDED_PATH_PATTERNS):
        score *= EXCLUDED_PATH_PENALTY

    return score


def calculate_content_score(content: str, keywords: SearchKeywords) -> float:
    """Keyword occurrence score with per-keyword cap, normalized per 1000 chars."""
    content_lower = content.lower()
    score = 0.0
    for keyword in keywords.all_keywords():
        kw = keyword.lower()
        if not kw:
            continue
        occurrences = content_lower.count(kw)
        score += min(occurrences * CONTENT_HIT_WEIGHT, CONTENT_HIT_CAP)
    return score / max(len(content) / CONTENT_LENGTH_UNIT, 1)


def calculate_basic_relevance(
    candidate: FileCandidate,
    keywords: SearchKeywords,
    description_text: str,
) -> float:
    """
    Cheap relevance estimate used to skip a per-file oracle call.

    Combines the prior score, path score, content score, direct hits of key
    terms from the description, and high-priority path patterns.
    """
    score = candidate.relevance_score * 0.5
    score += calculate_path_score(candidate.path, keywords) * 0.1

    if candidate.content:
        score += calculate_content_score(candidate.content, keywords) * 0.3
        content_lower = candidate.content.lower()
        for term in extract_key_terms(description_text):
            if term in content_lower:
                score += 0.2

    for pattern in HIGH_PRIORITY_PATH_PATTERNS:
        if pattern.search(candidate.path):
            score += 0.1

    return min(score, 1.0)


class CandidateScorer:
    """
    Two-phase file ranking over a workspace.

    The search provider is optional; when given, it widens recall for files
    whose paths do not mention any primary keyword.
    """

    def __init__(
        self,
        workspace_root: str | Path,
        cache: FileCacheManager,
        search_provider: SearchProvider | None = None,
        max_files: int = 8,
    ):
        self.workspace_root = str(Path(workspace_root).resolve())
        self.cache = cache
        self.search_provider = search_provider
        self.max_files = max_files

    @property
    def shortlist_size(self) -> int:
        return self.max_files * 2

    def score_paths(self, files: list[str], keywords: SearchKeywords) -> dict[str, float]:
        """Path scores for every file above PATH_SCORE_THRESHOLD."""
        scores = {}
        for file_path in files:
            score = calculate_path_score(file_path, keywords)
            if score > PATH_SCORE_THRESHOLD:
                scores[file_path] = score
        return scores

    async def _search_recall(
        self,
        files: list[str],
        path_scores: dict[str, float],
        keywords: SearchKeywords,
    ) -> None:
        """Add search-match scores for files the path phase left out."""
        if self.search_provider is None or not keywords.primary:
            return

        remaining = [f for f in files if f not in path_scores]
        if not remaining:
            return
        capabilities = self.search_provider.get_capabilities()
        if len(remaining) > SEARCH_RECALL_FILE_LIMIT and capabilities.estimated_performance != "fast":
            logger.debug(f"Skipping search recall over {len(remaining)} files ({self.search_provider.name})")
            return

        patterns = keywords.primary[:SEARCH_RECALL_KEYWORDS]
        cache_key = CacheKeyGenerator.search(patterns, remaining)
        hits = self.cache.get(cache_key)
        if hits is None:
            try:
                results = await self.search_provider.search_multiple(patterns, remaining)
            except Exception as e:
                logger.warning(f"Search recall failed, continuing with path scores only: {e}")
                return
            wanted = set(remaining)
            hits = [
                (fm.file, fm.score)
                for result in results
                for fm in result.file_matches
                if fm.file in wanted
            ]
            self.cache.set(cache_key, hits, tags=[SEARCH_TAG])

        for file_path, score in hits:
            path_scores[file_path] = path_scores.get(file_path, 0.0) + score

    async def shortlist(self, files: list[str], keywords: SearchKeywords) -> list[tuple[str, float]]:
        """Phase 1: top 2N (path, score) pairs, best first."""
        path_scores = self.score_paths(files, keywords)
        if len(path_scores) < self.shortlist_size:
            await self._search_recall(files, path_scores, keywords)

        ranked = sorted(path_scores.items(), key=lambda item: item[1], reverse=True)
        logger.debug(
            f"Path phase kept {min(len(ranked), self.shortlist_size)} of {len(files)} files"
        )
        return ranked[:self.shortlist_size]

    async def _load_contents(self, paths: list[str]) -> dict[str, str]:
        """Load contents through the file cache, CONTENT_LOAD_BATCH_SIZE at a time."""
        contents: dict[str, str] = {}
        for i in range(0, len(paths), CONTENT_LOAD_BATCH_SIZE):
            batch = paths[i:i + CONTENT_LOAD_BATCH_SIZE]
            loaded = await asyncio.gather(
                *(self.cache.get_file_content(Path(self.workspace_root) / p) for p in batch),
                return_exceptions=True,
            )
            for file_path, content in zip(batch, loaded):
                if isinstance(content, BaseException):
                    logger.debug(f"Skipping {file_path}: {content}")
                elif content:
                    contents[file_path] = content
        return contents

    async def score_contents(
        self,
        shortlisted: list[tuple[str, float]],
        keywords: SearchKeywords,
    ) -> list[FileCandidate]:
        """Phase 2: combine path and content scores for the shortlist."""
        contents = await self._load_contents([p for p, _ in shortlisted])

        candidates = []
        for file_path, path_score in shortlisted:
            content = contents.get(file_path)
            if content is None:
                continue
            final_score = path_score + calculate_content_score(content, keywords)
            if final_score > CONTENT_SCORE_THRESHOLD:
                candidates.append(FileCandidate(
                    path=file_path,
                    content=content[:MAX_CANDIDATE_CONTENT_CHARS],
                    relevance_score=min(final_score / SCORE_NORMALIZER, 1.0),
                ))

        candidates.sort(key=lambda c: c.relevance_score, reverse=True)
        return candidates[:self.max_files]

    async def find_candidates(self, files: list[str], keywords: SearchKeywords) -> list[FileCandidate]:
        """Run both phases and return at most max_files candidates, best first."""
        shortlisted = await self.shortlist(files, keywords)
        if not shortlisted:
            return []
        candidates = await self.score_contents(shortlisted, keywords)
        logger.info(
            f"Scored {len(files)} files: {len(shortlisted)} shortlisted, {len(candidates)} candidates"
        )
        return candidates


# Symbol and API discovery

SYMBOL_TIER_WEIGHTS = {
    "primary": 3.0,
    "secondary": 2.0,
    "technical": 2.5,
    "contextual": 1.5,
}

SYMBOL_THRESHOLD = 0.3
MAX_SYMBOLS = 15
API_THRESHOLD = 0.3
MAX_APIS = 8

API_TERMS = (
    "controller", "route", "endpoint", "api", "handler", "service",
    "get", "post", "put", "delete", "patch", "head", "options",
)
HTTP_METHODS = ("get", "post", "put", "delete", "patch", "head", "options")

_CAMEL_BOUNDARY_RE = re.compile(r"([a-z0-9])([A-Z])")


def _identifier_words(name: str) -> list[str]:
    spaced = _CAMEL_BOUNDARY_RE.sub(r"\1 \2", name).replace("_", " ")
    return [w for w in spaced.lower().split() if w]


def fuzzy_match(symbol_name: str, keyword: str) -> bool:
    """True when any camelCase/snake_case word of one contains a word of the other."""
    symbol_words = _identifier_words(symbol_name)
    keyword_words = _identifier_words(keyword)
    return any(
        sw in kw or kw in sw
        for kw in keyword_words
        for sw in symbol_words
    )


def calculate_symbol_relevance(symbol: SymbolInfo, keywords: SearchKeywords) -> float:
    """Flat containment score: name 2, qualified name 1.5, comment 0.5 per keyword."""
    name = symbol.name.lower()
    qualified = symbol.qualified_name.lower()
    text = f"{name} {qualified} {symbol.comment.lower()}"

    score = 0.0
    for keyword in keywords.all_keywords():
        kw = keyword.lower()
        if not kw or kw not in text:
            continue
        if kw in name:
            score += 2
        elif kw in qualified:
            score += 1.5
        else:
            score += 0.5
    return score


def calculate_enhanced_symbol_relevance(symbol: SymbolInfo, keywords: SearchKeywords) -> float:
    """Tier-weighted symbol score with exact-name and identifier-word matching."""
    name = symbol.name.lower()
    qualified = symbol.qualified_name.lower()
    comment = symbol.comment.lower()
    file_path = symbol.file_path.lower()

    score = 0.0
    for tier, weight in SYMBOL_TIER_WEIGHTS.items():
        for keyword in getattr(keywords, tier):
            kw = keyword.lower()
            if not kw:
                continue
            if name == kw:
                score += weight * 4
                continue
            if kw in name:
                score += weight * 2
            if kw in qualified:
                score += weight * 1.5
            if kw in comment:
                score += weight * 1
            if kw in file_path:
                score += weight * 0.5
            if fuzzy_match(symbol.name, keyword):
                score += weight * 1.5

    if symbol.kind in (SymbolKind.CLASS, SymbolKind.INTERFACE):
        score *= 1.2
    elif symbol.kind in (SymbolKind.METHOD, SymbolKind.FUNCTION):
        score *= 1.1
    return score


def extract_http_method(symbol: SymbolInfo) -> str | None:
    text = f"{symbol.name} {symbol.qualified_name}".lower()
    for method in HTTP_METHODS:
        if method in text:
            return method.upper()
    return None


def _relative_symbol_path(file_path: str, workspace_root: str | Path) -> str:
    if not file_path:
        return ""
    if Path(file_path).is_absolute():
        return to_relative(file_path, workspace_root)
    return file_path.replace("\\", "/")


def to_symbol_candidate(symbol: SymbolInfo, workspace_root: str | Path, score: float) -> SymbolCandidate:
    return SymbolCandidate(
        name=symbol.name,
        type=symbol_kind_name(symbol.kind),
        location=SymbolLocation(
            file=_relative_symbol_path(symbol.file_path, workspace_root),
            line=symbol.start_line,
            column=symbol.start_column,
        ),
        description=symbol.comment or symbol.qualified_name or None,
        score=min(score / SCORE_NORMALIZER, 1.0),
    )


def find_relevant_symbols(
    symbols: list[SymbolInfo],
    keywords: SearchKeywords,
    workspace_root: str | Path,
    enhanced: bool = True,
    threshold: float = SYMBOL_THRESHOLD,
    limit: int = MAX_SYMBOLS,
) -> list[SymbolCandidate]:
    """
    Rank symbols from the precomputed symbol table.

    Args:
        symbols: Symbol table entries
        keywords: Extracted keyword tiers
        workspace_root: Root used to relativize absolute symbol paths
        enhanced: Use tier-weighted scoring (code files only) instead of flat containment
        threshold: Minimum raw score to keep a symbol
        limit: Maximum number of symbols returned

    Returns:
        Symbol candidates, best first
    """
    scored: list[tuple[float, SymbolInfo]] = []
    for symbol in symbols:
        if enhanced:
            if symbol.file_path and not is_code_file(symbol.file_path):
                continue
            score = calculate_enhanced_symbol_relevance(symbol, keywords)
        else:
            score = calculate_symbol_relevance(symbol, keywords)
        if score > threshold:
            scored.append((score, symbol))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [to_symbol_candidate(s, workspace_root, score) for score, s in scored[:limit]]


def find_relevant_apis(
    symbols: list[SymbolInfo],
    keywords: SearchKeywords,
    workspace_root: str | Path,
    threshold: float = API_THRESHOLD,
    limit: int = MAX_APIS,
) -> list[ApiCandidate]:
    """Symbols that look like HTTP endpoints and mention the keywords."""
    apis: list[ApiCandidate] = []
    for symbol in symbols:
        text = f"{symbol.name} {symbol.qualified_name} {symbol.comment}".lower()
        if not any(term in text for term in API_TERMS):
            continue

        score = calculate_symbol_relevance(symbol, keywords)
        if score > threshold:
            apis.append(ApiCandidate(
                path=_relative_symbol_path(symbol.file_path, workspace_root),
                method=extract_http_method(symbol) or "UNKNOWN",
                description=symbol.comment or symbol.qualified_name or None,
                score=min(score / SCORE_NORMALIZER, 1.0),
            ))
        if len(apis) >= limit:
            break
    return apis
