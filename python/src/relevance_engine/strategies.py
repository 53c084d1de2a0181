"""
Analysis strategies.

Each strategy answers the same four questions for one analysis call:
which keywords describe the problem, and which files, symbols and APIs are
relevant. They differ in whether (and how much) they consult the oracle:

- RuleBasedStrategy: regex keywords and the two-phase scoring pipeline only
- OracleStrategy: oracle keywords and per-file oracle verdicts, with
  rule-based fallbacks at every call site
- HybridStrategy: checks the oracle once, uses it where it answers and
  merges its symbol/API findings with the rule-based ones

Strategy instances are created per analysis call, so any per-call state
(such as whether the oracle answered) never leaks between calls.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from .candidate_scoring import (
    CandidateScorer,
    calculate_basic_relevance,
    find_relevant_apis,
    find_relevant_symbols,
)
from .common_types import (
    AnalysisResult,
    ApiCandidate,
    FileCandidate,
    IssueDescription,
    SearchKeywords,
    SymbolCandidate,
    SymbolInfo,
)
from .config import AnalyzerConfig
from .exceptions import OracleError
from .fallback_analyzer import FallbackAnalyzer
from .keyword_extraction import extract_keywords
from .oracle_client import RelevanceOracle


logger = logging.getLogger(__name__)


# Oracle per-file refinement
ORACLE_CANDIDATE_MIN_SCORE = 0.6
BASIC_RELEVANCE_MIN = 0.2
MAX_ORACLE_FILES = 10
FALLBACK_FILE_COUNT = 5

# Oracle-side symbol discovery uses the flat containment score
ORACLE_SYMBOL_THRESHOLD = 0.5
ORACLE_MAX_SYMBOLS = 10

# Hybrid merge and enhancement
HYBRID_ENHANCE_TOP_K = 3
MAX_MERGED_SYMBOLS = 15
MAX_MERGED_APIS = 10

# Confidence bonuses
REASON_CONFIDENCE_BONUS = 0.2
ORACLE_CONFIDENCE_BONUS = 0.15


@dataclass
class AnalysisContext:
    """Everything a strategy needs to score one workspace for one description."""
    workspace_root: str
    description: IssueDescription
    files: list[str]
    scorer: CandidateScorer
    symbols: list[SymbolInfo] = field(default_factory=list)


def base_confidence(result: AnalysisResult) -> float:
    """Weighted result cardinality: files 0.4, symbols 0.3, APIs 0.3."""
    file_score = min(len(result.files) / 5, 1.0) * 0.4
    symbol_score = min(len(result.symbols) / 10, 1.0) * 0.3
    api_score = min(len(result.apis) / 5, 1.0) * 0.3
    return file_score + symbol_score + api_score


def merge_symbols(
    preferred: list[SymbolCandidate],
    others: list[SymbolCandidate],
    limit: int = MAX_MERGED_SYMBOLS,
) -> list[SymbolCandidate]:
    """Deduplicate by name:file:line; preferred entries win on collision."""
    merged: dict[str, SymbolCandidate] = {}
    for symbol in others:
        merged[symbol.key] = symbol
    for symbol in preferred:
        merged[symbol.key] = symbol
    return list(merged.values())[:limit]


def merge_apis(
    preferred: list[ApiCandidate],
    others: list[ApiCandidate],
    limit: int = MAX_MERGED_APIS,
) -> list[ApiCandidate]:
    """Deduplicate by method:path; preferred entries win on collision."""
    merged: dict[str, ApiCandidate] = {}
    for api in others:
        merged[api.key] = api
    for api in preferred:
        merged[api.key] = api
    return list(merged.values())[:limit]


class AnalysisStrategy(ABC):
    """Common interface for the rule-based, oracle and hybrid strategies."""

    name = "base"

    @abstractmethod
    async def generate_keywords(self, description: IssueDescription) -> SearchKeywords:
        ...

    @abstractmethod
    async def find_relevant_files(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[FileCandidate]:
        ...

    @abstractmethod
    async def find_relevant_symbols(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[SymbolCandidate]:
        ...

    @abstractmethod
    async def find_relevant_apis(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[ApiCandidate]:
        ...

    async def is_available(self) -> bool:
        return True

    def calculate_confidence(self, result: AnalysisResult) -> float:
        return base_confidence(result)


class RuleBasedStrategy(AnalysisStrategy):
    """Regex keywords plus the two-phase scoring pipeline; never calls out."""

    name = "rule-based"

    async def generate_keywords(self, description: IssueDescription) -> SearchKeywords:
        return extract_keywords(description.to_text())

    async def find_relevant_files(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[FileCandidate]:
        return await context.scorer.find_candidates(context.files, keywords)

    async def find_relevant_symbols(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[SymbolCandidate]:
        return find_relevant_symbols(context.symbols, keywords, context.workspace_root)

    async def find_relevant_apis(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[ApiCandidate]:
        return find_relevant_apis(context.symbols, keywords, context.workspace_root)


class OracleStrategy(AnalysisStrategy):
    """
    Oracle-driven keywords and per-file verdicts.

    Every oracle call site has a fallback: keywords fall back to the rule
    based extractor, and a failed per-file verdict keeps the heuristic score.
    """

    name = "oracle"

    def __init__(self, oracle: RelevanceOracle, config: AnalyzerConfig | None = None):
        self.oracle = oracle
        self.config = config or oracle.config

    async def is_available(self) -> bool:
        return self.oracle.is_available()

    async def oracle_keywords(self, description: IssueDescription) -> SearchKeywords:
        """
        Keywords straight from the oracle.

        Raises:
            OracleError: when the oracle is unavailable or answers badly
        """
        analysis = await self.oracle.analyze_for_keywords(description)
        return analysis.to_search_keywords()

    async def generate_keywords(self, description: IssueDescription) -> SearchKeywords:
        try:
            return await self.oracle_keywords(description)
        except OracleError as e:
            logger.warning(f"Oracle keyword extraction failed, falling back to rule-based: {e}")
            return extract_keywords(description.to_text())

    async def _judge(
        self,
        context: AnalysisContext,
        candidate: FileCandidate,
        keywords: SearchKeywords,
        description_text: str,
    ) -> FileCandidate | None:
        """
        Refined candidate, or None when it is skipped or judged irrelevant.

        A failed oracle call returns the candidate unchanged.
        """
        basic = calculate_basic_relevance(candidate, keywords, description_text)
        if basic < BASIC_RELEVANCE_MIN:
            logger.debug(f"Skipping low basic relevance: {candidate.path} ({basic:.2f})")
            return None

        try:
            verdict = await self.oracle.analyze_code_relevance(
                context.description, candidate.path, candidate.content or ""
            )
        except OracleError as e:
            logger.warning(f"Oracle analysis failed for {candidate.path}, keeping heuristic score: {e}")
            return candidate

        if not verdict.is_relevant:
            logger.debug(f"Not relevant: {candidate.path} - {verdict.reason[:80]}")
            return None

        logger.debug(f"Relevant ({verdict.relevance_score:.0%}): {candidate.path} - {verdict.reason[:80]}")
        return FileCandidate(
            path=candidate.path,
            content=candidate.content,
            relevance_score=verdict.relevance_score,
            reason=verdict.reason,
        )

    async def find_relevant_files(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[FileCandidate]:
        candidates = await context.scorer.find_candidates(context.files, keywords)
        to_analyze = [
            c for c in candidates[:self.config.max_files_to_analyze]
            if c.relevance_score > ORACLE_CANDIDATE_MIN_SCORE
        ]
        description_text = context.description.to_text()
        batch_size = self.config.oracle_batch_size

        analyzed: list[FileCandidate] = []
        for i in range(0, len(to_analyze), batch_size):
            batch = to_analyze[i:i + batch_size]
            logger.debug(
                f"Oracle batch {i // batch_size + 1}/{-(-len(to_analyze) // batch_size)}: "
                f"{', '.join(c.path for c in batch)}"
            )
            outcomes = await asyncio.gather(
                *(self._judge(context, c, keywords, description_text) for c in batch)
            )
            analyzed.extend(f for f in outcomes if f is not None)

        if not analyzed:
            logger.info("Oracle found no relevant files, using heuristic ranking")
            return candidates[:FALLBACK_FILE_COUNT]

        analyzed.sort(key=lambda c: c.relevance_score, reverse=True)
        return analyzed[:MAX_ORACLE_FILES]

    async def find_relevant_symbols(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[SymbolCandidate]:
        return find_relevant_symbols(
            context.symbols,
            keywords,
            context.workspace_root,
            enhanced=False,
            threshold=ORACLE_SYMBOL_THRESHOLD,
            limit=ORACLE_MAX_SYMBOLS,
        )

    async def find_relevant_apis(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[ApiCandidate]:
        return find_relevant_apis(context.symbols, keywords, context.workspace_root)

    def calculate_confidence(self, result: AnalysisResult) -> float:
        bonus = REASON_CONFIDENCE_BONUS if any(f.reason for f in result.files) else 0.0
        return min(base_confidence(result) + bonus, 1.0)


class HybridStrategy(AnalysisStrategy):
    """
    Oracle where it answers, rule-based everywhere else.

    Oracle availability is checked once in generate_keywords and remembered
    for the rest of the call.
    """

    name = "hybrid"

    def __init__(
        self,
        oracle: RelevanceOracle,
        config: AnalyzerConfig | None = None,
        fallback: FallbackAnalyzer | None = None,
    ):
        self.oracle_strategy = OracleStrategy(oracle, config)
        self.rule_strategy = RuleBasedStrategy()
        self.fallback = fallback or FallbackAnalyzer()
        self.oracle_available = False

    async def generate_keywords(self, description: IssueDescription) -> SearchKeywords:
        self.oracle_available = await self.oracle_strategy.is_available()

        if self.oracle_available:
            try:
                keywords = await self.oracle_strategy.oracle_keywords(description)
            except OracleError as e:
                logger.warning(f"Oracle keyword generation failed, falling back to rule-based: {e}")
                self.oracle_available = False
            else:
                logger.debug("Using oracle-generated keywords")
                return keywords

        return await self.rule_strategy.generate_keywords(description)

    async def find_relevant_files(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[FileCandidate]:
        if self.oracle_available:
            try:
                files = await self.oracle_strategy.find_relevant_files(context, keywords)
            except Exception as e:
                logger.warning(f"Oracle file analysis failed, falling back to rule-based: {e}")
            else:
                if files:
                    return files

        rule_files = await self.rule_strategy.find_relevant_files(context, keywords)
        if self.oracle_available and rule_files:
            return await self._enhance_with_oracle(context, rule_files)
        return self._annotate_with_fallback(context, rule_files)

    async def _enhance_with_oracle(
        self, context: AnalysisContext, files: list[FileCandidate]
    ) -> list[FileCandidate]:
        """Ask the oracle about the top files; keep the better of the two scores."""
        head = files[:HYBRID_ENHANCE_TOP_K]
        verdicts = await asyncio.gather(
            *(
                self.oracle_strategy.oracle.analyze_code_relevance(
                    context.description, f.path, f.content or ""
                )
                for f in head
            ),
            return_exceptions=True,
        )

        enhanced = []
        for file, verdict in zip(head, verdicts):
            if isinstance(verdict, BaseException):
                logger.debug(f"Keeping heuristic score for {file.path}: {verdict}")
                enhanced.append(file)
            elif verdict.is_relevant:
                enhanced.append(FileCandidate(
                    path=file.path,
                    content=file.content,
                    relevance_score=max(file.relevance_score, verdict.relevance_score),
                    reason=verdict.reason,
                ))
            else:
                enhanced.append(file)

        enhanced.extend(files[HYBRID_ENHANCE_TOP_K:])
        enhanced.sort(key=lambda c: c.relevance_score, reverse=True)
        return enhanced

    def _annotate_with_fallback(
        self, context: AnalysisContext, files: list[FileCandidate]
    ) -> list[FileCandidate]:
        """Attach keyword-match reasons without changing scores or order."""
        for file in files:
            if file.reason or not file.content:
                continue
            verdict = self.fallback.analyze_code_relevance(context.description, file.path, file.content)
            if verdict.is_relevant:
                file.reason = verdict.reason
        return files

    async def find_relevant_symbols(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[SymbolCandidate]:
        rule_symbols = await self.rule_strategy.find_relevant_symbols(context, keywords)
        if not self.oracle_available:
            return rule_symbols
        oracle_symbols = await self.oracle_strategy.find_relevant_symbols(context, keywords)
        return merge_symbols(oracle_symbols, rule_symbols)

    async def find_relevant_apis(
        self, context: AnalysisContext, keywords: SearchKeywords
    ) -> list[ApiCandidate]:
        rule_apis = await self.rule_strategy.find_relevant_apis(context, keywords)
        if not self.oracle_available:
            return rule_apis
        oracle_apis = await self.oracle_strategy.find_relevant_apis(context, keywords)
        return merge_apis(oracle_apis, rule_apis)

    def calculate_confidence(self, result: AnalysisResult) -> float:
        bonus = ORACLE_CONFIDENCE_BONUS if self.oracle_available else 0.0
        return min(base_confidence(result) + bonus, 1.0)
