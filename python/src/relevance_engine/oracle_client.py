"""
Relevance oracle client.

Asks an OpenAI-compatible model (OpenRouter by default) two questions:
- analyze_for_keywords: which keywords, components and file patterns matter
  for this issue
- analyze_code_relevance: is this particular file relevant to the issue

Responses are never trusted as-is. The first {...} block is parsed, every
field is type-checked, lists are capped and scores are clamped. Anything that
fails validation raises OracleResponseError, which callers treat exactly like
an unreachable oracle.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx
from openai import AsyncOpenAI

from .cache_manager import CacheKeyGenerator, CacheManager
from .common_types import FilePriority, IssueDescription, SearchKeywords
from .config import AnalyzerConfig
from .exceptions import OracleError, OracleResponseError, OracleUnavailableError


logger = logging.getLogger(__name__)

# Response caps
MAX_ORACLE_PRIMARY = 10
MAX_ORACLE_TECHNICAL = 15
MAX_ORACLE_ERRORS = 8
MAX_ORACLE_COMPONENTS = 10
MAX_ORACLE_FILE_PATTERNS = 8
MAX_ORACLE_STRATEGIES = 10
MAX_ORACLE_PRIORITIES = 10

# Tier caps when oracle output becomes SearchKeywords
ORACLE_TIER_CAPS = {"primary": 10, "secondary": 10, "technical": 15, "contextual": 20}

URL_EXCERPT_CHARS_KEYWORDS = 1000
URL_EXCERPT_CHARS_RELEVANCE = 800
MAX_CONTENT_CHARS = 3000

KEYWORD_SYSTEM_PROMPT = (
    "You are an expert code analyst. Analyze issue reports and extract relevant "
    "keywords for code search. Always respond with valid JSON."
)
RELEVANCE_SYSTEM_PROMPT = (
    "You are an expert code analyst. Decide whether a source file is relevant to "
    "an issue report. Always respond with valid JSON."
)

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(value: Any, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()][:limit]


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Parse the first {...} block of a model response.

    Raises:
        OracleResponseError: no block, invalid JSON, or not an object
    """
    match = _JSON_BLOCK_RE.search(text or "")
    if not match:
        raise OracleResponseError("No JSON found in response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"Invalid JSON in response: {e}")
    if not isinstance(parsed, dict):
        raise OracleResponseError("Response JSON is not an object")
    return parsed


@dataclass
class KeywordAnalysis:
    """Validated keyword analysis of an issue."""
    primary_keywords: list[str] = field(default_factory=list)
    technical_terms: list[str] = field(default_factory=list)
    error_patterns: list[str] = field(default_factory=list)
    component_names: list[str] = field(default_factory=list)
    file_patterns: list[str] = field(default_factory=list)
    search_strategies: list[str] = field(default_factory=list)
    file_priorities: list[FilePriority] = field(default_factory=list)
    issue_type: str = "general"
    confidence: float = 0.5

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "KeywordAnalysis":
        """
        Validate a decoded oracle response.

        primary_keywords must be present and non-empty; every other field falls
        back to a default when missing or mistyped.
        """
        primary = _string_list(payload.get("primary_keywords"), MAX_ORACLE_PRIMARY)
        if not primary:
            raise OracleResponseError("primary_keywords missing or empty")

        priorities = []
        raw_priorities = payload.get("file_priorities")
        if isinstance(raw_priorities, list):
            for item in raw_priorities[:MAX_ORACLE_PRIORITIES]:
                if not isinstance(item, dict):
                    continue
                pattern = item.get("pattern") if isinstance(item.get("pattern"), str) else ""
                if not pattern:
                    continue
                score = item.get("score")
                priorities.append(FilePriority(
                    pattern=pattern,
                    score=int(round(_clamp(score, 1, 10))) if _is_number(score) else 5,
                    reason=item.get("reason") if isinstance(item.get("reason"), str) else "",
                ))

        confidence = payload.get("confidence")
        issue_type = payload.get("issue_type")
        return cls(
            primary_keywords=primary,
            technical_terms=_string_list(payload.get("technical_terms"), MAX_ORACLE_TECHNICAL),
            error_patterns=_string_list(payload.get("error_patterns"), MAX_ORACLE_ERRORS),
            component_names=_string_list(payload.get("component_names"), MAX_ORACLE_COMPONENTS),
            file_patterns=_string_list(payload.get("file_patterns"), MAX_ORACLE_FILE_PATTERNS),
            search_strategies=_string_list(payload.get("search_strategies"), MAX_ORACLE_STRATEGIES),
            file_priorities=priorities,
            issue_type=issue_type if isinstance(issue_type, str) and issue_type else "general",
            confidence=_clamp(confidence, 0.0, 1.0) if _is_number(confidence) else 0.5,
        )

    def to_search_keywords(self) -> SearchKeywords:
        def tier(items: list[str], name: str) -> list[str]:
            return list(dict.fromkeys(items))[:ORACLE_TIER_CAPS[name]]

        return SearchKeywords(
            primary=tier(self.primary_keywords, "primary"),
            secondary=tier(self.component_names, "secondary"),
            technical=tier(self.technical_terms, "technical"),
            contextual=tier(
                self.error_patterns + self.file_patterns + self.search_strategies, "contextual"
            ),
            priorities=list(self.file_priorities),
            issue_type=self.issue_type,
        )


@dataclass
class RelevanceVerdict:
    """Validated per-file relevance judgement."""
    is_relevant: bool
    relevance_score: float
    reason: str = "No reason provided"
    specific_areas: list[str] = field(default_factory=list)
    confidence: float = 0.5

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RelevanceVerdict":
        is_relevant = payload.get("is_relevant")
        if not isinstance(is_relevant, bool):
            raise OracleResponseError("is_relevant missing or not a boolean")

        score = payload.get("relevance_score")
        reason = payload.get("reason")
        confidence = payload.get("confidence")
        return cls(
            is_relevant=is_relevant,
            relevance_score=_clamp(score, 0.0, 1.0) if _is_number(score) else 0.5,
            reason=reason if isinstance(reason, str) and reason else "No reason provided",
            specific_areas=_string_list(payload.get("specific_areas"), 20),
            confidence=_clamp(confidence, 0.0, 1.0) if _is_number(confidence) else 0.5,
        )


def _url_context(description: IssueDescription, max_chars: int) -> str:
    urls = description.successful_urls
    if not urls:
        return ""
    lines = ["", "**Additional Context from URLs:**"]
    for index, url in enumerate(urls, 1):
        excerpt = url.content[:max_chars] + ("..." if len(url.content) > max_chars else "")
        lines.append(f"{index}. **{url.title or url.url}** ({url.url})")
        lines.append(excerpt)
    return "\n".join(lines)


def build_keyword_prompt(description: IssueDescription) -> str:
    labels = ", ".join(description.labels) or "None"
    return f"""Analyze this issue and extract keywords for code search:

**Issue Title:** {description.title}
**Issue Body:** {description.body or 'No description provided'}
**Labels:** {labels}
{_url_context(description, URL_EXCERPT_CHARS_KEYWORDS)}

Respond with a JSON object containing:
1. "primary_keywords": main concepts, feature names, error types (5-10 words)
2. "technical_terms": programming terms, frameworks, libraries, file extensions (5-15 words)
3. "error_patterns": error messages, exception types, error codes (3-8 phrases)
4. "component_names": likely class, function and module names (3-10 words)
5. "file_patterns": likely file names or directory patterns (3-8 patterns)
6. "search_strategies": search terms that would find related code (5-10 terms)
7. "file_priorities": list of {{"pattern", "score" (1-10), "reason"}} objects;
   10 = must analyze, 7-9 = likely relevant, 4-6 = maybe relevant, 1-3 = context only
8. "issue_type": one of "bug", "feature", "performance", "documentation", "testing", "security", "refactor"
9. "confidence": number between 0.0 and 1.0

Respond only with valid JSON."""


def build_relevance_prompt(description: IssueDescription, file_path: str, content: str) -> str:
    if len(content) > MAX_CONTENT_CHARS:
        content = content[:MAX_CONTENT_CHARS] + "\n... (content truncated)"
    return f"""Decide whether this file is relevant to the issue.

**Issue Title:** {description.title}
**Issue Body:** {description.body or 'No description provided'}
{_url_context(description, URL_EXCERPT_CHARS_RELEVANCE)}

**File:** {file_path}
```
{content}
```

Respond with a JSON object containing:
- "is_relevant": true or false
- "relevance_score": number between 0.0 and 1.0
- "reason": one sentence explaining the decision
- "specific_areas": functions, classes or line ranges that matter
- "confidence": number between 0.0 and 1.0

Respond only with valid JSON."""


class RelevanceOracle:
    """
    Async client for the relevance oracle.

    The HTTP transport is created on first use, so an unconfigured oracle
    never opens a connection.
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        client: Any | None = None,
        cache: CacheManager | None = None,
    ):
        self.config = config or AnalyzerConfig()
        self.cache = cache
        self._client = client
        self._http_client: httpx.AsyncClient | None = None
        self._call_count = 0

    @property
    def call_count(self) -> int:
        return self._call_count

    def is_available(self) -> bool:
        """True when the oracle is enabled and has credentials (or an injected client)."""
        if self._client is not None:
            return self.config.oracle_enabled
        return self.config.oracle_configured

    def _get_client(self) -> Any:
        if self._client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.oracle_timeout_seconds),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.api_base_url,
                http_client=self._http_client,
            )
        return self._client

    async def _complete(self, system: str, prompt: str, temperature: float) -> str:
        """
        One chat completion with timeout.

        Raises:
            OracleUnavailableError: disabled, unconfigured, timed out or transport failure
        """
        if not self.is_available():
            raise OracleUnavailableError("oracle disabled or not configured")

        cache_key = CacheKeyGenerator.llm(self.config.model, f"{system}\n{prompt}")
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        self._call_count += 1
        try:
            response = await asyncio.wait_for(
                self._get_client().chat.completions.create(
                    model=self.config.model,
                    temperature=temperature,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                ),
                timeout=self.config.oracle_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise OracleUnavailableError(
                f"oracle call timed out after {self.config.oracle_timeout_seconds}s"
            )
        except OracleError:
            raise
        except Exception as e:
            raise OracleUnavailableError(f"oracle call failed: {type(e).__name__}: {e}")

        text = response.choices[0].message.content if response.choices else ""
        if not text:
            raise OracleResponseError("empty response")
        if self.cache is not None:
            self.cache.set(cache_key, text, tags=["llm"])
        return text

    async def analyze_for_keywords(self, description: IssueDescription) -> KeywordAnalysis:
        """
        Keyword analysis for an issue.

        Raises:
            OracleError: on any transport or validation failure
        """
        text = await self._complete(
            KEYWORD_SYSTEM_PROMPT,
            build_keyword_prompt(description),
            self.config.keyword_temperature,
        )
        analysis = KeywordAnalysis.from_payload(extract_json_object(text))
        logger.debug(
            f"Oracle keywords: {len(analysis.primary_keywords)} primary, "
            f"{len(analysis.file_priorities)} priorities, type={analysis.issue_type}"
        )
        return analysis

    async def analyze_code_relevance(
        self,
        description: IssueDescription,
        file_path: str,
        content: str,
    ) -> RelevanceVerdict:
        """
        Relevance verdict for one file.

        Raises:
            OracleError: on any transport or validation failure
        """
        text = await self._complete(
            RELEVANCE_SYSTEM_PROMPT,
            build_relevance_prompt(description, file_path, content),
            self.config.relevance_temperature,
        )
        return RelevanceVerdict.from_payload(extract_json_object(text))

    async def close(self) -> None:
        """Close the HTTP transport if one was opened."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
