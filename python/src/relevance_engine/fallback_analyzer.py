"""
Fallback Analyzer for relevance checks

When the oracle is unavailable, this provides a graceful degradation to
keyword matching: a file is judged by how many of the issue's basic keywords
appear in its content. It answers with the same RelevanceVerdict type the
oracle returns, so callers do not care which one produced it.

It is less precise than the oracle but always produces a result.
"""

from .common_types import IssueDescription
from .keyword_extraction import extract_basic_keywords
from .oracle_client import RelevanceVerdict


# Scoring constants
MAX_KEYWORDS_CHECKED = 10
SCORE_NORMALIZER = 5
RELEVANCE_THRESHOLD = 0.2
FALLBACK_CONFIDENCE = 0.4


class FallbackAnalyzer:
    """Keyword-matching stand-in for the oracle's per-file relevance check."""

    def match_keywords(self, issue_text: str, content: str) -> list[str]:
        """Basic issue keywords (first MAX_KEYWORDS_CHECKED) present in content."""
        keywords = extract_basic_keywords(issue_text)[:MAX_KEYWORDS_CHECKED]
        content_lower = content.lower()
        return [k for k in keywords if k in content_lower]

    def analyze_code_relevance(
        self,
        description: IssueDescription,
        file_path: str,
        content: str,
    ) -> RelevanceVerdict:
        issue_text = f"{description.title} {description.body or ''}"
        found = self.match_keywords(issue_text, content)

        score = min(len(found) / SCORE_NORMALIZER, 1.0)
        is_relevant = score > RELEVANCE_THRESHOLD
        if is_relevant:
            reason = f"File contains {len(found)} keywords from the issue: {', '.join(found)}"
        else:
            reason = "File does not contain significant keywords from the issue"

        return RelevanceVerdict(
            is_relevant=is_relevant,
            relevance_score=score,
            reason=reason,
            specific_areas=[f"Keywords found: {', '.join(found)}"] if found else [],
            confidence=FALLBACK_CONFIDENCE,
        )
