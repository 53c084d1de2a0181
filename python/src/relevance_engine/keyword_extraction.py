"""
Rule-based keyword extraction.

Turns a free-text description into keyword tiers with regexes and a
stopword list; no external calls. Every extractor deduplicates and caps
its output so downstream scoring cost stays bounded.

Tiers:
- primary: frequent non-stopword tokens
- secondary: camelCase / PascalCase / snake_case identifiers
- technical: file names, language keywords, framework and tool names
- contextual: quoted text, versions, ALL_CAPS constants, error phrases
"""

import re
from collections import Counter

from .common_types import SearchKeywords


# Per-tier caps
MAX_PRIMARY_KEYWORDS = 10
MAX_SECONDARY_KEYWORDS = 15
MAX_TECHNICAL_TERMS = 8
MAX_CONTEXTUAL_KEYWORDS = 10

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had", "her",
    "was", "one", "our", "out", "day", "get", "has", "him", "his", "how", "its",
    "may", "new", "now", "old", "see", "two", "who", "boy", "did", "man", "way",
    "she", "use", "this", "that", "with", "have", "from", "they", "know", "want",
    "been", "good", "much", "some", "time", "very", "when", "come", "here", "just",
    "like", "long", "make", "many", "over", "such", "take", "than", "them", "well",
    "were",
})

_WORD_RE = re.compile(r"\b\w{3,}\b")

SECONDARY_PATTERNS = [
    re.compile(r"\b[a-z][a-zA-Z0-9]*[A-Z][a-zA-Z0-9]*\b"),  # camelCase
    re.compile(r"\b[a-z]+_[a-z_]+\b"),  # snake_case
    re.compile(r"\b[A-Z][a-zA-Z0-9]*\b"),  # PascalCase
]

TECHNICAL_PATTERNS = [
    re.compile(r"\b\w+\.(?:js|ts|jsx|tsx|py|java|go|rs|cpp|c|h|cs|php|rb|md)\b"),
    re.compile(
        r"\b(?:function|class|interface|method|api|endpoint|route|component|service|controller|"
        r"model|view|database|table|column|field|property|attribute|parameter|argument|variable|"
        r"constant|enum|struct|union|namespace|package|module|import|export|async|await|promise|"
        r"callback|event|listener|handler|middleware|decorator|annotation|generic|template|"
        r"abstract|static|final|private|public|protected|override|virtual|extends|implements|"
        r"inherits|throws|catch|try|finally|if|else|switch|case|default|for|while|do|break|"
        r"continue|return|yield|new|delete|this|super|null|undefined|true|false)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:react|vue|angular|node|express|spring|django|flask|rails|laravel|symfony|asp\.net|"
        r"blazor|xamarin|flutter|ionic|cordova|electron|webpack|vite|rollup|babel|typescript|"
        r"javascript|python|java|kotlin|swift|objective-c|c\+\+|c#|go|rust|php|ruby|scala|clojure|"
        r"haskell|erlang|elixir|dart|lua|perl|r|matlab|julia|fortran|cobol|assembly|sql|nosql|"
        r"mongodb|postgresql|mysql|sqlite|redis|elasticsearch|docker|kubernetes|aws|azure|gcp|"
        r"firebase|heroku|vercel|netlify|github|gitlab|bitbucket|jenkins|travis|circleci|jest|"
        r"mocha|jasmine|cypress|selenium|puppeteer|playwright|storybook)\b",
        re.IGNORECASE,
    ),
]

CONTEXTUAL_PATTERNS = [
    re.compile(r'"[^"]+"'),
    re.compile(r"'[^']+'"),
    re.compile(r"`[^`]+`"),
    re.compile(r"\b\d+\.\d+\.\d+\b"),  # version numbers
    re.compile(r"\b[A-Z_]{3,}\b"),  # constants
    re.compile(r"\berror\s*:\s*[^\n]+", re.IGNORECASE),
    re.compile(r"\bfailed\s*:\s*[^\n]+", re.IGNORECASE),
]

KEY_TERM_PATTERNS = [
    re.compile(r'"[^"]+"|\'[^\']+\''),
    re.compile(r"error[:\s]+[^\n.!?]+", re.IGNORECASE),
    re.compile(r"\b[a-zA-Z][a-zA-Z0-9_]*[A-Z][a-zA-Z0-9_]*\b"),  # camelCase / PascalCase
]

# Checked in order; the first matching category wins
ISSUE_TYPE_RULES = [
    ("bug", ("bug", "error", "fail", "crash")),
    ("feature", ("feature", "enhancement", "add", "implement")),
    ("performance", ("performance", "slow", "optimize")),
    ("testing", ("test", "spec", "coverage")),
    ("documentation", ("doc", "readme", "comment")),
    ("security", ("security", "vulnerability", "auth")),
]


def _unique(items) -> list[str]:
    return list(dict.fromkeys(items))


def _find_all(patterns: list[re.Pattern], text: str) -> list[str]:
    found: list[str] = []
    for pattern in patterns:
        found.extend(m.group(0) for m in pattern.finditer(text))
    return found


def extract_basic_keywords(text: str) -> list[str]:
    """Lowercased non-stopword tokens longer than 3 chars, first occurrence order."""
    words = _WORD_RE.findall(text.lower())
    return _unique(
        w for w in words if w not in STOP_WORDS and len(w) > 3 and not w.isdigit()
    )


def extract_primary_keywords(text: str, limit: int = MAX_PRIMARY_KEYWORDS) -> list[str]:
    """Most frequent basic keywords; ties keep first-occurrence order."""
    words = [
        w for w in _WORD_RE.findall(text.lower())
        if w not in STOP_WORDS and len(w) > 3 and not w.isdigit()
    ]
    counts = Counter(words)
    order = {w: i for i, w in reversed(list(enumerate(words)))}
    ranked = sorted(counts, key=lambda w: (-counts[w], order[w]))
    return ranked[:limit]


def extract_secondary_keywords(text: str, limit: int = MAX_SECONDARY_KEYWORDS) -> list[str]:
    return _unique(_find_all(SECONDARY_PATTERNS, text))[:limit]


def extract_technical_terms(text: str, limit: int | None = MAX_TECHNICAL_TERMS) -> list[str]:
    terms = _unique(m.lower() for m in _find_all(TECHNICAL_PATTERNS, text))
    return terms if limit is None else terms[:limit]


def extract_contextual_keywords(text: str, limit: int = MAX_CONTEXTUAL_KEYWORDS) -> list[str]:
    cleaned = (re.sub(r"[\"'` ]", "", m) for m in _find_all(CONTEXTUAL_PATTERNS, text))
    return _unique(c for c in cleaned if len(c) > 2)[:limit]


def extract_key_terms(text: str) -> list[str]:
    """Quoted strings, error phrases and mixed-case identifiers, lowercased."""
    terms = (re.sub(r"[\"']", "", m).lower() for m in _find_all(KEY_TERM_PATTERNS, text))
    return _unique(t for t in terms if len(t) > 3)


def detect_issue_type(text: str) -> str:
    lowered = text.lower()
    for issue_type, markers in ISSUE_TYPE_RULES:
        if any(marker in lowered for marker in markers):
            return issue_type
    return "general"


def extract_keywords(text: str) -> SearchKeywords:
    """All four tiers for a description, each deduplicated and capped."""
    return SearchKeywords(
        primary=extract_primary_keywords(text),
        secondary=extract_secondary_keywords(text),
        technical=extract_technical_terms(text),
        contextual=extract_contextual_keywords(text),
        issue_type=detect_issue_type(text),
    )
