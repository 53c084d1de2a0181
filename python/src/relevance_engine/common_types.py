"""
Common types shared by the relevance analysis components.

Contains:
- Enums: SymbolKind (LSP symbol kinds 1-26)
- Inputs: IssueDescription, UrlContent, SymbolInfo
- Keywords: FilePriority, SearchKeywords
- Results: FileCandidate, SymbolCandidate, ApiCandidate, Suggestion, AnalysisResult
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class SymbolKind(IntEnum):
    FILE = 1
    MODULE = 2
    NAMESPACE = 3
    PACKAGE = 4
    CLASS = 5
    METHOD = 6
    PROPERTY = 7
    FIELD = 8
    CONSTRUCTOR = 9
    ENUM = 10
    INTERFACE = 11
    FUNCTION = 12
    VARIABLE = 13
    CONSTANT = 14
    STRING = 15
    NUMBER = 16
    BOOLEAN = 17
    ARRAY = 18
    OBJECT = 19
    KEY = 20
    NULL = 21
    ENUM_MEMBER = 22
    STRUCT = 23
    EVENT = 24
    OPERATOR = 25
    TYPE_PARAMETER = 26


_KIND_NAMES = {
    SymbolKind.ENUM_MEMBER: "EnumMember",
    SymbolKind.TYPE_PARAMETER: "TypeParameter",
}


def symbol_kind_name(kind: int) -> str:
    """Human readable name for an LSP symbol kind, 'Unknown' if out of range."""
    try:
        member = SymbolKind(kind)
    except ValueError:
        return "Unknown"
    return _KIND_NAMES.get(member, member.name.capitalize())


@dataclass
class UrlContent:
    """Text fetched from a URL referenced by the issue."""
    url: str
    content: str = ""
    title: str = ""
    status: str = "success"


@dataclass
class IssueDescription:
    """The natural-language problem statement driving one analysis."""
    title: str
    body: str = ""
    labels: list[str] = field(default_factory=list)
    url_contents: list[UrlContent] = field(default_factory=list)
    number: int | None = None

    @property
    def successful_urls(self) -> list[UrlContent]:
        return [u for u in self.url_contents if u.status == "success" and u.content]

    def to_text(self) -> str:
        """Title, body and label names joined as one searchable text."""
        parts = [self.title, self.body or ""]
        if self.labels:
            parts.append(" ".join(self.labels))
        return " ".join(p for p in parts if p)

    @classmethod
    def from_text(cls, text: str) -> "IssueDescription":
        return cls(title=text)


@dataclass
class SymbolInfo:
    """One precomputed entry of the workspace symbol table."""
    name: str
    qualified_name: str = ""
    kind: int = 0
    file_path: str = ""
    comment: str = ""
    start_line: int = 0
    start_column: int = 0
    end_line: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SymbolInfo":
        """Build from symbol-table JSON (camelCase or snake_case keys)."""
        position = data.get("position") or {}
        start = position.get("start") or {}
        end = position.get("end") or {}
        return cls(
            name=str(data.get("name", "")),
            qualified_name=str(data.get("qualifiedName", data.get("qualified_name", "")) or ""),
            kind=int(data.get("kind", 0) or 0),
            file_path=str(data.get("filePath", data.get("file_path", "")) or ""),
            comment=str(data.get("comment", "") or ""),
            start_line=int(start.get("line", data.get("start_line", 0)) or 0),
            start_column=int(start.get("column", data.get("start_column", 0)) or 0),
            end_line=int(end.get("line", data.get("end_line", 0)) or 0),
        )


@dataclass
class FilePriority:
    """A (pattern, score 1-10, reason) hint biasing candidate filtering."""
    pattern: str
    score: int = 5
    reason: str = ""

    def matches(self, path: str) -> bool:
        return bool(self.pattern) and self.pattern.lower() in path.lower()

    def to_dict(self) -> dict:
        return {"pattern": self.pattern, "score": self.score, "reason": self.reason}


@dataclass
class SearchKeywords:
    """Keyword tiers extracted from a description, consumed read-only by scoring."""
    primary: list[str] = field(default_factory=list)
    secondary: list[str] = field(default_factory=list)
    technical: list[str] = field(default_factory=list)
    contextual: list[str] = field(default_factory=list)
    priorities: list[FilePriority] = field(default_factory=list)
    issue_type: str = "general"

    def all_keywords(self) -> list[str]:
        """Every keyword across tiers, first occurrence wins."""
        seen: dict[str, None] = {}
        for word in self.primary + self.secondary + self.technical + self.contextual:
            seen.setdefault(word, None)
        return list(seen)

    @property
    def total(self) -> int:
        return len(self.primary) + len(self.secondary) + len(self.technical) + len(self.contextual)

    def to_dict(self) -> dict:
        return {
            "primary": list(self.primary),
            "secondary": list(self.secondary),
            "technical": list(self.technical),
            "contextual": list(self.contextual),
            "priorities": [p.to_dict() for p in self.priorities],
            "issue_type": self.issue_type,
        }


@dataclass
class FileCandidate:
    """A file under consideration; content is loaded lazily."""
    path: str
    relevance_score: float = 0.0
    content: str | None = None
    reason: str | None = None

    def to_dict(self, include_content: bool = False) -> dict:
        result: dict[str, Any] = {
            "path": self.path,
            "relevance_score": round(self.relevance_score, 4),
        }
        if self.reason:
            result["reason"] = self.reason
        if include_content and self.content is not None:
            result["content"] = self.content
        return result


@dataclass
class SymbolLocation:
    file: str
    line: int
    column: int = 0


@dataclass
class SymbolCandidate:
    name: str
    type: str
    location: SymbolLocation
    description: str | None = None
    score: float = 0.0

    @property
    def key(self) -> str:
        return f"{self.name}:{self.location.file}:{self.location.line}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "location": {
                "file": self.location.file,
                "line": self.location.line,
                "column": self.location.column,
            },
            "description": self.description,
        }


@dataclass
class ApiCandidate:
    path: str
    method: str
    description: str | None = None
    score: float = 0.0

    @property
    def key(self) -> str:
        return f"{self.method}:{self.path}"

    def to_dict(self) -> dict:
        return {"path": self.path, "method": self.method, "description": self.description}


@dataclass
class Suggestion:
    """A next-step pointer derived from an analysis result."""
    type: str  # file | symbol | api
    description: str
    location: str | None = None
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "description": self.description,
            "location": self.location,
            "confidence": round(self.confidence, 4),
        }


@dataclass
class AnalysisResult:
    """The externally visible output of one analysis."""
    files: list[FileCandidate] = field(default_factory=list)
    symbols: list[SymbolCandidate] = field(default_factory=list)
    apis: list[ApiCandidate] = field(default_factory=list)
    confidence: float = 0.0
    strategy_name: str = ""
    keywords: SearchKeywords | None = None
    suggestions: list[Suggestion] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "files": [f.to_dict() for f in self.files],
            "symbols": [s.to_dict() for s in self.symbols],
            "apis": [a.to_dict() for a in self.apis],
            "confidence": round(self.confidence, 4),
            "strategy": self.strategy_name,
            "keywords": self.keywords.to_dict() if self.keywords else None,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }
