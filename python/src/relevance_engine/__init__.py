"""
Relevance Engine

Locates the parts of a source repository most relevant to a natural-language
problem description and returns ranked files, symbols and API endpoints.

Pipeline:
- Keyword extraction: rule-based regex tiers, or an external oracle
- Candidate scoring: cheap path phase, then content phase for a shortlist
- Search: ripgrep with an in-process scanner fallback
- Strategies: oracle, hybrid and rule-based, selected once per call

Oracle failures always degrade to rule-based behaviour; analysis never
fails because a collaborator did.
"""

__version__ = "0.3.0"

from .cache_manager import CacheManager, FileCacheManager
from .common_types import AnalysisResult, FilePriority, IssueDescription, SearchKeywords, SymbolInfo
from .config import AnalyzerConfig, CacheConfig, get_config
from .keyword_extraction import extract_keywords
from .oracle_client import RelevanceOracle
from .orchestrator import RelevanceAnalyzer

__all__ = [
    "RelevanceAnalyzer",
    "RelevanceOracle",
    "AnalyzerConfig",
    "CacheConfig",
    "get_config",
    "CacheManager",
    "FileCacheManager",
    "AnalysisResult",
    "FilePriority",
    "IssueDescription",
    "SearchKeywords",
    "SymbolInfo",
    "extract_keywords",
]
