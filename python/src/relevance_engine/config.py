"""
Configuration for the Relevance Analysis Engine

Environment Variables:
- RELEVANCE_API_KEY: Oracle API key (falls back to OPENROUTER_API_KEY)
- RELEVANCE_MODEL: Model used by the relevance oracle (default: google/gemini-2.5-flash-lite)
- RELEVANCE_ORACLE_ENABLED: Set to "false" to force rule-based analysis
- RELEVANCE_STRATEGY: auto | oracle | hybrid | rule (default: auto)
- RELEVANCE_SEARCH_PROVIDER: ripgrep | filesystem | hybrid (default: hybrid)
- RELEVANCE_CACHE_TTL / RELEVANCE_FILE_CACHE_TTL: Cache lifetimes in seconds

OpenRouter:
- Uses OpenAI-compatible API at https://openrouter.ai/api/v1
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Set
from dotenv import load_dotenv

load_dotenv()


# Default model (OpenRouter model ID)
DEFAULT_MODEL = "google/gemini-2.5-flash-lite"

StrategyType = Literal["auto", "oracle", "hybrid", "rule"]
SearchProviderType = Literal["ripgrep", "filesystem", "hybrid"]

VALID_STRATEGIES = ("auto", "oracle", "hybrid", "rule")
VALID_SEARCH_PROVIDERS = ("ripgrep", "filesystem", "hybrid")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class CacheConfig:
    """Lifetimes and bounds for the in-memory cache (seconds)."""

    default_ttl: float = field(
        default_factory=lambda: float(os.getenv("RELEVANCE_CACHE_TTL", "300"))
    )
    file_cache_ttl: float = field(
        default_factory=lambda: float(os.getenv("RELEVANCE_FILE_CACHE_TTL", "120"))
    )
    max_size: int = field(
        default_factory=lambda: int(os.getenv("RELEVANCE_CACHE_MAX_SIZE", "1000"))
    )
    # 0 disables the background sweeper; expiry is still enforced lazily
    cleanup_interval: float = field(
        default_factory=lambda: float(os.getenv("RELEVANCE_CACHE_CLEANUP_INTERVAL", "60"))
    )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.default_ttl <= 0:
            errors.append("default_ttl must be positive")

        if self.file_cache_ttl <= 0:
            errors.append("file_cache_ttl must be positive")

        if self.max_size < 1:
            errors.append("max_size must be at least 1")

        if self.cleanup_interval < 0:
            errors.append("cleanup_interval cannot be negative")

        return errors


@dataclass
class AnalyzerConfig:
    """Configuration for relevance analysis."""

    # Oracle configuration (OpenRouter)
    api_key: str = field(
        default_factory=lambda: os.getenv("RELEVANCE_API_KEY") or os.getenv("OPENROUTER_API_KEY", "")
    )
    api_base_url: str = field(
        default_factory=lambda: os.getenv("RELEVANCE_API_BASE_URL", "https://openrouter.ai/api/v1")
    )
    model: str = field(default_factory=lambda: os.getenv("RELEVANCE_MODEL", DEFAULT_MODEL))
    oracle_enabled: bool = field(
        default_factory=lambda: _env_bool("RELEVANCE_ORACLE_ENABLED", "true")
    )
    oracle_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("RELEVANCE_ORACLE_TIMEOUT", "30"))
    )
    keyword_temperature: float = 0.3
    relevance_temperature: float = 0.2

    # Strategy and search backend selection
    strategy: StrategyType = field(
        default_factory=lambda: os.getenv("RELEVANCE_STRATEGY", "auto")  # type: ignore
    )
    search_provider: SearchProviderType = field(
        default_factory=lambda: os.getenv("RELEVANCE_SEARCH_PROVIDER", "hybrid")  # type: ignore
    )
    ripgrep_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("RELEVANCE_RIPGREP_TIMEOUT", "60"))
    )

    # Candidate pipeline limits
    max_files_to_analyze: int = field(
        default_factory=lambda: int(os.getenv("RELEVANCE_MAX_FILES", "8"))
    )
    oracle_batch_size: int = 3
    max_listed_files: int = field(
        default_factory=lambda: int(os.getenv("RELEVANCE_MAX_LISTED_FILES", "5000"))
    )
    analysis_cache_ttl_seconds: float = 600.0

    # File listing configuration
    included_extensions: Set[str] = field(default_factory=lambda: {
        # Code files
        ".py", ".js", ".ts", ".jsx", ".tsx", ".go", ".rs", ".java",
        ".c", ".cpp", ".h", ".hpp", ".rb", ".php", ".swift", ".kt",
        ".scala", ".cs", ".vue", ".svelte",
        # Config files
        ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".prisma",
        # Documentation
        ".md", ".txt", ".rst",
        # Other
        ".sql", ".graphql", ".proto", ".sh",
    })

    skipped_directories: Set[str] = field(default_factory=lambda: {
        ".git", "node_modules", "__pycache__", "venv", ".venv",
        "dist", "build", ".next", ".nuxt", "target", "vendor", ".cache",
        ".idea", ".vscode", "coverage", ".nyc_output", "*.egg-info",
        ".tox", ".pytest_cache", ".mypy_cache", ".ruff_cache",
    })

    cache: CacheConfig = field(default_factory=CacheConfig)

    @property
    def oracle_configured(self) -> bool:
        """True when the oracle may be called at all."""
        return self.oracle_enabled and bool(self.api_key)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.oracle_enabled and not self.api_key:
            errors.append(
                "RELEVANCE_API_KEY / OPENROUTER_API_KEY not set; oracle analysis will be skipped"
            )

        if self.strategy not in VALID_STRATEGIES:
            errors.append(f"strategy must be one of {', '.join(VALID_STRATEGIES)}")

        if self.search_provider not in VALID_SEARCH_PROVIDERS:
            errors.append(f"search_provider must be one of {', '.join(VALID_SEARCH_PROVIDERS)}")

        if self.max_files_to_analyze < 1:
            errors.append("max_files_to_analyze must be at least 1")

        if self.oracle_batch_size < 1:
            errors.append("oracle_batch_size must be at least 1")

        if self.oracle_timeout_seconds <= 0:
            errors.append("oracle_timeout_seconds must be positive")

        errors.extend(self.cache.validate())
        return errors


def get_config() -> AnalyzerConfig:
    """Get a configuration instance built from the environment."""
    return AnalyzerConfig()
