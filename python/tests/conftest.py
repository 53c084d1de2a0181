"""
Pytest configuration and fixtures for relevance engine tests.
"""

import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from relevance_engine.cache_manager import FileCacheManager
from relevance_engine.config import AnalyzerConfig, CacheConfig
from relevance_engine.oracle_client import KEYWORD_SYSTEM_PROMPT


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def cache_config() -> CacheConfig:
    """Cache configuration without the background sweeper."""
    return CacheConfig(cleanup_interval=0)


@pytest.fixture
def analyzer_config(cache_config: CacheConfig) -> AnalyzerConfig:
    """Configuration with the oracle disabled and the in-process scanner."""
    return AnalyzerConfig(
        api_key="",
        oracle_enabled=False,
        strategy="auto",
        search_provider="filesystem",
        cache=cache_config,
    )


@pytest.fixture
def oracle_config(cache_config: CacheConfig) -> AnalyzerConfig:
    """Configuration with the oracle enabled (transport is always faked)."""
    return AnalyzerConfig(
        api_key="test-api-key",
        oracle_enabled=True,
        oracle_timeout_seconds=5,
        strategy="auto",
        search_provider="filesystem",
        cache=cache_config,
    )


@pytest.fixture
def file_cache(cache_config: CacheConfig) -> Generator[FileCacheManager, None, None]:
    """Create a FileCacheManager and destroy it afterwards."""
    cache = FileCacheManager(cache_config)
    yield cache
    cache.destroy()


def write_files(root: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def user_service_workspace(temp_dir: Path) -> Path:
    """Workspace for the NullPointerException-in-UserService.login scenario."""
    write_files(temp_dir, {
        "src/services/UserService.ts": """export class UserService {
  async login(email: string, password: string) {
    const user = await this.repository.findByEmail(email);
    return user.session;
  }
}
""",
        "src/services/UserService.test.ts": """describe('accounts', () => {
  it('creates an account', () => {
    expect(createAccount()).toBeDefined();
  });
});
""",
        "README.md": """# Sample Project

Documentation for the sample project.
""",
    })
    return temp_dir


@pytest.fixture
def auth_workspace(temp_dir: Path) -> Path:
    """Workspace with one auth file and one unrelated utility file."""
    write_files(temp_dir, {
        "src/auth/login.ts": """export function login(user) {
  return checkPassword(user);
}
""",
        "src/misc/utils.ts": """export const pad = (s) => s.padStart(2, '0');
""",
    })
    return temp_dir


@pytest.fixture
def symbol_table() -> list[dict]:
    """Precomputed symbol table entries in the camelCase wire shape."""
    return [
        {
            "name": "UserService",
            "qualifiedName": "services.UserService",
            "kind": 5,
            "filePath": "src/services/UserService.ts",
            "comment": "Handles user accounts",
            "position": {"start": {"line": 1, "column": 0}, "end": {"line": 6, "column": 1}},
        },
        {
            "name": "login",
            "qualifiedName": "services.UserService.login",
            "kind": 6,
            "filePath": "src/services/UserService.ts",
            "comment": "",
            "position": {"start": {"line": 2, "column": 2}, "end": {"line": 5, "column": 3}},
        },
        {
            "name": "postLogin",
            "qualifiedName": "routes.AuthController.postLogin",
            "kind": 6,
            "filePath": "src/routes/auth.ts",
            "comment": "POST /login endpoint",
            "position": {"start": {"line": 10, "column": 0}, "end": {"line": 20, "column": 1}},
        },
        {
            "name": "formatDate",
            "qualifiedName": "utils.formatDate",
            "kind": 12,
            "filePath": "src/utils/date.ts",
            "comment": "",
            "position": {"start": {"line": 3, "column": 0}, "end": {"line": 5, "column": 1}},
        },
    ]


def make_completion(text: str) -> SimpleNamespace:
    """Minimal chat completion object with one choice."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def make_fake_client(responder: Callable[[bool, str], str]) -> MagicMock:
    """
    Fake AsyncOpenAI client.

    responder(is_keyword_call, user_prompt) returns the raw response text.
    """
    client = MagicMock()

    def create(**kwargs):
        messages = kwargs["messages"]
        is_keyword_call = messages[0]["content"] == KEYWORD_SYSTEM_PROMPT
        return make_completion(responder(is_keyword_call, messages[1]["content"]))

    client.chat.completions.create = AsyncMock(side_effect=create)
    return client


@pytest.fixture
def keyword_payload() -> dict:
    """A well-formed oracle keyword analysis."""
    return {
        "primary_keywords": ["userservice", "login", "nullpointerexception"],
        "technical_terms": ["typescript"],
        "error_patterns": ["NullPointerException"],
        "component_names": ["UserService"],
        "file_patterns": ["services"],
        "search_strategies": ["login"],
        "file_priorities": [{"pattern": "services", "score": 9, "reason": "service layer"}],
        "issue_type": "bug",
        "confidence": 0.8,
    }


@pytest.fixture
def relevant_payload() -> dict:
    """A well-formed positive relevance verdict."""
    return {
        "is_relevant": True,
        "relevance_score": 0.92,
        "reason": "Defines UserService.login",
        "specific_areas": ["login"],
        "confidence": 0.9,
    }


@pytest.fixture
def fake_client_factory() -> Callable[[Callable[[bool, str], str]], MagicMock]:
    """Factory for fake oracle transports."""
    return make_fake_client
