"""
End-to-end tests for RelevanceAnalyzer.

Every test runs against a real temporary workspace. The oracle transport is
faked; the search backend is the in-process scanner.
"""

import json
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from relevance_engine.cache_manager import FileCacheManager
from relevance_engine.common_types import (
    AnalysisResult,
    ApiCandidate,
    FileCandidate,
    FilePriority,
    SymbolCandidate,
    SymbolLocation,
)
from relevance_engine.exceptions import SearchError
from relevance_engine.hybrid_search import HybridSearchProvider
from relevance_engine.oracle_client import RelevanceOracle
from relevance_engine.orchestrator import (
    MAX_SUGGESTIONS,
    RelevanceAnalyzer,
    apply_priority_filter,
    generate_suggestions,
    merge_priorities,
)
from relevance_engine.search_provider import FileSystemSearchProvider
from relevance_engine.strategies import (
    HybridStrategy,
    OracleStrategy,
    RuleBasedStrategy,
    base_confidence,
)

from conftest import write_files


USER_SERVICE_ISSUE = "NullPointerException in UserService.login"
SERVICE_FILE = "src/services/UserService.ts"
TEST_FILE = "src/services/UserService.test.ts"


def oracle_responder(keyword_payload: dict, relevant_file: str | None, relevant_payload: dict):
    """Keyword calls get keyword_payload; only relevant_file is judged relevant."""
    irrelevant = json.dumps({"is_relevant": False, "relevance_score": 0.1, "reason": "Unrelated"})

    def respond(is_keyword_call: bool, prompt: str) -> str:
        if is_keyword_call:
            return json.dumps(keyword_payload)
        if relevant_file and f"**File:** {relevant_file}\n" in prompt:
            return json.dumps(relevant_payload)
        return irrelevant

    return respond


class TestRuleBasedAnalysis:
    """Analysis with the oracle disabled."""

    @pytest.mark.asyncio
    async def test_user_service_scenario(self, analyzer_config, user_service_workspace: Path):
        """Test the implementation file ranks first without an oracle."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert result.strategy_name == "hybrid"
        assert result.files[0].path == SERVICE_FILE
        assert result.files[0].relevance_score == pytest.approx(0.71)
        assert [f.path for f in result.files] == [SERVICE_FILE, TEST_FILE, "README.md"]
        assert result.keywords.primary == ["nullpointerexception", "userservice", "login"]
        assert result.confidence == pytest.approx(0.24)

    @pytest.mark.asyncio
    async def test_fallback_reasons_attached(self, analyzer_config, user_service_workspace: Path):
        """Test keyword-match reasons annotate files when the oracle is off."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert result.files[0].reason.startswith("File contains 2 keywords from the issue")
        assert result.files[1].reason is None
        assert result.suggestions[0].description.startswith(f"Examine {SERVICE_FILE} - File contains")

    @pytest.mark.asyncio
    async def test_priority_hints_filter_files(self, analyzer_config, auth_workspace: Path):
        """Test files neither hinted nor strongly relevant are dropped."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            plain = await analyzer.analyze("Login broken", auth_workspace)
            hinted = await analyzer.analyze(
                "Login broken", auth_workspace, priority_hints=[FilePriority("auth", 9, "auth code")]
            )

        assert [f.path for f in plain.files] == ["src/auth/login.ts", "src/misc/utils.ts"]
        assert [f.path for f in hinted.files] == ["src/auth/login.ts"]
        assert hinted.keywords.priorities[0].pattern == "auth"

    @pytest.mark.asyncio
    async def test_rule_strategy(self, analyzer_config, user_service_workspace: Path):
        """Test the rule strategy never annotates or calls out."""
        config = replace(analyzer_config, strategy="rule")
        async with RelevanceAnalyzer(config) as analyzer:
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert result.strategy_name == "rule-based"
        assert result.files[0].path == SERVICE_FILE
        assert all(f.reason is None for f in result.files)

    @pytest.mark.asyncio
    async def test_symbols_from_raw_dicts(self, analyzer_config, user_service_workspace: Path, symbol_table):
        """Test raw symbol-table dicts produce symbols, APIs and suggestions."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            result = await analyzer.analyze(
                USER_SERVICE_ISSUE, user_service_workspace, symbols=symbol_table
            )

        assert {s.name for s in result.symbols} == {"UserService", "login", "postLogin"}
        assert any(a.method == "POST" for a in result.apis)
        assert {s.type for s in result.suggestions} == {"file", "symbol", "api"}
        assert len(result.suggestions) <= MAX_SUGGESTIONS

    @pytest.mark.asyncio
    async def test_explicit_file_list(self, analyzer_config, user_service_workspace: Path):
        """Test a caller-supplied file list restricts the candidates."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            result = await analyzer.analyze(
                USER_SERVICE_ISSUE, user_service_workspace, files=["README.md", SERVICE_FILE]
            )

        assert [f.path for f in result.files] == [SERVICE_FILE, "README.md"]

    @pytest.mark.asyncio
    async def test_empty_workspace(self, analyzer_config, temp_dir: Path):
        """Test an empty workspace yields an empty result, not an error."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            result = await analyzer.analyze("Login fails", temp_dir)

        assert result.files == []
        assert result.suggestions == []
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_missing_workspace(self, analyzer_config, temp_dir: Path):
        """Test a missing workspace directory yields an empty result."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            result = await analyzer.analyze("Login fails", temp_dir / "missing")

        assert result.files == []

    @pytest.mark.asyncio
    async def test_search_failure_tolerated(self, analyzer_config, user_service_workspace: Path):
        """Test a failing search backend does not fail the analysis."""
        write_files(user_service_workspace, {"scripts/run.sh": "echo login\n"})
        provider = FileSystemSearchProvider(user_service_workspace)

        with patch.object(provider, "search_multiple", side_effect=SearchError("backend down")) as search:
            async with RelevanceAnalyzer(analyzer_config, search_provider=provider) as analyzer:
                result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        search.assert_awaited()
        assert result.files[0].path == SERVICE_FILE


class TestOracleAnalysis:
    """Analysis with a faked oracle transport."""

    @pytest.mark.asyncio
    async def test_relevant_verdict(
        self, oracle_config, user_service_workspace, fake_client_factory, keyword_payload, relevant_payload
    ):
        """Test oracle verdicts replace scores and add reasons."""
        client = fake_client_factory(oracle_responder(keyword_payload, SERVICE_FILE, relevant_payload))
        oracle = RelevanceOracle(oracle_config, client=client)

        async with RelevanceAnalyzer(oracle_config, oracle=oracle) as analyzer:
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert result.strategy_name == "oracle"
        assert [f.path for f in result.files] == [SERVICE_FILE]
        assert result.files[0].relevance_score == pytest.approx(0.92)
        assert result.files[0].reason == "Defines UserService.login"
        assert result.keywords.primary[0] == "userservice"
        assert result.confidence == pytest.approx(0.28)

    @pytest.mark.asyncio
    async def test_malformed_json_degrades(self, oracle_config, user_service_workspace, fake_client_factory):
        """Test malformed oracle output keeps heuristic scores without reasons."""
        client = fake_client_factory(lambda is_kw, prompt: "Sorry, I can't produce JSON today.")
        oracle = RelevanceOracle(oracle_config, client=client)

        async with RelevanceAnalyzer(oracle_config, oracle=oracle) as analyzer:
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert result.files[0].path == SERVICE_FILE
        assert result.files[0].relevance_score == pytest.approx(0.71)
        assert all(f.reason is None for f in result.files)
        assert result.confidence == pytest.approx(base_confidence(result))
        assert result.keywords.primary == ["nullpointerexception", "userservice", "login"]

    @pytest.mark.asyncio
    async def test_all_irrelevant_falls_back(
        self, oracle_config, user_service_workspace, fake_client_factory, keyword_payload, relevant_payload
    ):
        """Test the heuristic ranking is returned when the oracle rejects everything."""
        client = fake_client_factory(oracle_responder(keyword_payload, None, relevant_payload))
        oracle = RelevanceOracle(oracle_config, client=client)

        async with RelevanceAnalyzer(oracle_config, oracle=oracle) as analyzer:
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert sorted(f.path for f in result.files) == [TEST_FILE, SERVICE_FILE]
        assert all(f.reason is None for f in result.files)

    @pytest.mark.asyncio
    async def test_hybrid_uses_oracle(
        self, oracle_config, user_service_workspace, fake_client_factory, keyword_payload, relevant_payload
    ):
        """Test the hybrid strategy takes oracle files when the oracle answers."""
        config = replace(oracle_config, strategy="hybrid")
        client = fake_client_factory(oracle_responder(keyword_payload, SERVICE_FILE, relevant_payload))
        oracle = RelevanceOracle(config, client=client)

        async with RelevanceAnalyzer(config, oracle=oracle) as analyzer:
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert result.strategy_name == "hybrid"
        assert result.files[0].reason == "Defines UserService.login"
        assert result.confidence == pytest.approx(0.23)

    @pytest.mark.asyncio
    async def test_result_cache(
        self, oracle_config, user_service_workspace, fake_client_factory, keyword_payload, relevant_payload
    ):
        """Test a repeated call is served from the cache without oracle calls."""
        client = fake_client_factory(oracle_responder(keyword_payload, SERVICE_FILE, relevant_payload))
        oracle = RelevanceOracle(oracle_config, client=client)

        async with RelevanceAnalyzer(oracle_config, oracle=oracle) as analyzer:
            first = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)
            calls = oracle.call_count
            first.files.clear()
            second = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

            assert oracle.call_count == calls
            assert [f.path for f in second.files] == [SERVICE_FILE]
            assert analyzer.cache_stats()["hits"] >= 1

    @pytest.mark.asyncio
    async def test_result_cache_keyed_by_inputs(self, analyzer_config, user_service_workspace, symbol_table):
        """Test a different file list or symbol table is not served a cached result."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            plain = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)
            with_symbols = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace, symbols=symbol_table)
            readme_only = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace, files=["README.md"])
            repeated = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace, files=["README.md"])
            cached_results = len(analyzer.cache.keys("relevant-code:*"))

        assert plain.symbols == []
        assert {s.name for s in with_symbols.symbols} == {"UserService", "login", "postLogin"}
        assert [f.path for f in readme_only.files] == ["README.md"]
        assert [f.path for f in repeated.files] == ["README.md"]
        assert cached_results == 3

    @pytest.mark.asyncio
    async def test_scope_separates_cache(
        self, oracle_config, user_service_workspace, fake_client_factory, keyword_payload, relevant_payload
    ):
        """Test different scopes do not share cached results."""
        client = fake_client_factory(oracle_responder(keyword_payload, SERVICE_FILE, relevant_payload))
        oracle = RelevanceOracle(oracle_config, client=client)

        async with RelevanceAnalyzer(oracle_config, oracle=oracle) as analyzer:
            await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace, scope="a")
            analyzer.cache.clear_by_tags(["llm"])
            calls = oracle.call_count
            await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace, scope="b")

            assert oracle.call_count > calls


class TestStrategySelection:
    """Tests for choosing a strategy per call."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind,expected", [
        ("rule", RuleBasedStrategy),
        ("oracle", OracleStrategy),
        ("hybrid", HybridStrategy),
    ])
    async def test_explicit_strategy(self, analyzer_config, kind, expected):
        """Test an explicit strategy is honoured."""
        async with RelevanceAnalyzer(replace(analyzer_config, strategy=kind)) as analyzer:
            assert isinstance(await analyzer.select_strategy(), expected)

    @pytest.mark.asyncio
    async def test_auto_with_oracle(self, oracle_config):
        """Test auto picks the oracle strategy when the oracle is available."""
        async with RelevanceAnalyzer(oracle_config) as analyzer:
            assert isinstance(await analyzer.select_strategy(), OracleStrategy)

    @pytest.mark.asyncio
    async def test_auto_without_oracle(self, analyzer_config):
        """Test auto falls back to the hybrid strategy."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            assert isinstance(await analyzer.select_strategy(), HybridStrategy)

    @pytest.mark.asyncio
    async def test_fresh_instance_per_call(self, analyzer_config):
        """Test each call gets its own strategy instance."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            first = await analyzer.select_strategy()
            second = await analyzer.select_strategy()

            assert first is not second

    @pytest.mark.asyncio
    async def test_unknown_search_provider_uses_hybrid(self, analyzer_config, user_service_workspace: Path):
        """Test an unknown search provider name falls back to hybrid instead of raising."""
        config = replace(analyzer_config, search_provider="grep")
        async with RelevanceAnalyzer(config) as analyzer:
            provider = analyzer._search_provider_for(str(user_service_workspace))
            result = await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert isinstance(provider, HybridSearchProvider)
        assert result.files[0].path == SERVICE_FILE

    @pytest.mark.asyncio
    async def test_unknown_strategy_uses_auto(self, analyzer_config):
        """Test an unknown strategy name behaves like auto."""
        async with RelevanceAnalyzer(replace(analyzer_config, strategy="smart")) as analyzer:
            assert isinstance(await analyzer.select_strategy(), HybridStrategy)


class TestLifecycle:
    """Tests for cache ownership and shutdown."""

    @pytest.mark.asyncio
    async def test_owned_cache_destroyed(self, analyzer_config, user_service_workspace):
        """Test close() destroys a cache the analyzer created."""
        analyzer = RelevanceAnalyzer(replace(
            analyzer_config, cache=replace(analyzer_config.cache, cleanup_interval=60)
        ))
        await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)
        assert len(analyzer.cache) > 0

        await analyzer.close()
        await analyzer.close()

        assert len(analyzer.cache) == 0
        assert analyzer.cache._cleanup_thread is None

    @pytest.mark.asyncio
    async def test_injected_cache_kept(self, analyzer_config, user_service_workspace, file_cache: FileCacheManager):
        """Test close() leaves an injected cache alone."""
        async with RelevanceAnalyzer(analyzer_config, cache=file_cache) as analyzer:
            await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)

        assert len(file_cache) > 0
        assert file_cache.keys("relevant-code:*")

    @pytest.mark.asyncio
    async def test_clear_cache(self, analyzer_config, user_service_workspace):
        """Test clear_cache empties every cached entry."""
        async with RelevanceAnalyzer(analyzer_config) as analyzer:
            await analyzer.analyze(USER_SERVICE_ISSUE, user_service_workspace)
            analyzer.clear_cache()

            assert len(analyzer.cache) == 0


class TestPriorityFilter:
    """Tests for apply_priority_filter and merge_priorities."""

    def test_matched_files_use_hint_score(self):
        """Test a weak file survives when it matches a strong hint."""
        files = [FileCandidate("src/auth/a.ts", 0.1), FileCandidate("src/misc/b.ts", 0.1)]

        kept = apply_priority_filter(files, [FilePriority("auth", 8)])

        assert [f.path for f in kept] == ["src/auth/a.ts"]

    def test_unmatched_files_use_relevance(self):
        """Test an unmatched but relevant file survives."""
        files = [FileCandidate("src/misc/b.ts", 0.5), FileCandidate("src/misc/c.ts", 0.39)]

        kept = apply_priority_filter(files, [FilePriority("auth", 8)])

        assert [f.path for f in kept] == ["src/misc/b.ts"]

    def test_low_hint_drops_file(self):
        """Test a matching low-score hint drops a file."""
        files = [FileCandidate("docs/a.md", 0.9), FileCandidate("src/b.ts", 0.9)]

        kept = apply_priority_filter(files, [FilePriority("docs", 2)])

        assert [f.path for f in kept] == ["src/b.ts"]

    def test_never_drops_everything(self):
        """Test the unfiltered list is returned when nothing would survive."""
        files = [FileCandidate("src/misc/b.ts", 0.1)]

        assert apply_priority_filter(files, [FilePriority("auth", 8)]) == files

    def test_no_hints(self):
        """Test no hints means no filtering."""
        files = [FileCandidate("a.ts", 0.0)]

        assert apply_priority_filter(files, []) == files

    def test_merge_priorities(self):
        """Test caller hints win over oracle hints for the same pattern."""
        merged = merge_priorities(
            [FilePriority("Auth", 9)],
            [FilePriority("auth", 3), FilePriority("db", 6)],
        )

        assert [(p.pattern, p.score) for p in merged] == [("Auth", 9), ("db", 6)]


class TestSuggestions:
    """Tests for generate_suggestions."""

    def test_suggestion_mix_and_order(self):
        """Test suggestions combine files, symbols and APIs sorted by confidence."""
        result = AnalysisResult(
            files=[FileCandidate(f"src/f{i}.ts", 0.9 - i * 0.2) for i in range(4)],
            symbols=[
                SymbolCandidate(f"sym{i}", "Function", SymbolLocation(f"src/s{i}.ts", i + 1))
                for i in range(4)
            ],
            apis=[ApiCandidate(f"src/routes/r{i}.ts", "GET") for i in range(3)],
        )

        suggestions = generate_suggestions(result)

        assert len(suggestions) == MAX_SUGGESTIONS
        assert [s.type for s in suggestions].count("file") == 3
        assert [s.type for s in suggestions].count("api") == 2
        confidences = [s.confidence for s in suggestions]
        assert confidences == sorted(confidences, reverse=True)
        assert suggestions[0].location == "src/f0.ts"
        assert 'Review function "sym0"' in [s for s in suggestions if s.type == "symbol"][0].description

    def test_file_reason_used(self):
        """Test a file's reason becomes the suggestion text."""
        result = AnalysisResult(files=[FileCandidate("a.ts", 0.8, reason="Defines login")])

        assert generate_suggestions(result)[0].description == "Examine a.ts - Defines login"
