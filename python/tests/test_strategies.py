"""
Tests for the analysis strategies in isolation.
"""

import json
from pathlib import Path

import pytest

from relevance_engine.candidate_scoring import CandidateScorer
from relevance_engine.common_types import (
    AnalysisResult,
    ApiCandidate,
    FileCandidate,
    IssueDescription,
    SearchKeywords,
    SymbolCandidate,
    SymbolInfo,
    SymbolLocation,
)
from relevance_engine.oracle_client import RelevanceOracle
from relevance_engine.strategies import (
    AnalysisContext,
    HybridStrategy,
    OracleStrategy,
    RuleBasedStrategy,
    base_confidence,
    merge_apis,
    merge_symbols,
)


@pytest.fixture
def context(temp_dir: Path, file_cache) -> AnalysisContext:
    return AnalysisContext(
        workspace_root=str(temp_dir),
        description=IssueDescription(title="Login fails after password reset"),
        files=[],
        scorer=CandidateScorer(temp_dir, file_cache),
    )


def symbol(name: str, file: str = "a.ts", line: int = 1, score: float = 0.5) -> SymbolCandidate:
    return SymbolCandidate(name=name, type="Function", location=SymbolLocation(file, line), score=score)


class TestMerging:
    """Tests for symbol and API merging."""

    def test_preferred_symbol_wins(self):
        """Test the preferred list overrides duplicates from the other list."""
        merged = merge_symbols(
            [symbol("login", score=0.9)],
            [symbol("login", score=0.1), symbol("logout")],
        )

        assert len(merged) == 2
        assert next(s for s in merged if s.name == "login").score == 0.9

    def test_same_name_different_location_kept(self):
        """Test symbols are keyed by name, file and line."""
        merged = merge_symbols([symbol("login", line=1)], [symbol("login", line=9)])

        assert len(merged) == 2

    def test_symbol_limit(self):
        """Test the merged list is capped."""
        merged = merge_symbols([], [symbol(f"s{i}") for i in range(20)], limit=15)

        assert len(merged) == 15

    def test_preferred_api_wins(self):
        """Test APIs are keyed by method and path."""
        merged = merge_apis(
            [ApiCandidate("src/routes/auth.ts", "POST", "oracle")],
            [ApiCandidate("src/routes/auth.ts", "POST", "rule"), ApiCandidate("src/routes/auth.ts", "GET")],
        )

        assert [a.description for a in merged if a.method == "POST"] == ["oracle"]
        assert len(merged) == 2


class TestConfidence:
    """Tests for confidence calculation."""

    def test_base_confidence_weights(self):
        """Test files, symbols and APIs contribute 0.4, 0.3 and 0.3."""
        empty = AnalysisResult()
        full = AnalysisResult(
            files=[FileCandidate(f"f{i}") for i in range(6)],
            symbols=[symbol(f"s{i}") for i in range(10)],
            apis=[ApiCandidate(f"r{i}", "GET") for i in range(5)],
        )

        assert base_confidence(empty) == 0.0
        assert base_confidence(full) == pytest.approx(1.0)
        assert base_confidence(AnalysisResult(files=[FileCandidate("a")])) == pytest.approx(0.08)

    def test_oracle_reason_bonus(self, oracle_config):
        """Test the oracle strategy adds a bonus when any file has a reason."""
        strategy = OracleStrategy(RelevanceOracle(oracle_config))
        result = AnalysisResult(files=[FileCandidate("a", 0.9, reason="Defines login")])

        assert strategy.calculate_confidence(result) == pytest.approx(0.28)
        assert strategy.calculate_confidence(AnalysisResult(files=[FileCandidate("a")])) == pytest.approx(0.08)

    def test_confidence_capped(self, oracle_config):
        """Test confidence never exceeds 1."""
        strategy = HybridStrategy(RelevanceOracle(oracle_config))
        strategy.oracle_available = True
        result = AnalysisResult(
            files=[FileCandidate(f"f{i}") for i in range(5)],
            symbols=[symbol(f"s{i}") for i in range(10)],
            apis=[ApiCandidate(f"r{i}", "GET") for i in range(5)],
        )

        assert strategy.calculate_confidence(result) == 1.0


class TestOracleStrategy:
    """Tests for OracleStrategy fallbacks."""

    @pytest.mark.asyncio
    async def test_keywords_fall_back(self, analyzer_config):
        """Test keyword generation falls back when the oracle is disabled."""
        strategy = OracleStrategy(RelevanceOracle(analyzer_config))

        keywords = await strategy.generate_keywords(IssueDescription(title="Login fails"))

        assert keywords.primary == ["login", "fails"]

    @pytest.mark.asyncio
    async def test_low_basic_relevance_skipped(self, oracle_config, fake_client_factory, context):
        """Test weak candidates never reach the oracle."""
        client = fake_client_factory(lambda is_kw, prompt: '{"is_relevant": true}')
        strategy = OracleStrategy(RelevanceOracle(oracle_config, client=client))
        candidate = FileCandidate("docs/guide.md", 0.0, content="Welcome")

        outcome = await strategy._judge(context, candidate, SearchKeywords(primary=["login"]), "Login fails")

        assert outcome is None
        client.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_verdict_keeps_candidate(self, oracle_config, fake_client_factory, context):
        """Test a failed oracle call keeps the candidate unchanged and adds no confidence."""
        def respond(is_kw: bool, prompt: str) -> str:
            raise RuntimeError("connection reset")

        strategy = OracleStrategy(RelevanceOracle(oracle_config, client=fake_client_factory(respond)))
        keywords = SearchKeywords(primary=["login"])
        with_content = FileCandidate("src/auth/login.ts", 0.8, content="export function login() {}")
        without_content = FileCandidate("src/auth/reset.ts", 0.8)

        kept = await strategy._judge(context, with_content, keywords, "Login fails")
        kept_empty = await strategy._judge(context, without_content, keywords, "Login fails")

        assert kept is with_content
        assert kept.reason is None
        assert kept.relevance_score == 0.8
        assert kept_empty is without_content
        result = AnalysisResult(files=[kept])
        assert strategy.calculate_confidence(result) == pytest.approx(0.08)


class TestHybridStrategy:
    """Tests for HybridStrategy refinement paths."""

    @pytest.mark.asyncio
    async def test_availability_checked_in_keywords(self, analyzer_config):
        """Test a disabled oracle is detected during keyword generation."""
        strategy = HybridStrategy(RelevanceOracle(analyzer_config))

        keywords = await strategy.generate_keywords(IssueDescription(title="Login fails"))

        assert strategy.oracle_available is False
        assert keywords.primary == ["login", "fails"]

    @pytest.mark.asyncio
    async def test_bad_oracle_keywords_disable_oracle(self, oracle_config, fake_client_factory):
        """Test an unusable keyword answer marks the oracle unavailable for the call."""
        client = fake_client_factory(lambda is_kw, prompt: "nope")
        strategy = HybridStrategy(RelevanceOracle(oracle_config, client=client))

        keywords = await strategy.generate_keywords(IssueDescription(title="Login fails"))

        assert strategy.oracle_available is False
        assert keywords.primary == ["login", "fails"]

    @pytest.mark.asyncio
    async def test_enhance_with_oracle(self, oracle_config, fake_client_factory, context):
        """Test only the top files are sent to the oracle and better scores kept."""
        def respond(is_kw: bool, prompt: str) -> str:
            if "**File:** a.ts\n" in prompt:
                raise RuntimeError("connection reset")
            if "**File:** b.ts\n" in prompt:
                return json.dumps({"is_relevant": True, "relevance_score": 0.9, "reason": "Resets passwords"})
            return json.dumps({"is_relevant": False, "relevance_score": 0.0})

        oracle = RelevanceOracle(oracle_config, client=fake_client_factory(respond))
        strategy = HybridStrategy(oracle)
        files = [
            FileCandidate("a.ts", 0.5, content="a"),
            FileCandidate("b.ts", 0.4, content="b"),
            FileCandidate("c.ts", 0.3, content="c"),
            FileCandidate("d.ts", 0.2, content="d"),
        ]

        enhanced = await strategy._enhance_with_oracle(context, files)

        assert [(f.path, f.relevance_score) for f in enhanced] == [
            ("b.ts", 0.9), ("a.ts", 0.5), ("c.ts", 0.3), ("d.ts", 0.2),
        ]
        assert enhanced[0].reason == "Resets passwords"
        assert oracle.call_count == 3

    def test_annotate_with_fallback(self, analyzer_config, context):
        """Test keyword-match reasons are attached without reordering."""
        strategy = HybridStrategy(RelevanceOracle(analyzer_config))
        files = [
            FileCandidate("a.ts", 0.2, content="nothing here"),
            FileCandidate("b.ts", 0.1, content="login fails after password reset"),
            FileCandidate("c.ts", 0.05, content="login", reason="kept"),
        ]

        annotated = strategy._annotate_with_fallback(context, files)

        assert [f.path for f in annotated] == ["a.ts", "b.ts", "c.ts"]
        assert annotated[0].reason is None
        assert annotated[1].reason.startswith("File contains 5 keywords")
        assert annotated[2].reason == "kept"

    @pytest.mark.asyncio
    async def test_symbols_merged_when_oracle_answers(self, oracle_config, symbol_table, context):
        """Test oracle-side and rule-side symbols are merged."""
        context.symbols = [SymbolInfo.from_dict(s) for s in symbol_table]
        strategy = HybridStrategy(RelevanceOracle(oracle_config))
        strategy.oracle_available = True
        keywords = SearchKeywords(primary=["login"])

        merged = await strategy.find_relevant_symbols(context, keywords)
        rule_only = await RuleBasedStrategy().find_relevant_symbols(context, keywords)

        assert {s.name for s in rule_only} <= {s.name for s in merged}
        assert len({s.key for s in merged}) == len(merged)
