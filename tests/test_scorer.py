"""
Tests for persona compatibility scoring and ranking.
"""

import pytest
import pytest_asyncio

from persona_core.errors import PersonaNotFound
from persona_core.switching.analyzer import ContextAnalyzer
from persona_core.switching.lexicons import SUB_SCORE_WEIGHTS
from persona_core.switching.scorer import CompatibilityScorer

from conftest import make_creative


@pytest.fixture
def scorer(store, tracer):
    return CompatibilityScorer(store, tracer=tracer)


@pytest_asyncio.fixture
async def technical_analysis(tracer, clock, technical_messages):
    return await ContextAnalyzer(tracer=tracer, clock=clock).analyze(technical_messages, current_persona_id="casual")


@pytest_asyncio.fixture
async def casual_analysis(tracer, clock, casual_messages):
    return await ContextAnalyzer(tracer=tracer, clock=clock).analyze(casual_messages, current_persona_id="casual")


class TestScore:
    @pytest.mark.asyncio
    async def test_technical_persona_fits_technical_context(self, scorer, technical_analysis):
        coder = await scorer.score("coder", technical_analysis)
        casual = await scorer.score("casual", technical_analysis)

        assert coder.overall > casual.overall + 0.15
        assert coder.sub_scores.intent_compatibility > 0.7
        assert any("technical_support" in s for s in coder.rationale.strengths)
        assert "expertise_level: expert" in coder.rationale.matching_traits

    @pytest.mark.asyncio
    async def test_overall_is_weighted_sum_of_bounded_sub_scores(self, scorer, technical_analysis, casual_analysis):
        for analysis in (technical_analysis, casual_analysis):
            for pid in ("casual", "coder", "creative"):
                score = await scorer.score(pid, analysis)
                subs = score.sub_scores.as_dict()
                assert set(subs) == set(SUB_SCORE_WEIGHTS)
                for value in subs.values():
                    assert 0.0 <= value <= 1.0
                expected = sum(subs[name] * weight for name, weight in SUB_SCORE_WEIGHTS.items())
                assert score.overall == pytest.approx(expected)
                assert 0.0 <= score.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_scoring_is_pure(self, scorer, technical_analysis):
        first = await scorer.score("coder", technical_analysis)
        second = await scorer.score("coder", technical_analysis)
        assert first == second

    @pytest.mark.asyncio
    async def test_confidence_reflects_definition_completeness(self, scorer, technical_analysis):
        full = await scorer.score("coder", technical_analysis)
        sparse = make_creative()
        sparse.examples = []
        sparse.prompt_templates = sparse.prompt_templates[:1]
        thin = scorer.score_persona(sparse, technical_analysis)
        assert thin.confidence < full.confidence

    @pytest.mark.asyncio
    async def test_unknown_persona(self, scorer, technical_analysis):
        with pytest.raises(PersonaNotFound):
            await scorer.score("ghost", technical_analysis)


class TestRank:
    @pytest.mark.asyncio
    async def test_rankings_sorted_best_first(self, scorer, technical_analysis, collector):
        ranking = await scorer.rank(technical_analysis, confidence_threshold=0.5)

        overall = [s.overall for s in ranking.rankings]
        assert overall == sorted(overall, reverse=True)
        assert ranking.best.persona_id == "coder"
        assert ranking.total_scored == 3
        assert [r.rank for r in ranking.recommendations] == [1, 2, 3]
        assert "scorer.rank" in collector.names()

    @pytest.mark.asyncio
    async def test_unknown_candidates_are_skipped(self, scorer, technical_analysis):
        ranking = await scorer.rank(technical_analysis, candidate_ids=["coder", "ghost"], confidence_threshold=0.5)
        assert [s.persona_id for s in ranking.rankings] == ["coder"]
        assert ranking.skipped == ["ghost"]

    @pytest.mark.asyncio
    async def test_inactive_personas_excluded_by_default(self, store, scorer, technical_analysis):
        retired = make_creative()
        retired.id = "retired"
        retired.is_active = False
        store.add(retired)

        default = await scorer.rank(technical_analysis, confidence_threshold=0.5)
        assert "retired" not in [s.persona_id for s in default.rankings]

        everything = await scorer.rank(technical_analysis, confidence_threshold=0.5, include_inactive=True)
        assert "retired" in [s.persona_id for s in everything.rankings]

    @pytest.mark.asyncio
    async def test_max_results(self, scorer, technical_analysis):
        ranking = await scorer.rank(technical_analysis, confidence_threshold=0.5, max_results=1)
        assert len(ranking.rankings) == 1


class TestRecommend:
    @pytest.mark.asyncio
    async def test_top_recommendation(self, scorer, technical_analysis):
        recs = await scorer.recommend(technical_analysis, confidence_threshold=0.5)
        assert recs[0].persona_id == "coder"
        assert recs[0].status == "available"
        assert recs[0].switch_reason

    @pytest.mark.asyncio
    async def test_nothing_qualifies_gives_unavailable_signal(self, scorer, technical_analysis):
        recs = await scorer.recommend(technical_analysis, confidence_threshold=1.0)
        assert len(recs) == 1
        assert recs[0].status == "unavailable"
        assert recs[0].confidence == 0.0
        assert recs[0].expected_score == 0.0


class TestCompare:
    @pytest.mark.asyncio
    async def test_head_to_head(self, scorer, technical_analysis):
        comparison = await scorer.compare(["casual", "coder", "creative"], technical_analysis)
        assert comparison.winner_id == "coder"
        assert comparison.score_difference > 0
        assert comparison.stronger_areas["intent_compatibility"] == "coder"
        assert set(comparison.scores) == {"casual", "coder", "creative"}

    @pytest.mark.asyncio
    async def test_needs_two_personas(self, scorer, technical_analysis):
        with pytest.raises(ValueError):
            await scorer.compare(["coder"], technical_analysis)

    @pytest.mark.asyncio
    async def test_unknown_persona_raises(self, scorer, technical_analysis):
        with pytest.raises(PersonaNotFound):
            await scorer.compare(["coder", "ghost"], technical_analysis)


class TestTraitSuggestions:
    @pytest.mark.asyncio
    async def test_casual_persona_in_technical_context(self, scorer, technical_analysis):
        suggestions = await scorer.suggest_trait_adjustments("casual", technical_analysis)
        assert suggestions[0].trait == "expertise_level"
        assert suggestions[0].current_value == "intermediate"
        assert suggestions[0].suggested_value == "expert"
        improvements = [s.expected_improvement for s in suggestions]
        assert improvements == sorted(improvements, reverse=True)

    @pytest.mark.asyncio
    async def test_matching_persona_needs_fewer_changes(self, scorer, technical_analysis):
        coder = await scorer.suggest_trait_adjustments("coder", technical_analysis)
        casual = await scorer.suggest_trait_adjustments("casual", technical_analysis)
        assert "expertise_level" not in [s.trait for s in coder]
        assert len(coder) < len(casual)
