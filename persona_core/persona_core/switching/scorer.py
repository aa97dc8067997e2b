"""
Persona compatibility scoring.

Scores a persona against a ContextAnalysisResult with six independent
sub-scores combined by fixed weights, and ranks candidate personas.
Scoring is a pure function of (persona, analysis).
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import PersonaNotFound
from ..obs.logging import get_logger
from ..obs.tracing import Tracer, get_tracer, trace_call
from .collaborators import PersonaStore
from .lexicons import (
    ALWAYS_RELEVANT_TRAITS,
    CATEGORY_INTENT_AFFINITY,
    EXPERTISE_SCALE,
    INTENT_TRAIT_PROFILES,
    SUB_SCORE_WEIGHTS,
    TRAIT_VALUE_SCALE,
    TRAIT_VECTOR_AXES,
)
from .models import (
    CommunicationStyle,
    CompatibilityScore,
    ComplexityLevel,
    ContextAnalysisResult,
    Intent,
    PersonaDefinition,
    ScoreRationale,
    Sentiment,
    SubScores,
    Verbosity,
    clamp01,
)
from .text import cosine_similarity

logger = get_logger("persona_core")

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_MAX_RESULTS = 10


@dataclass(frozen=True)
class Recommendation:
    rank: int
    persona_id: str
    persona_name: str
    switch_reason: str
    expected_score: float
    confidence: float
    status: str = "available"  # available | unavailable


@dataclass
class Ranking:
    rankings: List[CompatibilityScore] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    total_scored: int = 0
    skipped: List[str] = field(default_factory=list)
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD

    @property
    def best(self) -> Optional[CompatibilityScore]:
        return self.rankings[0] if self.rankings else None


@dataclass(frozen=True)
class TraitSuggestion:
    trait: str
    current_value: Optional[str]
    suggested_value: str
    expected_improvement: float
    confidence: float
    reason: str


@dataclass
class PersonaComparison:
    winner_id: str
    winner_name: str
    score_difference: float
    scores: Dict[str, CompatibilityScore]
    stronger_areas: Dict[str, str]
    recommendations: List[str]


def trait_value_to_numeric(value: Optional[str]) -> float:
    if not value:
        return 0.5
    return TRAIT_VALUE_SCALE.get(value.lower(), 0.5)


class CompatibilityScorer:
    """
    Scores and ranks personas for a context.

    Usage:
        scorer = CompatibilityScorer(store)
        score = await scorer.score("coder", analysis)
        ranking = await scorer.rank(analysis, confidence_threshold=0.6)
    """

    def __init__(self, store: PersonaStore, tracer: Optional[Tracer] = None):
        self.store = store
        self.tracer = tracer or get_tracer()

    async def score(self, persona_id: str, analysis: ContextAnalysisResult) -> CompatibilityScore:
        """
        Score one persona.

        Raises:
            PersonaNotFound: Unknown persona id
        """
        persona = await self.store.find_one(persona_id)
        return self.score_persona(persona, analysis)

    def score_persona(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> CompatibilityScore:
        subs = SubScores(
            context_alignment=clamp01(self._context_alignment(persona, analysis)),
            trait_matching=clamp01(self._trait_matching(persona, analysis)),
            intent_compatibility=clamp01(self._intent_compatibility(persona, analysis)),
            user_pattern_alignment=clamp01(self._user_pattern_alignment(persona, analysis)),
            complexity_fit=clamp01(self._complexity_fit(persona, analysis)),
            emotional_alignment=clamp01(self._emotional_alignment(persona, analysis)),
        )
        overall = clamp01(sum(value * SUB_SCORE_WEIGHTS[name] for name, value in subs.as_dict().items()))
        return CompatibilityScore(
            persona_id=persona.id,
            persona_name=persona.name,
            overall=overall,
            sub_scores=subs,
            rationale=self._rationale(persona, analysis, subs),
            confidence=self._confidence(persona, analysis),
        )

    @trace_call("scorer.rank")
    async def rank(
        self,
        analysis: ContextAnalysisResult,
        candidate_ids: Optional[Sequence[str]] = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        max_results: int = DEFAULT_MAX_RESULTS,
        include_inactive: bool = False,
    ) -> Ranking:
        """
        Rank candidate personas (all stored personas by default).

        Personas that fail to load are skipped and logged, never raised.
        """
        personas, skipped = await self._load_candidates(candidate_ids)
        if not include_inactive:
            personas = [p for p in personas if p.is_active]

        scores = [self.score_persona(p, analysis) for p in personas]
        qualified = sorted(
            (s for s in scores if s.confidence >= confidence_threshold),
            key=lambda s: (-s.overall, s.persona_id),
        )[:max_results]

        ranking = Ranking(
            rankings=qualified,
            recommendations=[
                Recommendation(
                    rank=i + 1,
                    persona_id=s.persona_id,
                    persona_name=s.persona_name,
                    switch_reason=switch_reason(s, analysis),
                    expected_score=s.overall,
                    confidence=s.confidence,
                )
                for i, s in enumerate(qualified[:3])
            ],
            total_scored=len(scores),
            skipped=skipped,
            confidence_threshold=confidence_threshold,
        )
        logger.debug(
            "Personas ranked",
            extra={
                "persona_id": ranking.best.persona_id if ranking.best else None,
                "tags": [f"scored={len(scores)}", f"qualified={len(qualified)}"],
            },
        )
        return ranking

    async def recommend(
        self,
        analysis: ContextAnalysisResult,
        candidate_ids: Optional[Sequence[str]] = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> List[Recommendation]:
        """
        Top-3 recommendations. When nothing qualifies a single `unavailable`
        entry with confidence 0.0 is returned instead of invented scores.
        """
        ranking = await self.rank(analysis, candidate_ids, confidence_threshold, max_results=3)
        if ranking.recommendations:
            return ranking.recommendations
        return [Recommendation(
            rank=0,
            persona_id="",
            persona_name="",
            switch_reason="No persona could be scored with sufficient confidence",
            expected_score=0.0,
            confidence=0.0,
            status="unavailable",
        )]

    async def compare(self, persona_ids: Sequence[str], analysis: ContextAnalysisResult) -> PersonaComparison:
        """
        Compare personas head to head.

        Raises:
            PersonaNotFound: Any id is unknown
            ValueError: Fewer than two ids
        """
        if len(persona_ids) < 2:
            raise ValueError("compare needs at least two persona ids")
        scored = await asyncio.gather(*(self.score(pid, analysis) for pid in persona_ids))
        by_id = {s.persona_id: s for s in scored}
        winner = max(scored, key=lambda s: s.overall)
        runner_up = max((s for s in scored if s is not winner), key=lambda s: s.overall)

        stronger: Dict[str, str] = {}
        for area in SUB_SCORE_WEIGHTS:
            stronger[area] = max(scored, key=lambda s: getattr(s.sub_scores, area)).persona_id

        recs = [
            f"{winner.persona_name} is better suited for this context",
            f"Score difference: {(winner.overall - runner_up.overall) * 100:.1f}%",
            *winner.rationale.strengths[:2],
        ]
        return PersonaComparison(
            winner_id=winner.persona_id,
            winner_name=winner.persona_name,
            score_difference=winner.overall - runner_up.overall,
            scores=by_id,
            stronger_areas=stronger,
            recommendations=recs,
        )

    async def suggest_trait_adjustments(
        self,
        persona_id: str,
        analysis: ContextAnalysisResult,
        target_improvement: float = 0.2,
        limit: int = 5,
    ) -> List[TraitSuggestion]:
        """Trait changes expected to raise the persona's fit, best first."""
        persona = await self.store.find_one(persona_id)
        candidates: Dict[str, TraitSuggestion] = {}

        def offer(trait: str, value: str, improvement: float, confidence: float, reason: str) -> None:
            current = persona.get_trait_value(trait)
            if current == value:
                return
            existing = candidates.get(trait)
            if existing is None or existing.expected_improvement < improvement:
                candidates[trait] = TraitSuggestion(trait, current, value, improvement, confidence, reason)

        if analysis.intent == Intent.TECHNICAL_SUPPORT:
            offer("expertise_level", "expert", 0.3, 0.8, "Expert level expertise needed for technical support")
        if analysis.emotional_context.intensity > 0.7:
            offer("empathy", "high", 0.25, 0.9, "High empathy needed for emotional context")

        profile = INTENT_TRAIT_PROFILES.get(analysis.intent.value)
        if profile:
            for trait, value, weight in profile.preferred:
                offer(trait, value, round(weight * SUB_SCORE_WEIGHTS["intent_compatibility"], 3), 0.6,
                      f"Preferred for {analysis.intent.value} conversations")

        for adj in analysis.switching_triggers.suggested_trait_adjustments:
            offer(adj.trait, adj.value, round(adj.weight * 0.2, 3), analysis.switching_triggers.confidence,
                  "Suggested by context triggers")

        suggestions = [s for s in candidates.values() if s.expected_improvement >= target_improvement * 0.5]
        suggestions.sort(key=lambda s: (-s.expected_improvement, s.trait))
        return suggestions[:limit]

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    def _context_alignment(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
        score = 0.5
        score += _category_affinity(persona.category, analysis.intent) * 0.3
        score += _topic_relevance(persona, analysis) * 0.2
        score += _tag_matching(persona.tags, analysis) * 0.1
        return min(score, 1.0)

    def _trait_matching(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
        persona_vec = [
            trait_value_to_numeric(persona.get_trait_value(axis)) * persona.get_trait_weight(axis)
            if persona.get_trait(axis) else 0.0
            for axis in TRAIT_VECTOR_AXES
        ]
        patterns = analysis.user_patterns
        style_value = trait_value_to_numeric(patterns.communication_style.value)
        context_vec = [
            style_value * 0.8,
            0.8 if patterns.communication_style == CommunicationStyle.FORMAL else 0.2,
            EXPERTISE_SCALE.get(patterns.expertise_level.value, 0.5),
            style_value * 0.9,
            0.9 if analysis.intent == Intent.CREATIVE_ASSISTANCE else 0.3,
            analysis.emotional_context.intensity,
            analysis.complexity.score,
            0.9 if patterns.verbosity == Verbosity.DETAILED else 0.5,
        ]
        return max(0.0, cosine_similarity(persona_vec, context_vec))

    def _intent_compatibility(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
        profile = INTENT_TRAIT_PROFILES.get(analysis.intent.value)
        if profile is None or not profile.preferred:
            return 0.5
        score = 0.0
        total_weight = 0.0
        for trait, value, weight in profile.preferred:
            if persona.get_trait_value(trait) == value:
                score += weight * persona.get_trait_weight(trait)
            total_weight += weight
        for trait, value, penalty in profile.penalized:
            if persona.get_trait_value(trait) == value:
                score -= penalty * persona.get_trait_weight(trait)
        return score / total_weight

    def _user_pattern_alignment(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
        patterns = analysis.user_patterns
        score = 0.0
        if persona.get_trait_value("communication_style") == patterns.communication_style.value:
            score += 0.3
        expected_formality = "formal" if patterns.communication_style == CommunicationStyle.FORMAL else "casual"
        if persona.get_trait_value("formality") == expected_formality:
            score += 0.25
        if persona.get_trait_value("verbosity") == patterns.verbosity.value:
            score += 0.2
        if persona.get_trait_value("expertise_level") == patterns.expertise_level.value:
            score += 0.25
        return score

    def _complexity_fit(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
        depth = persona.get_trait_value("technical_depth", "moderate")
        precision = persona.get_trait_value("precision", "moderate")
        level = analysis.complexity.level
        score = 0.5
        if level == ComplexityLevel.EXPERT:
            if depth in ("detailed", "expert"):
                score += 0.3
            if precision == "high":
                score += 0.2
        elif level == ComplexityLevel.HIGH:
            if depth == "detailed":
                score += 0.25
            if precision in ("high", "moderate"):
                score += 0.15
        elif level == ComplexityLevel.MEDIUM:
            if depth == "moderate":
                score += 0.2
            if precision == "moderate":
                score += 0.1
        else:
            if depth in ("basic", "moderate"):
                score += 0.15
            if precision in ("low", "moderate"):
                score += 0.1
        return min(score, 1.0)

    def _emotional_alignment(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
        empathy = persona.get_trait_value("empathy", "moderate")
        tone = persona.get_trait_value("tone", "neutral")
        emotion = analysis.emotional_context
        score = 0.5
        if emotion.intensity > 0.7:
            if empathy == "high":
                score += 0.3
            elif empathy == "moderate":
                score += 0.1
        elif emotion.intensity < 0.3 and empathy in ("low", "moderate"):
            score += 0.2

        if emotion.sentiment == Sentiment.POSITIVE and tone in ("friendly", "enthusiastic"):
            score += 0.2
        elif emotion.sentiment == Sentiment.NEGATIVE and tone in ("supportive", "professional"):
            score += 0.2
        return min(score, 1.0)

    # ------------------------------------------------------------------

    def _rationale(self, persona: PersonaDefinition, analysis: ContextAnalysisResult, subs: SubScores) -> ScoreRationale:
        strengths: List[str] = []
        weaknesses: List[str] = []
        if subs.intent_compatibility > 0.7:
            strengths.append(f"Excellent match for {analysis.intent.value} intent")
        if subs.trait_matching > 0.8:
            strengths.append("Strong trait alignment with context requirements")
        if subs.complexity_fit > 0.8:
            strengths.append(f"Well-suited for {analysis.complexity.level.value} complexity conversations")
        if subs.intent_compatibility < 0.4:
            weaknesses.append(f"Weak fit for {analysis.intent.value} intent")
        if subs.emotional_alignment < 0.4:
            weaknesses.append("May struggle with emotional context requirements")
        if subs.user_pattern_alignment < 0.5:
            weaknesses.append("Limited alignment with user communication patterns")

        relevant = set(ALWAYS_RELEVANT_TRAITS)
        if analysis.intent == Intent.TECHNICAL_SUPPORT:
            relevant.update(("precision", "technical_depth"))
        if analysis.intent == Intent.CREATIVE_ASSISTANCE:
            relevant.add("creativity")
        if analysis.emotional_context.intensity > 0.5:
            relevant.update(("empathy", "patience"))
        matching = tuple(f"{t.name}: {t.value}" for t in persona.traits if t.name in relevant)
        return ScoreRationale(strengths=tuple(strengths), weaknesses=tuple(weaknesses), matching_traits=matching)

    def _confidence(self, persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
        confidence = 0.5
        if len(persona.traits) >= 5:
            confidence += 0.1
        if persona.examples:
            confidence += 0.1
        if len(persona.prompt_templates) > 1:
            confidence += 0.1
        if len(analysis.topics) > 2:
            confidence += 0.1
        if len(analysis.complexity.indicators) > 2:
            confidence += 0.1
        if analysis.metadata.message_count > 5:
            confidence += 0.1
        return clamp01(round(confidence, 6))

    async def _load_candidates(self, candidate_ids: Optional[Sequence[str]]) -> Tuple[List[PersonaDefinition], List[str]]:
        if candidate_ids is None:
            return await self.store.find_all(), []
        personas: List[PersonaDefinition] = []
        skipped: List[str] = []
        for pid in candidate_ids:
            try:
                personas.append(await self.store.find_one(pid))
            except PersonaNotFound as e:
                logger.warning(f"Skipping candidate persona: {e}", extra={"persona_id": pid})
                skipped.append(pid)
        return personas, skipped


def switch_reason(score: CompatibilityScore, analysis: ContextAnalysisResult) -> str:
    subs = score.sub_scores
    if subs.intent_compatibility > 0.8:
        return f"Excellent match for {analysis.intent.value} conversations"
    if subs.trait_matching > 0.8:
        return "Strong trait alignment with conversation requirements"
    if subs.complexity_fit > 0.8:
        return f"Well-suited for {analysis.complexity.level.value} complexity discussions"
    if subs.user_pattern_alignment > 0.7:
        return "Good alignment with user communication preferences"
    return "Overall good compatibility with current context"


def _category_affinity(category: str, intent: Intent) -> float:
    table = CATEGORY_INTENT_AFFINITY.get(category)
    if table is None:
        return 0.5
    return table.get(intent.value, 0.5)


def _topic_relevance(persona: PersonaDefinition, analysis: ContextAnalysisResult) -> float:
    if not persona.tags:
        return 0.0
    relevance = 0.0
    total = 0.0
    tags = [t.lower() for t in persona.tags]
    for topic in analysis.topics:
        keywords = [k.lower() for k in topic.keywords]
        hits = [tag for tag in tags if any(tag in kw or kw in tag for kw in keywords)]
        if hits:
            relevance += topic.relevance * (len(hits) / len(tags))
        total += topic.relevance
    return relevance / total if total > 0 else 0.5


def _tag_matching(tags: Sequence[str], analysis: ContextAnalysisResult) -> float:
    if not tags:
        return 0.0
    wanted = {analysis.intent.value, analysis.intent.value.replace("_", "-"), analysis.complexity.level.value}
    wanted.update(analysis.topic_names)
    matches = sum(1 for tag in tags if tag in wanted)
    return min(matches / len(tags), 1.0)
