"""
Per-thread persona state tracking.

Keeps a bounded snapshot history per thread, an append-only evolution
timeline with derived trends and learned context->persona mappings, and a
cached consistency analysis over the snapshots.
"""

from __future__ import annotations
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..obs.logging import get_logger
from ..obs.tracing import Tracer, get_tracer, trace_call
from ..utils.buffers import BoundedHistory, TTLCache
from . import text as textutil
from .collaborators import PersonaStore
from .models import ConversationContext, Message, MessageRole, PersonaDefinition, clamp01, utcnow

logger = get_logger("persona_core")

STATE_VERSION = "1.0.0"
MAX_SNAPSHOTS_PER_THREAD = 50
CONSISTENCY_CACHE_TTL_SECONDS = 30 * 60

SATISFACTION_POSITIVE = ("thank", "great", "excellent", "perfect", "helpful")
SATISFACTION_NEGATIVE = ("wrong", "bad", "terrible", "unhelpful", "confused")
COMPLEXITY_TECHNICAL_TERMS = ("algorithm", "implementation", "architecture", "framework")
COMPLEXITY_ADVANCED_TERMS = ("optimization", "scalability", "methodology", "paradigm")

TimeWindow = Tuple[datetime, datetime]


class SnapshotReason(str, Enum):
    PERIODIC = "periodic"
    PERSONA_SWITCH = "persona_switch"
    SIGNIFICANT_CHANGE = "significant_change"
    MANUAL = "manual"


class ChangeType(str, Enum):
    PERSONA_SWITCH = "persona_switch"
    TRAIT_ADJUSTMENT = "trait_adjustment"
    CONTEXTUAL_ADAPTATION = "contextual_adaptation"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"


@dataclass(frozen=True)
class PersonaSummary:
    id: str
    name: str
    category: str
    version: int
    traits: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def of(cls, persona: PersonaDefinition) -> PersonaSummary:
        return cls(
            id=persona.id,
            name=persona.name,
            category=persona.category,
            version=persona.version,
            traits={t.name: t.value for t in persona.traits},
        )


@dataclass(frozen=True)
class TraitAdjustmentRecord:
    trait: str
    original_value: str
    adjusted_value: str
    reason: str
    confidence: float


@dataclass(frozen=True)
class ConversationMetrics:
    message_count: int
    average_message_length: float
    duration_seconds: float
    last_message_at: datetime
    topical_focus: Tuple[str, ...]
    user_engagement: str  # low | medium | high
    complexity_level: str  # low | medium | high | expert


@dataclass(frozen=True)
class PerformanceMetrics:
    user_satisfaction: float
    conversation_flow: float
    context_alignment: float
    response_quality: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "user_satisfaction": self.user_satisfaction,
            "conversation_flow": self.conversation_flow,
            "context_alignment": self.context_alignment,
            "response_quality": self.response_quality,
        }

    @property
    def overall(self) -> float:
        return sum(self.as_dict().values()) / 4


@dataclass(frozen=True)
class StateSnapshot:
    """
    Point-in-time record of the active persona of one thread.

    Neighbouring snapshots are not stored on the snapshot; ask the tracker
    (`previous_snapshot_id` / `next_snapshot_id`).
    """
    id: str
    thread_id: str
    timestamp: datetime
    active_persona: PersonaSummary
    trait_adjustments: Tuple[TraitAdjustmentRecord, ...]
    conversation: ConversationMetrics
    performance: PerformanceMetrics
    reason: SnapshotReason
    context_factors: Tuple[str, ...] = ()
    state_version: str = STATE_VERSION


@dataclass(frozen=True)
class ImpactAssessment:
    user_experience: float = 0.5
    conversation_quality: float = 0.5
    consistency: float = 0.5


@dataclass(frozen=True)
class EvolutionEntry:
    timestamp: datetime
    change_type: ChangeType
    description: str
    from_persona_id: str
    to_persona_id: str
    trigger: str
    impact: ImpactAssessment


@dataclass
class EvolutionTrends:
    switching_frequency: float = 0.0  # switches per hour
    common_triggers: List[Tuple[str, int]] = field(default_factory=list)
    performance_trajectory: str = "stable"  # improving | stable | declining
    consistency_trend: str = "stable"


@dataclass
class LearningInsights:
    user_preferences: Dict[str, Any] = field(default_factory=dict)
    effective_personas: List[str] = field(default_factory=list)
    context_mappings: Dict[str, str] = field(default_factory=dict)


@dataclass
class PredictiveIndicators:
    predicted_optimal_persona: Optional[str] = None
    prediction_confidence: float = 0.0
    expected_switching_points: List[datetime] = field(default_factory=list)


@dataclass
class EvolutionTracking:
    thread_id: str
    timeline: List[EvolutionEntry] = field(default_factory=list)
    trends: EvolutionTrends = field(default_factory=EvolutionTrends)
    insights: LearningInsights = field(default_factory=LearningInsights)
    predictions: PredictiveIndicators = field(default_factory=PredictiveIndicators)


@dataclass(frozen=True)
class Inconsistency:
    type: str  # behavioral_shift | context_disconnect | trait_deviation | tone_mismatch
    severity: str  # low | medium | high
    description: str
    affected_snapshots: Tuple[int, ...]
    suggested_correction: str


@dataclass(frozen=True)
class ConsistencyRecommendation:
    priority: str
    category: str
    description: str
    expected_improvement: float


@dataclass(frozen=True)
class ConsistencyAnalysis:
    thread_id: str
    period_start: datetime
    period_end: datetime
    message_count: int
    overall_consistency: float
    trait_consistency: Dict[str, float]
    behavioral_consistency: float
    response_pattern_consistency: float
    inconsistencies: Tuple[Inconsistency, ...]
    recommendations: Tuple[ConsistencyRecommendation, ...]
    analyzed_at: datetime
    confidence: float
    data_quality: str  # excellent | good | fair | poor
    analysis_version: str = STATE_VERSION


@dataclass(frozen=True)
class PredictionAlternative:
    persona_id: str
    confidence: float
    reasoning: str


@dataclass(frozen=True)
class PersonaPrediction:
    persona_id: Optional[str]
    confidence: float
    reasoning: Tuple[str, ...]
    alternatives: Tuple[PredictionAlternative, ...] = ()


@dataclass
class _ThreadState:
    snapshots: BoundedHistory[StateSnapshot]
    evolution: EvolutionTracking
    adjustments: List[TraitAdjustmentRecord] = field(default_factory=list)


class PersonaStateTracker:
    """
    Tracks persona state and consistency per conversation thread.

    Usage:
        tracker = PersonaStateTracker(store)
        snap = await tracker.snapshot("t1", "coder", messages)
        await tracker.track_change("t1", ChangeType.PERSONA_SWITCH, "to coder", "casual", "coder", "technical_intent")
        report = await tracker.analyze_consistency("t1")

    All state is in memory and keyed by thread id.
    """

    def __init__(
        self,
        store: PersonaStore,
        tracer: Optional[Tracer] = None,
        max_snapshots: int = MAX_SNAPSHOTS_PER_THREAD,
        default_persona_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.tracer = tracer or get_tracer()
        self.max_snapshots = max_snapshots
        self.default_persona_id = default_persona_id
        self._clock = clock
        self._threads: Dict[str, _ThreadState] = {}
        self._consistency_cache: TTLCache[ConsistencyAnalysis] = TTLCache(
            CONSISTENCY_CACHE_TTL_SECONDS, clock=lambda: self._clock().timestamp()
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @trace_call("tracker.snapshot")
    async def snapshot(
        self,
        thread_id: str,
        active_persona_id: str,
        messages: Sequence[Message],
        context: Optional[ConversationContext] = None,
        reason: SnapshotReason = SnapshotReason.PERIODIC,
    ) -> StateSnapshot:
        """
        Record the current persona state of a thread.

        Raises:
            PersonaNotFound: `active_persona_id` does not resolve
        """
        snap = await self.capture(thread_id, active_persona_id, messages, context, reason)
        self.commit_snapshot(snap)
        return snap

    async def capture(
        self,
        thread_id: str,
        active_persona_id: str,
        messages: Sequence[Message],
        context: Optional[ConversationContext] = None,
        reason: SnapshotReason = SnapshotReason.PERIODIC,
    ) -> StateSnapshot:
        """Build a snapshot without recording it. `commit_snapshot` records it."""
        persona = await self.store.find_one(active_persona_id)
        now = self._clock()
        state = self._threads.get(thread_id)

        return StateSnapshot(
            id=f"{thread_id}_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}",
            thread_id=thread_id,
            timestamp=now,
            active_persona=PersonaSummary.of(persona),
            trait_adjustments=tuple(state.adjustments) if state else (),
            conversation=self._conversation_metrics(messages, context, now),
            performance=self._performance_metrics(messages, context),
            reason=SnapshotReason(reason),
            context_factors=tuple(_context_factors(context)),
        )

    def commit_snapshot(self, snap: StateSnapshot) -> None:
        thread_id = snap.thread_id
        state = self._state(thread_id)
        dropped = state.snapshots.append(snap)
        if dropped is not None:
            logger.debug("Oldest snapshot evicted", extra={"thread_id": thread_id, "tags": [dropped.id]})

        self._update_trends(state.evolution)
        if snap.performance.user_satisfaction > 0.8:
            state.evolution.insights.user_preferences.update({
                "preferred_complexity": snap.conversation.complexity_level,
                "preferred_engagement": snap.conversation.user_engagement,
                "effective_persona": snap.active_persona.id,
            })

        logger.debug(
            "Persona state snapshot created",
            extra={"thread_id": thread_id, "persona_id": snap.active_persona.id, "tags": [snap.reason.value]},
        )

    def previous_snapshot_id(self, thread_id: str, snapshot_id: str) -> Optional[str]:
        state = self._threads.get(thread_id)
        return state.snapshots.previous_id(snapshot_id) if state else None

    def next_snapshot_id(self, thread_id: str, snapshot_id: str) -> Optional[str]:
        state = self._threads.get(thread_id)
        return state.snapshots.next_id(snapshot_id) if state else None

    def get_snapshot(self, thread_id: str, snapshot_id: str) -> Optional[StateSnapshot]:
        state = self._threads.get(thread_id)
        return state.snapshots.get(snapshot_id) if state else None

    def record_trait_adjustment(self, thread_id: str, adjustment: TraitAdjustmentRecord) -> None:
        """Remember a dynamic trait adjustment; later snapshots carry it."""
        self._state(thread_id).adjustments.append(adjustment)

    def get_current_state(self, thread_id: str) -> Optional[StateSnapshot]:
        state = self._threads.get(thread_id)
        return state.snapshots.latest() if state else None

    def get_history(
        self,
        thread_id: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[StateSnapshot]:
        snaps = self._snapshots_in_window(thread_id, (since, self._clock()) if since else None)
        if limit:
            return snaps[-limit:]
        return snaps

    # ------------------------------------------------------------------
    # Evolution
    # ------------------------------------------------------------------

    async def track_change(
        self,
        thread_id: str,
        change_type: ChangeType,
        description: str,
        from_persona_id: str,
        to_persona_id: str,
        trigger: str,
        impact: Optional[ImpactAssessment] = None,
    ) -> None:
        state = self._state(thread_id)
        entry = EvolutionEntry(
            timestamp=self._clock(),
            change_type=ChangeType(change_type),
            description=description,
            from_persona_id=from_persona_id,
            to_persona_id=to_persona_id,
            trigger=trigger,
            impact=impact or ImpactAssessment(),
        )
        evolution = state.evolution
        evolution.timeline.append(entry)
        self._update_trends(evolution)

        insights = evolution.insights
        quality = entry.impact.conversation_quality
        if quality > 0.7 and to_persona_id not in insights.effective_personas:
            insights.effective_personas.append(to_persona_id)
        if quality > 0.6:
            insights.context_mappings[trigger] = to_persona_id
            latest = state.snapshots.latest()
            if latest is not None:
                insights.context_mappings[f"complexity:{latest.conversation.complexity_level}"] = to_persona_id

        dropped = self._consistency_cache.invalidate(lambda key: key[0] == thread_id)
        logger.debug(
            "State change tracked",
            extra={
                "thread_id": thread_id,
                "from_persona": from_persona_id,
                "to_persona": to_persona_id,
                "tags": [entry.change_type.value, trigger, f"cache_dropped={dropped}"],
            },
        )

    async def get_evolution(self, thread_id: str) -> EvolutionTracking:
        state = self._threads.get(thread_id)
        if state is None:
            # Read-only for unseen threads
            return EvolutionTracking(thread_id=thread_id)
        evolution = state.evolution
        predictions = evolution.predictions
        if evolution.insights.effective_personas:
            predictions.predicted_optimal_persona = evolution.insights.effective_personas[0]
            predictions.prediction_confidence = 0.7
        freq = evolution.trends.switching_frequency
        if freq > 0:
            interval = timedelta(hours=1 / freq)
            now = self._clock()
            predictions.expected_switching_points = [now + interval, now + interval * 2]
        return evolution

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    @trace_call("tracker.analyze_consistency")
    async def analyze_consistency(self, thread_id: str, window: Optional[TimeWindow] = None) -> ConsistencyAnalysis:
        """
        Compare adjacent snapshots of a thread.

        Results are cached per (thread, window) for 30 minutes; tracking a
        change on the thread drops its cached results.
        """
        key = (thread_id, window)
        cached = self._consistency_cache.get(key)
        if cached is not None:
            return cached

        now = self._clock()
        snaps = self._snapshots_in_window(thread_id, window)
        if len(snaps) < 2:
            # Not cached: the next snapshot makes a real analysis possible
            return ConsistencyAnalysis(
                thread_id=thread_id,
                period_start=window[0] if window else now - timedelta(hours=1),
                period_end=window[1] if window else now,
                message_count=snaps[-1].conversation.message_count if snaps else 0,
                overall_consistency=1.0,
                trait_consistency={},
                behavioral_consistency=1.0,
                response_pattern_consistency=1.0,
                inconsistencies=(),
                recommendations=(),
                analyzed_at=now,
                confidence=0.1,
                data_quality="poor",
            )

        pairs = list(zip(snaps, snaps[1:]))
        overall = textutil.mean([
            ((1.0 if cur.active_persona.id == prev.active_persona.id else 0.0)
             + (1 - abs(cur.performance.context_alignment - prev.performance.context_alignment))) / 2
            for prev, cur in pairs
        ])
        behavioral = textutil.mean([1 - abs(c.performance.conversation_flow - p.performance.conversation_flow) for p, c in pairs])
        response = textutil.mean([1 - abs(c.performance.response_quality - p.performance.response_quality) for p, c in pairs])
        inconsistencies = _find_inconsistencies(snaps)
        recommendations = _recommendations(overall, inconsistencies)

        analysis = ConsistencyAnalysis(
            thread_id=thread_id,
            period_start=window[0] if window else snaps[0].timestamp,
            period_end=window[1] if window else snaps[-1].timestamp,
            message_count=snaps[-1].conversation.message_count,
            overall_consistency=clamp01(overall),
            trait_consistency=_trait_consistency(pairs),
            behavioral_consistency=clamp01(behavioral),
            response_pattern_consistency=clamp01(response),
            inconsistencies=tuple(inconsistencies),
            recommendations=tuple(recommendations),
            analyzed_at=now,
            confidence=_analysis_confidence(len(snaps)),
            data_quality=_data_quality(len(snaps)),
        )
        self._consistency_cache.set(key, analysis)
        logger.debug(
            "Persona consistency analyzed",
            extra={"thread_id": thread_id, "confidence": analysis.confidence, "tags": [analysis.data_quality]},
        )
        return analysis

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    async def predict_optimal_persona(
        self,
        thread_id: str,
        messages: Sequence[Message],
        context: Optional[ConversationContext] = None,
    ) -> PersonaPrediction:
        evolution = await self.get_evolution(thread_id)
        insights = evolution.insights
        complexity = _complexity_level(messages)
        alternatives = tuple(
            PredictionAlternative(pid, round(0.7 - i * 0.1, 2), f"Effective persona #{i + 1} based on historical performance")
            for i, pid in enumerate(insights.effective_personas[:3])
        )

        mapped = insights.context_mappings.get(f"complexity:{complexity}")
        if context is not None and context.topic and f"topic:{context.topic}" in insights.context_mappings:
            mapped = insights.context_mappings[f"topic:{context.topic}"]
        if mapped:
            return PersonaPrediction(
                mapped, 0.8, ("Based on learned context mapping", f"Effective for {complexity} complexity"), alternatives
            )
        if insights.effective_personas:
            return PersonaPrediction(
                insights.effective_personas[-1], 0.6, ("Using most recently effective persona from history",), alternatives
            )
        return PersonaPrediction(
            await self._default_persona_id(), 0.3, ("Default prediction due to limited learning data",), alternatives
        )

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def clear_thread_state(self, thread_id: str) -> None:
        self._threads.pop(thread_id, None)
        self._consistency_cache.invalidate(lambda key: key[0] == thread_id)
        logger.debug("Thread state cleared", extra={"thread_id": thread_id})

    def get_statistics(self) -> Dict[str, Any]:
        timelines = [s.evolution.timeline for s in self._threads.values()]
        return {
            "threads": len(self._threads),
            "snapshots": sum(len(s.snapshots) for s in self._threads.values()),
            "evolution_entries": sum(len(t) for t in timelines),
            "persona_switches": sum(1 for t in timelines for e in t if e.change_type == ChangeType.PERSONA_SWITCH),
            "cached_consistency_analyses": len(self._consistency_cache),
        }

    def thread_ids(self) -> List[str]:
        return list(self._threads)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _state(self, thread_id: str) -> _ThreadState:
        state = self._threads.get(thread_id)
        if state is None:
            state = _ThreadState(
                snapshots=BoundedHistory(self.max_snapshots, key=lambda s: s.id),
                evolution=EvolutionTracking(thread_id=thread_id),
            )
            self._threads[thread_id] = state
        return state

    def _snapshots_in_window(self, thread_id: str, window: Optional[TimeWindow]) -> List[StateSnapshot]:
        state = self._threads.get(thread_id)
        if state is None:
            return []
        snaps = state.snapshots.items()
        if window is None:
            return snaps
        start, end = window
        return [s for s in snaps if start <= s.timestamp <= end]

    async def _default_persona_id(self) -> Optional[str]:
        if self.default_persona_id:
            return self.default_persona_id
        personas = await self.store.find_all()
        active = [p for p in personas if p.is_active]
        chosen = active[0] if active else (personas[0] if personas else None)
        return chosen.id if chosen else None

    def _update_trends(self, evolution: EvolutionTracking) -> None:
        timeline = evolution.timeline
        trends = evolution.trends
        if len(timeline) > 1:
            hours = (timeline[-1].timestamp - timeline[0].timestamp).total_seconds() / 3600
            switches = sum(1 for e in timeline if e.change_type == ChangeType.PERSONA_SWITCH)
            trends.switching_frequency = switches / max(hours, 1 / 60)

        counts = Counter(e.trigger for e in timeline)
        trends.common_triggers = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:5]

        recent = timeline[-5:]
        if len(recent) >= 3:
            trends.performance_trajectory = _trajectory(textutil.mean([e.impact.conversation_quality for e in recent]))
            trends.consistency_trend = _trajectory(textutil.mean([e.impact.consistency for e in recent]))

    def _conversation_metrics(
        self,
        messages: Sequence[Message],
        context: Optional[ConversationContext],
        now: datetime,
    ) -> ConversationMetrics:
        first_ts = messages[0].timestamp if messages else None
        last_ts = messages[-1].timestamp if messages else None
        duration = (now - first_ts).total_seconds() if first_ts else 0.0
        if context is not None and context.topic:
            focus: Tuple[str, ...] = (context.topic,)
        else:
            focus = tuple(_topical_focus(messages))
        return ConversationMetrics(
            message_count=len(messages),
            average_message_length=textutil.mean([len(m.content) for m in messages]),
            duration_seconds=max(duration, 0.0),
            last_message_at=last_ts or now,
            topical_focus=focus,
            user_engagement=_user_engagement(messages),
            complexity_level=_complexity_level(messages),
        )

    def _performance_metrics(self, messages: Sequence[Message], context: Optional[ConversationContext]) -> PerformanceMetrics:
        return PerformanceMetrics(
            user_satisfaction=_user_satisfaction(messages),
            conversation_flow=_conversation_flow(messages),
            context_alignment=_context_alignment(context),
            response_quality=_response_quality(messages),
        )


# ---------------------------------------------------------------------------
# Metric helpers
# ---------------------------------------------------------------------------

def _user_text(messages: Sequence[Message]) -> str:
    return " ".join(m.content for m in messages if m.role == MessageRole.USER).lower()


def _topical_focus(messages: Sequence[Message]) -> List[str]:
    text = " ".join(m.content for m in list(messages)[-5:]).lower()
    topics: List[str] = []
    if "code" in text or "programming" in text:
        topics.append("technical")
    if "creative" in text or "design" in text:
        topics.append("creative")
    if "business" in text or "professional" in text:
        topics.append("business")
    return topics or ["general"]


def _user_engagement(messages: Sequence[Message]) -> str:
    lengths = [len(m.content) for m in messages if m.role == MessageRole.USER]
    avg = textutil.mean(lengths)
    if avg > 200:
        return "high"
    if avg > 50:
        return "medium"
    return "low"


def _complexity_level(messages: Sequence[Message]) -> str:
    text = " ".join(m.content for m in messages).lower()
    technical = sum(1 for term in COMPLEXITY_TECHNICAL_TERMS if term in text)
    advanced = sum(1 for term in COMPLEXITY_ADVANCED_TERMS if term in text)
    if advanced >= 2:
        return "expert"
    if technical >= 3:
        return "high"
    if technical >= 1:
        return "medium"
    return "low"


def _user_satisfaction(messages: Sequence[Message]) -> float:
    text = _user_text(messages)
    score = 0.5
    score += 0.1 * sum(1 for word in SATISFACTION_POSITIVE if word in text)
    score -= 0.1 * sum(1 for word in SATISFACTION_NEGATIVE if word in text)
    return clamp01(score)


def _conversation_flow(messages: Sequence[Message]) -> float:
    if len(messages) < 2:
        return 1.0
    breaks = sum(1 for m in messages[1:] if m.role == MessageRole.ASSISTANT and len(m.content) < 10)
    return clamp01(0.8 - breaks / len(messages) * 0.3)


def _context_alignment(context: Optional[ConversationContext]) -> float:
    alignment = 0.7
    if context is not None:
        if context.topic:
            alignment += 0.1
        if context.priority == "high":
            alignment += 0.1
    return clamp01(alignment)


def _response_quality(messages: Sequence[Message]) -> float:
    lengths = [len(m.content) for m in messages if m.role == MessageRole.ASSISTANT]
    if not lengths:
        return 0.5
    avg = textutil.mean(lengths)
    score = 0.5
    if avg > 100:
        score += 0.2
    if avg > 300:
        score += 0.2
    if avg < 20:
        score -= 0.3
    return clamp01(score)


def _context_factors(context: Optional[ConversationContext]) -> List[str]:
    if context is None:
        return []
    factors: List[str] = []
    if context.topic:
        factors.append(f"topic:{context.topic}")
    if context.priority:
        factors.append(f"priority:{context.priority}")
    temperature = context.model_parameters.get("temperature")
    if temperature is not None:
        factors.append(f"temperature:{temperature}")
    return factors


def _trajectory(avg: float) -> str:
    if avg > 0.7:
        return "improving"
    if avg < 0.3:
        return "declining"
    return "stable"


def _trait_consistency(pairs: List[Tuple[StateSnapshot, StateSnapshot]]) -> Dict[str, float]:
    names = sorted({name for p, c in pairs for name in (*p.active_persona.traits, *c.active_persona.traits)})
    result: Dict[str, float] = {}
    for name in names:
        same = sum(
            1 for p, c in pairs
            if name in p.active_persona.traits and p.active_persona.traits.get(name) == c.active_persona.traits.get(name)
        )
        result[name] = same / len(pairs)
    return result


def _find_inconsistencies(snaps: List[StateSnapshot]) -> List[Inconsistency]:
    found: List[Inconsistency] = []
    for i in range(1, len(snaps)):
        prev, cur = snaps[i - 1], snaps[i]
        if cur.active_persona.id != prev.active_persona.id and cur.reason != SnapshotReason.PERSONA_SWITCH:
            found.append(Inconsistency(
                type="behavioral_shift",
                severity="medium",
                description="Persona change without explicit switching reason",
                affected_snapshots=(i - 1, i),
                suggested_correction="Add transition explanation for persona changes",
            ))
        if prev.performance.context_alignment - cur.performance.context_alignment > 0.3:
            found.append(Inconsistency(
                type="context_disconnect",
                severity="high",
                description="Significant performance drop detected",
                affected_snapshots=(i,),
                suggested_correction="Review persona-context alignment",
            ))
    return found


def _recommendations(overall: float, inconsistencies: List[Inconsistency]) -> List[ConsistencyRecommendation]:
    recs: List[ConsistencyRecommendation] = []
    if overall < 0.7:
        recs.append(ConsistencyRecommendation(
            "high", "behavioral_tuning", "Improve overall persona consistency through better trait alignment", 0.3
        ))
    if any(i.severity == "high" for i in inconsistencies):
        recs.append(ConsistencyRecommendation(
            "high", "context_alignment", "Address high-severity context alignment issues", 0.4
        ))
    if any(i.type == "behavioral_shift" for i in inconsistencies):
        recs.append(ConsistencyRecommendation(
            "medium", "transition_improvement", "Implement smoother persona transitions", 0.2
        ))
    return recs


def _analysis_confidence(n: int) -> float:
    if n < 3:
        return 0.3
    if n < 5:
        return 0.6
    if n < 10:
        return 0.8
    return 0.95


def _data_quality(n: int) -> str:
    if n >= 10:
        return "excellent"
    if n >= 5:
        return "good"
    if n >= 2:
        return "fair"
    return "poor"
