"""
Context-aware persona switching service.

Runs one conversational turn end to end: snapshot, analyze, score, decide and
adapt, smooth the transition, record the change, and return a single result.
Also exposes thread configuration, monitoring and cross-thread analytics.
"""

from __future__ import annotations
import asyncio
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from ..config.switching import ConfigBuilder, SwitchingServiceConfig, TransitionConfig, merge_config
from ..errors import DependencyFailure, PersonaNotFound, PersonaSwitchError
from ..obs.logging import get_logger
from ..obs.tracing import Tracer, get_tracer, new_trace, reset_trace
from ..utils.retry import COLLABORATOR_RETRY_POLICY, RetryPolicy
from . import text as textutil
from .analyzer import ContextAnalyzer
from .collaborators import GuardedPersonaStore, PersonaStore, PromptInjector, ThreadStore
from .models import CompatibilityScore, ContextAnalysisResult, ConversationContext, Message, MessageRole, utcnow
from .orchestrator import SwitchingOrchestrator
from .scorer import CompatibilityScorer
from .smoother import ConversationStats, TransitionSmoother
from .tracker import ChangeType, ImpactAssessment, PersonaStateTracker, SnapshotReason, StateSnapshot

logger = get_logger("persona_core")

SYSTEM_VERSION = "1.0.0"
NEXT_ANALYSIS_DELAY = timedelta(minutes=5)
NEXT_ANALYSIS_DELAY_AFTER_ERROR = timedelta(minutes=10)

_CONTEXT_KEYS = ("topic", "category", "priority", "model_parameters")

MonitoringProvider = Callable[[str], Awaitable[Tuple[Sequence[Message], str]]]


@dataclass(frozen=True)
class PersonaStatus:
    persona_id: str
    persona_name: str
    score: float
    improvements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TransitionDetails:
    transition_type: str
    notification_approach: str
    smoothing_quality: float
    estimated_user_impact: float
    user_message: Optional[str] = None


@dataclass(frozen=True)
class StateTrackingInfo:
    snapshot_created: bool = False
    evolution_tracked: bool = False
    consistency_score: Optional[float] = None


@dataclass(frozen=True)
class SwitchingResult:
    """Outcome of one `process_turn` call."""
    switched: bool
    adaptation_type: str  # none | personality_switch
    previous: PersonaStatus
    new: PersonaStatus
    confidence: float
    reasoning: Tuple[str, ...]
    processed_at: datetime
    processing_ms: int = 0
    context_factors: Tuple[str, ...] = ()
    performance_impact: float = 0.0
    enhanced_prompt: Optional[str] = None
    transition: Optional[TransitionDetails] = None
    state_tracking: StateTrackingInfo = field(default_factory=StateTrackingInfo)
    user_notification: Optional[str] = None
    improvement_highlights: Tuple[str, ...] = ()
    context_analyzed: bool = False
    compatibility_scored: bool = False
    error: Optional[str] = None
    system_version: str = SYSTEM_VERSION


@dataclass(frozen=True)
class MonitoringOpportunity:
    trigger_point: int
    opportunity: str
    suggested_persona_id: str
    confidence: float
    expected_benefit: float


@dataclass(frozen=True)
class PerformanceTrend:
    direction: str  # improving | stable | declining
    recent_score: float
    scores: Tuple[float, ...] = ()


@dataclass(frozen=True)
class MonitoringRecommendation:
    priority: str
    action: str  # switch_persona | adjust_traits | monitor_closely | maintain_current
    description: str
    expected_impact: float


@dataclass(frozen=True)
class MonitoringResult:
    thread_id: str
    persona_id: str
    persona_name: str
    active_for_seconds: float
    performance_score: float
    opportunities: Tuple[MonitoringOpportunity, ...]
    trend: PerformanceTrend
    recommendations: Tuple[MonitoringRecommendation, ...]
    next_analysis: datetime
    assessment: str = "stable"
    error: Optional[str] = None


@dataclass(frozen=True)
class PersonaEffectiveness:
    persona_id: str
    usage_count: int
    average_quality: float
    rating: str  # excellent | good | fair | poor


@dataclass(frozen=True)
class SystemAnalytics:
    threads: int
    total_switches: int
    successful_switches: int
    average_consistency: float
    average_switching_frequency: float
    trigger_histogram: Dict[str, int]
    persona_effectiveness: Tuple[PersonaEffectiveness, ...]
    recommendations: Tuple[str, ...]


class ContextAwareSwitchingService:
    """
    Entry point of the persona switching engine.

    Usage:
        service = ContextAwareSwitchingService(store, injector)
        result = await service.process_turn("thread-1", messages, "casual", prompt)
        if result.switched:
            prompt = result.enhanced_prompt
            notify(result.user_notification)

    Calls for the same thread are serialized; different threads run freely.
    A turn that ends in an error result leaves no thread state behind.
    """

    def __init__(
        self,
        store: PersonaStore,
        injector: PromptInjector,
        config: Optional[SwitchingServiceConfig] = None,
        analyzer: Optional[ContextAnalyzer] = None,
        scorer: Optional[CompatibilityScorer] = None,
        smoother: Optional[TransitionSmoother] = None,
        tracker: Optional[PersonaStateTracker] = None,
        orchestrator: Optional[SwitchingOrchestrator] = None,
        thread_store: Optional[ThreadStore] = None,
        retry_policy: RetryPolicy = COLLABORATOR_RETRY_POLICY,
        tracer: Optional[Tracer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tracer = tracer or get_tracer()
        store = GuardedPersonaStore(store, retry_policy)
        self.store = store
        self.thread_store = thread_store
        self._thread_metadata = retry_policy.wrap(thread_store.get_metadata) if thread_store else None
        self.default_config = config or SwitchingServiceConfig()
        self._clock = clock
        self.analyzer = analyzer or ContextAnalyzer(tracer=self.tracer, clock=clock)
        self.scorer = scorer or CompatibilityScorer(store, tracer=self.tracer)
        self.smoother = smoother or TransitionSmoother(store, tracer=self.tracer)
        self.tracker = tracker or PersonaStateTracker(store, tracer=self.tracer, clock=clock)
        self.orchestrator = orchestrator or SwitchingOrchestrator(
            self.analyzer,
            self.scorer,
            store,
            injector,
            default_config=self.default_config.orchestrator,
            retry_policy=retry_policy,
            tracer=self.tracer,
            clock=clock,
        )
        self._configs: Dict[str, SwitchingServiceConfig] = {}
        # Explicit transition overrides per thread, replayed over the tuned config
        self._transition_overrides: Dict[str, List[Dict[str, Any]]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._monitors: Dict[str, asyncio.Task] = {}
        self.last_monitoring: Dict[str, MonitoringResult] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_configuration(self, thread_id: str, overrides: Dict[str, Any]) -> SwitchingServiceConfig:
        """
        Deep-merge `overrides` into the thread configuration.

        Raises:
            ConfigurationError: Unknown key or invalid value; nothing is changed
        """
        cfg = merge_config(self.get_configuration(thread_id), overrides)
        transition = overrides.get("transition") if isinstance(overrides, dict) else None
        if transition:
            self._transition_overrides.setdefault(thread_id, []).append(transition)
        self._configs[thread_id] = cfg
        self.orchestrator.set_configuration(thread_id, cfg.orchestrator.model_dump())
        logger.debug("Configuration updated", extra={"thread_id": thread_id})
        return cfg

    def get_configuration(self, thread_id: str) -> SwitchingServiceConfig:
        return self._configs.get(thread_id, self.default_config)

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    async def process_turn(
        self,
        thread_id: str,
        messages: Sequence[Message],
        current_persona_id: str,
        original_prompt: str,
        context: Optional[ConversationContext] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> SwitchingResult:
        """
        Run the switching pipeline for one turn of a thread.

        Args:
            thread_id: Conversation thread
            messages: Conversation so far, oldest first
            current_persona_id: Active persona
            original_prompt: Prompt about to be sent to the model
            context: Optional per-thread hints
            overrides: One-off configuration overrides for this call

        Returns:
            SwitchingResult. Lookup failures give a no-switch result,
            collaborator failures an error result with confidence 0.

        Raises:
            ConfigurationError: `overrides` holds unknown keys or bad values
        """
        cfg = merge_config(self.get_configuration(thread_id), overrides) if overrides else self.get_configuration(thread_id)
        token = new_trace()
        try:
            async with self._lock(thread_id):
                async with self.tracer.stage("service.process_turn", thread_id=thread_id):
                    return await self._run_turn(thread_id, messages, current_persona_id, original_prompt, context, overrides, cfg)
        finally:
            reset_trace(token)

    async def _run_turn(
        self,
        thread_id: str,
        messages: Sequence[Message],
        current_persona_id: str,
        original_prompt: str,
        context: Optional[ConversationContext],
        overrides: Optional[Dict[str, Any]],
        cfg: SwitchingServiceConfig,
    ) -> SwitchingResult:
        started = time.monotonic()
        progress = {"analyzed": False, "scored": False, "snapshot": False}
        # Snapshots are only committed once the turn can no longer fail
        periodic: Optional[StateSnapshot] = None
        try:
            if context is None and self._thread_metadata is not None:
                context = await self._thread_context(thread_id)

            tracking = cfg.state_tracking
            if tracking.automatic_snapshots and messages and len(messages) % tracking.snapshot_interval == 0:
                async with self.tracer.stage("service.snapshot", thread_id=thread_id):
                    periodic = await self.tracker.capture(thread_id, current_persona_id, messages, context, SnapshotReason.PERIODIC)

            async with self.tracer.stage("service.analyze", thread_id=thread_id):
                analysis = await self.analyzer.analyze(messages, context, current_persona_id)
            progress["analyzed"] = True

            async with self.tracer.stage("service.score_current", thread_id=thread_id):
                current = await self.scorer.score(current_persona_id, analysis)
            progress["scored"] = True

            if not cfg.automatic_switching_enabled:
                return self._no_switch(current, "Automatic switching disabled", started, progress, periodic)
            if not self._worth_evaluating(analysis, current, cfg):
                return self._no_switch(current, "Switching not needed", started, progress, periodic)

            async with self.tracer.stage("service.adapt", thread_id=thread_id):
                adaptation = await self.orchestrator.adapt(
                    messages,
                    current_persona_id,
                    original_prompt,
                    context,
                    thread_id=thread_id,
                    config=cfg.orchestrator.model_dump(),
                    analysis=analysis,
                    commit=False,
                )
            if not adaptation.adapted:
                reason = adaptation.rationale[-1] if adaptation.rationale else "No beneficial adaptation identified"
                return self._no_switch(current, reason, started, progress, periodic)

            new_id = adaptation.new_state.id
            prompt = adaptation.enhanced_prompt.enhanced_prompt if adaptation.enhanced_prompt else original_prompt

            async with self.tracer.stage("service.smooth", thread_id=thread_id):
                tuned = await self.smoother.optimize_transition_config(
                    current_persona_id,
                    new_id,
                    ConversationStats(
                        message_count=len(messages),
                        duration_seconds=analysis.metadata.conversation_duration_seconds,
                        user_engagement=_user_engagement(messages),
                        topic=context.topic if context else None,
                    ),
                )
                transition_cfg = self._transition_config(thread_id, tuned, overrides)
                smoothed = await self.smoother.create_smooth_transition(
                    current_persona_id, new_id, prompt, messages, transition_cfg
                )

            transition: Optional[TransitionDetails] = None
            meta = smoothed.transition_metadata
            if smoothed.smoothed:
                prompt = smoothed.smoothed_prompt
                transition = TransitionDetails(
                    transition_type=meta.transition_type,
                    notification_approach=meta.notification_approach,
                    smoothing_quality=meta.smoothing_quality,
                    estimated_user_impact=meta.estimated_user_impact,
                    user_message=smoothed.user_message,
                )

            rescored = await self.scorer.score(new_id, analysis)
            switched_snapshot: Optional[StateSnapshot] = None
            if tracking.automatic_snapshots:
                switched_snapshot = await self.tracker.capture(
                    thread_id, new_id, messages, context, SnapshotReason.PERSONA_SWITCH
                )

            async with self.tracer.stage("service.record", thread_id=thread_id):
                if periodic is not None:
                    self.tracker.commit_snapshot(periodic)
                    progress["snapshot"] = True
                if tracking.track_evolution:
                    reasons = analysis.switching_triggers.reasons
                    await self.tracker.track_change(
                        thread_id,
                        ChangeType.PERSONA_SWITCH,
                        f"Switched from {adaptation.previous_state.name} to {adaptation.new_state.name}",
                        current_persona_id,
                        new_id,
                        reasons[0] if reasons else "Context change",
                        ImpactAssessment(
                            user_experience=meta.estimated_user_impact,
                            conversation_quality=0.8,
                            consistency=1 - meta.estimated_user_impact,
                        ),
                    )
                if switched_snapshot is not None:
                    self.tracker.commit_snapshot(switched_snapshot)
                    progress["snapshot"] = True
                self.orchestrator.commit_switch(thread_id, adaptation.decision)
                consistency = await self.tracker.analyze_consistency(thread_id)

            highlights = adaptation.rationale[:2]
            result = SwitchingResult(
                switched=True,
                adaptation_type=adaptation.adaptation_type,
                previous=PersonaStatus(current_persona_id, adaptation.previous_state.name, current.overall),
                new=PersonaStatus(new_id, adaptation.new_state.name, rescored.overall, tuple(_improvements(current, rescored))),
                confidence=adaptation.confidence,
                reasoning=adaptation.rationale,
                processed_at=self._clock(),
                processing_ms=_elapsed_ms(started),
                context_factors=analysis.switching_triggers.reasons,
                performance_impact=rescored.overall - current.overall,
                enhanced_prompt=prompt,
                transition=transition,
                state_tracking=StateTrackingInfo(
                    snapshot_created=progress["snapshot"],
                    evolution_tracked=tracking.track_evolution,
                    consistency_score=consistency.overall_consistency,
                ),
                user_notification=adaptation.user_notification or smoothed.user_message,
                improvement_highlights=highlights,
                context_analyzed=True,
                compatibility_scored=True,
            )
            logger.info(
                "Context-aware switch completed",
                extra={
                    "thread_id": thread_id,
                    "from_persona": current_persona_id,
                    "to_persona": new_id,
                    "confidence": result.confidence,
                    "duration_ms": result.processing_ms,
                },
            )
            return result
        except PersonaNotFound as e:
            logger.warning(f"Persona lookup failed: {e}", extra={"thread_id": thread_id, "persona_id": e.persona_id})
            return SwitchingResult(
                switched=False,
                adaptation_type="none",
                previous=PersonaStatus(current_persona_id, "Unknown", 0.5),
                new=PersonaStatus(current_persona_id, "Unknown", 0.5),
                confidence=0.5,
                reasoning=(str(e),),
                processed_at=self._clock(),
                processing_ms=_elapsed_ms(started),
                context_analyzed=progress["analyzed"],
                compatibility_scored=progress["scored"],
            )
        except Exception as e:
            # Collaborator failures and unexpected errors alike end in an error result
            return self._error_result(thread_id, current_persona_id, e, started, progress)

    async def _thread_context(self, thread_id: str) -> ConversationContext:
        try:
            metadata = await self._thread_metadata(thread_id)
        except Exception as e:
            raise DependencyFailure("thread_store", e) from e
        return ConversationContext(
            thread_id=thread_id,
            topic=metadata.get("topic") or metadata.get("category"),
            priority=metadata.get("priority"),
            model_parameters=dict(metadata.get("model_parameters") or {}),
            flags={k: v for k, v in metadata.items() if k not in _CONTEXT_KEYS},
        )

    def _worth_evaluating(self, analysis: ContextAnalysisResult, current: CompatibilityScore, cfg: SwitchingServiceConfig) -> bool:
        sensitivity = cfg.analysis_sensitivity
        triggers = analysis.switching_triggers
        if triggers.should_switch and triggers.confidence >= sensitivity.min_confidence_for_switch:
            return True
        return current.overall < sensitivity.performance_threshold

    def _transition_config(
        self,
        thread_id: str,
        tuned: TransitionConfig,
        overrides: Optional[Dict[str, Any]],
    ) -> TransitionConfig:
        builder = ConfigBuilder(TransitionConfig, base=tuned)
        for thread_overrides in self._transition_overrides.get(thread_id, []):
            builder.merge(thread_overrides)
        if overrides and overrides.get("transition"):
            builder.merge(overrides["transition"])
        return builder.build()

    def _no_switch(
        self,
        current: CompatibilityScore,
        reason: str,
        started: float,
        progress: Dict[str, bool],
        periodic: Optional[StateSnapshot] = None,
    ) -> SwitchingResult:
        if periodic is not None:
            self.tracker.commit_snapshot(periodic)
            progress["snapshot"] = True
        status = PersonaStatus(current.persona_id, current.persona_name, current.overall)
        return SwitchingResult(
            switched=False,
            adaptation_type="none",
            previous=status,
            new=status,
            confidence=0.9,
            reasoning=(reason,),
            processed_at=self._clock(),
            processing_ms=_elapsed_ms(started),
            state_tracking=StateTrackingInfo(snapshot_created=progress["snapshot"]),
            context_analyzed=progress["analyzed"],
            compatibility_scored=progress["scored"],
        )

    def _error_result(
        self,
        thread_id: str,
        current_persona_id: str,
        error: Exception,
        started: float,
        progress: Dict[str, bool],
    ) -> SwitchingResult:
        logger.error(
            f"Context-aware switching failed: {error}",
            extra={"thread_id": thread_id, "persona_id": current_persona_id, "error_code": type(error).__name__},
        )
        return SwitchingResult(
            switched=False,
            adaptation_type="none",
            previous=PersonaStatus(current_persona_id, "Unknown", 0.5),
            new=PersonaStatus(current_persona_id, "Unknown", 0.5),
            confidence=0.0,
            reasoning=(f"Error occurred: {error}",),
            processed_at=self._clock(),
            processing_ms=_elapsed_ms(started),
            context_analyzed=progress["analyzed"],
            compatibility_scored=progress["scored"],
            error=str(error),
        )

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def get_monitoring(
        self,
        thread_id: str,
        messages: Sequence[Message],
        current_persona_id: str,
        context: Optional[ConversationContext] = None,
    ) -> MonitoringResult:
        """Switching opportunities plus the thread's recent performance trend. Read-only."""
        now = self._clock()
        try:
            persona = await self.store.find_one(current_persona_id)
            report = await self.orchestrator.monitor(thread_id, messages, current_persona_id, context)
        except PersonaSwitchError as e:
            logger.error(f"Conversation monitoring failed: {e}", extra={"thread_id": thread_id, "error_code": type(e).__name__})
            return MonitoringResult(
                thread_id=thread_id,
                persona_id=current_persona_id,
                persona_name="Unknown",
                active_for_seconds=0.0,
                performance_score=0.5,
                opportunities=(),
                trend=PerformanceTrend("stable", 0.5),
                recommendations=(MonitoringRecommendation("low", "monitor_closely", f"Monitoring error: {e}", 0.0),),
                next_analysis=now + NEXT_ANALYSIS_DELAY_AFTER_ERROR,
                error=str(e),
            )

        latest = self.tracker.get_current_state(thread_id)
        trend = self._performance_trend(thread_id)
        recs: List[MonitoringRecommendation] = []
        if any(o.confidence > 0.8 for o in report.opportunities):
            recs.append(MonitoringRecommendation("high", "switch_persona", "High-confidence switching opportunity detected", 0.8))
        if trend.direction == "declining":
            recs.append(MonitoringRecommendation("medium", "adjust_traits", "Performance declining, consider trait adjustments", 0.6))
        if report.current_fit < 0.6:
            recs.append(MonitoringRecommendation("high", "switch_persona", "Current persona fit below optimal threshold", 0.7))
        if not recs:
            recs.append(MonitoringRecommendation("low", "maintain_current", "Current persona is performing well", 0.0))

        result = MonitoringResult(
            thread_id=thread_id,
            persona_id=persona.id,
            persona_name=persona.name,
            active_for_seconds=(now - latest.timestamp).total_seconds() if latest else 0.0,
            performance_score=report.current_fit,
            opportunities=tuple(
                MonitoringOpportunity(o.trigger_point, o.reason, o.suggested_persona_id, o.confidence, o.confidence * 0.8)
                for o in report.opportunities
            ),
            trend=trend,
            recommendations=tuple(recs),
            next_analysis=now + NEXT_ANALYSIS_DELAY,
            assessment=report.assessment,
        )
        logger.debug(
            "Conversation monitoring completed",
            extra={"thread_id": thread_id, "persona_id": persona.id, "tags": [report.assessment]},
        )
        return result

    def _performance_trend(self, thread_id: str) -> PerformanceTrend:
        scores = tuple(s.performance.context_alignment for s in self.tracker.get_history(thread_id, limit=5))
        if len(scores) < 2:
            return PerformanceTrend("stable", scores[0] if scores else 0.5, scores)
        diff = scores[-1] - scores[-2]
        if diff > 0.1:
            direction = "improving"
        elif diff < -0.1:
            direction = "declining"
        else:
            direction = "stable"
        return PerformanceTrend(direction, scores[-1], scores)

    def start_monitoring(
        self,
        thread_id: str,
        provider: MonitoringProvider,
        interval_seconds: float = 300.0,
        on_result: Optional[Callable[[MonitoringResult], None]] = None,
    ) -> asyncio.Task:
        """
        Run `get_monitoring` for a thread every `interval_seconds`.

        `provider(thread_id)` supplies the current (messages, persona id).
        Starting again replaces the running monitor. Needs a running loop.
        """
        self.stop_monitoring(thread_id)
        task = asyncio.get_running_loop().create_task(
            self._monitor_loop(thread_id, provider, interval_seconds, on_result),
            name=f"persona-monitor-{thread_id}",
        )
        self._monitors[thread_id] = task
        logger.debug("Automatic monitoring started", extra={"thread_id": thread_id, "tags": [f"interval={interval_seconds}s"]})
        return task

    def stop_monitoring(self, thread_id: str) -> bool:
        """Cancel the thread's monitor. Returns False when none was running."""
        task = self._monitors.pop(thread_id, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("Automatic monitoring stopped", extra={"thread_id": thread_id})
        return True

    def is_monitoring(self, thread_id: str) -> bool:
        task = self._monitors.get(thread_id)
        return task is not None and not task.done()

    async def _monitor_loop(
        self,
        thread_id: str,
        provider: MonitoringProvider,
        interval_seconds: float,
        on_result: Optional[Callable[[MonitoringResult], None]],
    ) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                messages, persona_id = await provider(thread_id)
                result = await self.get_monitoring(thread_id, messages, persona_id)
            except Exception as e:
                # The monitor outlives one bad tick
                logger.error(f"Automatic monitoring error: {e}", extra={"thread_id": thread_id, "error_code": type(e).__name__})
                continue
            self.last_monitoring[thread_id] = result
            if on_result is not None:
                on_result(result)

    # ------------------------------------------------------------------
    # Analytics and cleanup
    # ------------------------------------------------------------------

    async def get_system_analytics(self, thread_ids: Optional[Sequence[str]] = None) -> SystemAnalytics:
        """Aggregate switching outcomes across threads. Read-only."""
        if thread_ids is None:
            known = dict.fromkeys([*self._configs, *self.tracker.thread_ids(), *self.orchestrator.thread_ids()])
            thread_ids = list(known)

        triggers: Counter = Counter()
        frequencies: List[float] = []
        consistencies: List[float] = []
        quality_by_persona: Dict[str, List[float]] = defaultdict(list)
        for tid in thread_ids:
            evolution = await self.tracker.get_evolution(tid)
            consistency = await self.tracker.analyze_consistency(tid)
            consistencies.append(consistency.overall_consistency)
            frequencies.append(evolution.trends.switching_frequency)
            for entry in evolution.timeline:
                if entry.change_type != ChangeType.PERSONA_SWITCH:
                    continue
                triggers[entry.trigger] += 1
                quality_by_persona[entry.to_persona_id].append(entry.impact.conversation_quality)

        qualities = [q for values in quality_by_persona.values() for q in values]
        effectiveness = tuple(
            PersonaEffectiveness(pid, len(values), textutil.mean(values), _effectiveness_rating(textutil.mean(values)))
            for pid, values in sorted(quality_by_persona.items())
        )
        avg_consistency = textutil.mean(consistencies, default=1.0)
        avg_frequency = textutil.mean(frequencies)

        recs: List[str] = []
        if avg_consistency < 0.7:
            recs.append("Persona consistency is low across threads; review switching thresholds")
        if avg_frequency > 5:
            recs.append("Switching is frequent; raise the confidence threshold or the cooldown")
        poor = [e.persona_id for e in effectiveness if e.rating == "poor"]
        if poor:
            recs.append(f"Personas with poor switch outcomes: {', '.join(poor)}")

        return SystemAnalytics(
            threads=len(thread_ids),
            total_switches=len(qualities),
            successful_switches=sum(1 for q in qualities if q > 0.6),
            average_consistency=avg_consistency,
            average_switching_frequency=avg_frequency,
            trigger_histogram=dict(triggers),
            persona_effectiveness=effectiveness,
            recommendations=tuple(recs),
        )

    async def cleanup(self, thread_id: str) -> None:
        """Drop every piece of state held for a thread."""
        self.stop_monitoring(thread_id)
        async with self._lock(thread_id):
            self._configs.pop(thread_id, None)
            self._transition_overrides.pop(thread_id, None)
            self.last_monitoring.pop(thread_id, None)
            self.tracker.clear_thread_state(thread_id)
            self.orchestrator.forget_thread(thread_id)
        self._locks.pop(thread_id, None)
        logger.debug("Thread cleanup completed", extra={"thread_id": thread_id})

    def _lock(self, thread_id: str) -> asyncio.Lock:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = self._locks[thread_id] = asyncio.Lock()
        return lock


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _user_engagement(messages: Sequence[Message]) -> str:
    avg = textutil.mean([len(m.content) for m in messages if m.role == MessageRole.USER])
    if avg > 200:
        return "high"
    if avg > 50:
        return "medium"
    return "low"


def _improvements(before: CompatibilityScore, after: CompatibilityScore) -> List[str]:
    found: List[str] = []
    diff = after.overall - before.overall
    if diff > 0.1:
        found.append(f"{diff * 100:.1f}% overall compatibility improvement")
    old = before.sub_scores.as_dict()
    for name, value in after.sub_scores.as_dict().items():
        if value - old.get(name, 0.0) > 0.15:
            found.append(f"Significant {name} improvement")
    return found


def _effectiveness_rating(avg: float) -> str:
    if avg > 0.8:
        return "excellent"
    if avg > 0.6:
        return "good"
    if avg > 0.4:
        return "fair"
    return "poor"
