"""
Switching orchestration.

Decides whether the active persona of a thread should change and, when it
should, executes the switch through the prompt injector. Per-thread gating
(switch budget, cooldown) runs before any analysis.
"""

from __future__ import annotations
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config.switching import OrchestratorConfig, merge_config
from ..errors import DependencyFailure, PersonaNotFound
from ..obs.logging import get_logger
from ..obs.tracing import Tracer, get_tracer, trace_call
from ..utils.retry import COLLABORATOR_RETRY_POLICY, RetryPolicy
from .analyzer import ANALYSIS_VERSION, ContextAnalyzer
from .collaborators import InjectionRequest, InjectionResult, PersonaStore, PromptInjector
from .models import (
    CompatibilityScore,
    ComplexityLevel,
    ContextAnalysisResult,
    ConversationContext,
    Message,
    PersonaDefinition,
    utcnow,
)
from .scorer import CompatibilityScorer, Ranking

logger = get_logger("persona_core")

HISTORY_LIMIT = 20
MONITOR_WINDOW = 5
ALTERNATIVE_CONFIDENCE_FLOOR = 0.5
MONITOR_CONFIDENCE_FLOOR = 0.6
LOW_SCORE_THRESHOLD = 0.6
MIN_IMPROVEMENT = 0.15
NOTICEABLE_MARGIN = 0.1

MAX_SWITCHES_REASON = "Maximum switches per conversation reached"
COOLDOWN_REASON = "Minimum time between switches not met"


class ThreadPhase(str, Enum):
    STABLE = "stable"
    EVALUATING = "evaluating"
    TRANSITIONING = "transitioning"


@dataclass(frozen=True)
class PersonaRef:
    id: str
    name: str
    score: float


@dataclass(frozen=True)
class RecommendedPersona:
    id: str
    name: str
    score: float
    improvement: float


@dataclass(frozen=True)
class DecisionReasoning:
    primary_factors: Tuple[str, ...] = ()
    context_changes: Tuple[str, ...] = ()
    switching_risks: Tuple[str, ...] = ()
    expected_benefits: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SwitchingStrategy:
    intensity: str = "gradual"  # gradual | moderate | immediate
    priority_traits: Tuple[str, ...] = ()
    approach: str = "seamless"  # seamless | acknowledged | explicit


@dataclass(frozen=True)
class SwitchingDecision:
    should_switch: bool
    current: PersonaRef
    confidence: float
    reasoning: DecisionReasoning
    strategy: SwitchingStrategy
    analyzed_at: datetime
    recommended: Optional[RecommendedPersona] = None
    personas_considered: int = 0
    context_factors: Tuple[str, ...] = ()
    analysis_version: str = ANALYSIS_VERSION
    analysis: Optional[ContextAnalysisResult] = None


@dataclass(frozen=True)
class TraitChange:
    trait: str
    previous_value: Optional[str]
    new_value: str


@dataclass(frozen=True)
class PersonaState:
    id: str
    name: str
    adapted_traits: Tuple[TraitChange, ...] = ()


@dataclass(frozen=True)
class AdaptationResult:
    adapted: bool
    adaptation_type: str  # none | personality_switch
    previous_state: PersonaState
    new_state: PersonaState
    rationale: Tuple[str, ...]
    confidence: float
    adapted_at: datetime
    duration_ms: int = 0
    triggering_factors: Tuple[str, ...] = ()
    enhanced_prompt: Optional[InjectionResult] = None
    user_notification: Optional[str] = None
    decision: Optional[SwitchingDecision] = None


@dataclass(frozen=True)
class SwitchRecord:
    timestamp: datetime
    from_persona_id: str
    to_persona_id: str
    reason: str
    confidence: float
    intent: str
    complexity: str


@dataclass(frozen=True)
class SwitchOpportunity:
    trigger_point: int
    reason: str
    suggested_persona_id: str
    suggested_persona_name: str
    confidence: float


@dataclass(frozen=True)
class MonitoringReport:
    opportunities: Tuple[SwitchOpportunity, ...]
    current_fit: float
    improvement_potential: float
    assessment: str  # stable | occasional | frequent
    recommendations: Tuple[str, ...]


@dataclass
class _ThreadState:
    config: Optional[OrchestratorConfig] = None
    history: List[SwitchRecord] = field(default_factory=list)
    switch_count: int = 0
    last_switch_at: Optional[datetime] = None
    phase: ThreadPhase = ThreadPhase.STABLE


class SwitchingOrchestrator:
    """
    Decides on and executes persona switches per conversation thread.

    Usage:
        orchestrator = SwitchingOrchestrator(analyzer, scorer, store, injector)
        decision = await orchestrator.decide(messages, "casual", thread_id="t1")
        result = await orchestrator.adapt(messages, "casual", prompt, thread_id="t1")
        if result.adapted:
            send(result.enhanced_prompt.enhanced_prompt)
    """

    def __init__(
        self,
        analyzer: ContextAnalyzer,
        scorer: CompatibilityScorer,
        store: PersonaStore,
        injector: PromptInjector,
        default_config: Optional[OrchestratorConfig] = None,
        retry_policy: RetryPolicy = COLLABORATOR_RETRY_POLICY,
        tracer: Optional[Tracer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.analyzer = analyzer
        self.scorer = scorer
        self.store = store
        self.injector = injector
        self.default_config = default_config or OrchestratorConfig()
        self.tracer = tracer or get_tracer()
        self._inject = retry_policy.wrap(injector.inject)
        self._clock = clock
        self._threads: Dict[str, _ThreadState] = {}

    # ------------------------------------------------------------------
    # Configuration and thread state
    # ------------------------------------------------------------------

    def set_configuration(self, thread_id: str, overrides: Dict[str, Any]) -> OrchestratorConfig:
        """
        Merge `overrides` into the thread's configuration.

        Raises:
            ConfigurationError: Unknown key or invalid value
        """
        state = self._state(thread_id)
        state.config = merge_config(state.config or self.default_config, overrides)
        logger.debug("Configuration set for thread", extra={"thread_id": thread_id})
        return state.config

    def get_configuration(self, thread_id: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> OrchestratorConfig:
        base = self.default_config
        if thread_id is not None and thread_id in self._threads:
            base = self._threads[thread_id].config or base
        return merge_config(base, overrides) if overrides else base

    def get_history(self, thread_id: str) -> List[SwitchRecord]:
        state = self._threads.get(thread_id)
        return list(state.history) if state else []

    def clear_history(self, thread_id: str) -> None:
        state = self._threads.get(thread_id)
        if state is not None:
            state.history.clear()
            state.switch_count = 0
            state.last_switch_at = None
        logger.debug("Switching history cleared for thread", extra={"thread_id": thread_id})

    def forget_thread(self, thread_id: str) -> None:
        self._threads.pop(thread_id, None)

    def get_phase(self, thread_id: str) -> ThreadPhase:
        state = self._threads.get(thread_id)
        return state.phase if state else ThreadPhase.STABLE

    def switch_count(self, thread_id: str) -> int:
        state = self._threads.get(thread_id)
        return state.switch_count if state else 0

    def thread_ids(self) -> List[str]:
        return list(self._threads)

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    @trace_call("orchestrator.decide")
    async def decide(
        self,
        messages: Sequence[Message],
        current_persona_id: str,
        context: Optional[ConversationContext] = None,
        thread_id: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        analysis: Optional[ContextAnalysisResult] = None,
    ) -> SwitchingDecision:
        """
        Decide whether the thread should leave `current_persona_id`.

        Args:
            messages: Conversation so far
            current_persona_id: Active persona
            context: Optional per-thread hints
            thread_id: Enables switch budget, cooldown and per-thread config
            config: One-off overrides on top of the thread configuration
            analysis: Reuse an analysis of `messages` instead of running one

        Returns:
            SwitchingDecision; never recommends `current_persona_id`
        """
        cfg = self.get_configuration(thread_id, config)
        blocked = self._gate(thread_id, cfg)
        if blocked:
            logger.info(blocked, extra={"thread_id": thread_id, "persona_id": current_persona_id})
            return self._no_switch(current_persona_id, blocked)

        state = self._state(thread_id) if thread_id else None
        if state is not None:
            state.phase = ThreadPhase.EVALUATING
        try:
            return await self._evaluate(messages, current_persona_id, context, cfg, analysis, thread_id)
        except PersonaNotFound as e:
            logger.warning(f"Persona lookup failed during decision: {e}", extra={"thread_id": thread_id, "persona_id": current_persona_id})
            return self._no_switch(current_persona_id, f"Persona lookup failed: {e.persona_id}", score=0.5)
        finally:
            if state is not None and state.phase == ThreadPhase.EVALUATING:
                state.phase = ThreadPhase.STABLE

    async def _evaluate(
        self,
        messages: Sequence[Message],
        current_persona_id: str,
        context: Optional[ConversationContext],
        cfg: OrchestratorConfig,
        analysis: Optional[ContextAnalysisResult],
        thread_id: Optional[str],
    ) -> SwitchingDecision:
        if analysis is None:
            async with self.tracer.stage("orchestrator.analyze", thread_id=thread_id):
                analysis = await self.analyzer.analyze(messages, context, current_persona_id)

        async with self.tracer.stage("orchestrator.score_current", thread_id=thread_id):
            current_persona = await self.store.find_one(current_persona_id)
            current = self.scorer.score_persona(current_persona, analysis)

        if not self._should_consider(analysis, current, current_persona, cfg):
            return self._no_switch(
                current_persona_id,
                "Current persona adequately matches context",
                score=current.overall,
                name=current_persona.name,
                analysis=analysis,
            )

        async with self.tracer.stage("orchestrator.rank", thread_id=thread_id):
            ranking = await self.scorer.rank(
                analysis,
                candidate_ids=cfg.allowed_personas,
                confidence_threshold=ALTERNATIVE_CONFIDENCE_FLOOR,
                max_results=5,
            )

        decision = self._make_decision(current_persona, current, ranking, analysis, cfg)
        logger.debug(
            "Switching decision made",
            extra={
                "thread_id": thread_id,
                "from_persona": current_persona_id,
                "to_persona": decision.recommended.id if decision.recommended else None,
                "confidence": decision.confidence,
            },
        )
        return decision

    def _gate(self, thread_id: Optional[str], cfg: OrchestratorConfig) -> Optional[str]:
        if thread_id is None or thread_id not in self._threads:
            return None
        state = self._threads[thread_id]
        if state.switch_count >= cfg.max_switches_per_conversation:
            return f"{MAX_SWITCHES_REASON} ({cfg.max_switches_per_conversation})"
        if state.last_switch_at is not None:
            cooldown = timedelta(minutes=cfg.min_time_between_switches_minutes)
            if self._clock() - state.last_switch_at < cooldown:
                return f"{COOLDOWN_REASON} ({cfg.min_time_between_switches_minutes:g} min)"
        return None

    def _should_consider(
        self,
        analysis: ContextAnalysisResult,
        current: CompatibilityScore,
        persona: PersonaDefinition,
        cfg: OrchestratorConfig,
    ) -> bool:
        if analysis.switching_triggers.should_switch:
            return True
        if current.overall < LOW_SCORE_THRESHOLD:
            return True

        sensitivity = cfg.context_sensitivity
        technical_topics = self.analyzer.lexicons.technical_topics
        if sensitivity.topic > 0.7 and persona.category != "technical":
            if any(t.topic in technical_topics and t.relevance > 0.8 for t in analysis.topics[:3]):
                return True
        if sensitivity.complexity > 0.8 and analysis.complexity.level == ComplexityLevel.EXPERT:
            if persona.get_trait_value("expertise_level") != "expert":
                return True
        return False

    def _make_decision(
        self,
        current_persona: PersonaDefinition,
        current: CompatibilityScore,
        ranking: Ranking,
        analysis: ContextAnalysisResult,
        cfg: OrchestratorConfig,
    ) -> SwitchingDecision:
        alternatives = [
            s for s in ranking.rankings
            if s.persona_id != current_persona.id and s.persona_id not in cfg.blocked_personas
        ]
        best = alternatives[0] if alternatives else None
        if best is None or best.overall <= current.overall + NOTICEABLE_MARGIN:
            return self._no_switch(
                current_persona.id,
                "No significantly better persona found",
                score=current.overall,
                name=current_persona.name,
                analysis=analysis,
                considered=len(ranking.rankings),
            )

        improvement = best.overall - current.overall
        switch = improvement >= MIN_IMPROVEMENT and best.confidence >= cfg.switching_threshold

        priority = [adj.trait for adj in analysis.switching_triggers.suggested_trait_adjustments]
        priority += [t for t in best.rationale.matching_traits if t not in priority]
        approach = "acknowledged" if cfg.notify_user_on_switch else "seamless"

        return SwitchingDecision(
            should_switch=switch,
            current=PersonaRef(current_persona.id, current_persona.name, current.overall),
            recommended=RecommendedPersona(best.persona_id, best.persona_name, best.overall, improvement) if switch else None,
            confidence=min(best.confidence, improvement * 2) if switch else 0.3,
            reasoning=DecisionReasoning(
                primary_factors=tuple(best.rationale.strengths[:2]) if switch else ("Current persona is adequate",),
                context_changes=analysis.switching_triggers.reasons,
                switching_risks=("Potential conversation continuity disruption",) if switch else (),
                expected_benefits=(f"{improvement * 100:.1f}% compatibility improvement",) if switch else (),
            ),
            strategy=SwitchingStrategy(
                intensity="immediate" if improvement > 0.3 else "moderate",
                priority_traits=tuple(priority[:3]),
                approach=approach,
            ),
            analyzed_at=self._clock(),
            personas_considered=len(ranking.rankings),
            context_factors=("intent", "complexity", "user_patterns"),
            analysis=analysis,
        )

    def _no_switch(
        self,
        persona_id: str,
        reason: str,
        score: float = 0.7,
        name: str = "Current",
        analysis: Optional[ContextAnalysisResult] = None,
        considered: int = 0,
    ) -> SwitchingDecision:
        return SwitchingDecision(
            should_switch=False,
            current=PersonaRef(persona_id, name, score),
            confidence=0.8,
            reasoning=DecisionReasoning(primary_factors=(reason,)),
            strategy=SwitchingStrategy(),
            analyzed_at=self._clock(),
            personas_considered=considered,
            analysis=analysis,
        )

    # ------------------------------------------------------------------
    # Adaptation
    # ------------------------------------------------------------------

    @trace_call("orchestrator.adapt")
    async def adapt(
        self,
        messages: Sequence[Message],
        current_persona_id: str,
        original_prompt: str,
        context: Optional[ConversationContext] = None,
        thread_id: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        analysis: Optional[ContextAnalysisResult] = None,
        commit: bool = True,
    ) -> AdaptationResult:
        """
        Decide and, when warranted, switch persona and build the new prompt.

        With `commit=False` the switch is not counted against the thread
        until `commit_switch(thread_id, result.decision)` is called.

        Raises:
            DependencyFailure: The prompt injector failed after retries
        """
        started = time.monotonic()
        decision = await self.decide(messages, current_persona_id, context, thread_id, config, analysis)

        if not decision.should_switch or decision.recommended is None:
            return AdaptationResult(
                adapted=False,
                adaptation_type="none",
                previous_state=PersonaState(current_persona_id, decision.current.name),
                new_state=PersonaState(current_persona_id, decision.current.name),
                rationale=("Current persona remains optimal for context",) + decision.reasoning.primary_factors,
                confidence=decision.confidence,
                adapted_at=self._clock(),
                duration_ms=_elapsed_ms(started),
                decision=decision,
            )

        target = decision.recommended
        state = self._state(thread_id) if thread_id else None
        if state is not None:
            state.phase = ThreadPhase.TRANSITIONING
        try:
            async with self.tracer.stage("orchestrator.execute_switch", thread_id=thread_id):
                src = await self.store.find_one(current_persona_id)
                dst = await self.store.find_one(target.id)
                try:
                    injected = await self._inject(InjectionRequest(
                        original_prompt=original_prompt,
                        persona_id=dst.id,
                        context_variables=_context_variables(context),
                        history=list(messages),
                    ))
                except PersonaNotFound:
                    raise
                except Exception as e:
                    raise DependencyFailure("prompt_injector", e) from e
        except PersonaNotFound as e:
            logger.warning(f"Persona lookup failed during adaptation: {e}", extra={"thread_id": thread_id, "persona_id": e.persona_id})
            return AdaptationResult(
                adapted=False,
                adaptation_type="none",
                previous_state=PersonaState(current_persona_id, decision.current.name),
                new_state=PersonaState(current_persona_id, decision.current.name),
                rationale=(f"Adaptation failed: {e}",),
                confidence=0.0,
                adapted_at=self._clock(),
                duration_ms=_elapsed_ms(started),
                decision=decision,
            )
        finally:
            if state is not None:
                state.phase = ThreadPhase.STABLE

        if state is not None and commit:
            self._record_switch(state, decision)

        result = AdaptationResult(
            adapted=True,
            adaptation_type="personality_switch",
            previous_state=PersonaState(src.id, src.name),
            new_state=PersonaState(dst.id, dst.name, tuple(_trait_changes(src, dst))),
            rationale=decision.reasoning.primary_factors + (
                f"Switched to {dst.name} for better context alignment",
                f"Expected improvement: {target.improvement * 100:.1f}%",
            ),
            confidence=decision.confidence,
            adapted_at=self._clock(),
            duration_ms=_elapsed_ms(started),
            triggering_factors=decision.reasoning.context_changes,
            enhanced_prompt=injected,
            user_notification=_user_notification(decision.strategy.approach),
            decision=decision,
        )
        logger.info(
            "Persona switched",
            extra={"thread_id": thread_id, "from_persona": src.id, "to_persona": dst.id, "confidence": result.confidence},
        )
        return result

    def commit_switch(self, thread_id: str, decision: SwitchingDecision) -> None:
        """Count a switch made with `adapt(..., commit=False)`."""
        if decision.recommended is None:
            raise ValueError("decision does not recommend a switch")
        self._record_switch(self._state(thread_id), decision)

    def _record_switch(self, state: _ThreadState, decision: SwitchingDecision) -> None:
        now = self._clock()
        analysis = decision.analysis
        state.history.append(SwitchRecord(
            timestamp=now,
            from_persona_id=decision.current.id,
            to_persona_id=decision.recommended.id,
            reason=(decision.reasoning.primary_factors or ("Context change detected",))[0],
            confidence=decision.confidence,
            intent=analysis.intent.value if analysis else "",
            complexity=analysis.complexity.level.value if analysis else "",
        ))
        del state.history[:-HISTORY_LIMIT]
        state.switch_count += 1
        state.last_switch_at = now

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    @trace_call("orchestrator.monitor")
    async def monitor(
        self,
        thread_id: str,
        messages: Sequence[Message],
        current_persona_id: str,
        context: Optional[ConversationContext] = None,
        window_size: int = MONITOR_WINDOW,
    ) -> MonitoringReport:
        """
        Scan sliding windows for switching opportunities. Read-only.

        Raises:
            PersonaNotFound: `current_persona_id` does not resolve
        """
        opportunities: List[SwitchOpportunity] = []
        for end in range(window_size, len(messages) + 1):
            window = messages[end - window_size:end]
            analysis = await self.analyzer.analyze(window, context, current_persona_id)
            if not analysis.switching_triggers.should_switch:
                continue
            ranking = await self.scorer.rank(analysis, confidence_threshold=MONITOR_CONFIDENCE_FLOOR, max_results=2)
            top = next((s for s in ranking.rankings if s.persona_id != current_persona_id), None)
            if top is None:
                continue
            reasons = analysis.switching_triggers.reasons
            opportunities.append(SwitchOpportunity(
                trigger_point=end - 1,
                reason=reasons[0] if reasons else "Context change detected",
                suggested_persona_id=top.persona_id,
                suggested_persona_name=top.persona_name,
                confidence=analysis.switching_triggers.confidence,
            ))

        full = await self.analyzer.analyze(messages, context, current_persona_id)
        current = await self.scorer.score(current_persona_id, full)

        if not opportunities:
            assessment = "stable"
        elif len(opportunities) <= 2:
            assessment = "occasional"
        else:
            assessment = "frequent"

        recs: List[str] = []
        if not opportunities:
            recs.append("Current persona is well-aligned with conversation context")
        else:
            recs.append(f"{len(opportunities)} switching opportunities identified")
            strong = sum(1 for o in opportunities if o.confidence > 0.8)
            if strong:
                recs.append(f"{strong} high-confidence switching opportunities detected")
        if current.overall < LOW_SCORE_THRESHOLD:
            recs.append("Current persona compatibility is below optimal threshold")

        return MonitoringReport(
            opportunities=tuple(opportunities),
            current_fit=current.overall,
            improvement_potential=max((o.confidence for o in opportunities), default=0.0),
            assessment=assessment,
            recommendations=tuple(recs),
        )

    def _state(self, thread_id: str) -> _ThreadState:
        state = self._threads.get(thread_id)
        if state is None:
            state = self._threads[thread_id] = _ThreadState()
        return state


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _trait_changes(src: PersonaDefinition, dst: PersonaDefinition) -> List[TraitChange]:
    changes: List[TraitChange] = []
    for trait in dst.traits:
        previous = src.get_trait_value(trait.name)
        if previous != trait.value:
            changes.append(TraitChange(trait.name, previous, trait.value))
    return changes


def _context_variables(context: Optional[ConversationContext]) -> Dict[str, Any]:
    if context is None:
        return {}
    variables: Dict[str, Any] = {}
    for key in ("temperature", "model"):
        if key in context.model_parameters:
            variables[key] = context.model_parameters[key]
    if context.topic:
        variables["topic"] = context.topic
    if context.priority:
        variables["priority"] = context.priority
    if "language" in context.flags:
        variables["language"] = context.flags["language"]
    return variables


def _user_notification(approach: str) -> Optional[str]:
    if approach == "acknowledged":
        return "Adapting my approach to better assist you with this topic."
    return None
