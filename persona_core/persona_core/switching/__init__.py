"""
Context-aware persona switching.

Pipeline components, leaves first:
- ContextAnalyzer: what the conversation is about and how it is going
- CompatibilityScorer: how well each persona fits that context
- TransitionSmoother: how to move from one persona to another
- PersonaStateTracker: per-thread snapshots, evolution and consistency
- SwitchingOrchestrator: whether to switch, and executing the switch
- ContextAwareSwitchingService: one turn end to end
"""

from .analyzer import ContextAnalyzer, ContextChange, ConversationPatterns
from .collaborators import (
    GuardedPersonaStore,
    InjectionRequest,
    InjectionResult,
    InMemoryPersonaStore,
    InMemoryThreadStore,
    PersonaStore,
    PromptInjector,
    TemplatePromptInjector,
    ThreadStore,
)
from .models import (
    CompatibilityScore,
    ContextAnalysisResult,
    ConversationContext,
    Intent,
    Message,
    MessageRole,
    PersonaDefinition,
    PersonaExample,
    PromptTemplate,
    Trait,
)
from .orchestrator import AdaptationResult, MonitoringReport, SwitchingDecision, SwitchingOrchestrator, ThreadPhase
from .scorer import CompatibilityScorer, Ranking, Recommendation
from .service import ContextAwareSwitchingService, MonitoringResult, SwitchingResult, SystemAnalytics
from .smoother import ConversationStats, SmoothTransitionResult, TransitionPreview, TransitionSmoother
from .tracker import (
    ChangeType,
    ConsistencyAnalysis,
    ImpactAssessment,
    PersonaPrediction,
    PersonaStateTracker,
    SnapshotReason,
    StateSnapshot,
)

__all__ = [
    "AdaptationResult",
    "ChangeType",
    "CompatibilityScore",
    "CompatibilityScorer",
    "ConsistencyAnalysis",
    "ContextAnalysisResult",
    "ContextAnalyzer",
    "ContextAwareSwitchingService",
    "ContextChange",
    "ConversationContext",
    "ConversationPatterns",
    "ConversationStats",
    "GuardedPersonaStore",
    "ImpactAssessment",
    "InjectionRequest",
    "InjectionResult",
    "InMemoryPersonaStore",
    "InMemoryThreadStore",
    "Intent",
    "Message",
    "MessageRole",
    "MonitoringReport",
    "MonitoringResult",
    "PersonaDefinition",
    "PersonaExample",
    "PersonaPrediction",
    "PersonaStateTracker",
    "PersonaStore",
    "PromptInjector",
    "PromptTemplate",
    "Ranking",
    "Recommendation",
    "SmoothTransitionResult",
    "SnapshotReason",
    "StateSnapshot",
    "SwitchingDecision",
    "SwitchingOrchestrator",
    "SwitchingResult",
    "SystemAnalytics",
    "TemplatePromptInjector",
    "ThreadPhase",
    "ThreadStore",
    "Trait",
    "TransitionPreview",
    "TransitionSmoother",
]
