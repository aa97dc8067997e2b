"""
Data model shared by the switching pipeline.

Persona definitions come from an external store and are treated as
read-only. Analysis and scoring results are frozen dataclasses: every run
constructs new ones.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp01(value: float) -> float:
    """Clamp a score or confidence to [0, 1]."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


# ---------------------------------------------------------------------------
# Personas
# ---------------------------------------------------------------------------

@dataclass
class Trait:
    """Weighted behavioural attribute, e.g. tone=professional (0.8)."""
    name: str
    value: str
    weight: float = 0.5
    description: Optional[str] = None


@dataclass
class PromptTemplate:
    type: str  # system | user | assistant | few_shot_examples
    template: str
    input_variables: List[str] = field(default_factory=list)
    priority: int = 0
    conditions: Optional[Dict[str, Any]] = None


@dataclass
class PersonaExample:
    input: str
    output: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PersonaDefinition:
    """
    A named bundle of weighted traits, prompt templates and examples.

    Usage:
        persona = PersonaDefinition(
            id="coder",
            name="Coding Assistant",
            description="Precise technical helper",
            category="technical",
            traits=[Trait("expertise_level", "expert", 0.9)],
            prompt_templates=[PromptTemplate("system", "You are a senior engineer.")],
        )
        persona.get_trait_value("expertise_level")  # "expert"
    """
    id: str
    name: str
    description: str = ""
    category: str = "assistant"
    traits: List[Trait] = field(default_factory=list)
    prompt_templates: List[PromptTemplate] = field(default_factory=list)
    examples: List[PersonaExample] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    is_active: bool = True
    is_system: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 1

    def get_trait(self, name: str) -> Optional[Trait]:
        for trait in self.traits:
            if trait.name == name:
                return trait
        return None

    def get_trait_value(self, name: str, default: Optional[str] = None) -> Optional[str]:
        trait = self.get_trait(name)
        return trait.value if trait else default

    def get_trait_weight(self, name: str) -> float:
        trait = self.get_trait(name)
        return trait.weight if trait else 0.0

    def system_template(self) -> Optional[PromptTemplate]:
        """Highest-priority system template, if any."""
        systems = [t for t in self.prompt_templates if t.type == "system"]
        if not systems:
            return None
        return max(systems, key=lambda t: t.priority)

    def few_shot_examples(self) -> List[PersonaExample]:
        return [e for e in self.examples if e.metadata.get("include_in_few_shot", True)]

    def meets_conditions(self, conditions: Dict[str, Any]) -> bool:
        for key, expected in conditions.items():
            if key == "tags":
                wanted = expected if isinstance(expected, (list, tuple, set)) else [expected]
                if not any(tag in self.tags for tag in wanted):
                    return False
            elif key == "category":
                if self.category != expected:
                    return False
            elif key == "traits":
                for trait_name, trait_value in expected.items():
                    if self.get_trait_value(trait_name) != trait_value:
                        return False
            elif self.metadata.get(key) != expected:
                return False
        return True

    def validate(self) -> List[str]:
        """Return a list of validation errors (empty when valid)."""
        errors: List[str] = []
        if not self.name or not self.name.strip():
            errors.append("Name is required")
        if not self.description or not self.description.strip():
            errors.append("Description is required")
        if not self.category or not self.category.strip():
            errors.append("Category is required")
        if not self.traits:
            errors.append("At least one personality trait is required")
        for i, trait in enumerate(self.traits):
            if not trait.name or not trait.name.strip():
                errors.append(f"Trait {i}: name is required")
            if not trait.value or not str(trait.value).strip():
                errors.append(f"Trait {i}: value is required")
            if not isinstance(trait.weight, (int, float)) or not 0 <= trait.weight <= 1:
                errors.append(f"Trait {i}: weight must be between 0 and 1")
        if not self.prompt_templates:
            errors.append("At least one prompt template is required")
        return errors

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "traits": {t.name: t.value for t in self.traits},
        }


# ---------------------------------------------------------------------------
# Conversation input
# ---------------------------------------------------------------------------

class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """Single conversation message."""
    role: MessageRole
    content: str
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        # Naive timestamps are taken as UTC
        if self.timestamp is not None and self.timestamp.tzinfo is None:
            self.timestamp = self.timestamp.replace(tzinfo=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Message:
        ts = data.get("timestamp")
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)
        return cls(role=MessageRole(data["role"]), content=data["content"], timestamp=ts)

    @classmethod
    def user(cls, content: str, timestamp: Optional[datetime] = None) -> Message:
        return cls(MessageRole.USER, content, timestamp)

    @classmethod
    def assistant(cls, content: str, timestamp: Optional[datetime] = None) -> Message:
        return cls(MessageRole.ASSISTANT, content, timestamp)


@dataclass
class ConversationContext:
    """Optional per-thread hints supplied by the embedding application."""
    thread_id: Optional[str] = None
    topic: Optional[str] = None
    priority: Optional[str] = None  # low | medium | high
    model_parameters: Dict[str, Any] = field(default_factory=dict)
    flags: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Context analysis
# ---------------------------------------------------------------------------

class Intent(str, Enum):
    INFORMATION_SEEKING = "information_seeking"
    PROBLEM_SOLVING = "problem_solving"
    CREATIVE_ASSISTANCE = "creative_assistance"
    TECHNICAL_SUPPORT = "technical_support"
    LEARNING_TEACHING = "learning_teaching"
    CASUAL_CONVERSATION = "casual_conversation"
    PROFESSIONAL_CONSULTATION = "professional_consultation"
    RESEARCH_ANALYSIS = "research_analysis"
    DECISION_MAKING = "decision_making"
    ENTERTAINMENT = "entertainment"
    EMOTIONAL_SUPPORT = "emotional_support"
    TASK_COMPLETION = "task_completion"


class ComplexityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXPERT = "expert"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class CommunicationStyle(str, Enum):
    FORMAL = "formal"
    CASUAL = "casual"
    TECHNICAL = "technical"
    CREATIVE = "creative"


class Verbosity(str, Enum):
    CONCISE = "concise"
    MODERATE = "moderate"
    DETAILED = "detailed"


class ExpertiseLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


@dataclass(frozen=True)
class TopicScore:
    topic: str
    relevance: float
    keywords: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ComplexityAssessment:
    level: ComplexityLevel
    points: int  # raw additive total, 0..70
    indicators: Tuple[str, ...] = ()

    @property
    def score(self) -> float:
        """Normalized complexity score in [0, 1]."""
        return clamp01(self.points / 100)


@dataclass(frozen=True)
class NamedEmotion:
    emotion: str
    confidence: float


@dataclass(frozen=True)
class EmotionalContext:
    sentiment: Sentiment
    intensity: float
    emotions: Tuple[NamedEmotion, ...] = ()


@dataclass(frozen=True)
class UserPatterns:
    communication_style: CommunicationStyle
    verbosity: Verbosity
    expertise_level: ExpertiseLevel
    interaction_preferences: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TraitAdjustment:
    trait: str
    value: str
    weight: float


@dataclass(frozen=True)
class SwitchingTriggers:
    should_switch: bool
    confidence: float
    total: int = 0
    reasons: Tuple[str, ...] = ()
    suggested_trait_adjustments: Tuple[TraitAdjustment, ...] = ()


@dataclass(frozen=True)
class AnalysisMetadata:
    analyzed_at: datetime
    analysis_version: str
    message_count: int
    conversation_duration_seconds: float = 0.0
    current_persona_id: Optional[str] = None
    degraded: bool = False


@dataclass(frozen=True)
class ContextAnalysisResult:
    intent: Intent
    topics: Tuple[TopicScore, ...]
    complexity: ComplexityAssessment
    emotional_context: EmotionalContext
    user_patterns: UserPatterns
    switching_triggers: SwitchingTriggers
    metadata: AnalysisMetadata

    @property
    def topic_names(self) -> List[str]:
        return [t.topic for t in self.topics]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["complexity"]["score"] = self.complexity.score
        data["metadata"]["analyzed_at"] = self.metadata.analyzed_at.isoformat()
        return data


# ---------------------------------------------------------------------------
# Compatibility scoring
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SubScores:
    context_alignment: float
    trait_matching: float
    intent_compatibility: float
    user_pattern_alignment: float
    complexity_fit: float
    emotional_alignment: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ScoreRationale:
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()
    matching_traits: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CompatibilityScore:
    persona_id: str
    persona_name: str
    overall: float
    sub_scores: SubScores
    rationale: ScoreRationale
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
