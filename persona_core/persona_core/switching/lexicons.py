"""
Keyword and scoring tables for the switching pipeline.

Everything the analyzer, scorer and smoother match against lives here as
immutable data handed to them at construction. Tuning a lexicon means
building a new AnalyzerLexicons (or loading one from YAML), never editing
algorithm code.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from ..errors import ConfigurationError


def _frozen(table: Dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType({k: tuple(v) if isinstance(v, (list, tuple)) else v for k, v in table.items()})


# Order matters: earlier intents win ties.
INTENT_KEYWORDS: Mapping[str, Tuple[str, ...]] = _frozen({
    "information_seeking": ["what", "how", "why", "when", "where", "explain", "tell me", "information"],
    "problem_solving": ["problem", "issue", "fix", "solve", "troubleshoot", "debug", "error"],
    "creative_assistance": ["create", "generate", "design", "brainstorm", "creative", "artistic", "write"],
    "technical_support": ["technical", "code", "programming", "software", "configure", "setup"],
    "learning_teaching": ["learn", "teach", "tutorial", "lesson", "understand", "concept"],
    "casual_conversation": ["chat", "talk", "casual", "friendly", "conversation"],
    "professional_consultation": ["business", "professional", "consultation", "advice", "strategy"],
    "research_analysis": ["research", "analyze", "study", "investigate", "data", "analysis"],
    "decision_making": ["decide", "choice", "option", "recommendation", "should i", "better"],
    "entertainment": ["fun", "entertainment", "joke", "game", "story", "amusing"],
    "emotional_support": ["help", "support", "feeling", "emotion", "difficult", "stress"],
    "task_completion": ["complete", "finish", "task", "goal", "accomplish", "done"],
})

STYLE_BUCKETS: Mapping[str, Tuple[str, ...]] = _frozen({
    "formal": ["please", "thank you", "could you", "would you", "sir", "madam"],
    "casual": ["hey", "hi", "yeah", "ok", "cool", "awesome"],
    "technical": ["function", "variable", "class", "method", "api", "database"],
    "creative": ["creative", "imagine", "design", "artistic", "story", "idea"],
})

INTERACTION_PREFERENCES: Mapping[str, Tuple[str, ...]] = _frozen({
    "examples_preferred": ["example", "show me", "demonstrate"],
    "detailed_explanations": ["step by step", "detailed", "explain"],
    "concise_responses": ["quick", "brief", "summary"],
})

STOPWORDS: Tuple[str, ...] = (
    "the", "and", "for", "are", "but", "not", "you", "your", "all", "any", "can", "had", "her",
    "was", "one", "our", "out", "has", "him", "his", "how", "its", "may", "new", "now", "old",
    "see", "two", "who", "did", "get", "let", "say", "she", "too", "use", "this", "that", "with",
    "have", "from", "they", "will", "would", "there", "their", "what", "about", "which", "when",
    "make", "like", "than", "then", "them", "been", "into", "some", "could", "does", "just",
    "also", "more", "very", "here", "were", "should", "because", "these", "those", "being",
)


@dataclass(frozen=True)
class AnalyzerLexicons:
    """
    Keyword tables consumed by the context analyzer.

    Usage:
        lex = AnalyzerLexicons.from_yaml("config/lexicons.yml")
        analyzer = ContextAnalyzer(lexicons=lex)
    """
    intents: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: INTENT_KEYWORDS)
    technical_terms: Tuple[str, ...] = ("algorithm", "implementation", "architecture", "framework", "methodology")
    positive_words: Tuple[str, ...] = ("good", "great", "excellent", "happy", "pleased", "satisfied", "wonderful")
    negative_words: Tuple[str, ...] = ("bad", "terrible", "awful", "sad", "angry", "frustrated", "disappointed")
    named_emotions: Tuple[str, ...] = ("excited", "nervous", "curious", "confused", "confident", "worried")
    style_buckets: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: STYLE_BUCKETS)
    expertise_terms: Tuple[str, ...] = ("advanced", "complex", "sophisticated", "architectural", "systematic")
    beginner_terms: Tuple[str, ...] = ("basic", "simple", "beginner", "start", "how to")
    interaction_preferences: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: INTERACTION_PREFERENCES)
    technical_topics: Tuple[str, ...] = ("code", "programming", "technical", "software", "development")
    stopwords: Tuple[str, ...] = STOPWORDS

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional[AnalyzerLexicons] = None) -> AnalyzerLexicons:
        """Overlay `data` on `base` (defaults when omitted). Unknown keys are rejected."""
        base = base or cls()
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown lexicon tables: {sorted(unknown)}")

        updates: Dict[str, Any] = {}
        for key, value in data.items():
            current = getattr(base, key)
            if isinstance(current, Mapping):
                if not isinstance(value, dict):
                    raise ConfigurationError(f"Lexicon table '{key}' must be a mapping")
                merged = dict(current)
                merged.update({k: [str(w).lower() for w in v] for k, v in value.items()})
                updates[key] = _frozen(merged)
            else:
                if not isinstance(value, (list, tuple)):
                    raise ConfigurationError(f"Lexicon table '{key}' must be a list")
                updates[key] = tuple(str(w).lower() for w in value)
        return replace(base, **updates)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> AnalyzerLexicons:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: expected a mapping of lexicon tables")
        return cls.from_dict(data)


DEFAULT_LEXICONS = AnalyzerLexicons()


# ---------------------------------------------------------------------------
# Scoring tables
# ---------------------------------------------------------------------------

# Relative weights of the compatibility sub-scores; they sum to 1.
SUB_SCORE_WEIGHTS: Mapping[str, float] = MappingProxyType({
    "context_alignment": 0.20,
    "trait_matching": 0.25,
    "intent_compatibility": 0.25,
    "user_pattern_alignment": 0.15,
    "complexity_fit": 0.10,
    "emotional_alignment": 0.05,
})

# Fixed trait axes used for vector similarity.
TRAIT_VECTOR_AXES: Tuple[str, ...] = (
    "tone", "formality", "expertise_level", "communication_style",
    "creativity", "empathy", "precision", "verbosity",
)

TRAIT_VALUE_SCALE: Mapping[str, float] = MappingProxyType({
    "low": 0.2,
    "basic": 0.2,
    "moderate": 0.5,
    "medium": 0.5,
    "casual": 0.5,
    "high": 0.8,
    "detailed": 0.8,
    "formal": 0.8,
    "expert": 1.0,
    "advanced": 1.0,
    "technical": 0.7,
    "creative": 0.8,
    "professional": 0.6,
})

EXPERTISE_SCALE: Mapping[str, float] = MappingProxyType({
    "beginner": 0.2,
    "intermediate": 0.5,
    "advanced": 0.8,
    "expert": 1.0,
})


@dataclass(frozen=True)
class IntentTraitProfile:
    """Traits an intent rewards (trait, value, weight) and penalizes (trait, value, penalty)."""
    preferred: Tuple[Tuple[str, str, float], ...] = ()
    penalized: Tuple[Tuple[str, str, float], ...] = ()


INTENT_TRAIT_PROFILES: Mapping[str, IntentTraitProfile] = MappingProxyType({
    "technical_support": IntentTraitProfile(
        preferred=(("expertise_level", "expert", 0.9), ("technical_depth", "detailed", 0.8), ("precision", "high", 0.7)),
        penalized=(("creativity", "high", 0.3), ("humor", "high", 0.2)),
    ),
    "creative_assistance": IntentTraitProfile(
        preferred=(("creativity", "high", 0.9), ("communication_style", "creative", 0.7)),
        penalized=(("formality", "formal", 0.4),),
    ),
    "emotional_support": IntentTraitProfile(
        preferred=(("empathy", "high", 0.9), ("tone", "supportive", 0.8), ("patience", "high", 0.7)),
    ),
    "research_analysis": IntentTraitProfile(
        preferred=(("precision", "high", 0.8), ("technical_depth", "detailed", 0.7), ("expertise_level", "expert", 0.6)),
        penalized=(("humor", "high", 0.2),),
    ),
    "learning_teaching": IntentTraitProfile(
        preferred=(("patience", "high", 0.8), ("verbosity", "detailed", 0.6), ("empathy", "moderate", 0.4)),
    ),
    "casual_conversation": IntentTraitProfile(
        preferred=(("tone", "friendly", 0.8), ("formality", "casual", 0.7)),
        penalized=(("formality", "formal", 0.3),),
    ),
})

# Category -> intent affinity; unknown pairs score 0.5.
CATEGORY_INTENT_AFFINITY: Mapping[str, Mapping[str, float]] = MappingProxyType({
    "technical": MappingProxyType({
        "technical_support": 0.9,
        "problem_solving": 0.8,
        "research_analysis": 0.7,
        "information_seeking": 0.6,
        "creative_assistance": 0.2,
        "emotional_support": 0.1,
        "casual_conversation": 0.3,
        "professional_consultation": 0.7,
        "learning_teaching": 0.6,
        "decision_making": 0.5,
        "entertainment": 0.1,
        "task_completion": 0.6,
    }),
    "creative": MappingProxyType({
        "creative_assistance": 0.9,
        "entertainment": 0.7,
        "casual_conversation": 0.6,
        "learning_teaching": 0.5,
        "information_seeking": 0.4,
        "technical_support": 0.2,
        "problem_solving": 0.4,
        "research_analysis": 0.3,
        "professional_consultation": 0.3,
        "decision_making": 0.4,
        "emotional_support": 0.5,
        "task_completion": 0.3,
    }),
})

ALWAYS_RELEVANT_TRAITS: Tuple[str, ...] = (
    "communication_style", "expertise_level", "technical_depth", "empathy", "tone", "formality", "verbosity",
)


# ---------------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------------

TRAIT_HIERARCHIES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "expertise_level": ("beginner", "intermediate", "advanced", "expert"),
    "formality": ("casual", "moderate", "formal"),
    "verbosity": ("concise", "moderate", "detailed"),
    "creativity": ("low", "moderate", "high"),
    "empathy": ("low", "moderate", "high"),
    "precision": ("low", "moderate", "high"),
})

DEFAULT_TRAIT_PRIORITIES: Mapping[str, float] = MappingProxyType({
    "communication_style": 0.9,
    "tone": 0.8,
    "expertise_level": 0.7,
    "formality": 0.6,
    "verbosity": 0.5,
    "empathy": 0.4,
    "creativity": 0.3,
    "precision": 0.2,
})

CORE_TRANSITION_TRAITS: Tuple[str, ...] = ("communication_style", "tone", "expertise_level", "formality")

HIGH_IMPACT_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("casual", "formal"),
    ("beginner", "expert"),
    ("concise", "detailed"),
    ("low", "high"),
)


def is_high_impact(from_value: str, to_value: str) -> bool:
    return any(
        (from_value == a and to_value == b) or (from_value == b and to_value == a)
        for a, b in HIGH_IMPACT_PAIRS
    )
