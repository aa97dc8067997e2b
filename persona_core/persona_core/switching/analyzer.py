"""
Context analysis for persona switching.

Turns a message sequence into a ContextAnalysisResult: intent, topics,
complexity, emotional context, user patterns and the switching triggers
synthesized from them. Heuristic and keyword driven; the tables live in
`lexicons`.
"""

from __future__ import annotations
import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import AnalysisFailure
from ..obs.logging import get_logger
from ..obs.tracing import Tracer, get_tracer, trace_call
from . import text as textutil
from .lexicons import DEFAULT_LEXICONS, AnalyzerLexicons
from .models import (
    AnalysisMetadata,
    CommunicationStyle,
    ComplexityAssessment,
    ComplexityLevel,
    ContextAnalysisResult,
    ConversationContext,
    EmotionalContext,
    ExpertiseLevel,
    Intent,
    Message,
    MessageRole,
    NamedEmotion,
    Sentiment,
    SwitchingTriggers,
    TopicScore,
    TraitAdjustment,
    UserPatterns,
    Verbosity,
    clamp01,
    utcnow,
)

logger = get_logger("persona_core")

ANALYSIS_VERSION = "1.0.0"
SWITCH_TRIGGER_THRESHOLD = 40

# Complexity points and the level thresholds applied to their sum
VOCABULARY_DIVERSITY_POINTS = 20
SENTENCE_LENGTH_POINTS = 15
TECHNICAL_TERM_POINTS = 25
CONVERSATION_DEPTH_POINTS = 10
COMPLEXITY_LEVELS: Tuple[Tuple[int, ComplexityLevel], ...] = (
    (50, ComplexityLevel.EXPERT),
    (30, ComplexityLevel.HIGH),
    (15, ComplexityLevel.MEDIUM),
)

GENERAL_TOPIC = TopicScore(topic="general", relevance=1.0, keywords=("conversation",))


def complexity_level_for(points: int) -> ComplexityLevel:
    for threshold, level in COMPLEXITY_LEVELS:
        if points >= threshold:
            return level
    return ComplexityLevel.LOW


@dataclass(frozen=True)
class ContextChange:
    """Difference between two analyses of the same conversation."""
    significant_changes: bool
    change_indicators: Tuple[str, ...]
    recommended_action: str  # maintain | adapt | switch
    confidence: float
    message_delta: int = 0


@dataclass
class WindowSummary:
    start: int
    end: int
    intent: Intent
    sentiment: Sentiment
    complexity: ComplexityLevel
    questions: int


@dataclass
class ConversationPatterns:
    windows: List[WindowSummary] = field(default_factory=list)
    intent_trend: List[str] = field(default_factory=list)
    sentiment_trend: List[str] = field(default_factory=list)
    complexity_trend: str = "stable"  # increasing | decreasing | stable
    engagement_trend: str = "stable"
    question_answer_pairs: int = 0
    dominant_intent: Optional[Intent] = None
    patterns: List[Dict[str, Any]] = field(default_factory=list)


class ContextAnalyzer:
    """
    Analyzes conversations for persona switching.

    Usage:
        analyzer = ContextAnalyzer()
        result = await analyzer.analyze(messages, current_persona_id="casual")
        if result.switching_triggers.should_switch:
            ...

    `analyze` never raises for content problems: a failing stage yields the
    fixed default analysis and an error log entry.
    """

    def __init__(
        self,
        lexicons: AnalyzerLexicons = DEFAULT_LEXICONS,
        tracer: Optional[Tracer] = None,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lexicons = lexicons
        self.tracer = tracer or get_tracer()
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @trace_call("analyzer.analyze")
    async def analyze(
        self,
        messages: Sequence[Message],
        session_context: Optional[ConversationContext] = None,
        current_persona_id: Optional[str] = None,
    ) -> ContextAnalysisResult:
        """
        Analyze a conversation.

        Args:
            messages: Ordered conversation messages
            session_context: Optional per-thread hints
            current_persona_id: Active persona, recorded in metadata

        Returns:
            A fresh ContextAnalysisResult (the default one on internal failure)

        Raises:
            TypeError: messages is None
        """
        if messages is None:
            raise TypeError("messages must be a sequence of Message")
        messages = list(messages)

        try:
            conversation = "\n".join(m.content for m in messages)
            intent, topics, complexity, emotion, patterns = await asyncio.gather(
                self._stage("intent", self._identify_intent, conversation),
                self._stage("topics", self._analyze_topics, conversation),
                self._stage("complexity", self._assess_complexity, conversation, messages),
                self._stage("emotion", self._analyze_emotion, conversation),
                self._stage("user_patterns", self._detect_user_patterns, messages),
            )
            triggers = await self._stage(
                "triggers", self._synthesize_triggers, intent, topics, complexity, emotion, patterns
            )
        except AnalysisFailure as e:
            logger.error(
                f"Context analysis failed, using default: {e}",
                extra={"persona_id": current_persona_id, "stage": e.stage, "error_code": type(e.cause).__name__},
            )
            return self.default_analysis(messages, current_persona_id)

        result = ContextAnalysisResult(
            intent=intent,
            topics=topics,
            complexity=complexity,
            emotional_context=emotion,
            user_patterns=patterns,
            switching_triggers=triggers,
            metadata=AnalysisMetadata(
                analyzed_at=self._clock(),
                analysis_version=ANALYSIS_VERSION,
                message_count=len(messages),
                conversation_duration_seconds=conversation_duration(messages),
                current_persona_id=current_persona_id,
            ),
        )
        logger.debug(
            "Context analysis completed",
            extra={
                "persona_id": current_persona_id,
                "confidence": triggers.confidence,
                "tags": [intent.value, complexity.level.value, "switch" if triggers.should_switch else "stay"],
            },
        )
        return result

    def default_analysis(self, messages: Sequence[Message], current_persona_id: Optional[str] = None) -> ContextAnalysisResult:
        """The fixed safe analysis returned when anything goes wrong."""
        return ContextAnalysisResult(
            intent=Intent.CASUAL_CONVERSATION,
            topics=(GENERAL_TOPIC,),
            complexity=ComplexityAssessment(level=ComplexityLevel.LOW, points=0),
            emotional_context=EmotionalContext(sentiment=Sentiment.NEUTRAL, intensity=0.0),
            user_patterns=UserPatterns(
                communication_style=CommunicationStyle.CASUAL,
                verbosity=Verbosity.MODERATE,
                expertise_level=ExpertiseLevel.INTERMEDIATE,
            ),
            switching_triggers=SwitchingTriggers(should_switch=False, confidence=0.0),
            metadata=AnalysisMetadata(
                analyzed_at=self._clock(),
                analysis_version=ANALYSIS_VERSION,
                message_count=len(messages),
                conversation_duration_seconds=conversation_duration(messages),
                current_persona_id=current_persona_id,
                degraded=True,
            ),
        )

    async def analyze_context_changes(
        self,
        previous_messages: Sequence[Message],
        new_messages: Sequence[Message],
        current_persona_id: Optional[str] = None,
    ) -> ContextChange:
        """Compare the analyses of two conversation states."""
        previous, current = await asyncio.gather(
            self.analyze(previous_messages, None, current_persona_id),
            self.analyze(new_messages, None, current_persona_id),
        )
        return compare_analyses(previous, current)

    async def extract_conversation_patterns(
        self,
        messages: Sequence[Message],
        window_size: int = 5,
        time_window_minutes: float = 30,
    ) -> ConversationPatterns:
        """
        Sliding-window trend extraction.

        Messages carrying a timestamp older than `time_window_minutes` before
        the newest one are ignored; untimed messages are always kept.
        """
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        recent = _within_time_window(list(messages), time_window_minutes)
        out = ConversationPatterns()
        if not recent:
            return out

        for start in range(0, max(1, len(recent) - window_size + 1)):
            window = recent[start:start + window_size]
            conversation = "\n".join(m.content for m in window)
            out.windows.append(WindowSummary(
                start=start,
                end=start + len(window),
                intent=self._identify_intent(conversation),
                sentiment=self._analyze_emotion(conversation).sentiment,
                complexity=self._assess_complexity(conversation, window).level,
                questions=sum(1 for m in window if "?" in m.content),
            ))

        out.intent_trend = _collapse([w.intent.value for w in out.windows])
        out.sentiment_trend = _collapse([w.sentiment.value for w in out.windows])
        out.complexity_trend = _direction([_LEVEL_ORDER[w.complexity] for w in out.windows])
        user_lengths = [len(m.content) for m in recent if m.role == MessageRole.USER]
        half = len(user_lengths) // 2
        if half:
            first = sum(user_lengths[:half]) / half
            second = sum(user_lengths[half:]) / (len(user_lengths) - half)
            out.engagement_trend = _direction([first, second], tolerance=0.2 * max(first, 1.0))

        out.question_answer_pairs = sum(
            1 for a, b in zip(recent, recent[1:])
            if a.role == MessageRole.USER and "?" in a.content and b.role == MessageRole.ASSISTANT
        )
        counts = Counter(w.intent for w in out.windows)
        out.dominant_intent = max(counts, key=lambda i: (counts[i], -_INTENT_ORDER[i])) if counts else None
        if out.question_answer_pairs:
            out.patterns.append({
                "pattern": "question_answer_sequence",
                "frequency": out.question_answer_pairs,
                "context": "Information seeking pattern",
                "persona_implication": "Requires an informative and patient persona",
            })
        return out

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _stage(self, name: str, fn: Callable[..., Any], *args: Any) -> Any:
        async with self.tracer.stage(f"analyzer.{name}"):
            try:
                return fn(*args)
            except Exception as e:
                raise AnalysisFailure(name, e) from e

    def _identify_intent(self, conversation: str) -> Intent:
        lowered = conversation.lower()
        best: Optional[str] = None
        best_score = 0
        for intent, keywords in self.lexicons.intents.items():
            score = sum(textutil.count_keyword(lowered, kw) for kw in keywords)
            if score > best_score:
                best, best_score = intent, score
        return Intent(best) if best else Intent.CASUAL_CONVERSATION

    def _analyze_topics(self, conversation: str) -> Tuple[TopicScore, ...]:
        chunks = textutil.split_text(conversation, self.chunk_size, self.chunk_overlap)
        if not chunks:
            return (GENERAL_TOPIC,)
        # Rank terms of the most recent chunk against the whole conversation
        ranked = textutil.tfidf_terms(
            chunks,
            doc_index=len(chunks) - 1,
            min_score=0.1,
            min_length=3,
            stopwords=self.lexicons.stopwords,
            limit=10,
        )
        if not ranked:
            return (GENERAL_TOPIC,)
        top = ranked[0][1]
        return tuple(TopicScore(topic=term, relevance=clamp01(score / top), keywords=(term,)) for term, score in ranked)

    def _assess_complexity(self, conversation: str, messages: Sequence[Message]) -> ComplexityAssessment:
        points = 0
        indicators: List[str] = []

        words = textutil.tokenize(conversation)
        if words and len(set(words)) / len(words) > 0.7:
            points += VOCABULARY_DIVERSITY_POINTS
            indicators.append("High vocabulary diversity")

        sentence_lengths = [len(textutil.tokenize(s)) for s in textutil.sentences(conversation)]
        if sentence_lengths and sum(sentence_lengths) / len(sentence_lengths) > 20:
            points += SENTENCE_LENGTH_POINTS
            indicators.append("Complex sentence structure")

        if textutil.count_keywords(conversation, self.lexicons.technical_terms) >= 3:
            points += TECHNICAL_TERM_POINTS
            indicators.append("Technical terminology present")

        if len(messages) > 10:
            points += CONVERSATION_DEPTH_POINTS
            indicators.append("Extended conversation depth")

        return ComplexityAssessment(level=complexity_level_for(points), points=points, indicators=tuple(indicators))

    def _analyze_emotion(self, conversation: str) -> EmotionalContext:
        lowered = conversation.lower()
        positive = sum(textutil.count_keyword(lowered, w) for w in self.lexicons.positive_words)
        negative = sum(textutil.count_keyword(lowered, w) for w in self.lexicons.negative_words)

        emotions = []
        for emotion in self.lexicons.named_emotions:
            hits = textutil.count_keyword(lowered, emotion)
            if hits:
                emotions.append(NamedEmotion(emotion=emotion, confidence=clamp01(hits / 10)))

        if positive > negative:
            sentiment = Sentiment.POSITIVE
        elif negative > positive:
            sentiment = Sentiment.NEGATIVE
        else:
            sentiment = Sentiment.NEUTRAL

        return EmotionalContext(sentiment=sentiment, intensity=clamp01((positive + negative) / 10), emotions=tuple(emotions))

    def _detect_user_patterns(self, messages: Sequence[Message]) -> UserPatterns:
        user_messages = [m for m in messages if m.role == MessageRole.USER]
        user_text = " ".join(m.content for m in user_messages)

        style = CommunicationStyle.CASUAL
        best = 0
        for bucket, keywords in self.lexicons.style_buckets.items():
            score = textutil.count_keywords(user_text, keywords)
            if score > best:
                style, best = CommunicationStyle(bucket), score

        avg_length = sum(len(m.content) for m in user_messages) / len(user_messages) if user_messages else 0
        if avg_length < 50:
            verbosity = Verbosity.CONCISE
        elif avg_length < 200:
            verbosity = Verbosity.MODERATE
        else:
            verbosity = Verbosity.DETAILED

        expert = textutil.count_keywords(user_text, self.lexicons.expertise_terms)
        beginner = textutil.count_keywords(user_text, self.lexicons.beginner_terms)
        if expert > beginner and expert > 2:
            expertise = ExpertiseLevel.EXPERT
        elif expert > beginner:
            expertise = ExpertiseLevel.ADVANCED
        elif beginner > 0:
            expertise = ExpertiseLevel.BEGINNER
        else:
            expertise = ExpertiseLevel.INTERMEDIATE

        preferences = tuple(
            pref for pref, keywords in self.lexicons.interaction_preferences.items()
            if textutil.count_keywords(user_text, keywords) > 0
        )
        return UserPatterns(
            communication_style=style,
            verbosity=verbosity,
            expertise_level=expertise,
            interaction_preferences=preferences,
        )

    def _synthesize_triggers(
        self,
        intent: Intent,
        topics: Tuple[TopicScore, ...],
        complexity: ComplexityAssessment,
        emotion: EmotionalContext,
        patterns: UserPatterns,
    ) -> SwitchingTriggers:
        total = 0
        reasons: List[str] = []
        adjustments: List[TraitAdjustment] = []

        if intent in (Intent.TECHNICAL_SUPPORT, Intent.RESEARCH_ANALYSIS):
            total += 30
            reasons.append(f"Technical or analytical intent detected: {intent.value}")
            adjustments.append(TraitAdjustment("expertise_level", "expert", 0.9))

        if complexity.level in (ComplexityLevel.HIGH, ComplexityLevel.EXPERT):
            total += 25
            reasons.append(f"High complexity conversation: {complexity.level.value}")
            adjustments.append(TraitAdjustment("technical_depth", "detailed", 0.8))

        if emotion.intensity > 0.7:
            total += 20
            reasons.append("High emotional intensity detected")
            adjustments.append(TraitAdjustment("empathy", "high", 0.9))

        if patterns.communication_style == CommunicationStyle.FORMAL:
            total += 15
            reasons.append("Formal communication style detected")
            adjustments.append(TraitAdjustment("formality", "formal", 0.7))

        technical_topics = set(self.lexicons.technical_topics)
        if any(t.topic in technical_topics for t in topics):
            total += 20
            reasons.append("Technical topics identified")
            adjustments.append(TraitAdjustment("communication_style", "technical", 0.8))

        return SwitchingTriggers(
            should_switch=total >= SWITCH_TRIGGER_THRESHOLD,
            confidence=clamp01(total / 100),
            total=total,
            reasons=tuple(reasons),
            suggested_trait_adjustments=tuple(adjustments),
        )


def compare_analyses(previous: ContextAnalysisResult, current: ContextAnalysisResult) -> ContextChange:
    changes: List[str] = []
    if previous.intent != current.intent:
        changes.append(f"Intent changed from {previous.intent.value} to {current.intent.value}")
    if previous.complexity.level != current.complexity.level:
        changes.append(f"Complexity changed from {previous.complexity.level.value} to {current.complexity.level.value}")
    if previous.emotional_context.sentiment != current.emotional_context.sentiment:
        changes.append(
            f"Sentiment changed from {previous.emotional_context.sentiment.value} to {current.emotional_context.sentiment.value}"
        )
    if previous.user_patterns.communication_style != current.user_patterns.communication_style:
        changes.append(
            f"Communication style changed from {previous.user_patterns.communication_style.value} "
            f"to {current.user_patterns.communication_style.value}"
        )

    if not changes:
        action = "maintain"
    elif len(changes) <= 2:
        action = "adapt"
    else:
        action = "switch"

    return ContextChange(
        significant_changes=bool(changes),
        change_indicators=tuple(changes),
        recommended_action=action,
        confidence=clamp01(len(changes) / 4),
        message_delta=current.metadata.message_count - previous.metadata.message_count,
    )


def conversation_duration(messages: Sequence[Message]) -> float:
    stamps = sorted(m.timestamp for m in messages if m.timestamp is not None)
    if len(stamps) < 2:
        return 0.0
    return (stamps[-1] - stamps[0]).total_seconds()


_LEVEL_ORDER = {ComplexityLevel.LOW: 0, ComplexityLevel.MEDIUM: 1, ComplexityLevel.HIGH: 2, ComplexityLevel.EXPERT: 3}
_INTENT_ORDER = {intent: i for i, intent in enumerate(Intent)}


def _within_time_window(messages: List[Message], minutes: float) -> List[Message]:
    stamps = [m.timestamp for m in messages if m.timestamp is not None]
    if not stamps:
        return messages
    cutoff = max(stamps) - timedelta(minutes=minutes)
    return [m for m in messages if m.timestamp is None or m.timestamp >= cutoff]


def _collapse(labels: List[str]) -> List[str]:
    """Drop consecutive duplicates: [a, a, b, a] -> [a, b, a]."""
    out: List[str] = []
    for label in labels:
        if not out or out[-1] != label:
            out.append(label)
    return out


def _direction(values: List[float], tolerance: float = 0.0) -> str:
    if len(values) < 2:
        return "stable"
    delta = values[-1] - values[0]
    if delta > tolerance:
        return "increasing"
    if delta < -tolerance:
        return "decreasing"
    return "stable"
