"""
Tests for context analysis.
"""

from datetime import datetime, timedelta, timezone

import pytest

from persona_core.switching.analyzer import ANALYSIS_VERSION, ContextAnalyzer, compare_analyses
from persona_core.switching.lexicons import AnalyzerLexicons
from persona_core.switching.models import (
    CommunicationStyle,
    ComplexityLevel,
    ConversationContext,
    ExpertiseLevel,
    Intent,
    Message,
    Sentiment,
)
from persona_core.errors import ConfigurationError

from conftest import CASUAL_MESSAGES, TECHNICAL_MESSAGE, FakeClock, user_messages


@pytest.fixture
def analyzer(tracer, clock):
    return ContextAnalyzer(tracer=tracer, clock=clock)


class TestAnalyze:
    """End-to-end analysis of whole conversations."""

    @pytest.mark.asyncio
    async def test_casual_greeting_does_not_trigger(self, analyzer, casual_messages):
        result = await analyzer.analyze(casual_messages, current_persona_id="casual")

        assert result.intent in (Intent.INFORMATION_SEEKING, Intent.CASUAL_CONVERSATION)
        assert result.switching_triggers.should_switch is False
        assert result.metadata.current_persona_id == "casual"
        assert result.metadata.message_count == 2
        assert result.metadata.degraded is False

    @pytest.mark.asyncio
    async def test_technical_request_triggers_switch(self, analyzer, technical_messages):
        result = await analyzer.analyze(technical_messages, current_persona_id="casual")

        assert result.intent == Intent.TECHNICAL_SUPPORT
        assert result.complexity.level in (ComplexityLevel.HIGH, ComplexityLevel.EXPERT)
        assert "Technical terminology present" in result.complexity.indicators
        assert result.switching_triggers.should_switch is True
        assert result.switching_triggers.confidence > 0.4
        assert result.user_patterns.communication_style == CommunicationStyle.FORMAL
        assert "detailed_explanations" in result.user_patterns.interaction_preferences

        suggested = {a.trait for a in result.switching_triggers.suggested_trait_adjustments}
        assert {"expertise_level", "technical_depth"} <= suggested

    @pytest.mark.asyncio
    async def test_scores_are_bounded(self, analyzer):
        messages = user_messages(
            "I am so frustrated, angry, sad and disappointed. This is terrible, awful, bad!",
            "Terrible terrible terrible bad bad awful awful",
        )
        result = await analyzer.analyze(messages)

        assert result.emotional_context.sentiment == Sentiment.NEGATIVE
        assert 0.0 <= result.emotional_context.intensity <= 1.0
        assert 0.0 <= result.switching_triggers.confidence <= 1.0
        assert 0.0 <= result.complexity.score <= 1.0
        for topic in result.topics:
            assert 0.0 <= topic.relevance <= 1.0

    @pytest.mark.asyncio
    async def test_analysis_is_repeatable(self, analyzer, technical_messages):
        first = await analyzer.analyze(technical_messages, current_persona_id="casual")
        second = await analyzer.analyze(technical_messages, current_persona_id="casual")
        assert first == second

    @pytest.mark.asyncio
    async def test_empty_conversation(self, analyzer):
        result = await analyzer.analyze([])
        assert result.intent == Intent.CASUAL_CONVERSATION
        assert result.topic_names == ["general"]
        assert result.switching_triggers.should_switch is False

    @pytest.mark.asyncio
    async def test_none_messages_is_misuse(self, analyzer):
        with pytest.raises(TypeError):
            await analyzer.analyze(None)

    @pytest.mark.asyncio
    async def test_failing_stage_yields_default_analysis(self, analyzer, technical_messages, monkeypatch):
        def explode(conversation):
            raise RuntimeError("lexicon corrupted")

        monkeypatch.setattr(analyzer, "_identify_intent", explode)
        result = await analyzer.analyze(technical_messages, current_persona_id="casual")

        assert result.metadata.degraded is True
        assert result.intent == Intent.CASUAL_CONVERSATION
        assert result.switching_triggers.should_switch is False
        assert result.switching_triggers.confidence == 0.0
        assert result.metadata.analysis_version == ANALYSIS_VERSION

    @pytest.mark.asyncio
    async def test_stages_are_traced(self, analyzer, collector, casual_messages):
        await analyzer.analyze(casual_messages)
        names = collector.names()
        assert "analyzer.analyze" in names
        for stage in ("intent", "topics", "complexity", "emotion", "user_patterns", "triggers"):
            assert f"analyzer.{stage}" in names

    @pytest.mark.asyncio
    async def test_duration_from_timestamps(self, analyzer):
        t0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        messages = [
            Message.user("hello", t0),
            Message.assistant("hi", t0 + timedelta(seconds=30)),
            Message.user("bye", t0 + timedelta(seconds=90)),
        ]
        result = await analyzer.analyze(messages)
        assert result.metadata.conversation_duration_seconds == 90.0

    @pytest.mark.asyncio
    async def test_session_context_is_accepted(self, analyzer, casual_messages):
        result = await analyzer.analyze(casual_messages, ConversationContext(thread_id="t1", topic="chat"))
        assert result.metadata.message_count == 2


class TestUserPatterns:
    @pytest.mark.asyncio
    async def test_expertise_detection(self, analyzer):
        expert = await analyzer.analyze(user_messages(
            "We need an advanced, sophisticated and systematic architectural review of this complex system"
        ))
        assert expert.user_patterns.expertise_level == ExpertiseLevel.EXPERT

        beginner = await analyzer.analyze(user_messages("I am a beginner, how to start with something simple?"))
        assert beginner.user_patterns.expertise_level == ExpertiseLevel.BEGINNER

    @pytest.mark.asyncio
    async def test_only_user_messages_count(self, analyzer):
        messages = [
            Message.user("hey"),
            Message.assistant("Please could you kindly confirm, thank you, would you, sir"),
        ]
        result = await analyzer.analyze(messages)
        assert result.user_patterns.communication_style == CommunicationStyle.CASUAL


class TestLexicons:
    @pytest.mark.asyncio
    async def test_custom_lexicon_changes_intent(self, tracer):
        lexicons = AnalyzerLexicons.from_dict({"intents": {"entertainment": ["joke", "fun", "great", "tell me"]}})
        analyzer = ContextAnalyzer(lexicons=lexicons, tracer=tracer)
        result = await analyzer.analyze(user_messages(*CASUAL_MESSAGES))
        assert result.intent == Intent.ENTERTAINMENT

    def test_unknown_table_rejected(self):
        with pytest.raises(ConfigurationError):
            AnalyzerLexicons.from_dict({"slang": ["yo"]})

    def test_yaml_lexicons(self, tmp_path):
        path = tmp_path / "lexicons.yml"
        path.write_text("technical_terms:\n  - Kernel\n  - Scheduler\n", encoding="utf-8")
        lexicons = AnalyzerLexicons.from_yaml(path)
        assert lexicons.technical_terms == ("kernel", "scheduler")
        assert lexicons.positive_words == AnalyzerLexicons().positive_words


class TestContextChanges:
    @pytest.mark.asyncio
    async def test_shift_to_technical_is_significant(self, analyzer):
        change = await analyzer.analyze_context_changes(
            user_messages(*CASUAL_MESSAGES),
            user_messages(*CASUAL_MESSAGES, TECHNICAL_MESSAGE),
        )
        assert change.significant_changes is True
        assert change.recommended_action in ("adapt", "switch")
        assert change.message_delta == 1
        assert 0.0 < change.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_same_conversation_is_maintained(self, analyzer, casual_messages):
        result = await analyzer.analyze(casual_messages)
        change = compare_analyses(result, result)
        assert change.significant_changes is False
        assert change.recommended_action == "maintain"
        assert change.confidence == 0.0


class TestConversationPatterns:
    @pytest.mark.asyncio
    async def test_question_answer_pairs(self, analyzer):
        messages = [
            Message.user("What is a closure?"),
            Message.assistant("A function that captures variables from its enclosing scope."),
            Message.user("Why would I use one?"),
            Message.assistant("To keep state without a class."),
        ]
        patterns = await analyzer.extract_conversation_patterns(messages, window_size=2)

        assert patterns.question_answer_pairs == 2
        assert patterns.patterns[0]["pattern"] == "question_answer_sequence"
        assert len(patterns.windows) == 3
        assert patterns.dominant_intent is not None

    @pytest.mark.asyncio
    async def test_old_messages_fall_outside_time_window(self, analyzer):
        t0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        messages = [
            Message.user("ancient question?", t0),
            Message.user("recent one", t0 + timedelta(hours=2)),
            Message.assistant("answer", t0 + timedelta(hours=2, seconds=5)),
        ]
        patterns = await analyzer.extract_conversation_patterns(messages, window_size=5, time_window_minutes=30)
        assert patterns.windows[0].end == 2
        assert patterns.question_answer_pairs == 0

    @pytest.mark.asyncio
    async def test_window_size_must_be_positive(self, analyzer, casual_messages):
        with pytest.raises(ValueError):
            await analyzer.extract_conversation_patterns(casual_messages, window_size=0)

    @pytest.mark.asyncio
    async def test_empty_input(self, analyzer):
        patterns = await analyzer.extract_conversation_patterns([])
        assert patterns.windows == []
        assert patterns.complexity_trend == "stable"
