"""
Tests for transition smoothing between personas.
"""

import pytest

from persona_core.config.switching import TransitionConfig
from persona_core.errors import PersonaNotFound
from persona_core.switching.models import Trait
from persona_core.switching.smoother import (
    ConversationStats,
    TransitionSmoother,
    persona_distance,
    trait_distance,
    transition_type_for,
)

from conftest import TECHNICAL_MESSAGE, make_casual, make_coder, user_messages


@pytest.fixture
def buddy():
    persona = make_casual()
    persona.id = "buddy"
    persona.name = "Casual Buddy"
    persona.traits = [t if t.name != "humor" else Trait("humor", "moderate", 0.6) for t in persona.traits]
    return persona


@pytest.fixture
def smoother(store, buddy, tracer):
    store.add(buddy)
    return TransitionSmoother(store, tracer=tracer)


@pytest.fixture
def recent():
    return user_messages("Hey, quick question", TECHNICAL_MESSAGE)


class TestDistance:
    def test_trait_distance(self):
        expert = Trait("expertise_level", "expert", 0.9)
        assert trait_distance(None, expert) == 1.0
        assert trait_distance(Trait("expertise_level", "expert"), expert) == 0.0
        assert trait_distance(Trait("expertise_level", "beginner"), expert) == 1.0
        assert trait_distance(Trait("expertise_level", "intermediate"), Trait("expertise_level", "advanced")) == pytest.approx(1 / 3)
        assert trait_distance(Trait("tone", "friendly"), Trait("tone", "professional")) == 1.0

    def test_persona_distance(self, buddy):
        casual, coder = make_casual(), make_coder()
        assert persona_distance(casual, casual) == 0.0
        assert persona_distance(casual, buddy) == pytest.approx(0.1)
        assert persona_distance(casual, coder) == 1.0
        assert 0.0 <= persona_distance(coder, casual) <= 1.0

    def test_transition_type_thresholds(self):
        assert transition_type_for(0.29) == "seamless"
        assert transition_type_for(0.3) == "gradual"
        assert transition_type_for(0.6) == "bridged"
        assert transition_type_for(0.8) == "explicit"


class TestCreateSmoothTransition:
    @pytest.mark.asyncio
    async def test_distant_personas_are_not_seamless(self, smoother, recent, collector):
        result = await smoother.create_smooth_transition(
            "casual", "coder", "Explain the design.", recent, TransitionConfig(intensity=0.6)
        )
        meta = result.transition_metadata

        assert result.smoothed is True
        assert meta.transition_type == "explicit"
        assert meta.notification_approach != "seamless"
        assert result.user_message == "I'm now switching to my Coding Assistant personality to better assist you."
        assert "I am now operating as Coding Assistant" in result.smoothed_prompt
        assert "Explain the design." in result.smoothed_prompt
        assert result.bridging_elements.introduction.endswith("technical needs.")
        assert [t for t, _ in result.bridging_elements.trait_transitions] == [
            "communication_style", "tone", "expertise_level",
        ]
        assert 0.0 <= meta.smoothing_quality <= 1.0
        assert 0.0 <= meta.estimated_user_impact <= 1.0
        assert "smoother.create_smooth_transition" in collector.names()

    @pytest.mark.asyncio
    async def test_close_personas_low_intensity_are_seamless(self, smoother, recent):
        result = await smoother.create_smooth_transition(
            "casual", "buddy", "Tell me more.", recent, TransitionConfig(intensity=0.1)
        )
        meta = result.transition_metadata

        assert meta.transition_type == "seamless"
        assert meta.notification_approach == "seamless"
        assert result.user_message is None
        assert result.bridging_elements.introduction is None
        assert result.smoothed_prompt.startswith("You are Casual Buddy.")
        assert "Tell me more." in result.smoothed_prompt
        assert meta.smoothed_traits == ["humor"]

    @pytest.mark.asyncio
    async def test_intensity_raises_transition_type(self, smoother, recent):
        result = await smoother.create_smooth_transition(
            "casual", "buddy", "Tell me more.", recent, TransitionConfig(intensity=0.6)
        )
        assert result.transition_metadata.transition_type == "bridged"
        assert result.transition_metadata.notification_approach == "acknowledged"
        assert result.user_message == "Adapting my approach to better help with your current needs."

    @pytest.mark.asyncio
    async def test_configured_approach_is_a_floor(self, smoother, recent):
        result = await smoother.create_smooth_transition(
            "casual", "buddy", "Tell me more.", recent, TransitionConfig(intensity=0.1, approach="gradual")
        )
        assert result.transition_metadata.transition_type == "gradual"
        assert "Ease away from the Casual Friend manner" in result.smoothed_prompt

    @pytest.mark.asyncio
    async def test_acknowledged_transition(self, smoother, recent):
        result = await smoother.create_smooth_transition(
            "casual", "buddy", "Tell me more.", recent, TransitionConfig(intensity=0.1, acknowledge_transition=True)
        )
        assert result.transition_metadata.transition_type == "seamless"
        assert result.transition_metadata.notification_approach == "acknowledged"
        assert result.user_message is not None
        assert result.bridging_elements.introduction is not None

    @pytest.mark.asyncio
    async def test_custom_template(self, smoother, recent):
        config = TransitionConfig(
            intensity=0.1,
            custom_transition_template="[{previous_persona_name} -> {persona_name}] {original_prompt} {unknown_slot}",
        )
        result = await smoother.create_smooth_transition("casual", "coder", "Hello", recent, config)
        assert result.smoothed_prompt == "[Casual Friend -> Coding Assistant] Hello unknown slot"

    @pytest.mark.asyncio
    async def test_custom_template_keeps_literal_braces(self, smoother, recent):
        config = TransitionConfig(custom_transition_template='Reply in JSON like {"a": 1}. {original_prompt}')
        result = await smoother.create_smooth_transition("casual", "coder", "Hello", recent, config)
        assert result.smoothed_prompt == 'Reply in JSON like {"a": 1}. Hello'

    @pytest.mark.asyncio
    async def test_custom_template_keeps_empty_and_doubled_braces(self, smoother, recent):
        config = TransitionConfig(custom_transition_template="{} {{persona_name}} {0} {persona_name}: {original_prompt}")
        result = await smoother.create_smooth_transition("casual", "coder", "Hello", recent, config)
        assert result.smoothed_prompt == "{} {Coding Assistant} {0} Coding Assistant: Hello"

    @pytest.mark.asyncio
    async def test_no_history_loses_context_bridge(self, smoother):
        result = await smoother.create_smooth_transition(
            "casual", "buddy", "Hi", [], TransitionConfig(intensity=0.1)
        )
        assert result.bridging_elements.context_bridge == []
        assert "Limited context bridging for continuity maintenance" in result.transition_metadata.potential_issues

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_original_prompt(self, smoother, recent):
        result = await smoother.create_smooth_transition("casual", "ghost", "Original", recent)
        assert result.smoothed is False
        assert result.smoothed_prompt == "Original"
        assert result.user_message is None
        assert result.transition_metadata.potential_issues == ["Persona not found: ghost"]


class TestOptimizeTransitionConfig:
    @pytest.mark.asyncio
    async def test_distant_personas(self, smoother):
        config = await smoother.optimize_transition_config("casual", "coder")
        assert config.approach == "explicit"
        assert config.acknowledge_transition is True
        assert config.intensity == pytest.approx(0.7)
        assert config.priority_traits == ["communication_style", "tone", "expertise_level", "formality"]
        assert config.timing.preparation_messages == 2
        assert config.timing.stabilization_messages == 3

    @pytest.mark.asyncio
    async def test_conversation_stats_soften_intensity(self, smoother):
        config = await smoother.optimize_transition_config(
            "casual", "coder", ConversationStats(message_count=20, user_engagement="low")
        )
        assert config.intensity == pytest.approx(0.7 * 0.8 * 0.7)

    @pytest.mark.asyncio
    async def test_close_personas(self, smoother):
        config = await smoother.optimize_transition_config("casual", "buddy")
        assert config.approach == "seamless"
        assert config.acknowledge_transition is False
        assert config.intensity == pytest.approx(0.1)
        assert config.priority_traits == []

    @pytest.mark.asyncio
    async def test_lookup_failure_gives_defaults(self, smoother):
        assert await smoother.optimize_transition_config("casual", "ghost") == TransitionConfig()


class TestPreviewTransition:
    @pytest.mark.asyncio
    async def test_preview_of_distant_switch(self, smoother):
        preview = await smoother.preview_transition("casual", "coder")

        assert preview.distance == 1.0
        assert preview.recommended_config.approach == "explicit"
        assert len(preview.trait_changes) == 6
        assert all(c.user_visibility == "obvious" for c in preview.trait_changes)
        formality = next(c for c in preview.trait_changes if c.trait == "formality")
        assert formality.change_impact == "high"
        assert preview.user_experience_impact == 1.0
        assert preview.effectiveness_gain == pytest.approx(0.5)
        assert any("visibility" in r for r in preview.recommendations)

    @pytest.mark.asyncio
    async def test_unknown_persona(self, smoother):
        with pytest.raises(PersonaNotFound):
            await smoother.preview_transition("casual", "ghost")
