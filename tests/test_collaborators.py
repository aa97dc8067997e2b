"""
Tests for the persona store wrapper, the template injector and slot filling.
"""

from datetime import datetime, timezone

import pytest

from persona_core.errors import DependencyFailure, PersonaNotFound
from persona_core.switching.collaborators import GuardedPersonaStore, InjectionRequest, TemplatePromptInjector
from persona_core.switching.models import Message, PromptTemplate
from persona_core.switching.text import fill_slots
from persona_core.utils.retry import COLLABORATOR_RETRY_POLICY, NO_RETRY_POLICY, RetryPolicy


class CountingStore:
    """Raises `error` on every lookup and counts the calls."""

    def __init__(self, error):
        self.error = error
        self.calls = 0

    async def find_one(self, persona_id):
        self.calls += 1
        raise self.error

    async def find_all(self):
        self.calls += 1
        raise self.error


class TestGuardedPersonaStore:
    @pytest.mark.asyncio
    async def test_passes_lookups_through(self, store):
        guarded = GuardedPersonaStore(store, NO_RETRY_POLICY)
        assert (await guarded.find_one("coder")).name == "Coding Assistant"
        assert {p.id for p in await guarded.find_all()} == {"casual", "coder", "creative"}

    @pytest.mark.asyncio
    async def test_outage_becomes_dependency_failure(self):
        backend = CountingStore(ConnectionError("persona db down"))
        guarded = GuardedPersonaStore(backend, RetryPolicy(max_attempts=2, base_delay=0.0, jitter=False))

        with pytest.raises(DependencyFailure) as excinfo:
            await guarded.find_all()

        assert excinfo.value.dependency == "persona_store"
        assert isinstance(excinfo.value.cause, ConnectionError)
        assert str(excinfo.value) == "persona_store failed: ConnectionError: persona db down"
        assert backend.calls == 2

    @pytest.mark.asyncio
    async def test_unknown_persona_is_not_retried(self):
        backend = CountingStore(PersonaNotFound("ghost"))
        guarded = GuardedPersonaStore(backend, COLLABORATOR_RETRY_POLICY)

        with pytest.raises(PersonaNotFound):
            await guarded.find_one("ghost")
        assert backend.calls == 1


class TestTemplatePromptInjector:
    @pytest.mark.asyncio
    async def test_renders_system_template(self, store, injector):
        result = await injector.inject(InjectionRequest("Explain", "coder"))
        assert result.enhanced_prompt == "You are Coding Assistant, an expert engineer.\n\nExplain"
        assert result.metadata["injection_type"] == "system"

    @pytest.mark.asyncio
    async def test_template_with_literal_braces(self, store, injector):
        coder = await store.find_one("coder")
        coder.prompt_templates.append(
            PromptTemplate("system", 'You are {persona_name}. Answer as {"code": "..."} or {}.', priority=5)
        )
        result = await injector.inject(InjectionRequest("Explain", "coder"))
        assert result.enhanced_prompt.startswith('You are Coding Assistant. Answer as {"code": "..."} or {}.')


class TestFillSlots:
    def test_known_unknown_and_literal_braces(self):
        text = fill_slots('{greeting}, {name}! {"a": 1} {} {0}', {"greeting": "Hi"})
        assert text == 'Hi, {name}! {"a": 1} {} {0}'

    def test_missing_callback(self):
        assert fill_slots("{first_name} {x}", {"x": 1}, missing=lambda name: name.upper()) == "FIRST_NAME 1"


class TestMessage:
    def test_naive_timestamp_is_utc(self):
        message = Message.user("hi", datetime(2024, 5, 1, 11, 0))
        assert message.timestamp == datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc)

    def test_from_dict_naive_iso_string(self):
        message = Message.from_dict({"role": "user", "content": "hi", "timestamp": "2024-05-01T11:00:00"})
        assert message.timestamp.tzinfo is timezone.utc
