"""
Shared fixtures for the persona switching tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add the package root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "persona_core"))

from persona_core.obs.tracing import InMemorySpanCollector, Tracer
from persona_core.switching.collaborators import InMemoryPersonaStore, TemplatePromptInjector
from persona_core.switching.models import (
    Message,
    PersonaDefinition,
    PersonaExample,
    PromptTemplate,
    Trait,
)


TECHNICAL_MESSAGE = (
    "Please give me a detailed technical explanation of the algorithm implementation in our "
    "software architecture. The algorithm implementation must match the architecture of the code."
)
CASUAL_MESSAGES = ["Hi there! How are you?", "Great, tell me a joke"]


class FakeClock:
    """Deterministic clock; `advance` moves it forward."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_casual() -> PersonaDefinition:
    return PersonaDefinition(
        id="casual",
        name="Casual Friend",
        description="Relaxed, friendly conversational partner",
        category="social",
        traits=[
            Trait("tone", "friendly", 0.8),
            Trait("formality", "casual", 0.7),
            Trait("communication_style", "casual", 0.8),
            Trait("humor", "high", 0.6),
            Trait("empathy", "moderate", 0.6),
            Trait("expertise_level", "intermediate", 0.5),
        ],
        prompt_templates=[
            PromptTemplate("system", "You are {persona_name}, a {tone} companion.", priority=1),
            PromptTemplate("user", "{input}"),
        ],
        examples=[PersonaExample("How are you?", "Doing great, thanks for asking!")],
        tags=["chat", "fun"],
    )


def make_coder() -> PersonaDefinition:
    return PersonaDefinition(
        id="coder",
        name="Coding Assistant",
        description="Precise senior software engineer",
        category="technical",
        traits=[
            Trait("expertise_level", "expert", 0.9),
            Trait("technical_depth", "detailed", 0.8),
            Trait("precision", "high", 0.8),
            Trait("communication_style", "technical", 0.8),
            Trait("formality", "formal", 0.7),
            Trait("tone", "professional", 0.6),
        ],
        prompt_templates=[
            PromptTemplate("system", "You are {persona_name}, an {expertise_level} engineer.", priority=2),
            PromptTemplate("user", "{input}"),
        ],
        examples=[PersonaExample("What is a mutex?", "A mutual exclusion lock that ...")],
        tags=["code", "programming", "algorithm"],
    )


def make_creative() -> PersonaDefinition:
    return PersonaDefinition(
        id="creative",
        name="Creative Writer",
        description="Imaginative storyteller",
        category="creative",
        traits=[
            Trait("creativity", "high", 0.9),
            Trait("communication_style", "creative", 0.8),
            Trait("tone", "enthusiastic", 0.7),
            Trait("formality", "casual", 0.6),
            Trait("empathy", "high", 0.6),
        ],
        prompt_templates=[
            PromptTemplate("system", "You are {persona_name}, full of ideas.", priority=1),
            PromptTemplate("user", "{input}"),
        ],
        examples=[PersonaExample("Write a haiku", "Morning light spills in ...")],
        tags=["story", "design"],
    )


def user_messages(*contents: str) -> list:
    return [Message.user(c) for c in contents]


@pytest.fixture
def personas():
    return [make_casual(), make_coder(), make_creative()]


@pytest.fixture
def store(personas):
    return InMemoryPersonaStore(personas)


@pytest.fixture
def injector(store):
    return TemplatePromptInjector(store)


@pytest.fixture
def collector():
    return InMemorySpanCollector()


@pytest.fixture
def tracer(collector):
    return Tracer(hooks=[collector])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def technical_messages():
    return user_messages(TECHNICAL_MESSAGE)


@pytest.fixture
def casual_messages():
    return user_messages(*CASUAL_MESSAGES)
