"""
Interfaces to the collaborators the switching engine consumes, plus simple
in-memory implementations for embedding and tests.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from ..errors import DependencyFailure, PersonaNotFound, PersonaSwitchError
from ..obs.logging import get_logger
from ..utils.retry import COLLABORATOR_RETRY_POLICY, RetryPolicy
from .models import Message, PersonaDefinition
from .text import fill_slots

logger = get_logger("persona_core")


@runtime_checkable
class PersonaStore(Protocol):
    """Read-only persona lookup. `find_one` raises PersonaNotFound for unknown ids."""

    async def find_one(self, persona_id: str) -> PersonaDefinition: ...

    async def find_all(self) -> List[PersonaDefinition]: ...


@dataclass
class InjectionRequest:
    original_prompt: str
    persona_id: str
    context_variables: Dict[str, Any] = field(default_factory=dict)
    history: List[Message] = field(default_factory=list)


@dataclass
class InjectionResult:
    enhanced_prompt: str
    persona_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PromptInjector(Protocol):
    async def inject(self, request: InjectionRequest) -> InjectionResult: ...


@runtime_checkable
class ThreadStore(Protocol):
    """Optional source of coarse thread metadata (message_count, category, tags)."""

    async def get_metadata(self, thread_id: str) -> Dict[str, Any]: ...


class InMemoryPersonaStore:
    """
    Dict-backed persona store.

    Usage:
        store = InMemoryPersonaStore([coder, friend])
        persona = await store.find_one("coder")
    """

    def __init__(self, personas: Optional[Iterable[PersonaDefinition]] = None):
        self._personas: Dict[str, PersonaDefinition] = {}
        for p in personas or []:
            self.add(p)

    def add(self, persona: PersonaDefinition) -> None:
        errors = persona.validate()
        if errors:
            logger.warning(f"Persona {persona.id} has validation issues: {errors}", extra={"persona_id": persona.id})
        self._personas[persona.id] = persona

    def remove(self, persona_id: str) -> None:
        self._personas.pop(persona_id, None)

    async def find_one(self, persona_id: str) -> PersonaDefinition:
        try:
            return self._personas[persona_id]
        except KeyError:
            raise PersonaNotFound(persona_id) from None

    async def find_all(self) -> List[PersonaDefinition]:
        return list(self._personas.values())


class GuardedPersonaStore:
    """
    Wraps a persona store: transient failures are retried, and anything that
    is not a switching error comes out as `DependencyFailure("persona_store")`.

    Usage:
        store = GuardedPersonaStore(remote_store)
        persona = await store.find_one("coder")  # PersonaNotFound still propagates
    """

    def __init__(self, store: PersonaStore, retry_policy: RetryPolicy = COLLABORATOR_RETRY_POLICY):
        self.store = store
        self._find_one = retry_policy.wrap(store.find_one)
        self._find_all = retry_policy.wrap(store.find_all)

    async def find_one(self, persona_id: str) -> PersonaDefinition:
        try:
            return await self._find_one(persona_id)
        except PersonaSwitchError:
            raise
        except Exception as e:
            raise DependencyFailure("persona_store", e) from e

    async def find_all(self) -> List[PersonaDefinition]:
        try:
            return await self._find_all()
        except PersonaSwitchError:
            raise
        except Exception as e:
            raise DependencyFailure("persona_store", e) from e


class TemplatePromptInjector:
    """
    Minimal injector: renders the persona's highest-priority system template
    in front of the original prompt.

    Template placeholders are filled from the context variables plus the
    persona's trait values; unknown placeholders are left as-is.
    """

    def __init__(self, store: PersonaStore):
        self.store = store

    async def inject(self, request: InjectionRequest) -> InjectionResult:
        persona = await self.store.find_one(request.persona_id)
        template = persona.system_template()
        variables: Dict[str, Any] = {t.name: t.value for t in persona.traits}
        variables.update(request.context_variables)
        variables.setdefault("persona_name", persona.name)

        header = fill_slots(template.template, variables) if template else f"You are {persona.name}. {persona.description}".strip()
        return InjectionResult(
            enhanced_prompt=f"{header}\n\n{request.original_prompt}",
            persona_id=persona.id,
            metadata={
                "persona_name": persona.name,
                "injection_type": "system" if template else "context_merge",
                "history_length": len(request.history),
            },
        )


class InMemoryThreadStore:
    def __init__(self, metadata: Optional[Dict[str, Dict[str, Any]]] = None):
        self._metadata: Dict[str, Dict[str, Any]] = dict(metadata or {})

    def put(self, thread_id: str, **values: Any) -> None:
        self._metadata.setdefault(thread_id, {}).update(values)

    async def get_metadata(self, thread_id: str) -> Dict[str, Any]:
        return dict(self._metadata.get(thread_id, {}))
