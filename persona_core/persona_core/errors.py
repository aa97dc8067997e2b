"""
Error taxonomy for the switching engine.

Only programmer misuse escapes the public API as an exception; the rest is
caught at component boundaries and turned into result data.
"""

from __future__ import annotations
from typing import Optional


class PersonaSwitchError(Exception):
    """Base class for switching engine errors."""
    pass


class PersonaNotFound(PersonaSwitchError, LookupError):
    """Raised by a persona store when an id does not resolve."""

    def __init__(self, persona_id: str):
        super().__init__(f"Persona not found: {persona_id}")
        self.persona_id = persona_id


class DependencyFailure(PersonaSwitchError):
    """Raised when an external collaborator (injector, persona store, thread store) fails."""

    def __init__(self, dependency: str, cause: Optional[BaseException] = None):
        msg = f"{dependency} failed"
        if cause is not None:
            msg = f"{msg}: {type(cause).__name__}: {cause}"
        super().__init__(msg)
        self.dependency = dependency
        self.cause = cause


class AnalysisFailure(PersonaSwitchError):
    """Raised inside a context analysis stage; never leaves the analyzer."""

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        super().__init__(f"analysis stage '{stage}' failed" + (f": {cause}" if cause else ""))
        self.stage = stage
        self.cause = cause


class ConfigurationError(PersonaSwitchError, ValueError):
    """Raised for unknown or invalid configuration overrides."""
    pass
