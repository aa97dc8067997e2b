"""
Configuration for the switching engine.

Settings are pydantic models that reject unknown keys. Per-thread overrides
go through ConfigBuilder, which deep-merges nested dicts but only along keys
the models declare, then re-validates the result.
"""

from __future__ import annotations
import copy
import inspect
from pathlib import Path
from typing import Any, Dict, Generic, List, Literal, Optional, Type, TypeVar, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..obs.logging import get_logger
from ..errors import ConfigurationError

logger = get_logger("persona_core")

TransitionApproach = Literal["seamless", "gradual", "bridged", "explicit"]


class _Settings(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class ContextSensitivity(_Settings):
    topic: float = Field(0.8, ge=0.0, le=1.0)
    tone: float = Field(0.6, ge=0.0, le=1.0)
    complexity: float = Field(0.9, ge=0.0, le=1.0)
    user_pattern: float = Field(0.7, ge=0.0, le=1.0)


class OrchestratorConfig(_Settings):
    switching_threshold: float = Field(0.75, ge=0.0, le=1.0)
    max_switches_per_conversation: int = Field(5, ge=0)
    min_time_between_switches_minutes: float = Field(2.0, ge=0.0)
    notify_user_on_switch: bool = False
    allowed_personas: Optional[List[str]] = None
    blocked_personas: List[str] = Field(default_factory=list)
    context_sensitivity: ContextSensitivity = Field(default_factory=ContextSensitivity)


class TransitionTiming(_Settings):
    preparation_messages: int = Field(1, ge=0)
    stabilization_messages: int = Field(2, ge=0)


class TransitionConfig(_Settings):
    intensity: float = Field(0.5, ge=0.0, le=1.0)
    acknowledge_transition: bool = False
    approach: TransitionApproach = "seamless"
    priority_traits: List[str] = Field(default_factory=list)
    maintain_continuity: bool = True
    custom_transition_template: Optional[str] = None
    timing: TransitionTiming = Field(default_factory=TransitionTiming)


class StateTrackingConfig(_Settings):
    automatic_snapshots: bool = True
    snapshot_interval: int = Field(5, ge=1)
    track_evolution: bool = True


class AnalysisSensitivity(_Settings):
    context_change_threshold: float = Field(0.7, ge=0.0, le=1.0)
    performance_threshold: float = Field(0.6, ge=0.0, le=1.0)
    min_confidence_for_switch: float = Field(0.7, ge=0.0, le=1.0)


class SwitchingServiceConfig(_Settings):
    automatic_switching_enabled: bool = True
    orchestrator: OrchestratorConfig = Field(default_factory=lambda: OrchestratorConfig(max_switches_per_conversation=3))
    transition: TransitionConfig = Field(default_factory=TransitionConfig)
    state_tracking: StateTrackingConfig = Field(default_factory=StateTrackingConfig)
    analysis_sensitivity: AnalysisSensitivity = Field(default_factory=AnalysisSensitivity)


M = TypeVar("M", bound=BaseModel)


def _nested_model(model_cls: Type[BaseModel], key: str) -> Optional[Type[BaseModel]]:
    annotation = model_cls.model_fields[key].annotation
    if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
        return annotation
    return None


class ConfigBuilder(Generic[M]):
    """
    Validating deep-merge builder.

    Usage:
        cfg = (ConfigBuilder(SwitchingServiceConfig)
               .merge({"orchestrator": {"max_switches_per_conversation": 1}})
               .build())

    Raises ConfigurationError on unknown keys or invalid values.
    """

    def __init__(self, model_cls: Type[M], base: Optional[M] = None):
        self.model_cls = model_cls
        self._data: Dict[str, Any] = (base if base is not None else model_cls()).model_dump()

    def merge(self, overrides: Optional[Dict[str, Any]]) -> ConfigBuilder[M]:
        if not overrides:
            return self
        if not isinstance(overrides, dict):
            raise ConfigurationError("Configuration overrides must be a mapping")
        self._data = self._merge(self.model_cls, self._data, overrides, path="")
        return self

    def _merge(self, model_cls: Type[BaseModel], current: Dict[str, Any], overrides: Dict[str, Any], path: str) -> Dict[str, Any]:
        merged = copy.deepcopy(current)
        for key, value in overrides.items():
            dotted = f"{path}{key}"
            if key not in model_cls.model_fields:
                raise ConfigurationError(f"Unknown configuration key: {dotted}")
            nested = _nested_model(model_cls, key)
            if nested is not None and isinstance(value, dict):
                merged[key] = self._merge(nested, merged.get(key) or {}, value, path=f"{dotted}.")
            elif nested is not None and isinstance(value, BaseModel):
                merged[key] = value.model_dump()
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    def build(self) -> M:
        try:
            return self.model_cls.model_validate(self._data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def merge_config(config: M, overrides: Optional[Dict[str, Any]]) -> M:
    """Return a new validated config with `overrides` applied on top of `config`."""
    return ConfigBuilder(type(config), base=config).merge(overrides).build()


def load_config(path: Optional[Union[str, Path]] = None, model_cls: Type[M] = SwitchingServiceConfig) -> M:
    """
    Load configuration from a YAML file.

    Args:
        path: YAML file (defaults to config/persona_switching.yml)
        model_cls: Settings model to build

    Returns:
        Validated settings; defaults when the file does not exist.

    Raises:
        ConfigurationError: File exists but holds unknown keys or bad values
    """
    path = Path(path) if path is not None else Path("config/persona_switching.yml")
    if not path.exists():
        logger.info("No switching config file, using defaults", extra={"tags": [str(path)]})
        return model_cls()
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path}: {e}") from e
    cfg = ConfigBuilder(model_cls).merge(data).build()
    logger.info("Loaded switching config", extra={"tags": [str(path)]})
    return cfg
