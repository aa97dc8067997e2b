from .switching import (
    AnalysisSensitivity,
    ConfigBuilder,
    ContextSensitivity,
    OrchestratorConfig,
    StateTrackingConfig,
    SwitchingServiceConfig,
    TransitionConfig,
    TransitionTiming,
    load_config,
    merge_config,
)

__all__ = [
    "AnalysisSensitivity",
    "ConfigBuilder",
    "ContextSensitivity",
    "OrchestratorConfig",
    "StateTrackingConfig",
    "SwitchingServiceConfig",
    "TransitionConfig",
    "TransitionTiming",
    "load_config",
    "merge_config",
]
