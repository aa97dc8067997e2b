"""
Tests for switching configuration: validation, deep merge and YAML loading.
"""

import pytest

from persona_core.config.switching import (
    ConfigBuilder,
    OrchestratorConfig,
    SwitchingServiceConfig,
    TransitionConfig,
    load_config,
    merge_config,
)
from persona_core.errors import ConfigurationError


class TestDefaults:
    def test_service_defaults(self):
        cfg = SwitchingServiceConfig()
        assert cfg.automatic_switching_enabled is True
        assert cfg.orchestrator.max_switches_per_conversation == 3
        assert cfg.orchestrator.switching_threshold == 0.75
        assert cfg.transition.approach == "seamless"
        assert cfg.state_tracking.snapshot_interval == 5
        assert cfg.analysis_sensitivity.min_confidence_for_switch == 0.7

    def test_standalone_orchestrator_defaults(self):
        cfg = OrchestratorConfig()
        assert cfg.max_switches_per_conversation == 5
        assert cfg.min_time_between_switches_minutes == 2.0
        assert cfg.allowed_personas is None


class TestConfigBuilder:
    """Validating deep merge."""

    def test_nested_merge_keeps_siblings(self):
        cfg = (ConfigBuilder(SwitchingServiceConfig)
               .merge({"orchestrator": {"context_sensitivity": {"topic": 0.2}}})
               .build())
        assert cfg.orchestrator.context_sensitivity.topic == 0.2
        assert cfg.orchestrator.context_sensitivity.complexity == 0.9
        assert cfg.orchestrator.max_switches_per_conversation == 3

    def test_successive_merges_accumulate(self):
        cfg = (ConfigBuilder(SwitchingServiceConfig)
               .merge({"transition": {"intensity": 0.6}})
               .merge({"transition": {"approach": "bridged"}})
               .build())
        assert cfg.transition.intensity == 0.6
        assert cfg.transition.approach == "bridged"

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError, match="orchestrator.bogus"):
            ConfigBuilder(SwitchingServiceConfig).merge({"orchestrator": {"bogus": 1}})

    def test_invalid_value_rejected(self):
        with pytest.raises(ConfigurationError):
            ConfigBuilder(TransitionConfig).merge({"intensity": 1.5}).build()
        with pytest.raises(ConfigurationError):
            ConfigBuilder(TransitionConfig).merge({"approach": "sudden"}).build()

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError):
            ConfigBuilder(TransitionConfig).merge(["intensity"])

    def test_merge_config_leaves_original_untouched(self):
        base = OrchestratorConfig()
        merged = merge_config(base, {"max_switches_per_conversation": 1, "blocked_personas": ["coder"]})
        assert merged.max_switches_per_conversation == 1
        assert merged.blocked_personas == ["coder"]
        assert base.max_switches_per_conversation == 5
        assert base.blocked_personas == []

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            merge_config(OrchestratorConfig(), {"nope": True})


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yml")
        assert cfg == SwitchingServiceConfig()

    def test_yaml_overrides(self, tmp_path):
        path = tmp_path / "switching.yml"
        path.write_text(
            "automatic_switching_enabled: false\n"
            "orchestrator:\n"
            "  max_switches_per_conversation: 1\n"
            "transition:\n"
            "  intensity: 0.6\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.automatic_switching_enabled is False
        assert cfg.orchestrator.max_switches_per_conversation == 1
        assert cfg.orchestrator.min_time_between_switches_minutes == 2.0
        assert cfg.transition.intensity == 0.6

    def test_yaml_unknown_key(self, tmp_path):
        path = tmp_path / "switching.yml"
        path.write_text("unknown_section: {}\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_other_model(self, tmp_path):
        path = tmp_path / "orchestrator.yml"
        path.write_text("notify_user_on_switch: true\n", encoding="utf-8")
        cfg = load_config(path, model_cls=OrchestratorConfig)
        assert isinstance(cfg, OrchestratorConfig)
        assert cfg.notify_user_on_switch is True
