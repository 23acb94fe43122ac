"""Unit tests for configuration."""

import pytest
import yaml
from pydantic import ValidationError

from timecourse_report.config import (
    CONFIG_TEMPLATE,
    AnalysisDefaults,
    Config,
    PlotStyle,
    ThresholdPolicy,
)


class TestThresholdPolicies:
    """Tests for the policy presets."""

    def test_presets(self):
        """Test the three presets and their cutoffs."""
        defaults = AnalysisDefaults()

        assert [(p.label, p.padj_max, p.abs_log2fc_min) for p in defaults.policies] == [
            ("moderate", 0.05, 0.58),
            ("stringent", 0.05, 1.0),
            ("very_stringent", 0.01, 2.0),
        ]
        assert defaults.get_policy().label == "stringent"
        assert defaults.get_policy("moderate").abs_log2fc_min == 0.58

    def test_unknown_policy(self):
        with pytest.raises(KeyError):
            AnalysisDefaults().get_policy("lenient")

    def test_invalid_cutoffs(self):
        """Test out-of-range cutoffs are rejected."""
        with pytest.raises(ValidationError):
            ThresholdPolicy(label="bad", padj_max=1.5, abs_log2fc_min=1.0)
        with pytest.raises(ValidationError):
            ThresholdPolicy(label="bad", padj_max=0.05, abs_log2fc_min=-1.0)

    def test_primary_policy_must_exist(self):
        with pytest.raises(ValidationError):
            AnalysisDefaults(primary_policy="lenient")

    def test_duplicate_labels(self):
        policy = ThresholdPolicy(label="stringent", padj_max=0.05, abs_log2fc_min=1.0)

        with pytest.raises(ValidationError):
            AnalysisDefaults(policies=[policy, policy])

    def test_fields_must_differ(self):
        with pytest.raises(ValidationError):
            AnalysisDefaults(time_point_field=1, replicate_field=1)


class TestConfig:
    """Tests for loading and saving configuration."""

    def test_defaults(self):
        config = Config()

        assert config.defaults.backend == "deseq2"
        assert config.defaults.baseline_time_point is None
        assert config.paths.report_path.name == "timecourse_report.html"
        assert config.style.direction_colors()["Up"] == config.style.up_color

    def test_timepoint_colors_cycle(self):
        """Test time point colours repeat once the palette runs out."""
        style = PlotStyle(timepoint_colors=["#000000", "#ffffff"])

        assert style.timepoint_color_map(["0", "2", "10"]) == {
            "0": "#000000", "2": "#ffffff", "10": "#000000"
        }

    def test_empty_palette_rejected(self):
        with pytest.raises(ValidationError):
            PlotStyle(timepoint_colors=[])

    def test_yaml_round_trip(self, tmp_path):
        """Test a saved configuration loads back unchanged."""
        config = Config()
        config.defaults.primary_policy = "very_stringent"
        path = tmp_path / "config.yaml"

        config.to_yaml(path)
        loaded = Config.from_yaml(path)

        assert loaded.defaults.get_policy().label == "very_stringent"
        assert loaded.defaults.policies == config.defaults.policies
        assert loaded.paths.output_dir == config.paths.output_dir

    def test_template_is_valid(self, tmp_path):
        """Test the shipped template parses into a configuration."""
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_TEMPLATE)

        config = Config.from_yaml(path)

        assert config.defaults.primary_policy == "stringent"
        assert len(yaml.safe_load(CONFIG_TEMPLATE)["defaults"]["policies"]) == 3

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert Config.from_yaml(path).defaults.primary_policy == "stringent"

    def test_environment_override(self, monkeypatch):
        """Test nested settings can come from the environment."""
        monkeypatch.setenv("TIMECOURSE_DEFAULTS__PRIMARY_POLICY", "moderate")
        monkeypatch.setenv("TIMECOURSE_PORT", "9000")

        config = Config()

        assert config.defaults.primary_policy == "moderate"
        assert config.port == 9000
