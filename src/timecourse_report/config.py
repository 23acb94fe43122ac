"""Configuration management for the time-course report."""

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml


class ThresholdPolicy(BaseModel):
    """A named (adjusted p-value, |log2FC|) significance cutoff pair."""

    model_config = ConfigDict(frozen=True)

    label: str
    padj_max: float = Field(ge=0.0, le=1.0)
    abs_log2fc_min: float = Field(ge=0.0)


DEFAULT_POLICIES = [
    ThresholdPolicy(label="moderate", padj_max=0.05, abs_log2fc_min=0.58),
    ThresholdPolicy(label="stringent", padj_max=0.05, abs_log2fc_min=1.0),
    ThresholdPolicy(label="very_stringent", padj_max=0.01, abs_log2fc_min=2.0),
]


class AnalysisDefaults(BaseModel):
    """Default analysis parameters."""

    policies: List[ThresholdPolicy] = Field(default_factory=lambda: list(DEFAULT_POLICIES))
    primary_policy: str = "stringent"
    baseline_time_point: Optional[str] = None  # None means lowest time point
    sample_delimiter: str = Field(default="_", min_length=1)
    time_point_field: int = Field(default=1, ge=0)
    replicate_field: int = Field(default=2, ge=0)
    backend: Literal["deseq2", "pydeseq2"] = "deseq2"
    threads: int = Field(default=1, ge=1)
    top_n_names: int = Field(default=20, ge=0)

    @model_validator(mode="after")
    def _check_fields(self) -> "AnalysisDefaults":
        labels = [p.label for p in self.policies]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Duplicate threshold policy labels: {labels}")
        if self.primary_policy not in labels:
            raise ValueError(
                f"primary_policy '{self.primary_policy}' is not one of {labels}"
            )
        if self.time_point_field == self.replicate_field:
            raise ValueError("time_point_field and replicate_field must differ")
        return self

    def get_policy(self, label: Optional[str] = None) -> ThresholdPolicy:
        """Return the policy with the given label (primary policy by default)."""
        label = label or self.primary_policy
        for policy in self.policies:
            if policy.label == label:
                return policy
        raise KeyError(label)


class PlotStyle(BaseModel):
    """Plotting settings handed to every figure function."""

    template: str = "plotly_white"
    width: int = Field(default=900, ge=200)
    height: int = Field(default=550, ge=200)
    up_color: str = "#E74C3C"
    down_color: str = "#3498DB"
    not_sig_color: str = "#95A5A6"
    timepoint_colors: List[str] = Field(min_length=1, default_factory=lambda: [
        "#1b9e77", "#d95f02", "#7570b3", "#e7298a",
        "#66a61e", "#e6ab02", "#a6761d", "#666666",
    ])

    def direction_colors(self) -> dict:
        return {"Up": self.up_color, "Down": self.down_color}

    def timepoint_color_map(self, labels: List[str]) -> dict:
        """Colour per time point label, cycling through ``timepoint_colors``."""
        colors = self.timepoint_colors
        return {label: colors[i % len(colors)] for i, label in enumerate(labels)}


class PathConfig(BaseModel):
    """Path configurations."""

    counts_file: Optional[Path] = None
    output_dir: Path = Path("report")
    report_name: str = "timecourse_report.html"

    @property
    def report_path(self) -> Path:
        return self.output_dir / self.report_name


class Config(BaseSettings):
    """Main configuration class."""

    model_config = SettingsConfigDict(
        env_prefix="TIMECOURSE_",
        env_nested_delimiter="__",
    )

    defaults: AnalysisDefaults = Field(default_factory=AnalysisDefaults)
    style: PlotStyle = Field(default_factory=PlotStyle)
    paths: PathConfig = Field(default_factory=PathConfig)

    # App settings
    app_title: str = "Time-Course Differential Expression"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8050

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path):
        """Save configuration to YAML file."""
        data = self.model_dump(mode="json")
        with open(path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config):
    """Set the global configuration instance."""
    global _config
    _config = config


# Example config.yaml template
CONFIG_TEMPLATE = """
# Time-course report configuration

defaults:
  primary_policy: stringent      # Policy used for temporal and overlap outputs
  baseline_time_point: null      # null = lowest time point in the sample ids
  sample_delimiter: "_"          # <group>_<time_point>_<replicate>
  time_point_field: 1
  replicate_field: 2
  backend: deseq2                # deseq2 (R via rpy2) or pydeseq2
  threads: 1
  top_n_names: 20
  policies:
    - {label: moderate, padj_max: 0.05, abs_log2fc_min: 0.58}
    - {label: stringent, padj_max: 0.05, abs_log2fc_min: 1.0}
    - {label: very_stringent, padj_max: 0.01, abs_log2fc_min: 2.0}

style:
  template: plotly_white
  width: 900
  height: 550

paths:
  output_dir: report
  report_name: timecourse_report.html
"""
