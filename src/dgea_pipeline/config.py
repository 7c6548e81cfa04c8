"""Configuration management for the DGEA pipeline."""

import math
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings
import yaml


class AnalysisDefaults(BaseModel):
    """Default analysis parameters."""

    design_factor: str = "sample"
    padj_threshold: float = Field(default=0.05, gt=0.0, le=1.0)
    log2fc_threshold: float = Field(default=math.log2(1.5), ge=0.0)
    top_n_genes: int = Field(default=100, ge=1)
    shrink: bool = True
    shrink_method: str = "apeglm"


class PathConfig(BaseModel):
    """Input and output locations."""

    counts_dir: Path = Path("data/counts")
    count_suffix: str = ".r.tab"
    annotation_file: Path = Path("data/metadata/GRCh38.p10_ALL.annotation.IDs.txt")
    output_dir: Path = Path("output/tables/01_DGEA")
    figures_dir: Optional[Path] = None
    exclusion_file: Optional[Path] = None

    @model_validator(mode="after")
    def _derive_paths(self) -> "PathConfig":
        # Set derived paths if not provided
        if self.figures_dir is None:
            self.figures_dir = Path("output/figures/01_DGEA")
        if self.exclusion_file is None:
            self.exclusion_file = self.processed_dir / "ribo_genes.tsv"
        return self

    @property
    def processed_dir(self) -> Path:
        return self.output_dir / "processed_counts"

    @property
    def deseq_dir(self) -> Path:
        return self.output_dir / "deseq"

    @property
    def model_file(self) -> Path:
        return self.output_dir / "dds.rds"

    def create_directories(self):
        """Create all output directories."""
        for path in [self.output_dir, self.processed_dir, self.deseq_dir,
                     self.figures_dir]:
            path.mkdir(parents=True, exist_ok=True)


class ContrastSpec(BaseModel):
    """A numerator/denominator pair of group labels."""

    numerator: str
    denominator: str


class ReverseConfig(BaseModel):
    """Contrasts whose reverse direction is derived from written tables."""

    contrasts: List[ContrastSpec] = Field(
        default_factory=lambda: [ContrastSpec(numerator="Tat", denominator="Cys")]
    )
    variants: List[str] = Field(default_factory=lambda: ["LFC.DE"])


class FigureConfig(BaseModel):
    """Figure output settings."""

    enabled: bool = True
    top_n_labels: int = Field(default=10, ge=0)
    heatmap_top_n: int = Field(default=50, ge=1)


def _default_contrasts() -> List[ContrastSpec]:
    return [
        ContrastSpec(numerator="Tat", denominator="Cys"),
        ContrastSpec(numerator="Tat", denominator="LCL"),
        ContrastSpec(numerator="Cys", denominator="LCL"),
        ContrastSpec(numerator="GFP", denominator="LCL"),
    ]


class Config(BaseSettings):
    """Main configuration class."""

    analysis: AnalysisDefaults = Field(default_factory=AnalysisDefaults)
    paths: PathConfig = Field(default_factory=PathConfig)
    contrasts: List[ContrastSpec] = Field(default_factory=_default_contrasts)
    reverse: ReverseConfig = Field(default_factory=ReverseConfig)
    figures: FigureConfig = Field(default_factory=FigureConfig)

    class Config:
        env_prefix = "DGEA_"
        env_nested_delimiter = "__"

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path):
        """Save configuration to YAML file."""
        data = self.model_dump()
        # Convert Path objects to strings
        def convert_paths(obj):
            if isinstance(obj, dict):
                return {k: convert_paths(v) for k, v in obj.items()}
            elif isinstance(obj, list):
                return [convert_paths(item) for item in obj]
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        data = convert_paths(data)

        with open(path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        # Try the working directory first
        default_config_path = Path("dgea.yaml")
        if default_config_path.exists():
            _config = Config.from_yaml(default_config_path)
        else:
            _config = Config()
    return _config


def set_config(config: Config):
    """Set the global configuration instance."""
    global _config
    _config = config


# Example dgea.yaml template
CONFIG_TEMPLATE = """
# DGEA pipeline configuration

analysis:
  design_factor: sample      # colData column holding the group label
  padj_threshold: 0.05       # adjusted p-value cutoff for DE tables
  log2fc_threshold: 0.585    # log2(1.5)
  top_n_genes: 100           # genes listed for manual ribosomal curation
  shrink: true               # write .LFC tables
  shrink_method: apeglm

paths:
  counts_dir: data/counts
  count_suffix: .r.tab
  annotation_file: data/metadata/GRCh38.p10_ALL.annotation.IDs.txt
  output_dir: output/tables/01_DGEA
  figures_dir: output/figures/01_DGEA
  # exclusion_file: output/tables/01_DGEA/processed_counts/ribo_genes.tsv

contrasts:
  - {numerator: Tat, denominator: Cys}
  - {numerator: Tat, denominator: LCL}
  - {numerator: Cys, denominator: LCL}
  - {numerator: GFP, denominator: LCL}

reverse:
  contrasts:
    - {numerator: Tat, denominator: Cys}
  variants: [LFC.DE]

figures:
  enabled: true
  top_n_labels: 10
  heatmap_top_n: 50
"""
