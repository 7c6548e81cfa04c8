"""Contrast and fitted-model descriptors shared across the pipeline.

Pure dataclasses; the R objects they carry are opaque to this module.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List


@dataclass(frozen=True)
class Contrast:
    """A comparison of a numerator group against a denominator group."""

    numerator: str
    denominator: str
    factor: str = "sample"

    @property
    def name(self) -> str:
        """File stem used for result tables, e.g. ``Tat_vs_Cys``."""
        return f"{self.numerator}_vs_{self.denominator}"

    @property
    def coefficient(self) -> str:
        """DESeq2 coefficient name, present when the denominator is the reference level."""
        return f"{self.factor}_{self.numerator}_vs_{self.denominator}"

    @property
    def groups(self) -> List[str]:
        return [self.numerator, self.denominator]

    def as_r_contrast(self) -> List[str]:
        """The ``contrast`` argument for DESeq2 ``results()``."""
        return [self.factor, self.numerator, self.denominator]

    def reversed(self) -> "Contrast":
        return Contrast(self.denominator, self.numerator, self.factor)


@dataclass(frozen=True)
class FittedModel:
    """A fitted DESeqDataSet together with the reference level it was fitted against.

    Releveling produces a new snapshot; the wrapped R object is never
    modified in place.
    """

    dds: Any
    factor: str
    reference: str


@dataclass
class ContrastBatch:
    """Contrasts that share one reference level, and so one model fit."""

    reference: str
    contrasts: List[Contrast] = field(default_factory=list)


@dataclass
class ContrastResult:
    """Outcome of extracting one contrast from a fitted model."""

    contrast: Contrast
    reference: str
    n_tested: int = 0
    n_significant: int = 0
    n_significant_shrunk: int = 0
    files: Dict[str, Path] = field(default_factory=dict)
