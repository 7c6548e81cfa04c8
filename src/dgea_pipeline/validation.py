"""Validation of the count matrix and sample design before model fitting."""

from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field


class ValidationError(Exception):
    """Raised when analysis inputs fail validation."""
    pass


class ValidationWarning(BaseModel):
    """Warning message from validation."""
    message: str
    severity: str = Field(default="warning")  # warning, info


class ValidationResult(BaseModel):
    """Result of data validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)

    def raise_for_errors(self):
        """Raise ValidationError listing every error, if any."""
        if not self.valid:
            raise ValidationError("; ".join(self.errors))


class CountMatrixSchema(BaseModel):
    """Schema for count matrix validation."""
    n_genes: int
    n_samples: int
    sample_ids: List[str]
    has_negative: bool
    has_non_integer: bool
    has_missing: bool
    library_sizes: Dict[str, float]


class DesignSchema(BaseModel):
    """Schema for sample design validation."""
    n_samples: int
    sample_ids: List[str]
    factor: str
    n_groups: Optional[int] = None
    replicates_per_group: Optional[Dict[str, int]] = None


def validate_count_matrix(counts: pd.DataFrame) -> Tuple[ValidationResult, Optional[CountMatrixSchema]]:
    """
    Validate a gene x sample count matrix.

    Args:
        counts: Count matrix DataFrame

    Returns:
        Tuple of (ValidationResult, CountMatrixSchema)
    """
    errors = []
    warnings = []

    if counts.empty:
        errors.append("Count matrix is empty")
        return ValidationResult(valid=False, errors=errors), None

    n_genes, n_samples = counts.shape

    has_negative = bool((counts < 0).any().any())
    if has_negative:
        errors.append("Count matrix contains negative values")

    has_missing = bool(counts.isna().any().any())
    if has_missing:
        n_missing = counts.isna().sum().sum()
        errors.append(f"Count matrix contains {n_missing} missing values")

    values = counts.to_numpy(dtype=float)
    has_non_integer = not np.allclose(values, np.round(values), equal_nan=True)
    if has_non_integer:
        errors.append("Count matrix contains non-integer values")

    if n_genes < 5000:
        warnings.append(ValidationWarning(
            message=f"Low number of genes ({n_genes}). Typical RNA-seq has 15,000-25,000 genes.",
            severity="warning"
        ))

    library_sizes = {str(k): float(v) for k, v in counts.sum(axis=0).items()}

    for sample, size in library_sizes.items():
        if size < 1e6:
            warnings.append(ValidationWarning(
                message=f"Sample '{sample}' has low library size: {size:,.0f} reads",
                severity="warning"
            ))

    if counts.index.duplicated().any():
        n_duplicates = counts.index.duplicated().sum()
        errors.append(f"Count matrix contains {n_duplicates} duplicate gene IDs")

    if counts.columns.duplicated().any():
        n_duplicates = counts.columns.duplicated().sum()
        errors.append(f"Count matrix contains {n_duplicates} duplicate sample IDs")

    schema = CountMatrixSchema(
        n_genes=n_genes,
        n_samples=n_samples,
        sample_ids=[str(c) for c in counts.columns],
        has_negative=has_negative,
        has_non_integer=has_non_integer,
        has_missing=has_missing,
        library_sizes=library_sizes
    )

    summary = {
        "n_genes": n_genes,
        "n_samples": n_samples,
        "total_counts": int(np.nansum(values)),
        "median_library_size": float(np.median(list(library_sizes.values())))
    }

    result = ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )

    return result, schema


def validate_design(
    design: pd.DataFrame,
    count_samples: Optional[List[str]] = None,
    factor: str = "sample",
    min_replicates: int = 2
) -> Tuple[ValidationResult, Optional[DesignSchema]]:
    """
    Validate the sample design.

    Args:
        design: Design DataFrame indexed by sample
        count_samples: Sample IDs from the count matrix; each needs exactly one design row
        factor: Name of the design column holding group labels
        min_replicates: Minimum number of samples per group

    Returns:
        Tuple of (ValidationResult, DesignSchema)
    """
    errors = []
    warnings = []

    if design.empty:
        errors.append("Design is empty")
        return ValidationResult(valid=False, errors=errors), None

    sample_ids = [str(s) for s in design.index]
    replicates_per_group = None
    n_groups = None

    if factor not in design.columns:
        errors.append(f"Design factor '{factor}' not found in design")
    else:
        if design[factor].isna().any():
            errors.append(f"Design factor '{factor}' contains missing values")

        group_counts = design[factor].value_counts()
        replicates_per_group = {str(k): int(v) for k, v in group_counts.items()}
        n_groups = len(group_counts)

        if n_groups < 2:
            errors.append(f"Design factor '{factor}' has fewer than two groups")

        for group, count in replicates_per_group.items():
            if count < min_replicates:
                errors.append(
                    f"Group '{group}' has only {count} replicate(s). "
                    f"At least {min_replicates} replicates per group are required."
                )

    if design.index.duplicated().any():
        n_duplicates = design.index.duplicated().sum()
        errors.append(f"Design contains {n_duplicates} duplicate sample IDs")

    if count_samples is not None:
        count_set = set(count_samples)
        design_set = set(sample_ids)

        missing_in_design = count_set - design_set
        missing_in_counts = design_set - count_set

        if missing_in_design:
            errors.append(
                f"Samples in count matrix but not in design: {', '.join(sorted(missing_in_design))}"
            )

        if missing_in_counts:
            warnings.append(ValidationWarning(
                message=f"Samples in design but not in count matrix: {', '.join(sorted(missing_in_counts))}",
                severity="info"
            ))

    schema = DesignSchema(
        n_samples=len(design),
        sample_ids=sample_ids,
        factor=factor,
        n_groups=n_groups,
        replicates_per_group=replicates_per_group
    )

    summary = {"n_samples": len(design)}
    if replicates_per_group:
        summary["groups"] = replicates_per_group

    result = ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )

    return result, schema


def validate_analysis_inputs(
    counts: pd.DataFrame,
    design: pd.DataFrame,
    factor: str = "sample"
) -> ValidationResult:
    """
    Validate count matrix and design together.

    Returns:
        ValidationResult with combined errors and warnings from both inputs
    """
    counts_result, counts_schema = validate_count_matrix(counts)
    design_result, design_schema = validate_design(
        design,
        count_samples=[str(c) for c in counts.columns],
        factor=factor
    )

    all_errors = counts_result.errors + design_result.errors
    all_warnings = counts_result.warnings + design_result.warnings

    summary = {
        "counts": counts_result.summary,
        "design": design_result.summary
    }
    if counts_schema is not None:
        summary["library_sizes"] = counts_schema.library_sizes
    if design_schema is not None and design_schema.replicates_per_group:
        summary["replicates_per_group"] = design_schema.replicates_per_group

    return ValidationResult(
        valid=len(all_errors) == 0,
        errors=all_errors,
        warnings=all_warnings,
        summary=summary
    )
