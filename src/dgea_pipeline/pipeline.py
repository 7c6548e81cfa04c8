"""End-to-end DGEA pipeline: counts -> filtering -> DESeq2 -> contrast tables."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .annotation import load_gene_annotation
from .config import Config, get_config
from .contrasts import (
    VARIANT_SUFFIXES,
    extract_results,
    plan_contrasts,
    read_table,
    write_reverse_contrast,
    write_table,
)
from .counts import (
    build_design,
    combine_count_files,
    drop_pseudo_rows,
    exclude_genes,
    filter_unexpressed,
    list_count_files,
    read_exclusion_list,
    summarize_pseudo_rows,
    top_expressed_genes,
    with_ens_id,
)
from .models import Contrast, ContrastResult, FittedModel
from .validation import validate_analysis_inputs
from . import visualizations


logger = logging.getLogger(__name__)

# Unshrunk table reversed in place of each shrunk variant when shrinkage is off
UNSHRUNK_VARIANTS = {"LFC": "full", "LFC.DE": "DE"}


class PipelineError(Exception):
    """Exception for pipeline configuration or sequencing errors."""
    pass


class PipelineStatus(str, Enum):
    COMPLETED = "completed"
    AWAITING_EXCLUSION_LIST = "awaiting_exclusion_list"


@dataclass
class PipelineRun:
    """What a pipeline run produced."""

    status: PipelineStatus
    n_genes: int = 0
    size_factors: Optional[pd.Series] = None
    contrasts: List[ContrastResult] = field(default_factory=list)
    reversed: Dict[str, Dict[str, Path]] = field(default_factory=dict)
    figures: List[Path] = field(default_factory=list)


def prepare_counts(config: Config) -> Optional[pd.DataFrame]:
    """
    Assemble and filter the count matrix.

    Writes the combined raw counts, the pseudo-row summary, the list of top
    expressed genes and, once the curated exclusion list exists, the
    filtered counts.

    Returns:
        Filtered count matrix, or ``None`` if the exclusion list has not
        been curated yet
    """
    paths = config.paths
    paths.processed_dir.mkdir(parents=True, exist_ok=True)

    files = list_count_files(paths.counts_dir, paths.count_suffix)
    counts = combine_count_files(files, paths.count_suffix)

    summary = summarize_pseudo_rows(counts)
    write_table(summary, paths.processed_dir / "counts_summary.tsv")

    counts = drop_pseudo_rows(counts)
    write_table(counts.rename_axis('geneID').reset_index(), paths.processed_dir / "counts_raw.tsv")

    counts = filter_unexpressed(counts)

    top_file = paths.processed_dir / f"top_{config.analysis.top_n_genes}_genes.tsv"
    write_table(top_expressed_genes(counts, config.analysis.top_n_genes), top_file)

    if not paths.exclusion_file.exists():
        logger.warning(
            f"Exclusion list {paths.exclusion_file} not found. Curate highly expressed "
            f"ribosomal protein genes from {top_file} into a TSV with an 'ID' column "
            "and run the pipeline again."
        )
        return None

    counts = exclude_genes(counts, read_exclusion_list(paths.exclusion_file))
    write_table(with_ens_id(counts), paths.processed_dir / "counts_flt.tsv")
    return counts


def normalize_and_fit(
    wrapper,
    counts: pd.DataFrame,
    design: pd.DataFrame,
    config: Config
) -> Tuple[FittedModel, pd.DataFrame, pd.Series]:
    """
    Estimate size factors, write normalized counts and fit the model.

    The fitted model is saved with ``saveRDS`` and reloaded from disk.

    Returns:
        Tuple of (fitted model, normalized counts, size factors)
    """
    factor = config.analysis.design_factor
    processed = config.paths.processed_dir

    dds = wrapper.create_dataset(counts, design, factor)
    dds = wrapper.estimate_size_factors(dds)

    size_factors = wrapper.size_factors(dds)
    logger.info("Size factors: " + ", ".join(f"{s}={v:.3f}" for s, v in size_factors.items()))
    write_table(
        size_factors.rename_axis('sample').reset_index(),
        processed / "size_factors.tsv"
    )

    normalized = wrapper.normalized_counts(dds)
    write_table(normalized.rename_axis('geneID').reset_index(), processed / "counts_norm.tsv")

    model = wrapper.fit(dds, factor)
    wrapper.save_model(model, config.paths.model_file)
    model = wrapper.load_model(config.paths.model_file, factor)

    return model, normalized, size_factors


def configured_contrasts(config: Config, design: pd.DataFrame) -> List[Contrast]:
    """Contrasts from the configuration, checked against the design's groups."""
    factor = config.analysis.design_factor
    groups = set(design[factor])

    contrasts = []
    for spec in config.contrasts:
        contrast = Contrast(spec.numerator, spec.denominator, factor)
        missing = [g for g in contrast.groups if g not in groups]
        if missing:
            raise PipelineError(
                f"Contrast {contrast.name} refers to unknown group(s) {', '.join(missing)}; "
                f"design groups are {', '.join(sorted(groups))}"
            )
        if contrast.numerator == contrast.denominator:
            raise PipelineError(f"Contrast {contrast.name} compares a group with itself")
        contrasts.append(contrast)
    return contrasts


def run_contrasts(
    wrapper,
    model: FittedModel,
    contrasts: List[Contrast],
    annotation: pd.DataFrame,
    design: pd.DataFrame,
    normalized: pd.DataFrame,
    config: Config
) -> List[ContrastResult]:
    """
    Extract every contrast, refitting once per reference level.

    Each batch gets its own model snapshot; ``model`` is never modified.
    """
    analysis = config.analysis
    results = []

    for batch in plan_contrasts(contrasts, initial_reference=model.reference):
        snapshot = wrapper.relevel(model, batch.reference) if analysis.shrink else model
        for contrast in batch.contrasts:
            results.append(extract_results(
                wrapper,
                snapshot,
                contrast,
                annotation,
                design,
                config.paths.deseq_dir,
                log2fc_threshold=analysis.log2fc_threshold,
                padj_threshold=analysis.padj_threshold,
                shrink=analysis.shrink,
                shrink_method=analysis.shrink_method,
                normalized_counts=normalized,
            ))

    return results


def reverse_variants(config: Config) -> List[str]:
    """
    Table variants to reverse for this run.

    Without shrinkage no ``LFC`` tables exist, so each ``LFC`` variant is
    replaced by its unshrunk counterpart.
    """
    variants = []
    for variant in config.reverse.variants:
        if variant not in VARIANT_SUFFIXES:
            raise PipelineError(
                f"Unknown reverse table variant '{variant}'; "
                f"choose from {', '.join(VARIANT_SUFFIXES)}"
            )
        if not config.analysis.shrink and variant in UNSHRUNK_VARIANTS:
            replacement = UNSHRUNK_VARIANTS[variant]
            logger.warning(
                f"Shrinkage is disabled; reversing '{replacement}' tables instead of '{variant}'"
            )
            variant = replacement
        if variant not in variants:
            variants.append(variant)
    return variants


def configured_reverse_contrasts(config: Config, contrasts: List[Contrast]) -> List[Contrast]:
    """Reverse contrasts from the configuration; each must be an extracted contrast."""
    factor = config.analysis.design_factor
    reverse = []
    for spec in config.reverse.contrasts:
        contrast = Contrast(spec.numerator, spec.denominator, factor)
        if contrast not in contrasts:
            raise PipelineError(
                f"Reverse contrast {contrast.reversed().name} needs {contrast.name}, "
                f"which is not among the configured contrasts "
                f"({', '.join(c.name for c in contrasts)})"
            )
        reverse.append(contrast)
    return reverse


def derive_reverse_contrasts(
    config: Config,
    contrasts: Optional[List[Contrast]] = None,
    variants: Optional[List[str]] = None
) -> Dict[str, Dict[str, Path]]:
    """Write reverse-direction tables for the configured contrasts."""
    factor = config.analysis.design_factor
    if contrasts is None:
        contrasts = [
            Contrast(spec.numerator, spec.denominator, factor)
            for spec in config.reverse.contrasts
        ]
    if variants is None:
        variants = reverse_variants(config)

    written = {}
    for contrast in contrasts:
        written[contrast.reversed().name] = write_reverse_contrast(
            config.paths.deseq_dir, contrast, variants
        )
    return written


def make_figures(
    results: List[ContrastResult],
    normalized: pd.DataFrame,
    design: pd.DataFrame,
    config: Config
) -> List[Path]:
    """Write PCA, volcano, MA and heatmap figures."""
    figures_dir = config.paths.figures_dir
    analysis = config.analysis
    factor = analysis.design_factor
    written = []

    if normalized.shape[1] >= 2:
        fig = visualizations.create_pca_plot(normalized, design, factor)
        written.append(visualizations.write_figure(fig, figures_dir / "pca.html"))

    for result in results:
        name = result.contrast.name
        samples = design.index[design[factor].isin(result.contrast.groups)].tolist()

        for variant in ("full", "LFC"):
            if variant not in result.files:
                continue
            table = read_table(result.files[variant])
            suffix = "" if variant == "full" else ".LFC"

            volcano = visualizations.create_volcano_plot(
                table,
                padj_threshold=analysis.padj_threshold,
                log2fc_threshold=analysis.log2fc_threshold,
                top_n_labels=config.figures.top_n_labels,
                title=f"{name}{suffix}"
            )
            written.append(visualizations.write_figure(volcano, figures_dir / f"{name}{suffix}.volcano.html"))

            ma = visualizations.create_ma_plot(
                table,
                padj_threshold=analysis.padj_threshold,
                log2fc_threshold=analysis.log2fc_threshold,
                title=f"{name}{suffix}"
            )
            written.append(visualizations.write_figure(ma, figures_dir / f"{name}{suffix}.MA.html"))

        de_table = read_table(result.files["DE"])
        heatmap = visualizations.create_heatmap(
            normalized, de_table, samples,
            top_n=config.figures.heatmap_top_n,
            title=f"{name}: top DE genes"
        )
        if heatmap is not None:
            written.append(visualizations.write_figure(heatmap, figures_dir / f"{name}.heatmap.html"))

    return written


def _default_wrapper(config: Config):
    from .deseq2 import DESeq2Wrapper

    method = config.analysis.shrink_method if config.analysis.shrink else None
    return DESeq2Wrapper(shrink_method=method)


def run_pipeline(config: Optional[Config] = None, wrapper=None) -> PipelineRun:
    """
    Run the whole analysis.

    Args:
        config: Pipeline configuration; the global one when omitted
        wrapper: DESeq2Wrapper (or compatible object); created on demand

    Returns:
        PipelineRun describing what was written
    """
    config = config or get_config()
    config.paths.create_directories()
    factor = config.analysis.design_factor

    logger.info("Step 1/5: assembling and filtering counts")
    counts = prepare_counts(config)
    if counts is None:
        return PipelineRun(status=PipelineStatus.AWAITING_EXCLUSION_LIST)

    annotation = load_gene_annotation(config.paths.annotation_file)
    design = build_design(counts.columns, factor)

    validation = validate_analysis_inputs(counts, design, factor)
    for warning in validation.warnings:
        logger.warning(warning.message)
    validation.raise_for_errors()

    contrasts = configured_contrasts(config, design)
    reverse = configured_reverse_contrasts(config, contrasts)
    variants = reverse_variants(config)

    if wrapper is None:
        wrapper = _default_wrapper(config)

    logger.info("Step 2/5: size factors, normalization and model fit")
    model, normalized, size_factors = normalize_and_fit(wrapper, counts, design, config)

    logger.info(f"Step 3/5: extracting {len(contrasts)} contrasts")
    results = run_contrasts(wrapper, model, contrasts, annotation, design, normalized, config)

    logger.info("Step 4/5: deriving reverse contrasts")
    reversed_tables = derive_reverse_contrasts(config, reverse, variants)

    figures = []
    if config.figures.enabled:
        logger.info("Step 5/5: figures")
        figures = make_figures(results, normalized, design, config)

    return PipelineRun(
        status=PipelineStatus.COMPLETED,
        n_genes=len(counts),
        size_factors=size_factors,
        contrasts=results,
        reversed=reversed_tables,
        figures=figures,
    )
