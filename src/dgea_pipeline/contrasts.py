"""Contrast planning, result table assembly and reverse-contrast derivation."""

import logging
from itertools import permutations
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .annotation import annotate
from .counts import strip_version
from .models import Contrast, ContrastBatch, ContrastResult, FittedModel


logger = logging.getLogger(__name__)

# Result-table variant -> file name suffix
VARIANT_SUFFIXES = {
    "full": "",
    "DE": ".DE",
    "LFC": ".LFC",
    "LFC.DE": ".LFC.DE",
}

LEADING_COLUMNS = ['geneID', 'ensID', 'gene_name', 'gene_type', 'padj', 'log2FC', 'FC']
STAT_COLUMNS = ['baseMean', 'lfcSE', 'stat', 'pvalue']


def all_pairwise_contrasts(groups: Iterable[str], factor: str = "sample") -> List[Contrast]:
    """Every ordered pair of distinct groups."""
    unique = sorted(set(groups))
    return [Contrast(num, den, factor) for num, den in permutations(unique, 2)]


def plan_contrasts(
    contrasts: Sequence[Contrast],
    initial_reference: Optional[str] = None
) -> List[ContrastBatch]:
    """
    Group contrasts by the reference level they need.

    A contrast needs its denominator as reference level so that its
    coefficient exists for fold-change shrinkage. Batches keep the order in
    which their reference first appears; the batch for ``initial_reference``
    (the level the model was first fitted with) goes first, so it reuses
    that fit.
    """
    batches: Dict[str, ContrastBatch] = {}
    for contrast in contrasts:
        batch = batches.setdefault(contrast.denominator, ContrastBatch(reference=contrast.denominator))
        if contrast not in batch.contrasts:
            batch.contrasts.append(contrast)

    ordered = list(batches.values())
    if initial_reference in batches:
        ordered.sort(key=lambda b: b.reference != initial_reference)
    return ordered


def contrast_samples(design: pd.DataFrame, contrast: Contrast) -> List[str]:
    """Samples belonging to the numerator or denominator group, in design order."""
    groups = design[contrast.factor]
    return [str(s) for s in design.index[groups.isin(contrast.groups)]]


def format_result_table(
    results: pd.DataFrame,
    annotation: pd.DataFrame,
    normalized_counts: pd.DataFrame,
    samples: Sequence[str]
) -> pd.DataFrame:
    """
    Turn a DESeq2 results frame into an annotated result table.

    Genes without an adjusted p-value are dropped, the rest are sorted by
    ``padj``. Gene annotation and the normalized counts of ``samples`` are
    left-joined by ``geneID``.

    Args:
        results: DESeq2 results indexed by gene ID
        annotation: Gene annotation table
        normalized_counts: Normalized counts indexed by gene ID
        samples: Count columns to keep

    Returns:
        Result table with ``geneID, ensID, gene_name, gene_type, padj,
        log2FC, FC`` first, then the remaining statistics and the counts
    """
    table = results.rename(columns={'log2FoldChange': 'log2FC'}).rename_axis(None).copy()
    table.insert(0, 'geneID', [str(i) for i in table.index])
    table = table.loc[table['padj'].notna()]
    table = table.sort_values('padj', kind='mergesort').reset_index(drop=True)

    table['ensID'] = strip_version(table['geneID'])
    table['FC'] = np.power(2.0, table['log2FC'])

    table = annotate(table, annotation)

    counts = normalized_counts.loc[:, list(samples)].rename_axis(None).copy()
    counts.insert(0, 'geneID', [str(i) for i in counts.index])
    table = table.merge(counts, on='geneID', how='left')

    stats = [c for c in STAT_COLUMNS if c in table.columns]
    rest = [c for c in table.columns if c not in LEADING_COLUMNS + stats]
    return table[LEADING_COLUMNS + stats + rest]


def filter_significant(
    table: pd.DataFrame,
    padj_threshold: float = 0.05,
    log2fc_threshold: float = 0.0
) -> pd.DataFrame:
    """Rows with ``padj < padj_threshold`` and ``|log2FC| >= log2fc_threshold``."""
    mask = (table['padj'] < padj_threshold) & (table['log2FC'].abs() >= log2fc_threshold)
    return table.loc[mask].reset_index(drop=True)


def reverse_contrast_table(table: pd.DataFrame) -> pd.DataFrame:
    """
    Derive the B-vs-A table from an A-vs-B table.

    Only the effect-size columns change: ``log2FC`` is negated and ``FC``
    recomputed as ``2 ** log2FC``. P-values are symmetric under reversal
    and every other column is copied unchanged.
    """
    reverse = table.copy()
    reverse['log2FC'] = -reverse['log2FC']
    reverse['FC'] = np.power(2.0, reverse['log2FC'])
    return reverse


def result_paths(deseq_dir: Union[str, Path], contrast: Contrast) -> Dict[str, Path]:
    """File path of each result-table variant for ``contrast``."""
    deseq_dir = Path(deseq_dir)
    return {
        variant: deseq_dir / f"{contrast.name}{suffix}.tsv"
        for variant, suffix in VARIANT_SUFFIXES.items()
    }


def write_table(table: pd.DataFrame, path: Union[str, Path]):
    """Write a table as TSV with ``NA`` for missing values."""
    table.to_csv(path, sep='\t', index=False, na_rep='NA')


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    return pd.read_csv(path, sep='\t')


def _log_direction_counts(contrast: Contrast, table: pd.DataFrame, label: str):
    n_up = int((table['log2FC'] > 0).sum())
    n_down = int((table['log2FC'] < 0).sum())
    logger.info(f"{contrast.name} ({label}): {n_up} up-regulated and {n_down} down-regulated genes")


def extract_results(
    wrapper,
    model: FittedModel,
    contrast: Contrast,
    annotation: pd.DataFrame,
    design: pd.DataFrame,
    deseq_dir: Union[str, Path],
    log2fc_threshold: float,
    padj_threshold: float = 0.05,
    shrink: bool = True,
    shrink_method: Optional[str] = None,
    normalized_counts: Optional[pd.DataFrame] = None
) -> ContrastResult:
    """
    Extract, annotate and write the result tables of one contrast.

    Writes ``<name>.tsv`` and ``<name>.DE.tsv`` and, when ``shrink`` is set,
    ``<name>.LFC.tsv`` and ``<name>.LFC.DE.tsv``.

    Args:
        wrapper: DESeq2Wrapper used to query the model
        model: Fitted model snapshot; with ``shrink`` its reference level
            must be the contrast's denominator
        contrast: Numerator/denominator pair
        annotation: Gene annotation table
        design: Sample design, used to select the contrast's samples
        deseq_dir: Output directory for the tables
        log2fc_threshold: Minimum absolute log2 fold change for DE tables
        padj_threshold: Maximum adjusted p-value for DE tables
        shrink: Also write shrunk-fold-change tables
        shrink_method: lfcShrink estimator
        normalized_counts: Normalized counts; queried from the model if omitted

    Returns:
        ContrastResult with gene counts and written file paths
    """
    if contrast.factor != model.factor:
        raise ValueError(
            f"Contrast factor '{contrast.factor}' does not match model factor '{model.factor}'"
        )

    deseq_dir = Path(deseq_dir)
    deseq_dir.mkdir(parents=True, exist_ok=True)
    paths = result_paths(deseq_dir, contrast)

    if normalized_counts is None:
        normalized_counts = wrapper.normalized_counts(model.dds)
    samples = contrast_samples(design, contrast)

    res, res_df = wrapper.results(model, contrast, alpha=padj_threshold)
    tables = {"full": format_result_table(res_df, annotation, normalized_counts, samples)}
    tables["DE"] = filter_significant(tables["full"], padj_threshold, log2fc_threshold)

    # Nothing is written until shrinkage has succeeded
    if shrink:
        shrunk_df = wrapper.lfc_shrink(model, contrast, res, method=shrink_method)
        tables["LFC"] = format_result_table(shrunk_df, annotation, normalized_counts, samples)
        tables["LFC.DE"] = filter_significant(tables["LFC"], padj_threshold, log2fc_threshold)

    for variant, table in tables.items():
        write_table(table, paths[variant])

    _log_direction_counts(contrast, tables["DE"], "unshrunk")
    if shrink:
        _log_direction_counts(contrast, tables["LFC.DE"], "shrunk")

    return ContrastResult(
        contrast=contrast,
        reference=model.reference,
        n_tested=len(tables["full"]),
        n_significant=len(tables["DE"]),
        n_significant_shrunk=len(tables["LFC.DE"]) if shrink else 0,
        files={variant: paths[variant] for variant in tables},
    )


def write_reverse_contrast(
    deseq_dir: Union[str, Path],
    contrast: Contrast,
    variants: Iterable[str] = ("LFC.DE",)
) -> Dict[str, Path]:
    """
    Write the reverse of already-written tables of ``contrast``.

    Args:
        deseq_dir: Directory holding the forward tables
        contrast: The forward contrast (e.g. Tat vs Cys)
        variants: Table variants to reverse, keys of ``VARIANT_SUFFIXES``

    Returns:
        Mapping of variant to the written reverse-table path
    """
    forward_paths = result_paths(deseq_dir, contrast)
    reverse_paths = result_paths(deseq_dir, contrast.reversed())

    written = {}
    for variant in variants:
        if variant not in VARIANT_SUFFIXES:
            raise ValueError(f"Unknown result table variant '{variant}'")

        forward = read_table(forward_paths[variant])
        write_table(reverse_contrast_table(forward), reverse_paths[variant])
        written[variant] = reverse_paths[variant]
        logger.info(f"Derived {reverse_paths[variant].name} from {forward_paths[variant].name}")

    return written
