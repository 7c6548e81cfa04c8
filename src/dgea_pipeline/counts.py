"""Assembly and filtering of htseq-count style per-sample count files."""

import logging
import re
from pathlib import Path
from typing import Iterable, List, Sequence, Union

import pandas as pd


logger = logging.getLogger(__name__)

PSEUDO_PREFIX = "__"
SUMMARY_ROWS = ("__no_feature", "__ambiguous")
UNIQUE_COLUMN = "__unique"

_VERSION_SUFFIX = r"\.\d+$"
_REPLICATE_SUFFIX = re.compile(r"[._-]?\d+$")


class CountDataError(Exception):
    """Exception for malformed or inconsistent count data."""
    pass


def list_count_files(directory: Union[str, Path], suffix: str = ".r.tab") -> List[Path]:
    """Return the count files in ``directory`` ending with ``suffix``, sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        raise CountDataError(f"Count directory not found: {directory}")

    files = sorted(p for p in directory.iterdir() if p.is_file() and p.name.endswith(suffix))
    if not files:
        raise CountDataError(f"No files ending with '{suffix}' in {directory}")

    logger.info(f"Found {len(files)} count files in {directory}")
    return files


def sample_name_from_path(path: Union[str, Path], suffix: str = ".r.tab") -> str:
    """Derive the sample name from a count file name."""
    name = Path(path).name
    if name.endswith(suffix):
        name = name[: -len(suffix)]
    return name


def read_count_file(path: Union[str, Path]) -> pd.Series:
    """
    Read a single htseq-count output file.

    Args:
        path: Tab-separated file with feature ID and integer count, no header

    Returns:
        Series of counts indexed by feature ID
    """
    df = pd.read_csv(
        path,
        sep='\t',
        header=None,
        names=['geneID', 'count'],
        dtype={'geneID': str},
    )

    if df['count'].isna().any():
        raise CountDataError(f"Missing counts in {path}")
    if df['geneID'].duplicated().any():
        raise CountDataError(f"Duplicate feature IDs in {path}")

    values = pd.to_numeric(df['count'], errors='coerce')
    bad = values.isna() | (values != values.round())
    if bad.any():
        examples = ', '.join(f"{g}={c}" for g, c in df.loc[bad, ['geneID', 'count']].head(3).values)
        raise CountDataError(f"Non-integer counts in {path}: {examples}")

    counts = df.assign(count=values).set_index('geneID')['count'].astype(int)
    return counts


def combine_count_files(paths: Sequence[Union[str, Path]], suffix: str = ".r.tab") -> pd.DataFrame:
    """
    Read several count files into one gene x sample matrix.

    Every file must list the same feature IDs in the same order.

    Args:
        paths: Count files, one per sample
        suffix: File name suffix stripped to get the sample name

    Returns:
        DataFrame with feature IDs as index and samples as columns
    """
    if not paths:
        raise CountDataError("No count files given")

    columns = {}
    reference_index = None
    reference_path = None

    for path in paths:
        sample = sample_name_from_path(path, suffix)
        if sample in columns:
            raise CountDataError(f"Duplicate sample name '{sample}' from {path}")

        series = read_count_file(path)
        if reference_index is None:
            reference_index = series.index
            reference_path = path
        elif not series.index.equals(reference_index):
            raise CountDataError(
                f"Feature IDs in {path} do not match those in {reference_path}"
            )
        columns[sample] = series.values

    counts = pd.DataFrame(columns, index=reference_index)
    counts.index.name = 'geneID'
    logger.info(f"Combined counts: {counts.shape[0]} features x {counts.shape[1]} samples")
    return counts


def is_pseudo_row(gene_ids: Iterable[str]) -> pd.Series:
    ids = pd.Series(list(gene_ids), dtype=str)
    return ids.str.startswith(PSEUDO_PREFIX)


def summarize_pseudo_rows(counts: pd.DataFrame) -> pd.DataFrame:
    """
    Summarize pseudo-rows per sample.

    Returns one row per sample with the ``__no_feature`` and ``__ambiguous``
    counts and ``__unique``, the total of all counts assigned to genes.
    """
    pseudo_mask = is_pseudo_row(counts.index).values

    present = [row for row in SUMMARY_ROWS if row in counts.index]
    summary = counts.loc[present].T
    summary[UNIQUE_COLUMN] = counts.loc[~pseudo_mask].sum(axis=0)

    summary.index.name = 'sample'
    summary.columns.name = None
    return summary.reset_index()


def drop_pseudo_rows(counts: pd.DataFrame) -> pd.DataFrame:
    """Remove rows whose feature ID starts with a double underscore."""
    mask = is_pseudo_row(counts.index).values
    logger.info(f"Dropping {int(mask.sum())} pseudo-rows")
    return counts.loc[~mask]


def filter_unexpressed(counts: pd.DataFrame) -> pd.DataFrame:
    """Keep genes with a count above zero in at least one sample."""
    kept = counts.loc[(counts > 0).any(axis=1)]
    logger.info(f"Removed {len(counts) - len(kept)} unexpressed genes, {len(kept)} remain")
    return kept


def strip_version(gene_ids: Iterable[str]) -> pd.Index:
    """Remove the trailing version suffix from Ensembl IDs (``ENSG0001.4`` -> ``ENSG0001``)."""
    return pd.Index(list(gene_ids), dtype=str).str.replace(_VERSION_SUFFIX, "", regex=True)


def top_expressed_genes(counts: pd.DataFrame, n: int = 100) -> pd.DataFrame:
    """
    List the ``n`` genes with the highest total count across samples.

    The list is meant for manual curation of highly expressed ribosomal
    protein genes.

    Returns:
        DataFrame with a single ``ensID`` column, highest total first
    """
    totals = counts.sum(axis=1, numeric_only=True)
    top = totals.sort_values(ascending=False, kind='stable').head(n)
    return pd.DataFrame({'ensID': strip_version(top.index)})


def read_exclusion_list(path: Union[str, Path], column: str = "ID") -> List[str]:
    """Read the curated gene exclusion list (TSV with a header)."""
    df = pd.read_csv(path, sep='\t', dtype=str)
    if column not in df.columns:
        raise CountDataError(f"Column '{column}' not found in exclusion list {path}")

    ids = strip_version(df[column].dropna().str.strip())
    logger.info(f"Loaded {len(ids)} excluded genes from {path}")
    return ids.tolist()


def exclude_genes(counts: pd.DataFrame, exclusion_ids: Iterable[str]) -> pd.DataFrame:
    """Drop genes whose version-less ID is in ``exclusion_ids``."""
    excluded = set(strip_version(exclusion_ids))
    mask = strip_version(counts.index).isin(excluded)
    logger.info(f"Excluding {int(mask.sum())} curated genes")
    return counts.loc[~mask]


def group_from_sample(sample: str) -> str:
    """Strip the trailing replicate number from a sample name (``Tat1`` -> ``Tat``)."""
    group = _REPLICATE_SUFFIX.sub("", sample)
    if not group:
        raise CountDataError(f"Cannot derive a group label from sample '{sample}'")
    return group


def build_design(samples: Iterable[str], factor: str = "sample") -> pd.DataFrame:
    """
    Build the sample design table.

    Args:
        samples: Sample names, in count matrix column order
        factor: Name of the design column

    Returns:
        DataFrame indexed by sample with the group label in ``factor``
    """
    samples = list(samples)
    design = pd.DataFrame(
        {factor: [group_from_sample(s) for s in samples]},
        index=pd.Index(samples, name=None),
    )
    return design


def with_ens_id(counts: pd.DataFrame) -> pd.DataFrame:
    """Counts as a table with ``geneID`` and ``ensID`` leading columns, for writing."""
    table = counts.rename_axis('geneID').reset_index()
    table.insert(1, 'ensID', strip_version(table['geneID']))
    return table
