"""Static gene annotation table."""

import logging
from pathlib import Path
from typing import Union

import pandas as pd


logger = logging.getLogger(__name__)

ANNOTATION_COLUMNS = ['geneID', 'gene_name', 'gene_type']


def load_gene_annotation(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load the gene annotation table.

    Args:
        path: Headerless TSV with gene ID, gene name and gene type

    Returns:
        DataFrame with ``geneID``, ``gene_name`` and ``gene_type`` columns
    """
    annotation = pd.read_csv(
        path,
        sep='\t',
        header=None,
        names=ANNOTATION_COLUMNS,
        dtype=str,
    )
    annotation = annotation.drop_duplicates(subset='geneID', keep='first')
    logger.info(f"Loaded annotation for {len(annotation)} genes from {path}")
    return annotation


def annotate(table: pd.DataFrame, annotation: pd.DataFrame) -> pd.DataFrame:
    """
    Left-join gene name and type onto ``table`` by ``geneID``.

    Annotation columns already present in ``table`` are replaced, so
    annotating twice gives the same result as annotating once. The
    annotation columns follow ``geneID``/``ensID``.
    """
    extra = [c for c in ANNOTATION_COLUMNS if c != 'geneID']
    base = table.drop(columns=[c for c in extra if c in table.columns])

    merged = base.merge(annotation[ANNOTATION_COLUMNS], on='geneID', how='left')

    leading = [c for c in ['geneID', 'ensID'] if c in merged.columns] + extra
    rest = [c for c in merged.columns if c not in leading]
    return merged[leading + rest]
