"""Shared fixtures: synthetic count files and an in-memory stand-in for the R wrapper."""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from dgea_pipeline.config import Config, PathConfig, FigureConfig
from dgea_pipeline.deseq2 import DESeq2Error
from dgea_pipeline.models import FittedModel


GROUPS = ['Cys', 'GFP', 'LCL', 'Tat']
SAMPLES = [f"{g}{r}" for g in GROUPS for r in (1, 2)]


class FakeDESeq2:
    """Mimics DESeq2Wrapper with plain pandas arithmetic.

    log2 fold changes are ratios of group means of normalized counts;
    ``padj`` is 0.001 when ``|log2FC| >= 1``, 0.5 otherwise, and missing
    for genes with a mean normalized count below 5.
    """

    def __init__(self):
        self.fits = []
        self.saved = {}

    def create_dataset(self, counts, design, factor="sample"):
        design = design.loc[counts.columns]
        return {
            'counts': counts.copy(),
            'design': design,
            'factor': factor,
            'reference': sorted(design[factor].unique())[0],
        }

    def estimate_size_factors(self, dds):
        dds = dict(dds)
        totals = dds['counts'].sum(axis=0).astype(float)
        dds['size_factors'] = totals / np.exp(np.log(totals).mean())
        return dds

    def size_factors(self, dds):
        return dds['size_factors'].rename('size_factor')

    def normalized_counts(self, dds):
        return dds['counts'] / dds['size_factors']

    def fit(self, dds, factor="sample", reference=None):
        dds = dict(dds)
        if reference is not None:
            dds['reference'] = reference
        self.fits.append(dds['reference'])
        return FittedModel(dds=dds, factor=factor, reference=dds['reference'])

    def relevel(self, model, reference):
        if reference == model.reference:
            return model
        return self.fit(model.dds, model.factor, reference=reference)

    def results_names(self, model):
        levels = sorted(model.dds['design'][model.factor].unique())
        return ['Intercept'] + [
            f"{model.factor}_{g}_vs_{model.reference}" for g in levels if g != model.reference
        ]

    def results(self, model, contrast, alpha=0.05):
        dds = model.dds
        norm = self.normalized_counts(dds)
        groups = dds['design'][model.factor]
        num = norm.loc[:, groups == contrast.numerator].mean(axis=1)
        den = norm.loc[:, groups == contrast.denominator].mean(axis=1)
        base_mean = norm.mean(axis=1)
        log2fc = np.log2((num + 0.5) / (den + 0.5))
        padj = pd.Series(np.where(log2fc.abs() >= 1, 0.001, 0.5), index=norm.index)
        padj[base_mean < 5] = np.nan
        df = pd.DataFrame({
            'baseMean': base_mean,
            'log2FoldChange': log2fc,
            'lfcSE': 0.2,
            'stat': log2fc / 0.2,
            'pvalue': padj / 10,
            'padj': padj,
        })
        return ('res', contrast), df

    def lfc_shrink(self, model, contrast, res, method=None):
        if contrast.coefficient not in self.results_names(model):
            raise DESeq2Error(f"Coefficient '{contrast.coefficient}' not in model")
        _, df = self.results(model, contrast)
        df = df.drop(columns=['stat'])
        df['log2FoldChange'] = df['log2FoldChange'] * 0.8
        return df

    def save_model(self, model, path):
        Path(path).write_text("fitted model")
        self.saved[str(path)] = model

    def load_model(self, path, factor="sample"):
        return self.saved[str(path)]


def write_count_files(directory: Path, counts: pd.DataFrame, suffix: str = ".r.tab"):
    """Write one headerless two-column file per sample column."""
    directory.mkdir(parents=True, exist_ok=True)
    for sample in counts.columns:
        counts[sample].to_csv(directory / f"{sample}{suffix}", sep='\t', header=False)


@pytest.fixture
def raw_counts():
    """Count table with genes, a ribosomal gene, an unexpressed gene and pseudo-rows."""
    rng = np.random.default_rng(7)
    genes = [f"ENSG{i:011d}.{i % 3 + 1}" for i in range(1, 31)]
    data = rng.poisson(50, (len(genes), len(SAMPLES)))
    counts = pd.DataFrame(data, index=genes, columns=SAMPLES)

    # Strongly up in Tat
    counts.loc[genes[0], ['Tat1', 'Tat2']] = 800
    # Strongly down in Tat
    counts.loc[genes[1], ['Tat1', 'Tat2']] = 2
    # Unexpressed
    counts.loc[genes[2]] = 0
    # Highly expressed ribosomal gene
    counts.loc[genes[3]] = 50000
    # Low counts, padj missing
    counts.loc[genes[4]] = [1, 0, 0, 1, 0, 0, 1, 0]

    pseudo = pd.DataFrame(
        [[100 + i for i in range(len(SAMPLES))],
         [10 + i for i in range(len(SAMPLES))],
         [5] * len(SAMPLES)],
        index=['__no_feature', '__ambiguous', '__too_low_aQual'],
        columns=SAMPLES
    )
    combined = pd.concat([counts, pseudo])
    combined.index.name = 'geneID'
    return combined


@pytest.fixture
def annotation_df(raw_counts):
    genes = [g for g in raw_counts.index if not g.startswith('__')]
    # Leave the last gene unannotated
    return pd.DataFrame({
        'geneID': genes[:-1],
        'gene_name': [f"GENE{i}" for i in range(len(genes) - 1)],
        'gene_type': ['protein_coding'] * (len(genes) - 1),
    })


@pytest.fixture
def workspace(tmp_path, raw_counts, annotation_df):
    """Input files on disk and a Config pointing at them."""
    counts_dir = tmp_path / "data" / "counts"
    write_count_files(counts_dir, raw_counts)

    annotation_file = tmp_path / "data" / "annotation.txt"
    annotation_df.to_csv(annotation_file, sep='\t', header=False, index=False)

    config = Config(
        paths=PathConfig(
            counts_dir=counts_dir,
            annotation_file=annotation_file,
            output_dir=tmp_path / "output" / "tables",
            figures_dir=tmp_path / "output" / "figures",
        ),
        figures=FigureConfig(enabled=False),
    )
    return config


@pytest.fixture
def ribo_gene(raw_counts):
    return raw_counts.index[3]


@pytest.fixture
def curated_workspace(workspace, ribo_gene):
    """Workspace with the curated exclusion list in place."""
    workspace.paths.processed_dir.mkdir(parents=True, exist_ok=True)
    pd.DataFrame({'ID': [ribo_gene.split('.')[0]]}).to_csv(
        workspace.paths.exclusion_file, sep='\t', index=False
    )
    return workspace


@pytest.fixture
def fake_deseq2():
    return FakeDESeq2()
