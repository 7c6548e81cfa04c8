"""Unit tests for contrast planning, result tables and reverse contrasts."""

import math

import numpy as np
import pandas as pd
import pytest

from dgea_pipeline.contrasts import (
    all_pairwise_contrasts,
    contrast_samples,
    extract_results,
    filter_significant,
    format_result_table,
    plan_contrasts,
    read_table,
    result_paths,
    reverse_contrast_table,
    write_reverse_contrast,
    write_table,
)
from dgea_pipeline.counts import build_design, drop_pseudo_rows
from dgea_pipeline.deseq2 import DESeq2Error
from dgea_pipeline.models import Contrast
from conftest import SAMPLES


THRESHOLD = math.log2(1.5)


@pytest.fixture
def design():
    return build_design(SAMPLES)


@pytest.fixture
def deseq_results():
    """DESeq2-style results indexed by gene ID, unsorted, one missing padj."""
    return pd.DataFrame({
        'baseMean': [100.0, 50.0, 3.0, 80.0],
        'log2FoldChange': [0.4, 2.0, 1.0, -1.2],
        'lfcSE': [0.1, 0.3, 0.9, 0.2],
        'stat': [4.0, 6.6, 1.1, -6.0],
        'pvalue': [0.001, 0.05, 0.3, 0.0001],
        'padj': [0.01, 0.2, np.nan, 0.001],
    }, index=['ENSG00000001.1', 'ENSG00000002.2', 'ENSG00000003.1', 'ENSG00000004.5'])


@pytest.fixture
def normalized():
    genes = ['ENSG00000001.1', 'ENSG00000002.2', 'ENSG00000003.1', 'ENSG00000004.5']
    return pd.DataFrame(
        np.arange(len(genes) * len(SAMPLES), dtype=float).reshape(len(genes), len(SAMPLES)),
        index=genes,
        columns=SAMPLES
    )


@pytest.fixture
def annotation():
    return pd.DataFrame({
        'geneID': ['ENSG00000001.1', 'ENSG00000002.2', 'ENSG00000004.5'],
        'gene_name': ['A', 'B', 'D'],
        'gene_type': ['protein_coding', 'lncRNA', 'protein_coding'],
    })


@pytest.fixture
def result_table(deseq_results, annotation, normalized):
    return format_result_table(deseq_results, annotation, normalized, ['Tat1', 'Tat2', 'Cys1', 'Cys2'])


class TestContrast:
    """Tests for the contrast descriptor."""

    def test_names(self):
        contrast = Contrast('Tat', 'Cys')

        assert contrast.name == 'Tat_vs_Cys'
        assert contrast.coefficient == 'sample_Tat_vs_Cys'
        assert contrast.as_r_contrast() == ['sample', 'Tat', 'Cys']
        assert contrast.reversed() == Contrast('Cys', 'Tat')

    def test_all_pairwise(self):
        contrasts = all_pairwise_contrasts(['Tat', 'Cys', 'Tat', 'LCL'])

        assert len(contrasts) == 6
        assert Contrast('Tat', 'Cys') in contrasts
        assert Contrast('Cys', 'Tat') in contrasts


class TestPlanContrasts:
    """Tests for grouping contrasts by reference level."""

    def test_batches_by_denominator(self):
        contrasts = [
            Contrast('Tat', 'LCL'),
            Contrast('Tat', 'Cys'),
            Contrast('Cys', 'LCL'),
            Contrast('GFP', 'LCL'),
        ]

        batches = plan_contrasts(contrasts)

        assert [b.reference for b in batches] == ['LCL', 'Cys']
        assert [c.name for c in batches[0].contrasts] == ['Tat_vs_LCL', 'Cys_vs_LCL', 'GFP_vs_LCL']

    def test_initial_reference_first(self):
        contrasts = [Contrast('Tat', 'LCL'), Contrast('Tat', 'Cys')]

        batches = plan_contrasts(contrasts, initial_reference='Cys')

        assert [b.reference for b in batches] == ['Cys', 'LCL']

    def test_duplicates_collapsed(self):
        batches = plan_contrasts([Contrast('Tat', 'Cys'), Contrast('Tat', 'Cys')])

        assert len(batches) == 1
        assert len(batches[0].contrasts) == 1

    def test_contrast_samples(self, design):
        assert contrast_samples(design, Contrast('Tat', 'Cys')) == ['Cys1', 'Cys2', 'Tat1', 'Tat2']


class TestFormatResultTable:
    """Tests for assembling the annotated result table."""

    def test_drops_missing_padj_and_sorts(self, result_table):
        assert list(result_table['geneID']) == ['ENSG00000004.5', 'ENSG00000001.1', 'ENSG00000002.2']
        assert result_table['padj'].is_monotonic_increasing

    def test_column_order(self, result_table):
        assert list(result_table.columns) == [
            'geneID', 'ensID', 'gene_name', 'gene_type', 'padj', 'log2FC', 'FC',
            'baseMean', 'lfcSE', 'stat', 'pvalue',
            'Tat1', 'Tat2', 'Cys1', 'Cys2',
        ]

    def test_derived_columns(self, result_table):
        assert list(result_table['ensID']) == ['ENSG00000004', 'ENSG00000001', 'ENSG00000002']
        np.testing.assert_allclose(result_table['FC'], 2.0 ** result_table['log2FC'])
        assert list(result_table['gene_name']) == ['D', 'A', 'B']

    def test_joins_normalized_counts(self, result_table, normalized):
        row = result_table.set_index('geneID').loc['ENSG00000001.1']
        assert row['Tat1'] == normalized.loc['ENSG00000001.1', 'Tat1']

    def test_shrunk_results_without_stat(self, deseq_results, annotation, normalized):
        shrunk = deseq_results.drop(columns=['stat'])

        table = format_result_table(shrunk, annotation, normalized, ['Tat1'])

        assert 'stat' not in table.columns
        assert list(table.columns[-2:]) == ['pvalue', 'Tat1']

    def test_gene_id_named_index(self, deseq_results, annotation, normalized):
        """Count matrices built by the pipeline name their index ``geneID``."""
        named_counts = normalized.rename_axis('geneID')
        named_results = deseq_results.rename_axis('geneID')

        table = format_result_table(named_results, annotation, named_counts, ['Tat1', 'Cys1'])

        assert list(table['geneID']) == ['ENSG00000004.5', 'ENSG00000001.1', 'ENSG00000002.2']
        row = table.set_index('geneID').loc['ENSG00000001.1']
        assert row['Cys1'] == normalized.loc['ENSG00000001.1', 'Cys1']


class TestFilterSignificant:
    """Tests for the DE table thresholds."""

    def test_fold_change_and_significance_thresholds(self, result_table):
        de = filter_significant(result_table, 0.05, THRESHOLD)

        # padj=0.01, log2FC=0.4 fails the fold change; padj=0.2, log2FC=2.0 fails padj
        assert list(de['geneID']) == ['ENSG00000004.5']

    def test_every_row_satisfies_both_conditions(self, result_table):
        de = filter_significant(result_table, 0.05, THRESHOLD)
        assert ((de['padj'] < 0.05) & (de['log2FC'].abs() >= THRESHOLD)).all()

        passing = result_table[(result_table['padj'] < 0.05) & (result_table['log2FC'].abs() >= THRESHOLD)]
        assert set(passing['geneID']) == set(de['geneID'])

    def test_threshold_is_inclusive(self):
        table = pd.DataFrame({'geneID': ['g'], 'padj': [0.01], 'log2FC': [-1.0]})

        assert len(filter_significant(table, 0.05, 1.0)) == 1


class TestReverseContrast:
    """Tests for the algebraic reverse-contrast derivation."""

    def test_effect_size_columns(self, result_table):
        reverse = reverse_contrast_table(result_table)

        np.testing.assert_allclose(reverse['log2FC'], -result_table['log2FC'])
        np.testing.assert_allclose(reverse['FC'], 2.0 ** reverse['log2FC'])

    def test_other_columns_unchanged(self, result_table):
        reverse = reverse_contrast_table(result_table)

        others = [c for c in result_table.columns if c not in ('log2FC', 'FC')]
        pd.testing.assert_frame_equal(reverse[others], result_table[others])

    def test_input_not_modified(self, result_table):
        before = result_table.copy()
        reverse_contrast_table(result_table)
        pd.testing.assert_frame_equal(result_table, before)

    def test_write_reverse_contrast(self, tmp_path, result_table):
        contrast = Contrast('Tat', 'Cys')
        write_table(result_table, result_paths(tmp_path, contrast)['LFC.DE'])

        written = write_reverse_contrast(tmp_path, contrast, ['LFC.DE'])

        assert written['LFC.DE'] == tmp_path / 'Cys_vs_Tat.LFC.DE.tsv'
        reverse = read_table(written['LFC.DE'])
        np.testing.assert_allclose(reverse['log2FC'], -result_table['log2FC'])
        assert list(reverse['padj']) == list(result_table['padj'])

    def test_unknown_variant(self, tmp_path):
        with pytest.raises(ValueError):
            write_reverse_contrast(tmp_path, Contrast('Tat', 'Cys'), ['shrunk'])


class TestExtractResults:
    """Tests for writing the four result tables of a contrast."""

    @pytest.fixture
    def setup(self, fake_deseq2, raw_counts, annotation_df):
        counts = drop_pseudo_rows(raw_counts)
        design = build_design(counts.columns)
        dds = fake_deseq2.estimate_size_factors(fake_deseq2.create_dataset(counts, design))
        model = fake_deseq2.fit(dds)
        return model, design

    def test_writes_four_tables(self, tmp_path, fake_deseq2, annotation_df, setup):
        model, design = setup
        contrast = Contrast('Tat', 'Cys')

        result = extract_results(
            fake_deseq2, model, contrast, annotation_df, design, tmp_path, THRESHOLD
        )

        assert result.reference == 'Cys'
        assert set(result.files) == {'full', 'DE', 'LFC', 'LFC.DE'}
        for path in result.files.values():
            assert path.exists()
        assert result.files['LFC.DE'].name == 'Tat_vs_Cys.LFC.DE.tsv'

        full = read_table(result.files['full'])
        de = read_table(result.files['DE'])
        assert full['padj'].notna().all()
        assert ((de['padj'] < 0.05) & (de['log2FC'].abs() >= THRESHOLD)).all()
        assert result.n_significant == len(de) > 0

        sample_columns = [c for c in full.columns if c in SAMPLES]
        assert sample_columns == ['Cys1', 'Cys2', 'Tat1', 'Tat2']

    def test_shrunk_table_has_shrunk_fold_change(self, tmp_path, fake_deseq2, annotation_df, setup):
        model, design = setup

        result = extract_results(
            fake_deseq2, model, Contrast('Tat', 'Cys'), annotation_df, design, tmp_path, THRESHOLD
        )

        full = read_table(result.files['full']).set_index('geneID')
        shrunk = read_table(result.files['LFC']).set_index('geneID')
        np.testing.assert_allclose(shrunk['log2FC'], full.loc[shrunk.index, 'log2FC'] * 0.8)
        assert 'stat' not in shrunk.columns

    def test_without_shrinkage(self, tmp_path, fake_deseq2, annotation_df, setup):
        model, design = setup

        result = extract_results(
            fake_deseq2, model, Contrast('Tat', 'LCL'), annotation_df, design, tmp_path,
            THRESHOLD, shrink=False
        )

        assert set(result.files) == {'full', 'DE'}
        assert not (tmp_path / 'Tat_vs_LCL.LFC.tsv').exists()

    def test_shrinkage_needs_matching_reference(self, tmp_path, fake_deseq2, annotation_df, setup):
        model, design = setup

        with pytest.raises(DESeq2Error):
            extract_results(
                fake_deseq2, model, Contrast('Tat', 'LCL'), annotation_df, design, tmp_path, THRESHOLD
            )

        # A failed shrinkage leaves no partial set of tables behind
        assert list(tmp_path.glob('Tat_vs_LCL*')) == []

    def test_factor_mismatch(self, tmp_path, fake_deseq2, annotation_df, setup):
        model, design = setup

        with pytest.raises(ValueError):
            extract_results(
                fake_deseq2, model, Contrast('Tat', 'Cys', factor='condition'),
                annotation_df, design, tmp_path, THRESHOLD
            )
