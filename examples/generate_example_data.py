"""Generate a synthetic htseq-count dataset for trying out the DGEA pipeline."""

from pathlib import Path

import numpy as np
import pandas as pd

from dgea_pipeline.config import CONFIG_TEMPLATE


PSEUDO_ROWS = ['__no_feature', '__ambiguous', '__too_low_aQual', '__not_aligned', '__alignment_not_unique']


def generate_example_data(
    n_genes: int = 2000,
    groups: tuple = ("Cys", "GFP", "LCL", "Tat"),
    n_replicates: int = 3,
    n_de_genes: int = 200,
    n_ribosomal: int = 20,
    fold_change_range: tuple = (2, 5),
    output_dir: str = "example",
    seed: int = 42
):
    """
    Write per-sample count files, a gene annotation table and a config.

    Genes are Ensembl-style IDs with version suffixes. ``LCL`` is the
    baseline; every other group gets its own set of up- and down-regulated
    genes. The first ``n_ribosomal`` genes are very highly expressed
    ribosomal protein genes.

    Args:
        n_genes: Total number of genes
        groups: Group labels; sample names are label + replicate number
        n_replicates: Samples per group
        n_de_genes: Differentially expressed genes per non-baseline group
        n_ribosomal: Highly expressed ribosomal protein genes
        fold_change_range: (min, max) fold change for DE genes
        output_dir: Directory to create the example project in
        seed: Random seed for reproducibility
    """
    rng = np.random.default_rng(seed)
    output_path = Path(output_dir)
    counts_dir = output_path / "data" / "counts"
    metadata_dir = output_path / "data" / "metadata"
    counts_dir.mkdir(parents=True, exist_ok=True)
    metadata_dir.mkdir(parents=True, exist_ok=True)

    gene_ids = [f"ENSG{i:011d}.{rng.integers(1, 15)}" for i in range(1, n_genes + 1)]

    # Base expression levels (log-normal), some genes never expressed
    base_expression = rng.lognormal(mean=4, sigma=2, size=n_genes)
    base_expression[rng.choice(n_genes, n_genes // 20, replace=False)] = 0
    base_expression[:n_ribosomal] = rng.uniform(2e4, 1e5, n_ribosomal)

    candidates = np.arange(n_ribosomal, n_genes)
    for group in groups:
        expression = base_expression.copy()
        if group != "LCL":
            de_indices = rng.choice(candidates, n_de_genes, replace=False)
            n_up = n_de_genes // 2
            expression[de_indices[:n_up]] *= rng.uniform(*fold_change_range, n_up)
            expression[de_indices[n_up:]] /= rng.uniform(*fold_change_range, n_de_genes - n_up)

        for replicate in range(1, n_replicates + 1):
            depth = rng.uniform(0.7, 1.3)
            dispersion = rng.uniform(0.05, 0.2, n_genes)
            mean = expression * depth
            counts = rng.negative_binomial(n=1 / dispersion, p=1 / (1 + mean * dispersion))

            pseudo = rng.integers(10_000, 1_000_000, len(PSEUDO_ROWS))
            sample = pd.Series(
                np.concatenate([counts, pseudo]),
                index=gene_ids + PSEUDO_ROWS
            )
            sample.to_csv(counts_dir / f"{group}{replicate}.r.tab", sep='\t', header=False)

    annotation = pd.DataFrame({
        'geneID': gene_ids,
        'gene_name': [f"RPL{i}" if i <= n_ribosomal else f"GENE{i}" for i in range(1, n_genes + 1)],
        'gene_type': 'protein_coding',
    })
    annotation.to_csv(
        metadata_dir / "GRCh38.p10_ALL.annotation.IDs.txt", sep='\t', header=False, index=False
    )

    (output_path / "dgea.yaml").write_text(CONFIG_TEMPLATE)

    print(f"✓ Generated example data:")
    print(f"  - Genes: {n_genes} ({n_ribosomal} ribosomal)")
    print(f"  - Samples: {len(groups) * n_replicates} ({', '.join(groups)} x {n_replicates})")
    print(f"  - Files saved to: {output_path.absolute()}")

    return gene_ids[:n_ribosomal]


def write_curated_exclusion_list(ribosomal_ids, output_dir: str = "example"):
    """Stand in for the manual curation step: list the ribosomal genes."""
    processed = Path(output_dir) / "output" / "tables" / "01_DGEA" / "processed_counts"
    processed.mkdir(parents=True, exist_ok=True)
    pd.DataFrame({'ID': [g.split('.')[0] for g in ribosomal_ids]}).to_csv(
        processed / "ribo_genes.tsv", sep='\t', index=False
    )
    print(f"✓ Wrote curated exclusion list to {processed / 'ribo_genes.tsv'}")


if __name__ == "__main__":
    ribosomal = generate_example_data()
    write_curated_exclusion_list(ribosomal)
    print("\nRun the pipeline with:  cd example && python -m dgea_pipeline dgea.yaml")
