"""Figures for contrast result tables and normalized counts."""

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from scipy.cluster.hierarchy import dendrogram, linkage


logger = logging.getLogger(__name__)

COLOR_MAP = {
    'up': '#E74C3C',      # Red
    'down': '#3498DB',    # Blue
    'not_sig': '#95A5A6'  # Gray
}


def classify_direction(
    table: pd.DataFrame,
    padj_threshold: float = 0.05,
    log2fc_threshold: float = 1.0
) -> pd.Series:
    """Label each gene ``up``, ``down`` or ``not_sig`` using the DE table thresholds."""
    significant = (table['padj'] < padj_threshold) & (table['log2FC'].abs() >= log2fc_threshold)
    labels = np.select(
        [significant & (table['log2FC'] > 0), significant & (table['log2FC'] < 0)],
        ['up', 'down'],
        default='not_sig'
    )
    return pd.Series(labels, index=table.index)


def _gene_labels(table: pd.DataFrame) -> pd.Series:
    if 'gene_name' in table.columns:
        return table['gene_name'].fillna(table['geneID'])
    return table['geneID']


def create_volcano_plot(
    results: pd.DataFrame,
    padj_threshold: float = 0.05,
    log2fc_threshold: float = 1.0,
    top_n_labels: int = 10,
    title: str = "Volcano Plot"
) -> go.Figure:
    """
    Create interactive volcano plot.

    Args:
        results: Contrast result table
        padj_threshold: Adjusted p-value cutoff for significance
        log2fc_threshold: Log2 fold change threshold
        top_n_labels: Number of top up and down genes to label
        title: Plot title

    Returns:
        Plotly Figure object
    """
    plot_data = results.dropna(subset=['padj', 'log2FC']).copy()
    plot_data['label'] = _gene_labels(plot_data)
    plot_data['-log10padj'] = -np.log10(plot_data['padj'])

    # Replace infinite values
    max_log10p = plot_data['-log10padj'].replace([np.inf, -np.inf], np.nan).max()
    if pd.isna(max_log10p):
        max_log10p = 1.0
    plot_data['-log10padj'] = plot_data['-log10padj'].replace([np.inf], max_log10p * 1.1)

    plot_data['color'] = classify_direction(plot_data, padj_threshold, log2fc_threshold)

    fig = go.Figure()

    for category, color in COLOR_MAP.items():
        data_subset = plot_data[plot_data['color'] == category]

        fig.add_trace(go.Scatter(
            x=data_subset['log2FC'],
            y=data_subset['-log10padj'],
            mode='markers',
            name=category.replace('_', ' ').title(),
            marker=dict(
                color=color,
                size=6,
                opacity=0.6 if category == 'not_sig' else 0.8,
                line=dict(width=0)
            ),
            text=data_subset['label'],
            customdata=data_subset[['baseMean', 'padj']],
            hovertemplate=(
                '<b>%{text}</b><br>' +
                'log2FC: %{x:.2f}<br>' +
                'Padj: %{customdata[1]:.2e}<br>' +
                'BaseMean: %{customdata[0]:.0f}<br>' +
                '<extra></extra>'
            )
        ))

    fig.add_hline(
        y=-np.log10(padj_threshold),
        line_dash="dash",
        line_color="gray",
        annotation_text=f"padj = {padj_threshold}",
        annotation_position="right"
    )
    fig.add_vline(x=log2fc_threshold, line_dash="dash", line_color="gray")
    fig.add_vline(x=-log2fc_threshold, line_dash="dash", line_color="gray")

    if top_n_labels > 0:
        sig_genes = plot_data[plot_data['color'] != 'not_sig']
        sig_genes = sig_genes.sort_values('-log10padj', ascending=False)
        top_genes = pd.concat([
            sig_genes[sig_genes['color'] == 'up'].head(top_n_labels),
            sig_genes[sig_genes['color'] == 'down'].head(top_n_labels)
        ])

        for _, gene in top_genes.iterrows():
            fig.add_annotation(
                x=gene['log2FC'],
                y=gene['-log10padj'],
                text=gene['label'],
                showarrow=True,
                arrowhead=2,
                ax=20 if gene['log2FC'] > 0 else -20,
                ay=-20,
                font=dict(size=9),
                bgcolor='rgba(255, 255, 255, 0.8)'
            )

    fig.update_layout(
        title=title,
        xaxis_title="log<sub>2</sub> Fold Change",
        yaxis_title="-log<sub>10</sub> (adjusted p-value)",
        hovermode='closest',
        template='plotly_white',
        width=900,
        height=600
    )

    return fig


def create_ma_plot(
    results: pd.DataFrame,
    padj_threshold: float = 0.05,
    log2fc_threshold: float = 1.0,
    title: str = "MA Plot"
) -> go.Figure:
    """Create MA plot (mean normalized count vs log2 fold change)."""
    plot_data = results.dropna(subset=['padj', 'log2FC', 'baseMean']).copy()
    plot_data['label'] = _gene_labels(plot_data)
    plot_data['log10baseMean'] = np.log10(plot_data['baseMean'] + 1)
    plot_data['color'] = classify_direction(plot_data, padj_threshold, log2fc_threshold)

    fig = go.Figure()

    for category, color in COLOR_MAP.items():
        data_subset = plot_data[plot_data['color'] == category]

        fig.add_trace(go.Scatter(
            x=data_subset['log10baseMean'],
            y=data_subset['log2FC'],
            mode='markers',
            name=category.replace('_', ' ').title(),
            marker=dict(
                color=color,
                size=4,
                opacity=0.5 if category == 'not_sig' else 0.7,
                line=dict(width=0)
            ),
            text=data_subset['label'],
            customdata=data_subset[['padj']],
            hovertemplate=(
                '<b>%{text}</b><br>' +
                'log10(baseMean): %{x:.2f}<br>' +
                'log2FC: %{y:.2f}<br>' +
                'Padj: %{customdata[0]:.2e}<br>' +
                '<extra></extra>'
            )
        ))

    fig.add_hline(y=log2fc_threshold, line_dash="dash", line_color="gray")
    fig.add_hline(y=-log2fc_threshold, line_dash="dash", line_color="gray")
    fig.add_hline(y=0, line_color="black", line_width=1)

    fig.update_layout(
        title=title,
        xaxis_title="log<sub>10</sub> (Mean Normalized Count)",
        yaxis_title="log<sub>2</sub> Fold Change",
        hovermode='closest',
        template='plotly_white',
        width=900,
        height=600
    )

    return fig


def create_pca_plot(
    normalized_counts: pd.DataFrame,
    design: pd.DataFrame,
    factor: str = "sample",
    title: str = "PCA Plot"
) -> go.Figure:
    """
    PCA of samples on log2(normalized count + 1).

    Args:
        normalized_counts: Normalized counts (genes x samples)
        design: Sample design indexed by sample
        factor: Design column used for coloring
        title: Plot title
    """
    from sklearn.decomposition import PCA

    # Samples as rows
    data = np.log2(normalized_counts + 1).T
    data = data.loc[:, data.var() > 0]

    pca = PCA(n_components=min(10, data.shape[0], data.shape[1]))
    pca_coords = pca.fit_transform(data)

    if pca_coords.shape[1] < 2:
        pca_coords = np.column_stack([pca_coords, np.zeros(len(pca_coords))])
    var_exp = list(pca.explained_variance_ratio_ * 100) + [0.0, 0.0]

    pca_df = pd.DataFrame(pca_coords[:, :2], index=data.index, columns=['PC1', 'PC2'])
    pca_df = pca_df.join(design[[factor]])

    fig = px.scatter(
        pca_df,
        x='PC1',
        y='PC2',
        color=factor,
        text=pca_df.index,
        title=title,
        labels={
            'PC1': f'PC1 ({var_exp[0]:.1f}%)',
            'PC2': f'PC2 ({var_exp[1]:.1f}%)'
        }
    )

    fig.update_traces(
        marker=dict(size=12, line=dict(width=1, color='white')),
        textposition='top center'
    )
    fig.update_layout(template='plotly_white', width=800, height=600)

    return fig


def create_heatmap(
    normalized_counts: pd.DataFrame,
    de_results: pd.DataFrame,
    samples: Optional[Sequence[str]] = None,
    top_n: int = 50,
    title: str = "Expression Heatmap"
) -> Optional[go.Figure]:
    """
    Heatmap of z-scored log2 normalized counts for the top DE genes.

    Genes and samples are ordered by average-linkage clustering on
    euclidean distance. Returns ``None`` when there are no genes to show.
    """
    top_genes = de_results.sort_values('padj').head(top_n)
    top_genes = top_genes[top_genes['geneID'].isin(normalized_counts.index)]
    if top_genes.empty:
        return None

    columns = list(samples) if samples is not None else list(normalized_counts.columns)
    heatmap_data = np.log2(normalized_counts.loc[top_genes['geneID'], columns] + 1)

    # Z-score per gene; constant genes become zero
    std = heatmap_data.std(axis=1).replace(0, np.nan)
    heatmap_data = heatmap_data.sub(heatmap_data.mean(axis=1), axis=0).div(std, axis=0).fillna(0)
    heatmap_data.index = _gene_labels(top_genes).values

    gene_order = list(range(len(heatmap_data)))
    sample_order = list(range(len(heatmap_data.columns)))

    if len(heatmap_data) > 2 and heatmap_data.to_numpy().std() > 0:
        gene_linkage = linkage(heatmap_data.values, method='average', metric='euclidean')
        gene_order = dendrogram(gene_linkage, no_plot=True)['leaves']

    if len(heatmap_data.columns) > 2:
        sample_linkage = linkage(heatmap_data.T.values, method='average', metric='euclidean')
        sample_order = dendrogram(sample_linkage, no_plot=True)['leaves']

    heatmap_data = heatmap_data.iloc[gene_order, sample_order]

    fig = go.Figure(data=go.Heatmap(
        z=heatmap_data.values,
        x=heatmap_data.columns,
        y=heatmap_data.index,
        colorscale='RdBu_r',
        zmid=0,
        colorbar=dict(title="Z-score"),
        hovertemplate='Gene: %{y}<br>Sample: %{x}<br>Z-score: %{z:.2f}<extra></extra>'
    ))

    fig.update_layout(
        title=title,
        xaxis_title="Samples",
        yaxis_title="Genes",
        template='plotly_white',
        width=800,
        height=max(400, len(heatmap_data) * 12),
        xaxis=dict(tickangle=-45),
        yaxis=dict(tickfont=dict(size=8))
    )

    return fig


def write_figure(fig: go.Figure, path: Union[str, Path]) -> Path:
    """Write a figure as a standalone HTML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.write_html(str(path), include_plotlyjs='cdn')
    logger.info(f"Wrote figure {path}")
    return path
