"""Plotly figures for the time-course report."""

from typing import List, Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from timecourse_report.config import PlotStyle, ThresholdPolicy
from timecourse_report.filtering import DOWN, UP, significance_mask
from timecourse_report.overlap import GeneSets


def _time_axis(labels: List[str]) -> dict:
    """Categorical axis that keeps time points in the given order."""
    return dict(type='category', categoryorder='array', categoryarray=labels)


def _apply_style(fig: go.Figure, style: PlotStyle, title: str, **layout) -> go.Figure:
    fig.update_layout(
        title=title,
        template=style.template,
        width=style.width,
        height=style.height,
        **layout
    )
    return fig


def create_de_counts_bar(
    summary: pd.DataFrame,
    style: PlotStyle,
    title: str = "Differentially Expressed Genes per Time Point"
) -> go.Figure:
    """
    Stacked bar chart of up- and down-regulated genes per time point.

    Args:
        summary: Output of per_timepoint_summary
        style: Plot settings
        title: Plot title

    Returns:
        Plotly Figure object
    """
    labels = summary['time_point'].astype(str).tolist()
    fig = go.Figure()
    for direction, column in ((UP, 'up'), (DOWN, 'down')):
        fig.add_trace(go.Bar(
            x=labels,
            y=summary[column],
            name=direction,
            marker_color=style.direction_colors()[direction],
            hovertemplate=f'Time %{{x}}<br>{direction}: %{{y}}<extra></extra>'
        ))

    for label, total in zip(labels, summary['total']):
        fig.add_annotation(x=label, y=total, text=str(int(total)),
                           showarrow=False, yshift=10)

    return _apply_style(
        fig, style, title,
        barmode='stack',
        xaxis=dict(title="Time point", **_time_axis(labels)),
        yaxis_title="Number of genes",
        legend_title_text="Direction"
    )


def create_onset_bar(
    onset: pd.DataFrame,
    style: PlotStyle,
    title: str = "Time of First Significant Change"
) -> go.Figure:
    """Grouped bar chart of genes by onset time point and direction."""
    labels = list(dict.fromkeys(onset['time_point'].astype(str)))
    fig = go.Figure()
    for direction in (UP, DOWN):
        subset = onset[onset['direction'] == direction]
        fig.add_trace(go.Bar(
            x=subset['time_point'].astype(str),
            y=subset['n_genes'],
            name=direction,
            marker_color=style.direction_colors()[direction],
            text=subset['n_genes'],
            textposition='outside',
            hovertemplate=f'Onset %{{x}}<br>{direction}: %{{y}}<extra></extra>'
        ))

    return _apply_style(
        fig, style, title,
        barmode='group',
        xaxis=dict(title="First significant time point", **_time_axis(labels)),
        yaxis_title="Number of genes",
        legend_title_text="Direction"
    )


def create_onset_fc_box(
    records: pd.DataFrame,
    time_labels: List[str],
    style: PlotStyle,
    title: str = "Fold Change at First Significant Change"
) -> go.Figure:
    """
    Box plot of |log2FC| at onset per time point and direction.

    Args:
        records: Output of first_de_records
        time_labels: Time points in chronological order
        style: Plot settings
        title: Plot title
    """
    fig = go.Figure()
    for direction in (UP, DOWN):
        subset = records[records['direction'] == direction]
        fig.add_trace(go.Box(
            x=subset['first_de_time_point'].astype(str),
            y=subset['abs_log2FoldChange'],
            name=direction,
            marker_color=style.direction_colors()[direction],
            boxpoints='outliers',
            text=subset['gene_name'],
            hovertemplate='%{text}<br>|log2FC|: %{y:.2f}<extra></extra>'
        ))

    return _apply_style(
        fig, style, title,
        boxmode='group',
        xaxis=dict(title="First significant time point", **_time_axis(time_labels)),
        yaxis_title="|log<sub>2</sub> Fold Change| at onset",
        legend_title_text="Direction"
    )


def create_upset_plot(
    exclusive: pd.DataFrame,
    gene_sets: GeneSets,
    style: PlotStyle,
    color: Optional[str] = None,
    title: str = "Overlap of Significant Genes Across Time Points"
) -> go.Figure:
    """
    UpSet-style chart of exclusive intersections.

    The top panel shows the size of each non-empty exclusive intersection,
    the bottom panel marks which time points form it. Time points are
    listed chronologically from top to bottom, each row in its own colour
    from ``style.timepoint_colors``.

    Args:
        exclusive: Output of exclusive_intersections
        gene_sets: Per-time-point gene sets (chronological key order)
        style: Plot settings
        color: Bar and connector colour
        title: Plot title
    """
    color = color or style.up_color
    labels = list(gene_sets)
    row_colors = style.timepoint_color_map(labels)
    combos = exclusive[exclusive['size'] > 0].reset_index(drop=True)

    fig = make_subplots(
        rows=2, cols=1, shared_xaxes=True,
        row_heights=[0.6, 0.4], vertical_spacing=0.03
    )

    if combos.empty:
        fig.add_annotation(text="No significant genes", showarrow=False,
                           xref="paper", yref="paper", x=0.5, y=0.5)
        return _apply_style(fig, style, title, showlegend=False)

    x = list(range(len(combos)))
    names = [" & ".join(m) for m in combos['members']]
    fig.add_trace(go.Bar(
        x=x, y=combos['size'], marker_color=color,
        text=combos['size'], textposition='outside',
        customdata=names,
        hovertemplate='%{customdata}<br>%{y} genes<extra></extra>'
    ), row=1, col=1)

    # Set labels top-down in chronological order
    y_of = {label: len(labels) - 1 - i for i, label in enumerate(labels)}
    tick_text = [f"{label} (n={len(gene_sets[label])})" for label in labels]

    for xi, members in zip(x, combos['members']):
        fig.add_trace(go.Scatter(
            x=[xi] * len(labels),
            y=[y_of[label] for label in labels],
            mode='markers',
            marker=dict(
                size=12,
                color=[row_colors[label] if label in members else '#E5E7E9' for label in labels]
            ),
            hoverinfo='skip'
        ), row=2, col=1)
        if len(members) > 1:
            ys = [y_of[label] for label in members]
            fig.add_trace(go.Scatter(
                x=[xi, xi], y=[min(ys), max(ys)],
                mode='lines', line=dict(color=color, width=3),
                hoverinfo='skip'
            ), row=2, col=1)

    fig.update_yaxes(title_text="Exclusive intersection size", row=1, col=1)
    fig.update_yaxes(
        tickmode='array',
        tickvals=[y_of[label] for label in labels],
        ticktext=tick_text,
        range=[-0.5, len(labels) - 0.5],
        row=2, col=1
    )
    fig.update_xaxes(showticklabels=False, row=2, col=1)
    fig.update_xaxes(showticklabels=False, row=1, col=1)

    return _apply_style(fig, style, title, showlegend=False)


def create_volcano_plot(
    results: pd.DataFrame,
    policy: ThresholdPolicy,
    style: PlotStyle,
    top_n_labels: int = 10,
    title: str = "Volcano Plot"
) -> go.Figure:
    """
    Volcano plot for a single contrast.

    Args:
        results: Rows of one contrast from run_time_course_de
        policy: Thresholds used to colour points
        style: Plot settings
        top_n_labels: Number of top genes to label per direction
        title: Plot title
    """
    # Filter out genes with missing p-values
    plot_data = results.dropna(subset=['padj', 'log2FoldChange']).copy()
    plot_data['-log10padj'] = -np.log10(plot_data['padj'])

    # Replace infinite values
    max_log10p = plot_data['-log10padj'].replace([np.inf, -np.inf], np.nan).max()
    if pd.isna(max_log10p):
        max_log10p = 1.0
    plot_data['-log10padj'] = plot_data['-log10padj'].replace([np.inf], max_log10p * 1.1)

    significant = significance_mask(plot_data, policy)
    plot_data['category'] = np.where(
        ~significant, 'not_sig',
        np.where(plot_data['log2FoldChange'] > 0, UP, DOWN)
    )

    color_map = {
        UP: style.up_color,
        DOWN: style.down_color,
        'not_sig': style.not_sig_color,
    }

    fig = go.Figure()
    for category, color in color_map.items():
        data_subset = plot_data[plot_data['category'] == category]
        fig.add_trace(go.Scattergl(
            x=data_subset['log2FoldChange'],
            y=data_subset['-log10padj'],
            mode='markers',
            name=category.replace('_', ' ').title(),
            marker=dict(color=color, size=5,
                        opacity=0.5 if category == 'not_sig' else 0.8),
            text=data_subset['gene_name'],
            customdata=data_subset[['gene_id', 'padj']],
            hovertemplate=(
                '<b>%{text}</b> (%{customdata[0]})<br>' +
                'log2FC: %{x:.2f}<br>' +
                'Padj: %{customdata[1]:.2e}<br>' +
                '<extra></extra>'
            )
        ))

    fig.add_hline(
        y=-np.log10(policy.padj_max),
        line_dash="dash",
        line_color="gray",
        annotation_text=f"padj = {policy.padj_max}",
        annotation_position="right"
    )
    fig.add_vline(x=policy.abs_log2fc_min, line_dash="dash", line_color="gray")
    fig.add_vline(x=-policy.abs_log2fc_min, line_dash="dash", line_color="gray")

    if top_n_labels > 0:
        ranked = plot_data[plot_data['category'] != 'not_sig'].sort_values(
            '-log10padj', ascending=False
        )
        top_genes = pd.concat([
            ranked[ranked['category'] == UP].head(top_n_labels),
            ranked[ranked['category'] == DOWN].head(top_n_labels),
        ])
        for _, gene in top_genes.iterrows():
            fig.add_annotation(
                x=gene['log2FoldChange'],
                y=gene['-log10padj'],
                text=gene['gene_name'],
                showarrow=True,
                arrowhead=2,
                ax=20 if gene['log2FoldChange'] > 0 else -20,
                ay=-20,
                font=dict(size=9),
                bgcolor='rgba(255, 255, 255, 0.8)'
            )

    return _apply_style(
        fig, style, title,
        xaxis_title="log<sub>2</sub> Fold Change",
        yaxis_title="-log<sub>10</sub> (adjusted p-value)",
        hovermode='closest',
        legend=dict(x=0.02, y=0.98, bgcolor='rgba(255, 255, 255, 0.8)')
    )
