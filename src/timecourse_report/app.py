"""Dash application presenting a computed time-course report."""

import logging

import dash
from dash import dcc, html, Input, Output
import dash_bootstrap_components as dbc

from timecourse_report.config import Config
from timecourse_report.filtering import DOWN, UP
from timecourse_report.report import TimeCourseReport, build_figures, consistency_text


logger = logging.getLogger(__name__)


def create_layout(report: TimeCourseReport, config: Config):
    """Create the report layout."""
    figures = build_figures(report, config.style)
    summary = report.timepoint_summary
    texts = consistency_text(report, config.defaults.top_n_names)
    policy = report.policy

    return dbc.Container([
        # Header
        dbc.Row([
            dbc.Col([
                html.H1(config.app_title, className="text-primary mb-2"),
                html.H4(
                    f"Time points vs baseline {report.baseline} "
                    f"({report.count_data.counts.shape[1]} samples)",
                    className="text-secondary mb-4"
                ),
                html.Hr()
            ])
        ]),

        # Summary
        dbc.Row([
            dbc.Col([
                dbc.Alert([
                    html.H5(
                        f"{report.filtered['gene_id'].nunique()} genes significant "
                        f"(padj < {policy.padj_max}, |log2FC| > {policy.abs_log2fc_min})",
                        className="alert-heading"
                    ),
                    html.Hr(),
                    html.P(f"Up-regulated rows: {int(summary['up'].sum())} | "
                           f"Down-regulated rows: {int(summary['down'].sum())}"),
                    html.P(texts[UP]),
                    html.P(texts[DOWN]),
                ], color="success")
            ], width=12)
        ]),

        # Figures and tables
        dbc.Row([
            dbc.Col([
                dbc.Tabs(
                    [
                        dbc.Tab(label=section, children=[dcc.Graph(figure=fig)])
                        for section, fig in figures.items()
                    ] + [
                        dbc.Tab(label="Policies", children=[
                            dbc.Table.from_dataframe(
                                report.policy_summary,
                                striped=True, bordered=True, hover=True,
                                size='sm', className="mt-3"
                            ),
                            dbc.Table.from_dataframe(
                                report.missing_padj,
                                striped=True, bordered=True, hover=True,
                                size='sm', className="mt-3"
                            ),
                        ]),
                        dbc.Tab(label="Results Table", children=[
                            dbc.Table.from_dataframe(
                                report.filtered.head(100)[
                                    ['gene_id', 'gene_name', 'time_point',
                                     'log2FoldChange', 'padj', 'direction']
                                ].round(4),
                                striped=True, bordered=True, hover=True,
                                size='sm', className="mt-3"
                            ),
                            dbc.Button(
                                "Download Full Results (CSV)",
                                id="download-results-btn",
                                color="primary",
                                className="mt-3"
                            ),
                            dcc.Download(id="download-results")
                        ]),
                    ]
                )
            ])
        ]),
    ], fluid=True, className="py-4")


def create_app(report: TimeCourseReport, config: Config) -> dash.Dash:
    """Build a Dash app serving ``report``."""
    app = dash.Dash(
        __name__,
        external_stylesheets=[dbc.themes.BOOTSTRAP],
        title=config.app_title
    )
    app.layout = create_layout(report, config)

    @app.callback(
        Output("download-results", "data"),
        Input("download-results-btn", "n_clicks"),
        prevent_initial_call=True
    )
    def download_results(n_clicks):
        """Download all contrast results as CSV."""
        return dcc.send_data_frame(
            report.results.to_csv,
            "timecourse_de_results.csv",
            index=False
        )

    return app


def serve(report: TimeCourseReport, config: Config):
    """Run the Dash application for ``report``."""
    app = create_app(report, config)
    logger.info(f"Serving report on http://{config.host}:{config.port}")
    app.run(debug=config.debug, host=config.host, port=config.port)
