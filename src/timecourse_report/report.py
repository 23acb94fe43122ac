"""Run the full time-course analysis and write the HTML report."""

import html
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd
import plotly.graph_objects as go

from timecourse_report.config import Config, PlotStyle, ThresholdPolicy, get_config
from timecourse_report.deseq2 import (
    Contrast,
    DEBackend,
    build_contrasts,
    count_missing_padj,
    get_backend,
    resolve_baseline,
    run_time_course_de,
)
from timecourse_report.filtering import (
    DOWN,
    UP,
    check_policy_nesting,
    filter_significant,
    policy_gene_sets,
    policy_overlap,
    summarize_policies,
)
from timecourse_report.overlap import DirectionOverlap, direction_overlap, top_gene_names
from timecourse_report.temporal import first_de_records, first_de_summary, per_timepoint_summary
from timecourse_report.validation import (
    CountData,
    CountMatrixSchema,
    ValidationResult,
    build_sample_metadata,
    check_alignment,
    read_count_matrix,
    validate_count_matrix,
    validate_metadata,
)
from timecourse_report.visualizations import (
    create_de_counts_bar,
    create_onset_bar,
    create_onset_fc_box,
    create_upset_plot,
    create_volcano_plot,
)


logger = logging.getLogger(__name__)


@dataclass
class TimeCourseReport:
    """Everything computed in one run of the pipeline."""
    count_data: CountData
    metadata: pd.DataFrame
    baseline: str
    contrasts: List[Contrast]
    results: pd.DataFrame
    policy: ThresholdPolicy
    policy_summary: pd.DataFrame
    policy_overlap: pd.DataFrame
    nesting_violations: List[Tuple[str, str, int]]
    missing_padj: pd.DataFrame
    filtered: pd.DataFrame
    timepoint_summary: pd.DataFrame
    first_de: pd.DataFrame
    onset_summary: pd.DataFrame
    overlaps: Dict[str, DirectionOverlap]
    count_qc: ValidationResult
    count_schema: Optional[CountMatrixSchema]
    metadata_qc: ValidationResult

    @property
    def time_labels(self) -> List[str]:
        """Non-baseline time points, chronological."""
        return [c.time_point for c in self.contrasts]

    def consistent_gene_names(self, direction: str, n: int = 20) -> List[str]:
        """Names of genes significant at every time point in ``direction``."""
        return top_gene_names(
            self.overlaps[direction].consistent, self.count_data.gene_names, n
        )


def _log_qc(name: str, result: ValidationResult):
    for warning in result.warnings:
        log = logger.info if warning.severity == "info" else logger.warning
        log(f"{name}: {warning.message}")
    for error in result.errors:
        logger.error(f"{name}: {error}")


def run_pipeline(
    counts_file: Union[str, Path],
    config: Optional[Config] = None,
    backend: Optional[DEBackend] = None
) -> TimeCourseReport:
    """
    Load, fit, filter and aggregate; every stage runs in order.

    Args:
        counts_file: Tab-delimited count table
        config: Configuration (global config if None)
        backend: Statistical engine (built from config if None)

    Returns:
        TimeCourseReport

    Raises:
        ValidationError, StatisticalFittingError: any fatal problem aborts
            the whole run
    """
    config = config or get_config()
    defaults = config.defaults
    policy = defaults.get_policy()

    count_data = read_count_matrix(counts_file)
    count_qc, count_schema = validate_count_matrix(count_data.counts)
    _log_qc("Count matrix", count_qc)

    metadata = build_sample_metadata(
        count_data.sample_ids,
        delimiter=defaults.sample_delimiter,
        time_field=defaults.time_point_field,
        replicate_field=defaults.replicate_field
    )
    check_alignment(count_data.counts, metadata)

    baseline = resolve_baseline(metadata, defaults.baseline_time_point)
    metadata_qc = validate_metadata(metadata, baseline)
    _log_qc("Sample metadata", metadata_qc)
    contrasts = build_contrasts(metadata, baseline)
    logger.info(f"Baseline '{baseline}', contrasts: {[c.name for c in contrasts]}")

    if backend is None:
        backend = get_backend(defaults.backend, n_threads=defaults.threads, alpha=policy.padj_max)
    results = run_time_course_de(
        count_data.counts, metadata, count_data.gene_names, baseline, backend
    )

    policies = defaults.policies
    violations = check_policy_nesting(policy_gene_sets(results, policies), policies)
    filtered = filter_significant(results, policy)
    first_de = first_de_records(filtered)

    report = TimeCourseReport(
        count_data=count_data,
        metadata=metadata,
        baseline=baseline,
        contrasts=contrasts,
        results=results,
        policy=policy,
        policy_summary=summarize_policies(results, policies),
        policy_overlap=policy_overlap(results, policies),
        nesting_violations=violations,
        missing_padj=count_missing_padj(results),
        filtered=filtered,
        timepoint_summary=per_timepoint_summary(filtered, contrasts),
        first_de=first_de,
        onset_summary=first_de_summary(first_de, contrasts),
        overlaps={d: direction_overlap(filtered, d, contrasts) for d in (UP, DOWN)},
        count_qc=count_qc,
        count_schema=count_schema,
        metadata_qc=metadata_qc
    )
    logger.info("Analysis pipeline finished")
    return report


def build_figures(report: TimeCourseReport, style: PlotStyle) -> Dict[str, go.Figure]:
    """All report figures keyed by section title, in display order."""
    label = report.policy.label
    figures = {
        "Significant genes per time point": create_de_counts_bar(
            report.timepoint_summary, style,
            title=f"Differentially Expressed Genes per Time Point ({label})"
        ),
        "Onset of differential expression": create_onset_bar(
            report.onset_summary, style
        ),
        "Fold change at onset": create_onset_fc_box(
            report.first_de, report.time_labels, style
        ),
    }
    for direction in (UP, DOWN):
        overlap = report.overlaps[direction]
        figures[f"{direction}-regulated overlap"] = create_upset_plot(
            overlap.exclusive, overlap.gene_sets, style,
            color=style.direction_colors()[direction],
            title=f"{direction}-regulated Genes Across Time Points"
        )
    for contrast in report.contrasts:
        subset = report.results[report.results['contrast'] == contrast.name]
        figures[f"Volcano: {contrast.time_point} vs {contrast.baseline}"] = create_volcano_plot(
            subset, report.policy, style,
            title=f"Volcano Plot: {contrast.time_point} vs {contrast.baseline}"
        )
    return figures


def consistency_text(report: TimeCourseReport, n: int = 20) -> Dict[str, str]:
    """One sentence per direction about genes significant at every time point."""
    texts = {}
    for direction in (UP, DOWN):
        consistent = report.overlaps[direction].consistent
        names = report.consistent_gene_names(direction, n)
        text = (
            f"{len(consistent)} genes are {direction.lower()}-regulated at all "
            f"{len(report.contrasts)} time points"
        )
        if names:
            shown = f"first {len(names)} by gene id" if len(consistent) > n else "all"
            text += f" ({shown}): " + ", ".join(names)
        texts[direction] = text + "."
    return texts


_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, Segoe UI, Helvetica, Arial, sans-serif; margin: 2em auto; max-width: 1000px; color: #212529; }}
table {{ border-collapse: collapse; margin: 1em 0; }}
th, td {{ border: 1px solid #dee2e6; padding: 4px 8px; text-align: right; }}
th {{ background: #f8f9fa; }}
.warning {{ color: #856404; }}
</style>
</head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
"""


def render_html(report: TimeCourseReport, style: PlotStyle, title: str, top_n: int = 20) -> str:
    """Standalone HTML document for a report."""
    parts = [
        "<h2>Design</h2>",
        f"<p>{report.count_data.counts.shape[0]:,} genes, "
        f"{report.count_data.counts.shape[1]} samples. Baseline time point: "
        f"<b>{html.escape(report.baseline)}</b>. Primary policy: "
        f"<b>{html.escape(report.policy.label)}</b> (padj &lt; {report.policy.padj_max}, "
        f"|log2FC| &gt; {report.policy.abs_log2fc_min}).</p>",
    ]
    if report.count_schema is not None:
        library_sizes = pd.DataFrame({
            'sample_id': list(report.count_schema.library_sizes),
            'library_size': [int(v) for v in report.count_schema.library_sizes.values()],
        })
        parts += ["<h3>Library sizes</h3>", library_sizes.to_html(index=False)]
    parts += [
        "<h2>Threshold policies</h2>",
        report.policy_summary.to_html(index=False),
        report.policy_overlap.to_html(),
    ]
    for inner, outer, n_outside in report.nesting_violations:
        parts.append(
            f"<p class='warning'>{n_outside} genes pass '{html.escape(inner)}' "
            f"but not '{html.escape(outer)}'.</p>"
        )

    parts += [
        "<h2>Genes without adjusted p-value</h2>",
        report.missing_padj.to_html(index=False),
        "<h2>Per time point summary</h2>",
        report.timepoint_summary.to_html(index=False),
        "<h2>Consistently regulated genes</h2>",
    ]
    for text in consistency_text(report, top_n).values():
        parts.append(f"<p>{html.escape(text)}</p>")

    for i, (section, fig) in enumerate(build_figures(report, style).items()):
        parts.append(f"<h2>{html.escape(section)}</h2>")
        parts.append(fig.to_html(full_html=False, include_plotlyjs=(i == 0)))

    return _PAGE.format(title=html.escape(title), body="\n".join(parts))


def write_html_report(
    report: TimeCourseReport,
    path: Union[str, Path],
    config: Optional[Config] = None
) -> Path:
    """Write the report as one self-contained HTML file."""
    config = config or get_config()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    document = render_html(
        report, config.style, config.app_title, top_n=config.defaults.top_n_names
    )
    path.write_text(document, encoding='utf-8')
    logger.info(f"Report written to {path}")
    return path
