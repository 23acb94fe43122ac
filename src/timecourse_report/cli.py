"""Command line entry point for the time-course report."""

import logging
from pathlib import Path
from typing import Optional

import click
import pydantic
import yaml

from timecourse_report.config import Config, set_config
from timecourse_report.deseq2 import StatisticalFittingError
from timecourse_report.report import TimeCourseReport, run_pipeline, write_html_report
from timecourse_report.validation import ValidationError


logger = logging.getLogger(__name__)


def _load_config(config_path: Optional[Path], output_dir: Optional[Path],
                 backend: Optional[str]) -> Config:
    try:
        config = Config.from_yaml(config_path) if config_path else Config()
    except (pydantic.ValidationError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration {config_path}: {e}")
        raise SystemExit(1) from e
    if output_dir is not None:
        config.paths.output_dir = output_dir
    if backend is not None:
        config.defaults.backend = backend
    set_config(config)
    return config


def _counts_path(counts_file: Optional[Path], config: Config) -> Path:
    """The COUNTS_FILE argument, or ``paths.counts_file`` from the configuration."""
    path = counts_file or config.paths.counts_file
    if path is None:
        raise click.UsageError("Missing COUNTS_FILE and no paths.counts_file in the configuration.")
    if not Path(path).is_file():
        raise click.UsageError(f"Count table '{path}' does not exist.")
    return Path(path)


def _run(counts_file: Path, config: Config) -> TimeCourseReport:
    try:
        return run_pipeline(counts_file, config)
    except (ValidationError, StatisticalFittingError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        raise SystemExit(1) from e


_counts_argument = click.argument(
    "counts_file", required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
_config_option = click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file.",
)
_backend_option = click.option(
    "--backend",
    type=click.Choice(["deseq2", "pydeseq2"]),
    default=None,
    help="Statistical backend (overrides the configuration).",
)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Differential expression report for RNA-seq time courses."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@cli.command("run")
@_counts_argument
@_config_option
@_backend_option
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the HTML report.",
)
def run_command(counts_file: Optional[Path], config_path: Optional[Path],
                backend: Optional[str], output_dir: Optional[Path]) -> None:
    """Run the whole analysis and write the HTML report."""
    config = _load_config(config_path, output_dir, backend)
    report = _run(_counts_path(counts_file, config), config)
    path = write_html_report(report, config.paths.report_path, config)
    click.echo(f"Report written to {path}")


@cli.command("serve")
@_counts_argument
@_config_option
@_backend_option
def serve_command(counts_file: Optional[Path], config_path: Optional[Path],
                  backend: Optional[str]) -> None:
    """Run the analysis and browse the report in a Dash app."""
    from timecourse_report.app import serve

    config = _load_config(config_path, None, backend)
    report = _run(_counts_path(counts_file, config), config)
    serve(report, config)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
