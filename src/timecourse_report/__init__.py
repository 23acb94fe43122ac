"""Time-course differential expression report for RNA-seq count data."""

__version__ = "0.1.0"

from .config import get_config, Config, ThresholdPolicy
from .validation import read_count_matrix, build_sample_metadata
from .deseq2 import run_time_course_de
from .report import run_pipeline, write_html_report

__all__ = [
    'get_config',
    'Config',
    'ThresholdPolicy',
    'read_count_matrix',
    'build_sample_metadata',
    'run_time_course_de',
    'run_pipeline',
    'write_html_report'
]
