"""Shared fixtures: a fixed-statistics backend and a small time course."""

import numpy as np
import pandas as pd
import pytest

from timecourse_report.config import DEFAULT_POLICIES
from timecourse_report.deseq2 import (
    RESULT_COLUMNS,
    Contrast,
    DEBackend,
    build_contrasts,
    run_time_course_de,
)
from timecourse_report.filtering import filter_significant
from timecourse_report.validation import build_sample_metadata


GENE_IDS = ["G1", "G2", "G3", "G4", "G5"]
GENE_NAMES = ["Alpha", "Beta", "Gamma", "Delta", "Epsilon"]
TIME_POINTS = ["0", "2", "10", "24"]
SAMPLE_IDS = [f"trt_{t}_{r}" for t in TIME_POINTS for r in (1, 2)]

# (log2FoldChange, padj) per gene and non-baseline time point.
# G1 is significant at one time point, G2 at two (down then up), G3 at all,
# G4 never has an adjusted p-value and G5 never passes.
STATS = {
    "2": {"G1": (0.3, 0.6), "G2": (-1.5, 0.01), "G3": (1.2, 0.001),
          "G4": (5.0, np.nan), "G5": (2.0, 0.2)},
    "10": {"G1": (2.0, 0.001), "G2": (0.2, 0.9), "G3": (1.8, 0.001),
           "G4": (-4.0, np.nan), "G5": (0.5, 0.04)},
    "24": {"G1": (0.1, 0.8), "G2": (3.0, 0.001), "G3": (2.5, 0.001),
           "G4": (6.0, np.nan), "G5": (-1.1, 0.3)},
}


def make_stats(rows):
    """RESULT_COLUMNS frame from {gene_id: (log2FoldChange, padj)}."""
    lfc = pd.Series({g: v[0] for g, v in rows.items()}, dtype=float)
    padj = pd.Series({g: v[1] for g, v in rows.items()}, dtype=float)
    frame = pd.DataFrame({
        'baseMean': 100.0,
        'log2FoldChange': lfc,
        'lfcSE': 0.3,
        'stat': lfc / 0.3,
        'pvalue': padj / 2,
        'padj': padj,
    })
    frame.index.name = 'gene_id'
    return frame[RESULT_COLUMNS]


class FakeBackend(DEBackend):
    """Backend returning preset statistics per time point."""

    name = "fake"

    def __init__(self, stats=None):
        self.stats = stats if stats is not None else STATS
        self.fit_calls = []

    def fit(self, counts, metadata, factors):
        self.fit_calls.append((counts, metadata, factors))
        return "fitted"

    def results(self, fitted, contrast: Contrast):
        assert fitted == "fitted"
        return make_stats(self.stats[contrast.time_point])


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def counts():
    """Integer counts for the five genes and eight samples."""
    rng = np.random.default_rng(42)
    return pd.DataFrame(
        rng.poisson(100, (len(GENE_IDS), len(SAMPLE_IDS))),
        index=pd.Index(GENE_IDS, name="gene_id"),
        columns=SAMPLE_IDS
    )


@pytest.fixture
def gene_names():
    return pd.Series(GENE_NAMES, index=GENE_IDS, name="gene_name")


@pytest.fixture
def metadata():
    return build_sample_metadata(SAMPLE_IDS)


@pytest.fixture
def counts_file(tmp_path, counts, gene_names):
    """The same counts written as a tab-delimited table."""
    table = counts.copy()
    table.insert(0, "gene_name", gene_names)
    path = tmp_path / "counts.tsv"
    table.to_csv(path, sep="\t")
    return path


@pytest.fixture
def contrasts(metadata):
    return build_contrasts(metadata, "0")


@pytest.fixture
def results(counts, metadata, gene_names, fake_backend):
    return run_time_course_de(counts, metadata, gene_names, backend=fake_backend)


@pytest.fixture
def stringent():
    return DEFAULT_POLICIES[1]


@pytest.fixture
def filtered(results, stringent):
    return filter_significant(results, stringent)
