"""Differential expression across time points against a baseline."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

import pandas as pd

from timecourse_report.validation import MalformedInputError, check_alignment

try:
    import rpy2.robjects as ro
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.packages import importr
    from rpy2.robjects.conversion import localconverter
    RPY2_AVAILABLE = True
except ImportError:
    RPY2_AVAILABLE = False


logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['baseMean', 'log2FoldChange', 'lfcSE', 'stat', 'pvalue', 'padj']
TIME_FACTOR = "time_point"
REPLICATE_FACTOR = "replicate"


class StatisticalFittingError(Exception):
    """The model could not be fitted or a contrast could not be extracted."""
    pass


@dataclass(frozen=True)
class Contrast:
    """One time point compared against the baseline time point."""
    name: str
    time_point: str
    time_value: float
    baseline: str

    def as_list(self, factor: str = TIME_FACTOR) -> List[str]:
        """Contrast in DESeq2's [factor, numerator, denominator] form."""
        return [factor, self.time_point, self.baseline]


def covariate_table(metadata: pd.DataFrame) -> str:
    """Samples per time point x replicate, for error messages."""
    return pd.crosstab(metadata[TIME_FACTOR], metadata[REPLICATE_FACTOR]).to_string()


def resolve_baseline(metadata: pd.DataFrame, baseline: Optional[str] = None) -> str:
    """Return the baseline time point, defaulting to the earliest one."""
    present = metadata.drop_duplicates(TIME_FACTOR).sort_values("time_value")
    levels = [str(t) for t in present[TIME_FACTOR]]
    if baseline is None:
        if not levels:
            raise StatisticalFittingError("No time points in sample metadata")
        return levels[0]
    if baseline not in levels:
        raise StatisticalFittingError(
            f"Baseline time point '{baseline}' not among {levels}.\n"
            f"{covariate_table(metadata)}"
        )
    return baseline


def build_contrasts(metadata: pd.DataFrame, baseline: str) -> List[Contrast]:
    """One contrast per non-baseline time point, in ascending numeric time order."""
    present = metadata.drop_duplicates(TIME_FACTOR).sort_values("time_value")
    contrasts = [
        Contrast(
            name=f"{TIME_FACTOR}_{tp}_vs_{baseline}",
            time_point=str(tp),
            time_value=float(value),
            baseline=baseline
        )
        for tp, value in zip(present[TIME_FACTOR], present["time_value"])
        if str(tp) != baseline
    ]
    if not contrasts:
        raise StatisticalFittingError(
            f"No time point other than the baseline '{baseline}' to compare against"
        )
    return contrasts


def design_factors(metadata: pd.DataFrame) -> List[str]:
    """Covariates for the model; a replicate factor with one level is left out."""
    factors = [TIME_FACTOR]
    if metadata[REPLICATE_FACTOR].nunique() > 1:
        factors.insert(0, REPLICATE_FACTOR)
    else:
        logger.warning("Only one replicate level present; dropping replicate from the design")
    return factors


class DEBackend(ABC):
    """Statistical engine: fit one model, then extract contrasts from it."""

    name = "abstract"

    @abstractmethod
    def fit(self, counts: pd.DataFrame, metadata: pd.DataFrame, factors: List[str]) -> Any:
        """Fit counts (genes x samples) against ``factors`` of ``metadata``."""

    @abstractmethod
    def results(self, fitted: Any, contrast: Contrast) -> pd.DataFrame:
        """Per-gene RESULT_COLUMNS for one contrast, indexed by gene id."""


class DESeq2Wrapper(DEBackend):
    """Wrapper for the DESeq2 R package via rpy2."""

    name = "deseq2"

    def __init__(self, n_threads: int = 1, alpha: float = 0.05):
        """Initialize DESeq2 wrapper and check R environment."""
        if not RPY2_AVAILABLE:
            raise StatisticalFittingError(
                "rpy2 is not installed. Please install it with: pip install rpy2"
            )
        self.n_threads = n_threads
        self.alpha = alpha
        self._check_r_packages()
        self._load_r_packages()

    def _check_r_packages(self):
        """Check if required R packages are installed."""
        required_packages = ['DESeq2', 'BiocParallel']

        utils = importr('utils')
        base = importr('base')
        installed = base.rownames(utils.installed_packages())

        missing = [pkg for pkg in required_packages if pkg not in installed]
        if missing:
            quoted = ", ".join(f"'{p}'" for p in missing)
            raise StatisticalFittingError(
                f"Required R packages not found: {', '.join(missing)}\n"
                "Please install them in R using:\n"
                "  if (!require('BiocManager', quietly = TRUE))\n"
                "      install.packages('BiocManager')\n"
                f"  BiocManager::install(c({quoted}))"
            )

    def _load_r_packages(self):
        """Load required R packages."""
        try:
            self.deseq2 = importr('DESeq2')
            self.biocparallel = importr('BiocParallel')
            self.base = importr('base')
            logger.info("Successfully loaded DESeq2 and dependencies")
        except Exception as e:
            raise StatisticalFittingError(f"Failed to load R packages: {e}") from e

    def _convert_to_r_matrix(self, df: pd.DataFrame):
        """Convert pandas DataFrame to R matrix."""
        with localconverter(ro.default_converter + pandas2ri.converter):
            r_df = ro.conversion.py2rpy(df)
        r_matrix = self.base.as_matrix(r_df)
        r_matrix.rownames = ro.StrVector(df.index.astype(str))
        r_matrix.colnames = ro.StrVector(df.columns.astype(str))
        return r_matrix

    def _convert_to_r_dataframe(self, df: pd.DataFrame):
        """Convert pandas DataFrame to R DataFrame (categoricals become factors)."""
        with localconverter(ro.default_converter + pandas2ri.converter):
            return ro.conversion.py2rpy(df)

    def _convert_from_r_dataframe(self, r_df) -> pd.DataFrame:
        """Convert R DataFrame to pandas DataFrame."""
        with localconverter(ro.default_converter + pandas2ri.converter):
            return ro.conversion.rpy2py(r_df)

    def fit(self, counts: pd.DataFrame, metadata: pd.DataFrame, factors: List[str]):
        """
        Create the DESeqDataSet and run DESeq on it.

        The first category of every factor is its reference level, so the
        caller puts the baseline time point first.
        """
        design = "~" + " + ".join(factors)
        logger.info(f"Creating DESeqDataSet with design: {design}")
        col_data = metadata[factors]

        try:
            dds = self.deseq2.DESeqDataSetFromMatrix(
                countData=self._convert_to_r_matrix(counts),
                colData=self._convert_to_r_dataframe(col_data),
                design=ro.Formula(design)
            )
        except Exception as e:
            raise StatisticalFittingError(
                f"Failed to create DESeqDataSet: {e}\n{covariate_table(metadata)}"
            ) from e
        logger.info(
            f"Created DESeqDataSet with {counts.shape[0]} genes and {counts.shape[1]} samples"
        )

        logger.info("Running DESeq2 analysis...")
        try:
            if self.n_threads > 1:
                self.biocparallel.register(
                    self.biocparallel.MulticoreParam(workers=self.n_threads)
                )
            dds = self.deseq2.DESeq(dds, parallel=self.n_threads > 1)
        except Exception as e:
            error_msg = str(e)
            if "full rank" in error_msg.lower() or "rank deficient" in error_msg.lower():
                raise StatisticalFittingError(
                    "Design matrix is rank deficient. Samples per time point and "
                    f"replicate:\n{covariate_table(metadata)}"
                ) from e
            raise StatisticalFittingError(
                f"DESeq2 analysis failed: {error_msg}\n{covariate_table(metadata)}"
            ) from e
        logger.info("DESeq2 analysis completed successfully")
        return dds

    def results(self, fitted, contrast: Contrast) -> pd.DataFrame:
        """Extract one contrast; BH adjustment is done within the contrast."""
        logger.info(f"Extracting results for {contrast.name} (alpha={self.alpha})")
        try:
            res = self.deseq2.results(
                fitted,
                contrast=ro.StrVector(contrast.as_list()),
                alpha=self.alpha
            )
            res_df = self._convert_from_r_dataframe(self.base.as_data_frame(res))
            with localconverter(ro.default_converter + pandas2ri.converter):
                gene_ids = list(self.base.rownames(res))
        except Exception as e:
            raise StatisticalFittingError(
                f"Failed to extract results for {contrast.name}: {e}"
            ) from e

        res_df.index = pd.Index(gene_ids, name="gene_id")
        res_df.columns = RESULT_COLUMNS
        return res_df


class PyDESeq2Backend(DEBackend):
    """Pure-Python DESeq2 implementation from the pydeseq2 package."""

    name = "pydeseq2"

    def __init__(self, n_threads: int = 1, alpha: float = 0.05):
        try:
            from pydeseq2.default_inference import DefaultInference
        except ImportError as e:
            raise StatisticalFittingError(
                "pydeseq2 is not installed. Please install it with: pip install pydeseq2"
            ) from e
        self.alpha = alpha
        self.inference = DefaultInference(n_cpus=n_threads)

    def fit(self, counts: pd.DataFrame, metadata: pd.DataFrame, factors: List[str]):
        from pydeseq2.dds import DeseqDataSet

        design = "~" + " + ".join(factors)
        logger.info(f"Fitting pydeseq2 model with design: {design}")
        # pydeseq2 wants samples x genes
        sample_counts = counts.T.astype(int)
        col_data = metadata.loc[sample_counts.index, factors].astype(str)
        try:
            dds = DeseqDataSet(
                counts=sample_counts,
                metadata=col_data,
                design=design,
                refit_cooks=True,
                inference=self.inference,
                quiet=True
            )
            dds.deseq2()
        except Exception as e:
            raise StatisticalFittingError(
                f"pydeseq2 fit failed: {e}\n{covariate_table(metadata)}"
            ) from e
        return dds

    def results(self, fitted, contrast: Contrast) -> pd.DataFrame:
        from pydeseq2.ds import DeseqStats

        logger.info(f"Extracting results for {contrast.name} (alpha={self.alpha})")
        try:
            stats = DeseqStats(
                fitted,
                contrast=contrast.as_list(),
                alpha=self.alpha,
                inference=self.inference,
                quiet=True
            )
            stats.summary()
        except Exception as e:
            raise StatisticalFittingError(
                f"Failed to extract results for {contrast.name}: {e}"
            ) from e
        res_df = stats.results_df[RESULT_COLUMNS].copy()
        res_df.index.name = "gene_id"
        return res_df


def get_backend(name: str = "deseq2", n_threads: int = 1, alpha: float = 0.05) -> DEBackend:
    """Instantiate a statistical backend by name."""
    backends = {
        DESeq2Wrapper.name: DESeq2Wrapper,
        PyDESeq2Backend.name: PyDESeq2Backend,
    }
    if name not in backends:
        raise ValueError(f"Unknown backend '{name}'; choose from {sorted(backends)}")
    return backends[name](n_threads=n_threads, alpha=alpha)


def annotate_gene_names(results: pd.DataFrame, gene_names: pd.Series) -> pd.DataFrame:
    """Inner-join display names onto results; every gene id must have one."""
    missing = pd.Index(results['gene_id'].unique()).difference(gene_names.index)
    if len(missing):
        raise MalformedInputError(
            f"{len(missing)} gene ids have no gene name: {', '.join(map(str, missing[:5]))}"
        )
    names = gene_names.rename('gene_name').rename_axis('gene_id').reset_index()
    annotated = results.merge(names, on='gene_id', how='inner', validate='many_to_one')
    columns = ['gene_id', 'gene_name'] + [c for c in annotated.columns if c not in ('gene_id', 'gene_name')]
    return annotated[columns]


def run_time_course_de(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    gene_names: pd.Series,
    baseline: Optional[str] = None,
    backend: Optional[DEBackend] = None
) -> pd.DataFrame:
    """
    Fit one model over all samples and extract every time point vs baseline.

    Args:
        counts: Integer count matrix (genes x samples)
        metadata: Sample metadata from build_sample_metadata
        gene_names: gene_id -> gene_name
        baseline: Reference time point (earliest if None)
        backend: Statistical engine (DESeq2 via rpy2 if None)

    Returns:
        Long table with one row per gene and contrast: gene_id, gene_name,
        contrast, time_point, time_value and the RESULT_COLUMNS. Missing
        padj values are kept as NaN.
    """
    check_alignment(counts, metadata)
    baseline = resolve_baseline(metadata, baseline)
    contrasts = build_contrasts(metadata, baseline)

    design_meta = metadata.copy()
    time_levels = [baseline] + [c.time_point for c in contrasts]
    design_meta[TIME_FACTOR] = pd.Categorical(
        design_meta[TIME_FACTOR].astype(str), categories=time_levels
    )

    if backend is None:
        backend = get_backend("deseq2")
    fitted = backend.fit(counts, design_meta, design_factors(design_meta))

    frames = []
    for contrast in contrasts:
        res = backend.results(fitted, contrast)
        absent = [c for c in RESULT_COLUMNS if c not in res.columns]
        if absent:
            raise StatisticalFittingError(
                f"Backend '{backend.name}' returned no {absent} for {contrast.name}"
            )
        frame = res[RESULT_COLUMNS].copy()
        frame.index = frame.index.astype(str)
        frame.index.name = 'gene_id'
        frame = frame.reset_index()
        frame.insert(1, 'contrast', contrast.name)
        frame.insert(2, 'time_point', contrast.time_point)
        frame.insert(3, 'time_value', contrast.time_value)

        n_missing = int(frame['padj'].isna().sum())
        logger.info(
            f"{contrast.name}: {len(frame)} genes, {n_missing} without adjusted p-value"
        )
        frames.append(frame)

    results = pd.concat(frames, ignore_index=True)
    return annotate_gene_names(results, gene_names)


def count_missing_padj(results: pd.DataFrame) -> pd.DataFrame:
    """Genes without an adjusted p-value per contrast, chronological."""
    grouped = results.groupby(['contrast', 'time_value'], sort=False)
    summary = grouped['padj'].agg(n_genes='size', n_missing_padj=lambda s: int(s.isna().sum()))
    return summary.reset_index().sort_values('time_value', kind='stable').reset_index(drop=True)
