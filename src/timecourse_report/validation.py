"""Loading and validation of count matrices and sample metadata."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"[-+]?\d+(?:\.\d+)?")


class ValidationError(Exception):
    """Base exception for input validation errors."""
    pass


class MalformedInputError(ValidationError):
    """The count table is missing required structure."""
    pass


class SampleIdFormatError(ValidationError):
    """A sample identifier cannot be split into its required fields."""
    pass


class AlignmentError(ValidationError):
    """Count matrix columns and sample metadata rows disagree."""
    pass


class ValidationWarning(BaseModel):
    """Warning message from validation."""
    message: str
    severity: str = Field(default="warning")  # warning, info


class ValidationResult(BaseModel):
    """Result of data validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)


class CountMatrixSchema(BaseModel):
    """Schema for count matrix validation."""
    n_genes: int
    n_samples: int
    sample_ids: List[str]
    has_negative: bool
    has_missing: bool
    library_sizes: Dict[str, float]


@dataclass(frozen=True)
class CountData:
    """Integer count matrix (genes x samples) and its gene name index."""
    counts: pd.DataFrame
    gene_names: pd.Series
    n_rounded: int = 0

    @property
    def sample_ids(self) -> List[str]:
        return self.counts.columns.tolist()


@dataclass(frozen=True)
class SampleRecord:
    """Covariates parsed from one sample identifier."""
    sample_id: str
    time_point: str
    replicate: str
    time_value: float


def read_count_matrix(
    filepath: Union[str, Path],
    delimiter: str = "\t"
) -> CountData:
    """
    Read a count table and split it into counts and gene names.

    The first column holds gene ids (row labels), the second the gene
    display name, and every remaining column the raw counts of one sample.

    Args:
        filepath: Path to count matrix file
        delimiter: Column delimiter

    Returns:
        CountData with integer counts rounded half-to-even

    Raises:
        MalformedInputError: if the table lacks row labels, is ragged, or
            has sample columns that are missing, non-numeric or negative
    """
    filepath = Path(filepath)

    try:
        # pandas renames repeated headers ("s", "s.1"), so check the raw row first
        header = pd.read_csv(filepath, sep=delimiter, header=None, nrows=1, dtype=str)
        raw = pd.read_csv(filepath, sep=delimiter, index_col=0, header=0)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise MalformedInputError(f"Could not parse count table {filepath}: {e}") from e

    sample_ids = header.iloc[0, 2:].astype(str).str.strip()
    if sample_ids.duplicated().any():
        dupes = sorted(set(sample_ids[sample_ids.duplicated()]))
        raise MalformedInputError(f"{filepath}: duplicate sample ids: {', '.join(dupes)}")

    return parse_count_table(raw, source=str(filepath))


def parse_count_table(raw: pd.DataFrame, source: str = "<table>") -> CountData:
    """Convert a raw table (gene_id index, name column, sample columns) to CountData."""
    if raw.shape[1] < 2:
        raise MalformedInputError(
            f"{source}: expected a gene name column followed by at least one sample column"
        )

    index = pd.Index(raw.index)
    blank = index.isna() | (index.astype(str).str.strip() == "")
    if blank.any():
        raise MalformedInputError(f"{source}: {int(blank.sum())} rows have no gene id")

    # Clean up ids (remove whitespace)
    gene_ids = index.astype(str).str.strip()
    if gene_ids.duplicated().any():
        dupes = sorted(set(gene_ids[gene_ids.duplicated()]))
        raise MalformedInputError(f"{source}: duplicate gene ids: {', '.join(dupes[:5])}")

    names = raw.iloc[:, 0]
    unnamed = names.isna() | (names.astype(str).str.strip() == "")
    if unnamed.any():
        missing = gene_ids[unnamed.to_numpy()]
        raise MalformedInputError(
            f"{source}: {int(unnamed.sum())} gene ids have no gene name: {', '.join(missing[:5])}"
        )

    columns = pd.Index(raw.columns[1:].astype(str).str.strip())
    if columns.duplicated().any():
        dupes = sorted(set(columns[columns.duplicated()]))
        raise MalformedInputError(f"{source}: duplicate sample ids: {', '.join(dupes)}")

    gene_names = names.astype(str).str.strip()
    gene_names.index = gene_ids
    gene_names.name = "gene_name"

    samples = raw.iloc[:, 1:].apply(pd.to_numeric, errors="coerce")
    samples.index = gene_ids
    samples.columns = samples.columns.astype(str).str.strip()

    non_numeric = [col for col in samples.columns if samples[col].isna().all()]
    if non_numeric:
        raise MalformedInputError(
            f"{source}: sample columns without numeric values: {', '.join(non_numeric)}"
        )

    n_missing = int(samples.isna().sum().sum())
    if n_missing:
        raise MalformedInputError(f"{source}: {n_missing} missing or non-numeric count cells")

    if (samples < 0).any().any():
        raise MalformedInputError(f"{source}: count matrix contains negative values")

    # DESeq2 needs integers; pandas rounds half to even like R's round()
    rounded = samples.round()
    n_rounded = int((rounded != samples).sum().sum())
    if n_rounded:
        logger.info(f"Rounded {n_rounded} fractional counts to the nearest integer")
    counts = rounded.astype("int64")
    counts.index.name = "gene_id"

    logger.info(f"Loaded count matrix: {counts.shape[0]} genes x {counts.shape[1]} samples")
    return CountData(counts=counts, gene_names=gene_names, n_rounded=n_rounded)


def validate_count_matrix(counts: pd.DataFrame) -> Tuple[ValidationResult, Optional[CountMatrixSchema]]:
    """
    Quality checks on a count matrix that do not abort the run.

    Args:
        counts: Count matrix DataFrame

    Returns:
        Tuple of (ValidationResult, CountMatrixSchema)
    """
    errors = []
    warnings = []

    if counts.empty:
        return ValidationResult(valid=False, errors=["Count matrix is empty"]), None

    n_genes, n_samples = counts.shape

    has_negative = bool((counts < 0).any().any())
    if has_negative:
        errors.append("Count matrix contains negative values")

    has_missing = bool(counts.isna().any().any())
    if has_missing:
        errors.append(f"Count matrix contains {int(counts.isna().sum().sum())} missing values")

    if counts.columns.duplicated().any():
        errors.append(
            f"Count matrix contains {int(counts.columns.duplicated().sum())} duplicate sample IDs"
        )

    if n_genes < 5000:
        warnings.append(ValidationWarning(
            message=f"Low number of genes ({n_genes}). Typical RNA-seq has 15,000-25,000 genes."
        ))

    library_sizes = {str(k): float(v) for k, v in counts.sum(axis=0).items()}
    for sample, size in library_sizes.items():
        if size < 1e6:
            warnings.append(ValidationWarning(
                message=f"Sample '{sample}' has low library size: {size:,.0f} reads"
            ))

    n_zero = int((counts.sum(axis=1) == 0).sum())
    if n_zero:
        warnings.append(ValidationWarning(
            message=f"{n_zero} genes have zero counts in every sample",
            severity="info"
        ))

    schema = CountMatrixSchema(
        n_genes=n_genes,
        n_samples=n_samples,
        sample_ids=[str(c) for c in counts.columns],
        has_negative=has_negative,
        has_missing=has_missing,
        library_sizes=library_sizes
    )

    summary = {
        "n_genes": n_genes,
        "n_samples": n_samples,
        "n_all_zero_genes": n_zero,
        "median_library_size": float(np.median(list(library_sizes.values())))
    }

    result = ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )
    return result, schema


def parse_time_value(time_point: str) -> float:
    """Numeric value of a time point label such as '12', '12h' or 'T0.5'."""
    match = _NUMBER.search(time_point)
    if match is None:
        raise SampleIdFormatError(f"Time point '{time_point}' carries no numeric value")
    return float(match.group())


def parse_sample_id(
    sample_id: str,
    delimiter: str = "_",
    time_field: int = 1,
    replicate_field: int = 2
) -> SampleRecord:
    """
    Split a ``<group>_<time_point>_<replicate>`` identifier into covariates.

    >>> parse_sample_id("trt_12_1")
    SampleRecord(sample_id='trt_12_1', time_point='12', replicate='1', time_value=12.0)
    """
    fields = str(sample_id).split(delimiter)
    needed = max(time_field, replicate_field) + 1
    if len(fields) < needed:
        raise SampleIdFormatError(
            f"Sample id '{sample_id}' has {len(fields)} '{delimiter}'-delimited fields, "
            f"expected at least {needed}"
        )

    time_point = fields[time_field]
    replicate = fields[replicate_field]
    if not time_point or not replicate:
        raise SampleIdFormatError(f"Sample id '{sample_id}' has an empty time point or replicate")

    return SampleRecord(
        sample_id=str(sample_id),
        time_point=time_point,
        replicate=replicate,
        time_value=parse_time_value(time_point)
    )


def build_sample_metadata(
    sample_ids: Sequence[str],
    delimiter: str = "_",
    time_field: int = 1,
    replicate_field: int = 2
) -> pd.DataFrame:
    """
    Derive per-sample covariates from the count matrix column names.

    Args:
        sample_ids: Ordered sample ids (count matrix columns)
        delimiter: Field delimiter within a sample id
        time_field: 0-based field index of the time point
        replicate_field: 0-based field index of the replicate

    Returns:
        DataFrame indexed by sample id (same order) with categorical
        ``time_point`` and ``replicate`` columns and a float ``time_value``
    """
    records = [
        parse_sample_id(s, delimiter, time_field, replicate_field) for s in sample_ids
    ]

    values: Dict[str, float] = {}
    for rec in records:
        seen = values.setdefault(rec.time_point, rec.time_value)
        if seen != rec.time_value:
            raise SampleIdFormatError(f"Time point '{rec.time_point}' parsed inconsistently")
    by_value: Dict[float, str] = {}
    for label, value in values.items():
        other = by_value.setdefault(value, label)
        if other != label:
            raise SampleIdFormatError(
                f"Time points '{other}' and '{label}' share the numeric value {value:g}"
            )

    time_levels = sorted(values, key=values.get)
    replicate_levels = sorted({r.replicate for r in records}, key=_natural_key)

    metadata = pd.DataFrame(
        {
            "time_point": pd.Categorical(
                [r.time_point for r in records], categories=time_levels
            ),
            "replicate": pd.Categorical(
                [r.replicate for r in records], categories=replicate_levels
            ),
            "time_value": [r.time_value for r in records],
        },
        index=pd.Index([r.sample_id for r in records], name="sample_id")
    )
    logger.info(
        f"Parsed {len(metadata)} samples: time points {time_levels}, "
        f"replicates {replicate_levels}"
    )
    return metadata


def _natural_key(label: str):
    match = _NUMBER.fullmatch(label)
    return (0, float(match.group()), label) if match else (1, 0.0, label)


def check_alignment(counts: pd.DataFrame, metadata: pd.DataFrame) -> None:
    """
    Require metadata rows to match count columns exactly and in order.

    Raises:
        AlignmentError: on any difference in membership or order
    """
    count_ids = [str(c) for c in counts.columns]
    meta_ids = [str(i) for i in metadata.index]
    if count_ids == meta_ids:
        return

    missing_in_meta = sorted(set(count_ids) - set(meta_ids))
    missing_in_counts = sorted(set(meta_ids) - set(count_ids))
    if missing_in_meta or missing_in_counts:
        raise AlignmentError(
            f"Sample mismatch. In counts only: {missing_in_meta}; "
            f"in metadata only: {missing_in_counts}"
        )
    if len(count_ids) != len(meta_ids):
        raise AlignmentError("Sample ids are duplicated in counts or metadata")
    first = next(i for i, (a, b) in enumerate(zip(count_ids, meta_ids)) if a != b)
    raise AlignmentError(
        f"Sample order differs at position {first}: "
        f"counts has '{count_ids[first]}', metadata has '{meta_ids[first]}'"
    )


def validate_metadata(
    metadata: pd.DataFrame,
    baseline: Optional[str] = None
) -> ValidationResult:
    """
    Check the experimental design derived from the sample ids.

    Args:
        metadata: Output of build_sample_metadata
        baseline: Reference time point, if already chosen

    Returns:
        ValidationResult
    """
    errors = []
    warnings = []

    time_counts = metadata["time_point"].value_counts(sort=False)
    time_counts = time_counts[time_counts > 0]
    if len(time_counts) < 2:
        errors.append(
            f"At least two time points are required, found {list(time_counts.index)}"
        )

    if baseline is not None and baseline not in time_counts.index:
        errors.append(
            f"Baseline time point '{baseline}' not found in {list(time_counts.index)}"
        )

    for time_point, count in time_counts.items():
        if count < 2:
            warnings.append(ValidationWarning(
                message=f"Time point '{time_point}' has only {count} sample(s); "
                        "dispersion estimates will rely on other time points."
            ))

    design = pd.crosstab(metadata["time_point"], metadata["replicate"])
    if (design == 0).any().any():
        warnings.append(ValidationWarning(
            message="Not every replicate is observed at every time point (unbalanced design)",
            severity="info"
        ))

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary={
            "n_samples": len(metadata),
            "time_points": {str(k): int(v) for k, v in time_counts.items()},
            "n_replicates": int(metadata["replicate"].nunique())
        }
    )
