"""Unit tests for loading and validation."""

import numpy as np
import pandas as pd
import pytest

from timecourse_report.validation import (
    AlignmentError,
    MalformedInputError,
    SampleIdFormatError,
    ValidationError,
    build_sample_metadata,
    check_alignment,
    parse_sample_id,
    read_count_matrix,
    validate_count_matrix,
    validate_metadata,
)


def write_table(tmp_path, text, name="counts.tsv"):
    path = tmp_path / name
    path.write_text(text)
    return path


class TestReadCountMatrix:
    """Tests for reading count tables."""

    def test_read_tsv(self, counts_file, counts, gene_names):
        """Test reading a well-formed table."""
        data = read_count_matrix(counts_file)

        assert data.counts.shape == counts.shape
        assert data.sample_ids == list(counts.columns)
        assert data.counts.dtypes.eq("int64").all()
        pd.testing.assert_series_equal(
            data.gene_names, gene_names,
            check_names=False, check_index_type=False, check_dtype=False
        )

    def test_fractional_counts_round_half_to_even(self, tmp_path):
        """Test rounding of fractional counts."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\ts_0_2\n"
            "G1\tA\t2.5\t3.5\n"
            "G2\tB\t1.2\t7\n"
        )
        data = read_count_matrix(path)

        assert data.counts.loc["G1"].tolist() == [2, 4]
        assert data.counts.loc["G2"].tolist() == [1, 7]
        assert data.n_rounded == 3

    def test_no_sample_columns(self, tmp_path):
        """Test error when only the gene name column is present."""
        path = write_table(tmp_path, "gene_id\tgene_name\nG1\tA\n")

        with pytest.raises(MalformedInputError):
            read_count_matrix(path)

    def test_blank_gene_name(self, tmp_path):
        """Test error for a gene id with an empty name cell."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\ts_2_1\n"
            "G1\tA\t1\t2\n"
            "G3\t\t5\t6\n"
        )

        with pytest.raises(MalformedInputError, match="no gene name: G3"):
            read_count_matrix(path)

    def test_whitespace_gene_name(self, tmp_path):
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\ts_2_1\n"
            "G1\t  \t1\t2\n"
        )

        with pytest.raises(MalformedInputError, match="no gene name"):
            read_count_matrix(path)

    def test_duplicate_sample_ids(self, tmp_path):
        """Test repeated sample headers are rejected, not renamed."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ttrt_0_1\ttrt_0_1\ttrt_2_1\ttrt_2_2\n"
            "G1\tA\t1\t2\t3\t4\n"
        )

        with pytest.raises(MalformedInputError, match="duplicate sample ids: trt_0_1"):
            read_count_matrix(path)

    def test_ragged_rows(self, tmp_path):
        """Test error for rows with extra fields."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\ts_0_2\n"
            "G1\tA\t1\t2\n"
            "G2\tB\t1\t2\t3\t4\n"
        )

        with pytest.raises(MalformedInputError):
            read_count_matrix(path)

    def test_missing_cell(self, tmp_path):
        """Test error for rows with too few fields."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\ts_0_2\n"
            "G1\tA\t1\t2\n"
            "G2\tB\t1\n"
        )

        with pytest.raises(MalformedInputError, match="missing"):
            read_count_matrix(path)

    def test_non_numeric_column(self, tmp_path):
        """Test error for sample columns without any number."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\ts_0_2\n"
            "G1\tA\t1\tx\n"
            "G2\tB\t1\ty\n"
        )

        with pytest.raises(MalformedInputError, match="s_0_2"):
            read_count_matrix(path)

    def test_missing_gene_id(self, tmp_path):
        """Test error for rows without a row label."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\n"
            "G1\tA\t1\n"
            "\tB\t1\n"
        )

        with pytest.raises(MalformedInputError, match="no gene id"):
            read_count_matrix(path)

    def test_negative_counts(self, tmp_path):
        """Test error for negative counts."""
        path = write_table(
            tmp_path,
            "gene_id\tgene_name\ts_0_1\n"
            "G1\tA\t-3\n"
        )

        with pytest.raises(MalformedInputError, match="negative"):
            read_count_matrix(path)

    def test_errors_share_base_class(self):
        """Test the validation error hierarchy."""
        for error in (MalformedInputError, SampleIdFormatError, AlignmentError):
            assert issubclass(error, ValidationError)


class TestCountMatrixValidation:
    """Tests for non-fatal count matrix checks."""

    def test_valid_count_matrix(self, counts):
        """Test validation of a valid count matrix."""
        result, schema = validate_count_matrix(counts)

        assert result.valid
        assert schema.n_genes == 5
        assert schema.n_samples == 8
        assert not schema.has_negative

    def test_low_gene_count_warning(self, counts):
        """Test warning for a small number of genes."""
        result, _ = validate_count_matrix(counts)

        assert any('low number of genes' in w.message.lower() for w in result.warnings)

    def test_all_zero_genes_reported(self, counts):
        """Test info message for genes without reads."""
        zeroed = counts.copy()
        zeroed.iloc[0, :] = 0

        result, _ = validate_count_matrix(zeroed)

        assert result.summary["n_all_zero_genes"] == 1
        assert any(w.severity == "info" for w in result.warnings)

    def test_empty_matrix(self):
        """Test error for an empty matrix."""
        result, schema = validate_count_matrix(pd.DataFrame())

        assert not result.valid
        assert schema is None


class TestSampleIds:
    """Tests for sample id parsing."""

    def test_parse_sample_id(self):
        """Test the documented example."""
        record = parse_sample_id("trt_12_1")

        assert record.time_point == "12"
        assert record.replicate == "1"
        assert record.time_value == 12.0

    def test_too_few_fields(self):
        """Test error for an id with two fields."""
        with pytest.raises(SampleIdFormatError):
            parse_sample_id("trt_12")

    def test_time_point_without_number(self):
        """Test error for a non-numeric time point."""
        with pytest.raises(SampleIdFormatError):
            parse_sample_id("trt_late_1")

    def test_time_point_with_unit(self):
        """Test numeric value extraction from labelled time points."""
        assert parse_sample_id("ctl_36h_2").time_value == 36.0

    def test_custom_delimiter_and_fields(self):
        """Test alternative id layouts."""
        record = parse_sample_id("1-4-mock", delimiter="-", time_field=1, replicate_field=0)

        assert record.time_point == "4"
        assert record.replicate == "1"


class TestSampleMetadata:
    """Tests for building sample metadata."""

    def test_order_and_levels(self):
        """Test row order and numeric ordering of time levels."""
        ids = ["trt_10_1", "trt_2_1", "trt_0_1", "trt_10_2", "trt_2_2", "trt_0_2"]
        metadata = build_sample_metadata(ids)

        assert metadata.index.tolist() == ids
        assert list(metadata["time_point"].cat.categories) == ["0", "2", "10"]
        assert metadata.loc["trt_10_2", "replicate"] == "2"
        assert metadata.loc["trt_2_1", "time_value"] == 2.0

    def test_malformed_id_aborts(self):
        """Test a single malformed id fails the whole build."""
        with pytest.raises(SampleIdFormatError):
            build_sample_metadata(["trt_0_1", "trt_2"])

    def test_conflicting_time_labels(self):
        """Test error when two labels share one numeric value."""
        with pytest.raises(SampleIdFormatError):
            build_sample_metadata(["trt_12_1", "trt_12h_2"])


class TestAlignment:
    """Tests for count/metadata alignment."""

    def test_aligned(self, counts, metadata):
        """Test aligned inputs pass."""
        check_alignment(counts, metadata)

    def test_reordered(self, counts, metadata):
        """Test a different sample order is fatal."""
        with pytest.raises(AlignmentError, match="order"):
            check_alignment(counts, metadata.iloc[::-1])

    def test_missing_sample(self, counts, metadata):
        """Test a missing sample is fatal."""
        with pytest.raises(AlignmentError, match="counts only"):
            check_alignment(counts, metadata.iloc[1:])


class TestMetadataValidation:
    """Tests for design checks."""

    def test_valid_metadata(self, metadata):
        """Test validation of a balanced design."""
        result = validate_metadata(metadata, baseline="0")

        assert result.valid
        assert result.summary["time_points"] == {"0": 2, "2": 2, "10": 2, "24": 2}
        assert result.summary["n_replicates"] == 2

    def test_unknown_baseline(self, metadata):
        """Test error for a baseline that is not a time point."""
        result = validate_metadata(metadata, baseline="5")

        assert not result.valid
        assert any('baseline' in err.lower() for err in result.errors)

    def test_single_time_point(self):
        """Test error when there is nothing to compare."""
        metadata = build_sample_metadata(["trt_0_1", "trt_0_2"])

        result = validate_metadata(metadata)

        assert not result.valid

    def test_unreplicated_time_point(self):
        """Test warning for time points with one sample."""
        metadata = build_sample_metadata(["trt_0_1", "trt_0_2", "trt_6_1"])

        result = validate_metadata(metadata)

        assert result.valid
        assert any("'6'" in w.message for w in result.warnings)
