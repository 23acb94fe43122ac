"""Significance filtering of contrast results under threshold policies."""

import logging
from itertools import combinations
from typing import Dict, List, Sequence, Set, Tuple

import numpy as np
import pandas as pd

from timecourse_report.config import ThresholdPolicy


logger = logging.getLogger(__name__)

UP = "Up"
DOWN = "Down"


def significance_mask(results: pd.DataFrame, policy: ThresholdPolicy) -> pd.Series:
    """
    Rows passing ``padj < padj_max`` and ``|log2FC| > abs_log2fc_min``.

    Rows with a missing padj never pass, whatever their fold change.
    """
    padj = results['padj']
    lfc = results['log2FoldChange']
    return (
        padj.notna()
        & (padj < policy.padj_max)
        & (lfc.abs() > policy.abs_log2fc_min)
    )


def filter_significant(results: pd.DataFrame, policy: ThresholdPolicy) -> pd.DataFrame:
    """Copy of the rows passing ``policy`` with an Up/Down ``direction`` column."""
    filtered = results[significance_mask(results, policy)].copy()
    filtered['direction'] = np.where(filtered['log2FoldChange'] > 0, UP, DOWN)
    logger.info(
        f"Policy '{policy.label}' (padj < {policy.padj_max}, |log2FC| > "
        f"{policy.abs_log2fc_min}): {len(filtered)} significant rows, "
        f"{filtered['gene_id'].nunique()} distinct genes"
    )
    return filtered


def policy_gene_sets(
    results: pd.DataFrame,
    policies: Sequence[ThresholdPolicy]
) -> Dict[str, Set[str]]:
    """Distinct significant gene ids per policy, pooled across contrasts."""
    return {
        policy.label: set(results.loc[significance_mask(results, policy), 'gene_id'])
        for policy in policies
    }


def summarize_policies(
    results: pd.DataFrame,
    policies: Sequence[ThresholdPolicy]
) -> pd.DataFrame:
    """One row per policy: thresholds, significant rows, distinct genes."""
    n_missing = int(results['padj'].isna().sum())
    rows = []
    for policy in policies:
        mask = significance_mask(results, policy)
        passing = results[mask]
        rows.append({
            'policy': policy.label,
            'padj_max': policy.padj_max,
            'abs_log2fc_min': policy.abs_log2fc_min,
            'n_rows': int(mask.sum()),
            'n_genes': int(passing['gene_id'].nunique()),
            'n_up_rows': int((passing['log2FoldChange'] > 0).sum()),
            'n_down_rows': int((passing['log2FoldChange'] < 0).sum()),
            'n_missing_padj': n_missing,
        })
    return pd.DataFrame(rows)


def policy_overlap(
    results: pd.DataFrame,
    policies: Sequence[ThresholdPolicy]
) -> pd.DataFrame:
    """Symmetric matrix of shared distinct genes between every pair of policies."""
    gene_sets = policy_gene_sets(results, policies)
    labels = [p.label for p in policies]
    matrix = pd.DataFrame(0, index=labels, columns=labels, dtype=int)
    for a in labels:
        for b in labels:
            matrix.loc[a, b] = len(gene_sets[a] & gene_sets[b])
    return matrix


def check_policy_nesting(
    gene_sets: Dict[str, Set[str]],
    policies: Sequence[ThresholdPolicy]
) -> List[Tuple[str, str, int]]:
    """
    Check that stricter policies select subsets of looser ones.

    A policy is stricter than another only if it is at least as tight on
    both cutoffs. Containment is checked, not assumed.

    Returns:
        (inner, outer, n_genes_outside) for every pair where containment fails
    """
    violations = []
    for a, b in combinations(policies, 2):
        if a.padj_max <= b.padj_max and a.abs_log2fc_min >= b.abs_log2fc_min:
            inner, outer = a, b
        elif b.padj_max <= a.padj_max and b.abs_log2fc_min >= a.abs_log2fc_min:
            inner, outer = b, a
        else:
            continue
        outside = gene_sets[inner.label] - gene_sets[outer.label]
        if outside:
            logger.warning(
                f"{len(outside)} genes pass '{inner.label}' but not '{outer.label}'"
            )
            violations.append((inner.label, outer.label, len(outside)))
    return violations
