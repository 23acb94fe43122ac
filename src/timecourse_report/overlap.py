"""Set overlaps of significant genes across time points."""

import logging
from dataclasses import dataclass
from functools import reduce
from itertools import combinations
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

import pandas as pd
from upsetplot import from_contents

from timecourse_report.deseq2 import Contrast
from timecourse_report.filtering import DOWN, UP


logger = logging.getLogger(__name__)

GeneSets = Dict[str, FrozenSet[str]]


@dataclass
class DirectionOverlap:
    """Overlap results for one regulation direction."""
    direction: str
    gene_sets: GeneSets
    exclusive: pd.DataFrame
    consistent: FrozenSet[str]

    @property
    def n_union(self) -> int:
        return len(frozenset().union(*self.gene_sets.values()))


def timepoint_gene_sets(
    filtered: pd.DataFrame,
    direction: str,
    contrasts: Optional[Sequence[Contrast]] = None
) -> GeneSets:
    """
    Gene ids significant in ``direction`` at each time point.

    Keys are time point labels in ascending numeric order. With
    ``contrasts`` given, time points without hits map to empty sets.
    """
    if direction not in (UP, DOWN):
        raise ValueError(f"direction must be '{UP}' or '{DOWN}', got '{direction}'")

    lfc = filtered['log2FoldChange']
    subset = filtered[lfc > 0] if direction == UP else filtered[lfc < 0]

    if contrasts is not None:
        ordered = sorted(contrasts, key=lambda c: c.time_value)
        labels = [c.time_point for c in ordered]
    else:
        times = filtered[['time_point', 'time_value']].drop_duplicates()
        labels = list(times.sort_values('time_value', kind='stable')['time_point'])

    grouped = {
        label: frozenset(genes)
        for label, genes in subset.groupby('time_point')['gene_id']
    }
    return {label: grouped.get(label, frozenset()) for label in labels}


def exclusive_intersections(gene_sets: GeneSets) -> pd.DataFrame:
    """
    Exclusive intersection sizes for every non-empty subset of time points.

    A gene is counted in exactly the one subset matching the time points it
    belongs to, so the sizes sum to the size of the union.

    Returns:
        DataFrame with one boolean column per time point, ``members``
        (tuple of time points), ``degree`` and ``size``; ordered by degree,
        then chronologically
    """
    labels = list(gene_sets)
    sizes = _membership_sizes(gene_sets)

    rows = []
    for degree in range(1, len(labels) + 1):
        for combo in combinations(labels, degree):
            row = {label: label in combo for label in labels}
            row['members'] = combo
            row['degree'] = degree
            row['size'] = sizes.get(frozenset(combo), 0)
            rows.append(row)
    return pd.DataFrame(rows, columns=labels + ['members', 'degree', 'size'])


def _membership_sizes(gene_sets: GeneSets) -> Dict[FrozenSet[str], int]:
    """Number of genes per exact combination of time points."""
    non_empty = {label: genes for label, genes in gene_sets.items() if genes}
    if not non_empty:
        return {}

    # Boolean MultiIndex with one level per time point, one row per gene
    memberships = from_contents(non_empty)
    levels = list(memberships.index.names)
    grouped = memberships.groupby(level=levels).size()

    sizes = {}
    for key, n in grouped.items():
        flags = key if isinstance(key, tuple) else (key,)
        members = frozenset(label for label, flag in zip(levels, flags) if flag)
        sizes[members] = int(n)
    return sizes


def full_intersection(gene_sets: GeneSets) -> FrozenSet[str]:
    """Genes present in every time point's set."""
    sets = list(gene_sets.values())
    if not sets:
        return frozenset()
    return reduce(lambda a, b: a & b, sets)


def direction_overlap(
    filtered: pd.DataFrame,
    direction: str,
    contrasts: Optional[Sequence[Contrast]] = None
) -> DirectionOverlap:
    """Gene sets, exclusive breakdown and full intersection for one direction."""
    gene_sets = timepoint_gene_sets(filtered, direction, contrasts)
    overlap = DirectionOverlap(
        direction=direction,
        gene_sets=gene_sets,
        exclusive=exclusive_intersections(gene_sets),
        consistent=full_intersection(gene_sets)
    )
    logger.info(
        f"{direction}: {overlap.n_union} genes across {len(gene_sets)} time points, "
        f"{len(overlap.consistent)} significant at every time point"
    )
    return overlap


def top_gene_names(
    gene_ids: Iterable[str],
    gene_names: pd.Series,
    n: int = 20
) -> List[str]:
    """Display names of the first ``n`` genes, ordered by gene id."""
    chosen = sorted(gene_ids)[:n]
    return [str(gene_names.get(g, g)) for g in chosen]
