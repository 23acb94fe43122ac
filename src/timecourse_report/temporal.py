"""Per-time-point and first-onset summaries of significant genes."""

import logging
from typing import List, Optional, Sequence

import pandas as pd

from timecourse_report.deseq2 import Contrast
from timecourse_report.filtering import DOWN, UP


logger = logging.getLogger(__name__)

DIRECTIONS = [UP, DOWN]

RECORD_COLUMNS = [
    'gene_id', 'gene_name', 'first_de_time', 'first_de_time_point',
    'contrast', 'direction', 'log2FoldChange', 'abs_log2FoldChange',
]


def _contrast_frame(filtered: pd.DataFrame, contrasts: Optional[Sequence[Contrast]]) -> pd.DataFrame:
    """contrast / time_point / time_value rows in ascending time order."""
    if contrasts is not None:
        frame = pd.DataFrame(
            [(c.name, c.time_point, c.time_value) for c in contrasts],
            columns=['contrast', 'time_point', 'time_value']
        )
    else:
        frame = filtered[['contrast', 'time_point', 'time_value']].drop_duplicates('contrast')
    return frame.sort_values('time_value', kind='stable').reset_index(drop=True)


def per_timepoint_summary(
    filtered: pd.DataFrame,
    contrasts: Optional[Sequence[Contrast]] = None
) -> pd.DataFrame:
    """
    Up, down and total significant rows per contrast.

    Contrasts are ordered by their numeric time value. When ``contrasts``
    is given, contrasts without significant rows appear with zero counts.
    """
    frame = _contrast_frame(filtered, contrasts)
    lfc = filtered['log2FoldChange']
    up = (lfc > 0).groupby(filtered['contrast']).sum()
    down = (lfc < 0).groupby(filtered['contrast']).sum()

    frame['up'] = frame['contrast'].map(up).fillna(0).astype(int)
    frame['down'] = frame['contrast'].map(down).fillna(0).astype(int)
    frame['total'] = frame['up'] + frame['down']
    return frame


def first_de_records(filtered: pd.DataFrame) -> pd.DataFrame:
    """
    Earliest significant occurrence of every gene.

    For each gene the row with the smallest time value is kept. If a gene
    has several rows at that time the one with the larger absolute fold
    change wins, then the earlier row.
    """
    if filtered.empty:
        return pd.DataFrame(columns=RECORD_COLUMNS)

    ranked = filtered.assign(abs_log2FoldChange=filtered['log2FoldChange'].abs())
    if 'direction' not in ranked.columns:
        ranked['direction'] = ranked['log2FoldChange'].gt(0).map({True: UP, False: DOWN})

    ranked = ranked.sort_values(
        ['gene_id', 'time_value', 'abs_log2FoldChange'],
        ascending=[True, True, False],
        kind='stable'
    )
    first = ranked.drop_duplicates('gene_id', keep='first')
    first = first.rename(columns={
        'time_value': 'first_de_time',
        'time_point': 'first_de_time_point',
    })
    first = first.sort_values(['first_de_time', 'gene_id'], kind='stable')
    logger.info(f"First significant time point assigned for {len(first)} genes")
    return first[RECORD_COLUMNS].reset_index(drop=True)


def first_de_summary(
    records: pd.DataFrame,
    contrasts: Optional[Sequence[Contrast]] = None
) -> pd.DataFrame:
    """
    Number of genes by onset time and direction.

    Every (time point, direction) pair appears, with zero where no gene
    starts; rows are chronological with Up before Down.
    """
    if contrasts is not None:
        times = [(c.time_value, c.time_point) for c in contrasts]
    else:
        times = list(
            records[['first_de_time', 'first_de_time_point']]
            .drop_duplicates()
            .itertuples(index=False, name=None)
        )
    times = sorted(set(times))

    counts = records.groupby(['first_de_time', 'direction']).size()
    rows: List[dict] = []
    for value, label in times:
        for direction in DIRECTIONS:
            rows.append({
                'first_de_time': value,
                'time_point': label,
                'direction': direction,
                'n_genes': int(counts.get((value, direction), 0)),
            })
    return pd.DataFrame(rows, columns=['first_de_time', 'time_point', 'direction', 'n_genes'])
