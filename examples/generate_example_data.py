"""Generate a synthetic time-course count table for trying out the report."""

import numpy as np
import pandas as pd
from pathlib import Path


# Response profiles: log2 fold change at each non-baseline time point is
# the profile value times the gene's effect size.
PROFILES = {
    'early': lambda t, peak: np.where(t <= peak, 1.0, 0.2),
    'late': lambda t, peak: np.where(t >= peak, 1.0, 0.0),
    'sustained': lambda t, peak: np.ones_like(t),
    'transient': lambda t, peak: np.where(t == peak, 1.0, 0.0),
}


def generate_example_data(
    n_genes: int = 2000,
    time_points: tuple = (0, 2, 6, 12, 24),
    n_replicates: int = 3,
    n_responsive: int = 300,
    effect_range: tuple = (1.0, 3.0),
    group: str = "trt",
    output_dir: str = "examples",
    seed: int = 42
):
    """
    Generate synthetic RNA-seq counts sampled over a time course.

    Sample ids follow ``<group>_<time_point>_<replicate>``; the first time
    point is the untreated baseline.

    Args:
        n_genes: Total number of genes
        time_points: Numeric sampling times, baseline first
        n_replicates: Replicates per time point
        n_responsive: Number of genes that change after the baseline
        effect_range: (min, max) absolute log2 fold change for responsive genes
        group: Leading sample id field
        output_dir: Directory to save files
        seed: Random seed for reproducibility

    Returns:
        Tuple of (count table with gene_name column, ground truth)
    """
    rng = np.random.default_rng(seed)

    gene_ids = [f"ENSG{i:011d}" for i in range(n_genes)]
    gene_names = [f"GENE{i}" for i in range(n_genes)]
    times = np.asarray(time_points[1:], dtype=float)

    base_expression = rng.lognormal(mean=5, sigma=2, size=n_genes)
    dispersion = rng.uniform(0.05, 0.2, n_genes)

    responsive = rng.choice(n_genes, n_responsive, replace=False)
    profile_names = rng.choice(list(PROFILES), n_responsive)
    signs = rng.choice([-1.0, 1.0], n_responsive)
    effects = rng.uniform(effect_range[0], effect_range[1], n_responsive)
    peaks = rng.choice(times, n_responsive)

    # log2 fold change per gene (rows) and time point (columns)
    log2fc = np.zeros((n_genes, len(time_points)))
    for gene, profile, sign, effect, peak in zip(responsive, profile_names, signs, effects, peaks):
        log2fc[gene, 1:] = sign * effect * PROFILES[profile](times, peak)

    columns = {}
    for j, time_point in enumerate(time_points):
        mean = base_expression * 2 ** log2fc[:, j]
        for replicate in range(1, n_replicates + 1):
            columns[f"{group}_{time_point}_{replicate}"] = rng.negative_binomial(
                n=1 / dispersion,
                p=1 / (1 + mean * dispersion)
            )

    counts_df = pd.DataFrame(columns, index=pd.Index(gene_ids, name='gene_id'))
    counts_df.insert(0, 'gene_name', gene_names)

    ground_truth = pd.DataFrame({
        'gene_id': gene_ids,
        'gene_name': gene_names,
        'profile': 'none',
        'peak_time': np.nan,
    })
    ground_truth.loc[responsive, 'profile'] = profile_names
    ground_truth.loc[responsive, 'peak_time'] = peaks
    for j, time_point in enumerate(time_points[1:], start=1):
        ground_truth[f'log2fc_{time_point}'] = log2fc[:, j]

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    counts_df.to_csv(output_path / "timecourse_counts.tsv", sep='\t')
    ground_truth.to_csv(output_path / "ground_truth.tsv", sep='\t', index=False)

    print(f"✓ Generated example data:")
    print(f"  - Genes: {n_genes}")
    print(f"  - Samples: {len(time_points) * n_replicates} "
          f"({len(time_points)} time points x {n_replicates} replicates)")
    print(f"  - Responsive genes: {n_responsive}")
    print(f"  - Files saved to: {output_path.absolute()}")

    return counts_df, ground_truth


def generate_minimal_dataset(output_dir: str = "examples/minimal"):
    """Generate a minimal dataset for quick testing."""
    return generate_example_data(
        n_genes=200,
        time_points=(0, 4, 24),
        n_replicates=2,
        n_responsive=30,
        effect_range=(2.0, 4.0),
        output_dir=output_dir,
        seed=42
    )


if __name__ == "__main__":
    print("Generating standard example dataset...")
    generate_example_data()

    print("\nGenerating minimal dataset...")
    generate_minimal_dataset()

    print("\n✓ Run: timecourse-report run examples/timecourse_counts.tsv")
