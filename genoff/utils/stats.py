"""
Statistical utilities for genotype-environment association analysis
"""

import numpy as np
from typing import Tuple, Optional
from scipy import stats

def fdr_correction(pvalues: np.ndarray, alpha: float = 0.05, method: str = 'bh') -> Tuple[np.ndarray, np.ndarray]:
    """Apply False Discovery Rate correction (Benjamini-Hochberg)

    Args:
        pvalues: Array of p-values
        alpha: False discovery rate (default: 0.05)
        method: Method ('bh' for Benjamini-Hochberg)

    Returns:
        Tuple of (rejected_hypotheses, corrected_pvalues)
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    if pvalues.size == 0:
        return np.zeros(0, dtype=bool), np.zeros(0)
    pvalues_sortind = np.argsort(pvalues, kind='mergesort')
    pvalues_sorted = pvalues[pvalues_sortind]
    sortrevind = pvalues_sortind.argsort()

    if method == 'bh':
        # Benjamini-Hochberg procedure
        n = len(pvalues)
        i = np.arange(1, n + 1)
        corrected = pvalues_sorted * n / i
        corrected = np.minimum.accumulate(corrected[::-1])[::-1]
        corrected = np.minimum(corrected, 1.0)
        corrected_pvalues = corrected[sortrevind]
        rejected = corrected_pvalues <= alpha
    else:
        raise ValueError(f"Unknown method: {method}")

    return rejected, corrected_pvalues

def pi0_estimate(pvalues: np.ndarray, lambda_: float = 0.5) -> float:
    """Estimate the proportion of true null hypotheses (Storey 2002)

    pi0 = #{p > lambda} / (m * (1 - lambda)), capped at 1.

    Args:
        pvalues: Array of p-values
        lambda_: Tuning threshold in [0, 1)

    Returns:
        pi0 estimate in (0, 1]
    """
    if not 0.0 <= lambda_ < 1.0:
        raise ValueError("lambda_ must lie in [0, 1)")
    pvalues = np.asarray(pvalues, dtype=np.float64)
    m = len(pvalues)
    if m == 0:
        return 1.0
    pi0 = np.sum(pvalues > lambda_) / (m * (1.0 - lambda_))
    # pi0 == 0 would make every q-value zero
    return float(min(max(pi0, 1.0 / m), 1.0))

def qvalue(pvalues: np.ndarray,
           lambda_: float = 0.5,
           pi0: Optional[float] = None) -> Tuple[np.ndarray, float]:
    """Storey q-values: BH-adjusted p-values scaled by the estimated pi0

    Args:
        pvalues: Array of p-values
        lambda_: Threshold used by pi0_estimate when pi0 is not supplied
        pi0: Fixed proportion of true nulls (skips estimation)

    Returns:
        Tuple of (qvalues, pi0)
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    if pi0 is None:
        pi0 = pi0_estimate(pvalues, lambda_=lambda_)
    _, adjusted = fdr_correction(pvalues, method='bh')
    return np.minimum(pi0 * adjusted, 1.0), float(pi0)

def genomic_inflation_factor(pvalues: np.ndarray) -> float:
    """Calculate genomic inflation factor (lambda)

    Args:
        pvalues: Array of p-values

    Returns:
        Genomic inflation factor (lambda)
    """
    valid_pvals = pvalues[np.isfinite(pvalues) & (pvalues > 0)]
    if len(valid_pvals) == 0:
        return 1.0

    chi2_values = stats.chi2.ppf(1 - valid_pvals, df=1)
    median_chi2 = np.median(chi2_values)
    expected_median = stats.chi2.ppf(0.5, df=1)

    lambda_gc = median_chi2 / expected_median
    return lambda_gc

def inflation_factor_from_statistics(statistics: np.ndarray, null_median: float) -> float:
    """Genomic inflation factor from raw test statistics

    gif = median(statistics) / median of the null distribution. Returns 1.0
    when no finite statistic is available.

    Args:
        statistics: Chi-square or F statistics (NaN entries ignored)
        null_median: Median of the statistic under the null hypothesis
    """
    statistics = np.asarray(statistics, dtype=np.float64)
    valid = statistics[np.isfinite(statistics)]
    if valid.size == 0 or null_median <= 0:
        return 1.0
    gif = float(np.median(valid) / null_median)
    if not np.isfinite(gif) or gif <= 0:
        return 1.0
    return gif

def calculate_maf_from_genotypes(
    genotypes: np.ndarray,
    *,
    missing_value: int = -9,
    max_dosage: float = 2.0,
) -> np.ndarray:
    """Calculate minor allele frequencies from genotype matrix (vectorized)

    Args:
        genotypes: Genotype matrix (units × loci)
        missing_value: Value representing missing data
        max_dosage: Maximum genotype dosage used when converting genotype means
            into allele frequencies (2.0 for diploid counts, 1.0 for
            allele frequencies)

    Returns:
        Array of minor allele frequencies for each locus
    """
    genotypes = np.asarray(genotypes)

    # Handle both integer and float arrays (isnan only works on floats)
    valid_mask = genotypes != missing_value
    if np.issubdtype(genotypes.dtype, np.floating):
        valid_mask = valid_mask & (~np.isnan(genotypes))

    masked_geno = np.ma.array(genotypes, mask=~valid_mask)

    allele_freq = masked_geno.mean(axis=0).filled(0.0) / max(max_dosage, 1e-12)

    maf = np.minimum(allele_freq, 1.0 - allele_freq)

    return np.asarray(maf)

def pearson_correlation(x: np.ndarray, y: np.ndarray) -> Tuple[float, float, int]:
    """Pearson correlation over pairs where both values are finite

    Returns:
        Tuple of (r, p_value, n_pairs); (nan, nan, n) when fewer than 3 pairs
        or when either vector is constant.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    mask = np.isfinite(x) & np.isfinite(y)
    n = int(mask.sum())
    if n < 3 or np.ptp(x[mask]) == 0 or np.ptp(y[mask]) == 0:
        return float('nan'), float('nan'), n
    r, p = stats.pearsonr(x[mask], y[mask])
    return float(r), float(p), n
