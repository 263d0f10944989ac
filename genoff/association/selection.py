"""
Candidate-locus selection under false discovery rate control
"""

from typing import Union
import numpy as np

from ..utils.data_types import CandidateSet, LocusTestResults
from ..utils.exceptions import InvalidParameter
from ..utils.stats import fdr_correction, qvalue

FDR_METHODS = ('bh', 'storey')


def adjust_pvalues(pvalues: np.ndarray, method: str = 'bh', lambda_: float = 0.5) -> np.ndarray:
    """Per-locus q-values under the chosen FDR procedure

    Args:
        pvalues: Per-locus p-values in [0, 1]
        method: 'bh' (Benjamini-Hochberg) or 'storey' (BH scaled by pi0)
        lambda_: pi0 tuning threshold for the Storey procedure
    """
    if method == 'bh':
        _, qvals = fdr_correction(pvalues, method='bh')
    elif method == 'storey':
        qvals, _ = qvalue(pvalues, lambda_=lambda_)
    else:
        raise InvalidParameter(f"FDR method must be one of {FDR_METHODS}, got {method!r}")
    return qvals


def select_candidate_loci(pvalues: Union[np.ndarray, LocusTestResults],
                          q: float = 0.1,
                          method: str = 'bh',
                          lambda_: float = 0.5,
                          verbose: bool = False) -> CandidateSet:
    """Select loci whose q-value does not exceed the target FDR level.

    Args:
        pvalues: Per-locus p-values, or LocusTestResults from GENOFF_LFMM2_Test
        q: Target false discovery rate, strictly between 0 and 1
        method: 'bh' or 'storey'
        lambda_: pi0 tuning threshold for the Storey procedure
        verbose: Print the number of selected loci

    Returns:
        CandidateSet (possibly empty). Lowering q never enlarges the set.
    """
    if isinstance(pvalues, LocusTestResults):
        pvalues = pvalues.pvalues
    pvalues = np.asarray(pvalues, dtype=np.float64)
    if pvalues.ndim != 1:
        raise InvalidParameter("p-values must be a 1D array (one value per locus)")
    if not 0.0 < q < 1.0:
        raise InvalidParameter(f"FDR level q must lie in (0, 1), got {q}")
    if np.any(~np.isfinite(pvalues)) or np.any((pvalues < 0) | (pvalues > 1)):
        raise InvalidParameter("p-values must be finite and lie in [0, 1]")

    qvals = adjust_pvalues(pvalues, method=method, lambda_=lambda_)
    indices = np.flatnonzero(qvals <= q)

    if verbose:
        print(f"   {len(indices)} of {len(pvalues)} loci selected at q <= {q} ({method.upper()})")

    return CandidateSet(indices, n_loci=len(pvalues), qvalues=qvals,
                        fdr_level=q, method=method)
