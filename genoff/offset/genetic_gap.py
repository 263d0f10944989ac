"""
Geometric genomic offset ("genetic gap") from LFMM2 effect sizes.

For sampling unit i with environmental change dx_i = T(x_pred_i) - T(x_i),
where T is the centering/scaling stored on the fitted model, and effect-size
rows b_j of the selected loci:

    offset(i) = mean_j (dx_i . b_j)^2 = dx_i C_b dx_i^T,   C_b = mean_j b_j b_j^T

Units are processed in batches so large prediction grids never require a
units × loci matrix in memory.
"""

from itertools import zip_longest
from typing import Iterable, Iterator, Optional, Sequence, Tuple, Union
import warnings
import numpy as np
import pandas as pd
from tqdm import tqdm

from ..utils.data_types import (
    CandidateSet, LatentFactorModel, OffsetResult, MatrixLike, as_matrix
)
from ..utils.exceptions import (
    DimensionMismatch, EmptyCandidateSet, InvalidParameter, UnfittedModel
)

CandidateLike = Optional[Union[CandidateSet, np.ndarray, Sequence[int]]]


def resolve_loci(model: LatentFactorModel,
                 candidate_loci: CandidateLike = None,
                 allow_all_loci_fallback: bool = False) -> np.ndarray:
    """Translate a candidate selection into sorted locus indices.

    None or CandidateSet.from_all_loci() selects every locus. Boolean masks
    of length n_loci are accepted. An empty selection raises
    EmptyCandidateSet unless allow_all_loci_fallback is True.
    """
    n_loci = model.n_loci
    if candidate_loci is None:
        return np.arange(n_loci)

    if isinstance(candidate_loci, CandidateSet):
        if candidate_loci.n_loci != n_loci:
            raise DimensionMismatch(
                f"Candidate set covers {candidate_loci.n_loci} loci, model has {n_loci}"
            )
        loci = candidate_loci.indices
    else:
        arr = np.asarray(candidate_loci)
        if arr.dtype == bool:
            if arr.shape != (n_loci,):
                raise DimensionMismatch(f"Boolean locus mask must have length {n_loci}")
            loci = np.flatnonzero(arr)
        else:
            if arr.size and not np.issubdtype(arr.dtype, np.integer):
                raise InvalidParameter("Candidate loci must be integer indices or a boolean mask")
            loci = np.unique(arr.astype(np.int64).ravel())
            if loci.size and (loci[0] < 0 or loci[-1] >= n_loci):
                raise InvalidParameter(f"Candidate indices must lie in [0, {n_loci})")

    if loci.size == 0:
        if allow_all_loci_fallback:
            warnings.warn("Candidate set is empty; computing the offset with all loci.")
            return np.arange(n_loci)
        raise EmptyCandidateSet(
            "Candidate set is empty; relax the FDR level or request all loci explicitly"
        )
    return loci


def effect_size_covariance(B: np.ndarray) -> np.ndarray:
    """C_b = B^T B / n_loci (d × d)"""
    return (B.T @ B) / B.shape[0]


def _eigen_descending(C: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    eigenvals, eigenvecs = np.linalg.eigh(C)
    sort_indices = np.argsort(eigenvals)[::-1]
    eigenvals = np.maximum(eigenvals[sort_indices], 0.0)
    return eigenvals, eigenvecs[:, sort_indices]


def _offset_batch(dx: np.ndarray, B_sel: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Offsets and squared distances for one batch of environmental changes."""
    with np.errstate(invalid='ignore'):
        terms = (dx @ B_sel.T) ** 2
    valid = np.isfinite(terms)
    counts = valid.sum(axis=1)
    sums = np.where(valid, terms, 0.0).sum(axis=1)
    offsets = np.full(dx.shape[0], np.nan)
    has_terms = counts > 0
    offsets[has_terms] = sums[has_terms] / counts[has_terms]
    distance = np.sum(dx * dx, axis=1)
    return offsets, distance


def _iter_env_pairs(env, pred_env, batch_size: int) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    """Yield aligned (current, predicted) blocks from matrices or chunk iterables."""
    env_is_matrix = isinstance(env, (np.ndarray, pd.DataFrame))
    pred_is_matrix = isinstance(pred_env, (np.ndarray, pd.DataFrame))
    if env_is_matrix != pred_is_matrix:
        raise InvalidParameter(
            "env and pred_env must both be matrices or both be iterables of chunks"
        )

    if env_is_matrix:
        cur = as_matrix(env, "Environment matrix", allow_vector=True)
        pred = as_matrix(pred_env, "Predicted environment matrix", allow_vector=True)
        if cur.shape != pred.shape:
            raise DimensionMismatch(
                f"Environment {cur.shape} and predicted environment {pred.shape} differ in shape"
            )
        for start in range(0, cur.shape[0], batch_size):
            end = min(start + batch_size, cur.shape[0])
            yield cur[start:end], pred[start:end]
        return

    for cur_chunk, pred_chunk in zip_longest(env, pred_env, fillvalue=None):
        if cur_chunk is None or pred_chunk is None:
            raise DimensionMismatch(
                "Environment and predicted environment streams have different numbers of chunks"
            )
        cur = as_matrix(cur_chunk, "Environment chunk", allow_vector=True)
        pred = as_matrix(pred_chunk, "Predicted environment chunk", allow_vector=True)
        if cur.shape != pred.shape:
            raise DimensionMismatch(
                f"Environment chunk {cur.shape} and predicted chunk {pred.shape} differ in shape"
            )
        yield cur, pred


def iter_genetic_gap(model: LatentFactorModel,
                     env: Union[MatrixLike, Iterable[MatrixLike]],
                     pred_env: Union[MatrixLike, Iterable[MatrixLike]],
                     candidate_loci: CandidateLike = None,
                     allow_all_loci_fallback: bool = False,
                     batch_size: int = 10000) -> Iterator[Tuple[int, np.ndarray, np.ndarray]]:
    """Stream offsets batch by batch.

    ``env`` and ``pred_env`` are either two aligned matrices (split into
    blocks of ``batch_size`` rows) or two iterables yielding aligned chunks,
    e.g. tiles of a spatial prediction grid read lazily from disk.

    Yields:
        (start_row, offsets, distances) for each block
    """
    if not isinstance(model, LatentFactorModel):
        raise UnfittedModel("A fitted LatentFactorModel is required; run GENOFF_LFMM2 first")
    if batch_size < 1:
        raise InvalidParameter("batch_size must be positive")
    loci = resolve_loci(model, candidate_loci, allow_all_loci_fallback)
    B_sel = model.B[loci, :]
    scaler = model.scaler

    start = 0
    for cur, pred in _iter_env_pairs(env, pred_env, batch_size):
        if cur.shape[1] != model.n_variables:
            raise DimensionMismatch(
                f"Environment has {cur.shape[1]} variables, model was fit with {model.n_variables}"
            )
        dx = scaler.transform(pred) - scaler.transform(cur)
        offsets, distance = _offset_batch(dx, B_sel)
        yield start, offsets, distance
        start += cur.shape[0]


def GENOFF_GeneticGap(model: LatentFactorModel,
                      env: MatrixLike,
                      pred_env: MatrixLike,
                      candidate_loci: CandidateLike = None,
                      scale: bool = False,
                      allow_all_loci_fallback: bool = False,
                      batch_size: int = 10000,
                      verbose: bool = True) -> OffsetResult:
    """Genomic offset per sampling unit between two environmental states.

    Args:
        model: Fitted LatentFactorModel
        env: Current environment (n_units × n_variables)
        pred_env: Predicted environment, same shape as env
        candidate_loci: CandidateSet, index array or boolean mask; None uses
            every locus
        scale: Express the covariance diagnostics in standardized
            environmental units. Offsets do not depend on this flag.
        allow_all_loci_fallback: Use every locus instead of raising
            EmptyCandidateSet when the candidate set is empty
        batch_size: Units processed per block
        verbose: Print progress information

    Returns:
        OffsetResult with offsets (NaN where all terms are missing), squared
        environmental distances, C_b and its eigen-decomposition.
    """
    if not isinstance(model, LatentFactorModel):
        raise UnfittedModel("A fitted LatentFactorModel is required; run GENOFF_LFMM2 first")
    cur = as_matrix(env, "Environment matrix", allow_vector=True)
    pred = as_matrix(pred_env, "Predicted environment matrix", allow_vector=True)
    if cur.shape != pred.shape:
        raise DimensionMismatch(
            f"Environment {cur.shape} and predicted environment {pred.shape} differ in shape"
        )
    if cur.shape[1] != model.n_variables:
        raise DimensionMismatch(
            f"Environment has {cur.shape[1]} variables, model was fit with {model.n_variables}"
        )

    loci = resolve_loci(model, candidate_loci, allow_all_loci_fallback)
    n_units = cur.shape[0]
    if verbose:
        print(f"Computing genetic gap for {n_units} units using {len(loci)} of {model.n_loci} loci")

    offsets = np.full(n_units, np.nan)
    distance = np.full(n_units, np.nan)
    n_batches = (n_units + batch_size - 1) // max(batch_size, 1)
    blocks = iter_genetic_gap(model, cur, pred, candidate_loci=loci, batch_size=batch_size)
    for start, off_b, dist_b in tqdm(blocks, total=n_batches, desc="Genetic gap",
                                     unit="batch", disable=not verbose or n_batches < 2):
        offsets[start:start + len(off_b)] = off_b
        distance[start:start + len(dist_b)] = dist_b

    covariance = effect_size_covariance(model.B[loci, :])
    if scale and not model.scaler.scale:
        # Effect sizes per standard deviation of each variable
        S = np.diag(model.scaler.sds)
        covariance = S @ covariance @ S
    eigenvals, eigenvecs = _eigen_descending(covariance)

    if verbose:
        n_missing = int(np.sum(~np.isfinite(offsets)))
        if n_missing:
            print(f"   {n_missing} units have missing environmental data (offset reported as NaN)")
        importance = eigenvals / eigenvals.sum() if eigenvals.sum() > 0 else eigenvals
        print(f"   Relative importance of eigen-axes: {np.round(importance, 3)}")

    return OffsetResult(
        offsets=offsets,
        distance=distance,
        covariance=covariance,
        eigenvalues=eigenvals,
        eigenvectors=eigenvecs,
        loci=loci,
        scaled=bool(scale or model.scaler.scale),
    )


def population_offsets(offsets: Union[np.ndarray, OffsetResult],
                       pop_labels: Sequence) -> pd.DataFrame:
    """Mean offset per population label (missing offsets ignored).

    Returns:
        DataFrame with columns ['Population', 'Offset', 'N'] where N counts
        the units with a non-missing offset.
    """
    if isinstance(offsets, OffsetResult):
        offsets = offsets.offsets
    offsets = np.asarray(offsets, dtype=np.float64)
    labels = np.asarray(pop_labels)
    if labels.shape != offsets.shape:
        raise DimensionMismatch(
            f"{len(labels)} population labels given for {len(offsets)} offsets"
        )
    df = pd.DataFrame({'Population': labels, 'Offset': offsets})
    summary = df.groupby('Population', sort=True)['Offset'].agg(['mean', 'count']).reset_index()
    summary.columns = ['Population', 'Offset', 'N']
    return summary
