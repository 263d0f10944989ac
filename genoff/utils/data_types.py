"""
Core data structures for the genomic offset pipeline
"""

import numpy as np
import pandas as pd
from typing import Optional, Union, Iterator, Sequence

from .exceptions import DimensionMismatch, InvalidParameter

MISSING_GENOTYPE = -9

MatrixLike = Union[np.ndarray, pd.DataFrame]


def as_matrix(data: MatrixLike, name: str, allow_vector: bool = False) -> np.ndarray:
    """Convert an array or DataFrame into a 2D float64 matrix

    Args:
        data: numpy array or pandas DataFrame (units × columns)
        name: Label used in error messages
        allow_vector: Treat a 1D input as a single column

    Returns:
        2D float64 array (a copy when conversion was needed)
    """
    if isinstance(data, pd.DataFrame):
        arr = data.to_numpy(dtype=np.float64)
    elif isinstance(data, pd.Series):
        arr = data.to_numpy(dtype=np.float64)
    else:
        arr = np.asarray(data, dtype=np.float64)

    if arr.ndim == 1 and allow_vector:
        arr = arr[:, np.newaxis]
    if arr.ndim != 2:
        raise DimensionMismatch(f"{name} must be a 2D matrix, got {arr.ndim} dimension(s)")
    return arr


def impute_missing_genotypes(genotypes: MatrixLike,
                             method: str = 'major',
                             missing_value: float = MISSING_GENOTYPE) -> np.ndarray:
    """Impute -9/NaN entries of a genotype matrix column by column.

    Args:
        genotypes: Genotype matrix (units × loci)
        method: 'major' replaces missing values with the most frequent value of
            the locus (allele counts); 'mean' uses the locus mean (allele
            frequencies).
        missing_value: Sentinel used for missing genotypes besides NaN

    Returns:
        Imputed float64 copy. Loci with no observed value are filled with 0.
    """
    G = as_matrix(genotypes, "Genotype matrix").copy()
    missing = (G == missing_value) | np.isnan(G)
    if not missing.any():
        return G
    G[missing] = np.nan

    if method == 'mean':
        with np.errstate(invalid='ignore'):
            counts = np.sum(~missing, axis=0)
            sums = np.nansum(G, axis=0)
            fill = np.where(counts > 0, sums / np.maximum(counts, 1), 0.0)
    elif method == 'major':
        fill = np.zeros(G.shape[1], dtype=np.float64)
        for j in np.where(missing.any(axis=0))[0]:
            observed = G[~missing[:, j], j]
            if observed.size == 0:
                continue
            vals, cnts = np.unique(observed, return_counts=True)
            fill[j] = vals[int(np.argmax(cnts))]
    else:
        raise InvalidParameter(f"Unknown imputation method: {method}")

    G[missing] = np.broadcast_to(fill, G.shape)[missing]
    return G


class EnvironmentScaler:
    """Centering/scaling parameters of the reference environment

    The same parameters are applied to current and predicted environments so
    that effect sizes and environmental differences share one unit system.
    Column means are always removed; division by the column standard
    deviation only happens when ``scale`` is True.
    """

    def __init__(self, means: np.ndarray, sds: np.ndarray, scale: bool = False):
        self._means = np.asarray(means, dtype=np.float64).copy()
        self._sds = np.asarray(sds, dtype=np.float64).copy()
        if self._means.shape != self._sds.shape or self._means.ndim != 1:
            raise DimensionMismatch("Scaler means and standard deviations must be 1D and equal length")
        self._means.setflags(write=False)
        self._sds.setflags(write=False)
        self.scale = bool(scale)

    @classmethod
    def fit(cls, X: MatrixLike, scale: bool = False) -> "EnvironmentScaler":
        """Estimate column means and standard deviations (ddof=1) from X"""
        X = as_matrix(X, "Environment matrix", allow_vector=True)
        means = np.nanmean(X, axis=0)
        if X.shape[0] > 1:
            sds = np.nanstd(X, axis=0, ddof=1)
        else:
            sds = np.ones(X.shape[1])
        # Constant columns are only centered
        sds = np.where(np.isfinite(sds) & (sds > 0), sds, 1.0)
        return cls(means, sds, scale=scale)

    @property
    def means(self) -> np.ndarray:
        """Column means of the reference environment"""
        return self._means

    @property
    def sds(self) -> np.ndarray:
        """Column standard deviations of the reference environment"""
        return self._sds

    @property
    def n_variables(self) -> int:
        return len(self._means)

    def transform(self, X: MatrixLike) -> np.ndarray:
        """Apply the stored centering (and scaling) to X; NaN propagates."""
        X = as_matrix(X, "Environment matrix", allow_vector=True)
        if X.shape[1] != self.n_variables:
            raise DimensionMismatch(
                f"Environment matrix has {X.shape[1]} columns, expected {self.n_variables}"
            )
        out = X - self._means[np.newaxis, :]
        if self.scale:
            out /= self._sds[np.newaxis, :]
        return out


class LatentFactorModel:
    """Fitted latent factor mixed model (immutable)

    Attributes:
        B: Environmental effect sizes (n_loci × n_variables)
        U: Latent factor scores (n_units × K)
        V: Latent factor loadings (n_loci × K)
        K: Number of latent factors
        lambda_: Ridge regularization parameter used for the fit
        scaler: EnvironmentScaler applied to X before fitting
    """

    def __init__(self, B: np.ndarray, U: np.ndarray, V: np.ndarray,
                 K: int, lambda_: float, scaler: EnvironmentScaler):
        B = np.array(B, dtype=np.float64)
        U = np.array(U, dtype=np.float64)
        V = np.array(V, dtype=np.float64)
        if U.shape[1] != K or V.shape[1] != K:
            raise DimensionMismatch("Latent scores and loadings must have K columns")
        if B.shape[0] != V.shape[0]:
            raise DimensionMismatch("Effect sizes and loadings must cover the same loci")
        if B.shape[1] != scaler.n_variables:
            raise DimensionMismatch("Effect sizes and scaler disagree on the number of variables")
        for arr in (B, U, V):
            arr.setflags(write=False)
        self._B = B
        self._U = U
        self._V = V
        self._K = int(K)
        self._lambda = float(lambda_)
        self._scaler = scaler

    @property
    def B(self) -> np.ndarray:
        return self._B

    @property
    def U(self) -> np.ndarray:
        return self._U

    @property
    def V(self) -> np.ndarray:
        return self._V

    @property
    def K(self) -> int:
        return self._K

    @property
    def lambda_(self) -> float:
        return self._lambda

    @property
    def scaler(self) -> EnvironmentScaler:
        return self._scaler

    @property
    def n_units(self) -> int:
        return self._U.shape[0]

    @property
    def n_loci(self) -> int:
        return self._B.shape[0]

    @property
    def n_variables(self) -> int:
        return self._B.shape[1]

    def effect_sizes_dataframe(self,
                               locus_names: Optional[Sequence[str]] = None,
                               variable_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Effect sizes as a table (loci × variables)"""
        if variable_names is None:
            variable_names = [f"env{k + 1}" for k in range(self.n_variables)]
        df = pd.DataFrame(self._B, columns=list(variable_names))
        if locus_names is not None:
            df.insert(0, 'Locus', list(locus_names))
        return df

    def __repr__(self) -> str:
        return (f"LatentFactorModel(n_units={self.n_units}, n_loci={self.n_loci}, "
                f"n_variables={self.n_variables}, K={self.K})")


class LocusTestResults:
    """Per-locus association results from the latent factor regression

    Standard format: one statistic and one p-value per locus, plus the
    per-variable z-scores (n_loci × n_variables).
    """

    def __init__(self, statistics: np.ndarray, pvalues: np.ndarray,
                 zscores: np.ndarray, gif: Union[float, np.ndarray], mode: str,
                 pvalue_table: Optional[np.ndarray] = None,
                 calibrated: bool = True):
        if not (len(statistics) == len(pvalues) == len(zscores)):
            raise DimensionMismatch("All result arrays must have same length")
        self.statistics = statistics
        self.pvalues = pvalues
        self.zscores = zscores
        self.gif = gif
        self.mode = mode
        self.pvalue_table = pvalue_table
        self.calibrated = calibrated

    @property
    def n_loci(self) -> int:
        return len(self.pvalues)

    def to_dataframe(self, locus_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Convert to pandas DataFrame"""
        df = pd.DataFrame({
            'Statistic': self.statistics,
            'P-value': self.pvalues,
        })
        for k in range(self.zscores.shape[1]):
            df[f'Z_env{k + 1}'] = self.zscores[:, k]
        if self.pvalue_table is not None:
            for k in range(self.pvalue_table.shape[1]):
                df[f'P_env{k + 1}'] = self.pvalue_table[:, k]
        if locus_names is not None:
            df.insert(0, 'Locus', list(locus_names))
        return df


class CandidateSet:
    """Set of candidate locus indices selected under FDR control"""

    def __init__(self, indices: Union[np.ndarray, Sequence[int]], n_loci: int,
                 qvalues: Optional[np.ndarray] = None,
                 fdr_level: Optional[float] = None,
                 method: Optional[str] = None,
                 all_loci: bool = False):
        idx = np.unique(np.asarray(indices, dtype=np.int64))
        if idx.size and (idx[0] < 0 or idx[-1] >= n_loci):
            raise InvalidParameter(f"Candidate indices must lie in [0, {n_loci})")
        idx.setflags(write=False)
        self._indices = idx
        self.n_loci = int(n_loci)
        self.qvalues = qvalues
        self.fdr_level = fdr_level
        self.method = method
        self.all_loci = bool(all_loci)

    @classmethod
    def from_all_loci(cls, n_loci: int) -> "CandidateSet":
        """Explicit request for every locus"""
        return cls(np.arange(n_loci), n_loci, all_loci=True)

    @property
    def indices(self) -> np.ndarray:
        return self._indices

    @property
    def is_empty(self) -> bool:
        return self._indices.size == 0

    def mask(self) -> np.ndarray:
        """Boolean mask over all loci"""
        out = np.zeros(self.n_loci, dtype=bool)
        out[self._indices] = True
        return out

    def __len__(self) -> int:
        return int(self._indices.size)

    def __iter__(self) -> Iterator[int]:
        return iter(self._indices.tolist())

    def __contains__(self, item) -> bool:
        return bool(np.any(self._indices == item))

    def __repr__(self) -> str:
        return f"CandidateSet({len(self)} of {self.n_loci} loci, q={self.fdr_level})"


class OffsetResult:
    """Genomic offset per sampling unit with effect-size diagnostics

    Attributes:
        offsets: Offset per unit (NaN when every term is missing)
        distance: Squared environmental distance per unit in model units
        covariance: Covariance of the selected effect sizes (d × d)
        eigenvalues: Eigenvalues of ``covariance``, descending
        eigenvectors: Matching eigenvectors as columns
        loci: Indices of the loci used
        scaled: Whether diagnostics are expressed in standardized units
    """

    def __init__(self, offsets: np.ndarray, distance: np.ndarray,
                 covariance: np.ndarray, eigenvalues: np.ndarray,
                 eigenvectors: np.ndarray, loci: np.ndarray, scaled: bool = False):
        if len(offsets) != len(distance):
            raise DimensionMismatch("Offsets and distances must have same length")
        self.offsets = offsets
        self.distance = distance
        self.covariance = covariance
        self.eigenvalues = eigenvalues
        self.eigenvectors = eigenvectors
        self.loci = loci
        self.scaled = scaled

    @property
    def n_units(self) -> int:
        return len(self.offsets)

    @property
    def importance(self) -> np.ndarray:
        """Relative importance of each eigen-axis (eigenvalues / sum)"""
        total = float(np.sum(self.eigenvalues))
        if total <= 0:
            return np.zeros_like(self.eigenvalues)
        return self.eigenvalues / total

    def to_dataframe(self, unit_ids: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Offsets and distances as a table"""
        df = pd.DataFrame({
            'Offset': self.offsets,
            'Distance': self.distance,
        })
        if unit_ids is not None:
            df.insert(0, 'ID', list(unit_ids))
        return df

    def eigen_dataframe(self, variable_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Eigenvalues, importance and eigenvector loadings, one row per axis"""
        d = len(self.eigenvalues)
        if variable_names is None:
            variable_names = [f"env{k + 1}" for k in range(d)]
        df = pd.DataFrame(self.eigenvectors.T, columns=list(variable_names))
        df.insert(0, 'Importance', self.importance)
        df.insert(0, 'Eigenvalue', self.eigenvalues)
        df.insert(0, 'Axis', np.arange(1, d + 1))
        return df
