"""
Latent factor mixed model (LFMM2) for genotype-environment association.

Ridge estimator (Caye et al. 2019), written with thin factorizations so that
no n × n matrix is ever formed:

- Center Y per locus. Center X per variable, standardize when requested, and
  keep the scaler so predicted environments are transformed identically.
- Thin SVD of X: X = Qx diag(s) R^T.
- Shrink Y inside the column space of X:
      Ys = Y - Qx diag(1 - d) Qx^T Y,   d = sqrt(lambda / (lambda + s^2))
- Rank-K truncated SVD of Ys: Ys ~ A Vk^T (A = left vectors * singular values).
- Undo the shrinkage on the rank-K part:
      W = (A + Qx diag(1/d - 1) Qx^T A) Vk^T
- SVD of W gives the latent scores U (left vectors * singular values) and the
  loadings V (right vectors).
- Effect sizes: B^T = (X^T X + lambda I)^-1 X^T (Y - U V^T)

The fit is deterministic for the 'full' solver; the 'randomized' solver is
deterministic for a fixed random_state.
"""

from typing import Union
import time
import numpy as np
import pandas as pd
from sklearn.utils.extmath import randomized_svd

from ..utils.data_types import EnvironmentScaler, LatentFactorModel, as_matrix
from ..utils.exceptions import DimensionMismatch, InvalidParameter

DEFAULT_LAMBDA = 1e-5
SVD_SOLVERS = ('full', 'randomized')


def _truncated_svd(Ys: np.ndarray, K: int, svd_solver: str, random_state: int):
    """Rank-K SVD of the shrunk genotype matrix; returns (U, s, Vt)."""
    if svd_solver == 'randomized':
        return randomized_svd(Ys, n_components=K, random_state=random_state)
    U, s, Vt = np.linalg.svd(Ys, full_matrices=False)
    return U[:, :K], s[:K], Vt[:K, :]


def GENOFF_LFMM2(Y: Union[np.ndarray, pd.DataFrame],
                 X: Union[np.ndarray, pd.DataFrame],
                 K: int,
                 lambda_: float = DEFAULT_LAMBDA,
                 scale: bool = False,
                 svd_solver: str = 'full',
                 random_state: int = 0,
                 verbose: bool = True) -> LatentFactorModel:
    """Fit a latent factor mixed model with the ridge solver.

    Args:
        Y: Genotype matrix (n_units × n_loci), allele counts or frequencies.
            Must not contain missing values (impute beforehand).
        X: Environment matrix (n_units × n_variables)
        K: Number of latent factors, 1 <= K < min(n_units, n_loci)
        lambda_: Ridge regularization parameter (> 0)
        scale: Standardize environmental variables before fitting
        svd_solver: 'full' (LAPACK) or 'randomized' (scikit-learn)
        random_state: Seed for the randomized solver
        verbose: Print progress information

    Returns:
        LatentFactorModel with effect sizes B (n_loci × n_variables), latent
        scores U (n_units × K) and loadings V (n_loci × K).
    """
    Y = as_matrix(Y, "Genotype matrix")
    X = as_matrix(X, "Environment matrix", allow_vector=True)
    n, L = Y.shape
    d = X.shape[1]

    if X.shape[0] != n:
        raise DimensionMismatch(
            f"Genotype matrix has {n} units but environment matrix has {X.shape[0]}"
        )
    if not isinstance(K, (int, np.integer)) or K < 1 or K >= min(n, L):
        raise InvalidParameter(f"K must be an integer in [1, {min(n, L) - 1}], got {K}")
    if not lambda_ > 0:
        raise InvalidParameter(f"lambda_ must be positive, got {lambda_}")
    if svd_solver not in SVD_SOLVERS:
        raise InvalidParameter(f"svd_solver must be one of {SVD_SOLVERS}, got {svd_solver!r}")
    if not np.all(np.isfinite(Y)):
        raise InvalidParameter("Genotype matrix contains missing values; impute before fitting")
    if not np.all(np.isfinite(X)):
        raise InvalidParameter("Environment matrix contains missing values")

    start_time = time.time()
    if verbose:
        print(f"Fitting LFMM2 (ridge, lambda={lambda_:g}) with K={K} latent factors")
        print(f"   {n} units x {L} loci, {d} environmental variables"
              f"{' (scaled)' if scale else ''}")

    scaler = EnvironmentScaler.fit(X, scale=scale)
    Xs = scaler.transform(X)
    Yc = Y - Y.mean(axis=0)[np.newaxis, :]

    # Thin SVD of the environment matrix
    Qx, s, _ = np.linalg.svd(Xs, full_matrices=False)
    shrink = np.sqrt(lambda_ / (lambda_ + s ** 2))
    inv_shrink = np.sqrt((lambda_ + s ** 2) / lambda_)

    Ys = Yc - Qx @ ((1.0 - shrink)[:, np.newaxis] * (Qx.T @ Yc))

    Uk, sk, Vtk = _truncated_svd(Ys, K, svd_solver, random_state)
    A = Uk * sk[np.newaxis, :]
    A = A + Qx @ ((inv_shrink - 1.0)[:, np.newaxis] * (Qx.T @ A))

    # SVD of W = A Vk^T through the QR of its n × K factor
    Qa, Ra = np.linalg.qr(A, mode='reduced')
    a, sw, bt = np.linalg.svd(Ra)
    U = Qa @ (a * sw[np.newaxis, :])
    V = (bt @ Vtk).T

    # Ridge regression of the confounder-adjusted genotypes on X
    XtR = Xs.T @ Yc - (Xs.T @ U) @ V.T
    XtX = Xs.T @ Xs + lambda_ * np.eye(d)
    try:
        B = np.linalg.solve(XtX, XtR).T
    except np.linalg.LinAlgError:
        B = (np.linalg.pinv(XtX, rcond=1e-10) @ XtR).T

    if verbose:
        elapsed = time.time() - start_time
        print(f"   Latent factor singular values: {np.round(sw, 3)}")
        print(f"LFMM2 fit complete in {elapsed:.2f} seconds")

    return LatentFactorModel(B=B, U=U, V=V, K=int(K), lambda_=lambda_, scaler=scaler)
