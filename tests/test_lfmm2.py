import numpy as np
import pytest

from genoff.association.lfmm2 import GENOFF_LFMM2
from genoff.utils.data_types import LatentFactorModel, impute_missing_genotypes
from genoff.utils.exceptions import DimensionMismatch, InvalidParameter
from genoff.utils.simulate import simulate_gea_dataset


@pytest.fixture(scope="module")
def dataset():
    return simulate_gea_dataset(n_units=120, n_loci=300, n_variables=3,
                                n_factors=3, n_causal=15, seed=7)


def test_lfmm2_shapes_and_metadata(dataset) -> None:
    model = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)

    assert isinstance(model, LatentFactorModel)
    assert model.B.shape == (300, 3)
    assert model.U.shape == (120, 3)
    assert model.V.shape == (300, 3)
    assert model.K == 3
    assert model.lambda_ == pytest.approx(1e-5)
    assert (model.n_units, model.n_loci, model.n_variables) == (120, 300, 3)
    assert np.all(np.isfinite(model.B))


def test_lfmm2_is_deterministic(dataset) -> None:
    first = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)
    second = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)

    np.testing.assert_array_equal(first.B, second.B)
    np.testing.assert_array_equal(first.U, second.U)


def test_lfmm2_model_arrays_are_read_only(dataset) -> None:
    model = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=2, verbose=False)

    with pytest.raises(ValueError):
        model.B[0, 0] = 1.0


def test_lfmm2_randomized_solver_agrees_with_full(dataset) -> None:
    full = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)
    rand_a = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3,
                          svd_solver='randomized', random_state=3, verbose=False)
    rand_b = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3,
                          svd_solver='randomized', random_state=3, verbose=False)

    np.testing.assert_array_equal(rand_a.B, rand_b.B)
    for k in range(3):
        r = np.corrcoef(full.B[:, k], rand_a.B[:, k])[0, 1]
        assert r > 0.99


def test_lfmm2_latent_factors_explain_genotypes(dataset) -> None:
    model = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)
    Yc = dataset.genotypes - dataset.genotypes.mean(axis=0)
    Xs = model.scaler.transform(dataset.env)

    resid_env_only = Yc - Xs @ model.B.T
    resid_full = resid_env_only - model.U @ model.V.T

    assert np.linalg.norm(resid_full) < np.linalg.norm(resid_env_only)


def test_lfmm2_effect_sizes_follow_ridge_solution(dataset) -> None:
    model = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)
    Yc = dataset.genotypes - dataset.genotypes.mean(axis=0)
    Xs = model.scaler.transform(dataset.env)

    lhs = Xs.T @ Xs + model.lambda_ * np.eye(3)
    expected = np.linalg.solve(lhs, Xs.T @ (Yc - model.U @ model.V.T)).T

    np.testing.assert_allclose(model.B, expected, rtol=1e-8, atol=1e-10)


def test_lfmm2_recovers_causal_loci(dataset) -> None:
    model = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)
    causal = np.zeros(300, dtype=bool)
    causal[dataset.causal_loci] = True

    effect = np.abs(model.B[:, 0])
    assert effect[causal].mean() > 3 * effect[~causal].mean()


def test_lfmm2_scaler_centers_and_scales(dataset) -> None:
    unscaled = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, verbose=False)
    scaled = GENOFF_LFMM2(dataset.genotypes, dataset.env, K=3, scale=True, verbose=False)

    np.testing.assert_allclose(unscaled.scaler.means, dataset.env.mean(axis=0))
    np.testing.assert_allclose(scaled.scaler.sds, dataset.env.std(axis=0, ddof=1))
    assert not unscaled.scaler.scale
    assert scaled.scaler.scale
    # effect sizes per standard deviation
    np.testing.assert_allclose(scaled.B, unscaled.B * scaled.scaler.sds[np.newaxis, :],
                               rtol=1e-4, atol=1e-6)


def test_lfmm2_accepts_single_environmental_vector(dataset) -> None:
    model = GENOFF_LFMM2(dataset.genotypes, dataset.env[:, 0], K=2, verbose=False)

    assert model.B.shape == (300, 1)


def test_lfmm2_validates_inputs(dataset) -> None:
    Y, X = dataset.genotypes, dataset.env

    with pytest.raises(DimensionMismatch):
        GENOFF_LFMM2(Y[:-1], X, K=3, verbose=False)
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2(Y, X, K=0, verbose=False)
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2(Y, X, K=120, verbose=False)
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2(Y, X, K=2.5, verbose=False)
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2(Y, X, K=3, lambda_=0.0, verbose=False)
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2(Y, X, K=3, svd_solver='arpack', verbose=False)

    Y_missing = Y.copy()
    Y_missing[0, 0] = np.nan
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2(Y_missing, X, K=3, verbose=False)


def test_errors_are_value_errors(dataset) -> None:
    with pytest.raises(ValueError):
        GENOFF_LFMM2(dataset.genotypes, dataset.env, K=-1, verbose=False)


def test_impute_missing_genotypes_major_and_mean() -> None:
    G = np.array([
        [0.0, 2.0],
        [0.0, -9.0],
        [1.0, 1.0],
        [np.nan, 2.0],
    ])

    major = impute_missing_genotypes(G, method='major')
    mean = impute_missing_genotypes(G, method='mean')

    np.testing.assert_allclose(major[:, 0], [0.0, 0.0, 1.0, 0.0])
    np.testing.assert_allclose(major[:, 1], [2.0, 2.0, 1.0, 2.0])
    np.testing.assert_allclose(mean[3, 0], 1.0 / 3.0)
    np.testing.assert_allclose(mean[1, 1], 5.0 / 3.0)
    with pytest.raises(InvalidParameter):
        impute_missing_genotypes(G, method='median')
