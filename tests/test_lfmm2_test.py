import numpy as np
import pytest
import statsmodels.api as sm
from scipy import stats

from genoff.association.lfmm2 import GENOFF_LFMM2
from genoff.association.lfmm2_test import GENOFF_LFMM2_Test
from genoff.utils.exceptions import DimensionMismatch, InvalidParameter, UnfittedModel
from genoff.utils.simulate import simulate_gea_dataset


@pytest.fixture(scope="module")
def fitted():
    data = simulate_gea_dataset(n_units=100, n_loci=200, n_variables=3,
                                n_factors=2, n_causal=10, seed=11)
    Y = data.genotypes.copy()
    Y[:, 5] = 1.0  # monomorphic locus
    model = GENOFF_LFMM2(Y, data.env, K=2, verbose=False)
    return model, Y, data.env


def _ols_models(model, y, X):
    Z = np.column_stack([np.ones(len(y)), model.U])
    reduced = sm.OLS(y, Z).fit()
    full = sm.OLS(y, np.column_stack([Z, X])).fit()
    return reduced, full


def test_full_test_matches_statsmodels_f_test(fitted) -> None:
    model, Y, X = fitted

    res = GENOFF_LFMM2_Test(model, Y, X, full=True, calibrate=False, verbose=False)

    for j in [0, 1, 17, 42, 120]:
        reduced, full = _ols_models(model, Y[:, j], X)
        f_value, p_value, df_diff = full.compare_f_test(reduced)
        assert df_diff == 3
        np.testing.assert_allclose(res.statistics[j], f_value, rtol=1e-6,
                                   err_msg=f"F mismatch at locus {j}")
        np.testing.assert_allclose(res.pvalues[j], p_value, rtol=1e-6,
                                   err_msg=f"P-value mismatch at locus {j}")


def test_single_variable_test_matches_statsmodels_t_test(fitted) -> None:
    model, Y, X = fitted

    res = GENOFF_LFMM2_Test(model, Y, X, full=False, calibrate=False,
                            variable=1, verbose=False)

    assert res.mode == 'single'
    assert res.pvalue_table.shape == (200, 3)
    for j in [0, 3, 50, 199]:
        _, full = _ols_models(model, Y[:, j], X)
        for k in range(3):
            coef_idx = 1 + model.K + k
            np.testing.assert_allclose(res.zscores[j, k], full.tvalues[coef_idx], rtol=1e-6)
            np.testing.assert_allclose(res.pvalue_table[j, k], full.pvalues[coef_idx], rtol=1e-6)
        np.testing.assert_allclose(res.pvalues[j], full.pvalues[1 + model.K + 1], rtol=1e-6)


def test_single_mode_without_variable_uses_adjusted_minimum(fitted) -> None:
    model, Y, X = fitted

    res = GENOFF_LFMM2_Test(model, Y, X, full=False, calibrate=False, verbose=False)

    expected = np.minimum(res.pvalue_table.min(axis=1) * 3, 1.0)
    np.testing.assert_allclose(res.pvalues, expected)


def test_pvalues_lie_in_unit_interval(fitted) -> None:
    model, Y, X = fitted

    for full in (True, False):
        for calibrate in (True, False):
            res = GENOFF_LFMM2_Test(model, Y, X, full=full, calibrate=calibrate, verbose=False)
            assert res.pvalues.shape == (200,)
            assert np.all(np.isfinite(res.pvalues))
            assert np.all((res.pvalues >= 0) & (res.pvalues <= 1))


def test_monomorphic_locus_gets_pvalue_one(fitted) -> None:
    model, Y, X = fitted

    res = GENOFF_LFMM2_Test(model, Y, X, verbose=False)

    assert res.pvalues[5] == 1.0
    assert np.isnan(res.statistics[5])


def test_calibrated_full_test_has_null_median(fitted) -> None:
    model, Y, X = fitted

    res = GENOFF_LFMM2_Test(model, Y, X, full=True, calibrate=True, verbose=False)
    raw = GENOFF_LFMM2_Test(model, Y, X, full=True, calibrate=False, verbose=False)

    df = model.n_units - 3 - model.K - 1
    valid = np.isfinite(res.statistics)
    assert np.median(res.statistics[valid]) == pytest.approx(stats.f.ppf(0.5, 3, df))
    assert res.gif == pytest.approx(np.median(raw.statistics[valid]) / stats.f.ppf(0.5, 3, df))
    assert res.calibrated and not raw.calibrated


def test_batching_and_threads_do_not_change_results(fitted) -> None:
    model, Y, X = fitted

    reference = GENOFF_LFMM2_Test(model, Y, X, verbose=False)
    batched = GENOFF_LFMM2_Test(model, Y, X, maxLine=17, verbose=False)
    threaded = GENOFF_LFMM2_Test(model, Y, X, maxLine=17, cpu=3, verbose=False)

    np.testing.assert_allclose(batched.pvalues, reference.pvalues, rtol=1e-12)
    np.testing.assert_allclose(threaded.pvalues, reference.pvalues, rtol=1e-12)
    np.testing.assert_allclose(threaded.zscores, reference.zscores, rtol=1e-12)


def test_results_dataframe_columns(fitted) -> None:
    model, Y, X = fitted

    res = GENOFF_LFMM2_Test(model, Y, X, full=False, verbose=False)
    df = res.to_dataframe([f"L{j}" for j in range(200)])

    assert list(df.columns[:3]) == ['Locus', 'Statistic', 'P-value']
    assert {'Z_env1', 'Z_env3', 'P_env1', 'P_env3'} <= set(df.columns)
    assert len(df) == 200


def test_test_requires_fitted_model(fitted) -> None:
    _, Y, X = fitted

    with pytest.raises(UnfittedModel):
        GENOFF_LFMM2_Test(None, Y, X, verbose=False)


def test_test_validates_shapes_and_parameters(fitted) -> None:
    model, Y, X = fitted

    with pytest.raises(DimensionMismatch):
        GENOFF_LFMM2_Test(model, Y[:, :10], X, verbose=False)
    with pytest.raises(DimensionMismatch):
        GENOFF_LFMM2_Test(model, Y, X[:, :2], verbose=False)
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2_Test(model, Y, X, full=False, variable=3, verbose=False)
    with pytest.raises(InvalidParameter):
        GENOFF_LFMM2_Test(model, Y, X, cpu=0, verbose=False)
