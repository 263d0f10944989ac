import numpy as np
import pytest

from genoff.association.lfmm2 import GENOFF_LFMM2
from genoff.association.lfmm2_test import GENOFF_LFMM2_Test
from genoff.association.selection import select_candidate_loci, adjust_pvalues
from genoff.utils.data_types import CandidateSet
from genoff.utils.exceptions import InvalidParameter
from genoff.utils.simulate import simulate_gea_dataset


def _mixture_pvalues(seed=0):
    rng = np.random.default_rng(seed)
    signal = rng.uniform(0, 1e-4, size=20)
    null = rng.uniform(0, 1, size=480)
    return np.concatenate([signal, null])


def test_selection_is_monotone_in_q() -> None:
    pvalues = _mixture_pvalues()

    levels = [0.01, 0.05, 0.1, 0.2, 0.5]
    sets = [set(select_candidate_loci(pvalues, q=q).indices.tolist()) for q in levels]

    for smaller, larger in zip(sets, sets[1:]):
        assert smaller <= larger
    assert len(sets[2]) >= 20


def test_selection_returns_candidate_set_with_qvalues() -> None:
    pvalues = np.array([0.001, 0.01, 0.2, 0.5])

    cs = select_candidate_loci(pvalues, q=0.05)

    assert isinstance(cs, CandidateSet)
    np.testing.assert_array_equal(cs.indices, [0, 1])
    np.testing.assert_allclose(cs.qvalues, [0.004, 0.02, 0.26666667, 0.5])
    assert cs.fdr_level == 0.05
    assert cs.method == 'bh'
    assert 1 in cs and 2 not in cs
    np.testing.assert_array_equal(cs.mask(), [True, True, False, False])


def test_selection_can_be_empty() -> None:
    pvalues = np.linspace(0.5, 1.0, 100)

    cs = select_candidate_loci(pvalues, q=0.1)

    assert cs.is_empty
    assert len(cs) == 0
    assert cs.n_loci == 100


def test_storey_selects_at_least_as_many_as_bh() -> None:
    pvalues = _mixture_pvalues(seed=3)

    bh = select_candidate_loci(pvalues, q=0.1, method='bh')
    storey = select_candidate_loci(pvalues, q=0.1, method='storey')

    assert set(bh.indices.tolist()) <= set(storey.indices.tolist())
    assert np.all(adjust_pvalues(pvalues, 'storey') <= adjust_pvalues(pvalues, 'bh') + 1e-15)


def test_selection_validates_inputs() -> None:
    pvalues = np.array([0.01, 0.2])

    for bad_q in (0.0, 1.0, -0.1, 1.5):
        with pytest.raises(InvalidParameter):
            select_candidate_loci(pvalues, q=bad_q)
    with pytest.raises(InvalidParameter):
        select_candidate_loci(np.array([0.01, np.nan]), q=0.1)
    with pytest.raises(InvalidParameter):
        select_candidate_loci(np.array([0.01, 1.2]), q=0.1)
    with pytest.raises(InvalidParameter):
        select_candidate_loci(pvalues, q=0.1, method='holm')


def test_candidate_set_rejects_out_of_range_indices() -> None:
    with pytest.raises(InvalidParameter):
        CandidateSet([0, 5], n_loci=5)

    cs = CandidateSet.from_all_loci(4)
    assert cs.all_loci
    np.testing.assert_array_equal(cs.indices, [0, 1, 2, 3])


def _false_discovery_proportions(q: float, n_trials: int = 10):
    fdps = []
    n_discoveries = 0
    for seed in range(n_trials):
        data = simulate_gea_dataset(n_units=200, n_loci=500, n_variables=4,
                                    n_factors=3, n_causal=50, effect_size=0.8,
                                    seed=100 + seed)
        model = GENOFF_LFMM2(data.genotypes, data.env, K=3, verbose=False)
        res = GENOFF_LFMM2_Test(model, data.genotypes, data.env, verbose=False)
        cs = select_candidate_loci(res, q=q)

        selected = set(cs.indices.tolist())
        false = selected - set(data.causal_loci.tolist())
        fdps.append(len(false) / max(len(selected), 1))
        n_discoveries += len(selected)
    return np.array(fdps), n_discoveries


def test_empirical_false_discovery_proportion_is_controlled() -> None:
    fdps, n_discoveries = _false_discovery_proportions(q=0.1)

    assert n_discoveries > 0
    assert np.mean(fdps) <= 0.4


def test_empirical_false_discovery_proportion_near_permissive_level() -> None:
    # q = 0.2: false discoveries do occur, but stay within a wide band around 20%
    fdps, n_discoveries = _false_discovery_proportions(q=0.2)

    assert n_discoveries > 0
    assert 0.01 <= np.mean(fdps) <= 0.4
