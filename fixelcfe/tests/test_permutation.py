import numpy as np
import pytest
from scipy import sparse

from fixelcfe.connectivity.graph import FixelGraph
from fixelcfe.statistics.enhancement import ConnectivityEnhancer
from fixelcfe.statistics.glm import GLMTTest
from fixelcfe.statistics.permutation import (
    Permutation,
    PermutationTest,
    count_relabelings,
    generate_permutations,
    normalise_enhanced,
    requires_sign_flipping,
    statistic_to_pvalue,
)
from fixelcfe.tests.tools import two_group_design
from fixelcfe.utils.exceptions import StatisticalError


def _permutation_test(n_jobs=1, effect=3.0):
    rng = np.random.default_rng(0)
    data = rng.normal(size=(5, 10))
    data[0, :5] += effect
    glm = GLMTTest(data, two_group_design(), np.array([[1, -1]]))
    connectivity = FixelGraph(sparse.identity(5, format="csr") + sparse.eye(5, k=1) * 0.5
                              + sparse.eye(5, k=-1) * 0.5)
    return PermutationTest(glm, ConnectivityEnhancer(connectivity), n_jobs=n_jobs)


def test_permutations_are_unique_and_not_identity():
    permutations = generate_permutations(200, 8, np.random.default_rng(0))
    keys = {permutation.key() for permutation in permutations}
    assert len(keys) == 200
    assert not any(permutation.is_identity() for permutation in permutations)
    for permutation in permutations:
        assert sorted(permutation.indices) == list(range(8))
        assert permutation.signs is None


def test_permutations_are_deterministic():
    first = generate_permutations(50, 10, np.random.default_rng(7), sign_flip=True)
    second = generate_permutations(50, 10, np.random.default_rng(7), sign_flip=True)
    assert [p.key() for p in first] == [p.key() for p in second]


def test_excluded_relabelings_are_not_redrawn():
    rng = np.random.default_rng(4)
    auxiliary = generate_permutations(30, 5, rng)
    excluded = {permutation.key() for permutation in auxiliary}
    permutations = generate_permutations(80, 5, rng, exclude=excluded)

    keys = {permutation.key() for permutation in permutations}
    assert len(keys) == 80
    assert not keys & excluded


def test_exchangeability_blocks_restrict_shuffling():
    blocks = np.array([0, 0, 0, 1, 1, 1, 1])
    permutations = generate_permutations(20, 7, np.random.default_rng(0), blocks=blocks)
    for permutation in permutations:
        np.testing.assert_array_equal(blocks[permutation.indices], blocks)


def test_sign_flipping_only():
    permutations = generate_permutations(
        10, 6, np.random.default_rng(0), shuffle=False, sign_flip=True
    )
    for permutation in permutations:
        np.testing.assert_array_equal(permutation.indices, np.arange(6))
        assert set(np.unique(permutation.signs)) <= {-1.0, 1.0}
        assert not permutation.is_identity()


def test_repeats_allowed_when_too_few_relabelings():
    assert count_relabelings(3) == 6
    assert count_relabelings(4, blocks=np.array([0, 0, 1, 1])) == 4
    assert count_relabelings(2, shuffle=False, sign_flip=True) == 4

    permutations = generate_permutations(10, 3, np.random.default_rng(0))
    assert len(permutations) == 10


def test_invalid_permutation_requests():
    with pytest.raises(StatisticalError):
        generate_permutations(5, 4, np.random.default_rng(0), shuffle=False)
    with pytest.raises(StatisticalError):
        generate_permutations(5, 4, np.random.default_rng(0), blocks=np.array([0, 1]))


def test_relabel_moves_subject_columns():
    permutation = Permutation(indices=np.array([2, 0, 1]), signs=np.array([1.0, -1.0, 1.0]))
    data = np.array([[10.0, 20.0, 30.0]])
    # Column indices[i] of the relabeled data holds signs[i] * column i
    np.testing.assert_array_equal(permutation.relabel(data), [[-20.0, 30.0, 10.0]])

    design = np.array([[1.0], [2.0], [3.0]])
    np.testing.assert_array_equal(permutation.relabel_design(design), [[3.0], [-1.0], [2.0]])


def test_requires_sign_flipping():
    assert requires_sign_flipping(np.ones((6, 1)))
    assert not requires_sign_flipping(two_group_design())


def test_pvalue_formula():
    null = np.array([1.0, 2.0, 3.0, 4.0])
    pvalues = statistic_to_pvalue(null, np.array([5.0, 0.0, 2.5, 2.0]))
    np.testing.assert_allclose(pvalues, [1 / 5, 5 / 5, 3 / 5, 4 / 5])


def test_permutation_pvalues_in_range():
    test = _permutation_test()
    permutations = generate_permutations(100, 10, np.random.default_rng(1))
    null = test.run(permutations)
    observed = test.observed()

    assert len(null) == 100
    assert np.all(null.positive >= 0) and np.all(null.negative >= 0)

    pvalues = statistic_to_pvalue(null.positive, observed.cfe_pos)
    assert np.all(pvalues >= 1 / 101) and np.all(pvalues <= 1)
    assert pvalues[0] < 0.1
    assert pvalues.min() == pytest.approx(pvalues[0])


def test_null_distribution_independent_of_jobs():
    permutations = generate_permutations(150, 10, np.random.default_rng(2))
    sequential = _permutation_test(n_jobs=1).run(permutations)
    parallel = _permutation_test(n_jobs=2).run(permutations)

    np.testing.assert_allclose(sequential.positive, parallel.positive, rtol=1e-12)
    np.testing.assert_allclose(sequential.negative, parallel.negative, rtol=1e-12)


def test_empirical_statistic():
    test = _permutation_test()
    permutations = generate_permutations(30, 10, np.random.default_rng(3))
    empirical = test.precompute_empirical(permutations)

    assert empirical.shape == (5,)
    assert np.all(empirical >= 0)

    enhanced = np.array([test.enhancer(test.glm(p)) for p in permutations])
    counts = (enhanced > 0).sum(axis=0)
    expected = np.divide(
        enhanced.sum(axis=0), counts, out=np.zeros(5), where=counts > 0
    )
    np.testing.assert_allclose(empirical, expected)
    # Permutations that leave a fixel unenhanced do not dilute its scale
    assert np.all(empirical >= enhanced.mean(axis=0))

    observed = test.observed(empirical)
    raw = test.observed()
    nonzero = empirical > 0
    np.testing.assert_allclose(observed.cfe_pos[nonzero], raw.cfe_pos[nonzero] / empirical[nonzero])


def test_normalise_enhanced_leaves_zero_where_scale_is_zero():
    enhanced = np.array([2.0, 3.0])
    np.testing.assert_array_equal(normalise_enhanced(enhanced, np.array([4.0, 0.0])), [0.5, 0.0])
    assert normalise_enhanced(enhanced, None) is enhanced


def test_empty_permutation_set():
    with pytest.raises(StatisticalError):
        _permutation_test().run([])
