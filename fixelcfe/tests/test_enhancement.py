import numpy as np
import pytest
from scipy import sparse

from fixelcfe.connectivity.graph import FixelGraph
from fixelcfe.statistics.enhancement import ConnectivityEnhancer
from fixelcfe.statistics.glm import GLMTTest
from fixelcfe.tests.tools import two_group_design


def _graph(matrix):
    return FixelGraph(sparse.csr_matrix(np.asarray(matrix, dtype=np.float64)))


def test_single_fixel_integral():
    enhancer = ConnectivityEnhancer(_graph([[1.0]]), dh=0.1, e=1.0, h=2.0)
    # Heights 0.1, 0.2, 0.3: sum of h^2 * dh
    expected = (0.1 ** 2 + 0.2 ** 2 + 0.3 ** 2) * 0.1
    assert enhancer(np.array([0.35]))[0] == pytest.approx(expected)


def test_extent_includes_connected_neighbours():
    weight = 0.6
    enhancer = ConnectivityEnhancer(
        _graph([[1.0, weight, 0.0], [weight, 1.0, 0.0], [0.0, 0.0, 1.0]]),
        dh=0.1, e=2.0, h=1.0,
    )
    enhanced = enhancer(np.array([0.15, 0.15, 0.15]))
    np.testing.assert_allclose(enhanced[:2], (1.0 + weight) ** 2 * 0.1 * 0.1)
    assert enhanced[2] == pytest.approx(0.1 * 0.1)


def test_below_first_height_is_zero():
    enhancer = ConnectivityEnhancer(_graph(np.eye(3)))
    np.testing.assert_array_equal(enhancer(np.array([0.05, -3.0, 0.0])), np.zeros(3))
    np.testing.assert_array_equal(enhancer(-np.ones(3)), np.zeros(3))


def test_negative_tail():
    enhancer = ConnectivityEnhancer(_graph(np.eye(2)))
    positive, negative = enhancer.both_tails(np.array([1.0, -1.0]))
    assert positive[1] == 0.0
    assert negative[0] == 0.0
    assert positive[0] == pytest.approx(negative[1])
    assert positive[0] > 0


def test_elevated_fixel_exceeds_unconnected_neighbour():
    # Two groups of 5; only fixel 0 differs between groups, other fixels are
    # constant so their t-statistic is exactly 0
    rng = np.random.default_rng(0)
    data = np.ones((4, 10))
    data[0] = rng.normal(0.0, 0.2, size=10)
    data[0, :5] += 2.0
    glm = GLMTTest(data, two_group_design(), np.array([[1, -1]]))
    tvalues = glm()
    assert tvalues[0] > 1.0
    np.testing.assert_array_equal(tvalues[1:], 0.0)

    # Fixel 1 is connected to fixel 0; fixels 2 and 3 are unconnected
    connectivity = _graph([
        [1.0, 0.5, 0.0, 0.0],
        [0.5, 1.0, 0.0, 0.0],
        [0.0, 0.0, 1.0, 0.0],
        [0.0, 0.0, 0.0, 1.0],
    ])
    enhanced = ConnectivityEnhancer(connectivity, dh=0.1, e=0.5, h=2.0)(tvalues)
    assert enhanced[0] > enhanced[2]
    assert enhanced[0] > enhanced[1]


def test_invalid_height_step():
    with pytest.raises(ValueError):
        ConnectivityEnhancer(_graph(np.eye(1)), dh=0.0)
