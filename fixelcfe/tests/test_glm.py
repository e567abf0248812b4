import numpy as np
import pytest
from scipy import stats

from fixelcfe.statistics.glm import (
    GLMTTest,
    abs_effect_size,
    check_glm_inputs,
    solve_betas,
    std_effect_size,
    stdev,
)
from fixelcfe.statistics.permutation import Permutation
from fixelcfe.tests.tools import two_group_design
from fixelcfe.utils.exceptions import StatisticalError


def _random_data(n_fixels=6, n_subjects=10, seed=0):
    return np.random.default_rng(seed).normal(size=(n_fixels, n_subjects))


def test_solve_betas_matches_least_squares():
    data = _random_data()
    design = np.column_stack([np.ones(10), np.linspace(-1, 1, 10)])
    expected = np.linalg.lstsq(design, data.T, rcond=None)[0].T
    np.testing.assert_allclose(solve_betas(data, design), expected)


def test_two_group_t_matches_student_t_test():
    data = _random_data()
    design = two_group_design()
    glm = GLMTTest(data, design, np.array([[1, -1]]))

    expected = stats.ttest_ind(data[:, :5], data[:, 5:], axis=1).statistic
    np.testing.assert_allclose(glm(), expected)


def test_effect_sizes():
    data = _random_data()
    design = two_group_design()
    contrast = np.array([[1.0, -1.0]])

    effect = abs_effect_size(data, design, contrast)
    np.testing.assert_allclose(effect[:, 0], data[:, :5].mean(axis=1) - data[:, 5:].mean(axis=1))

    pooled = np.sqrt((data[:, :5].var(axis=1, ddof=1) + data[:, 5:].var(axis=1, ddof=1)) / 2)
    np.testing.assert_allclose(stdev(data, design), pooled)
    np.testing.assert_allclose(std_effect_size(data, design, contrast)[:, 0], effect[:, 0] / pooled)


def test_zero_variance_gives_zero_statistics():
    data = _random_data()
    data[2] = 4.0
    design = two_group_design()
    contrast = np.array([[1, -1]])

    assert GLMTTest(data, design, contrast)()[2] == 0.0
    assert stdev(data, design)[2] == 0.0
    assert std_effect_size(data, design, contrast)[2, 0] == 0.0


def test_relabeled_data_equals_relabeled_design():
    data = _random_data()
    design = np.column_stack([np.ones(10), np.linspace(-1, 1, 10) ** 2, np.arange(10) % 3])
    contrast = np.array([[0, 1, 0], [0, 0, 1]])
    rng = np.random.default_rng(3)
    permutation = Permutation(
        indices=rng.permutation(10), signs=rng.choice([-1.0, 1.0], size=10)
    )

    glm = GLMTTest(data, design, contrast)
    refit = GLMTTest(data, permutation.relabel_design(design), contrast)
    for k in range(2):
        np.testing.assert_allclose(glm(permutation, k), refit(None, k))


def test_contrast_is_padded():
    padded = check_glm_inputs(np.ones((4, 3)), np.array([1, 0]), 4)
    np.testing.assert_array_equal(padded, [[1, 0, 0]])


def test_inconsistent_inputs():
    with pytest.raises(StatisticalError):
        check_glm_inputs(np.ones((4, 2)), np.array([[1, 0]]), 5)
    with pytest.raises(StatisticalError):
        check_glm_inputs(np.ones((4, 2)), np.array([[1, 0, 0]]), 4)
    with pytest.raises(StatisticalError):
        GLMTTest(_random_data(n_subjects=2), np.eye(2), np.array([[1, -1]]))
