"""General linear model over the fixel data matrix.

The data matrix has one row per fixel and one column per subject. The
design matrix has one row per subject and the contrast matrix one row per
contrast, with as many columns as the design (narrower contrasts are padded
with zeros).
"""

import logging

import numpy as np

from fixelcfe.utils.exceptions import StatisticalError

logger = logging.getLogger(__name__)

# Relative residual energy below which a fixel is treated as noise-free
_ZERO_VARIANCE_TOLERANCE = 1e-12


def check_glm_inputs(
    design: np.ndarray,
    contrast: np.ndarray,
    n_subjects: int,
) -> np.ndarray:
    """Validate the design against the data and pad the contrast.

    Args:
        design: Design matrix, shape (n_subjects, n_regressors).
        contrast: Contrast matrix, shape (n_contrasts, <= n_regressors).
        n_subjects: Number of subjects in the data.

    Returns:
        Contrast matrix padded with zeros to (n_contrasts, n_regressors).

    Raises:
        StatisticalError: If the design has the wrong number of rows or the
            contrast has more columns than the design.
    """
    design = np.asarray(design, dtype=np.float64)
    contrast = np.atleast_2d(np.asarray(contrast, dtype=np.float64))

    if design.ndim != 2:
        raise StatisticalError(f"Design matrix must be 2D, got shape {design.shape}")
    if design.shape[0] != n_subjects:
        raise StatisticalError(
            f"Number of subjects ({n_subjects}) does not match number of rows "
            f"in design matrix ({design.shape[0]})"
        )
    if contrast.shape[1] > design.shape[1]:
        raise StatisticalError(
            f"Too many contrast columns ({contrast.shape[1]}) for a design matrix "
            f"with {design.shape[1]} columns"
        )

    padded = np.zeros((contrast.shape[0], design.shape[1]))
    padded[:, :contrast.shape[1]] = contrast
    return padded


def _degrees_of_freedom(design: np.ndarray) -> int:
    dof = design.shape[0] - np.linalg.matrix_rank(design)
    if dof <= 0:
        raise StatisticalError(
            f"Design matrix with {design.shape[0]} rows and rank "
            f"{np.linalg.matrix_rank(design)} leaves no residual degrees of freedom"
        )
    return int(dof)


def _sum_squared_residuals(data: np.ndarray, residuals: np.ndarray) -> np.ndarray:
    sse = np.einsum("ij,ij->i", residuals, residuals)
    energy = np.einsum("ij,ij->i", data, data)
    sse[sse <= _ZERO_VARIANCE_TOLERANCE * energy] = 0.0
    return sse


def solve_betas(data: np.ndarray, design: np.ndarray) -> np.ndarray:
    """Least-squares regression coefficients, shape (n_fixels, n_regressors)."""
    return data @ np.linalg.pinv(design).T


def abs_effect_size(data: np.ndarray, design: np.ndarray, contrast: np.ndarray) -> np.ndarray:
    """Contrast of the coefficients, shape (n_fixels, n_contrasts)."""
    return solve_betas(data, design) @ np.atleast_2d(contrast).T


def stdev(data: np.ndarray, design: np.ndarray) -> np.ndarray:
    """Residual standard deviation per fixel, shape (n_fixels,)."""
    residuals = data - solve_betas(data, design) @ design.T
    sse = _sum_squared_residuals(data, residuals)
    return np.sqrt(sse / _degrees_of_freedom(design))


def std_effect_size(data: np.ndarray, design: np.ndarray, contrast: np.ndarray) -> np.ndarray:
    """Effect size divided by the residual standard deviation.

    Fixels without residual variance get 0.
    """
    effect = abs_effect_size(data, design, contrast)
    sd = stdev(data, design)[:, None]
    return np.divide(effect, sd, out=np.zeros_like(effect), where=sd > 0)


class GLMTTest:
    """T-statistics of the GLM, re-evaluated under many relabelings.

    Relabeling the design by ``Q X``, where ``Q`` shuffles rows and
    optionally flips their signs, is orthogonal. The model fitted to
    ``(Q X, Y)`` then gives the same t-statistics as ``(X, Q^T Y)``, so the
    pseudo-inverse, residual-forming matrix and contrast variance factors
    are computed once here and each call only relabels the data.

    Args:
        data: Data matrix, shape (n_fixels, n_subjects).
        design: Design matrix, shape (n_subjects, n_regressors).
        contrast: Contrast matrix, padded to n_regressors columns.

    Raises:
        StatisticalError: If the inputs are inconsistent.
    """

    def __init__(self, data: np.ndarray, design: np.ndarray, contrast: np.ndarray):
        self.data = np.asarray(data, dtype=np.float64)
        self.design = np.asarray(design, dtype=np.float64)
        self.contrast = check_glm_inputs(self.design, contrast, self.data.shape[1])

        self.pinv_design = np.linalg.pinv(self.design)
        self.residual_forming = np.eye(self.n_subjects) - self.design @ self.pinv_design
        self.dof = _degrees_of_freedom(self.design)
        self.variance_scale = np.einsum(
            "ij,ij->i", self.contrast @ self.pinv_design, self.contrast @ self.pinv_design
        )

        logger.debug(
            f"GLM: {self.n_fixels} fixels, {self.n_subjects} subjects, "
            f"{self.design.shape[1]} regressors, {self.n_contrasts} contrasts, "
            f"{self.dof} degrees of freedom"
        )

    @property
    def n_fixels(self) -> int:
        return self.data.shape[0]

    @property
    def n_subjects(self) -> int:
        return self.data.shape[1]

    @property
    def n_contrasts(self) -> int:
        return self.contrast.shape[0]

    def __call__(self, permutation=None, contrast_index: int = 0) -> np.ndarray:
        """Compute the t-statistic of one contrast under a relabeling.

        Args:
            permutation: Object with a ``relabel(data)`` method (see
                :class:`fixelcfe.statistics.permutation.Permutation`), or
                None for the original labelling.
            contrast_index: Row of the contrast matrix to test.

        Returns:
            T-values, shape (n_fixels,). Fixels without residual variance
            get 0.
        """
        data = self.data if permutation is None else permutation.relabel(self.data)

        effect = data @ (self.contrast[contrast_index] @ self.pinv_design)
        residuals = data @ self.residual_forming
        sse = _sum_squared_residuals(data, residuals)

        standard_error = np.sqrt(sse / self.dof * self.variance_scale[contrast_index])
        return np.divide(
            effect, standard_error,
            out=np.zeros_like(effect), where=standard_error > 0,
        )
