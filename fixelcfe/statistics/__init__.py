"""Statistical inference on fixel data.

This module provides:
- GLM t-statistics and effect sizes
- Connectivity-based fixel enhancement (CFE)
- Permutation testing for FWE correction
"""

from fixelcfe.statistics.glm import (
    GLMTTest,
    abs_effect_size,
    check_glm_inputs,
    solve_betas,
    std_effect_size,
    stdev,
)
from fixelcfe.statistics.enhancement import ConnectivityEnhancer
from fixelcfe.statistics.permutation import (
    NullDistribution,
    ObservedStatistics,
    Permutation,
    PermutationTest,
    generate_permutations,
    requires_sign_flipping,
    statistic_to_pvalue,
)

__all__ = [
    # GLM
    "GLMTTest",
    "abs_effect_size",
    "check_glm_inputs",
    "solve_betas",
    "std_effect_size",
    "stdev",
    # Enhancement
    "ConnectivityEnhancer",
    # Permutation
    "NullDistribution",
    "ObservedStatistics",
    "Permutation",
    "PermutationTest",
    "generate_permutations",
    "requires_sign_flipping",
    "statistic_to_pvalue",
]
