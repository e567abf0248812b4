"""Permutation testing for family-wise error (FWE) correction.

The null distribution of the maximum enhanced statistic is built by
relabeling the subjects (shuffling and/or sign flipping), refitting the GLM
and enhancing the resulting t-statistic. Each permutation writes only its
own slot of the null distribution, so permutations run in parallel without
any locking. All relabelings are drawn up front from one seeded generator,
which makes the results independent of the number of jobs.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed

from fixelcfe.statistics.enhancement import ConnectivityEnhancer
from fixelcfe.statistics.glm import GLMTTest
from fixelcfe.utils.exceptions import StatisticalError
from fixelcfe.utils.logging import ProgressCounter, timer

logger = logging.getLogger(__name__)

# Permutations handed to one job at a time; fixed so that floating point
# accumulation order does not depend on n_jobs
PERMUTATION_CHUNK_SIZE = 100


@dataclass(frozen=True)
class Permutation:
    """A relabeling of the subjects.

    The relabeled design is ``X'[i] = signs[i] * X[indices[i]]``.

    Attributes:
        indices: Row of the original design used for each subject.
        signs: Optional +1/-1 per subject (sign flipping).
    """
    indices: np.ndarray
    signs: Optional[np.ndarray] = None

    def relabel_design(self, design: np.ndarray) -> np.ndarray:
        """Apply the relabeling to the design matrix."""
        relabeled = np.asarray(design, dtype=np.float64)[self.indices]
        if self.signs is not None:
            relabeled = relabeled * self.signs[:, None]
        return relabeled

    def relabel(self, data: np.ndarray) -> np.ndarray:
        """Apply the transposed relabeling to the data columns.

        Fitting ``(X, relabel(Y))`` is equivalent to fitting
        ``(relabel_design(X), Y)``.
        """
        values = data if self.signs is None else data * self.signs[None, :]
        relabeled = np.empty_like(values)
        relabeled[:, self.indices] = values
        return relabeled

    def is_identity(self) -> bool:
        identity = np.array_equal(self.indices, np.arange(len(self.indices)))
        return identity and (self.signs is None or bool(np.all(self.signs > 0)))

    def key(self) -> bytes:
        signs = b"" if self.signs is None else self.signs.astype(np.int8).tobytes()
        return self.indices.astype(np.int64).tobytes() + signs


@dataclass
class NullDistribution:
    """Maximum enhanced statistic of each permutation, per tail."""
    positive: np.ndarray
    negative: np.ndarray

    def __len__(self) -> int:
        return len(self.positive)


@dataclass
class ObservedStatistics:
    """Statistics of the original labelling."""
    tvalue: np.ndarray
    cfe_pos: np.ndarray
    cfe_neg: np.ndarray


def requires_sign_flipping(design: np.ndarray) -> bool:
    """Whether shuffling rows cannot change the design.

    This is the case when every row is identical, e.g. a one-sample test
    with an intercept-only design; only sign flipping generates a null
    distribution then.
    """
    design = np.asarray(design)
    return bool(np.all(design == design[0]))


def count_relabelings(
    n_subjects: int,
    blocks: Optional[np.ndarray] = None,
    shuffle: bool = True,
    sign_flip: bool = False,
) -> int:
    """Number of distinct relabelings, the identity included."""
    total = 1
    if shuffle:
        if blocks is None:
            total = math.factorial(n_subjects)
        else:
            for _, size in zip(*np.unique(blocks, return_counts=True)):
                total *= math.factorial(int(size))
    if sign_flip:
        total *= 2 ** n_subjects
    return total


def _draw_relabeling(
    n_subjects: int,
    rng: np.random.Generator,
    blocks: Optional[np.ndarray],
    shuffle: bool,
    sign_flip: bool,
) -> Permutation:
    indices = np.arange(n_subjects)
    if shuffle:
        if blocks is None:
            indices = rng.permutation(n_subjects)
        else:
            for block in np.unique(blocks):
                members = np.flatnonzero(blocks == block)
                indices[members] = rng.permutation(members)
    signs = rng.choice(np.array([-1.0, 1.0]), size=n_subjects) if sign_flip else None
    return Permutation(indices=indices, signs=signs)


def generate_permutations(
    n_permutations: int,
    n_subjects: int,
    rng: np.random.Generator,
    blocks: Optional[np.ndarray] = None,
    shuffle: bool = True,
    sign_flip: bool = False,
    exclude: Optional[Iterable[bytes]] = None,
) -> List[Permutation]:
    """Draw relabelings of the subjects.

    Relabelings are unique and never the identity, as long as enough of
    them exist; otherwise a warning is logged and repeats are allowed.

    Args:
        n_permutations: Number of relabelings to draw.
        n_subjects: Number of subjects.
        rng: Seeded generator; the same seed gives the same relabelings.
        blocks: Optional exchangeability block per subject. Subjects are
            only shuffled within their block.
        shuffle: Shuffle subjects (exchangeable errors).
        sign_flip: Flip signs (symmetric errors).
        exclude: Keys (see :meth:`Permutation.key`) of relabelings already
            used elsewhere, e.g. for the nonstationarity adjustment. They
            are not drawn again while enough other relabelings exist.

    Returns:
        List of relabelings.

    Raises:
        StatisticalError: If neither shuffling nor sign flipping is enabled
            or the blocks do not match the subjects.
    """
    if not (shuffle or sign_flip):
        raise StatisticalError("At least one of shuffling or sign flipping is required")
    if blocks is not None:
        blocks = np.asarray(blocks).reshape(-1)
        if len(blocks) != n_subjects:
            raise StatisticalError(
                f"Exchangeability blocks list {len(blocks)} entries for "
                f"{n_subjects} subjects"
            )

    seen = set(exclude or ())
    available = count_relabelings(n_subjects, blocks, shuffle, sign_flip) - 1 - len(seen)
    unique = n_permutations <= available
    if not unique:
        logger.warning(
            f"Only {max(available, 0)} distinct relabelings remain for {n_permutations} "
            f"requested permutations; some will be repeated"
        )

    permutations = []
    while len(permutations) < n_permutations:
        permutation = _draw_relabeling(n_subjects, rng, blocks, shuffle, sign_flip)
        if unique:
            key = permutation.key()
            if permutation.is_identity() or key in seen:
                continue
            seen.add(key)
        permutations.append(permutation)

    return permutations


def statistic_to_pvalue(null_distribution: np.ndarray, stats: np.ndarray) -> np.ndarray:
    """FWE-corrected p-values from a maximum-statistic null distribution.

    ``p = (1 + #{null >= s}) / (P + 1)``, so p-values lie in
    ``[1 / (P + 1), 1]``.

    Args:
        null_distribution: Maximum statistic of each of the P permutations.
        stats: Observed statistic per fixel.

    Returns:
        One p-value per fixel.
    """
    null_sorted = np.sort(np.asarray(null_distribution, dtype=np.float64))
    n_permutations = len(null_sorted)
    n_exceeding = n_permutations - np.searchsorted(null_sorted, stats, side="left")
    return (1.0 + n_exceeding) / (n_permutations + 1.0)


def normalise_enhanced(enhanced: np.ndarray, empirical: Optional[np.ndarray]) -> np.ndarray:
    """Divide by the empirical statistic where it is non-zero, 0 elsewhere."""
    if empirical is None:
        return enhanced
    return np.divide(enhanced, empirical, out=np.zeros_like(enhanced), where=empirical > 0)


def _chunk_max_stats(
    glm: GLMTTest,
    enhancer: ConnectivityEnhancer,
    permutations: List[Permutation],
    contrast_index: int,
    empirical: Optional[np.ndarray],
) -> Tuple[np.ndarray, np.ndarray]:
    maxima = np.zeros((2, len(permutations)))
    for i, permutation in enumerate(permutations):
        tvalues = glm(permutation, contrast_index)
        for tail, enhanced in enumerate(enhancer.both_tails(tvalues)):
            maxima[tail, i] = normalise_enhanced(enhanced, empirical).max()
    return maxima[0], maxima[1]


def _chunk_enhanced_sum(
    glm: GLMTTest,
    enhancer: ConnectivityEnhancer,
    permutations: List[Permutation],
    contrast_index: int,
) -> Tuple[np.ndarray, np.ndarray]:
    total = np.zeros(glm.n_fixels)
    count = np.zeros(glm.n_fixels, dtype=np.int64)
    for permutation in permutations:
        enhanced = enhancer(glm(permutation, contrast_index))
        enhanced_fixels = enhanced > 0
        total[enhanced_fixels] += enhanced[enhanced_fixels]
        count += enhanced_fixels
    return total, count


def _chunks(permutations: List[Permutation]) -> List[List[Permutation]]:
    return [
        permutations[start:start + PERMUTATION_CHUNK_SIZE]
        for start in range(0, len(permutations), PERMUTATION_CHUNK_SIZE)
    ]


class PermutationTest:
    """Null distribution and p-values of the enhanced statistic.

    Args:
        glm: T-test engine.
        enhancer: Connectivity-based enhancement.
        contrast_index: Contrast row tested.
        n_jobs: Number of parallel jobs (-1 for all cores).
    """

    def __init__(
        self,
        glm: GLMTTest,
        enhancer: ConnectivityEnhancer,
        contrast_index: int = 0,
        n_jobs: int = 1,
    ):
        self.glm = glm
        self.enhancer = enhancer
        self.contrast_index = contrast_index
        self.n_jobs = n_jobs

    def _map_chunks(self, function, permutations: List[Permutation], *args) -> list:
        chunks = _chunks(permutations)
        if self.n_jobs == 1:
            progress = ProgressCounter(
                logger, "Completed permutations", 1000, total=len(permutations)
            )
            results = []
            for chunk in chunks:
                results.append(function(self.glm, self.enhancer, chunk, self.contrast_index, *args))
                progress.increment(len(chunk))
            return results

        return Parallel(n_jobs=self.n_jobs, verbose=0)(
            delayed(function)(self.glm, self.enhancer, chunk, self.contrast_index, *args)
            for chunk in chunks
        )

    def precompute_empirical(self, permutations: List[Permutation]) -> np.ndarray:
        """Per-fixel empirical statistic for the nonstationarity adjustment.

        The mean positive-tail enhanced statistic of each fixel over the
        ``permutations`` in which it is enhanced at all; fixels never
        enhanced get 0. Fixels in densely connected regions get larger
        values, and dividing by it evens out the enhancement across the
        graph.
        """
        if not permutations:
            raise StatisticalError("Nonstationarity adjustment needs at least one permutation")

        with timer(logger, f"Precomputing empirical statistic ({len(permutations)} permutations)"):
            enhanced_sum = np.zeros(self.glm.n_fixels)
            enhanced_count = np.zeros(self.glm.n_fixels, dtype=np.int64)
            for total, count in self._map_chunks(_chunk_enhanced_sum, permutations):
                enhanced_sum += total
                enhanced_count += count
            empirical = np.divide(
                enhanced_sum, enhanced_count,
                out=np.zeros_like(enhanced_sum), where=enhanced_count > 0,
            )

        return empirical

    def observed(self, empirical: Optional[np.ndarray] = None) -> ObservedStatistics:
        """T-statistic and enhanced statistics of the original labelling."""
        tvalue = self.glm(None, self.contrast_index)
        cfe_pos, cfe_neg = self.enhancer.both_tails(tvalue)
        return ObservedStatistics(
            tvalue=tvalue,
            cfe_pos=normalise_enhanced(cfe_pos, empirical),
            cfe_neg=normalise_enhanced(cfe_neg, empirical),
        )

    def run(
        self,
        permutations: List[Permutation],
        empirical: Optional[np.ndarray] = None,
    ) -> NullDistribution:
        """Build the null distribution of the maximum enhanced statistic.

        Args:
            permutations: Relabelings, one null distribution slot each.
            empirical: Optional nonstationarity scale; enhanced statistics
                are divided by it before taking the maximum.

        Returns:
            The positive and negative tail null distributions.
        """
        if not permutations:
            raise StatisticalError("Permutation testing needs at least one permutation")

        null = NullDistribution(
            positive=np.zeros(len(permutations)),
            negative=np.zeros(len(permutations)),
        )

        with timer(logger, f"Running {len(permutations)} permutations"):
            results = self._map_chunks(_chunk_max_stats, permutations, empirical)
            for chunk_index, (positive, negative) in enumerate(results):
                start = chunk_index * PERMUTATION_CHUNK_SIZE
                null.positive[start:start + len(positive)] = positive
                null.negative[start:start + len(negative)] = negative

        logger.info(
            f"Null distribution: 95th percentile {np.percentile(null.positive, 95):.3f} "
            f"(positive), {np.percentile(null.negative, 95):.3f} (negative)"
        )
        return null
