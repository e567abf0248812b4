"""Default configuration dataclass for fixelcfe."""

from dataclasses import dataclass
from typing import Optional
from pathlib import Path


# Conversion factor between Gaussian FWHM and standard deviation
FWHM_TO_SIGMA = 2.3548


@dataclass
class CFEConfig:
    """Configuration for a connectivity-based fixel enhancement analysis.

    Attributes:
        n_permutations: Number of permutations used to build the null
            distribution.
        cfe_dh: Height increment used in the CFE integration.
        cfe_e: CFE extent exponent.
        cfe_h: CFE height exponent.
        cfe_c: CFE connectivity exponent, applied to every connectivity value.
        angle: Maximum angle (degrees) between a streamline tangent or a
            subject fixel and a template fixel for them to correspond.
        connectivity_threshold: Fraction of shared streamlines below which a
            fixel-fixel connection is dropped.
        smooth_fwhm: FWHM (mm) of the Gaussian used to smooth fixel data
            along the connectivity graph. 0 disables smoothing.
        nonstationary: Perform the nonstationarity adjustment.
        n_permutations_nonstationary: Number of permutations used to
            precompute the empirical statistic for the nonstationarity
            adjustment.
        notest: Only output population statistics, skip permutation testing.
        negative: Also write the negative tail (enhanced statistic, p-values
            and null distribution).
        sign_flip: Use sign flipping (symmetric errors) in addition to
            shuffling.
        exchangeability_blocks: Optional text file with one block label per
            subject; subjects are only shuffled within their block.
        template_mask: Optional fixel data file inside the template
            directory; only fixels with a non-zero value are analysed.
        random_seed: Seed of the permutation generator. None draws fresh
            entropy.
        n_jobs: Number of parallel jobs for permutation testing.
        n_threads: Number of worker threads in each stage of the
            connectivity pipeline.
        queue_size: Capacity of each queue in the connectivity pipeline.
        upsample_ratio: Streamlines are resampled to at most
            voxel_size / upsample_ratio between consecutive points.
    """

    # Permutation testing
    n_permutations: int = 5000
    notest: bool = False
    negative: bool = False
    sign_flip: bool = False
    exchangeability_blocks: Optional[Path] = None
    random_seed: Optional[int] = None
    n_jobs: int = 1

    # Connectivity-based fixel enhancement
    cfe_dh: float = 0.1
    cfe_e: float = 1.0
    cfe_h: float = 2.0
    cfe_c: float = 0.1

    # Fixel correspondence and connectivity
    angle: float = 30.0
    connectivity_threshold: float = 0.01
    smooth_fwhm: float = 10.0
    template_mask: Optional[Path] = None

    # Nonstationarity adjustment
    nonstationary: bool = False
    n_permutations_nonstationary: int = 5000

    # Connectivity pipeline resources
    n_threads: int = 4
    queue_size: int = 1024
    upsample_ratio: float = 3.0

    @property
    def smooth_sigma(self) -> float:
        """Standard deviation (mm) of the smoothing kernel."""
        return self.smooth_fwhm / FWHM_TO_SIGMA

    def validate(self) -> None:
        """Validate configuration parameters.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        from fixelcfe.config.validator import ConfigValidator

        validator = ConfigValidator()

        validator.validate_integer(self.n_permutations, "n_permutations")
        validator.validate_integer(
            self.n_permutations_nonstationary, "n_permutations_nonstationary"
        )
        validator.validate_integer(self.n_threads, "n_threads")
        validator.validate_integer(self.queue_size, "queue_size")

        validator.validate_positive(self.cfe_dh, "cfe_dh")
        validator.validate_non_negative(self.cfe_e, "cfe_e")
        validator.validate_non_negative(self.cfe_h, "cfe_h")
        validator.validate_non_negative(self.cfe_c, "cfe_c")
        validator.validate_range(self.angle, 0.0, 90.0, "angle")
        validator.validate_range(
            self.connectivity_threshold, 0.0, 1.0, "connectivity_threshold"
        )
        validator.validate_non_negative(self.smooth_fwhm, "smooth_fwhm")
        validator.validate_positive(self.upsample_ratio, "upsample_ratio")

        # joblib convention: -1 uses all cores, 0 is meaningless
        if isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, int) or self.n_jobs == 0:
            validator.errors.append(
                f"n_jobs must be a non-zero integer, got {self.n_jobs!r}"
            )

        if self.exchangeability_blocks is not None:
            validator.validate_file_exists(
                self.exchangeability_blocks, "exchangeability_blocks"
            )

        validator.raise_if_errors()
