"""Fixel-based analysis pipeline orchestration.

This module runs the complete connectivity-based fixel enhancement
analysis, from the template fixels and the tractogram to the corrected
p-values.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from fixelcfe.config.defaults import CFEConfig
from fixelcfe.config.loader import save_config
from fixelcfe.connectivity.builder import build_connectivity
from fixelcfe.connectivity.normalization import normalise_connectivity
from fixelcfe.core.version import __version__
from fixelcfe.fixels.index import FixelIndex
from fixelcfe.fixels.subject_data import load_subject_data
from fixelcfe.io.fixels import load_fixel_data, load_fixel_directory
from fixelcfe.io.readers import (
    load_exchangeability_blocks,
    load_matrix_file,
    load_tracks,
    read_subject_list,
)
from fixelcfe.io.writers import save_fixel_outputs, save_fixel_template, save_null_distribution
from fixelcfe.statistics.enhancement import ConnectivityEnhancer
from fixelcfe.statistics.glm import (
    GLMTTest,
    abs_effect_size,
    check_glm_inputs,
    solve_betas,
    std_effect_size,
    stdev,
)
from fixelcfe.statistics.permutation import (
    PermutationTest,
    generate_permutations,
    requires_sign_flipping,
    statistic_to_pvalue,
)
from fixelcfe.utils.exceptions import FixelDataError
from fixelcfe.utils.logging import log_section, timer
from fixelcfe.utils.visualization import plot_design_matrix

CONFIG_FILENAME = "fixelcfe_config.json"


def run_fixelcfe_pipeline(
    input_list: Path,
    template_dir: Path,
    design_path: Path,
    contrast_path: Path,
    tracks_path: Path,
    output_dir: Path,
    config: Optional[CFEConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, List[Path]]:
    """Run the complete connectivity-based fixel enhancement analysis.

    This function orchestrates:
    1. Building the template fixel index (optionally masked)
    2. Mapping the tractogram onto fixels to count fixel-fixel connections
    3. Normalizing the connectivity and deriving smoothing weights
    4. Loading and smoothing the subject data
    5. Fitting the GLM (betas, effect sizes, standard deviation, t-values)
    6. Precomputing the empirical statistic (nonstationarity adjustment)
    7. Permutation testing and FWE-corrected p-values
    8. Saving all outputs with JSON sidecars

    Nothing is written before every computation has succeeded.

    Args:
        input_list: Text file listing one subject fixel data file per line.
        template_dir: Template fixel directory (index and directions).
        design_path: Design matrix file, one row per subject.
        contrast_path: Contrast matrix file, one row per contrast.
        tracks_path: Tractogram (.tck or .trk) in template space.
        output_dir: Output fixel directory.
        config: CFEConfig instance. If None, defaults are used.
        logger: Logger instance. If None, creates one.

    Returns:
        Dictionary with keys mapping to lists of output file paths:
            - 'fixel_data': Fixel data files
            - 'null_distributions': Permutation null distributions
            - 'config': Saved configuration

    Raises:
        ConfigurationError: If the configuration or input matrices are invalid.
        FixelDataError: If fixel inputs are missing or inconsistent.
        ConnectivityError: If the tractogram is empty or unreadable.
        StatisticalError: If the GLM inputs are inconsistent.

    Example:
        >>> config = CFEConfig(n_permutations=1000, random_seed=42)
        >>> outputs = run_fixelcfe_pipeline(
        ...     Path("subjects.txt"), Path("template"), Path("design.txt"),
        ...     Path("contrast.txt"), Path("tracks.tck"), Path("output"), config,
        ... )
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    if config is None:
        config = CFEConfig()

    config.validate()
    output_dir = Path(output_dir)
    template_dir = Path(template_dir)

    with timer(logger, "Connectivity-based fixel enhancement"):
        # === Step 1: Inputs ===
        log_section(logger, "Inputs")

        subject_files = read_subject_list(input_list)
        design = load_matrix_file(design_path)
        contrast = check_glm_inputs(design, load_matrix_file(contrast_path), len(subject_files))
        logger.info(
            f"Design matrix: {design.shape[0]} subjects x {design.shape[1]} regressors, "
            f"{contrast.shape[0]} contrast(s)"
        )

        blocks = None
        if config.exchangeability_blocks is not None:
            blocks = load_exchangeability_blocks(config.exchangeability_blocks, len(subject_files))

        template = load_fixel_directory(template_dir)
        mask = None
        if config.template_mask is not None:
            mask_path = _resolve_template_file(template_dir, config.template_mask)
            mask = load_fixel_data(mask_path, template.n_fixels)
        fixel_index = FixelIndex.from_fixel_directory(template, mask=mask)

        # === Step 2: Connectivity ===
        log_section(logger, "Fixel-Fixel Connectivity")

        streamlines, n_tracks = load_tracks(tracks_path)
        with timer(logger, "Computing fixel-fixel connectivity"):
            raw = build_connectivity(
                fixel_index,
                streamlines,
                n_tracks,
                angular_threshold=config.angle,
                n_threads=config.n_threads,
                queue_size=config.queue_size,
                upsample_ratio=config.upsample_ratio,
            )

        with timer(logger, "Normalising and thresholding fixel-fixel connectivity"):
            connectivity, smoothing = normalise_connectivity(
                raw.symmetrise(),
                raw.density,
                fixel_index.positions,
                connectivity_threshold=config.connectivity_threshold,
                smooth_sigma=config.smooth_sigma,
                cfe_c=config.cfe_c,
            )
        del raw

        # === Step 3: Subject data ===
        log_section(logger, "Subject Data")

        with timer(logger, "Loading and smoothing subject data"):
            data = load_subject_data(
                fixel_index, subject_files, smoothing, angular_threshold=config.angle
            )

        # === Step 4: GLM ===
        log_section(logger, "Statistical Modeling")

        metadata = _provenance(
            config, input_list, template_dir, design_path, contrast_path, tracks_path,
            n_subjects=len(subject_files), n_fixels=len(fixel_index),
        )
        multiple = contrast.shape[0] > 1

        with timer(logger, "Computing beta coefficients and effect sizes"):
            fixel_outputs = {}
            betas = solve_betas(data, design)
            for i in range(betas.shape[1]):
                fixel_outputs[f"beta{i}"] = betas[:, i]
            abs_effect = abs_effect_size(data, design, contrast)
            std_effect = std_effect_size(data, design, contrast)
            fixel_outputs["std_dev"] = stdev(data, design)
            for k in range(contrast.shape[0]):
                suffix = _contrast_suffix(k, multiple)
                fixel_outputs[f"abs_effect{suffix}"] = abs_effect[:, k]
                fixel_outputs[f"std_effect{suffix}"] = std_effect[:, k]

        glm = GLMTTest(data, design, contrast)
        enhancer = ConnectivityEnhancer(
            connectivity, dh=config.cfe_dh, e=config.cfe_e, h=config.cfe_h
        )

        # === Step 5: Permutations ===
        rng = np.random.default_rng(config.random_seed)
        shuffle = True
        sign_flip = config.sign_flip
        if requires_sign_flipping(design):
            logger.info("All design rows are identical: using sign flipping only")
            shuffle, sign_flip = False, True

        empirical_permutations = []
        if config.nonstationary:
            empirical_permutations = generate_permutations(
                config.n_permutations_nonstationary, len(subject_files), rng,
                blocks=blocks, shuffle=shuffle, sign_flip=sign_flip,
            )
        permutations = []
        if not config.notest:
            permutations = generate_permutations(
                config.n_permutations, len(subject_files), rng,
                blocks=blocks, shuffle=shuffle, sign_flip=sign_flip,
                exclude={permutation.key() for permutation in empirical_permutations},
            )

        null_distributions = {}
        for k in range(contrast.shape[0]):
            suffix = _contrast_suffix(k, multiple)
            if multiple:
                log_section(logger, f"Contrast {k}")

            test = PermutationTest(glm, enhancer, contrast_index=k, n_jobs=config.n_jobs)

            empirical = None
            if config.nonstationary:
                empirical = test.precompute_empirical(empirical_permutations)
                fixel_outputs[f"cfe_empirical{suffix}"] = empirical

            with timer(logger, "Computing observed statistics"):
                observed = test.observed(empirical)
            fixel_outputs[f"tvalue{suffix}"] = observed.tvalue
            fixel_outputs[f"cfe_pos{suffix}"] = observed.cfe_pos
            if config.negative:
                fixel_outputs[f"cfe_neg{suffix}"] = observed.cfe_neg

            if config.notest:
                continue

            null = test.run(permutations, empirical)
            fixel_outputs[f"pvalue_pos{suffix}"] = statistic_to_pvalue(
                null.positive, observed.cfe_pos
            )
            null_distributions[f"perm_dist_pos{suffix}"] = null.positive
            if config.negative:
                fixel_outputs[f"pvalue_neg{suffix}"] = statistic_to_pvalue(
                    null.negative, observed.cfe_neg
                )
                null_distributions[f"perm_dist_neg{suffix}"] = null.negative

            _log_significance(logger, fixel_outputs, suffix, config.negative)

        # === Step 6: Outputs ===
        log_section(logger, "Saving Outputs")

        save_fixel_template(fixel_index, output_dir)
        saved = save_fixel_outputs(fixel_outputs, output_dir, metadata)

        null_paths = []
        for name, null_distribution in null_distributions.items():
            null_paths.append(save_null_distribution(
                null_distribution, output_dir / f"{name}.txt", metadata
            ))

        plot_design_matrix(design, output_path=output_dir / "design_matrix.svg")

        config_path = output_dir / CONFIG_FILENAME
        save_config(config, config_path)

        # === Summary ===
        log_section(logger, "Summary")
        logger.info(f"Analysed {len(fixel_index)} fixels in {len(subject_files)} subjects")
        logger.info(f"Outputs saved to: {output_dir}")

    return {
        'fixel_data': list(saved.values()),
        'null_distributions': null_paths,
        'config': [config_path],
    }


def _contrast_suffix(index: int, multiple: bool) -> str:
    return f"_contrast{index}" if multiple else ""


def _resolve_template_file(template_dir: Path, path: Path) -> Path:
    """Resolve a file given relative to the template directory."""
    path = Path(path)
    if path.exists():
        return path
    candidate = template_dir / path
    if candidate.exists():
        return candidate
    raise FixelDataError(f"Template mask not found: {path}")


def _provenance(
    config: CFEConfig,
    input_list: Path,
    template_dir: Path,
    design_path: Path,
    contrast_path: Path,
    tracks_path: Path,
    n_subjects: int,
    n_fixels: int,
) -> Dict[str, Any]:
    """Metadata shared by every output sidecar."""
    return {
        "Software": "fixelcfe",
        "Version": __version__,
        "InputList": str(input_list),
        "Template": str(template_dir),
        "Design": str(design_path),
        "Contrast": str(contrast_path),
        "Tracks": str(tracks_path),
        "NumberOfSubjects": n_subjects,
        "NumberOfTemplateFixels": n_fixels,
        "NumberOfPermutations": 0 if config.notest else config.n_permutations,
        "CFE": {
            "dh": config.cfe_dh,
            "E": config.cfe_e,
            "H": config.cfe_h,
            "C": config.cfe_c,
        },
        "AngularThreshold": config.angle,
        "ConnectivityThreshold": config.connectivity_threshold,
        "SmoothingFWHM": config.smooth_fwhm,
        "Nonstationary": config.nonstationary,
        "RandomSeed": config.random_seed,
    }


def _log_significance(
    logger: logging.Logger,
    fixel_outputs: Dict[str, np.ndarray],
    suffix: str,
    negative: bool,
    alpha: float = 0.05,
) -> None:
    tails = {"pos": "positive", "neg": "negative"}
    if not negative:
        del tails["neg"]
    for tail, name in tails.items():
        pvalues = fixel_outputs[f"pvalue_{tail}{suffix}"]
        logger.info(
            f"  {int(np.count_nonzero(pvalues < alpha))} fixels with "
            f"FWE-corrected p < {alpha} ({name} tail)"
        )
