"""Command-line interface for fixelcfe."""

import argparse
import textwrap
from pathlib import Path
from typing import Any, Dict

from fixelcfe.core.version import __version__


# ANSI color codes for terminal output
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    UNDERLINE = '\033[4m'
    END = '\033[0m'


class ColoredHelpFormatter(argparse.RawDescriptionHelpFormatter):
    """Custom formatter with colored output and better organization."""

    def __init__(self, prog, indent_increment=2, max_help_position=40, width=100):
        super().__init__(prog, indent_increment, max_help_position, width)

    def _format_usage(self, usage, actions, groups, prefix):
        if prefix is None:
            prefix = f'{Colors.BOLD}Usage:{Colors.END} '
        return super()._format_usage(usage, actions, groups, prefix)

    def start_section(self, heading):
        if heading:
            heading = f'{Colors.BOLD}{Colors.CYAN}{heading}{Colors.END}'
        super().start_section(heading)


# Command-line destinations that map onto CFEConfig fields
CONFIG_ARGUMENTS = (
    "n_permutations",
    "notest",
    "negative",
    "sign_flip",
    "exchangeability_blocks",
    "random_seed",
    "n_jobs",
    "cfe_dh",
    "cfe_e",
    "cfe_h",
    "cfe_c",
    "angle",
    "connectivity_threshold",
    "smooth_fwhm",
    "template_mask",
    "nonstationary",
    "n_permutations_nonstationary",
    "n_threads",
    "queue_size",
    "upsample_ratio",
)


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser.

    Options that correspond to configuration fields default to None, so
    that only the options given on the command line override the
    configuration file.

    Returns:
        Configured ArgumentParser instance with detailed help.
    """

    description = textwrap.dedent(f"""
    {Colors.BOLD}{Colors.GREEN}╔══════════════════════════════════════════════════════════════════════════════╗
    ║                                FIXELCFE v{__version__}                                ║
    ║          Connectivity-based Fixel Enhancement with Permutation Testing          ║
    ╚══════════════════════════════════════════════════════════════════════════════╝{Colors.END}

    {Colors.BOLD}Description:{Colors.END}
      fixelcfe performs fixel-based analysis of diffusion MRI data. Subject fixel
      data are smoothed along a fixel-fixel connectivity graph derived from a
      whole-brain tractogram, tested with a general linear model, enhanced with
      connectivity-based fixel enhancement (CFE) and corrected for multiple
      comparisons with nonparametric permutation testing.

    {Colors.BOLD}Workflow:{Colors.END}
      1. Map the tractogram onto the template fixels (fixel-fixel connectivity)
      2. Smooth each subject's fixel data along the connectivity graph
      3. Fit the GLM and compute t-statistics per fixel
      4. Enhance the statistic and build the permutation null distribution
      5. Write FWE-corrected p-values
    """)

    epilog = textwrap.dedent(f"""
    {Colors.BOLD}{Colors.GREEN}═══════════════════════════════════════════════════════════════════════════════{Colors.END}
    {Colors.BOLD}EXAMPLES{Colors.END}
    {Colors.GREEN}═══════════════════════════════════════════════════════════════════════════════{Colors.END}

    {Colors.BOLD}Basic Usage:{Colors.END}
      {Colors.YELLOW}# Group comparison with default settings{Colors.END}
      fixelcfe subjects.txt template/ design.txt contrast.txt tracks.tck output/

    {Colors.BOLD}Reproducible Run:{Colors.END}
      {Colors.YELLOW}# Fixed seed, 8 parallel jobs, negative tail written too{Colors.END}
      fixelcfe subjects.txt template/ design.txt contrast.txt tracks.tck output/ \\
          --seed 42 --n-jobs 8 --negative

    {Colors.BOLD}With Configuration File:{Colors.END}
      {Colors.YELLOW}# Use a YAML configuration file{Colors.END}
      fixelcfe subjects.txt template/ design.txt contrast.txt tracks.tck output/ \\
          --config analysis.yaml

    {Colors.BOLD}Statistics Only:{Colors.END}
      {Colors.YELLOW}# Effect sizes, t-values and CFE without permutation testing{Colors.END}
      fixelcfe subjects.txt template/ design.txt contrast.txt tracks.tck output/ --notest

    {Colors.BOLD}{Colors.GREEN}═══════════════════════════════════════════════════════════════════════════════{Colors.END}
    {Colors.BOLD}CONFIGURATION FILE{Colors.END}
    {Colors.GREEN}═══════════════════════════════════════════════════════════════════════════════{Colors.END}

    Configuration files (YAML or JSON) hold any of the options below, using
    their long names with underscores. Command-line options override them.

    {Colors.BOLD}Example config (YAML):{Colors.END}
      n_permutations: 5000
      cfe_h: 2.0
      cfe_e: 1.0
      cfe_c: 0.1
      smooth_fwhm: 10.0
      random_seed: 42

    {Colors.BOLD}{Colors.GREEN}═══════════════════════════════════════════════════════════════════════════════{Colors.END}
    {Colors.BOLD}OUTPUT STRUCTURE{Colors.END}
    {Colors.GREEN}═══════════════════════════════════════════════════════════════════════════════{Colors.END}

      output_dir/
      ├── index.nii.gz, directions.nii.gz    analysed fixels
      ├── beta0.nii.gz ...                   GLM coefficients
      ├── abs_effect.nii.gz, std_effect.nii.gz, std_dev.nii.gz
      ├── tvalue.nii.gz
      ├── cfe_pos.nii.gz, pvalue_pos.nii.gz
      ├── perm_dist_pos.txt, perm_dist_pos.svg
      └── fixelcfe_config.json

    Every fixel data file has a JSON sidecar. With several contrast rows the
    per-contrast outputs carry a _contrast<k> suffix.

    {Colors.BOLD}{Colors.GREEN}═══════════════════════════════════════════════════════════════════════════════{Colors.END}
      Version:        {__version__}
    """)

    parser = argparse.ArgumentParser(
        prog="fixelcfe",
        description=description,
        epilog=epilog,
        formatter_class=ColoredHelpFormatter,
        add_help=False,
    )

    # =========================================================================
    # REQUIRED ARGUMENTS
    # =========================================================================
    required = parser.add_argument_group(
        f'{Colors.BOLD}Required Arguments{Colors.END}'
    )

    required.add_argument(
        "input_list",
        type=Path,
        metavar="INPUT_LIST",
        help="Text file listing one subject fixel data file per line, relative "
             "to the folder of the list. Each file's directory must contain the "
             "subject's index and directions images.",
    )
    required.add_argument(
        "template_dir",
        type=Path,
        metavar="TEMPLATE",
        help="Template fixel directory. Defines the fixels analysed.",
    )
    required.add_argument(
        "design",
        type=Path,
        metavar="DESIGN",
        help="Design matrix, one row per subject.",
    )
    required.add_argument(
        "contrast",
        type=Path,
        metavar="CONTRAST",
        help="Contrast matrix, one row per contrast.",
    )
    required.add_argument(
        "tracks",
        type=Path,
        metavar="TRACKS",
        help="Whole-brain tractogram (.tck or .trk) in template space.",
    )
    required.add_argument(
        "output_dir",
        type=Path,
        metavar="OUTPUT_DIR",
        help="Output fixel directory. Will be created if it does not exist.",
    )

    # =========================================================================
    # OPTIONAL ARGUMENTS - General
    # =========================================================================
    general = parser.add_argument_group(
        f'{Colors.BOLD}General Options{Colors.END}'
    )

    general.add_argument(
        "-h", "--help",
        action="help",
        default=argparse.SUPPRESS,
        help="Show this help message and exit.",
    )
    general.add_argument(
        "--version",
        action="version",
        version=f"fixelcfe {__version__}",
        help="Show program version and exit.",
    )
    general.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output (DEBUG level logging).",
    )
    general.add_argument(
        "-c", "--config",
        type=Path,
        metavar="FILE",
        help="Path to configuration file (.json, .yaml, or .yml). Command-line "
             "arguments override config file settings.",
    )
    general.add_argument(
        "--log-file",
        type=Path,
        metavar="FILE",
        help="Also write the log to this file.",
    )

    # =========================================================================
    # OPTIONAL ARGUMENTS - Permutation testing
    # =========================================================================
    permutation = parser.add_argument_group(
        f'{Colors.BOLD}Permutation Testing{Colors.END}'
    )

    permutation.add_argument(
        "--nperms",
        type=int,
        metavar="N",
        dest="n_permutations",
        help="Number of permutations (default: 5000).",
    )
    permutation.add_argument(
        "--notest",
        action="store_const",
        const=True,
        help="Only compute the population statistics, skip permutation testing.",
    )
    permutation.add_argument(
        "--negative",
        action="store_const",
        const=True,
        help="Also write the negative tail (CFE, p-values, null distribution).",
    )
    permutation.add_argument(
        "--sign-flip",
        action="store_const",
        const=True,
        dest="sign_flip",
        help="Also flip signs (symmetric errors). Enabled automatically when "
             "all design rows are identical.",
    )
    permutation.add_argument(
        "--blocks",
        type=Path,
        metavar="FILE",
        dest="exchangeability_blocks",
        help="Exchangeability blocks, one integer per subject. Subjects are "
             "only shuffled within their block.",
    )
    permutation.add_argument(
        "--seed",
        type=int,
        metavar="SEED",
        dest="random_seed",
        help="Random seed for reproducible permutations.",
    )
    permutation.add_argument(
        "-j", "--n-jobs",
        type=int,
        metavar="N",
        dest="n_jobs",
        help="Number of parallel permutation jobs, -1 for all cores (default: 1).",
    )
    permutation.add_argument(
        "--nonstationary",
        action="store_const",
        const=True,
        help="Apply the nonstationarity adjustment.",
    )
    permutation.add_argument(
        "--nperms-nonstationary",
        type=int,
        metavar="N",
        dest="n_permutations_nonstationary",
        help="Permutations used to precompute the empirical statistic for the "
             "nonstationarity adjustment (default: 5000).",
    )

    # =========================================================================
    # OPTIONAL ARGUMENTS - Enhancement
    # =========================================================================
    cfe = parser.add_argument_group(
        f'{Colors.BOLD}Connectivity-based Fixel Enhancement{Colors.END}'
    )

    cfe.add_argument("--cfe-dh", type=float, metavar="VALUE", dest="cfe_dh",
                     help="Height increment of the CFE integration (default: 0.1).")
    cfe.add_argument("--cfe-e", type=float, metavar="VALUE", dest="cfe_e",
                     help="CFE extent exponent (default: 1.0).")
    cfe.add_argument("--cfe-h", type=float, metavar="VALUE", dest="cfe_h",
                     help="CFE height exponent (default: 2.0).")
    cfe.add_argument("--cfe-c", type=float, metavar="VALUE", dest="cfe_c",
                     help="CFE connectivity exponent (default: 0.1).")

    # =========================================================================
    # OPTIONAL ARGUMENTS - Connectivity and smoothing
    # =========================================================================
    connectivity = parser.add_argument_group(
        f'{Colors.BOLD}Connectivity and Smoothing{Colors.END}'
    )

    connectivity.add_argument(
        "--angle",
        type=float,
        metavar="DEGREES",
        help="Maximum angle between a streamline tangent (or a subject fixel) "
             "and a template fixel (default: 30).",
    )
    connectivity.add_argument(
        "--connectivity",
        type=float,
        metavar="VALUE",
        dest="connectivity_threshold",
        help="Fraction of shared streamlines below which a connection is "
             "dropped (default: 0.01).",
    )
    connectivity.add_argument(
        "--smooth",
        type=float,
        metavar="FWHM",
        dest="smooth_fwhm",
        help="FWHM (mm) of the connectivity-based smoothing, 0 to disable "
             "(default: 10).",
    )
    connectivity.add_argument(
        "--mask",
        type=Path,
        metavar="FILE",
        dest="template_mask",
        help="Fixel data file of the template; only fixels with a non-zero "
             "value are analysed.",
    )
    connectivity.add_argument(
        "--threads",
        type=int,
        metavar="N",
        dest="n_threads",
        help="Worker threads per stage of the tractogram mapping (default: 4).",
    )
    connectivity.add_argument(
        "--queue-size",
        type=int,
        metavar="N",
        dest="queue_size",
        help="Capacity of the tractogram mapping queues (default: 1024).",
    )
    connectivity.add_argument(
        "--upsample",
        type=float,
        metavar="RATIO",
        dest="upsample_ratio",
        help="Resample streamlines to voxel_size / RATIO (default: 3).",
    )

    return parser


def config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration values given on the command line."""
    return {
        name: getattr(args, name)
        for name in CONFIG_ARGUMENTS
        if getattr(args, name, None) is not None
    }
