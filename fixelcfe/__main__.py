"""Main entry point for fixelcfe."""

import sys

from fixelcfe.cli import config_overrides, create_parser
from fixelcfe.config.defaults import CFEConfig
from fixelcfe.config.loader import config_from_dict, load_config_file, merge_configs
from fixelcfe.core.pipeline import run_fixelcfe_pipeline
from fixelcfe.core.version import __version__
from fixelcfe.utils.logging import log_config, setup_logging


def main(argv=None):
    """Main entry point for fixelcfe.

    Parses command-line arguments, builds the configuration (defaults, then
    the configuration file, then command-line options) and runs the
    analysis.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    logger = setup_logging(verbose=args.verbose, log_file=args.log_file)

    logger.info("=" * 60)
    logger.info(f"fixelcfe v{__version__}")
    logger.info("=" * 60)

    try:
        config_dict = {}
        if args.config:
            logger.info(f"Loading configuration from: {args.config}")
            config_dict = load_config_file(args.config)
        else:
            logger.info("Using default configuration")

        config = config_from_dict(merge_configs(config_dict, config_overrides(args)), CFEConfig)
        config.validate()
        log_config(logger, config.__dict__)

        run_fixelcfe_pipeline(
            input_list=args.input_list,
            template_dir=args.template_dir,
            design_path=args.design,
            contrast_path=args.contrast,
            tracks_path=args.tracks,
            output_dir=args.output_dir,
            config=config,
            logger=logger,
        )

        logger.info("=" * 60)
        logger.info("Analysis completed successfully!")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Analysis failed: {e}")
        if args.verbose:
            logger.exception("Full traceback:")
        sys.exit(1)


if __name__ == "__main__":
    main()
