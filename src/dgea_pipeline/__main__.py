"""Command line entry point: ``python -m dgea_pipeline [config.yaml]``."""

import argparse
import logging
import sys
from pathlib import Path

from .config import Config, get_config, set_config
from .counts import CountDataError
from .deseq2 import DESeq2Error
from .pipeline import PipelineError, PipelineStatus, run_pipeline
from .validation import ValidationError


logger = logging.getLogger("dgea_pipeline")

EXIT_AWAITING_EXCLUSION_LIST = 2


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description='Differential gene expression analysis of htseq-count files with DESeq2'
    )
    parser.add_argument('config', nargs='?', type=Path,
                        help='YAML configuration (default: ./dgea.yaml if present)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='logging level (default: INFO)')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    if args.config is not None:
        set_config(Config.from_yaml(args.config))
    config = get_config()

    try:
        run = run_pipeline(config)
    except (CountDataError, ValidationError, DESeq2Error, PipelineError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    if run.status is PipelineStatus.AWAITING_EXCLUSION_LIST:
        return EXIT_AWAITING_EXCLUSION_LIST

    for result in run.contrasts:
        logger.info(
            f"{result.contrast.name} (reference {result.reference}): "
            f"{result.n_significant} DE genes, {result.n_significant_shrunk} after shrinkage"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
