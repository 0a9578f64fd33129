#!/usr/bin/env python3
'''
Outage health command line

Runs the Medi-Cal cohort extraction or renders the descriptive figures.

Usage:
    outage-health extract --config config/study_2018.yaml --database medicaid.duckdb
    outage-health figures --config config/study_2018.yaml --data-dir data/
'''

import argparse
import sys
from pathlib import Path
import logging

from .claims import DuckDBClaimsSource
from .exceptions import OutageHealthError
from .extraction import CohortExtractor, ExtractionPlan, pivot_daily_counts, save_results
from .figures import FigureRenderer
from .models import ClaimsColumns
from .utils.config import StudyConfig

logger = logging.getLogger(__name__)


def run_extract(config: StudyConfig, args) -> int:
    '''Count every cohort in the configured plan and write the results.'''
    database = args.database or config.claims.database
    if not database:
        logger.error("No claims database given (--database or claims.database in config)")
        return 2

    plan = ExtractionPlan.from_config(config)
    logger.info(f"Extraction plan: {len(plan.windows)} window(s), {len(plan)} cohort queries")

    source = DuckDBClaimsSource.connect(
        database,
        config.claims.table_name,
        columns=ClaimsColumns.from_dict(config.claims.columns),
        date_format=config.claims.date_format,
    )
    try:
        extractor = CohortExtractor(source, max_workers=args.workers or config.max_workers)
        results = extractor.run(plan)
    finally:
        source.close()

    output_dir = Path(args.output or config.output_dir)
    save_results(results, str(output_dir / 'cohort_counts_long.csv'))
    save_results(pivot_daily_counts(results), str(output_dir / 'cohort_counts_daily.csv'))

    return 1 if results['error'].notna().any() else 0


def run_figures(config: StudyConfig, args) -> int:
    '''Render every descriptive figure.'''
    if args.data_dir:
        config.data_dir = args.data_dir
    if args.figure_dir:
        config.figure_dir = args.figure_dir

    paths = FigureRenderer(config).render_all()
    return 0 if all(path is not None for path in paths.values()) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Power outage and Medi-Cal hospitalization analysis')
    parser.add_argument('--config', default='config/study_2018.yaml', help='Study configuration YAML')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    commands = parser.add_subparsers(dest='command', required=True)

    extract = commands.add_parser('extract', help='Count Medi-Cal cohorts for every outage window')
    extract.add_argument('--database', help='DuckDB file holding the claims table')
    extract.add_argument('--workers', type=int, help='Concurrent cohort queries')
    extract.add_argument('--output', help='Output directory for cohort counts')
    extract.set_defaults(handler=run_extract)

    figures = commands.add_parser('figures', help='Render the descriptive figures')
    figures.add_argument('--data-dir', help='Directory holding the input CSVs')
    figures.add_argument('--figure-dir', help='Output directory for figures')
    figures.set_defaults(handler=run_figures)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    try:
        config = StudyConfig.from_yaml(args.config)
    except (OSError, OutageHealthError) as e:
        logger.error(f"Could not load configuration: {e}")
        return 2
    if not config.validate():
        return 2

    logger.info(f"Starting {args.command} with configuration {args.config}")
    try:
        return args.handler(config, args)
    except OutageHealthError as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
