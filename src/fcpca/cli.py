"""
fcpca — common principal components of a grouped table.

    fcpca iris.csv --group Species
    fcpca iris.csv --group Species --scale --max-iterations 50
    fcpca obs.parquet --group site --columns x y z --output out/ --format parquet
    fcpca obs.csv --group site --config cpc.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import polars as pl
import yaml
from pydantic import ValidationError

from fcpca.analysis import fcpca
from fcpca.config import CPCConfig
from fcpca.errors import InvalidInputError


def _read_table(path: Path) -> pl.DataFrame:
    if path.suffix.lower() == '.parquet':
        return pl.read_parquet(path)
    return pl.read_csv(path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fcpca',
        description="Flury's common principal component analysis of grouped observations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  fcpca iris.csv --group Species                   Print lambda and explained variance
  fcpca iris.csv --group Species --output out/     Also write loadings/lambda/exp_var/scores
  fcpca obs.csv --group site --init pooled         Start from pooled-covariance eigenvectors
""",
    )
    parser.add_argument('input', type=Path, help='CSV or parquet file, one row per observation')
    parser.add_argument('--group', required=True, help='Group label column')
    parser.add_argument('--columns', nargs='+', default=None,
                        help='Variables to analyse (default: all numeric columns)')
    parser.add_argument('--config', type=Path, default=None, help='YAML config file')
    parser.add_argument('--scale', action='store_true', default=None,
                        help='Scale variables to unit variance within groups')
    parser.add_argument('--max-iterations', type=int, default=None, help='Sweep budget (default 15)')
    parser.add_argument('--tolerance', type=float, default=None, help='Angle tolerance in radians')
    parser.add_argument('--init', choices=['identity', 'pooled'], default=None,
                        help='Starting loadings')
    parser.add_argument('--weighting', choices=['count', 'fraction', 'equal'], default=None,
                        help='Group weights')
    parser.add_argument('--sort', action='store_true', default=None,
                        help='Order Dims by descending weighted mean variance')
    parser.add_argument('--decimals', type=int, default=None,
                        help='Round group variances (classic output: 3)')
    parser.add_argument('--output', type=Path, default=None, help='Directory for result tables')
    parser.add_argument('--format', choices=['csv', 'parquet'], default='csv', help='Output format')
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument('--quiet', action='store_true', help='Only print warnings and errors')
    verbosity.add_argument('--verbose', action='store_true', help='Log every sweep')
    return parser


def _config_from_args(args: argparse.Namespace) -> CPCConfig:
    config = CPCConfig.from_yaml(args.config) if args.config else CPCConfig()
    overrides = {
        'scale': args.scale,
        'max_iterations': args.max_iterations,
        'tolerance': args.tolerance,
        'init': args.init,
        'weighting': args.weighting,
        'lambda_decimals': args.decimals,
        'sort_components': args.sort,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        config = CPCConfig.model_validate({**config.model_dump(), **overrides})
    return config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING if args.quiet else logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')

    if not args.input.exists():
        print(f"fcpca: input not found: {args.input}", file=sys.stderr)
        return 2

    try:
        config = _config_from_args(args)
        df = _read_table(args.input)
        res = fcpca(df, group_col=args.group, columns=args.columns, config=config)
    except (InvalidInputError, ValidationError, yaml.YAMLError, pl.exceptions.PolarsError, OSError) as e:
        print(f"fcpca: {e}", file=sys.stderr)
        return 2

    print(res.summary())
    with pl.Config(tbl_rows=-1, tbl_cols=-1):
        print("lambda")
        print(res.lambda_frame())
        print("\nexp_var (%)")
        print(res.explained_variance_frame())

    if args.output is not None:
        paths = res.write(args.output, fmt=args.format)
        print(f"\nWrote {len(paths)} tables to {args.output}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
