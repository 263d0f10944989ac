import argparse
from typing import List, Optional, Sequence

from ..pipelines.offset import OUTPUT_CHOICES, LOCI_CHOICES
from ..association.lfmm2 import DEFAULT_LAMBDA, SVD_SOLVERS
from ..association.selection import FDR_METHODS


def normalize_outputs(outputs: Optional[Sequence[str]]) -> List[str]:
    """Normalize output selections with comma splitting and deduplication."""
    if not outputs:
        return list(OUTPUT_CHOICES)

    normalized = []
    seen = set()
    for item in outputs:
        for part in str(item).split(','):
            part = part.strip().lower()
            if not part:
                continue
            if part not in OUTPUT_CHOICES:
                raise ValueError(f"Invalid output choice: {part}")
            if part not in seen:
                normalized.append(part)
                seen.add(part)

    return normalized if normalized else list(OUTPUT_CHOICES)


def split_columns(value: Optional[str]) -> Optional[List[str]]:
    """'a, b,c' -> ['a', 'b', 'c']; None stays None"""
    if not value:
        return None
    columns = [c.strip() for c in value.split(',') if c.strip()]
    return columns or None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments for the genomic offset pipeline"""
    parser = argparse.ArgumentParser(
        description="Genomic offset analysis with latent factor mixed models (LFMM2)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Required arguments
    parser.add_argument("--genotype", "-g", required=True,
                       help="Genotype file (CSV/TSV with ID column and one column per locus)")
    parser.add_argument("--environment", "-e", required=True,
                       help="Current environment file (CSV/TSV with ID column and variables)")
    parser.add_argument("--predicted-environment", "-p", required=True,
                       help="Predicted environment file with the same variables")

    # Optional inputs
    parser.add_argument("--fitness", default=None,
                       help="Optional fitness file for offset validation")
    parser.add_argument("--fitness-column", default=None,
                       help="Fitness column (first value column when omitted)")
    parser.add_argument("--id-column", default='ID',
                       help="Column name for unit IDs in every file")
    parser.add_argument("--env-columns", default=None,
                       help="Comma-separated environmental variables to use")
    parser.add_argument("--population-column", default=None,
                       help="Column of the environment file holding population labels")
    parser.add_argument("--outputdir", "-o", default="./offset_results",
                       help="Output directory")

    # Model
    parser.add_argument("--K", "-K", type=int, default=3, dest='K',
                       help="Number of latent factors")
    parser.add_argument("--lambda", type=float, default=DEFAULT_LAMBDA, dest='lambda_',
                       help="Ridge regularization parameter")
    parser.add_argument("--scale", action='store_true',
                       help="Standardize environmental variables")
    parser.add_argument("--svd-solver", default='full', choices=list(SVD_SOLVERS),
                       help="SVD solver for the latent factors")
    parser.add_argument("--impute", default='major', choices=['major', 'mean'],
                       help="Missing genotype imputation")
    parser.add_argument("--max-genotype-dosage", type=float, default=2.0,
                       help="Max dosage (e.g. 2 for diploid, 1 for allele frequencies)")

    # Tests and selection
    parser.add_argument("--single", action='store_true',
                       help="Per-variable t-tests instead of the joint F-test")
    parser.add_argument("--no-calibrate", action='store_false', dest='calibrate',
                       help="Do not calibrate statistics with the genomic inflation factor")
    parser.add_argument("--variable", type=int, default=None,
                       help="Variable index reported in single-variable mode (0-based)")
    parser.add_argument("--fdr", "-q", type=float, default=0.1,
                       help="Target false discovery rate for candidate loci")
    parser.add_argument("--fdr-method", default='bh', choices=list(FDR_METHODS),
                       help="FDR procedure")
    parser.add_argument("--cpu", type=int, default=1,
                       help="Threads used for association tests")

    # Offsets
    parser.add_argument("--loci", default='both', choices=list(LOCI_CHOICES),
                       help="Locus sets used for offsets")
    parser.add_argument("--allow-all-loci-fallback", action='store_true',
                       help="Use all loci when no candidate passes the FDR level")
    parser.add_argument("--batch-size", type=int, default=10000,
                       help="Units per offset batch")

    # Output
    parser.add_argument("--outputs", nargs='+',
                       default=list(OUTPUT_CHOICES),
                       help=f"Outputs to generate ({', '.join(OUTPUT_CHOICES)})")
    parser.add_argument("--quiet", action='store_true',
                       help="Suppress progress messages")

    parser.set_defaults(calibrate=True)

    return parser.parse_args(argv)
