"""
Genomic offset analysis from the command line
"""
import sys
from typing import Optional, Sequence

from .utils import parse_args, normalize_outputs, split_columns
from ..pipelines.offset import GenomicOffsetPipeline


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        outputs = normalize_outputs(args.outputs)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    pipeline = GenomicOffsetPipeline(output_dir=args.outputdir, verbose=not args.quiet)
    try:
        pipeline.load_data(
            genotype_file=args.genotype,
            environment_file=args.environment,
            predicted_environment_file=args.predicted_environment,
            fitness_file=args.fitness,
            env_columns=split_columns(args.env_columns),
            id_column=args.id_column,
            fitness_column=args.fitness_column,
            population_column=args.population_column,
        )
        pipeline.run(
            K=args.K,
            lambda_=args.lambda_,
            scale=args.scale,
            svd_solver=args.svd_solver,
            full=not args.single,
            calibrate=args.calibrate,
            variable=args.variable,
            q=args.fdr,
            fdr_method=args.fdr_method,
            loci=args.loci,
            allow_all_loci_fallback=args.allow_all_loci_fallback,
            impute=args.impute,
            max_dosage=args.max_genotype_dosage,
            cpu=args.cpu,
            batch_size=args.batch_size,
            outputs=outputs,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
