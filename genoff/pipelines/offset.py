"""
Genomic Offset Pipeline Module

This module wraps the genomic offset workflow in a reusable pipeline class:
data loading, unit alignment, genotype preparation, latent factor fitting,
association testing, candidate selection, offset computation and the
optional comparison against measured fitness.
"""

import time
import warnings
import numpy as np
import pandas as pd
from pathlib import Path
from typing import List, Optional, Dict, Sequence, Tuple

from ..data.loaders import (
    load_genotype_table, load_environment_file, load_fitness_file,
    load_population_labels, match_units
)
from ..utils.stats import (
    calculate_maf_from_genotypes,
    genomic_inflation_factor,
    pearson_correlation
)
from ..utils.data_types import (
    CandidateSet, LatentFactorModel, LocusTestResults, OffsetResult,
    as_matrix, impute_missing_genotypes
)
from ..utils.exceptions import EmptyCandidateSet, InvalidParameter, UnfittedModel
from ..association.lfmm2 import GENOFF_LFMM2, DEFAULT_LAMBDA
from ..association.lfmm2_test import GENOFF_LFMM2_Test
from ..association.selection import select_candidate_loci
from ..offset.genetic_gap import GENOFF_GeneticGap, population_offsets

OUTPUT_CHOICES: Tuple[str, ...] = (
    'locus_pvalues',
    'candidate_loci',
    'effect_sizes',
    'offsets',
    'eigen',
    'fitness_comparison',
)

LOCI_CHOICES: Tuple[str, ...] = ('both', 'all', 'candidates')


class GenomicOffsetPipeline:
    """
    High-level pipeline for genomic offset analysis.

    Typical workflow:
        1. Initialize pipeline with output directory
        2. Load genotype, current and predicted environment (and optional
           fitness) tables, or pass in-memory matrices with set_data()
        3. Align units across tables
        4. Impute missing genotypes
        5. Fit the latent factor model (LFMM2)
        6. Test every locus and select candidates under FDR control
        7. Compute offsets from all loci and/or the candidate loci
        8. Compare offsets with fitness when measurements are available

    Attributes:
        genotypes (ndarray): Aligned genotype matrix (n_units × n_loci)
        unit_ids (list): Sampling unit identifiers
        locus_names (list): Locus identifiers
        variable_names (list): Environmental variable names
        env_df (DataFrame): Current environment with 'ID' column
        pred_env_df (DataFrame): Predicted environment with 'ID' column
        fitness_df (DataFrame): Optional 'ID' + 'Fitness' table
        population_df (DataFrame): Optional 'ID' + 'Population' table
        model (LatentFactorModel): Fitted latent factor model
        test_results (LocusTestResults): Per-locus association results
        candidates (CandidateSet): Loci selected under FDR control
        offsets (dict): OffsetResult per locus set ('all', 'candidates')

    Example:
        >>> from genoff.pipelines.offset import GenomicOffsetPipeline
        >>>
        >>> pipeline = GenomicOffsetPipeline(output_dir='./offsets')
        >>> pipeline.load_data(
        ...     genotype_file='genotypes.csv',
        ...     environment_file='climate_current.csv',
        ...     predicted_environment_file='climate_2050.csv',
        ...     fitness_file='common_garden.csv'
        ... )
        >>> pipeline.run(K=3, q=0.1)
        >>>
        >>> # Results saved to ./offsets/
    """

    def __init__(self, output_dir: str = "./offset_results", verbose: bool = True):
        """
        Initialize the pipeline.

        Args:
            output_dir (str): Directory where result tables are written.
                            Default: './offset_results'
            verbose (bool): Print progress messages. Default: True
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.verbose = verbose

        # Data storage
        self.genotypes: Optional[np.ndarray] = None
        self.unit_ids: List[str] = []
        self.locus_names: List[str] = []
        self.variable_names: List[str] = []
        self.env_df: Optional[pd.DataFrame] = None
        self.pred_env_df: Optional[pd.DataFrame] = None
        self.fitness_df: Optional[pd.DataFrame] = None
        self.population_df: Optional[pd.DataFrame] = None

        # Analysis state
        self.aligned = False
        self.prepared = False
        self.model: Optional[LatentFactorModel] = None
        self.test_results: Optional[LocusTestResults] = None
        self.candidates: Optional[CandidateSet] = None
        self.offsets: Dict[str, OffsetResult] = {}
        self.fitness_comparison: Optional[pd.DataFrame] = None

    def log(self, message: str):
        """Internal logger (can be replaced with standard logging later)"""
        if self.verbose:
            print(message)

    def log_step(self, step_name: str, start_time: Optional[float] = None):
        """Log a pipeline step with optional timing"""
        if start_time is not None:
            elapsed = time.time() - start_time
            self.log(f"{step_name} completed in {elapsed:.2f} seconds")
        else:
            self.log(f"{step_name}...")

    def load_data(self,
                  genotype_file: str,
                  environment_file: str,
                  predicted_environment_file: str,
                  fitness_file: Optional[str] = None,
                  env_columns: Optional[List[str]] = None,
                  id_column: str = 'ID',
                  fitness_column: Optional[str] = None,
                  population_column: Optional[str] = None):
        """
        Load genotype, environment and optional fitness tables.

        Args:
            genotype_file (str): CSV/TSV with an ID column and one column per
                               locus (allele counts or frequencies)
            environment_file (str): Current environment, ID + variables
            predicted_environment_file (str): Predicted environment with the
                               same variables as environment_file
            fitness_file (str, optional): Measured fitness per unit
            env_columns (list, optional): Environmental variables to use. If
                               None, all numeric columns are used.
            id_column (str): Unit identifier column. Default: 'ID'
            fitness_column (str, optional): Fitness column (first value column
                               when None)
            population_column (str, optional): Column of environment_file with
                               population labels for per-population summaries

        Raises:
            ValueError: If a file cannot be loaded or validated

        Note:
            Call align_units() after load_data() to match units across tables.
        """
        step_start = time.time()
        self.log_step("Step 1: Loading and validating input data")

        exclude = [population_column] if population_column else None
        try:
            self.genotypes, self.unit_ids, self.locus_names = load_genotype_table(
                genotype_file, id_column=id_column
            )
            self.log(f"   Loaded {len(self.unit_ids)} units x {len(self.locus_names)} loci")
        except Exception as e:
            raise ValueError(f"Error loading genotype file: {e}") from e

        try:
            self.env_df = load_environment_file(
                environment_file, env_columns=env_columns, id_column=id_column,
                exclude_columns=exclude,
            )
            self.variable_names = [c for c in self.env_df.columns if c != 'ID']
            self.pred_env_df = load_environment_file(
                predicted_environment_file, env_columns=self.variable_names,
                id_column=id_column,
            )
            self.log(f"   Loaded {len(self.variable_names)} environmental variables: "
                     f"{', '.join(self.variable_names)}")
        except Exception as e:
            raise ValueError(f"Error loading environment file: {e}") from e

        if fitness_file:
            try:
                self.fitness_df = load_fitness_file(
                    fitness_file, fitness_column=fitness_column, id_column=id_column
                )
                self.log(f"   Loaded fitness for {len(self.fitness_df)} units")
            except Exception as e:
                raise ValueError(f"Error loading fitness file: {e}") from e

        if population_column:
            try:
                self.population_df = load_population_labels(
                    environment_file, population_column, id_column=id_column
                )
                n_pops = self.population_df['Population'].nunique()
                self.log(f"   Loaded population labels ({n_pops} populations)")
            except Exception as e:
                raise ValueError(f"Error loading population labels: {e}") from e

        self._reset_analysis()
        self.log_step("Data loading", step_start)

    def set_data(self,
                 genotypes,
                 env,
                 pred_env,
                 fitness: Optional[Sequence[float]] = None,
                 unit_ids: Optional[Sequence[str]] = None,
                 locus_names: Optional[Sequence[str]] = None,
                 variable_names: Optional[Sequence[str]] = None,
                 pop_labels: Optional[Sequence] = None):
        """
        Use in-memory matrices instead of files.

        Rows of every input must describe the same units in the same order.
        DataFrame column names are used as locus/variable names when no
        explicit names are given.
        """
        G = as_matrix(genotypes, "Genotype matrix")
        X = as_matrix(env, "Environment matrix", allow_vector=True)
        Xp = as_matrix(pred_env, "Predicted environment matrix", allow_vector=True)
        n = G.shape[0]
        if X.shape[0] != n or Xp.shape != X.shape:
            raise ValueError(
                f"Genotypes ({G.shape}), environment ({X.shape}) and predicted "
                f"environment ({Xp.shape}) must describe the same units"
            )

        if locus_names is None:
            locus_names = (list(genotypes.columns) if isinstance(genotypes, pd.DataFrame)
                           else [f"L{j + 1:04d}" for j in range(G.shape[1])])
        if variable_names is None:
            variable_names = (list(env.columns) if isinstance(env, pd.DataFrame)
                              else [f"env{k + 1}" for k in range(X.shape[1])])
        if unit_ids is None:
            unit_ids = [f"U{i + 1:04d}" for i in range(n)]
        if len(unit_ids) != n or len(locus_names) != G.shape[1] or len(variable_names) != X.shape[1]:
            raise ValueError("Identifier lists do not match the matrix dimensions")

        self.genotypes = G
        self.unit_ids = [str(u) for u in unit_ids]
        self.locus_names = [str(l) for l in locus_names]
        self.variable_names = [str(v) for v in variable_names]

        self.env_df = pd.DataFrame(X, columns=self.variable_names)
        self.env_df.insert(0, 'ID', self.unit_ids)
        self.pred_env_df = pd.DataFrame(Xp, columns=self.variable_names)
        self.pred_env_df.insert(0, 'ID', self.unit_ids)

        self.fitness_df = None
        if fitness is not None:
            fitness = np.asarray(fitness, dtype=np.float64)
            if fitness.shape != (n,):
                raise ValueError(f"Expected {n} fitness values, got {fitness.shape}")
            self.fitness_df = pd.DataFrame({'ID': self.unit_ids, 'Fitness': fitness})

        self.population_df = None
        if pop_labels is not None:
            if len(pop_labels) != n:
                raise ValueError(f"Expected {n} population labels, got {len(pop_labels)}")
            self.population_df = pd.DataFrame({
                'ID': self.unit_ids,
                'Population': [str(p) for p in pop_labels],
            })

        self._reset_analysis()
        self.log(f"Using in-memory data: {n} units x {G.shape[1]} loci, "
                 f"{X.shape[1]} environmental variables")

    def _reset_analysis(self):
        self.aligned = False
        self.prepared = False
        self.model = None
        self.test_results = None
        self.candidates = None
        self.offsets = {}
        self.fitness_comparison = None

    def align_units(self):
        """
        Keep units present in the genotype, environment and predicted
        environment tables, sorted by ID. Fitness and population labels are
        matched where available (NaN fitness for unmeasured units).

        Raises:
            ValueError: If data are not loaded or no common units exist
        """
        if self.genotypes is None or self.env_df is None or self.pred_env_df is None:
            raise ValueError("Data not loaded. Call load_data() or set_data() first.")

        step_start = time.time()
        self.log_step("Step 2: Matching units between datasets")

        matched_indices, env_df, pred_df, fitness_df, summary = match_units(
            self.unit_ids, self.env_df, self.pred_env_df, fitness_df=self.fitness_df
        )
        self.genotypes = self.genotypes[matched_indices, :]
        self.unit_ids = env_df['ID'].tolist()
        self.env_df = env_df
        self.pred_env_df = pred_df
        self.fitness_df = fitness_df

        if self.population_df is not None:
            pops = self.population_df.set_index('ID')['Population'].reindex(self.unit_ids)
            self.population_df = pd.DataFrame({'ID': self.unit_ids,
                                               'Population': pops.to_numpy()})

        self.log(f"   Original genotypes: {summary['n_genotype_original']}")
        self.log(f"   Original environments: {summary['n_environment_original']}")
        self.log(f"   Original predicted environments: {summary['n_predicted_original']}")
        self.log(f"   Matched Intersection: {summary['n_common']}")
        if self.fitness_df is not None:
            self.log(f"   Units with fitness measurements: {summary['n_fitness_matched']}")

        self.aligned = True
        self.log_step("Unit matching", step_start)

    def prepare_genotypes(self, impute: str = 'major', max_dosage: float = 2.0):
        """
        Impute missing genotypes and report monomorphic loci.

        Args:
            impute (str): 'major' (most frequent value) or 'mean'
            max_dosage (float): 2.0 for diploid allele counts, 1.0 for
                              allele frequencies
        """
        if not self.aligned:
            self.align_units()

        step_start = time.time()
        self.log_step("Step 3: Preparing genotypes")

        n_missing = int(np.sum(~np.isfinite(self.genotypes)))
        if n_missing:
            rate = n_missing / self.genotypes.size
            self.log(f"   Imputing {n_missing} missing genotypes ({rate:.2%}) with method '{impute}'")
            self.genotypes = impute_missing_genotypes(self.genotypes, method=impute)

        maf = calculate_maf_from_genotypes(self.genotypes, max_dosage=max_dosage)
        self.log(f"   Mean minor allele frequency: {float(np.mean(maf)):.3f}")
        # constant columns, whatever the genotype coding
        n_mono = int(np.sum(np.ptp(self.genotypes, axis=0) == 0))
        if n_mono:
            warnings.warn(
                f"{n_mono} monomorphic loci found; they carry no association signal (p = 1)."
            )

        self.prepared = True
        self.log_step("Genotype preparation", step_start)

    def _environment_matrix(self) -> np.ndarray:
        return self.env_df[self.variable_names].to_numpy(dtype=np.float64)

    def _predicted_matrix(self) -> np.ndarray:
        return self.pred_env_df[self.variable_names].to_numpy(dtype=np.float64)

    def fit_latent_factors(self,
                           K: int = 3,
                           lambda_: float = DEFAULT_LAMBDA,
                           scale: bool = False,
                           svd_solver: str = 'full',
                           random_state: int = 0) -> LatentFactorModel:
        """
        Fit the LFMM2 ridge model on the aligned genotypes.

        Args:
            K (int): Number of latent factors (population structure)
            lambda_ (float): Ridge regularization parameter
            scale (bool): Standardize environmental variables
            svd_solver (str): 'full' or 'randomized'
            random_state (int): Seed for the randomized solver
        """
        if not self.prepared:
            self.prepare_genotypes()

        step_start = time.time()
        self.log_step(f"Step 4: Fitting latent factor model (K={K})")
        self.model = GENOFF_LFMM2(
            self.genotypes, self._environment_matrix(), K=K, lambda_=lambda_,
            scale=scale, svd_solver=svd_solver, random_state=random_state,
            verbose=self.verbose,
        )
        self.test_results = None
        self.candidates = None
        self.offsets = {}
        self.fitness_comparison = None
        self.log_step("Latent factor fit", step_start)
        return self.model

    def _require_model(self) -> LatentFactorModel:
        if self.model is None:
            raise UnfittedModel("Latent factor model not fitted. Call fit_latent_factors() first.")
        return self.model

    def test_associations(self,
                          full: bool = True,
                          calibrate: bool = True,
                          variable: Optional[int] = None,
                          maxLine: int = 5000,
                          cpu: int = 1) -> LocusTestResults:
        """
        Per-locus association tests adjusted for the latent factors.

        See GENOFF_LFMM2_Test for the meaning of each argument.
        """
        model = self._require_model()
        step_start = time.time()
        self.log_step("Step 5: Testing loci for environmental association")
        self.test_results = GENOFF_LFMM2_Test(
            model, self.genotypes, self._environment_matrix(), full=full,
            calibrate=calibrate, variable=variable, maxLine=maxLine, cpu=cpu,
            verbose=self.verbose,
        )
        lambda_gc = genomic_inflation_factor(self.test_results.pvalues)
        self.log(f"   Genomic inflation of reported p-values (lambda): {lambda_gc:.3f}")
        self.candidates = None
        self.log_step("Association testing", step_start)
        return self.test_results

    def select_candidates(self,
                          q: float = 0.1,
                          method: str = 'bh',
                          pi0_lambda: float = 0.5) -> CandidateSet:
        """
        Select candidate loci at FDR level q ('bh' or 'storey').
        """
        if self.test_results is None:
            raise ValueError("Association tests not run. Call test_associations() first.")
        self.candidates = select_candidate_loci(
            self.test_results, q=q, method=method, lambda_=pi0_lambda, verbose=self.verbose
        )
        if self.candidates.is_empty:
            self.log("   No candidate loci at this FDR level")
        return self.candidates

    def compute_offsets(self,
                        loci: str = 'both',
                        scale: bool = False,
                        allow_all_loci_fallback: bool = False,
                        batch_size: int = 10000) -> Dict[str, OffsetResult]:
        """
        Compute genetic gap offsets between the current and predicted
        environment.

        Args:
            loci (str): 'all' (every locus), 'candidates' (selected loci) or
                      'both'
            scale (bool): Express covariance diagnostics in standardized units
            allow_all_loci_fallback (bool): Use all loci when the candidate set
                      is empty instead of raising EmptyCandidateSet
            batch_size (int): Units processed per block

        Returns:
            Dict mapping 'all' and/or 'candidates' to OffsetResult

        Note:
            With loci='both' an empty candidate set only skips the candidate
            offset (with a warning); with loci='candidates' it raises.
        """
        if loci not in LOCI_CHOICES:
            raise InvalidParameter(f"loci must be one of {LOCI_CHOICES}, got {loci!r}")
        model = self._require_model()
        if loci in ('both', 'candidates') and self.candidates is None:
            raise ValueError("Candidate loci not selected. Call select_candidates() first.")

        step_start = time.time()
        self.log_step("Step 6: Computing genomic offsets")
        X = self._environment_matrix()
        Xp = self._predicted_matrix()
        self.offsets = {}

        if loci in ('both', 'all'):
            self.log("   Offsets from all loci")
            self.offsets['all'] = GENOFF_GeneticGap(
                model, X, Xp, candidate_loci=None, scale=scale,
                batch_size=batch_size, verbose=self.verbose,
            )

        if loci in ('both', 'candidates'):
            self.log(f"   Offsets from {len(self.candidates)} candidate loci")
            try:
                self.offsets['candidates'] = GENOFF_GeneticGap(
                    model, X, Xp, candidate_loci=self.candidates, scale=scale,
                    allow_all_loci_fallback=allow_all_loci_fallback,
                    batch_size=batch_size, verbose=self.verbose,
                )
            except EmptyCandidateSet:
                if loci == 'candidates':
                    raise
                warnings.warn("Candidate set is empty; candidate offsets were not computed.")

        self.fitness_comparison = None
        self.log_step("Offset computation", step_start)
        return self.offsets

    def offsets_dataframe(self) -> pd.DataFrame:
        """Offsets per unit with distance, population and fitness columns"""
        if not self.offsets:
            raise ValueError("Offsets not computed. Call compute_offsets() first.")
        df = pd.DataFrame({'ID': self.unit_ids})
        for key, result in self.offsets.items():
            df[f'Offset_{key}'] = result.offsets
        first = next(iter(self.offsets.values()))
        df['Distance'] = first.distance
        if self.population_df is not None:
            df['Population'] = self.population_df['Population'].to_numpy()
        if self.fitness_df is not None:
            df['Fitness'] = self.fitness_df['Fitness'].to_numpy()
        return df

    def compare_with_fitness(self) -> pd.DataFrame:
        """
        Correlate each offset (and the raw environmental distance) with the
        fitness loss, i.e. minus the measured fitness.

        Returns:
            DataFrame with columns ['Predictor', 'r', 'P-value', 'N']. A
            useful offset shows a positive r.
        """
        if self.fitness_df is None:
            raise ValueError("No fitness data available. Provide fitness_file or fitness values.")
        if not self.offsets:
            raise ValueError("Offsets not computed. Call compute_offsets() first.")

        fitness_loss = -self.fitness_df['Fitness'].to_numpy(dtype=np.float64)
        rows = []
        predictors = [(f'Offset_{key}', res.offsets) for key, res in self.offsets.items()]
        predictors.append(('Distance', next(iter(self.offsets.values())).distance))
        for name, values in predictors:
            r, p, n_pairs = pearson_correlation(values, fitness_loss)
            rows.append({'Predictor': name, 'r': r, 'P-value': p, 'N': n_pairs})
            self.log(f"   {name}: r = {r:.3f} (p = {p:.2e}, n = {n_pairs})")

        self.fitness_comparison = pd.DataFrame(rows, columns=['Predictor', 'r', 'P-value', 'N'])
        return self.fitness_comparison

    def population_summary(self) -> pd.DataFrame:
        """Mean offset per population for every computed locus set"""
        if self.population_df is None:
            raise ValueError("No population labels available.")
        if not self.offsets:
            raise ValueError("Offsets not computed. Call compute_offsets() first.")

        labels = self.population_df['Population'].astype(str).to_numpy()
        summary = None
        for key, result in self.offsets.items():
            pop_df = population_offsets(result, labels).rename(
                columns={'Offset': f'Offset_{key}', 'N': f'N_{key}'}
            )
            summary = pop_df if summary is None else summary.merge(pop_df, on='Population')
        return summary

    def save_results(self, outputs: Sequence[str] = OUTPUT_CHOICES) -> Dict[str, Path]:
        """
        Write the requested result tables to output_dir as CSV files.

        Outputs whose stage has not been run are skipped.

        Returns:
            Dict mapping output name to the written file path
        """
        unknown = [o for o in outputs if o not in OUTPUT_CHOICES]
        if unknown:
            raise InvalidParameter(f"Unknown outputs: {unknown}. Choose from {OUTPUT_CHOICES}")

        written: Dict[str, Path] = {}

        if 'locus_pvalues' in outputs and self.test_results is not None:
            df = self.test_results.to_dataframe(self.locus_names)
            if self.candidates is not None:
                df['Q-value'] = self.candidates.qvalues
                df['Candidate'] = self.candidates.mask()
            path = self.output_dir / "GENOFF_locus_pvalues.csv"
            df.to_csv(path, index=False)
            written['locus_pvalues'] = path

        if 'candidate_loci' in outputs and self.candidates is not None:
            idx = self.candidates.indices
            df = pd.DataFrame({
                'Locus': [self.locus_names[i] for i in idx],
                'Index': idx,
                'P-value': self.test_results.pvalues[idx],
                'Q-value': self.candidates.qvalues[idx],
            })
            path = self.output_dir / "GENOFF_candidate_loci.csv"
            df.to_csv(path, index=False)
            written['candidate_loci'] = path

        if 'effect_sizes' in outputs and self.model is not None:
            path = self.output_dir / "GENOFF_effect_sizes.csv"
            self.model.effect_sizes_dataframe(self.locus_names, self.variable_names).to_csv(
                path, index=False
            )
            written['effect_sizes'] = path

        if 'offsets' in outputs and self.offsets:
            path = self.output_dir / "GENOFF_offsets.csv"
            self.offsets_dataframe().to_csv(path, index=False)
            written['offsets'] = path
            if self.population_df is not None:
                pop_path = self.output_dir / "GENOFF_population_offsets.csv"
                self.population_summary().to_csv(pop_path, index=False)
                written['population_offsets'] = pop_path

        if 'eigen' in outputs and self.offsets:
            for key, result in self.offsets.items():
                path = self.output_dir / f"GENOFF_eigen_{key}.csv"
                result.eigen_dataframe(self.variable_names).to_csv(path, index=False)
                written[f'eigen_{key}'] = path

        if 'fitness_comparison' in outputs and self.fitness_df is not None and self.offsets:
            if self.fitness_comparison is None:
                self.compare_with_fitness()
            path = self.output_dir / "GENOFF_fitness_comparison.csv"
            self.fitness_comparison.to_csv(path, index=False)
            written['fitness_comparison'] = path

        for path in written.values():
            self.log(f"   Saved {path}")
        return written

    def run(self,
            K: int = 3,
            lambda_: float = DEFAULT_LAMBDA,
            scale: bool = False,
            svd_solver: str = 'full',
            full: bool = True,
            calibrate: bool = True,
            variable: Optional[int] = None,
            q: float = 0.1,
            fdr_method: str = 'bh',
            loci: str = 'both',
            allow_all_loci_fallback: bool = False,
            impute: str = 'major',
            max_dosage: float = 2.0,
            cpu: int = 1,
            batch_size: int = 10000,
            outputs: Sequence[str] = OUTPUT_CHOICES) -> Dict[str, Path]:
        """
        Run every stage after data loading and save the results.

        Returns:
            Dict of written output files
        """
        total_start = time.time()
        if not self.aligned:
            self.align_units()
        if not self.prepared:
            self.prepare_genotypes(impute=impute, max_dosage=max_dosage)
        self.fit_latent_factors(K=K, lambda_=lambda_, scale=scale, svd_solver=svd_solver)

        if loci != 'all':
            self.test_associations(full=full, calibrate=calibrate, variable=variable, cpu=cpu)
            self.select_candidates(q=q, method=fdr_method)
        elif {'locus_pvalues', 'candidate_loci'} & set(outputs):
            self.test_associations(full=full, calibrate=calibrate, variable=variable, cpu=cpu)

        self.compute_offsets(loci=loci, scale=scale,
                             allow_all_loci_fallback=allow_all_loci_fallback,
                             batch_size=batch_size)

        if self.fitness_df is not None:
            self.log_step("Step 7: Comparing offsets with fitness")
            self.compare_with_fitness()

        self.log_step("Step 8: Saving results")
        written = self.save_results(outputs)
        self.log_step("Genomic offset pipeline", total_start)
        return written
