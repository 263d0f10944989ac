"""
Data loading utilities for genotype, environment and fitness tables
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import Union, Tuple, Optional, Dict, List
import warnings

from ..utils.data_types import MISSING_GENOTYPE

NA_VALUES = [
    '', 'NA', 'NaN', 'nan', 'NAN', 'na', 'N/A', 'n/a', 'Null', 'NULL',
    '.', '-', '--'
]

POSSIBLE_ID_COLUMNS = [
    'ID', 'id', 'IID',
    'sample', 'Sample',
    'Taxa', 'taxa',
    'Site', 'site',
    'Population', 'population',
]


def detect_file_format(filepath: Union[str, Path]) -> str:
    """Detect table format based on extension and content

    Args:
        filepath: Path to file

    Returns:
        Detected format: 'csv' or 'tsv'
    """
    filepath = Path(filepath)
    name_lower = filepath.name.lower()
    if name_lower.endswith(('.tsv', '.tsv.gz', '.txt', '.txt.gz', '.lfmm')):
        return 'tsv'
    if name_lower.endswith(('.csv', '.csv.gz')):
        return 'csv'

    # Unknown extension: look at the first non-empty line
    try:
        with filepath.open('r') as handle:
            for _ in range(10):
                line = handle.readline()
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                return 'tsv' if line.count('\t') > line.count(',') else 'csv'
    except (OSError, UnicodeDecodeError):
        pass
    return 'csv'


def _read_table(filepath: Union[str, Path]) -> pd.DataFrame:
    filepath = Path(filepath)
    file_format = detect_file_format(filepath)
    read_kwargs = dict(na_values=NA_VALUES, keep_default_na=True)
    if file_format == 'tsv':
        return pd.read_csv(filepath, sep='\t', **read_kwargs)
    return pd.read_csv(filepath, **read_kwargs)


def _standardize_id_column(df: pd.DataFrame, id_column: str, label: str) -> pd.DataFrame:
    """Rename the sample identifier column to 'ID' (auto-detecting when needed)."""
    if id_column in df.columns:
        if id_column != 'ID':
            df = df.rename(columns={id_column: 'ID'})
    else:
        present_candidates = [c for c in df.columns if c in POSSIBLE_ID_COLUMNS]
        if present_candidates:
            if len(present_candidates) > 1:
                warnings.warn(
                    "Multiple potential ID columns found in {} file: {}. Selecting leftmost '{}' as ID.".format(
                        label, present_candidates, present_candidates[0]
                    )
                )
            df = df.rename(columns={present_candidates[0]: 'ID'})
        else:
            first_col = df.columns[0]
            warnings.warn(
                "No recognized ID column found in {} file; using first column '{}' as ID.".format(
                    label, first_col
                )
            )
            df = df.rename(columns={first_col: 'ID'})
    df['ID'] = df['ID'].astype(str)
    return df


def _coerce_numeric(df: pd.DataFrame, columns: List[str], label: str, filepath) -> pd.DataFrame:
    """Convert columns to float, rejecting non-numeric tokens."""
    for col in columns:
        series = df[col]
        converted = pd.to_numeric(series, errors='coerce')
        invalid_mask = series.notna() & converted.isna()
        if invalid_mask.any():
            invalid_examples = sorted(series[invalid_mask].astype(str).unique()[:5])
            raise ValueError(
                "{} column '{}' in '{}' contains non-numeric values (e.g. {}).".format(
                    label, col, filepath, ', '.join(invalid_examples)
                )
            )
        df[col] = converted.astype(np.float64)
    return df


def load_genotype_table(filepath: Union[str, Path],
                        id_column: str = 'ID',
                        missing_value: float = MISSING_GENOTYPE) -> Tuple[np.ndarray, List[str], List[str]]:
    """Load a numeric genotype table (units × loci)

    Values are allele counts (0/1/2) or allele frequencies. Missing entries
    (NA tokens or the -9 sentinel) become NaN.

    Args:
        filepath: Path to CSV/TSV file with an ID column and one column per locus
        id_column: Name of the sample ID column
        missing_value: Sentinel used for missing genotypes

    Returns:
        Tuple of (genotype matrix, unit IDs, locus names)
    """
    df = _standardize_id_column(_read_table(filepath), id_column, 'genotype')
    locus_names = [c for c in df.columns if c != 'ID']
    if not locus_names:
        raise ValueError(f"No locus columns found in genotype file '{filepath}'")
    df = _coerce_numeric(df, locus_names, 'Genotype', filepath)

    if df['ID'].duplicated().any():
        n_dups = int(df['ID'].duplicated().sum())
        df = df.drop_duplicates(subset=['ID'], keep='first')
        warnings.warn(
            f"Detected {n_dups} duplicated genotype records by ID; retained the first record per ID."
        )

    geno = df[locus_names].to_numpy(dtype=np.float64)
    geno[geno == missing_value] = np.nan
    return geno, df['ID'].tolist(), locus_names


def load_environment_file(filepath: Union[str, Path],
                          env_columns: Optional[List[str]] = None,
                          id_column: str = 'ID',
                          exclude_columns: Optional[List[str]] = None) -> pd.DataFrame:
    """Load an environment table and ensure numeric variable columns.

    Missing values are kept as NaN (a unit outside the observed range of a
    predicted climate, for example).

    Returns:
        DataFrame with 'ID' followed by the environmental variables
    """
    env_df = _standardize_id_column(_read_table(filepath), id_column, 'environment')

    excluded = set(exclude_columns or [])
    available = [c for c in env_df.columns if c != 'ID' and c not in excluded]
    if env_columns is not None:
        requested = [c for c in env_columns if c not in ('ID', id_column)]
        missing = [c for c in requested if c not in env_df.columns]
        if missing:
            raise ValueError(
                "Requested environment columns missing from file '{}': {}".format(filepath, missing)
            )
        selected_cols = requested
    else:
        selected_cols = available

    if not selected_cols:
        raise ValueError(
            "No environmental variables found in file '{}'. Provide at least one numeric column.".format(
                filepath
            )
        )

    env_data = _coerce_numeric(env_df[['ID'] + selected_cols].copy(), selected_cols,
                               'Environment', filepath)

    if env_data['ID'].duplicated().any():
        n_dups = int(env_data['ID'].duplicated().sum())
        agg_cols = {col: 'mean' for col in selected_cols}
        env_data = env_data.groupby('ID', as_index=False, sort=False).agg(agg_cols)
        warnings.warn(
            f"Detected {n_dups} duplicated environment records by ID; deduplicated by computing per-ID mean (missing values ignored)."
        )
    return env_data.reset_index(drop=True)[['ID'] + selected_cols]


def load_fitness_file(filepath: Union[str, Path],
                      fitness_column: Optional[str] = None,
                      id_column: str = 'ID') -> pd.DataFrame:
    """Load per-unit fitness measurements (e.g. log relative fitness)

    Returns:
        DataFrame with columns ['ID', 'Fitness']
    """
    df = _standardize_id_column(_read_table(filepath), id_column, 'fitness')
    value_cols = [c for c in df.columns if c != 'ID']
    if fitness_column is None:
        if not value_cols:
            raise ValueError(f"No fitness column found in '{filepath}'")
        fitness_column = value_cols[0]
        if len(value_cols) > 1:
            print(f"   Using first value column as fitness: '{fitness_column}'")
    elif fitness_column not in df.columns:
        raise ValueError(f"Fitness column '{fitness_column}' not found in '{filepath}'")

    out = _coerce_numeric(df[['ID', fitness_column]].copy(), [fitness_column], 'Fitness', filepath)
    out = out.rename(columns={fitness_column: 'Fitness'})
    if out['ID'].duplicated().any():
        n_dups = int(out['ID'].duplicated().sum())
        out = out.groupby('ID', as_index=False, sort=False).agg({'Fitness': 'mean'})
        warnings.warn(
            f"Detected {n_dups} duplicated fitness records by ID; deduplicated by computing per-ID mean."
        )
    return out.reset_index(drop=True)


def load_population_labels(filepath: Union[str, Path],
                           population_column: str,
                           id_column: str = 'ID') -> pd.DataFrame:
    """Read a population label column (e.g. from the environment table)

    Returns:
        DataFrame with columns ['ID', 'Population']
    """
    df = _standardize_id_column(_read_table(filepath), id_column, 'population')
    if population_column not in df.columns:
        raise ValueError(f"Population column '{population_column}' not found in '{filepath}'")
    out = df[['ID', population_column]].rename(columns={population_column: 'Population'})
    out['Population'] = out['Population'].astype(str)
    return out.drop_duplicates(subset=['ID'], keep='first').reset_index(drop=True)


def match_units(genotype_ids: List[str],
                env_df: pd.DataFrame,
                pred_env_df: pd.DataFrame,
                fitness_df: Optional[pd.DataFrame] = None
                ) -> Tuple[List[int], pd.DataFrame, pd.DataFrame, Optional[pd.DataFrame], Dict[str, int]]:
    """Match sampling units across genotype, environment and fitness tables.

    Units present in the genotype, current and predicted environment tables
    are kept, sorted by ID. Fitness values are optional per unit (NaN when
    absent) since they only serve external validation.

    Returns:
        Tuple of (genotype row indices, env_df, pred_env_df, fitness_df, summary)
    """
    for label, df in (('Environment', env_df), ('Predicted environment', pred_env_df)):
        if 'ID' not in df.columns:
            raise ValueError(f"{label} dataframe must contain an 'ID' column.")

    env_cols = [c for c in env_df.columns if c != 'ID']
    pred_cols = [c for c in pred_env_df.columns if c != 'ID']
    if env_cols != pred_cols:
        raise ValueError(
            f"Current and predicted environment variables differ: {env_cols} vs {pred_cols}"
        )

    geno_ids = [str(i) for i in genotype_ids]
    env_ids = set(env_df['ID'].astype(str))
    pred_ids = set(pred_env_df['ID'].astype(str))
    common_ids = set(geno_ids) & env_ids & pred_ids

    summary: Dict[str, int] = {
        'n_genotype_original': len(set(geno_ids)),
        'n_environment_original': len(env_ids),
        'n_predicted_original': len(pred_ids),
        'n_common': len(common_ids),
    }
    if not common_ids:
        raise ValueError("No common units found between genotype and environment data")

    sorted_ids = sorted(common_ids)
    id_to_index: Dict[str, int] = {}
    for idx, raw_id in enumerate(geno_ids):
        if raw_id not in id_to_index:
            id_to_index[raw_id] = idx
    matched_indices = [id_to_index[sid] for sid in sorted_ids]

    matched_env = env_df.assign(ID=env_df['ID'].astype(str)).set_index('ID').loc[sorted_ids].reset_index()
    matched_pred = pred_env_df.assign(ID=pred_env_df['ID'].astype(str)).set_index('ID').loc[sorted_ids].reset_index()

    matched_fitness: Optional[pd.DataFrame] = None
    if fitness_df is not None:
        fit = fitness_df.assign(ID=fitness_df['ID'].astype(str)).set_index('ID')
        matched_fitness = fit.reindex(sorted_ids)
        matched_fitness.index.name = 'ID'
        matched_fitness = matched_fitness.reset_index()
        summary['n_fitness_matched'] = int(matched_fitness['Fitness'].notna().sum())
    else:
        summary['n_fitness_matched'] = 0

    return matched_indices, matched_env, matched_pred, matched_fitness, summary
