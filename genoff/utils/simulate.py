"""
Simulated genotype-environment datasets with known adaptive loci.

Latent population structure U drives both allele frequencies and the
environment, so ignoring it inflates associations. A small set of causal
loci responds to the first environmental variable (the selective gradient).
The predicted environment shifts every variable; fitness loss only depends
on the change along the selective gradient, weighted by the causal effects.
"""

from typing import List, Optional, Sequence
import numpy as np
import pandas as pd
from scipy.special import expit


class SimulatedDataset:
    """Container for a simulated GEA dataset

    Attributes:
        genotypes: Allele counts (n_units × n_loci), values in {0, 1, 2}
        env: Current environment (n_units × n_variables)
        pred_env: Predicted environment, same shape as env
        causal_loci: Indices of loci with a nonzero environmental effect
        true_effects: Liability-scale effect sizes (n_loci × n_variables)
        fitness_loss: Expected fitness loss per unit in the predicted environment
        unit_ids: Sample identifiers
    """

    def __init__(self, genotypes: np.ndarray, env: np.ndarray, pred_env: np.ndarray,
                 causal_loci: np.ndarray, true_effects: np.ndarray,
                 fitness_loss: np.ndarray, unit_ids: List[str]):
        self.genotypes = genotypes
        self.env = env
        self.pred_env = pred_env
        self.causal_loci = causal_loci
        self.true_effects = true_effects
        self.fitness_loss = fitness_loss
        self.unit_ids = unit_ids

    @property
    def log_relative_fitness(self) -> np.ndarray:
        """Fitness ground truth in the format of field measurements"""
        return -self.fitness_loss

    def to_dataframes(self):
        """(genotype, environment, predicted environment, fitness) tables with an ID column"""
        n_loci = self.genotypes.shape[1]
        n_vars = self.env.shape[1]
        locus_cols = [f"L{j + 1:04d}" for j in range(n_loci)]
        env_cols = [f"env{k + 1}" for k in range(n_vars)]

        geno_df = pd.DataFrame(self.genotypes.astype(int), columns=locus_cols)
        geno_df.insert(0, 'ID', self.unit_ids)
        env_df = pd.DataFrame(self.env, columns=env_cols)
        env_df.insert(0, 'ID', self.unit_ids)
        pred_df = pd.DataFrame(self.pred_env, columns=env_cols)
        pred_df.insert(0, 'ID', self.unit_ids)
        fit_df = pd.DataFrame({'ID': self.unit_ids, 'Fitness': self.log_relative_fitness})
        return geno_df, env_df, pred_df, fit_df


def simulate_gea_dataset(n_units: int = 200,
                         n_loci: int = 510,
                         n_variables: int = 4,
                         n_factors: int = 3,
                         n_causal: int = 10,
                         effect_size: float = 1.5,
                         confounding: float = 0.5,
                         factor_strength: float = 0.8,
                         noise_sd: float = 0.5,
                         env_change_sd: Optional[Sequence[float]] = None,
                         fitness_noise_sd: float = 0.05,
                         seed: int = 42) -> SimulatedDataset:
    """Generate a confounded GEA dataset with known causal loci.

    Args:
        n_units: Number of sampled individuals
        n_loci: Number of loci
        n_variables: Number of environmental variables
        n_factors: Number of latent structure factors
        n_causal: Number of loci responding to the first variable
        effect_size: Absolute liability-scale effect of causal loci
        confounding: Loading of the environment on the latent factors
        factor_strength: Standard deviation of latent loadings on loci
        noise_sd: Residual liability noise
        env_change_sd: Per-variable standard deviation of the environmental
            change; defaults to 1 for the selective variable and 2 for others
        fitness_noise_sd: Noise added to the expected fitness loss
        seed: Random seed

    Returns:
        SimulatedDataset
    """
    if not 0 <= n_causal <= n_loci:
        raise ValueError("n_causal must lie in [0, n_loci]")
    rng = np.random.default_rng(seed)

    U = rng.normal(size=(n_units, n_factors))
    A = rng.normal(scale=confounding, size=(n_factors, n_variables))
    env = U @ A + rng.normal(size=(n_units, n_variables))

    V = rng.normal(scale=factor_strength, size=(n_loci, n_factors))
    causal = np.sort(rng.choice(n_loci, size=n_causal, replace=False))
    effects = np.zeros((n_loci, n_variables))
    effects[causal, 0] = effect_size * rng.choice([-1.0, 1.0], size=n_causal)

    env_c = env - env.mean(axis=0)
    baseline = rng.normal(scale=0.5, size=n_loci)
    liability = (baseline[np.newaxis, :] + env_c @ effects.T + U @ V.T
                 + rng.normal(scale=noise_sd, size=(n_units, n_loci)))
    genotypes = rng.binomial(2, expit(liability)).astype(np.float64)

    if env_change_sd is None:
        env_change_sd = [1.0] + [2.0] * (n_variables - 1)
    env_change_sd = np.asarray(env_change_sd, dtype=np.float64)
    if env_change_sd.shape != (n_variables,):
        raise ValueError("env_change_sd must have one value per environmental variable")
    pred_env = env + rng.normal(size=(n_units, n_variables)) * env_change_sd[np.newaxis, :]

    dx = pred_env - env
    if n_causal:
        fitness_loss = np.mean((dx @ effects[causal].T) ** 2, axis=1)
    else:
        fitness_loss = np.zeros(n_units)
    fitness_loss = fitness_loss + rng.normal(scale=fitness_noise_sd, size=n_units)

    unit_ids = [f"Ind{i + 1:04d}" for i in range(n_units)]
    return SimulatedDataset(
        genotypes=genotypes,
        env=env,
        pred_env=pred_env,
        causal_loci=causal,
        true_effects=effects,
        fitness_loss=fitness_loss,
        unit_ids=unit_ids,
    )
