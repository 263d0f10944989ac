"""
genoff: genomic offsets from genotype-environment associations

Fits latent factor mixed models (LFMM2) to genotypes and environmental
variables, tests every locus for environmental association while
accounting for population structure, and turns the estimated effect sizes
into a geometric genomic offset ("genetic gap") between current and
predicted environments.
"""

__version__ = "0.1.0"
__author__ = "genoff Development Team"

from .association.lfmm2 import GENOFF_LFMM2
from .association.lfmm2_test import GENOFF_LFMM2_Test
from .association.selection import select_candidate_loci
from .offset.genetic_gap import GENOFF_GeneticGap, iter_genetic_gap, population_offsets
from .pipelines.offset import GenomicOffsetPipeline
from .utils.data_types import (
    CandidateSet, EnvironmentScaler, LatentFactorModel, LocusTestResults, OffsetResult
)
from .utils.exceptions import (
    GenoffError, DimensionMismatch, InvalidParameter, UnfittedModel, EmptyCandidateSet
)

__all__ = [
    'GENOFF_LFMM2',
    'GENOFF_LFMM2_Test',
    'select_candidate_loci',
    'GENOFF_GeneticGap',
    'iter_genetic_gap',
    'population_offsets',
    'GenomicOffsetPipeline',
    'CandidateSet',
    'EnvironmentScaler',
    'LatentFactorModel',
    'LocusTestResults',
    'OffsetResult',
    'GenoffError',
    'DimensionMismatch',
    'InvalidParameter',
    'UnfittedModel',
    'EmptyCandidateSet',
]
