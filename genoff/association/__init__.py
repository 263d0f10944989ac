"""
Genotype-environment association methods
"""

from .lfmm2 import GENOFF_LFMM2
from .lfmm2_test import GENOFF_LFMM2_Test
from .selection import select_candidate_loci, adjust_pvalues

__all__ = ['GENOFF_LFMM2', 'GENOFF_LFMM2_Test', 'select_candidate_loci', 'adjust_pvalues']
