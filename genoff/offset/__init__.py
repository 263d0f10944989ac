"""
Genomic offset calculation
"""

from .genetic_gap import GENOFF_GeneticGap, iter_genetic_gap, population_offsets

__all__ = ['GENOFF_GeneticGap', 'iter_genetic_gap', 'population_offsets']
