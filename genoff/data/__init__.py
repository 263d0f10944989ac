"""
Input tables for genotype, environment and fitness data
"""

from .loaders import (
    load_genotype_table, load_environment_file, load_fitness_file,
    load_population_labels, match_units
)

__all__ = [
    'load_genotype_table', 'load_environment_file', 'load_fitness_file',
    'load_population_labels', 'match_units',
]
