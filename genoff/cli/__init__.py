"""
Command line interface for the genomic offset pipeline
"""
