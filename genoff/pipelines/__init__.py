"""
End-to-end analysis pipelines
"""

from .offset import GenomicOffsetPipeline, OUTPUT_CHOICES

__all__ = ['GenomicOffsetPipeline', 'OUTPUT_CHOICES']
