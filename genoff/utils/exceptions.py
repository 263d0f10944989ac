"""
Error types raised at the boundaries of the genomic offset pipeline.

All errors derive from ValueError so callers that already guard analysis
requests with ``except ValueError`` keep working.
"""


class GenoffError(ValueError):
    """Base class for structurally invalid analysis requests"""


class DimensionMismatch(GenoffError):
    """Row or column counts of matrices expected to align do not match"""


class InvalidParameter(GenoffError):
    """A numeric parameter lies outside its valid range"""


class UnfittedModel(GenoffError):
    """A stage was invoked before the latent factor model was fitted"""


class EmptyCandidateSet(GenoffError):
    """No candidate loci are available for an offset computation"""
