"""
Exceptions that abort a year's pipeline.

Row-level data problems are never raised; the filters drop the rows and
return counts instead.
"""


class PipelineError(Exception):
    """Base class for errors that stop a year from being processed."""


class ConfigurationError(PipelineError):
    """A year's configuration cannot be applied to its input files."""


class InvariantViolation(PipelineError):
    """Deduplication or reconciliation produced inconsistent output."""
