"""
Exception hierarchy for the outage health analysis.

Every unit of work (one cohort count, one figure) fails on its own; nothing
here is retried.
"""


class OutageHealthError(Exception):
    """Base class for all package errors."""


class DataSourceError(OutageHealthError):
    """The claims table is unreachable or a query against it is malformed."""


class MissingColumnError(OutageHealthError):
    """An input file lacks one or more expected columns."""

    def __init__(self, source: str, missing):
        self.source = source
        self.missing = list(missing)
        super().__init__(f"{source} is missing expected columns: {self.missing}")


class CohortQueryError(OutageHealthError):
    """A cohort query was built with missing or invalid filters."""


class ConfigError(OutageHealthError):
    """Study configuration is invalid."""
