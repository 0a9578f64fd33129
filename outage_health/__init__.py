"""
Outage health analysis package.

Reproduces the Medi-Cal cohort extraction and descriptive figures for the
study of 2018 California power outages, wildfires and hospitalizations.

- Cohort counting over a claims table lives in `cohort.py` / `claims.py`.
- The study-wide extraction plan is in `extraction.py`.
- Figure inputs, boundaries, smoothing and rendering are in
  `utils/data_loader.py`, `geography.py`, `smoothing.py` and `figures.py`.
"""

from .claims import DuckDBClaimsSource, FrameClaimsSource
from .cohort import (
    ALL_AGES,
    AgeBand,
    CohortFilter,
    CohortQuery,
    count_cohort,
    county_view,
    parse_service_date,
)
from .models import ClaimsColumns
from .exceptions import (
    CohortQueryError,
    ConfigError,
    DataSourceError,
    MissingColumnError,
    OutageHealthError,
)

__version__ = "1.0.0"

__all__ = [
    'ClaimsColumns',
    'DuckDBClaimsSource',
    'FrameClaimsSource',
    'ALL_AGES',
    'AgeBand',
    'CohortFilter',
    'CohortQuery',
    'count_cohort',
    'county_view',
    'parse_service_date',
    'CohortQueryError',
    'ConfigError',
    'DataSourceError',
    'MissingColumnError',
    'OutageHealthError',
]
