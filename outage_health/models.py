"""
Data model for cohort queries against the Medi-Cal claims table.

Claim rows themselves are never materialized as objects: they stay in the
claims source (DuckDB table or pandas frame). This module holds the small,
immutable pieces a query is built from:

- `ClaimsColumns`: where each claim attribute lives in the source table
- `AgeBand`: a named half-open age interval usable as an age predicate
- `CohortFilter`: the four filters that define one cohort
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from .exceptions import CohortQueryError

# Service dates in the T-MSIS extract look like "01MAY2018"
_SAS_DATE_RE = re.compile(r'^\d{2}[A-Za-z]{3}\d{4}$')


@dataclass(frozen=True)
class ClaimsColumns:
    """Column names of the claims table."""
    county: str = 'BENE_CNTY_CD'
    beneficiary: str = 'MSIS_ID'
    service_date: str = 'SRVC_BGN_DT'
    diagnosis: str = 'DGNS_CD_1'
    age: str = 'AGE'

    @classmethod
    def from_dict(cls, mapping: Optional[Dict[str, str]]) -> 'ClaimsColumns':
        return cls(**(mapping or {}))

    def required(self) -> List[str]:
        return [self.county, self.beneficiary, self.service_date, self.diagnosis, self.age]


@dataclass(frozen=True)
class AgeBand:
    """
    Half-open age interval [min_age, max_age).

    Either bound may be omitted. A band with no bounds matches every row,
    including rows with a missing age; a bounded band never matches a
    missing age.
    """
    name: str
    min_age: Optional[int] = None
    max_age: Optional[int] = None

    def __post_init__(self):
        if (self.min_age is not None and self.max_age is not None
                and self.min_age >= self.max_age):
            raise CohortQueryError(
                f"Age band {self.name!r} is empty: [{self.min_age}, {self.max_age})"
            )

    @property
    def is_unbounded(self) -> bool:
        return self.min_age is None and self.max_age is None

    @property
    def is_empty(self) -> bool:
        return False

    def __call__(self, age: Any) -> bool:
        if self.is_unbounded:
            return True
        if age is None or pd.isna(age):
            return False
        if self.min_age is not None and age < self.min_age:
            return False
        if self.max_age is not None and age >= self.max_age:
            return False
        return True

    def mask(self, ages: pd.Series) -> pd.Series:
        """Vectorized form of the predicate."""
        if self.is_unbounded:
            return pd.Series(True, index=ages.index)
        values = pd.to_numeric(ages, errors='coerce')
        keep = values.notna()
        if self.min_age is not None:
            keep &= values >= self.min_age
        if self.max_age is not None:
            keep &= values < self.max_age
        return keep

    def intersect(self, other: 'AgeBand') -> 'AgeBand':
        """Band matching ages accepted by both bands."""
        if self.is_empty:
            return self
        if other.is_empty:
            return other
        lows = [b for b in (self.min_age, other.min_age) if b is not None]
        highs = [b for b in (self.max_age, other.max_age) if b is not None]
        low = max(lows) if lows else None
        high = min(highs) if highs else None
        if low is not None and high is not None and low >= high:
            return _EmptyAgeBand(f"{self.name}&{other.name}", low, low + 1)
        if other.is_unbounded:
            return self
        if self.is_unbounded:
            return other
        return AgeBand(f"{self.name}&{other.name}", low, high)

    def describe(self) -> str:
        if self.is_unbounded:
            return "all ages"
        if self.max_age is None:
            return f"age >= {self.min_age}"
        if self.min_age is None:
            return f"age < {self.max_age}"
        return f"{self.min_age} <= age < {self.max_age}"


@dataclass(frozen=True)
class _EmptyAgeBand(AgeBand):
    """Result of intersecting disjoint bands."""

    @property
    def is_empty(self) -> bool:
        return True

    def __call__(self, age: Any) -> bool:
        return False

    def mask(self, ages: pd.Series) -> pd.Series:
        return pd.Series(False, index=ages.index)


ALL_AGES = AgeBand('all_ages')

# Age groups examined in the manuscript
STANDARD_AGE_BANDS = {
    'all_ages': ALL_AGES,
    'under_5': AgeBand('under_5', 0, 5),
    'age_5_17': AgeBand('age_5_17', 5, 18),
    'under_65': AgeBand('under_65', 0, 65),
    'elderly': AgeBand('elderly', 65, None),
}


AgePredicate = Callable[[Any], bool]


@dataclass(frozen=True)
class CohortFilter:
    """The four filters defining one cohort. All are required."""
    county_code: str
    service_date: date
    diagnosis_code: str
    age_predicate: AgePredicate

    def __post_init__(self):
        if not self.county_code:
            raise CohortQueryError("county_code is required")
        if not self.diagnosis_code:
            raise CohortQueryError("diagnosis_code is required")
        if self.age_predicate is None or not callable(self.age_predicate):
            raise CohortQueryError("age_predicate must be a callable of age")
        object.__setattr__(self, 'service_date', parse_service_date(self.service_date))


def parse_service_date(value: Any) -> date:
    """
    Normalize a service date to `datetime.date`.

    Accepts dates, datetimes, pandas Timestamps, ISO strings ("2018-05-01")
    and the claims extract's DDMONYYYY strings ("01MAY2018").
    """
    if value is None or value is pd.NaT or (isinstance(value, float) and pd.isna(value)):
        raise CohortQueryError("Service date is missing")
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if _SAS_DATE_RE.match(text):
                return datetime.strptime(text.upper(), '%d%b%Y').date()
            return date.fromisoformat(text)
        except ValueError:
            pass
    raise CohortQueryError(f"Unrecognized service date: {value!r}")


def format_sas_date(value: date) -> str:
    """Render a date the way the claims extract stores it ("01MAY2018")."""
    return value.strftime('%d%b%Y').upper()
