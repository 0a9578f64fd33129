"""
Cohort counting against the claims table.

A cohort is the set of distinct beneficiaries with a claim in one county, on
one service date, with one primary diagnosis, within one age band. Each count
is an independent read; counts for different filters never interact.

Usage:
    count_cohort(source, '019', '01MAY2018', 'J069', STANDARD_AGE_BANDS['elderly'])

    # describe, then run
    query = CohortQuery(source).county('019').on('2018-05-01').diagnosis('J069')
    query.age(lambda age: age > 64).collect()
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

import logging

from .claims import RESULT_COLUMNS, ClaimsSource, FilteredClaimsSource, as_claims_source
from .exceptions import CohortQueryError
from .models import (
    ALL_AGES,
    STANDARD_AGE_BANDS,
    AgeBand,
    AgePredicate,
    CohortFilter,
    parse_service_date,
)

logger = logging.getLogger(__name__)

__all__ = [
    'ALL_AGES',
    'STANDARD_AGE_BANDS',
    'AgeBand',
    'CohortFilter',
    'CohortQuery',
    'count_cohort',
    'county_view',
    'execute_filter',
    'parse_service_date',
]


def count_cohort(
    table: Any,
    county_code: str,
    service_date: Any,
    diagnosis_code: str,
    age_predicate: AgePredicate
) -> Dict[str, int]:
    """
    Count distinct beneficiaries matching all four filters.

    Args:
        table: ClaimsSource (or a claims DataFrame)
        county_code: Exact 3-digit county code, e.g. '019'
        service_date: Single service-begin date
        diagnosis_code: Exact primary diagnosis code (DGNS_CD_1), e.g. 'J069'
        age_predicate: Boolean function of age, e.g. an AgeBand

    Returns:
        {county_code: count}. The county is always present; an empty
        cohort is reported as 0.

    Raises:
        DataSourceError: the claims table could not be queried
        CohortQueryError: a filter is missing or malformed
    """
    cohort_filter = CohortFilter(county_code, service_date, diagnosis_code, age_predicate)
    return execute_filter(as_claims_source(table), cohort_filter)


def execute_filter(source: ClaimsSource, cohort_filter: CohortFilter) -> Dict[str, int]:
    """Run one cohort filter against a claims source."""
    rows = source.select(
        cohort_filter.county_code,
        service_date=cohort_filter.service_date,
        diagnosis_code=cohort_filter.diagnosis_code,
        age_predicate=cohort_filter.age_predicate,
    )

    # One row per beneficiary, however many claims they generated. Every row
    # already matches the filter county, so the total is keyed by it.
    distinct = rows[RESULT_COLUMNS].drop_duplicates()
    counts = {cohort_filter.county_code: int(distinct['beneficiary_id'].nunique())}

    logger.debug(
        f"Cohort {cohort_filter.county_code} {cohort_filter.service_date} "
        f"{cohort_filter.diagnosis_code}: {counts[cohort_filter.county_code]}"
    )
    return counts


def county_view(table: Any, county_code: str, age_predicate: AgePredicate) -> FilteredClaimsSource:
    """
    Restrict a claims table to one county and age predicate.

    The view is itself a claims source, so it can be passed back into
    `count_cohort` for any number of date/diagnosis queries.
    """
    return FilteredClaimsSource(as_claims_source(table), county_code, age_predicate)


@dataclass(frozen=True)
class CohortQuery:
    """
    Two-phase cohort query: describe the filters, then `collect()`.

    Each builder method returns a new query; nothing touches the claims
    table until `collect()` is called.
    """
    table: Any
    county_code: Optional[str] = None
    service_date: Any = None
    diagnosis_code: Optional[str] = None
    age_predicate: Optional[AgePredicate] = None

    def county(self, county_code: str) -> 'CohortQuery':
        return replace(self, county_code=county_code)

    def on(self, service_date: Any) -> 'CohortQuery':
        return replace(self, service_date=parse_service_date(service_date))

    def diagnosis(self, diagnosis_code: str) -> 'CohortQuery':
        return replace(self, diagnosis_code=diagnosis_code)

    def age(self, age_predicate: AgePredicate) -> 'CohortQuery':
        return replace(self, age_predicate=age_predicate)

    @property
    def filter(self) -> CohortFilter:
        missing = [
            name for name, value in (
                ('county', self.county_code),
                ('date', self.service_date),
                ('diagnosis', self.diagnosis_code),
                ('age', self.age_predicate),
            )
            if value is None
        ]
        if missing:
            raise CohortQueryError(f"Cohort query is missing filters: {missing}")
        return CohortFilter(self.county_code, self.service_date, self.diagnosis_code, self.age_predicate)

    def collect(self) -> Dict[str, int]:
        return execute_filter(as_claims_source(self.table), self.filter)

    execute = collect
