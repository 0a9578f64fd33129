"""
Claims sources for cohort queries.

A claims source is an explicit handle on a Medi-Cal claims table. Every query
function receives one; there is no module-level connection. Two backends are
provided:

- `DuckDBClaimsSource`: SQL pushdown against a DuckDB table (the 2018
  Medi-Cal extract, `medicaid_data_california_2018`)
- `FrameClaimsSource`: an in-memory pandas frame, used for small extracts
  and tests

`FilteredClaimsSource` wraps either one with a fixed county and age filter so
the same county view can serve many date/diagnosis queries.
"""

import re
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, List, Optional

import duckdb
import pandas as pd
import logging

from .exceptions import CohortQueryError, DataSourceError
from .models import AgeBand, AgePredicate, ClaimsColumns, parse_service_date

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['county_code', 'beneficiary_id']

COUNTY_CODE_WIDTH = 3

_IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class ClaimsSource(ABC):
    """Queryable table of claim rows."""

    columns: ClaimsColumns

    @abstractmethod
    def select(
        self,
        county_code: str,
        service_date: Optional[date] = None,
        diagnosis_code: Optional[str] = None,
        age_predicate: Optional[AgePredicate] = None
    ) -> pd.DataFrame:
        """
        Project matching claim rows to (county_code, beneficiary_id).

        Args:
            county_code: Exact county code (e.g. '019')
            service_date: Exact service-begin date, or None for any date
            diagnosis_code: Exact primary diagnosis code, or None for any
            age_predicate: Boolean function of age, or None for any age

        Returns:
            DataFrame with columns county_code, beneficiary_id. Rows are not
            guaranteed to be unique.
        """


class FrameClaimsSource(ClaimsSource):
    """Claims held in a pandas DataFrame."""

    def __init__(self, frame: pd.DataFrame, columns: Optional[ClaimsColumns] = None):
        self.columns = columns or ClaimsColumns()

        missing = [col for col in self.columns.required() if col not in frame.columns]
        if missing:
            raise DataSourceError(f"Claims frame is missing required columns: {missing}")

        self.frame = frame.copy()
        self.frame[self.columns.county] = _pad_county(self.frame[self.columns.county])
        try:
            self.frame[self.columns.service_date] = _normalize_dates(
                self.frame[self.columns.service_date]
            )
        except CohortQueryError as e:
            raise DataSourceError(f"Claims frame has an unreadable service date: {e}") from e

        logger.debug(f"Claims frame ready with {len(self.frame)} rows")

    def select(self, county_code, service_date=None, diagnosis_code=None, age_predicate=None):
        cols = self.columns
        df = self.frame

        keep = df[cols.county] == county_code
        if service_date is not None:
            keep &= df[cols.service_date] == parse_service_date(service_date)
        if diagnosis_code is not None:
            keep &= df[cols.diagnosis] == diagnosis_code

        rows = df.loc[keep]
        if age_predicate is not None:
            rows = rows.loc[_age_mask(rows[cols.age], age_predicate)]

        rows = rows[[cols.county, cols.beneficiary]]
        rows.columns = RESULT_COLUMNS
        return rows.reset_index(drop=True)


class DuckDBClaimsSource(ClaimsSource):
    """
    Claims stored in a DuckDB table.

    County, date and diagnosis filters are always pushed to SQL. `AgeBand`
    predicates are pushed down as bound comparisons; any other callable is
    applied to the fetched AGE values.
    """

    def __init__(
        self,
        connection: duckdb.DuckDBPyConnection,
        table_name: str,
        columns: Optional[ClaimsColumns] = None,
        date_format: Optional[str] = None
    ):
        """
        Args:
            connection: Open DuckDB connection
            table_name: Claims table, optionally schema-qualified
            columns: Column mapping (defaults to the T-MSIS names)
            date_format: strftime pattern when the date column is stored as
                text (the extract uses '%d%b%Y', e.g. '01MAY2018'); None when
                the column is a DATE
        """
        self.connection = connection
        self.table_name = table_name
        self.columns = columns or ClaimsColumns()
        self.date_format = date_format
        self._table_sql = '.'.join(_quote_identifier(part) for part in table_name.split('.'))

    @classmethod
    def connect(
        cls,
        database: str,
        table_name: str,
        columns: Optional[ClaimsColumns] = None,
        date_format: Optional[str] = None,
        read_only: bool = True
    ) -> 'DuckDBClaimsSource':
        """Open a DuckDB database file and wrap its claims table."""
        logger.info(f"Connecting to claims database {database} (table {table_name})")
        try:
            connection = duckdb.connect(database, read_only=read_only)
        except duckdb.Error as e:
            raise DataSourceError(f"Could not open claims database {database}: {e}") from e
        return cls(connection, table_name, columns=columns, date_format=date_format)

    def close(self):
        self.connection.close()

    def select(self, county_code, service_date=None, diagnosis_code=None, age_predicate=None):
        cols = self.columns
        # Integer county columns lose the leading zero ("019" -> 19)
        county_sql = f"lpad(CAST({_quote_identifier(cols.county)} AS VARCHAR), {COUNTY_CODE_WIDTH}, '0')"
        clauses = [f"{county_sql} = ?"]
        params: List[Any] = [county_code]

        if service_date is not None:
            clauses.append(f"{_quote_identifier(cols.service_date)} = ?")
            params.append(self._date_param(parse_service_date(service_date)))
        if diagnosis_code is not None:
            clauses.append(f"{_quote_identifier(cols.diagnosis)} = ?")
            params.append(diagnosis_code)

        pushdown = age_predicate is None or isinstance(age_predicate, AgeBand)
        if isinstance(age_predicate, AgeBand):
            if age_predicate.is_empty:
                clauses.append("FALSE")
            else:
                if age_predicate.min_age is not None:
                    clauses.append(f"{_quote_identifier(cols.age)} >= ?")
                    params.append(age_predicate.min_age)
                if age_predicate.max_age is not None:
                    clauses.append(f"{_quote_identifier(cols.age)} < ?")
                    params.append(age_predicate.max_age)

        projection = [
            f"{county_sql} AS county_code",
            f"{_quote_identifier(cols.beneficiary)} AS beneficiary_id",
        ]
        if not pushdown:
            projection.append(f"{_quote_identifier(cols.age)} AS age")

        sql = (
            f"SELECT DISTINCT {', '.join(projection)} "
            f"FROM {self._table_sql} WHERE {' AND '.join(clauses)}"
        )

        # A cursor per query keeps concurrent callers off the shared connection
        try:
            cursor = self.connection.cursor()
            try:
                rows = cursor.execute(sql, params).df()
            finally:
                cursor.close()
        except duckdb.Error as e:
            raise DataSourceError(f"Claims query against {self.table_name} failed: {e}") from e

        if not pushdown:
            rows = rows.loc[_age_mask(rows['age'], age_predicate)]

        rows = rows[RESULT_COLUMNS].copy()
        rows['county_code'] = rows['county_code'].astype(str)
        return rows.reset_index(drop=True)

    def _date_param(self, value: date):
        if self.date_format:
            return value.strftime(self.date_format).upper()
        return value


class FilteredClaimsSource(ClaimsSource):
    """
    A claims source restricted to one county and one age predicate.

    Every row it yields satisfies both. Queries for any other county return
    no rows.
    """

    def __init__(self, parent: ClaimsSource, county_code: str, age_predicate: AgePredicate):
        if not county_code:
            raise CohortQueryError("county_code is required for a county view")
        if age_predicate is None or not callable(age_predicate):
            raise CohortQueryError("age_predicate must be a callable of age")
        self.parent = parent
        self.county_code = county_code
        self.age_predicate = age_predicate
        self.columns = parent.columns

    def select(self, county_code, service_date=None, diagnosis_code=None, age_predicate=None):
        if county_code != self.county_code:
            return pd.DataFrame(columns=RESULT_COLUMNS)
        combined = _combine_predicates(self.age_predicate, age_predicate)
        return self.parent.select(county_code, service_date, diagnosis_code, combined)


def as_claims_source(table: Any, columns: Optional[ClaimsColumns] = None) -> ClaimsSource:
    """Accept a ClaimsSource or a raw DataFrame of claims."""
    if isinstance(table, ClaimsSource):
        return table
    if isinstance(table, pd.DataFrame):
        return FrameClaimsSource(table, columns=columns)
    raise DataSourceError(f"Unsupported claims table type: {type(table).__name__}")


def _combine_predicates(first: AgePredicate, second: Optional[AgePredicate]) -> AgePredicate:
    if second is None:
        return first
    if isinstance(first, AgeBand) and isinstance(second, AgeBand):
        return first.intersect(second)
    return lambda age: bool(first(age)) and bool(second(age))


def _age_mask(ages: pd.Series, predicate: AgePredicate) -> pd.Series:
    if isinstance(predicate, AgeBand):
        return predicate.mask(ages)
    # Missing ages never satisfy a custom predicate
    return ages.map(lambda age: False if pd.isna(age) else bool(predicate(age))).astype(bool)


def _pad_county(values: pd.Series) -> pd.Series:
    """Three-digit county codes, whether read as text, int or float."""
    text = values.astype(str).str.strip().str.replace(r'\.0$', '', regex=True)
    return text.str.zfill(COUNTY_CODE_WIDTH)


def _normalize_dates(values: pd.Series) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(values):
        return values.dt.date
    lookup = {value: parse_service_date(value) for value in values.dropna().unique()}
    return values.map(lookup)


def _quote_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise DataSourceError(f"Invalid column or table name: {name!r}")
    return f'"{name}"'
