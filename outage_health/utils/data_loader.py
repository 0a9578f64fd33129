"""
Data loading utilities for the descriptive figures.

Provides functions to load the outage, wildfire and regression CSV extracts
from the configured data directory and to aggregate them to the level each
figure needs.
"""

import calendar
import re
import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional
import logging

from ..exceptions import MissingColumnError
from ..geography import normalize_county_names, pad_fips

logger = logging.getLogger(__name__)

# Header variants seen across wildfire extracts
WILDFIRE_ALIASES = {
    'County': ['CountyName', 'County', 'County_Name', 'Counties'],
    'Year': ['Year', 'FireYear', 'ArchiveYear'],
    'AcresBurned': ['AcresBurned', 'Acres', 'Acres_Burned', 'TotalAcres', 'GIS_Acres'],
}

REGRESSION_ALIASES = {
    'day_offset': ['Converted.Date', 'Converted Date', 'Converted_Date', 'DayOffset', 'day_offset'],
    'outcome': ['Respiratory.Infections', 'Respiratory Infections', 'Respiratory_Infections'],
}


class FigureDataLoader:
    """
    Figure input loader.

    Every path is resolved against the configured data directory.
    """

    def __init__(self, config):
        """
        Initialize data loader.

        Args:
            config: Study configuration object
        """
        self.config = config
        self.data_dir = Path(config.data_dir)

    def load_daily_outages(self) -> pd.DataFrame:
        """Daily outage records with Year, Month and CustomerHoursOutTotal."""
        df = self.load_from_file(
            self.config.power_daily_file,
            required=['Year', 'Month', 'CustomerHoursOutTotal'],
        )
        for col in ('Year', 'Month', 'CustomerHoursOutTotal'):
            df[col] = pd.to_numeric(df[col], errors='coerce')
        return df

    def load_county_outages(self) -> pd.DataFrame:
        """County outage totals keyed by zero-padded 5-digit FIPS."""
        df = self.load_from_file(
            self.config.power_county_file,
            required=['county', 'FIPS', 'CustomerHoursOutTotal'],
            dtype={'county': str, 'FIPS': str},
        )
        df['FIPS'] = df['FIPS'].map(pad_fips)
        df['CustomerHoursOutTotal'] = pd.to_numeric(df['CustomerHoursOutTotal'], errors='coerce')
        return df

    def load_wildfires(self) -> pd.DataFrame:
        """Wildfire records normalized to County, Year, AcresBurned."""
        path = self.data_dir / self.config.fires_file
        df = self.load_from_file(self.config.fires_file)
        df = resolve_columns(df, WILDFIRE_ALIASES, str(path))

        df['County'] = df['County'].astype(str)
        df['Year'] = pd.to_numeric(df['Year'], errors='coerce').astype('Int64')
        df['AcresBurned'] = pd.to_numeric(df['AcresBurned'], errors='coerce')
        return df

    def load_regression(self, filename: str) -> pd.DataFrame:
        """Per-county regression input with day_offset and outcome columns."""
        path = self.data_dir / filename
        df = self.load_from_file(filename)
        df = resolve_columns(df, REGRESSION_ALIASES, str(path))
        df['day_offset'] = pd.to_numeric(df['day_offset'], errors='coerce')
        df['outcome'] = pd.to_numeric(df['outcome'], errors='coerce')
        return df

    def load_from_file(
        self,
        filename: str,
        required: Optional[List[str]] = None,
        dtype: Optional[Dict] = None
    ) -> pd.DataFrame:
        """Load a CSV from the data directory, checking required columns."""
        file_path = self.data_dir / filename
        logger.info(f"Loading data from {file_path}")

        df = pd.read_csv(file_path, dtype=dtype)

        missing_cols = [col for col in (required or []) if col not in df.columns]
        if missing_cols:
            raise MissingColumnError(str(file_path), missing_cols)

        return df


def resolve_columns(df: pd.DataFrame, aliases: Dict[str, List[str]], source: str) -> pd.DataFrame:
    """
    Rename known header variants to canonical column names.

    Matching ignores case, spaces, dots and underscores.

    Raises:
        MissingColumnError: no variant of a canonical column is present
    """
    by_key = {_header_key(col): col for col in df.columns}
    renames = {}
    missing = []
    for canonical, variants in aliases.items():
        found = next((by_key[_header_key(v)] for v in variants if _header_key(v) in by_key), None)
        if found is None:
            missing.append(canonical)
        else:
            renames[found] = canonical
    if missing:
        raise MissingColumnError(source, missing)
    return df.rename(columns=renames)


def monthly_outage_totals(daily: pd.DataFrame, year: int) -> pd.DataFrame:
    """
    Sum customer-hours-out by month for one year.

    Returns:
        DataFrame with Month, TotalHoursOut and an ordered MonthName category
    """
    year_df = daily[daily['Year'] == year]
    monthly = (
        year_df.groupby('Month', as_index=False)['CustomerHoursOutTotal']
        .sum()
        .rename(columns={'CustomerHoursOutTotal': 'TotalHoursOut'})
        .sort_values('Month')
        .reset_index(drop=True)
    )
    month_names = list(calendar.month_name)[1:]
    monthly['MonthName'] = pd.Categorical(
        monthly['Month'].map(lambda m: calendar.month_name[int(m)]),
        categories=month_names,
        ordered=True,
    )
    return monthly


def wildfire_totals(fires: pd.DataFrame, year: int) -> pd.DataFrame:
    """Total acres burned per normalized county name (COUNTY_UP) for one year."""
    year_df = fires[fires['Year'] == year].copy()
    year_df['COUNTY_UP'] = normalize_county_names(year_df['County'])
    return (
        year_df.groupby('COUNTY_UP', as_index=False)['AcresBurned']
        .sum()
        .rename(columns={'AcresBurned': 'AcresBurnedTotal'})
    )


def _header_key(name: str) -> str:
    return re.sub(r'[\s._]', '', str(name)).lower()
