"""
County boundaries and join keys for the choropleth maps.

Measures are joined to Census cartographic boundary polygons either by
5-digit county FIPS or by a normalized county name. A key that fails to
match is not an error: the polygon keeps a missing measure and is drawn in
the neutral colour.
"""

import re
from typing import Any, Optional

import geopandas as gpd
import pandas as pd
import logging

from .exceptions import MissingColumnError

logger = logging.getLogger(__name__)

_COUNTY_SUFFIX_RE = re.compile(r'\s*County$', re.IGNORECASE)

BOUNDARY_COLUMNS = ['STATEFP', 'COUNTYFP', 'NAME']


def normalize_county_name(name: Any) -> Optional[str]:
    """
    Join key for a county name: trimmed, without a trailing "County", upper case.

    "Los Angeles County" and "Los Angeles" both become "LOS ANGELES".
    """
    if name is None or (not isinstance(name, str) and pd.isna(name)):
        return None
    return _COUNTY_SUFFIX_RE.sub('', str(name).strip()).upper()


def normalize_county_names(names: pd.Series) -> pd.Series:
    return names.map(normalize_county_name)


def pad_fips(value: Any) -> Optional[str]:
    """Zero-padded 5-digit county FIPS code."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    if text.endswith('.0'):
        text = text[:-2]
    return text.zfill(5)


def load_county_boundaries(path: str, state_fips: str = "06") -> gpd.GeoDataFrame:
    """
    Load county polygons for one state.

    Args:
        path: Any file geopandas can read holding Census county boundaries
            (e.g. cb_2018_us_county_500k.zip)
        state_fips: Two-digit state FIPS code (California is '06')

    Returns:
        GeoDataFrame with added FIPS (5-digit) and COUNTY_UP (name key) columns
    """
    logger.info(f"Loading county boundaries from {path}")
    counties = gpd.read_file(path)

    missing = [col for col in BOUNDARY_COLUMNS if col not in counties.columns]
    if missing:
        raise MissingColumnError(str(path), missing)

    counties = counties[counties['STATEFP'].astype(str).str.zfill(2) == state_fips].copy()
    counties['FIPS'] = (
        counties['STATEFP'].astype(str).str.zfill(2) + counties['COUNTYFP'].astype(str).str.zfill(3)
    )
    counties['COUNTY_UP'] = normalize_county_names(counties['NAME'])

    logger.info(f"Loaded {len(counties)} county polygons for state {state_fips}")
    return counties.reset_index(drop=True)


def join_measure(
    boundaries: gpd.GeoDataFrame,
    measure: pd.DataFrame,
    key: str,
    measure_column: str
) -> gpd.GeoDataFrame:
    """
    Left-join a per-county measure onto the county polygons.

    Every polygon is kept. Measure rows sharing a key are summed first so
    each polygon appears once. Keys that do not match are logged and left
    as missing values.
    """
    for frame, name in ((boundaries, 'boundaries'), (measure, 'measure data')):
        missing = [col for col in (key,) if col not in frame.columns]
        if missing:
            raise MissingColumnError(name, missing)
    if measure_column not in measure.columns:
        raise MissingColumnError('measure data', [measure_column])

    per_county = (
        measure.dropna(subset=[key])
        .groupby(key, as_index=False)[measure_column]
        .sum(min_count=1)
    )

    polygon_keys = set(boundaries[key].dropna())
    measure_keys = set(per_county[key])

    orphaned = sorted(measure_keys - polygon_keys)
    if orphaned:
        logger.warning(f"{len(orphaned)} {key} value(s) match no county polygon: {orphaned}")
    unmeasured = sorted(polygon_keys - measure_keys)
    if unmeasured:
        logger.warning(f"{len(unmeasured)} county polygon(s) have no {measure_column} value: {unmeasured}")

    joined = boundaries.merge(per_county, on=key, how='left')
    return gpd.GeoDataFrame(joined, geometry=boundaries.geometry.name, crs=boundaries.crs)
