"""Shared test fixtures for cohort and figure tests."""

import matplotlib

matplotlib.use("Agg")

import duckdb
import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from outage_health.claims import DuckDBClaimsSource, FrameClaimsSource
from outage_health.geography import normalize_county_names
from outage_health.utils.config import StudyConfig

# (county, beneficiary, service date, primary dx, secondary dx, age)
CLAIM_ROWS = [
    # Elderly respiratory infection, duplicated claim on the same day
    ('019', 'A', '2018-05-01', 'J069', 'J449', 70),
    ('019', 'A', '2018-05-01', 'J069', None, 70),
    # Target code only in the secondary diagnosis
    ('019', 'B', '2018-05-01', 'J449', 'J069', 70),
    # Working-age adult
    ('019', 'C', '2018-05-01', 'J069', None, 30),
    # Lower-case code
    ('019', 'D', '2018-05-01', 'j069', None, 80),
    # Next day
    ('019', 'E', '2018-05-02', 'J069', None, 66),
    # Other county
    ('065', 'F', '2018-05-01', 'J069', None, 75),
    # Age not recorded
    ('019', 'G', '2018-05-01', 'J069', None, None),
    # Young child
    ('019', 'H', '2018-05-01', 'J069', None, 3),
    # Boundary of the elderly band
    ('019', 'I', '2018-05-01', 'J449', None, 64),
    ('019', 'J', '2018-05-01', 'J449', None, 65),
]

CLAIM_COLUMNS = ['BENE_CNTY_CD', 'MSIS_ID', 'SRVC_BGN_DT', 'DGNS_CD_1', 'DGNS_CD_2', 'AGE']


def _sql_literal(value):
    if value is None:
        return 'NULL'
    if isinstance(value, str):
        return f"'{value}'"
    return str(value)


def _sas_date(iso: str) -> str:
    return pd.Timestamp(iso).strftime('%d%b%Y').upper()


def create_claims_table(con, table_name='medicaid_data_california_2018', rows=CLAIM_ROWS):
    """Claims table with DDMONYYYY text dates, as in the T-MSIS extract."""
    values = ',\n'.join(
        '(' + ', '.join(_sql_literal(v) for v in (c, b, _sas_date(d), dx1, dx2)) + f", {_sql_literal(age)})"
        for c, b, d, dx1, dx2, age in rows
    )
    con.execute(f"""
        CREATE TABLE {table_name} (
            BENE_CNTY_CD VARCHAR,
            MSIS_ID VARCHAR,
            SRVC_BGN_DT VARCHAR,
            DGNS_CD_1 VARCHAR,
            DGNS_CD_2 VARCHAR,
            AGE INTEGER
        )
    """)
    con.execute(f"INSERT INTO {table_name} VALUES\n{values}")


@pytest.fixture
def claims_frame():
    return pd.DataFrame(CLAIM_ROWS, columns=CLAIM_COLUMNS)


@pytest.fixture
def frame_source(claims_frame):
    return FrameClaimsSource(claims_frame)


@pytest.fixture
def con():
    """DuckDB connection with a synthetic claims table."""
    c = duckdb.connect(":memory:")
    create_claims_table(c)
    yield c
    c.close()


@pytest.fixture
def duckdb_source(con):
    return DuckDBClaimsSource(con, 'medicaid_data_california_2018', date_format='%d%b%Y')


@pytest.fixture
def claims_database(tmp_path):
    """DuckDB database file holding the synthetic claims table."""
    path = tmp_path / 'medicaid.duckdb'
    c = duckdb.connect(str(path))
    create_claims_table(c)
    c.close()
    return path


@pytest.fixture(params=['frame', 'duckdb'])
def claims_source(request, frame_source, duckdb_source):
    """Both claims backends, so every cohort property is checked twice."""
    return frame_source if request.param == 'frame' else duckdb_source


@pytest.fixture
def county_polygons():
    """Three unit squares standing in for California counties."""
    return gpd.GeoDataFrame(
        {
            'STATEFP': ['06', '06', '06', '32'],
            'COUNTYFP': ['019', '037', '065', '003'],
            'NAME': ['Fresno', 'Los Angeles', 'Riverside', 'Clark'],
            'geometry': [box(0, 0, 1, 1), box(1, 0, 2, 1), box(2, 0, 3, 1), box(3, 0, 4, 1)],
        },
        crs='EPSG:4326',
    )


@pytest.fixture
def california(county_polygons):
    """California polygons with the FIPS and COUNTY_UP join keys."""
    counties = county_polygons[county_polygons['STATEFP'] == '06'].copy()
    counties['FIPS'] = counties['STATEFP'] + counties['COUNTYFP']
    counties['COUNTY_UP'] = normalize_county_names(counties['NAME'])
    return counties.reset_index(drop=True)


@pytest.fixture
def figure_data_dir(tmp_path, county_polygons):
    """Data directory holding every figure input."""
    data_dir = tmp_path / 'data'
    data_dir.mkdir()

    pd.DataFrame({
        'Year': [2018, 2018, 2018, 2018, 2017],
        'Month': [1, 1, 2, 12, 1],
        'FIPS': ['06019', '06037', '06019', '06065', '06019'],
        'CustomerHoursOutTotal': [100.0, 50.0, None, 2_500_000.0, 999.0],
    }).to_csv(data_dir / 'daily.csv', index=False)

    pd.DataFrame({
        'county': ['Fresno', 'Los Angeles'],
        'FIPS': ['6019', '06037'],
        'CustomerHoursOutTotal': [12000.0, 450000.0],
    }).to_csv(data_dir / 'county_totals.csv', index=False)

    pd.DataFrame({
        'CountyName': ['Riverside County', 'riverside', 'Los Angeles', 'Shasta'],
        'Year': [2018, 2018, 2018, 2017],
        'AcresBurned': [23000, 1000, 96949, 229651],
    }).to_csv(data_dir / 'fires.csv', index=False)

    days = list(range(-30, 31))
    pd.DataFrame({
        'Converted.Date': days,
        'Respiratory.Infections': [10 + 0.05 * d + (d % 3) for d in days],
    }).to_csv(data_dir / 'riverside_regression.csv', index=False)

    county_polygons.to_file(data_dir / 'counties.geojson', driver='GeoJSON')
    return data_dir


@pytest.fixture
def figure_config(figure_data_dir):
    return StudyConfig(
        data_dir=str(figure_data_dir),
        power_daily_file='daily.csv',
        power_county_file='county_totals.csv',
        fires_file='fires.csv',
        boundaries_file='counties.geojson',
        regression_files={'Riverside': 'riverside_regression.csv'},
    )
