"""
Configuration management for the outage health analysis.

Centralizes file locations, claims-table settings and the study extraction
plan, and provides validation.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import yaml
import logging

from ..exceptions import CohortQueryError, ConfigError
from ..models import parse_service_date

logger = logging.getLogger(__name__)


@dataclass
class ClaimsConfig:
    """
    Claims table settings.

    Attributes:
        database: DuckDB database file holding the claims extract
        table_name: Claims table name
        date_format: strftime pattern of a text date column, or None for DATE
        columns: Column name overrides (county, beneficiary, service_date,
            diagnosis, age)
    """
    database: Optional[str] = None
    table_name: str = "medicaid_data_california_2018"
    date_format: Optional[str] = "%d%b%Y"
    columns: Dict[str, str] = field(default_factory=dict)


@dataclass
class StudyConfig:
    """
    Configuration for the outage health study.

    Attributes:
        version: Configuration version
        data_dir: Base path locating every input CSV
        figure_dir: Figure output directory (defaults to <data_dir>/figures)
        output_dir: Extraction output directory
        analysis_year: Calendar year analysed
        state_fips: State FIPS code for county boundaries
    """
    version: str = "1.0.0"
    analysis_year: int = 2018
    state_fips: str = "06"

    # Data paths
    data_dir: str = "data"
    figure_dir: Optional[str] = None
    output_dir: str = "outputs"

    # Input files, relative to data_dir
    power_daily_file: str = "California_Power_Outages_Date_2017_2023_FIPS.csv"
    power_county_file: str = "CA_2018_CustomerHoursOut_by_County_FIPS.csv"
    fires_file: str = "California Wildfires 2018-Accurate.csv"
    boundaries_file: str = "cb_2018_us_county_500k.zip"
    regression_files: Dict[str, str] = field(default_factory=lambda: {
        'Riverside': "Riverside_Data_Regression.csv",
        'Orange': "Orange_Data_Regression.csv",
    })

    # LOESS settings
    loess_span: float = 0.75
    loess_degree: int = 2

    # Cohort extraction
    claims: ClaimsConfig = field(default_factory=ClaimsConfig)
    max_workers: int = 1
    diagnoses: Dict[str, Dict] = field(default_factory=dict)
    age_bands: Dict[str, Dict] = field(default_factory=dict)
    windows: List[Dict] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.claims, dict):
            self.claims = ClaimsConfig(**self.claims)
        self.state_fips = str(self.state_fips).zfill(2)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'StudyConfig':
        """Load configuration from YAML file."""
        with open(yaml_path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}
        try:
            return cls(**config_dict)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration in {yaml_path}: {e}") from e

    def to_yaml(self, yaml_path: str):
        """Save configuration to YAML file."""
        with open(yaml_path, 'w') as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)

    def input_path(self, filename: str) -> Path:
        return Path(self.data_dir) / filename

    @property
    def figure_path(self) -> Path:
        if self.figure_dir:
            return Path(self.figure_dir)
        return Path(self.data_dir) / "figures"

    def validate(self) -> bool:
        """Validate configuration parameters."""
        errors = []

        if not 0 < self.loess_span:
            errors.append(f"loess_span must be positive, got {self.loess_span}")
        if self.loess_degree not in (0, 1, 2):
            errors.append(f"loess_degree must be 0, 1 or 2, got {self.loess_degree}")
        if self.max_workers < 1:
            errors.append(f"max_workers must be at least 1, got {self.max_workers}")
        if len(self.state_fips) != 2 or not self.state_fips.isdigit():
            errors.append(f"state_fips must be two digits, got {self.state_fips!r}")

        for key, spec in self.diagnoses.items():
            if not spec.get('code'):
                errors.append(f"Diagnosis {key!r} has no ICD-10 code")

        for window in self.windows:
            name = window.get('name', window.get('county_code'))
            if not window.get('county_code'):
                errors.append(f"Window {name!r} has no county_code")
            try:
                start = parse_service_date(window['start'])
                end = parse_service_date(window['end'])
                if start > end:
                    errors.append(f"Window {name!r} ends before it starts")
            except (KeyError, CohortQueryError):
                errors.append(f"Window {name!r} needs ISO start and end dates")
            for key in window.get('diagnoses', []):
                if key not in self.diagnoses:
                    errors.append(f"Window {name!r} references unknown diagnosis {key!r}")

        for error in errors:
            logger.error(error)

        if errors:
            logger.error("Invalid configuration parameters")
        return not errors
