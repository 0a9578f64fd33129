"""
Study-wide cohort extraction.

The manuscript needs one cohort count for every combination of county, day
in that county's outage window, diagnosis and age band. This module expands
the configured windows into those tasks and runs them against a claims
source. Tasks are independent reads, so they may run on a thread pool
without changing the results.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, Iterator, List, Tuple

import pandas as pd
import logging

from .claims import ClaimsSource
from .cohort import execute_filter
from .exceptions import ConfigError, DataSourceError
from .models import STANDARD_AGE_BANDS, AgeBand, CohortFilter, parse_service_date
from .utils.config import StudyConfig

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    'window', 'county_code', 'county_name', 'service_date',
    'diagnosis_key', 'diagnosis_code', 'diagnosis_group',
    'age_band', 'count', 'error',
]


@dataclass(frozen=True)
class Diagnosis:
    """An ICD-10 primary diagnosis tracked by the study."""
    key: str
    code: str
    label: str = ""
    group: str = ""
    # Restrict to these county codes; empty means every county
    counties: Tuple[str, ...] = ()

    def applies_to(self, county_code: str) -> bool:
        return not self.counties or county_code in self.counties


@dataclass(frozen=True)
class StudyWindow:
    """Pre/post event window for one county."""
    name: str
    county_code: str
    county_name: str
    start: date
    end: date
    diagnoses: Tuple[str, ...]
    age_bands: Tuple[str, ...]

    def dates(self) -> List[date]:
        """Every calendar day in the window, inclusive."""
        return [ts.date() for ts in pd.date_range(self.start, self.end, freq='D')]


@dataclass(frozen=True)
class CohortTask:
    window: str
    county_code: str
    county_name: str
    service_date: date
    diagnosis: Diagnosis
    age_band: AgeBand

    @property
    def filter(self) -> CohortFilter:
        return CohortFilter(self.county_code, self.service_date, self.diagnosis.code, self.age_band)

    def describe(self) -> str:
        return (f"{self.county_name} ({self.county_code}) {self.service_date} "
                f"{self.diagnosis.code} {self.age_band.name}")


class ExtractionPlan:
    """
    Enumeration of (county x date x diagnosis x age band) cohort tasks.

    Replaces one hand-written query per combination with an explicit table
    of windows, diagnoses and age bands.
    """

    def __init__(
        self,
        diagnoses: Dict[str, Diagnosis],
        age_bands: Dict[str, AgeBand],
        windows: List[StudyWindow]
    ):
        self.diagnoses = diagnoses
        self.age_bands = age_bands
        self.windows = windows

        for window in windows:
            unknown = [k for k in window.diagnoses if k not in diagnoses]
            unknown += [k for k in window.age_bands if k not in age_bands]
            if unknown:
                raise ConfigError(f"Window {window.name!r} references unknown keys: {unknown}")

    @classmethod
    def from_config(cls, config: StudyConfig) -> 'ExtractionPlan':
        """Build the plan from the `diagnoses`, `age_bands` and `windows` config sections."""
        diagnoses = {
            key: Diagnosis(
                key=key,
                code=str(spec['code']),
                label=spec.get('label', ''),
                group=spec.get('group', ''),
                counties=tuple(str(c) for c in spec.get('counties', ())),
            )
            for key, spec in config.diagnoses.items()
        }

        age_bands = dict(STANDARD_AGE_BANDS)
        for name, spec in config.age_bands.items():
            spec = spec or {}
            age_bands[name] = AgeBand(name, spec.get('min_age'), spec.get('max_age'))

        windows = []
        for spec in config.windows:
            county_code = str(spec['county_code'])
            window_diagnoses = spec.get('diagnoses') or [
                key for key, dx in diagnoses.items() if dx.applies_to(county_code)
            ]
            windows.append(StudyWindow(
                name=spec.get('name', county_code),
                county_code=county_code,
                county_name=spec.get('county_name', county_code),
                start=parse_service_date(spec['start']),
                end=parse_service_date(spec['end']),
                diagnoses=tuple(window_diagnoses),
                age_bands=tuple(spec.get('age_bands') or list(config.age_bands) or ['elderly']),
            ))

        return cls(diagnoses, age_bands, windows)

    def tasks(self) -> Iterator[CohortTask]:
        for window in self.windows:
            for service_date in window.dates():
                for dx_key in window.diagnoses:
                    for band_key in window.age_bands:
                        yield CohortTask(
                            window=window.name,
                            county_code=window.county_code,
                            county_name=window.county_name,
                            service_date=service_date,
                            diagnosis=self.diagnoses[dx_key],
                            age_band=self.age_bands[band_key],
                        )

    def __len__(self) -> int:
        return sum(
            len(w.dates()) * len(w.diagnoses) * len(w.age_bands) for w in self.windows
        )


class CohortExtractor:
    """
    Runs every task of an extraction plan against one claims source.

    A failed query fails only its own task: the error is logged and kept in
    the `error` column, and the count is left missing. With `strict=True`
    the first failure is raised instead.
    """

    def __init__(self, source: ClaimsSource, max_workers: int = 1, strict: bool = False):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.source = source
        self.max_workers = max_workers
        self.strict = strict

    def run(self, plan: ExtractionPlan) -> pd.DataFrame:
        """
        Count every cohort in the plan.

        Returns:
            DataFrame with one row per task (see RESULT_COLUMNS), sorted by
            window, date, diagnosis and age band
        """
        tasks = list(plan.tasks())
        logger.info(f"Running {len(tasks)} cohort queries with {self.max_workers} worker(s)")

        if self.max_workers == 1:
            records = [self._run_task(task) for task in tasks]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                records = list(pool.map(self._run_task, tasks))

        results = pd.DataFrame.from_records(records, columns=RESULT_COLUMNS)
        results['count'] = results['count'].astype('Int64')

        failed = int(results['error'].notna().sum())
        if failed:
            logger.warning(f"{failed} of {len(results)} cohort queries failed")
        logger.info(f"Extraction complete: {len(results) - failed} cohorts counted")

        return results.sort_values(
            ['window', 'service_date', 'diagnosis_key', 'age_band']
        ).reset_index(drop=True)

    def _run_task(self, task: CohortTask) -> Dict:
        record = {
            'window': task.window,
            'county_code': task.county_code,
            'county_name': task.county_name,
            'service_date': task.service_date,
            'diagnosis_key': task.diagnosis.key,
            'diagnosis_code': task.diagnosis.code,
            'diagnosis_group': task.diagnosis.group,
            'age_band': task.age_band.name,
            'count': None,
            'error': None,
        }
        try:
            counts = execute_filter(self.source, task.filter)
            record['count'] = counts[task.county_code]
        except DataSourceError as e:
            if self.strict:
                raise
            logger.error(f"Cohort query failed for {task.describe()}: {e}")
            record['error'] = str(e)
        return record


def pivot_daily_counts(results: pd.DataFrame) -> pd.DataFrame:
    """One row per (window, county, age band, date); one column per diagnosis."""
    wide = results.pivot(
        index=['window', 'county_code', 'county_name', 'age_band', 'service_date'],
        columns='diagnosis_key',
        values='count',
    )
    wide.columns.name = None
    return wide.reset_index()


def save_results(results: pd.DataFrame, path: str) -> Path:
    """Write extraction results to CSV."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    results.to_csv(output_path, index=False)
    logger.info(f"Saved {len(results)} rows to {output_path}")
    return output_path
