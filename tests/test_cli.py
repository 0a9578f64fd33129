"""Tests for the command line entry point."""

import pandas as pd
import pytest
import yaml

from outage_health.cli import main


@pytest.fixture
def config_file(tmp_path, figure_config, claims_database):
    settings = {
        'data_dir': figure_config.data_dir,
        'power_daily_file': figure_config.power_daily_file,
        'power_county_file': figure_config.power_county_file,
        'fires_file': figure_config.fires_file,
        'boundaries_file': figure_config.boundaries_file,
        'regression_files': figure_config.regression_files,
        'claims': {'database': str(claims_database)},
        'diagnoses': {
            'respiratory_infection': {'code': 'J069'},
            'copd': {'code': 'J449'},
        },
        'windows': [{
            'name': 'fresno',
            'county_code': '019',
            'county_name': 'Fresno',
            'start': '2018-05-01',
            'end': '2018-05-03',
            'age_bands': ['all_ages', 'elderly'],
        }],
    }
    path = tmp_path / 'study.yaml'
    path.write_text(yaml.safe_dump(settings))
    return path


def test_extract(config_file, tmp_path):
    output = tmp_path / 'outputs'
    status = main(['--config', str(config_file), 'extract', '--output', str(output), '--workers', '2'])

    assert status == 0
    long = pd.read_csv(output / 'cohort_counts_long.csv', dtype={'county_code': str})
    assert len(long) == 3 * 2 * 2
    assert long['error'].isna().all()

    first_day = long[(long['service_date'] == '2018-05-01') & (long['age_band'] == 'elderly')]
    assert dict(zip(first_day['diagnosis_key'], first_day['count'])) == {
        'respiratory_infection': 1,
        'copd': 2,
    }

    daily = pd.read_csv(output / 'cohort_counts_daily.csv')
    assert len(daily) == 3 * 2
    assert {'respiratory_infection', 'copd'} <= set(daily.columns)


def test_extract_without_database(config_file, tmp_path):
    settings = yaml.safe_load(config_file.read_text())
    settings['claims'] = {}
    config_file.write_text(yaml.safe_dump(settings))

    assert main(['--config', str(config_file), 'extract', '--output', str(tmp_path / 'o')]) == 2


def test_extract_missing_table(config_file, tmp_path, claims_database):
    settings = yaml.safe_load(config_file.read_text())
    settings['claims'] = {'database': str(claims_database), 'table_name': 'claims_2019'}
    config_file.write_text(yaml.safe_dump(settings))

    status = main(['--config', str(config_file), 'extract', '--output', str(tmp_path / 'o')])

    assert status == 1
    long = pd.read_csv(tmp_path / 'o' / 'cohort_counts_long.csv')
    assert long['error'].notna().all()


def test_figures(config_file, tmp_path):
    figure_dir = tmp_path / 'figs'
    status = main(['--config', str(config_file), 'figures', '--figure-dir', str(figure_dir)])

    assert status == 0
    assert len(list(figure_dir.glob('*.png'))) == 4


def test_invalid_config(tmp_path):
    path = tmp_path / 'bad.yaml'
    path.write_text('loess_span: -1\n')
    assert main(['--config', str(path), 'figures']) == 2


def test_missing_config(tmp_path):
    assert main(['--config', str(tmp_path / 'absent.yaml'), 'figures']) == 2
