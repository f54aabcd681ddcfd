"""
Tests for the command line interface
"""

import json
import logging

import pandas as pd
import pytest
from click.testing import CliRunner

from ohmage_pipeline.cli import cli

from .conftest import OBSERVER, mood_point


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # handlers installed by the CLI point at the runner's closed stdout
    for handler in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(handler)


def write_batch(tmp_path, batch, name='upload.json'):
    path = tmp_path / name
    path.write_text(json.dumps(batch))
    return str(path)


def test_validate_saves_invalid_points(tmp_path, config_file, definition_file):
    data = write_batch(tmp_path, [mood_point('a'), mood_point('b', energy=50)])

    result = CliRunner().invoke(cli, ['--config', str(config_file), 'validate', str(definition_file), data])

    assert result.exit_code == 0, result.output
    assert "Valid points: 1" in result.output
    assert "Invalid points: 1" in result.output
    saved = list((tmp_path / 'invalid_points').glob('*/invalid_points_upload.csv'))
    assert len(saved) == 1
    assert pd.read_csv(saved[0])['index'].tolist() == [1]


def test_validate_strict_fails(tmp_path, config_file, definition_file):
    data = write_batch(tmp_path, [mood_point('b', energy=50)])

    result = CliRunner().invoke(
        cli, ['--config', str(config_file), 'validate', '--strict', str(definition_file), data]
    )

    assert result.exit_code == 1


def test_ingest_then_read(tmp_path, config_file, definition_file):
    data = write_batch(tmp_path, [mood_point('a'), mood_point('b', timestamp='2011-09-21T09:00:00Z')])
    existing = tmp_path / 'existing.csv'
    existing.write_text("username,observer_id,stream_id,stream_version,id\n"
                        "alice,org.ohmage.mood,mood_survey,1,b\n")
    records_path = tmp_path / 'records.json'
    rows_path = tmp_path / 'rows.csv'

    runner = CliRunner()
    result = runner.invoke(cli, [
        '--config', str(config_file), 'ingest', str(definition_file), data,
        '-u', 'alice', '--existing-ids', str(existing),
        '-o', str(records_path), '--rows-output', str(rows_path),
    ])

    assert result.exit_code == 0, result.output
    assert "Duplicates removed: 1" in result.output
    metadata_files = list((tmp_path / 'invalid_points').glob('*/run_metadata_*.json'))
    assert json.loads(metadata_files[0].read_text())['duplicates_removed'] == 1
    records = json.loads(records_path.read_text())
    assert [r['point_id'] for r in records] == ['a']

    output_path = tmp_path / 'read.json'
    result = runner.invoke(cli, [
        '--config', str(config_file), 'read', str(rows_path),
        '--format', 'json-rows', '--output', str(output_path),
    ])

    assert result.exit_code == 0, result.output
    payload = json.loads(output_path.read_text())
    assert payload['result'] == 'success'
    assert payload['metadata']['number_of_surveys'] == 1
    row = payload['data'][0]
    assert row["urn:ohmage:user:id"] == 'alice'
    assert row["urn:ohmage:prompt:id:color"] == 3
    assert row["urn:ohmage:prompt:id:notes"] == 'fine'


def test_read_csv(tmp_path, config_file):
    rows_path = tmp_path / 'rows.csv'
    rows_path.write_text(
        "username,timestamp,survey_id,prompt_id,response,prompt_type\n"
        "alice,t1,s1,p1,5,number\n"
        "alice,t1,s1,p2,skip,text\n"
    )
    output_path = tmp_path / 'read.csv'

    result = CliRunner().invoke(cli, [
        '--config', str(config_file), 'read', str(rows_path), '-f', 'csv',
        '--columns', 'urn:ohmage:user:id,urn:ohmage:prompt:response', '-o', str(output_path),
    ])

    assert result.exit_code == 0, result.output
    assert output_path.read_text().splitlines() == [
        "urn:ohmage:user:id,urn:ohmage:prompt:id:p1,urn:ohmage:prompt:id:p2",
        "alice,5,skip",
    ]


def test_check_definition(tmp_path, config_file, definition_file):
    newer = dict(OBSERVER, version=3)
    newer_path = tmp_path / 'newer.json'
    newer_path.write_text(json.dumps(newer))

    runner = CliRunner()
    result = runner.invoke(cli, [
        '--config', str(config_file), 'check-definition', str(newer_path), '--previous', str(definition_file),
    ])
    assert result.exit_code == 0, result.output
    assert "mood_survey kept at version 1" in result.output

    result = runner.invoke(cli, [
        '--config', str(config_file), 'check-definition', str(definition_file), '--previous', str(newer_path),
    ])
    assert result.exit_code == 1


def test_bad_config(tmp_path):
    path = tmp_path / 'config.yml'
    path.write_text("project:\n  name: x\n")

    result = CliRunner().invoke(cli, ['--config', str(path), 'check-definition', 'missing.json'])

    assert result.exit_code == 1
