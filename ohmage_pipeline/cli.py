"""
Command Line Interface for the ohmage pipeline
Provides commands for validating uploads, ingesting them and reading
survey responses back out
"""

import click
import json
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

import pandas as pd

from ohmage_pipeline.config import load_config, validate_config
from ohmage_pipeline.utils import setup_logging, create_run_timestamp, save_run_metadata

@click.group()
@click.option('--config', '-c', default=None, help='Path to config file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config, verbose):
    """ohmage pipeline CLI - validate, ingest and read survey responses"""

    try:
        config_data = load_config(config)
        validate_config(config_data)
    except Exception as e:
        click.echo(f"❌ Configuration error: {str(e)}", err=True)
        sys.exit(1)

    log_level = "DEBUG" if verbose else config_data.get('logging', {}).get('level', 'INFO')
    log_file = config_data.get('logging', {}).get('file')
    if log_file:
        log_file = log_file.format(date=datetime.now().strftime('%Y-%m-%d'))
    setup_logging(level=log_level, log_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj['config'] = config_data

def _load_existing_ids(path):
    """Read stored ids from a CSV with username, observer_id, stream_id, stream_version, id"""
    from ohmage_pipeline.deduplication import lookup_from_index

    index = {}
    if path is not None:
        df = pd.read_csv(path, dtype={'username': str, 'observer_id': str, 'stream_id': str, 'id': str})
        for row in df.itertuples(index=False):
            key = (row.username, row.observer_id, row.stream_id, int(row.stream_version))
            index.setdefault(key, set()).add(row.id)
    return lookup_from_index(index)

@cli.command()
@click.argument('definition', type=click.Path(exists=True, dir_okay=False))
@click.argument('data', type=click.Path(exists=True, dir_okay=False))
@click.option('--strict', is_flag=True, help='Fail on the first invalid point instead of collecting them')
@click.pass_context
def validate(ctx, definition, data, strict):
    """Validate an upload file against an observer definition"""
    from ohmage_pipeline.definitions import load_observer_definition
    from ohmage_pipeline.errors import PipelineError
    from ohmage_pipeline.validation import SchemaValidator, save_invalid_points

    config = ctx.obj['config']

    try:
        observer = load_observer_definition(definition)
        raw_text = Path(data).read_text()

        click.echo(f"🔍 Validating {Path(data).name} against {observer.id} v{observer.version}")
        records, invalid_points = SchemaValidator().validate_batch(observer, raw_text, best_effort=not strict)

        click.echo(f"✅ Valid points: {len(records)}")
        if invalid_points:
            click.echo(f"⚠️  Invalid points: {len(invalid_points)}")
            for point in invalid_points:
                click.echo(f"  - #{point.index}: {point.reason}")

            error_dir = Path(config.get('validation', {}).get('error_directory', 'invalid_points'))
            saved = save_invalid_points(invalid_points, error_dir, create_run_timestamp(), Path(data).stem)
            click.echo(f"📄 Invalid points saved to: {saved}")

    except PipelineError as e:
        click.echo(f"❌ Validation failed: {str(e)}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"❌ Validation error: {str(e)}", err=True)
        sys.exit(1)

@cli.command()
@click.argument('definition', type=click.Path(exists=True, dir_okay=False))
@click.argument('data', type=click.Path(exists=True, dir_okay=False))
@click.option('--username', '-u', required=True, help='Owner of the upload')
@click.option('--existing-ids', type=click.Path(exists=True, dir_okay=False),
              help='CSV of ids already stored (username, observer_id, stream_id, stream_version, id)')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write accepted records as JSON')
@click.option('--rows-output', type=click.Path(dir_okay=False), help='Write accepted records as flat rows CSV')
@click.pass_context
def ingest(ctx, definition, data, username, existing_ids, output, rows_output):
    """Validate an upload and drop points that were already stored"""
    from ohmage_pipeline.definitions import load_observer_definition
    from ohmage_pipeline.pipeline import IngestionService
    from ohmage_pipeline.rollup import flatten_record
    from ohmage_pipeline.validation import save_invalid_points

    config = ctx.obj['config']

    try:
        observer = load_observer_definition(definition)
        service = IngestionService(config)
        result = service.ingest(
            username,
            observer,
            Path(data).read_text(),
            _load_existing_ids(existing_ids),
        )

        summary = result.summary()
        click.echo(f"\n✅ Ingestion completed!")
        click.echo(f"  📊 Accepted: {summary['accepted']}")
        click.echo(f"  ⚠️  Invalid: {summary['invalid']}")
        click.echo(f"  🔁 Duplicates removed: {summary['duplicates_removed']}")

        run_timestamp = create_run_timestamp()
        error_dir = Path(config.get('validation', {}).get('error_directory', 'invalid_points'))
        if result.invalid_points:
            saved = save_invalid_points(result.invalid_points, error_dir, run_timestamp, Path(data).stem)
            click.echo(f"  📄 Invalid points saved to: {saved}")

        metadata_path = save_run_metadata(run_timestamp, {
            'username': username,
            'observer_id': observer.id,
            'observer_version': observer.version,
            'source': str(data),
            **summary,
        }, error_dir / run_timestamp)
        click.echo(f"  📋 Run metadata: {metadata_path}")

        if output:
            with open(output, 'w') as f:
                json.dump([asdict(record) for record in result.records], f, indent=2)
            click.echo(f"  💾 Records written to: {output}")

        if rows_output:
            rows = []
            for record in result.records:
                stream = observer.stream(record.stream_id, record.stream_version)
                rows.extend(asdict(row) for row in flatten_record(record, username, stream))
            df = pd.DataFrame(rows)
            if not df.empty:
                df['response'] = df['response'].map(
                    lambda v: json.dumps(v) if isinstance(v, (list, dict)) else v
                )
            df.to_csv(rows_output, index=False)
            click.echo(f"  💾 Flat rows written to: {rows_output}")

    except Exception as e:
        click.echo(f"❌ Ingestion failed: {str(e)}", err=True)
        sys.exit(1)

@cli.command()
@click.argument('rows_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--format', '-f', 'output_format', default='json-rows',
              type=click.Choice(['json-rows', 'json-columns', 'csv']), help='Output format')
@click.option('--columns', default='urn:ohmage:special:all', help='Comma-separated list of output columns')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the payload to a file')
@click.pass_context
def read(ctx, rows_file, output_format, columns, output):
    """Roll up flat survey response rows and render them"""
    from ohmage_pipeline.pipeline import SurveyResponseReader
    from ohmage_pipeline.rollup import rows_from_dataframe

    config = ctx.obj['config']

    try:
        df = pd.read_csv(rows_file, dtype=str, keep_default_na=False, na_values=[''])
        rows = rows_from_dataframe(df)
        del df
    except Exception as e:
        click.echo(f"❌ Could not read rows: {str(e)}", err=True)
        sys.exit(1)

    column_list = [c.strip() for c in columns.split(',') if c.strip()]
    response = SurveyResponseReader(config).read(output_format, column_list, rows)

    if output:
        Path(output).write_text(response.text)
        click.echo(f"💾 {response.content_type} payload written to: {output}")
    else:
        click.echo(response.text)

    if not response.success:
        sys.exit(1)

@cli.command('check-definition')
@click.argument('new_definition', type=click.Path(exists=True, dir_okay=False))
@click.option('--previous', type=click.Path(exists=True, dir_okay=False),
              help='Currently stored definition to compare against')
def check_definition(new_definition, previous):
    """Check that a new observer definition is a valid successor"""
    from ohmage_pipeline.definitions import load_observer_definition, verify_new_observer
    from ohmage_pipeline.errors import DefinitionError

    try:
        observer = load_observer_definition(new_definition)
        greatest_version = None
        stream_versions = {}
        if previous:
            old = load_observer_definition(previous)
            if old.id != observer.id:
                raise DefinitionError(f"Observer ids differ: {old.id} != {observer.id}")
            greatest_version = old.version
            stream_versions = {stream.id: stream.version for stream in old.streams.values()}

        unchanged = verify_new_observer(observer, greatest_version, stream_versions)

        click.echo(f"✅ {observer.id} v{observer.version} is a valid definition")
        for stream_id, version in unchanged.items():
            click.echo(f"  📌 {stream_id} kept at version {version}")

    except (DefinitionError, FileNotFoundError) as e:
        click.echo(f"❌ Invalid definition: {str(e)}", err=True)
        sys.exit(1)

if __name__ == '__main__':
    cli()
