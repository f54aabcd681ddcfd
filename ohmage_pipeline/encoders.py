"""
Survey response output encoders
Renders rolled-up results as row-based JSON, column-based JSON or CSV
"""

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Any, Callable, Optional

import pandas as pd

from .glossary import ChoiceGlossary
from .rollup import IndexedResult

logger = logging.getLogger(__name__)

SPECIAL_ALL = "urn:ohmage:special:all"
PROMPT_RESPONSE = "urn:ohmage:prompt:response"
PROMPT_ID_PREFIX = "urn:ohmage:prompt:id:"

GENERAL_ERROR_CODE = "0103"
GENERAL_ERROR_TEXT = "An error occurred while processing the request."

DEFAULT_LIST_DELIMITER = ";"

# Catalog columns resolved from the result key and context
COLUMN_ACCESSORS: Dict[str, Callable[[IndexedResult], Any]] = {
    "urn:ohmage:user:id": lambda r: r.username,
    "urn:ohmage:context:client": lambda r: r.context.get('client'),
    "urn:ohmage:context:timestamp": lambda r: r.timestamp,
    "urn:ohmage:context:utc_timestamp": lambda r: r.context.get('utc_timestamp'),
    "urn:ohmage:context:timezone": lambda r: r.context.get('timezone'),
    "urn:ohmage:context:launch_context": lambda r: r.context.get('launch_context'),
    "urn:ohmage:context:location:status": lambda r: r.context.get('location_status'),
    "urn:ohmage:context:location:latitude": lambda r: r.context.get('latitude'),
    "urn:ohmage:context:location:longitude": lambda r: r.context.get('longitude'),
    "urn:ohmage:survey:id": lambda r: r.survey_id,
    "urn:ohmage:survey:title": lambda r: r.context.get('survey_title'),
    "urn:ohmage:survey:description": lambda r: r.context.get('survey_description'),
    "urn:ohmage:survey:privacy_state": lambda r: r.context.get('privacy_state'),
    "urn:ohmage:repeatable_set:id": lambda r: r.repeatable_set_id,
    "urn:ohmage:repeatable_set:iteration": lambda r: r.repeatable_set_iteration,
}


class OutputFormat(str, Enum):
    JSON_ROWS = "json-rows"
    JSON_COLUMNS = "json-columns"
    CSV = "csv"


def prompt_column(prompt_id: str) -> str:
    return f"{PROMPT_ID_PREFIX}{prompt_id}"


def expand_output_columns(
    requested: List[str],
    catalog: List[str],
    results: List[IndexedResult]
) -> List[str]:
    """
    Resolve the requested column list into concrete output columns

    Args:
        requested: Columns from the request, in order
        catalog: Every declared column
        results: Rolled-up results, used to discover prompt ids

    Returns:
        Output columns with prompt response placeholders expanded
    """
    if not requested:
        raise ValueError("At least one output column is required")

    wants_all = requested[0] == SPECIAL_ALL
    output_columns = list(catalog) if wants_all else list(requested)

    if wants_all or PROMPT_RESPONSE in requested:
        seen = set(output_columns)
        for result in results:
            for prompt_id in result.prompt_responses:
                column = prompt_column(prompt_id)
                if column not in seen:
                    seen.add(column)
                    output_columns.append(column)

    return [column for column in output_columns if column != PROMPT_RESPONSE]


def column_value(result: IndexedResult, column: str) -> Any:
    """Value of one output column for one result, None when absent"""
    if column.startswith(PROMPT_ID_PREFIX):
        return result.prompt_responses.get(column[len(PROMPT_ID_PREFIX):])
    accessor = COLUMN_ACCESSORS.get(column)
    if accessor is None:
        return None
    return accessor(result)


def error_envelope(text: Optional[str] = None, code: str = GENERAL_ERROR_CODE) -> str:
    """JSON failure payload, used for every output format"""
    return json.dumps({
        'result': 'failure',
        'errors': [{'code': code, 'text': text or GENERAL_ERROR_TEXT}]
    })


def _metadata(
    result_count: int,
    total_row_count: int,
    output_columns: List[str],
    glossary: Optional[ChoiceGlossary]
) -> Dict[str, Any]:
    metadata = {
        'number_of_prompts': total_row_count,
        'number_of_surveys': result_count,
        'items': list(output_columns),
    }
    if glossary is not None and len(glossary) > 0:
        metadata['choice_glossary'] = glossary.to_dict()
    return metadata


class Encoder(ABC):
    """Builds one complete payload from normalized results"""

    output_format: OutputFormat
    content_type = "application/json"

    def headers(self) -> Dict[str, str]:
        return {}

    @abstractmethod
    def build(
        self,
        result_count: int,
        total_row_count: int,
        output_columns: List[str],
        results: List[IndexedResult],
        glossary: Optional[ChoiceGlossary] = None
    ) -> str:
        raise NotImplementedError


class RowJsonEncoder(Encoder):
    """One JSON object per survey response"""

    output_format = OutputFormat.JSON_ROWS

    def build(self, result_count, total_row_count, output_columns, results, glossary=None):
        data = [
            {column: column_value(result, column) for column in output_columns}
            for result in results
        ]
        return json.dumps({
            'result': 'success',
            'metadata': _metadata(result_count, total_row_count, output_columns, glossary),
            'data': data,
        })


class ColumnJsonEncoder(Encoder):
    """One array per column, aligned by row index"""

    output_format = OutputFormat.JSON_COLUMNS

    def build(self, result_count, total_row_count, output_columns, results, glossary=None):
        data = {
            column: [column_value(result, column) for result in results]
            for column in output_columns
        }

        metadata = _metadata(result_count, total_row_count, output_columns, glossary)
        prompt_contexts = {}
        for result in results:
            for prompt_id, prompt_metadata in result.prompt_metadata.items():
                if prompt_column(prompt_id) in data and prompt_id not in prompt_contexts:
                    prompt_contexts[prompt_id] = {
                        'prompt_type': prompt_metadata.prompt_type,
                        'display_label': prompt_metadata.display_label,
                        'unit': prompt_metadata.unit,
                    }
        if prompt_contexts:
            metadata['prompt_contexts'] = prompt_contexts

        return json.dumps({
            'result': 'success',
            'metadata': metadata,
            'data': data,
        })


class CsvEncoder(Encoder):
    """
    Header row of output columns followed by one row per survey response

    Multi-valued responses are written in a single field, joined with the
    list delimiter (';' unless configured otherwise).
    """

    output_format = OutputFormat.CSV
    content_type = "text/csv"

    def __init__(self, list_delimiter: str = DEFAULT_LIST_DELIMITER, filename: str = "survey_responses.csv"):
        self.list_delimiter = list_delimiter
        self.filename = filename

    def headers(self) -> Dict[str, str]:
        return {'Content-Disposition': f'attachment; filename="{self.filename}"'}

    def _format(self, value: Any) -> Any:
        if isinstance(value, list):
            return self.list_delimiter.join(self._format_item(v) for v in value)
        if isinstance(value, dict):
            return json.dumps(value)
        return value

    def _format_item(self, value: Any) -> str:
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    def build(self, result_count, total_row_count, output_columns, results, glossary=None):
        if not output_columns:
            return ""
        rows = [
            [self._format(column_value(result, column)) for column in output_columns]
            for result in results
        ]
        # object dtype keeps integers from being widened to floats next to gaps
        df = pd.DataFrame(rows, columns=output_columns, dtype=object)
        return df.to_csv(index=False, lineterminator="\n")


def encoder_for(output_format: OutputFormat, config: Optional[Dict[str, Any]] = None) -> Encoder:
    """
    Return the encoder for an output format

    Args:
        output_format: Requested format
        config: Optional configuration with an 'output' section

    Returns:
        Encoder instance
    """
    output_format = OutputFormat(output_format)
    output_config = (config or {}).get('output', {})

    if output_format == OutputFormat.JSON_ROWS:
        return RowJsonEncoder()
    if output_format == OutputFormat.JSON_COLUMNS:
        return ColumnJsonEncoder()
    return CsvEncoder(
        list_delimiter=output_config.get('csv_list_delimiter', DEFAULT_LIST_DELIMITER),
        filename=output_config.get('csv_filename', "survey_responses.csv"),
    )
