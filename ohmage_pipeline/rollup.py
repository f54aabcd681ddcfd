"""
Survey response roll-up
Groups flat per-prompt rows into one aggregate per survey response
"""

import json
import logging
from dataclasses import dataclass, field, fields
from typing import Dict, List, Any, Iterable, NamedTuple, Optional
import pandas as pd

from .definitions import RepeatableSetDefinition, StreamDefinition
from .validation import NormalizedRecord

logger = logging.getLogger(__name__)

CONTEXT_FIELDS = (
    'client',
    'utc_timestamp',
    'timezone',
    'location_status',
    'latitude',
    'longitude',
    'survey_title',
    'survey_description',
    'privacy_state',
    'launch_context',
)


@dataclass(frozen=True)
class FlatResponseRow:
    """One stored prompt response, as returned by the storage query"""
    username: str
    timestamp: Optional[str]
    survey_id: str
    prompt_id: str
    response: Any
    repeatable_set_id: Optional[str] = None
    repeatable_set_iteration: Optional[int] = None
    prompt_type: Optional[str] = None
    display_label: Optional[str] = None
    unit: Optional[str] = None
    client: Optional[str] = None
    utc_timestamp: Optional[str] = None
    timezone: Optional[str] = None
    location_status: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    survey_title: Optional[str] = None
    survey_description: Optional[str] = None
    privacy_state: Optional[str] = None
    launch_context: Optional[str] = None


class ResultKey(NamedTuple):
    username: str
    timestamp: Optional[str]
    survey_id: str
    repeatable_set_id: Optional[str]
    repeatable_set_iteration: Optional[int]

    @classmethod
    def for_row(cls, row: FlatResponseRow) -> "ResultKey":
        return cls(
            row.username,
            row.timestamp,
            row.survey_id,
            row.repeatable_set_id,
            row.repeatable_set_iteration,
        )


@dataclass(frozen=True)
class PromptResponseMetadata:
    prompt_type: Optional[str]
    display_label: Optional[str] = None
    unit: Optional[str] = None


@dataclass
class IndexedResult:
    """All prompt responses belonging to one survey response"""
    key: ResultKey
    context: Dict[str, Any] = field(default_factory=dict)
    prompt_responses: Dict[str, Any] = field(default_factory=dict)
    prompt_metadata: Dict[str, PromptResponseMetadata] = field(default_factory=dict)
    # Raw custom choice payloads, kept once the response has been normalized
    choice_sources: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: FlatResponseRow) -> "IndexedResult":
        result = cls(
            key=ResultKey.for_row(row),
            context={name: getattr(row, name) for name in CONTEXT_FIELDS},
        )
        result.add_prompt_response(row)
        return result

    def add_prompt_response(self, row: FlatResponseRow) -> None:
        # A repeated prompt id replaces the earlier response
        self.prompt_responses[row.prompt_id] = row.response
        self.prompt_metadata[row.prompt_id] = PromptResponseMetadata(
            prompt_type=row.prompt_type,
            display_label=row.display_label,
            unit=row.unit,
        )
        self.choice_sources.pop(row.prompt_id, None)

    @property
    def username(self) -> str:
        return self.key.username

    @property
    def timestamp(self) -> Optional[str]:
        return self.key.timestamp

    @property
    def survey_id(self) -> str:
        return self.key.survey_id

    @property
    def repeatable_set_id(self) -> Optional[str]:
        return self.key.repeatable_set_id

    @property
    def repeatable_set_iteration(self) -> Optional[int]:
        return self.key.repeatable_set_iteration


def roll_up(rows: Iterable[FlatResponseRow]) -> List[IndexedResult]:
    """
    Roll flat prompt rows up into indexed results

    Rows may arrive interleaved in any order. Results are emitted in order
    of the first row seen for each key.

    Args:
        rows: Flat prompt response rows

    Returns:
        One IndexedResult per distinct (username, timestamp, survey id,
        repeatable set id, repeatable set iteration)
    """
    indexed: Dict[ResultKey, IndexedResult] = {}
    row_count = 0

    for row in rows:
        row_count += 1
        key = ResultKey.for_row(row)
        result = indexed.get(key)
        if result is None:
            indexed[key] = IndexedResult.from_row(row)
        else:
            result.add_prompt_response(row)

    logger.debug(f"Rolled {row_count} rows up into {len(indexed)} survey responses")
    return list(indexed.values())


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if not isinstance(value, (list, dict)) and pd.isna(value):
        return None
    return value


def rows_from_dataframe(df: pd.DataFrame) -> List[FlatResponseRow]:
    """
    Convert a frame of flat rows into FlatResponseRow objects

    Columns are matched to FlatResponseRow field names; unknown columns are
    ignored and missing values become None.

    Args:
        df: DataFrame with one stored prompt response per row

    Returns:
        List of FlatResponseRow
    """
    known = {f.name for f in fields(FlatResponseRow)}
    missing = [name for name in ('username', 'survey_id', 'prompt_id', 'response') if name not in df.columns]
    if missing:
        raise ValueError(f"Flat rows are missing required columns: {missing}")

    columns = [col for col in df.columns if col in known]
    rows = []
    for record in df[columns].to_dict(orient='records'):
        values = {name: _clean(value) for name, value in record.items()}
        values.setdefault('timestamp', None)
        if values.get('repeatable_set_iteration') is not None:
            values['repeatable_set_iteration'] = int(float(values['repeatable_set_iteration']))
        for name in ('latitude', 'longitude'):
            if values.get(name) is not None:
                values[name] = float(values[name])
        rows.append(FlatResponseRow(**values))

    return rows


def _stored_response(prompt, value: Any) -> Any:
    # Custom choice payloads are stored as JSON text
    if prompt.prompt_type.is_custom_choice and isinstance(value, dict):
        return json.dumps(value)
    return value


def flatten_record(
    record: NormalizedRecord,
    username: str,
    definition: StreamDefinition,
    **context: Any
) -> List[FlatResponseRow]:
    """
    Produce the flat rows a store would persist for a validated record

    Args:
        record: Validated record
        username: Owner of the record
        definition: Stream definition the record was validated against
        **context: Extra context fields copied onto every row

    Returns:
        One FlatResponseRow per prompt response
    """
    context.setdefault('survey_title', definition.title)
    context.setdefault('survey_description', definition.description)

    rows: List[FlatResponseRow] = []

    def emit(prompt, value, repeatable_set_id=None, iteration=None):
        rows.append(FlatResponseRow(
            username=username,
            timestamp=record.timestamp,
            survey_id=record.stream_id,
            prompt_id=prompt.id,
            response=_stored_response(prompt, value),
            repeatable_set_id=repeatable_set_id,
            repeatable_set_iteration=iteration,
            prompt_type=prompt.prompt_type.value,
            display_label=prompt.display_label,
            unit=prompt.unit,
            **context,
        ))

    for item in definition.items:
        if item.id not in record.responses:
            continue
        value = record.responses[item.id]
        if isinstance(item, RepeatableSetDefinition):
            if not isinstance(value, list):
                continue
            for iteration, responses in enumerate(value):
                for prompt in item.prompts:
                    if prompt.id in responses:
                        emit(prompt, responses[prompt.id], item.id, iteration)
        else:
            emit(item, value)

    return rows
