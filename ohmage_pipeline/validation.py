"""
Schema Validation Engine
Checks uploaded data points against versioned stream definitions and
collects per-point rejections
"""

import logging
import json
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Any, Optional, Tuple, Union
import pandas as pd

from .definitions import (
    ObserverDefinition,
    PromptDefinition,
    PromptType,
    RepeatableSetDefinition,
    StreamDefinition,
)
from .errors import MalformedInput, SchemaMismatch, UnknownPromptType
from .utils import ensure_directory

logger = logging.getLogger(__name__)

SKIPPED = "SKIPPED"
NOT_DISPLAYED = "NOT_DISPLAYED"
SENTINELS = frozenset({SKIPPED, NOT_DISPLAYED})

# Date, optional time with fractional seconds, optional Z or offset
ISO_TIMESTAMP = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?"
    r"(?:Z|[+-]\d{2}:?\d{2})?$"
)
UTC_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass
class NormalizedRecord:
    stream_id: str
    stream_version: int
    responses: Dict[str, Any]
    point_id: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class InvalidPoint:
    """A rejected point from an upload batch"""
    index: int
    data: str
    reason: str
    cause: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'index': self.index, 'data': self.data, 'reason': self.reason}


def _parse_json(raw: Union[str, bytes, Dict[str, Any], List[Any]]) -> Any:
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedInput(f"The data was not well-formed JSON: {e}") from e


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SchemaValidator:
    """Validates raw data points against stream definitions"""

    def validate(
        self,
        definition: StreamDefinition,
        raw_point: Union[str, bytes, Dict[str, Any]]
    ) -> NormalizedRecord:
        """
        Validate one data point

        Args:
            definition: Stream definition the point claims to follow
            raw_point: JSON text or an already-parsed object

        Returns:
            The normalized record

        Raises:
            MalformedInput: if the point is not a JSON object
            SchemaMismatch: on the first type or domain violation
        """
        point = _parse_json(raw_point)
        if not isinstance(point, dict):
            raise MalformedInput("A data point must be a JSON object")

        stream_id = point.get('stream_id')
        if stream_id is not None and stream_id != definition.id:
            raise SchemaMismatch(None, 'stream', f"The point belongs to stream '{stream_id}', "
                                                  f"not '{definition.id}'")
        stream_version = point.get('stream_version')
        if stream_version is not None and stream_version != definition.version:
            raise SchemaMismatch(None, 'stream', f"The point uses version {stream_version} of "
                                                  f"'{definition.id}', not {definition.version}")

        point_id, timestamp = self._validate_metadata(point.get('meta_data'))

        data = point.get('data')
        if not isinstance(data, dict):
            raise SchemaMismatch(None, 'object', "The point's 'data' must be a JSON object")

        responses = self._validate_items(definition.items, data, context=definition.id)

        return NormalizedRecord(
            stream_id=definition.id,
            stream_version=definition.version,
            responses=responses,
            point_id=point_id,
            timestamp=timestamp,
        )

    def validate_batch(
        self,
        observer: ObserverDefinition,
        raw_text: Union[str, bytes, List[Any]],
        best_effort: bool = True
    ) -> Tuple[List[NormalizedRecord], List[InvalidPoint]]:
        """
        Validate an upload batch

        Args:
            observer: Observer whose streams the points belong to
            raw_text: JSON array of data points
            best_effort: Collect per-point failures instead of raising

        Returns:
            Tuple of (valid records, invalid points)
        """
        nodes = _parse_json(raw_text)
        if not isinstance(nodes, list):
            raise MalformedInput("The upload must be a JSON array of data points")

        records: List[NormalizedRecord] = []
        invalid_points: List[InvalidPoint] = []

        for index, node in enumerate(nodes):
            try:
                definition = self._resolve_stream(observer, node)
                records.append(self.validate(definition, node))
            except (MalformedInput, SchemaMismatch) as e:
                if not best_effort:
                    raise
                logger.warning(f"An invalid point was detected for observer '{observer.id}' "
                               f"with version '{observer.version}': {e}")
                invalid_points.append(InvalidPoint(
                    index=index,
                    data=json.dumps(node),
                    reason=str(e),
                    cause=e,
                ))

        logger.info(f"Validated {len(nodes)} points for '{observer.id}': "
                    f"{len(records)} valid, {len(invalid_points)} invalid")
        return records, invalid_points

    def _resolve_stream(self, observer: ObserverDefinition, node: Any) -> StreamDefinition:
        if not isinstance(node, dict):
            raise MalformedInput("A data point must be a JSON object")

        stream_id = node.get('stream_id')
        stream_version = node.get('stream_version')
        if stream_id is None or stream_version is None:
            raise SchemaMismatch(None, 'stream', "The point is missing its stream_id or stream_version")

        definition = observer.stream(stream_id, stream_version)
        if definition is None:
            raise SchemaMismatch(None, 'stream', f"Unknown stream: {stream_id} v{stream_version}")
        return definition

    def _validate_metadata(self, meta: Any) -> Tuple[Optional[str], Optional[str]]:
        if meta is None:
            return None, None
        if not isinstance(meta, dict):
            raise SchemaMismatch(None, 'meta_data', "The point's 'meta_data' must be a JSON object")

        point_id = meta.get('id')
        if point_id is not None and not isinstance(point_id, str):
            raise SchemaMismatch(None, 'meta_data', "The point's id must be a string")

        timestamp = meta.get('timestamp')
        if timestamp is not None:
            parsed = self._check_timestamp('meta_data.timestamp', timestamp)
            if parsed.tzinfo is None:
                parsed = parsed.tz_localize('UTC')
            timestamp = parsed.tz_convert('UTC').strftime(UTC_FORMAT)

        return point_id, timestamp

    def _validate_items(
        self,
        items: List[Any],
        data: Dict[str, Any],
        context: str
    ) -> Dict[str, Any]:
        declared = {item.id for item in items}
        for key in data:
            if key not in declared:
                raise UnknownPromptType(key, None, f"Unknown prompt '{key}' for '{context}'")

        responses: Dict[str, Any] = {}
        for item in items:
            if item.id not in data:
                if isinstance(item, PromptDefinition) and not item.required:
                    continue
                if isinstance(item, RepeatableSetDefinition) and item.condition:
                    continue
                raise SchemaMismatch(item.id, None, f"Missing response for '{item.id}'")

            value = data[item.id]
            if isinstance(item, RepeatableSetDefinition):
                responses[item.id] = self._validate_repeatable_set(item, value)
            else:
                self._check_prompt(item, value)
                responses[item.id] = value

        return responses

    def _validate_repeatable_set(self, definition: RepeatableSetDefinition, value: Any) -> Any:
        if value == NOT_DISPLAYED and definition.condition:
            return value
        if not isinstance(value, list):
            raise SchemaMismatch(definition.id, 'repeatable_set',
                                 f"The repeatable set '{definition.id}' must be a list of iterations")

        iterations = []
        for iteration in value:
            if not isinstance(iteration, dict):
                raise SchemaMismatch(definition.id, 'repeatable_set',
                                     f"Each iteration of '{definition.id}' must be a JSON object")
            iterations.append(self._validate_items(definition.prompts, iteration, context=definition.id))
        return iterations

    def _check_prompt(self, prompt: PromptDefinition, value: Any) -> None:
        """Raise SchemaMismatch if value does not fit the prompt"""
        if value == SKIPPED:
            if prompt.skippable:
                return
            raise SchemaMismatch(prompt.id, prompt.prompt_type.value,
                                 f"The prompt '{prompt.id}' is not skippable")
        if value == NOT_DISPLAYED:
            if prompt.condition:
                return
            raise SchemaMismatch(prompt.id, prompt.prompt_type.value,
                                 f"The prompt '{prompt.id}' has no condition and is always displayed")

        prompt_type = prompt.prompt_type
        constraints = prompt.constraints

        if prompt_type in (PromptType.NUMBER, PromptType.HOURS_BEFORE_NOW):
            if not _is_number(value):
                raise SchemaMismatch(prompt.id, prompt_type.value)
            min_value = constraints.get('min', 0 if prompt_type == PromptType.HOURS_BEFORE_NOW else None)
            max_value = constraints.get('max')
            if min_value is not None and value < min_value:
                raise SchemaMismatch(prompt.id, prompt_type.value,
                                     f"The value for '{prompt.id}' is less than {min_value}: {value}")
            if max_value is not None and value > max_value:
                raise SchemaMismatch(prompt.id, prompt_type.value,
                                     f"The value for '{prompt.id}' is greater than {max_value}: {value}")

        elif prompt_type == PromptType.TEXT:
            if not isinstance(value, str):
                raise SchemaMismatch(prompt.id, prompt_type.value)
            min_length = constraints.get('min_length')
            max_length = constraints.get('max_length')
            if min_length is not None and len(value) < min_length:
                raise SchemaMismatch(prompt.id, prompt_type.value,
                                     f"The text for '{prompt.id}' is shorter than {min_length} characters")
            if max_length is not None and len(value) > max_length:
                raise SchemaMismatch(prompt.id, prompt_type.value,
                                     f"The text for '{prompt.id}' is longer than {max_length} characters")

        elif prompt_type == PromptType.TIMESTAMP:
            self._check_timestamp(prompt.id, value)

        elif prompt_type == PromptType.SINGLE_CHOICE:
            if not isinstance(value, int) or isinstance(value, bool) or value not in prompt.choices:
                raise SchemaMismatch(prompt.id, prompt_type.value,
                                     f"The value for '{prompt.id}' is not a known choice: {value}")

        elif prompt_type == PromptType.MULTI_CHOICE:
            self._check_choice_list(prompt, value, set(prompt.choices))

        elif prompt_type.is_custom_choice:
            self._check_custom_choice(prompt, value)

        elif prompt_type == PromptType.PHOTO:
            if not isinstance(value, str):
                raise SchemaMismatch(prompt.id, prompt_type.value)
            try:
                uuid.UUID(value)
            except ValueError:
                raise SchemaMismatch(prompt.id, prompt_type.value,
                                     f"The value for '{prompt.id}' is not a UUID: {value}")

        elif prompt_type == PromptType.BOOLEAN:
            if not isinstance(value, bool):
                raise SchemaMismatch(prompt.id, prompt_type.value)

        elif prompt_type == PromptType.REMOTE_ACTIVITY:
            if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
                raise SchemaMismatch(prompt.id, prompt_type.value,
                                     f"The value for '{prompt.id}' must be a list of objects")

        else:
            raise UnknownPromptType(prompt.id, str(prompt_type))

    def _check_timestamp(self, prompt_id: str, value: Any) -> pd.Timestamp:
        if not isinstance(value, str) or not ISO_TIMESTAMP.match(value):
            raise SchemaMismatch(prompt_id, PromptType.TIMESTAMP.value,
                                 f"The value for '{prompt_id}' is not an ISO-8601 timestamp: {value!r}")
        try:
            parsed = pd.Timestamp(value)
        except ValueError as e:
            raise SchemaMismatch(prompt_id, PromptType.TIMESTAMP.value,
                                 f"The value for '{prompt_id}' is not a valid timestamp: {value}") from e
        if pd.isna(parsed):
            raise SchemaMismatch(prompt_id, PromptType.TIMESTAMP.value,
                                 f"The value for '{prompt_id}' is not a valid timestamp: {value}")
        return parsed

    def _check_choice_list(self, prompt: PromptDefinition, value: Any, allowed: set) -> None:
        if not isinstance(value, list):
            raise SchemaMismatch(prompt.id, prompt.prompt_type.value,
                                 f"The value for '{prompt.id}' must be a list of choices")
        for choice in value:
            if not isinstance(choice, int) or isinstance(choice, bool) or choice not in allowed:
                raise SchemaMismatch(prompt.id, prompt.prompt_type.value,
                                     f"The value for '{prompt.id}' is not a known choice: {choice}")
        if len(set(value)) != len(value):
            raise SchemaMismatch(prompt.id, prompt.prompt_type.value,
                                 f"The value for '{prompt.id}' repeats a choice")

    def _check_custom_choice(self, prompt: PromptDefinition, value: Any) -> None:
        expected = prompt.prompt_type.value
        if not isinstance(value, dict) or 'value' not in value:
            raise SchemaMismatch(prompt.id, expected,
                                 f"The value for '{prompt.id}' must be an object with a 'value'")

        custom_choices = value.get('custom_choices', [])
        if not isinstance(custom_choices, list):
            raise SchemaMismatch(prompt.id, expected,
                                 f"The custom choices for '{prompt.id}' must be a list")

        allowed = set(prompt.choices)
        for choice in custom_choices:
            if (not isinstance(choice, dict)
                    or not isinstance(choice.get('choice_id'), int)
                    or isinstance(choice.get('choice_id'), bool)
                    or not isinstance(choice.get('choice_value'), str)):
                raise SchemaMismatch(prompt.id, expected,
                                     f"Invalid custom choice for '{prompt.id}': {choice}")
            allowed.add(choice['choice_id'])

        chosen = value['value']
        if prompt.prompt_type == PromptType.SINGLE_CHOICE_CUSTOM:
            if not isinstance(chosen, int) or isinstance(chosen, bool) or chosen not in allowed:
                raise SchemaMismatch(prompt.id, expected,
                                     f"The value for '{prompt.id}' is not a known choice: {chosen}")
        else:
            self._check_choice_list(prompt, chosen, allowed)


def save_invalid_points(
    invalid_points: List[InvalidPoint],
    output_dir: Path,
    run_timestamp: str,
    name: str = "upload"
) -> Optional[Path]:
    """
    Write rejected points to the error sink

    Args:
        invalid_points: Points rejected during validation
        output_dir: Base directory for invalid point extracts
        run_timestamp: Timestamp for this run
        name: Name of the upload, used in the file name

    Returns:
        Path to the CSV file, or None if there was nothing to write
    """
    if not invalid_points:
        return None

    failed_dir = ensure_directory(Path(output_dir) / run_timestamp)
    failed_path = failed_dir / f"invalid_points_{name}.csv"

    df = pd.DataFrame([point.to_dict() for point in invalid_points],
                      columns=['index', 'data', 'reason'])
    df.to_csv(failed_path, index=False)

    logger.info(f"Saved {len(df)} invalid points to {failed_path}")
    return failed_path
