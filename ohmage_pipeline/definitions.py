"""
Observer, stream and prompt definitions
Loads versioned definitions from YAML/JSON and checks version transitions
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Union
import yaml

from .errors import DefinitionError

logger = logging.getLogger(__name__)


class PromptType(str, Enum):
    NUMBER = "number"
    HOURS_BEFORE_NOW = "hours_before_now"
    TEXT = "text"
    TIMESTAMP = "timestamp"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    SINGLE_CHOICE_CUSTOM = "single_choice_custom"
    MULTI_CHOICE_CUSTOM = "multi_choice_custom"
    PHOTO = "photo"
    BOOLEAN = "boolean"
    REMOTE_ACTIVITY = "remote_activity"

    @property
    def is_custom_choice(self) -> bool:
        return self in (PromptType.SINGLE_CHOICE_CUSTOM, PromptType.MULTI_CHOICE_CUSTOM)

    @property
    def is_multi_valued(self) -> bool:
        return self in (PromptType.MULTI_CHOICE, PromptType.MULTI_CHOICE_CUSTOM)


CUSTOM_CHOICE_TYPES = frozenset(
    {PromptType.SINGLE_CHOICE_CUSTOM.value, PromptType.MULTI_CHOICE_CUSTOM.value}
)


@dataclass(frozen=True)
class PromptDefinition:
    id: str
    prompt_type: PromptType
    display_label: Optional[str] = None
    unit: Optional[str] = None
    skippable: bool = False
    condition: Optional[str] = None
    required: bool = True
    constraints: Dict[str, Any] = field(default_factory=dict)
    choices: Dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RepeatableSetDefinition:
    id: str
    prompts: List[PromptDefinition]
    condition: Optional[str] = None

    def prompt(self, prompt_id: str) -> Optional[PromptDefinition]:
        for prompt in self.prompts:
            if prompt.id == prompt_id:
                return prompt
        return None


Item = Union[PromptDefinition, RepeatableSetDefinition]


@dataclass(frozen=True)
class StreamDefinition:
    """A versioned schema for one survey or sensor stream"""
    id: str
    version: int
    items: List[Item]
    title: Optional[str] = None
    description: Optional[str] = None

    def item(self, item_id: str) -> Optional[Item]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def iter_prompts(self):
        """Yield every prompt, including those nested in repeatable sets"""
        for item in self.items:
            if isinstance(item, RepeatableSetDefinition):
                yield from item.prompts
            else:
                yield item


@dataclass(frozen=True)
class ObserverDefinition:
    id: str
    version: int
    streams: Dict[str, StreamDefinition]
    name: Optional[str] = None

    def stream(self, stream_id: str, stream_version: Optional[int] = None) -> Optional[StreamDefinition]:
        stream = self.streams.get(stream_id)
        if stream is None:
            return None
        if stream_version is not None and stream.version != stream_version:
            return None
        return stream


def _parse_prompt(data: Dict[str, Any]) -> PromptDefinition:
    prompt_id = data.get('id')
    if not prompt_id:
        raise DefinitionError(f"Prompt definition is missing an id: {data}")

    try:
        prompt_type = PromptType(data.get('type'))
    except ValueError:
        raise DefinitionError(f"Unknown prompt type for '{prompt_id}': {data.get('type')}")

    choices = {}
    for key, label in (data.get('choices') or {}).items():
        try:
            choices[int(key)] = str(label)
        except (TypeError, ValueError):
            raise DefinitionError(f"Choice keys must be integers for '{prompt_id}': {key}")

    return PromptDefinition(
        id=str(prompt_id),
        prompt_type=prompt_type,
        display_label=data.get('display_label'),
        unit=data.get('unit'),
        skippable=bool(data.get('skippable', False)),
        condition=data.get('condition'),
        required=bool(data.get('required', True)),
        constraints=dict(data.get('constraints') or {}),
        choices=choices,
    )


def _parse_stream(data: Dict[str, Any]) -> StreamDefinition:
    stream_id = data.get('id')
    if not stream_id or data.get('version') is None:
        raise DefinitionError(f"Stream definition needs an id and a version: {stream_id}")

    items: List[Item] = []
    seen = set()
    for entry in data.get('prompts', []):
        if entry.get('type') == 'repeatable_set':
            item = RepeatableSetDefinition(
                id=str(entry['id']),
                prompts=[_parse_prompt(p) for p in entry.get('prompts', [])],
                condition=entry.get('condition'),
            )
        else:
            item = _parse_prompt(entry)

        if item.id in seen:
            raise DefinitionError(f"Duplicate prompt id '{item.id}' in stream '{stream_id}'")
        seen.add(item.id)
        items.append(item)

    return StreamDefinition(
        id=str(stream_id),
        version=int(data['version']),
        items=items,
        title=data.get('title'),
        description=data.get('description'),
    )


def parse_observer(data: Dict[str, Any]) -> ObserverDefinition:
    """
    Build an observer definition from its dictionary form

    Args:
        data: Parsed YAML/JSON definition

    Returns:
        ObserverDefinition
    """
    if not isinstance(data, dict) or not data.get('id') or data.get('version') is None:
        raise DefinitionError("Observer definition needs an id and a version")

    streams = {}
    for stream_data in data.get('streams', []):
        stream = _parse_stream(stream_data)
        if stream.id in streams:
            raise DefinitionError(f"Duplicate stream id '{stream.id}' in observer '{data['id']}'")
        streams[stream.id] = stream

    return ObserverDefinition(
        id=str(data['id']),
        version=int(data['version']),
        streams=streams,
        name=data.get('name'),
    )


def load_observer_definition(definition_path: Union[str, Path]) -> ObserverDefinition:
    """
    Load an observer definition from a YAML or JSON file

    Args:
        definition_path: Path to the definition file

    Returns:
        ObserverDefinition
    """
    definition_path = Path(definition_path)
    if not definition_path.exists():
        raise FileNotFoundError(f"Definition not found: {definition_path}")

    with open(definition_path, 'r') as f:
        if definition_path.suffix.lower() == '.json':
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    observer = parse_observer(data)
    logger.info(f"Loaded observer definition: {observer.id} v{observer.version} "
                f"({len(observer.streams)} streams)")
    return observer


def verify_new_observer(
    observer: ObserverDefinition,
    greatest_observer_version: Optional[int],
    greatest_stream_versions: Dict[str, int]
) -> Dict[str, int]:
    """
    Check that a new observer definition is a valid successor

    Args:
        observer: The new definition
        greatest_observer_version: Greatest stored version, None if new
        greatest_stream_versions: Greatest stored version per stream id

    Returns:
        Stream ids whose version did not change, mapped to that version.
        Their structure must be checked for compatibility by the owner.
    """
    if greatest_observer_version is not None and observer.version <= greatest_observer_version:
        raise DefinitionError(
            f"The new observer's version must increase: {observer.version}"
        )

    unchanged = {}
    for stream in observer.streams.values():
        existing = greatest_stream_versions.get(stream.id)
        if existing is None:
            continue
        if stream.version < existing:
            raise DefinitionError(
                f"The version of this stream, '{stream.id}', is less than the "
                f"existing stream's version, '{existing}': {stream.version}"
            )
        if stream.version == existing:
            unchanged[stream.id] = existing

    return unchanged
