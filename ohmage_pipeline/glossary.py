"""
Custom choice normalization
Builds a per-prompt choice glossary from custom choice responses and
reduces each response to the chosen value(s)
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple

from .definitions import CUSTOM_CHOICE_TYPES
from .errors import EncodingFailure
from .rollup import IndexedResult
from .validation import SENTINELS

logger = logging.getLogger(__name__)

# Choice ids below this value come from the global catalog
CUSTOM_CHOICE_THRESHOLD = 100

GLOBAL = "global"
CUSTOM = "custom"


@dataclass
class CustomChoiceItem:
    original_id: int
    username: str
    value: str
    provenance: str
    id: Optional[int] = field(default=None, compare=False)

    def _identity(self) -> tuple:
        # Users number their own choices independently, so custom ids are not comparable
        if self.provenance == CUSTOM:
            return (self.value, self.provenance)
        return (self.original_id, self.value, self.provenance)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CustomChoiceItem):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def to_dict(self) -> Dict[str, Any]:
        return {'label': self.value, 'type': self.provenance}


class ChoiceGlossary:
    """Unique choices per prompt, with surrogate ids assigned on first sight"""

    def __init__(self):
        self._items: Dict[str, List[CustomChoiceItem]] = {}
        self._next_custom_id: Dict[str, int] = {}

    def register(self, prompt_id: str, item: CustomChoiceItem) -> CustomChoiceItem:
        """
        Add an item to a prompt's glossary unless an equal one exists

        Args:
            prompt_id: Prompt the choice belongs to
            item: Candidate item without a surrogate id

        Returns:
            The registered item, carrying its surrogate id
        """
        items = self._items.setdefault(prompt_id, [])
        for existing in items:
            if existing == item:
                return existing

        if item.provenance == GLOBAL:
            for existing in items:
                if existing.provenance == GLOBAL and existing.original_id == item.original_id:
                    logger.warning(f"Global choice {item.original_id} for '{prompt_id}' is labelled both "
                                   f"'{existing.value}' and '{item.value}'; the glossary keeps the last label")
                    break
            item.id = item.original_id
        else:
            item.id = self._next_custom_id.get(prompt_id, CUSTOM_CHOICE_THRESHOLD)
            self._next_custom_id[prompt_id] = item.id + 1

        items.append(item)
        return item

    def items(self, prompt_id: str) -> List[CustomChoiceItem]:
        return list(self._items.get(prompt_id, []))

    def prompt_ids(self) -> List[str]:
        return list(self._items)

    def __contains__(self, prompt_id: str) -> bool:
        return prompt_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def to_dict(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return {
            prompt_id: {str(item.id): item.to_dict() for item in items}
            for prompt_id, items in self._items.items()
        }


def _load_payload(prompt_id: str, payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict):
        return payload
    try:
        parsed = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise EncodingFailure(f"Malformed custom choice response for '{prompt_id}': {e}") from e
    if not isinstance(parsed, dict):
        raise EncodingFailure(f"Malformed custom choice response for '{prompt_id}'")
    return parsed


class CustomChoiceNormalizer:
    """Rewrites custom choice responses and collects their glossary"""

    def __init__(self, glossary: Optional[ChoiceGlossary] = None):
        self.glossary = glossary if glossary is not None else ChoiceGlossary()

    def normalize(self, results: List[IndexedResult]) -> Tuple[List[IndexedResult], ChoiceGlossary]:
        """
        Normalize every custom choice response in the results

        Args:
            results: Rolled-up results, updated in place

        Returns:
            Tuple of (results, glossary)
        """
        for result in results:
            for prompt_id, metadata in result.prompt_metadata.items():
                if metadata.prompt_type not in CUSTOM_CHOICE_TYPES:
                    continue
                self._normalize_response(result, prompt_id)

        logger.debug(f"Built choice glossary for {len(self.glossary)} prompts")
        return results, self.glossary

    def _normalize_response(self, result: IndexedResult, prompt_id: str) -> None:
        payload = result.choice_sources.get(prompt_id, result.prompt_responses.get(prompt_id))
        if payload is None or (isinstance(payload, str) and payload in SENTINELS):
            return

        response = _load_payload(prompt_id, payload)
        try:
            chosen = response['value']
            for choice in response.get('custom_choices') or []:
                original_id = int(choice['choice_id'])
                provenance = GLOBAL if original_id < CUSTOM_CHOICE_THRESHOLD else CUSTOM
                self.glossary.register(prompt_id, CustomChoiceItem(
                    original_id=original_id,
                    username=result.username,
                    value=str(choice['choice_value']),
                    provenance=provenance,
                ))
        except (KeyError, TypeError, ValueError) as e:
            raise EncodingFailure(f"Malformed custom choice response for '{prompt_id}': {e}") from e

        if isinstance(chosen, bool) or not isinstance(chosen, (int, list)):
            raise EncodingFailure(f"Chosen value for '{prompt_id}' must be an integer or an array: {chosen!r}")

        result.choice_sources[prompt_id] = payload
        result.prompt_responses[prompt_id] = chosen
