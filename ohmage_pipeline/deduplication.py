"""
Duplicate filtering for uploaded points
Removes points whose client-supplied id was already stored for the same
user and stream
"""

import logging
from typing import Callable, Dict, Iterable, List, Set, Tuple

from .validation import NormalizedRecord

logger = logging.getLogger(__name__)

# (username, observer_id, stream_id, stream_version, candidate_ids) -> existing ids
ExistingIdsLookup = Callable[[str, str, str, int, List[str]], Iterable[str]]


def filter_duplicates(
    username: str,
    observer_id: str,
    candidates: List[NormalizedRecord],
    existing_ids_lookup: ExistingIdsLookup
) -> List[NormalizedRecord]:
    """
    Remove candidates whose id already exists in storage

    Ids are compared per stream and version only. Candidates without an id
    always survive, and repeated ids inside one batch are all kept.

    Args:
        username: Owner of the upload
        observer_id: Observer the streams belong to
        candidates: Validated records from this upload
        existing_ids_lookup: Storage query returning the ids already stored

    Returns:
        The surviving records, in their original order
    """
    upload_ids: Dict[Tuple[str, int], List[str]] = {}
    for record in candidates:
        if record.point_id is not None:
            upload_ids.setdefault((record.stream_id, record.stream_version), []).append(record.point_id)

    duplicate_ids: Dict[Tuple[str, int], Set[str]] = {}
    for (stream_id, stream_version), ids in upload_ids.items():
        existing = set(existing_ids_lookup(username, observer_id, stream_id, stream_version, ids))
        duplicate_ids[(stream_id, stream_version)] = existing.intersection(ids)

    surviving = [
        record for record in candidates
        if record.point_id is None
        or record.point_id not in duplicate_ids.get((record.stream_id, record.stream_version), ())
    ]

    removed = len(candidates) - len(surviving)
    if removed:
        logger.info(f"Removed {removed} duplicate points for '{username}' on observer '{observer_id}'")
    return surviving


def lookup_from_index(index: Dict[Tuple[str, str, str, int], Iterable[str]]) -> ExistingIdsLookup:
    """
    Build a lookup over an in-memory index of stored ids

    Args:
        index: (username, observer_id, stream_id, stream_version) -> stored ids

    Returns:
        A lookup suitable for filter_duplicates
    """
    def lookup(username, observer_id, stream_id, stream_version, ids):
        stored = set(index.get((username, observer_id, stream_id, stream_version), ()))
        return [point_id for point_id in ids if point_id in stored]

    return lookup
