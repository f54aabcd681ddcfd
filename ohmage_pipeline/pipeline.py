"""
Ingestion and read pipelines
Wires validation, duplicate filtering, roll-up, normalization and encoding
together for one request
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Union

from .config import get_column_catalog
from .deduplication import ExistingIdsLookup, filter_duplicates
from .definitions import ObserverDefinition
from .encoders import OutputFormat, encoder_for, error_envelope, expand_output_columns
from .glossary import CustomChoiceNormalizer
from .rollup import FlatResponseRow, roll_up
from .validation import InvalidPoint, NormalizedRecord, SchemaValidator

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    records: List[NormalizedRecord] = field(default_factory=list)
    invalid_points: List[InvalidPoint] = field(default_factory=list)
    duplicates_removed: int = 0

    def summary(self) -> Dict[str, Any]:
        return {
            'accepted': len(self.records),
            'invalid': len(self.invalid_points),
            'duplicates_removed': self.duplicates_removed,
        }


class IngestionService:
    """Validates an upload and drops points that were already stored"""

    def __init__(self, config: Dict[str, Any], validator: Optional[SchemaValidator] = None):
        self.config = config
        self.validation_config = config.get('validation', {})
        self.validator = validator or SchemaValidator()

    def ingest(
        self,
        username: str,
        observer: ObserverDefinition,
        raw_text: Union[str, bytes],
        existing_ids_lookup: ExistingIdsLookup,
        best_effort: Optional[bool] = None
    ) -> IngestionResult:
        """
        Validate and deduplicate one upload

        Args:
            username: Owner of the upload
            observer: Observer definition the upload follows
            raw_text: JSON array of data points
            existing_ids_lookup: Storage query for already stored ids
            best_effort: Collect invalid points instead of failing the batch;
                defaults to the configured value

        Returns:
            IngestionResult with the records ready to store
        """
        if best_effort is None:
            best_effort = self.validation_config.get('best_effort', True)

        logger.info(f"Ingesting upload from '{username}' for observer '{observer.id}' v{observer.version}")

        records, invalid_points = self.validator.validate_batch(observer, raw_text, best_effort=best_effort)
        surviving = filter_duplicates(username, observer.id, records, existing_ids_lookup)

        result = IngestionResult(
            records=surviving,
            invalid_points=invalid_points,
            duplicates_removed=len(records) - len(surviving),
        )
        logger.info(f"Ingestion complete: {result.summary()}")
        return result


@dataclass
class EncodedResponse:
    text: str
    content_type: str
    headers: Dict[str, str] = field(default_factory=dict)
    success: bool = True


class SurveyResponseReader:
    """Turns flat query rows into a single response payload"""

    def __init__(self, config: Dict[str, Any], column_catalog: Optional[List[str]] = None):
        self.config = config
        self.column_catalog = column_catalog if column_catalog is not None else get_column_catalog(config)

    def read(
        self,
        output_format: Union[OutputFormat, str],
        columns: List[str],
        rows: List[FlatResponseRow],
        failure_message: Optional[str] = None,
        release_rows: bool = True
    ) -> EncodedResponse:
        """
        Build the read response payload

        Errors never escape: an upstream failure or any exception raised while
        building the output produces a JSON error envelope, whatever the
        requested format.

        Args:
            output_format: json-rows, json-columns or csv
            columns: Requested column list
            rows: Flat prompt response rows
            failure_message: Error text from an upstream failure, if any
            release_rows: Clear the row list once it has been rolled up

        Returns:
            EncodedResponse with payload, content type and headers
        """
        try:
            encoder = encoder_for(output_format, self.config)
        except ValueError:
            logger.error(f"Unknown output format: {output_format}")
            return EncodedResponse(error_envelope(f"Unknown output format: {output_format}"),
                                   "application/json", success=False)

        content_type = encoder.content_type
        headers = encoder.headers()

        if failure_message is not None:
            return EncodedResponse(error_envelope(failure_message), content_type, headers, success=False)

        try:
            if not isinstance(rows, list):
                rows = list(rows)
            total_row_count = len(rows)
            results = roll_up(rows)
            if release_rows:
                rows.clear()
            rows = None

            results, glossary = CustomChoiceNormalizer().normalize(results)
            output_columns = expand_output_columns(columns, self.column_catalog, results)

            logger.info("Generating survey response read output.")
            text = encoder.build(len(results), total_row_count, output_columns, results, glossary)
            return EncodedResponse(text, content_type, headers)

        except Exception:
            logger.exception("An unrecoverable exception occurred while generating a response")
            return EncodedResponse(error_envelope(), content_type, headers, success=False)
