"""Normalization of raw change log rows into change events"""

import json
import re
from typing import Any, Dict, Optional

from loguru import logger

from .base import ChangeEvent, ChangeOperation, ChangeRecord

# Text left behind when an object was stringified instead of serialized
PLACEHOLDER_PATTERN = re.compile(r"^\[object [A-Za-z]+\]$")


class EventNormalizer:
    """
    Converts ChangeRecord rows into ChangeEvent objects

    Never raises for bad data: a record that cannot be turned into a
    complete event yields None and a diagnostic.
    """

    def __init__(self, table: str = "orders"):
        self.table = table

    def normalize(self, record: ChangeRecord) -> Optional[ChangeEvent]:
        """
        Build the event for one record

        Args:
            record: Raw change log row

        Returns:
            ChangeEvent, or None if the record has no usable payload
        """
        operation = self._parse_operation(record.operation)
        if operation is None:
            logger.warning(f"Unknown operation {record.operation!r} on change #{record.id}")
            return None

        before = None
        after = None
        if operation in (ChangeOperation.UPDATE, ChangeOperation.DELETE):
            before = self.parse_payload(record.before, record.id, "before")
        if operation in (ChangeOperation.INSERT, ChangeOperation.UPDATE):
            after = self.parse_payload(record.after, record.id, "after")

        if operation == ChangeOperation.DELETE and before is None:
            logger.warning(f"Dropping change #{record.id}: DELETE without usable before image")
            return None
        if operation != ChangeOperation.DELETE and after is None:
            logger.warning(
                f"Dropping change #{record.id}: {operation.value} without usable after image"
            )
            return None

        entity_id = self._resolve_entity_id(record, operation, after)
        if entity_id is None:
            return None

        return ChangeEvent(
            operation=operation,
            entity_id=entity_id,
            sequence_id=record.id,
            occurred_at=record.occurred_at,
            before=before,
            after=after,
            table=self.table,
        )

    def parse_payload(self, payload: Any, change_id: int, field_name: str) -> Optional[Dict[str, Any]]:
        """
        Parse a before/after image

        Structured payloads pass through, JSON text is parsed and anything
        else (placeholders, broken JSON, non-objects) becomes None.
        """
        if payload is None:
            return None

        if isinstance(payload, dict):
            return payload

        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.error(f"Undecodable {field_name} payload on change #{change_id}: {e}")
                return None

        if not isinstance(payload, str):
            logger.warning(
                f"Unsupported {field_name} payload type {type(payload).__name__} on change #{change_id}"
            )
            return None

        text = payload.strip()
        if not text:
            return None

        if PLACEHOLDER_PATTERN.match(text):
            logger.warning(f"Detected invalid JSON string {text!r} in {field_name} of change #{change_id}")
            return None

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"JSON parse error in {field_name} of change #{change_id}: {e}")
            logger.debug(f"Payload: {text[:200]}")
            return None

        if not isinstance(parsed, dict):
            logger.warning(f"Expected a JSON object in {field_name} of change #{change_id}")
            return None

        return parsed

    def _parse_operation(self, operation: Any) -> Optional[ChangeOperation]:
        if isinstance(operation, ChangeOperation):
            return operation
        if isinstance(operation, bytes):
            operation = operation.decode("utf-8", errors="replace")
        try:
            return ChangeOperation(str(operation).upper())
        except ValueError:
            return None

    def _resolve_entity_id(
        self,
        record: ChangeRecord,
        operation: ChangeOperation,
        after: Optional[Dict[str, Any]]
    ) -> Any:
        if record.entity_id is not None:
            return record.entity_id

        if operation == ChangeOperation.DELETE:
            logger.error(
                f"Data integrity anomaly: DELETE change #{record.id} has no order id, dropping"
            )
            return None

        entity_id = after.get("id") if after else None
        if entity_id is None:
            logger.error(
                f"Data integrity anomaly: change #{record.id} has no order id, dropping"
            )
            return None

        logger.debug(f"Change #{record.id} has no order id column, using payload id {entity_id}")
        return entity_id
