"""
Unit tests for change record normalization.
"""

import json

import pytest

from order_stream.cdc.base import ChangeOperation, ChangeRecord
from order_stream.cdc.normalizer import EventNormalizer


@pytest.fixture
def normalizer():
    return EventNormalizer()


def test_insert_produces_insert_message(normalizer):
    record = ChangeRecord(
        id=1,
        entity_id=5,
        operation="INSERT",
        after={"id": 5, "name": "Alice", "status": "pending"},
    )

    event = normalizer.normalize(record)

    assert event is not None
    assert event.operation == ChangeOperation.INSERT
    message = event.to_message()
    assert message["type"] == "INSERT"
    assert message["data"] == {"id": 5, "name": "Alice", "status": "pending"}
    assert message["changeId"] == 1
    assert "oldData" not in message


def test_insert_without_entity_id_uses_payload_id(normalizer):
    record = ChangeRecord(id=1, entity_id=None, operation="INSERT", after={"id": 5, "name": "Alice"})

    event = normalizer.normalize(record)

    assert event is not None
    assert event.entity_id == 5


def test_json_text_payloads_are_parsed(normalizer):
    before = {"id": 7, "status": "pending"}
    after = {"id": 7, "status": "shipped"}
    record = ChangeRecord(
        id=3,
        entity_id=7,
        operation="UPDATE",
        before=json.dumps(before),
        after=json.dumps(after).encode("utf-8"),
        occurred_at="2024-01-15 10:30:00",
    )

    message = normalizer.normalize(record).to_message()

    assert message["type"] == "UPDATE"
    assert message["oldData"] == before
    assert message["newData"] == after
    assert message["data"] == after
    assert message["timestamp"] == "2024-01-15 10:30:00"


def test_update_without_before_still_emits(normalizer):
    record = ChangeRecord(id=4, entity_id=7, operation="UPDATE", before=None, after={"id": 7})

    event = normalizer.normalize(record)

    assert event is not None
    assert event.before is None
    assert event.data == {"id": 7}


def test_delete_uses_before_image(normalizer):
    record = ChangeRecord(id=9, entity_id=2, operation="delete", before='{"id": 2, "status": "delivered"}')

    message = normalizer.normalize(record).to_message()

    assert message["type"] == "DELETE"
    assert message["data"] == {"id": 2, "status": "delivered"}


@pytest.mark.parametrize("placeholder", ["[object Object]", "  [object Object] "])
def test_placeholder_payload_yields_no_event(normalizer, placeholder):
    record = ChangeRecord(id=2, entity_id=5, operation="INSERT", after=placeholder)

    assert normalizer.normalize(record) is None


def test_broken_json_yields_no_event(normalizer):
    record = ChangeRecord(id=2, entity_id=5, operation="INSERT", after='{"id": 5,')

    assert normalizer.normalize(record) is None


def test_non_object_json_yields_no_event(normalizer):
    record = ChangeRecord(id=2, entity_id=5, operation="INSERT", after="[1, 2, 3]")

    assert normalizer.normalize(record) is None


def test_delete_with_null_entity_id_is_dropped(normalizer):
    record = ChangeRecord(id=6, entity_id=None, operation="DELETE", before={"id": 2})

    assert normalizer.normalize(record) is None


def test_unknown_operation_is_dropped(normalizer):
    record = ChangeRecord(id=6, entity_id=1, operation="TRUNCATE", before={"id": 1})

    assert normalizer.normalize(record) is None


def test_identifier_combines_entity_operation_and_change(normalizer):
    record = ChangeRecord(id=12, entity_id=3, operation=ChangeOperation.INSERT, after={"id": 3})

    event = normalizer.normalize(record)

    assert event.get_identifier() == "orders:3:INSERT:12"
