"""Tests for record processing outcomes."""

from __future__ import annotations

from decimal import Decimal

import pytest

from filegen.exceptions import ValidationError
from filegen.processor import (
    OrderRecordProcessor,
    ProcessOutcome,
    RecordProcessor,
    build_processor,
)
from filegen.records.orders import LineItem, Order
from filegen.records.schema import RecordSchema


def _record(**values):
    return RecordSchema.from_row(values).record(values)


def _order(**overrides) -> Order:
    fields = dict(
        order_id=1,
        order_number=" ORD-1 ",
        order_amount=Decimal("10.00"),
        customer_name="  Ann ",
        line_items=[LineItem("L1", " P1 ", "Widget", 1, Decimal("10.00"), Decimal("10.00"), "OPEN")],
    )
    fields.update(overrides)
    return Order(**fields)


class TestRecordProcessor:
    def test_accepts_and_trims(self) -> None:
        result = RecordProcessor().process(_record(id=1, name="  Ann  ", amount=Decimal("1.5")))
        assert result.outcome == ProcessOutcome.ACCEPTED
        assert result.item["name"] == "Ann"
        assert result.item["amount"] == Decimal("1.5")

    @pytest.mark.parametrize("record", [None, "empty"])
    def test_empty_records_are_filtered(self, record) -> None:
        if record == "empty":
            record = _record(id=None, name="   ")
        result = RecordProcessor().process(record)
        assert result.outcome == ProcessOutcome.FILTERED
        assert result.item is None

    def test_blank_filter_field_is_filtered_not_skipped(self) -> None:
        processor = RecordProcessor(filter_blank_fields=["Email"], required_fields=["email"])
        result = processor.process(_record(id=1, email="  "))
        assert result.outcome == ProcessOutcome.FILTERED
        assert result.reason == "blank email"

    def test_blank_required_field_raises(self) -> None:
        processor = RecordProcessor(key_column="id", required_fields=["NAME"])
        with pytest.raises(ValidationError) as exc_info:
            processor.process(_record(id=7, name=" "))
        assert exc_info.value.field == "name"
        assert exc_info.value.record_key == 7

    def test_missing_required_column_raises(self) -> None:
        with pytest.raises(ValidationError, match="Missing required field"):
            RecordProcessor(required_fields=["status"]).process(_record(id=1))

    def test_validator_failure_is_invalid(self) -> None:
        seen = []

        def validator(doc):
            seen.append(doc)
            return ["amount: too small"] if Decimal(doc["amount"]) < 1 else []

        processor = RecordProcessor(validator=validator)
        bad = processor.process(_record(id=1, amount=Decimal("0.50")))
        good = processor.process(_record(id=2, amount=Decimal("2.00")))

        assert bad.outcome == ProcessOutcome.INVALID
        assert bad.reason == "amount: too small"
        assert good.outcome == ProcessOutcome.ACCEPTED
        # Validators see the JSON form of the record
        assert seen[0] == {"id": 1, "amount": "0.50"}


class TestOrderRecordProcessor:
    def test_accepts_and_trims(self) -> None:
        result = OrderRecordProcessor().process(_order())
        assert result.outcome == ProcessOutcome.ACCEPTED
        assert result.item.order_number == "ORD-1"
        assert result.item.customer_name == "Ann"
        assert result.item.line_items[0].product_id == "P1"

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"order_id": None}, "order_id"),
            ({"order_number": "   "}, "order_number"),
            ({"order_amount": None}, "order_amount"),
            ({"line_items": []}, "line_items"),
            ({"line_items": [LineItem("L1", quantity=0)]}, "line_items"),
        ],
    )
    def test_structural_failures_raise(self, overrides, field: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            OrderRecordProcessor().process(_order(**overrides))
        assert exc_info.value.field == field

    def test_one_valid_line_item_is_enough(self) -> None:
        order = _order(line_items=[LineItem("L0", quantity=0), LineItem("L1", quantity=2)])
        assert OrderRecordProcessor().process(order).outcome == ProcessOutcome.ACCEPTED

    def test_validator_sees_nested_json(self) -> None:
        seen = []
        processor = OrderRecordProcessor(validator=lambda doc: seen.append(doc) or [])
        processor.process(_order())
        assert seen[0]["orderAmount"] == "10.00"
        assert seen[0]["lineItems"][0]["productId"] == "P1"

    def test_none_is_filtered(self) -> None:
        assert OrderRecordProcessor().process(None).outcome == ProcessOutcome.FILTERED


def test_build_processor_by_shape() -> None:
    assert isinstance(build_processor("order"), OrderRecordProcessor)
    flat = build_processor("flat", key_column="id", required_fields=["name"])
    assert isinstance(flat, RecordProcessor)
    assert flat.required_fields == ["name"]
