"""Record validation and normalisation.

``process`` returns a ``ProcessResult`` for records that are accepted,
filtered (dropped silently) or invalid (failed the optional schema
validator), and raises ``ValidationError`` for records that break a
business rule. The pipeline counts the latter as skipped against the
job's skip limit. Any other exception is fatal for the job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from filegen.exceptions import ValidationError
from filegen.primitives.base import RichEnumMixin
from filegen.records.orders import LineItem, Order
from filegen.records.schema import Record, json_value

logger = logging.getLogger(__name__)

# Returns a list of error messages for a serialised record (empty when valid)
RecordValidator = Callable[[Dict[str, Any]], List[str]]


class ProcessOutcome(RichEnumMixin, str, Enum):
    ACCEPTED = "accepted"
    FILTERED = "filtered"
    SKIPPED = "skipped"
    INVALID = "invalid"


ProcessOutcome._descriptions = {
    "accepted": "Record passed all checks and is written",
    "filtered": "Null or empty record, dropped without counting",
    "skipped": "Record failed a business rule; counted against the skip limit",
    "invalid": "Record failed schema validation; counted and dropped",
}


@dataclass
class ProcessResult:
    outcome: ProcessOutcome
    item: Any = None
    reason: Optional[str] = None

    @classmethod
    def accepted(cls, item: Any) -> "ProcessResult":
        return cls(ProcessOutcome.ACCEPTED, item)

    @classmethod
    def filtered(cls, reason: str) -> "ProcessResult":
        return cls(ProcessOutcome.FILTERED, None, reason)

    @classmethod
    def skipped(cls, reason: str) -> "ProcessResult":
        return cls(ProcessOutcome.SKIPPED, None, reason)

    @classmethod
    def invalid(cls, reason: str) -> "ProcessResult":
        return cls(ProcessOutcome.INVALID, None, reason)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _trim(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class RecordProcessor:
    """Processor for flat, schema-by-example records."""

    def __init__(
        self,
        key_column: Optional[str] = None,
        required_fields: Sequence[str] = (),
        filter_blank_fields: Sequence[str] = (),
        validator: Optional[RecordValidator] = None,
    ):
        self.key_column = key_column
        self.required_fields = [name.lower() for name in required_fields]
        self.filter_blank_fields = [name.lower() for name in filter_blank_fields]
        self.validator = validator

    def process(self, record: Optional[Record]) -> ProcessResult:
        if record is None or len(record) == 0 or record.is_empty():
            logger.debug("Filtering empty record")
            return ProcessResult.filtered("empty record")

        for name in record:
            record[name] = _trim(record[name])

        for name in self.filter_blank_fields:
            if _is_blank(record.get(name)):
                logger.debug("Filtering record with blank %s", name)
                return ProcessResult.filtered(f"blank {name}")

        record_key = record.get(self.key_column) if self.key_column else None
        for name in self.required_fields:
            if name not in record.schema:
                raise ValidationError(f"Missing required field {name}", field=name, record_key=record_key)
            if _is_blank(record[name]):
                raise ValidationError(f"Required field {name} is blank", field=name, record_key=record_key)

        if self.validator is not None:
            errors = self.validator(json_value(record.as_dict()))
            if errors:
                logger.warning("Record %s failed schema validation: %s", record_key, errors[0])
                return ProcessResult.invalid(errors[0])

        return ProcessResult.accepted(record)


class OrderRecordProcessor:
    """Processor for orders: structural checks, then trimming."""

    def __init__(self, validator: Optional[RecordValidator] = None):
        self.validator = validator

    def process(self, order: Optional[Order]) -> ProcessResult:
        if order is None:
            return ProcessResult.filtered("empty record")

        try:
            self._validate_structure(order)
        except ValidationError as exc:
            logger.warning(
                "Skipping order %s due to validation failure: %s", order.order_id, exc.message
            )
            raise

        transformed = self._transform(order)

        if self.validator is not None:
            errors = self.validator(json_value(transformed.to_dict()))
            if errors:
                logger.warning("Order %s failed schema validation: %s", order.order_id, errors[0])
                return ProcessResult.invalid(errors[0])

        logger.debug("Processed order %s", transformed.order_id)
        return ProcessResult.accepted(transformed)

    def _validate_structure(self, order: Order) -> None:
        if order.order_id is None:
            raise ValidationError("Missing Order ID", field="order_id")
        if _is_blank(order.order_number):
            raise ValidationError(
                f"Order Number is blank for ID: {order.order_id}",
                field="order_number",
                record_key=order.order_id,
            )
        if order.order_amount is None:
            raise ValidationError(
                f"Missing Order Amount for ID: {order.order_id}",
                field="order_amount",
                record_key=order.order_id,
            )
        if not any(item.is_valid() for item in order.line_items):
            raise ValidationError(
                f"No valid line items found for ID: {order.order_id}",
                field="line_items",
                record_key=order.order_id,
            )

    def _transform(self, order: Order) -> Order:
        return Order(
            order_id=order.order_id,
            order_number=_trim(order.order_number),
            order_amount=order.order_amount,
            order_date=order.order_date,
            customer_id=_trim(order.customer_id),
            customer_name=_trim(order.customer_name),
            status=_trim(order.status),
            line_items=[
                LineItem(
                    line_item_id=item.line_item_id,
                    product_id=_trim(item.product_id),
                    product_name=_trim(item.product_name),
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_amount=item.line_amount,
                    status=_trim(item.status),
                )
                for item in order.line_items
            ],
        )


def build_processor(
    record_shape: str,
    key_column: Optional[str] = None,
    required_fields: Sequence[str] = (),
    filter_blank_fields: Sequence[str] = (),
    validator: Optional[RecordValidator] = None,
):
    if record_shape == "order":
        return OrderRecordProcessor(validator=validator)
    return RecordProcessor(
        key_column=key_column,
        required_fields=required_fields,
        filter_blank_fields=filter_blank_fields,
        validator=validator,
    )


__all__ = [
    "ProcessOutcome",
    "ProcessResult",
    "RecordProcessor",
    "OrderRecordProcessor",
    "RecordValidator",
    "build_processor",
]
