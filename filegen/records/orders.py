"""Order records: a parent order with nested line items.

Orders are read with a two-phase fetch. The detail query returns one
joined row per line item (``LEFT JOIN`` so orders without items still
come back once); ``orders_from_rows`` folds those rows back into
``Order`` objects keyed by order id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional


@dataclass
class LineItem:
    line_item_id: Optional[str]
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = None
    line_amount: Optional[Decimal] = None
    status: Optional[str] = None

    def is_valid(self) -> bool:
        return self.line_item_id is not None and self.quantity is not None and self.quantity > 0


@dataclass
class Order:
    order_id: Any
    order_number: Optional[str] = None
    order_amount: Optional[Decimal] = None
    order_date: Any = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    status: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Field order here is the element order in XML/JSON output."""
        return {
            "orderId": self.order_id,
            "orderNumber": self.order_number,
            "orderAmount": self.order_amount,
            "orderDate": self.order_date,
            "customerId": self.customer_id,
            "customerName": self.customer_name,
            "status": self.status,
            "lineItems": [
                {
                    "lineItemId": item.line_item_id,
                    "productId": item.product_id,
                    "productName": item.product_name,
                    "quantity": item.quantity,
                    "unitPrice": item.unit_price,
                    "lineAmount": item.line_amount,
                    "status": item.status,
                }
                for item in self.line_items
            ],
        }


def _lower_keys(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(k).lower(): v for k, v in row.items()}


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def orders_from_rows(rows: Iterable[Mapping[str, Any]], key_column: str = "order_id") -> Dict[Any, Order]:
    """Group joined order/line-item rows into orders keyed by ``key_column``."""
    orders: Dict[Any, Order] = {}
    for raw in rows:
        row = _lower_keys(raw)
        key = row.get(key_column)
        order = orders.get(key)
        if order is None:
            order = Order(
                order_id=row.get("order_id", key),
                order_number=row.get("order_number"),
                order_amount=_as_decimal(row.get("order_amount")),
                order_date=row.get("order_date"),
                customer_id=row.get("customer_id"),
                customer_name=row.get("customer_name"),
                status=row.get("status"),
            )
            orders[key] = order
        if row.get("line_item_id") is not None:
            order.line_items.append(
                LineItem(
                    line_item_id=str(row["line_item_id"]),
                    product_id=row.get("product_id"),
                    product_name=row.get("product_name"),
                    quantity=_as_int(row.get("quantity")),
                    unit_price=_as_decimal(row.get("unit_price")),
                    line_amount=_as_decimal(row.get("line_amount")),
                    status=row.get("line_status"),
                )
            )
    return orders


__all__ = ["LineItem", "Order", "orders_from_rows"]
