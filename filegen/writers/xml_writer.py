"""Structured-markup (XML) writers."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from filegen.records.orders import Order
from filegen.records.schema import Record, format_value
from filegen.writers.base import CheckpointedWriter

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

ORDER_NAMESPACE = "http://www.example.com/order"
ORDER_PREFIX = "tns"
ORDER_ROOT = "orderInterface"
ORDER_WRAPPER = "orders"
ORDER_ITEM = "order"

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")
_INTERFACE_SUFFIX = re.compile(r"_interface$", re.IGNORECASE)

# Characters XML 1.0 does not allow anywhere in a document, even escaped
_ILLEGAL_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def xml_text(value: str) -> str:
    """Escape character data, dropping characters XML 1.0 cannot carry."""
    return escape(_ILLEGAL_XML_CHARS.sub("", value))


def sanitize_element_name(name: Optional[str]) -> str:
    """Make a column name usable as an XML element name."""
    if name is None or not name.strip():
        return "field"
    sanitized = _INVALID_NAME_CHARS.sub("_", name.strip())
    if sanitized[0].isdigit():
        return "_" + sanitized
    return sanitized


def resolve_root_element(interface_type: Optional[str], root_element: Optional[str] = None) -> str:
    if root_element:
        return sanitize_element_name(root_element)
    if not interface_type:
        return "data"
    return sanitize_element_name(_INTERFACE_SUFFIX.sub("", interface_type.lower()))


class XmlRecordWriter(CheckpointedWriter):
    """``<root><records><rootItem>..</rootItem>..</records><totalRecords>N</totalRecords></root>``

    One item element per record, one column element per non-null value.
    """

    format_name = "xml"

    def __init__(self, interface_type: str, root_element: Optional[str] = None):
        super().__init__(interface_type)
        self.root_element = resolve_root_element(interface_type, root_element)
        self.item_element = self.root_element + "Item"
        self._element_names: Dict[str, str] = {}

    def _element_for(self, column: str) -> str:
        name = self._element_names.get(column)
        if name is None:
            name = sanitize_element_name(column)
            self._element_names[column] = name
        return name

    def write_header(self) -> None:
        self.emit(f"{XML_DECLARATION}\n<{self.root_element}><records>\n")

    def write_item(self, item: Record) -> None:
        parts: List[str] = [f"<{self.item_element}>"]
        for column, value in item.items():
            text = format_value(value)
            if text is None:
                continue
            name = self._element_for(column)
            parts.append(f"<{name}>{xml_text(text)}</{name}>")
        parts.append(f"</{self.item_element}>\n")
        self.emit("".join(parts))

    def write_footer(self) -> None:
        self.emit(
            f"</records><totalRecords>{self.record_count}</totalRecords></{self.root_element}>\n"
        )


class XmlOrderWriter(CheckpointedWriter):
    """Namespaced order document (``tns:orderInterface/tns:orders/tns:order``)."""

    format_name = "xml"

    def __init__(self, interface_type: str, namespace: Optional[str] = None):
        super().__init__(interface_type)
        self.namespace = namespace or ORDER_NAMESPACE

    def _tag(self, name: str) -> str:
        return f"{ORDER_PREFIX}:{name}"

    def write_header(self) -> None:
        self.emit(
            f"{XML_DECLARATION}\n"
            f'<{self._tag(ORDER_ROOT)} xmlns:{ORDER_PREFIX}="{escape(self.namespace)}">'
            f"<{self._tag(ORDER_WRAPPER)}>\n"
        )

    def write_item(self, item: Order) -> None:
        parts: List[str] = [f"<{self._tag(ORDER_ITEM)}>"]
        self._append_fields(parts, item.to_dict())
        parts.append(f"</{self._tag(ORDER_ITEM)}>\n")
        self.emit("".join(parts))

    def _append_fields(self, parts: List[str], fields: Dict[str, Any]) -> None:
        for name, value in fields.items():
            if name == "lineItems":
                for line in value:
                    parts.append(f"<{self._tag('lineItem')}>")
                    self._append_fields(parts, line)
                    parts.append(f"</{self._tag('lineItem')}>")
                continue
            text = format_value(value)
            if text is None:
                continue
            parts.append(f"<{self._tag(name)}>{xml_text(text)}</{self._tag(name)}>")

    def write_footer(self) -> None:
        self.emit(
            f"</{self._tag(ORDER_WRAPPER)}>"
            f"<{self._tag('totalRecords')}>{self.record_count}</{self._tag('totalRecords')}>"
            f"</{self._tag(ORDER_ROOT)}>\n"
        )


__all__ = [
    "XmlRecordWriter",
    "XmlOrderWriter",
    "sanitize_element_name",
    "xml_text",
    "resolve_root_element",
    "ORDER_NAMESPACE",
]
