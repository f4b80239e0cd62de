"""Keyset-paginated cursor readers.

Pages are requested with ``key > last_key`` only; there is no offset
paging. An empty page is the only end-of-stream signal, a short page just
means the next request will probably come back empty.

``CursorReader`` yields one ``Record`` per source row (schema inferred
from the first row). ``OrderCursorReader`` does a two-phase fetch: a page
of parent keys first, then the full order + line item rows for exactly
those keys, re-sorted into the phase-1 key order.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Deque, List, Optional, Tuple, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from filegen.checkpoint import CursorState
from filegen.config.models import RetrySettings
from filegen.exceptions import DataShapeError, FileGenError, ReadError
from filegen.records.orders import Order, orders_from_rows
from filegen.records.schema import ColumnType, RecordSchema
from filegen.source.base import RecordSource, Row
from filegen.source.db_utils import is_retryable_db_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_fetch_size(page_size: int) -> int:
    """Driver fetch size: a fifth of the page, clamped to 100..500 rows."""
    return max(100, min(page_size // 5, 500))


def normalize_key(value: Any) -> Any:
    """Turn a key value into something JSON-safe and comparable.

    Integral numbers become ``int``; other decimals become their plain
    string; timestamps become ISO strings. Strings are kept as they are
    except that blank ones count as NULL.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise DataShapeError("Boolean ordering key is not supported")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return format(value.normalize(), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    # Strings stay byte-for-byte: the persisted bound must compare like the column
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else None


def bind_key(value: Any, key_type: Optional[str]) -> Any:
    """Convert a persisted key back to the driver parameter type."""
    if value is None:
        return None
    if key_type == ColumnType.DECIMAL.value and isinstance(value, str):
        return Decimal(value)
    return value


_NUMERIC_KEY_TYPES = (ColumnType.INTEGER.value, ColumnType.DECIMAL.value)


class CursorReader:
    """Restartable keyset reader producing flat ``Record`` objects.

    The key column must be unique and orderable; numeric keys are also
    checked for ascending order so a misbehaving source fails loudly
    instead of silently skipping rows.
    """

    def __init__(
        self,
        source: RecordSource,
        key_column: str,
        page_size: int,
        retry: Optional[RetrySettings] = None,
        interface_type: str = "",
    ):
        if page_size < 1:
            raise ValueError("page_size must be a positive integer")
        self.source = source
        self.key_column = key_column.lower()
        self.page_size = page_size
        self.retry = retry or RetrySettings()
        self.interface_type = interface_type

        self.schema: Optional[RecordSchema] = None
        self._buffer: Deque[Tuple[Any, Any]] = deque()
        self._last_key: Any = None
        self._key_type: Optional[str] = None
        self._page_bound: Any = None
        self._total_read = 0
        self._end_reached = False
        self._opened = False
        self._restored = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def open(self, restored: Optional[CursorState] = None) -> None:
        """Start reading; resumes from ``restored`` or an earlier ``restore()``."""
        self._buffer.clear()
        self._end_reached = False
        if restored is not None:
            self.restore(restored)
        elif not self._restored:
            self._total_read = 0
            self._last_key = None
            self._page_bound = None
        self._opened = True
        logger.info(
            "Opening %s for %s. Restart=%s, last_key=%s, total_read=%d",
            type(self).__name__,
            self.interface_type or "<unknown>",
            self._restored and self._last_key is not None,
            self._last_key,
            self._total_read,
        )

    def close(self) -> None:
        self._buffer.clear()
        self._opened = False
        self._restored = False
        logger.info("%s closed. Total records read: %d", type(self).__name__, self._total_read)

    def checkpoint(self) -> CursorState:
        return CursorState(
            total_read=self._total_read,
            last_key=self._last_key,
            key_type=self._key_type,
        )

    def restore(self, state: CursorState) -> None:
        self._total_read = state.total_read
        self._last_key = state.last_key
        self._key_type = state.key_type
        self._page_bound = state.last_key
        self._restored = True

    @property
    def total_read(self) -> int:
        return self._total_read

    @property
    def last_key(self) -> Any:
        return self._last_key

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #
    def read(self) -> Optional[Any]:
        """Return the next item, or None at end of stream."""
        if not self._opened:
            raise ReadError("Reader is not open", interface_type=self.interface_type)

        while not self._buffer:
            if self._end_reached:
                return None
            self._fill_buffer()

        key, item = self._buffer.popleft()
        self._last_key = key
        if not self._buffer:
            # Keys dropped at the tail of a page still count as consumed
            self._last_key = self._page_bound
        self._total_read += 1

        if self._total_read % self.page_size == 0:
            logger.info(
                "Read %d records for interface %s", self._total_read, self.interface_type
            )
        return item

    def read_chunk(self, size: int) -> List[Any]:
        items: List[Any] = []
        while len(items) < size:
            item = self.read()
            if item is None:
                break
            items.append(item)
        return items

    def _fill_buffer(self) -> None:
        lower_bound = bind_key(self._page_bound, self._key_type)
        items, bound = self._load_page(lower_bound)
        if bound is None:
            self._end_reached = True
            logger.info(
                "End of data reached for %s. Total records read=%d",
                self.interface_type,
                self._total_read,
            )
            return
        self._page_bound = bound
        self._buffer.extend(items)
        if not items:
            self._last_key = bound
        logger.debug(
            "Fetched %d items after last_key=%s (page bound %s)", len(items), lower_bound, bound
        )

    def _load_page(self, lower_bound: Any) -> Tuple[List[Tuple[Any, Any]], Any]:
        """Return ``(key, item)`` pairs and the last key of the page (None when empty)."""
        rows = self._call_source(
            self.source.fetch_page, lower_bound, self.page_size, compute_fetch_size(self.page_size)
        )
        if not rows:
            return [], None

        if self.schema is None:
            self.schema = RecordSchema.from_row(rows[0])
            if self.key_column not in self.schema:
                raise DataShapeError(
                    f"Key column '{self.key_column}' not found in query result",
                    interface_type=self.interface_type,
                )
            self._key_type = self.schema.type_of(self.key_column).value

        keys = self._validated_keys([row.get(self.key_column) for row in rows])
        items = [(key, self.schema.record(row)) for key, row in zip(keys, rows)]
        return items, keys[-1]

    def _validated_keys(self, raw_keys: List[Any]) -> List[Any]:
        keys: List[Any] = []
        previous = self._page_bound
        for raw in raw_keys:
            key = normalize_key(raw)
            if key is None:
                raise DataShapeError(
                    f"NULL value in ordering key column '{self.key_column}'",
                    interface_type=self.interface_type,
                    last_key=previous,
                )
            if previous is not None and self._key_type in _NUMERIC_KEY_TYPES:
                if Decimal(str(key)) <= Decimal(str(previous)):
                    raise DataShapeError(
                        f"Ordering key went from {previous} to {key}",
                        interface_type=self.interface_type,
                        last_key=previous,
                    )
            keys.append(key)
            previous = key
        return keys

    def _call_source(self, fn: Callable[..., T], *args: Any) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry.base_delay,
                min=self.retry.base_delay,
                max=self.retry.max_delay,
            ),
            retry=retry_if_exception(is_retryable_db_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(fn, *args)
        except FileGenError:
            raise
        except Exception as exc:
            transient = is_retryable_db_error(exc)
            message = (
                f"Record source failed after {self.retry.max_attempts} attempts"
                if transient
                else "Record source failed with a non-transient error"
            )
            logger.error("%s for interface %s: %s", message, self.interface_type, exc)
            raise ReadError(
                message,
                interface_type=self.interface_type,
                last_key=self._last_key,
                original_error=exc,
            ) from exc


class OrderCursorReader(CursorReader):
    """Two-phase keyset reader producing ``Order`` objects."""

    def _load_page(self, lower_bound: Any) -> Tuple[List[Tuple[Any, Any]], Any]:
        id_rows = self._call_source(
            self.source.fetch_page, lower_bound, self.page_size, compute_fetch_size(self.page_size)
        )
        if not id_rows:
            return [], None

        if self._key_type is None:
            first = {str(k).lower(): v for k, v in id_rows[0].items()}
            if self.key_column not in first:
                raise DataShapeError(
                    f"Key column '{self.key_column}' not found in query result",
                    interface_type=self.interface_type,
                )
            self._key_type = ColumnType.from_value(first[self.key_column]).value

        raw_keys = [self._row_key(row) for row in id_rows]
        keys = self._validated_keys(raw_keys)

        detail_rows = self._call_source(self.source.fetch_details_by_keys, raw_keys)
        by_key = {
            normalize_key(key): order
            for key, order in orders_from_rows(detail_rows, self.key_column).items()
        }

        # IN (...) gives no ordering guarantee; phase-1 order is authoritative
        items: List[Tuple[Any, Order]] = []
        for key in keys:
            order = by_key.get(key)
            if order is None:
                logger.warning(
                    "Order %s disappeared between key and detail fetch; skipping", key
                )
                continue
            items.append((key, order))
        return items, keys[-1]

    def _row_key(self, row: Row) -> Any:
        for name, value in row.items():
            if str(name).lower() == self.key_column:
                return value
        return None


def build_reader(
    record_shape: str,
    source: RecordSource,
    key_column: str,
    page_size: int,
    retry: Optional[RetrySettings] = None,
    interface_type: str = "",
) -> CursorReader:
    reader_cls = OrderCursorReader if record_shape == "order" else CursorReader
    return reader_cls(source, key_column, page_size, retry=retry, interface_type=interface_type)


__all__ = [
    "CursorReader",
    "OrderCursorReader",
    "build_reader",
    "compute_fetch_size",
    "normalize_key",
]
