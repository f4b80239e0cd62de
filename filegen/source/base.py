"""Record source contract used by the cursor readers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

Row = Dict[str, Any]


class RecordSource(ABC):
    """Executes ordered, keyset-paginated queries.

    Implementations return plain dict rows. ``fetch_page`` rows must be
    ordered ascending by the key column and contain only keys strictly
    greater than ``lower_bound`` (all keys when it is None).
    """

    @abstractmethod
    def fetch_page(
        self,
        lower_bound: Optional[Any],
        page_size: int,
        fetch_size: Optional[int] = None,
    ) -> List[Row]:
        """Return at most ``page_size`` rows after ``lower_bound``."""

    def fetch_details_by_keys(self, keys: Sequence[Any]) -> List[Row]:
        """Return detail rows for ``keys`` in no particular order."""
        raise NotImplementedError(f"{type(self).__name__} has no detail query")

    def close(self) -> None:
        """Release any pooled resources."""
