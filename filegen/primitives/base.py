"""Shared enum behaviour for statuses, formats and outcomes.

Config files, the job store and the CLI all hand enums around as plain
strings; ``RichEnumMixin.normalize()`` is the single place those strings
are parsed back (case-insensitive, with aliases and an optional default).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

RawEnumInput = Optional[Union[str, Enum]]


class RichEnumMixin:
    """Mix into ``(RichEnumMixin, str, Enum)`` classes.

    Class Variables:
        _aliases: alternative spelling -> member value
        _descriptions: member value -> human-readable text for ``describe()``
        _default: member NAME returned when ``normalize(None)`` is called

    Enum turns class-body assignments into members, so subclasses set
    these after the class statement.
    """

    _aliases: ClassVar[Dict[str, str]] = {}
    _descriptions: ClassVar[Dict[str, str]] = {}
    _default: ClassVar[Optional[str]] = None
    value: Any

    @classmethod
    def _members(cls) -> List[Any]:
        return list(getattr(cls, "__members__", {}).values())

    @classmethod
    def choices(cls) -> List[str]:
        return [member.value for member in cls._members()]

    @classmethod
    def _lookup_table(cls) -> Dict[str, Any]:
        table = {str(member.value).lower(): member for member in cls._members()}
        for alias, target in cls._aliases.items():
            table[alias.lower()] = table[str(target).lower()]
        return table

    @classmethod
    def normalize(cls, raw: RawEnumInput) -> Any:
        """Return the member for ``raw``.

        Raises:
            ValueError: ``raw`` is None and there is no default, or it names no member or alias
        """
        if isinstance(raw, cls):
            return raw
        if raw is None:
            if cls._default is None:
                raise ValueError(f"{cls.__name__} value must be provided")
            return getattr(cls, "__members__")[cls._default]

        key = str(getattr(raw, "value", raw)).strip().lower()
        member = cls._lookup_table().get(key)
        if member is None:
            raise ValueError(
                f"Invalid {cls.__name__} '{raw}'. Valid options: {', '.join(cls.choices())}"
            )
        return member

    def describe(self) -> str:
        return self._descriptions.get(str(self.value), str(self.value))


__all__ = ["RichEnumMixin", "RawEnumInput"]
