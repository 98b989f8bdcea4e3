"""Attribute snapshots of an entity at one timestamp."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import date, datetime
from typing import Any, Union

from timetravel.core.timestamp import TimestampValue


AttributeValue = Union[str, int, float, bool, datetime, date, None]

_SCALAR_TYPES = (str, int, float, bool, datetime, date)


class AttributeSnapshot(Mapping[str, AttributeValue]):
    """Read-only mapping of attribute name to value at a timestamp.

    An attribute is either absent (not a key), present with ``None``, or
    present with a value. Attribute access works like item access but raises
    ``AttributeError`` for absent names::

        snapshot.subject         # value, None, or AttributeError
        "subject" in snapshot    # False only when absent
    """

    __slots__ = ("timestamp", "_values")

    def __init__(self, timestamp: TimestampValue, values: Mapping[str, Any]):
        for name, value in values.items():
            if value is not None and not isinstance(value, _SCALAR_TYPES):
                raise TypeError(f"Attribute {name!r} has unsupported type {type(value).__name__}")
        self.timestamp = timestamp
        self._values = dict(values)

    def __getitem__(self, name: str) -> AttributeValue:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __getattr__(self, name: str) -> AttributeValue:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(f"{name!r} is absent from the snapshot at {self.timestamp}") from None

    def is_absent(self, name: str) -> bool:
        return name not in self._values

    def changed_from(self, current: Mapping[str, Any]) -> AttributeSnapshot:
        """Copy keeping only attributes that differ from ``current`` (or that it lacks)."""
        return AttributeSnapshot(
            self.timestamp,
            {
                name: value
                for name, value in self._values.items()
                if name not in current or current[name] != value
            },
        )

    def to_dict(self) -> dict[str, AttributeValue]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"AttributeSnapshot({self.timestamp.key!r}, {self._values!r})"
