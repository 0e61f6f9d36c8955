"""
Field Codecs - Specialized Serialization for Multi-Column Fields

🧩 Fields That Do Not Fit One Column:
Some backends can only store scalar columns. A field codec takes over a single
entity field, writing it across several columns and reading it back. The
table backend uses them for list-valued fields.
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import DataIntegrityError


class FieldCodec(ABC):
    """Encodes one entity field into backend columns and back"""

    @abstractmethod
    def encode(self, value: Any, columns: Dict[str, Any]) -> None:
        """Write ``value`` into ``columns``"""
        pass

    @abstractmethod
    def decode(self, columns: Mapping[str, Any], entity_id: str) -> Any:
        """Read the field value back out of ``columns``"""
        pass


def _column_text(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value)


class IndexedListCodec(FieldCodec):
    """
    Stores a list as a count column plus one group of indexed columns per item.

    With ``count_column="teamsCount"``, ``item_prefix="teamid"`` and
    ``item_columns={"team_id": "", "permission": "p"}`` a two item list becomes::

        teamsCount=2, teamid0=..., teamid0p=..., teamid1=..., teamid1p=...

    When ``item_columns`` is None the items are scalars stored as
    ``{item_prefix}{n}``. Attributes named in ``optional_attributes`` are
    only written when set and read back as None when their column is absent.
    """

    def __init__(
        self,
        count_column: str,
        item_prefix: str,
        item_columns: Optional[Dict[str, str]] = None,
        optional_attributes: Iterable[str] = (),
    ):
        self.count_column = count_column
        self.item_prefix = item_prefix
        self.item_columns = item_columns
        self.optional_attributes = frozenset(optional_attributes)

    def _suffixes(self) -> Dict[Optional[str], str]:
        if self.item_columns is None:
            return {None: ""}
        return dict(self.item_columns)

    def encode(self, value: Any, columns: Dict[str, Any]) -> None:
        items = list(value or [])
        columns[self.count_column] = str(len(items))
        for index, item in enumerate(items):
            for attribute, suffix in self._suffixes().items():
                item_value = item if attribute is None else item.get(attribute)
                if item_value is None and attribute in self.optional_attributes:
                    continue
                columns[f"{self.item_prefix}{index}{suffix}"] = _column_text(item_value)

    def decode(self, columns: Mapping[str, Any], entity_id: str) -> List[Any]:
        raw_count = columns.get(self.count_column)
        if raw_count is None:
            return []
        try:
            count = int(raw_count)
        except (TypeError, ValueError):
            raise DataIntegrityError(
                f"Entity {entity_id} has a non-numeric {self.count_column} value: {raw_count!r}")
        if count < 0:
            raise DataIntegrityError(
                f"Entity {entity_id} has a negative {self.count_column} value: {raw_count!r}")

        items = []
        for index in range(count):
            item: Dict[str, Any] = {}
            for attribute, suffix in self._suffixes().items():
                column = f"{self.item_prefix}{index}{suffix}"
                if columns.get(column) in (None, ""):
                    if attribute in self.optional_attributes:
                        item[attribute] = None
                        continue
                    raise DataIntegrityError(
                        f"Entity {entity_id} declares {count} items in {self.count_column} but {column} is missing")
                item[attribute] = columns[column]
            items.append(item[None] if self.item_columns is None else item)

        for suffix in self._suffixes().values():
            extra = f"{self.item_prefix}{count}{suffix}"
            if extra in columns:
                raise DataIntegrityError(
                    f"Entity {entity_id} has {extra} beyond the {count} items declared in {self.count_column}")
        return items


class JsonStringCodec(FieldCodec):
    """Stores any JSON-compatible value as a JSON string in one column"""

    def __init__(self, column: str):
        self.column = column

    def encode(self, value: Any, columns: Dict[str, Any]) -> None:
        if value is not None:
            columns[self.column] = json.dumps(value, default=_column_text)

    def decode(self, columns: Mapping[str, Any], entity_id: str) -> Any:
        raw = columns.get(self.column)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            raise DataIntegrityError(f"Entity {entity_id} has invalid JSON in {self.column}")


__all__ = ['FieldCodec', 'IndexedListCodec', 'JsonStringCodec']
