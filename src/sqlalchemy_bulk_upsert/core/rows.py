"""
Row: one logical record of an incoming batch.
"""

from collections.abc import Mapping, MutableMapping
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Optional, Sequence, Set, Tuple

from sqlalchemy_bulk_upsert.core.descriptor import EntityDescriptor
from sqlalchemy_bulk_upsert.core.values import normalize_key, values_equal
from sqlalchemy_bulk_upsert.exceptions import ColumnShapeMismatchError, ImmutableUniqueKeyError


class RowState(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


class Row(MutableMapping):
    """
    Ordered attribute mapping with dirty tracking against a matched store row.

    Once a row has been matched, writing a compared attribute keeps ``dirty``
    in sync with the stored value, so hooks can change values and the write
    plan follows. Unique attributes are locked after ingestion.
    """

    def __init__(
        self,
        attributes: Mapping,
        unique_attributes: Sequence[str] = (),
        position: int = 0,
    ):
        self._attributes: Dict[str, Any] = dict(attributes)
        self.unique_attributes: Tuple[str, ...] = tuple(unique_attributes)
        self.position = position
        self.state: Optional[RowState] = None
        self.dirty: Set[str] = set()
        self.identity: Any = None
        self.original: Optional[Dict[str, Any]] = None
        self.compared: FrozenSet[str] = frozenset()
        self.locked: FrozenSet[str] = frozenset()
        self.extendable = False
        self.touched: Set[str] = set()
        self.restored = False
        self.excluded = False

    @classmethod
    def ingest(
        cls,
        data: Mapping,
        descriptor: EntityDescriptor,
        unique_attributes: Sequence[str],
        position: int,
    ) -> "Row":
        """
        Validate a caller-supplied mapping and wrap it.

        Raises:
            ColumnShapeMismatchError: on undeclared attributes or a missing
                unique attribute
        """
        if not isinstance(data, Mapping):
            raise TypeError(f"Row {position} must be a mapping, got {type(data).__name__}")
        attributes = data._attributes if isinstance(data, Row) else data

        unknown = descriptor.unknown_columns(attributes.keys())
        if unknown:
            raise ColumnShapeMismatchError(
                f"Row {position} has attributes not declared on "
                f"'{descriptor.table_name}': {', '.join(sorted(unknown))}",
                rows=[data],
                columns=unknown,
            )

        missing = [name for name in unique_attributes if name not in attributes]
        if missing:
            raise ColumnShapeMismatchError(
                f"Row {position} is missing unique attribute(s): {', '.join(missing)}",
                rows=[data],
                columns=missing,
            )

        return cls(attributes, unique_attributes, position)

    def __getitem__(self, key: str) -> Any:
        return self._attributes[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key in self.unique_attributes and key in self._attributes:
            if not values_equal(self._attributes[key], value):
                raise ImmutableUniqueKeyError(
                    f"Unique attribute '{key}' of row {self.position} cannot be changed",
                    rows=[self],
                )
        self._attributes[key] = value
        if self.original is None:
            return
        if key not in self.compared and self.extendable and key not in self.locked:
            self.compared = self.compared | {key}
        if key in self.compared:
            if key in self.original and values_equal(value, self.original[key]):
                self.dirty.discard(key)
            else:
                self.dirty.add(key)

    def __delitem__(self, key: str) -> None:
        if key in self.unique_attributes:
            raise ImmutableUniqueKeyError(
                f"Unique attribute '{key}' of row {self.position} cannot be removed",
                rows=[self],
            )
        del self._attributes[key]
        self.dirty.discard(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self._attributes)

    def __len__(self) -> int:
        return len(self._attributes)

    def __repr__(self) -> str:
        state = self.state.value if self.state else "pending"
        return f"<Row(position={self.position}, state={state}, {self._attributes!r})>"

    @property
    def unique_values(self) -> Tuple[Any, ...]:
        return tuple(self._attributes.get(name) for name in self.unique_attributes)

    @property
    def unique_key(self) -> tuple:
        return normalize_key(self.unique_values)

    @property
    def is_new(self) -> bool:
        return self.state is RowState.NEW

    @property
    def is_changed(self) -> bool:
        return self.state is RowState.CHANGED

    def attach(
        self,
        original: Mapping,
        identity: Any,
        compared: Sequence[str],
        extendable: bool = False,
        locked: Iterable[str] = (),
    ) -> None:
        """
        Pair the row with the store row it matched.

        With ``extendable`` set, an attribute assigned later (by a hook) joins
        the compared set unless it is ``locked``; a column that was never
        selected from the store counts as changed.
        """
        self.original = dict(original)
        self.identity = identity
        self.compared = frozenset(compared)
        self.extendable = extendable
        self.locked = frozenset(locked)

    def stamp(self, key: str, value: Any) -> None:
        """Write a value that must be persisted whatever the stored value is."""
        self._attributes[key] = value
        if self.original is not None:
            self.dirty.add(key)

    def touch(self, key: str, value: Any) -> None:
        """Write an automatic timestamp; it alone never makes a row changed."""
        self.stamp(key, value)
        self.touched.add(key)

    def exclude(self) -> None:
        """Drop this row from every remaining statement and hook."""
        self.excluded = True

    def refresh_state(self) -> RowState:
        if self.original is None:
            self.state = RowState.NEW
        elif self.dirty - self.touched:
            self.state = RowState.CHANGED
        else:
            self.state = RowState.UNCHANGED
        return self.state

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._attributes)
