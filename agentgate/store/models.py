"""
Request/response types for the counter store.

Defines the small expression language shared by filters and conditions:
- KeySchema: partition/sort key attributes (plus named sort indexes) per collection
- KeyCondition: partition equality with an optional sort-key prefix
- Condition: a single attribute predicate; lists of conditions are ANDed
- UpdateSpec: set/add/floor mutation with an optional guard condition
- Page: one page of items plus an opaque continuation cursor
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import StoreValidationError


COMPARISON_OPS = {"eq", "ne", "lt", "le", "gt", "ge"}
CONDITION_OPS = COMPARISON_OPS | {"begins_with", "exists", "not_exists"}


@dataclass(frozen=True)
class KeySchema:
    """
    Key layout of a collection.

    Attributes:
        partition_key: Attribute holding the partition (hash) key
        sort_key: Attribute holding the sort (range) key, if any
        indexes: Named alternate sort orders within a partition,
            mapping index name -> attribute
    """
    partition_key: str
    sort_key: Optional[str] = None
    indexes: Dict[str, str] = field(default_factory=dict)

    def key_of(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Project an item (or key dict) onto its key attributes."""
        key = {self.partition_key: item.get(self.partition_key)}
        if self.sort_key:
            key[self.sort_key] = item.get(self.sort_key)
        return key

    def key_values(self, key: Dict[str, Any]) -> tuple:
        """Return the (partition, sort) strings for a key dict."""
        pk = key.get(self.partition_key)
        if pk is None or pk == "":
            raise StoreValidationError(
                f"Missing partition key attribute '{self.partition_key}'"
            )
        sk = ""
        if self.sort_key:
            sk = key.get(self.sort_key)
            if sk is None or sk == "":
                raise StoreValidationError(
                    f"Missing sort key attribute '{self.sort_key}'"
                )
        for value in (pk, sk):
            if not isinstance(value, (str, int)) or isinstance(value, bool):
                raise StoreValidationError(
                    f"Key values must be strings or integers, got {type(value).__name__}"
                )
        return str(pk), str(sk)


@dataclass(frozen=True)
class KeyCondition:
    """Partition equality plus an optional sort-key prefix."""
    partition: str
    sort_prefix: Optional[str] = None


@dataclass(frozen=True)
class Condition:
    """
    Predicate on a single item attribute.

    Comparisons against a missing attribute are false (except 'ne'),
    as are comparisons between incomparable types.
    """
    attribute: str
    op: str
    value: Any = None

    def __post_init__(self):
        if self.op not in CONDITION_OPS:
            raise StoreValidationError(f"Unsupported condition operator: {self.op}")

    def matches(self, item: Dict[str, Any]) -> bool:
        present = self.attribute in item
        if self.op == "exists":
            return present
        if self.op == "not_exists":
            return not present
        if not present:
            return self.op == "ne"

        actual = item[self.attribute]
        try:
            if self.op == "eq":
                return actual == self.value
            if self.op == "ne":
                return actual != self.value
            if self.op == "lt":
                return actual < self.value
            if self.op == "le":
                return actual <= self.value
            if self.op == "gt":
                return actual > self.value
            if self.op == "ge":
                return actual >= self.value
        except TypeError:
            return False

        # begins_with
        return isinstance(actual, str) and actual.startswith(str(self.value))


def matches_all(conditions: Optional[Sequence[Condition]], item: Dict[str, Any]) -> bool:
    """True if the item satisfies every condition (an empty list matches)."""
    if not conditions:
        return True
    return all(condition.matches(item) for condition in conditions)


@dataclass
class UpdateSpec:
    """
    Mutation applied atomically by CounterStore.update().

    Attributes:
        set: Attributes overwritten with the given values
        add: Numeric attributes incremented by the given deltas
            (a missing attribute counts as 0)
        floor: Lower bounds applied after the increments
        condition: Guard evaluated against the current item; for a missing
            item it is evaluated against an empty item whose `add` targets
            read as 0
        create_if_missing: Upsert when the item does not exist; otherwise
            raise ItemNotFoundError
        reset: Attributes overwritten before the condition is evaluated,
            when the item is missing or matches every `reset_if` condition
        reset_if: Guard for `reset` on an existing item; an empty list
            resets only missing items
    """
    set: Dict[str, Any] = field(default_factory=dict)
    add: Dict[str, float] = field(default_factory=dict)
    floor: Dict[str, float] = field(default_factory=dict)
    condition: List[Condition] = field(default_factory=list)
    create_if_missing: bool = True
    reset: Dict[str, Any] = field(default_factory=dict)
    reset_if: List[Condition] = field(default_factory=list)

    def resets(self, current: Optional[Dict[str, Any]]) -> bool:
        """True if `reset` applies to the current item."""
        if not self.reset:
            return False
        if current is None:
            return True
        return bool(self.reset_if) and matches_all(self.reset_if, current)


@dataclass
class Page:
    """One page of results. `cursor` is None when there is nothing left."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    cursor: Optional[str] = None
