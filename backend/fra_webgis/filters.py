from typing import Any, Dict, Iterator, Mapping, Optional

from .utils.logging import get_logger

logger = get_logger(__name__)

# Filter fields used by the viewers; other fields are passed through untouched.
KNOWN_FILTER_FIELDS = (
    "state",
    "district",
    "village",
    "tribal_group",
    "tribal_community",
    "class",
    "fra_type",
    "status",
    "claim_status",
    "claim_area_min",
    "claim_area_max",
)


class FilterSnapshot(Mapping[str, str]):
    """Immutable set of selected filter values.

    Every field present has a non-empty value. Two snapshots are equal
    when they hold the same (field, value) pairs, whatever their order.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Optional[Mapping[str, str]] = None):
        cleaned: Dict[str, str] = {}
        for key, value in (fields or {}).items():
            if not isinstance(value, str) or not value:
                raise ValueError(f"Filter field '{key}' must have a non-empty string value")
            cleaned[key] = value
        self._fields = cleaned

    def __getitem__(self, key: str) -> str:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __hash__(self) -> int:
        return hash(frozenset(self._fields.items()))

    def __repr__(self) -> str:
        return f"FilterSnapshot({self._fields!r})"

    @property
    def is_empty(self) -> bool:
        return not self._fields

    def to_query_params(self) -> Dict[str, str]:
        """Query parameters for a data or export request."""
        return dict(self._fields)


EMPTY_SNAPSHOT = FilterSnapshot()


class FilterState:
    """Builds filter snapshots from raw form values.

    Holds no state between calls; the data controller keeps the current
    snapshot.
    """

    def apply(self, fields: Mapping[str, Any]) -> FilterSnapshot:
        cleaned: Dict[str, str] = {}
        for key, value in fields.items():
            name = str(key).strip()
            if not name or value is None:
                continue
            text = str(value).strip()
            if not text:
                continue
            cleaned[name] = text

        unknown = [name for name in cleaned if name not in KNOWN_FILTER_FIELDS]
        if unknown:
            logger.debug("Passing through unrecognised filter fields", extra={'fields': unknown})

        return FilterSnapshot(cleaned)

    def clear(self) -> FilterSnapshot:
        return EMPTY_SNAPSHOT
