"""Record snapshots and the duplicate-marker variants read from the record API.

The record store may model the duplicate marker either as a single-choice
property (``select``) or as a multi-choice property (``multi_select``). Both
shapes expose the same small capability set so callers never branch on the
property type themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from dupflag.records.errors import RecordParseError

TagKind = Literal["select", "multi_select"]

DEFAULT_MARKER = "Duplicate"


@dataclass(frozen=True, slots=True)
class SelectTag:
    """Single-choice marker: the property holds one option or nothing."""

    value: Optional[str] = None
    label: str = DEFAULT_MARKER

    def has_duplicate_marker(self) -> bool:
        return self.value is not None and self.value.lower() == self.label.lower()

    def with_duplicate_marker_added(self) -> "SelectTag":
        return SelectTag(value=self.label, label=self.label)

    def without_duplicate_marker(self) -> "SelectTag":
        if not self.has_duplicate_marker():
            return self
        return SelectTag(value=None, label=self.label)

    def to_property(self) -> Dict[str, Any]:
        return {"select": {"name": self.value} if self.value else None}


@dataclass(frozen=True, slots=True)
class MultiSelectTag:
    """Multi-choice marker: the duplicate label is one option among others."""

    values: Tuple[str, ...] = ()
    label: str = DEFAULT_MARKER

    def has_duplicate_marker(self) -> bool:
        target = self.label.lower()
        return any(value.lower() == target for value in self.values)

    def with_duplicate_marker_added(self) -> "MultiSelectTag":
        if self.has_duplicate_marker():
            return self
        return MultiSelectTag(values=(*self.values, self.label), label=self.label)

    def without_duplicate_marker(self) -> "MultiSelectTag":
        target = self.label.lower()
        kept = tuple(value for value in self.values if value.lower() != target)
        return MultiSelectTag(values=kept, label=self.label)

    def to_property(self) -> Dict[str, Any]:
        return {"multi_select": [{"name": value} for value in self.values]}


TagState = Union[SelectTag, MultiSelectTag]


def parse_tag_state(kind: TagKind, prop: Optional[Dict[str, Any]], label: str = DEFAULT_MARKER) -> TagState:
    """Build the configured marker variant from a raw property payload.

    Args:
        kind: ``select`` or ``multi_select`` as configured for the tag property.
        prop: The property object from the record payload (may be ``None``).
        label: Option name that marks a record as a duplicate.

    Returns:
        A :class:`SelectTag` or :class:`MultiSelectTag`.
    """

    prop = prop or {}
    if kind == "multi_select":
        options = prop.get("multi_select") or []
        values = tuple(str(option.get("name")) for option in options if isinstance(option, dict) and option.get("name"))
        return MultiSelectTag(values=values, label=label)
    if kind == "select":
        option = prop.get("select")
        value = option.get("name") if isinstance(option, dict) else None
        return SelectTag(value=value, label=label)
    raise ValueError(f"Unsupported tag kind '{kind}'")


def extract_title(properties: Dict[str, Any], name_property: str) -> Optional[str]:
    """Return the plain text of the first fragment of a title property."""

    prop = properties.get(name_property)
    if not isinstance(prop, dict):
        return None
    fragments = prop.get("title")
    if not isinstance(fragments, list) or not fragments:
        return None
    first = fragments[0]
    if not isinstance(first, dict):
        return None
    text = first.get("plain_text")
    return text if isinstance(text, str) and text else None


@dataclass(slots=True)
class Record:
    """Snapshot of one record as seen by the engine."""

    record_id: str
    name: Optional[str]
    tag: TagState

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        *,
        name_property: str,
        tag_property: str,
        tag_kind: TagKind,
        tag_label: str = DEFAULT_MARKER,
    ) -> "Record":
        record_id = payload.get("id") if isinstance(payload, dict) else None
        if not record_id:
            raise RecordParseError("record payload is missing 'id'")
        properties = payload.get("properties") or {}
        if not isinstance(properties, dict):
            raise RecordParseError(f"record {record_id} has malformed properties")
        return cls(
            record_id=str(record_id),
            name=extract_title(properties, name_property),
            tag=parse_tag_state(tag_kind, properties.get(tag_property), tag_label),
        )


@dataclass(slots=True)
class RecordPage:
    """One page of a paginated record query."""

    records: List[Record] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


__all__ = [
    "TagKind",
    "TagState",
    "SelectTag",
    "MultiSelectTag",
    "parse_tag_state",
    "extract_title",
    "Record",
    "RecordPage",
    "DEFAULT_MARKER",
]
