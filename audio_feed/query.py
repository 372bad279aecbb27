from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .models import InvalidQuery, Item

DEFAULT_SORT = "desc:pubDate"
DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class FieldSpec:
    name: str
    value: Callable[[Item], object]
    order: Optional[Callable[[Item], object]] = None
    multi: bool = False

    def sort_value(self, item: Item) -> object:
        if self.order is not None:
            return self.order(item)
        return self.value(item)


_FIELD_LIST = [
    FieldSpec("id", lambda item: item.id),
    FieldSpec("guid", lambda item: item.guid),
    FieldSpec("title", lambda item: item.title),
    FieldSpec("author", lambda item: item.author),
    FieldSpec("description", lambda item: item.description),
    FieldSpec("content", lambda item: item.content),
    FieldSpec("copyright", lambda item: item.copyright),
    FieldSpec("pubDate", lambda item: item.published_at),
    FieldSpec("category", lambda item: list(item.categories), lambda item: tuple(item.categories), multi=True),
    FieldSpec(
        "contributor",
        lambda item: [narrator.name for narrator in item.narrators],
        lambda item: tuple(narrator.name for narrator in item.narrators),
        multi=True,
    ),
    FieldSpec("duration", lambda item: item.duration_seconds),
    FieldSpec("size", lambda item: item.size_bytes),
    FieldSpec("type", lambda item: item.mime_type),
]

FIELDS: Dict[str, FieldSpec] = {spec.name: spec for spec in _FIELD_LIST}
FIELDS["genre"] = FIELDS["category"]
FIELDS["narrator"] = FIELDS["contributor"]


def lookup_field(name: str) -> FieldSpec:
    try:
        return FIELDS[name]
    except KeyError:
        known = ", ".join(sorted(FIELDS))
        raise InvalidQuery(f"Unknown field {name!r} (expected one of: {known})") from None


def stringify(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


@dataclass(frozen=True)
class Condition:
    field: FieldSpec
    pattern: re.Pattern[str]

    def matches(self, item: Item) -> bool:
        value = self.field.value(item)
        if self.field.multi:
            # Each tag is a whole value: "Fiction" must not match "NonFiction".
            return any(self.pattern.fullmatch(str(entry)) for entry in value or ())
        text = stringify(value)
        if text is None:
            return False
        return self.pattern.search(text) is not None


@dataclass
class FilterSpec:
    include_groups: List[List[Condition]] = field(default_factory=list)
    exclude_groups: List[List[Condition]] = field(default_factory=list)


@dataclass(frozen=True)
class SortKey:
    direction: str
    field: FieldSpec

    @property
    def descending(self) -> bool:
        return self.direction == "desc"


def parse_conditions(raw: str) -> List[Condition]:
    """Parse ``field:pattern[,field:pattern...]``; everything after the first colon is the pattern."""
    conditions: List[Condition] = []
    for token in raw.split(","):
        if not token.strip():
            continue
        name, sep, pattern = token.partition(":")
        if not sep:
            raise InvalidQuery(f"Malformatted filter option: {token}")
        spec = lookup_field(name.strip())
        try:
            compiled = re.compile(pattern, re.IGNORECASE | re.MULTILINE)
        except re.error as exc:
            raise InvalidQuery(f"Invalid pattern {pattern!r} for {spec.name}: {exc}") from exc
        conditions.append(Condition(field=spec, pattern=compiled))
    return conditions


def parse_filters(filter_in: Iterable[str] = (), filter_out: Iterable[str] = ()) -> FilterSpec:
    include = [group for group in (parse_conditions(raw) for raw in filter_in) if group]
    exclude = [group for group in (parse_conditions(raw) for raw in filter_out) if group]
    return FilterSpec(include_groups=include, exclude_groups=exclude)


def parse_sort(raw: Optional[str]) -> List[SortKey]:
    keys: List[SortKey] = []
    for token in (raw or DEFAULT_SORT).split(","):
        if not token.strip():
            continue
        direction, _, name = token.partition(":")
        direction = direction.strip()
        if direction not in DIRECTIONS:
            raise InvalidQuery(f"Malformatted sort option: {token}")
        keys.append(SortKey(direction=direction, field=lookup_field(name.strip())))
    return keys


def _matches_all(item: Item, group: Sequence[Condition]) -> bool:
    return all(condition.matches(item) for condition in group)


def apply_filters(items: Sequence[Item], spec: FilterSpec) -> List[Item]:
    """Keep items matching any include group, then drop those matching a whole exclude group.

    An exclude group only removes an item when every one of its conditions
    matches; a single matching condition is not enough.
    """
    if spec.include_groups:
        selected = [
            item for item in items if any(_matches_all(item, group) for group in spec.include_groups)
        ]
    else:
        selected = list(items)
    for group in spec.exclude_groups:
        selected = [item for item in selected if not _matches_all(item, group)]
    return selected


def sort_items(items: Sequence[Item], keys: Sequence[SortKey]) -> List[Item]:
    ordered = list(items)
    # Stable sorts applied from the least to the most significant key.
    for key in reversed(keys):
        if key.descending:
            ordered.sort(key=lambda item, k=key: _present_first(k.field.sort_value(item)), reverse=True)
        else:
            ordered.sort(key=lambda item, k=key: _missing_last(k.field.sort_value(item)))
    return ordered


def _missing_last(value: object) -> tuple:
    return (value is None, value)


def _present_first(value: object) -> tuple:
    return (value is not None, value)


def scope_items(items: Sequence[Item], root: Path, prefix: Optional[str]) -> List[Item]:
    if not prefix or not prefix.strip("/"):
        return list(items)
    root = root.resolve()
    target = (root / prefix.strip("/")).resolve()
    if target != root and root not in target.parents:
        raise InvalidQuery(f"Directory {prefix!r} is outside the library")
    return [item for item in items if item.file_path == target or target in item.file_path.parents]


def run_query(
    items: Sequence[Item],
    filters: Optional[FilterSpec] = None,
    sort: Optional[Sequence[SortKey]] = None,
) -> List[Item]:
    filtered = apply_filters(items, filters or FilterSpec())
    return sort_items(filtered, sort if sort is not None else parse_sort(None))
