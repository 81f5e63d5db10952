"""Nostr events, filters and the tag-matching helpers used by the stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence


@dataclass
class Event:
    """A signed nostr event."""

    id: str = ""
    pubkey: str = ""
    created_at: int = 0
    kind: int = 0
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""
    sig: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the event in its JSON wire shape."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Event:
        """Build an event from its JSON wire shape."""
        return cls(
            id=str(data.get("id", "")),
            pubkey=str(data.get("pubkey", "")),
            created_at=int(data.get("created_at", 0)),
            kind=int(data.get("kind", 0)),
            tags=[[str(part) for part in tag] for tag in data.get("tags") or []],
            content=str(data.get("content", "")),
            sig=str(data.get("sig", "")),
        )

    def tag_key(self, tag: Sequence[str]) -> str:
        """Return the key (first element) of a tag, or "" for an empty tag."""
        return tag[0] if tag else ""


@dataclass
class Filter:
    """A nostr subscription filter; None means the field is not constrained."""

    ids: list[str] | None = None
    kinds: list[int] | None = None
    authors: list[str] | None = None
    tags: dict[str, list[str]] = field(default_factory=dict)
    since: int | None = None
    until: int | None = None
    limit: int = 0
    search: str = ""

    def matches(self, event: Event | None) -> bool:
        """Tell whether an event satisfies every constraint of the filter."""
        if event is None:
            return False
        if self.ids is not None and event.id not in self.ids:
            return False
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.authors is not None and event.pubkey not in self.authors:
            return False
        for name, values in self.tags.items():
            if values is not None and not contains_any(event.tags, name, values):
                return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at > self.until:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        """Return the filter in its JSON wire shape."""
        data: dict[str, Any] = {}
        if self.ids is not None:
            data["ids"] = list(self.ids)
        if self.kinds is not None:
            data["kinds"] = list(self.kinds)
        if self.authors is not None:
            data["authors"] = list(self.authors)
        for name, values in self.tags.items():
            if values is not None:
                data["#" + name.removeprefix("#")] = list(values)
        if self.since is not None:
            data["since"] = self.since
        if self.until is not None:
            data["until"] = self.until
        if self.limit > 0:
            data["limit"] = self.limit
        if self.search:
            data["search"] = self.search
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Filter:
        """Build a filter from its JSON wire shape."""

        def _strings(key: str) -> list[str] | None:
            value = data.get(key)
            return None if value is None else [str(item) for item in value]

        kinds = data.get("kinds")
        since = data.get("since")
        until = data.get("until")
        tags = {
            key[1:]: [str(item) for item in value]
            for key, value in data.items()
            if key.startswith("#") and len(key) > 1 and value is not None
        }
        return cls(
            ids=_strings("ids"),
            kinds=None if kinds is None else [int(kind) for kind in kinds],
            authors=_strings("authors"),
            tags=tags,
            since=None if since is None else int(since),
            until=None if until is None else int(until),
            limit=int(data.get("limit") or 0),
            search=str(data.get("search") or ""),
        )


def is_single_letter(s: str) -> bool:
    """Tell whether s is exactly one lower-case letter of one byte."""
    if len(s.encode("utf-8")) != 1:
        return False
    return s.isalpha() and s.islower()


def is_tag_query_tag(s: str) -> bool:
    """Tell whether s has the form "#x" with x a single lower-case letter."""
    return len(s.encode("utf-8")) == 2 and s[0] == "#" and is_single_letter(s[1])


def _tags_named(tags: Iterable[Sequence[str]], tag_name: str) -> Iterable[Sequence[str]]:
    name = tag_name.removeprefix("#")
    return (tag for tag in tags if len(tag) >= 2 and tag[0] == name)


def contains_any(tags: Iterable[Sequence[str]], tag_name: str, values: Sequence[str]) -> bool:
    """Tell whether a tag called tag_name has one of values as its value."""
    return any(tag[1] in values for tag in _tags_named(tags, tag_name))


def contains_any_with_wildcard(
    tags: Iterable[Sequence[str]], tag_name: str, values: Sequence[str]
) -> bool:
    """Like contains_any, but "f" and "d" tags match path patterns with "*"."""
    name = tag_name.removeprefix("#")
    wildcard = name in ("f", "d")
    for tag in _tags_named(tags, name):
        for value in values:
            if wildcard:
                if match_wildcard(value, tag[1]):
                    return True
            elif value == tag[1]:
                return True
    return False


def match_wildcard(pattern: str, value: str) -> bool:
    """Match a "/"-separated path against a pattern whose "*" parts skip segments."""
    pattern_parts = pattern.split("/")
    value_parts = value.split("/")
    pi = vi = 0
    while pi < len(pattern_parts) and vi < len(value_parts):
        if pattern_parts[pi] == "*":
            pi += 1
            if pi == len(pattern_parts):
                return True
            while vi < len(value_parts) and value_parts[vi] != pattern_parts[pi]:
                vi += 1
        elif pattern_parts[pi] == value_parts[vi]:
            pi += 1
            vi += 1
        else:
            return False
    return pi == len(pattern_parts) and vi == len(value_parts)