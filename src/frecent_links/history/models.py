"""Data models for the history module."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any

import dateutil.parser as parser

from frecent_links.exceptions import InvalidInputError

# Frecency held by a page between insertion and its first recompute.
PROVISIONAL_FRECENCY = -1

DEFAULT_TITLE_PREFIX = "test visit for "


class Transition(IntEnum):
    """How a visit happened."""

    LINK = 1
    TYPED = 2
    BOOKMARK = 3
    EMBED = 4
    REDIRECT_PERMANENT = 5
    REDIRECT_TEMPORARY = 6
    DOWNLOAD = 7
    FRAMED_LINK = 8
    RELOAD = 9


@dataclass(frozen=True)
class Visit:
    """A single recorded visit. Immutable once stored."""

    url: str
    title: str
    visit_time: int  # microseconds since the epoch
    transition: Transition = Transition.LINK
    referrer: str | None = None


@dataclass
class VisitInput:
    """A visit to add. Unset fields get defaults when the batch is prepared."""

    url: str
    transition: Transition | int = Transition.LINK
    title: str | None = None
    visit_time: int | datetime | str | None = None
    referrer: str | None = None


@dataclass
class UrlRecord:
    """A page in history together with its visits, oldest first."""

    url: str
    title: str
    frecency: int
    last_visit_time: int
    visits: list[Visit] = field(default_factory=list)

    @property
    def visit_count(self) -> int:
        return len(self.visits)

    def to_entry(self) -> LinkEntry:
        return LinkEntry(
            url=self.url,
            title=self.title,
            frecency=self.frecency,
            last_visit_time=self.last_visit_time,
        )


@dataclass(frozen=True)
class LinkEntry:
    """Read-only projection of a page as shown in the top sites list."""

    url: str
    title: str
    frecency: int
    last_visit_time: int

    @property
    def sort_key(self) -> tuple[int, int, str]:
        """Frecency desc, then last visit desc, then url asc."""
        return (-self.frecency, -self.last_visit_time, self.url)


def to_microseconds(value: int | datetime | str) -> int:
    """Convert a visit time given as int, datetime or ISO string."""
    if isinstance(value, bool):
        raise InvalidInputError(f"Invalid visit time: {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise InvalidInputError(f"Visit time must be positive, got {value}")
        return value
    if isinstance(value, str):
        try:
            value = parser.isoparse(value)
        except (ValueError, OverflowError) as e:
            raise InvalidInputError(f"Invalid visit time {value!r}: {e}") from e
    if isinstance(value, datetime):
        return int(value.timestamp() * 1_000_000)
    raise InvalidInputError(f"Invalid visit time: {value!r}")


def coerce_visit_inputs(places: Any, next_visit_time) -> list[VisitInput]:
    """Normalize what callers pass to ``add_visits`` into a list of inputs.

    Accepts a url string, a ``VisitInput``, a mapping with ``VisitInput``
    field names, or a list/tuple of those. Defaults are filled in here so
    the store only ever sees complete inputs.

    Args:
        places: The visit or visits to add.
        next_visit_time: Callable returning the next default visit time.
    """
    if isinstance(places, (str, VisitInput, Mapping)):
        items: Sequence[Any] = [places]
    elif isinstance(places, (list, tuple)):
        items = places
    else:
        raise InvalidInputError(f"Unsupported visit input: {type(places).__name__}")

    if not items:
        raise InvalidInputError("No visits to add")

    return [_coerce_one(item, next_visit_time) for item in items]


def _coerce_one(item: Any, next_visit_time) -> VisitInput:
    if isinstance(item, str):
        item = VisitInput(url=item)
    elif isinstance(item, Mapping):
        unknown = set(item) - {"url", "transition", "title", "visit_time", "referrer"}
        if unknown:
            raise InvalidInputError(f"Unknown visit fields: {sorted(unknown)}")
        if "url" not in item:
            raise InvalidInputError("Visit is missing a url")
        item = VisitInput(**item)
    elif not isinstance(item, VisitInput):
        raise InvalidInputError(f"Unsupported visit input: {type(item).__name__}")

    if not isinstance(item.url, str) or not item.url.strip():
        raise InvalidInputError(f"Invalid url: {item.url!r}")
    url = item.url.strip()

    try:
        transition = Transition(item.transition)
    except ValueError as e:
        raise InvalidInputError(f"Unknown transition {item.transition!r}") from e

    title = item.title
    if title is None:
        title = DEFAULT_TITLE_PREFIX + url
    elif not isinstance(title, str):
        raise InvalidInputError(f"Title must be a string, got {type(title).__name__}")

    if item.referrer is not None and not isinstance(item.referrer, str):
        raise InvalidInputError(f"Referrer must be a string, got {type(item.referrer).__name__}")

    if item.visit_time is None:
        visit_time = next_visit_time()
    else:
        visit_time = to_microseconds(item.visit_time)

    return VisitInput(
        url=url,
        transition=transition,
        title=title,
        visit_time=visit_time,
        referrer=item.referrer,
    )
