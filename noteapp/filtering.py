"""Filter/Facet Engine: pure functions over the in-memory note collection.

Search is a case-insensitive substring match over the title and the raw
stored content, so markup inside the content is searchable too.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from noteapp.models import Note, TagFacet


def matches_search(note: Note, search: str) -> bool:
    term = search.lower()
    return term in note.title.lower() or term in note.content.lower()


def matches_tag(note: Note, tag: Optional[str]) -> bool:
    return not tag or tag in note.tags


def filter_notes(
    notes: Iterable[Note], search: str = "", tag: Optional[str] = None
) -> list[Note]:
    """Notes matching both the search term and the tag, input order kept."""
    return [n for n in notes if matches_search(n, search) and matches_tag(n, tag)]


def tag_facets(notes: Iterable[Note]) -> list[TagFacet]:
    """Every known tag with the number of notes carrying it."""
    counts: dict[str, int] = {}
    for note in notes:
        for tag in dict.fromkeys(note.tags):
            counts[tag] = counts.get(tag, 0) + 1
    return [TagFacet(tag=tag, count=count) for tag, count in counts.items()]


@dataclass
class FilterState:
    """Ephemeral search term and selected tag."""

    search: str = ""
    tag: Optional[str] = None

    @property
    def active(self) -> bool:
        return bool(self.search or self.tag)

    def apply(self, notes: Iterable[Note]) -> list[Note]:
        return filter_notes(notes, self.search, self.tag)

    def clear(self) -> None:
        self.search = ""
        self.tag = None
