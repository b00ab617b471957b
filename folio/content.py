"""
Content rules shared by both store implementations and the routes.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

EXCERPT_MAX_LENGTH = 300
EXCERPT_SUFFIX = "..."
WORDS_PER_MINUTE = 200

PROJECT_STATUSES = ("completed", "in-progress", "planned")
DEFAULT_PROJECT_STATUS = "completed"
LINK_FIELDS = ("project_url", "github_url")

T = TypeVar("T")


def derive_excerpt(content: str) -> str:
    """Return ``content`` capped at EXCERPT_MAX_LENGTH characters.

    Used both to derive an excerpt from a post body and to cap one supplied
    by the author.
    """
    if len(content) <= EXCERPT_MAX_LENGTH:
        return content
    cut = EXCERPT_MAX_LENGTH - len(EXCERPT_SUFFIX)
    return content[:cut] + EXCERPT_SUFFIX


def estimate_read_time(content: str) -> int:
    """Reading time in whole minutes, rounded up."""
    words = len(content.split())
    return math.ceil(words / WORDS_PER_MINUTE)


def parse_string_list(raw: Optional[str]) -> Optional[list[str]]:
    """
    Parse a multipart list field. Accepts a JSON array or a comma-separated
    string; returns None when the field was not sent at all.
    """
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return []
    items: list
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        items = parsed if isinstance(parsed, list) else raw.strip("[]").split(",")
    else:
        items = raw.split(",")
    return unique_strings(str(item) for item in items)


def unique_strings(values) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def parse_bool(raw: Optional[str]) -> Optional[bool]:
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def matches_search(term: str, *values: str) -> bool:
    """Case-insensitive, unanchored substring match over ``values``."""
    needle = term.casefold()
    return any(needle in (value or "").casefold() for value in values)


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

    @property
    def offset(self) -> int:
        return offset_for(self.page, self.limit)

    def as_dict(self) -> dict:
        return {
            "currentPage": self.page,
            "totalPages": self.total_pages,
            "totalItems": self.total,
            "limit": self.limit,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
        }


def offset_for(page: int, limit: int) -> int:
    return (page - 1) * limit


@dataclass
class BlogChanges:
    """Fields an update may set; None means "leave as is"."""

    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    featured_image: Optional[str] = None
    published: Optional[bool] = None
    tags: Optional[list[str]] = None

    def resolved(self) -> dict:
        """Column values to write, with derived fields filled in."""
        values = {
            key: value
            for key, value in (
                ("title", self.title),
                ("content", self.content),
                ("excerpt", self.excerpt),
                ("featured_image", self.featured_image),
                ("published", self.published),
                ("tags", self.tags),
            )
            if value is not None
        }
        if self.excerpt is not None:
            values["excerpt"] = derive_excerpt(self.excerpt)
        if self.content is not None:
            values["read_time"] = estimate_read_time(self.content)
            if self.excerpt is None:
                values["excerpt"] = derive_excerpt(self.content)
        return values


@dataclass
class ProjectChanges:
    """Like BlogChanges, except an empty string clears a link field."""

    title: Optional[str] = None
    description: Optional[str] = None
    video_url: Optional[str] = None
    project_url: Optional[str] = None
    github_url: Optional[str] = None
    features: Optional[list[str]] = None
    technologies: Optional[list[str]] = None
    status: Optional[str] = None

    def resolved(self) -> dict:
        values = {key: value for key, value in vars(self).items() if value is not None}
        # An empty link means "remove it".
        for key in LINK_FIELDS:
            if values.get(key) == "":
                values[key] = None
        return values
