from __future__ import annotations

import re
from typing import Container, Iterable, Optional

from .datastore import DataStore


# Paths the site routes itself; a post may not shadow them.
RESERVED_SLUGS = frozenset(
    {
        "admin",
        "archive",
        "archives",
        "categories",
        "category",
        "dashboard",
        "feed",
        "login",
        "logout",
        "page",
        "pages",
        "post",
        "posts",
        "register",
        "rss",
        "signin",
        "signout",
        "signup",
        "tag",
        "tags",
        "user",
        "users",
        "wp-admin",
        "wp-login",
    }
)

_ILLEGAL_CHARS_RE = re.compile(r"[^\w\s.\-]", re.UNICODE)
_SEPARATOR_RE = re.compile(r"[\s._]+")
_DASH_RUN_RE = re.compile(r"-{2,}")


def normalize(text: Optional[str]) -> str:
    slug = (text or "").strip().lower()
    slug = _ILLEGAL_CHARS_RE.sub("", slug)
    slug = _SEPARATOR_RE.sub("-", slug)
    slug = _DASH_RUN_RE.sub("-", slug)
    return slug.strip("-")


class SlugScope:
    """Existing slugs of one table, checked lazily against storage."""

    def __init__(
        self,
        datastore: DataStore,
        table: str,
        *,
        exclude_id: Optional[int] = None,
        pending: Iterable[str] = (),
    ):
        self.datastore = datastore
        self.table = table
        self.exclude_id = exclude_id
        self.pending = {slug.lower() for slug in pending}

    def __contains__(self, slug: object) -> bool:
        if not isinstance(slug, str):
            return False
        if slug.lower() in self.pending:
            return True
        return self.datastore.slug_exists(self.table, slug, exclude_id=self.exclude_id)

    def reserve(self, slug: str) -> None:
        self.pending.add(slug.lower())


class SlugGenerator:
    def __init__(self, placeholder: str = "post", reserved: Container[str] = RESERVED_SLUGS):
        self.placeholder = placeholder
        self.reserved = reserved

    def generate(self, candidate_text: Optional[str], existing: Container[str]) -> str:
        base = normalize(candidate_text)
        if base in self.reserved:
            base = f"{base}-post"
        if not base:
            base = self.placeholder
        slug = base
        attempt = 1
        while slug in existing:
            attempt += 1
            slug = f"{base}-{attempt}"
        return slug
