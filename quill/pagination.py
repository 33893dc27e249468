from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Union

from .datastore import POST_STATUSES, DataStore, PostFilter


logger = logging.getLogger(__name__)


def status_predicate(status: Optional[str]) -> Optional[str]:
    """``all`` lifts the status condition; anything unknown means published."""
    if status == "all":
        return None
    return status if status in POST_STATUSES else "published"


def static_pages_predicate(value: Union[bool, str, None]) -> Optional[bool]:
    if value == "all":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1"}


def page_count(total: int, limit: int) -> int:
    return max(1, math.ceil(total / limit))


@dataclass
class PaginationMeta:
    page: int
    limit: int
    pages: int
    total: int
    next: Optional[int] = None
    prev: Optional[int] = None

    @classmethod
    def compute(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        pages = page_count(total, limit)
        meta = cls(page=page, limit=limit, pages=pages, total=total)
        if pages > 1:
            if page < pages:
                meta.next = page + 1
            if page > 1:
                meta.prev = page - 1
        return meta

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "pages": self.pages,
            "total": self.total,
            "next": self.next,
            "prev": self.prev,
        }


@dataclass
class PageResult:
    items: List[Dict[str, Any]]
    meta: PaginationMeta
    tag: Optional[Dict[str, Any]] = None
    tag_requested: bool = False

    def filters(self) -> Optional[Dict[str, Any]]:
        if not self.tag_requested:
            return None
        if self.tag is None:
            return {}
        return {"tags": [self.tag]}


class PaginationEngine:
    """Bounded page fetch plus a total count under the same predicate.

    The two reads are separate statements, so a concurrent writer can make
    ``pages`` disagree with ``items`` by whatever changed in between.
    """

    def __init__(self, datastore: DataStore):
        self.datastore = datastore

    @staticmethod
    def build_filter(status: Optional[str] = "published", static_pages: Union[bool, str, None] = False) -> PostFilter:
        return PostFilter(status=status_predicate(status), page=static_pages_predicate(static_pages))

    def find_page(
        self,
        post_filter: PostFilter,
        page: int = 1,
        limit: int = 15,
        tag_slug: Optional[str] = None,
    ) -> PageResult:
        tag = None
        if tag_slug:
            tag = self.datastore.get_tag(slug=tag_slug)
            if tag is None:
                logger.info("Tag %r not found; returning an empty page", tag_slug)
                return PageResult(items=[], meta=PaginationMeta.compute(page, limit, 0), tag_requested=True)
            post_filter = replace(post_filter, tag_id=tag["id"])

        offset = limit * (page - 1)
        items = self.datastore.list_posts_page(post_filter, limit=limit, offset=offset)
        total = self.datastore.count_posts(post_filter)
        return PageResult(
            items=items,
            meta=PaginationMeta.compute(page, limit, total),
            tag=tag,
            tag_requested=bool(tag_slug),
        )
