from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .datastore import DataStore, tag_key
from .errors import TagReconcileError, ValidationError
from .slugs import SlugGenerator, SlugScope


TagInput = Union[str, Mapping[str, Any]]

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    post_id: int
    detached: List[int] = field(default_factory=list)
    created: List[Dict[str, Any]] = field(default_factory=list)
    attached: List[Dict[str, Any]] = field(default_factory=list)


def tag_name(item: TagInput) -> str:
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, Mapping):
        return str(item.get("name") or "").strip()
    raise ValidationError(f"Unsupported tag value: {item!r}")


def dedupe_tag_names(tags: Optional[Iterable[TagInput]]) -> List[str]:
    """Case-insensitive dedupe; the first spelling wins and order is kept."""
    names: List[str] = []
    seen = set()
    for item in tags or []:
        name = tag_name(item)
        if not name:
            continue
        key = tag_key(name)
        if key in seen:
            continue
        seen.add(key)
        names.append(name)
    return names


class TagReconciler:
    """Bring a post's attached tags in line with a desired list.

    Every pass detaches all current links and re-attaches in desired order,
    creating missing tags on the way. Creates and attaches run on a thread
    pool; a failure in any of them is reported after all have finished and
    does not undo the ones that succeeded.
    """

    def __init__(
        self,
        datastore: DataStore,
        slug_generator: Optional[SlugGenerator] = None,
        *,
        max_workers: int = 4,
    ):
        self.datastore = datastore
        self.slug_generator = slug_generator or SlugGenerator(placeholder="tag", reserved=frozenset())
        self.max_workers = max(1, max_workers)

    def reconcile(
        self,
        post_id: int,
        desired_tags: Optional[Iterable[TagInput]],
        currently_attached: Optional[Sequence[Mapping[str, Any]]] = None,
        *,
        user: Optional[int] = None,
    ) -> ReconcileResult:
        names = dedupe_tag_names(desired_tags)
        result = ReconcileResult(post_id=post_id)

        if currently_attached is None:
            currently_attached = self.datastore.tags_for_posts([post_id]).get(post_id, [])
        self.datastore.detach_tags(post_id)
        result.detached = [tag["id"] for tag in currently_attached]

        if not names:
            logger.debug("Post %s now has no tags", post_id)
            return result

        existing = {
            tag_key(tag["name"]): tag
            for tag in self.datastore.find_tags_by_names(names)
        }
        scope = SlugScope(self.datastore, "tags")
        new_slugs: Dict[str, str] = {}
        for name in names:
            if tag_key(name) in existing:
                continue
            slug = self.slug_generator.generate(name, scope)
            scope.reserve(slug)
            new_slugs[name] = slug

        errors: List[BaseException] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"tags-{post_id}") as executor:
            futures: List[Future] = []
            for position, name in enumerate(names):
                tag = existing.get(tag_key(name))
                if tag is None:
                    futures.append(
                        executor.submit(self._create_and_attach, post_id, name, new_slugs[name], position, user, result)
                    )
                else:
                    futures.append(executor.submit(self._attach, post_id, tag, position, result))
            for future in futures:
                exc = future.exception()
                if exc is not None:
                    errors.append(exc)

        result.attached.sort(key=lambda tag: tag["sort_order"])
        if errors:
            logger.error("Tag sync for post %s failed: %d of %d operations", post_id, len(errors), len(names))
            raise TagReconcileError(f"Could not sync tags for post {post_id}", errors, result)
        return result

    def _create_and_attach(
        self,
        post_id: int,
        name: str,
        slug: str,
        position: int,
        user: Optional[int],
        result: ReconcileResult,
    ) -> None:
        tag = self.datastore.insert_tag(name, slug, user=user)
        result.created.append(tag)
        self._attach(post_id, tag, position, result)

    def _attach(self, post_id: int, tag: Mapping[str, Any], position: int, result: ReconcileResult) -> None:
        self.datastore.attach_tag(post_id, tag["id"], position)
        result.attached.append({**tag, "sort_order": position})
