from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .config import Settings
from .datastore import WRITABLE_POST_COLUMNS, DataStore, new_uuid, utcnow_str
from .errors import NotFoundError, RepositoryError, ValidationError
from .hooks import LifecycleHooks, SaveContext, publish_notification, tag_sync
from .notify import PingNotifier
from .options import (
    AddOptions,
    DestroyOptions,
    EditOptions,
    FindAllOptions,
    FindOneOptions,
    FindPageOptions,
    as_bool,
)
from .pagination import PaginationEngine
from .permissions import AccessContext, PermissionGate, PostOrId
from .rendering import Renderer, markdown_to_html
from .slugs import SlugGenerator, SlugScope
from .tags import TagReconciler, dedupe_tag_names


PERMITTED_ATTRIBUTES = frozenset({"title", "slug", "markdown", "status", "page", "author", "author_id", "tags"})
IMPORT_ATTRIBUTES = frozenset({"uuid", "created_at", "updated_at", "published_at"})
# Relation name -> column holding the user id.
USER_RELATIONS = {
    "author": "author_id",
    "created_by": "created_by",
    "updated_by": "updated_by",
    "published_by": "published_by",
}

logger = logging.getLogger(__name__)


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _without_nulls(attrs: Mapping[str, Any]) -> Dict[str, Any]:
    # A null markdown clears the body; any other null keeps the stored value.
    return {key: value for key, value in attrs.items() if value is not None or key == "markdown"}


@dataclass
class RepositoryConfig:
    """Entity-specific policies plugged into the generic post repository."""

    slug_policy: SlugGenerator
    lifecycle: LifecycleHooks
    pagination: PaginationEngine


class PostRepository:
    def __init__(self, datastore: DataStore, config: RepositoryConfig):
        self.datastore = datastore
        self.config = config
        self.permissions = PermissionGate(self._resolve_for_permissions)

    # Reads ------------------------------------------------------------

    def find_one(self, filters: Mapping[str, Any], /, **options: Any) -> Optional[Dict[str, Any]]:
        """Return one post matching ``id``, ``slug`` or ``uuid``, or None.

        ``status`` defaults to published; ``all`` matches any status.
        """
        opts = FindOneOptions.from_mapping(options)
        criteria = dict(filters or {})
        status = criteria.get("status", "published")
        post_id = None
        if criteria.get("id") is not None:
            post_id = _coerce_id(criteria["id"])
            if post_id is None:
                return None
        post = self.datastore.find_post(
            post_id=post_id,
            slug=criteria.get("slug"),
            post_uuid=criteria.get("uuid"),
            status=None if status == "all" else status,
        )
        if post is None:
            return None
        return self._hydrate([post], opts.include)[0]

    def find_all(self, /, **options: Any) -> List[Dict[str, Any]]:
        opts = FindAllOptions.from_mapping(options)
        return self._hydrate(self.datastore.list_posts(), opts.include)

    def find_page(self, /, **options: Any) -> Dict[str, Any]:
        opts = FindPageOptions.from_mapping(options)
        post_filter = PaginationEngine.build_filter(opts.status, opts.static_pages)
        try:
            result = self.config.pagination.find_page(post_filter, opts.page, opts.limit, opts.tag)
        except RepositoryError:
            logger.exception("Listing posts failed (page=%s, limit=%s)", opts.page, opts.limit)
            raise
        meta: Dict[str, Any] = {"pagination": result.meta.to_dict()}
        filters = result.filters()
        if filters is not None:
            meta["filters"] = filters
        return {"posts": self._hydrate(result.items, opts.include), "meta": meta}

    # Writes -----------------------------------------------------------

    def add(self, data: Mapping[str, Any], /, **options: Any) -> Dict[str, Any]:
        opts = AddOptions.from_mapping(options)
        attrs = self.filter_data(data, importing=opts.importing)
        ctx = SaveContext(
            user=opts.user,
            importing=opts.importing,
            tags=dedupe_tag_names(attrs.pop("tags", None)),
            attached=[],
        )
        now = utcnow_str()
        record: Dict[str, Any] = {
            "uuid": new_uuid(),
            "markdown": None,
            "status": "draft",
            "page": False,
            "author_id": opts.user,
            "created_at": now,
            "created_by": opts.user,
            "updated_at": now,
            "updated_by": opts.user,
        }
        record.update(_without_nulls(attrs))

        prepared = self.config.lifecycle.before_save(record, ctx)
        prepared["slug"] = self._resolve_slug(prepared, ctx)
        post_id = self.datastore.insert_post(prepared)
        logger.info("Created post %s (%s)", post_id, prepared["slug"])

        self.config.lifecycle.after_save({**prepared, "id": post_id}, ctx)
        return self._reload(post_id)

    def edit(self, post_id: Union[int, str], data: Mapping[str, Any], /, **options: Any) -> Dict[str, Any]:
        opts = EditOptions.from_mapping(options)
        key = _coerce_id(post_id)
        previous = self.datastore.find_post(post_id=key) if key is not None else None
        if previous is None:
            raise NotFoundError("Post not found", id=post_id)
        post_id = previous["id"]

        attrs = self.filter_data(data)
        attached = self.datastore.tags_for_posts([post_id]).get(post_id, [])
        if "tags" in attrs:
            tags = dedupe_tag_names(attrs.pop("tags"))
        else:
            tags = [tag["name"] for tag in attached]
        ctx = SaveContext(user=opts.user, previous=previous, tags=tags, attached=attached)

        prepared = self.config.lifecycle.before_save({**previous, **_without_nulls(attrs)}, ctx)
        prepared["slug"] = self._resolve_slug(prepared, ctx)
        prepared["updated_at"] = utcnow_str()
        prepared["updated_by"] = opts.user
        changes = {
            column: value
            for column, value in prepared.items()
            if column in WRITABLE_POST_COLUMNS and previous.get(column) != value
        }
        self.datastore.update_post(post_id, changes)
        logger.info("Updated post %s (%s)", post_id, ", ".join(sorted(changes)))

        self.config.lifecycle.after_save({**prepared, "id": post_id}, ctx)
        found = self._reload(post_id)
        found["_updated_attributes"] = {column: previous.get(column) for column in changes}
        return found

    def destroy(self, post_id: Union[int, str], /, **options: Any) -> None:
        opts = DestroyOptions.from_mapping(options)
        key = _coerce_id(post_id)
        post = self.datastore.find_post(post_id=key) if key is not None else None
        if post is None:
            raise NotFoundError("Post not found", id=post_id)
        # Links go first; the post row stays if this raises.
        removed = self.datastore.detach_tags(post["id"])
        self.datastore.delete_post(post["id"])
        logger.info("Deleted post %s and %d tag links (user %s)", post["id"], removed, opts.user)

    def authorize(
        self,
        post_or_id: PostOrId,
        context: Union[AccessContext, Mapping[str, Any], None],
        has_role_permission: bool,
        has_app_permission: bool,
    ) -> bool:
        return self.permissions.authorize(post_or_id, context, has_role_permission, has_app_permission)

    # Helpers ----------------------------------------------------------

    @staticmethod
    def filter_data(data: Mapping[str, Any], *, importing: bool = False) -> Dict[str, Any]:
        """Keep the payload keys a post may be written with."""
        allowed = PERMITTED_ATTRIBUTES | IMPORT_ATTRIBUTES if importing else PERMITTED_ATTRIBUTES
        attrs = {key: value for key, value in (data or {}).items() if key in allowed}
        author = attrs.pop("author", None)
        if "author_id" not in attrs and author is not None:
            attrs["author_id"] = author.get("id") if isinstance(author, Mapping) else author
        if attrs.get("author_id") is not None:
            author_id = _coerce_id(attrs["author_id"])
            if author_id is None:
                raise ValidationError("author must be a user id", field="author")
            attrs["author_id"] = author_id
        if "page" in attrs:
            attrs["page"] = as_bool(attrs["page"])
        if "tags" in attrs and attrs["tags"] is None:
            attrs["tags"] = []
        return attrs

    def _resolve_slug(self, prepared: Dict[str, Any], ctx: SaveContext) -> str:
        slug = prepared.get("slug")
        if not ctx.is_new and slug and not ctx.has_changed(prepared, "slug"):
            return slug
        exclude_id = ctx.previous["id"] if ctx.previous else None
        scope = SlugScope(self.datastore, "posts", exclude_id=exclude_id)
        return self.config.slug_policy.generate(slug or prepared["title"], scope)

    def _resolve_for_permissions(self, post_id: Union[int, str]) -> Optional[Dict[str, Any]]:
        return self.find_one({"id": post_id, "status": "all"})

    def _reload(self, post_id: int) -> Dict[str, Any]:
        found = self.find_one({"id": post_id, "status": "all"})
        if found is None:
            raise NotFoundError("Post disappeared after save", id=post_id)
        return found

    def _hydrate(self, posts: Sequence[Dict[str, Any]], include: Iterable[str]) -> List[Dict[str, Any]]:
        include = tuple(include)
        post_ids = [post["id"] for post in posts]
        tags_map = self.datastore.tags_for_posts(post_ids) if "tags" in include else {}
        user_columns = [USER_RELATIONS[name] for name in include if name in USER_RELATIONS]
        users: Dict[int, Dict[str, Any]] = {}
        if user_columns:
            users = self.datastore.users_by_ids(post[column] for post in posts for column in user_columns)

        hydrated = []
        for post in posts:
            record = dict(post)
            record["author"] = record.pop("author_id")
            if "tags" in include:
                record["tags"] = tags_map.get(post["id"], [])
            for name in include:
                column = USER_RELATIONS.get(name)
                if column is not None:
                    record[name] = users.get(post[column])
            hydrated.append(record)
        return hydrated


def build_repository(
    datastore: DataStore,
    settings: Optional[Settings] = None,
    *,
    notifier: Optional[Any] = None,
    renderer: Optional[Renderer] = None,
) -> PostRepository:
    """Wire a post repository with the default policies.

    Post-commit callbacks run in order: publish ping, then tag sync.
    """
    settings = settings or Settings()
    reconciler = TagReconciler(
        datastore,
        SlugGenerator(placeholder="tag", reserved=frozenset()),
        max_workers=settings.tag_workers,
    )
    lifecycle = LifecycleHooks(renderer or markdown_to_html)
    lifecycle.register(publish_notification(notifier or PingNotifier.from_settings(settings)))
    lifecycle.register(tag_sync(reconciler))
    config = RepositoryConfig(
        slug_policy=SlugGenerator(placeholder="post"),
        lifecycle=lifecycle,
        pagination=PaginationEngine(datastore),
    )
    return PostRepository(datastore, config)
