from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .datastore import POST_STATUSES, utcnow_str
from .errors import ValidationError
from .rendering import Renderer, markdown_to_html, render


TITLE_MAX_LENGTH = 150

logger = logging.getLogger(__name__)


@dataclass
class SaveContext:
    """Transient state of one save, threaded from pre-save to post-commit."""

    user: Optional[int] = None
    importing: bool = False
    previous: Optional[Dict[str, Any]] = None
    tags: List[str] = field(default_factory=list)
    attached: Optional[List[Dict[str, Any]]] = None

    @property
    def is_new(self) -> bool:
        return self.previous is None

    def has_changed(self, attrs: Dict[str, Any], key: str) -> bool:
        if self.previous is None:
            return key in attrs
        return key in attrs and attrs[key] != self.previous.get(key)


PostSaveCallback = Callable[[Dict[str, Any], SaveContext], None]


class LifecycleHooks:
    def __init__(
        self,
        renderer: Renderer = markdown_to_html,
        *,
        clock: Callable[[], str] = utcnow_str,
        callbacks: Optional[List[PostSaveCallback]] = None,
    ):
        self.renderer = renderer
        self.clock = clock
        self.callbacks: List[PostSaveCallback] = list(callbacks or [])

    def register(self, callback: PostSaveCallback) -> PostSaveCallback:
        self.callbacks.append(callback)
        return callback

    def before_save(self, attrs: Dict[str, Any], ctx: SaveContext) -> Dict[str, Any]:
        """Normalise a merged attribute set ahead of the write.

        ``attrs`` holds the full post as it will be stored. Returns a new
        dict; the argument is left untouched.
        """
        prepared = dict(attrs)

        title = prepared.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Post title is required", field="title")
        prepared["title"] = title.strip()
        if len(prepared["title"]) > TITLE_MAX_LENGTH:
            raise ValidationError(
                f"Post title may not exceed {TITLE_MAX_LENGTH} characters",
                field="title",
            )

        status = prepared.get("status") or "draft"
        if status not in POST_STATUSES:
            raise ValidationError(f"Invalid post status: {status}", field="status")
        prepared["status"] = status

        prepared["html"] = render(prepared.get("markdown"), self.renderer)

        entering_published = ctx.has_changed(prepared, "status") or not prepared.get("published_at")
        if entering_published and status == "published":
            if not prepared.get("published_at"):
                prepared["published_at"] = self.clock()
            prepared["published_by"] = ctx.user
        return prepared

    def after_save(self, post: Dict[str, Any], ctx: SaveContext) -> None:
        for callback in self.callbacks:
            callback(post, ctx)


def publish_notification(notifier: Any) -> PostSaveCallback:
    """Post-commit callback that pings update services for published posts."""

    def _notify(post: Dict[str, Any], ctx: SaveContext) -> None:
        if post.get("status") != "published" or ctx.importing:
            return
        try:
            notifier.ping(post)
        except Exception:
            logger.exception("Publish notification for post %s failed; the post was saved", post.get("id"))

    return _notify


def tag_sync(reconciler: Any) -> PostSaveCallback:
    def _sync(post: Dict[str, Any], ctx: SaveContext) -> None:
        reconciler.reconcile(post["id"], ctx.tags, ctx.attached, user=ctx.user)

    return _sync
