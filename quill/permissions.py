from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .errors import NotFoundError, PermissionDeniedError


PostOrId = Union[int, str, Mapping[str, Any]]
PostResolver = Callable[[Union[int, str]], Optional[Dict[str, Any]]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessContext:
    user: Optional[int] = None
    app: Optional[str] = None

    @classmethod
    def coerce(cls, context: Union["AccessContext", Mapping[str, Any], None]) -> "AccessContext":
        if isinstance(context, cls):
            return context
        context = context or {}
        user = context.get("user")
        return cls(user=int(user) if user is not None else None, app=context.get("app"))


def post_author_id(post: Mapping[str, Any]) -> Optional[int]:
    author = post.get("author", post.get("author_id"))
    if isinstance(author, Mapping):
        author = author.get("id")
    return int(author) if author is not None else None


class PermissionGate:
    def __init__(self, resolve_post: PostResolver):
        self.resolve_post = resolve_post

    def authorize(
        self,
        post_or_id: PostOrId,
        context: Union[AccessContext, Mapping[str, Any], None],
        has_role_permission: bool,
        has_app_permission: bool,
    ) -> bool:
        """Return True when the context may mutate the post, else raise.

        An id is loaded first (drafts included). A missing post raises
        NotFoundError rather than counting as a denial. Authors always hold
        role permission over their own posts.
        """
        access = AccessContext.coerce(context)
        if isinstance(post_or_id, (int, str)) and not isinstance(post_or_id, bool):
            post = self.resolve_post(post_or_id)
            if post is None:
                raise NotFoundError("Post not found", id=post_or_id)
            return self.authorize(post, access, has_role_permission, has_app_permission)

        if access.user is not None and access.user == post_author_id(post_or_id):
            has_role_permission = True

        if has_role_permission and has_app_permission:
            return True
        logger.info("Denied user %s access to post %s", access.user, post_or_id.get("id"))
        raise PermissionDeniedError("You do not have permission to change this post", id=post_or_id.get("id"))
