from __future__ import annotations

import pytest

from quill.errors import NotFoundError, PermissionDeniedError
from quill.permissions import AccessContext, PermissionGate, post_author_id
from quill.repository import PostRepository


def test_post_author_id_accepts_every_shape() -> None:
    assert post_author_id({"author": 3}) == 3
    assert post_author_id({"author": {"id": "4"}}) == 4
    assert post_author_id({"author_id": 5}) == 5
    assert post_author_id({}) is None


def test_context_coercion() -> None:
    assert AccessContext.coerce({"user": "2", "app": "importer"}) == AccessContext(user=2, app="importer")
    assert AccessContext.coerce(None) == AccessContext()


def test_author_may_edit_own_post_without_role_permission() -> None:
    gate = PermissionGate(lambda post_id: None)

    assert gate.authorize({"id": 1, "author": 9}, {"user": 9}, False, True) is True


def test_role_permission_alone_is_not_enough() -> None:
    gate = PermissionGate(lambda post_id: None)

    with pytest.raises(PermissionDeniedError):
        gate.authorize({"id": 1, "author": 9}, {"user": 9}, True, False)


def test_other_user_is_denied() -> None:
    gate = PermissionGate(lambda post_id: None)

    with pytest.raises(PermissionDeniedError):
        gate.authorize({"id": 1, "author": 9}, {"user": 8}, False, True)


def test_anonymous_context_needs_role_permission() -> None:
    gate = PermissionGate(lambda post_id: None)

    assert gate.authorize({"id": 1, "author": 9}, None, True, True) is True
    with pytest.raises(PermissionDeniedError):
        gate.authorize({"id": 1, "author": 9}, None, False, True)


def test_id_is_resolved_before_checking(repository: PostRepository, author, other_author, editor) -> None:
    draft = repository.add({"title": "Private draft"}, user=author.id)

    assert repository.authorize(draft["id"], {"user": author.id}, False, True) is True
    assert repository.authorize(str(draft["id"]), {"user": editor.id}, editor.can_edit_any_post, True) is True
    with pytest.raises(PermissionDeniedError):
        repository.authorize(draft["id"], {"user": other_author.id}, other_author.can_edit_any_post, True)


def test_unknown_id_is_not_found(repository: PostRepository) -> None:
    with pytest.raises(NotFoundError):
        repository.authorize(404, {"user": 1}, True, True)
