from __future__ import annotations

from typing import List

import pytest

from quill.datastore import DataStore
from quill.errors import ConflictError, TagReconcileError, ValidationError
from quill.tags import TagReconciler, dedupe_tag_names


def _attached_names(datastore: DataStore, post_id: int) -> List[str]:
    return [tag["name"] for tag in datastore.tags_for_posts([post_id])[post_id]]


def test_dedupe_is_case_insensitive_and_keeps_first_spelling() -> None:
    assert dedupe_tag_names(["Travel", "travel", " Food ", {"name": "TRAVEL"}, "", {"name": "food"}]) == [
        "Travel",
        "Food",
    ]
    assert dedupe_tag_names(None) == []


def test_dedupe_rejects_unsupported_values() -> None:
    with pytest.raises(ValidationError):
        dedupe_tag_names([42])


def test_reconcile_collapses_case_variants(datastore: DataStore, make_post) -> None:
    post_id = make_post()
    result = TagReconciler(datastore).reconcile(post_id, ["Travel", "travel"])

    assert _attached_names(datastore, post_id) == ["Travel"]
    assert [tag["name"] for tag in result.created] == ["Travel"]


def test_reconcile_is_idempotent(datastore: DataStore, make_post) -> None:
    post_id = make_post()
    reconciler = TagReconciler(datastore)
    desired = ["Zeta", "alpha", "Middle", "ALPHA"]

    reconciler.reconcile(post_id, desired)
    once = datastore.tags_for_posts([post_id])[post_id]
    second = reconciler.reconcile(post_id, desired)
    twice = datastore.tags_for_posts([post_id])[post_id]

    assert once == twice
    assert [tag["name"] for tag in twice] == ["Zeta", "alpha", "Middle"]
    assert second.created == []
    assert sorted(second.detached) == sorted(tag["id"] for tag in once)


def test_reconcile_reuses_existing_tag_spelling(datastore: DataStore, make_post) -> None:
    existing = datastore.insert_tag("News", "news")
    post_id = make_post()

    result = TagReconciler(datastore).reconcile(post_id, ["news", "Sport"])

    assert _attached_names(datastore, post_id) == ["News", "Sport"]
    assert [tag["name"] for tag in result.created] == ["Sport"]
    assert result.attached[0]["id"] == existing["id"]


def test_reconcile_to_empty_detaches_everything_but_keeps_tags(datastore: DataStore, make_post) -> None:
    post_id = make_post()
    reconciler = TagReconciler(datastore)
    reconciler.reconcile(post_id, ["One", "Two"])

    result = reconciler.reconcile(post_id, [])

    assert _attached_names(datastore, post_id) == []
    assert len(result.detached) == 2
    assert {tag["name"] for tag in datastore.find_tags_by_names(["One", "Two"])} == {"One", "Two"}


def test_new_tags_in_one_batch_get_distinct_slugs(datastore: DataStore, make_post) -> None:
    post_id = make_post()
    TagReconciler(datastore).reconcile(post_id, ["C++", "C#", "C"])

    tags = datastore.tags_for_posts([post_id])[post_id]
    assert [tag["name"] for tag in tags] == ["C++", "C#", "C"]
    assert [tag["slug"] for tag in tags] == ["c", "c-2", "c-3"]


def test_tags_are_shared_between_posts(datastore: DataStore, make_post) -> None:
    first, second = make_post(), make_post()
    reconciler = TagReconciler(datastore)
    reconciler.reconcile(first, ["Shared"])
    result = reconciler.reconcile(second, ["shared"])

    assert result.created == []
    assert datastore.tags_for_posts([first])[first][0]["id"] == datastore.tags_for_posts([second])[second][0]["id"]


def test_failed_attach_is_reported_without_undoing_the_rest(datastore: DataStore, make_post, monkeypatch) -> None:
    post_id = make_post()
    original_attach = datastore.attach_tag

    def flaky_attach(target_post: int, tag_id: int, sort_order: int) -> None:
        if sort_order == 1:
            raise ConflictError("link rejected")
        original_attach(target_post, tag_id, sort_order)

    monkeypatch.setattr(datastore, "attach_tag", flaky_attach)

    with pytest.raises(TagReconcileError) as excinfo:
        TagReconciler(datastore).reconcile(post_id, ["First", "Second", "Third"])

    error = excinfo.value
    assert len(error.errors) == 1
    assert isinstance(error.errors[0], ConflictError)
    assert [tag["name"] for tag in error.result.attached] == ["First", "Third"]
    assert _attached_names(datastore, post_id) == ["First", "Third"]


def test_non_ascii_case_variants_share_one_tag(datastore: DataStore, make_post) -> None:
    first, second = make_post(), make_post()
    reconciler = TagReconciler(datastore)

    reconciler.reconcile(first, ["Ärger"])
    result = reconciler.reconcile(second, ["ärger", "ÄRGER"])

    assert result.created == []
    assert _attached_names(datastore, second) == ["Ärger"]
    assert len(datastore.find_tags_by_names(["ärger"])) == 1


def test_tag_slugs_may_use_route_words(datastore: DataStore, make_post) -> None:
    post_id = make_post()
    TagReconciler(datastore).reconcile(post_id, ["Admin", "Tag"])

    assert [tag["slug"] for tag in datastore.tags_for_posts([post_id])[post_id]] == ["admin", "tag"]
