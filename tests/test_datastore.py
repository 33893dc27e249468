from __future__ import annotations

import sqlite3

import pytest

from quill.datastore import DataStore, tag_key
from quill.errors import ConflictError, StorageError


def test_tag_key_folds_unicode_case() -> None:
    assert tag_key(" Ärger ") == tag_key("ärger")
    assert tag_key("Straße") == tag_key("STRASSE")


def test_connection_failure_is_a_storage_error(datastore: DataStore, monkeypatch) -> None:
    def broken_connection():
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(datastore._connection_manager, "get_connection", broken_connection)

    with pytest.raises(StorageError):
        datastore.find_post(post_id=1)


def test_duplicate_tag_name_key_is_a_conflict(datastore: DataStore) -> None:
    datastore.insert_tag("Ärger", "aerger")

    with pytest.raises(ConflictError):
        datastore.insert_tag("ärger", "aerger-2")
