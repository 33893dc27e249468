from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List

import pytest

from quill.config import Settings
from quill.datastore import DataStore, User, new_uuid, utcnow_str
from quill.repository import PostRepository, build_repository


class RecordingNotifier:
    def __init__(self) -> None:
        self.pings: List[Dict[str, Any]] = []

    def ping(self, post: Dict[str, Any]) -> None:
        self.pings.append(dict(post))


@pytest.fixture()
def datastore(tmp_path) -> Iterator[DataStore]:
    store = DataStore(tmp_path / "data")
    yield store
    store.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def repository(datastore: DataStore, notifier: RecordingNotifier) -> PostRepository:
    settings = Settings(data_path=datastore.base_path, tag_workers=4)
    return build_repository(datastore, settings, notifier=notifier)


@pytest.fixture()
def author(datastore: DataStore) -> User:
    return datastore.create_user("Ada Author", "ada@example.com", role="author")


@pytest.fixture()
def other_author(datastore: DataStore) -> User:
    return datastore.create_user("Otto Other", "otto@example.com", role="author")


@pytest.fixture()
def editor(datastore: DataStore) -> User:
    return datastore.create_user("Eve Editor", "eve@example.com", role="editor")


@pytest.fixture()
def app(tmp_path, notifier: RecordingNotifier):
    from quill import create_app

    settings = Settings(data_path=tmp_path / "app-data", secret_key="test-secret")
    app = create_app(settings, notifier=notifier)
    app.config.update(TESTING=True)
    yield app
    app.extensions["datastore"].close()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login(client) -> Callable[[User], None]:
    def _login(user: User) -> None:
        with client.session_transaction() as sess:
            sess["_user_id"] = user.get_id()
            sess["_fresh"] = True

    return _login


@pytest.fixture()
def make_post(datastore: DataStore) -> Callable[..., int]:
    """Insert a bare post row, bypassing the repository."""

    def _make(title: str = "Bare post", slug: str = "", **values: Any) -> int:
        now = utcnow_str()
        record = {
            "uuid": new_uuid(),
            "title": title,
            "slug": slug or new_uuid(),
            "status": "draft",
            "page": False,
            "created_at": now,
            "updated_at": now,
        }
        record.update(values)
        return datastore.insert_post(record)

    return _make
