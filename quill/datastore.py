from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock, local
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from flask_login import UserMixin

from .errors import ConflictError, NotFoundError, StorageError, ValidationError


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
POST_STATUSES = ("draft", "published")
USER_ROLES = {"admin", "editor", "author"}

POST_COLUMNS = (
    "id",
    "uuid",
    "title",
    "slug",
    "markdown",
    "html",
    "status",
    "page",
    "author_id",
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
    "published_at",
    "published_by",
)
WRITABLE_POST_COLUMNS = frozenset(POST_COLUMNS) - {"id"}
_SLUGGED_TABLES = {"posts", "tags"}


logger = logging.getLogger(__name__)


def utcnow_str() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def new_uuid() -> str:
    return str(uuid.uuid4())


def tag_key(name: str) -> str:
    """Identity of a tag name; SQLite NOCASE only folds ASCII."""
    return name.strip().casefold()


class SQLiteConnectionManager:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = local()

    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(
                self.db_path,
                detect_types=sqlite3.PARSE_DECLTYPES,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.connection = conn
        return conn

    def close_connection(self) -> None:
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None


@dataclass
class User(UserMixin):
    id: int
    name: str
    email: str
    role: str = "author"

    def get_id(self) -> str:  # type: ignore[override]
        return str(self.id)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def can_edit_any_post(self) -> bool:
        return self.is_admin or self.role == "editor"


@dataclass
class PostFilter:
    """Listing predicate. ``None`` on a field removes that condition."""

    status: Optional[str] = "published"
    page: Optional[bool] = False
    tag_id: Optional[int] = None


class DataStore:
    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.db_path = self.base_path / "quill.sqlite3"
        self._connection_manager = SQLiteConnectionManager(self.db_path)
        self._setup_lock = RLock()
        self._setup_complete = False
        self._setup_database()

    def _conn(self) -> sqlite3.Connection:
        return self._connection_manager.get_connection()

    def close(self) -> None:
        self._connection_manager.close_connection()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn()
        except sqlite3.IntegrityError as exc:
            logger.error("Constraint violated during %s: %s", operation, exc)
            raise ConflictError(f"{operation} violated a storage constraint", operation=operation) from exc
        except sqlite3.Error as exc:
            logger.error("Storage failure during %s: %s", operation, exc)
            raise StorageError(f"{operation} failed", operation=operation) from exc

    def _setup_database(self) -> None:
        if self._setup_complete:
            return
        with self._setup_lock:
            if self._setup_complete:
                return
            with self._guard("set up schema") as conn:
                self._ensure_schema(conn)
            self._setup_complete = True

    @staticmethod
    def _ensure_schema(conn: sqlite3.Connection) -> None:
        with conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    role TEXT NOT NULL DEFAULT 'author',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    uuid TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    markdown TEXT,
                    html TEXT,
                    status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'published')),
                    page INTEGER NOT NULL DEFAULT 0,
                    author_id INTEGER,
                    created_at TEXT NOT NULL,
                    created_by INTEGER,
                    updated_at TEXT NOT NULL,
                    updated_by INTEGER,
                    published_at TEXT,
                    published_by INTEGER
                );

                CREATE INDEX IF NOT EXISTS idx_posts_listing ON posts(status, published_at, updated_at);
                CREATE INDEX IF NOT EXISTS idx_posts_author ON posts(author_id);

                CREATE TABLE IF NOT EXISTS tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    uuid TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    name_key TEXT NOT NULL UNIQUE,
                    slug TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    created_at TEXT NOT NULL,
                    created_by INTEGER
                );

                CREATE TABLE IF NOT EXISTS posts_tags (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    post_id INTEGER NOT NULL,
                    tag_id INTEGER NOT NULL,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (post_id, tag_id),
                    FOREIGN KEY(post_id) REFERENCES posts(id),
                    FOREIGN KEY(tag_id) REFERENCES tags(id)
                );

                CREATE INDEX IF NOT EXISTS idx_posts_tags_tag ON posts_tags(tag_id);
                """
            )

    # Users ------------------------------------------------------------

    def create_user(self, name: str, email: str, role: str = "author") -> User:
        name = (name or "").strip()
        email = (email or "").strip()
        if not name or not email:
            raise ValidationError("User name and email are required")
        if role not in USER_ROLES:
            raise ValidationError(f"Unknown role: {role}", role=role)
        with self._guard("create user") as conn:
            with conn:
                cursor = conn.execute(
                    "INSERT INTO users (name, email, role, created_at) VALUES (?, ?, ?, ?)",
                    (name, email, role, utcnow_str()),
                )
        return User(id=int(cursor.lastrowid), name=name, email=email, role=role)

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self.users_by_ids([user_id]).get(user_id)

    def load_user(self, user_id: str) -> Optional[User]:
        try:
            key = int(user_id)
        except (TypeError, ValueError):
            return None
        record = self.get_user(key)
        if not record:
            return None
        return User(id=record["id"], name=record["name"], email=record["email"], role=record["role"])

    def users_by_ids(self, user_ids: Iterable[Optional[int]]) -> Dict[int, Dict[str, Any]]:
        ids = sorted({user_id for user_id in user_ids if user_id is not None})
        if not ids:
            return {}
        placeholders = ",".join(["?"] * len(ids))
        with self._guard("load users") as conn:
            rows = conn.execute(
                f"SELECT id, name, email, role FROM users WHERE id IN ({placeholders})",
                ids,
            ).fetchall()
        return {row["id"]: dict(row) for row in rows}

    # Posts ------------------------------------------------------------

    def insert_post(self, values: Dict[str, Any]) -> int:
        columns = [column for column in POST_COLUMNS if column in values and column in WRITABLE_POST_COLUMNS]
        placeholders = ",".join(["?"] * len(columns))
        with self._guard("insert post") as conn:
            with conn:
                cursor = conn.execute(
                    f"INSERT INTO posts ({', '.join(columns)}) VALUES ({placeholders})",
                    [self._to_column(column, values[column]) for column in columns],
                )
        return int(cursor.lastrowid)

    def update_post(self, post_id: int, values: Dict[str, Any]) -> None:
        columns = [column for column in POST_COLUMNS if column in values and column in WRITABLE_POST_COLUMNS]
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [self._to_column(column, values[column]) for column in columns]
        params.append(post_id)
        with self._guard("update post") as conn:
            with conn:
                result = conn.execute(f"UPDATE posts SET {assignments} WHERE id = ?", params)
        if result.rowcount == 0:
            raise NotFoundError("Post not found", id=post_id)

    def delete_post(self, post_id: int) -> None:
        with self._guard("delete post") as conn:
            with conn:
                result = conn.execute("DELETE FROM posts WHERE id = ?", (post_id,))
        if result.rowcount == 0:
            raise NotFoundError("Post not found", id=post_id)

    def find_post(
        self,
        *,
        post_id: Optional[int] = None,
        slug: Optional[str] = None,
        post_uuid: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if post_id is not None:
            clauses.append("id = ?")
            params.append(post_id)
        if slug is not None:
            clauses.append("slug = ?")
            params.append(slug)
        if post_uuid is not None:
            clauses.append("uuid = ?")
            params.append(post_uuid)
        if not clauses:
            raise ValidationError("A post lookup needs an id, slug or uuid")
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        with self._guard("find post") as conn:
            row = conn.execute(
                f"SELECT * FROM posts WHERE {' AND '.join(clauses)}",
                params,
            ).fetchone()
        if not row:
            return None
        return self._post_from_row(row)

    def list_posts(self) -> List[Dict[str, Any]]:
        with self._guard("list posts") as conn:
            rows = conn.execute("SELECT * FROM posts ORDER BY created_at DESC, id DESC").fetchall()
        return [self._post_from_row(row) for row in rows]

    def list_posts_page(self, post_filter: PostFilter, *, limit: int, offset: int) -> List[Dict[str, Any]]:
        source, params = self._post_filter_sql(post_filter)
        with self._guard("list posts page") as conn:
            rows = conn.execute(
                f"""
                SELECT p.*
                {source}
                ORDER BY p.status ASC, p.published_at DESC, p.updated_at DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            ).fetchall()
        return [self._post_from_row(row) for row in rows]

    def count_posts(self, post_filter: PostFilter) -> int:
        source, params = self._post_filter_sql(post_filter)
        with self._guard("count posts") as conn:
            row = conn.execute(f"SELECT COUNT(p.id) AS aggregate {source}", params).fetchone()
        return int(row["aggregate"] if row else 0)

    def slug_exists(self, table: str, slug: str, *, exclude_id: Optional[int] = None) -> bool:
        if table not in _SLUGGED_TABLES:
            raise ValueError(f"Table {table!r} has no slug column")
        query = f"SELECT 1 FROM {table} WHERE slug = ?"
        params: List[Any] = [slug]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        with self._guard("check slug") as conn:
            row = conn.execute(query, params).fetchone()
        return row is not None

    # Tags -------------------------------------------------------------

    def find_tags_by_names(self, names: Sequence[str]) -> List[Dict[str, Any]]:
        if not names:
            return []
        placeholders = ",".join(["?"] * len(names))
        with self._guard("find tags") as conn:
            rows = conn.execute(
                f"SELECT id, uuid, name, slug FROM tags WHERE name_key IN ({placeholders})",
                [tag_key(name) for name in names],
            ).fetchall()
        return [dict(row) for row in rows]

    def get_tag(self, *, tag_id: Optional[int] = None, slug: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if tag_id is None and slug is None:
            raise ValidationError("A tag lookup needs an id or slug")
        if tag_id is not None:
            query, param = "SELECT id, uuid, name, slug FROM tags WHERE id = ?", tag_id
        else:
            query, param = "SELECT id, uuid, name, slug FROM tags WHERE slug = ?", slug
        with self._guard("find tag") as conn:
            row = conn.execute(query, (param,)).fetchone()
        return dict(row) if row else None

    def insert_tag(self, name: str, slug: str, *, user: Optional[int] = None) -> Dict[str, Any]:
        tag_uuid = new_uuid()
        with self._guard("insert tag") as conn:
            with conn:
                cursor = conn.execute(
                    "INSERT INTO tags (uuid, name, name_key, slug, created_at, created_by) VALUES (?, ?, ?, ?, ?, ?)",
                    (tag_uuid, name, tag_key(name), slug, utcnow_str(), user),
                )
        return {"id": int(cursor.lastrowid), "uuid": tag_uuid, "name": name, "slug": slug}

    def attach_tag(self, post_id: int, tag_id: int, sort_order: int) -> None:
        with self._guard("attach tag") as conn:
            with conn:
                conn.execute(
                    "INSERT INTO posts_tags (post_id, tag_id, sort_order) VALUES (?, ?, ?)",
                    (post_id, tag_id, sort_order),
                )

    def detach_tags(self, post_id: int, tag_ids: Optional[Sequence[int]] = None) -> int:
        """Remove links from a post; every link when ``tag_ids`` is None."""
        if tag_ids is not None and not tag_ids:
            return 0
        query = "DELETE FROM posts_tags WHERE post_id = ?"
        params: List[Any] = [post_id]
        if tag_ids is not None:
            placeholders = ",".join(["?"] * len(tag_ids))
            query += f" AND tag_id IN ({placeholders})"
            params.extend(tag_ids)
        with self._guard("detach tags") as conn:
            with conn:
                result = conn.execute(query, params)
        return result.rowcount

    def tags_for_posts(self, post_ids: Sequence[int]) -> Dict[int, List[Dict[str, Any]]]:
        if not post_ids:
            return {}
        placeholders = ",".join(["?"] * len(post_ids))
        with self._guard("load post tags") as conn:
            rows = conn.execute(
                f"""
                SELECT pt.post_id, t.id, t.uuid, t.name, t.slug
                FROM posts_tags AS pt
                JOIN tags AS t ON t.id = pt.tag_id
                WHERE pt.post_id IN ({placeholders})
                ORDER BY pt.post_id, pt.sort_order, pt.id
                """,
                list(post_ids),
            ).fetchall()
        result: Dict[int, List[Dict[str, Any]]] = {post_id: [] for post_id in post_ids}
        for row in rows:
            result.setdefault(row["post_id"], []).append(
                {
                    "id": row["id"],
                    "uuid": row["uuid"],
                    "name": row["name"],
                    "slug": row["slug"],
                }
            )
        return result

    # Internal helpers -------------------------------------------------

    @staticmethod
    def _post_filter_sql(post_filter: PostFilter) -> Tuple[str, List[Any]]:
        # Shared by the page fetch and the count so both see one predicate.
        joins = ""
        clauses: List[str] = []
        params: List[Any] = []
        if post_filter.tag_id is not None:
            joins = " JOIN posts_tags AS pt ON pt.post_id = p.id"
            clauses.append("pt.tag_id = ?")
            params.append(post_filter.tag_id)
        if post_filter.status is not None:
            clauses.append("p.status = ?")
            params.append(post_filter.status)
        if post_filter.page is not None:
            clauses.append("p.page = ?")
            params.append(int(post_filter.page))
        where = ""
        if clauses:
            where = " WHERE " + " AND ".join(clauses)
        return f"FROM posts AS p{joins}{where}", params

    @staticmethod
    def _to_column(column: str, value: Any) -> Any:
        if column == "page":
            return int(bool(value))
        return value

    @staticmethod
    def _post_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        record = {column: row[column] for column in POST_COLUMNS}
        record["page"] = bool(record["page"])
        return record
