"""Tests for the SQLite-backed provider and definition."""

import os

import pytest

from src.entsync.api.database import connect, fetch_one
from src.entsync.api.exceptions import (
    DatabaseError,
    FilterPolicyViolation,
    HeartbeatCheckFailed,
    SyncEntityNotFound,
    UnexpectedValueError,
)
from src.entsync.sync import DbSyncProvider, FilterPolicy, SyncEntityProvider, SyncOperation
from src.entsync.sync.adapters.db_definition import quote_identifier
from tests.sync.blog_app import Comment, Post, User

SCHEMA = """
CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, username TEXT, email TEXT);
CREATE TABLE posts (
    id INTEGER PRIMARY KEY,
    user_id INTEGER REFERENCES users (id),
    title TEXT,
    body TEXT,
    created_at TEXT
);
INSERT INTO users VALUES
    (1, 'Leanne Graham', 'Bret', 'sincere@april.biz'),
    (2, 'Ervin Howell', 'Antonette', 'shanna@melissa.tv');
INSERT INTO posts VALUES
    (1, 1, 'sunt aut facere', 'quia et suscipit', '2024-01-15T10:30:00Z'),
    (2, 1, 'qui est esse', 'est rerum tempore', '2024-01-16T08:00:00Z'),
    (3, 2, 'ea molestias quasi', 'et iusto sed quo iure', '2024-02-01T12:00:00Z');
"""


class BlogDb(DbSyncProvider):
    entity_types = (User, Post)

    def build_definition(self, entity_type):
        return self.builder_for(
            entity_type,
            operations=list(SyncOperation),
            table="users" if entity_type is User else "posts",
        )


class PostsOnlyDb(BlogDb):
    entity_types = (Post,)


@pytest.fixture
def database(tmp_path):
    path = str(tmp_path / "blog.db")
    conn = connect(path)
    conn.executescript(SCHEMA)
    conn.close()
    return path


@pytest.fixture
def db(store, database):
    provider = BlogDb(store, database)
    yield provider
    provider.close()


def row(database, table, row_id):
    conn = connect(database)
    try:
        return fetch_one(conn, f"SELECT * FROM {table} WHERE id = ?", (row_id,))
    finally:
        conn.close()


class TestProvider:
    """Connection, columns and heartbeat."""

    def test_backend_identifier(self, store, database):
        provider = BlogDb(store, database)
        assert provider.get_backend_identifier() == [os.path.abspath(database).lower()]
        assert BlogDb(store, ":memory:").get_backend_identifier() == [":memory:"]

    def test_table_columns(self, db):
        assert db.get_table_columns("posts") == ["id", "user_id", "title", "body", "created_at"]
        with pytest.raises(DatabaseError):
            db.get_table_columns("comments")

    def test_heartbeat(self, store, db, tmp_path):
        store.check_heartbeats(db)

        broken = BlogDb(store, str(tmp_path / "missing" / "blog.db"))
        with pytest.raises(HeartbeatCheckFailed):
            store.check_heartbeats(broken)

    def test_first(self, db):
        assert db.first([{"id": 1}], User, 1) == {"id": 1}
        with pytest.raises(SyncEntityNotFound):
            db.first([], User, 1)

    def test_quote_identifier(self):
        assert quote_identifier("user_id") == '"user_id"'
        with pytest.raises(UnexpectedValueError):
            quote_identifier("posts; DROP TABLE users")


class TestReads:
    """READ and READ_LIST."""

    def test_read_resolves_references(self, db):
        post = db.with_entity(Post).get(1)

        assert post.title == "sunt aut facere"
        assert post.created_at.year == 2024
        assert post.user.name == "Leanne Graham"

    def test_read_missing(self, db):
        with pytest.raises(SyncEntityNotFound):
            db.with_entity(Post).get(99)

    @pytest.mark.parametrize("filters,expected", [
        ({}, [1, 2, 3]),
        ({"user": 1}, [1, 2]),
        ({"user_id": [1, 2]}, [1, 2, 3]),
        ({"title": "qui est esse"}, [2]),
    ])
    def test_read_list_filters(self, db, filters, expected):
        posts = db.with_entity(Post).do_not_resolve().do_not_hydrate().get_list_a(filters)
        assert [p.id for p in posts] == expected

    def test_unclaimed_filter(self, db):
        with pytest.raises(FilterPolicyViolation):
            db.with_entity(Post).get_list_a({"group": 3})

    def test_return_empty(self, db):
        definition = db.get_definition(Post).with_filter_policy(FilterPolicy.RETURN_EMPTY)
        assert SyncEntityProvider(Post, db, definition).get_list_a({"user": 1, "group": 3}) == []

    def test_hydration(self, store, db):
        post = db.with_entity(Post).get(1)
        store.resolve_deferred()

        assert [p.id for p in post.user.posts] == [1, 2]
        assert post.user.posts[0] is post
        # Comments are not serviced by this provider
        assert post.comments is None

    def test_unserviced_references_stay_ids(self, store, database):
        posts_only = PostsOnlyDb(store, database)
        post = posts_only.with_entity(Post).get(3)

        assert post.user == 2
        assert not posts_only.handles(User)
        assert not posts_only.handles(Comment)
        posts_only.close()


class TestWrites:
    """CREATE, UPDATE and DELETE."""

    def test_create(self, db, database):
        created = db.with_entity(Post).do_not_hydrate().create(Post(title="new", user=User(id=2)))

        assert created.id == 4
        assert created.user.name == "Ervin Howell"
        assert row(database, "posts", 4)["user_id"] == 2

    def test_create_list(self, db):
        created = db.with_entity(Post).do_not_hydrate().create_list_a([Post(title="a"), Post(title="b")])
        assert [p.id for p in created] == [4, 5]

    def test_update(self, db, database):
        updated = db.with_entity(Post).do_not_resolve().do_not_hydrate().update(
            Post(id=1, title="changed", user=User(id=2))
        )

        assert updated.title == "changed"
        assert row(database, "posts", 1)["user_id"] == 2

    def test_update_missing(self, db):
        with pytest.raises(SyncEntityNotFound):
            db.with_entity(Post).update(Post(id=99, title="x"))

    def test_delete_returns_deleted_entity(self, db, database):
        deleted = db.with_entity(Post).do_not_resolve().do_not_hydrate().delete(Post(id=3))

        assert deleted.title == "ea molestias quasi"
        assert row(database, "posts", 3) is None

    def test_delete_missing(self, db):
        with pytest.raises(SyncEntityNotFound):
            db.with_entity(Post).delete(Post(id=99))


class TestWriteFilterPolicy:
    """Unclaimed filters on CREATE, UPDATE and DELETE."""

    def test_create_throws(self, db, database):
        with pytest.raises(FilterPolicyViolation):
            db.with_entity(Post).create(Post(title="new"), {"group": 3})
        assert row(database, "posts", 4) is None

    def test_update_throws(self, db, database):
        with pytest.raises(FilterPolicyViolation):
            db.with_entity(Post).update(Post(id=1, title="changed"), {"group": 3})
        assert row(database, "posts", 1)["title"] == "sunt aut facere"

    def test_delete_throws(self, db, database):
        with pytest.raises(FilterPolicyViolation):
            db.with_entity(Post).delete(Post(id=3), {"group": 3})
        assert row(database, "posts", 3) is not None

    def test_create_list_throws(self, db, database):
        with pytest.raises(FilterPolicyViolation):
            db.with_entity(Post).create_list_a([Post(title="a")], {"group": 3})
        assert row(database, "posts", 4) is None

    def test_return_empty_skips_writes(self, db, database):
        definition = db.get_definition(Post).with_filter_policy(FilterPolicy.RETURN_EMPTY)
        posts = SyncEntityProvider(Post, db, definition)

        assert posts.create(Post(title="new"), {"group": 3}) is None
        assert posts.update(Post(id=1, title="changed"), {"group": 3}) is None
        assert posts.delete(Post(id=3), {"group": 3}) is None
        assert posts.create_list_a([Post(title="a")], {"group": 3}) == []

        assert row(database, "posts", 4) is None
        assert row(database, "posts", 1)["title"] == "sunt aut facere"
        assert row(database, "posts", 3) is not None
