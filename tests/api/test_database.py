#!/usr/bin/env python3
"""Tests for the SQLite helpers."""
import sqlite3

import pytest

from src.entsync.api.database import (
    check_database_health,
    connect,
    database_transaction,
    fetch_all,
    fetch_one,
)
from src.entsync.api.exceptions import DatabaseError, IntegrityError, TransactionError


@pytest.fixture
def conn():
    conn = connect(":memory:")
    conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL UNIQUE)")
    conn.commit()
    yield conn
    conn.close()


class TestConnect:
    """Tests for connect()."""

    def test_enables_foreign_keys(self, conn):
        assert conn.execute("PRAGMA foreign_keys").fetchone() == (1,)

    def test_unopenable_database(self, tmp_path):
        with pytest.raises(DatabaseError):
            connect(str(tmp_path / "missing" / "ledger.db"))


class TestDatabaseTransaction:
    """Tests for database_transaction()."""

    def test_commits_on_success(self, conn):
        with database_transaction(conn) as cur:
            cur.execute("INSERT INTO users (email) VALUES (?)", ("a@example.com",))

        assert fetch_one(conn, "SELECT COUNT(*) AS n FROM users")["n"] == 1

    def test_rolls_back_on_exception(self, conn):
        with pytest.raises(RuntimeError):
            with database_transaction(conn) as cur:
                cur.execute("INSERT INTO users (email) VALUES (?)", ("a@example.com",))
                raise RuntimeError("abort")

        assert fetch_all(conn, "SELECT * FROM users") == []

    def test_unique_violation_becomes_integrity_error(self, conn):
        with database_transaction(conn) as cur:
            cur.execute("INSERT INTO users (email) VALUES (?)", ("a@example.com",))

        with pytest.raises(IntegrityError) as exc_info:
            with database_transaction(conn) as cur:
                cur.execute("INSERT INTO users (email) VALUES (?)", ("a@example.com",))
        assert exc_info.value.details["constraint"] == "unique"

    def test_not_null_violation(self, conn):
        with pytest.raises(IntegrityError) as exc_info:
            with database_transaction(conn) as cur:
                cur.execute("INSERT INTO users (email) VALUES (NULL)")
        assert exc_info.value.details["constraint"] == "not_null"

    def test_no_connection(self):
        with pytest.raises(TransactionError):
            with database_transaction(None):
                pass


class TestFetch:
    """Tests for fetch_all() and fetch_one()."""

    def test_rows_are_dicts(self, conn):
        conn.executemany("INSERT INTO users (email) VALUES (?)", [("a@x",), ("b@x",)])

        rows = fetch_all(conn, "SELECT id, email FROM users ORDER BY id")

        assert rows == [{"id": 1, "email": "a@x"}, {"id": 2, "email": "b@x"}]

    def test_fetch_one_without_rows(self, conn):
        assert fetch_one(conn, "SELECT * FROM users WHERE id = ?", (99,)) is None

    def test_bad_sql(self, conn):
        with pytest.raises(DatabaseError):
            fetch_all(conn, "SELECT * FROM nowhere")


class TestHealth:
    """Tests for check_database_health()."""

    def test_healthy(self, conn):
        assert check_database_health(conn) == {"healthy": True}

    def test_closed_connection(self):
        closed = sqlite3.connect(":memory:")
        closed.close()

        health = check_database_health(closed)

        assert health["healthy"] is False
        assert "error" in health

    def test_no_connection(self):
        assert check_database_health(None)["healthy"] is False
