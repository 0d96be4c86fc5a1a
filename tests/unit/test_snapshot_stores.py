from __future__ import annotations

import sqlite3
from datetime import timedelta

from twitter_session.infrastructure.adapters.session.sqlite_store import SQLiteSnapshotStore
from twitter_session.infrastructure.auth.session_store import SessionStore
from tests.unit._fakes_auth import T0

COOKIES = [
    {"name": "ct0", "value": "csrf1", "domain": ".x.com", "path": "/", "secure": True, "expires": None},
    {"name": "auth_token", "value": "tok", "domain": ".x.com", "path": "/", "secure": True, "expires": None},
]


def test_sqlite_store_starts_empty(tmp_path):
    store = SQLiteSnapshotStore(tmp_path / "s.sqlite")
    assert store.load() == ([], None, False)
    store.close()


def test_sqlite_store_survives_reopen(tmp_path):
    path = tmp_path / "s.sqlite"
    exp = T0 + timedelta(hours=24)
    store = SQLiteSnapshotStore(path)
    store.save(COOKIES, exp)
    store.close()

    reopened = SQLiteSnapshotStore(path)
    cookies, expires_at, active = reopened.load()
    assert cookies == COOKIES
    assert expires_at == exp
    assert expires_at.tzinfo is not None
    assert active is True

    reopened.mark_inactive()
    assert reopened.load()[2] is False
    reopened.close()


def test_sqlite_store_discards_unreadable_cookies(tmp_path):
    path = tmp_path / "s.sqlite"
    SQLiteSnapshotStore(path).close()
    conn = sqlite3.connect(path)
    conn.execute("UPDATE session_snapshot SET cookies='not json', is_active=1 WHERE id=1")
    conn.commit()
    conn.close()

    store = SQLiteSnapshotStore(path)
    assert store.load() == ([], None, True)
    store.close()


def test_snapshot_restores_into_session(tmp_path):
    source = SessionStore(bearer_token="b")
    source.set_cookies(["ct0=csrf1; Domain=.x.com; Path=/"])
    store = SQLiteSnapshotStore(tmp_path / "s.sqlite")
    store.save(source.export_cookies(), T0)

    target = SessionStore(bearer_token="b")
    target.set_cookies(store.load()[0])
    assert target.csrf_token("https://x.com") == "csrf1"
    store.close()

