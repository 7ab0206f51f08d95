"""
tests/test_user_store.py -- Unit tests for UserStore (SQLAlchemy Core).

Covers:
  - insert assigns id, version 1 and lowercases email
  - get_by_* return None when absent
  - Duplicate email / username -> DuplicateKey naming the colliding column
  - update is a compare-and-swap: a stale version -> EditConflict
  - delete reports whether a row existed
  - A dead backend surfaces as StoreUnavailable, not a driver exception
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import DuplicateKey, EditConflict, StoreUnavailable
from auth.models import User


def test_insert_assigns_identity_and_version(stores):
    users, _ = stores
    user = users.insert(User(username="ada", email="Ada@Example.COM", hashed_password="x"))
    assert user.id
    assert user.version == 1
    assert user.email == "ada@example.com"
    assert user.activated is False

    loaded = users.get_by_email("ADA@example.com")
    assert loaded is not None
    assert loaded.id == user.id
    assert users.get_by_username("ada").id == user.id
    assert users.get_by_id(user.id).email == "ada@example.com"


def test_missing_user_returns_none(stores):
    users, _ = stores
    assert users.get_by_id("00000000-0000-0000-0000-000000000000") is None
    assert users.get_by_email("nobody@example.com") is None
    assert users.get_by_username("nobody") is None


def test_duplicate_email_reports_email(stores, make_user):
    users, _ = stores
    make_user(users, "grace")
    with pytest.raises(DuplicateKey) as exc_info:
        users.insert(User(username="other", email="grace@example.com"))
    assert exc_info.value.constraint == "email"


def test_duplicate_username_reports_username(stores, make_user):
    users, _ = stores
    make_user(users, "linus")
    with pytest.raises(DuplicateKey) as exc_info:
        users.insert(User(username="linus", email="someone@example.com"))
    assert exc_info.value.constraint == "username"


def test_update_bumps_version(stores, make_user):
    users, _ = stores
    user = make_user(users, activated=False)
    user.activated = True
    users.update(user)
    assert user.version == 2
    stored = users.get_by_id(user.id)
    assert stored.activated is True
    assert stored.version == 2


def test_stale_update_is_edit_conflict(stores, make_user):
    users, _ = stores
    user = make_user(users, activated=False)
    first = users.get_by_id(user.id)
    second = users.get_by_id(user.id)

    first.activated = True
    users.update(first)

    second.hashed_password = "changed"
    with pytest.raises(EditConflict):
        users.update(second)
    assert users.get_by_id(user.id).hashed_password != "changed"


def test_delete(stores, make_user):
    users, _ = stores
    user = make_user(users)
    assert users.delete(user.id) is True
    assert users.delete(user.id) is False
    assert users.get_by_id(user.id) is None


def test_ping(stores):
    users, _ = stores
    assert users.ping() is True


def test_unreachable_backend_is_store_unavailable(tmp_path, make_user):
    from auth.store import UserStore

    db_file = tmp_path / "users.db"
    store = UserStore(f"sqlite:///{db_file}")
    make_user(store, "ada")
    store.engine.dispose()
    db_file.unlink()
    # A fresh connection opens an empty database with no users table.
    with pytest.raises(StoreUnavailable):
        store.get_by_email("ada@example.com")
    store.close()


def test_driver_timeout_is_store_unavailable(stores, monkeypatch):
    users, _ = stores

    engine = MagicMock()
    engine.begin.side_effect = OperationalError("SELECT 1", {}, Exception("database is locked"))
    monkeypatch.setattr(users, "engine", engine)
    with pytest.raises(StoreUnavailable):
        users.get_by_id("00000000-0000-0000-0000-000000000000")
