from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import pytest

from services.accounts.account_store import AccountStore, build_account_store
from services.accounts.errors import ConflictError


def _create(store: AccountStore, **overrides) -> int:
    fields = {
        "username": "alice",
        "password_hash": "pbkdf2_sha256$1$AAAA$AAAA",
        "email": "a@x.com",
        "phone": None,
        "security_question": "Your first school?",
        "security_answer_hash": "pbkdf2_sha256$1$AAAA$BBBB",
        "nickname": "Ali",
    }
    fields.update(overrides)
    return store.create_account(**fields)


def test_create_account_persists_account_and_profile(tmp_path: Path) -> None:
    store = build_account_store(data_dir=tmp_path)
    user_id = _create(store)

    view = store.get_user_view(user_id)
    assert view is not None
    assert view["username"] == "alice"
    assert view["nickname"] == "Ali"
    assert view["status"] == 1
    assert "password_hash" not in view
    assert "security_answer_hash" not in view

    account = store.find_account_by_username("alice")
    assert account is not None and account["token_version"] == 1
    assert store.get_security_question("alice") == "Your first school?"
    assert store.get_security_answer_hash("alice") == "pbkdf2_sha256$1$AAAA$BBBB"
    assert store.nickname_exists("Ali") is True


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"email": "b@x.com", "nickname": "Other"}, "username"),
        ({"username": "bob", "nickname": "Other"}, "email"),
        ({"username": "bob", "email": "b@x.com"}, "nickname"),
    ],
)
def test_duplicate_identity_is_a_conflict(tmp_path: Path, overrides: dict, field: str) -> None:
    store = build_account_store(data_dir=tmp_path)
    _create(store)
    with pytest.raises(ConflictError) as excinfo:
        _create(store, **overrides)
    assert excinfo.value.field == field
    assert excinfo.value.status_code == 409


def test_duplicate_phone_is_a_conflict_but_missing_phones_are_not(tmp_path: Path) -> None:
    store = build_account_store(data_dir=tmp_path)
    _create(store, phone="13812345678")
    _create(store, username="bob", email="b@x.com", nickname="Bob", phone=None)
    _create(store, username="carol", email="c@x.com", nickname="Carol", phone=None)
    with pytest.raises(ConflictError) as excinfo:
        _create(store, username="dave", email="d@x.com", nickname="Dave", phone="13812345678")
    assert excinfo.value.field == "phone"


def test_failed_profile_insert_leaves_no_orphan_account(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = build_account_store(data_dir=tmp_path)
    _create(store)
    # skip the pre-check so the profile insert hits the unique index
    monkeypatch.setattr(AccountStore, "_find_conflict", lambda self, conn, **kwargs: None)
    with pytest.raises(ConflictError) as excinfo:
        _create(store, username="zed", email="z@x.com", nickname="Ali")
    assert excinfo.value.field == "nickname"
    assert store.find_account_by_username("zed") is None


def test_concurrent_registrations_with_same_username_create_one_account(tmp_path: Path) -> None:
    store = build_account_store(data_dir=tmp_path)
    barrier = threading.Barrier(6)
    results: list = []
    lock = threading.Lock()

    def worker(i: int) -> None:
        barrier.wait()
        try:
            _create(store, email=f"u{i}@x.com", nickname=f"nick{i}")
            outcome = "ok"
        except ConflictError as exc:
            outcome = exc.field
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert sorted(r for r in results if r != "ok") == ["username"] * 5
    with sqlite3.connect(str(store.db_path)) as conn:
        users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        profiles = conn.execute("SELECT COUNT(*) FROM user_profiles").fetchone()[0]
    assert users == 1
    assert profiles == 1


def test_update_password_bumps_token_version(tmp_path: Path) -> None:
    store = build_account_store(data_dir=tmp_path)
    user_id = _create(store)
    assert store.token_version_matches(user_id=user_id, token_version=1) is True

    assert store.update_password(username="alice", password_hash="new") is True
    assert store.token_version_matches(user_id=user_id, token_version=1) is False
    assert store.token_version_matches(user_id=user_id, token_version=2) is True
    assert store.update_password(username="nobody", password_hash="new") is False


def test_update_nickname_rejects_taken_nickname(tmp_path: Path) -> None:
    store = build_account_store(data_dir=tmp_path)
    alice = _create(store)
    _create(store, username="bob", email="b@x.com", nickname="Bob")

    assert store.update_nickname(user_id=alice, nickname="Alice2") is True
    assert store.update_nickname(user_id=alice, nickname="Alice2") is True
    with pytest.raises(ConflictError):
        store.update_nickname(user_id=alice, nickname="Bob")
    assert store.get_user_view(alice)["nickname"] == "Alice2"


def test_disabled_account_fails_token_version_check(tmp_path: Path) -> None:
    store = build_account_store(data_dir=tmp_path)
    user_id = _create(store)
    assert store.set_status(username="alice", enabled=False) is True
    assert store.token_version_matches(user_id=user_id, token_version=1) is False
    assert store.set_status(username="ghost", enabled=False) is False


def test_audit_log_records_events_newest_first(tmp_path: Path) -> None:
    store = build_account_store(data_dir=tmp_path)
    user_id = _create(store)
    store.record_login(user_id=user_id, username="alice")
    store.record_event(username="alice", action="login", result="failed", detail={"reason": "bad_password"})

    entries = store.list_audit(username="alice")
    assert [e["action"] for e in entries] == ["login", "login", "register"]
    assert entries[0]["result"] == "failed"
    assert entries[0]["detail"] == {"reason": "bad_password"}
    assert store.find_account_by_username("alice")["last_login_at"]


def test_store_reopens_existing_database(tmp_path: Path) -> None:
    first = build_account_store(data_dir=tmp_path)
    _create(first)
    second = AccountStore(first.db_path)
    assert second.find_account_by_username("alice") is not None
    assert second.ping() is True
