from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from . import settings as _settings
from .config import resolve_db_path
from .errors import ConflictError, InternalError

_log = logging.getLogger(__name__)

# column -> (field name reported to clients, message)
_CONFLICT_FIELDS: Dict[str, tuple[str, str]] = {
    "users.username": ("username", "用户名已被注册"),
    "users.email": ("email", "邮箱已被注册"),
    "users.phone": ("phone", "手机号已被注册"),
    "user_profiles.nickname": ("nickname", "该昵称已被使用，请更换其他昵称"),
}

_SQLITE_INTEGER_RANGE = range(-(2**63), 2**63)

_SECRET_COLUMNS = {"password_hash", "security_answer_hash", "token_version"}
_AUDIT_USERNAME_MAX_LEN = 128


@dataclass(frozen=True)
class AccountStore:
    db_path: Path

    def __init__(self, db_path: Path):
        object.__setattr__(self, "db_path", Path(db_path).expanduser().resolve())
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=_settings.sqlite_timeout_sec(),
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            _log.error("cannot open account database %s", self.db_path, exc_info=True)
            raise InternalError() from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            _log.error("account database operation failed", exc_info=True)
            raise InternalError() from exc
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database write lock from the first read."""
        with self._session() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _init_db(self) -> None:
        with self._session() as conn:
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.Error:
                _log.warning("WAL journal mode not available for %s", self.db_path, exc_info=True)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    phone TEXT UNIQUE,
                    security_question TEXT NOT NULL,
                    security_answer_hash TEXT NOT NULL,
                    status INTEGER NOT NULL DEFAULT 1,
                    token_version INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    last_login_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_profiles (
                    user_id INTEGER PRIMARY KEY REFERENCES users(id),
                    nickname TEXT NOT NULL UNIQUE,
                    avatar TEXT,
                    gender INTEGER,
                    birthday TEXT,
                    address TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS account_audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT,
                    action TEXT NOT NULL,
                    result TEXT NOT NULL,
                    detail_json TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_username ON account_audit_log(username, created_at)"
            )

    def ping(self) -> bool:
        with self._session() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # -- lookups ---------------------------------------------------------

    def find_account_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return _row_to_dict(row) if row is not None else None

    def find_conflict(
        self,
        *,
        username: str,
        email: str,
        phone: Optional[str],
        nickname: str,
    ) -> Optional[ConflictError]:
        with self._session() as conn:
            return self._find_conflict(conn, username=username, email=email, phone=phone, nickname=nickname)

    def nickname_exists(self, nickname: str) -> bool:
        with self._session() as conn:
            row = conn.execute(
                "SELECT 1 FROM user_profiles WHERE nickname = ?", (nickname,)
            ).fetchone()
        return row is not None

    def get_user_view(self, user_id: int) -> Optional[Dict[str, Any]]:
        if int(user_id) not in _SQLITE_INTEGER_RANGE:
            return None
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT u.*, p.nickname, p.avatar, p.gender, p.birthday, p.address,
                       p.updated_at AS profile_updated_at
                FROM users u
                LEFT JOIN user_profiles p ON p.user_id = u.id
                WHERE u.id = ?
                """,
                (int(user_id),),
            ).fetchone()
        if row is None:
            return None
        return _public_view(row)

    def get_security_question(self, username: str) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT security_question FROM users WHERE username = ?", (username,)
            ).fetchone()
        if row is None:
            return None
        return str(row["security_question"] or "") or None

    def get_security_answer_hash(self, username: str) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT security_answer_hash FROM users WHERE username = ?", (username,)
            ).fetchone()
        if row is None:
            return None
        return str(row["security_answer_hash"] or "") or None

    def token_version_matches(self, *, user_id: int, token_version: int) -> bool:
        with self._session() as conn:
            row = conn.execute(
                "SELECT token_version, status FROM users WHERE id = ?", (int(user_id),)
            ).fetchone()
        if row is None or int(row["status"] or 0) != 1:
            return False
        return int(row["token_version"] or 1) == int(token_version)

    # -- mutations -------------------------------------------------------

    def create_account(
        self,
        *,
        username: str,
        password_hash: str,
        email: str,
        phone: Optional[str],
        security_question: str,
        security_answer_hash: str,
        nickname: str,
    ) -> int:
        now = _iso(_utc_now())
        try:
            with self._transaction() as conn:
                conflict = self._find_conflict(
                    conn, username=username, email=email, phone=phone, nickname=nickname
                )
                if conflict is not None:
                    raise conflict
                cur = conn.execute(
                    "INSERT INTO users (username, password_hash, email, phone, security_question, "
                    "security_answer_hash, status, token_version, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, 1, 1, ?)",
                    (
                        username,
                        password_hash,
                        email,
                        phone,
                        security_question,
                        security_answer_hash,
                        now,
                    ),
                )
                user_id = int(cur.lastrowid)
                conn.execute(
                    "INSERT INTO user_profiles (user_id, nickname, updated_at) VALUES (?, ?, ?)",
                    (user_id, nickname, now),
                )
                self._append_audit(conn, username=username, action="register", result="success",
                                   detail={"user_id": user_id})
        except sqlite3.IntegrityError as exc:
            raise _conflict_from_integrity(exc) from exc
        return user_id

    def record_login(self, *, user_id: int, username: str) -> None:
        with self._session() as conn:
            conn.execute(
                "UPDATE users SET last_login_at = ? WHERE id = ?",
                (_iso(_utc_now()), int(user_id)),
            )
            self._append_audit(conn, username=username, action="login", result="success")

    def record_event(
        self,
        *,
        username: str,
        action: str,
        result: str,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._session() as conn:
            self._append_audit(conn, username=username, action=action, result=result, detail=detail)

    def update_password(self, *, username: str, password_hash: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE users SET password_hash = ?, token_version = token_version + 1 "
                "WHERE username = ?",
                (password_hash, username),
            )
            updated = cur.rowcount > 0
            self._append_audit(
                conn,
                username=username,
                action="password_reset",
                result="success" if updated else "not_found",
            )
        return updated

    def update_nickname(self, *, user_id: int, nickname: str) -> bool:
        try:
            with self._transaction() as conn:
                owner = conn.execute(
                    "SELECT user_id FROM user_profiles WHERE nickname = ?", (nickname,)
                ).fetchone()
                if owner is not None and int(owner["user_id"]) != int(user_id):
                    raise ConflictError("nickname", _CONFLICT_FIELDS["user_profiles.nickname"][1])
                cur = conn.execute(
                    "UPDATE user_profiles SET nickname = ?, updated_at = ? WHERE user_id = ?",
                    (nickname, _iso(_utc_now()), int(user_id)),
                )
                updated = cur.rowcount > 0
                username_row = conn.execute(
                    "SELECT username FROM users WHERE id = ?", (int(user_id),)
                ).fetchone()
                self._append_audit(
                    conn,
                    username=str(username_row["username"]) if username_row is not None else "",
                    action="nickname_update",
                    result="success" if updated else "not_found",
                )
        except sqlite3.IntegrityError as exc:
            raise _conflict_from_integrity(exc) from exc
        return updated

    def set_status(self, *, username: str, enabled: bool) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE users SET status = ? WHERE username = ?",
                (1 if enabled else 0, username),
            )
            updated = cur.rowcount > 0
            self._append_audit(
                conn,
                username=username,
                action="set_status",
                result="success" if updated else "not_found",
                detail={"enabled": bool(enabled)},
            )
        return updated

    def list_audit(self, *, username: str, limit: int = 50) -> list[Dict[str, Any]]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM account_audit_log WHERE username = ? ORDER BY id DESC LIMIT ?",
                (username, max(1, int(limit))),
            ).fetchall()
        items = []
        for row in rows:
            item = _row_to_dict(row)
            item["detail"] = json.loads(item.pop("detail_json") or "{}")
            items.append(item)
        return items

    # -- internals -------------------------------------------------------

    def _find_conflict(
        self,
        conn: sqlite3.Connection,
        *,
        username: str,
        email: str,
        phone: Optional[str],
        nickname: str,
    ) -> Optional[ConflictError]:
        checks = [
            ("users.username", "SELECT 1 FROM users WHERE username = ?", username),
            ("users.email", "SELECT 1 FROM users WHERE email = ?", email),
        ]
        if phone:
            checks.append(("users.phone", "SELECT 1 FROM users WHERE phone = ?", phone))
        checks.append(("user_profiles.nickname", "SELECT 1 FROM user_profiles WHERE nickname = ?", nickname))
        for column, sql, value in checks:
            if conn.execute(sql, (value,)).fetchone() is not None:
                field, message = _CONFLICT_FIELDS[column]
                return ConflictError(field, message)
        return None

    def _append_audit(
        self,
        conn: sqlite3.Connection,
        *,
        username: str,
        action: str,
        result: str,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        conn.execute(
            "INSERT INTO account_audit_log (username, action, result, detail_json, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                str(username or "")[:_AUDIT_USERNAME_MAX_LEN],
                action,
                result,
                json.dumps(detail or {}, ensure_ascii=False),
                _iso(_utc_now()),
            ),
        )


def build_account_store(*, data_dir: Optional[Path] = None) -> AccountStore:
    return AccountStore(db_path=resolve_db_path(data_dir))


def _conflict_from_integrity(exc: sqlite3.IntegrityError) -> ConflictError | InternalError:
    text = str(exc)
    for column, (field, message) in _CONFLICT_FIELDS.items():
        if column in text:
            return ConflictError(field, message)
    _log.error("unexpected integrity error: %s", text)
    return InternalError()


def _public_view(row: sqlite3.Row) -> Dict[str, Any]:
    data = _row_to_dict(row)
    for key in _SECRET_COLUMNS:
        data.pop(key, None)
    data["status"] = int(data.get("status") or 0)
    return data


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {key: row[key] for key in row.keys()}


__all__ = [
    "AccountStore",
    "build_account_store",
]
