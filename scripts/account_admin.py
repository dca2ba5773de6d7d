"""Operator tooling for the account database.

    python scripts/account_admin.py init-db
    python scripts/account_admin.py show alice
    python scripts/account_admin.py set-status alice --disabled
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.accounts.account_store import AccountStore, build_account_store  # noqa: E402
from services.accounts.errors import AccountError  # noqa: E402


def _store(args: argparse.Namespace) -> AccountStore:
    data_dir = Path(args.data_dir) if args.data_dir else None
    return build_account_store(data_dir=data_dir)


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def cmd_init_db(args: argparse.Namespace) -> int:
    store = _store(args)
    _print({"ok": True, "db_path": str(store.db_path)})
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    store = _store(args)
    account = store.find_account_by_username(str(args.username).strip())
    if account is None:
        _print({"ok": False, "error": "not_found", "username": args.username})
        return 1
    user = store.get_user_view(int(account["id"])) or {}
    _print({"ok": True, "user": user, "audit": store.list_audit(username=account["username"], limit=args.limit)})
    return 0


def cmd_set_status(args: argparse.Namespace) -> int:
    store = _store(args)
    username = str(args.username).strip()
    if not store.set_status(username=username, enabled=bool(args.enabled)):
        _print({"ok": False, "error": "not_found", "username": username})
        return 1
    _print({"ok": True, "username": username, "status": 1 if args.enabled else 0})
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Account database maintenance")
    parser.add_argument("--data-dir", default="", help="Data directory (default: DATA_DIR env or ./data)")
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create the account tables if missing")
    init_db.set_defaults(func=cmd_init_db)

    show = sub.add_parser("show", help="Print an account and its recent audit entries")
    show.add_argument("username")
    show.add_argument("--limit", type=int, default=20)
    show.set_defaults(func=cmd_show)

    set_status = sub.add_parser("set-status", help="Enable or disable an account")
    set_status.add_argument("username")
    group = set_status.add_mutually_exclusive_group(required=True)
    group.add_argument("--enabled", dest="enabled", action="store_true")
    group.add_argument("--disabled", dest="enabled", action="store_false")
    set_status.set_defaults(func=cmd_set_status)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        return int(args.func(args))
    except AccountError as exc:
        _print({"ok": False, "error": exc.message})
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
