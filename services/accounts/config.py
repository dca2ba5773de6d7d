from __future__ import annotations

from pathlib import Path

from . import settings as _settings

APP_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = Path(_settings.data_dir() or (APP_ROOT / "data"))
ACCOUNTS_DB_PATH = Path(_settings.accounts_db_path() or (DATA_DIR / "accounts" / "users.sqlite3"))
CORS_ORIGINS = [o.strip() for o in _settings.cors_origins().split(",") if o.strip()] or ["*"]


def resolve_db_path(data_dir: Path | str | None = None) -> Path:
    if data_dir is not None:
        return Path(data_dir) / "accounts" / "users.sqlite3"
    explicit = _settings.accounts_db_path()
    if explicit:
        return Path(explicit)
    env_data_dir = _settings.data_dir()
    if env_data_dir:
        return Path(env_data_dir) / "accounts" / "users.sqlite3"
    return ACCOUNTS_DB_PATH
