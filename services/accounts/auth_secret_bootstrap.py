from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Optional

from . import settings as _settings
from .config import DATA_DIR

_log = logging.getLogger(__name__)

_DEFAULT_SECRET_FILE_RELATIVE = Path("config") / "auth_token_secret"


def resolve_auth_token_secret_file(data_dir: Optional[Path] = None) -> Path:
    raw = _settings.auth_token_secret_file()
    base = Path(data_dir) if data_dir is not None else DATA_DIR
    if raw:
        path = Path(raw)
        if path.is_absolute():
            return path
        return (base / path).resolve()
    return (base / _DEFAULT_SECRET_FILE_RELATIVE).resolve()


def _read_secret_file(path: Path) -> str:
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise RuntimeError(f"failed to read auth token secret file: {path}") from exc


def _write_secret_file(path: Path, secret: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(secret)
        handle.write("\n")


def ensure_auth_token_secret(data_dir: Optional[Path] = None) -> str:
    """Return the signing secret, loading or generating a persisted one when unset."""
    secret = _settings.auth_token_secret()
    if secret:
        return secret

    secret_file = resolve_auth_token_secret_file(data_dir)
    persisted = _read_secret_file(secret_file)
    if persisted:
        os.environ["AUTH_TOKEN_SECRET"] = persisted
        return persisted

    if _settings.is_production():
        raise RuntimeError("AUTH_TOKEN_SECRET is required in production")
    generated = secrets.token_urlsafe(48)
    try:
        _write_secret_file(secret_file, generated)
    except OSError as exc:
        raise RuntimeError(f"failed to persist AUTH_TOKEN_SECRET at {secret_file}") from exc
    os.environ["AUTH_TOKEN_SECRET"] = generated
    _log.warning(
        "Generated AUTH_TOKEN_SECRET and persisted to %s; keep this file private and backed up.",
        secret_file,
    )
    return generated
