from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
from functools import lru_cache
from typing import Optional

from . import settings as _settings
from .errors import InternalError

_log = logging.getLogger(__name__)

ALGORITHM = "pbkdf2_sha256"
_ITERATIONS_PER_COST_UNIT = 300
_SALT_BYTES = 16


def iterations_for_cost(cost: int) -> int:
    return _ITERATIONS_PER_COST_UNIT * (2 ** int(cost))


def hash_secret(secret: str, *, cost: Optional[int] = None) -> str:
    work = _settings.password_hash_cost() if cost is None else int(cost)
    iterations = iterations_for_cost(work)
    salt = secrets.token_bytes(_SALT_BYTES)
    try:
        digest = hashlib.pbkdf2_hmac(
            "sha256",
            str(secret or "").encode("utf-8"),
            salt,
            iterations,
        )
    except (ValueError, OverflowError) as exc:
        _log.error("secret hashing failed", exc_info=True)
        raise InternalError() from exc
    return "{}${}${}${}".format(
        ALGORITHM,
        iterations,
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(digest).decode("ascii"),
    )


def verify_secret(secret: str, stored: str) -> bool:
    text = str(stored or "").strip()
    parts = text.split("$")
    if len(parts) != 4 or parts[0] != ALGORITHM:
        _log.error("stored digest has an unknown format")
        raise InternalError()
    _algo, iter_text, salt_text, digest_text = parts
    try:
        iterations = int(iter_text)
        salt = base64.b64decode(salt_text.encode("ascii"), validate=True)
        expected = base64.b64decode(digest_text.encode("ascii"), validate=True)
    except (ValueError, binascii.Error) as exc:
        _log.error("stored digest is corrupt")
        raise InternalError() from exc
    computed = hashlib.pbkdf2_hmac(
        "sha256",
        str(secret or "").encode("utf-8"),
        salt,
        max(1, iterations),
    )
    return hmac.compare_digest(computed, expected)


@lru_cache(maxsize=1)
def _dummy_digest() -> str:
    return hash_secret("dummy-secret-not-used-for-auth")


def consume_dummy_verify(candidate: str) -> None:
    """Burn the same work as a real check when there is nothing to check against."""
    verify_secret(str(candidate or ""), _dummy_digest())


__all__ = [
    "ALGORITHM",
    "hash_secret",
    "verify_secret",
    "consume_dummy_verify",
    "iterations_for_cost",
]
