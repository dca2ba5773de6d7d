from __future__ import annotations

import logging
import os
from typing import Callable, Optional

_log = logging.getLogger(__name__)


def truthy(value: str) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default)


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name, str(default)) or default)
    except ValueError:
        _log.debug("numeric conversion failed for %s", name, exc_info=True)
        return int(default)


def env_bool(name: str, default: str = "") -> bool:
    return truthy(env_str(name, default))


def app_env(getenv: Optional[Callable[[str, Optional[str]], Optional[str]]] = None) -> str:
    read = getenv or os.getenv
    return str(read("APP_ENV", None) or read("ENV", None) or "development")


def is_production(getenv: Optional[Callable[[str, Optional[str]], Optional[str]]] = None) -> bool:
    return app_env(getenv).strip().lower() in {"prod", "production"}


def data_dir() -> str:
    return env_str("DATA_DIR", "")


def accounts_db_path() -> str:
    return env_str("ACCOUNTS_DB_PATH", "")


def cors_origins() -> str:
    return env_str("CORS_ORIGINS", "*")


def password_hash_cost() -> int:
    return min(16, max(4, env_int("PASSWORD_HASH_COST", 10)))


def recovery_max_attempts() -> int:
    return max(1, env_int("RECOVERY_MAX_ATTEMPTS", 5))


def recovery_session_ttl_sec() -> int:
    return max(60, env_int("RECOVERY_SESSION_TTL_SEC", 900))


def recovery_max_sessions() -> int:
    return max(16, env_int("RECOVERY_MAX_SESSIONS", 4096))


def recovery_decoy_question() -> str:
    return env_str("RECOVERY_DECOY_QUESTION", "您的出生地是哪里？").strip() or "您的出生地是哪里？"


def access_token_ttl_sec() -> int:
    return max(300, env_int("AUTH_ACCESS_TOKEN_TTL_SEC", 28800))


def auth_token_secret() -> str:
    return env_str("AUTH_TOKEN_SECRET", "").strip()


def auth_token_secret_file() -> str:
    return env_str("AUTH_TOKEN_SECRET_FILE", "").strip()


def sqlite_timeout_sec() -> float:
    return float(max(1, env_int("ACCOUNTS_DB_TIMEOUT_SEC", 5)))


def rate_limit_rpm() -> int:
    return max(0, env_int("RATE_LIMIT_RPM", 60))


def rate_limit_max_buckets() -> int:
    return max(1, env_int("RATE_LIMIT_MAX_BUCKETS", 4096))


def rate_limit_trust_x_forwarded_for() -> bool:
    return env_bool("RATE_LIMIT_TRUST_X_FORWARDED_FOR", "")


def rate_limit_trusted_proxy_ips() -> str:
    return env_str("RATE_LIMIT_TRUSTED_PROXY_IPS", "")
