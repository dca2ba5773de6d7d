from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from services.accounts.auth_secret_bootstrap import ensure_auth_token_secret
from services.accounts.auth_service import validate_auth_secret_policy
from services.accounts.errors import AccountError
from services.accounts.logging_config import configure_logging

_log = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(_app):
    container = _app.state.container
    validate_auth_secret_policy()
    ensure_auth_token_secret(container.data_dir)
    configure_logging()
    try:
        container.store.ping()
    except AccountError:
        _log.error("Account database unavailable at startup; running degraded", exc_info=True)
    _log.info("account service started data_dir=%s", container.data_dir)
    try:
        yield
    finally:
        _log.info("account service stopped")
