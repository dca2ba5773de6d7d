from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .account_service import AccountService
from .account_store import AccountStore, build_account_store
from .config import DATA_DIR
from .recovery_service import PasswordRecoveryService, RecoverySessionStore


@dataclass(frozen=True)
class AppContainer:
    data_dir: Path
    store: AccountStore
    accounts: AccountService
    recovery: PasswordRecoveryService


def build_app_container(*, data_dir: Optional[Path] = None) -> AppContainer:
    base = Path(data_dir) if data_dir is not None else DATA_DIR
    store = build_account_store(data_dir=data_dir)
    return AppContainer(
        data_dir=base,
        store=store,
        accounts=AccountService(store),
        recovery=PasswordRecoveryService(store, RecoverySessionStore()),
    )
