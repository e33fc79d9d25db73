from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shopledger.config import StoreSettings
from shopledger.repositories.contracts import LedgerRepository
from shopledger.repositories.rest_repo import RestRepository
from shopledger.repositories.sqlite_repo import SqliteRepository
from shopledger.services.accounts_service import AccountsService
from shopledger.services.auth_service import AuthService
from shopledger.services.payroll_service import PayrollService
from shopledger.services.reporting_service import ReportingService
from shopledger.services.settings_service import SettingsService
from shopledger.services.snapshot_service import SnapshotService
from shopledger.services.tip_service import TipService


@dataclass(frozen=True)
class AppContainer:
    repo: LedgerRepository
    auth: AuthService
    settings: SettingsService
    payroll: PayrollService
    accounts: AccountsService
    tips: TipService
    snapshots: SnapshotService
    reporting: ReportingService


def build_container(db_path: Path | str, store: Optional[StoreSettings] = None) -> AppContainer:
    if store is not None and store.remote:
        repo: LedgerRepository = RestRepository(store)
    else:
        repo = SqliteRepository(db_path)
    repo.init_db()

    auth = AuthService(repo)
    settings = SettingsService(repo, auth)
    payroll = PayrollService(repo, auth, settings)
    accounts = AccountsService(repo, auth, settings)
    tips = TipService(repo)
    snapshots = SnapshotService(repo, auth)
    reporting = ReportingService(payroll, accounts, tips)

    return AppContainer(
        repo=repo,
        auth=auth,
        settings=settings,
        payroll=payroll,
        accounts=accounts,
        tips=tips,
        snapshots=snapshots,
        reporting=reporting,
    )
