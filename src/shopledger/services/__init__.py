from .auth_service import AuthService, LoginPolicy
from .settings_service import SettingsService
from .payroll_service import PayrollService
from .accounts_service import AccountsService
from .tip_service import TipService
from .snapshot_service import SnapshotService
from .reporting_service import ReportingService

__all__ = [
    "AuthService",
    "LoginPolicy",
    "SettingsService",
    "PayrollService",
    "AccountsService",
    "TipService",
    "SnapshotService",
    "ReportingService",
]
