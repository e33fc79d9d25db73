from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Optional, Protocol

from shopledger.domain.models import Entry, Transaction, User, Wholesaler


class UserRepository(Protocol):
    def list_users(self) -> list[User]: ...
    def get_user(self, user_id: str) -> Optional[User]: ...
    def get_user_security_state(self, name: str) -> tuple[int, Optional[str]] | None: ...
    def record_login_failure(self, name: str, max_attempts: int, lockout_seconds: int) -> tuple[int, Optional[str]]: ...
    def clear_login_guard(self, user_id: str) -> None: ...
    def authenticate_user(self, name: str, password: str) -> Optional[User]: ...
    def create_user(self, name: str, password: str, role: str, hourly_rate: float = 0.0, avatar: Optional[str] = None, must_change_password: int = 0) -> str: ...
    def update_user(self, user_id: str, name: str, role: str, hourly_rate: float, avatar: Optional[str]) -> bool: ...
    def set_user_password(self, user_id: str, password: str, must_change_password: int = 0) -> bool: ...
    def change_user_password(self, user_id: str, current_password: str, new_password: str) -> bool: ...
    def delete_user_cascade(self, user_id: str) -> bool: ...


class EntryRepository(Protocol):
    def list_entries(self) -> list[Entry]: ...
    def get_entry(self, entry_id: str) -> Optional[Entry]: ...
    def upsert_entry(self, entry: Entry) -> None: ...
    def delete_entry(self, entry_id: str) -> bool: ...
    def delete_tips_on(self, day: date) -> int: ...


class AccountsRepository(Protocol):
    def list_wholesalers(self) -> list[Wholesaler]: ...
    def get_wholesaler(self, wholesaler_id: str) -> Optional[Wholesaler]: ...
    def upsert_wholesaler(self, wholesaler: Wholesaler) -> None: ...
    def create_wholesaler_with_opening(self, wholesaler: Wholesaler, opening: Optional[Transaction]) -> None: ...
    def delete_wholesaler_cascade(self, wholesaler_id: str) -> bool: ...
    def list_transactions(self) -> list[Transaction]: ...
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]: ...
    def upsert_transaction(self, transaction: Transaction) -> None: ...
    def delete_transaction(self, transaction_id: str) -> bool: ...


class LedgerRepository(UserRepository, EntryRepository, AccountsRepository, Protocol):
    def init_db(self) -> None: ...
    def get_settings(self) -> dict[str, str]: ...
    def save_settings(self, values: Mapping[str, str]) -> None: ...
    def export_rows(self) -> dict[str, Any]: ...
    def import_rows(self, snapshot: Mapping[str, Any]) -> dict[str, int]: ...
