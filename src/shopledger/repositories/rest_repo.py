from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import requests

from shopledger.config import StoreSettings
from shopledger.domain.errors import StoreError
from shopledger.domain.models import ENTRY_TIP, Entry, Transaction, User, Wholesaler
from shopledger.repositories.records import (
    ENTRY_COLUMNS,
    TRANSACTION_COLUMNS,
    USER_COLUMNS,
    WHOLESALER_COLUMNS,
    entry_from_row,
    entry_to_row,
    import_user_row,
    pick,
    transaction_from_row,
    transaction_to_row,
    user_from_row,
    wholesaler_from_row,
    wholesaler_to_row,
)
from shopledger.security import hash_password, is_hashed, new_id, verify_password

log = logging.getLogger(__name__)


class RestRepository:
    """Store client for a hosted PostgREST-style database.

    Each call is one HTTP round trip. The hosted API offers no multi-table
    transactions, so cascades and wholesaler creation run as sequential
    writes; a failure part-way leaves the earlier writes in place.
    """

    def __init__(self, settings: StoreSettings, session: requests.Session | None = None):
        if not settings.url:
            raise StoreError("Store URL is not configured.")
        self.base_url = settings.url.rstrip("/") + "/rest/v1"
        self.timeout = settings.timeout
        self.session = session or requests.Session()
        if settings.api_key:
            self.session.headers.update(
                {"apikey": settings.api_key, "Authorization": f"Bearer {settings.api_key}"}
            )

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[dict[str, str]] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        headers = {"Prefer": prefer} if prefer else {}
        url = f"{self.base_url}/{table}"
        try:
            r = self.session.request(method, url, params=params or {}, json=payload, headers=headers, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            log.warning("store_request_failed method=%s table=%s error=%s", method, table, exc)
            raise StoreError(f"Store request failed ({method} {table}): {exc}") from exc

        if not r.content:
            return []
        try:
            data = r.json()
        except ValueError as exc:
            raise StoreError(f"Store returned invalid JSON for {table}.") from exc
        return data if isinstance(data, list) else [data]

    def _select(self, table: str, **filters: str) -> list[dict[str, Any]]:
        params = {"select": "*"}
        params.update({k: f"eq.{v}" for k, v in filters.items()})
        return self._request("GET", table, params=params)

    def _upsert(self, table: str, rows: list[dict[str, Any]], on_conflict: str = "id") -> None:
        if not rows:
            return
        self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            payload=rows,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    def _patch(self, table: str, values: dict[str, Any], **filters: str) -> int:
        params = {k: f"eq.{v}" for k, v in filters.items()}
        rows = self._request("PATCH", table, params=params, payload=values, prefer="return=representation")
        return len(rows)

    def _delete(self, table: str, **filters: str) -> int:
        params = {k: f"eq.{v}" for k, v in filters.items()}
        rows = self._request("DELETE", table, params=params, prefer="return=representation")
        return len(rows)

    # ---------- Schema ----------
    def init_db(self) -> None:
        # schema is managed by the hosting service
        if not self._select("users"):
            log.warning("store_has_no_users url=%s", self.base_url)

    # ---------- Users ----------
    def list_users(self) -> list[User]:
        rows = self._select("users")
        return sorted((user_from_row(r) for r in rows), key=lambda u: u.name)

    def get_user(self, user_id: str) -> Optional[User]:
        rows = self._select("users", id=user_id)
        return user_from_row(rows[0]) if rows else None

    def _get_user_row(self, name: str) -> Optional[dict[str, Any]]:
        rows = self._select("users", name=name)
        return rows[0] if rows else None

    def get_user_security_state(self, name: str) -> tuple[int, Optional[str]] | None:
        row = self._get_user_row(name)
        if not row:
            return None
        locked = row.get("locked_until")
        return int(row.get("failed_attempts") or 0), (str(locked) if locked else None)

    def record_login_failure(self, name: str, max_attempts: int, lockout_seconds: int) -> tuple[int, Optional[str]]:
        row = self._get_user_row(name)
        if not row:
            return 0, None

        attempts = int(row.get("failed_attempts") or 0) + 1
        locked_until = None
        if attempts >= int(max_attempts):
            attempts = 0
            until = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(seconds=int(lockout_seconds))
            locked_until = until.isoformat(sep=" ", timespec="seconds")
        self._patch("users", {"failed_attempts": attempts, "locked_until": locked_until}, id=str(row["id"]))
        return attempts, locked_until

    def clear_login_guard(self, user_id: str) -> None:
        self._patch("users", {"failed_attempts": 0, "locked_until": None}, id=user_id)

    def authenticate_user(self, name: str, password: str) -> Optional[User]:
        row = self._get_user_row(name)
        if not row or not verify_password(row.get("password"), password):
            return None
        values: dict[str, Any] = {"failed_attempts": 0, "locked_until": None}
        if not is_hashed(str(row["password"])):
            values["password"] = hash_password(password)
            log.info("legacy_password_upgraded user_id=%s", row["id"])
        self._patch("users", values, id=str(row["id"]))
        return user_from_row(row)

    def create_user(
        self,
        name: str,
        password: str,
        role: str,
        hourly_rate: float = 0.0,
        avatar: Optional[str] = None,
        must_change_password: int = 0,
    ) -> str:
        if self._get_user_row(name):
            raise StoreError(f"A user named '{name}' already exists.")
        uid = new_id()
        self._request(
            "POST",
            "users",
            payload=[
                {
                    "id": uid,
                    "name": name,
                    "role": role,
                    "hourly_rate": float(hourly_rate),
                    "password": hash_password(password),
                    "avatar": avatar,
                    "must_change_password": int(must_change_password),
                }
            ],
            prefer="return=minimal",
        )
        return uid

    def update_user(self, user_id: str, name: str, role: str, hourly_rate: float, avatar: Optional[str]) -> bool:
        values = {"name": name, "role": role, "hourly_rate": float(hourly_rate), "avatar": avatar}
        return self._patch("users", values, id=user_id) > 0

    def set_user_password(self, user_id: str, password: str, must_change_password: int = 0) -> bool:
        values = {"password": hash_password(password), "must_change_password": int(must_change_password)}
        return self._patch("users", values, id=user_id) > 0

    def change_user_password(self, user_id: str, current_password: str, new_password: str) -> bool:
        rows = self._select("users", id=user_id)
        if not rows or not verify_password(rows[0].get("password"), current_password):
            return False
        return self.set_user_password(user_id, new_password, must_change_password=0)

    def delete_user_cascade(self, user_id: str) -> bool:
        self._delete("entries", user_id=user_id)
        return self._delete("users", id=user_id) > 0

    # ---------- Entries ----------
    def list_entries(self) -> list[Entry]:
        return [entry_from_row(r) for r in self._select("entries")]

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        rows = self._select("entries", id=entry_id)
        return entry_from_row(rows[0]) if rows else None

    def upsert_entry(self, entry: Entry) -> None:
        self._upsert("entries", [entry_to_row(entry)])

    def delete_entry(self, entry_id: str) -> bool:
        return self._delete("entries", id=entry_id) > 0

    def delete_tips_on(self, day: date) -> int:
        return self._delete("entries", date=day.isoformat(), type=ENTRY_TIP)

    # ---------- Wholesalers ----------
    def list_wholesalers(self) -> list[Wholesaler]:
        rows = self._select("wholesalers")
        return sorted((wholesaler_from_row(r) for r in rows), key=lambda w: w.name)

    def get_wholesaler(self, wholesaler_id: str) -> Optional[Wholesaler]:
        rows = self._select("wholesalers", id=wholesaler_id)
        return wholesaler_from_row(rows[0]) if rows else None

    def upsert_wholesaler(self, wholesaler: Wholesaler) -> None:
        self._upsert("wholesalers", [wholesaler_to_row(wholesaler)])

    def create_wholesaler_with_opening(self, wholesaler: Wholesaler, opening: Optional[Transaction]) -> None:
        self.upsert_wholesaler(wholesaler)
        if opening is None:
            return
        try:
            self.upsert_transaction(opening)
        except StoreError:
            log.error("opening_balance_not_saved wholesaler_id=%s", wholesaler.id)
            raise

    def delete_wholesaler_cascade(self, wholesaler_id: str) -> bool:
        self._delete("acc_transactions", wholesaler_id=wholesaler_id)
        return self._delete("wholesalers", id=wholesaler_id) > 0

    # ---------- Transactions ----------
    def list_transactions(self) -> list[Transaction]:
        return [transaction_from_row(r) for r in self._select("acc_transactions")]

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        rows = self._select("acc_transactions", id=transaction_id)
        return transaction_from_row(rows[0]) if rows else None

    def upsert_transaction(self, transaction: Transaction) -> None:
        self._upsert("acc_transactions", [transaction_to_row(transaction)])

    def delete_transaction(self, transaction_id: str) -> bool:
        return self._delete("acc_transactions", id=transaction_id) > 0

    # ---------- Settings ----------
    def get_settings(self) -> dict[str, str]:
        return {str(r["key"]): str(r["value"]) for r in self._select("settings")}

    def save_settings(self, values: Mapping[str, str]) -> None:
        rows = [{"key": str(k), "value": str(v)} for k, v in values.items()]
        self._upsert("settings", rows, on_conflict="key")

    # ---------- Snapshot ----------
    def export_rows(self) -> dict[str, Any]:
        return {
            "users": [pick(r, USER_COLUMNS) for r in self._select("users")],
            "entries": [pick(r, ENTRY_COLUMNS) for r in self._select("entries")],
            "wholesalers": [pick(r, WHOLESALER_COLUMNS) for r in self._select("wholesalers")],
            "transactions": [pick(r, TRANSACTION_COLUMNS) for r in self._select("acc_transactions")],
            "settings": self.get_settings(),
        }

    def import_rows(self, snapshot: Mapping[str, Any]) -> dict[str, int]:
        plan = (
            ("users", "users", USER_COLUMNS),
            ("entries", "entries", ENTRY_COLUMNS),
            ("wholesalers", "wholesalers", WHOLESALER_COLUMNS),
            ("transactions", "acc_transactions", TRANSACTION_COLUMNS),
        )
        counts: dict[str, int] = {}
        for key, table, columns in plan:
            rows = [
                import_user_row(r) if table == "users" else pick(r, columns) for r in snapshot.get(key) or []
            ]
            self._upsert(table, rows)
            counts[key] = len(rows)
        settings = snapshot.get("settings") or {}
        if settings:
            self.save_settings(settings)
        return counts
