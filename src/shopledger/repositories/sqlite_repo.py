from __future__ import annotations

import logging
import os
import secrets
import shutil
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from shopledger.domain.errors import StoreError
from shopledger.domain.models import ENTRY_TIP, ROLE_ADMIN, Entry, Transaction, User, Wholesaler
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

BOOTSTRAP_ADMIN_ID = "admin"


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @staticmethod
    def _fetch_dicts(cur: sqlite3.Cursor, sql: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        cur.execute(sql, tuple(params))
        cols = [d[0] for d in cur.description]
        return [dict(zip(cols, r)) for r in cur.fetchall()]

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        conn = self._conn()
        try:
            return self._fetch_dicts(conn.cursor(), sql, params)
        finally:
            conn.close()

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, tuple(params))
            conn.commit()
            return int(cur.rowcount)
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Store write failed: {exc}") from exc
        finally:
            conn.close()

    # ---------- Schema ----------
    def init_db(self) -> None:
        self.run_migrations()
        self._ensure_bootstrap_admin()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_auth_hardening),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise StoreError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL CHECK(role IN ('ADMIN','STAFF')),
                hourly_rate REAL NOT NULL DEFAULT 0,
                password TEXT,
                avatar TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('5H','8H','CUSTOM','EXPENSE','PAYMENT','TIP')),
                amount REAL NOT NULL,
                hours REAL,
                date TEXT NOT NULL,
                note TEXT,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS wholesalers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                phone TEXT,
                contact_person TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS acc_transactions (
                id TEXT PRIMARY KEY,
                wholesaler_id TEXT NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('PURCHASE','PAYMENT')),
                amount REAL NOT NULL CHECK(amount >= 0),
                date TEXT NOT NULL,
                due_date TEXT,
                note TEXT,
                FOREIGN KEY(wholesaler_id) REFERENCES wholesalers(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )

    def _migration_v2_auth_hardening(self, cur: sqlite3.Cursor) -> None:
        self._add_column_if_missing(cur, "users", "failed_attempts", "INTEGER NOT NULL DEFAULT 0")
        self._add_column_if_missing(cur, "users", "locked_until", "TEXT")
        self._add_column_if_missing(cur, "users", "must_change_password", "INTEGER NOT NULL DEFAULT 0")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_entries_user_date ON entries(user_id, date)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_acc_transactions_wholesaler ON acc_transactions(wholesaler_id)")

    def _add_column_if_missing(self, cur: sqlite3.Cursor, table: str, column: str, definition: str) -> None:
        cur.execute(f"PRAGMA table_info({table})")
        cols = {str(r[1]) for r in cur.fetchall()}
        if column in cols:
            return
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def _ensure_bootstrap_admin(self) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM users")
        if int(cur.fetchone()[0]) > 0:
            conn.close()
            return

        bootstrap_password = os.environ.get("SHOPLEDGER_BOOTSTRAP_ADMIN_PASSWORD", "").strip() or secrets.token_urlsafe(12)
        cur.execute(
            """
            INSERT INTO users (id, name, role, hourly_rate, password, must_change_password)
            VALUES (?, 'admin', ?, 0, ?, 1)
            """,
            (BOOTSTRAP_ADMIN_ID, ROLE_ADMIN, hash_password(bootstrap_password)),
        )
        conn.commit()
        conn.close()

        # one-time password for first login, readable by the owner only
        pw_file = Path(self.db_path).parent / ".admin_bootstrap_password"
        pw_file.write_text(bootstrap_password + "\n", encoding="utf-8")
        try:
            pw_file.chmod(0o600)
        except OSError:
            log.warning("bootstrap_password_chmod_failed path=%s", pw_file)

    def integrity_check(self) -> str:
        rows = self._query("PRAGMA integrity_check")
        return str(next(iter(rows[0].values()))) if rows else "unknown"

    # ---------- Users ----------
    _USER_SELECT = """
        SELECT id, name, role, hourly_rate, avatar, password,
               COALESCE(failed_attempts, 0) AS failed_attempts, locked_until,
               COALESCE(must_change_password, 0) AS must_change_password
        FROM users
    """

    def list_users(self) -> list[User]:
        rows = self._query(self._USER_SELECT + " ORDER BY name")
        return [user_from_row(r) for r in rows]

    def get_user(self, user_id: str) -> Optional[User]:
        rows = self._query(self._USER_SELECT + " WHERE id=?", (user_id,))
        return user_from_row(rows[0]) if rows else None

    def _get_user_row(self, cur: sqlite3.Cursor, name: str) -> Optional[dict[str, Any]]:
        rows = self._fetch_dicts(cur, self._USER_SELECT + " WHERE name=?", (name,))
        return rows[0] if rows else None

    def get_user_security_state(self, name: str) -> tuple[int, Optional[str]] | None:
        conn = self._conn()
        try:
            row = self._get_user_row(conn.cursor(), name)
        finally:
            conn.close()
        if not row:
            return None
        return int(row["failed_attempts"]), (str(row["locked_until"]) if row["locked_until"] is not None else None)

    def record_login_failure(self, name: str, max_attempts: int, lockout_seconds: int) -> tuple[int, Optional[str]]:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, name)
        if not row:
            conn.close()
            return 0, None

        attempts = int(row["failed_attempts"]) + 1
        locked_until = None
        if attempts >= int(max_attempts):
            attempts = 0
            cur.execute(
                "UPDATE users SET failed_attempts=?, locked_until=datetime('now', ?) WHERE id=?",
                (attempts, f"+{int(lockout_seconds)} seconds", row["id"]),
            )
            cur.execute("SELECT locked_until FROM users WHERE id=?", (row["id"],))
            locked_until = str(cur.fetchone()[0])
        else:
            cur.execute("UPDATE users SET failed_attempts=? WHERE id=?", (attempts, row["id"]))
        conn.commit()
        conn.close()
        return attempts, locked_until

    def clear_login_guard(self, user_id: str) -> None:
        self._execute("UPDATE users SET failed_attempts=0, locked_until=NULL WHERE id=?", (user_id,))

    def authenticate_user(self, name: str, password: str) -> Optional[User]:
        conn = self._conn()
        cur = conn.cursor()
        row = self._get_user_row(cur, name)
        if row and verify_password(row["password"], password):
            if not is_hashed(str(row["password"])):
                cur.execute("UPDATE users SET password=? WHERE id=?", (hash_password(password), row["id"]))
                log.info("legacy_password_upgraded user_id=%s", row["id"])
            cur.execute("UPDATE users SET failed_attempts=0, locked_until=NULL WHERE id=?", (row["id"],))
            conn.commit()
            conn.close()
            return user_from_row(row)
        conn.close()
        return None

    def create_user(
        self,
        name: str,
        password: str,
        role: str,
        hourly_rate: float = 0.0,
        avatar: Optional[str] = None,
        must_change_password: int = 0,
    ) -> str:
        uid = new_id()
        self._execute(
            """
            INSERT INTO users (id, name, role, hourly_rate, password, avatar, must_change_password)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (uid, name, role, float(hourly_rate), hash_password(password), avatar, int(must_change_password)),
        )
        return uid

    def update_user(self, user_id: str, name: str, role: str, hourly_rate: float, avatar: Optional[str]) -> bool:
        changed = self._execute(
            "UPDATE users SET name=?, role=?, hourly_rate=?, avatar=? WHERE id=?",
            (name, role, float(hourly_rate), avatar, user_id),
        )
        return changed > 0

    def set_user_password(self, user_id: str, password: str, must_change_password: int = 0) -> bool:
        changed = self._execute(
            "UPDATE users SET password=?, must_change_password=? WHERE id=?",
            (hash_password(password), int(must_change_password), user_id),
        )
        return changed > 0

    def change_user_password(self, user_id: str, current_password: str, new_password: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT password FROM users WHERE id=?", (user_id,))
        row = cur.fetchone()
        if not row or not verify_password(row[0], current_password):
            conn.close()
            return False

        cur.execute(
            "UPDATE users SET password=?, must_change_password=0 WHERE id=?",
            (hash_password(new_password), user_id),
        )
        conn.commit()
        conn.close()
        return True

    def delete_user_cascade(self, user_id: str) -> bool:
        """Entries first, then the user, in one transaction."""
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("DELETE FROM entries WHERE user_id=?", (user_id,))
            cur.execute("DELETE FROM users WHERE id=?", (user_id,))
            removed = cur.rowcount > 0
            conn.commit()
            return removed
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Could not delete user: {exc}") from exc
        finally:
            conn.close()

    # ---------- Entries ----------
    def list_entries(self) -> list[Entry]:
        rows = self._query(f"SELECT {', '.join(ENTRY_COLUMNS)} FROM entries ORDER BY date, id")
        return [entry_from_row(r) for r in rows]

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        rows = self._query(f"SELECT {', '.join(ENTRY_COLUMNS)} FROM entries WHERE id=?", (entry_id,))
        return entry_from_row(rows[0]) if rows else None

    def _upsert_sql(self, table: str, columns: tuple[str, ...]) -> str:
        updates = ", ".join(f"{c}=excluded.{c}" for c in columns if c != "id")
        placeholders = ", ".join("?" for _ in columns)
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}"
        )

    def upsert_entry(self, entry: Entry) -> None:
        row = entry_to_row(entry)
        self._execute(self._upsert_sql("entries", ENTRY_COLUMNS), [row[c] for c in ENTRY_COLUMNS])

    def delete_entry(self, entry_id: str) -> bool:
        return self._execute("DELETE FROM entries WHERE id=?", (entry_id,)) > 0

    def delete_tips_on(self, day: date) -> int:
        return self._execute("DELETE FROM entries WHERE date=? AND type=?", (day.isoformat(), ENTRY_TIP))

    # ---------- Wholesalers ----------
    def list_wholesalers(self) -> list[Wholesaler]:
        rows = self._query(f"SELECT {', '.join(WHOLESALER_COLUMNS)} FROM wholesalers ORDER BY name")
        return [wholesaler_from_row(r) for r in rows]

    def get_wholesaler(self, wholesaler_id: str) -> Optional[Wholesaler]:
        rows = self._query(f"SELECT {', '.join(WHOLESALER_COLUMNS)} FROM wholesalers WHERE id=?", (wholesaler_id,))
        return wholesaler_from_row(rows[0]) if rows else None

    def upsert_wholesaler(self, wholesaler: Wholesaler) -> None:
        row = wholesaler_to_row(wholesaler)
        self._execute(self._upsert_sql("wholesalers", WHOLESALER_COLUMNS), [row[c] for c in WHOLESALER_COLUMNS])

    def create_wholesaler_with_opening(self, wholesaler: Wholesaler, opening: Optional[Transaction]) -> None:
        conn = self._conn()
        cur = conn.cursor()
        try:
            w_row = wholesaler_to_row(wholesaler)
            cur.execute(
                self._upsert_sql("wholesalers", WHOLESALER_COLUMNS),
                [w_row[c] for c in WHOLESALER_COLUMNS],
            )
            if opening is not None:
                t_row = transaction_to_row(opening)
                cur.execute(
                    self._upsert_sql("acc_transactions", TRANSACTION_COLUMNS),
                    [t_row[c] for c in TRANSACTION_COLUMNS],
                )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Could not create wholesaler: {exc}") from exc
        finally:
            conn.close()

    def delete_wholesaler_cascade(self, wholesaler_id: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("DELETE FROM acc_transactions WHERE wholesaler_id=?", (wholesaler_id,))
            cur.execute("DELETE FROM wholesalers WHERE id=?", (wholesaler_id,))
            removed = cur.rowcount > 0
            conn.commit()
            return removed
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Could not delete wholesaler: {exc}") from exc
        finally:
            conn.close()

    # ---------- Transactions ----------
    def list_transactions(self) -> list[Transaction]:
        rows = self._query(f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM acc_transactions ORDER BY date, id")
        return [transaction_from_row(r) for r in rows]

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        rows = self._query(
            f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM acc_transactions WHERE id=?", (transaction_id,)
        )
        return transaction_from_row(rows[0]) if rows else None

    def upsert_transaction(self, transaction: Transaction) -> None:
        row = transaction_to_row(transaction)
        self._execute(
            self._upsert_sql("acc_transactions", TRANSACTION_COLUMNS), [row[c] for c in TRANSACTION_COLUMNS]
        )

    def delete_transaction(self, transaction_id: str) -> bool:
        return self._execute("DELETE FROM acc_transactions WHERE id=?", (transaction_id,)) > 0

    # ---------- Settings ----------
    def get_settings(self) -> dict[str, str]:
        return {str(r["key"]): str(r["value"]) for r in self._query("SELECT key, value FROM settings")}

    def save_settings(self, values: Mapping[str, str]) -> None:
        conn = self._conn()
        cur = conn.cursor()
        try:
            for key, value in values.items():
                cur.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                    (str(key), str(value)),
                )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Could not save settings: {exc}") from exc
        finally:
            conn.close()

    # ---------- Snapshot ----------
    def export_rows(self) -> dict[str, Any]:
        return {
            "users": self._query(f"SELECT {', '.join(USER_COLUMNS)} FROM users ORDER BY id"),
            "entries": self._query(f"SELECT {', '.join(ENTRY_COLUMNS)} FROM entries ORDER BY id"),
            "wholesalers": self._query(f"SELECT {', '.join(WHOLESALER_COLUMNS)} FROM wholesalers ORDER BY id"),
            "transactions": self._query(f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM acc_transactions ORDER BY id"),
            "settings": self.get_settings(),
        }

    def import_rows(self, snapshot: Mapping[str, Any]) -> dict[str, int]:
        """Upsert every collection in one transaction; last write wins per id."""
        plan = (
            ("users", "users", USER_COLUMNS),
            ("entries", "entries", ENTRY_COLUMNS),
            ("wholesalers", "wholesalers", WHOLESALER_COLUMNS),
            ("transactions", "acc_transactions", TRANSACTION_COLUMNS),
        )
        counts: dict[str, int] = {}
        conn = self._conn()
        cur = conn.cursor()
        try:
            for key, table, columns in plan:
                rows = snapshot.get(key) or []
                sql = self._upsert_sql(table, columns)
                for row in rows:
                    values = import_user_row(row) if table == "users" else pick(row, columns)
                    cur.execute(sql, [values[c] for c in columns])
                counts[key] = len(rows)
            for k, v in (snapshot.get("settings") or {}).items():
                cur.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                    (str(k), str(v)),
                )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Snapshot import failed, nothing was written: {exc}") from exc
        finally:
            conn.close()
        return counts
