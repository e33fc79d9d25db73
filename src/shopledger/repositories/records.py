"""Mapping between store rows (column names, ISO dates) and domain records.

The same row shape is used by the SQLite tables, the hosted REST tables and
the JSON snapshot, so a snapshot taken from one store loads into the other.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Optional

from shopledger.domain.models import Entry, Transaction, User, Wholesaler

USER_COLUMNS = ("id", "name", "role", "hourly_rate", "password", "avatar")
ENTRY_COLUMNS = ("id", "user_id", "type", "amount", "hours", "date", "note")
WHOLESALER_COLUMNS = ("id", "name", "phone", "contact_person")
TRANSACTION_COLUMNS = ("id", "wholesaler_id", "type", "amount", "date", "due_date", "note")


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


def parse_day(value: Any) -> date:
    if isinstance(value, date):
        return value
    # hosted stores sometimes return timestamps for date columns
    return date.fromisoformat(str(value)[:10])


def _opt_day(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    return parse_day(value)


def user_from_row(row: Mapping[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        name=str(row["name"]),
        role=str(row["role"]).upper(),
        hourly_rate=float(row.get("hourly_rate") or 0),
        avatar=_opt_str(row.get("avatar")),
        must_change_password=int(row.get("must_change_password") or 0),
    )


def entry_from_row(row: Mapping[str, Any]) -> Entry:
    hours = row.get("hours")
    return Entry(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        type=str(row["type"]),
        amount=float(row["amount"]),
        hours=float(hours) if hours else None,
        date=parse_day(row["date"]),
        note=_opt_str(row.get("note")),
    )


def entry_to_row(entry: Entry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "type": entry.type,
        "amount": float(entry.amount),
        "hours": float(entry.hours) if entry.hours is not None else None,
        "date": entry.date.isoformat(),
        "note": entry.note,
    }


def wholesaler_from_row(row: Mapping[str, Any]) -> Wholesaler:
    return Wholesaler(
        id=str(row["id"]),
        name=str(row["name"]),
        phone=_opt_str(row.get("phone")),
        contact_person=_opt_str(row.get("contact_person")),
    )


def wholesaler_to_row(w: Wholesaler) -> dict[str, Any]:
    return {"id": w.id, "name": w.name, "phone": w.phone, "contact_person": w.contact_person}


def transaction_from_row(row: Mapping[str, Any]) -> Transaction:
    return Transaction(
        id=str(row["id"]),
        wholesaler_id=str(row["wholesaler_id"]),
        type=str(row["type"]),
        amount=float(row["amount"]),
        date=parse_day(row["date"]),
        due_date=_opt_day(row.get("due_date")),
        note=_opt_str(row.get("note")),
    )


def transaction_to_row(t: Transaction) -> dict[str, Any]:
    return {
        "id": t.id,
        "wholesaler_id": t.wholesaler_id,
        "type": t.type,
        "amount": float(t.amount),
        "date": t.date.isoformat(),
        "due_date": t.due_date.isoformat() if t.due_date else None,
        "note": t.note,
    }


def pick(row: Mapping[str, Any], columns: tuple[str, ...]) -> dict[str, Any]:
    return {c: row.get(c) for c in columns}


def import_user_row(row: Mapping[str, Any]) -> dict[str, Any]:
    values = pick(row, USER_COLUMNS)
    values["role"] = str(values["role"]).upper()
    values["hourly_rate"] = float(values["hourly_rate"] or 0)
    return values
