from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from shopledger.config import ShopSettings
from shopledger.domain import ledger
from shopledger.domain.errors import NotFoundError, ValidationError
from shopledger.domain.models import (
    DEDUCTION_TYPES,
    ENTRY_5H,
    ENTRY_8H,
    ENTRY_CUSTOM,
    ENTRY_EXPENSE,
    ENTRY_PAYMENT,
    ENTRY_TIP,
    ENTRY_TYPES,
    FIXED_SHIFT_HOURS,
    Entry,
    PeriodTotals,
    StaffBalance,
    User,
)
from shopledger.security import new_id

log = logging.getLogger("shopledger.payroll")

DEFAULT_NOTES = {
    ENTRY_5H: "5 hour shift",
    ENTRY_8H: "8 hour full day",
    ENTRY_CUSTOM: "Overtime / bonus",
    ENTRY_EXPENSE: "Expense",
    ENTRY_PAYMENT: "Payment",
    ENTRY_TIP: "Tip",
}


def signed_amount(entry_type: str, amount: float) -> float:
    """Deductions are stored negative, everything else positive."""
    return -abs(amount) if entry_type in DEDUCTION_TYPES else abs(amount)


@dataclass(frozen=True)
class DayRow:
    user: User
    entries: tuple[Entry, ...]
    balance: float


@dataclass(frozen=True)
class PortalSummary:
    user: User
    balance: float
    month: PeriodTotals
    calendar: dict[date, list[Entry]]


class PayrollService:
    def __init__(self, repo, auth_service, settings_service):
        self.repo = repo
        self.auth = auth_service
        self.settings = settings_service

    # ---------- Writes ----------
    def _validate(self, entry_type: str, amount: float, hours: Optional[float]) -> None:
        if entry_type not in ENTRY_TYPES:
            raise ValidationError(f"Unknown entry type '{entry_type}'.")
        if amount is None or math.isnan(float(amount)):
            raise ValidationError("Amount is required.")
        if hours is not None and float(hours) < 0:
            raise ValidationError("Hours must be >= 0.")

    def _require_user(self, user_id: str) -> User:
        user = self.repo.get_user(user_id)
        if not user:
            raise NotFoundError("User not found.")
        return user

    def record_entry(
        self,
        actor: User,
        user_id: str,
        entry_type: str,
        amount: float,
        day: date,
        hours: Optional[float] = None,
        note: Optional[str] = None,
    ) -> Entry:
        self.auth.require_action(actor, "record_entries")
        self._validate(entry_type, amount, hours)
        self._require_user(user_id)

        entry = Entry(
            id=new_id(),
            user_id=user_id,
            type=entry_type,
            amount=signed_amount(entry_type, float(amount)),
            date=day,
            hours=float(hours) if hours else None,
            note=(note or "").strip() or DEFAULT_NOTES[entry_type],
        )
        self.repo.upsert_entry(entry)
        log.info(
            "entry_recorded entry_id=%s user_id=%s type=%s amount=%.2f date=%s actor=%s",
            entry.id, user_id, entry_type, entry.amount, day.isoformat(), actor.id,
        )
        return entry

    def quick_entry(self, actor: User, user_id: str, entry_type: str, day: date) -> Entry:
        if entry_type not in FIXED_SHIFT_HOURS:
            raise ValidationError("Quick entry is only available for 5H and 8H shifts.")
        shop: ShopSettings = self.settings.current()
        return self.record_entry(
            actor,
            user_id,
            entry_type,
            shop.amount_for(entry_type),
            day,
            hours=FIXED_SHIFT_HOURS[entry_type],
        )

    def update_entry(
        self,
        actor: User,
        entry_id: str,
        amount: float,
        hours: Optional[float] = None,
        note: Optional[str] = None,
        day: Optional[date] = None,
    ) -> Entry:
        self.auth.require_action(actor, "record_entries")
        current = self.repo.get_entry(entry_id)
        if not current:
            raise NotFoundError("Entry not found.")
        self._validate(current.type, amount, hours)

        # None keeps the stored value; a blank note clears it.
        updated = replace(
            current,
            amount=signed_amount(current.type, float(amount)),
            hours=current.hours if hours is None else (float(hours) or None),
            note=current.note if note is None else (note.strip() or None),
            date=day or current.date,
        )
        self.repo.upsert_entry(updated)
        log.info("entry_updated entry_id=%s amount=%.2f actor=%s", entry_id, updated.amount, actor.id)
        return updated

    def delete_entry(self, actor: User, entry_id: str) -> None:
        self.auth.require_action(actor, "record_entries")
        if not self.repo.delete_entry(entry_id):
            raise NotFoundError("Entry not found.")
        log.info("entry_deleted entry_id=%s actor=%s", entry_id, actor.id)

    def delete_tips_on(self, actor: User, day: date) -> int:
        self.auth.require_action(actor, "record_entries")
        removed = self.repo.delete_tips_on(day)
        log.info("tips_deleted date=%s count=%s actor=%s", day.isoformat(), removed, actor.id)
        return removed

    # ---------- Views ----------
    def entries_for_day(self, day: date) -> list[Entry]:
        return ledger.entries_on(self.repo.list_entries(), day)

    def daily_earnings(self, day: date) -> float:
        return ledger.daily_earnings(self.repo.list_entries(), day)

    def day_sheet(self, day: date) -> list[DayRow]:
        todays = self.entries_for_day(day)
        rows = []
        for user in self.repo.list_users():
            own = ledger.entries_for_user(todays, user.id)
            rows.append(DayRow(user=user, entries=tuple(own), balance=ledger.balance(own)))
        return rows

    def staff_balances(self) -> list[StaffBalance]:
        return ledger.staff_balances(self.repo.list_users(), self.repo.list_entries())

    def balance_for(self, user_id: str) -> float:
        return ledger.balance(ledger.entries_for_user(self.repo.list_entries(), user_id))

    def month_totals(self, user_id: str, year: int, month: int) -> PeriodTotals:
        own = ledger.entries_for_user(self.repo.list_entries(), user_id)
        return ledger.period_totals(ledger.entries_in_month(own, year, month))

    def month_calendar(self, user_id: str, year: int, month: int) -> dict[date, list[Entry]]:
        own = ledger.entries_for_user(self.repo.list_entries(), user_id)
        return ledger.group_by_day(ledger.entries_in_month(own, year, month))

    def portal(self, actor: User, today: date) -> PortalSummary:
        """Self-service view: a staff member sees only their own ledger."""
        self.auth.require_action(actor, "view_own_portal")
        own = ledger.entries_for_user(self.repo.list_entries(), actor.id)
        in_month = ledger.entries_in_month(own, today.year, today.month)
        return PortalSummary(
            user=actor,
            balance=ledger.balance(own),
            month=ledger.period_totals(in_month),
            calendar=ledger.group_by_day(in_month),
        )
