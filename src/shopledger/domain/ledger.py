"""Ledger aggregations over in-memory snapshots of entries and transactions.

Every function here is pure: it never touches the store and returns the same
result for the same inputs. Services load the collections and call in.
"""
from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Sequence

from shopledger.domain.models import (
    BUCKET_0_30,
    BUCKET_31_60,
    BUCKET_61_90,
    BUCKET_90_PLUS,
    ENTRY_TIP,
    TX_PAYMENT,
    TX_PURCHASE,
    AgingBuckets,
    Entry,
    PeriodTotals,
    StaffBalance,
    TipDistribution,
    TipShare,
    Transaction,
    UnpaidInvoice,
    User,
    WeekWindow,
    Wholesaler,
    WholesalerBalance,
)

UPCOMING_WINDOW_DAYS = 6


# ---------- Payroll ----------

def balance(entries: Iterable[Entry]) -> float:
    """Signed payroll balance. Tips are informational and never counted."""
    return sum((e.amount for e in entries if e.type != ENTRY_TIP), 0.0)


def entries_for_user(entries: Iterable[Entry], user_id: str) -> list[Entry]:
    return [e for e in entries if e.user_id == user_id]


def entries_on(entries: Iterable[Entry], day: date) -> list[Entry]:
    return [e for e in entries if e.date == day]


def entries_in_month(entries: Iterable[Entry], year: int, month: int) -> list[Entry]:
    return [e for e in entries if e.date.year == year and e.date.month == month]


def period_totals(entries: Iterable[Entry]) -> PeriodTotals:
    income = 0.0
    expense = 0.0
    for e in entries:
        if e.type == ENTRY_TIP:
            continue
        if e.amount > 0:
            income += e.amount
        elif e.amount < 0:
            expense += abs(e.amount)
    return PeriodTotals(income=income, expense=expense)


def daily_earnings(entries: Iterable[Entry], day: date) -> float:
    return period_totals(entries_on(entries, day)).income


def staff_balances(users: Iterable[User], entries: Sequence[Entry]) -> list[StaffBalance]:
    by_user: dict[str, list[Entry]] = defaultdict(list)
    for e in entries:
        by_user[e.user_id].append(e)
    rows = [StaffBalance(user=u, balance=balance(by_user.get(u.id, []))) for u in users]
    return sorted(rows, key=lambda r: r.balance, reverse=True)


def group_by_day(entries: Iterable[Entry]) -> dict[date, list[Entry]]:
    days: dict[date, list[Entry]] = defaultdict(list)
    for e in entries:
        days[e.date].append(e)
    return dict(sorted(days.items()))


# ---------- Suppliers ----------

def _transactions_for(transactions: Iterable[Transaction], wholesaler_id: str) -> list[Transaction]:
    return [t for t in transactions if t.wholesaler_id == wholesaler_id]


def wholesaler_balance(transactions: Iterable[Transaction]) -> float:
    """Purchases minus payments. Negative means the supplier was overpaid."""
    total = 0.0
    for t in transactions:
        total += t.amount if t.type == TX_PURCHASE else -t.amount
    return total


def wholesaler_balances(
    wholesalers: Iterable[Wholesaler], transactions: Sequence[Transaction]
) -> list[WholesalerBalance]:
    rows = [
        WholesalerBalance(wholesaler=w, balance=wholesaler_balance(_transactions_for(transactions, w.id)))
        for w in wholesalers
    ]
    return sorted(rows, key=lambda r: r.balance, reverse=True)


def total_debt(balances: Iterable[WholesalerBalance]) -> float:
    return sum((b.balance for b in balances), 0.0)


def unpaid_invoices(wholesalers: Iterable[Wholesaler], transactions: Sequence[Transaction]) -> list[UnpaidInvoice]:
    """FIFO: payments are not linked to invoices, so the oldest purchases are settled first.

    Purchases without a due date are skipped even when money is still owed on
    them; they only count towards the supplier balance.
    """
    out: list[UnpaidInvoice] = []
    for w in wholesalers:
        own = _transactions_for(transactions, w.id)
        total_paid = sum((t.amount for t in own if t.type == TX_PAYMENT), 0.0)
        purchases = sorted((t for t in own if t.type == TX_PURCHASE), key=lambda t: t.date)

        for p in purchases:
            paid_for_this = min(p.amount, total_paid)
            total_paid -= paid_for_this
            remaining = p.amount - paid_for_this
            if remaining > 0 and p.due_date is not None:
                out.append(UnpaidInvoice(purchase=p, wholesaler_name=w.name, unpaid_amount=remaining))
    return out


def upcoming_invoices(
    unpaid: Iterable[UnpaidInvoice], today: date, window_days: int = UPCOMING_WINDOW_DAYS
) -> list[UnpaidInvoice]:
    """Overdue invoices plus those due within `window_days`, soonest first."""
    urgent = [inv for inv in unpaid if inv.days_until_due(today) <= window_days]
    return sorted(urgent, key=lambda inv: inv.due_date)


def invoices_due_in_month(unpaid: Iterable[UnpaidInvoice], year: int, month: int) -> dict[date, list[UnpaidInvoice]]:
    days: dict[date, list[UnpaidInvoice]] = defaultdict(list)
    for inv in unpaid:
        if inv.due_date.year == year and inv.due_date.month == month:
            days[inv.due_date].append(inv)
    return dict(sorted(days.items()))


def _bucket_for(age_days: int) -> str:
    if age_days <= 30:
        return BUCKET_0_30
    if age_days <= 60:
        return BUCKET_31_60
    if age_days <= 90:
        return BUCKET_61_90
    return BUCKET_90_PLUS


def balance_aging(
    wholesalers: Iterable[Wholesaler], transactions: Sequence[Transaction], today: date
) -> AgingBuckets:
    """LIFO: the outstanding balance is carried by the newest purchases.

    The opposite allocation order to `unpaid_invoices`.
    """
    stats = AgingBuckets()
    for w in wholesalers:
        own = _transactions_for(transactions, w.id)
        outstanding = wholesaler_balance(own)
        if outstanding <= 0:
            continue

        purchases = sorted((t for t in own if t.type == TX_PURCHASE), key=lambda t: t.date, reverse=True)
        remaining = outstanding
        for p in purchases:
            if remaining <= 0:
                break
            placed = min(p.amount, remaining)
            stats.add(_bucket_for((today - p.date).days), placed)
            remaining -= placed

        # balance larger than the purchase history (inconsistent data)
        if remaining > 0:
            stats.add(BUCKET_90_PLUS, remaining)
    return stats


# ---------- Tips ----------

def week_window(sunday: date) -> WeekWindow:
    return WeekWindow(start=sunday - timedelta(days=6), end=sunday)


def suggested_sunday(today: date) -> date:
    # weekday(): Monday=0 .. Sunday=6
    return today + timedelta(days=6 - today.weekday())


def weekly_hours(users: Iterable[User], entries: Sequence[Entry], window: WeekWindow) -> list[tuple[User, float]]:
    """Hours per user inside the window; users who did not work are left out."""
    rows = []
    for u in users:
        total = sum(
            (e.hours for e in entries if e.user_id == u.id and window.contains(e.date) and e.hours),
            0.0,
        )
        if total > 0:
            rows.append((u, total))
    return rows


def tip_distribution(users: Iterable[User], entries: Sequence[Entry], sunday: date, pool: float) -> TipDistribution:
    window = week_window(sunday)
    worked = weekly_hours(users, entries, window)
    total_hours = sum((h for _u, h in worked), 0.0)

    if pool <= 0 or total_hours == 0:
        rate = 0.0
    else:
        rate = pool / total_hours

    shares = tuple(TipShare(user=u, hours=h, share=math.floor(h * rate)) for u, h in worked)
    return TipDistribution(window=window, pool=float(pool), total_hours=total_hours, hourly_rate=rate, shares=shares)
