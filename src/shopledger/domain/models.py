from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional


ROLE_ADMIN = "ADMIN"
ROLE_STAFF = "STAFF"
ROLES = (ROLE_ADMIN, ROLE_STAFF)

ENTRY_5H = "5H"
ENTRY_8H = "8H"
ENTRY_CUSTOM = "CUSTOM"
ENTRY_EXPENSE = "EXPENSE"
ENTRY_PAYMENT = "PAYMENT"
ENTRY_TIP = "TIP"
ENTRY_TYPES = (ENTRY_5H, ENTRY_8H, ENTRY_CUSTOM, ENTRY_EXPENSE, ENTRY_PAYMENT, ENTRY_TIP)
DEDUCTION_TYPES = frozenset({ENTRY_EXPENSE, ENTRY_PAYMENT})
FIXED_SHIFT_HOURS = {ENTRY_5H: 5.0, ENTRY_8H: 8.0}

TX_PURCHASE = "PURCHASE"
TX_PAYMENT = "PAYMENT"
TRANSACTION_TYPES = (TX_PURCHASE, TX_PAYMENT)

BUCKET_0_30 = "0-30"
BUCKET_31_60 = "31-60"
BUCKET_61_90 = "61-90"
BUCKET_90_PLUS = "90+"


@dataclass(frozen=True)
class User:
    id: str
    name: str
    role: str
    hourly_rate: float = 0.0
    avatar: Optional[str] = None
    must_change_password: int = 0

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass(frozen=True)
class Entry:
    id: str
    user_id: str
    type: str
    amount: float
    date: date
    hours: Optional[float] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class Wholesaler:
    id: str
    name: str
    phone: Optional[str] = None
    contact_person: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    id: str
    wholesaler_id: str
    type: str
    amount: float
    date: date
    due_date: Optional[date] = None
    note: Optional[str] = None


# ---------- Derived views ----------

@dataclass(frozen=True)
class StaffBalance:
    user: User
    balance: float


@dataclass(frozen=True)
class PeriodTotals:
    income: float
    expense: float

    @property
    def net(self) -> float:
        return self.income - self.expense


@dataclass(frozen=True)
class WholesalerBalance:
    wholesaler: Wholesaler
    balance: float


@dataclass(frozen=True)
class UnpaidInvoice:
    purchase: Transaction
    wholesaler_name: str
    unpaid_amount: float

    @property
    def due_date(self) -> date:
        # only purchases with a due date become unpaid invoices
        return self.purchase.due_date  # type: ignore[return-value]

    def days_until_due(self, today: date) -> int:
        return (self.due_date - today).days


@dataclass
class AgingBuckets:
    buckets: dict[str, float] = field(
        default_factory=lambda: {BUCKET_0_30: 0.0, BUCKET_31_60: 0.0, BUCKET_61_90: 0.0, BUCKET_90_PLUS: 0.0}
    )

    def add(self, bucket: str, amount: float) -> None:
        self.buckets[bucket] += amount

    @property
    def total(self) -> float:
        return sum(self.buckets.values())


@dataclass(frozen=True)
class WeekWindow:
    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


@dataclass(frozen=True)
class TipShare:
    user: User
    hours: float
    share: int


@dataclass(frozen=True)
class TipDistribution:
    window: WeekWindow
    pool: float
    total_hours: float
    hourly_rate: float
    shares: tuple[TipShare, ...]

    @property
    def distributed(self) -> int:
        return sum(s.share for s in self.shares)

    @property
    def remainder(self) -> float:
        """Cash left over after flooring every share; handed out manually."""
        return self.pool - self.distributed
