from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import date
from typing import Optional

from shopledger.domain import ledger
from shopledger.domain.errors import NotFoundError, ValidationError
from shopledger.domain.models import (
    TRANSACTION_TYPES,
    TX_PURCHASE,
    AgingBuckets,
    Transaction,
    UnpaidInvoice,
    User,
    Wholesaler,
    WholesalerBalance,
)
from shopledger.security import new_id

log = logging.getLogger("shopledger.accounts")

OPENING_BALANCE_NOTE = "Opening balance"


def _clean(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


class AccountsService:
    """Supplier ledger: wholesalers, their purchases and payments, and the derived views."""

    def __init__(self, repo, auth_service, settings_service):
        self.repo = repo
        self.auth = auth_service
        self.settings = settings_service

    # ---------- Wholesalers ----------
    def list_wholesalers(self) -> list[Wholesaler]:
        return self.repo.list_wholesalers()

    def add_wholesaler(
        self,
        actor: User,
        name: str,
        today: date,
        opening_balance: Optional[float] = None,
        phone: Optional[str] = None,
        contact_person: Optional[str] = None,
    ) -> Wholesaler:
        self.auth.require_action(actor, "manage_accounts")
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError("Wholesaler name is required.")

        wholesaler = Wholesaler(id=new_id(), name=clean_name, phone=_clean(phone), contact_person=_clean(contact_person))
        opening = None
        if opening_balance is not None and not math.isnan(float(opening_balance)) and float(opening_balance) > 0:
            opening = Transaction(
                id=new_id(),
                wholesaler_id=wholesaler.id,
                type=TX_PURCHASE,
                amount=float(opening_balance),
                date=today,
                note=OPENING_BALANCE_NOTE,
            )

        self.repo.create_wholesaler_with_opening(wholesaler, opening)
        log.info(
            "wholesaler_created wholesaler_id=%s opening=%.2f actor=%s",
            wholesaler.id, opening.amount if opening else 0.0, actor.id,
        )
        return wholesaler

    def update_wholesaler(
        self,
        actor: User,
        wholesaler_id: str,
        name: str,
        phone: Optional[str] = None,
        contact_person: Optional[str] = None,
    ) -> Wholesaler:
        self.auth.require_action(actor, "manage_accounts")
        current = self._require_wholesaler(wholesaler_id)
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError("Wholesaler name is required.")
        updated = replace(current, name=clean_name, phone=_clean(phone), contact_person=_clean(contact_person))
        self.repo.upsert_wholesaler(updated)
        return updated

    def delete_wholesaler(self, actor: User, wholesaler_id: str, confirmation: str) -> None:
        """Remove a wholesaler with its whole statement. `confirmation` must repeat its name."""
        self.auth.require_action(actor, "manage_accounts")
        target = self._require_wholesaler(wholesaler_id)
        if confirmation.strip() != target.name:
            raise ValidationError(f"Type '{target.name}' to confirm deletion.")
        self.repo.delete_wholesaler_cascade(wholesaler_id)
        log.warning("wholesaler_deleted wholesaler_id=%s actor=%s", wholesaler_id, actor.id)

    def _require_wholesaler(self, wholesaler_id: str) -> Wholesaler:
        w = self.repo.get_wholesaler(wholesaler_id)
        if not w:
            raise NotFoundError("Wholesaler not found.")
        return w

    # ---------- Transactions ----------
    def _validate(self, tx_type: str, amount: float, day: date) -> None:
        if tx_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type '{tx_type}'.")
        if amount is None or math.isnan(float(amount)) or float(amount) <= 0:
            raise ValidationError("Amount must be > 0.")
        if day is None:
            raise ValidationError("Date is required.")

    def record_transaction(
        self,
        actor: User,
        wholesaler_id: str,
        tx_type: str,
        amount: float,
        day: date,
        due_date: Optional[date] = None,
        note: Optional[str] = None,
    ) -> Transaction:
        self.auth.require_action(actor, "manage_accounts")
        self._validate(tx_type, amount, day)
        self._require_wholesaler(wholesaler_id)

        tx = Transaction(
            id=new_id(),
            wholesaler_id=wholesaler_id,
            type=tx_type,
            amount=float(amount),
            date=day,
            due_date=due_date,
            note=_clean(note),
        )
        self.repo.upsert_transaction(tx)
        log.info(
            "transaction_recorded tx_id=%s wholesaler_id=%s type=%s amount=%.2f actor=%s",
            tx.id, wholesaler_id, tx_type, tx.amount, actor.id,
        )
        return tx

    def update_transaction(
        self,
        actor: User,
        transaction_id: str,
        tx_type: str,
        amount: float,
        day: date,
        due_date: Optional[date] = None,
        note: Optional[str] = None,
    ) -> Transaction:
        self.auth.require_action(actor, "manage_accounts")
        current = self.repo.get_transaction(transaction_id)
        if not current:
            raise NotFoundError("Transaction not found.")
        self._validate(tx_type, amount, day)

        updated = replace(current, type=tx_type, amount=float(amount), date=day, due_date=due_date, note=_clean(note))
        self.repo.upsert_transaction(updated)
        log.info("transaction_updated tx_id=%s actor=%s", transaction_id, actor.id)
        return updated

    def delete_transaction(self, actor: User, transaction_id: str) -> None:
        self.auth.require_action(actor, "manage_accounts")
        if not self.repo.delete_transaction(transaction_id):
            raise NotFoundError("Transaction not found.")
        log.info("transaction_deleted tx_id=%s actor=%s", transaction_id, actor.id)

    # ---------- Views ----------
    def balances(self) -> list[WholesalerBalance]:
        return ledger.wholesaler_balances(self.repo.list_wholesalers(), self.repo.list_transactions())

    def total_debt(self) -> float:
        return ledger.total_debt(self.balances())

    def unpaid_invoices(self) -> list[UnpaidInvoice]:
        return ledger.unpaid_invoices(self.repo.list_wholesalers(), self.repo.list_transactions())

    def upcoming_payments(self, today: date) -> list[UnpaidInvoice]:
        window = self.settings.current().upcoming_window_days
        return ledger.upcoming_invoices(self.unpaid_invoices(), today, window_days=window)

    def due_calendar(self, year: int, month: int) -> dict[date, list[UnpaidInvoice]]:
        return ledger.invoices_due_in_month(self.unpaid_invoices(), year, month)

    def aging(self, today: date) -> AgingBuckets:
        return ledger.balance_aging(self.repo.list_wholesalers(), self.repo.list_transactions(), today)

    def statement(self, wholesaler_id: str) -> list[Transaction]:
        self._require_wholesaler(wholesaler_id)
        own = [t for t in self.repo.list_transactions() if t.wholesaler_id == wholesaler_id]
        return sorted(own, key=lambda t: t.date, reverse=True)
