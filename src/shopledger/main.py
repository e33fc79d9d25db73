from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from datetime import date
from typing import Optional, Sequence

from shopledger.application.container import AppContainer, build_container
from shopledger.config import SETTINGS_KEYS, StoreSettings, get_app_paths
from shopledger.domain.errors import AppError, NotFoundError
from shopledger.domain.models import ENTRY_TYPES, ROLES, TRANSACTION_TYPES, Entry, User, Wholesaler
from shopledger.logging_config import setup_logging

log = logging.getLogger(__name__)


def _money(value: float, currency: str) -> str:
    return f"{value:,.2f} {currency}"


def _month(text: str) -> tuple[int, int]:
    try:
        year, month = (int(part) for part in text.split("-"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got '{text}'") from exc
    if not 1 <= month <= 12:
        raise argparse.ArgumentTypeError(f"month out of range in '{text}'")
    return year, month


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shopledger", description="Staff payroll, tips and supplier ledger.")
    parser.add_argument("--user", required=True, help="login name")
    parser.add_argument("--today", type=date.fromisoformat, default=None, help="reference date (YYYY-MM-DD)")
    sub = parser.add_subparsers(dest="command", required=True)

    # Reports
    sub.add_parser("balances", help="running balance per staff member")
    sub.add_parser("portal", help="your own balance and this month's totals")
    day = sub.add_parser("day", help="entries and balances for one day")
    day.add_argument("--date", type=date.fromisoformat, default=None)
    sub.add_parser("suppliers", help="outstanding balance per wholesaler")
    sub.add_parser("upcoming", help="unpaid invoices that are overdue or due soon")
    sub.add_parser("aging", help="outstanding supplier debt by age")
    cal = sub.add_parser("due-calendar", help="unpaid invoices grouped by due date")
    cal.add_argument("--month", type=_month, default=None, help="YYYY-MM, defaults to the current month")
    stmt = sub.add_parser("statement", help="transactions of one wholesaler, newest first")
    stmt.add_argument("wholesaler")

    tips = sub.add_parser("tips", help="split a weekly tip pool by hours worked")
    tips.add_argument("--sunday", type=date.fromisoformat, default=None, help="last day of the week")
    tips.add_argument("--pool", type=float, required=True, help="cash collected in the week")

    # Payroll entries
    add = sub.add_parser("add-entry", help="record a payroll entry")
    add.add_argument("staff")
    add.add_argument("type", type=str.upper, choices=ENTRY_TYPES)
    add.add_argument("amount", type=float)
    add.add_argument("--date", type=date.fromisoformat, default=None)
    add.add_argument("--hours", type=float, default=None)
    add.add_argument("--note", default=None)
    quick = sub.add_parser("quick-entry", help="record a fixed 5H or 8H shift")
    quick.add_argument("staff")
    quick.add_argument("type", type=str.upper, choices=("5H", "8H"))
    quick.add_argument("--date", type=date.fromisoformat, default=None)
    edit = sub.add_parser("edit-entry", help="change the amount, hours, note or date of an entry")
    edit.add_argument("entry_id")
    edit.add_argument("amount", type=float)
    edit.add_argument("--hours", type=float, default=None)
    edit.add_argument("--note", default=None, help="an empty string clears the note")
    edit.add_argument("--date", type=date.fromisoformat, default=None)
    rm = sub.add_parser("delete-entry", help="delete an entry by id")
    rm.add_argument("entry_id")
    rm_tips = sub.add_parser("delete-tips", help="delete every tip recorded on a date")
    rm_tips.add_argument("date", type=date.fromisoformat)

    # Supplier ledger
    ws = sub.add_parser("add-wholesaler", help="add a wholesaler with an optional opening balance")
    ws.add_argument("name")
    ws.add_argument("--opening", type=float, default=None, help="debt carried over")
    ws.add_argument("--phone", default=None)
    ws.add_argument("--contact", default=None)
    rm_ws = sub.add_parser("delete-wholesaler", help="delete a wholesaler and its transactions")
    rm_ws.add_argument("name")
    rm_ws.add_argument("--confirm", required=True, help="repeat the wholesaler's name")
    tx = sub.add_parser("add-transaction", help="record a purchase or payment")
    tx.add_argument("wholesaler")
    tx.add_argument("type", type=str.upper, choices=TRANSACTION_TYPES)
    tx.add_argument("amount", type=float)
    tx.add_argument("--date", type=date.fromisoformat, default=None)
    tx.add_argument("--due", type=date.fromisoformat, default=None, help="due date of a purchase")
    tx.add_argument("--note", default=None)
    rm_tx = sub.add_parser("delete-transaction", help="delete a transaction by id")
    rm_tx.add_argument("transaction_id")

    # Users and settings
    cu = sub.add_parser("add-user", help="create a user (password from SHOPLEDGER_NEW_PASSWORD or a prompt)")
    cu.add_argument("name")
    cu.add_argument("--role", type=str.upper, choices=ROLES, default="STAFF")
    cu.add_argument("--rate", type=float, default=0.0, help="hourly rate")
    uu = sub.add_parser("update-user", help="rename a user or change role, rate or password")
    uu.add_argument("name")
    uu.add_argument("--rename", default=None)
    uu.add_argument("--role", type=str.upper, choices=ROLES, default=None)
    uu.add_argument("--rate", type=float, default=None)
    uu.add_argument("--reset-password", action="store_true")
    du = sub.add_parser("delete-user", help="delete a user and their entries")
    du.add_argument("name")
    du.add_argument("--confirm", required=True, help="repeat the user's name")
    sub.add_parser("change-password", help="change your own password")
    sub.add_parser("settings", help="show shop settings")
    st = sub.add_parser("set-setting", help="update one shop setting")
    st.add_argument("key", choices=SETTINGS_KEYS)
    st.add_argument("value")

    # Backup and export
    exp = sub.add_parser("export-snapshot", help="write a JSON backup")
    exp.add_argument("path")
    imp = sub.add_parser("import-snapshot", help="load a JSON backup")
    imp.add_argument("path")
    rep = sub.add_parser("export-report", help="write an Excel report")
    rep.add_argument("path")
    rep.add_argument("--sunday", type=date.fromisoformat, default=None)
    rep.add_argument("--pool", type=float, default=None)
    return parser


def _login(app: AppContainer, name: str) -> User:
    password = os.environ.get("SHOPLEDGER_PASSWORD")
    if password is None:
        password = getpass.getpass(f"Password for {name}: ")
    return app.auth.login(name, password)


def _new_password(confirm: bool = False) -> tuple[str, str]:
    """Return (password, confirmation) from SHOPLEDGER_NEW_PASSWORD or interactive prompts."""
    password = os.environ.get("SHOPLEDGER_NEW_PASSWORD")
    if password is not None:
        return password, password
    password = getpass.getpass("New password: ")
    again = getpass.getpass("Repeat new password: ") if confirm else password
    return password, again


def _recorded(e: Entry, name: str, currency: str) -> str:
    return f"Recorded {e.type} {_money(e.amount, currency)} for {name} on {e.date.isoformat()} (id {e.id})"


def _find_user(app: AppContainer, name: str) -> User:
    for u in app.auth.list_users():
        if u.name == name.strip():
            return u
    raise NotFoundError(f"User '{name}' not found.")


def _find_wholesaler(app: AppContainer, name: str) -> Wholesaler:
    for w in app.accounts.list_wholesalers():
        if w.name == name.strip():
            return w
    raise NotFoundError(f"Wholesaler '{name}' not found.")


def _write(app: AppContainer, user: User, args: argparse.Namespace, today: date, currency: str, out) -> bool:
    """Handle the commands that change data; each service checks its own permission."""
    cmd = args.command
    if cmd == "add-entry":
        staff = _find_user(app, args.staff)
        e = app.payroll.record_entry(
            user, staff.id, args.type, args.amount, args.date or today, hours=args.hours, note=args.note
        )
        print(_recorded(e, staff.name, currency), file=out)
    elif cmd == "quick-entry":
        staff = _find_user(app, args.staff)
        e = app.payroll.quick_entry(user, staff.id, args.type, args.date or today)
        print(_recorded(e, staff.name, currency), file=out)
    elif cmd == "edit-entry":
        e = app.payroll.update_entry(user, args.entry_id, args.amount, hours=args.hours, note=args.note, day=args.date)
        print(f"Updated {e.id}: {e.type} {_money(e.amount, currency)} on {e.date.isoformat()}", file=out)
    elif cmd == "delete-entry":
        app.payroll.delete_entry(user, args.entry_id)
        print(f"Deleted entry {args.entry_id}", file=out)
    elif cmd == "delete-tips":
        removed = app.payroll.delete_tips_on(user, args.date)
        print(f"Deleted {removed} tip entries on {args.date.isoformat()}", file=out)
    elif cmd == "add-wholesaler":
        w = app.accounts.add_wholesaler(
            user, args.name, today, opening_balance=args.opening, phone=args.phone, contact_person=args.contact
        )
        print(f"Added wholesaler {w.name} (id {w.id})", file=out)
    elif cmd == "delete-wholesaler":
        w = _find_wholesaler(app, args.name)
        app.accounts.delete_wholesaler(user, w.id, args.confirm)
        print(f"Deleted wholesaler {w.name}", file=out)
    elif cmd == "add-transaction":
        w = _find_wholesaler(app, args.wholesaler)
        t = app.accounts.record_transaction(
            user, w.id, args.type, args.amount, args.date or today, due_date=args.due, note=args.note
        )
        print(f"Recorded {t.type} {_money(t.amount, currency)} for {w.name} (id {t.id})", file=out)
    elif cmd == "delete-transaction":
        app.accounts.delete_transaction(user, args.transaction_id)
        print(f"Deleted transaction {args.transaction_id}", file=out)
    elif cmd == "add-user":
        password, _ = _new_password()
        uid = app.auth.create_user(user, args.name, password, role=args.role, hourly_rate=args.rate)
        print(f"Created user {args.name.strip()} (id {uid})", file=out)
    elif cmd == "update-user":
        target = _find_user(app, args.name)
        new_password = _new_password()[0] if args.reset_password else None
        app.auth.update_user(
            user,
            target.id,
            args.rename if args.rename is not None else target.name,
            args.role or target.role,
            target.hourly_rate if args.rate is None else args.rate,
            avatar=target.avatar,
            new_password=new_password,
        )
        print(f"Updated user {target.name}", file=out)
    elif cmd == "delete-user":
        target = _find_user(app, args.name)
        app.auth.delete_user(user, target.id, args.confirm)
        print(f"Deleted user {target.name}", file=out)
    elif cmd == "change-password":
        current = os.environ.get("SHOPLEDGER_PASSWORD")
        if current is None:
            current = getpass.getpass("Current password: ")
        password, again = _new_password(confirm=True)
        app.auth.change_my_password(user, current, password, again)
        print("Password changed", file=out)
    elif cmd == "set-setting":
        updated = app.settings.update(user, **{args.key: args.value})
        print(f"{args.key} = {updated.to_mapping()[args.key]}", file=out)
    else:
        return False
    return True


def run(app: AppContainer, args: argparse.Namespace, out=None) -> int:
    out = out or sys.stdout
    user = _login(app, args.user)
    today = args.today or date.today()
    currency = app.settings.current().currency

    if args.command == "portal":
        summary = app.payroll.portal(user, today)
        print(f"{summary.user.name}: balance {_money(summary.balance, currency)}", file=out)
        print(
            f"{today:%Y-%m} income {_money(summary.month.income, currency)}"
            f" expense {_money(summary.month.expense, currency)}"
            f" net {_money(summary.month.net, currency)}",
            file=out,
        )
        for day, entries in summary.calendar.items():
            for e in entries:
                print(f"  {day.isoformat()}  {e.type:<8} {_money(e.amount, currency):>16}  {e.note or ''}", file=out)
        return 0

    if args.command == "import-snapshot":
        counts = app.snapshots.import_snapshot(user, args.path)
        print(", ".join(f"{k}={v}" for k, v in counts.items()), file=out)
        return 0

    if _write(app, user, args, today, currency, out):
        return 0

    app.auth.require_action(user, "view_reports")

    if args.command == "balances":
        for row in app.payroll.staff_balances():
            print(f"{row.user.name:<24} {_money(row.balance, currency):>16}", file=out)
    elif args.command == "day":
        day = args.date or today
        for row in app.payroll.day_sheet(day):
            if not row.entries:
                continue
            print(f"{row.user.name:<24} {_money(row.balance, currency):>16}", file=out)
            for e in row.entries:
                hours = f"{e.hours:g}h" if e.hours else ""
                print(f"  {e.id}  {e.type:<8} {_money(e.amount, currency):>16} {hours:>6}  {e.note or ''}", file=out)
        print(f"Earnings {day.isoformat()}: {_money(app.payroll.daily_earnings(day), currency)}", file=out)
    elif args.command == "suppliers":
        for row in app.accounts.balances():
            print(f"{row.wholesaler.name:<24} {_money(row.balance, currency):>16}", file=out)
        print(f"{'Total debt':<24} {_money(app.accounts.total_debt(), currency):>16}", file=out)
    elif args.command == "upcoming":
        for inv in app.accounts.upcoming_payments(today):
            days = inv.days_until_due(today)
            when = f"{-days}d overdue" if days < 0 else f"in {days}d"
            print(
                f"{inv.due_date.isoformat()} {when:<12} {inv.wholesaler_name:<24}"
                f" {_money(inv.unpaid_amount, currency):>16}",
                file=out,
            )
    elif args.command == "due-calendar":
        year, month = args.month or (today.year, today.month)
        for due, invoices in sorted(app.accounts.due_calendar(year, month).items()):
            for inv in invoices:
                print(f"{due.isoformat()} {inv.wholesaler_name:<24} {_money(inv.unpaid_amount, currency):>16}", file=out)
    elif args.command == "statement":
        w = _find_wholesaler(app, args.wholesaler)
        for t in app.accounts.statement(w.id):
            due = f"due {t.due_date.isoformat()}" if t.due_date else ""
            print(
                f"{t.date.isoformat()} {t.type:<8} {_money(t.amount, currency):>16} {due:<14} {t.note or ''}",
                file=out,
            )
    elif args.command == "aging":
        aging = app.accounts.aging(today)
        for bucket, amount in aging.buckets.items():
            print(f"{bucket:<8} {_money(amount, currency):>16}", file=out)
        print(f"{'Total':<8} {_money(aging.total, currency):>16}", file=out)
    elif args.command == "tips":
        sunday = args.sunday or app.tips.suggested_sunday(today)
        dist = app.tips.distribute(sunday, args.pool)
        print(
            f"Week {dist.window.start.isoformat()} -> {dist.window.end.isoformat()}:"
            f" {dist.total_hours:g}h, {dist.hourly_rate:.2f} {currency}/h",
            file=out,
        )
        for share in dist.shares:
            print(f"{share.user.name:<24} {share.hours:>6g}h {share.share:>8} {currency}", file=out)
        print(f"Distributed {dist.distributed} {currency}, remainder {dist.remainder:g} {currency}", file=out)
    elif args.command == "settings":
        for key, value in app.settings.current().to_mapping().items():
            print(f"{key:<24} {value}", file=out)
    elif args.command == "export-snapshot":
        path = app.snapshots.export_snapshot(args.path)
        print(f"Snapshot written to {path}", file=out)
    elif args.command == "export-report":
        app.reporting.export_workbook(args.path, today, sunday=args.sunday, pool=args.pool)
        print(f"Report written to {args.path}", file=out)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    try:
        app = build_container(paths.db_path, StoreSettings.from_env())
        return run(app, args)
    except AppError as exc:
        log.error("command_failed command=%s error=%s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
