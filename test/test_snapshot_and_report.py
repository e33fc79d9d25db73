import json
from datetime import date, timedelta
from pathlib import Path

import pytest
from openpyxl import load_workbook

from conftest import set_admin_password

from shopledger.application.container import build_container
from shopledger.domain.errors import AuthorizationError, SnapshotError

TODAY = date(2024, 6, 15)


def _seeded(tmp_path: Path, name: str = "shop.db"):
    app = build_container(tmp_path / name)
    admin = app.auth.login("admin", set_admin_password(app.repo))
    uid = app.auth.create_user(admin, "Ali", "ali1")
    app.payroll.quick_entry(admin, uid, "8H", TODAY)
    app.payroll.record_entry(admin, uid, "TIP", 45, TODAY)
    w = app.accounts.add_wholesaler(admin, "Metro", TODAY, opening_balance=900)
    app.accounts.record_transaction(
        admin, w.id, "PURCHASE", 250, TODAY - timedelta(days=40), due_date=TODAY + timedelta(days=2)
    )
    app.settings.update(admin, currency="EUR")
    return app, admin


def test_export_snapshot_writes_versioned_document(tmp_path: Path):
    app, _admin = _seeded(tmp_path)

    path = app.snapshots.export_snapshot(tmp_path)
    assert path.name.startswith("ShopLedger_Backup_") and path.suffix == ".json"

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["version"] == "1.0"
    assert "timestamp" in data
    assert {u["name"] for u in data["users"]} == {"admin", "Ali"}
    assert {e["type"] for e in data["entries"]} == {"8H", "TIP"}
    assert len(data["transactions"]) == 2
    assert data["settings"]["currency"] == "EUR"
    assert all("user_id" in e for e in data["entries"])


def test_snapshot_moves_whole_store_to_a_fresh_database(tmp_path: Path):
    source, _admin = _seeded(tmp_path, "source.db")
    snap = source.snapshots.export_snapshot(tmp_path / "backup.json")

    (tmp_path / "target").mkdir()
    target = build_container(tmp_path / "target" / "fresh.db")
    admin = target.auth.login("admin", set_admin_password(target.repo))
    counts = target.snapshots.import_snapshot(admin, snap)

    assert counts == {"users": 2, "entries": 2, "wholesalers": 1, "transactions": 2}
    assert target.payroll.staff_balances()[0].balance == 500.0
    assert target.accounts.total_debt() == 1150.0
    assert target.settings.current().currency == "EUR"
    assert target.auth.login("Ali", "ali1").name == "Ali"


def test_import_is_upsert_and_keeps_unrelated_rows(tmp_path: Path):
    app, admin = _seeded(tmp_path)
    snap = app.snapshots.export_snapshot(tmp_path / "backup.json")

    extra = app.accounts.add_wholesaler(admin, "Bim", TODAY)
    app.snapshots.import_snapshot(admin, snap)
    app.snapshots.import_snapshot(admin, snap)

    assert {w.id for w in app.accounts.list_wholesalers()} >= {extra.id}
    assert len(app.repo.list_entries()) == 2


@pytest.mark.parametrize(
    "payload,message",
    [
        ("not json", "Could not read snapshot"),
        ("[]", "expected a JSON object"),
        ('{"version": "1.0", "users": []}', "'users' and 'entries' are required"),
        ('{"version": "2.0", "users": [], "entries": []}', "Unsupported snapshot version"),
        ('{"users": [], "entries": [], "transactions": {}}', "'transactions' must be a list"),
        ('{"users": [{"id": "x", "name": "X", "role": "OWNER"}], "entries": []}', "unknown role"),
        ('{"users": [], "entries": [{"id": "e"}]}', "Invalid row 0 in 'entries'"),
    ],
)
def test_invalid_snapshot_is_rejected_before_writing(tmp_path: Path, payload, message):
    app, admin = _seeded(tmp_path)
    before = len(app.repo.list_entries())
    bad = tmp_path / "bad.json"
    bad.write_text(payload, encoding="utf-8")

    with pytest.raises(SnapshotError, match=message):
        app.snapshots.import_snapshot(admin, bad)
    assert len(app.repo.list_entries()) == before


def test_staff_cannot_import_snapshot(tmp_path: Path):
    app, _admin = _seeded(tmp_path)
    snap = app.snapshots.export_snapshot(tmp_path / "backup.json")
    staff = app.auth.login("Ali", "ali1")
    with pytest.raises(AuthorizationError):
        app.snapshots.import_snapshot(staff, snap)


def test_excel_report_has_one_sheet_per_view(tmp_path: Path):
    app, _admin = _seeded(tmp_path)
    out = tmp_path / "report.xlsx"

    app.reporting.export_workbook(str(out), TODAY)
    wb = load_workbook(out)
    assert wb.sheetnames == ["Staff Balances", "Suppliers", "Upcoming Payments", "Aging"]

    staff = {r[0]: r[2] for r in wb["Staff Balances"].iter_rows(min_row=2, values_only=True)}
    assert staff == {"Ali": 500.0, "admin": 0.0}

    upcoming = list(wb["Upcoming Payments"].iter_rows(min_row=4, values_only=True))
    assert [(r[2], r[5]) for r in upcoming] == [("Metro", 250.0)]

    aging = {r[0]: r[1] for r in wb["Aging"].iter_rows(min_row=2, values_only=True)}
    assert aging["Total"] == 1150.0


def test_excel_report_includes_tips_when_pool_given(tmp_path: Path):
    app, _admin = _seeded(tmp_path)
    out = tmp_path / "report_tips.xlsx"

    app.reporting.export_workbook(str(out), TODAY, sunday=date(2024, 6, 16), pool=300)
    ws = load_workbook(out)["Tips"]
    shares = [r for r in ws.iter_rows(min_row=10, values_only=True) if r[0]]
    assert shares == [("Ali", 8.0, 300)]
