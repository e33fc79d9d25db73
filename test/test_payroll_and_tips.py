from datetime import date
from pathlib import Path

import pytest

from conftest import set_admin_password

from shopledger.config import SETTINGS_KEYS, ShopSettings
from shopledger.domain.errors import AuthorizationError, NotFoundError, ValidationError
from shopledger.repositories.sqlite_repo import SqliteRepository
from shopledger.services.auth_service import AuthService
from shopledger.services.payroll_service import PayrollService
from shopledger.services.settings_service import SettingsService
from shopledger.services.tip_service import TipService

DAY = date(2024, 6, 12)
SUNDAY = date(2024, 6, 16)


@pytest.fixture()
def shop(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "payroll.db")
    repo.init_db()
    auth = AuthService(repo)
    admin = auth.login("admin", set_admin_password(repo))
    settings = SettingsService(repo, auth)
    payroll = PayrollService(repo, auth, settings)
    ali = repo.get_user(auth.create_user(admin, "Ali", "ali1", hourly_rate=100))
    ayse = repo.get_user(auth.create_user(admin, "Ayse", "ayse1", hourly_rate=100))
    return repo, auth, settings, payroll, admin, ali, ayse


def test_amount_sign_follows_entry_type(shop):
    _repo, _auth, _settings, payroll, admin, ali, _ayse = shop

    assert payroll.record_entry(admin, ali.id, "CUSTOM", 150, DAY).amount == 150.0
    assert payroll.record_entry(admin, ali.id, "PAYMENT", 100, DAY).amount == -100.0
    assert payroll.record_entry(admin, ali.id, "EXPENSE", -30, DAY).amount == -30.0
    assert payroll.record_entry(admin, ali.id, "TIP", 40, DAY).amount == 40.0

    assert payroll.balance_for(ali.id) == pytest.approx(20.0)


def test_default_note_per_type(shop):
    _repo, _auth, _settings, payroll, admin, ali, _ayse = shop
    assert payroll.record_entry(admin, ali.id, "PAYMENT", 10, DAY).note == "Payment"
    assert payroll.record_entry(admin, ali.id, "CUSTOM", 10, DAY, note="  ").note == "Overtime / bonus"
    assert payroll.record_entry(admin, ali.id, "CUSTOM", 10, DAY, note="Inventory night").note == "Inventory night"


def test_quick_entry_uses_configured_shift_amounts(shop):
    _repo, _auth, settings, payroll, admin, ali, _ayse = shop

    five = payroll.quick_entry(admin, ali.id, "5H", DAY)
    eight = payroll.quick_entry(admin, ali.id, "8H", DAY)
    assert (five.amount, five.hours, five.note) == (800.0, 5.0, "5 hour shift")
    assert (eight.amount, eight.hours) == (500.0, 8.0)

    settings.update(admin, fixed_8h_amount=650)
    assert payroll.quick_entry(admin, ali.id, "8H", DAY).amount == 650.0

    with pytest.raises(ValidationError, match="only available for 5H and 8H"):
        payroll.quick_entry(admin, ali.id, "CUSTOM", DAY)


def test_record_entry_validation(shop):
    _repo, _auth, _settings, payroll, admin, ali, _ayse = shop
    with pytest.raises(ValidationError, match="Unknown entry type"):
        payroll.record_entry(admin, ali.id, "BONUS", 10, DAY)
    with pytest.raises(ValidationError, match="Amount is required"):
        payroll.record_entry(admin, ali.id, "CUSTOM", float("nan"), DAY)
    with pytest.raises(ValidationError, match="Hours must be"):
        payroll.record_entry(admin, ali.id, "CUSTOM", 10, DAY, hours=-1)
    with pytest.raises(NotFoundError):
        payroll.record_entry(admin, "missing", "CUSTOM", 10, DAY)


def test_staff_cannot_record_entries(shop):
    _repo, auth, _settings, payroll, _admin, ali, _ayse = shop
    staff = auth.login("Ali", "ali1")
    with pytest.raises(AuthorizationError):
        payroll.record_entry(staff, ali.id, "CUSTOM", 1000, DAY)


def test_update_and_delete_entry(shop):
    _repo, _auth, _settings, payroll, admin, ali, _ayse = shop
    e = payroll.record_entry(admin, ali.id, "PAYMENT", 100, DAY)

    updated = payroll.update_entry(admin, e.id, 250, note="Advance")
    assert updated.amount == -250.0
    assert updated.note == "Advance"
    assert payroll.balance_for(ali.id) == -250.0

    payroll.delete_entry(admin, e.id)
    assert payroll.balance_for(ali.id) == 0.0
    with pytest.raises(NotFoundError):
        payroll.delete_entry(admin, e.id)


def test_editing_amount_keeps_shift_hours_in_tip_split(shop):
    repo, _auth, _settings, payroll, admin, ali, _ayse = shop
    shift = payroll.quick_entry(admin, ali.id, "8H", DAY)

    edited = payroll.update_entry(admin, shift.id, 600)
    assert edited.hours == 8.0
    assert repo.get_entry(shift.id).hours == 8.0

    dist = TipService(repo).distribute(SUNDAY, 800)
    assert [(s.user.name, s.share) for s in dist.shares] == [("Ali", 800)]


def test_update_entry_note_is_kept_or_cleared(shop):
    _repo, _auth, _settings, payroll, admin, ali, _ayse = shop
    e = payroll.record_entry(admin, ali.id, "CUSTOM", 100, DAY, note="Inventory night")

    assert payroll.update_entry(admin, e.id, 120).note == "Inventory night"
    assert payroll.update_entry(admin, e.id, 120, note="  ").note is None
    assert payroll.update_entry(admin, e.id, 120, hours=0).hours is None


def test_delete_tips_on_removes_only_that_days_tips(shop):
    repo, _auth, _settings, payroll, admin, ali, ayse = shop
    payroll.record_entry(admin, ali.id, "TIP", 50, DAY)
    payroll.record_entry(admin, ayse.id, "TIP", 70, DAY)
    payroll.record_entry(admin, ali.id, "TIP", 20, date(2024, 6, 13))
    payroll.record_entry(admin, ali.id, "CUSTOM", 10, DAY)

    assert payroll.delete_tips_on(admin, DAY) == 2
    remaining = sorted((e.type, e.date) for e in repo.list_entries())
    assert remaining == [("CUSTOM", DAY), ("TIP", date(2024, 6, 13))]


def test_day_sheet_and_daily_earnings(shop):
    _repo, _auth, _settings, payroll, admin, ali, ayse = shop
    payroll.quick_entry(admin, ali.id, "8H", DAY)
    payroll.record_entry(admin, ayse.id, "PAYMENT", 200, DAY)
    payroll.record_entry(admin, ayse.id, "TIP", 30, DAY)

    assert payroll.daily_earnings(DAY) == 500.0
    sheet = {row.user.name: row for row in payroll.day_sheet(DAY)}
    assert sheet["Ali"].balance == 500.0
    assert sheet["Ayse"].balance == -200.0
    assert len(sheet["Ayse"].entries) == 2
    assert sheet["admin"].entries == ()


def test_portal_shows_only_own_entries(shop):
    _repo, auth, _settings, payroll, admin, ali, ayse = shop
    payroll.quick_entry(admin, ali.id, "5H", DAY)
    payroll.record_entry(admin, ali.id, "PAYMENT", 300, DAY)
    payroll.record_entry(admin, ali.id, "CUSTOM", 99, date(2024, 5, 30))
    payroll.quick_entry(admin, ayse.id, "8H", DAY)

    staff = auth.login("Ali", "ali1")
    summary = payroll.portal(staff, DAY)

    assert summary.balance == pytest.approx(599.0)
    assert summary.month.income == 800.0
    assert summary.month.expense == 300.0
    assert list(summary.calendar) == [DAY]
    assert all(e.user_id == ali.id for day in summary.calendar.values() for e in day)


def test_tip_distribution_from_recorded_hours(shop):
    repo, _auth, _settings, payroll, admin, ali, ayse = shop
    payroll.record_entry(admin, ali.id, "CUSTOM", 0.01, DAY, hours=10)
    payroll.record_entry(admin, ayse.id, "CUSTOM", 0.01, DAY, hours=30)
    tips = TipService(repo)

    dist = tips.distribute(SUNDAY, 1000)
    assert {s.user.name: s.share for s in dist.shares} == {"Ali": 250, "Ayse": 750}
    # advisory only
    assert len(repo.list_entries()) == 2

    with pytest.raises(ValidationError, match="Tip pool is required"):
        tips.distribute(SUNDAY, float("nan"))


def test_settings_validation_and_unknown_keys(shop):
    repo, _auth, settings, _payroll, admin, _ali, _ayse = shop
    assert settings.current().upcoming_window_days == 6

    with pytest.raises(ValidationError, match="between 0 and 60"):
        settings.update(admin, upcoming_window_days=90)
    with pytest.raises(ValidationError, match=">= 0"):
        settings.update(admin, fixed_5h_amount=-1)
    with pytest.raises(ValidationError, match="Unknown settings"):
        settings.update(admin, theme="dark")

    repo.save_settings({"theme": "dark"})
    updated = settings.update(admin, currency="EUR")
    assert updated.currency == "EUR"
    assert repo.get_settings()["theme"] == "dark"

    defaults = ShopSettings().to_mapping()
    assert set(defaults) == set(SETTINGS_KEYS)
    assert settings.update(admin, **defaults) == ShopSettings()


@pytest.mark.parametrize(
    "values",
    [
        {"upcoming_window_days": "inf"},
        {"upcoming_window_days": "-inf"},
        {"upcoming_window_days": "nan"},
        {"fixed_5h_amount": "nan"},
        {"fixed_8h_amount": "inf"},
    ],
)
def test_non_finite_settings_are_rejected(values):
    with pytest.raises(ValidationError):
        ShopSettings.from_mapping(values)


def test_staff_cannot_change_settings(shop):
    _repo, auth, settings, _payroll, _admin, _ali, _ayse = shop
    staff = auth.login("Ali", "ali1")
    with pytest.raises(AuthorizationError):
        settings.update(staff, currency="USD")
