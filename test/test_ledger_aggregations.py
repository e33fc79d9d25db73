from datetime import date, timedelta

import pytest

from shopledger.domain import ledger
from shopledger.domain.models import (
    BUCKET_0_30,
    BUCKET_31_60,
    BUCKET_61_90,
    BUCKET_90_PLUS,
    Entry,
    Transaction,
    User,
    Wholesaler,
)

TODAY = date(2024, 6, 15)

ALI = User(id="u1", name="Ali", role="STAFF")
AYSE = User(id="u2", name="Ayse", role="STAFF")
METRO = Wholesaler(id="w1", name="Metro", phone=None, contact_person=None)


def entry(eid, user, etype, amount, day, hours=None):
    return Entry(id=eid, user_id=user.id, type=etype, amount=amount, date=day, hours=hours)


def purchase(tid, amount, day, due=None, wholesaler=METRO):
    return Transaction(id=tid, wholesaler_id=wholesaler.id, type="PURCHASE", amount=amount, date=day, due_date=due)


def payment(tid, amount, day, wholesaler=METRO):
    return Transaction(id=tid, wholesaler_id=wholesaler.id, type="PAYMENT", amount=amount, date=day)


# ---------- Payroll ----------

def test_balance_ignores_tips():
    entries = [
        entry("e1", ALI, "8H", 500.0, TODAY, hours=8),
        entry("e2", ALI, "EXPENSE", -120.0, TODAY),
        entry("e3", ALI, "TIP", 300.0, TODAY),
    ]
    assert ledger.balance(entries) == pytest.approx(380.0)


def test_balance_is_the_same_on_repeated_calls():
    entries = [entry("e1", ALI, "5H", 800.0, TODAY, hours=5), entry("e2", ALI, "PAYMENT", -800.0, TODAY)]
    assert ledger.balance(entries) == ledger.balance(entries) == 0.0


def test_balance_of_no_entries_is_zero():
    assert ledger.balance([]) == 0.0


def test_staff_balances_sorted_highest_first():
    entries = [
        entry("e1", ALI, "CUSTOM", 100.0, TODAY),
        entry("e2", AYSE, "CUSTOM", 250.0, TODAY),
    ]
    rows = ledger.staff_balances([ALI, AYSE], entries)
    assert [r.user.id for r in rows] == ["u2", "u1"]
    assert rows[0].balance == 250.0


def test_period_totals_split_income_and_expense():
    entries = [
        entry("e1", ALI, "8H", 500.0, TODAY),
        entry("e2", ALI, "PAYMENT", -200.0, TODAY),
        entry("e3", ALI, "EXPENSE", -50.0, TODAY),
        entry("e4", ALI, "TIP", 40.0, TODAY),
    ]
    totals = ledger.period_totals(entries)
    assert totals.income == pytest.approx(500.0)
    assert totals.expense == pytest.approx(250.0)
    assert totals.net == pytest.approx(250.0)


def test_month_calendar_groups_entries_by_day():
    other_month = TODAY.replace(month=5)
    entries = [
        entry("e1", ALI, "5H", 800.0, TODAY),
        entry("e2", ALI, "TIP", 10.0, TODAY),
        entry("e3", ALI, "8H", 500.0, TODAY - timedelta(days=1)),
        entry("e4", ALI, "8H", 500.0, other_month),
    ]
    grouped = ledger.group_by_day(ledger.entries_in_month(entries, 2024, 6))
    assert list(grouped) == [TODAY - timedelta(days=1), TODAY]
    assert len(grouped[TODAY]) == 2


# ---------- Suppliers ----------

def test_wholesaler_balance_is_purchases_minus_payments():
    txs = [purchase("t1", 400.0, TODAY), payment("t2", 150.0, TODAY)]
    assert ledger.wholesaler_balance(txs) == 250.0


def test_unpaid_invoices_settle_oldest_purchase_first():
    d0 = date(2024, 1, 1)
    txs = [
        purchase("p3", 300.0, d0 + timedelta(days=2), due=d0 + timedelta(days=32)),
        purchase("p1", 100.0, d0, due=d0 + timedelta(days=30)),
        purchase("p2", 200.0, d0 + timedelta(days=1), due=d0 + timedelta(days=31)),
        payment("pay", 150.0, d0 + timedelta(days=3)),
    ]
    unpaid = ledger.unpaid_invoices([METRO], txs)

    assert [(u.purchase.id, u.unpaid_amount) for u in unpaid] == [("p2", 150.0), ("p3", 300.0)]
    assert sum(u.unpaid_amount for u in unpaid) == ledger.wholesaler_balance(txs)


def test_unpaid_invoices_skip_purchases_without_due_date():
    txs = [purchase("p1", 100.0, TODAY), purchase("p2", 50.0, TODAY, due=TODAY + timedelta(days=10))]
    unpaid = ledger.unpaid_invoices([METRO], txs)
    assert [u.purchase.id for u in unpaid] == ["p2"]


def test_overpaid_supplier_has_no_unpaid_invoices():
    txs = [purchase("p1", 100.0, TODAY, due=TODAY), payment("pay", 130.0, TODAY)]
    assert ledger.unpaid_invoices([METRO], txs) == []


def test_upcoming_keeps_overdue_and_due_within_window_sorted():
    txs = [
        purchase("late", 10.0, TODAY - timedelta(days=40), due=TODAY - timedelta(days=3)),
        purchase("edge", 10.0, TODAY - timedelta(days=20), due=TODAY + timedelta(days=6)),
        purchase("far", 10.0, TODAY - timedelta(days=10), due=TODAY + timedelta(days=7)),
        purchase("soon", 10.0, TODAY - timedelta(days=5), due=TODAY + timedelta(days=1)),
    ]
    upcoming = ledger.upcoming_invoices(ledger.unpaid_invoices([METRO], txs), TODAY)
    assert [u.purchase.id for u in upcoming] == ["late", "soon", "edge"]
    assert upcoming[0].days_until_due(TODAY) == -3


def test_total_debt_is_sum_of_net_balances():
    other = Wholesaler(id="w2", name="Bim", phone=None, contact_person=None)
    txs = [
        purchase("p1", 500.0, TODAY),
        purchase("p2", 100.0, TODAY, wholesaler=other),
        payment("pay", 300.0, TODAY, wholesaler=other),
    ]
    balances = ledger.wholesaler_balances([METRO, other], txs)
    assert [b.wholesaler.id for b in balances] == ["w1", "w2"]
    assert ledger.total_debt(balances) == 300.0


def test_aging_places_balance_on_newest_purchases():
    txs = [
        purchase("old", 500.0, TODAY - timedelta(days=100)),
        purchase("mid", 300.0, TODAY - timedelta(days=45)),
        purchase("new", 200.0, TODAY - timedelta(days=10)),
        payment("pay", 400.0, TODAY - timedelta(days=5)),
    ]
    aging = ledger.balance_aging([METRO], txs, TODAY)

    assert aging.buckets[BUCKET_0_30] == 200.0
    assert aging.buckets[BUCKET_31_60] == 300.0
    assert aging.buckets[BUCKET_61_90] == 0.0
    assert aging.buckets[BUCKET_90_PLUS] == 100.0
    assert aging.total == pytest.approx(ledger.wholesaler_balance(txs))


def test_aging_bucket_boundaries():
    txs = [
        purchase("d30", 1.0, TODAY - timedelta(days=30)),
        purchase("d31", 2.0, TODAY - timedelta(days=31)),
        purchase("d90", 4.0, TODAY - timedelta(days=90)),
        purchase("d91", 8.0, TODAY - timedelta(days=91)),
    ]
    aging = ledger.balance_aging([METRO], txs, TODAY)
    assert aging.buckets == {BUCKET_0_30: 1.0, BUCKET_31_60: 2.0, BUCKET_61_90: 4.0, BUCKET_90_PLUS: 8.0}


def test_aging_sends_unexplained_balance_to_oldest_bucket():
    # a negative payment lifts the balance above the purchase history
    txs = [purchase("p1", 100.0, TODAY), payment("refund", -50.0, TODAY)]
    aging = ledger.balance_aging([METRO], txs, TODAY)
    assert aging.buckets[BUCKET_0_30] == 100.0
    assert aging.buckets[BUCKET_90_PLUS] == 50.0


def test_aging_skips_settled_suppliers_and_empty_ledgers():
    settled = [purchase("p1", 100.0, TODAY), payment("pay", 100.0, TODAY)]
    assert ledger.balance_aging([METRO], settled, TODAY).total == 0.0
    assert ledger.balance_aging([METRO], [], TODAY).total == 0.0
    assert all(v >= 0 for v in ledger.balance_aging([METRO], settled, TODAY).buckets.values())


# ---------- Tips ----------

def test_week_window_is_seven_days_ending_on_sunday():
    sunday = date(2024, 6, 16)
    window = ledger.week_window(sunday)
    assert window.start == date(2024, 6, 10)
    assert window.contains(sunday) and window.contains(window.start)
    assert not window.contains(sunday + timedelta(days=1))


@pytest.mark.parametrize(
    "today,expected",
    [
        (date(2024, 6, 16), date(2024, 6, 16)),
        (date(2024, 6, 10), date(2024, 6, 16)),
        (date(2024, 6, 15), date(2024, 6, 16)),
    ],
)
def test_suggested_sunday(today, expected):
    assert ledger.suggested_sunday(today) == expected


def test_tip_pool_split_proportionally_to_hours():
    sunday = date(2024, 6, 16)
    entries = [
        entry("e1", ALI, "CUSTOM", 0.0, sunday, hours=10),
        entry("e2", AYSE, "8H", 500.0, sunday - timedelta(days=1), hours=8),
        entry("e3", AYSE, "CUSTOM", 0.0, sunday - timedelta(days=2), hours=22),
    ]
    dist = ledger.tip_distribution([ALI, AYSE], entries, sunday, 1000.0)
    assert dist.hourly_rate == 25.0
    assert [(s.user.id, s.share) for s in dist.shares] == [("u1", 250), ("u2", 750)]
    assert dist.remainder == 0


def test_tip_shares_are_floored_and_remainder_reported():
    sunday = date(2024, 6, 16)
    entries = [
        entry("e1", ALI, "CUSTOM", 0.0, sunday, hours=10),
        entry("e2", AYSE, "CUSTOM", 0.0, sunday, hours=31),
    ]
    dist = ledger.tip_distribution([ALI, AYSE], entries, sunday, 1000.0)
    assert [s.share for s in dist.shares] == [243, 756]
    assert dist.distributed == 999
    assert dist.remainder == pytest.approx(1.0)


def test_tip_distribution_ignores_hours_outside_the_week_and_idle_staff():
    sunday = date(2024, 6, 16)
    entries = [
        entry("e1", ALI, "CUSTOM", 0.0, sunday - timedelta(days=7), hours=10),
        entry("e2", AYSE, "CUSTOM", 0.0, sunday - timedelta(days=6), hours=4),
    ]
    dist = ledger.tip_distribution([ALI, AYSE], entries, sunday, 100.0)
    assert [s.user.id for s in dist.shares] == ["u2"]
    assert dist.shares[0].share == 100


@pytest.mark.parametrize("pool", [0.0, -50.0])
def test_tip_distribution_with_empty_pool_pays_nothing(pool):
    sunday = date(2024, 6, 16)
    entries = [entry("e1", ALI, "CUSTOM", 0.0, sunday, hours=10)]
    dist = ledger.tip_distribution([ALI], entries, sunday, pool)
    assert dist.hourly_rate == 0.0
    assert [s.share for s in dist.shares] == [0]


def test_tip_distribution_without_hours_has_no_shares():
    dist = ledger.tip_distribution([ALI], [], date(2024, 6, 16), 500.0)
    assert dist.total_hours == 0
    assert dist.shares == ()
    assert dist.remainder == 500.0
