from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

from classifier import LoanState, classify, days_overdue


def make_loan(due_date, status="issued"):
    return SimpleNamespace(status=status, due_date=due_date)


def test_past_due_date_is_overdue():
    loan = make_loan(datetime(2025, 1, 10))
    assert classify(loan, datetime(2025, 1, 11)) == LoanState.OVERDUE


def test_before_due_date_is_active():
    loan = make_loan(datetime(2025, 1, 10))
    assert classify(loan, datetime(2025, 1, 9)) == LoanState.ACTIVE


def test_exactly_at_due_date_is_still_active():
    loan = make_loan(datetime(2025, 1, 10, 12, 0))
    assert classify(loan, datetime(2025, 1, 10, 12, 0)) == LoanState.ACTIVE


def test_returned_wins_regardless_of_dates():
    loan = make_loan(datetime(2025, 1, 10), status="returned")
    assert classify(loan, datetime(2025, 1, 9)) == LoanState.RETURNED
    assert classify(loan, datetime(2026, 1, 1)) == LoanState.RETURNED


def test_accepts_plain_dates():
    loan = make_loan(date(2025, 1, 10))
    assert classify(loan, date(2025, 1, 11)) == LoanState.OVERDUE
    assert classify(loan, date(2025, 1, 9)) == LoanState.ACTIVE
    assert classify(loan, datetime(2025, 1, 10, 0, 0, 1)) == LoanState.OVERDUE


def test_aware_now_compared_in_utc():
    loan = make_loan(datetime(2025, 1, 10, 12, 0))
    ist = timezone(timedelta(hours=5, minutes=30))
    # 17:00 IST is 11:30 UTC
    assert classify(loan, datetime(2025, 1, 10, 17, 0, tzinfo=ist)) == LoanState.ACTIVE
    assert classify(loan, datetime(2025, 1, 10, 18, 0, tzinfo=ist)) == LoanState.OVERDUE


def test_days_overdue():
    loan = make_loan(datetime(2025, 1, 10, 9, 0))
    assert days_overdue(loan, datetime(2025, 1, 9)) == 0
    assert days_overdue(loan, datetime(2025, 1, 13, 8, 0)) == 3
    assert days_overdue(make_loan(datetime(2025, 1, 10), status="returned"), datetime(2025, 2, 1)) == 0


def test_days_overdue_counts_part_days():
    loan = make_loan(datetime(2025, 1, 10, 9, 0))
    now = datetime(2025, 1, 10, 18, 0)
    assert classify(loan, now) == LoanState.OVERDUE
    assert days_overdue(loan, now) == 1
    assert days_overdue(loan, datetime(2025, 1, 11, 9, 0)) == 1
    assert days_overdue(loan, datetime(2025, 1, 11, 9, 1)) == 2


def test_state_values_are_strings():
    assert LoanState.OVERDUE == "overdue"
    assert LoanState.ACTIVE.value == "active"
