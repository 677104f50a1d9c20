from datetime import timedelta

import catalog
import ledger
from classifier import LoanState, classify
from seed import seed_db


def test_seed_leaves_inventory_consistent(reconciler, db, clock):
    data = seed_db(reconciler)

    assert reconciler.audit() == []
    assert reconciler.clock is clock

    outstanding = ledger.LendingLedger(db).outstanding()
    states = {loan.book.title: classify(loan, clock()) for loan in outstanding}
    assert states == {
        "Malgudi Days": LoanState.OVERDUE,
        "The Jungle Book": LoanState.ACTIVE,
        "Concise Mathematics": LoanState.ACTIVE,
    }
    assert len(data["students"]) == 4
    assert data["books"]["Panchatantra Stories"].available_copies == 0


def test_seed_backdates_only_the_staged_loans(reconciler, db, clock):
    seed_db(reconciler)

    issued_at = {loan.book.title: loan.issued_at for loan in ledger.LendingLedger(db).outstanding()}
    assert issued_at["Malgudi Days"] == clock() - timedelta(days=20)
    assert issued_at["The Jungle Book"] == clock()

    history = ledger.LendingLedger(db).for_book(_book_id(db, "Wings of Fire"))
    assert [(loan.issued_at, loan.returned_at) for loan in history] == [
        (clock() - timedelta(days=20), clock())
    ]


def _book_id(db, title):
    return next(b.id for b in catalog.list_books(db, search=title) if b.title == title)
