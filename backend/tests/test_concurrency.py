import threading

import models
from errors import DuplicateLoan, OutOfStock


def run_concurrently(calls):
    """Start every call at once; return a list of (result, error) in call order."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(index, call):
        barrier.wait()
        try:
            outcomes[index] = (call(), None)
        except (OutOfStock, DuplicateLoan) as e:
            outcomes[index] = (None, e)

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_last_copy_has_exactly_one_winner(reconciler, admin, student_x, student_y, make_book, book_state):
    book = make_book(total_copies=1)

    outcomes = run_concurrently([
        lambda: reconciler.issue_book(book.id, student_x.id, 14, admin.id),
        lambda: reconciler.issue_book(book.id, student_y.id, 14, admin.id),
    ])

    winners = [loan for loan, error in outcomes if loan is not None]
    losers = [error for loan, error in outcomes if error is not None]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], OutOfStock)
    assert book_state(book.id) == (1, 0, 1)


def test_many_requests_never_oversell(reconciler, admin, make_book, book_state):
    book = make_book(total_copies=2)
    students = [
        reconciler.register_student(f"rush{i}@school.test", "pw", f"Rush {i}", 4)
        for i in range(5)
    ]

    outcomes = run_concurrently([
        (lambda s=s: reconciler.issue_book(book.id, s.id, 14, admin.id))
        for s in students
    ])

    winners = [loan for loan, error in outcomes if loan is not None]
    assert len(winners) == 2
    assert all(isinstance(error, OutOfStock) for loan, error in outcomes if loan is None)
    assert book_state(book.id) == (2, 0, 2)


def test_same_student_racing_gets_one_loan(reconciler, admin, student_x, make_book, book_state, session_factory):
    book = make_book(total_copies=3)

    outcomes = run_concurrently([
        lambda: reconciler.issue_book(book.id, student_x.id, 14, admin.id),
        lambda: reconciler.issue_book(book.id, student_x.id, 14, admin.id),
    ])

    winners = [loan for loan, error in outcomes if loan is not None]
    assert len(winners) == 1
    assert book_state(book.id) == (3, 2, 1)

    session = session_factory()
    try:
        assert session.query(models.Loan).filter(models.Loan.student_id == student_x.id).count() == 1
    finally:
        session.close()
