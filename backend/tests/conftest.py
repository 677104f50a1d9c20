from datetime import datetime, timedelta

import pytest

import models
import schemas
from auth import LocalAuthProvider
from config import Settings
from database import Base, make_engine, make_session_factory
from reconciler import InventoryReconciler

NOW = datetime(2025, 1, 1, 9, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def test_settings(tmp_path):
    # Each test gets its own database file
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'library_test.db'}",
        secret_key="test-secret",
    )


@pytest.fixture
def engine(test_settings):
    engine = make_engine(test_settings.database_url, echo=False)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def auth_provider(session_factory, test_settings):
    return LocalAuthProvider(session_factory, test_settings)


@pytest.fixture
def reconciler(session_factory, auth_provider, test_settings, clock):
    return InventoryReconciler(session_factory, auth_provider, test_settings, clock=clock)


@pytest.fixture
def admin(reconciler):
    return reconciler.register_admin("admin@school.test", "admin-pass", "Library Admin")


@pytest.fixture
def student_x(reconciler):
    return reconciler.register_student("x@school.test", "x-pass", "Student X", 6)


@pytest.fixture
def student_y(reconciler):
    return reconciler.register_student("y@school.test", "y-pass", "Student Y", 8)


@pytest.fixture
def make_book(reconciler):
    def _make(total_copies=1, title="Malgudi Days", **fields):
        fields.setdefault("author", "R.K. Narayan")
        fields.setdefault("category", "Fiction")
        return reconciler.add_book(schemas.BookCreate(title=title, total_copies=total_copies, **fields))
    return _make


@pytest.fixture
def book_state(session_factory):
    """Reads (total, available, issued loans) for a book from a fresh session."""
    def _state(book_id):
        session = session_factory()
        try:
            book = session.query(models.Book).filter(models.Book.id == book_id).one()
            issued = session.query(models.Loan).filter(
                models.Loan.book_id == book_id,
                models.Loan.status == models.LOAN_ISSUED,
            ).count()
            return book.total_copies, book.available_copies, issued
        finally:
            session.close()
    return _state
