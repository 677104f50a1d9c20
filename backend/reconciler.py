"""
Inventory reconciler: the only code that changes ``books.available_copies``
or a loan's status.

Every operation runs in its own transaction. Copy counts are changed with
conditional UPDATE statements whose WHERE clause re-checks the precondition
(``available_copies > 0`` to issue, ``available_copies < total_copies`` to
restock), so two admins racing for the last copy cannot both win: the loser's
UPDATE matches no row and is reported as ``OutOfStock``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import exists, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

import catalog
import directory
import models
import schemas
from auth import AuthProvider
from config import Settings, settings as default_settings
from errors import (
    AlreadyReturned,
    BookHasActiveLoans,
    DuplicateLoan,
    DuplicateRoleAssignment,
    IdempotencyConflict,
    InvalidRange,
    LedgerError,
    NotFound,
    OutOfStock,
    StoreUnavailable,
)
from ledger import LendingLedger

logger = logging.getLogger(__name__)


def _is_count(value) -> bool:
    # bool is an int subclass; True must not pass as 1
    return isinstance(value, int) and not isinstance(value, bool)


class InventoryReconciler:
    def __init__(
        self,
        session_factory: sessionmaker,
        auth_provider: Optional[AuthProvider] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.auth = auth_provider
        self.settings = settings or default_settings
        self.clock = clock or datetime.utcnow

    @contextmanager
    def _transaction(self):
        db: Session = self.session_factory()
        try:
            with db.begin():
                yield db
        except (LedgerError, IntegrityError):
            raise
        except DBAPIError as exc:
            logger.error("Store failure, transaction rolled back", exc_info=True)
            raise StoreUnavailable("The library database is unavailable, please retry") from exc
        finally:
            db.close()

    # --- Validation ---

    def _check_loan_days(self, due_in_days: int) -> None:
        low, high = self.settings.min_loan_days, self.settings.max_loan_days
        if not _is_count(due_in_days) or not low <= due_in_days <= high:
            raise InvalidRange(f"Loan period must be between {low} and {high} days")

    def _check_class_level(self, class_level: int) -> None:
        low, high = self.settings.min_class_level, self.settings.max_class_level
        if not _is_count(class_level) or not low <= class_level <= high:
            raise InvalidRange(f"Class level must be between {low} and {high}")

    # --- Circulation ---

    def issue_book(
        self,
        book_id: int,
        student_id: int,
        due_in_days: int,
        issued_by: int,
        idempotency_key: Optional[str] = None,
    ) -> models.Loan:
        """
        Lend one copy of ``book_id`` to ``student_id``.

        A retry carrying the same ``idempotency_key`` returns the loan the
        first call created instead of taking a second copy.
        """
        self._check_loan_days(due_in_days)
        try:
            with self._transaction() as db:
                ledger = LendingLedger(db)
                if idempotency_key:
                    previous = ledger.find_by_idempotency_key(idempotency_key)
                    if previous is not None:
                        return self._replay(previous, book_id, student_id)

                directory.require_role(db, issued_by, models.ROLE_ADMIN)
                catalog.require_book(db, book_id)
                directory.require_profile(db, student_id)
                directory.require_role(db, student_id, models.ROLE_STUDENT)

                if ledger.find_active(book_id, student_id) is not None:
                    raise DuplicateLoan(f"Student {student_id} already has book {book_id} issued")

                taken = db.execute(
                    update(models.Book)
                    .where(
                        models.Book.id == book_id,
                        models.Book.available_copies > 0,
                        models.Book.is_deleted.is_(False),
                    )
                    .values(available_copies=models.Book.available_copies - 1)
                    .execution_options(synchronize_session=False)
                )
                if taken.rowcount != 1:
                    logger.info("Issue of book %s to student %s rejected: out of stock", book_id, student_id)
                    raise OutOfStock(f"No copies of book {book_id} are available")

                now = self.clock()
                loan = ledger.add(models.Loan(
                    book_id=book_id,
                    student_id=student_id,
                    issued_by=issued_by,
                    issued_at=now,
                    due_date=now + timedelta(days=due_in_days),
                    status=models.LOAN_ISSUED,
                    idempotency_key=idempotency_key,
                ))
        except IntegrityError:
            # Lost a race: either the same key was committed first, or the
            # open-loan index caught a second copy for this student
            return self._resolve_issue_conflict(book_id, student_id, idempotency_key)

        logger.info(
            "Issued book %s to student %s as loan %s, due %s",
            book_id, student_id, loan.id, loan.due_date.date(),
        )
        return loan

    def _replay(self, loan: models.Loan, book_id: int, student_id: int) -> models.Loan:
        if loan.book_id != book_id or loan.student_id != student_id:
            raise IdempotencyConflict("Idempotency key was already used for a different loan")
        logger.info("Replayed issue request for loan %s", loan.id)
        return loan

    def _resolve_issue_conflict(self, book_id: int, student_id: int, idempotency_key: Optional[str]) -> models.Loan:
        if idempotency_key:
            with self._transaction() as db:
                previous = LendingLedger(db).find_by_idempotency_key(idempotency_key)
                if previous is not None:
                    return self._replay(previous, book_id, student_id)
        raise DuplicateLoan(f"Student {student_id} already has book {book_id} issued")

    def return_book(self, loan_id: int) -> models.Loan:
        with self._transaction() as db:
            ledger = LendingLedger(db)
            loan = ledger.get(loan_id)
            if loan is None:
                raise NotFound(f"Loan {loan_id} not found")
            if loan.status == models.LOAN_RETURNED:
                raise AlreadyReturned(f"Loan {loan_id} was already returned")

            returned_at = max(self.clock(), loan.issued_at)
            closed = db.execute(
                update(models.Loan)
                .where(models.Loan.id == loan_id, models.Loan.status == models.LOAN_ISSUED)
                .values(status=models.LOAN_RETURNED, returned_at=returned_at)
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount != 1:
                raise AlreadyReturned(f"Loan {loan_id} was already returned")

            restocked = db.execute(
                update(models.Book)
                .where(
                    models.Book.id == loan.book_id,
                    models.Book.available_copies < models.Book.total_copies,
                )
                .values(available_copies=models.Book.available_copies + 1)
                .execution_options(synchronize_session=False)
            )
            if restocked.rowcount != 1:
                logger.warning(
                    "Book %s already at total_copies when loan %s was returned; count left unchanged",
                    loan.book_id, loan_id,
                )
            db.refresh(loan)

        logger.info("Returned loan %s for book %s", loan.id, loan.book_id)
        return loan

    # --- Catalog administration ---

    def add_book(self, book: schemas.BookCreate) -> models.Book:
        if book.total_copies < 0:
            raise InvalidRange("Total copies cannot be negative")
        if book.price is not None and book.price < 0:
            raise InvalidRange("Price cannot be negative")

        with self._transaction() as db:
            db_book = models.Book(**book.model_dump(), available_copies=book.total_copies)
            db.add(db_book)
            db.flush()
            db.refresh(db_book)

        logger.info("Added book %s '%s' with %s copies", db_book.id, db_book.title, db_book.total_copies)
        return db_book

    def remove_book(self, book_id: int, force: bool = False) -> models.Book:
        """
        Soft delete: the book leaves the catalog but its loans stay returnable.
        Refused while copies are out unless ``force`` is set.
        """
        with self._transaction() as db:
            book = catalog.require_book(db, book_id)
            stmt = update(models.Book).where(
                models.Book.id == book_id,
                models.Book.is_deleted.is_(False),
            )
            if not force:
                stmt = stmt.where(~exists().where(
                    models.Loan.book_id == book_id,
                    models.Loan.status == models.LOAN_ISSUED,
                ))
            hidden = db.execute(
                stmt.values(is_deleted=True).execution_options(synchronize_session=False)
            )
            if hidden.rowcount != 1:
                outstanding = LendingLedger(db).count_issued(book_id)
                if outstanding and not force:
                    raise BookHasActiveLoans(
                        f"Book {book_id} has {outstanding} copies issued; return them first or force removal"
                    )
                raise NotFound(f"Book {book_id} not found")

            outstanding = LendingLedger(db).count_issued(book_id)
            if outstanding:
                logger.warning("Book %s removed with %s copies still issued", book_id, outstanding)
            db.refresh(book)

        logger.info("Removed book %s from the catalog", book_id)
        return book

    def set_total_copies(self, book_id: int, total_copies: int) -> models.Book:
        """Change how many copies the library owns, keeping issued copies accounted for."""
        if not _is_count(total_copies) or total_copies < 0:
            raise InvalidRange("Total copies cannot be negative")

        with self._transaction() as db:
            book = catalog.require_book(db, book_id)
            # SET expressions read the pre-update row
            changed = db.execute(
                update(models.Book)
                .where(
                    models.Book.id == book_id,
                    models.Book.total_copies - models.Book.available_copies <= total_copies,
                )
                .values(
                    available_copies=models.Book.available_copies + (total_copies - models.Book.total_copies),
                    total_copies=total_copies,
                )
                .execution_options(synchronize_session=False)
            )
            if changed.rowcount != 1:
                issued = LendingLedger(db).count_issued(book_id)
                raise InvalidRange(
                    f"Book {book_id} has {issued} copies issued; total cannot drop to {total_copies}"
                )
            db.refresh(book)

        logger.info("Book %s now has %s copies (%s available)", book_id, book.total_copies, book.available_copies)
        return book

    # --- Directory administration ---

    def register_student(self, email: str, password: str, full_name: str, class_level: int) -> models.Profile:
        self._check_class_level(class_level)
        return self._register(email, password, full_name, models.ROLE_STUDENT, class_level)

    def register_admin(self, email: str, password: str, full_name: str) -> models.Profile:
        return self._register(email, password, full_name, models.ROLE_ADMIN, None)

    def _register(
        self,
        email: str,
        password: str,
        full_name: str,
        role: str,
        class_level: Optional[int],
    ) -> models.Profile:
        if self.auth is None:
            raise RuntimeError("No auth provider configured")

        email = email.strip().lower()
        user_id = self.auth.create_account(
            email, password, {"full_name": full_name, "role": role, "class_level": class_level}
        )
        try:
            with self._transaction() as db:
                profile = models.Profile(
                    id=user_id,
                    email=email,
                    full_name=full_name.strip(),
                    class_level=class_level,
                )
                db.add(profile)
                db.flush()
                directory.assign_role(db, user_id, role)
        except LedgerError:
            self.auth.delete_account(user_id)
            raise
        except IntegrityError as exc:
            self.auth.delete_account(user_id)
            raise DuplicateRoleAssignment(f"User {user_id} is already registered") from exc

        logger.info("Registered %s %s (%s)", role, user_id, email)
        return profile

    # --- Consistency ---

    def audit(self, book_id: Optional[int] = None) -> List[schemas.AuditItem]:
        """Books whose available count disagrees with the ledger. Read only."""
        with self._transaction() as db:
            query = db.query(models.Book)
            if book_id is not None:
                query = query.filter(models.Book.id == book_id)
            books = query.order_by(models.Book.id.asc()).all()
            if book_id is not None and not books:
                raise NotFound(f"Book {book_id} not found")

            ledger = LendingLedger(db)
            discrepancies = []
            for book in books:
                issued = ledger.count_issued(book.id)
                expected = book.total_copies - issued
                if book.available_copies != expected:
                    discrepancies.append(schemas.AuditItem(
                        book_id=book.id,
                        title=book.title,
                        total_copies=book.total_copies,
                        available_copies=book.available_copies,
                        issued_loans=issued,
                        expected_available=expected,
                    ))

        for item in discrepancies:
            logger.warning(
                "Book %s has %s available but the ledger implies %s",
                item.book_id, item.available_copies, item.expected_available,
            )
        return discrepancies
