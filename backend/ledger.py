from typing import List, Optional

from sqlalchemy.orm import Session

import models


class LendingLedger:
    """Loan records for one session. Rows are appended on issue and closed on return, never deleted."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, loan: models.Loan) -> models.Loan:
        self.db.add(loan)
        self.db.flush()
        return loan

    def get(self, loan_id: int) -> Optional[models.Loan]:
        return self.db.query(models.Loan).filter(models.Loan.id == loan_id).first()

    def find_by_idempotency_key(self, key: str) -> Optional[models.Loan]:
        return self.db.query(models.Loan).filter(models.Loan.idempotency_key == key).first()

    def find_active(self, book_id: int, student_id: int) -> Optional[models.Loan]:
        return self.db.query(models.Loan).filter(
            models.Loan.book_id == book_id,
            models.Loan.student_id == student_id,
            models.Loan.status == models.LOAN_ISSUED,
        ).first()

    def for_book(self, book_id: int) -> List[models.Loan]:
        """Issue history of a book, newest first."""
        return self.db.query(models.Loan).filter(
            models.Loan.book_id == book_id
        ).order_by(models.Loan.issued_at.desc(), models.Loan.id.desc()).all()

    def for_student(self, student_id: int, active_only: bool = False) -> List[models.Loan]:
        query = self.db.query(models.Loan).filter(models.Loan.student_id == student_id)
        if active_only:
            query = query.filter(models.Loan.status == models.LOAN_ISSUED)
        return query.order_by(models.Loan.due_date.asc(), models.Loan.id.asc()).all()

    def outstanding(self) -> List[models.Loan]:
        return self.db.query(models.Loan).filter(
            models.Loan.status == models.LOAN_ISSUED
        ).order_by(models.Loan.due_date.asc(), models.Loan.id.asc()).all()

    def count_issued(self, book_id: int) -> int:
        return self.db.query(models.Loan).filter(
            models.Loan.book_id == book_id,
            models.Loan.status == models.LOAN_ISSUED,
        ).count()
