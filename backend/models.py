from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base

# Roles: 'admin', 'student'
ROLE_ADMIN = "admin"
ROLE_STUDENT = "student"
ROLES = (ROLE_ADMIN, ROLE_STUDENT)

# Loan status: 'issued', 'returned'
LOAN_ISSUED = "issued"
LOAN_RETURNED = "returned"


# --- Identity (owned by the auth provider) ---

class Account(Base):
    """Credentials record. Stands in for the external identity provider."""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# --- Directory ---

class Profile(Base):
    __tablename__ = "profiles"

    # Same id the auth provider handed out for the account
    id = Column(Integer, primary_key=True, index=True, autoincrement=False)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False)
    class_level = Column(Integer, nullable=True)  # students only, 1-10
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    role_assignment = relationship("UserRole", back_populates="profile", uselist=False)
    loans = relationship("Loan", back_populates="student", foreign_keys="Loan.student_id")


class UserRole(Base):
    """Authoritative role. Kept apart from the profile so a user cannot edit their own role."""
    __tablename__ = "user_roles"
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'student')", name="ck_user_roles_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), unique=True, nullable=False)
    role = Column(String, nullable=False)

    profile = relationship("Profile", back_populates="role_assignment")


# --- Catalog ---

class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="ck_books_total_non_negative"),
        CheckConstraint("available_copies >= 0", name="ck_books_available_non_negative"),
        CheckConstraint("available_copies <= total_copies", name="ck_books_available_le_total"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, index=True, nullable=False)
    author = Column(String, index=True, nullable=False)
    category = Column(String, index=True, nullable=False, default="General")
    summary = Column(Text, nullable=True)
    cover_image_url = Column(String, nullable=True)
    ebook_url = Column(String, nullable=True)
    price = Column(Float, nullable=True)

    total_copies = Column(Integer, nullable=False, default=1)
    # Only the reconciler writes this column
    available_copies = Column(Integer, nullable=False, default=1)

    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    loans = relationship("Loan", back_populates="book")


# --- Circulation ---

class Loan(Base):
    __tablename__ = "issued_books"
    __table_args__ = (
        CheckConstraint("status IN ('issued', 'returned')", name="ck_issued_books_status"),
        # One open loan per (book, student)
        Index(
            "uq_issued_books_open_loan",
            "book_id",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'issued'"),
            postgresql_where=text("status = 'issued'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), index=True, nullable=False)
    student_id = Column(Integer, ForeignKey("profiles.id"), index=True, nullable=False)
    issued_by = Column(Integer, ForeignKey("profiles.id"), nullable=False)

    issued_at = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    returned_at = Column(DateTime, nullable=True)

    status = Column(String, nullable=False, default=LOAN_ISSUED, index=True)
    idempotency_key = Column(String, unique=True, nullable=True)

    book = relationship("Book", back_populates="loans")
    student = relationship("Profile", back_populates="loans", foreign_keys=[student_id])
    issuer = relationship("Profile", foreign_keys=[issued_by])
