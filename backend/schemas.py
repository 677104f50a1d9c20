from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from classifier import LoanState
from config import settings


class BookBase(BaseModel):
    title: str
    author: str
    category: str = "General"
    summary: Optional[str] = None
    cover_image_url: Optional[str] = None
    ebook_url: Optional[str] = None
    price: Optional[float] = None

class BookCreate(BookBase):
    total_copies: int = 1

class BookUpdate(BaseModel):
    # Copy counts are deliberately absent: they only change through the reconciler
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    summary: Optional[str] = None
    cover_image_url: Optional[str] = None
    ebook_url: Optional[str] = None
    price: Optional[float] = None

class BookResponse(BookBase):
    id: int
    total_copies: int
    available_copies: int
    is_deleted: bool = False

    class Config:
        from_attributes = True

class CopiesUpdate(BaseModel):
    total_copies: int

# --- External Import Schema ---
class GoogleImportRequest(BaseModel):
    query: str  # Can be ISBN or Title
    total_copies: int = 1
    category: Optional[str] = None

# --- Directory Schemas ---
class StudentCreate(BaseModel):
    email: str
    password: str
    full_name: str
    class_level: int

class ProfileResponse(BaseModel):
    id: int
    email: str
    full_name: str
    class_level: Optional[int] = None
    role: Optional[str] = None

    class Config:
        from_attributes = True

# --- Circulation Schemas ---
class LoanIssueRequest(BaseModel):
    book_id: int
    student_id: int
    days: int = Field(default=settings.default_loan_days)

class LoanResponse(BaseModel):
    id: int
    book_id: int
    student_id: int
    issued_by: int
    issued_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None
    status: str
    # Computed on read by the overdue classifier
    state: Optional[LoanState] = None
    book_title: Optional[str] = None
    student_name: Optional[str] = None

    class Config:
        from_attributes = True

class LoanHistoryResponse(BaseModel):
    active_loans: List[LoanResponse]
    past_loans: List[LoanResponse]

# --- Auth Schemas ---
class Token(BaseModel):
    access_token: str
    token_type: str
    role: str
    user_id: int

# --- Reports ---
class OverdueReportItem(BaseModel):
    loan_id: int
    book_title: str
    student_name: str
    class_level: Optional[int] = None
    due_date: datetime
    days_overdue: int

class DashboardStats(BaseModel):
    total_titles: int
    total_copies: int
    available_copies: int
    issued_loans: int
    overdue_loans: int
    total_students: int

class AuditItem(BaseModel):
    book_id: int
    title: str
    total_copies: int
    available_copies: int
    issued_loans: int
    expected_available: int

class ErrorResponse(BaseModel):
    detail: str
    kind: str
    retryable: bool = False
