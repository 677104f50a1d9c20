import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy import func
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

# Import our local modules
import catalog
import directory
import models
import schemas
from auth import AuthProvider, LocalAuthProvider
from classifier import LoanState, classify, days_overdue
from config import settings
from database import SessionLocal, get_db, init_db
from errors import InvalidRole, LedgerError, StoreUnavailable
from ledger import LendingLedger
from metadata import fetch_google_book
from reconciler import InventoryReconciler

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

_auth_provider = LocalAuthProvider(SessionLocal, settings)
_reconciler = InventoryReconciler(SessionLocal, _auth_provider, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s, creating tables if needed", settings.app_name)
    init_db()
    yield
    logger.info("Shutting down %s", settings.app_name)


# Error body shared by every LedgerError
ERROR_RESPONSES = {
    code: {"model": schemas.ErrorResponse} for code in (403, 404, 409, 503)
}

app = FastAPI(title=settings.app_name, lifespan=lifespan, responses=ERROR_RESPONSES)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(DBAPIError)
async def store_error_handler(request: Request, exc: DBAPIError):
    logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return await ledger_error_handler(request, StoreUnavailable("The library database is unavailable, please retry"))


# --- Dependencies ---

def get_auth_provider() -> AuthProvider:
    return _auth_provider

def get_reconciler() -> InventoryReconciler:
    return _reconciler


@dataclass
class CurrentUser:
    profile: models.Profile
    role: Optional[str]

    @property
    def id(self) -> int:
        return self.profile.id


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    auth: AuthProvider = Depends(get_auth_provider),
) -> CurrentUser:
    """Resolves the bearer token to a profile; the role always comes from directory.resolve_role."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user_id = auth.resolve_session(token)
    if user_id is None:
        raise credentials_exception
    profile = directory.get_profile(db, user_id)
    if profile is None:
        raise credentials_exception
    return CurrentUser(profile=profile, role=directory.resolve_role(db, user_id))

def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if current_user.role != models.ROLE_ADMIN:
        raise InvalidRole("Only administrators can do this")
    return current_user

def require_student(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if current_user.role != models.ROLE_STUDENT:
        raise InvalidRole("Only students have a loan dashboard")
    return current_user


# --- Response helpers ---

def _loan_response(db: Session, loan: models.Loan, now) -> schemas.LoanResponse:
    book = catalog.get_book(db, loan.book_id, include_deleted=True)
    student = directory.get_profile(db, loan.student_id)
    return schemas.LoanResponse(
        id=loan.id,
        book_id=loan.book_id,
        student_id=loan.student_id,
        issued_by=loan.issued_by,
        issued_at=loan.issued_at,
        due_date=loan.due_date,
        returned_at=loan.returned_at,
        status=loan.status,
        state=classify(loan, now),
        book_title=book.title if book else None,
        student_name=student.full_name if student else None,
    )

def _profile_response(db: Session, profile: models.Profile) -> schemas.ProfileResponse:
    return schemas.ProfileResponse(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        class_level=profile.class_level,
        role=directory.resolve_role(db, profile.id),
    )


# --- API Routes ---

@app.get("/api/health")
def health_check():
    return {"status": "ok", "message": "Library System is running"}

@app.post("/api/auth/login", response_model=schemas.Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    auth: AuthProvider = Depends(get_auth_provider),
):
    # OAuth2 form sends 'username', we treat it as email
    user_id = auth.authenticate(form_data.username, form_data.password)
    role = directory.resolve_role(db, user_id) if user_id is not None else None
    if user_id is None or role is None:
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    token = auth.create_access_token(user_id)
    return {"access_token": token, "token_type": "bearer", "role": role, "user_id": user_id}

@app.get("/api/my/profile", response_model=schemas.ProfileResponse)
def get_my_profile(current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return _profile_response(db, current_user.profile)


# --- Catalog ---

@app.get("/api/books", response_model=list[schemas.BookResponse])
def get_books(search: str = "", category: str = "", db: Session = Depends(get_db)):
    """Catalog search over title, author and category"""
    return catalog.list_books(db, search=search, category=category)

@app.get("/api/books/{book_id}", response_model=schemas.BookResponse)
def get_book(book_id: int, db: Session = Depends(get_db)):
    return catalog.require_book(db, book_id)

@app.post("/api/books", response_model=schemas.BookResponse, status_code=201)
def create_book(
    book: schemas.BookCreate,
    current_user: CurrentUser = Depends(require_admin),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    return reconciler.add_book(book)

@app.post("/api/books/import", response_model=schemas.BookResponse, status_code=201)
def import_book(
    request: schemas.GoogleImportRequest,
    current_user: CurrentUser = Depends(require_admin),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    book_data = fetch_google_book(request.query, reconciler.settings)
    if not book_data:
        raise HTTPException(status_code=404, detail="Book not found on Google Books")
    if request.category:
        book_data["category"] = request.category
    return reconciler.add_book(schemas.BookCreate(**book_data, total_copies=request.total_copies))

@app.patch("/api/books/{book_id}", response_model=schemas.BookResponse)
def update_book(
    book_id: int,
    changes: schemas.BookUpdate,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return catalog.update_book(db, book_id, changes)

@app.put("/api/books/{book_id}/copies", response_model=schemas.BookResponse)
def set_book_copies(
    book_id: int,
    copies: schemas.CopiesUpdate,
    current_user: CurrentUser = Depends(require_admin),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    return reconciler.set_total_copies(book_id, copies.total_copies)

@app.delete("/api/books/{book_id}", response_model=schemas.BookResponse)
def delete_book(
    book_id: int,
    force: bool = False,
    current_user: CurrentUser = Depends(require_admin),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    """Soft delete; refused while copies are issued unless force=true"""
    return reconciler.remove_book(book_id, force=force)

@app.get("/api/books/{book_id}/loans", response_model=list[schemas.LoanResponse])
def get_book_history(
    book_id: int,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    catalog.require_book(db, book_id, include_deleted=True)
    now = reconciler.clock()
    return [_loan_response(db, loan, now) for loan in LendingLedger(db).for_book(book_id)]


# --- Students ---

@app.get("/api/students", response_model=list[schemas.ProfileResponse])
def get_students(current_user: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return [_profile_response(db, p) for p in directory.list_students(db)]

@app.post("/api/students", response_model=schemas.ProfileResponse, status_code=201)
def register_student(
    student: schemas.StudentCreate,
    current_user: CurrentUser = Depends(require_admin),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    profile = reconciler.register_student(student.email, student.password, student.full_name, student.class_level)
    return schemas.ProfileResponse(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        class_level=profile.class_level,
        role=models.ROLE_STUDENT,
    )


# --- Circulation ---

@app.post("/api/loans/issue", response_model=schemas.LoanResponse, status_code=201)
def issue_book(
    request: schemas.LoanIssueRequest,
    idempotency_key: Optional[str] = Header(default=None),
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    loan = reconciler.issue_book(
        request.book_id,
        request.student_id,
        request.days,
        issued_by=current_user.id,
        idempotency_key=idempotency_key,
    )
    return _loan_response(db, loan, reconciler.clock())

@app.post("/api/loans/{loan_id}/return", response_model=schemas.LoanResponse)
def return_book(
    loan_id: int,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    loan = reconciler.return_book(loan_id)
    return _loan_response(db, loan, reconciler.clock())

@app.get("/api/loans", response_model=list[schemas.LoanResponse])
def get_outstanding_loans(
    overdue: bool = False,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    """Issued loans for the admin dashboard, soonest due first"""
    now = reconciler.clock()
    loans = [_loan_response(db, loan, now) for loan in LendingLedger(db).outstanding()]
    if overdue:
        loans = [l for l in loans if l.state == LoanState.OVERDUE]
    return loans

@app.get("/api/my/loans", response_model=schemas.LoanHistoryResponse)
def get_my_loan_history(
    current_user: CurrentUser = Depends(require_student),
    db: Session = Depends(get_db),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    """Student dashboard: current loans and returned history"""
    now = reconciler.clock()
    loans = [_loan_response(db, loan, now) for loan in LendingLedger(db).for_student(current_user.id)]
    return {
        "active_loans": [l for l in loans if l.state != LoanState.RETURNED],
        "past_loans": [l for l in loans if l.state == LoanState.RETURNED],
    }


# --- Reports ---

@app.get("/api/reports/overdue", response_model=list[schemas.OverdueReportItem])
def get_overdue_report(
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    now = reconciler.clock()
    report = []
    for loan in LendingLedger(db).outstanding():
        if classify(loan, now) != LoanState.OVERDUE:
            continue
        book = catalog.get_book(db, loan.book_id, include_deleted=True)
        student = directory.get_profile(db, loan.student_id)
        report.append({
            "loan_id": loan.id,
            "book_title": book.title if book else "Unknown",
            "student_name": student.full_name if student else "Unknown",
            "class_level": student.class_level if student else None,
            "due_date": loan.due_date,
            "days_overdue": days_overdue(loan, now),
        })
    return report

@app.get("/api/reports/stats", response_model=schemas.DashboardStats)
def get_dashboard_stats(
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    now = reconciler.clock()
    books = db.query(models.Book).filter(models.Book.is_deleted.is_(False))
    outstanding = LendingLedger(db).outstanding()
    return {
        "total_titles": books.count(),
        "total_copies": books.with_entities(func.coalesce(func.sum(models.Book.total_copies), 0)).scalar(),
        "available_copies": books.with_entities(func.coalesce(func.sum(models.Book.available_copies), 0)).scalar(),
        "issued_loans": len(outstanding),
        "overdue_loans": len([l for l in outstanding if classify(l, now) == LoanState.OVERDUE]),
        "total_students": len(directory.list_students(db)),
    }

@app.get("/api/admin/audit", response_model=list[schemas.AuditItem])
def audit_inventory(
    book_id: Optional[int] = None,
    current_user: CurrentUser = Depends(require_admin),
    reconciler: InventoryReconciler = Depends(get_reconciler),
):
    """Books whose available count disagrees with the ledger (empty when consistent)"""
    return reconciler.audit(book_id)
