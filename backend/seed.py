import sys
import time
from datetime import datetime, timedelta

import schemas
from auth import LocalAuthProvider
from config import settings
from database import Base, SessionLocal, engine
from metadata import fetch_google_book
from reconciler import InventoryReconciler

SEARCH_QUERIES = [
    "intitle:The Hobbit J.R.R. Tolkien",
    "intitle:Charlotte's Web E.B. White",
    "intitle:Matilda Roald Dahl",
    "intitle:A Brief History of Time",
    "intitle:The Diary of a Young Girl",
]

BOOKS = [
    {"title": "Wings of Fire", "author": "A.P.J. Abdul Kalam", "category": "Biography", "total_copies": 2, "price": 250.0},
    {"title": "The Jungle Book", "author": "Rudyard Kipling", "category": "Fiction", "total_copies": 3, "price": 199.0},
    {"title": "Malgudi Days", "author": "R.K. Narayan", "category": "Fiction", "total_copies": 1, "price": 180.0},
    {"title": "Concise Mathematics", "author": "R.D. Sharma", "category": "Textbook", "total_copies": 4},
    {"title": "Science Encyclopedia", "author": "DK", "category": "Reference", "total_copies": 1},
    {"title": "Panchatantra Stories", "author": "Vishnu Sharma", "category": "Fiction", "total_copies": 0},  # Out of stock completely
]

STUDENTS = [
    ("aarav@school.test", "Aarav Mehta", 7),
    ("diya@school.test", "Diya Kapoor", 5),
    ("kabir@school.test", "Kabir Singh", 10),
    ("meera@school.test", "Meera Iyer", 3),
]


def reset_db():
    print("⚠️  Resetting database...")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    print("✅ Database reset complete.")


def seed_db(reconciler: InventoryReconciler, fetch_remote: bool = False) -> dict:
    """Populate demo data through the reconciler so every copy count starts consistent."""
    print("🌱 Seeding demo data...")

    # =====================================================
    # 1. USERS
    # =====================================================
    admin = reconciler.register_admin("admin@school.test", "admin123", "Library Admin")
    students = {}
    for email, name, class_level in STUDENTS:
        students[email] = reconciler.register_student(email, "student123", name, class_level)

    # =====================================================
    # 2. BOOKS
    # =====================================================
    books = {}
    for data in BOOKS:
        book = reconciler.add_book(schemas.BookCreate(**data))
        books[book.title] = book

    if fetch_remote:
        for query in SEARCH_QUERIES:
            print(f"   -> Fetching: {query}")
            book_data = fetch_google_book(query, reconciler.settings)
            if book_data and book_data["title"] not in books:
                book = reconciler.add_book(schemas.BookCreate(**book_data, total_copies=2))
                books[book.title] = book
            time.sleep(0.2)  # Minor delay for API rate limits

    print(f"✅ Created {len(books)} book titles.")

    # =====================================================
    # 3. LOANS
    # =====================================================
    now = reconciler.clock()

    # Kabir has an overdue book: issued 20 days ago for 7 days
    backdated = InventoryReconciler(
        reconciler.session_factory,
        reconciler.auth,
        reconciler.settings,
        clock=lambda: now - timedelta(days=20),
    )
    backdated.issue_book(books["Malgudi Days"].id, students["kabir@school.test"].id, 7, admin.id)
    returned = backdated.issue_book(books["Wings of Fire"].id, students["diya@school.test"].id, 14, admin.id)
    reconciler.return_book(returned.id)

    # Aarav and Diya have active loans
    reconciler.issue_book(books["The Jungle Book"].id, students["aarav@school.test"].id, 14, admin.id)
    reconciler.issue_book(books["Concise Mathematics"].id, students["diya@school.test"].id, 30, admin.id)

    print("✅ Seeding complete!")
    print("------------------------------------------------")
    print("Admin:   admin@school.test / admin123")
    print("Students (password student123):")
    print("  aarav@school.test -> borrowing 'The Jungle Book'")
    print("  diya@school.test  -> borrowing 'Concise Mathematics', returned 'Wings of Fire'")
    print("  kabir@school.test -> OVERDUE 'Malgudi Days' (only copy)")
    print("  meera@school.test -> no loans")
    print("------------------------------------------------")
    return {"admin": admin, "students": students, "books": books}


if __name__ == "__main__":
    reset_db()
    auth_provider = LocalAuthProvider(SessionLocal, settings)
    seed_db(
        InventoryReconciler(SessionLocal, auth_provider, settings, clock=datetime.utcnow),
        fetch_remote="--google" in sys.argv,
    )
