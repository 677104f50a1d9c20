import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

import models
import schemas
from errors import InvalidRange, NotFound, StoreUnavailable

logger = logging.getLogger(__name__)


def get_book(db: Session, book_id: int, include_deleted: bool = False) -> Optional[models.Book]:
    query = db.query(models.Book).filter(models.Book.id == book_id)
    if not include_deleted:
        query = query.filter(models.Book.is_deleted.is_(False))
    return query.first()


def require_book(db: Session, book_id: int, include_deleted: bool = False) -> models.Book:
    book = get_book(db, book_id, include_deleted=include_deleted)
    if book is None:
        raise NotFound(f"Book {book_id} not found")
    return book


def list_books(
    db: Session,
    search: str = "",
    category: str = "",
    include_deleted: bool = False,
) -> List[models.Book]:
    """Catalog listing ordered by title. ``search`` matches title, author or category."""
    query = db.query(models.Book)
    if not include_deleted:
        query = query.filter(models.Book.is_deleted.is_(False))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(
            models.Book.title.ilike(term),
            models.Book.author.ilike(term),
            models.Book.category.ilike(term),
        ))
    if category:
        query = query.filter(models.Book.category.ilike(category.strip()))
    return query.order_by(models.Book.title.asc(), models.Book.id.asc()).all()


REQUIRED_FIELDS = ("title", "author", "category")


def update_book(db: Session, book_id: int, changes: schemas.BookUpdate) -> models.Book:
    """Edit descriptive fields. Copy counts go through the reconciler."""
    book = require_book(db, book_id)
    data = changes.model_dump(exclude_unset=True)
    for field in REQUIRED_FIELDS:
        if field in data and (data[field] is None or not data[field].strip()):
            raise InvalidRange(f"Book {field} cannot be empty")
    if data.get("price") is not None and data["price"] < 0:
        raise InvalidRange("Price cannot be negative")
    for field, value in data.items():
        setattr(book, field, value)
    try:
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        logger.error("Could not save changes to book %s", book_id, exc_info=True)
        raise StoreUnavailable("The library database is unavailable, please retry") from exc
    db.refresh(book)
    logger.info("Updated book %s: %s", book_id, ", ".join(sorted(data)) or "no changes")
    return book
