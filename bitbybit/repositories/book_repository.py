import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from bitbybit.core.database import atomic
from bitbybit.core.errors import NotFoundError
from bitbybit.models.book import PROCESSING_STATUSES, STRUCTURE_SOURCES, Book
from bitbybit.models.chapter import Chapter
from bitbybit.models.section import Section

logger = logging.getLogger(__name__)


class BookRepository:
    """
    Book persistence. Mutators only flush; callers own the transaction
    (see bitbybit.core.database.atomic). delete() is its own transaction.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(
        self,
        title: str,
        author: str,
        total_pages: int,
        pdf_path: str,
        structure_source: str = "native",
        cover_image: Optional[str] = None,
    ) -> Book:
        if structure_source not in STRUCTURE_SOURCES:
            raise ValueError(f"Unknown structure source: {structure_source}")
        book = Book(
            title=title,
            author=author,
            total_pages=total_pages,
            pdf_path=pdf_path,
            cover_image=cover_image,
            structure_source=structure_source,
            processing_status="pending",
            created_at=datetime.utcnow(),
            last_read_at=None,
        )
        self.db.add(book)
        self.db.flush()
        return book

    def get(self, book_id: int) -> Optional[Book]:
        return self.db.get(Book, book_id)

    def require(self, book_id: int) -> Book:
        book = self.get(book_id)
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    def list_all(self) -> List[Book]:
        # Most recently read first; never-opened books after, newest import first.
        return (
            self.db.query(Book)
            .order_by(Book.last_read_at.desc().nullslast(), Book.created_at.desc())
            .all()
        )

    def update_last_read(self, book_id: int) -> None:
        self.require(book_id).last_read_at = datetime.utcnow()
        self.db.flush()

    def update_processing_status(self, book_id: int, status: str) -> None:
        if status not in PROCESSING_STATUSES:
            raise ValueError(f"Unknown processing status: {status}")
        self.require(book_id).processing_status = status
        self.db.flush()

    def delete(self, book_id: int) -> str:
        """Remove the book with all chapters and sections in one transaction. Returns the PDF path."""
        book = self.require(book_id)
        pdf_path = book.pdf_path
        with atomic(self.db):
            self.db.query(Section).filter(Section.book_id == book_id).delete(synchronize_session=False)
            self.db.query(Chapter).filter(Chapter.book_id == book_id).delete(synchronize_session=False)
            self.db.query(Book).filter(Book.id == book_id).delete(synchronize_session=False)
        self.db.expire_all()
        logger.info("Deleted book %s", book_id)
        return pdf_path
