from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from bitbybit.core.database import atomic
from bitbybit.core.errors import NotFoundError
from bitbybit.models.chapter import Chapter


class ChapterRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def bulk_create(self, chapters: Sequence[Chapter]) -> None:
        self.db.add_all(chapters)
        self.db.flush()

    def get(self, chapter_id: int) -> Optional[Chapter]:
        return self.db.get(Chapter, chapter_id)

    def require(self, chapter_id: int, book_id: Optional[int] = None) -> Chapter:
        chapter = self.get(chapter_id)
        if chapter is None or (book_id is not None and chapter.book_id != book_id):
            raise NotFoundError("Chapter", chapter_id)
        return chapter

    def get_by_book(self, book_id: int) -> List[Chapter]:
        return self.db.query(Chapter).filter(Chapter.book_id == book_id).order_by(Chapter.order).all()

    def claim(self, chapter_id: int, timeout_minutes: int) -> bool:
        """
        Atomically mark the chapter as being structured.
        Succeeds when nobody holds it or the previous claim is older than timeout_minutes.
        Commits immediately so other sessions see the claim.
        """
        now = datetime.utcnow()
        stale_before = now - timedelta(minutes=timeout_minutes)
        with atomic(self.db):
            claimed = (
                self.db.query(Chapter)
                .filter(
                    Chapter.id == chapter_id,
                    or_(
                        Chapter.structuring_started_at.is_(None),
                        Chapter.structuring_started_at < stale_before,
                    ),
                )
                .update({Chapter.structuring_started_at: now}, synchronize_session=False)
            )
        self.db.expire_all()
        return claimed == 1

    def release(self, chapter_id: int) -> None:
        with atomic(self.db):
            self.db.query(Chapter).filter(Chapter.id == chapter_id).update(
                {Chapter.structuring_started_at: None}, synchronize_session=False
            )
        self.db.expire_all()

    def count_unstructured(self, book_id: int) -> int:
        """Chapters of the book that don't own any section yet."""
        return (
            self.db.query(func.count(Chapter.id))
            .filter(Chapter.book_id == book_id, ~Chapter.sections.any())
            .scalar()
            or 0
        )
