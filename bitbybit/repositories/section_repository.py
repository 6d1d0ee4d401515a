from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Integer, func
from sqlalchemy.orm import Session

from bitbybit.core.errors import NotFoundError
from bitbybit.models.section import Section


class SectionRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def bulk_create(self, sections: Sequence[Section]) -> None:
        self.db.add_all(sections)
        self.db.flush()

    def get(self, section_id: int) -> Optional[Section]:
        return self.db.get(Section, section_id)

    def require(self, section_id: int) -> Section:
        section = self.get(section_id)
        if section is None:
            raise NotFoundError("Section", section_id)
        return section

    def get_by_chapter(self, chapter_id: int) -> List[Section]:
        return self.db.query(Section).filter(Section.chapter_id == chapter_id).order_by(Section.order).all()

    def get_by_book(self, book_id: int) -> List[Section]:
        return self.db.query(Section).filter(Section.book_id == book_id).order_by(Section.order).all()

    def count_by_chapter(self, chapter_id: int) -> int:
        return self.db.query(func.count(Section.id)).filter(Section.chapter_id == chapter_id).scalar() or 0

    def last_in_book(self, book_id: int) -> Optional[Section]:
        return (
            self.db.query(Section)
            .filter(Section.book_id == book_id)
            .order_by(Section.order.desc())
            .first()
        )

    def max_order(self, book_id: int) -> int:
        return self.db.query(func.max(Section.order)).filter(Section.book_id == book_id).scalar() or 0

    def mark_as_read(self, section_id: int) -> Section:
        section = self.require(section_id)
        section.is_read = True
        section.read_at = datetime.utcnow()
        self.db.flush()
        return section

    def mark_as_unread(self, section_id: int) -> Section:
        section = self.require(section_id)
        section.is_read = False
        section.read_at = None
        self.db.flush()
        return section

    def update_position(
        self,
        section_id: int,
        last_page_viewed: Optional[int] = None,
        scroll_progress: Optional[float] = None,
    ) -> Section:
        section = self.require(section_id)
        if last_page_viewed is not None:
            if not section.start_page <= last_page_viewed <= section.end_page:
                raise ValueError(
                    f"Page {last_page_viewed} is outside section pages "
                    f"{section.start_page}-{section.end_page}"
                )
            section.last_page_viewed = last_page_viewed
        if scroll_progress is not None:
            section.scroll_progress = min(max(float(scroll_progress), 0.0), 100.0)
        self.db.flush()
        return section

    def read_totals(self, book_id: Optional[int] = None, chapter_id: Optional[int] = None) -> Tuple[int, int]:
        """(read, total) for a book or a chapter."""
        query = self.db.query(
            func.coalesce(func.sum(Section.is_read.cast(Integer)), 0),
            func.count(Section.id),
        )
        if book_id is not None:
            query = query.filter(Section.book_id == book_id)
        if chapter_id is not None:
            query = query.filter(Section.chapter_id == chapter_id)
        read, total = query.one()
        return int(read), int(total)

    def read_totals_by_chapter(self, book_id: int) -> Dict[int, Tuple[int, int]]:
        rows = (
            self.db.query(
                Section.chapter_id,
                func.coalesce(func.sum(Section.is_read.cast(Integer)), 0),
                func.count(Section.id),
            )
            .filter(Section.book_id == book_id)
            .group_by(Section.chapter_id)
            .all()
        )
        return {chapter_id: (int(read), int(total)) for chapter_id, read, total in rows}
