from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from bitbybit.models.section import Section
from bitbybit.repositories.chapter_repository import ChapterRepository
from bitbybit.repositories.section_repository import SectionRepository


def percentage(read: int, total: int) -> int:
    """round(100 * read / total) with halves rounded up; 0 for an empty set."""
    if total <= 0:
        return 0
    return (200 * read + total) // (2 * total)


@dataclass(frozen=True)
class Progress:
    read: int
    total: int
    percentage: int

    @classmethod
    def of(cls, read: int, total: int) -> "Progress":
        return cls(read=read, total=total, percentage=percentage(read, total))

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def progress_for(sections: Iterable[Section]) -> Progress:
    read = total = 0
    for section in sections:
        total += 1
        if section.is_read:
            read += 1
    return Progress.of(read, total)


class ProgressAggregator:
    """Read progress at book and chapter granularity, computed in SQL."""

    def __init__(self, db: Session) -> None:
        self.sections = SectionRepository(db)
        self.chapters = ChapterRepository(db)

    def book_progress(self, book_id: int) -> Progress:
        return Progress.of(*self.sections.read_totals(book_id=book_id))

    def chapter_progress(self, chapter_id: int) -> Progress:
        return Progress.of(*self.sections.read_totals(chapter_id=chapter_id))

    def book_breakdown(self, book_id: int) -> Dict:
        """Book totals plus one entry per chapter, in chapter order."""
        totals = self.sections.read_totals_by_chapter(book_id)
        chapters: List[Dict] = []
        read_sum = total_sum = 0
        for chapter in self.chapters.get_by_book(book_id):
            read, total = totals.get(chapter.id, (0, 0))
            read_sum += read
            total_sum += total
            chapters.append(
                {
                    "chapter_id": chapter.id,
                    "title": chapter.title,
                    "order": chapter.order,
                    "progress": Progress.of(read, total).as_dict(),
                }
            )
        return {"book_id": book_id, "progress": Progress.of(read_sum, total_sum).as_dict(), "chapters": chapters}
