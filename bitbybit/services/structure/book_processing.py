import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from bitbybit.core.config import StructuringConfig
from bitbybit.core.database import atomic
from bitbybit.models.book import Book
from bitbybit.models.chapter import Chapter
from bitbybit.models.section import Section
from bitbybit.repositories.book_repository import BookRepository
from bitbybit.repositories.chapter_repository import ChapterRepository
from bitbybit.repositories.section_repository import SectionRepository
from bitbybit.services.structure.outline import normalize_outline
from bitbybit.services.structure.page_ranges import ChapterRange, default_page_batches, resolve_page_ranges
from bitbybit.services.structure.text_binder import bind_text

logger = logging.getLogger(__name__)

ImportProgress = Callable[[str, int], None]


class _ProgressReporter:
    """Forwards (message, percent) to the caller, never letting percent go backwards."""

    def __init__(self, callback: Optional[ImportProgress]) -> None:
        self.callback = callback
        self.percent = 0

    def __call__(self, message: str, percent: int) -> None:
        self.percent = max(self.percent, min(percent, 100))
        if self.callback is not None:
            self.callback(message, self.percent)


class BookProcessingService:
    """
    Imports a stored PDF: reads metadata and outline, creates the book record and
    either the outline-derived structure (with section text) or provisional page batches.
    """

    def __init__(self, db: Session, opener: Callable, config: Optional[StructuringConfig] = None) -> None:
        self.db = db
        self.opener = opener
        self.config = config or StructuringConfig()
        self.books = BookRepository(db)
        self.chapters = ChapterRepository(db)
        self.sections = SectionRepository(db)

    async def import_book(
        self,
        pdf_path: str,
        use_native_toc: bool = True,
        title: Optional[str] = None,
        author: Optional[str] = None,
        fallback_title: str = "Untitled",
        on_progress: Optional[ImportProgress] = None,
    ) -> Book:
        report = _ProgressReporter(on_progress)

        with self.opener(pdf_path) as document:
            report("Reading PDF metadata...", 5)
            metadata = await document.extract_metadata(fallback_title)
            if metadata.total_pages < 1:
                raise ValueError("PDF has no pages")

            report("Detecting table of contents...", 10)
            outline = await document.extract_outline() if use_native_toc else None

            if outline:
                ranges = resolve_page_ranges(normalize_outline(outline), metadata.total_pages)
                page_texts = await self._extract_texts(document, ranges, report)
            else:
                ranges = default_page_batches(metadata.total_pages, self.config.pages_per_batch)
                page_texts = {}

        report("Saving structure...", 95)
        with atomic(self.db):
            book = self.books.create(
                title=title or metadata.title,
                author=author or metadata.author,
                total_pages=metadata.total_pages,
                pdf_path=pdf_path,
                structure_source="native" if outline else "ai",
            )
            self._persist(book, ranges, page_texts)
            if outline:
                book.processing_status = "complete"

        logger.info(
            "Imported book %s (%r): %s chapters, %s outline",
            book.id,
            book.title,
            len(ranges),
            "native" if outline else "no",
        )
        report("Done!", 100)
        return book

    async def _extract_texts(self, document, ranges: List[ChapterRange], report: _ProgressReporter) -> Dict[int, Dict[int, str]]:
        # Text is pulled once per page of each chapter; sections slice from it.
        texts: Dict[int, Dict[int, str]] = {}
        report("Building structure...", 15)
        for idx, chapter in enumerate(ranges):
            report(f"Extracting text: {chapter.title}", 15 + round(idx / len(ranges) * 80))
            texts[idx] = {
                page: await document.extract_page_text(page)
                for page in range(chapter.start_page, chapter.end_page + 1)
            }
        return texts

    def _persist(self, book: Book, ranges: List[ChapterRange], page_texts: Dict[int, Dict[int, str]]) -> None:
        chapters = [
            Chapter(
                book_id=book.id,
                title=chapter.title,
                order=idx + 1,
                start_page=chapter.start_page,
                end_page=chapter.end_page,
            )
            for idx, chapter in enumerate(ranges)
        ]
        self.chapters.bulk_create(chapters)

        section_order = 0
        sections: List[Section] = []
        for idx, (chapter, resolved) in enumerate(zip(chapters, ranges)):
            for section in resolved.sections:
                section_order += 1
                sections.append(
                    Section(
                        chapter_id=chapter.id,
                        book_id=book.id,
                        title=section.title,
                        order=section_order,
                        start_page=section.start_page,
                        end_page=section.end_page,
                        extracted_text=bind_text(page_texts.get(idx, {}), section.start_page, section.end_page),
                        is_read=False,
                        read_at=None,
                    )
                )
        if sections:
            self.sections.bulk_create(sections)
