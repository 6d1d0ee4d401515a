import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from bitbybit.core.config import StructuringConfig
from bitbybit.core.database import atomic
from bitbybit.core.errors import ChapterBusyError, ConfigurationError, MalformedResponseError, NotFoundError
from bitbybit.models.book import Book
from bitbybit.models.chapter import Chapter
from bitbybit.models.section import Section
from bitbybit.repositories.book_repository import BookRepository
from bitbybit.repositories.chapter_repository import ChapterRepository
from bitbybit.repositories.section_repository import SectionRepository
from bitbybit.schemas.classification import SectionResult, SplitPagesInput
from bitbybit.services.structure.text_binder import bind_text

logger = logging.getLogger(__name__)

ChapterProgress = Callable[[int, int], None]


def fit_sections(results: Sequence[SectionResult], start_page: int, end_page: int) -> List[Tuple[SectionResult, int, int]]:
    """
    Clamp classifier ranges into the chapter and close the gaps between them, so the
    sections cover start_page..end_page. Overlaps (several sections on one page) are kept.
    """
    if not results:
        raise MalformedResponseError("Classifier returned no sections")

    clamped = []
    for result in results:
        first = min(max(result.start_page, start_page), end_page)
        last = min(max(result.end_page, first), end_page)
        clamped.append([result, first, last])
    clamped.sort(key=lambda item: (item[1], item[2]))

    clamped[0][1] = start_page
    for prev, nxt in zip(clamped, clamped[1:]):
        if nxt[1] > prev[2] + 1:
            prev[2] = nxt[1] - 1
    clamped[-1][2] = end_page
    return [(result, first, last) for result, first, last in clamped]


class BatchSplitter:
    """
    Splits chapters without outline-derived sections by sending all of a chapter's
    pages to the classifier in one request.

    A chapter counts as structured once it owns a section; structured chapters are
    never re-sent. Each chapter is claimed before work starts, so two jobs can't
    structure the same chapter at once.
    """

    def __init__(
        self,
        db: Session,
        classifier,
        opener: Callable,
        config: Optional[StructuringConfig] = None,
    ) -> None:
        self.db = db
        self.classifier = classifier
        self.opener = opener
        self.config = config or StructuringConfig()
        self.books = BookRepository(db)
        self.chapters = ChapterRepository(db)
        self.sections = SectionRepository(db)

    def _require_classifier(self):
        if self.classifier is None:
            raise ConfigurationError("No classification service configured")
        return self.classifier

    async def process_chapter(self, book_id: int, chapter_id: int) -> List[Section]:
        classifier = self._require_classifier()
        book = self.books.require(book_id)
        chapter = self.chapters.require(chapter_id, book_id=book_id)

        existing = self.sections.get_by_chapter(chapter.id)
        if existing:
            logger.info("Chapter %s already has %s sections, skipping", chapter.id, len(existing))
            return existing

        if not self.chapters.claim(chapter.id, self.config.claim_timeout_minutes):
            raise ChapterBusyError(chapter.id)
        try:
            # Another job may have finished between the first check and the claim.
            existing = self.sections.get_by_chapter(chapter.id)
            if existing:
                return existing
            return await self._structure(book, chapter, classifier)
        finally:
            self.chapters.release(chapter.id)

    async def _structure(self, book: Book, chapter: Chapter, classifier) -> List[Section]:
        pages = list(range(chapter.start_page, chapter.end_page + 1))
        images: List[str] = []
        texts: Dict[int, str] = {}
        with self.opener(book.pdf_path) as document:
            for page in pages:
                images.append(await document.render_page_to_image(page))
                texts[page] = await document.extract_page_text(page)

        previous = self.sections.last_in_book(book.id)
        request = SplitPagesInput(
            page_images=images,
            page_texts=[texts[page] for page in pages],
            start_page=chapter.start_page,
            book_title=book.title,
            previous_section_title=previous.title if previous is not None else None,
        )
        result = await classifier.split_pages_into_sections(request)
        fitted = fit_sections(result.sections, chapter.start_page, chapter.end_page)

        with atomic(self.db):
            base_order = self.sections.max_order(book.id)
            created = [
                Section(
                    chapter_id=chapter.id,
                    book_id=book.id,
                    title=item.title,
                    order=base_order + idx + 1,
                    start_page=first,
                    end_page=last,
                    extracted_text=bind_text(texts, first, last),
                    summary=item.summary or None,
                    is_read=False,
                    read_at=None,
                )
                for idx, (item, first, last) in enumerate(fitted)
            ]
            self.sections.bulk_create(created)
            remaining = self.chapters.count_unstructured(book.id)
            book.processing_status = "complete" if remaining == 0 else "processing"

        logger.info(
            "Chapter %s (%r) split into %s sections, %s chapters left",
            chapter.id,
            chapter.title,
            len(created),
            remaining,
        )
        return created

    async def process_all_chapters(
        self,
        book_id: int,
        on_progress: Optional[ChapterProgress] = None,
        priority_chapter_id: Optional[int] = None,
    ) -> None:
        """
        Structure every chapter of the book in order, the priority chapter first.
        on_progress(processed, total) is called after each chapter, skipped ones included.
        A failing chapter stops the run and leaves the book in "processing".
        """
        self._require_classifier()
        self.books.require(book_id)
        chapters = self.chapters.get_by_book(book_id)

        if priority_chapter_id is not None:
            priority = [c for c in chapters if c.id == priority_chapter_id]
            if not priority:
                raise NotFoundError("Chapter", priority_chapter_id)
            chapters = priority + [c for c in chapters if c.id != priority_chapter_id]

        with atomic(self.db):
            self.books.update_processing_status(book_id, "processing")

        total = len(chapters)
        for processed, chapter in enumerate(chapters, start=1):
            if self.sections.count_by_chapter(chapter.id) > 0:
                logger.debug("Chapter %s already structured", chapter.id)
            else:
                await self.process_chapter(book_id, chapter.id)
            if on_progress is not None:
                on_progress(processed, total)

        with atomic(self.db):
            self.books.update_processing_status(book_id, "complete")
        logger.info("Book %s structured (%s chapters)", book_id, total)
