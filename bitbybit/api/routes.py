import logging
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from bitbybit.core.config import StructuringConfig, TrackingConfig
from bitbybit.core.database import SessionLocal, atomic, get_db
from bitbybit.core.errors import BitByBitError, ConfigurationError
from bitbybit.models.book import Book
from bitbybit.models.chapter import Chapter
from bitbybit.models.section import Section
from bitbybit.repositories.book_repository import BookRepository
from bitbybit.repositories.chapter_repository import ChapterRepository
from bitbybit.repositories.section_repository import SectionRepository
from bitbybit.schemas.api import ActivateRequest, PositionUpdate, ScrollRequest
from bitbybit.services.ai.classifier import AIService
from bitbybit.services.ingest.pdf_service import PDFService
from bitbybit.services.progress import ProgressAggregator
from bitbybit.services.structure.batch_splitter import BatchSplitter
from bitbybit.services.structure.book_processing import BookProcessingService
from bitbybit.services.structure.jobs import JobRegistry, run_structuring_job
from bitbybit.services.tracking import ReadStateTracker, session_mark_read

logger = logging.getLogger(__name__)
router = APIRouter()
pdf_service = PDFService()
jobs = JobRegistry()

_tracker: Optional[ReadStateTracker] = None
tracking_failures: Dict[int, str] = {}


def error_payload(code: str, message: str, details: str | None = None) -> dict:
    # Standardized error body for easier frontend handling and debugging.
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        }
    }


def get_pdf_service() -> PDFService:
    return pdf_service


def get_classifier() -> Optional[AIService]:
    # Missing credentials are reported when structuring is requested, not at startup.
    try:
        return AIService()
    except ConfigurationError:
        return None


def get_session_factory():
    return SessionLocal


def get_jobs() -> JobRegistry:
    return jobs


def _record_tracking_failure(section_id: int, error: Exception) -> None:
    tracking_failures[section_id] = str(error)


def get_tracker() -> ReadStateTracker:
    global _tracker
    if _tracker is None:
        _tracker = ReadStateTracker(
            TrackingConfig.from_env(),
            session_mark_read(SessionLocal),
            on_marked=lambda section_id: tracking_failures.pop(section_id, None),
            on_error=_record_tracking_failure,
        )
    return _tracker


def book_dict(book: Book) -> dict:
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "total_pages": book.total_pages,
        "structure_source": book.structure_source,
        "processing_status": book.processing_status,
        "created_at": book.created_at.isoformat() if book.created_at else None,
        "last_read_at": book.last_read_at.isoformat() if book.last_read_at else None,
    }


def chapter_dict(chapter: Chapter) -> dict:
    return {
        "id": chapter.id,
        "book_id": chapter.book_id,
        "title": chapter.title,
        "order": chapter.order,
        "start_page": chapter.start_page,
        "end_page": chapter.end_page,
    }


def section_dict(section: Section, include_text: bool = False) -> dict:
    data = {
        "id": section.id,
        "chapter_id": section.chapter_id,
        "book_id": section.book_id,
        "title": section.title,
        "order": section.order,
        "start_page": section.start_page,
        "end_page": section.end_page,
        "summary": section.summary,
        "is_read": section.is_read,
        "read_at": section.read_at.isoformat() if section.read_at else None,
        "last_page_viewed": section.last_page_viewed,
        "scroll_progress": section.scroll_progress,
    }
    if include_text:
        data["extracted_text"] = section.extracted_text
    return data


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": "bitbybit-backend"}


@router.post("/upload-pdf")
async def upload_pdf(
    file: UploadFile = File(...),
    title: str | None = None,
    author: str | None = None,
    use_native_toc: bool = True,
    db: Session = Depends(get_db),
    pdfs: PDFService = Depends(get_pdf_service),
) -> dict:
    """
    Store the PDF and build its structure:
    - outline present: chapters + sections with text, book complete
    - no outline: provisional page-batch chapters, sections come from /process
    """
    pdf_path = None
    try:
        if not file.filename:
            raise HTTPException(
                status_code=400,
                detail=error_payload("INVALID_FILE", "Missing file name in upload."),
            )

        content = await file.read()
        pdf_path = pdfs.save_pdf(content, file.filename)
        service = BookProcessingService(db, pdfs.open, StructuringConfig.from_env())
        book = await service.import_book(
            pdf_path,
            use_native_toc=use_native_toc,
            title=title,
            author=author,
            fallback_title=Path(file.filename).stem,
            on_progress=lambda message, percent: logger.debug("Import %s%%: %s", percent, message),
        )

        return {
            "book_id": book.id,
            "title": book.title,
            "author": book.author,
            "total_pages": book.total_pages,
            "structure_source": book.structure_source,
            "processing_status": book.processing_status,
            "chapters": len(ChapterRepository(db).get_by_book(book.id)),
            "message": "PDF uploaded and structured",
        }

    except ValueError as e:
        if pdf_path:
            pdfs.delete_pdf(pdf_path)
        raise HTTPException(
            status_code=400,
            detail=error_payload("VALIDATION_ERROR", "PDF validation failed.", str(e)),
        )
    except (HTTPException, BitByBitError):
        if pdf_path:
            pdfs.delete_pdf(pdf_path)
        raise
    except Exception as e:
        if pdf_path:
            pdfs.delete_pdf(pdf_path)
        logger.exception("Upload failed")
        raise HTTPException(
            status_code=500,
            detail=error_payload("UPLOAD_FAILED", "Unexpected error during upload.", str(e)),
        )


@router.get("/books")
async def list_books(db: Session = Depends(get_db)) -> dict:
    progress = ProgressAggregator(db)
    return {
        "books": [
            {**book_dict(book), "progress": progress.book_progress(book.id).as_dict()}
            for book in BookRepository(db).list_all()
        ]
    }


@router.get("/books/{book_id}")
async def get_book(book_id: int, db: Session = Depends(get_db)) -> dict:
    book = BookRepository(db).require(book_id)
    sections = SectionRepository(db)
    breakdown = ProgressAggregator(db).book_breakdown(book_id)
    chapter_progress = {entry["chapter_id"]: entry["progress"] for entry in breakdown["chapters"]}
    return {
        **book_dict(book),
        "progress": breakdown["progress"],
        "chapters": [
            {
                **chapter_dict(chapter),
                "progress": chapter_progress[chapter.id],
                "sections": [section_dict(s) for s in sections.get_by_chapter(chapter.id)],
            }
            for chapter in ChapterRepository(db).get_by_book(book_id)
        ],
    }


@router.delete("/books/{book_id}")
async def delete_book(
    book_id: int,
    db: Session = Depends(get_db),
    pdfs: PDFService = Depends(get_pdf_service),
    registry: JobRegistry = Depends(get_jobs),
) -> dict:
    pdf_path = BookRepository(db).delete(book_id)
    registry.forget(book_id)
    pdfs.delete_pdf(pdf_path)
    return {"book_id": book_id, "message": "Book deleted"}


@router.get("/books/{book_id}/progress")
async def book_progress(book_id: int, db: Session = Depends(get_db)) -> dict:
    BookRepository(db).require(book_id)
    return ProgressAggregator(db).book_breakdown(book_id)


@router.get("/chapters/{chapter_id}/progress")
async def chapter_progress(chapter_id: int, db: Session = Depends(get_db)) -> dict:
    ChapterRepository(db).require(chapter_id)
    return {"chapter_id": chapter_id, **ProgressAggregator(db).chapter_progress(chapter_id).as_dict()}


@router.post("/books/{book_id}/chapters/{chapter_id}/process")
async def process_chapter(
    book_id: int,
    chapter_id: int,
    db: Session = Depends(get_db),
    classifier: Optional[AIService] = Depends(get_classifier),
    pdfs: PDFService = Depends(get_pdf_service),
) -> dict:
    splitter = BatchSplitter(db, classifier, pdfs.open, StructuringConfig.from_env())
    sections = await splitter.process_chapter(book_id, chapter_id)
    return {
        "book_id": book_id,
        "chapter_id": chapter_id,
        "sections": [section_dict(s) for s in sections],
    }


@router.post("/books/{book_id}/process", status_code=202)
async def process_book(
    book_id: int,
    background_tasks: BackgroundTasks,
    priority_chapter_id: int | None = None,
    db: Session = Depends(get_db),
    classifier: Optional[AIService] = Depends(get_classifier),
    pdfs: PDFService = Depends(get_pdf_service),
    registry: JobRegistry = Depends(get_jobs),
    session_factory=Depends(get_session_factory),
) -> dict:
    """Start structuring every remaining chapter in the background."""
    BookRepository(db).require(book_id)
    if priority_chapter_id is not None:
        ChapterRepository(db).require(priority_chapter_id, book_id=book_id)
    if classifier is None:
        raise ConfigurationError("No Anthropic API key configured")

    job = registry.start(book_id, priority_chapter_id)
    background_tasks.add_task(
        run_structuring_job,
        job,
        session_factory,
        classifier,
        pdfs.open,
        StructuringConfig.from_env(),
    )
    return job.as_dict()


@router.get("/books/{book_id}/process")
async def process_status(
    book_id: int,
    db: Session = Depends(get_db),
    registry: JobRegistry = Depends(get_jobs),
) -> dict:
    book = BookRepository(db).require(book_id)
    job = registry.get(book_id)
    return {
        "book_id": book_id,
        "processing_status": book.processing_status,
        "job": job.as_dict() if job else None,
    }


@router.get("/sections/{section_id}")
async def get_section(section_id: int, db: Session = Depends(get_db)) -> dict:
    sections = SectionRepository(db)
    section = sections.require(section_id)
    siblings = sections.get_by_chapter(section.chapter_id)
    index = next(i for i, s in enumerate(siblings) if s.id == section.id)
    with atomic(db):
        BookRepository(db).update_last_read(section.book_id)
    return {
        **section_dict(section, include_text=True),
        "previous_section_id": siblings[index - 1].id if index > 0 else None,
        "next_section_id": siblings[index + 1].id if index + 1 < len(siblings) else None,
    }


@router.post("/sections/{section_id}/read")
async def mark_read(section_id: int, db: Session = Depends(get_db)) -> dict:
    with atomic(db):
        section = SectionRepository(db).mark_as_read(section_id)
    return section_dict(section)


@router.delete("/sections/{section_id}/read")
async def mark_unread(section_id: int, db: Session = Depends(get_db)) -> dict:
    with atomic(db):
        section = SectionRepository(db).mark_as_unread(section_id)
    return section_dict(section)


@router.put("/sections/{section_id}/position")
async def update_position(section_id: int, update: PositionUpdate, db: Session = Depends(get_db)) -> dict:
    try:
        with atomic(db):
            section = SectionRepository(db).update_position(
                section_id,
                last_page_viewed=update.last_page_viewed,
                scroll_progress=update.scroll_progress,
            )
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail=error_payload("VALIDATION_ERROR", "Invalid reading position.", str(e)),
        )
    return section_dict(section)


@router.post("/reader/activate")
async def activate_section(
    request: ActivateRequest,
    db: Session = Depends(get_db),
    tracker: ReadStateTracker = Depends(get_tracker),
) -> dict:
    section = SectionRepository(db).require(request.section_id)
    viewport = request.viewport.to_viewport() if request.viewport else None
    tracker.activate(section.id, section.is_read, viewport)
    return {
        "section_id": section.id,
        "is_read": section.is_read,
        "tracking_mode": tracker.config.mode.value,
        "active_section_id": tracker.active_section_id,
    }


@router.post("/reader/scroll")
async def report_scroll(
    request: ScrollRequest,
    db: Session = Depends(get_db),
    tracker: ReadStateTracker = Depends(get_tracker),
) -> dict:
    viewport = request.to_viewport()
    with atomic(db):
        SectionRepository(db).update_position(request.section_id, scroll_progress=viewport.progress())
    marked = tracker.report_scroll(request.section_id, viewport)
    return {"section_id": request.section_id, "marked_read": marked}


@router.post("/reader/deactivate")
async def deactivate_section(tracker: ReadStateTracker = Depends(get_tracker)) -> dict:
    tracker.deactivate()
    return {"active_section_id": None}


@router.get("/reader/state")
async def reader_state(tracker: ReadStateTracker = Depends(get_tracker)) -> dict:
    return {
        "active_section_id": tracker.active_section_id,
        "tracking_mode": tracker.config.mode.value,
        "failures": [{"section_id": k, "error": v} for k, v in tracking_failures.items()],
    }
