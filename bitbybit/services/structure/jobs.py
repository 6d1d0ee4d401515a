import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from bitbybit.core.config import StructuringConfig
from bitbybit.core.errors import BookBusyError
from bitbybit.services.structure.batch_splitter import BatchSplitter

logger = logging.getLogger(__name__)


@dataclass
class StructuringJob:
    book_id: int
    priority_chapter_id: Optional[int] = None
    status: str = "running"
    processed: int = 0
    total: int = 0
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    def update(self, processed: int, total: int) -> None:
        # Progress only moves forward within a run.
        self.processed = max(self.processed, processed)
        self.total = total

    def finish(self) -> None:
        self.status = "complete"
        self.finished_at = datetime.utcnow()

    def fail(self, message: str) -> None:
        self.status = "error"
        self.error = message
        self.finished_at = datetime.utcnow()

    @property
    def percent(self) -> int:
        return round(self.processed / self.total * 100) if self.total else 0

    def as_dict(self) -> Dict:
        return {
            "book_id": self.book_id,
            "priority_chapter_id": self.priority_chapter_id,
            "status": self.status,
            "processed": self.processed,
            "total": self.total,
            "percent": self.percent,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class JobRegistry:
    """In-process record of whole-book runs; at most one running job per book."""

    def __init__(self) -> None:
        self._jobs: Dict[int, StructuringJob] = {}

    def get(self, book_id: int) -> Optional[StructuringJob]:
        return self._jobs.get(book_id)

    def start(self, book_id: int, priority_chapter_id: Optional[int] = None) -> StructuringJob:
        current = self._jobs.get(book_id)
        if current is not None and current.status == "running":
            raise BookBusyError(book_id)
        job = StructuringJob(book_id=book_id, priority_chapter_id=priority_chapter_id)
        self._jobs[book_id] = job
        return job

    def forget(self, book_id: int) -> None:
        self._jobs.pop(book_id, None)


async def run_structuring_job(
    job: StructuringJob,
    session_factory: Callable,
    classifier,
    opener: Callable,
    config: Optional[StructuringConfig] = None,
) -> None:
    """Background entry point: drive the whole book and record the outcome on the job."""
    db = session_factory()
    try:
        splitter = BatchSplitter(db, classifier, opener, config)
        await splitter.process_all_chapters(
            job.book_id,
            on_progress=job.update,
            priority_chapter_id=job.priority_chapter_id,
        )
        job.finish()
    except Exception as e:
        logger.exception("Structuring book %s failed", job.book_id)
        job.fail(str(e))
    finally:
        db.close()
