"""
Shared fixtures: an in-memory database and fake document / classifier capabilities.
write_pdf builds small real PDFs for the document capability tests; no API calls
happen in the test suite.
"""

from typing import Callable, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bitbybit.core.database import Base
from bitbybit.models.book import Book
from bitbybit.models.chapter import Chapter
from bitbybit.models.section import Section
from bitbybit.schemas.classification import SectionResult, SplitPagesInput, SplitPagesOutput
from bitbybit.schemas.outline import parse_outline
from bitbybit.services.ingest.pdf_service import PDFMetadata


class FakeDocument:
    """Stands in for PDFDocument; records which capability calls were made."""

    def __init__(self, total_pages: int, outline=None, texts: Optional[Dict[int, str]] = None, title="Test Book"):
        self.total_pages = total_pages
        self.outline = parse_outline(outline) if outline else None
        self.texts = texts if texts is not None else {p: f"Text of page {p}" for p in range(1, total_pages + 1)}
        self.title = title
        self.text_calls: List[int] = []
        self.image_calls: List[int] = []
        self.closed = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed += 1

    async def extract_metadata(self, fallback_title: str = "Untitled") -> PDFMetadata:
        return PDFMetadata(title=self.title or fallback_title, author="Auth", total_pages=self.total_pages)

    async def extract_outline(self):
        return self.outline

    async def extract_page_text(self, page_number: int) -> str:
        self.text_calls.append(page_number)
        return self.texts.get(page_number, "")

    async def render_page_to_image(self, page_number: int) -> str:
        self.image_calls.append(page_number)
        return f"image-{page_number}"


class FakeClassifier:
    """
    Returns canned sections. `responder` gets the request and returns a list of
    (title, start, end) tuples, or raises.
    """

    def __init__(self, responder: Optional[Callable] = None):
        self.responder = responder or (lambda request: [("Whole", request.start_page, request.end_page)])
        self.requests: List[SplitPagesInput] = []

    async def split_pages_into_sections(self, request: SplitPagesInput) -> SplitPagesOutput:
        self.requests.append(request)
        sections = self.responder(request)
        return SplitPagesOutput(
            sections=[
                SectionResult(title=title, start_page=start, end_page=end, summary=f"About {title}")
                for title, start, end in sections
            ]
        )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_book(db):
    """Insert a book with the given chapter page ranges, committed."""

    def _make(total_pages: int = 20, chapters=((1, 10), (11, 20)), title: str = "Test Book") -> Book:
        book = Book(
            title=title,
            author="Auth",
            total_pages=total_pages,
            pdf_path="/tmp/test.pdf",
            structure_source="ai",
            processing_status="pending",
        )
        db.add(book)
        db.flush()
        for order, (start, end) in enumerate(chapters, start=1):
            db.add(Chapter(book_id=book.id, title=f"Pages {start}-{end}", order=order, start_page=start, end_page=end))
        db.commit()
        return book

    return _make


def add_section(db, chapter: Chapter, order: int, start: int, end: int, title: str = None, is_read: bool = False) -> Section:
    from datetime import datetime

    section = Section(
        chapter_id=chapter.id,
        book_id=chapter.book_id,
        title=title or f"Section {order}",
        order=order,
        start_page=start,
        end_page=end,
        is_read=is_read,
        read_at=datetime.utcnow() if is_read else None,
    )
    db.add(section)
    db.commit()
    return section


class _PDFWriter:
    """Minimal PDF 1.4 writer with a correct xref table, for exercising the real parser."""

    def __init__(self):
        self.objects: List[Optional[bytes]] = []

    def reserve(self) -> int:
        self.objects.append(None)
        return len(self.objects)

    def set(self, num: int, body: str) -> None:
        self.objects[num - 1] = body.encode("latin-1")

    def add(self, body: str) -> int:
        num = self.reserve()
        self.set(num, body)
        return num

    def add_stream(self, data: str) -> int:
        return self.add(f"<< /Length {len(data)} >>\nstream\n{data}\nendstream")

    def render(self, root: int, info: Optional[int]) -> bytes:
        out = bytearray(b"%PDF-1.4\n")
        offsets = []
        for num, body in enumerate(self.objects, start=1):
            offsets.append(len(out))
            out += f"{num} 0 obj\n".encode() + body + b"\nendobj\n"
        xref = len(out)
        out += f"xref\n0 {len(self.objects) + 1}\n0000000000 65535 f \n".encode()
        for offset in offsets:
            out += f"{offset:010d} 00000 n \n".encode()
        trailer = f"<< /Size {len(self.objects) + 1} /Root {root} 0 R"
        if info:
            trailer += f" /Info {info} 0 R"
        out += f"trailer\n{trailer} >>\nstartxref\n{xref}\n%%EOF\n".encode()
        return bytes(out)


def write_pdf(path, page_texts: List[str], outline=None, title: str = None, author: str = None) -> str:
    """
    Write a real PDF with one line of Helvetica text per page.

    `outline` items are dicts with "title" (omit for an untitled entry), "children"
    and at most one target:
      "page"   explicit destination
      "named"  named destination, added to the /Names tree only with "named_page"
      "goto"   GoTo action
      "index"  zero-based page index destination
    """
    pdf = _PDFWriter()
    font = pdf.add("<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")
    pages = pdf.reserve()
    page_refs = []
    for text in page_texts:
        content = pdf.add_stream(f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET")
        page_refs.append(
            pdf.add(
                f"<< /Type /Page /Parent {pages} 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 {font} 0 R >> >> /Contents {content} 0 R >>"
            )
        )
    kids = " ".join(f"{ref} 0 R" for ref in page_refs)
    pdf.set(pages, f"<< /Type /Pages /Kids [{kids}] /Count {len(page_refs)} >>")

    named = []

    def target(item) -> str:
        if "page" in item:
            return f" /Dest [{page_refs[item['page'] - 1]} 0 R /Fit]"
        if "named" in item:
            if "named_page" in item:
                named.append((item["named"], item["named_page"]))
            return f" /Dest ({item['named']})"
        if "goto" in item:
            return f" /A << /S /GoTo /D [{page_refs[item['goto'] - 1]} 0 R /Fit] >>"
        if "index" in item:
            return f" /Dest [{item['index']} /Fit]"
        return ""

    def add_items(items, parent: int):
        nums = [pdf.reserve() for _ in items]
        for i, (num, item) in enumerate(zip(nums, items)):
            body = f"<< /Parent {parent} 0 R"
            if "title" in item:
                body += f" /Title ({item['title']})"
            body += target(item)
            if i > 0:
                body += f" /Prev {nums[i - 1]} 0 R"
            if i + 1 < len(nums):
                body += f" /Next {nums[i + 1]} 0 R"
            children = item.get("children") or []
            if children:
                first, last = add_items(children, num)
                body += f" /First {first} 0 R /Last {last} 0 R /Count {len(children)}"
            pdf.set(num, body + " >>")
        return nums[0], nums[-1]

    catalog = f"<< /Type /Catalog /Pages {pages} 0 R"
    if outline:
        outlines = pdf.reserve()
        first, last = add_items(outline, outlines)
        pdf.set(outlines, f"<< /Type /Outlines /First {first} 0 R /Last {last} 0 R /Count {len(outline)} >>")
        catalog += f" /Outlines {outlines} 0 R"
    if named:
        entries = " ".join(f"({name}) [{page_refs[page - 1]} 0 R /Fit]" for name, page in sorted(named))
        catalog += f" /Names << /Dests << /Names [{entries}] >> >>"
    root = pdf.add(catalog + " >>")

    info = None
    if title or author:
        fields = ""
        if title:
            fields += f" /Title ({title})"
        if author:
            fields += f" /Author ({author})"
        info = pdf.add(f"<<{fields} >>")

    with open(path, "wb") as f:
        f.write(pdf.render(root, info))
    return str(path)
