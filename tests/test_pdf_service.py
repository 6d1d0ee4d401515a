import asyncio
import base64

import pytest

from conftest import write_pdf

from bitbybit.core.config import StructuringConfig
from bitbybit.repositories.chapter_repository import ChapterRepository
from bitbybit.repositories.section_repository import SectionRepository
from bitbybit.services.ingest.pdf_service import PDFDocument, PDFService
from bitbybit.services.structure.book_processing import BookProcessingService
from bitbybit.services.structure.outline import normalize_outline

PART_WITHOUT_TARGET = [
    {"title": "Preface", "page": 1},
    {"title": "Part I", "children": [{"title": "Ch1", "page": 2}, {"title": "Ch2", "page": 3}]},
]


def pages(count):
    return [f"Text of page {p}" for p in range(1, count + 1)]


def tree(nodes):
    return [(n.title, n.page_number, tree(n.children)) for n in nodes]


def outline_of(path):
    with PDFDocument(path) as document:
        return asyncio.run(document.extract_outline())


def test_entry_without_target_keeps_its_children(tmp_path):
    path = write_pdf(tmp_path / "parts.pdf", pages(4), outline=PART_WITHOUT_TARGET)

    outline = outline_of(path)

    assert tree(outline) == [
        ("Preface", 1, []),
        ("Part I", None, [("Ch1", 2, []), ("Ch2", 3, [])]),
    ]
    groups = normalize_outline(outline)
    assert [(g.chapter_title, [e.title for e in g.sections]) for g in groups] == [
        ("Preface", ["Preface"]),
        ("Part I", ["Ch1", "Ch2"]),
    ]


def test_named_goto_and_index_destinations(tmp_path):
    outline = [
        {"title": "Named", "named": "chap-two", "named_page": 2},
        {"title": "Action", "goto": 3},
        {"title": "Index", "index": 3},
    ]
    path = write_pdf(tmp_path / "dests.pdf", pages(4), outline=outline)

    assert [(n.title, n.page_number) for n in outline_of(path)] == [
        ("Named", 2),
        ("Action", 3),
        ("Index", 4),
    ]


def test_unknown_named_destination_has_no_page(tmp_path):
    outline = [{"title": "Linked", "named": "here", "named_page": 1}, {"title": "Gone", "named": "nowhere"}]
    path = write_pdf(tmp_path / "dangling.pdf", pages(2), outline=outline)

    assert [(n.title, n.page_number) for n in outline_of(path)] == [("Linked", 1), ("Gone", None)]


def test_untitled_entry_is_replaced_by_its_children(tmp_path):
    outline = [{"children": [{"title": "A", "page": 1}, {"title": "B", "page": 2}]}]
    path = write_pdf(tmp_path / "untitled.pdf", pages(2), outline=outline)

    assert tree(outline_of(path)) == [("A", 1, []), ("B", 2, [])]


def test_document_without_outline(tmp_path):
    path = write_pdf(tmp_path / "plain.pdf", pages(3))

    assert outline_of(path) is None


def test_metadata_from_info_and_fallback(tmp_path):
    with_info = write_pdf(tmp_path / "info.pdf", pages(3), title="Deep Work", author="Cal Newport")
    without_info = write_pdf(tmp_path / "bare.pdf", pages(2))

    with PDFDocument(with_info) as document:
        meta = asyncio.run(document.extract_metadata(fallback_title="info"))
    with PDFDocument(without_info) as document:
        bare = asyncio.run(document.extract_metadata(fallback_title="bare"))

    assert (meta.title, meta.author, meta.total_pages) == ("Deep Work", "Cal Newport", 3)
    assert (bare.title, bare.author, bare.total_pages) == ("bare", "Unknown", 2)


def test_page_text_and_range_check(tmp_path):
    path = write_pdf(tmp_path / "text.pdf", pages(3))

    with PDFDocument(path) as document:
        text = asyncio.run(document.extract_page_text(2))
        with pytest.raises(ValueError):
            asyncio.run(document.extract_page_text(4))

    assert text == "Text of page 2"


def test_page_renders_to_base64_png(tmp_path):
    path = write_pdf(tmp_path / "image.pdf", pages(1))

    with PDFDocument(path) as document:
        image = asyncio.run(document.render_page_to_image(1))

    assert base64.b64decode(image).startswith(b"\x89PNG\r\n\x1a\n")


def test_open_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        PDFService(storage_path=tmp_path).open(str(tmp_path / "absent.pdf"))


def test_import_keeps_leaves_around_untargeted_part(db, tmp_path):
    path = write_pdf(tmp_path / "book.pdf", pages(4), outline=PART_WITHOUT_TARGET, title="Parts")
    service = BookProcessingService(db, PDFService(storage_path=tmp_path).open, StructuringConfig())

    book = asyncio.run(service.import_book(path))

    chapters = ChapterRepository(db).get_by_book(book.id)
    assert [(c.title, c.start_page, c.end_page) for c in chapters] == [("Preface", 1, 1), ("Part I", 2, 4)]
    sections = SectionRepository(db).get_by_book(book.id)
    assert [(s.title, s.start_page, s.end_page) for s in sections] == [
        ("Preface", 1, 1),
        ("Ch1", 2, 2),
        ("Ch2", 3, 4),
    ]
    assert sections[1].extracted_text == "Text of page 2"
