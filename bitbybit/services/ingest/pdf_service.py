import base64
import io
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pdfplumber
from fastapi.concurrency import run_in_threadpool
from pdfminer.pdfdocument import PDFDestinationNotFound
from pdfminer.pdftypes import PDFObjRef, resolve1
from pdfminer.psparser import PSLiteral
from pdfminer.utils import decode_text

from bitbybit.core import config
from bitbybit.schemas.outline import MAX_OUTLINE_DEPTH, OutlineNode, parse_outline

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".pdf"}
RENDER_RESOLUTION = 144


@dataclass(frozen=True)
class PDFMetadata:
    title: str
    author: str
    total_pages: int


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return decode_text(value)
    if isinstance(value, PSLiteral):
        return str(value.name)
    return str(value)


class PDFDocument:
    """
    An opened PDF exposing the metadata, outline, page text and page image capabilities.
    pdfplumber is synchronous, so every call runs in the threadpool and is awaited.
    """

    def __init__(self, path: str) -> None:
        if not os.path.exists(path):
            raise FileNotFoundError(f"PDF not found: {path}")
        self.path = path
        self._pdf = pdfplumber.open(path)

    def close(self) -> None:
        self._pdf.close()

    def __enter__(self) -> "PDFDocument":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    async def extract_metadata(self, fallback_title: str = "Untitled") -> PDFMetadata:
        return await run_in_threadpool(self._metadata, fallback_title)

    async def extract_outline(self) -> Optional[List[OutlineNode]]:
        return await run_in_threadpool(self._outline)

    async def extract_page_text(self, page_number: int) -> str:
        return await run_in_threadpool(self._page_text, page_number)

    async def render_page_to_image(self, page_number: int) -> str:
        return await run_in_threadpool(self._page_image, page_number)

    def _page(self, page_number: int):
        if page_number < 1 or page_number > len(self._pdf.pages):
            raise ValueError(f"Page {page_number} out of range for {self.path}")
        return self._pdf.pages[page_number - 1]

    def _metadata(self, fallback_title: str) -> PDFMetadata:
        info = self._pdf.metadata or {}
        title = _as_text(info.get("Title")).strip() or fallback_title
        author = _as_text(info.get("Author")).strip() or "Unknown"
        return PDFMetadata(title=title, author=author, total_pages=len(self._pdf.pages))

    def _page_text(self, page_number: int) -> str:
        page = self._page(page_number)
        try:
            return (page.extract_text() or "").strip()
        finally:
            # Drop the parsed layout so long books don't accumulate page caches.
            page.close()

    def _page_image(self, page_number: int) -> str:
        page = self._page(page_number)
        try:
            buffer = io.BytesIO()
            page.to_image(resolution=RENDER_RESOLUTION).save(buffer, format="PNG")
            return base64.b64encode(buffer.getvalue()).decode("ascii")
        finally:
            page.close()

    def _outline(self) -> Optional[List[OutlineNode]]:
        # Walked by hand: pdfminer's get_outlines() skips entries without a
        # destination, which would detach their children from the tree.
        root = resolve1(self._pdf.doc.catalog.get("Outlines"))
        if not isinstance(root, dict) or root.get("First") is None:
            return None

        page_ids = {page.page_obj.pageid: page.page_number for page in self._pdf.pages}
        seen: Set[int] = set()

        def walk(first: Any, depth: int) -> List[Dict]:
            if depth > MAX_OUTLINE_DEPTH:
                raise ValueError(f"Outline nested deeper than {MAX_OUTLINE_DEPTH} levels in {self.path}")
            nodes: List[Dict] = []
            ref = first
            while ref is not None:
                key = ref.objid if isinstance(ref, PDFObjRef) else id(ref)
                if key in seen:
                    logger.warning("Outline loop detected in %s", self.path)
                    break
                seen.add(key)
                item = resolve1(ref)
                if not isinstance(item, dict):
                    break
                children = walk(item["First"], depth + 1) if item.get("First") is not None else []
                if "Title" in item:
                    nodes.append(
                        {
                            "title": _as_text(resolve1(item["Title"])),
                            "pageNumber": self._resolve_page(item.get("Dest"), item.get("A"), page_ids),
                            "children": children,
                        }
                    )
                else:
                    # Untitled entries are invisible in readers; their children stay in place.
                    nodes.extend(children)
                ref = item.get("Next")
            return nodes

        roots = walk(root["First"], 1)
        logger.info("Outline with %s entries found in %s", len(seen), self.path)
        return parse_outline(roots)

    def _resolve_page(self, dest: Any, action: Any, page_ids: Dict[int, int]) -> Optional[int]:
        if dest is None and action is not None:
            action = resolve1(action)
            if isinstance(action, dict) and _as_text(action.get("S")) == "GoTo":
                dest = action.get("D")
        if dest is None:
            return None

        dest = resolve1(dest)
        if isinstance(dest, (bytes, str, PSLiteral)):
            name = dest.name if isinstance(dest, PSLiteral) else dest
            try:
                dest = resolve1(self._pdf.doc.get_dest(name))
            except (PDFDestinationNotFound, KeyError):
                logger.debug("Unresolved named destination %r in %s", name, self.path)
                return None
        if isinstance(dest, dict):
            dest = resolve1(dest.get("D"))

        if isinstance(dest, list) and dest:
            target = dest[0]
            if isinstance(target, PDFObjRef):
                return page_ids.get(target.objid)
            if isinstance(target, int):
                # Some writers store a zero-based page index instead of a reference.
                return target + 1
        return None


class PDFService:
    """
    Handles PDF validation, persistence and opening documents for structuring.
    """

    def __init__(self, storage_path: Optional[Path] = None, max_file_size_mb: Optional[int] = None) -> None:
        self.storage_path = Path(storage_path or config.PDF_STORAGE_PATH)
        self.max_file_size_mb = max_file_size_mb or config.MAX_FILE_SIZE_MB

    def save_pdf(self, file_bytes: bytes, filename: str) -> str:
        if len(file_bytes) > self.max_file_size_mb * 1024 * 1024:
            raise ValueError(f"File too large (> {self.max_file_size_mb}MB)")

        ext = Path(filename).suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValueError("Only PDF files are allowed")

        # Quick signature check to reject invalid payloads early.
        if not file_bytes.startswith(b"%PDF"):
            raise ValueError("File is not a valid PDF")

        os.makedirs(self.storage_path, exist_ok=True)
        unique_name = f"{uuid.uuid4()}_{Path(filename).name}"
        path = str(self.storage_path / unique_name)

        with open(path, "wb") as f:
            f.write(file_bytes)

        logger.info("PDF saved at: %s", path)
        return path

    def delete_pdf(self, path: str) -> None:
        try:
            os.remove(path)
            logger.info("PDF removed: %s", path)
        except FileNotFoundError:
            logger.warning("PDF already gone: %s", path)

    def open(self, path: str) -> PDFDocument:
        return PDFDocument(path)
