from typing import Mapping, Optional

PAGE_SEPARATOR = "\n\n"


def bind_text(page_texts: Mapping[int, str], start_page: int, end_page: int) -> Optional[str]:
    """
    Join the extracted text of pages start_page..end_page (inclusive).
    Blank pages and pages missing from page_texts are skipped; None if nothing is left.
    """
    parts = []
    for page in range(start_page, end_page + 1):
        text = page_texts.get(page)
        if text and text.strip():
            parts.append(text)
    return PAGE_SEPARATOR.join(parts) or None
