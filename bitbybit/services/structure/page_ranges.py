from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from bitbybit.schemas.outline import OutlineGroup


@dataclass(frozen=True)
class SectionRange:
    title: str
    start_page: int
    end_page: int


@dataclass(frozen=True)
class ChapterRange:
    title: str
    start_page: int
    end_page: int
    sections: List[SectionRange] = field(default_factory=list)


def _sanitize_anchors(groups: Sequence[OutlineGroup], total_pages: int) -> List[List[Optional[int]]]:
    # Anchors off the document or pointing backwards are treated as unresolved.
    resolved: List[List[Optional[int]]] = []
    highest = 0
    for group in groups:
        anchors: List[Optional[int]] = []
        for entry in group.sections:
            page = entry.page_number
            if page is None or page < 1 or page > total_pages or page < highest:
                anchors.append(None)
                continue
            highest = page
            anchors.append(page)
        resolved.append(anchors)
    return resolved


def resolve_page_ranges(groups: Sequence[OutlineGroup], total_pages: int) -> List[ChapterRange]:
    """
    Turn outline groups into chapters and sections with inclusive page ranges.

    Chapter 1 always starts on page 1 and the last chapter ends on total_pages.
    A chapter ends the page before the next chapter's first anchor; a section ends the
    page before its next sibling. Unresolved anchors inherit the previous start, and
    every range is at least one page long.
    """
    if total_pages < 1:
        raise ValueError("total_pages must be >= 1")
    if not groups:
        return []

    anchors = _sanitize_anchors(groups, total_pages)

    starts: List[int] = []
    for idx, group_anchors in enumerate(anchors):
        first = group_anchors[0] if group_anchors else None
        if idx == 0:
            starts.append(1)
        elif first is not None:
            starts.append(first)
        else:
            starts.append(starts[-1])

    chapters: List[ChapterRange] = []
    for idx, group in enumerate(groups):
        start = starts[idx]
        end = starts[idx + 1] - 1 if idx + 1 < len(groups) else total_pages
        end = max(start, end)

        entries = list(group.sections)
        chapter_anchors = anchors[idx]
        if not entries:
            entries = [None]
            chapter_anchors = [None]

        section_starts: List[int] = []
        for k, anchor in enumerate(chapter_anchors):
            if k == 0:
                section_start = start
            elif anchor is not None:
                section_start = anchor
            else:
                section_start = section_starts[-1]
            section_starts.append(min(max(section_start, start), end))

        sections: List[SectionRange] = []
        for k, entry in enumerate(entries):
            section_start = section_starts[k]
            section_end = section_starts[k + 1] - 1 if k + 1 < len(section_starts) else end
            sections.append(
                SectionRange(
                    title=entry.title if entry is not None else group.chapter_title,
                    start_page=section_start,
                    end_page=max(section_start, section_end),
                )
            )

        chapters.append(ChapterRange(title=group.chapter_title, start_page=start, end_page=end, sections=sections))

    return chapters


def default_page_batches(total_pages: int, batch_size: int = 10) -> List[ChapterRange]:
    """Provisional title-less chapters of batch_size pages, with no sections yet."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    chapters: List[ChapterRange] = []
    for start in range(1, total_pages + 1, batch_size):
        end = min(start + batch_size - 1, total_pages)
        chapters.append(ChapterRange(title=f"Pages {start}-{end}", start_page=start, end_page=end))
    return chapters
