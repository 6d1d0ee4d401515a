from typing import List, Sequence

from bitbybit.schemas.outline import OutlineEntry, OutlineGroup, OutlineNode

TITLE_SEPARATOR = " > "


def _join(prefix: str, title: str) -> str:
    return f"{prefix}{TITLE_SEPARATOR}{title}" if prefix else title


def _entry(node: OutlineNode) -> OutlineEntry:
    return OutlineEntry(title=node.title, page_number=node.page_number)


def normalize_outline(nodes: Sequence[OutlineNode]) -> List[OutlineGroup]:
    """
    Flatten an arbitrarily nested outline into chapter/section groups, in document order.

    - a leaf becomes a one-section chapter of its own
    - a node whose children are all leaves becomes a chapter, children its sections
    - anything deeper is a grouping level (e.g. "Part II"): each run of
      consecutive leaves forms a chapter titled with the grouping path, nested
      children are walked with the path extended as "Part II > Chapter 3"
    """
    groups: List[OutlineGroup] = []
    _walk(nodes, "", groups)
    return groups


def _walk(nodes: Sequence[OutlineNode], prefix: str, out: List[OutlineGroup]) -> None:
    for node in nodes:
        if node.is_leaf:
            out.append(OutlineGroup(chapter_title=node.title, sections=[_entry(node)]))
            continue

        title = _join(prefix, node.title)
        if all(child.is_leaf for child in node.children):
            out.append(OutlineGroup(chapter_title=title, sections=[_entry(c) for c in node.children]))
            continue

        # Consecutive leaves are grouped run by run so document order survives
        # when leaves and nested children interleave.
        run: List[OutlineEntry] = []
        for child in node.children:
            if child.is_leaf:
                run.append(_entry(child))
                continue
            if run:
                out.append(OutlineGroup(chapter_title=title, sections=run))
                run = []
            _walk([child], title, out)
        if run:
            out.append(OutlineGroup(chapter_title=title, sections=run))
