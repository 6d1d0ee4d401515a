import re
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_OUTLINE_DEPTH = 64


class OutlineNode(BaseModel):
    """
    One entry of a document's embedded table of contents.
    page_number is None when the bookmark target could not be resolved.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str = "Untitled"
    page_number: Optional[int] = Field(default=None, alias="pageNumber")
    children: List["OutlineNode"] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, value: Any) -> str:
        if value is None:
            return "Untitled"
        title = re.sub(r"\s+", " ", str(value)).strip()
        return title or "Untitled"

    @field_validator("page_number", mode="before")
    @classmethod
    def _normalize_anchor(cls, value: Any) -> Optional[int]:
        # Unresolvable anchors become None rather than failing the whole outline.
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, float):
            if not value.is_integer():
                return None
            value = int(value)
        if isinstance(value, str):
            if not value.strip().isdigit():
                return None
            value = int(value.strip())
        if not isinstance(value, int) or value < 1:
            return None
        return value

    @field_validator("children", mode="before")
    @classmethod
    def _none_children(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_leaf(self) -> bool:
        return not self.children


class OutlineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    page_number: Optional[int] = None


class OutlineGroup(BaseModel):
    """A chapter title with its ordered section entries."""

    model_config = ConfigDict(frozen=True)

    chapter_title: str
    sections: List[OutlineEntry]


def _depth(raw: Any, limit: int) -> int:
    # Iterative so a pathological tree cannot blow the interpreter stack.
    deepest = 0
    stack = [(raw, 1)]
    while stack:
        node, depth = stack.pop()
        if depth > limit:
            return depth
        deepest = max(deepest, depth)
        children = node.get("children") if isinstance(node, dict) else getattr(node, "children", None)
        for child in children or []:
            stack.append((child, depth + 1))
    return deepest


def parse_outline(raw: Any, max_depth: int = MAX_OUTLINE_DEPTH) -> Optional[List[OutlineNode]]:
    """
    Validate untyped outline data into OutlineNode trees.
    Returns None for a missing or empty outline; raises ValueError for trees deeper than max_depth.
    """
    if not raw:
        return None
    if not isinstance(raw, list):
        raise ValueError("Outline must be a list of nodes")

    for node in raw:
        if _depth(node, max_depth) > max_depth:
            raise ValueError(f"Outline nesting exceeds {max_depth} levels")

    return [node if isinstance(node, OutlineNode) else OutlineNode.model_validate(node) for node in raw]
