from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SplitPagesInput(BaseModel):
    """One chapter's pages submitted to the classifier in a single request."""

    page_images: List[str]
    page_texts: List[str]
    start_page: int = Field(..., ge=1)
    book_title: str
    previous_section_title: Optional[str] = None

    @model_validator(mode="after")
    def _aligned(self) -> "SplitPagesInput":
        if len(self.page_images) != len(self.page_texts):
            raise ValueError("page_images and page_texts must have the same length")
        return self

    @property
    def end_page(self) -> int:
        return self.start_page + len(self.page_images) - 1


class SectionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    start_page: int = Field(..., alias="startPage")
    end_page: int = Field(..., alias="endPage")
    summary: str = ""


class SplitPagesOutput(BaseModel):
    sections: List[SectionResult]
