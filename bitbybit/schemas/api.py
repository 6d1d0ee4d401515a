from typing import Optional

from pydantic import BaseModel, Field

from bitbybit.services.tracking import Viewport


class ViewportIn(BaseModel):
    scroll_top: float = Field(..., ge=0)
    client_height: float = Field(..., ge=0)
    scroll_height: float = Field(..., ge=0)

    def to_viewport(self) -> Viewport:
        return Viewport(
            scroll_top=self.scroll_top,
            client_height=self.client_height,
            scroll_height=self.scroll_height,
        )


class ActivateRequest(BaseModel):
    section_id: int
    viewport: Optional[ViewportIn] = None


class ScrollRequest(ViewportIn):
    section_id: int


class PositionUpdate(BaseModel):
    last_page_viewed: Optional[int] = Field(default=None, ge=1)
    scroll_progress: Optional[float] = Field(default=None, ge=0, le=100)
