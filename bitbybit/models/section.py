from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from bitbybit.core.database import Base


class Section(Base):
    """
    Smallest readable unit. `order` is global across the whole book, not per chapter.
    is_read and read_at always change together.
    """

    __tablename__ = "sections"
    __table_args__ = (
        Index("ix_sections_chapter_order", "chapter_id", "order"),
        Index("ix_sections_book_order", "book_id", "order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(500), nullable=False)
    order = Column(Integer, nullable=False)
    start_page = Column(Integer, nullable=False)
    end_page = Column(Integer, nullable=False)
    extracted_text = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    last_page_viewed = Column(Integer, nullable=True)
    scroll_progress = Column(Float, nullable=True)

    chapter = relationship("Chapter", back_populates="sections")
