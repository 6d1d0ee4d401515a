from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from bitbybit.core.database import Base

STRUCTURE_SOURCES = ("native", "ai", "manual")
PROCESSING_STATUSES = ("pending", "processing", "complete", "error")


class Book(Base):
    """
    One imported PDF.
    processing_status is the single source of truth for whether structuring finished:
    pending -> processing -> complete (or error).
    """

    __tablename__ = "books"
    __table_args__ = (Index("ix_books_last_read_at", "last_read_at"),)

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False, index=True)
    author = Column(String(255), nullable=False)
    total_pages = Column(Integer, nullable=False, default=0)
    pdf_path = Column(String(500), nullable=False)
    cover_image = Column(Text, nullable=True)
    structure_source = Column(String(16), nullable=False, default="native")
    processing_status = Column(String(16), nullable=False, default="pending")
    created_at = Column(DateTime, default=datetime.utcnow)
    last_read_at = Column(DateTime, nullable=True)

    chapters = relationship(
        "Chapter",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="Chapter.order",
    )
