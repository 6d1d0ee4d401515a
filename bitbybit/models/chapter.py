from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from bitbybit.core.database import Base


class Chapter(Base):
    """
    Top level of the two-level structure. Page range is inclusive and 1-indexed.
    """

    __tablename__ = "chapters"
    __table_args__ = (
        UniqueConstraint("book_id", "order", name="uq_chapters_book_order"),
        Index("ix_chapters_book_order", "book_id", "order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    order = Column(Integer, nullable=False)
    start_page = Column(Integer, nullable=False)
    end_page = Column(Integer, nullable=False)
    # Set while a structuring job owns this chapter; cleared when it finishes.
    structuring_started_at = Column(DateTime, nullable=True)

    book = relationship("Book", back_populates="chapters")
    sections = relationship(
        "Section",
        back_populates="chapter",
        cascade="all, delete-orphan",
        order_by="Section.order",
    )
