"""SQLAlchemy ORM models describing the downloaded catalog."""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class Movie(Base):
    """A row of the read-only ``Movies`` catalog table."""

    __tablename__ = "Movies"

    # The catalog ships without a declared key; links are unique in practice.
    link: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text)
    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    year: Mapped[str | None] = mapped_column(String(8), nullable=True)
    poster_link: Mapped[str | None] = mapped_column(Text, nullable=True)
