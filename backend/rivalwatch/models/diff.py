"""Content diff history: append-only, one row per (url, run pair) comparison."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from rivalwatch.db import Base, JSONType

CATEGORIES = ("branding", "integration", "pricing", "product", "positioning", "partnership")


class DiffRecord(Base):
    """Categorized changes between two snapshots of the same URL."""

    __tablename__ = "content_diffs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    run_id1: Mapped[str] = mapped_column(String(16), nullable=False)
    run_id2: Mapped[str] = mapped_column(String(16), nullable=False)
    week_number: Mapped[str] = mapped_column(
        String(2), nullable=False, index=True, comment="Week of run_id2"
    )
    branding_changes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    integration_changes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    pricing_changes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    product_changes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    positioning_changes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    partnership_changes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    @property
    def categories(self) -> dict[str, list[str]]:
        return {name: list(getattr(self, f"{name}_changes") or []) for name in CATEGORIES}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "run_id1": self.run_id1,
            "run_id2": self.run_id2,
            "week_number": self.week_number,
            **{f"{name}_changes": changes for name, changes in self.categories.items()},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<DiffRecord id={self.id} url={self.url[:60]!r} runs={self.run_id1}->{self.run_id2}>"
