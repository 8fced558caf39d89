# storage.py
# Output store for items the agent collects.
#
# Duplicates are keyed by a SHA-256 fingerprint of title + URL. A repeat
# insert refreshes updated_at and is reported as DuplicateItemError, never
# as a storage failure. SQLite by default; any SQLAlchemy URL works.

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import DateTime, Engine, Integer, String, Text, create_engine, make_url, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


class OutputRow(Base):
    """One saved item. content_hash is unique across the table."""

    __tablename__ = "agent_outputs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class OutputItem(BaseModel):
    """An item to save."""

    title: str = Field(..., min_length=1, description="Title of the item (required)")
    description: str | None = Field(default=None, description="Description of the item")
    url: str | None = Field(default=None, description="URL of the item")
    category: str | None = Field(
        default=None,
        description='Category of the item (e.g., "free stuff", "furniture", "electronics")',
    )


class SavedItem(OutputItem):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    updated_at: datetime


class BatchError(BaseModel):
    item: Any = None
    error: str


class BatchSummary(BaseModel):
    saved: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[BatchError] = Field(default_factory=list)


class DuplicateItemError(Exception):
    """Raised by save() when the fingerprint already exists. Not a failure."""

    def __init__(self, item: SavedItem) -> None:
        super().__init__(f"duplicate item: {item.title!r} ({item.url or 'no url'})")
        self.item = item


def content_fingerprint(title: str | None, url: str | None) -> str:
    """SHA-256 of 'title|url', matching the unique constraint."""
    return hashlib.sha256(f"{title or ''}|{url or ''}".encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _engine(url: str) -> Engine:
    """
    In-memory SQLite gets one shared connection usable from any thread;
    otherwise each worker thread would see its own empty database.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=False)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class OutputStore:
    """
    Save / batch-save / recent / exists over the agent_outputs table.

    Example:
        store = OutputStore("sqlite:///outputs.db")
        store.save({"title": "Free couch", "url": "https://example.com/1"})
    """

    def __init__(self, url: str | None = None) -> None:
        self._engine = _engine(url or "sqlite://")
        Base.metadata.create_all(self._engine)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info("Output store ready (%s)", self._engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _upsert(session: Session, item: OutputItem, now: datetime) -> tuple[OutputRow, bool]:
        """Return (row, created). Existing rows only get updated_at refreshed."""
        fingerprint = content_fingerprint(item.title, item.url)
        row = session.scalar(select(OutputRow).where(OutputRow.content_hash == fingerprint))
        if row is not None:
            row.updated_at = now
            return row, False

        row = OutputRow(
            title=item.title,
            description=item.description,
            url=item.url,
            category=item.category,
            created_at=now,
            updated_at=now,
            content_hash=fingerprint,
        )
        session.add(row)
        session.flush()
        return row, True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def save(self, item: OutputItem | dict[str, Any]) -> SavedItem:
        """
        Insert one item.

        Raises ValueError (pydantic ValidationError) when the title is missing,
        and DuplicateItemError when the fingerprint already exists.
        """
        item = OutputItem.model_validate(item)
        with self._sessions() as session, session.begin():
            row, created = self._upsert(session, item, _now())
            saved = SavedItem.model_validate(row)

        if not created:
            raise DuplicateItemError(saved)
        return saved

    def save_batch(self, items: list[OutputItem | dict[str, Any]]) -> BatchSummary:
        """
        Insert many items in one transaction.

        Invalid items are counted as failed and skipped. A database error
        rolls back the whole batch and propagates.
        """
        if not items:
            raise ValueError("Items must be a non-empty list.")

        summary = BatchSummary()
        now = _now()
        with self._sessions() as session, session.begin():
            for raw in items:
                try:
                    item = OutputItem.model_validate(raw)
                except ValidationError as exc:
                    summary.failed += 1
                    title = raw.get("title") if isinstance(raw, dict) else getattr(raw, "title", None)
                    summary.errors.append(BatchError(item=title, error=str(exc)))
                    continue

                _, created = self._upsert(session, item, now)
                if created:
                    summary.saved += 1
                else:
                    summary.updated += 1

        logger.info(
            "Batch save: %d saved, %d updated, %d failed",
            summary.saved,
            summary.updated,
            summary.failed,
        )
        return summary

    def recent(self, limit: int = 100, days: int = 7) -> list[SavedItem]:
        """Items created within the last `days` days, newest first."""
        since = _now() - timedelta(days=days)
        query = (
            select(OutputRow)
            .where(OutputRow.created_at >= since)
            .order_by(OutputRow.created_at.desc(), OutputRow.id.desc())
            .limit(limit)
        )
        with self._sessions() as session:
            return [SavedItem.model_validate(row) for row in session.scalars(query)]

    def exists(self, url: str | None) -> bool:
        if not url:
            return False
        with self._sessions() as session:
            return session.scalar(select(OutputRow.id).where(OutputRow.url == url).limit(1)) is not None
