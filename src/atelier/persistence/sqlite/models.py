"""SQLAlchemy ORM models for Atelier SQLite persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):  # type: ignore[misc]
    pass


class RecoveryRecordRow(Base):
    __tablename__ = "recovery_records"
    __table_args__ = (Index("ix_recovery_records_environment_asset", "environment", "asset_id"),)

    batch_id: Mapped[str] = mapped_column(String, primary_key=True)
    environment: Mapped[str] = mapped_column(String, nullable=False)
    asset_id: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    session_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # RecoveryRecord JSON, validated row by row on read
    payload: Mapped[str] = mapped_column(Text, nullable=False)


class DownloadUrlRow(Base):
    __tablename__ = "download_url_cache"

    job_id: Mapped[str] = mapped_column(String, primary_key=True)
    url: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
