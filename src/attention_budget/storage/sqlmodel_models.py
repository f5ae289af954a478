"""SQLModel ORM tables for the post cache and settings."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Text
from sqlmodel import Field, SQLModel


class PostRow(SQLModel, table=True):
    __tablename__ = "posts"  # type: ignore[bad-override]

    post_id: str = Field(primary_key=True)
    platform: str = Field(index=True)
    state: str = Field(index=True)
    post_data_json: str = Field(sa_column=Column(Text, nullable=False))
    classification_json: str | None = Field(default=None, sa_column=Column(Text))
    tasks_json: str = Field(sa_column=Column(Text, nullable=False))
    accumulated_text: str = Field(default="", sa_column=Column(Text, nullable=False))
    last_classification_text: str = Field(default="", sa_column=Column(Text, nullable=False))
    metadata_json: str = Field(sa_column=Column(Text, nullable=False))
    artifacts_json: str = Field(sa_column=Column(Text, nullable=False))
    debug_json: str = Field(sa_column=Column(Text, nullable=False))
    last_seen_ms: float = Field(sa_column=Column(Float, nullable=False, index=True))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SettingRow(SQLModel, table=True):
    __tablename__ = "settings"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value_json: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
