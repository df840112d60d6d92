# ==============================================================================
# DATABASE MODELS (SCHEMA DEFINITION)
# ==============================================================================
# This module defines the tables of the platform using SQLAlchemy's ORM. Each
# class represents a table and each mapped attribute a column. Engines and
# sessions live in `db.py`; this module only describes the schema.
# ------------------------------------------------------------------------------

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# --- Status values ---
PROJECT_STATUS_DRAFT = "draft"
PROJECT_STATUS_PUBLISHED = "published"
PROJECT_STATUS_ARCHIVED = "archived"

NOTIFICATION_UNREAD = "unread"
NOTIFICATION_READ = "read"
EVENT_NEW_LIKE = "new_like"


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    """
    A platform account.

    `token` is a static access token; requests authenticate with
    `Authorization: Bearer <token>`.
    """
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    token: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True, nullable=True)
    admin: Mapped[bool] = mapped_column(Boolean, default=False)
    date_created: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    projects: Mapped[list[Project]] = relationship("Project", back_populates="creator")

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Voicebank(Base):
    """A singer's sample set, stored as a zip archive in the uploads directory."""
    __tablename__ = "voicebanks"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    # File name of the archive on disk, relative to UPLOADS_DIR.
    filename_disk: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    date_created: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Project(Base):
    """
    A shared composition.

    The counters (`likes_count`, `plays`, `downloads`) are denormalized and
    mirrored into the search index on every change.
    """
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default=PROJECT_STATUS_DRAFT, index=True)
    tempo: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=120)
    key_signature: Mapped[Optional[str]] = mapped_column(String(8), nullable=True, default="C")
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)
    likes_count: Mapped[int] = mapped_column(Integer, default=0)
    plays: Mapped[int] = mapped_column(Integer, default=0)
    downloads: Mapped[int] = mapped_column(Integer, default=0)
    composition_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    cover_image: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rendered_audio: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_created: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    primary_voicebank: Mapped[Optional[str]] = mapped_column(
        ForeignKey("voicebanks.id", ondelete="SET NULL"), nullable=True
    )
    date_created: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    date_updated: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, onupdate=datetime.utcnow)

    creator: Mapped[Optional[User]] = relationship("User", back_populates="projects")
    voicebank: Mapped[Optional[Voicebank]] = relationship("Voicebank")
    tags: Mapped[list[ProjectTag]] = relationship(
        "ProjectTag", back_populates="project", cascade="all, delete-orphan"
    )
    likes: Mapped[list[Like]] = relationship("Like", back_populates="project", cascade="all, delete-orphan")
    comments: Mapped[list[Comment]] = relationship(
        "Comment", back_populates="project", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "tempo": self.tempo,
            "key_signature": self.key_signature,
            "duration": self.duration,
            "likes_count": self.likes_count or 0,
            "plays": self.plays or 0,
            "downloads": self.downloads or 0,
            "cover_image": self.cover_image,
            "rendered_audio": self.rendered_audio,
            "user_created": self.user_created,
            "primary_voicebank": self.primary_voicebank,
            "date_created": self.date_created.isoformat() if self.date_created else None,
        }


class Tag(Base):
    __tablename__ = "tags"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, index=True)


class ProjectTag(Base):
    """Junction row between a project and a tag."""
    __tablename__ = "projects_tags"
    __table_args__ = (
        UniqueConstraint("project_id", "tag_id", name="uq_project_tag"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # The previous project is needed to reindex it when a link moves.
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True,
                                            active_history=True)
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"))

    project: Mapped[Project] = relationship("Project", back_populates="tags")
    tag: Mapped[Tag] = relationship("Tag")


class Like(Base):
    __tablename__ = "projects_likes"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_user_like"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    date_created: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="likes")


class Notification(Base):
    __tablename__ = "notifications"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Recipient.
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    message: Mapped[str] = mapped_column(Text)
    project_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=True
    )
    event_type: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default=NOTIFICATION_UNREAD, index=True)
    triggered_by: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    date_created: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "message": self.message,
            "project_id": self.project_id,
            "event_type": self.event_type,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "date_created": self.date_created.isoformat() if self.date_created else None,
        }


class Comment(Base):
    """A comment on a project; `parent_id` threads replies under a top-level comment."""
    __tablename__ = "comments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("comments.id", ondelete="CASCADE"), nullable=True
    )
    user_created: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content: Mapped[str] = mapped_column(Text)
    date_created: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="comments")
