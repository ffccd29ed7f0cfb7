"""
Generated documents (resumes and cover letters).

recent_documents is a bounded per-user log; favorited_documents holds copies
that outlive the recent entry they were promoted from. Ids are UUID strings so
one id never resolves in both tables.
"""
import hashlib
import re
import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql import func
from app.db.base import Base

DOCUMENT_TYPES = ("resume", "cover_letter")

DISPLAY_TYPES = {
    "resume": "📄 Resume",
    "cover_letter": "📝 Cover Letter",
}

_TITLE_RE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)


def new_document_id() -> str:
    return str(uuid.uuid4())


def content_hash(html_content: str) -> str:
    return hashlib.sha256(html_content.encode("utf-8")).hexdigest()


class _DocumentMixin:
    @property
    def display_type(self) -> str:
        return DISPLAY_TYPES.get(self.document_type, self.document_type)

    @property
    def extracted_title(self) -> str:
        match = _TITLE_RE.search(self.html_content or "")
        return match.group(1).strip() if match else "Untitled Document"


class RecentDocument(_DocumentMixin, Base):
    __tablename__ = "recent_documents"

    id = Column(String(36), primary_key=True, default=new_document_id)
    user_id = Column(
        String(128), ForeignKey("users.firebase_uid", ondelete="CASCADE"), nullable=False, index=True
    )
    document_type = Column(String, nullable=False)
    html_content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False)  # Per-user insertion order, breaks created_at ties
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_recent_documents_user_position", "user_id", "position"),
    )


class FavoritedDocument(_DocumentMixin, Base):
    __tablename__ = "favorited_documents"

    id = Column(String(36), primary_key=True, default=new_document_id)
    user_id = Column(
        String(128), ForeignKey("users.firebase_uid", ondelete="CASCADE"), nullable=False, index=True
    )
    document_type = Column(String, nullable=False)
    html_content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False)
    favorited_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "document_type", "content_hash", name="uq_favorited_documents_content"),
        Index("idx_favorited_documents_user_position", "user_id", "position"),
    )
