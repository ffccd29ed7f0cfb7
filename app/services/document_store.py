"""
Saved documents: the bounded recent log and the favorites set.

Every write runs as one transaction that first locks the owner's user row, so
an append and its trim, or a duplicate check and its insert, are never seen
half-done by a concurrent request for the same user.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import config
from app.core.errors import AccessDenied, DocumentNotFound, InvalidRequest
from app.db.session import Database, translate_store_errors
from app.models.document import DOCUMENT_TYPES, FavoritedDocument, RecentDocument, content_hash
from app.services.usage_ledger import get_user_or_404

logger = logging.getLogger(__name__)

DEFAULT_RECENT_PAGE_SIZE = 20
DEFAULT_FAVORITES_PAGE_SIZE = 50

AnyDocument = Union[RecentDocument, FavoritedDocument]


def serialize_document(document: AnyDocument) -> Dict[str, Any]:
    data = {
        "id": document.id,
        "user_id": document.user_id,
        "document_type": document.document_type,
        "html_content": document.html_content,
        "display_type": document.display_type,
        "extracted_title": document.extracted_title,
    }
    if isinstance(document, RecentDocument):
        data["source_table"] = "recent"
        data["created_at"] = document.created_at.isoformat() if document.created_at else None
        data["timestamp"] = data["created_at"]
    else:
        data["source_table"] = "favorited"
        data["favorited_at"] = document.favorited_at.isoformat() if document.favorited_at else None
        data["timestamp"] = data["favorited_at"]
    return data


def _next_position(db: Session, model: Type[AnyDocument], firebase_uid: str) -> int:
    current = db.execute(
        select(func.max(model.position)).where(model.user_id == firebase_uid)
    ).scalar()
    return (current or 0) + 1


def find_favorite(db: Session, firebase_uid: str, document_type: str, digest: str) -> Optional[FavoritedDocument]:
    return db.execute(
        select(FavoritedDocument).where(
            FavoritedDocument.user_id == firebase_uid,
            FavoritedDocument.document_type == document_type,
            FavoritedDocument.content_hash == digest,
        )
    ).scalar_one_or_none()


class DocumentStore:
    def __init__(self, database: Database, recent_cap: int = config.RECENT_DOCUMENTS_CAP):
        self.database = database
        self.recent_cap = recent_cap

    @translate_store_errors("Failed to save document")
    def append(self, firebase_uid: str, document_type: str, html_content: str) -> Dict[str, Any]:
        if document_type not in DOCUMENT_TYPES:
            raise InvalidRequest("documentType must be 'resume' or 'cover_letter'")

        with self.database.session_scope() as db:
            get_user_or_404(db, firebase_uid, for_update=True)

            document = RecentDocument(
                user_id=firebase_uid,
                document_type=document_type,
                html_content=html_content,
                content_hash=content_hash(html_content),
                position=_next_position(db, RecentDocument, firebase_uid),
                created_at=datetime.now(timezone.utc),
            )
            db.add(document)
            db.flush()

            keep = (
                select(RecentDocument.id)
                .where(RecentDocument.user_id == firebase_uid)
                .order_by(RecentDocument.position.desc())
                .limit(self.recent_cap)
            )
            pruned = db.execute(
                delete(RecentDocument)
                .where(RecentDocument.user_id == firebase_uid, RecentDocument.id.not_in(keep.scalar_subquery()))
                .execution_options(synchronize_session=False)
            )
            logger.info(
                "Document saved (ID: %s) for %s, cleaned up %s old documents",
                document.id, firebase_uid, pruned.rowcount,
            )
            return serialize_document(document)

    @translate_store_errors("Failed to favorite document")
    def promote(self, document_id: str, firebase_uid: str) -> Dict[str, Any]:
        try:
            return self._promote(document_id, firebase_uid)
        except IntegrityError:
            # A concurrent promote inserted the same content first
            logger.info("Favorite for %s created concurrently, returning existing entry", document_id)
            return self._promote(document_id, firebase_uid)

    def _promote(self, document_id: str, firebase_uid: str) -> Dict[str, Any]:
        with self.database.session_scope() as db:
            get_user_or_404(db, firebase_uid, for_update=True)

            source = db.execute(
                select(RecentDocument).where(
                    RecentDocument.id == document_id, RecentDocument.user_id == firebase_uid
                )
            ).scalar_one_or_none()
            if not source:
                raise DocumentNotFound(
                    document_id, "Document not found or you don't have permission to favorite it"
                )

            existing = find_favorite(db, firebase_uid, source.document_type, source.content_hash)
            if existing:
                return {"alreadyFavorited": True, "document": serialize_document(existing)}

            favorite = FavoritedDocument(
                user_id=firebase_uid,
                document_type=source.document_type,
                html_content=source.html_content,
                content_hash=source.content_hash,
                position=_next_position(db, FavoritedDocument, firebase_uid),
                favorited_at=datetime.now(timezone.utc),
            )
            db.add(favorite)
            db.flush()
            logger.info("Document %s added to favorites as %s", document_id, favorite.id)
            return {"alreadyFavorited": False, "document": serialize_document(favorite)}

    @translate_store_errors("Failed to remove favorite")
    def demote(self, document_id: str, firebase_uid: str) -> Dict[str, bool]:
        with self.database.session_scope() as db:
            result = db.execute(
                delete(FavoritedDocument)
                .where(FavoritedDocument.id == document_id, FavoritedDocument.user_id == firebase_uid)
                .execution_options(synchronize_session=False)
            )
        removed = result.rowcount > 0
        logger.info("Favorite removal %s for %s: %s", document_id, firebase_uid, "success" if removed else "not found")
        return {"removed": removed}

    @translate_store_errors("Failed to delete document")
    def delete_recent(self, document_id: str, firebase_uid: str) -> Dict[str, bool]:
        with self.database.session_scope() as db:
            result = db.execute(
                delete(RecentDocument)
                .where(RecentDocument.id == document_id, RecentDocument.user_id == firebase_uid)
                .execution_options(synchronize_session=False)
            )
        deleted = result.rowcount > 0
        logger.info("Recent document deletion %s for %s: %s", document_id, firebase_uid, deleted)
        return {"deleted": deleted}

    def list_recent(
        self,
        firebase_uid: str,
        limit: int = DEFAULT_RECENT_PAGE_SIZE,
        offset: int = 0,
        document_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._list(RecentDocument, firebase_uid, limit, offset, document_type)

    def list_favorites(
        self,
        firebase_uid: str,
        limit: int = DEFAULT_FAVORITES_PAGE_SIZE,
        offset: int = 0,
        document_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._list(FavoritedDocument, firebase_uid, limit, offset, document_type)

    @translate_store_errors("Failed to retrieve documents")
    def _list(self, model, firebase_uid, limit, offset, document_type):
        if limit < 0 or offset < 0:
            raise InvalidRequest("limit and offset must be non-negative")

        filters = [model.user_id == firebase_uid]
        if document_type:
            filters.append(model.document_type == document_type)

        with self.database.session_scope() as db:
            total_count = db.execute(select(func.count()).select_from(model).where(*filters)).scalar_one()
            documents = db.execute(
                select(model)
                .where(*filters)
                .order_by(model.position.desc())  # newest first
                .limit(limit)
                .offset(offset)
            ).scalars().all()
            has_more = offset + limit < total_count
            return {
                "documents": [serialize_document(d) for d in documents],
                "totalCount": total_count,
                "hasMore": has_more,
                "pagination": {
                    "limit": limit,
                    "offset": offset,
                    "nextOffset": offset + limit if has_more else None,
                },
            }

    @translate_store_errors("Failed to retrieve document")
    def get_by_id(self, document_id: str, firebase_uid: Optional[str] = None) -> Dict[str, Any]:
        """
        Look in recent first, then favorites. A foreign owner gets AccessDenied,
        not DocumentNotFound, matching the existing API behaviour.
        """
        with self.database.session_scope() as db:
            document = db.get(RecentDocument, document_id) or db.get(FavoritedDocument, document_id)
            if not document:
                raise DocumentNotFound(document_id)
            if firebase_uid and document.user_id != firebase_uid:
                logger.info("Access denied to document %s for %s", document_id, firebase_uid)
                raise AccessDenied()
            return serialize_document(document)
