"""
Saved documents: recent history (last 20 generated) and favorites.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from app.dependencies.services import get_document_store
from app.schemas.document import DocumentSave, FavoriteRequest
from app.services.document_store import (
    DEFAULT_FAVORITES_PAGE_SIZE,
    DEFAULT_RECENT_PAGE_SIZE,
    DocumentStore,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/recent/{firebase_uid}")
def list_recent(
    firebase_uid: str,
    limit: int = Query(DEFAULT_RECENT_PAGE_SIZE, ge=0),
    offset: int = Query(0, ge=0),
    type: Optional[str] = None,
    store: DocumentStore = Depends(get_document_store),
):
    result = store.list_recent(firebase_uid, limit=limit, offset=offset, document_type=type)
    logger.info("Returning %s recent documents for %s", len(result["documents"]), firebase_uid)
    return {"success": True, "data": result}


@router.get("/favorites/{firebase_uid}")
def list_favorites(
    firebase_uid: str,
    limit: int = Query(DEFAULT_FAVORITES_PAGE_SIZE, ge=0),
    offset: int = Query(0, ge=0),
    type: Optional[str] = None,
    store: DocumentStore = Depends(get_document_store),
):
    result = store.list_favorites(firebase_uid, limit=limit, offset=offset, document_type=type)
    return {"success": True, "data": result}


@router.post("/save", status_code=status.HTTP_201_CREATED)
def save_document(body: DocumentSave, store: DocumentStore = Depends(get_document_store)):
    """Save a generated document; older entries beyond the cap are pruned in the same transaction."""
    document = store.append(body.firebaseUid, body.documentType, body.htmlContent)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content={"success": True, "data": document})


@router.post("/{document_id}/favorite")
def favorite_document(
    document_id: str,
    body: FavoriteRequest,
    store: DocumentStore = Depends(get_document_store),
):
    result = store.promote(document_id, body.firebaseUid)
    return {
        "success": True,
        "data": {
            "message": "Document was already in favorites"
            if result["alreadyFavorited"]
            else "Document added to favorites",
            "document": result["document"],
            "alreadyFavorited": result["alreadyFavorited"],
        },
    }


@router.delete("/favorites/{document_id}")
def remove_favorite(
    document_id: str,
    firebaseUid: str = Query(..., min_length=1),
    store: DocumentStore = Depends(get_document_store),
):
    result = store.demote(document_id, firebaseUid)
    return {
        "success": True,
        "data": {
            "message": "Document removed from favorites" if result["removed"] else "Document was not in favorites",
            "removed": result["removed"],
        },
    }


@router.delete("/recent/{document_id}")
def delete_recent(
    document_id: str,
    firebaseUid: str = Query(..., min_length=1),
    store: DocumentStore = Depends(get_document_store),
):
    result = store.delete_recent(document_id, firebaseUid)
    return {
        "success": True,
        "data": {
            "message": "Document deleted successfully" if result["deleted"] else "Document not found",
            "deleted": result["deleted"],
        },
    }


# Registered last so /recent/... and /favorites/... win over the catch-all id route
@router.get("/{document_id}")
def get_document(
    document_id: str,
    firebaseUid: Optional[str] = None,
    store: DocumentStore = Depends(get_document_store),
):
    """Fetch one document from either table; firebaseUid is optional ownership verification."""
    return {"success": True, "data": store.get_by_id(document_id, firebaseUid)}
