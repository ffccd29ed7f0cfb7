from pydantic import BaseModel, Field
from typing import Literal


class DocumentSave(BaseModel):
    firebaseUid: str = Field(..., min_length=1)
    documentType: Literal["resume", "cover_letter"]
    htmlContent: str = Field(..., min_length=1)


class FavoriteRequest(BaseModel):
    firebaseUid: str = Field(..., min_length=1)
