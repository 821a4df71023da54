from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class ImageResponse(BaseModel):
    id: str
    user_id: str
    filename: str
    size: int
    url: str

class UploadResponse(BaseModel):
    success: bool = True
    images: List[ImageResponse] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

class ImageRecord(BaseModel):
    """One row of the images table as returned by the listing endpoint."""
    id: str
    user_id: str
    filename: str
    file_path: str
    mime_type: str
    size_bytes: int
    created_at: datetime
    deleted_at: Optional[datetime] = None
    url: str = ""

class ListResponse(BaseModel):
    user_id: str
    total: int
    images: List[ImageRecord]

class DeleteResponse(BaseModel):
    success: bool = True
    message: str = "image deleted"
    id: str

class StoredFile(BaseModel):
    """Where an image lives on disk and how to serve it."""
    image_id: str
    path: str
    mime_type: str


def image_url(user_id: str, image_id: str) -> str:
    return f"/image/{user_id}/{image_id}"
