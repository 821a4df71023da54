from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from sqlalchemy.exc import SQLAlchemyError
from typing import BinaryIO
import logging
import os
from ..core.config import settings
from ..core.models import UploadResponse, ListResponse, DeleteResponse
from ..core.utils import generate_etag, is_safe_segment, is_valid_image_type
from ..storage.store import FileSystemImageStore, SqlImageStore, UploadError
from .deps import get_store

logger = logging.getLogger(__name__)

# upload + download work with every store
router = APIRouter(tags=["images"])
# listing + soft delete need the images table
catalog_router = APIRouter(tags=["images"])

CACHE_CONTROL = "public, max-age=31536000"
READ_CHUNK_SIZE = 8192


def _stream_size(stream: BinaryIO) -> int:
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


@router.post(
    "/upload",
    response_model=UploadResponse,
    summary="Upload one or more images",
    description=(
        "Multipart form-data with a `user_id` field and one or more `images` file parts.\n\n"
        "Each file must be at most 10MB and end in .jpg, .jpeg, .png, .gif or .webp.\n"
        "Files are stored independently: the response lists the stored images and one\n"
        "error line per rejected file. Returns 400 when no file could be stored."
    ),
)
async def upload_images(request: Request, store: FileSystemImageStore = Depends(get_store)):
    form = await request.form(max_part_size=settings.max_memory)
    try:
        user_id = form.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            raise HTTPException(status_code=400, detail="user_id is required")
        if not is_safe_segment(user_id):
            raise HTTPException(status_code=400, detail="invalid user_id")

        files = [f for f in form.getlist("images") if isinstance(f, UploadFile)]
        if not files:
            raise HTTPException(status_code=400, detail="no images received")

        response = UploadResponse()
        limit_mb = settings.max_file_size >> 20
        for upload in files:
            name = upload.filename or ""

            size = upload.size if upload.size is not None else _stream_size(upload.file)
            if size > settings.max_file_size:
                response.errors.append(f"{name}: exceeds maximum size of {limit_mb}MB")
                continue

            if not is_valid_image_type(name):
                response.errors.append(f"{name}: invalid format")
                continue

            try:
                upload.file.seek(0)
            except (OSError, ValueError):
                logger.exception("Could not open upload %s", name)
                response.errors.append(f"{name}: error opening file")
                continue

            try:
                stored = await run_in_threadpool(store.save, user_id, name, upload.file)
            except UploadError as e:
                response.errors.append(f"{name}: {e.reason}")
                continue
            response.images.append(stored)

        for error in response.errors:
            logger.info("Upload rejected for user %s: %s", user_id, error)

        if not response.images:
            response.success = False
            return JSONResponse(status_code=400, content=response.model_dump())
        return response
    finally:
        await form.close()


@router.get(
    "/image/{user_id}/{image_id}",
    summary="Download an image",
    description=(
        "Streams the stored bytes with a long-lived public Cache-Control and an ETag\n"
        "derived from the image id. Send the ETag back in If-None-Match to get a 304."
    ),
)
def download_image(
    user_id: str,
    image_id: str,
    request: Request,
    store: FileSystemImageStore = Depends(get_store),
):
    try:
        stored = store.find(user_id, image_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="not_found")
    except (SQLAlchemyError, OSError):
        logger.exception("Lookup failed for %s/%s", user_id, image_id)
        raise HTTPException(status_code=500, detail="download_failed")

    try:
        fh = open(stored.path, "rb")
    except OSError:
        logger.exception("Could not open %s", stored.path)
        raise HTTPException(status_code=500, detail="download_failed")
    try:
        size = os.fstat(fh.fileno()).st_size
    except OSError:
        fh.close()
        logger.exception("Could not stat %s", stored.path)
        raise HTTPException(status_code=500, detail="download_failed")

    etag = generate_etag(image_id)
    if request.headers.get("if-none-match") == etag:
        fh.close()
        return Response(status_code=304, headers={"ETag": etag, "Cache-Control": CACHE_CONTROL})

    def _iter():
        with fh:
            while True:
                chunk = fh.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    headers = {
        "Content-Length": str(size),
        "Cache-Control": CACHE_CONTROL,
        "ETag": etag,
    }
    logger.info("✓ Image served: %s/%s", user_id, image_id)
    return StreamingResponse(_iter(), media_type=stored.mime_type, headers=headers)


@catalog_router.get(
    "/images/{user_id}",
    response_model=ListResponse,
    summary="List a user's images",
    description="Non-deleted images of the user, newest first.",
)
def list_images(user_id: str, store: SqlImageStore = Depends(get_store)):
    try:
        images = store.list_images(user_id)
    except SQLAlchemyError:
        logger.exception("Listing failed for %s", user_id)
        raise HTTPException(status_code=500, detail="list_failed")
    return ListResponse(user_id=user_id, total=len(images), images=images)


@catalog_router.delete(
    "/image/{user_id}/{image_id}",
    response_model=DeleteResponse,
    summary="Delete an image",
    description=(
        "Soft delete: the image disappears from downloads and listings but the file\n"
        "is kept on disk. Returns 404 if the image does not exist or is already deleted."
    ),
)
def delete_image(user_id: str, image_id: str, store: SqlImageStore = Depends(get_store)):
    try:
        store.soft_delete(user_id, image_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="not_found")
    except SQLAlchemyError:
        logger.exception("Delete failed for %s/%s", user_id, image_id)
        raise HTTPException(status_code=500, detail="delete_failed")
    return DeleteResponse(id=image_id)
