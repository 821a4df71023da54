from contextlib import asynccontextmanager
from typing import Optional
import logging
import time

from fastapi import FastAPI, Request
from .core.config import settings
from .routers.health import router as health_router
from .routers.images import router as images_router, catalog_router
from .storage.store import FileSystemImageStore, build_store

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

tags_metadata = [
    {
        "name": "images",
        "description": (
            "Endpoints to upload, download, list and delete images.\n\n"
            "- Upload via multipart, several files per request.\n"
            "- JPG/JPEG/PNG/GIF/WEBP up to 10MB each.\n"
            "- Downloads carry Cache-Control and ETag; conditional GETs get a 304.\n"
            "- Listing and (soft) deletion are available with the database backend."
        ),
    },
    {"name": "health", "description": "Liveness / readiness probe."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    store: FileSystemImageStore = app.state.store
    logger.info("🚀 Starting with %s store", store.kind)
    store.prepare()
    yield
    logger.info("🛑 Shutting down")
    store.close()


def create_app(store: Optional[FileSystemImageStore] = None) -> FastAPI:
    """Build the application around `store` (one is built from settings if omitted)."""
    app = FastAPI(
        title="Image Microservice",
        description=(
            "How to Use:\n\n"
            "1) Upload: POST /upload with a `user_id` field and one or more `images` files.\n"
            "2) Download: GET /image/{user_id}/{image_id} (the `url` returned by the upload).\n"
            "3) List: GET /images/{user_id} for the user's images, newest first.\n"
            "4) Delete: DELETE /image/{user_id}/{image_id} hides the image; the file is kept."
        ),
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.state.store = store or build_store(settings)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    app.include_router(images_router)
    if app.state.store.supports_listing:
        app.include_router(catalog_router)
    app.include_router(health_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
