"""Router – health check."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from .deps import get_store
from ..storage.store import FileSystemImageStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

SERVICE_NAME = "image-microservice"


@router.get("/health")
def health_check(store: FileSystemImageStore = Depends(get_store)) -> dict:
    """Liveness / readiness probe.

    Always 200; a database that does not answer only downgrades the status.
    """
    if store.kind != "database":
        return {"status": "ok", "service": SERVICE_NAME}

    status = "ok"
    try:
        store.ping()
    except SQLAlchemyError as exc:
        status = "degraded"
        logger.warning("Health check: database unavailable - %s", exc)
    return {"status": status, "service": SERVICE_NAME, "db": status}
