from typing import BinaryIO, List, Optional
import logging
import os
import shutil
import uuid

import sqlalchemy as sa
from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from ..core.config import Settings, settings as default_settings
from ..core.models import ImageRecord, ImageResponse, StoredFile, image_url
from ..core.utils import IMAGE_EXTENSIONS, file_extension, get_content_type, is_safe_segment
from .clients import ImageRow, create_tables, engine as engine_factory, session_factory, utc_now

"""Image stores: where uploaded bytes go and how they are found again.

Both stores keep files under ``<upload_dir>/<user_id>/<image_id><ext>``.
The SQL store additionally indexes every file in the ``images`` table and
supports listing and soft deletion.
"""

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 64 * 1024


class UploadError(Exception):
    """A single file could not be stored; `reason` is safe to show the client."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class FileSystemImageStore:
    """Files only. The identifier and extension on disk are the metadata."""

    kind = "filesystem"
    supports_listing = False

    def __init__(self, upload_dir: str):
        self.upload_dir = os.path.abspath(upload_dir)

    def prepare(self) -> None:
        os.makedirs(self.upload_dir, exist_ok=True)
        logger.info("Upload root ready at %s", self.upload_dir)

    def close(self) -> None:
        pass

    def ping(self) -> None:
        pass

    def user_dir(self, user_id: str) -> str:
        return os.path.join(self.upload_dir, user_id)

    def save(self, user_id: str, filename: str, stream: BinaryIO) -> ImageResponse:
        """Copy `stream` to a fresh path for `user_id` and index it.

        Raises UploadError naming the failed step; nothing is left on disk
        when it does.
        """
        image_id = str(uuid.uuid4())
        ext = file_extension(filename)
        user_dir = self.user_dir(user_id)
        path = os.path.join(user_dir, image_id + ext)

        try:
            os.makedirs(user_dir, exist_ok=True)
        except OSError as e:
            logger.error("Could not create %s: %s", user_dir, e)
            raise UploadError("error creating directory") from e

        try:
            dest = open(path, "wb")
        except OSError as e:
            logger.error("Could not create %s: %s", path, e)
            raise UploadError("error saving") from e

        try:
            with dest:
                shutil.copyfileobj(stream, dest, COPY_CHUNK_SIZE)
                size = dest.tell()
        except OSError as e:
            logger.error("Could not write %s: %s", path, e)
            self._discard(path)
            raise UploadError("error writing") from e

        self._record(
            image_id=image_id,
            user_id=user_id,
            filename=filename,
            path=path,
            mime_type=get_content_type(ext),
            size=size,
        )
        logger.info("✓ Image stored: %s/%s%s (%d bytes)", user_id, image_id, ext, size)

        return ImageResponse(
            id=image_id,
            user_id=user_id,
            filename=filename,
            size=size,
            url=image_url(user_id, image_id),
        )

    def _record(self, *, image_id: str, user_id: str, filename: str, path: str, mime_type: str, size: int) -> None:
        pass

    def _discard(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove partial file %s: %s", path, e)

    def find(self, user_id: str, image_id: str) -> StoredFile:
        """Probe the user's directory for `<image_id><ext>` in extension order.

        Two files sharing an identifier with different extensions resolve to
        whichever extension comes first in IMAGE_EXTENSIONS. Extensions match
        case-insensitively, since uploads keep the extension as sent.
        """
        if not is_safe_segment(user_id):
            raise KeyError("not_found")
        user_dir = self.user_dir(user_id)
        try:
            entries = os.listdir(user_dir)
        except (FileNotFoundError, NotADirectoryError):
            raise KeyError("not_found")

        by_ext = {}
        for entry in sorted(entries):
            stem, ext = os.path.splitext(entry)
            if stem == image_id:
                by_ext.setdefault(ext.lower(), entry)

        for ext in IMAGE_EXTENSIONS:
            entry = by_ext.get(ext)
            if entry is None:
                continue
            candidate = os.path.join(user_dir, entry)
            if os.path.isfile(candidate):
                return StoredFile(image_id=image_id, path=candidate, mime_type=get_content_type(ext))
        raise KeyError("not_found")


class SqlImageStore(FileSystemImageStore):
    """Files on disk plus one `images` row per file."""

    kind = "database"
    supports_listing = True

    def __init__(self, upload_dir: str, bind: Engine):
        super().__init__(upload_dir)
        self.engine = bind
        self._session = session_factory(bind)

    def prepare(self) -> None:
        super().prepare()
        self.ping()
        create_tables(self.engine)
        logger.info("✅ Table 'images' verified/created")

    def close(self) -> None:
        self.engine.dispose()

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(sa.text("SELECT 1"))

    def _record(self, *, image_id: str, user_id: str, filename: str, path: str, mime_type: str, size: int) -> None:
        # file first, row second; a failed insert must not leave the file behind
        row = ImageRow(
            id=image_id,
            user_id=user_id,
            filename=filename,
            file_path=path,
            mime_type=mime_type,
            size_bytes=size,
            created_at=utc_now(),
        )
        try:
            with self._session.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            logger.error("Database error storing %s/%s: %s", user_id, image_id, e)
            self._discard(path)
            raise UploadError("error saving to database") from e

    def find(self, user_id: str, image_id: str) -> StoredFile:
        query = sa.select(ImageRow).where(
            ImageRow.id == image_id,
            ImageRow.user_id == user_id,
            ImageRow.deleted_at.is_(None),
        )
        with self._session() as session:
            row = session.execute(query).scalar_one_or_none()
        if row is None:
            raise KeyError("not_found")
        return StoredFile(image_id=row.id, path=row.file_path, mime_type=row.mime_type)

    def list_images(self, user_id: str) -> List[ImageRecord]:
        """Visible images of `user_id`, newest first.

        A row that does not convert cleanly is logged and left out.
        """
        query = (
            sa.select(ImageRow)
            .where(ImageRow.user_id == user_id, ImageRow.deleted_at.is_(None))
            .order_by(ImageRow.created_at.desc())
        )
        with self._session() as session:
            rows = session.execute(query).scalars().all()

        records: List[ImageRecord] = []
        for row in rows:
            try:
                records.append(
                    ImageRecord(
                        id=row.id,
                        user_id=row.user_id,
                        filename=row.filename,
                        file_path=row.file_path,
                        mime_type=row.mime_type,
                        size_bytes=row.size_bytes,
                        created_at=row.created_at,
                        url=image_url(row.user_id, row.id),
                    )
                )
            except ValidationError as e:
                logger.warning("Skipping unreadable row %s: %s", row.id, e)
        return records

    def soft_delete(self, user_id: str, image_id: str) -> None:
        """Hide an image from reads and listings; the file stays on disk."""
        query = (
            sa.update(ImageRow)
            .where(
                ImageRow.id == image_id,
                ImageRow.user_id == user_id,
                ImageRow.deleted_at.is_(None),
            )
            .values(deleted_at=utc_now())
        )
        with self._session.begin() as session:
            result = session.execute(query)
        if result.rowcount == 0:
            raise KeyError("not_found")
        logger.info("✓ Image deleted (soft): %s/%s", user_id, image_id)


def build_store(config: Optional[Settings] = None) -> FileSystemImageStore:
    config = config or default_settings
    if config.storage_backend == "filesystem":
        return FileSystemImageStore(config.upload_dir)
    if config.using_default_database_url:
        logger.warning("⚠️  DATABASE_URL not set, using default: %s", config.database_url)
    return SqlImageStore(config.upload_dir, engine_factory(config.database_url))
