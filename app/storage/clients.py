from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from ..core.config import settings

Base = declarative_base()

# MySQL DATETIME drops sub-second precision unless asked for it, which would
# make "newest first" ambiguous for uploads in the same second.
Timestamp = sa.DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ImageRow(Base):
    __tablename__ = "images"

    id = sa.Column(sa.String(36), primary_key=True)
    user_id = sa.Column(sa.String(100), nullable=False, index=True)
    filename = sa.Column(sa.String(255), nullable=False)
    file_path = sa.Column(sa.String(500), nullable=False)
    mime_type = sa.Column(sa.String(50), nullable=False)
    size_bytes = sa.Column(sa.BigInteger, nullable=False)
    created_at = sa.Column(Timestamp, nullable=False, default=utc_now, index=True)
    deleted_at = sa.Column(Timestamp, nullable=True, index=True)


def engine(database_url: Optional[str] = None) -> Engine:
    """Create a pooled SQLAlchemy engine for the configured database URL."""
    url = database_url or settings.database_url
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        # TestClient and the threadpool hand the same pool to several threads
        kwargs["connect_args"] = {"check_same_thread": False}
    return sa.create_engine(url, **kwargs)


def session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, expire_on_commit=False)


def create_tables(bind: Engine) -> None:
    Base.metadata.create_all(bind)
