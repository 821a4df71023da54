import os, sys
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Ensure project root on sys.path so `import app...` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.main import create_app
from app.storage.clients import engine as engine_factory
from app.storage.store import FileSystemImageStore, SqlImageStore


def png_bytes(size=(3, 2), color=(0, 128, 255)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def jpeg_bytes(size=(4, 4), color=(200, 10, 10)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def sql_store(tmp_path, upload_dir):
    bind = engine_factory(f"sqlite:///{tmp_path / 'images.db'}")
    store = SqlImageStore(str(upload_dir), bind)
    store.prepare()
    yield store
    bind.dispose()


@pytest.fixture
def fs_store(upload_dir):
    store = FileSystemImageStore(str(upload_dir))
    store.prepare()
    return store


@pytest.fixture
def api_db(sql_store):
    with TestClient(create_app(sql_store)) as client:
        yield client


@pytest.fixture
def api_fs(fs_store):
    with TestClient(create_app(fs_store)) as client:
        yield client
