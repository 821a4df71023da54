import os
from io import BytesIO

import pytest

from app.core.utils import generate_etag, get_content_type, is_valid_image_type
from app.storage.store import UploadError
from conftest import png_bytes


def test_valid_image_type_case_insensitive_success():
    for name in ["a.jpg", "a.JPEG", "b.Png", "c.gif", "d.webp", "x.y.png"]:
        assert is_valid_image_type(name), name
    for name in ["a.bmp", "a.txt", "png", "", "a.png.exe", ".hidden"]:
        assert not is_valid_image_type(name), name


def test_content_type_lookup_success():
    assert get_content_type(".jpg") == "image/jpeg"
    assert get_content_type(".JPEG") == "image/jpeg"
    assert get_content_type(".webp") == "image/webp"
    assert get_content_type(".bin") == "application/octet-stream"


def test_etag_is_quoted_truncated_sha256_success():
    # sha256("abc") = ba7816bf8f01cfea414140de5dae2223...
    assert generate_etag("abc") == '"ba7816bf8f01cfea"'
    assert generate_etag("abc") == generate_etag("abc")
    assert generate_etag("abc") != generate_etag("abd")


def test_sql_store_save_find_list_delete_flow_success(sql_store, upload_dir):
    data = png_bytes()
    stored = sql_store.save("u1", "pic.png", BytesIO(data))
    assert stored.size == len(data)
    assert stored.url == f"/image/u1/{stored.id}"

    found = sql_store.find("u1", stored.id)
    assert found.path == os.path.join(os.path.abspath(str(upload_dir)), "u1", stored.id + ".png")
    assert found.mime_type == "image/png"
    with open(found.path, "rb") as fh:
        assert fh.read() == data

    records = sql_store.list_images("u1")
    assert [r.id for r in records] == [stored.id]
    assert records[0].filename == "pic.png"
    assert records[0].size_bytes == len(data)

    sql_store.soft_delete("u1", stored.id)
    assert sql_store.list_images("u1") == []
    with pytest.raises(KeyError):
        sql_store.find("u1", stored.id)
    with pytest.raises(KeyError):
        sql_store.soft_delete("u1", stored.id)
    assert os.path.exists(found.path)


def test_store_write_failure_removes_partial_file(fs_store, upload_dir):
    class BrokenStream:
        def __init__(self):
            self.calls = 0

        def read(self, size=-1):
            self.calls += 1
            if self.calls == 1:
                return b"partial"
            raise OSError("connection reset")

    with pytest.raises(UploadError) as excinfo:
        fs_store.save("u1", "a.png", BrokenStream())
    assert excinfo.value.reason == "error writing"
    assert os.listdir(upload_dir / "u1") == []


def test_store_directory_failure(fs_store, upload_dir):
    # a plain file where the user directory should go
    (upload_dir / "u1").write_bytes(b"")
    with pytest.raises(UploadError) as excinfo:
        fs_store.save("u1", "a.png", BytesIO(b"data"))
    assert excinfo.value.reason == "error creating directory"

