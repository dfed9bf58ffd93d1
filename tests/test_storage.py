import pytest

import storage
from storage import UploadValidationError, validate_upload


def test_validate_upload_accepts_images():
    validate_upload("cat.jpg", "image/jpeg", 1024)


@pytest.mark.parametrize("filename, content_type, size, message", [
    ("", "image/png", 10, "valid name"),
    ("big.png", "image/png", 10 * 1024 * 1024 + 1, "smaller than 10MB"),
    ("doc.pdf", "application/pdf", 10, "valid image"),
    ("blob", None, 10, "valid image"),
])
def test_validate_upload_rejects(filename, content_type, size, message):
    with pytest.raises(UploadValidationError, match=message):
        validate_upload(filename, content_type, size)


def test_object_path_layout():
    path = storage.object_path("items", "user1", "photo.png")
    folder, user, name = path.split("/")
    assert (folder, user) == ("items", "user1")
    millis, original = name.split("_", 1)
    assert millis.isdigit()
    assert original == "photo.png"


def test_path_from_url(monkeypatch):
    monkeypatch.setattr(storage, "STORAGE_BUCKET", "bucket")
    assert storage.path_from_url("https://storage.googleapis.com/bucket/items/u/1_a%20b.png") == "items/u/1_a b.png"
    assert storage.path_from_url("https://storage.googleapis.com/other/items/u/1.png") is None
    assert storage.path_from_url("https://example.com/") is None
