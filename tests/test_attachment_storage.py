import pytest

from config import DEFAULT_SECRET_KEY, Settings, validate_settings
from Tracking_module.attachment_storage import AttachmentNotFound, AttachmentStorage, safe_filename


@pytest.mark.parametrize("raw,expected", [
    ("report.pdf", "report.pdf"),
    ("../../etc/passwd", "passwd"),
    ("C:\\Users\\bob\\invoice 2024.xlsx", "invoice 2024.xlsx"),
    ("weird<name>?.txt", "weird_name__.txt"),
    ("", "attachment"),
    (None, "attachment"),
])
def test_safe_filename(raw, expected):
    assert safe_filename(raw) == expected


def test_put_and_get(storage, s3_client):
    key = storage.build_key("a" * 32, "report.pdf")
    assert key == f"attachments/{'a' * 32}/report.pdf"

    storage.put_file(key, b"0123456789", "application/pdf")

    assert s3_client.objects[("test-bucket", key)] == (b"0123456789", "application/pdf")
    assert b"".join(storage.get_file(key)) == b"0123456789"


def test_get_missing_key(storage):
    with pytest.raises(AttachmentNotFound):
        storage.get_file("attachments/missing")


def test_bucket_must_be_configured(s3_client):
    storage = AttachmentStorage(client=s3_client, bucket="", prefix="attachments")
    storage.bucket = None
    with pytest.raises(ValueError):
        storage.put_file("k", b"x")
    assert storage.delete_file("k") is False


def test_production_refuses_default_secret():
    with pytest.raises(ValueError):
        validate_settings(Settings(ENVIRONMENT="production", SECRET_KEY=DEFAULT_SECRET_KEY, BASE_URL="https://t.example"))
    with pytest.raises(ValueError):
        validate_settings(Settings(ENVIRONMENT="production", SECRET_KEY="s" * 40, BASE_URL="http://localhost:8030"))
    validate_settings(Settings(ENVIRONMENT="production", SECRET_KEY="s" * 40, BASE_URL="https://t.example"))
