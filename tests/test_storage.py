import cloudinary.exceptions
import cloudinary.uploader
import pytest

from campus_platform import config
from campus_platform.core.errors import UpstreamFailure
from campus_platform.services import storage


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(config, "CLOUDINARY_CLOUD_NAME", "campus")
    monkeypatch.setattr(config, "CLOUDINARY_API_KEY", "key")
    monkeypatch.setattr(config, "CLOUDINARY_API_SECRET", "secret")


async def test_upload_returns_stored_file(configured, monkeypatch):
    calls = []

    def fake_upload(file, **options):
        calls.append((file.read(), options))
        return {"secure_url": "https://cdn/report.pdf", "public_id": "submissions/report", "resource_type": "raw", "bytes": 4}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    stored = await storage.upload_file(b"%PDF", "report.pdf", "submissions")

    assert stored == {
        "filename": "report.pdf",
        "url": "https://cdn/report.pdf",
        "public_id": "submissions/report",
        "resource_type": "raw",
        "size": 4,
    }
    content, options = calls[0]
    assert content == b"%PDF"
    assert options["folder"] == "submissions"
    assert options["filename_override"] == "report.pdf"


async def test_sdk_error_becomes_upstream_failure(configured, monkeypatch):
    def failing_upload(file, **options):
        raise cloudinary.exceptions.Error("Invalid Signature")

    monkeypatch.setattr(cloudinary.uploader, "upload", failing_upload)

    with pytest.raises(UpstreamFailure) as exc:
        await storage.upload_file(b"data", "notes.txt", "submissions")
    assert "notes.txt" in exc.value.message


async def test_delete_passes_resource_type(configured, monkeypatch):
    calls = []

    def fake_destroy(public_id, **options):
        calls.append((public_id, options["resource_type"]))
        return {"result": "ok"}

    monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)

    await storage.delete_file("submissions/diagram", "image")
    assert calls == [("submissions/diagram", "image")]


async def test_delete_reports_refused_destroy(configured, monkeypatch):
    monkeypatch.setattr(cloudinary.uploader, "destroy", lambda public_id, **options: {"result": "error"})

    with pytest.raises(UpstreamFailure):
        await storage.delete_file("submissions/diagram")


async def test_unconfigured_storage_refuses(monkeypatch):
    monkeypatch.setattr(config, "CLOUDINARY_API_SECRET", None)

    with pytest.raises(UpstreamFailure):
        await storage.upload_file(b"data", "notes.txt", "submissions")
