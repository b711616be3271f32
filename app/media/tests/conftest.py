"""
Test fixtures for media app.

Provides fixtures for:
- An isolated MEDIA_ROOT per test
- A pipeline whose queues never contact the broker
- Sample files (JPEG, PNG, DirectB2S, video)
- Media files created through the upload path
"""

from __future__ import annotations

import base64
import io

import pytest
from django.apps import apps
from django.core.files.uploadedfile import SimpleUploadedFile
from PIL import Image

from media.models import MediaFile
from media.pipeline import build_pipeline
from media.queues import RetryPolicy, build_queues

# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    """Store uploads and variations in a temporary directory."""
    root = tmp_path / "media"
    root.mkdir()
    settings.MEDIA_ROOT = str(root)
    return root


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=3, backoff_seconds=10, backoff_max_seconds=300)


@pytest.fixture(autouse=True)
def pipeline(monkeypatch, retry_policy):
    """
    Install a pipeline without Celery wake-ups.

    Tests drive consumers by hand with pull() and worker.run().
    """
    test_pipeline = build_pipeline(queues=build_queues(policy=retry_policy, kicker=None))
    monkeypatch.setattr(apps.get_app_config("media"), "pipeline", test_pipeline)
    return test_pipeline


def run_pending_jobs(pipeline, limit: int = 100) -> list:
    """
    Run due jobs of all queues until none are left.

    Returns:
        The jobs that were run, in execution order.
    """
    executed = []
    for _ in range(limit):
        job = None
        for queue in pipeline.queues:
            job = queue.pull(worker="test")
            if job is not None:
                break
        if job is None:
            return executed
        pipeline.worker.run(job)
        executed.append(job)
    raise AssertionError(f"Jobs still pending after {limit} runs")


# =============================================================================
# Sample File Fixtures
# =============================================================================


def image_bytes(width: int = 1000, height: int = 800, fmt: str = "PNG", **save_kwargs) -> bytes:
    """Generate an image file."""
    image = Image.new("RGB", (width, height), color="red")
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def directb2s_bytes(width: int = 1024, height: int = 768, backglass: bool = True) -> bytes:
    """Generate a DirectB2S document with uncompressed embedded PNGs."""
    data = base64.b64encode(
        image_bytes(width, height, compress_level=0)
    ).decode("ascii")
    backglass_element = f'<BackglassImage Value="{data}" />' if backglass else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<DirectB2SData Version="1.2">'
        '<Name Value="Test Table" />'
        f'<Illumination><Bulb ID="1" Name="GI" Image="{data}" /></Illumination>'
        f"<Images><ThumbnailImage Value=\"{data}\" />{backglass_element}</Images>"
        "</DirectB2SData>"
    ).encode("utf-8")


@pytest.fixture
def sample_png() -> bytes:
    return image_bytes(1000, 800, "PNG")


@pytest.fixture
def sample_jpeg() -> bytes:
    return image_bytes(1000, 800, "JPEG")


@pytest.fixture
def sample_directb2s() -> bytes:
    return directb2s_bytes()


# =============================================================================
# Media File Fixtures
# =============================================================================


@pytest.fixture
def make_media_file(db):
    """
    Factory fixture creating a MediaFile through the upload path.

    Usage:
        media_file = make_media_file("backglass", "image/png", content)
    """

    def _make(file_type: str, mime_type: str, content: bytes, name: str = "upload") -> MediaFile:
        upload = SimpleUploadedFile(name=name, content=content, content_type=mime_type)
        return MediaFile.create_from_upload(upload, file_type, mime_type)

    return _make


@pytest.fixture
def backglass_png(make_media_file, sample_png) -> MediaFile:
    return make_media_file("backglass", "image/png", sample_png, "backglass.png")


@pytest.fixture
def backglass_directb2s(make_media_file, sample_directb2s) -> MediaFile:
    return make_media_file(
        "backglass", "application/x-directb2s", sample_directb2s, "table.directb2s"
    )


@pytest.fixture
def playfield_video(make_media_file) -> MediaFile:
    return make_media_file("playfield-fs", "video/mp4", b"\x00\x00\x00\x18ftypmp42", "pf.mp4")


@pytest.fixture
def release_table(make_media_file) -> MediaFile:
    return make_media_file(
        "release",
        "application/x-visual-pinball-table-x",
        b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1table",
        "table.vpx",
    )
