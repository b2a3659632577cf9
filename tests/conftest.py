"""Pytest fixtures for the batch crop service tests."""

import io
import os
import tempfile

# Keep module-level service instances out of the working directory
os.environ.setdefault("STORAGE_PATH", tempfile.mkdtemp(prefix="batchcrop-test-"))
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

import pytest
from PIL import Image

from batchcrop.config import PipelineConfig
from batchcrop.schemas.batch import ProcessedRef, UploadItem
from batchcrop.services.storage import LocalObjectStore
from batchcrop.services.transform_service import ReferenceTransformService
from batchcrop.utils.security import ProcessingError


def make_image_bytes(width=64, height=48, fmt="PNG", color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_split_image(width=1000, height=800, fmt="PNG") -> bytes:
    """Left half red, right half blue."""
    image = Image.new("RGB", (width, height), (255, 0, 0))
    image.paste((0, 0, 255), (width // 2, 0, width, height))
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class FakeTransform:
    """Remote transform double backed by the reference implementation."""

    def __init__(self, store, config, fail_for=()):
        self.reference = ReferenceTransformService(store, config)
        self.fail_for = tuple(fail_for)
        self.calls = []

    async def transform(self, raw_key, crop_amount_px):
        self.calls.append((raw_key, crop_amount_px))
        if any(raw_key.endswith(f"_{name}") for name in self.fail_for):
            raise ProcessingError(f"Transform failed for {raw_key}")
        response = await self.reference.transform(raw_key, crop_amount_px)
        return ProcessedRef(url=response.processedUrl, storage_key=response.processedKey)


@pytest.fixture
def image_bytes():
    return make_image_bytes


@pytest.fixture
def config():
    return PipelineConfig(
        raw_bucket="raw",
        processed_bucket="processed",
        transform_endpoint="http://transform.test/functions/v1/process-image",
    )


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(str(tmp_path / "storage"), "http://testserver")


@pytest.fixture
def fake_transform(store, config):
    return FakeTransform(store, config)


@pytest.fixture
def make_item():
    def _make(name="photo.png", width=64, height=48):
        return UploadItem(
            original_name=name,
            source_bytes=make_image_bytes(width, height),
            content_type="image/png",
        )
    return _make
