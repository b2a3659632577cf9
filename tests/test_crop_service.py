"""Tests for the manual crop handoff."""

import io
import pytest
from PIL import Image

from batchcrop.schemas.batch import ProcessedImage
from batchcrop.schemas.image import CropRequest, DisplayCrop, ViewTransform
from batchcrop.services.crop_service import CropService, cropped_name
from batchcrop.utils.security import NotFoundError

from conftest import make_split_image


@pytest.fixture
def request_2x():
    return CropRequest(
        crop=DisplayCrop(x=100, y=50, width=200, height=100),
        displayed_width=500,
        displayed_height=400,
        view=ViewTransform(),
        pixel_density=1,
    )


async def _stored_record(store, config, name="photo.png", key="1_photo.jpeg"):
    await store.put(config.processed_bucket, key, make_split_image(1000, 800, fmt="JPEG"))
    return ProcessedImage(
        original_name=name,
        url=store.public_url(config.processed_bucket, key),
        storage_key=key,
    )


def test_cropped_name_keeps_inner_dots():
    assert cropped_name("photo.final.png", 123) == "photo.final_cropped_123.jpeg"
    assert cropped_name("noext", 5) == "noext_cropped_5.jpeg"


class TestCropService:
    @pytest.mark.asyncio
    async def test_crop_produces_new_record(self, store, config, request_2x):
        service = CropService(store, config)
        source = await _stored_record(store, config)
        source_bytes = await store.get(config.processed_bucket, source.storage_key)

        cropped = await service.crop(source, request_2x)

        assert cropped.storage_key != source.storage_key
        assert cropped.original_name.startswith("photo_cropped_")
        assert cropped.original_name.endswith(".jpeg")
        assert cropped.url == store.public_url(config.processed_bucket, cropped.storage_key)

        data = await store.get(config.processed_bucket, cropped.storage_key)
        assert Image.open(io.BytesIO(data)).size == (400, 200)
        # Source object untouched
        assert await store.get(config.processed_bucket, source.storage_key) == source_bytes

    @pytest.mark.asyncio
    async def test_repeated_crops_do_not_collide(self, store, config, request_2x):
        service = CropService(store, config)
        source = await _stored_record(store, config)

        first = await service.crop(source, request_2x)
        second = await service.crop(source, request_2x)

        assert first.storage_key != second.storage_key

    @pytest.mark.asyncio
    async def test_missing_source_object(self, store, config, request_2x):
        service = CropService(store, config)
        record = ProcessedImage(original_name="gone.png", url="http://x/gone", storage_key="gone.jpeg")

        with pytest.raises(NotFoundError):
            await service.crop(record, request_2x)
