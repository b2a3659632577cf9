import os
import asyncio
import logging
from typing import Optional

from batchcrop.config import PipelineConfig
from batchcrop.schemas.image import TransformResponse
from batchcrop.services.image_processor import ImageProcessor
from batchcrop.services.storage import ObjectStore
from batchcrop.utils.security import ProcessingError, ImageServiceError

logger = logging.getLogger(__name__)


class ReferenceTransformService:
    """遠端轉換契約的參考實作：底部裁切 + 轉 JPEG"""

    def __init__(self, store: ObjectStore, config: Optional[PipelineConfig] = None,
                 processor: Optional[ImageProcessor] = None):
        self.store = store
        self.config = config or PipelineConfig()
        self.processor = processor or ImageProcessor()

    async def transform(self, raw_key: str, crop_amount_px: int) -> TransformResponse:
        if crop_amount_px < 0:
            raise ProcessingError("Crop amount must be non-negative")

        try:
            raw = await self.store.get(self.config.raw_bucket, raw_key)
        except ImageServiceError as e:
            raise ProcessingError(f"Raw image {raw_key} is not available", details=e.message)

        output, dimensions = await asyncio.to_thread(
            self.processor.crop_bottom_to_jpeg, raw, crop_amount_px
        )

        processed_key = f"{os.path.splitext(raw_key)[0]}.jpeg"
        bucket = self.config.processed_bucket
        try:
            await self.store.put(bucket, processed_key, output, overwrite=True,
                                 content_type="image/jpeg")
        except ImageServiceError as e:
            raise ProcessingError(f"Failed to store processed image {processed_key}", details=e.message)

        logger.info(
            f"Transformed {raw_key} -> {processed_key} "
            f"({dimensions['width']}x{dimensions['height']})"
        )
        return TransformResponse(
            processedUrl=self.store.public_url(bucket, processed_key),
            processedKey=processed_key
        )
