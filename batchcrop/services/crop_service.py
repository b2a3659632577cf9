import os
import asyncio
import logging
from typing import Optional

from batchcrop.config import PipelineConfig
from batchcrop.schemas.batch import ProcessedImage
from batchcrop.schemas.image import CropRequest
from batchcrop.services.crop_engine import CropGeometryEngine, SourceImage
from batchcrop.services.item_processor import KeyGenerator
from batchcrop.services.storage import ObjectStore
from batchcrop.utils.security import ImageServiceError, UploadError, sanitize_filename

logger = logging.getLogger(__name__)


def cropped_name(original_name: str, token) -> str:
    """原始檔名 + cropped 標記 + 唯一值"""
    stem = os.path.splitext(sanitize_filename(original_name))[0] or "image"
    return f"{stem}_cropped_{token}.jpeg"


class CropService:
    """手動裁切：讀取已處理的圖片、重新繪製並上傳成新的紀錄"""

    def __init__(self, store: ObjectStore, config: Optional[PipelineConfig] = None,
                 engine: Optional[CropGeometryEngine] = None,
                 key_generator: Optional[KeyGenerator] = None):
        self.store = store
        self.config = config or PipelineConfig()
        self.engine = engine or CropGeometryEngine()
        self.key_generator = key_generator or KeyGenerator()

    async def crop(self, record: ProcessedImage, request: CropRequest) -> ProcessedImage:
        """產生新的 ProcessedImage；來源紀錄與其物件都不會被修改"""
        bucket = self.config.processed_bucket
        data = await self.store.get(bucket, record.storage_key)

        source = SourceImage.from_bytes(data, request.displayed_width, request.displayed_height)
        output = await asyncio.to_thread(
            self.engine.rasterize,
            source,
            request.crop,
            request.view,
            request.pixel_density
        )

        new_name = cropped_name(record.original_name, self.key_generator.next_stamp())
        try:
            key = await self.store.put(
                bucket, new_name, output, overwrite=False, content_type="image/jpeg"
            )
        except ImageServiceError as e:
            raise UploadError(f"Failed to save cropped image {new_name}", details=e.message)

        logger.info(f"Cropped {record.storage_key} -> {key} ({len(output)} bytes)")
        return ProcessedImage(
            original_name=new_name,
            url=self.store.public_url(bucket, key),
            storage_key=key
        )
