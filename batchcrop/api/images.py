from fastapi import APIRouter, Depends, Query
import logging

from batchcrop.api.deps import get_session, get_crop_service, get_store, get_config
from batchcrop.config import PipelineConfig
from batchcrop.schemas.image import CropRequest, ProcessedImageInfo, ProcessedImageList
from batchcrop.services.crop_service import CropService
from batchcrop.services.session import BatchSession
from batchcrop.services.storage import ObjectStore
from batchcrop.utils.security import ImageServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/images", tags=["images"])


@router.get("", response_model=ProcessedImageList)
async def list_images(session: BatchSession = Depends(get_session)):
    """列出已處理的圖片（依加入順序）"""
    return ProcessedImageList(
        success=True,
        images=[ProcessedImageInfo(**record.model_dump()) for record in session.processed]
    )


@router.post("/{storage_key}/crop", response_model=ProcessedImageInfo)
async def crop_image(
    storage_key: str,
    request: CropRequest,
    session: BatchSession = Depends(get_session),
    crop_service: CropService = Depends(get_crop_service)
):
    """手動裁切：新結果附加到清單末端，來源紀錄保持不變"""
    record = session.find_processed(storage_key)
    cropped = await crop_service.crop(record, request)
    session.add_processed(cropped)
    return ProcessedImageInfo(**cropped.model_dump())


@router.delete("/{storage_key}")
async def discard_image(
    storage_key: str,
    delete_object: bool = Query(False, description="Also remove the stored object"),
    session: BatchSession = Depends(get_session),
    store: ObjectStore = Depends(get_store),
    config: PipelineConfig = Depends(get_config)
):
    """從清單中移除一張已處理的圖片"""
    record = session.discard_processed(storage_key)

    object_deleted = False
    if delete_object:
        try:
            object_deleted = await store.delete(config.processed_bucket, record.storage_key)
        except ImageServiceError as e:
            logger.error(f"Failed to delete processed object {record.storage_key}: {e.message}")

    return {
        "success": True,
        "message": "Image discarded",
        "storage_key": record.storage_key,
        "object_deleted": object_deleted
    }
