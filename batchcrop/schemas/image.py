from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from batchcrop.config import DEFAULT_ARCHIVE_NAME

class DisplayCrop(BaseModel):
    """顯示座標下的裁切框"""
    x: float = Field(..., ge=0)
    y: float = Field(..., ge=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)

class ViewTransform(BaseModel):
    """預覽時套用的縮放與旋轉"""
    scale: float = Field(1.0, gt=0)
    rotation_degrees: float = 0.0

class CropRequest(BaseModel):
    crop: DisplayCrop
    displayed_width: float = Field(..., gt=0, description="Rendered width of the image")
    displayed_height: float = Field(..., gt=0, description="Rendered height of the image")
    view: ViewTransform = Field(default_factory=ViewTransform)
    pixel_density: float = Field(1.0, gt=0, description="Device pixel ratio of the rendering surface")

class ProcessedImageInfo(BaseModel):
    original_name: str
    url: str
    storage_key: str

class ProcessedImageList(BaseModel):
    success: bool
    images: List[ProcessedImageInfo]

class ItemInfo(BaseModel):
    id: str
    original_name: str
    status: str
    preview_url: Optional[str]
    processed_url: Optional[str] = None
    error_message: Optional[str] = None

class BatchUploadResponse(BaseModel):
    success: bool
    batch_id: str
    status: str
    total_files: int
    crop_amount_px: int
    items: List[ItemInfo]
    progress_url: str

class BatchProgressResponse(BaseModel):
    batch_id: str
    total: int
    completed: int
    failed: int
    status: str
    progress_percentage: float
    estimated_time_remaining: Optional[str]
    summary: Optional[str] = None
    results: List[Dict[str, Any]]

class ArchiveRequest(BaseModel):
    archive_name: Optional[str] = DEFAULT_ARCHIVE_NAME
    storage_keys: Optional[List[str]] = Field(
        None, description="Subset of processed images to include; all when omitted"
    )
    persist: bool = False

class ArchivePublishResponse(BaseModel):
    success: bool
    zip_url: str
    storage_key: str
    included: int
    skipped: int
    warnings: List[str]

class TransformRequest(BaseModel):
    rawKey: str
    cropAmountPx: int = Field(..., ge=0)

class TransformResponse(BaseModel):
    processedUrl: str
    processedKey: str
