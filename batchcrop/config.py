import os
from pydantic import BaseModel

# 基本配置
STORAGE_PATH = os.getenv("STORAGE_PATH", "./storage")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 10 * 1024 * 1024))  # 10MB
MAX_BATCH_SIZE = int(os.getenv("MAX_BATCH_SIZE", 100))

# 儲存桶（固定的邏輯分區）
RAW_BUCKET = os.getenv("RAW_BUCKET", "raw-images")
PROCESSED_BUCKET = os.getenv("PROCESSED_BUCKET", "processed-images")

# 遠端轉換服務
TRANSFORM_ENDPOINT = os.getenv(
    "TRANSFORM_ENDPOINT", f"{PUBLIC_BASE_URL}/functions/v1/process-image"
)
TRANSFORM_TIMEOUT = float(os.getenv("TRANSFORM_TIMEOUT", 30))

# 打包下載
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", 15))
DEFAULT_ARCHIVE_NAME = os.getenv("DEFAULT_ARCHIVE_NAME", "processed_images")

# Webhook 配置
WEBHOOK_TIMEOUT = float(os.getenv("WEBHOOK_TIMEOUT", 10))
WEBHOOK_RETRY_ATTEMPTS = int(os.getenv("WEBHOOK_RETRY_ATTEMPTS", 3))
WEBHOOK_RETRY_DELAY = float(os.getenv("WEBHOOK_RETRY_DELAY", 1))

# 支援的圖片格式
ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp"
}

# 圖片處理預設值
DEFAULT_CROP_AMOUNT_PX = int(os.getenv("DEFAULT_CROP_AMOUNT_PX", 45))
MIN_CROP_SIZE = 100  # 顯示座標下的最小裁切尺寸
JPEG_QUALITY = 95


class PipelineConfig(BaseModel):
    """注入給批次協調器的儲存桶與端點設定"""
    raw_bucket: str = RAW_BUCKET
    processed_bucket: str = PROCESSED_BUCKET
    transform_endpoint: str = TRANSFORM_ENDPOINT
