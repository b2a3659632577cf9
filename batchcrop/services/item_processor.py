import time
import logging
from typing import Callable, Optional

from batchcrop.config import PipelineConfig
from batchcrop.schemas.batch import UploadItem, ItemStatus, ItemOutcome, ProcessedRef
from batchcrop.services.storage import ObjectStore
from batchcrop.services.transform_client import RemoteTransform
from batchcrop.utils.security import ImageServiceError, UploadError, ProcessingError, sanitize_filename

logger = logging.getLogger(__name__)

LivenessCheck = Callable[[], bool]


def always_live() -> bool:
    return True


class KeyGenerator:
    """產生原始檔的儲存 key：毫秒時間戳 + 原始檔名

    同一毫秒內的多次呼叫會遞增時間戳，確保批次內不重複。
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def next_stamp(self) -> int:
        stamp = int(self._clock() * 1000)
        if stamp <= self._last:
            stamp = self._last + 1
        self._last = stamp
        return stamp

    def __call__(self, original_name: str) -> str:
        stamp = self.next_stamp()
        safe_name = sanitize_filename(original_name).strip() or "image"
        return f"{stamp}_{safe_name}"


class ItemProcessor:
    """處理單一項目：上傳 -> 遠端轉換 -> 清理原始檔"""

    def __init__(self, store: ObjectStore, transform: RemoteTransform,
                 config: Optional[PipelineConfig] = None,
                 key_generator: Optional[Callable[[str], str]] = None):
        self.store = store
        self.transform = transform
        self.config = config or PipelineConfig()
        self.key_generator = key_generator or KeyGenerator()

    async def process(self, item: UploadItem, crop_amount_px: int,
                      is_live: Optional[LivenessCheck] = None) -> ItemOutcome:
        """回傳唯一的終端結果；子步驟的任何失敗都轉為 error，不會向外拋出"""
        is_live = is_live or always_live
        raw_key = self.key_generator(item.original_name)
        uploaded = False

        try:
            self._transition(item, ItemStatus.UPLOADING, is_live)
            await self._upload(raw_key, item)
            uploaded = True

            self._transition(item, ItemStatus.PROCESSING, is_live)
            ref = await self._transform(raw_key, crop_amount_px)
            outcome = ItemOutcome.success(ref)
        except ImageServiceError as e:
            logger.error(f"Item {item.id} ({item.original_name}) failed: [{e.code}] {e.message}")
            outcome = ItemOutcome.failure(e.message, e.code)
        except Exception as e:
            logger.error(f"Item {item.id} ({item.original_name}) failed unexpectedly: {e}")
            outcome = ItemOutcome.failure(str(e) or type(e).__name__, "INTERNAL_ERROR")

        if uploaded:
            await self._cleanup(raw_key)

        self._finish(item, outcome, is_live)
        return outcome

    async def _upload(self, raw_key: str, item: UploadItem):
        try:
            await self.store.put(
                self.config.raw_bucket,
                raw_key,
                item.source_bytes,
                overwrite=False,
                content_type=item.content_type
            )
        except Exception as e:
            message = e.message if isinstance(e, ImageServiceError) else str(e)
            raise UploadError(f"Failed to upload {item.original_name}: {message}")

    async def _transform(self, raw_key: str, crop_amount_px: int) -> ProcessedRef:
        try:
            ref = await self.transform.transform(raw_key, crop_amount_px)
        except ProcessingError:
            raise
        except Exception as e:
            raise ProcessingError(f"Transform failed for {raw_key}: {e}")

        if ref is None or not ref.url:
            raise ProcessingError(f"Transform returned no processed image for {raw_key}")
        return ref

    async def _cleanup(self, raw_key: str):
        """盡力刪除原始檔，失敗只記錄不影響項目狀態"""
        try:
            await self.store.delete(self.config.raw_bucket, raw_key)
        except Exception as e:
            logger.error(f"Failed to clean up raw asset {raw_key}: {e}")

    def _transition(self, item: UploadItem, status: ItemStatus, is_live: LivenessCheck):
        if not is_live():
            logger.warning(f"Ignoring status {status.value} for stale item {item.id}")
            return
        item.status = status

    def _finish(self, item: UploadItem, outcome: ItemOutcome, is_live: LivenessCheck):
        if not is_live():
            logger.warning(f"Ignoring late result for stale item {item.id}")
            return
        item.status = outcome.status
        if outcome.status == ItemStatus.SUCCESS:
            item.processed_ref = outcome.ref
            item.error_message = None
        else:
            item.processed_ref = None
            item.error_message = outcome.message
