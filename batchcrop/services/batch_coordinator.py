import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from batchcrop.schemas.batch import (
    UploadItem, ItemStatus, ItemOutcome, ItemProgress,
    ProcessedImage, BatchFailure, BatchResult
)
from batchcrop.services.item_processor import ItemProcessor, LivenessCheck, always_live
from batchcrop.utils.security import generate_uuid
from batchcrop.utils.validators import validate_crop_amount

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ItemProgress], Awaitable[None]]
ItemCheck = Callable[[UploadItem], bool]

RESET_MESSAGE = "Batch was reset before this item was processed"
CANCELLED_MESSAGE = "Processing was cancelled"
REMOVED_MESSAGE = "Item was removed by the user"


def always_active(item: UploadItem) -> bool:
    return True


class BatchCoordinator:
    """依提交順序逐一處理項目，單一項目失敗不會中止整批"""

    def __init__(self, processor: ItemProcessor,
                 progress_callback: Optional[ProgressCallback] = None):
        self.processor = processor
        self.progress_callback = progress_callback

    async def run(self, items: List[UploadItem], crop_amount_px: int,
                  batch_id: Optional[str] = None,
                  is_live: Optional[LivenessCheck] = None,
                  is_active: Optional[ItemCheck] = None) -> BatchResult:
        """is_live 檢查整批是否仍有效；is_active 檢查單一項目是否仍在工作階段中"""
        # 驗證失敗時不會觸碰任何項目或儲存
        crop_amount_px = validate_crop_amount(crop_amount_px)
        is_live = is_live or always_live
        is_active = is_active or always_active
        batch_id = batch_id or f"batch-{generate_uuid()}"
        result = BatchResult(batch_id=batch_id)
        total = len(items)

        logger.info(f"Starting batch {batch_id}: {total} items, crop {crop_amount_px}px")

        for index, item in enumerate(items, start=1):
            if not is_live():
                result.cancelled = True
                result.failures.append(
                    BatchFailure(original_name=item.original_name, error_message=RESET_MESSAGE)
                )
                continue

            if not is_active(item):
                logger.info(f"Skipping removed item {item.id} ({item.original_name})")
                outcome = ItemOutcome.failure(REMOVED_MESSAGE, "ITEM_REMOVED")
            else:
                item_live = self._item_liveness(item, is_live, is_active)
                outcome = await self._run_item(item, crop_amount_px, item_live)
                if outcome.status == ItemStatus.SUCCESS and not is_active(item):
                    # 處理途中被移除：結果不列入成功清單
                    logger.warning(
                        f"Dropping result of {item.original_name}: removed while processing "
                        f"({outcome.ref.storage_key})"
                    )
                    outcome = ItemOutcome.failure(REMOVED_MESSAGE, "ITEM_REMOVED")

            self._record(result, item, outcome)
            await self._notify(ItemProgress(
                batch_id=batch_id,
                item_id=item.id,
                original_name=item.original_name,
                index=index,
                total=total,
                status=outcome.status,
                error_message=outcome.message
            ))

        if result.ok:
            logger.info(f"Batch {batch_id} completed: {result.summary}")
        else:
            logger.error(f"Batch {batch_id} failed: {result.summary}")
        return result

    @staticmethod
    def _item_liveness(item: UploadItem, is_live: LivenessCheck,
                       is_active: ItemCheck) -> LivenessCheck:
        def check() -> bool:
            return is_live() and is_active(item)
        return check

    async def _run_item(self, item: UploadItem, crop_amount_px: int,
                        is_live: LivenessCheck) -> ItemOutcome:
        try:
            return await self.processor.process(item, crop_amount_px, is_live)
        except asyncio.CancelledError:
            if is_live():
                item.status = ItemStatus.ERROR
                item.error_message = CANCELLED_MESSAGE
            raise
        except Exception as e:
            # processor 已自行轉換子步驟錯誤，這裡只攔截其餘意外
            logger.error(f"Unexpected failure while processing {item.original_name}: {e}")
            if is_live():
                item.status = ItemStatus.ERROR
                item.error_message = str(e) or type(e).__name__
            return ItemOutcome.failure(str(e) or type(e).__name__, "INTERNAL_ERROR")

    @staticmethod
    def _record(result: BatchResult, item: UploadItem, outcome: ItemOutcome):
        if outcome.status == ItemStatus.SUCCESS:
            result.successes.append(ProcessedImage(
                original_name=item.original_name,
                url=outcome.ref.url,
                storage_key=outcome.ref.storage_key
            ))
        else:
            result.failures.append(BatchFailure(
                original_name=item.original_name,
                error_message=outcome.message or "Unknown error"
            ))

    async def _notify(self, progress: ItemProgress):
        if self.progress_callback is None:
            return
        try:
            await self.progress_callback(progress)
        except Exception as e:
            logger.error(f"Progress callback failed for {progress.original_name}: {e}")
