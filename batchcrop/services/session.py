import logging
from typing import Callable, Dict, List, Optional, Tuple

from batchcrop.schemas.batch import UploadItem, ProcessedImage, BatchResult
from batchcrop.utils.security import NotFoundError, generate_uuid, sanitize_filename
from batchcrop.utils.validators import validate_file_content, validate_batch_size

logger = logging.getLogger(__name__)


class PreviewRegistry:
    """本機預覽參照：每個 handle 對應一份來源內容，釋放後即失效"""

    def __init__(self):
        self._previews: Dict[str, Tuple[bytes, str]] = {}

    def create(self, data: bytes, content_type: str) -> str:
        handle = f"preview-{generate_uuid()}"
        self._previews[handle] = (data, content_type)
        return handle

    def get(self, handle: str) -> Optional[Tuple[bytes, str]]:
        return self._previews.get(handle)

    def release(self, handle: str) -> bool:
        if self._previews.pop(handle, None) is None:
            logger.warning(f"Preview {handle} was already released")
            return False
        return True

    @property
    def active_count(self) -> int:
        return len(self._previews)


class BatchSession:
    """使用者工作階段：進行中的項目、已處理的圖片、目前的批次識別"""

    def __init__(self, previews: Optional[PreviewRegistry] = None):
        self.previews = previews or PreviewRegistry()
        self.items: List[UploadItem] = []
        self.processed: List[ProcessedImage] = []
        self.batch_id: Optional[str] = None
        self._batch_item_ids: List[str] = []
        self._generation = 0

    def create_items(self, files: List[Tuple[str, bytes]]) -> List[UploadItem]:
        """驗證全部檔案後才建立項目；任何一個不合格都不會留下狀態"""
        validate_batch_size(len(files))
        content_types = [validate_file_content(data, name) for name, data in files]

        created = []
        for (name, data), content_type in zip(files, content_types):
            item = UploadItem(
                original_name=sanitize_filename(name),
                source_bytes=data,
                content_type=content_type,
            )
            item.preview_handle = self.previews.create(data, content_type)
            created.append(item)

        self.items.extend(created)
        return created

    def get_item(self, item_id: str) -> UploadItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise NotFoundError("Item not found", details=f"Item {item_id} does not exist")

    def has_item(self, item: UploadItem) -> bool:
        """項目仍在工作階段中（未被移除或重設）"""
        return any(i.id == item.id for i in self.items)

    def begin_batch(self, items: List[UploadItem]) -> Tuple[str, Callable[[], bool]]:
        """開始新的批次，回傳 batch_id 與存活檢查函式"""
        batch_id = f"batch-{generate_uuid()}"
        generation = self._generation
        self.batch_id = batch_id
        self._batch_item_ids = [item.id for item in items]

        def is_live() -> bool:
            return self._generation == generation and self.batch_id == batch_id

        return batch_id, is_live

    @property
    def batch_in_progress(self) -> bool:
        return bool(self._batch_item_ids)

    def is_current(self, batch_id: str) -> bool:
        return batch_id is not None and self.batch_id == batch_id

    def complete_batch(self, batch_id: str, result: BatchResult) -> bool:
        """批次結束：收下成功結果並釋放該批項目的預覽；過期的批次直接忽略"""
        if not self.is_current(batch_id):
            logger.warning(f"Ignoring completion of stale batch {batch_id}")
            return False

        self.processed.extend(result.successes)
        self._release_batch_items()
        return True

    def abandon_batch(self, batch_id: str) -> bool:
        """批次未正常結束（例如被取消）：釋放該批項目，不收任何結果"""
        if not self.is_current(batch_id):
            return False

        logger.warning(f"Abandoning batch {batch_id}")
        self._release_batch_items()
        return True

    def remove_item(self, item_id: str) -> UploadItem:
        item = self.get_item(item_id)
        self._discard_item(item)
        return item

    def reset(self) -> int:
        """重設工作階段，回傳釋放的預覽數量"""
        released = 0
        for item in list(self.items):
            if self._discard_item(item):
                released += 1
        self.items = []
        self.processed = []
        self._generation += 1
        self.batch_id = None
        self._batch_item_ids = []
        logger.info(f"Session reset: released {released} previews")
        return released

    def add_processed(self, record: ProcessedImage) -> ProcessedImage:
        self.processed.append(record)
        return record

    def find_processed(self, storage_key: str) -> ProcessedImage:
        for record in self.processed:
            if record.storage_key == storage_key:
                return record
        raise NotFoundError("Image not found", details=f"Image {storage_key} does not exist")

    def discard_processed(self, storage_key: str) -> ProcessedImage:
        record = self.find_processed(storage_key)
        self.processed.remove(record)
        return record

    def _release_batch_items(self):
        batch_ids = set(self._batch_item_ids)
        for item in [i for i in self.items if i.id in batch_ids]:
            self._discard_item(item)
        self._batch_item_ids = []

    def _discard_item(self, item: UploadItem) -> bool:
        if item in self.items:
            self.items.remove(item)
        if item.preview_handle is None:
            return False
        handle, item.preview_handle = item.preview_handle, None
        return self.previews.release(handle)
