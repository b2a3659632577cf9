from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any
from datetime import datetime

from batchcrop.utils.security import generate_uuid


class ItemStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATUSES = {ItemStatus.SUCCESS, ItemStatus.ERROR}


class ProcessedRef(BaseModel):
    url: str
    storage_key: str


class UploadItem(BaseModel):
    """批次中的單一檔案。id 與原始內容在建立後不可變更"""
    id: str = Field(default_factory=generate_uuid, frozen=True)
    original_name: str = Field(frozen=True)
    source_bytes: bytes = Field(frozen=True, repr=False)
    content_type: str = Field(default="application/octet-stream", frozen=True)
    preview_handle: Optional[str] = None
    status: ItemStatus = ItemStatus.PENDING
    processed_ref: Optional[ProcessedRef] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ProcessedImage(BaseModel):
    """轉換結果的持久紀錄，獨立於產生它的 UploadItem"""
    model_config = ConfigDict(frozen=True)

    original_name: str
    url: str
    storage_key: str


class ItemOutcome(BaseModel):
    """ItemProcessor 的終端結果：success 附 ref，error 附訊息"""
    status: ItemStatus
    ref: Optional[ProcessedRef] = None
    message: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, ref: ProcessedRef) -> "ItemOutcome":
        return cls(status=ItemStatus.SUCCESS, ref=ref)

    @classmethod
    def failure(cls, message: str, error_code: Optional[str] = None) -> "ItemOutcome":
        return cls(status=ItemStatus.ERROR, message=message, error_code=error_code)


class BatchFailure(BaseModel):
    original_name: str
    error_message: str


class BatchResult(BaseModel):
    """批次結果：每個輸入檔案只會出現在 successes 或 failures 其中之一"""
    batch_id: str
    successes: List[ProcessedImage] = Field(default_factory=list)
    failures: List[BatchFailure] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def attempted(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def succeeded(self) -> int:
        return len(self.successes)

    @property
    def ok(self) -> bool:
        # 零成功即視為整批失敗
        return self.succeeded > 0

    @property
    def summary(self) -> str:
        return f"{self.succeeded}/{self.attempted} images processed successfully"


class ItemProgress(BaseModel):
    """每完成一個項目時發出的進度事件"""
    batch_id: str
    item_id: str
    original_name: str
    index: int
    total: int
    status: ItemStatus
    error_message: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def label(self) -> str:
        return f"{self.index} of {self.total}"


class BatchProgressRecord(BaseModel):
    """批次進度追蹤（內存存儲）"""
    batch_id: str
    total: int
    completed: int = 0
    failed: int = 0
    status: str = "processing"
    results: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Optional[str] = None
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    webhook_url: Optional[str] = None
    webhook_headers: Optional[Dict[str, str]] = None
