import io
import os
import time
import httpx
import logging
import zipfile
from pydantic import BaseModel, Field
from typing import Iterable, List, Optional, Set, Tuple

from batchcrop.config import DEFAULT_ARCHIVE_NAME, FETCH_TIMEOUT, PipelineConfig
from batchcrop.schemas.batch import ProcessedImage
from batchcrop.services.storage import ObjectStore
from batchcrop.utils.security import (
    ArchiveFetchError, ArchiveEmptyError, UploadError, ImageServiceError, sanitize_filename
)

logger = logging.getLogger(__name__)


class ArchiveResult(BaseModel):
    content: bytes = Field(repr=False)
    folder: str
    entries: List[str]
    warnings: List[str] = Field(default_factory=list)

    @property
    def filename(self) -> str:
        return f"{self.folder}.zip"

    @property
    def included(self) -> int:
        return len(self.entries)

    @property
    def skipped(self) -> int:
        return len(self.warnings)


def sanitize_archive_name(archive_name: Optional[str], default: str = DEFAULT_ARCHIVE_NAME) -> str:
    """清理壓縮檔資料夾名稱，空白時使用預設值"""
    name = sanitize_filename((archive_name or "").strip()).strip().strip(".")
    if name.lower().endswith(".zip"):
        name = name[:-4].rstrip(".")
    return name or default


def entry_filename(record: ProcessedImage) -> str:
    """原始檔名主體 + 已處理物件的副檔名"""
    stem = os.path.splitext(sanitize_filename(record.original_name))[0] or "image"
    ext = os.path.splitext(record.storage_key)[1] or ".jpeg"
    return f"{stem}{ext}"


def unique_entry_name(name: str, used: Set[str]) -> str:
    """同名時依序加上 _1, _2 ... 後綴"""
    if name not in used:
        used.add(name)
        return name

    stem, ext = os.path.splitext(name)
    index = 1
    while f"{stem}_{index}{ext}" in used:
        index += 1
    candidate = f"{stem}_{index}{ext}"
    used.add(candidate)
    return candidate


class ArchiveBuilder:
    """下載已處理的圖片並打包成單一 ZIP；個別下載失敗只會略過該檔"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 store: Optional[ObjectStore] = None,
                 config: Optional[PipelineConfig] = None):
        self.client = client or httpx.AsyncClient(timeout=FETCH_TIMEOUT, follow_redirects=True)
        self.store = store
        self.config = config or PipelineConfig()

    async def fetch(self, record: ProcessedImage) -> bytes:
        try:
            response = await self.client.get(record.url)
        except httpx.HTTPError as e:
            raise ArchiveFetchError(f"Failed to fetch {record.original_name}", details=str(e))

        if not response.is_success:
            raise ArchiveFetchError(
                f"Failed to fetch {record.original_name}",
                details=f"status={response.status_code}"
            )
        if not response.content:
            raise ArchiveFetchError(f"Empty content for {record.original_name}")
        return response.content

    async def build(self, records: Iterable[ProcessedImage],
                    archive_name: Optional[str] = None) -> ArchiveResult:
        folder = sanitize_archive_name(archive_name)
        entries: List[str] = []
        warnings: List[str] = []
        used: Set[str] = set()

        zip_buffer = io.BytesIO()
        with zipfile.ZipFile(zip_buffer, "w", zipfile.ZIP_DEFLATED) as zip_file:
            for record in records:
                try:
                    data = await self.fetch(record)
                except ArchiveFetchError as e:
                    warning = f"{e.message} ({e.details})" if e.details else e.message
                    logger.warning(f"Skipping archive entry: {warning}")
                    warnings.append(warning)
                    continue

                name = unique_entry_name(entry_filename(record), used)
                zip_file.writestr(f"{folder}/{name}", data)
                entries.append(name)

        if not entries:
            raise ArchiveEmptyError("No images could be added to the archive", warnings)

        logger.info(f"Built archive {folder}.zip: {len(entries)} included, {len(warnings)} skipped")
        return ArchiveResult(
            content=zip_buffer.getvalue(),
            folder=folder,
            entries=entries,
            warnings=warnings
        )

    async def publish(self, result: ArchiveResult) -> Tuple[str, str]:
        """將壓縮檔存入 processed bucket，回傳 (storage_key, public_url)"""
        if self.store is None:
            raise UploadError("No object store configured for archive publishing")
        if result.included == 0:
            raise ArchiveEmptyError("Refusing to publish an empty archive", result.warnings)

        bucket = self.config.processed_bucket
        key = f"archives/{result.folder}_{int(time.time() * 1000)}.zip"
        try:
            await self.store.put(bucket, key, result.content, overwrite=False,
                                 content_type="application/zip")
        except ImageServiceError as e:
            raise UploadError(f"Failed to store archive {key}", details=e.message)
        return key, self.store.public_url(bucket, key)

    async def close(self):
        await self.client.aclose()
