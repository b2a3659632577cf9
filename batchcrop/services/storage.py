import os
import aiofiles
import logging
from typing import Optional
from urllib.parse import quote

from batchcrop.config import STORAGE_PATH, PUBLIC_BASE_URL
from batchcrop.utils.security import StorageError, NotFoundError

logger = logging.getLogger(__name__)


class ObjectStore:
    """物件儲存介面：以 bucket + key 存取二進位內容"""

    async def put(self, bucket: str, key: str, data: bytes, overwrite: bool = False,
                  content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    async def get(self, bucket: str, key: str) -> bytes:
        raise NotImplementedError

    async def delete(self, bucket: str, key: str) -> bool:
        raise NotImplementedError

    async def move(self, bucket: str, src_key: str, dst_key: str) -> str:
        raise NotImplementedError

    def public_url(self, bucket: str, key: str) -> str:
        raise NotImplementedError


class LocalObjectStore(ObjectStore):
    """以本機目錄模擬的物件儲存，每個 bucket 一個子目錄"""

    def __init__(self, storage_path: str = STORAGE_PATH, base_url: str = PUBLIC_BASE_URL):
        self.storage_path = storage_path
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.storage_path, exist_ok=True)

    def _get_file_path(self, bucket: str, key: str) -> str:
        """生成完整的檔案路徑，拒絕跳出 bucket 的 key"""
        parts = [p for p in key.replace('\\', '/').split('/') if p]
        if not bucket or '/' in bucket or bucket in ('.', '..'):
            raise StorageError("Invalid bucket name", details=bucket)
        if not parts or any(p in ('.', '..') for p in parts):
            raise StorageError("Invalid object key", details=key)
        return os.path.join(self.storage_path, bucket, *parts)

    async def put(self, bucket: str, key: str, data: bytes, overwrite: bool = False,
                  content_type: Optional[str] = None) -> str:
        """保存物件；overwrite=False 時若已存在則失敗"""
        file_path = self._get_file_path(bucket, key)
        os.makedirs(os.path.dirname(file_path), exist_ok=True)

        try:
            async with aiofiles.open(file_path, 'wb' if overwrite else 'xb') as f:
                await f.write(data)
        except FileExistsError:
            raise StorageError(
                "Object already exists",
                details=f"{bucket}/{key}"
            )
        except OSError as e:
            raise StorageError("Failed to save object", details=str(e))

        logger.debug(f"Stored {len(data)} bytes at {bucket}/{key}")
        return key

    async def get(self, bucket: str, key: str) -> bytes:
        """讀取物件"""
        file_path = self._get_file_path(bucket, key)

        if not os.path.exists(file_path):
            raise NotFoundError("Object not found", details=f"{bucket}/{key}")

        try:
            async with aiofiles.open(file_path, 'rb') as f:
                return await f.read()
        except OSError as e:
            raise StorageError("Failed to read object", details=str(e))

    async def delete(self, bucket: str, key: str) -> bool:
        """刪除物件，不存在時回傳 False"""
        file_path = self._get_file_path(bucket, key)

        try:
            if os.path.exists(file_path):
                os.remove(file_path)
                return True
            return False
        except OSError as e:
            raise StorageError("Failed to delete object", details=str(e))

    async def move(self, bucket: str, src_key: str, dst_key: str) -> str:
        """在同一個 bucket 內搬移物件，目的地已存在時失敗"""
        src_path = self._get_file_path(bucket, src_key)
        dst_path = self._get_file_path(bucket, dst_key)

        if not os.path.exists(src_path):
            raise NotFoundError("Object not found", details=f"{bucket}/{src_key}")
        if os.path.exists(dst_path):
            raise StorageError("Object already exists", details=f"{bucket}/{dst_key}")

        try:
            os.makedirs(os.path.dirname(dst_path), exist_ok=True)
            os.rename(src_path, dst_path)
        except OSError as e:
            raise StorageError("Failed to move object", details=str(e))
        return dst_key

    def exists(self, bucket: str, key: str) -> bool:
        return os.path.exists(self._get_file_path(bucket, key))

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{quote(bucket)}/{quote(key)}"
