import httpx
import logging
from typing import Optional

from batchcrop.config import TRANSFORM_ENDPOINT, TRANSFORM_TIMEOUT
from batchcrop.schemas.batch import ProcessedRef
from batchcrop.utils.security import ProcessingError

logger = logging.getLogger(__name__)


class RemoteTransform:
    """遠端轉換服務客戶端

    請求 {rawKey, cropAmountPx}，成功回應 {processedUrl, processedKey}。
    非 2xx 回應或缺少 processedUrl 的 2xx 回應都視為失敗。
    """

    def __init__(self, endpoint: str = TRANSFORM_ENDPOINT,
                 client: Optional[httpx.AsyncClient] = None):
        self.endpoint = endpoint
        self.client = client or httpx.AsyncClient(timeout=TRANSFORM_TIMEOUT)

    async def transform(self, raw_key: str, crop_amount_px: int) -> ProcessedRef:
        payload = {"rawKey": raw_key, "cropAmountPx": crop_amount_px}

        try:
            response = await self.client.post(
                self.endpoint,
                json=payload,
                headers={"User-Agent": "BatchCropService/1.0"}
            )
        except httpx.HTTPError as e:
            raise ProcessingError(
                f"Transform request failed for {raw_key}",
                details=str(e)
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            message = data.get("error") if isinstance(data, dict) else None
            raise ProcessingError(
                message or f"Transform failed with status {response.status_code}",
                details=f"status={response.status_code}"
            )

        # 傳輸成功不代表結果有效
        if not isinstance(data, dict) or not data.get("processedUrl"):
            raise ProcessingError(
                f"Transform returned no processed image for {raw_key}",
                details=response.text[:200] or None
            )

        processed_key = data.get("processedKey")
        if not processed_key:
            raise ProcessingError(
                f"Transform returned no storage key for {raw_key}",
                details=response.text[:200]
            )

        logger.debug(f"Transformed {raw_key} -> {processed_key}")
        return ProcessedRef(url=data["processedUrl"], storage_key=processed_key)

    async def close(self):
        """關閉 HTTP 客戶端"""
        await self.client.aclose()
