import asyncio
import httpx
from typing import Optional, Dict, Any
from datetime import datetime
import logging

from batchcrop.config import WEBHOOK_TIMEOUT, WEBHOOK_RETRY_ATTEMPTS, WEBHOOK_RETRY_DELAY
from batchcrop.schemas.batch import ItemProgress, BatchResult

logger = logging.getLogger(__name__)

class WebhookService:
    """Webhook 服務"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 retry_delay: float = WEBHOOK_RETRY_DELAY):
        self.client = client or httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT)
        self.retry_delay = retry_delay

    async def send_webhook(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        retry_attempts: int = WEBHOOK_RETRY_ATTEMPTS
    ) -> bool:
        """發送 webhook 通知，失敗只記錄不拋出"""
        if not url:
            return False

        request_headers = {"User-Agent": "BatchCropService/1.0", **(headers or {})}
        body = {**payload, "timestamp": datetime.utcnow().isoformat()}

        for attempt in range(1, retry_attempts + 1):
            try:
                response = await self.client.post(url, json=body, headers=request_headers)
                if response.is_success:
                    logger.info(f"Webhook {body.get('event_type')} delivered to {url}")
                    return True
                logger.warning(
                    f"Webhook to {url} answered {response.status_code} (attempt {attempt}/{retry_attempts})"
                )
            except Exception as e:
                logger.warning(f"Webhook to {url} failed (attempt {attempt}/{retry_attempts}): {e}")

            if attempt < retry_attempts:
                await asyncio.sleep(self.retry_delay)

        logger.error(f"Giving up on webhook to {url} after {retry_attempts} attempts")
        return False

    async def send_item_progress_webhook(
        self,
        webhook_url: str,
        progress: ItemProgress,
        webhook_headers: Optional[Dict[str, str]] = None
    ) -> bool:
        """每完成一個項目發送一次進度 webhook"""
        payload = {
            "event_type": "batch_progress",
            "batch_id": progress.batch_id,
            "progress": {
                "item_id": progress.item_id,
                "filename": progress.original_name,
                "status": progress.status.value,
                "error": progress.error_message,
                "index": progress.index,
                "total": progress.total,
                "label": progress.label
            }
        }

        return await self.send_webhook(webhook_url, payload, webhook_headers)

    async def send_batch_completed_webhook(
        self,
        webhook_url: str,
        result: BatchResult,
        webhook_headers: Optional[Dict[str, str]] = None
    ) -> bool:
        """發送批次完成 webhook"""
        payload = {
            "event_type": "batch_completed",
            "batch_id": result.batch_id,
            "results": {
                "succeeded": result.succeeded,
                "attempted": result.attempted,
                "ok": result.ok,
                "cancelled": result.cancelled,
                "summary": result.summary,
                "failures": [f.model_dump() for f in result.failures]
            }
        }

        return await self.send_webhook(webhook_url, payload, webhook_headers)

    async def close(self):
        """關閉 HTTP 客戶端"""
        await self.client.aclose()
