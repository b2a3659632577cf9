from fastapi import APIRouter, Depends, UploadFile, File, Form, BackgroundTasks, HTTPException
from typing import Callable, Dict, List, Optional
from datetime import datetime
import json
import logging

from batchcrop.api.deps import (
    get_session, get_item_processor, get_webhook_service, get_batch_progress
)
from batchcrop.config import DEFAULT_CROP_AMOUNT_PX
from batchcrop.schemas.batch import (
    UploadItem, ItemProgress, ItemStatus, BatchProgressRecord
)
from batchcrop.schemas.image import BatchUploadResponse, BatchProgressResponse, ItemInfo
from batchcrop.services.batch_coordinator import BatchCoordinator
from batchcrop.services.item_processor import ItemProcessor
from batchcrop.services.session import BatchSession
from batchcrop.services.webhook import WebhookService
from batchcrop.utils.security import ImageServiceError
from batchcrop.utils.validators import validate_crop_amount

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["batch"])


def _item_info(item: UploadItem) -> ItemInfo:
    return ItemInfo(
        id=item.id,
        original_name=item.original_name,
        status=item.status.value,
        preview_url=f"/api/v1/previews/{item.preview_handle}" if item.preview_handle else None,
        processed_url=item.processed_ref.url if item.processed_ref else None,
        error_message=item.error_message
    )


@router.post("/batches", response_model=BatchUploadResponse)
async def create_batch(
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    crop_amount_px: int = Form(DEFAULT_CROP_AMOUNT_PX),
    webhook_url: Optional[str] = Form(None),
    webhook_headers: Optional[str] = Form(None),
    session: BatchSession = Depends(get_session),
    processor: ItemProcessor = Depends(get_item_processor),
    webhooks: WebhookService = Depends(get_webhook_service),
    progress_store: Dict[str, BatchProgressRecord] = Depends(get_batch_progress)
):
    """提交一批圖片，背景中依序上傳並轉換"""
    # 驗證在任何狀態變更之前完成
    crop_amount_px = validate_crop_amount(crop_amount_px)

    if session.batch_in_progress:
        raise ImageServiceError(
            code="BATCH_IN_PROGRESS",
            message="A batch is already being processed",
            status_code=409,
            details=f"Wait for {session.batch_id} to finish or reset the session"
        )

    contents = [(file.filename or "", await file.read()) for file in files]
    items = session.create_items(contents)
    batch_id, is_live = session.begin_batch(items)

    # 解析 webhook headers
    parsed_webhook_headers = None
    if webhook_headers:
        try:
            parsed_webhook_headers = json.loads(webhook_headers)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed webhook headers for {batch_id}")

    progress_store[batch_id] = BatchProgressRecord(
        batch_id=batch_id,
        total=len(items),
        webhook_url=webhook_url,
        webhook_headers=parsed_webhook_headers
    )

    # 添加背景任務
    background_tasks.add_task(
        process_batch,
        batch_id, items, crop_amount_px, is_live,
        session, processor, webhooks, progress_store[batch_id]
    )

    return BatchUploadResponse(
        success=True,
        batch_id=batch_id,
        status="processing",
        total_files=len(items),
        crop_amount_px=crop_amount_px,
        items=[_item_info(item) for item in items],
        progress_url=f"/api/v1/batches/{batch_id}/progress"
    )


async def process_batch(batch_id: str, items: List[UploadItem], crop_amount_px: int,
                        is_live: Callable[[], bool], session: BatchSession,
                        processor: ItemProcessor, webhooks: WebhookService,
                        progress: BatchProgressRecord):
    """背景處理批次"""

    async def on_progress(event: ItemProgress):
        if event.status == ItemStatus.SUCCESS:
            progress.completed += 1
        else:
            progress.failed += 1
        progress.results.append({
            "item_id": event.item_id,
            "filename": event.original_name,
            "status": event.status.value,
            "error": event.error_message
        })
        if progress.webhook_url:
            await webhooks.send_item_progress_webhook(
                progress.webhook_url, event, progress.webhook_headers
            )

    coordinator = BatchCoordinator(processor, progress_callback=on_progress)
    result = None
    try:
        result = await coordinator.run(
            items, crop_amount_px, batch_id=batch_id, is_live=is_live, is_active=session.has_item
        )
    finally:
        if result is None:
            # 未正常結束也要釋放批次項目
            session.abandon_batch(batch_id)
            progress.status = "cancelled"
            progress.end_time = datetime.utcnow()
            logger.warning(f"Batch {batch_id} ended without a result")

    session.complete_batch(batch_id, result)

    # 更新最終狀態
    progress.completed = result.succeeded
    progress.failed = len(result.failures)
    if result.cancelled:
        progress.status = "cancelled"
    else:
        progress.status = "completed" if result.ok else "failed"
    progress.summary = result.summary
    progress.end_time = datetime.utcnow()

    logger.info(f"Batch {batch_id} {progress.status}: {result.summary}")

    # 發送完成 webhook
    if progress.webhook_url:
        await webhooks.send_batch_completed_webhook(
            progress.webhook_url, result, progress.webhook_headers
        )


@router.get("/batches/{batch_id}/progress", response_model=BatchProgressResponse)
async def get_batch_progress(
    batch_id: str,
    progress_store: Dict[str, BatchProgressRecord] = Depends(get_batch_progress)
):
    """獲取批次進度"""
    if batch_id not in progress_store:
        raise HTTPException(
            status_code=404,
            detail={
                "error": {
                    "code": "BATCH_NOT_FOUND",
                    "message": "Batch not found",
                    "details": f"Batch ID {batch_id} does not exist"
                }
            }
        )

    progress = progress_store[batch_id]
    done = progress.completed + progress.failed

    # 計算進度百分比
    if progress.total > 0:
        progress_percentage = done / progress.total * 100
    else:
        progress_percentage = 100.0

    # 估算剩餘時間（簡單實作）
    estimated_time = None
    if progress.status == "processing" and done > 0:
        elapsed = (datetime.utcnow() - progress.start_time).total_seconds()
        if elapsed > 0:
            rate = done / elapsed
            remaining = progress.total - done
            estimated_time = f"{int(remaining / rate)} seconds"

    return BatchProgressResponse(
        batch_id=batch_id,
        total=progress.total,
        completed=progress.completed,
        failed=progress.failed,
        status=progress.status,
        progress_percentage=progress_percentage,
        estimated_time_remaining=estimated_time,
        summary=progress.summary,
        results=progress.results
    )


@router.get("/batches/current/items")
async def list_items(session: BatchSession = Depends(get_session)):
    """列出目前批次中的項目"""
    return {
        "success": True,
        "batch_id": session.batch_id,
        "items": [_item_info(item) for item in session.items]
    }


@router.delete("/batches/current/items/{item_id}")
async def remove_item(item_id: str, session: BatchSession = Depends(get_session)):
    """移除單一項目並釋放其預覽"""
    item = session.remove_item(item_id)
    return {
        "success": True,
        "message": "Item removed",
        "id": item.id
    }


@router.post("/session/reset")
async def reset_session(session: BatchSession = Depends(get_session)):
    """重設工作階段：釋放所有預覽並丟棄進行中批次的後續結果"""
    released = session.reset()
    return {
        "success": True,
        "message": "Session reset",
        "released_previews": released
    }
