from fastapi import APIRouter, Depends
from fastapi.responses import Response
import os

from batchcrop.api.deps import get_store, get_session
from batchcrop.services.session import BatchSession
from batchcrop.services.storage import ObjectStore
from batchcrop.utils.security import NotFoundError

router = APIRouter(tags=["serve"])

MIME_TYPE_MAP = {
    '.jpeg': 'image/jpeg',
    '.jpg': 'image/jpeg',
    '.png': 'image/png',
    '.webp': 'image/webp',
    '.gif': 'image/gif',
    '.zip': 'application/zip'
}


@router.get("/storage/v1/object/public/{bucket}/{key:path}")
async def get_object(bucket: str, key: str, store: ObjectStore = Depends(get_store)):
    """公開物件網址"""
    content = await store.get(bucket, key)
    mime_type = MIME_TYPE_MAP.get(os.path.splitext(key)[1].lower(), 'application/octet-stream')

    return Response(
        content=content,
        media_type=mime_type,
        headers={
            "Cache-Control": "public, max-age=3600"  # 1小時快取
        }
    )


@router.get("/api/v1/previews/{handle}")
async def get_preview(handle: str, session: BatchSession = Depends(get_session)):
    """本機預覽；釋放後回傳 404"""
    preview = session.previews.get(handle)
    if preview is None:
        raise NotFoundError("Preview not found", details=f"Preview {handle} was released or never existed")

    content, content_type = preview
    return Response(
        content=content,
        media_type=content_type,
        headers={"Cache-Control": "no-store"}
    )
