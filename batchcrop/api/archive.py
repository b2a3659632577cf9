from fastapi import APIRouter, Depends
from fastapi.responses import Response
from typing import Optional
from urllib.parse import quote

from batchcrop.api.deps import get_session, get_archive_builder
from batchcrop.schemas.image import ArchiveRequest, ArchivePublishResponse
from batchcrop.services.archive import ArchiveBuilder, ArchiveResult
from batchcrop.services.session import BatchSession

router = APIRouter(prefix="/api/v1/archives", tags=["archive"])


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "ignore").decode().replace('"', '') or "archive.zip"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def deliver(result: ArchiveResult) -> Response:
    """將壓縮檔交給使用者下載"""
    return Response(
        content=result.content,
        media_type="application/zip",
        headers={
            "Content-Disposition": _content_disposition(result.filename),
            "X-Archive-Included": str(result.included),
            "X-Archive-Skipped": str(result.skipped),
        }
    )


@router.post("")
async def create_archive(
    request: Optional[ArchiveRequest] = None,
    session: BatchSession = Depends(get_session),
    builder: ArchiveBuilder = Depends(get_archive_builder)
):
    """打包已處理的圖片；全部失敗時回傳 ARCHIVE_EMPTY"""
    request = request or ArchiveRequest()

    if request.storage_keys is None:
        records = list(session.processed)
    else:
        records = [session.find_processed(key) for key in request.storage_keys]

    # build 在沒有任何檔案時會拋出 ArchiveEmptyError，不會走到交付
    result = await builder.build(records, request.archive_name)

    if request.persist:
        key, url = await builder.publish(result)
        return ArchivePublishResponse(
            success=True,
            zip_url=url,
            storage_key=key,
            included=result.included,
            skipped=result.skipped,
            warnings=result.warnings
        )

    return deliver(result)
