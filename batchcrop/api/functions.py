from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
import json
import logging

from batchcrop.api.deps import get_reference_transform
from batchcrop.schemas.image import TransformRequest
from batchcrop.services.transform_service import ReferenceTransformService
from batchcrop.utils.security import ImageServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["functions"])


@router.post("/process-image")
async def process_image(
    request: Request,
    service: ReferenceTransformService = Depends(get_reference_transform)
):
    """遠端轉換：{rawKey, cropAmountPx} -> {processedUrl, processedKey}，失敗時回傳 {error}"""
    raw_body = await request.body()
    if not raw_body:
        return JSONResponse(status_code=400, content={"error": "Body is empty"})

    try:
        payload = TransformRequest(**json.loads(raw_body))
    except json.JSONDecodeError as e:
        return JSONResponse(status_code=400, content={"error": f"Failed to parse JSON: {e.msg}"})
    except (PydanticValidationError, TypeError) as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {e}"})

    try:
        result = await service.transform(payload.rawKey, payload.cropAmountPx)
    except ImageServiceError as e:
        logger.error(f"Transform of {payload.rawKey} failed: {e.message}")
        message = f"{e.message}: {e.details}" if e.details else e.message
        return JSONResponse(status_code=e.status_code, content={"error": message})

    return result.model_dump()
