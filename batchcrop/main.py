from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional
import logging
import os

from batchcrop.api import batch, images, archive, serve, functions
from batchcrop.api.deps import close_clients
from batchcrop.utils.security import ImageServiceError
from batchcrop.config import STORAGE_PATH, RAW_BUCKET, PROCESSED_BUCKET, LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Batch Crop Service",
    description="Batch image cropping with remote transform, interactive re-crop and ZIP download",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 在生產環境中應該設定具體的來源
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    # 下載壓縮檔時前端需要讀取檔名與略過數量
    expose_headers=["Content-Disposition", "X-Archive-Included", "X-Archive-Skipped"],
)


def error_response(request: Request, status_code: int, code: str, message: str,
                   details: Optional[str] = None) -> JSONResponse:
    """統一的錯誤回應格式"""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": code, "message": message, "details": details},
            "timestamp": datetime.utcnow().isoformat(),
            "path": str(request.url.path)
        }
    )


@app.exception_handler(ImageServiceError)
async def image_service_exception_handler(request: Request, exc: ImageServiceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message} ({exc.details})")
    return error_response(request, exc.status_code, exc.code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """請求格式錯誤也包成 VALIDATION_ERROR"""
    fields = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    return error_response(request, 422, "VALIDATION_ERROR", "Invalid request", fields or None)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    # 路由已組好 {"error": {...}} 時沿用
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        error = exc.detail["error"]
        return error_response(
            request, exc.status_code, error.get("code", "HTTP_ERROR"),
            error.get("message", ""), error.get("details")
        )
    return error_response(request, exc.status_code, "HTTP_ERROR", str(exc.detail))


@app.exception_handler(500)
async def internal_server_error_handler(request: Request, exc):
    logger.exception(f"Unhandled error on {request.url.path}")
    return error_response(
        request, 500, "INTERNAL_ERROR", "Internal server error", "An unexpected error occurred"
    )


app.include_router(batch.router)
app.include_router(images.router)
app.include_router(archive.router)
app.include_router(serve.router)
app.include_router(functions.router)


@app.get("/")
async def root():
    return {
        "message": "Batch Crop Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health")
async def health_check():
    """健康檢查：每個 bucket 目錄都必須可寫"""
    buckets = {}
    for bucket in (RAW_BUCKET, PROCESSED_BUCKET):
        path = os.path.join(STORAGE_PATH, bucket)
        buckets[bucket] = os.path.isdir(path) and os.access(path, os.W_OK)

    healthy = all(buckets.values())
    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "storage_path": STORAGE_PATH,
        "buckets": buckets
    }


@app.on_event("startup")
async def startup_event():
    for bucket in (RAW_BUCKET, PROCESSED_BUCKET):
        os.makedirs(os.path.join(STORAGE_PATH, bucket), exist_ok=True)
    logger.info(f"Batch Crop Service started, storage at {STORAGE_PATH}")


@app.on_event("shutdown")
async def shutdown_event():
    await close_clients()
    logger.info("Batch Crop Service shutting down")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "batchcrop.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
