from typing import Optional
import uuid
import os

class ImageServiceError(Exception):
    """自定義異常類別"""
    def __init__(self, code: str, message: str, status_code: int, details: Optional[str] = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class _TaxonomyError(ImageServiceError):
    """固定錯誤碼與狀態碼的異常基底"""
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(
            code=type(self).code,
            message=message,
            status_code=type(self).status_code,
            details=details
        )


class ValidationError(_TaxonomyError):
    """使用者輸入錯誤，在任何網路呼叫之前拒絕"""
    code = "VALIDATION_ERROR"
    status_code = 400


class UploadError(_TaxonomyError):
    code = "UPLOAD_ERROR"
    status_code = 502


class ProcessingError(_TaxonomyError):
    """遠端轉換失敗或回應格式錯誤"""
    code = "PROCESSING_ERROR"
    status_code = 502


class EncodingError(_TaxonomyError):
    code = "ENCODING_ERROR"
    status_code = 500


class ArchiveFetchError(_TaxonomyError):
    code = "ARCHIVE_FETCH_ERROR"
    status_code = 502


class ArchiveEmptyError(_TaxonomyError):
    """沒有任何檔案能放入壓縮檔"""
    code = "ARCHIVE_EMPTY"
    status_code = 422

    def __init__(self, message: str, warnings: Optional[list] = None):
        self.warnings = list(warnings or [])
        super().__init__(message, details="; ".join(self.warnings) or None)


class StorageError(_TaxonomyError):
    code = "STORAGE_ERROR"
    status_code = 500


class NotFoundError(_TaxonomyError):
    code = "NOT_FOUND"
    status_code = 404


def generate_uuid() -> str:
    """生成唯一的 UUID"""
    return str(uuid.uuid4())

def sanitize_filename(filename: str) -> str:
    """清理檔案名稱，避免路徑遍歷攻擊"""
    # 移除路徑分隔符和特殊字符
    filename = os.path.basename(filename.replace('\\', '/'))
    # 移除或替換危險字符
    dangerous_chars = ['<', '>', ':', '"', '|', '?', '*', '\0']
    for char in dangerous_chars:
        filename = filename.replace(char, '_')
    return filename
