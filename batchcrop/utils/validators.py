from typing import Optional
from batchcrop.config import ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES, MAX_FILE_SIZE, MAX_BATCH_SIZE, MIN_CROP_SIZE
from batchcrop.utils.security import ValidationError

def validate_file_extension(filename: str) -> bool:
    """驗證檔案副檔名"""
    if not filename:
        return False

    extension = filename.lower().split('.')[-1] if '.' in filename else ''
    return extension in ALLOWED_EXTENSIONS

def detect_mime_type(file_content: bytes) -> Optional[str]:
    """依檔案頭（Magic Number）判斷 MIME 類型"""
    file_signatures = {
        b'\xff\xd8\xff': 'image/jpeg',  # JPEG
        b'\x89PNG\r\n\x1a\n': 'image/png',  # PNG
        b'GIF87a': 'image/gif',  # GIF87a
        b'GIF89a': 'image/gif',  # GIF89a
    }

    for signature, mime_type in file_signatures.items():
        if file_content.startswith(signature):
            return mime_type

    # WebP 需要額外檢查
    if file_content.startswith(b'RIFF') and b'WEBP' in file_content[:12]:
        return 'image/webp'

    return None

def validate_file_content(file_content: bytes, filename: str) -> str:
    """驗證檔案內容並回傳偵測到的 MIME 類型"""
    # 檢查檔案大小
    if len(file_content) > MAX_FILE_SIZE:
        raise ValidationError(
            f"File too large: {filename}",
            details=f"File size exceeds {MAX_FILE_SIZE} bytes"
        )

    # 檢查副檔名
    if not validate_file_extension(filename):
        raise ValidationError(
            f"Invalid file type: {filename}",
            details=f"File type not supported. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )

    if len(file_content) < 8:
        raise ValidationError(
            f"Invalid file content: {filename}",
            details="File appears to be corrupted or empty"
        )

    detected_type = detect_mime_type(file_content)
    if not detected_type or detected_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Invalid file content: {filename}",
            details="File content does not match expected image format"
        )

    return detected_type

def validate_batch_size(count: int) -> bool:
    """驗證批次檔案數量"""
    if count == 0:
        raise ValidationError("No files provided")
    if count > MAX_BATCH_SIZE:
        raise ValidationError(
            "Too many files",
            details=f"Maximum {MAX_BATCH_SIZE} files allowed"
        )
    return True

def validate_crop_amount(crop_amount_px) -> int:
    """驗證裁切像素數（非負整數）"""
    if isinstance(crop_amount_px, bool) or not isinstance(crop_amount_px, (int, float)):
        raise ValidationError(
            "Invalid crop amount",
            details="Crop amount must be a non-negative integer"
        )
    if crop_amount_px < 0:
        raise ValidationError(
            "Invalid crop amount",
            details=f"Crop amount must be >= 0, got {crop_amount_px}"
        )
    if int(crop_amount_px) != crop_amount_px:
        raise ValidationError(
            "Invalid crop amount",
            details="Crop amount must be a whole number of pixels"
        )
    return int(crop_amount_px)

def validate_display_crop(width: float, height: float, min_size: int = MIN_CROP_SIZE) -> bool:
    """驗證顯示座標下的裁切尺寸"""
    if width < min_size or height < min_size:
        raise ValidationError(
            "Crop selection too small",
            details=f"Crop width and height must be at least {min_size} display pixels"
        )
    return True

def validate_quality(quality: int = None) -> bool:
    """驗證圖片品質參數"""
    if quality is not None and (quality < 1 or quality > 100):
        raise ValidationError(
            "Invalid quality parameter",
            details="Quality must be between 1 and 100"
        )

    return True

def validate_crop_bounds(x: float, y: float, width: float, height: float,
                         displayed_width: float, displayed_height: float) -> bool:
    """裁切框必須落在顯示中的圖片範圍內"""
    if x < 0 or y < 0 or x + width > displayed_width or y + height > displayed_height:
        raise ValidationError(
            "Crop selection outside image",
            details=(
                f"Selection ({x}, {y}, {width}x{height}) exceeds the displayed image "
                f"{displayed_width}x{displayed_height}"
            )
        )
    return True
