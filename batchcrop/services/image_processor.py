from PIL import Image
import io
from typing import Dict, Tuple
from batchcrop.config import JPEG_QUALITY
from batchcrop.utils.security import ProcessingError
from batchcrop.utils.validators import validate_quality

class ImageProcessor:
    """圖片處理服務"""

    @staticmethod
    def crop_bottom_to_jpeg(file_content: bytes, crop_amount_px: int,
                            quality: int = JPEG_QUALITY) -> Tuple[bytes, Dict[str, int]]:
        """從底部裁掉 crop_amount_px 列後轉為 JPEG"""
        validate_quality(quality)
        try:
            with Image.open(io.BytesIO(file_content)) as img:
                img.load()
                width, height = img.size
                if crop_amount_px >= height:
                    raise ProcessingError(
                        "Crop amount exceeds image height",
                        details=f"Cannot remove {crop_amount_px}px from an image {height}px tall"
                    )

                if crop_amount_px > 0:
                    img = img.crop((0, 0, width, height - crop_amount_px))

                # 確保 RGB 模式（JPEG 不支援透明度，轉換為白色背景）
                if img.mode in ('RGBA', 'LA', 'P'):
                    rgba = img.convert('RGBA')
                    background = Image.new('RGB', rgba.size, (255, 255, 255))
                    background.paste(rgba, mask=rgba.split()[-1])
                    img = background
                elif img.mode != 'RGB':
                    img = img.convert('RGB')

                output_buffer = io.BytesIO()
                img.save(output_buffer, format='JPEG', quality=quality, optimize=True)
                return output_buffer.getvalue(), {"width": img.width, "height": img.height}

        except ProcessingError:
            raise
        except Exception as e:
            raise ProcessingError(
                "Failed to transform image",
                details=str(e)
            )
