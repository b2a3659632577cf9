"""顯示座標的裁切選取 -> 原始像素座標的點陣圖

使用者是在縮放（以及可能經過放大、旋轉）的預覽上框選，因此必須先換算回圖片本身的
像素格線再繪製。繪製方式比照 2D canvas：逐步累積轉換矩陣，最後把原尺寸來源圖畫在原點。
"""

import io
import math
import logging
from typing import NamedTuple, Tuple

from PIL import Image, UnidentifiedImageError

from batchcrop.config import JPEG_QUALITY, MIN_CROP_SIZE
from batchcrop.schemas.image import DisplayCrop, ViewTransform
from batchcrop.utils.security import EncodingError, ValidationError
from batchcrop.utils.validators import validate_crop_bounds, validate_display_crop, validate_quality

logger = logging.getLogger(__name__)

# (a, b, c, d, e, f): x' = a*x + b*y + c, y' = d*x + e*y + f
Affine = Tuple[float, float, float, float, float, float]

IDENTITY: Affine = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)


def multiply(m: Affine, n: Affine) -> Affine:
    """m · n：先套用 n 再套用 m"""
    a1, b1, c1, d1, e1, f1 = m
    a2, b2, c2, d2, e2, f2 = n
    return (
        a1 * a2 + b1 * d2,
        a1 * b2 + b1 * e2,
        a1 * c2 + b1 * f2 + c1,
        d1 * a2 + e1 * d2,
        d1 * b2 + e1 * e2,
        d1 * c2 + e1 * f2 + f1,
    )


def invert(m: Affine) -> Affine:
    a, b, c, d, e, f = m
    det = a * e - b * d
    if det == 0:
        raise EncodingError("Crop transform is not invertible")
    ia, ib = e / det, -b / det
    id_, ie = -d / det, a / det
    return (ia, ib, -(ia * c + ib * f), id_, ie, -(id_ * c + ie * f))


def apply(m: Affine, x: float, y: float) -> Tuple[float, float]:
    a, b, c, d, e, f = m
    return a * x + b * y + c, d * x + e * y + f


def scaling(sx: float, sy: float) -> Affine:
    return (sx, 0.0, 0.0, 0.0, sy, 0.0)


def translation(tx: float, ty: float) -> Affine:
    return (1.0, 0.0, tx, 0.0, 1.0, ty)


def rotation(radians: float) -> Affine:
    cos, sin = math.cos(radians), math.sin(radians)
    return (cos, -sin, 0.0, sin, cos, 0.0)


class SourceImage:
    """已解碼的來源圖片，以及它在畫面上的顯示尺寸"""

    def __init__(self, image: Image.Image, displayed_width: float, displayed_height: float):
        if displayed_width <= 0 or displayed_height <= 0:
            raise ValidationError(
                "Invalid displayed size",
                details="Displayed width and height must be positive"
            )
        self.image = image
        self.displayed_width = displayed_width
        self.displayed_height = displayed_height

    @classmethod
    def from_bytes(cls, data: bytes, displayed_width: float, displayed_height: float) -> "SourceImage":
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise EncodingError("Failed to decode source image", details=str(e))
        return cls(image, displayed_width, displayed_height)

    @property
    def natural_size(self) -> Tuple[int, int]:
        return self.image.size

    @property
    def scale_x(self) -> float:
        return self.image.width / self.displayed_width

    @property
    def scale_y(self) -> float:
        return self.image.height / self.displayed_height


class CropPlan(NamedTuple):
    """自然座標下的裁切框、輸出畫布尺寸，以及來源 -> 畫布的轉換矩陣"""
    crop_x: float
    crop_y: float
    crop_width: float
    crop_height: float
    canvas_size: Tuple[int, int]
    matrix: Affine


class CropGeometryEngine:
    """將顯示座標的裁切選取轉為新的點陣圖（JPEG）"""

    def __init__(self, quality: int = JPEG_QUALITY, min_crop_size: int = MIN_CROP_SIZE):
        validate_quality(quality)
        self.quality = quality
        self.min_crop_size = min_crop_size

    def plan(self, source: SourceImage, crop: DisplayCrop, view: ViewTransform,
             pixel_density: float = 1.0) -> CropPlan:
        validate_display_crop(crop.width, crop.height, self.min_crop_size)
        validate_crop_bounds(
            crop.x, crop.y, crop.width, crop.height,
            source.displayed_width, source.displayed_height
        )
        if pixel_density <= 0:
            raise ValidationError("Invalid pixel density", details=str(pixel_density))

        scale_x, scale_y = source.scale_x, source.scale_y
        crop_x = crop.x * scale_x
        crop_y = crop.y * scale_y
        crop_width = crop.width * scale_x
        crop_height = crop.height * scale_y

        canvas_size = (
            math.floor(crop_width * pixel_density),
            math.floor(crop_height * pixel_density),
        )

        natural_width, natural_height = source.natural_size
        center_x = natural_width / 2
        center_y = natural_height / 2

        # 順序不可調換
        matrix = IDENTITY
        for op in (
            scaling(pixel_density, pixel_density),
            translation(-crop_x, -crop_y),
            translation(center_x, center_y),
            rotation(math.radians(view.rotation_degrees)),
            scaling(view.scale, view.scale),
            translation(-center_x, -center_y),
        ):
            matrix = multiply(matrix, op)

        return CropPlan(crop_x, crop_y, crop_width, crop_height, canvas_size, matrix)

    def render(self, source: SourceImage, plan: CropPlan) -> Image.Image:
        width, height = plan.canvas_size
        if width < 1 or height < 1:
            raise EncodingError(
                "Failed to allocate output canvas",
                details=f"Canvas size {width}x{height}"
            )

        image = _flatten(source.image)
        # PIL 的 affine 參數是輸出 -> 輸入的對應
        return image.transform(
            (width, height),
            Image.Transform.AFFINE,
            data=invert(plan.matrix),
            resample=Image.Resampling.BICUBIC,
            fillcolor=(0, 0, 0),
        )

    def encode(self, canvas: Image.Image) -> bytes:
        output_buffer = io.BytesIO()
        try:
            canvas.save(output_buffer, format='JPEG', quality=self.quality)
        except (OSError, ValueError) as e:
            raise EncodingError("Failed to encode cropped image", details=str(e))

        data = output_buffer.getvalue()
        if not data:
            raise EncodingError("Encoding produced no data")
        return data

    def rasterize(self, source: SourceImage, crop: DisplayCrop, view: ViewTransform,
                  pixel_density: float = 1.0) -> bytes:
        plan = self.plan(source, crop, view, pixel_density)
        logger.debug(
            f"Crop plan: natural=({plan.crop_x:.1f}, {plan.crop_y:.1f}, "
            f"{plan.crop_width:.1f}x{plan.crop_height:.1f}) canvas={plan.canvas_size}"
        )
        return self.encode(self.render(source, plan))


def _flatten(image: Image.Image) -> Image.Image:
    """轉為 RGB；透明區域與未繪製的畫布一樣以黑色輸出"""
    if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
        rgba = image.convert('RGBA')
        background = Image.new('RGB', rgba.size, (0, 0, 0))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != 'RGB':
        return image.convert('RGB')
    return image
