import asyncio
import base64
import math
from io import BytesIO

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from src.core.exceptions import CanvasUnavailableError, DecodeError
from src.schemas.tryon import JPEG_MIME_TYPE, EncodedImage, RawImageInput

logger = structlog.get_logger()

MAX_DIMENSION = 1024
JPEG_QUALITY = 90
CANVAS_BACKGROUND = (255, 255, 255)


def strip_data_url(value: str) -> str:
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


def decode_base64_image(value: str) -> bytes:
    """Decode a base64 payload, with or without a ``data:`` header.

    Raises ``binascii.Error`` for anything that is not valid base64.
    """
    return base64.b64decode("".join(strip_data_url(value).split()), validate=True)


def compute_target_size(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> tuple[int, int]:
    longer_side = max(width, height)
    if longer_side <= max_dimension:
        return width, height
    scale = max_dimension / longer_side
    # half-up rounding so a .5 edge never loses a pixel
    new_width = max(1, math.floor(width * scale + 0.5))
    new_height = max(1, math.floor(height * scale + 0.5))
    return new_width, new_height


def _decode(image_bytes: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
        transposed = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise DecodeError("The uploaded file could not be read as an image.") from exc
    return transposed if transposed is not None else img


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def _render(img: Image.Image, size: tuple[int, int]) -> Image.Image:
    try:
        canvas = Image.new("RGB", size, CANVAS_BACKGROUND)
    except (MemoryError, ValueError) as exc:
        raise CanvasUnavailableError("Could not allocate an image canvas for the uploaded file.") from exc

    has_alpha = _has_alpha(img)
    img = img.convert("RGBA" if has_alpha else "RGB")
    if img.size != size:
        img = img.resize(size, Image.Resampling.LANCZOS)

    # transparent regions end up on the white background
    if has_alpha:
        canvas.paste(img, mask=img.getchannel("A"))
    else:
        canvas.paste(img)
    return canvas


def _normalize_sync(image_bytes: bytes, max_dimension: int, quality: int) -> tuple[str, tuple[int, int], tuple[int, int]]:
    img = _decode(image_bytes)
    source_size = img.size
    target_size = compute_target_size(*source_size, max_dimension=max_dimension)
    canvas = _render(img, target_size)

    buffer = BytesIO()
    canvas.save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode(), source_size, target_size


async def normalize(
    file: RawImageInput,
    *,
    max_dimension: int = MAX_DIMENSION,
    quality: int = JPEG_QUALITY,
) -> EncodedImage:
    """Decode, downscale and re-encode ``file`` as a JPEG ready for transport.

    The returned payload is bare base64 (no ``data:`` header). Raises
    ``DecodeError`` for unreadable input and ``CanvasUnavailableError`` when no
    rendering surface can be allocated.
    """
    data, source_size, target_size = await asyncio.to_thread(_normalize_sync, file.data, max_dimension, quality)
    logger.info(
        "image_normalized",
        declared_mime_type=file.mime_type,
        source_size=list(source_size),
        target_size=list(target_size),
        input_bytes=len(file.data),
    )
    return EncodedImage(data=data, mime_type=JPEG_MIME_TYPE)
