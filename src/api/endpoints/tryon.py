import binascii

import structlog
from fastapi import APIRouter

from src.config import settings
from src.core.exceptions import AppError
from src.schemas.tryon import (
    EncodedImage,
    GenerateRequest,
    GenerationResult,
    ImageNormalizeRequest,
    RawImageInput,
    TryOnRequest,
)
from src.services import tryon
from src.services.image_normalizer import decode_base64_image

logger = structlog.get_logger()

router = APIRouter(prefix="/tryon")


def _to_raw_image(body: ImageNormalizeRequest, name: str) -> RawImageInput:
    try:
        image_bytes = decode_base64_image(body.data)
    except (binascii.Error, ValueError):
        raise AppError(status_code=400, detail=f"Invalid {name} image data") from None
    if not image_bytes:
        raise AppError(status_code=400, detail=f"Empty {name} image")
    if len(image_bytes) > settings.max_upload_bytes:
        raise AppError(status_code=413, detail=f"The {name} image is too large")
    return RawImageInput(data=image_bytes, mime_type=body.mime_type)


@router.post("/normalize", response_model=EncodedImage)
async def normalize_image(body: ImageNormalizeRequest) -> EncodedImage:
    raw = _to_raw_image(body, "uploaded")
    return await tryon.normalize_image(raw)


@router.post("/generate", response_model=GenerationResult)
async def generate_image(body: GenerateRequest) -> GenerationResult:
    generator = tryon.get_generator()
    return await generator.generate(body.person, body.garment)


@router.post("", response_model=GenerationResult)
async def try_on(body: TryOnRequest) -> GenerationResult:
    person = _to_raw_image(body.person, "person")
    garment = _to_raw_image(body.garment, "garment")
    logger.info("tryon_requested", person_bytes=len(person.data), garment_bytes=len(garment.data))
    return await tryon.try_on(person, garment, generator=tryon.get_generator())
