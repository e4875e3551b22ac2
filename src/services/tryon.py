import asyncio

import structlog

from src.config import settings
from src.schemas.tryon import EncodedImage, GenerationResult, RawImageInput
from src.services.generation import TryOnGenerator
from src.services.image_normalizer import normalize

logger = structlog.get_logger()

_generator: TryOnGenerator | None = None


def get_generator() -> TryOnGenerator:
    global _generator
    if _generator is None:
        _generator = TryOnGenerator(settings.generation_config())
    return _generator


async def close_generator() -> None:
    global _generator
    if _generator:
        await _generator.aclose()
        _generator = None


async def normalize_image(file: RawImageInput) -> EncodedImage:
    return await normalize(file, max_dimension=settings.max_dimension, quality=settings.jpeg_quality)


async def normalize_pair(person: RawImageInput, garment: RawImageInput) -> tuple[EncodedImage, EncodedImage]:
    # gather re-raises the first failure, so a half-normalized pair never escapes
    encoded_person, encoded_garment = await asyncio.gather(normalize_image(person), normalize_image(garment))
    return encoded_person, encoded_garment


async def try_on(
    person: RawImageInput,
    garment: RawImageInput,
    generator: TryOnGenerator | None = None,
) -> GenerationResult:
    encoded_person, encoded_garment = await normalize_pair(person, garment)
    generator = generator or get_generator()
    return await generator.generate(encoded_person, encoded_garment)
