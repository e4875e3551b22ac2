from pydantic import BaseModel, ConfigDict

JPEG_MIME_TYPE = "image/jpeg"


class RawImageInput(BaseModel):
    data: bytes
    mime_type: str | None = None


class EncodedImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: str
    mime_type: str


class GenerationResult(BaseModel):
    image_url: str | None = None
    text: str | None = None


class GenerationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    endpoint: str
    instruction: str
    api_key: str | None = None
    api_key_header: str = "x-goog-api-key"
    timeout: float | None = None


class ImageNormalizeRequest(BaseModel):
    data: str
    mime_type: str | None = None


class GenerateRequest(BaseModel):
    person: EncodedImage
    garment: EncodedImage


class TryOnRequest(BaseModel):
    person: ImageNormalizeRequest
    garment: ImageNormalizeRequest
