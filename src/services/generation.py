from typing import Any

import httpx
import structlog

from src.core.exceptions import NetworkError, NoImageReturnedError, ProxyHttpError
from src.schemas.tryon import EncodedImage, GenerationConfig, GenerationResult
from src.services.response_shapes import decode_response

logger = structlog.get_logger()


def _inline_part(image: EncodedImage) -> dict[str, Any]:
    return {"inlineData": {"mimeType": image.mime_type, "data": image.data}}


def build_request(person: EncodedImage, garment: EncodedImage, instruction: str) -> dict[str, Any]:
    """Build the generation request body.

    Part order matters upstream: the first image is the identity and pose
    source, the second is the garment.
    """
    parts = [_inline_part(person), _inline_part(garment), {"text": instruction}]
    return {"contents": [{"parts": parts}]}


def extract_error_message(response: httpx.Response) -> str:
    fallback = f"Proxy server error ({response.status_code}): {response.reason_phrase}"
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or fallback

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return response.text.strip() or fallback


class TryOnGenerator:
    """Sends a person/garment pair to the generation service.

    One call is one POST; nothing is retried here. Endpoint, credential and
    timeout come from ``config``. A client passed in is left open on
    ``aclose()``; a client created here is closed.
    """

    def __init__(self, config: GenerationConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def config(self) -> GenerationConfig:
        return self._config

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers[self._config.api_key_header] = self._config.api_key
        return headers

    async def generate(self, person: EncodedImage, garment: EncodedImage) -> GenerationResult:
        body = build_request(person, garment, self._config.instruction)
        try:
            response = await self._client.post(self._config.endpoint, json=body, headers=self._headers())
        except httpx.RequestError as e:
            logger.error("generation_request_failed", endpoint=self._config.endpoint, error=str(e))
            raise NetworkError(
                "The connection to the generation service failed. Check your connection and try again."
            ) from e

        if not response.is_success:
            message = extract_error_message(response)
            logger.error("generation_http_error", status=response.status_code, message=message)
            raise ProxyHttpError(response.status_code, message)

        try:
            payload = response.json()
        except ValueError as e:
            raise NoImageReturnedError("The generation service returned a response that is not JSON.") from e

        try:
            result = decode_response(payload)
        except NoImageReturnedError as e:
            logger.warning("generation_returned_no_image", text=e.text)
            raise
        logger.info("generation_succeeded", has_text=result.text is not None)
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
