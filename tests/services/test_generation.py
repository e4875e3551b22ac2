import json
from collections.abc import Callable

import httpx
import pytest

from src.core.exceptions import NetworkError, NoImageReturnedError, ProxyHttpError
from src.schemas.tryon import EncodedImage, GenerationConfig
from src.services import generation
from src.services.generation import TryOnGenerator

PERSON = EncodedImage(data="cGVyc29u", mime_type="image/jpeg")
GARMENT = EncodedImage(data="Z2FybWVudA==", mime_type="image/jpeg")

GeneratorFactory = Callable[..., TryOnGenerator]


def _ok(payload: object) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    return handler


class TestBuildRequest:
    def test_part_order(self) -> None:
        body = generation.build_request(PERSON, GARMENT, "Swap the outfit.")
        parts = body["contents"][0]["parts"]
        assert parts == [
            {"inlineData": {"mimeType": "image/jpeg", "data": "cGVyc29u"}},
            {"inlineData": {"mimeType": "image/jpeg", "data": "Z2FybWVudA=="}},
            {"text": "Swap the outfit."},
        ]

    def test_single_turn(self) -> None:
        body = generation.build_request(PERSON, GARMENT, "x")
        assert len(body["contents"]) == 1


class TestGenerate:
    async def test_success(self, make_generator: GeneratorFactory) -> None:
        payload = {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "Done"},
                            {"inlineData": {"mimeType": "image/png", "data": "aW1n"}},
                        ]
                    }
                }
            ]
        }
        generator = make_generator(_ok(payload))
        result = await generator.generate(PERSON, GARMENT)
        assert result.image_url == "data:image/png;base64,aW1n"
        assert result.text == "Done"

    async def test_posts_json_to_endpoint(self, make_generator: GeneratorFactory) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "eA=="}}]}}]})

        generator = make_generator(handler)
        await generator.generate(PERSON, GARMENT)

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://upstream.test/v1/generate"
        assert request.headers["content-type"] == "application/json"
        body = json.loads(request.content)
        parts = body["contents"][0]["parts"]
        assert parts[0]["inlineData"]["data"] == PERSON.data
        assert parts[1]["inlineData"]["data"] == GARMENT.data
        assert parts[2] == {"text": "Swap the outfit."}

    async def test_sends_api_key_when_configured(self, make_generator: GeneratorFactory) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "eA=="}}]}}]})

        generator = make_generator(handler, api_key="secret", api_key_header="x-api-key")
        await generator.generate(PERSON, GARMENT)
        assert seen[0].headers["x-api-key"] == "secret"

    async def test_no_api_key_header_by_default(self, make_generator: GeneratorFactory) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "eA=="}}]}}]})

        await make_generator(handler).generate(PERSON, GARMENT)
        assert "x-goog-api-key" not in seen[0].headers

    async def test_wrapped_json_response(self, make_generator: GeneratorFactory) -> None:
        document = {"generatedImage": {"imageBytes": "d3JhcA==", "mimeType": "image/jpeg"}, "commentary": "Nice"}
        payload = {"candidates": [{"content": {"parts": [{"text": json.dumps(document)}]}}]}
        result = await make_generator(_ok(payload)).generate(PERSON, GARMENT)
        assert result.image_url == "data:image/jpeg;base64,d3JhcA=="
        assert result.text == "Nice"

    async def test_text_only_raises_no_image(self, make_generator: GeneratorFactory) -> None:
        payload = {"candidates": [{"content": {"parts": [{"text": "Refused for safety reasons"}]}}]}
        with pytest.raises(NoImageReturnedError) as exc_info:
            await make_generator(_ok(payload)).generate(PERSON, GARMENT)
        assert "Refused for safety reasons" in str(exc_info.value)

    async def test_non_json_success_body(self, make_generator: GeneratorFactory) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(NoImageReturnedError):
            await make_generator(handler).generate(PERSON, GARMENT)


class TestGenerateHttpErrors:
    async def test_json_error_envelope(self, make_generator: GeneratorFactory) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "X"}})

        with pytest.raises(ProxyHttpError) as exc_info:
            await make_generator(handler).generate(PERSON, GARMENT)
        assert exc_info.value.status == 400
        assert "X" in exc_info.value.message

    async def test_string_error_field(self, make_generator: GeneratorFactory) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": "Rate limited"})

        with pytest.raises(ProxyHttpError) as exc_info:
            await make_generator(handler).generate(PERSON, GARMENT)
        assert exc_info.value.status == 429
        assert exc_info.value.message == "Rate limited"

    async def test_raw_text_error(self, make_generator: GeneratorFactory) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad gateway from worker")

        with pytest.raises(ProxyHttpError) as exc_info:
            await make_generator(handler).generate(PERSON, GARMENT)
        assert exc_info.value.message == "Bad gateway from worker"

    async def test_empty_error_body(self, make_generator: GeneratorFactory) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with pytest.raises(ProxyHttpError) as exc_info:
            await make_generator(handler).generate(PERSON, GARMENT)
        assert exc_info.value.message == "Proxy server error (500): Internal Server Error"

    async def test_not_retried(self, make_generator: GeneratorFactory) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, json={"error": {"message": "busy"}})

        with pytest.raises(ProxyHttpError):
            await make_generator(handler).generate(PERSON, GARMENT)
        assert calls == 1


class TestGenerateNetworkErrors:
    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadError("connection reset"),
            httpx.ReadTimeout("slow"),
            httpx.DecodingError("corrupt gzip body"),
            httpx.TooManyRedirects("redirect loop"),
        ],
    )
    async def test_request_error(self, make_generator: GeneratorFactory, error: httpx.RequestError) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error

        with pytest.raises(NetworkError) as exc_info:
            await make_generator(handler).generate(PERSON, GARMENT)
        assert exc_info.value.__cause__ is error
        assert exc_info.value.message


class TestLifecycle:
    async def test_owned_client_closed(self) -> None:
        generator = TryOnGenerator(GenerationConfig(endpoint="https://upstream.test", instruction="x"))
        await generator.aclose()
        assert generator._client.is_closed

    async def test_injected_client_left_open(self) -> None:
        client = httpx.AsyncClient()
        generator = TryOnGenerator(GenerationConfig(endpoint="https://upstream.test", instruction="x"), client=client)
        await generator.aclose()
        assert not client.is_closed
        await client.aclose()
