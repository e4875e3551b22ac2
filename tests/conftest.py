from collections.abc import AsyncIterator, Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app
from src.schemas.tryon import GenerationConfig
from src.services.generation import TryOnGenerator

TEST_ENDPOINT = "https://upstream.test/v1/generate"


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_generator() -> Callable[..., TryOnGenerator]:
    """Build a generator whose upstream is answered by ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **config: object) -> TryOnGenerator:
        options: dict[str, object] = {"endpoint": TEST_ENDPOINT, "instruction": "Swap the outfit."}
        options.update(config)
        transport = httpx.MockTransport(handler)
        return TryOnGenerator(GenerationConfig(**options), client=httpx.AsyncClient(transport=transport))

    return _make
