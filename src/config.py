from pydantic_settings import BaseSettings, SettingsConfigDict

from src.schemas.tryon import GenerationConfig

DEFAULT_INSTRUCTION = (
    "Dress the person in the first image in the garment shown in the second image. "
    "Keep the person's facial identity, body proportions and pose exactly as they are, "
    "and replace only their clothing. Render the result with ultra-fine detail at high fidelity."
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "virtual-tryon-service"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    cors_origins: list[str] = ["*"]

    generation_endpoint: str = (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash-image-preview:generateContent"
    )
    generation_api_key: str | None = None
    generation_api_key_header: str = "x-goog-api-key"
    generation_timeout: float | None = None
    generation_instruction: str = DEFAULT_INSTRUCTION

    max_dimension: int = 1024
    jpeg_quality: int = 90
    max_upload_bytes: int = 10485760

    def generation_config(self) -> GenerationConfig:
        return GenerationConfig(
            endpoint=self.generation_endpoint,
            api_key=self.generation_api_key,
            api_key_header=self.generation_api_key_header,
            timeout=self.generation_timeout,
            instruction=self.generation_instruction,
        )


settings = Settings()
