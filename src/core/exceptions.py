import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class AppError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class TryOnError(Exception):
    """Base class for failures of the normalize/generate pipeline.

    Every subclass carries a message that can be shown to an end user as is.
    ``status_code`` is the HTTP status the API answers with.
    """

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NormalizationError(TryOnError):
    pass


class DecodeError(NormalizationError):
    status_code = 400


class CanvasUnavailableError(NormalizationError):
    status_code = 500


class GenerationError(TryOnError):
    status_code = 502


class NoImageReturnedError(GenerationError):
    def __init__(self, message: str, text: str | None = None) -> None:
        super().__init__(message)
        self.text = text


class ProxyHttpError(GenerationError):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class NetworkError(GenerationError):
    status_code = 503


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def _tryon_error_handler(request: Request, exc: TryOnError) -> JSONResponse:
    content: dict[str, object] = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ProxyHttpError):
        content["upstream_status"] = exc.status
    logger.warning("tryon_request_failed", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=content)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": errors})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(TryOnError, _tryon_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
