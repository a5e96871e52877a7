"""
Application error taxonomy.

Each ``AppError`` carries its HTTP status and a JSON payload; a single
handler registered in ``app.main`` renders them.  Not-found lookups keep
using ``HTTPException(404)`` at the router layer.
"""
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"success": False, "message": self.message}


class ValidationFailed(AppError):
    """Field-level validation failure (422)."""

    status_code = 422

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__("The given data was invalid.")
        self.errors = errors

    def payload(self) -> dict:
        return {**super().payload(), "errors": self.errors}


class PayloadTooLargeError(AppError):
    """Upload rejected before processing because it exceeds the size limit (413)."""

    status_code = 413

    def __init__(self, size: int, limit: int) -> None:
        super().__init__("Request Entity Too Large")
        self.size = size
        self.limit = limit

    def payload(self) -> dict:
        return {
            **super().payload(),
            "error": f"The file exceeds the {_megabytes(self.limit)} limit",
            "file_size": f"{self.size / 1024 / 1024:.2f} MB",
            "max_size": _megabytes(self.limit),
        }


class ImageProcessingError(AppError):
    """Encoding or storing an image variant failed (500)."""

    def payload(self) -> dict:
        return {"success": False, "message": f"Image upload failed: {self.message}"}


def _megabytes(size: int) -> str:
    return f"{size / 1024 / 1024:g} MB"


def errors_from_pydantic(errors) -> dict[str, list[str]]:
    """Collapse pydantic/FastAPI error entries into ``{field: [messages]}``."""
    grouped: dict[str, list[str]] = {}
    for error in errors:
        loc = [str(part) for part in error["loc"] if part not in ("body", "query", "path")]
        field = ".".join(loc) or "__root__"
        grouped.setdefault(field, []).append(error["msg"])
    return grouped


def validate_or_fail(model: type[BaseModel], **values):
    """Build *model* from *values* (None means absent), raising ``ValidationFailed``."""
    try:
        return model.model_validate({k: v for k, v in values.items() if v is not None})
    except ValidationError as exc:
        raise ValidationFailed(errors_from_pydantic(exc.errors())) from exc


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(exc.payload(), status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return await app_error_handler(request, ValidationFailed(errors_from_pydantic(exc.errors())))
