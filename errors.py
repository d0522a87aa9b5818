"""
Error taxonomy for the store API and the design pipeline.

API errors carry an HTTP status and are rendered as ``{"message": ...}`` by the
handlers registered in :func:`register_exception_handlers`. Design errors are
raised client-side by the compositor and design session and never reach the
server.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import settings

logger = structlog.get_logger(__name__)


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid request data"


class InvalidCartItem(ValidationError):
    message = "Cart item needs a product or a custom design"


class InvalidQuantity(ValidationError):
    message = "Quantity must be at least 1"


class InvalidStatusTransition(ValidationError):
    message = "Order status transition not allowed"


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Could not validate credentials"


class InvalidCredentials(Unauthorized):
    message = "Invalid credentials"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Access denied"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    message = "Already exists"


class UserExists(ConflictError):
    message = "User already exists"


class InternalError(AppError):
    pass


# Design pipeline
class DesignError(Exception):
    message = "Design could not be completed"

    def __init__(self, message=None):
        self.message = message or self.message
        super().__init__(self.message)


class NoDesignUploaded(DesignError):
    message = "Upload a design before finishing"


class ImageLoadFailed(DesignError):
    message = "Image could not be loaded"


class UploadFailed(DesignError):
    message = "Design upload failed"


class DesignInProgress(DesignError):
    message = "A design is already being finished"


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message}, headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": "Invalid request data", "errors": errors})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", method=request.method, path=request.url.path)
        content = {"message": InternalError.message}
        if settings.EXPOSE_ERROR_DETAILS:
            content["error"] = str(exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)
